"""
Session tracker: the open-session state machine.

A user reads one message at a time, so opening a message closes every other
open session. Sessions shorter than the minimum threshold are treated as
accidental opens and dropped without a trace.

Replaying a batch is harmless: record ids already seen and messages that are
already open are both no-ops. Gmail history ids only grow, so anything below
the highest processed record id counts as seen no matter how large the batch;
the bounded key window only has to cover messages sharing that last record.
"""

from collections import deque
from collections.abc import Awaitable, Callable
from datetime import timedelta

from mailtime.config import settings
from mailtime.features.email_tracking.domain.models import Clock, CloseReason, Session, utc_now
from mailtime.features.email_tracking.errors import AuthError, GmailHistoryError
from mailtime.infrastructure.observability.logging import get_logger
from mailtime.models.domain.gmail_domain import MessageMetadata, ReadTransition

logger = get_logger(__name__)

MetadataFetcher = Callable[[str], Awaitable[MessageMetadata]]

PROCESSED_RECORD_LIMIT = 500
COMPLETED_SESSION_LIMIT = 200


class SessionTracker:
    """In-memory session state; the only awaited call is the metadata fetch."""

    def __init__(
        self,
        fetch_metadata: MetadataFetcher,
        clock: Clock = utc_now,
        min_session_seconds: float | None = None,
        idle_timeout_minutes: float | None = None,
    ):
        tracker_config = settings.get_tracker_config()
        self.fetch_metadata = fetch_metadata
        self.clock = clock
        self.min_session_seconds = (
            min_session_seconds
            if min_session_seconds is not None
            else tracker_config["min_session_seconds"]
        )
        self.idle_timeout = timedelta(
            minutes=(
                idle_timeout_minutes
                if idle_timeout_minutes is not None
                else tracker_config["idle_timeout_minutes"]
            )
        )
        self._open_sessions: dict[str, Session] = {}
        self._completed: deque[Session] = deque(maxlen=COMPLETED_SESSION_LIMIT)
        self._processed_ids: deque[str] = deque(maxlen=PROCESSED_RECORD_LIMIT)
        self._last_record_id: int | None = None

    @property
    def last_record_id(self) -> str | None:
        return str(self._last_record_id) if self._last_record_id is not None else None

    @property
    def active_sessions(self) -> list[Session]:
        return list(self._open_sessions.values())

    @property
    def completed_sessions(self) -> list[Session]:
        return list(self._completed)

    @property
    def processed_record_ids(self) -> list[str]:
        return list(self._processed_ids)

    def is_open(self, message_id: str) -> bool:
        return message_id in self._open_sessions

    def was_processed(self, transition: ReadTransition) -> bool:
        key = _transition_key(transition)
        if key is None:
            return False

        record_number = _record_number(transition.record_id)
        if record_number is not None and self._last_record_id is not None:
            if record_number < self._last_record_id:
                return True
            if record_number > self._last_record_id:
                return False
        return key in self._processed_ids

    def restore(
        self,
        sessions: list[Session],
        processed_record_ids: list[str],
        last_record_id: str | None = None,
    ) -> None:
        """
        Rebuild state from persisted sessions (open and recently completed).

        Without a stored high-water mark it is derived from the processed keys.
        """
        self._open_sessions.clear()
        self._completed.clear()
        for session in sessions:
            if session.is_open:
                self._open_sessions[session.message_id] = session
            else:
                self._completed.append(session)
        self._processed_ids.clear()
        self._processed_ids.extend(processed_record_ids)

        candidates = [_record_number(key.split(":", 1)[0]) for key in processed_record_ids]
        candidates.append(_record_number(last_record_id or ""))
        numbers = [number for number in candidates if number is not None]
        self._last_record_id = max(numbers) if numbers else None

    def all_sessions(self) -> list[Session]:
        return self.completed_sessions + self.active_sessions

    async def handle_read_transition(self, transition: ReadTransition) -> list[Session]:
        """
        Open a session for the message that was just read.

        Returns:
            list[Session]: previously open sessions that closed and qualified

        Raises:
            AuthError: metadata fetch rejected the credential (no state changed)
        """
        if self.was_processed(transition):
            logger.debug("Skipping already processed history record", record_id=transition.record_id)
            return []

        message_id = transition.message_id
        if self.is_open(message_id):
            self._mark_processed(transition)
            return []

        metadata = await self._load_metadata(message_id)

        now = self.clock()
        closed = self._close_sessions(CloseReason.OPENED_ANOTHER, now)

        self._open_sessions[message_id] = Session(
            message_id=message_id,
            subject=metadata.subject,
            sender=metadata.sender,
            opened_at=now,
        )
        self._mark_processed(transition)

        logger.info("Email session opened", message_id=message_id, closed_sessions=len(closed))
        return closed

    def close_active_sessions(self, reason: CloseReason = CloseReason.MANUAL_CLOSE) -> list[Session]:
        """Force-close every open session; same discard threshold applies."""
        return self._close_sessions(reason, self.clock())

    def expire_idle_sessions(self) -> list[Session]:
        """
        Close sessions open longer than the idle timeout.

        The session is closed at opened_at + timeout, so an abandoned message
        never counts for more than the timeout.
        """
        now = self.clock()
        expired = []
        for message_id, session in list(self._open_sessions.items()):
            if now - session.opened_at < self.idle_timeout:
                continue
            del self._open_sessions[message_id]
            if self._finish(session, session.opened_at + self.idle_timeout, CloseReason.TIMEOUT):
                expired.append(session)
        return expired

    async def _load_metadata(self, message_id: str) -> MessageMetadata:
        try:
            return await self.fetch_metadata(message_id)
        except AuthError:
            raise
        except GmailHistoryError as e:
            logger.warning(
                "Message metadata unavailable, using placeholders",
                message_id=message_id,
                error=str(e),
            )
            return MessageMetadata.placeholder(message_id)

    def _close_sessions(self, reason: CloseReason, closed_at) -> list[Session]:
        closed = []
        for message_id in list(self._open_sessions):
            session = self._open_sessions.pop(message_id)
            if self._finish(session, closed_at, reason):
                closed.append(session)
        return closed

    def _finish(self, session: Session, closed_at, reason: CloseReason) -> bool:
        duration_seconds = session.close(closed_at, reason)
        if duration_seconds < self.min_session_seconds:
            logger.debug(
                "Discarding short email session",
                message_id=session.message_id,
                duration_seconds=round(duration_seconds, 1),
            )
            return False

        self._completed.append(session)
        logger.info(
            "Email session closed",
            message_id=session.message_id,
            close_reason=reason.value,
            duration_minutes=round(session.estimated_duration_minutes, 2),
        )
        return True

    def _mark_processed(self, transition: ReadTransition) -> None:
        key = _transition_key(transition)
        if key is None:
            return
        self._processed_ids.append(key)

        record_number = _record_number(transition.record_id)
        if record_number is not None and (
            self._last_record_id is None or record_number > self._last_record_id
        ):
            self._last_record_id = record_number


def _record_number(record_id: str) -> int | None:
    return int(record_id) if record_id.isdigit() else None


def _transition_key(transition: ReadTransition) -> str | None:
    """Records can carry several messages, so the key pairs record and message."""
    if not transition.record_id:
        return None
    return f"{transition.record_id}:{transition.message_id}"
