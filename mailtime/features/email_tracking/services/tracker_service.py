"""
Email activity tracker orchestrator.

Wires the checkpoint manager, history poller, session tracker, classifier and
state repository into one explicitly constructed component with its own
lifecycle (load, start, stop_tracking, save). Host applications subscribe to
draft events instead of polling the store.
"""

import asyncio
import inspect
from collections.abc import Callable
from datetime import datetime
from typing import Any

from mailtime.config import settings
from mailtime.features.email_tracking.domain.models import (
    Clock,
    CloseReason,
    DraftActivityRecord,
    Session,
    SessionState,
    TrackerStateSnapshot,
    utc_now,
)
from mailtime.features.email_tracking.repository.tracker_state_repository import (
    TrackerStateRepository,
)
from mailtime.features.email_tracking.services.checkpoint_manager import CheckpointManager
from mailtime.features.email_tracking.services.classification import ActivityClassifier
from mailtime.features.email_tracking.services.history_poller import HistoryPoller
from mailtime.features.email_tracking.services.session_tracker import SessionTracker
from mailtime.infrastructure.observability.logging import get_logger
from mailtime.models.domain.gmail_domain import HistoryPage, MessageMetadata
from mailtime.services.google_gmail_service import GoogleGmailService

logger = get_logger(__name__)

DraftListener = Callable[[dict[str, Any]], Any]


class EmailActivityTracker:
    """
    Background tracker that turns Gmail read activity into draft time entries.

    Each instance owns its state; several trackers (or test doubles) can run
    side by side as long as they use different tracker ids.
    """

    def __init__(
        self,
        gmail_service: GoogleGmailService,
        repository: TrackerStateRepository,
        classifier: ActivityClassifier | None = None,
        tracker_id: str | None = None,
        clock: Clock = utc_now,
        poll_interval_seconds: float | None = None,
        min_session_seconds: float | None = None,
        idle_timeout_minutes: float | None = None,
    ):
        self.tracker_id = tracker_id or settings.TRACKER_ID
        self.gmail_service = gmail_service
        self.repository = repository
        self.classifier = classifier or ActivityClassifier()
        self.clock = clock

        self.checkpoint_manager = CheckpointManager(gmail_service, persist=self.save, clock=clock)
        self.session_tracker = SessionTracker(
            self._fetch_metadata,
            clock=clock,
            min_session_seconds=min_session_seconds,
            idle_timeout_minutes=idle_timeout_minutes,
        )
        self.poller = HistoryPoller(
            gmail_service,
            self.checkpoint_manager,
            self.process_history,
            interval_seconds=poll_interval_seconds,
            tracker_id=self.tracker_id,
        )

        self.pending_drafts: dict[str, DraftActivityRecord] = {}
        self._listeners: list[DraftListener] = []
        self._loaded = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Restore cursor, sessions and unclaimed drafts. Call before start()."""
        snapshot = await self.repository.load(self.tracker_id)
        self._loaded = True
        if snapshot is None:
            logger.info("No stored tracker state", tracker_id=self.tracker_id)
            return

        self.checkpoint_manager.restore(snapshot.cursor, snapshot.cursor_updated_at)
        self.session_tracker.restore(
            [state.to_session() for state in snapshot.sessions],
            snapshot.processed_record_ids,
            snapshot.last_record_id,
        )
        self.pending_drafts = {
            data["id"]: DraftActivityRecord.from_dict(data) for data in snapshot.pending_drafts
        }

        logger.info(
            "Tracker state loaded",
            tracker_id=self.tracker_id,
            cursor=snapshot.cursor,
            open_sessions=len(self.session_tracker.active_sessions),
            pending_drafts=len(self.pending_drafts),
        )

    def snapshot(self) -> TrackerStateSnapshot:
        checkpoint = self.checkpoint_manager.checkpoint
        return TrackerStateSnapshot(
            cursor=checkpoint.cursor if checkpoint else None,
            cursor_updated_at=checkpoint.updated_at if checkpoint else None,
            sessions=[SessionState.from_session(s) for s in self.session_tracker.all_sessions()],
            processed_record_ids=self.session_tracker.processed_record_ids,
            last_record_id=self.session_tracker.last_record_id,
            pending_drafts=[draft.to_dict() for draft in self.pending_drafts.values()],
        )

    async def save(self) -> None:
        await self.repository.save(self.tracker_id, self.snapshot())

    async def start(self, credential: str | None) -> asyncio.Task:
        """
        Start polling with the given bearer token.

        The cursor is initialized on the first tick when none was persisted.
        """
        if not self._loaded:
            await self.load()

        self.poller.update_credential(credential)
        logger.info(
            "Starting email activity tracking",
            tracker_id=self.tracker_id,
            resumed_cursor=self.checkpoint_manager.cursor,
        )
        return self.poller.start()

    async def stop_tracking(self) -> list[DraftActivityRecord]:
        """Cancel polling and close every open session as a manual close."""
        self.poller.stop()
        return await self.close_active_sessions(CloseReason.MANUAL_CLOSE)

    def update_credential(self, credential: str | None) -> None:
        self.poller.update_credential(credential)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_history(self, history: HistoryPage) -> list[DraftActivityRecord]:
        """
        Feed one poll's worth of history through the session tracker.

        Transitions are handled strictly in provider order. State is saved
        after every transition so a crash loses at most the current one.
        """
        drafts = await self._complete_sessions(self.session_tracker.expire_idle_sessions())

        for transition in history.read_transitions():
            closed = await self.session_tracker.handle_read_transition(transition)
            drafts.extend(await self._complete_sessions(closed))
            await self.save()

        return drafts

    async def close_active_sessions(
        self, reason: CloseReason = CloseReason.MANUAL_CLOSE
    ) -> list[DraftActivityRecord]:
        closed = self.session_tracker.close_active_sessions(reason)
        drafts = await self._complete_sessions(closed)
        await self.save()
        return drafts

    async def _fetch_metadata(self, message_id: str) -> MessageMetadata:
        return await self.gmail_service.get_message_metadata(self.poller.credential, message_id)

    async def _complete_sessions(self, sessions: list[Session]) -> list[DraftActivityRecord]:
        drafts = []
        for session in sessions:
            draft = self.classifier.build_draft_record(session)
            if draft.id in self.pending_drafts:
                continue
            self.pending_drafts[draft.id] = draft
            drafts.append(draft)

        if drafts:
            await self.save()
            for draft in drafts:
                await self._emit(draft)
        return drafts

    # ------------------------------------------------------------------
    # Draft events
    # ------------------------------------------------------------------

    def add_draft_listener(self, listener: DraftListener) -> None:
        """Register a sync or async callable receiving each draft as a dict."""
        self._listeners.append(listener)

    def remove_draft_listener(self, listener: DraftListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _emit(self, draft: DraftActivityRecord) -> None:
        payload = draft.to_dict()
        logger.info(
            "Draft time entry created",
            tracker_id=self.tracker_id,
            draft_id=draft.id,
            duration_hours=round(draft.duration_hours, 3),
            client=draft.inferred_client,
            project=draft.inferred_project,
        )
        for listener in list(self._listeners):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Draft listener failed",
                    draft_id=draft.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def claim_drafts(self) -> list[DraftActivityRecord]:
        """Hand every unclaimed draft to the caller and drop it from the store."""
        drafts = list(self.pending_drafts.values())
        if drafts:
            self.pending_drafts.clear()
            await self.save()
        return drafts

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_sessions(self) -> list[Session]:
        return self.session_tracker.active_sessions

    def get_today_activity(self, now: datetime | None = None) -> dict:
        """Emails read today (in the classifier's timezone) and the minutes spent."""
        tz = self.classifier.tz
        today = (now or self.clock()).astimezone(tz).date()
        sessions = [
            session
            for session in self.session_tracker.completed_sessions
            if session.opened_at.astimezone(tz).date() == today
        ]
        return {
            "emails_read": len(sessions),
            "total_minutes": sum(s.estimated_duration_minutes or 0 for s in sessions),
            "sessions": sessions,
        }

    def get_status(self) -> dict:
        return {
            "tracker_id": self.tracker_id,
            "poller_state": self.poller.state.value,
            "is_running": self.poller.is_running,
            "cursor": self.checkpoint_manager.cursor,
            "checkpoint_resets": self.checkpoint_manager.reset_count,
            "open_sessions": len(self.session_tracker.active_sessions),
            "pending_drafts": len(self.pending_drafts),
            "poll_count": self.poller.poll_count,
            "last_error": self.poller.last_error,
        }


def create_email_activity_tracker(tracker_id: str | None = None) -> EmailActivityTracker:
    """Build a tracker backed by the Gmail API and Redis."""
    return EmailActivityTracker(
        gmail_service=GoogleGmailService(),
        repository=TrackerStateRepository(),
        tracker_id=tracker_id,
    )
