"""
Checkpoint manager for the Gmail history cursor.

The cursor (a Gmail historyId) is opaque: it is only ever replaced by a value
the provider hands back, either after a fully processed poll or after a
stale-cursor reset. Staleness is never predicted locally.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime

from mailtime.features.email_tracking.domain.models import Checkpoint, Clock, utc_now
from mailtime.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

PersistCallback = Callable[[], Awaitable[None]]


class CheckpointManager:
    """Owns the current Checkpoint and asks the state store to persist changes."""

    def __init__(self, gmail_service, persist: PersistCallback | None = None, clock: Clock = utc_now):
        self.gmail_service = gmail_service
        self._persist = persist
        self._clock = clock
        self.checkpoint: Checkpoint | None = None
        self.reset_count = 0

    @property
    def cursor(self) -> str | None:
        return self.checkpoint.cursor if self.checkpoint else None

    def restore(self, cursor: str | None, updated_at: datetime | None) -> None:
        """Re-hydrate from persisted state; does not persist again."""
        if cursor:
            self.checkpoint = Checkpoint(cursor=cursor, updated_at=updated_at or self._clock())

    async def initialize(self, credential: str | None) -> Checkpoint:
        """
        Fetch the provider's current feed position.

        Raises:
            AuthError: credential missing, invalid or expired
        """
        cursor = await self.gmail_service.get_current_history_id(credential)
        await self._store(cursor)
        logger.info("Checkpoint initialized", cursor=cursor)
        return self.checkpoint

    async def advance(self, new_cursor: str | None) -> bool:
        """
        Persist a new cursor. Call only after every record up to it was processed.

        Returns:
            bool: True if the stored cursor changed
        """
        if not new_cursor or new_cursor == self.cursor:
            return False

        previous = self.cursor
        await self._store(new_cursor)
        logger.debug("Checkpoint advanced", previous_cursor=previous, cursor=new_cursor)
        return True

    async def reset(self, credential: str | None) -> Checkpoint:
        """Replace a stale cursor with a fresh one. Changes in the gap are not replayed."""
        stale_cursor = self.cursor
        cursor = await self.gmail_service.get_current_history_id(credential)
        self.reset_count += 1
        await self._store(cursor)
        logger.warning(
            "Checkpoint reset after stale cursor",
            stale_cursor=stale_cursor,
            cursor=cursor,
            reset_count=self.reset_count,
        )
        return self.checkpoint

    async def _store(self, cursor: str) -> None:
        self.checkpoint = Checkpoint(cursor=cursor, updated_at=self._clock())
        if self._persist:
            await self._persist()
