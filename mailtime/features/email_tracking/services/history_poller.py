"""
History poller for Gmail incremental changes.

Runs as an asyncio task: each tick fetches everything since the stored
cursor, hands it to the tracker, and only then advances the checkpoint. A
tick always finishes before the next sleep starts, so two polls never race
on the same cursor.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from enum import Enum

from mailtime.config import settings
from mailtime.features.email_tracking.errors import AuthError, GmailHistoryError, StaleCursorError
from mailtime.features.email_tracking.services.checkpoint_manager import CheckpointManager
from mailtime.infrastructure.observability.logging import get_logger, log_poll_result
from mailtime.models.domain.gmail_domain import HistoryPage

logger = get_logger(__name__)

HistoryHandler = Callable[[HistoryPage], Awaitable[None]]


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    STALE = "stale"
    PAUSED = "paused"  # waiting for a fresh credential
    STOPPED = "stopped"


class HistoryPoller:
    """
    Periodic Gmail history fetcher.

    Fetch and auth failures are logged here and never raised to the caller;
    the cursor simply stays where it was.
    """

    def __init__(
        self,
        gmail_service,
        checkpoint_manager: CheckpointManager,
        handle_history: HistoryHandler,
        credential: str | None = None,
        interval_seconds: float | None = None,
        tracker_id: str = "default",
    ):
        self.gmail_service = gmail_service
        self.checkpoint_manager = checkpoint_manager
        self.handle_history = handle_history
        self.credential = credential
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else settings.get_tracker_config()["poll_interval_seconds"]
        )
        self.tracker_id = tracker_id
        self.state = PollerState.IDLE
        self.last_error: str | None = None
        self.poll_count = 0
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def update_credential(self, credential: str | None) -> None:
        """Swap in a new bearer token; resumes polling if it was paused on auth."""
        self.credential = credential
        if self.state == PollerState.PAUSED:
            self.state = PollerState.IDLE
            logger.info("Polling resumed with new credential", tracker_id=self.tracker_id)

    async def poll_once(self) -> dict:
        """
        Run a single poll tick.

        Returns:
            Dict: tick outcome (status, record_count, cursor)
        """
        if self.state == PollerState.PAUSED:
            return {"skipped": True, "reason": "paused"}
        if self.state == PollerState.POLLING:
            logger.warning("Poll already in progress, skipping tick", tracker_id=self.tracker_id)
            return {"skipped": True, "reason": "already_running"}

        start_time = time.time()
        record_count = 0
        status = "ok"
        error: str | None = None

        try:
            if self.state == PollerState.STALE:
                # Previous reset attempt failed; try again before fetching
                await self.checkpoint_manager.reset(self.credential)
                self.state = PollerState.IDLE
            elif self.checkpoint_manager.cursor is None:
                await self.checkpoint_manager.initialize(self.credential)

            self.state = PollerState.POLLING
            history = await self.gmail_service.list_history(
                self.credential, self.checkpoint_manager.cursor
            )
            record_count = len(history.records)

            await self.handle_history(history)
            await self.checkpoint_manager.advance(history.history_id)

            self.state = PollerState.IDLE
            self.last_error = None

        except StaleCursorError as e:
            status, error = "stale", str(e)
            await self._recover_stale_cursor()

        except AuthError as e:
            status, error = "auth_error", str(e)
            self.state = PollerState.PAUSED
            logger.error(
                "Gmail credential rejected, polling paused",
                tracker_id=self.tracker_id,
                error=str(e),
            )

        except GmailHistoryError as e:
            status, error = "fetch_error", str(e)
            if self.state != PollerState.STALE:
                self.state = PollerState.IDLE
            logger.warning(
                "History fetch failed, retrying next tick",
                tracker_id=self.tracker_id,
                error=str(e),
                error_type=type(e).__name__,
            )

        finally:
            if self.state == PollerState.POLLING:
                # Unexpected exception escaped the handlers above
                self.state = PollerState.IDLE
                status = "error"
            self.poll_count += 1
            self.last_error = error
            log_poll_result(
                self.tracker_id,
                status,
                record_count,
                round((time.time() - start_time) * 1000, 2),
                error,
            )

        return {
            "status": status,
            "record_count": record_count,
            "cursor": self.checkpoint_manager.cursor,
        }

    async def _recover_stale_cursor(self) -> None:
        self.state = PollerState.STALE
        try:
            await self.checkpoint_manager.reset(self.credential)
            self.state = PollerState.IDLE
        except AuthError as e:
            self.state = PollerState.PAUSED
            logger.error("Checkpoint reset rejected credential", tracker_id=self.tracker_id, error=str(e))
        except GmailHistoryError as e:
            # Stay STALE; the next tick retries the reset
            logger.warning("Checkpoint reset failed", tracker_id=self.tracker_id, error=str(e))

    async def _run_loop(self) -> None:
        logger.info(
            "History poller started",
            tracker_id=self.tracker_id,
            interval_seconds=self.interval_seconds,
        )
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(
                    "Unexpected error in poll tick",
                    tracker_id=self.tracker_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        """Schedule the poll loop on the running event loop. First tick runs immediately."""
        if self.is_running:
            return self._task
        if self.state == PollerState.STOPPED:
            self.state = PollerState.IDLE
        self._task = asyncio.create_task(self._run_loop(), name=f"email-history-poller:{self.tracker_id}")
        return self._task

    def stop(self) -> None:
        """Cancel the poll task. Does not wait for an in-flight fetch."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.state = PollerState.STOPPED
        logger.info("History poller stopped", tracker_id=self.tracker_id)
