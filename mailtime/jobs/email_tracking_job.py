"""
Email tracking job runner.

Runs one EmailActivityTracker inside the worker process until cancelled.
The bearer token comes from GMAIL_ACCESS_TOKEN; refreshing it is the OAuth
integration's job, so an expired token leaves the tracker paused.
"""

import asyncio

from mailtime.config import settings
from mailtime.features.email_tracking.services.tracker_service import (
    EmailActivityTracker,
    create_email_activity_tracker,
)
from mailtime.infrastructure.observability.logging import (
    bind_tracker_context,
    get_logger,
    setup_logging,
)
from mailtime.services.redis_client import redis_client

logger = get_logger(__name__)


def _log_draft(draft: dict) -> None:
    logger.info(
        "Draft time entry ready for review",
        draft_id=draft["id"],
        date=draft["date"],
        duration_hours=round(draft["duration_hours"], 3),
        billable=draft["billable"],
    )


async def run_email_tracking(tracker: EmailActivityTracker, credential: str | None) -> None:
    """Run the tracker until the surrounding task is cancelled."""
    tracker.add_draft_listener(_log_draft)
    poll_task = await tracker.start(credential)
    try:
        await poll_task
    except asyncio.CancelledError:
        logger.info("Email tracking job cancelled", tracker_id=tracker.tracker_id)
        raise
    finally:
        await tracker.stop_tracking()


async def start_email_tracking_scheduler() -> None:
    """Entry point for running the email tracking worker."""
    bind_tracker_context(tracker_id=settings.TRACKER_ID)
    if not settings.GMAIL_ACCESS_TOKEN:
        logger.warning("GMAIL_ACCESS_TOKEN not configured; tracker will stay paused")

    await redis_client.initialize()
    try:
        tracker = create_email_activity_tracker()
        await run_email_tracking(tracker, settings.GMAIL_ACCESS_TOKEN)
    finally:
        await redis_client.close()


def main() -> None:
    """Run the email tracking job directly, without the worker registry."""
    setup_logging(settings.LOG_LEVEL)
    try:
        asyncio.run(start_email_tracking_scheduler())
    except KeyboardInterrupt:
        logger.info("Email tracking job stopped by user")


if __name__ == "__main__":
    main()
