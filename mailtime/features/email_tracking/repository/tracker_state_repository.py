"""
Key-value repository for the tracker state blob.

One JSON record per tracker instance holds the cursor, open and recently
completed sessions, processed record ids and unclaimed drafts. The backend is
anything exposing the redis_store interface (get / set_with_ttl / delete).
"""

from pydantic import ValidationError

from mailtime.features.email_tracking.domain.models import TrackerStateSnapshot
from mailtime.infrastructure.observability.logging import get_logger
from mailtime.services import redis_store

logger = get_logger(__name__)

STATE_KEY_PREFIX = "email_tracking"


class TrackerStateRepository:
    """Persistence helpers for the email tracker state."""

    def __init__(self, backend=redis_store, ttl_s: int | None = None):
        self.backend = backend
        self.ttl_s = ttl_s

    def _key(self, tracker_id: str) -> str:
        return f"{STATE_KEY_PREFIX}:{tracker_id}"

    async def load(self, tracker_id: str) -> TrackerStateSnapshot | None:
        raw = await self.backend.get(self._key(tracker_id))
        if not raw:
            return None

        try:
            return TrackerStateSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.error(
                "Stored tracker state is unreadable, starting fresh",
                tracker_id=tracker_id,
                error=str(e),
            )
            return None

    async def save(self, tracker_id: str, snapshot: TrackerStateSnapshot) -> bool:
        success = await self.backend.set_with_ttl(
            self._key(tracker_id), snapshot.model_dump_json(), self.ttl_s
        )
        if not success:
            logger.warning("Failed to persist tracker state", tracker_id=tracker_id)
        return success

    async def clear(self, tracker_id: str) -> bool:
        return await self.backend.delete(self._key(tracker_id))
