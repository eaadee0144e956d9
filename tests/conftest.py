from datetime import UTC, datetime

import pytest

from mailtime.features.email_tracking.repository.tracker_state_repository import (
    TrackerStateRepository,
)
from mailtime.features.email_tracking.services.classification import ActivityClassifier
from mailtime.features.email_tracking.services.tracker_service import EmailActivityTracker

from helpers import FakeClock, FakeGmailService


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.set_calls = 0

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        self.set_calls += 1
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 10, 0, 0, tzinfo=UTC))


@pytest.fixture
def gmail():
    return FakeGmailService()


@pytest.fixture
def classifier():
    return ActivityClassifier(
        billable_domains=["acme.com", "client.com"],
    )


@pytest.fixture
def make_tracker(gmail, fake_redis, clock, classifier):
    def _make(tracker_id: str = "test-tracker") -> EmailActivityTracker:
        return EmailActivityTracker(
            gmail_service=gmail,
            repository=TrackerStateRepository(backend=fake_redis),
            classifier=classifier,
            tracker_id=tracker_id,
            clock=clock,
            poll_interval_seconds=0.01,
            min_session_seconds=30,
            idle_timeout_minutes=30,
        )

    return _make


@pytest.fixture
def tracker(make_tracker):
    return make_tracker()
