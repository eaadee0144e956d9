import asyncio
import contextlib
import json
from datetime import UTC, datetime

import pytest

from mailtime.features.email_tracking.domain.models import CloseReason
from mailtime.features.email_tracking.errors import StaleCursorError

from helpers import history_page, read_record


@pytest.mark.asyncio
async def test_second_open_emits_draft_for_first(tracker, gmail, clock):
    gmail.metadata["m1"] = {"subject": "CRM migration plan", "from": "Ann <ann@acme.com>"}
    events = []
    tracker.add_draft_listener(events.append)
    tracker.checkpoint_manager.restore("100", None)

    await tracker.process_history(history_page(read_record("101", "m1")))
    clock.set(10, 0, 40)
    drafts = await tracker.process_history(history_page(read_record("102", "m2")))

    assert len(drafts) == 1
    draft = drafts[0]
    assert draft.message_id == "m1"
    assert draft.duration_hours == pytest.approx(0.0111, abs=0.0001)
    assert draft.close_reason == CloseReason.OPENED_ANOTHER.value
    assert draft.inferred_client == "Acme Corp"
    assert draft.billable is True
    assert events == [draft.to_dict()]
    assert [s.message_id for s in tracker.get_active_sessions()] == ["m2"]


@pytest.mark.asyncio
async def test_short_read_produces_no_draft(tracker, clock):
    events = []
    tracker.add_draft_listener(events.append)

    await tracker.process_history(history_page(read_record("1", "m1")))
    clock.advance(12)
    await tracker.process_history(history_page(read_record("2", "m2")))

    assert events == []
    assert tracker.pending_drafts == {}


@pytest.mark.asyncio
async def test_async_listeners_are_awaited_and_failures_isolated(tracker, clock):
    received = []

    async def async_listener(payload):
        received.append(payload["message_id"])

    def broken_listener(payload):
        raise RuntimeError("ui gone")

    tracker.add_draft_listener(broken_listener)
    tracker.add_draft_listener(async_listener)

    await tracker.process_history(history_page(read_record("1", "m1")))
    clock.advance(60)
    await tracker.process_history(history_page(read_record("2", "m2")))

    assert received == ["m1"]


@pytest.mark.asyncio
async def test_replayed_batch_emits_no_duplicate_drafts(tracker, clock):
    events = []
    tracker.add_draft_listener(events.append)
    batch = history_page(read_record("1", "m1"), read_record("2", "m2"), read_record("3", "m3"))

    await tracker.process_history(batch)
    clock.advance(300)
    await tracker.process_history(batch)

    assert events == []
    assert [s.message_id for s in tracker.get_active_sessions()] == ["m3"]

    state_after_first = tracker.snapshot().model_dump()
    await tracker.process_history(batch)
    assert tracker.snapshot().model_dump() == state_after_first


@pytest.mark.asyncio
async def test_state_survives_restart(make_tracker, fake_redis, clock):
    first = make_tracker()
    first.checkpoint_manager.restore("100", None)
    await first.process_history(history_page(read_record("1", "m1")))
    clock.advance(90)
    await first.process_history(history_page(read_record("2", "m2")))
    await first.checkpoint_manager.advance("200")

    stored = json.loads(fake_redis.store["email_tracking:test-tracker"])
    assert stored["cursor"] == "200"
    assert isinstance(stored["sessions"][0]["opened_at"], str)
    assert stored["last_record_id"] == "2"

    second = make_tracker()
    await second.load()

    assert second.checkpoint_manager.cursor == "200"
    open_session = second.get_active_sessions()[0]
    assert open_session.message_id == "m2"
    assert open_session.opened_at == datetime(2026, 3, 2, 10, 1, 30, tzinfo=UTC)
    assert list(second.pending_drafts) == list(first.pending_drafts)

    # The reloaded tracker still treats the old records as processed
    await second.process_history(history_page(read_record("1", "m1")))
    assert second.get_active_sessions()[0].message_id == "m2"


@pytest.mark.asyncio
async def test_stop_tracking_closes_sessions_manually(tracker, gmail, clock):
    gmail.history_responses.append(history_page(read_record("1", "m1"), history_id="1001"))

    task = await tracker.start("token")
    await asyncio.sleep(0.02)
    clock.advance(120)

    drafts = await tracker.stop_tracking()
    with contextlib.suppress(asyncio.CancelledError):
        await task

    assert [d.close_reason for d in drafts] == [CloseReason.MANUAL_CLOSE.value]
    assert tracker.get_active_sessions() == []
    assert tracker.get_status()["is_running"] is False
    assert tracker.checkpoint_manager.cursor == "1001"


@pytest.mark.asyncio
async def test_stale_cursor_during_tracking_resets_checkpoint(tracker, gmail):
    tracker.checkpoint_manager.restore("5", None)
    gmail.history_responses.append(StaleCursorError("too old"))
    gmail.current_history_id = "7777"
    tracker.update_credential("token")

    await tracker.poller.poll_once()

    assert tracker.checkpoint_manager.reset_count == 1
    assert tracker.checkpoint_manager.cursor == "7777"
    assert tracker.get_active_sessions() == []
    assert tracker.pending_drafts == {}


@pytest.mark.asyncio
async def test_idle_session_expires_on_next_poll(tracker, clock):
    await tracker.process_history(history_page(read_record("1", "m1")))
    clock.advance(2 * 60 * 60)

    drafts = await tracker.process_history(history_page())

    assert drafts[0].close_reason == CloseReason.TIMEOUT.value
    assert drafts[0].duration_hours == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_claim_drafts_empties_store(tracker, fake_redis, clock):
    await tracker.process_history(history_page(read_record("1", "m1")))
    clock.advance(60)
    await tracker.close_active_sessions()

    claimed = await tracker.claim_drafts()

    assert [d.message_id for d in claimed] == ["m1"]
    assert tracker.pending_drafts == {}
    stored = json.loads(fake_redis.store["email_tracking:test-tracker"])
    assert stored["pending_drafts"] == []


@pytest.mark.asyncio
async def test_today_activity_counts_completed_sessions(tracker, clock):
    await tracker.process_history(history_page(read_record("1", "m1")))
    clock.advance(120)
    await tracker.process_history(history_page(read_record("2", "m2")))
    clock.advance(60)
    await tracker.process_history(history_page(read_record("3", "m3")))

    activity = tracker.get_today_activity()

    assert activity["emails_read"] == 2
    assert activity["total_minutes"] == pytest.approx(3)


@pytest.mark.asyncio
async def test_corrupt_state_starts_fresh(tracker, fake_redis):
    fake_redis.store["email_tracking:test-tracker"] = "{not json"

    await tracker.load()

    assert tracker.checkpoint_manager.cursor is None
    assert tracker.get_active_sessions() == []
