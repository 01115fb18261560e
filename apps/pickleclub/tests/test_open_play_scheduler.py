"""
Tests for the open play enforcement scheduler.

The engine is an AsyncMock except where the deadline rollback is checked
end to end against the in-memory store.
"""

import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from pickleclub.services.open_play_engine import OpenPlayEngine
from pickleclub.services.open_play_scheduler import OpenPlayEnforcementScheduler
from in_memory_store import InMemoryCapacityStore


def _mock_engine(facility_ids=()):
    engine = AsyncMock(spec=OpenPlayEngine)
    engine.list_facilities_to_evaluate.return_value = list(facility_ids)
    return engine


@pytest.mark.parametrize(
    "kwargs", [{"interval_seconds": 0}, {"evaluation_timeout_seconds": -1}]
)
def test_rejects_non_positive_durations(kwargs):
    """Test that non-positive interval or deadline is rejected."""
    with pytest.raises(ValueError):
        OpenPlayEnforcementScheduler(_mock_engine(), **kwargs)


@pytest.mark.asyncio
async def test_run_once_evaluates_every_facility_with_shared_time(now):
    """Test that one run evaluates every facility at the same time."""
    engine = _mock_engine([1, 2, 3])
    scheduler = OpenPlayEnforcementScheduler(engine)

    failed = await scheduler.run_once(now)

    assert failed == []
    engine.list_facilities_to_evaluate.assert_awaited_once_with(now)
    assert [call.args for call in engine.evaluate_sessions_approaching_cutoff.await_args_list] == [
        (1, now),
        (2, now),
        (3, now),
    ]


@pytest.mark.asyncio
async def test_facility_failure_does_not_stop_other_facilities(now):
    """Test that a failing facility does not stop the others."""
    engine = _mock_engine([1, 2, 3])

    async def evaluate(facility_id, comparison_time):
        if facility_id == 2:
            raise RuntimeError("database unavailable")

    engine.evaluate_sessions_approaching_cutoff.side_effect = evaluate
    scheduler = OpenPlayEnforcementScheduler(engine)

    failed = await scheduler.run_once(now)

    assert failed == [2]
    assert engine.evaluate_sessions_approaching_cutoff.await_count == 3


@pytest.mark.asyncio
async def test_facility_exceeding_deadline_is_abandoned(now):
    """Test that a facility past its deadline is abandoned."""
    engine = _mock_engine([1, 2])

    async def evaluate(facility_id, comparison_time):
        if facility_id == 1:
            await asyncio.sleep(5)

    engine.evaluate_sessions_approaching_cutoff.side_effect = evaluate
    scheduler = OpenPlayEnforcementScheduler(engine, evaluation_timeout_seconds=0.05)

    failed = await scheduler.run_once(now)

    assert failed == [1]
    assert engine.evaluate_sessions_approaching_cutoff.await_count == 2


class _SlowNotificationStore(InMemoryCapacityStore):
    async def create_staff_notification(self, *args, **kwargs):
        notification_id = await super().create_staff_notification(*args, **kwargs)
        await asyncio.sleep(5)
        return notification_id


@pytest.mark.asyncio
async def test_deadline_rolls_back_facility_transaction(now):
    """Test that a deadline rolls back the facility transaction."""
    store = _SlowNotificationStore()
    rule = store.add_rule()
    court = store.add_court()
    session = store.add_session(rule, now + timedelta(minutes=30), signups=1, court_ids=[court])
    engine = OpenPlayEngine(transaction=store.transaction, clock=lambda: now)
    scheduler = OpenPlayEnforcementScheduler(engine, evaluation_timeout_seconds=0.05)

    failed = await scheduler.run_once(now)

    assert failed == [1]
    assert store.transactions_rolled_back == 1
    assert store.sessions[session.id].status == "scheduled"
    assert store.court_ids_for(session) == [court]
    assert store.audit_log == []
    assert store.notifications == []


@pytest.mark.asyncio
async def test_ticks_never_overlap(now):
    """Test that concurrent runs never overlap."""
    engine = _mock_engine([1])
    active = 0
    max_active = 0

    async def evaluate(facility_id, comparison_time):
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.02)
        active -= 1

    engine.evaluate_sessions_approaching_cutoff.side_effect = evaluate
    scheduler = OpenPlayEnforcementScheduler(engine)

    await asyncio.gather(scheduler.run_once(now), scheduler.run_once(now), scheduler.run_once(now))

    assert max_active == 1
    assert engine.evaluate_sessions_approaching_cutoff.await_count == 3


@pytest.mark.asyncio
async def test_start_and_stop_background_worker():
    """Test starting and stopping the background worker."""
    engine = _mock_engine([])
    scheduler = OpenPlayEnforcementScheduler(engine, interval_seconds=0.01)

    scheduler.start()
    assert scheduler.is_running
    await asyncio.sleep(0.05)
    scheduler.stop()
    await asyncio.sleep(0.01)

    assert not scheduler.is_running
    assert engine.list_facilities_to_evaluate.await_count >= 2


@pytest.mark.asyncio
async def test_worker_keeps_polling_after_failed_tick():
    """Test that the worker keeps polling after a failed run."""
    engine = _mock_engine()
    calls = 0

    async def list_facilities(comparison_time):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("boom")
        return []

    engine.list_facilities_to_evaluate.side_effect = list_facilities
    scheduler = OpenPlayEnforcementScheduler(engine, interval_seconds=0.01)

    scheduler.start()
    await asyncio.sleep(0.05)
    scheduler.stop()
    await asyncio.sleep(0.01)

    assert engine.list_facilities_to_evaluate.await_count >= 2
