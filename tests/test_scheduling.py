import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import START
from tsdmcheckin.models import TaskKind, TaskOutcome
from tsdmcheckin.scheduling import (
    SchedulePolicy,
    compute_next_trigger,
    current_reset_boundary,
    initial_trigger,
    next_reset_boundary,
    next_work_delay,
    sleep_or_stop,
)


# 00:00 Asia/Shanghai == 16:00 UTC of the previous day
NEXT_MIDNIGHT = datetime(2024, 3, 1, 16, 0, tzinfo=timezone.utc)
TODAY_MIDNIGHT = datetime(2024, 2, 29, 16, 0, tzinfo=timezone.utc)


def test_next_reset_boundary_is_next_local_midnight(policy: SchedulePolicy) -> None:
    assert next_reset_boundary(START, policy) == NEXT_MIDNIGHT


def test_next_reset_boundary_is_strictly_after_now(policy: SchedulePolicy) -> None:
    assert next_reset_boundary(NEXT_MIDNIGHT, policy) == NEXT_MIDNIGHT + timedelta(days=1)


def test_current_reset_boundary_is_not_after_now(policy: SchedulePolicy) -> None:
    assert current_reset_boundary(START, policy) == TODAY_MIDNIGHT
    assert current_reset_boundary(NEXT_MIDNIGHT, policy) == NEXT_MIDNIGHT


def test_custom_reset_time() -> None:
    policy = SchedulePolicy(timezone="UTC", reset_hour=3, reset_minute=30)
    assert next_reset_boundary(START, policy) == datetime(2024, 3, 1, 3, 30, tzinfo=timezone.utc)


def test_checkin_triggers(policy: SchedulePolicy) -> None:
    assert initial_trigger(TaskKind.CHECKIN, policy, START) == TODAY_MIDNIGHT
    for outcome in (TaskOutcome(succeeded=True), TaskOutcome.failure("boom")):
        assert compute_next_trigger(TaskKind.CHECKIN, outcome, policy, START) == NEXT_MIDNIGHT


def test_work_uses_reported_cooldown_exactly(policy: SchedulePolicy) -> None:
    outcome = TaskOutcome(succeeded=False, cooldown_reported=timedelta(hours=2, minutes=30))
    assert compute_next_trigger(TaskKind.WORK, outcome, policy, START) == START + timedelta(hours=2, minutes=30)


def test_work_delay_defaults(policy: SchedulePolicy) -> None:
    assert next_work_delay(TaskOutcome(succeeded=True), policy) == timedelta(hours=6)
    assert next_work_delay(TaskOutcome.failure("x"), policy) == timedelta(minutes=1)
    assert next_work_delay(TaskOutcome.failure("x", next_delay=timedelta(minutes=7)), policy) == timedelta(minutes=7)


def test_work_delay_never_zero(policy: SchedulePolicy) -> None:
    assert next_work_delay(TaskOutcome.failure("x", next_delay=timedelta(0)), policy) == timedelta(minutes=1)
    outcome = TaskOutcome(succeeded=False, cooldown_reported=timedelta(seconds=-5))
    assert next_work_delay(outcome, policy) == timedelta(minutes=1)


def test_work_initial_trigger(policy: SchedulePolicy) -> None:
    assert initial_trigger(TaskKind.WORK, policy, START) == START + timedelta(minutes=1)


def test_scan_interval(policy: SchedulePolicy) -> None:
    outcome = TaskOutcome.failure("listing failed")
    assert compute_next_trigger(TaskKind.SCAN, outcome, policy, START) == START + timedelta(minutes=5)
    assert initial_trigger(TaskKind.SCAN, policy, START) == START + timedelta(minutes=5)


@pytest.mark.asyncio
async def test_sleep_or_stop_times_out() -> None:
    assert await sleep_or_stop(asyncio.Event(), 0.01) is False


@pytest.mark.asyncio
async def test_sleep_or_stop_returns_promptly_on_stop() -> None:
    stop = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, stop.set)

    assert await asyncio.wait_for(sleep_or_stop(stop, 3600), timeout=2) is True


@pytest.mark.asyncio
async def test_sleep_or_stop_already_stopped() -> None:
    stop = asyncio.Event()
    stop.set()
    assert await sleep_or_stop(stop, 0) is True
