from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.triggers.cron import CronTrigger

from .models import TaskKind, TaskOutcome


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class SchedulePolicy:
    timezone: str = "Asia/Shanghai"
    reset_hour: int = 0
    reset_minute: int = 0
    work_initial_delay: timedelta = timedelta(minutes=1)
    work_min_interval: timedelta = timedelta(minutes=1)
    work_success_cooldown: timedelta = timedelta(hours=6)
    work_failure_interval: timedelta = timedelta(minutes=1)
    scan_interval: timedelta = timedelta(minutes=5)

    @classmethod
    def from_settings(cls, settings) -> "SchedulePolicy":
        return cls(
            timezone=settings.tz,
            reset_hour=settings.checkin_reset_hour,
            reset_minute=settings.checkin_reset_minute,
            work_initial_delay=timedelta(seconds=settings.work_initial_delay),
            work_min_interval=timedelta(seconds=settings.work_min_interval),
            work_success_cooldown=timedelta(seconds=settings.work_success_cooldown),
            work_failure_interval=timedelta(seconds=settings.work_failure_interval),
            scan_interval=timedelta(seconds=settings.scan_interval),
        )

    def reset_trigger(self) -> CronTrigger:
        return CronTrigger(hour=self.reset_hour, minute=self.reset_minute, timezone=self.timezone)


def next_reset_boundary(now: datetime, policy: SchedulePolicy) -> datetime:
    """First daily reset boundary strictly after ``now``."""
    # previous_fire_time=now makes the trigger skip a boundary equal to now
    return policy.reset_trigger().get_next_fire_time(now, now)


def current_reset_boundary(now: datetime, policy: SchedulePolicy) -> datetime:
    """Most recent reset boundary at or before ``now`` (today's, once it has passed)."""
    return next_reset_boundary(now - timedelta(days=1), policy)


def next_work_delay(outcome: TaskOutcome, policy: SchedulePolicy) -> timedelta:
    if outcome.cooldown_reported is not None:
        delay = outcome.cooldown_reported
    elif outcome.next_delay is not None:
        delay = outcome.next_delay
    elif outcome.succeeded:
        delay = policy.work_success_cooldown
    else:
        delay = policy.work_failure_interval

    # 避免空转
    if delay <= timedelta(0):
        delay = policy.work_min_interval
    return delay


def compute_next_trigger(
    kind: TaskKind,
    outcome: Optional[TaskOutcome],
    policy: SchedulePolicy,
    now: datetime,
) -> datetime:
    """Decide when the loop for ``kind`` runs next, given the last outcome."""
    if kind is TaskKind.CHECKIN:
        return next_reset_boundary(now, policy)
    if kind is TaskKind.WORK:
        if outcome is None:
            return now + max(policy.work_initial_delay, timedelta(0))
        return now + next_work_delay(outcome, policy)
    if kind is TaskKind.SCAN:
        return now + policy.scan_interval
    raise ValueError(f"Unknown task kind: {kind!r}")


def initial_trigger(kind: TaskKind, policy: SchedulePolicy, now: datetime) -> datetime:
    if kind is TaskKind.CHECKIN:
        return current_reset_boundary(now, policy)
    return compute_next_trigger(kind, None, policy, now)


async def sleep_or_stop(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep for ``seconds`` unless ``stop_event`` fires first. True means stop."""
    if stop_event.is_set():
        return True
    if seconds <= 0:
        return False
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False


async def wait_until(stop_event: asyncio.Event, when: datetime, clock: Clock = utcnow) -> bool:
    return await sleep_or_stop(stop_event, (when - clock()).total_seconds())
