"""Shared test fixtures and dummy collaborators."""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import pytest

from tsdmcheckin.models import Account, ScanItem, TaskOutcome
from tsdmcheckin.notifier import Notifier
from tsdmcheckin.scheduling import SchedulePolicy


# 2024-03-01 10:00 Asia/Shanghai
START = datetime(2024, 3, 1, 2, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[str] = []
        self.attempts = 0

    async def send(self, text: str) -> None:
        self.attempts += 1
        if self.fail:
            raise RuntimeError("push down")
        self.sent.append(text)


class FakeRemote:
    """Scripted remote actions. Each call pops the next queued outcome."""

    def __init__(
        self,
        *,
        checkin: Iterable[TaskOutcome] = (),
        work: Iterable[TaskOutcome] = (),
        candidates: Iterable[object] = (),
        claims: Optional[dict[str, TaskOutcome]] = None,
    ) -> None:
        self.checkin_outcomes = deque(checkin)
        self.work_outcomes = deque(work)
        self.candidate_results = deque(candidates)
        self.claim_outcomes = claims or {}
        self.checkin_calls = 0
        self.work_calls = 0
        self.scan_calls = 0
        self.claim_calls: list[str] = []

    async def check_in(self, account: Account) -> TaskOutcome:
        self.checkin_calls += 1
        if not self.checkin_outcomes:
            return TaskOutcome.failure("no scripted outcome")
        return self.checkin_outcomes.popleft()

    async def work(self, account: Account) -> TaskOutcome:
        self.work_calls += 1
        if not self.work_outcomes:
            return TaskOutcome.failure("no scripted outcome")
        return self.work_outcomes.popleft()

    async def scan_candidates(self, account: Account) -> list[ScanItem]:
        self.scan_calls += 1
        result = self.candidate_results.popleft() if self.candidate_results else []
        if isinstance(result, Exception):
            raise result
        return [ScanItem(item_id=i) if isinstance(i, str) else i for i in result]

    async def claim(self, account: Account, item_id: str) -> TaskOutcome:
        self.claim_calls.append(item_id)
        await asyncio.sleep(0)
        return self.claim_outcomes.get(item_id, TaskOutcome(succeeded=True, message="这个主题并没有红包", reward=0))


class StepWaiter:
    """Jumps the fake clock to each trigger instead of sleeping.

    Sets the stop signal (and reports stop) on wait number ``stop_after + 1``.
    """

    def __init__(self, clock: FakeClock, stop_after: int) -> None:
        self.clock = clock
        self.stop_after = stop_after
        self.waits: list[datetime] = []

    async def __call__(self, stop_event: asyncio.Event, when: datetime) -> bool:
        if stop_event.is_set():
            return True
        if len(self.waits) >= self.stop_after:
            stop_event.set()
            return True
        self.waits.append(when)
        if when > self.clock.now:
            self.clock.now = when
        return False


@pytest.fixture
def account() -> Account:
    return Account(name="alice", cookie="auth=secret")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> SchedulePolicy:
    return SchedulePolicy()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
