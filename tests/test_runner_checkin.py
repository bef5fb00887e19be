import asyncio
from datetime import datetime, timezone

import pytest

from conftest import FakeRemote, RecordingNotifier, StepWaiter
from tsdmcheckin.models import TaskOutcome
from tsdmcheckin.runner import CheckinLoop


NEXT_MIDNIGHT = datetime(2024, 3, 1, 16, 0, tzinfo=timezone.utc)
TODAY_MIDNIGHT = datetime(2024, 2, 29, 16, 0, tzinfo=timezone.utc)

SIGNED = TaskOutcome(succeeded=True, message="签到成功，获得天使币 10", reward=10)
ALREADY = TaskOutcome(succeeded=True, message="您今天已经签到", already_done=True)


def make_loop(account, remote, notifier, policy, clock, *, stop_event=None, waiter=None, **kwargs) -> CheckinLoop:
    kwargs.setdefault("burst_attempts", 3)
    kwargs.setdefault("burst_stagger", 0)
    kwargs.setdefault("max_retries", 2)
    kwargs.setdefault("retry_interval", 0)
    return CheckinLoop(
        account,
        remote=remote,
        notifier=notifier,
        policy=policy,
        stop_event=stop_event or asyncio.Event(),
        clock=clock,
        waiter=waiter,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_already_signed_is_silent_and_waits_for_next_boundary(account, notifier, policy, clock) -> None:
    remote = FakeRemote(checkin=[ALREADY])
    loop = make_loop(account, remote, notifier, policy, clock)

    outcome = await loop.step()

    assert outcome.already_done
    assert notifier.sent == []
    assert loop.next_run_at == NEXT_MIDNIGHT


@pytest.mark.asyncio
async def test_burst_success_notifies_once_without_retry_phase(account, notifier, policy, clock) -> None:
    remote = FakeRemote(checkin=[TaskOutcome.failure("timeout"), TaskOutcome.failure("timeout"), SIGNED])
    loop = make_loop(account, remote, notifier, policy, clock, burst_attempts=2)

    outcome = await loop.step()

    assert outcome.succeeded
    assert remote.checkin_calls == 3
    assert notifier.sent == ["[alice] 签到结果: 签到成功，获得天使币 10"]


@pytest.mark.asyncio
async def test_failed_burst_falls_back_to_retries(account, notifier, policy, clock) -> None:
    failures = [TaskOutcome.failure("HTTP 502") for _ in range(5)]
    remote = FakeRemote(checkin=[*failures, SIGNED])
    loop = make_loop(account, remote, notifier, policy, clock)

    outcome = await loop.step()

    assert outcome.succeeded
    # first call + 3 burst calls + 2 retries
    assert remote.checkin_calls == 6
    assert len(notifier.sent) == 1
    assert loop.next_run_at == NEXT_MIDNIGHT


@pytest.mark.asyncio
async def test_gives_up_after_retries_without_notifying(account, notifier, policy, clock) -> None:
    remote = FakeRemote(checkin=[TaskOutcome.failure("HTTP 502") for _ in range(10)])
    loop = make_loop(account, remote, notifier, policy, clock)

    outcome = await loop.step()

    assert not outcome.succeeded
    assert remote.checkin_calls == 6
    assert notifier.sent == []
    assert loop.next_run_at == NEXT_MIDNIGHT


@pytest.mark.asyncio
async def test_no_retry_phase_once_stopping(account, notifier, policy, clock) -> None:
    stop = asyncio.Event()
    stop.set()
    remote = FakeRemote(checkin=[TaskOutcome.failure("HTTP 502") for _ in range(10)])
    loop = make_loop(account, remote, notifier, policy, clock, stop_event=stop, burst_attempts=1)

    outcome = await loop.step()

    assert not outcome.succeeded
    assert remote.checkin_calls == 1


@pytest.mark.asyncio
async def test_run_checks_in_today_then_at_next_boundary(account, notifier, policy, clock) -> None:
    remote = FakeRemote(checkin=[SIGNED, ALREADY])
    stop = asyncio.Event()
    waiter = StepWaiter(clock, stop_after=2)
    loop = make_loop(account, remote, notifier, policy, clock, stop_event=stop, waiter=waiter, burst_attempts=1)

    await loop.run()

    assert waiter.waits == [TODAY_MIDNIGHT, NEXT_MIDNIGHT]
    assert remote.checkin_calls == 2
    assert loop.ticks == 2
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_run_returns_immediately_when_stopped(account, notifier, policy, clock) -> None:
    stop = asyncio.Event()
    stop.set()
    remote = FakeRemote(checkin=[SIGNED])
    loop = make_loop(account, remote, notifier, policy, clock, stop_event=stop)

    await asyncio.wait_for(loop.run(), timeout=2)

    assert remote.checkin_calls == 0


@pytest.mark.asyncio
async def test_push_failure_does_not_fail_checkin(account, policy, clock) -> None:
    notifier = RecordingNotifier(fail=True)
    remote = FakeRemote(checkin=[SIGNED])
    loop = make_loop(account, remote, notifier, policy, clock)

    outcome = await loop.step()

    assert outcome.succeeded
    assert notifier.attempts == 1


class SlowRemote(FakeRemote):
    async def check_in(self, account):
        self.checkin_calls += 1
        await asyncio.sleep(0.3)
        return SIGNED


@pytest.mark.asyncio
async def test_slow_first_success_sends_a_single_request(account, notifier, policy, clock) -> None:
    remote = SlowRemote()
    loop = make_loop(account, remote, notifier, policy, clock, burst_attempts=3, burst_stagger=0.1)

    outcome = await loop.step()

    assert outcome.succeeded
    assert remote.checkin_calls == 1
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_expired_session_skips_burst_and_retries(account, notifier, policy, clock) -> None:
    expired = TaskOutcome.failure("unexpected response: formhash not found", retryable=False)
    remote = FakeRemote(checkin=[expired, SIGNED])
    loop = make_loop(account, remote, notifier, policy, clock)

    outcome = await loop.step()

    assert not outcome.succeeded
    assert remote.checkin_calls == 1
    assert notifier.sent == []
    assert loop.next_run_at == NEXT_MIDNIGHT
