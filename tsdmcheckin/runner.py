from __future__ import annotations

import abc
import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, ClassVar, Optional

from loguru import logger

from .cache import DedupCache
from .errors import TsdmError
from .models import Account, CacheEntry, ScanItem, TaskKind, TaskOutcome
from .notifier import Notifier
from .retry import first_success, run_with_retry
from .scheduling import (
    Clock,
    SchedulePolicy,
    compute_next_trigger,
    initial_trigger,
    utcnow,
    wait_until,
)


Waiter = Callable[[asyncio.Event, datetime], Awaitable[bool]]


class AccountTaskLoop(metaclass=abc.ABCMeta):
    """Runs one task kind for one account until ``stop_event`` is set.

    Each iteration waits for the next trigger, runs ``tick`` once and asks
    ``compute_next_trigger`` when to run again. The wait is the only place a
    loop blocks for long, and it returns as soon as the stop signal fires.
    """

    kind: ClassVar[TaskKind]

    def __init__(
        self,
        account: Account,
        *,
        remote: Any,
        notifier: Notifier,
        policy: SchedulePolicy,
        stop_event: asyncio.Event,
        clock: Clock = utcnow,
        waiter: Optional[Waiter] = None,
    ) -> None:
        self.account = account
        self.remote = remote
        self.notifier = notifier
        self.policy = policy
        self.stop_event = stop_event
        self.clock = clock
        self._waiter = waiter
        self.next_run_at: Optional[datetime] = None
        self.last_outcome: Optional[TaskOutcome] = None
        self.ticks = 0

    @property
    def name(self) -> str:
        return f"{self.account.name}/{self.kind.value}"

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    async def _wait(self, when: datetime) -> bool:
        if self._waiter is not None:
            return await self._waiter(self.stop_event, when)
        return await wait_until(self.stop_event, when, self.clock)

    def next_trigger(self, outcome: Optional[TaskOutcome], now: datetime) -> datetime:
        return compute_next_trigger(self.kind, outcome, self.policy, now)

    @abc.abstractmethod
    async def tick(self) -> TaskOutcome:
        raise NotImplementedError

    async def step(self) -> TaskOutcome:
        outcome = await self.tick()
        self.ticks += 1
        self.last_outcome = outcome
        self.next_run_at = self.next_trigger(outcome, self.clock())
        return outcome

    async def run(self) -> None:
        self.next_run_at = initial_trigger(self.kind, self.policy, self.clock())
        logger.info(f"[{self.name}] loop started, first run at {self.next_run_at:%Y-%m-%d %H:%M:%S %Z}")

        while not self.stopping:
            if await self._wait(self.next_run_at):
                break
            await self.step()
            if not self.stopping:
                logger.info(f"[{self.name}] next run at {self.next_run_at:%Y-%m-%d %H:%M:%S %Z}")

        logger.info(f"[{self.name}] loop stopped after {self.ticks} run(s)")

    async def _notify(self, text: str) -> bool:
        return await self.notifier.notify(text)


class CheckinLoop(AccountTaskLoop):
    kind = TaskKind.CHECKIN

    def __init__(
        self,
        account: Account,
        *,
        burst_attempts: int = 3,
        burst_stagger: float = 2.0,
        max_retries: int = 100,
        retry_interval: float = 900.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(account, **kwargs)
        self.burst_attempts = burst_attempts
        self.burst_stagger = burst_stagger
        self.max_retries = max_retries
        self.retry_interval = retry_interval

    async def _attempt(self) -> TaskOutcome:
        outcome = await self.remote.check_in(self.account)
        if not outcome.succeeded:
            logger.warning(f"[{self.account.name}] 签到错误: {outcome.message}")
        return outcome

    async def tick(self) -> TaskOutcome:
        outcome = await self._attempt()

        if not outcome.succeeded and outcome.retryable and not self.stopping and self.burst_attempts > 0:
            # 服务器繁忙时错开几次并发尝试，先成功者为准
            outcome = await first_success(self._attempt, self.burst_attempts, self.burst_stagger, self.stop_event)

        if (
            not outcome.succeeded
            and outcome.retryable
            and not outcome.cancelled
            and not self.stopping
            and self.max_retries > 0
        ):
            logger.warning(
                f"[{self.account.name}] check-in failed, retrying up to {self.max_retries} times "
                f"every {self.retry_interval:.0f}s"
            )
            outcome = await run_with_retry(
                self._attempt,
                self.max_retries,
                self.retry_interval,
                self.stop_event,
                label=f"[{self.account.name}] check-in ",
            )

        await self._report(outcome)
        return outcome

    async def _report(self, outcome: TaskOutcome) -> None:
        name = self.account.name
        if outcome.cancelled:
            logger.info(f"[{name}] check-in abandoned: shutting down")
        elif not outcome.succeeded:
            logger.error(f"[{name}] check-in gave up: {outcome.message}")
        elif outcome.already_done:
            logger.info(f"[{name}] {outcome.message}")
        else:
            logger.info(f"[{name}] 签到成功: {outcome.message}")
            await self._notify(f"[{name}] 签到结果: {outcome.message}")


class WorkLoop(AccountTaskLoop):
    kind = TaskKind.WORK

    async def tick(self) -> TaskOutcome:
        name = self.account.name
        outcome = await self.remote.work(self.account)
        balance = outcome.data.get("balance")
        if balance is not None:
            logger.info(f"[{name}] 天使币数量: {balance}")

        if outcome.cancelled:
            logger.info(f"[{name}] work abandoned: shutting down")
        elif outcome.cooldown_reported is not None:
            logger.info(f"[{name}] work on cooldown for {outcome.cooldown_reported}")
        elif outcome.succeeded:
            logger.info(f"[{name}] 打工成功")
            if balance is not None:
                await self._notify(f"[{name}] 打工成功，已拥有天使币数量: {balance}")
            else:
                await self._notify(f"[{name}] {outcome.message}")
        else:
            logger.warning(f"[{name}] 打工错误: {outcome.message}")
        return outcome


class ScanLoop(AccountTaskLoop):
    kind = TaskKind.SCAN

    def __init__(self, account: Account, *, cache: DedupCache, max_concurrency: int = 8, **kwargs: Any) -> None:
        super().__init__(account, **kwargs)
        self.cache = cache
        self.max_concurrency = max(1, int(max_concurrency))

    def cache_key(self, item_id: str) -> str:
        # 红包按账号领取，同一帖子对不同账号是不同的条目
        return f"{self.account.name}:{item_id}"

    async def tick(self) -> TaskOutcome:
        try:
            results = await self.scan_once()
        except TsdmError as e:
            logger.warning(f"[{self.account.name}] 获取帖子列表失败: {e}")
            return TaskOutcome.failure(str(e))

        rewards = sum(o.reward or 0 for _, o in results if not o.data.get("cached"))
        return TaskOutcome(
            succeeded=True,
            message=f"checked {len(results)} thread(s)",
            reward=rewards or None,
            data={"results": results},
        )

    async def scan_once(self) -> list[tuple[str, TaskOutcome]]:
        """One pass over the board; every per-item claim finishes before this returns."""
        await self.cache.evict_expired(self.clock())
        items = await self.remote.scan_candidates(self.account)
        logger.debug(f"[{self.account.name}] found {len(items)} thread(s)")

        semaphore = asyncio.Semaphore(self.max_concurrency)
        return list(await asyncio.gather(*(self._process_item(item, semaphore) for item in items)))

    async def _process_item(self, item: ScanItem, semaphore: asyncio.Semaphore) -> tuple[str, TaskOutcome]:
        key = self.cache_key(item.item_id)
        async with self.cache.locked(key):
            entry = await self.cache.lookup(key, self.clock())
            if entry is not None:
                return item.item_id, await self._replay(key, entry)

            async with semaphore:
                if self.stopping:
                    return item.item_id, TaskOutcome.cancelled_outcome()
                outcome = await self.remote.claim(self.account, item.item_id)

            if not outcome.succeeded:
                logger.warning(f"[{self.account.name}] 抢红包失败 ({item.title or item.item_id}): {outcome.message}")
                return item.item_id, outcome

            entry = CacheEntry(
                first_seen_at=self.clock(),
                angel_coins=outcome.reward,
                message=outcome.message,
            )
            if entry.is_reward:
                logger.info(f"[{self.account.name}] {outcome.message} ({item.title or item.item_id})")
                entry.notified = await self._notify(f"[{self.account.name}] {outcome.message}")
            await self.cache.store(key, entry)
            return item.item_id, outcome

    async def _replay(self, key: str, entry: CacheEntry) -> TaskOutcome:
        if entry.is_reward and not entry.notified:
            if await self._notify(f"[{self.account.name}] {entry.message}"):
                await self.cache.mark_notified(key)
        return TaskOutcome(
            succeeded=True,
            message=entry.message,
            reward=entry.angel_coins,
            data={"cached": True},
        )
