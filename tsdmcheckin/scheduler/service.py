from __future__ import annotations

import asyncio
from typing import Any, Iterable, Optional

from loguru import logger

from ..cache import DedupCache
from ..models import Account, TaskKind
from ..notifier import Notifier
from ..runner import AccountTaskLoop, CheckinLoop, ScanLoop, WorkLoop
from ..scheduling import Clock, SchedulePolicy, utcnow


def build_loops(
    accounts: Iterable[Account],
    *,
    remote: Any,
    notifier: Notifier,
    settings: Any,
    cache: DedupCache,
    stop_event: asyncio.Event,
    clock: Clock = utcnow,
) -> list[AccountTaskLoop]:
    """One loop per (account, task kind)."""
    policy = SchedulePolicy.from_settings(settings)
    common = dict(remote=remote, notifier=notifier, policy=policy, stop_event=stop_event, clock=clock)

    loops: list[AccountTaskLoop] = []
    for account in accounts:
        loops.append(
            CheckinLoop(
                account,
                burst_attempts=settings.checkin_burst_attempts,
                burst_stagger=settings.checkin_burst_stagger,
                max_retries=settings.checkin_max_retries,
                retry_interval=settings.checkin_retry_interval,
                **common,
            )
        )
        loops.append(WorkLoop(account, **common))
        loops.append(ScanLoop(account, cache=cache, max_concurrency=settings.scan_max_concurrency, **common))
    return loops


class SchedulerService:
    """Owns the stop signal and one asyncio task per account loop.

    A loop that dies with an unexpected error is logged and left dead; the
    others keep running. ``wait`` returns once every loop has returned.
    """

    def __init__(self, loops: Iterable[AccountTaskLoop], stop_event: Optional[asyncio.Event] = None) -> None:
        self._loops = list(loops)
        self._stop_event = stop_event or asyncio.Event()
        self._tasks: dict[str, asyncio.Task] = {}

        keys = [(loop.account.name, loop.kind) for loop in self._loops]
        if len(keys) != len(set(keys)):
            raise ValueError("Each (account, task kind) may only have one loop")
        for loop in self._loops:
            if loop.stop_event is not self._stop_event:
                raise ValueError(f"Loop {loop.name} does not share the scheduler stop signal")

    @classmethod
    def create(
        cls,
        accounts: Iterable[Account],
        *,
        remote: Any,
        notifier: Notifier,
        settings: Any,
        cache: Optional[DedupCache] = None,
        clock: Clock = utcnow,
        stop_event: Optional[asyncio.Event] = None,
    ) -> "SchedulerService":
        stop_event = stop_event or asyncio.Event()
        loops = build_loops(
            accounts,
            remote=remote,
            notifier=notifier,
            settings=settings,
            cache=cache or DedupCache(settings.freshness_window),
            stop_event=stop_event,
            clock=clock,
        )
        return cls(loops, stop_event)

    @property
    def stop_event(self) -> asyncio.Event:
        return self._stop_event

    @property
    def loops(self) -> list[AccountTaskLoop]:
        return list(self._loops)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    def loop_for(self, account_name: str, kind: TaskKind) -> AccountTaskLoop:
        for loop in self._loops:
            if loop.account.name == account_name and loop.kind is kind:
                return loop
        raise KeyError(f"No loop for {account_name}/{kind.value}")

    def start(self) -> None:
        if self._tasks:
            return
        for loop in self._loops:
            task = asyncio.create_task(self._run_loop(loop), name=loop.name)
            self._tasks[loop.name] = task
        accounts = len({loop.account.name for loop in self._loops})
        logger.info(f"Scheduler started: {len(self._tasks)} loops for {accounts} account(s)")

    async def _run_loop(self, loop: AccountTaskLoop) -> None:
        try:
            await loop.run()
        except asyncio.CancelledError:
            logger.warning(f"[{loop.name}] loop cancelled")
            raise
        except Exception as e:
            logger.opt(exception=e).error(f"[{loop.name}] loop crashed: {type(e).__name__}: {e}")

    def stop(self) -> None:
        if not self._stop_event.is_set():
            logger.info("Stop requested, waiting for loops to finish")
            self._stop_event.set()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for every loop to return. Stragglers are cancelled after ``timeout``.

        Returns True when all loops exited on their own.
        """
        tasks = list(self._tasks.values())
        if not tasks:
            return True

        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} loop(s) still busy after {timeout}s, cancelling")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            return False
        return True

    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        self.stop()
        clean = await self.wait(timeout)
        logger.info("Scheduler stopped")
        return clean
