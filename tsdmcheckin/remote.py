from __future__ import annotations

import asyncio
from typing import Any, Optional

from .client import TsdmClient
from .errors import DomainError, TransientRemoteError, TsdmError
from .models import Account, ScanItem, TaskKind, TaskOutcome
from .tasks import ScanTask, TaskContext, get_task_handler


def outcome_from_error(exc: Exception) -> TaskOutcome:
    if isinstance(exc, TransientRemoteError):
        prefix = "transport error"
    elif isinstance(exc, DomainError):
        prefix = "unexpected response"
    else:
        prefix = type(exc).__name__
    return TaskOutcome.failure(
        f"{prefix}: {exc}",
        retryable=getattr(exc, "retryable", True),
        data={"error": type(exc).__name__},
    )


class TsdmRemote:
    """The remote actions an account can perform.

    Errors from the forum never escape ``check_in``/``work``/``claim``:
    they come back as ``succeeded=False`` with a message naming the cause.
    ``scan_candidates`` raises, since a failed listing just skips the tick.
    """

    def __init__(self, client: TsdmClient, settings: Any, stop_event: Optional[asyncio.Event] = None) -> None:
        self._client = client
        self._settings = settings
        self.stop_event = stop_event or asyncio.Event()

    def _ctx(self, account: Account) -> TaskContext:
        return TaskContext(account=account, client=self._client, settings=self._settings, stop_event=self.stop_event)

    async def _run(self, kind: TaskKind, account: Account) -> TaskOutcome:
        handler = get_task_handler(kind)
        try:
            return await handler.execute(self._ctx(account))
        except TsdmError as e:
            return outcome_from_error(e)

    async def check_in(self, account: Account) -> TaskOutcome:
        return await self._run(TaskKind.CHECKIN, account)

    async def work(self, account: Account) -> TaskOutcome:
        return await self._run(TaskKind.WORK, account)

    async def scan_candidates(self, account: Account) -> list[ScanItem]:
        outcome = await get_task_handler(TaskKind.SCAN).execute(self._ctx(account))
        return outcome.data["items"]

    async def claim(self, account: Account, item_id: str) -> TaskOutcome:
        handler: ScanTask = get_task_handler(TaskKind.SCAN)
        try:
            return await handler.claim(self._ctx(account), item_id)
        except TsdmError as e:
            return outcome_from_error(e)
