from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger

from .models import TaskOutcome
from .scheduling import sleep_or_stop


Action = Callable[[], Awaitable[TaskOutcome]]


async def _invoke(action: Action) -> TaskOutcome:
    try:
        return await action()
    except asyncio.CancelledError:
        raise
    except Exception as e:
        return TaskOutcome.failure(f"{type(e).__name__}: {e}", retryable=getattr(e, "retryable", True))


async def run_with_retry(
    action: Action,
    max_attempts: int,
    delay: float,
    stop_event: asyncio.Event,
    *,
    label: str = "",
) -> TaskOutcome:
    """Call ``action`` until it succeeds or ``max_attempts`` calls have been made.

    Returns the first success, or the last failure once attempts run out.
    A failure marked not retryable ends the loop at once.
    If ``stop_event`` fires during a pause between attempts the call is
    abandoned with a cancelled outcome.
    """
    max_attempts = max(1, int(max_attempts))
    outcome: Optional[TaskOutcome] = None

    for attempt in range(1, max_attempts + 1):
        outcome = await _invoke(action)
        if outcome.succeeded:
            return outcome
        if not outcome.retryable:
            logger.warning(f"{label}attempt {attempt} failed permanently: {outcome.message}")
            return outcome

        logger.debug(f"{label}attempt {attempt}/{max_attempts} failed: {outcome.message}")
        if attempt < max_attempts:
            if await sleep_or_stop(stop_event, delay):
                return TaskOutcome.cancelled_outcome()

    return outcome


async def first_success(
    action: Action,
    attempts: int,
    stagger: float,
    stop_event: asyncio.Event,
) -> TaskOutcome:
    """Start ``attempts`` concurrent calls, the i-th delayed by ``i * stagger``.

    The first success wins and the calls still pending are cancelled. When
    every call fails the last failure to complete is returned.
    """
    attempts = max(1, int(attempts))

    async def _attempt(index: int) -> TaskOutcome:
        if index and await sleep_or_stop(stop_event, index * stagger):
            return TaskOutcome.cancelled_outcome()
        return await _invoke(action)

    tasks = [asyncio.create_task(_attempt(i)) for i in range(attempts)]
    last: Optional[TaskOutcome] = None
    try:
        for fut in asyncio.as_completed(tasks):
            outcome = await fut
            if outcome.succeeded:
                return outcome
            if last is None or not outcome.cancelled:
                last = outcome
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    return last
