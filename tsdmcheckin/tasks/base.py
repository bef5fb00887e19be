from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass, field
from typing import Any, ClassVar

from ..client import TsdmClient
from ..models import Account, TaskKind, TaskOutcome


@dataclass(frozen=True, slots=True)
class TaskContext:
    account: Account
    client: TsdmClient
    settings: Any
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)


class TaskHandler(metaclass=abc.ABCMeta):
    """One kind of remote action against the forum.

    ``execute`` may raise ``TransientRemoteError`` or ``DomainError``; the
    caller turns those into failed outcomes.
    """

    kind: ClassVar[TaskKind]

    @abc.abstractmethod
    async def execute(self, ctx: TaskContext) -> TaskOutcome:
        raise NotImplementedError


_TASK_HANDLERS: dict[TaskKind, type[TaskHandler]] = {}


def register_task_handler(handler_cls: type[TaskHandler]) -> type[TaskHandler]:
    kind = getattr(handler_cls, "kind", None)
    if not isinstance(kind, TaskKind):
        raise ValueError("TaskHandler must define classvar `kind` as a TaskKind.")
    if kind in _TASK_HANDLERS:
        raise ValueError(f"Duplicate task handler kind: {kind.value!r}")
    _TASK_HANDLERS[kind] = handler_cls
    return handler_cls


def get_task_handler(kind: TaskKind) -> TaskHandler:
    try:
        cls = _TASK_HANDLERS[kind]
    except KeyError as e:
        known = ", ".join(sorted(k.value for k in _TASK_HANDLERS))
        raise KeyError(f"Unknown task kind: {kind!r}. Known: {known}") from e
    return cls()
