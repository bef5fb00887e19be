from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional


class TaskKind(str, enum.Enum):
    CHECKIN = "checkin"
    WORK = "work"
    SCAN = "scan"


@dataclass(frozen=True, slots=True)
class Account:
    name: str
    cookie: str = field(repr=False)


@dataclass(slots=True)
class TaskOutcome:
    succeeded: bool
    message: str = ""
    # the scheduler's own choice of next interval
    next_delay: Optional[timedelta] = None
    # server-declared wait, only produced by work
    cooldown_reported: Optional[timedelta] = None
    already_done: bool = False
    reward: Optional[int] = None
    cancelled: bool = False
    # False when repeating the same call cannot succeed
    retryable: bool = True
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, message: str, **kwargs: Any) -> "TaskOutcome":
        return cls(succeeded=False, message=message, **kwargs)

    @classmethod
    def cancelled_outcome(cls, message: str = "Cancelled by shutdown") -> "TaskOutcome":
        return cls(succeeded=False, message=message, cancelled=True)


@dataclass(frozen=True, slots=True)
class ScanItem:
    item_id: str
    title: str = ""


@dataclass(slots=True)
class CacheEntry:
    first_seen_at: datetime
    angel_coins: Optional[int] = None
    message: str = ""
    notified: bool = False

    @property
    def is_reward(self) -> bool:
        return self.angel_coins is not None and self.angel_coins > 0
