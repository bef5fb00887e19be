"""HTML/text extraction of forum result codes.

Every function here is pure: it takes a response body and returns parsed
data, raising ``DomainError`` when the body does not look like anything the
forum is known to return.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from bs4 import BeautifulSoup

from .errors import DomainError, SessionExpiredError
from .models import ScanItem


_FORMHASH_RE = re.compile(r'formhash=(.+?)"')

_CHECKIN_SUCCESS = "签到成功"
_CHECKIN_ALREADY = "您今日已经签到"
_ANGEL_COIN_RE = re.compile(r"天使币 (\d+)")
_EXTRA_REWARD_RE = re.compile(r"额外奖励 天使币 (\d+)")
_RANKING_RE = re.compile(r"您是今天第(\d+)个签到的会员")

_WORK_WAIT_RE = re.compile(r"您需要等待(\d+)小时(\d+)分钟(\d+)秒后即可进行。")
_WORK_SUCCESS_RE = re.compile(r"恭喜，您已经成功领取了奖励天使币 \+(\d+)")

_TID_RE = re.compile(r"tid=(\d+)")

_PACKET_SUCCESS_RE = re.compile(r"已经领取 (\d+) 天使币")
_PACKET_TOO_LATE = "来晚了"
_PACKET_ALREADY = "已经领取过这个主题的红包了"
_PACKET_NONE = "这个主题并没有红包"


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _snippet(text: str, limit: int = 200) -> str:
    text = " ".join((text or "").split())
    return text[:limit]


def parse_formhash(html: str) -> str:
    match = _FORMHASH_RE.search(html or "")
    if not match:
        raise SessionExpiredError("formhash not found, cookie may have expired")
    return match.group(1)


@dataclass(slots=True)
class CheckinResult:
    already_done: bool
    total_coins: int = 0
    extra_reward: int = 0
    ranking: Optional[int] = None

    @property
    def message(self) -> str:
        if self.already_done:
            return "您今天已经签到"
        parts = ["签到成功"]
        if self.ranking is not None:
            parts.append(f"您是今天第 {self.ranking} 个签到的会员")
        reward = f"获得天使币 {self.total_coins}"
        if self.extra_reward > 0:
            reward += f" (包含额外奖励 {self.extra_reward})"
        parts.append(reward)
        return "，".join(parts)


def parse_checkin_result(html: str) -> CheckinResult:
    node = _soup(html).select_one(".c")
    text = node.get_text() if node is not None else (html or "")

    if _CHECKIN_SUCCESS in text:
        total = sum(int(m) for m in _ANGEL_COIN_RE.findall(text))
        extra = _EXTRA_REWARD_RE.search(text)
        ranking = _RANKING_RE.search(text)
        return CheckinResult(
            already_done=False,
            total_coins=total,
            extra_reward=int(extra.group(1)) if extra else 0,
            ranking=int(ranking.group(1)) if ranking else None,
        )
    if _CHECKIN_ALREADY in text:
        return CheckinResult(already_done=True)
    raise DomainError(f"签到失败: {_snippet(text)}")


def parse_work_wait(text: str) -> Optional[timedelta]:
    match = _WORK_WAIT_RE.search(text or "")
    if not match:
        return None
    hours, minutes, seconds = (int(g) for g in match.groups())
    return timedelta(hours=hours, minutes=minutes, seconds=seconds)


def parse_work_reward(text: str) -> int:
    match = _WORK_SUCCESS_RE.search(text or "")
    if not match:
        raise DomainError(f"打工失败: {_snippet(text)}")
    return int(match.group(1))


def parse_balance(html: str) -> str:
    node = _soup(html).select_one(".creditl .xi1")
    if node is None:
        raise DomainError("angel coin balance not found")
    return node.get_text().replace("天使币:", "", 1).strip()


def parse_thread_list(html: str) -> list[ScanItem]:
    items: list[ScanItem] = []
    seen: set[str] = set()
    for row in _soup(html).select('tbody[id^="normalthread_"]'):
        link = row.select_one("th.common a.xst")
        if link is None:
            continue
        match = _TID_RE.search(link.get("href", ""))
        if not match or match.group(1) in seen:
            continue
        tid = match.group(1)
        seen.add(tid)

        items.append(ScanItem(item_id=tid, title=link.get_text().strip()))
    return items


@dataclass(slots=True)
class RedPacketResult:
    angel_coins: int
    message: str

    @property
    def is_reward(self) -> bool:
        return self.angel_coins > 0


def parse_red_packet(text: str) -> RedPacketResult:
    text = text or ""
    match = _PACKET_SUCCESS_RE.search(text)
    if match:
        coins = int(match.group(1))
        return RedPacketResult(coins, f"抢到红包啦！获得 {coins} 天使币")
    if _PACKET_TOO_LATE in text:
        return RedPacketResult(0, "来晚了，红包已被抢光")
    if _PACKET_ALREADY in text:
        return RedPacketResult(0, "您已领取过此红包")
    if _PACKET_NONE in text:
        return RedPacketResult(0, "这个主题并没有红包")
    raise DomainError(f"未知错误: {_snippet(text)}")
