from __future__ import annotations

from loguru import logger

from ..errors import TsdmError
from ..models import TaskKind, TaskOutcome
from ..parser import parse_balance, parse_work_reward, parse_work_wait
from ..scheduling import sleep_or_stop
from .base import TaskContext, TaskHandler, register_task_handler


STATUS_PATH = "plugin.php?id=np_cliworkdz%3Awork&inajax=1"
WORK_PATH = "plugin.php?id=np_cliworkdz:work"
CREDIT_PATH = "home.php?mod=spacecp&ac=credit&showcredit=1"


def _work_headers(base_url: str) -> dict[str, str]:
    return {
        "Connection": "Keep-Alive",
        "X-Requested-With": "XMLHttpRequest",
        "Referer": f"{base_url}/plugin.php?id=np_cliworkdz:work",
    }


async def fetch_balance(ctx: TaskContext) -> str:
    page = await ctx.client.get(CREDIT_PATH, cookie=ctx.account.cookie)
    return parse_balance(page)


@register_task_handler
class WorkTask(TaskHandler):
    kind = TaskKind.WORK

    async def execute(self, ctx: TaskContext) -> TaskOutcome:
        cookie = ctx.account.cookie
        headers = _work_headers(ctx.client.base_url)

        status = await ctx.client.get(STATUS_PATH, cookie=cookie, headers=headers)
        wait = parse_work_wait(status)
        if wait is not None:
            outcome = TaskOutcome(succeeded=False, message=f"需要等待 {wait}", cooldown_reported=wait)
        else:
            # 每次点击广告之间间隔若干秒，全部点完才能领取奖励
            for _ in range(ctx.settings.work_click_count):
                if await sleep_or_stop(ctx.stop_event, ctx.settings.work_click_interval):
                    return TaskOutcome.cancelled_outcome()
                await ctx.client.post(WORK_PATH, {"act": "clickad"}, cookie=cookie, headers=headers)

            body = await ctx.client.post(WORK_PATH, {"act": "getcre"}, cookie=cookie, headers=headers)
            coins = parse_work_reward(body)
            outcome = TaskOutcome(succeeded=True, message=f"打工成功，获得天使币 {coins}", reward=coins)

        try:
            outcome.data["balance"] = await fetch_balance(ctx)
        except TsdmError as e:
            logger.warning(f"[{ctx.account.name}] Failed to fetch angel coin balance: {e}")
        return outcome
