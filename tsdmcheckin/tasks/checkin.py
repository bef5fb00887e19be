from __future__ import annotations

from ..models import TaskKind, TaskOutcome
from ..parser import parse_checkin_result, parse_formhash
from .base import TaskContext, TaskHandler, register_task_handler


FORUM_PATH = "forum.php"
SIGN_PATH = "plugin.php?id=dsu_paulsign%3Asign&operation=qiandao&infloat=1&sign_as=1&inajax=1"


@register_task_handler
class CheckinTask(TaskHandler):
    kind = TaskKind.CHECKIN

    async def execute(self, ctx: TaskContext) -> TaskOutcome:
        cookie = ctx.account.cookie
        page = await ctx.client.get(FORUM_PATH, cookie=cookie)
        formhash = parse_formhash(page)

        form = {
            "formhash": formhash,
            "qdxq": "kx",
            "qdmode": "3",
            "todaysay": "",
            "fastreply": "1",
        }
        headers = {"Origin": ctx.client.base_url}
        body = await ctx.client.post(SIGN_PATH, form, cookie=cookie, headers=headers)

        result = parse_checkin_result(body)
        return TaskOutcome(
            succeeded=True,
            message=result.message,
            already_done=result.already_done,
            reward=None if result.already_done else result.total_coins,
            data={"ranking": result.ranking, "extra_reward": result.extra_reward},
        )
