from __future__ import annotations

from ..models import TaskKind, TaskOutcome
from ..parser import parse_red_packet, parse_thread_list
from .base import TaskContext, TaskHandler, register_task_handler


RED_PACKET_PATH = "plugin.php?id=tsdmbet:awardPacket&action=getaward&tid={tid}"


def board_path(forum_id: int) -> str:
    return f"forum.php?mod=forumdisplay&fid={forum_id}"


@register_task_handler
class ScanTask(TaskHandler):
    """Lists threads on the red packet board; ``claim`` grabs one packet."""

    kind = TaskKind.SCAN

    async def execute(self, ctx: TaskContext) -> TaskOutcome:
        page = await ctx.client.get(board_path(ctx.settings.scan_forum_id), cookie=ctx.account.cookie)
        items = parse_thread_list(page)
        return TaskOutcome(succeeded=True, message=f"{len(items)} threads", data={"items": items})

    async def claim(self, ctx: TaskContext, item_id: str) -> TaskOutcome:
        body = await ctx.client.get(RED_PACKET_PATH.format(tid=item_id), cookie=ctx.account.cookie)
        result = parse_red_packet(body)
        return TaskOutcome(succeeded=True, message=result.message, reward=result.angel_coins)
