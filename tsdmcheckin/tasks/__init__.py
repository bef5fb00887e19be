from .base import (
    TaskHandler,
    TaskContext,
    register_task_handler,
    get_task_handler,
)

# 任务类型说明：
# - CheckinTask (checkin): 每日签到，先取 formhash 再提交签到表单
# - WorkTask (work): 打工，服务端返回冷却时间时不执行
# - ScanTask (scan): 扫描红包版块的帖子，逐个尝试领取红包

from .checkin import CheckinTask
from .work import WorkTask
from .scan import ScanTask

__all__ = [
    "TaskHandler",
    "TaskContext",
    "register_task_handler",
    "get_task_handler",
    "CheckinTask",
    "WorkTask",
    "ScanTask",
]
