"""
定时对账任务

- initialization: 初始化状态检查 (每 30 秒)
- group_sync: 群组同步 (每 3 分钟)
- login_status: 登录状态检查 (每 30 秒)
"""
from .base import ReconcileJob, ReconcileScheduler, TickResult, ItemOutcome
from .initialization import InitializationJob
from .group_sync import GroupSyncJob
from .login_status import LoginStatusJob

__all__ = [
    "ReconcileJob",
    "ReconcileScheduler",
    "TickResult",
    "ItemOutcome",
    "InitializationJob",
    "GroupSyncJob",
    "LoginStatusJob",
    "create_scheduler",
]


def create_scheduler(client, db_manager=None) -> ReconcileScheduler:
    """创建包含全部对账任务的调度器"""
    return ReconcileScheduler([
        InitializationJob(client, db_manager),
        GroupSyncJob(client, db_manager),
        LoginStatusJob(client, db_manager),
    ])
