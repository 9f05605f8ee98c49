"""
群组同步任务 (每 3 分钟)

候选: 状态正常且已初始化的会话。
拉取完整群列表后，本地群组收敛为外部列表: 新增/更新列出的群，删除未列出的群。
这是唯一会删除群组记录的路径。
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..clients.wx_robot import RobotAPIError
from ..models import UserSession
from ..repository import get_user_session_repository, get_group_repository
from .base import ReconcileJob, ItemOutcome

logger = logging.getLogger(__name__)


class GroupSyncJob(ReconcileJob):
    name = "group_sync"
    cron = {"minute": "*/3", "second": 0}

    async def list_candidates(self, session: AsyncSession) -> list[UserSession]:
        return await get_user_session_repository(session).list_initialized()

    async def process(self, session: AsyncSession, user_session: UserSession) -> ItemOutcome:
        robot = await self.resolve_robot(session, user_session)
        if robot is None:
            return ItemOutcome.SKIPPED

        try:
            groups = await self.client.get_group_list(robot.address, user_session.token)
        except RobotAPIError as e:
            logger.warning(
                f"获取群列表失败，跳过本次同步: session_id={user_session.id}, "
                f"wx_id={user_session.wx_id}, code={e.code}, text={e.text}"
            )
            return ItemOutcome.SKIPPED

        group_repo = get_group_repository(session)
        for group in groups:
            await group_repo.save_or_update(user_session.wx_id, group.group_id, group.nick_name)

        deleted = await group_repo.delete_not_in(user_session.wx_id, [g.group_id for g in groups])
        logger.debug(
            f"群组同步完成: wx_id={user_session.wx_id}, "
            f"group_count={len(groups)}, deleted={deleted}"
        )
        return ItemOutcome.SUCCESS
