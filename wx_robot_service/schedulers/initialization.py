"""
初始化状态检查任务 (每 30 秒)

候选: 状态正常且尚未初始化的会话。
外部初始化完成后拉取一次群列表并写入 (只新增/更新，不删除)，然后标记已初始化。
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import UserSession
from ..repository import get_user_session_repository, get_group_repository
from .base import ReconcileJob, ItemOutcome

logger = logging.getLogger(__name__)


class InitializationJob(ReconcileJob):
    name = "initialization"
    cron = {"second": "*/30"}

    async def list_candidates(self, session: AsyncSession) -> list[UserSession]:
        return await get_user_session_repository(session).list_uninitialized()

    async def process(self, session: AsyncSession, user_session: UserSession) -> ItemOutcome:
        robot = await self.resolve_robot(session, user_session)
        if robot is None:
            return ItemOutcome.SKIPPED

        initialized = await self.client.get_init_status(robot.address, user_session.token)
        group_repo = get_group_repository(session)

        if not initialized:
            if await group_repo.count_by_wx_id(user_session.wx_id) > 0:
                logger.debug(f"用户已有群组数据，跳过处理: session_id={user_session.id}, wx_id={user_session.wx_id}")
            else:
                logger.debug(f"用户尚未初始化完成: session_id={user_session.id}, wx_id={user_session.wx_id}")
            return ItemOutcome.SKIPPED

        logger.info(f"用户初始化完成，开始获取群列表: session_id={user_session.id}, wx_id={user_session.wx_id}")
        groups = await self.client.get_group_list(robot.address, user_session.token)

        for group in groups:
            await group_repo.save_or_update(user_session.wx_id, group.group_id, group.nick_name)

        await get_user_session_repository(session).set_initialized(user_session.id)
        logger.info(
            f"用户初始化处理完成: session_id={user_session.id}, "
            f"wx_id={user_session.wx_id}, group_count={len(groups)}"
        )
        return ItemOutcome.CHANGED
