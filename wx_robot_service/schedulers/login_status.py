"""
登录状态检查任务 (每 30 秒)

候选: 状态正常的会话。
CheckCanSetAlias 返回 Code 300 表示会话已掉线，状态改为 NEEDS_RELOGIN；
其余 Code 视为在线，不写库。安全风险标记不在这里维护。
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import UserSession, SessionStatus
from ..repository import get_user_session_repository
from .base import ReconcileJob, ItemOutcome

logger = logging.getLogger(__name__)

RELOGIN_CODE = 300


class LoginStatusJob(ReconcileJob):
    name = "login_status"
    cron = {"second": "*/30"}

    async def list_candidates(self, session: AsyncSession) -> list[UserSession]:
        return await get_user_session_repository(session).list_active()

    async def process(self, session: AsyncSession, user_session: UserSession) -> ItemOutcome:
        robot = await self.resolve_robot(session, user_session)
        if robot is None:
            return ItemOutcome.SKIPPED

        response = await self.client.check_can_set_alias(robot.address, user_session.token)

        if response.code != RELOGIN_CODE:
            return ItemOutcome.SUCCESS

        logger.info(f"检测到用户需要重新登录: session_id={user_session.id}, wx_id={user_session.wx_id}")
        changed = await get_user_session_repository(session).update_status(
            user_session.id,
            SessionStatus.NEEDS_RELOGIN,
            expected=SessionStatus.NORMAL
        )
        return ItemOutcome.CHANGED if changed else ItemOutcome.SKIPPED
