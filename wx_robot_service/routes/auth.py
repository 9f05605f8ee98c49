"""
授权延期 API 路由
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from ..clients.wx_robot import WxRobotClient, RobotClientError
from ..database import get_db_manager
from ..repository import get_robot_repository, get_user_session_repository
from ..schemas import ExtendAuthRequest
from .common import API_PREFIX, success_response, not_found, internal_error, get_robot_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_PREFIX}/auth", tags=["auth"])


@router.post("/extend/{robot_id}")
async def extend_auth(
    robot_id: int,
    body: ExtendAuthRequest,
    client: WxRobotClient = Depends(get_robot_client)
):
    """
    延期授权

    使用机器人下第一个状态正常的会话 token 调用 DelayAuthKey，
    成功后把该会话的延期时间和过期时间更新为新的到期日期。
    """
    try:
        async with get_db_manager().get_session() as session:
            robot = await get_robot_repository(session).get_by_id(robot_id)
            if not robot:
                return not_found("机器人不存在")
            address, admin_key = robot.address, robot.admin_key
            token = await get_user_session_repository(session).get_first_active_token(robot_id)
    except SQLAlchemyError as e:
        logger.error(f"查询机器人或用户token失败: robot_id={robot_id}, {e}", exc_info=True)
        return internal_error("查询用户token失败")

    if not token:
        return not_found("未找到有效的用户token")

    try:
        expiry_date = await client.delay_auth_key(address, admin_key, token, body.days)
    except RobotClientError as e:
        logger.error(f"调用DelayAuthKey失败: robot_id={robot_id}, {e}")
        return internal_error(f"延期授权失败: {e}")

    try:
        new_expiry = datetime.strptime(expiry_date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        logger.warning(f"无法解析延期后的到期日期，跳过本地更新: expiryDate={expiry_date!r}")
        new_expiry = None

    if new_expiry is not None:
        try:
            async with get_db_manager().get_session() as session:
                await get_user_session_repository(session).update_extension(robot_id, token, new_expiry)
        except SQLAlchemyError as e:
            logger.error(f"更新用户延期时间失败: robot_id={robot_id}, {e}", exc_info=True)
            return internal_error("更新用户延期时间失败")

    return success_response("延期成功", {
        "robot_id": robot_id,
        "expiry_date": expiry_date,
    })
