"""
用户会话 API 路由

/api/wx/v1/users/* 相关接口: 授权、扫码登录、保存会话、在线状态
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from ..clients.wx_robot import (
    WxRobotClient, RobotClientError, RobotAPIError, qr_code_expire_at
)
from ..config import config
from ..database import get_db_manager
from ..repository import get_robot_repository, get_user_session_repository
from ..schemas import AuthorizeRequest, QrCodeRequest, SaveUserRequest, MessageBotStatusRequest
from .common import (
    API_PREFIX, success_response, not_found, internal_error, get_robot_client
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_PREFIX}/users", tags=["users"])

# 扫码状态
SCAN_PENDING = 0
SCAN_SUCCESS = 2
SCAN_FAILED = 3


async def _robot_address_and_key(robot_id: int) -> tuple[str, str] | None:
    async with get_db_manager().get_session() as session:
        robot = await get_robot_repository(session).get_by_id(robot_id)
        if not robot:
            return None
        return robot.address, robot.admin_key


@router.get("/robot/{robot_id}")
async def list_users_by_robot(robot_id: int):
    """获取指定机器人的会话列表"""
    try:
        async with get_db_manager().get_session() as session:
            users = await get_user_session_repository(session).get_by_robot(robot_id)
            data = [user.to_dict() for user in users]
    except SQLAlchemyError as e:
        logger.error(f"查询用户列表失败: {e}", exc_info=True)
        return internal_error("查询用户列表失败")

    return success_response("查询成功", data)


@router.post("/authorize")
async def authorize_user(
    body: AuthorizeRequest,
    client: WxRobotClient = Depends(get_robot_client)
):
    """为机器人生成一个授权码 (用作登录 token)"""
    try:
        robot = await _robot_address_and_key(body.robot_id)
    except SQLAlchemyError as e:
        logger.error(f"查询机器人失败: robot_id={body.robot_id}, {e}", exc_info=True)
        return internal_error("查询机器人失败")
    if robot is None:
        return not_found("机器人不存在")
    address, admin_key = robot

    try:
        keys = await client.gen_auth_key(address, admin_key, count=1, days=config.auth_key_days)
    except RobotClientError as e:
        logger.error(f"调用GenAuthKey失败: {e}")
        return internal_error(f"获取授权信息失败: {e}")

    if not keys:
        return internal_error("获取授权信息失败: 返回数据为空")

    return success_response("获取授权信息成功", {
        "token": keys[0],
        "robot_id": body.robot_id,
    })


@router.post("/qrcode")
async def get_qr_code(
    body: QrCodeRequest,
    client: WxRobotClient = Depends(get_robot_client)
):
    """获取登录二维码"""
    try:
        robot = await _robot_address_and_key(body.robot_id)
    except SQLAlchemyError as e:
        logger.error(f"查询机器人失败: robot_id={body.robot_id}, {e}", exc_info=True)
        return internal_error("查询机器人失败")
    if robot is None:
        return not_found("机器人不存在")
    address, _ = robot

    try:
        qr = await client.get_login_qr_code(address, body.token)
    except RobotClientError as e:
        logger.error(f"调用GetLoginQrCode失败: {e}")
        return internal_error(f"获取二维码失败: {e}")

    return success_response("获取二维码成功", {
        "qr_code": qr.qr_code_url,
        "token": body.token,
        "expire_time": qr_code_expire_at(config.qr_code_ttl_seconds),
        "qrCodeBase64": qr.qr_code_base64,
    })


@router.get("/status/{robot_id}/{token}")
async def check_login_status(
    robot_id: int,
    token: str,
    client: WxRobotClient = Depends(get_robot_client)
):
    """
    检查扫码登录状态 (只检查，不保存)

    status: 0 未扫码或二维码已过期, 2 登录成功, 3 登录失败
    """
    try:
        robot = await _robot_address_and_key(robot_id)
    except SQLAlchemyError as e:
        logger.error(f"查询机器人失败: robot_id={robot_id}, {e}", exc_info=True)
        return internal_error("查询机器人失败")
    if robot is None:
        return not_found("机器人不存在")
    address, _ = robot

    try:
        check = await client.check_login_status(address, token)
    except RobotAPIError as e:
        logger.warning(f"CheckLoginStatus 返回异常状态: code={e.code}, text={e.text}")
        return success_response("检查成功", {
            "status": SCAN_FAILED,
            "wx_id": "",
            "nick_name": "",
            "message": "检查登录状态失败",
        })
    except RobotClientError as e:
        logger.error(f"调用CheckLoginStatus失败: {e}")
        return internal_error(f"检查登录状态失败: {e}")

    if check.logged_in:
        status = {
            "status": SCAN_SUCCESS,
            "wx_id": check.wx_id,
            "nick_name": check.nick_name,
            "message": "登录成功",
        }
    else:
        status = {
            "status": SCAN_PENDING,
            "wx_id": "",
            "nick_name": "",
            "message": "二维码已过期或不存在",
        }

    return success_response("检查成功", status)


@router.post("/save")
async def save_user(
    body: SaveUserRequest,
    client: WxRobotClient = Depends(get_robot_client)
):
    """
    保存会话 (扫码登录成功后调用，也是 NEEDS_RELOGIN 回到 NORMAL 的唯一途径)

    调用方未标记安全风险时，通过 CheckCanSetAlias 探测；任一检查项未通过即视为有风险。
    探测失败不影响保存。
    """
    try:
        robot = await _robot_address_and_key(body.robot_id)
    except SQLAlchemyError as e:
        logger.error(f"查询机器人失败: robot_id={body.robot_id}, {e}", exc_info=True)
        return internal_error("查询机器人失败")
    if robot is None:
        return not_found("关联的机器人不存在")
    address, _ = robot

    has_risk = bool(body.has_security_risk)
    if not has_risk:
        try:
            probe = await client.check_can_set_alias(address, body.token)
            results = []
            if isinstance(probe.data, dict):
                results = probe.data.get("results") or []
            has_risk = any(not item.get("isPass", True) for item in results)
        except RobotClientError as e:
            logger.warning(f"安全风险检测失败，按无风险保存: wx_id={body.wx_id}, {e}")

    try:
        async with get_db_manager().get_session() as session:
            user, created = await get_user_session_repository(session).save(
                robot_id=body.robot_id,
                wx_id=body.wx_id,
                token=body.token,
                nick_name=body.nick_name,
                has_security_risk=has_risk,
                is_message_bot=bool(body.is_message_bot),
                valid_days=config.session_valid_days,
            )
            data = user.to_dict()
    except SQLAlchemyError as e:
        logger.error(f"保存用户数据失败: {e}", exc_info=True)
        return internal_error("保存用户数据失败")

    data["created"] = created
    return success_response("保存成功", data)


@router.delete("/{session_id}")
async def delete_user(session_id: int):
    """删除会话 (不删除群组数据)"""
    try:
        async with get_db_manager().get_session() as session:
            deleted = await get_user_session_repository(session).delete(session_id)
    except SQLAlchemyError as e:
        logger.error(f"删除用户失败: {e}", exc_info=True)
        return internal_error("删除用户失败")

    if not deleted:
        return not_found("用户不存在")

    return success_response("删除成功")


@router.get("/login-status/{session_id}")
async def get_login_status(
    session_id: int,
    client: WxRobotClient = Depends(get_robot_client)
):
    """获取会话在线状态详情"""
    try:
        async with get_db_manager().get_session() as session:
            user = await get_user_session_repository(session).get_by_id(session_id)
            if not user:
                return not_found("用户不存在")
            robot = await get_robot_repository(session).get_by_id(user.robot_id)
            if not robot:
                return not_found("关联的机器人不存在")
            address, token = robot.address, user.token
    except SQLAlchemyError as e:
        logger.error(f"查询用户失败: session_id={session_id}, {e}", exc_info=True)
        return internal_error("查询用户失败")

    try:
        status = await client.get_login_status(address, token)
    except RobotClientError as e:
        logger.error(f"调用GetLoginStatus失败: {e}")
        return internal_error(f"获取登录状态失败: {e}")

    return success_response("获取成功", status)


@router.post("/message-bot-status/{session_id}")
async def update_message_bot_status(session_id: int, body: MessageBotStatusRequest):
    """设置会话是否作为消息机器人"""
    try:
        async with get_db_manager().get_session() as session:
            updated = await get_user_session_repository(session).set_message_bot(
                session_id, bool(body.is_message_bot)
            )
    except SQLAlchemyError as e:
        logger.error(f"更新消息机器人状态失败: {e}", exc_info=True)
        return internal_error("更新消息机器人状态失败")

    if not updated:
        return not_found("用户不存在")

    return success_response("更新成功", {
        "id": session_id,
        "is_message_bot": body.is_message_bot,
    })
