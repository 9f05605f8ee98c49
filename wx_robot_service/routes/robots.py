"""
机器人配置 API 路由

/api/wx/v1/robots/* 相关接口
"""
import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from ..clients.wx_robot import WxRobotClient, RobotClientError
from ..database import get_db_manager
from ..repository import get_robot_repository
from ..schemas import RobotRequest
from .common import (
    API_PREFIX, success_response, error_response, not_found, internal_error, get_robot_client
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_PREFIX}/robots", tags=["robots"])


@router.get("")
async def list_robots():
    """获取所有机器人配置及其关联的会话"""
    try:
        async with get_db_manager().get_session() as session:
            robots = await get_robot_repository(session).get_all()
            data = [robot.to_dict(include_sessions=True) for robot in robots]
    except SQLAlchemyError as e:
        logger.error(f"查询机器人列表失败: {e}", exc_info=True)
        return internal_error("查询机器人列表失败")

    return success_response("查询成功", data)


@router.post("")
async def create_robot(body: RobotRequest):
    """创建机器人配置"""
    try:
        async with get_db_manager().get_session() as session:
            robot = await get_robot_repository(session).create(
                address=body.address,
                admin_key=body.admin_key,
                owner_id=body.owner_id,
                description=body.description,
                admin_users=body.admin_users,
            )
            data = robot.to_dict()
    except SQLAlchemyError as e:
        logger.error(f"创建机器人配置失败: {e}", exc_info=True)
        return internal_error("创建机器人配置失败")

    return success_response("创建成功", data)


@router.get("/{robot_id}")
async def get_robot(robot_id: int):
    """获取单个机器人"""
    try:
        async with get_db_manager().get_session() as session:
            robot = await get_robot_repository(session).get_by_id(robot_id)
            if not robot:
                return not_found("机器人不存在")
            data = robot.to_dict(include_sessions=True)
    except SQLAlchemyError as e:
        logger.error(f"查询机器人失败: robot_id={robot_id}, {e}", exc_info=True)
        return internal_error("查询机器人失败")

    return success_response("查询成功", data)


@router.put("/{robot_id}")
async def update_robot(robot_id: int, body: RobotRequest):
    """修改机器人配置 (整体覆盖，保留创建时间)"""
    try:
        async with get_db_manager().get_session() as session:
            robot = await get_robot_repository(session).update(
                robot_id,
                address=body.address,
                admin_key=body.admin_key,
                owner_id=body.owner_id,
                description=body.description,
                admin_users=body.admin_users,
            )
            if not robot:
                return not_found("机器人不存在")
            data = robot.to_dict()
    except SQLAlchemyError as e:
        logger.error(f"修改机器人配置失败: {e}", exc_info=True)
        return internal_error("修改机器人配置失败")

    return success_response("修改成功", data)


@router.get("/{robot_id}/health")
async def check_robot_health(
    robot_id: int,
    client: WxRobotClient = Depends(get_robot_client)
):
    """检查机器人 HTTP 健康状态"""
    try:
        async with get_db_manager().get_session() as session:
            robot = await get_robot_repository(session).get_by_id(robot_id)
            if not robot:
                return not_found("机器人不存在")
            address = robot.address
    except SQLAlchemyError as e:
        logger.error(f"查询机器人失败: robot_id={robot_id}, {e}", exc_info=True)
        return internal_error("查询机器人失败")

    start = time.monotonic()
    try:
        healthy = await client.check_robot_health(address)
    except RobotClientError as e:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.error(f"检查机器人健康状态失败: address={address}, {e}")
        return error_response(503, f"机器人不健康: {e}", data={
            "status": "unhealthy",
            "address": address,
            "response_time_ms": elapsed_ms,
            "error": str(e),
        })

    elapsed_ms = int((time.monotonic() - start) * 1000)
    data = {
        "status": "healthy" if healthy else "unhealthy",
        "address": address,
        "response_time_ms": elapsed_ms,
    }
    if not healthy:
        return error_response(503, "机器人不健康", data=data)

    return success_response("机器人健康", data)
