"""
路由公共工具: 统一响应格式与依赖
"""
import logging

from fastapi.responses import JSONResponse

from ..clients.wx_robot import WxRobotClient
from ..config import config

logger = logging.getLogger(__name__)

API_PREFIX = "/api/wx/v1"

_robot_client: WxRobotClient | None = None


def success_response(message: str, data=None) -> dict:
    return {
        "success": True,
        "message": message,
        "data": data,
    }


def error_response(status_code: int, error: str, data=None) -> JSONResponse:
    content = {
        "success": False,
        "error": error,
    }
    if data is not None:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=content)


def bad_request(error: str) -> JSONResponse:
    return error_response(400, error)


def not_found(error: str) -> JSONResponse:
    return error_response(404, error)


def internal_error(error: str) -> JSONResponse:
    return error_response(500, error)


def get_robot_client() -> WxRobotClient:
    """机器人接口客户端 (FastAPI 依赖，测试中可通过 dependency_overrides 替换)"""
    global _robot_client
    if _robot_client is None:
        _robot_client = WxRobotClient(
            timeout=config.robot_api_timeout,
            health_timeout=config.robot_health_timeout,
        )
    return _robot_client
