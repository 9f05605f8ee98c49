"""
外部接口客户端

- wx_robot: 微信自动化机器人 HTTP API 客户端
"""
from .wx_robot import (
    WxRobotClient,
    RobotResponse,
    RemoteGroup,
    QrCode,
    LoginCheck,
    SendResult,
    TextImageResult,
    RobotClientError,
    RobotTransportError,
    RobotAPIError,
    RobotSendError,
)

__all__ = [
    "WxRobotClient",
    "RobotResponse",
    "RemoteGroup",
    "QrCode",
    "LoginCheck",
    "SendResult",
    "TextImageResult",
    "RobotClientError",
    "RobotTransportError",
    "RobotAPIError",
    "RobotSendError",
]
