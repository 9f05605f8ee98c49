"""
请求数据模型 (pydantic)

字段名与对外接口保持一致 (snake_case JSON)。
"""
from typing import List, Optional

from pydantic import BaseModel, Field


# ============== 机器人 ==============

class RobotRequest(BaseModel):
    """创建 / 修改机器人配置"""
    address: str = Field(min_length=1)
    admin_key: str = Field(min_length=1)
    owner_id: int = Field(gt=0)
    description: Optional[str] = None
    admin_users: List[str] = Field(default_factory=list)


# ============== 用户会话 ==============

class AuthorizeRequest(BaseModel):
    robot_id: int = Field(gt=0)


class QrCodeRequest(BaseModel):
    token: str = Field(min_length=1)
    robot_id: int = Field(gt=0)


class SaveUserRequest(BaseModel):
    """扫码登录成功后保存会话"""
    robot_id: int = Field(gt=0)
    token: str = Field(min_length=1)
    wx_id: str = Field(min_length=1)
    nick_name: str = ""
    has_security_risk: int = Field(default=0, ge=0, le=1)
    is_message_bot: int = Field(default=0, ge=0, le=1)


class MessageBotStatusRequest(BaseModel):
    is_message_bot: int = Field(ge=0, le=1)  # 0 不是 1 是


class ExtendAuthRequest(BaseModel):
    days: int = Field(gt=0)


# ============== 消息 ==============

class SendTextRequest(BaseModel):
    text_content: str = Field(min_length=1)
    to_user_name: str = Field(min_length=1)


class SendImageRequest(BaseModel):
    image_content: str = Field(min_length=1)  # base64
    to_user_name: str = Field(min_length=1)


class SendTextImageRequest(BaseModel):
    text_content: str = ""
    image_content: str = ""
    to_user_name: str = Field(min_length=1)


class SetStrategyRequest(BaseModel):
    strategy: str = Field(min_length=1)  # round_robin / random
