"""
WX Robot Service 数据库模型

使用 SQLAlchemy ORM 定义数据库表结构:
- wx_robot_configs: 外部自动化机器人实例 (地址 + 管理密钥)
- wx_user_logins: 登录在机器人上的微信会话
- wx_groups: 会话可见的群组
- wx_bill_info: 账单源表 (只读聚合)

会话状态迁移 (仅列出自动迁移):

    NORMAL -> NEEDS_RELOGIN     登录状态任务收到 CheckCanSetAlias Code 300
    is_initialized False -> True 初始化任务确认外部初始化完成

不存在自动的反向迁移。NEEDS_RELOGIN 只能通过重新扫码保存会话回到 NORMAL。
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import IntEnum
from typing import Optional

from sqlalchemy import (
    String, Boolean, Integer, BigInteger, Text, DateTime, ForeignKey,
    Numeric, Index, UniqueConstraint
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============== Base Class ==============

class Base(DeclarativeBase):
    """所有模型的基类"""
    pass


# ============== 枚举类型定义 ==============

class SessionStatus(IntEnum):
    """会话状态 (存储为整数，与原有库表保持一致)"""
    NORMAL = 1
    RISK = 2
    NEEDS_RELOGIN = 3


# ============== 数据库模型 ==============

class RobotConfig(Base):
    """
    机器人配置表

    一个外部自动化接口实例。address + admin_key 是调用该机器人所有下游接口的凭证。
    只能通过接口显式创建，核心逻辑从不自动删除。
    """
    __tablename__ = "wx_robot_configs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    address: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="机器人地址"
    )

    admin_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="管理密钥"
    )

    owner_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        index=True,
        comment="所属公司ID"
    )

    description: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="文本描述"
    )

    # 逗号分隔存储，对外暴露为列表
    admin_users: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="管理员用户列表，用逗号分隔"
    )

    create_time: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utc_now,
        comment="创建时间"
    )

    update_time: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        comment="修改时间"
    )

    sessions: Mapped[list["UserSession"]] = relationship(
        "UserSession",
        back_populates="robot",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<RobotConfig(id={self.id}, address={self.address}, owner_id={self.owner_id})>"

    @property
    def admin_user_list(self) -> list[str]:
        if not self.admin_users:
            return []
        return [user for user in self.admin_users.split(",") if user]

    @admin_user_list.setter
    def admin_user_list(self, users: list[str] | None) -> None:
        self.admin_users = ",".join(users or [])

    def to_dict(self, include_sessions: bool = False) -> dict:
        """
        转换为字典 (用于 API 返回)

        Args:
            include_sessions: 是否包含登录会话列表
        """
        data = {
            "id": self.id,
            "address": self.address,
            "admin_key": self.admin_key,
            "owner_id": self.owner_id,
            "description": self.description,
            "admin_users": self.admin_user_list,
            "create_time": self.create_time.isoformat() if self.create_time else None,
            "update_time": self.update_time.isoformat() if self.update_time else None,
        }
        if include_sessions:
            data["user_logins"] = [s.to_dict() for s in self.sessions]
        return data


class UserSession(Base):
    """
    微信登录会话表

    一个绑定在某个机器人上的微信身份，token 是调用外部接口的凭证。
    自然键为 (robot_id, wx_id)：重复保存时原地更新，保留 id 与 create_time。
    """
    __tablename__ = "wx_user_logins"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    robot_id: Mapped[int] = mapped_column(
        ForeignKey("wx_robot_configs.id"),
        nullable=False,
        comment="关联的机器人ID"
    )

    token: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="登录令牌"
    )

    wx_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment="微信ID"
    )

    nick_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="微信昵称"
    )

    extension_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="延期时间"
    )

    expiration_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="过期时间"
    )

    has_security_risk: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="是否有安全风险"
    )

    status: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=SessionStatus.NORMAL,
        comment="状态 1正常 2风控 3需要重新登录"
    )

    is_initialized: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="是否初始化完成"
    )

    is_message_bot: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="是否是消息机器人"
    )

    create_time: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utc_now,
        comment="创建时间"
    )

    update_time: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        comment="修改时间"
    )

    robot: Mapped["RobotConfig"] = relationship(
        "RobotConfig",
        back_populates="sessions",
        lazy="raise"
    )

    __table_args__ = (
        Index("idx_robot_wx", "robot_id", "wx_id"),
        Index("idx_robot_token", "robot_id", "token"),
        Index("idx_init_status", "is_initialized", "status"),
        Index("idx_status_msgbot_risk", "status", "is_message_bot", "has_security_risk"),
    )

    def __repr__(self) -> str:
        return f"<UserSession(id={self.id}, robot_id={self.robot_id}, wx_id={self.wx_id}, status={self.status})>"

    @property
    def session_status(self) -> SessionStatus:
        return SessionStatus(self.status)

    @property
    def is_message_bot_eligible(self) -> bool:
        """可作为消息机器人: 状态正常、已标记为消息机器人、无安全风险"""
        return (
            self.status == SessionStatus.NORMAL
            and self.is_message_bot
            and not self.has_security_risk
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "robot_id": self.robot_id,
            "token": self.token,
            "wx_id": self.wx_id,
            "nick_name": self.nick_name,
            "extension_time": self.extension_time.isoformat() if self.extension_time else None,
            "expiration_time": self.expiration_time.isoformat() if self.expiration_time else None,
            "has_security_risk": self.has_security_risk,
            "status": self.status,
            "is_initialized": self.is_initialized,
            "is_message_bot": self.is_message_bot,
            "create_time": self.create_time.isoformat() if self.create_time else None,
            "update_time": self.update_time.isoformat() if self.update_time else None,
        }


class Group(Base):
    """
    群组表

    某个会话 (wx_id) 可见的一个群。由群组同步任务创建、更新和删除。
    """
    __tablename__ = "wx_groups"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    wx_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="微信ID"
    )

    group_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="群组ID"
    )

    group_nick_name: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        index=True,
        comment="群组昵称"
    )

    create_time: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utc_now,
        comment="创建时间"
    )

    update_time: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        comment="修改时间"
    )

    __table_args__ = (
        UniqueConstraint("wx_id", "group_id", name="uk_wx_group"),
        Index("idx_group_wx", "group_id", "wx_id"),
    )

    def __repr__(self) -> str:
        return f"<Group(id={self.id}, wx_id={self.wx_id}, group_id={self.group_id})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "wx_id": self.wx_id,
            "group_id": self.group_id,
            "group_nick_name": self.group_nick_name,
            "create_time": self.create_time.isoformat() if self.create_time else None,
            "update_time": self.update_time.isoformat() if self.update_time else None,
        }


class Bill(Base):
    """
    账单源表

    由外部流程写入，本服务只做查询与统计。
    """
    __tablename__ = "wx_bill_info"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    group_name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="群组名称"
    )

    group_id: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="群组Id"
    )

    dollar: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="金额(外币)"
    )

    rate: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="汇率"
    )

    amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
        nullable=True,
        comment="金额(RMB)"
    )

    remark: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="备注"
    )

    operator: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="操作人名称"
    )

    msg_time: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        index=True,
        comment="账单时间"
    )

    status: Mapped[Optional[str]] = mapped_column(
        String(2),
        nullable=True,
        comment="清账状态(0 为未清账, 1 为已清账)"
    )

    owner_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="所属公司ID"
    )

    create_time: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utc_now,
        comment="创建时间"
    )

    update_time: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        comment="修改时间"
    )

    __table_args__ = (
        Index("idx_owner_group", "owner_id", "group_id"),
        Index("idx_owner_status", "owner_id", "status"),
        Index("idx_owner_msgtime", "owner_id", "msg_time"),
    )

    def __repr__(self) -> str:
        return f"<Bill(id={self.id}, group_id={self.group_id}, amount={self.amount})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "group_name": self.group_name,
            "group_id": self.group_id,
            "dollar": self.dollar,
            "rate": self.rate,
            "amount": f"{self.amount:.2f}" if self.amount is not None else None,
            "remark": self.remark,
            "operator": self.operator,
            "msg_time": self.msg_time,
            "status": self.status,
            "owner_id": self.owner_id,
            "create_time": self.create_time.strftime("%Y-%m-%d %H:%M:%S") if self.create_time else None,
            "update_time": self.update_time.strftime("%Y-%m-%d %H:%M:%S") if self.update_time else None,
        }
