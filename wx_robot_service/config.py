"""
WX Robot Service 配置管理

所有配置均来自环境变量，导入时加载一次。

环境变量:
    WX_SERVICE_HOST / WX_SERVICE_PORT: 监听地址 (默认 0.0.0.0:8886)
    LOG_LEVEL: 日志级别 (默认 INFO)
    ROBOT_API_TIMEOUT: 调用机器人接口的超时秒数 (默认 30)
    ROBOT_HEALTH_TIMEOUT: 机器人健康检查超时秒数 (默认 10)
    SCHEDULER_ENABLED: 是否启动定时任务 (默认 true)
    MESSAGE_STRATEGY: 消息机器人选择策略 round_robin / random (默认 random)
    AUTH_KEY_DAYS: 新授权码有效天数 (默认 365)
    SESSION_VALID_DAYS: 保存会话时的初始有效天数 (默认 365)
    QR_CODE_TTL_SECONDS: 二维码过期时间 (默认 300)

数据库相关的 DATABASE_URL / DATABASE_ECHO 由 database.py 读取。
"""
import os
import logging

logger = logging.getLogger(__name__)

STRATEGY_ROUND_ROBIN = "round_robin"
STRATEGY_RANDOM = "random"
SUPPORTED_STRATEGIES = (STRATEGY_ROUND_ROBIN, STRATEGY_RANDOM)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"环境变量 {name}={value!r} 不是整数，使用默认值 {default}")
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"环境变量 {name}={value!r} 不是数字，使用默认值 {default}")
        return default


class ServiceConfig:
    """服务配置"""

    def __init__(self):
        self.host: str = "0.0.0.0"
        self.port: int = 8886
        self.log_level: str = "INFO"
        self.robot_api_timeout: float = 30.0
        self.robot_health_timeout: float = 10.0
        self.scheduler_enabled: bool = True
        self.message_strategy: str = STRATEGY_RANDOM
        self.auth_key_days: int = 365
        self.session_valid_days: int = 365
        self.qr_code_ttl_seconds: int = 300
        self.load()

    def load(self):
        """从环境变量加载配置"""
        self.host = os.getenv("WX_SERVICE_HOST", "0.0.0.0")
        self.port = _env_int("WX_SERVICE_PORT", 8886)
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.robot_api_timeout = _env_float("ROBOT_API_TIMEOUT", 30.0)
        self.robot_health_timeout = _env_float("ROBOT_HEALTH_TIMEOUT", 10.0)
        self.scheduler_enabled = _env_bool("SCHEDULER_ENABLED", True)
        self.message_strategy = os.getenv("MESSAGE_STRATEGY", STRATEGY_RANDOM).lower()
        self.auth_key_days = _env_int("AUTH_KEY_DAYS", 365)
        self.session_valid_days = _env_int("SESSION_VALID_DAYS", 365)
        self.qr_code_ttl_seconds = _env_int("QR_CODE_TTL_SECONDS", 300)

    def validate(self) -> list[str]:
        """验证配置，返回错误列表"""
        errors = []
        if self.message_strategy not in SUPPORTED_STRATEGIES:
            errors.append(
                f"MESSAGE_STRATEGY 不支持: {self.message_strategy}，"
                f"可选值: {', '.join(SUPPORTED_STRATEGIES)}"
            )
        if self.robot_api_timeout <= 0:
            errors.append("ROBOT_API_TIMEOUT 必须大于 0")
        if self.robot_health_timeout <= 0:
            errors.append("ROBOT_HEALTH_TIMEOUT 必须大于 0")
        if self.auth_key_days <= 0:
            errors.append("AUTH_KEY_DAYS 必须大于 0")
        return errors

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level,
            "robot_api_timeout": self.robot_api_timeout,
            "robot_health_timeout": self.robot_health_timeout,
            "scheduler_enabled": self.scheduler_enabled,
            "message_strategy": self.message_strategy,
            "auth_key_days": self.auth_key_days,
            "session_valid_days": self.session_valid_days,
            "qr_code_ttl_seconds": self.qr_code_ttl_seconds,
        }


# 全局配置实例
config = ServiceConfig()
