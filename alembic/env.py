"""Alembic 迁移环境

- 数据库连接优先取环境变量 DATABASE_URL，否则使用 alembic.ini 中的 sqlalchemy.url
- 目标元数据来自 wx_robot_service.models
- Alembic 使用同步驱动: aiosqlite -> sqlite, aiomysql -> pymysql
"""
import os
import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import engine_from_config, pool

# 将项目根目录添加到 Python 路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def load_dotenv_file():
    """加载项目根目录的 .env 到环境变量 (不覆盖已有变量)"""
    env_path = project_root / ".env"
    if not env_path.exists():
        return False

    with open(env_path, "r") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            os.environ.setdefault(key.strip(), value.strip())
    return True


load_dotenv_file()

from alembic import context
from wx_robot_service.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def to_sync_url(database_url: str) -> str:
    if database_url.startswith("sqlite+aiosqlite"):
        return database_url.replace("sqlite+aiosqlite", "sqlite", 1)
    if database_url.startswith("mysql+aiomysql"):
        return database_url.replace("mysql+aiomysql", "mysql+pymysql", 1)
    return database_url


database_url = os.getenv("DATABASE_URL")
if database_url:
    # configparser 需要转义 %
    config.set_main_option("sqlalchemy.url", to_sync_url(database_url).replace("%", "%%"))

target_metadata = Base.metadata


# ============== 迁移执行 ==============

def run_migrations_offline() -> None:
    """离线模式: 只生成 SQL 脚本"""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """在线模式: 连接数据库执行迁移"""
    configuration = config.get_section(config.config_ini_section, {})
    if configuration.get("sqlalchemy.url", "").startswith("sqlite"):
        configuration["sqlalchemy.connect_args"] = {"check_same_thread": False}

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,  # SQLite 支持 ALTER TABLE
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
