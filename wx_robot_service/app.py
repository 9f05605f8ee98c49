"""
WX Robot Service 主应用

管理微信自动化机器人: 机器人配置、扫码登录会话、群组同步和群消息发送。

运行方式:
    python -m wx_robot_service.app
    # 或
    uvicorn wx_robot_service.app:app --host 0.0.0.0 --port 8886

配置存储:
    - 默认使用 SQLite 数据库 (data/wx_robot_service.db)
    - 支持 MySQL (通过 DATABASE_URL 环境变量配置)
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .config import config
from .database import database_lifespan, check_database_connection
from .routes import (
    robots_router, users_router, auth_router, messages_router, groups_router, bills_router
)
from .routes.common import error_response, get_robot_client
from .schedulers import create_scheduler
from .services.message_strategy import get_strategy_holder

# 配置日志
logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ============== FastAPI 应用 ==============

@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    async with database_lifespan():
        # 验证配置
        errors = config.validate()
        if errors:
            for error in errors:
                logger.warning(f"配置警告: {error}")

        try:
            get_strategy_holder().switch(config.message_strategy)
        except ValueError:
            logger.warning(f"  消息发送策略无效，保持默认: {get_strategy_holder().name}")

        scheduler = None
        if config.scheduler_enabled:
            scheduler = create_scheduler(get_robot_client())
            scheduler.start()
        else:
            logger.info("  定时任务未启用")

        logger.info(f"WX Robot Service 启动 v{VERSION}")
        logger.info(f"  端口: {config.port}")
        logger.info(f"  消息发送策略: {get_strategy_holder().name}")
        logger.debug(f"  配置: {config.to_dict()}")

        yield

        if scheduler is not None:
            await scheduler.stop()
        logger.info("WX Robot Service 关闭")


# 创建 FastAPI 应用
app = FastAPI(
    title="WX Robot Service",
    description="微信机器人管理服务 - 扫码登录、群组同步、群消息发送",
    version=VERSION,
    lifespan=lifespan
)

# CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """参数校验失败统一返回 400"""
    details = "; ".join(
        f"{'.'.join(str(loc) for loc in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    )
    return error_response(400, f"参数错误: {details}")


# 注册路由
app.include_router(robots_router)
app.include_router(users_router)
app.include_router(auth_router)
app.include_router(messages_router)
app.include_router(groups_router)
app.include_router(bills_router)


# ============== 基础路由 ==============

@app.get("/")
async def root() -> dict:
    return {
        "service": "WX Robot Service",
        "version": VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """健康检查 (数据库连接)"""
    ok, error = await check_database_connection()
    if not ok:
        return error_response(503, "数据库连接失败", data={
            "status": "error",
            "components": {"database": {"status": "error", "error": error}},
        })

    return {
        "success": True,
        "message": "服务正常",
        "data": {
            "status": "ok",
            "version": VERSION,
            "components": {"database": {"status": "ok"}},
        },
    }


def main():
    """主函数"""
    import uvicorn
    uvicorn.run(
        "wx_robot_service.app:app",
        host=config.host,
        port=config.port,
        reload=False
    )


if __name__ == "__main__":
    main()
