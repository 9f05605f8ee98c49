"""
pytest 配置文件
"""
import json
import sys
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# 将包目录添加到 Python 路径
pkg_root = Path(__file__).parent.parent
if str(pkg_root) not in sys.path:
    sys.path.insert(0, str(pkg_root))


# ============== 数据库测试 Fixtures ==============

@pytest_asyncio.fixture
async def test_db_engine():
    """创建测试数据库引擎 (内存 SQLite，多个 Session 共享同一连接)"""
    from wx_robot_service.models import Base

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db_session(test_db_engine):
    """创建测试数据库 Session"""
    session_maker = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def mock_db_manager(test_db_engine):
    """
    Mock 数据库管理器

    替换全局的 db_manager，使路由和定时任务使用内存数据库
    """
    import wx_robot_service.database as db_module
    from wx_robot_service.database import DatabaseManager

    original_db_manager = db_module.db_manager

    test_manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    test_manager._engine = test_db_engine
    test_manager.init_session_factory()
    db_module.db_manager = test_manager

    yield test_manager

    db_module.db_manager = original_db_manager


# ============== 机器人接口 Mock ==============

class FakeRobotAPI:
    """
    按路径返回预设响应的外部机器人接口

    responses 的值可以是:
        - dict: 作为 JSON 响应体
        - callable(request): 返回 dict 或 httpx.Response
        - Exception: 直接抛出 (模拟网络错误)
    """

    def __init__(self):
        self.responses = {}
        self.requests: list[httpx.Request] = []

    def reply(self, path: str, code: int = 200, data=None, text: str = ""):
        self.responses[path] = {"Code": code, "Data": data, "Text": text}

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def body(self, request: httpx.Request) -> dict:
        return json.loads(request.content or b"{}")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.get(request.url.path)
        if response is None:
            return httpx.Response(404, text="not found")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(request)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    @staticmethod
    def group_list(*groups: tuple[str, str]) -> dict:
        """构造 GroupList 接口的 Data"""
        return {
            "GroupList": [
                {"userName": {"str": group_id}, "nickName": {"str": nick}}
                for group_id, nick in groups
            ]
        }

    @staticmethod
    def text_sent(to_user: str, new_msg_id: int = 1001) -> list:
        """构造 SendTextMessage 接口成功的 Data"""
        return [{
            "isSendSuccess": True,
            "resp": {
                "base_response": {"ret": 0},
                "chat_send_ret_list": [{
                    "ret": 0,
                    "toUserName": {"str": to_user},
                    "clientMsgId": 11,
                    "createTime": 1700000000,
                    "newMsgId": new_msg_id,
                }],
            },
        }]

    @staticmethod
    def image_sent(to_user: str, new_msg_id: int = 2001) -> list:
        """构造 SendImageNewMessage 接口成功的 Data"""
        return [{
            "errMsg": "",
            "resp": {
                "baseResponse": {"ret": 0},
                "toUserName": {"str": to_user},
                "fromUserName": {"str": "wxid_bot"},
                "msgId": 22,
                "createTime": 1700000000,
                "newMsgId": new_msg_id,
            },
        }]


@pytest.fixture
def robot_api():
    return FakeRobotAPI()


@pytest.fixture
def robot_client(robot_api):
    from wx_robot_service.clients import WxRobotClient

    return WxRobotClient(transport=httpx.MockTransport(robot_api.handler))


# ============== 测试数据 ==============

@pytest.fixture
def seed(mock_db_manager):
    """
    测试数据构造器

    用法:
        robot = await seed.robot()
        user = await seed.user(robot.id, "wxid_a", initialized=True)
        await seed.group("wxid_a", "g1@chatroom", "群1")
    """
    from wx_robot_service.models import SessionStatus
    from wx_robot_service.repository import (
        get_robot_repository, get_user_session_repository, get_group_repository
    )

    class Seeder:
        async def robot(self, address: str = "http://robot.local:8080", admin_key: str = "admin-key",
                        owner_id: int = 1):
            async with mock_db_manager.get_session() as session:
                return await get_robot_repository(session).create(
                    address=address, admin_key=admin_key, owner_id=owner_id
                )

        async def user(self, robot_id: int, wx_id: str, token: str | None = None,
                       initialized: bool = False, status: SessionStatus = SessionStatus.NORMAL,
                       message_bot: bool = False, risk: bool = False):
            async with mock_db_manager.get_session() as session:
                repo = get_user_session_repository(session)
                user, _ = await repo.save(
                    robot_id=robot_id,
                    wx_id=wx_id,
                    token=token or f"token-{wx_id}",
                    nick_name=f"nick-{wx_id}",
                    has_security_risk=risk,
                    is_message_bot=message_bot,
                )
                if initialized:
                    await repo.set_initialized(user.id)
                if status != SessionStatus.NORMAL:
                    await repo.update_status(user.id, status)
                return user

        async def group(self, wx_id: str, group_id: str, nick: str = ""):
            async with mock_db_manager.get_session() as session:
                await get_group_repository(session).save_or_update(wx_id, group_id, nick)

    return Seeder()


# ============== API 测试 Fixtures ==============

@pytest_asyncio.fixture
async def api_client(mock_db_manager, robot_client):
    """
    路由测试客户端

    不触发应用 lifespan (不启动定时任务)，外部机器人接口使用 FakeRobotAPI。
    """
    from wx_robot_service.app import app
    from wx_robot_service.routes.common import get_robot_client
    from wx_robot_service.services.message_strategy import get_strategy_holder

    app.dependency_overrides[get_robot_client] = lambda: robot_client

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
    get_strategy_holder().switch("random")
