"""
数据库模型和 Repository 单元测试

测试内容:
1. 模型字段与 to_dict
2. 会话保存 (自然键 robot_id + wx_id)
3. 定时任务候选查询
4. 群组收敛与消息机器人查询
5. 账单统计与分页
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.ext.asyncio import AsyncSession

from wx_robot_service.models import RobotConfig, UserSession, SessionStatus
from wx_robot_service.repository import (
    build_pagination,
    normalize_page,
    parse_bill_time,
    get_robot_repository,
    get_user_session_repository,
    get_group_repository,
    get_bill_repository,
)


async def _robot(session: AsyncSession, owner_id: int = 1) -> RobotConfig:
    return await get_robot_repository(session).create(
        address="http://10.0.0.1:8080", admin_key="admin", owner_id=owner_id
    )


# ============== RobotConfig ==============

class TestRobotConfigRepository:

    @pytest.mark.asyncio
    async def test_create_and_get(self, test_db_session: AsyncSession):
        repo = get_robot_repository(test_db_session)
        robot = await repo.create(
            address="http://10.0.0.1:8080",
            admin_key="admin",
            owner_id=7,
            description="测试机器人",
            admin_users=["alice", "bob"],
        )

        assert robot.id is not None
        assert robot.admin_users == "alice,bob"

        fetched = await repo.get_by_id(robot.id)
        assert fetched is not None
        data = fetched.to_dict(include_sessions=True)
        assert data["admin_users"] == ["alice", "bob"]
        assert data["owner_id"] == 7
        assert data["user_logins"] == []

    @pytest.mark.asyncio
    async def test_update_keeps_create_time(self, test_db_session: AsyncSession):
        repo = get_robot_repository(test_db_session)
        robot = await _robot(test_db_session)
        created_at = robot.create_time

        updated = await repo.update(
            robot.id, address="http://10.0.0.2:8080", admin_key="new", owner_id=2, admin_users=[]
        )

        assert updated.address == "http://10.0.0.2:8080"
        assert updated.admin_user_list == []
        assert updated.create_time == created_at

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, test_db_session: AsyncSession):
        repo = get_robot_repository(test_db_session)
        assert await repo.update(999, address="a", admin_key="b", owner_id=1) is None


# ============== UserSession ==============

class TestUserSessionRepository:

    @pytest.mark.asyncio
    async def test_save_is_idempotent_on_natural_key(self, test_db_session: AsyncSession):
        """同一 (robot_id, wx_id) 保存两次只有一行，id 与 create_time 不变，昵称取最新值"""
        robot = await _robot(test_db_session)
        repo = get_user_session_repository(test_db_session)

        first, created = await repo.save(robot.id, "wxid_a", "token-1", "A")
        assert created is True
        first_id = first.id
        created_at = first.create_time

        await asyncio.sleep(0.01)

        second, created = await repo.save(robot.id, "wxid_a", "token-2", "A2")
        assert created is False
        await test_db_session.refresh(second)
        assert second.id == first_id
        assert second.token == "token-2"
        assert second.nick_name == "A2"
        assert second.create_time == created_at.replace(tzinfo=None)

        sessions = await repo.get_by_robot(robot.id)
        assert len(sessions) == 1

    @pytest.mark.asyncio
    async def test_save_resets_status_and_initialized(self, test_db_session: AsyncSession):
        robot = await _robot(test_db_session)
        repo = get_user_session_repository(test_db_session)

        user, _ = await repo.save(robot.id, "wxid_a", "token-1")
        await repo.set_initialized(user.id)
        await repo.update_status(user.id, SessionStatus.NEEDS_RELOGIN)

        user, _ = await repo.save(robot.id, "wxid_a", "token-2")
        await test_db_session.refresh(user)

        assert user.status == SessionStatus.NORMAL
        assert user.is_initialized is False

    @pytest.mark.asyncio
    async def test_save_sets_expiry(self, test_db_session: AsyncSession):
        robot = await _robot(test_db_session)
        repo = get_user_session_repository(test_db_session)

        user, _ = await repo.save(robot.id, "wxid_a", "token-1", valid_days=30)

        delta = user.expiration_time.replace(tzinfo=None) - datetime.now(timezone.utc).replace(tzinfo=None)
        assert timedelta(days=29) < delta <= timedelta(days=30)
        assert user.extension_time == user.expiration_time

    @pytest.mark.asyncio
    async def test_update_status_with_expected(self, test_db_session: AsyncSession):
        robot = await _robot(test_db_session)
        repo = get_user_session_repository(test_db_session)
        user, _ = await repo.save(robot.id, "wxid_a", "token-1")

        assert await repo.update_status(user.id, SessionStatus.NEEDS_RELOGIN, expected=SessionStatus.NORMAL)
        # 已经不是 NORMAL，不再更新
        assert not await repo.update_status(user.id, SessionStatus.RISK, expected=SessionStatus.NORMAL)

        await test_db_session.refresh(user)
        assert user.session_status == SessionStatus.NEEDS_RELOGIN

    @pytest.mark.asyncio
    async def test_candidate_queries(self, test_db_session: AsyncSession):
        robot = await _robot(test_db_session)
        repo = get_user_session_repository(test_db_session)

        fresh, _ = await repo.save(robot.id, "wxid_fresh", "t1")
        ready, _ = await repo.save(robot.id, "wxid_ready", "t2")
        await repo.set_initialized(ready.id)
        offline, _ = await repo.save(robot.id, "wxid_offline", "t3")
        await repo.update_status(offline.id, SessionStatus.NEEDS_RELOGIN)

        assert [s.wx_id for s in await repo.list_uninitialized()] == ["wxid_fresh"]
        assert [s.wx_id for s in await repo.list_initialized()] == ["wxid_ready"]
        assert [s.wx_id for s in await repo.list_active()] == ["wxid_fresh", "wxid_ready"]

    @pytest.mark.asyncio
    async def test_first_active_token(self, test_db_session: AsyncSession):
        robot = await _robot(test_db_session)
        repo = get_user_session_repository(test_db_session)

        offline, _ = await repo.save(robot.id, "wxid_a", "token-a")
        await repo.update_status(offline.id, SessionStatus.NEEDS_RELOGIN)
        await repo.save(robot.id, "wxid_b", "token-b")

        assert await repo.get_first_active_token(robot.id) == "token-b"
        assert await repo.get_first_active_token(robot.id + 1) is None

    @pytest.mark.asyncio
    async def test_update_extension(self, test_db_session: AsyncSession):
        robot = await _robot(test_db_session)
        repo = get_user_session_repository(test_db_session)
        user, _ = await repo.save(robot.id, "wxid_a", "token-a")

        new_expiry = datetime(2030, 1, 1)
        assert await repo.update_extension(robot.id, "token-a", new_expiry)
        assert not await repo.update_extension(robot.id, "other-token", new_expiry)

        await test_db_session.refresh(user)
        assert user.expiration_time == new_expiry
        assert user.extension_time == new_expiry

    @pytest.mark.asyncio
    async def test_delete_keeps_groups(self, test_db_session: AsyncSession):
        robot = await _robot(test_db_session)
        repo = get_user_session_repository(test_db_session)
        group_repo = get_group_repository(test_db_session)
        user, _ = await repo.save(robot.id, "wxid_a", "token-a")
        await group_repo.save_or_update("wxid_a", "g1@chatroom", "群1")

        assert await repo.delete(user.id)
        assert not await repo.delete(user.id)
        assert await group_repo.count_by_wx_id("wxid_a") == 1

    @pytest.mark.asyncio
    async def test_robot_relationship_is_never_lazy_loaded(self, test_db_session: AsyncSession):
        """异步 Session 下禁止隐式加载 robot，需要时显式查询"""
        robot = await _robot(test_db_session)
        repo = get_user_session_repository(test_db_session)
        user, _ = await repo.save(robot.id, "wxid_a", "token-a")
        await test_db_session.commit()
        test_db_session.expunge_all()

        loaded = await repo.get_by_id(user.id)

        assert loaded.robot_id == robot.id
        with pytest.raises(InvalidRequestError):
            loaded.robot


# ============== 消息机器人查询 ==============

class TestFindMessageBots:

    @pytest.mark.asyncio
    async def test_only_eligible_sessions(self, test_db_session: AsyncSession):
        robot = await _robot(test_db_session)
        repo = get_user_session_repository(test_db_session)
        group_repo = get_group_repository(test_db_session)

        ok, _ = await repo.save(robot.id, "wxid_ok", "t-ok", is_message_bot=True)
        await repo.save(robot.id, "wxid_plain", "t-plain", is_message_bot=False)
        await repo.save(robot.id, "wxid_risky", "t-risky", is_message_bot=True, has_security_risk=True)
        offline, _ = await repo.save(robot.id, "wxid_offline", "t-off", is_message_bot=True)
        await repo.update_status(offline.id, SessionStatus.NEEDS_RELOGIN)

        for wx_id in ("wxid_ok", "wxid_plain", "wxid_risky", "wxid_offline"):
            await group_repo.save_or_update(wx_id, "g1@chatroom", "群1")

        candidates = await repo.find_message_bots("g1@chatroom")

        assert [c.session_id for c in candidates] == [ok.id]
        assert candidates[0].token == "t-ok"
        assert candidates[0].robot_address == robot.address

    @pytest.mark.asyncio
    async def test_unknown_group(self, test_db_session: AsyncSession):
        repo = get_user_session_repository(test_db_session)
        assert await repo.find_message_bots("missing@chatroom") == []


# ============== Group ==============

class TestGroupRepository:

    @pytest.mark.asyncio
    async def test_save_or_update(self, test_db_session: AsyncSession):
        repo = get_group_repository(test_db_session)

        assert await repo.save_or_update("wxid_a", "g1", "旧名称") is True
        assert await repo.save_or_update("wxid_a", "g1", "旧名称") is False
        assert await repo.save_or_update("wxid_a", "g1", "新名称") is True

        groups = await repo.get_by_wx_id("wxid_a")
        assert len(groups) == 1
        assert groups[0].group_nick_name == "新名称"

    @pytest.mark.asyncio
    async def test_delete_not_in(self, test_db_session: AsyncSession):
        repo = get_group_repository(test_db_session)
        for group_id in ("A", "B", "C"):
            await repo.save_or_update("wxid_a", group_id, group_id)
        await repo.save_or_update("wxid_b", "A", "A")

        deleted = await repo.delete_not_in("wxid_a", ["B", "C", "D"])

        assert deleted == 1
        assert sorted(g.group_id for g in await repo.get_by_wx_id("wxid_a")) == ["B", "C"]
        # 其他 wx_id 的群不受影响
        assert await repo.count_by_wx_id("wxid_b") == 1

    @pytest.mark.asyncio
    async def test_delete_not_in_empty_wipes_all(self, test_db_session: AsyncSession):
        repo = get_group_repository(test_db_session)
        for group_id in ("A", "B"):
            await repo.save_or_update("wxid_a", group_id, group_id)

        assert await repo.delete_not_in("wxid_a", []) == 2
        assert await repo.count_by_wx_id("wxid_a") == 0

    @pytest.mark.asyncio
    async def test_search_by_nick_name(self, test_db_session: AsyncSession):
        repo = get_group_repository(test_db_session)
        await repo.save_or_update("wxid_a", "g1", "财务一群")
        await repo.save_or_update("wxid_a", "g2", "技术群")
        await repo.save_or_update("wxid_b", "g3", "财务二群")

        result = await repo.search_by_nick_name("财务")
        assert [g.group_id for g in result] == ["g1", "g3"]

    @pytest.mark.asyncio
    async def test_get_by_group_id(self, test_db_session: AsyncSession):
        repo = get_group_repository(test_db_session)
        await repo.save_or_update("wxid_a", "g1", "群1")
        await repo.save_or_update("wxid_b", "g1", "群1")

        group = await repo.get_by_group_id("g1")

        assert group.wx_id == "wxid_a"
        assert await repo.get_by_group_id("missing") is None


# ============== Bill ==============

class TestBillRepository:

    @pytest.mark.asyncio
    async def test_statistics_grouped_and_paginated(self, test_db_session: AsyncSession):
        repo = get_bill_repository(test_db_session)
        await repo.create("群A", "gA", owner_id=1, amount="10.50")
        await repo.create("群A", "gA", owner_id=1, amount="4.25")
        await repo.create("群B", "gB", owner_id=1, amount="1")
        await repo.create("群C", "gC", owner_id=2, amount="100")

        stats = await repo.get_statistics(owner_id=1, page_no=1, page_size=1)

        assert stats["pagination"]["total_count"] == 2
        assert stats["pagination"]["total_pages"] == 2
        assert stats["pagination"]["has_next"] is True
        assert stats["list"] == [
            {"group_id": "gA", "group_nick": "群A", "total_amount": "14.75", "count": 2}
        ]

    @pytest.mark.asyncio
    async def test_statistics_filter_by_nick(self, test_db_session: AsyncSession):
        repo = get_bill_repository(test_db_session)
        await repo.create("财务群", "gA", owner_id=1, amount="3")
        await repo.create("技术群", "gB", owner_id=1, amount="5")

        stats = await repo.get_statistics(owner_id=1, group_nick="财务")
        assert [item["group_id"] for item in stats["list"]] == ["gA"]

    @pytest.mark.asyncio
    async def test_list_bills_filters(self, test_db_session: AsyncSession):
        repo = get_bill_repository(test_db_session)
        await repo.create("群A", "gA", owner_id=1, amount="1", msg_time=1000, status="0")
        await repo.create("群A", "gA", owner_id=1, amount="2", msg_time=2000, status="1")
        await repo.create("群B", "gB", owner_id=1, amount="3", msg_time=3000, status="0")
        await repo.create("群B", "gB", owner_id=2, amount="4", msg_time=3000, status="0")

        result = await repo.list_bills(owner_id=1, msg_time_start=1500, msg_time_end=3000)
        assert [b["amount"] for b in result["list"]] == ["3.00", "2.00"]

        result = await repo.list_bills(owner_id=1, status="0", group_name="群")
        assert result["pagination"]["total_count"] == 2

        result = await repo.list_bills(owner_id=1, group_id="gA", page_no=2, page_size=1)
        assert len(result["list"]) == 1
        assert result["pagination"]["has_prev"] is True
        assert result["pagination"]["has_next"] is False

    @pytest.mark.asyncio
    async def test_bill_to_dict_amount_format(self, test_db_session: AsyncSession):
        repo = get_bill_repository(test_db_session)
        bill = await repo.create("群A", "gA", owner_id=1, amount=Decimal("7"))
        assert bill.to_dict()["amount"] == "7.00"


# ============== 辅助函数 ==============

class TestHelpers:

    def test_build_pagination(self):
        assert build_pagination(1, 10, 0)["total_pages"] == 0
        page = build_pagination(2, 10, 25)
        assert page["total_pages"] == 3
        assert page["has_next"] is True
        assert page["has_prev"] is True

    def test_normalize_page(self):
        assert normalize_page(0, 0) == (1, 10)
        assert normalize_page(3, 500) == (3, 100)
        assert normalize_page(None, None) == (1, 10)

    def test_parse_bill_time(self):
        assert parse_bill_time("1970-01-01 00:01:40") == 100
        with pytest.raises(ValueError):
            parse_bill_time("2024/01/01")


def test_session_status_enum():
    user = UserSession(status=SessionStatus.NEEDS_RELOGIN, is_message_bot=True, has_security_risk=False)
    assert user.session_status is SessionStatus.NEEDS_RELOGIN
    assert user.is_message_bot_eligible is False
