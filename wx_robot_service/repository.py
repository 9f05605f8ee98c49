"""
WX Robot Service 数据库访问层 (Repository/DAO)

提供对数据库的 CRUD 操作，封装所有数据库访问逻辑。
所有方法只 flush 不 commit，事务边界由调用方的 Session 决定。
数据库错误以 sqlalchemy.exc.SQLAlchemyError 原样抛出。
"""
import logging
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, List, Iterable

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from .models import RobotConfig, UserSession, Group, Bill, SessionStatus, utc_now
from .services.message_strategy import MessageBotCandidate

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def normalize_page(page_no: int | None, page_size: int | None) -> tuple[int, int]:
    """页码 <= 0 取 1；每页大小 <= 0 取默认值，超过上限取上限"""
    if not page_no or page_no <= 0:
        page_no = 1
    if not page_size or page_size <= 0:
        page_size = DEFAULT_PAGE_SIZE
    return page_no, min(page_size, MAX_PAGE_SIZE)


def build_pagination(page_no: int, page_size: int, total_count: int) -> dict:
    """分页信息"""
    total_pages = math.ceil(total_count / page_size) if page_size > 0 else 0
    return {
        "page_no": page_no,
        "page_size": page_size,
        "total_count": total_count,
        "total_pages": total_pages,
        "has_next": page_no < total_pages,
        "has_prev": page_no > 1,
    }


# ============== RobotConfig Repository ==============

class RobotConfigRepository:
    """
    RobotConfig 数据访问层

    机器人配置只通过接口显式创建和修改，不提供删除。
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        address: str,
        admin_key: str,
        owner_id: int,
        description: str | None = None,
        admin_users: list[str] | None = None
    ) -> RobotConfig:
        """
        创建机器人配置

        Args:
            address: 机器人地址
            admin_key: 管理密钥
            owner_id: 所属公司ID
            description: 描述
            admin_users: 管理员用户列表

        Returns:
            创建的 RobotConfig 对象
        """
        robot = RobotConfig(
            address=address,
            admin_key=admin_key,
            owner_id=owner_id,
            description=description,
            sessions=[],
        )
        robot.admin_user_list = admin_users

        self.session.add(robot)
        await self.session.flush()

        logger.info(f"创建机器人配置: id={robot.id}, address={address}")
        return robot

    async def get_by_id(self, robot_id: int) -> Optional[RobotConfig]:
        stmt = select(RobotConfig).where(RobotConfig.id == robot_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_all(self) -> List[RobotConfig]:
        """获取全部机器人 (会话列表随之加载)"""
        stmt = select(RobotConfig).order_by(RobotConfig.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update(
        self,
        robot_id: int,
        address: str,
        admin_key: str,
        owner_id: int,
        description: str | None = None,
        admin_users: list[str] | None = None
    ) -> Optional[RobotConfig]:
        """
        整体更新机器人配置 (保留 id 与 create_time)

        Returns:
            更新后的 RobotConfig 对象，不存在时返回 None
        """
        robot = await self.get_by_id(robot_id)
        if not robot:
            return None

        robot.address = address
        robot.admin_key = admin_key
        robot.owner_id = owner_id
        robot.description = description
        robot.admin_user_list = admin_users
        await self.session.flush()

        logger.info(f"更新机器人配置: id={robot_id}")
        return robot


# ============== UserSession Repository ==============

class UserSessionRepository:
    """
    UserSession 数据访问层

    提供对 wx_user_logins 表的所有数据库操作，包括定时任务使用的候选查询。
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, session_id: int) -> Optional[UserSession]:
        stmt = select(UserSession).where(UserSession.id == session_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_robot(self, robot_id: int) -> List[UserSession]:
        stmt = (
            select(UserSession)
            .where(UserSession.robot_id == robot_id)
            .order_by(UserSession.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_robot_and_wx_id(self, robot_id: int, wx_id: str) -> Optional[UserSession]:
        stmt = select(UserSession).where(
            UserSession.robot_id == robot_id,
            UserSession.wx_id == wx_id
        ).order_by(UserSession.id).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_first_active_token(self, robot_id: int) -> Optional[str]:
        """机器人下第一个状态正常且持有 token 的会话的 token"""
        stmt = (
            select(UserSession.token)
            .where(
                UserSession.robot_id == robot_id,
                UserSession.status == SessionStatus.NORMAL,
                UserSession.token.is_not(None),
                UserSession.token != ""
            )
            .order_by(UserSession.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def save(
        self,
        robot_id: int,
        wx_id: str,
        token: str,
        nick_name: str | None = None,
        has_security_risk: bool = False,
        is_message_bot: bool = False,
        valid_days: int = 365
    ) -> tuple[UserSession, bool]:
        """
        保存登录会话 (以 robot_id + wx_id 为自然键)

        已存在时原地覆盖除 id / create_time 以外的字段: 状态回到 NORMAL，
        初始化标记清零以便初始化任务重新拉取群列表。

        Returns:
            (会话对象, 是否新建)
        """
        expiry = utc_now() + timedelta(days=valid_days)
        values = {
            "token": token,
            "nick_name": nick_name,
            "extension_time": expiry,
            "expiration_time": expiry,
            "has_security_risk": has_security_risk,
            "status": SessionStatus.NORMAL,
            "is_initialized": False,
            "is_message_bot": is_message_bot,
        }

        existing = await self.get_by_robot_and_wx_id(robot_id, wx_id)
        if existing:
            for key, value in values.items():
                setattr(existing, key, value)
            existing.update_time = utc_now()
            await self.session.flush()
            logger.info(f"用户登录信息已更新: wx_id={wx_id}, nick_name={nick_name}")
            return existing, False

        user_session = UserSession(robot_id=robot_id, wx_id=wx_id, **values)
        self.session.add(user_session)
        await self.session.flush()
        logger.info(f"用户登录成功: wx_id={wx_id}, nick_name={nick_name}")
        return user_session, True

    async def delete(self, session_id: int) -> bool:
        """删除会话 (不删除群组数据)"""
        user_session = await self.get_by_id(session_id)
        if not user_session:
            return False

        await self.session.execute(delete(UserSession).where(UserSession.id == session_id))
        await self.session.flush()

        logger.info(f"删除用户: id={session_id}, wx_id={user_session.wx_id}, nick_name={user_session.nick_name}")
        return True

    async def update_extension(self, robot_id: int, token: str, new_expiry: datetime) -> bool:
        """按 (robot_id, token) 更新会话的延期时间与过期时间"""
        stmt = (
            update(UserSession)
            .where(UserSession.robot_id == robot_id, UserSession.token == token)
            .values(extension_time=new_expiry, expiration_time=new_expiry, update_time=utc_now())
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount > 0

    async def update_status(
        self,
        session_id: int,
        status: SessionStatus,
        expected: SessionStatus | None = None
    ) -> bool:
        """
        更新会话状态

        Args:
            session_id: 会话 ID
            status: 新状态
            expected: 仅当当前状态等于该值时才更新

        Returns:
            是否有行被更新
        """
        stmt = update(UserSession).where(UserSession.id == session_id)
        if expected is not None:
            stmt = stmt.where(UserSession.status == expected)
        stmt = stmt.values(status=status, update_time=utc_now())

        result = await self.session.execute(stmt)
        await self.session.flush()

        changed = result.rowcount > 0
        if changed:
            logger.info(f"用户状态更新完成: session_id={session_id}, status={int(status)}")
        return changed

    async def set_initialized(self, session_id: int) -> bool:
        stmt = (
            update(UserSession)
            .where(UserSession.id == session_id)
            .values(is_initialized=True, update_time=utc_now())
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        logger.debug(f"用户初始化状态更新完成: session_id={session_id}")
        return result.rowcount > 0

    async def set_message_bot(self, session_id: int, is_message_bot: bool) -> bool:
        stmt = (
            update(UserSession)
            .where(UserSession.id == session_id)
            .values(is_message_bot=is_message_bot, update_time=utc_now())
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        logger.info(f"消息机器人状态更新完成: session_id={session_id}, is_message_bot={is_message_bot}")
        return result.rowcount > 0

    # ============== 定时任务候选 ==============

    async def list_uninitialized(self) -> List[UserSession]:
        """状态正常但尚未初始化的会话"""
        stmt = (
            select(UserSession)
            .where(
                UserSession.is_initialized == False,
                UserSession.status == SessionStatus.NORMAL
            )
            .order_by(UserSession.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_initialized(self) -> List[UserSession]:
        """状态正常且已初始化的会话"""
        stmt = (
            select(UserSession)
            .where(
                UserSession.is_initialized == True,
                UserSession.status == SessionStatus.NORMAL
            )
            .order_by(UserSession.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_active(self) -> List[UserSession]:
        """状态正常的会话"""
        stmt = (
            select(UserSession)
            .where(UserSession.status == SessionStatus.NORMAL)
            .order_by(UserSession.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_message_bots(self, group_id: str) -> List[MessageBotCandidate]:
        """
        查询能向指定群发送消息的会话

        群 -> 会话 (wx_id) -> 机器人 (robot_id)，只保留状态正常、标记为消息机器人
        且无安全风险的会话，按会话 ID 排序。
        """
        stmt = (
            select(
                UserSession.id,
                UserSession.token,
                UserSession.wx_id,
                UserSession.nick_name,
                RobotConfig.id,
                RobotConfig.address,
                RobotConfig.admin_key,
            )
            .select_from(Group)
            .join(UserSession, Group.wx_id == UserSession.wx_id)
            .join(RobotConfig, UserSession.robot_id == RobotConfig.id)
            .where(
                Group.group_id == group_id,
                UserSession.status == SessionStatus.NORMAL,
                UserSession.is_message_bot == True,
                UserSession.has_security_risk == False
            )
            .order_by(UserSession.id)
        )
        result = await self.session.execute(stmt)

        return [
            MessageBotCandidate(
                session_id=row[0],
                token=row[1] or "",
                wx_id=row[2] or "",
                nick_name=row[3] or "",
                robot_id=row[4],
                robot_address=row[5],
                robot_admin_key=row[6],
            )
            for row in result.all()
        ]


# ============== Group Repository ==============

class GroupRepository:
    """
    Group 数据访问层

    以 (wx_id, group_id) 为自然键。
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save_or_update(
        self,
        wx_id: str,
        group_id: str,
        group_nick_name: str | None
    ) -> bool:
        """
        保存或更新群组

        不存在则新建；存在且昵称变化时才更新，昵称未变不写库。

        Returns:
            是否有新建或修改
        """
        stmt = select(Group).where(Group.wx_id == wx_id, Group.group_id == group_id)
        result = await self.session.execute(stmt)
        existing = result.scalar_one_or_none()

        if existing is None:
            self.session.add(Group(
                wx_id=wx_id,
                group_id=group_id,
                group_nick_name=group_nick_name,
            ))
            await self.session.flush()
            logger.debug(f"创建群记录: wx_id={wx_id}, group_id={group_id}, group_nick_name={group_nick_name}")
            return True

        if existing.group_nick_name == group_nick_name:
            return False

        existing.group_nick_name = group_nick_name
        await self.session.flush()
        logger.debug(f"更新群记录: wx_id={wx_id}, group_id={group_id}, group_nick_name={group_nick_name}")
        return True

    async def delete_not_in(self, wx_id: str, keep_group_ids: Iterable[str]) -> int:
        """
        删除 wx_id 下不在 keep_group_ids 中的群

        keep_group_ids 为空时删除该 wx_id 的全部群。

        Returns:
            删除的行数
        """
        keep = list(keep_group_ids)
        stmt = delete(Group).where(Group.wx_id == wx_id)
        if keep:
            stmt = stmt.where(Group.group_id.not_in(keep))

        result = await self.session.execute(stmt)
        await self.session.flush()

        count = result.rowcount
        if count > 0:
            logger.info(f"删除过期群记录: wx_id={wx_id}, count={count}")
        return count

    async def get_by_wx_id(self, wx_id: str) -> List[Group]:
        stmt = select(Group).where(Group.wx_id == wx_id).order_by(Group.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_wx_id(self, wx_id: str) -> int:
        stmt = select(func.count(Group.id)).where(Group.wx_id == wx_id)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def search_by_nick_name(self, keyword: str) -> List[Group]:
        """按群名称模糊搜索"""
        stmt = (
            select(Group)
            .where(Group.group_nick_name.like(f"%{keyword}%"))
            .order_by(Group.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_group_id(self, group_id: str) -> Optional[Group]:
        """按群 ID 获取一条记录 (同一个群可能被多个账号收录)"""
        stmt = select(Group).where(Group.group_id == group_id).order_by(Group.id).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


# ============== Bill Repository ==============

class BillRepository:
    """
    Bill 数据访问层

    账单由外部流程写入，这里提供创建 (供导入与测试)、统计与分页查询。
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        group_name: str,
        group_id: str,
        owner_id: int,
        amount: Decimal | str | None = None,
        dollar: str | None = None,
        rate: str | None = None,
        remark: str | None = None,
        operator: str | None = None,
        msg_time: int | None = None,
        status: str = "0"
    ) -> Bill:
        bill = Bill(
            group_name=group_name,
            group_id=group_id,
            owner_id=owner_id,
            amount=Decimal(str(amount)) if amount is not None else None,
            dollar=dollar,
            rate=rate,
            remark=remark,
            operator=operator,
            msg_time=msg_time,
            status=status,
        )
        self.session.add(bill)
        await self.session.flush()

        logger.info(f"账单创建成功: bill_id={bill.id}")
        return bill

    async def get_statistics(
        self,
        owner_id: int,
        group_id: str | None = None,
        group_nick: str | None = None,
        page_no: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE
    ) -> dict:
        """
        按 (group_id, group_name) 分组统计金额与笔数 (分页)

        Returns:
            {"list": [...], "pagination": {...}}
        """
        total_amount = func.sum(Bill.amount).label("total_amount")
        bill_count = func.count(Bill.id).label("bill_count")

        base = (
            select(Bill.group_id, Bill.group_name, total_amount, bill_count)
            .where(Bill.owner_id == owner_id)
            .group_by(Bill.group_id, Bill.group_name)
        )
        if group_id:
            base = base.where(Bill.group_id == group_id)
        if group_nick:
            base = base.where(Bill.group_name.like(f"%{group_nick}%"))

        count_stmt = select(func.count()).select_from(base.subquery())
        total_count = (await self.session.execute(count_stmt)).scalar() or 0

        stmt = (
            base.order_by(Bill.group_id, Bill.group_name)
            .offset((page_no - 1) * page_size)
            .limit(page_size)
        )
        rows = (await self.session.execute(stmt)).all()

        items = [
            {
                "group_id": row.group_id,
                "group_nick": row.group_name,
                "total_amount": f"{Decimal(str(row.total_amount or 0)):.2f}",
                "count": row.bill_count,
            }
            for row in rows
        ]

        return {
            "list": items,
            "pagination": build_pagination(page_no, page_size, total_count),
        }

    async def list_bills(
        self,
        owner_id: int,
        msg_time_start: int | None = None,
        msg_time_end: int | None = None,
        group_name: str | None = None,
        group_id: str | None = None,
        status: str | None = None,
        page_no: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE
    ) -> dict:
        """
        分页查询账单，按创建时间倒序

        Args:
            msg_time_start / msg_time_end: 账单时间范围 (秒级时间戳，闭区间)

        Returns:
            {"list": [...], "pagination": {...}}
        """
        conditions = [Bill.owner_id == owner_id]
        if msg_time_start is not None:
            conditions.append(Bill.msg_time >= msg_time_start)
        if msg_time_end is not None:
            conditions.append(Bill.msg_time <= msg_time_end)
        if group_name:
            conditions.append(Bill.group_name.like(f"%{group_name}%"))
        if group_id:
            conditions.append(Bill.group_id == group_id)
        if status:
            conditions.append(Bill.status == status)

        count_stmt = select(func.count(Bill.id)).where(*conditions)
        total_count = (await self.session.execute(count_stmt)).scalar() or 0

        stmt = (
            select(Bill)
            .where(*conditions)
            .order_by(Bill.create_time.desc(), Bill.id.desc())
            .offset((page_no - 1) * page_size)
            .limit(page_size)
        )
        bills = (await self.session.execute(stmt)).scalars().all()

        return {
            "list": [bill.to_dict() for bill in bills],
            "pagination": build_pagination(page_no, page_size, total_count),
        }


# ============== 工厂函数 ==============

def get_robot_repository(session: AsyncSession) -> RobotConfigRepository:
    """获取 RobotConfigRepository 实例"""
    return RobotConfigRepository(session)


def get_user_session_repository(session: AsyncSession) -> UserSessionRepository:
    """获取 UserSessionRepository 实例"""
    return UserSessionRepository(session)


def get_group_repository(session: AsyncSession) -> GroupRepository:
    """获取 GroupRepository 实例"""
    return GroupRepository(session)


def get_bill_repository(session: AsyncSession) -> BillRepository:
    """获取 BillRepository 实例"""
    return BillRepository(session)


def parse_bill_time(value: str) -> int:
    """解析 "YYYY-MM-DD HH:MM:SS" (按 UTC) 为秒级时间戳"""
    parsed = datetime.strptime(value, "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())
