"""
定时对账任务基础设施

每个任务 (ReconcileJob) 一次 tick 的流程:
1. 在一个独立 Session 中查询候选会话 (失败则整个 tick 失败，由调度包装器记录 ERROR)
2. 按顺序逐个处理候选，每个候选使用自己的 Session/事务
3. 单个候选失败只记录日志并计入 error，继续处理下一个

ReconcileScheduler 持有一个 APScheduler AsyncIOScheduler，
所有任务以 max_instances=1 + coalesce=True 注册，同一任务不会并发执行。
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from .. import database
from ..clients.wx_robot import WxRobotClient
from ..models import RobotConfig, UserSession
from ..repository import get_robot_repository

logger = logging.getLogger(__name__)


class ItemOutcome(str, Enum):
    """单个候选的处理结果"""
    SUCCESS = "success"
    SKIPPED = "skipped"
    CHANGED = "changed"


@dataclass
class TickResult:
    """一次 tick 的统计"""
    total: int = 0
    success: int = 0
    skipped: int = 0
    changed: int = 0
    error: int = 0

    def record(self, outcome: ItemOutcome):
        if outcome is ItemOutcome.CHANGED:
            self.changed += 1
        elif outcome is ItemOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.success += 1

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "success": self.success,
            "skipped": self.skipped,
            "changed": self.changed,
            "error": self.error,
        }


class ReconcileJob:
    """
    对账任务基类

    子类需要设置 name / cron，并实现 list_candidates 与 process。
    """

    name: str = ""
    cron: dict = {}

    def __init__(self, client: WxRobotClient, db_manager=None):
        self.client = client
        self._db_manager = db_manager
        self._lock = asyncio.Lock()
        self.stopped = False

    @property
    def db(self):
        return self._db_manager or database.get_db_manager()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def list_candidates(self, session: AsyncSession) -> Sequence[UserSession]:
        raise NotImplementedError

    async def process(self, session: AsyncSession, user_session: UserSession) -> ItemOutcome:
        raise NotImplementedError

    async def resolve_robot(self, session: AsyncSession, user_session: UserSession) -> RobotConfig | None:
        robot = await get_robot_repository(session).get_by_id(user_session.robot_id)
        if robot is None:
            logger.warning(
                f"[{self.name}] 会话关联的机器人不存在: session_id={user_session.id}, "
                f"wx_id={user_session.wx_id}, robot_id={user_session.robot_id}"
            )
        return robot

    async def run_once(self) -> TickResult:
        """
        执行一次 tick

        Raises:
            候选查询阶段的任何异常 (单个候选的失败不会抛出)
        """
        async with self._lock:
            # stop() 之前已排队、之后才拿到锁的 tick 直接放弃
            if self.stopped:
                logger.info(f"[{self.name}] 调度器已停止，放弃本次执行")
                return TickResult()

            db = self.db

            async with db.get_session() as session:
                candidates = list(await self.list_candidates(session))

            result = TickResult(total=len(candidates))
            if not candidates:
                logger.debug(f"[{self.name}] 没有需要处理的会话")
                return result

            logger.info(f"[{self.name}] 开始处理: count={len(candidates)}")

            for user_session in candidates:
                try:
                    async with db.get_session() as session:
                        outcome = await self.process(session, user_session)
                    result.record(outcome)
                except Exception as e:
                    result.error += 1
                    logger.error(
                        f"[{self.name}] 处理会话失败: session_id={user_session.id}, "
                        f"wx_id={user_session.wx_id}, 错误: {e}",
                        exc_info=True
                    )

            logger.info(f"[{self.name}] 处理完成: {result.to_dict()}")
            return result


class ReconcileScheduler:
    """
    定时任务调度器

    start() 在应用启动时调用；stop() 停止后续触发，并等待正在执行的 tick 结束后返回，
    不会中途取消 tick。已排队但尚未开始的 tick 在拿到锁后直接放弃。
    """

    def __init__(self, jobs: Sequence[ReconcileJob], timezone: str = "UTC"):
        self.jobs = list(jobs)
        self._scheduler = AsyncIOScheduler(timezone=timezone)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def _run_job(self, job: ReconcileJob):
        try:
            await job.run_once()
        except Exception as e:
            logger.error(f"[{job.name}] 定时任务执行失败: {e}", exc_info=True)

    def start(self):
        for job in self.jobs:
            job.stopped = False
            self._scheduler.add_job(
                self._run_job,
                CronTrigger(**job.cron),
                args=[job],
                id=job.name,
                name=job.name,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            logger.info(f"注册定时任务: {job.name}, cron={job.cron}")

        self._scheduler.start()
        logger.info(f"定时任务调度器已启动: jobs={len(self.jobs)}")

    async def stop(self):
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        for job in self.jobs:
            job.stopped = True

        for job in self.jobs:
            if job.running:
                logger.info(f"等待任务结束: {job.name}")
            async with job._lock:
                pass

        logger.info("定时任务调度器已停止")
