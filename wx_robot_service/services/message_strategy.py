"""
消息机器人选择策略

给定某个群的候选消息机器人列表 (已按会话 ID 排序)，选出一个用于发送。

- RoundRobinStrategy: 单调递增游标，选择 candidates[cursor % len]，然后游标 +1
- RandomStrategy: 创建时播种的随机数生成器，均匀选择

StrategyHolder 持有进程内当前使用的策略，可在运行时通过接口切换。
"""
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Sequence

from ..config import STRATEGY_ROUND_ROBIN, STRATEGY_RANDOM, SUPPORTED_STRATEGIES

logger = logging.getLogger(__name__)


class NoEligibleBotError(LookupError):
    """目标群没有可用的消息机器人"""

    def __init__(self, group_id: str):
        super().__init__(f"未找到群 {group_id} 可用的消息机器人")
        self.group_id = group_id


@dataclass(frozen=True)
class MessageBotCandidate:
    """可用于发送消息的会话及其所属机器人"""
    session_id: int
    token: str
    wx_id: str
    nick_name: str
    robot_id: int
    robot_address: str
    robot_admin_key: str

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "wx_id": self.wx_id,
            "nick_name": self.nick_name,
            "robot_id": self.robot_id,
            "robot_address": self.robot_address,
        }


class MessageSendStrategy:
    """选择策略基类"""

    name: str = ""

    def select(self, candidates: Sequence[MessageBotCandidate]) -> MessageBotCandidate:
        raise NotImplementedError


class RoundRobinStrategy(MessageSendStrategy):
    """
    轮询策略

    游标只增不减，不随候选列表长度取模重置。
    连续 N 次选择 (候选数为 N 且列表不变) 恰好覆盖每个候选一次，第 N+1 次回到第一个。
    """

    name = STRATEGY_ROUND_ROBIN

    def __init__(self):
        self._cursor = 0
        self._lock = threading.Lock()

    def select(self, candidates: Sequence[MessageBotCandidate]) -> MessageBotCandidate:
        if not candidates:
            raise ValueError("候选列表不能为空")

        with self._lock:
            index = self._cursor % len(candidates)
            self._cursor += 1

        chosen = candidates[index]
        logger.info(
            f"轮询策略选择消息机器人: wx_id={chosen.wx_id}, "
            f"selected_index={index}, total_count={len(candidates)}"
        )
        return chosen


class RandomStrategy(MessageSendStrategy):
    """随机策略"""

    name = STRATEGY_RANDOM

    def __init__(self, seed: int | None = None):
        self._rng = random.Random(seed if seed is not None else time.time_ns())
        self._lock = threading.Lock()

    def select(self, candidates: Sequence[MessageBotCandidate]) -> MessageBotCandidate:
        if not candidates:
            raise ValueError("候选列表不能为空")

        with self._lock:
            index = self._rng.randrange(len(candidates))

        chosen = candidates[index]
        logger.info(
            f"随机策略选择消息机器人: wx_id={chosen.wx_id}, "
            f"selected_index={index}, total_count={len(candidates)}"
        )
        return chosen


def create_strategy(name: str) -> MessageSendStrategy:
    """根据名称创建策略，名称不支持时抛出 ValueError"""
    if name == STRATEGY_ROUND_ROBIN:
        return RoundRobinStrategy()
    if name == STRATEGY_RANDOM:
        return RandomStrategy()
    raise ValueError(f"无效的策略类型，支持: {', '.join(SUPPORTED_STRATEGIES)}")


class StrategyHolder:
    """进程内当前策略，切换时整体替换 (新的轮询策略游标从 0 开始)"""

    def __init__(self, name: str = STRATEGY_RANDOM):
        self._lock = threading.Lock()
        self._strategy = create_strategy(name)

    @property
    def current(self) -> MessageSendStrategy:
        with self._lock:
            return self._strategy

    @property
    def name(self) -> str:
        return self.current.name

    def switch(self, name: str) -> MessageSendStrategy:
        strategy = create_strategy(name)
        with self._lock:
            self._strategy = strategy
        logger.info(f"消息发送策略已切换为: {name}")
        return strategy

    def select(self, candidates: Sequence[MessageBotCandidate]) -> MessageBotCandidate:
        return self.current.select(candidates)


# 全局策略 (启动时按配置重置)
strategy_holder = StrategyHolder()


def get_strategy_holder() -> StrategyHolder:
    return strategy_holder
