"""
服务模块
"""
from .message_strategy import (
    MessageBotCandidate,
    MessageSendStrategy,
    RoundRobinStrategy,
    RandomStrategy,
    StrategyHolder,
    NoEligibleBotError,
    create_strategy,
    get_strategy_holder,
)

__all__ = [
    "MessageBotCandidate",
    "MessageSendStrategy",
    "RoundRobinStrategy",
    "RandomStrategy",
    "StrategyHolder",
    "NoEligibleBotError",
    "create_strategy",
    "get_strategy_holder",
]
