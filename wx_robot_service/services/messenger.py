"""
群消息发送服务

按当前策略为目标群选出一个消息机器人，再通过该机器人所在的自动化接口发送消息。
发送不做重试，也不保证只发送一次。
"""
import logging
from dataclasses import dataclass
from typing import Optional

from .. import database
from ..clients.wx_robot import WxRobotClient, SendResult, TextImageResult
from ..repository import get_user_session_repository
from .message_strategy import MessageBotCandidate, NoEligibleBotError, StrategyHolder, get_strategy_holder

logger = logging.getLogger(__name__)


@dataclass
class Delivery:
    """一次发送使用的机器人与发送结果"""
    bot: MessageBotCandidate
    result: SendResult | TextImageResult

    def to_dict(self) -> dict:
        data = self.result.to_dict()
        data["bot"] = self.bot.to_dict()
        return data


class GroupMessenger:
    """群消息发送"""

    def __init__(
        self,
        client: WxRobotClient,
        strategy_holder: Optional[StrategyHolder] = None,
        db_manager=None
    ):
        self.client = client
        self.strategy_holder = strategy_holder or get_strategy_holder()
        self._db_manager = db_manager

    @property
    def db(self):
        return self._db_manager or database.get_db_manager()

    async def pick_bot(self, group_id: str) -> MessageBotCandidate:
        """
        为群选择消息机器人

        Raises:
            NoEligibleBotError: 没有符合条件的会话
        """
        async with self.db.get_session() as session:
            candidates = await get_user_session_repository(session).find_message_bots(group_id)

        if not candidates:
            logger.warning(f"未找到可用的消息机器人: group_id={group_id}")
            raise NoEligibleBotError(group_id)

        return self.strategy_holder.select(candidates)

    async def send_text(self, group_id: str, text: str) -> Delivery:
        bot = await self.pick_bot(group_id)
        result = await self.client.send_text(bot.robot_address, bot.token, group_id, text)
        return Delivery(bot=bot, result=result)

    async def send_image(self, group_id: str, image_base64: str) -> Delivery:
        bot = await self.pick_bot(group_id)
        result = await self.client.send_image(bot.robot_address, bot.token, group_id, image_base64)
        return Delivery(bot=bot, result=result)

    async def send_text_and_image(self, group_id: str, text: str = "", image_base64: str = "") -> Delivery:
        """文字和图片使用同一个消息机器人发送，允许部分成功"""
        if not text and not image_base64:
            raise ValueError("文本内容和图片内容不能都为空")

        bot = await self.pick_bot(group_id)
        result = await self.client.send_text_and_image(
            bot.robot_address, bot.token, group_id, text=text, image_base64=image_base64
        )
        return Delivery(bot=bot, result=result)
