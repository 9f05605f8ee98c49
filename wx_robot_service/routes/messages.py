"""
群消息 API 路由

/api/wx/v1/messages/group/* : 发送文本、图片、图文，以及消息机器人选择策略
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from ..clients.wx_robot import WxRobotClient, RobotClientError
from ..services.message_strategy import NoEligibleBotError, get_strategy_holder
from ..services.messenger import GroupMessenger
from ..schemas import SendTextRequest, SendImageRequest, SendTextImageRequest, SetStrategyRequest
from .common import (
    API_PREFIX, success_response, bad_request, not_found, internal_error, get_robot_client
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_PREFIX}/messages/group", tags=["messages"])


def get_messenger(client: WxRobotClient = Depends(get_robot_client)) -> GroupMessenger:
    return GroupMessenger(client)


@router.post("/send-text")
async def send_text(body: SendTextRequest, messenger: GroupMessenger = Depends(get_messenger)):
    """发送文本消息到群"""
    try:
        delivery = await messenger.send_text(body.to_user_name, body.text_content)
    except NoEligibleBotError:
        return not_found("未找到对应的消息机器人")
    except SQLAlchemyError as e:
        logger.error(f"查询消息机器人失败: group_id={body.to_user_name}, {e}", exc_info=True)
        return internal_error("查询消息机器人失败")
    except RobotClientError as e:
        logger.error(f"发送文本消息失败: group_id={body.to_user_name}, {e}")
        return internal_error(f"发送文本消息失败: {e}")

    return success_response("文本消息发送成功", delivery.to_dict())


@router.post("/send-image")
async def send_image(body: SendImageRequest, messenger: GroupMessenger = Depends(get_messenger)):
    """发送图片消息到群 (base64)"""
    try:
        delivery = await messenger.send_image(body.to_user_name, body.image_content)
    except NoEligibleBotError:
        return not_found("未找到对应的消息机器人")
    except SQLAlchemyError as e:
        logger.error(f"查询消息机器人失败: group_id={body.to_user_name}, {e}", exc_info=True)
        return internal_error("查询消息机器人失败")
    except RobotClientError as e:
        logger.error(f"发送图片消息失败: group_id={body.to_user_name}, {e}")
        return internal_error(f"发送图片消息失败: {e}")

    return success_response("图片消息发送成功", delivery.to_dict())


@router.post("/send-text-image")
async def send_text_and_image(
    body: SendTextImageRequest,
    messenger: GroupMessenger = Depends(get_messenger)
):
    """
    同时发送文字和图片

    两部分使用同一个消息机器人；部分失败时仍返回 200，由 data.success / data.failures 说明。
    """
    if not body.text_content and not body.image_content:
        return bad_request("文本内容和图片内容不能都为空")

    try:
        delivery = await messenger.send_text_and_image(
            body.to_user_name, text=body.text_content, image_base64=body.image_content
        )
    except NoEligibleBotError:
        return not_found("未找到对应的消息机器人")
    except SQLAlchemyError as e:
        logger.error(f"查询消息机器人失败: group_id={body.to_user_name}, {e}", exc_info=True)
        return internal_error("查询消息机器人失败")

    return success_response("消息发送完成", delivery.to_dict())


@router.post("/set-strategy")
async def set_message_strategy(body: SetStrategyRequest):
    """切换消息机器人选择策略"""
    try:
        strategy = get_strategy_holder().switch(body.strategy)
    except ValueError as e:
        return bad_request(str(e))

    return success_response("策略设置成功", {"strategy": strategy.name})


@router.get("/strategy")
async def get_message_strategy():
    return success_response("查询成功", {"strategy": get_strategy_holder().name})
