"""
群组查询 API 路由
"""
import logging
from typing import Optional

from fastapi import APIRouter, Query
from sqlalchemy.exc import SQLAlchemyError

from ..database import get_db_manager
from ..repository import get_group_repository
from .common import API_PREFIX, success_response, bad_request, internal_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_PREFIX}/groups", tags=["groups"])


@router.get("/user/{wx_id}")
async def list_groups_by_wx_id(wx_id: str):
    """获取指定微信号所在的群"""
    try:
        async with get_db_manager().get_session() as session:
            groups = await get_group_repository(session).get_by_wx_id(wx_id)
            data = [group.to_dict() for group in groups]
    except SQLAlchemyError as e:
        logger.error(f"查询用户群组列表失败: wx_id={wx_id}, {e}", exc_info=True)
        return internal_error("查询用户群组列表失败")

    return success_response("查询成功", data)


@router.get("/search")
async def search_groups(group_nick_name: Optional[str] = Query(default=None, alias="groupNickName")):
    """按群名称模糊搜索"""
    if not group_nick_name:
        return bad_request("群名称参数不能为空")

    try:
        async with get_db_manager().get_session() as session:
            groups = await get_group_repository(session).search_by_nick_name(group_nick_name)
            data = [group.to_dict() for group in groups]
    except SQLAlchemyError as e:
        logger.error(f"搜索群组失败: keyword={group_nick_name}, {e}", exc_info=True)
        return internal_error("搜索群组失败")

    return success_response("搜索成功", data)
