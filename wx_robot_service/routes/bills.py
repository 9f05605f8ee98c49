"""
账单 API 路由

账单数据由其他系统写入，这里只提供统计和分页查询。
"""
import logging
from typing import Optional

from fastapi import APIRouter, Query
from sqlalchemy.exc import SQLAlchemyError

from ..database import get_db_manager
from ..repository import get_bill_repository, normalize_page, parse_bill_time
from .common import API_PREFIX, success_response, bad_request, internal_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_PREFIX}/bills", tags=["bills"])


@router.get("/stats")
async def get_bill_statistics(
    owner_id: int = Query(...),
    group_id: Optional[str] = None,
    group_nick: Optional[str] = None,
    page_no: int = 1,
    page_size: int = 10,
):
    """按群统计账单金额与笔数"""
    page_no, page_size = normalize_page(page_no, page_size)

    try:
        async with get_db_manager().get_session() as session:
            stats = await get_bill_repository(session).get_statistics(
                owner_id,
                group_id=group_id,
                group_nick=group_nick,
                page_no=page_no,
                page_size=page_size,
            )
    except SQLAlchemyError as e:
        logger.error(f"获取账单统计失败: owner_id={owner_id}, {e}", exc_info=True)
        return internal_error("获取账单统计失败")

    return success_response("获取成功", stats)


@router.get("/list")
async def list_bills(
    owner_id: int = Query(...),
    create_time_start: Optional[str] = None,
    create_time_end: Optional[str] = None,
    group_name: Optional[str] = None,
    group_id: Optional[str] = None,
    status: Optional[str] = None,
    page_num: int = 1,
    page_size: int = 10,
):
    """
    分页查询账单

    create_time_start / create_time_end 格式 "YYYY-MM-DD HH:MM:SS"，按账单时间 (msg_time) 过滤。
    """
    try:
        msg_time_start = parse_bill_time(create_time_start) if create_time_start else None
        msg_time_end = parse_bill_time(create_time_end) if create_time_end else None
    except ValueError:
        return bad_request("时间格式错误，应为 YYYY-MM-DD HH:MM:SS")

    page_num, page_size = normalize_page(page_num, page_size)

    try:
        async with get_db_manager().get_session() as session:
            bills = await get_bill_repository(session).list_bills(
                owner_id,
                msg_time_start=msg_time_start,
                msg_time_end=msg_time_end,
                group_name=group_name,
                group_id=group_id,
                status=status,
                page_no=page_num,
                page_size=page_size,
            )
    except SQLAlchemyError as e:
        logger.error(f"查询账单列表失败: owner_id={owner_id}, {e}", exc_info=True)
        return internal_error("查询账单列表失败")

    return success_response("查询成功", bills)
