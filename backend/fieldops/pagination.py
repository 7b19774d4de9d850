"""分頁：page/limit 解析、count + 視窗查詢、回應用分頁資訊"""
import math
from typing import Any, Optional, Sequence, Tuple

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fieldops.errors import ValidationError

DEFAULT_LIMIT = 50
MAX_LIMIT = 100


def _parse_int(value: Any, name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} ไม่ถูกต้อง")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(f"{name} ไม่ถูกต้อง")


def parse_pagination_params(page: Any = None, limit: Any = None, default_limit: int = DEFAULT_LIMIT) -> Tuple[int, int]:
    """page ≥ 1；limit 夾在 [1, 100]。非整數字串直接回 ValidationError，不默默改成預設值。"""
    page_num = _parse_int(page, "page")
    limit_num = _parse_int(limit, "limit")
    page_num = max(1, page_num if page_num is not None else 1)
    limit_num = min(MAX_LIMIT, max(1, limit_num if limit_num is not None else default_limit))
    return page_num, limit_num


def calculate_pagination(page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if limit > 0 else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrevious": page > 1,
    }


async def paginate(
    db: AsyncSession, stmt: Select, page: int, limit: int, *order_by, options: Sequence = ()
) -> Tuple[list, dict]:
    """同一組條件先 count，再取 [offset, offset+limit) 範圍；order_by 必填以確保換頁穩定。
    options（selectinload 等）只套在資料查詢，不進 count 子查詢。"""
    if not order_by:
        raise ValueError("paginate 需要明確排序欄位")
    total = await db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    data_stmt = stmt.options(*options) if options else stmt
    result = await db.execute(data_stmt.order_by(*order_by).offset((page - 1) * limit).limit(limit))
    rows = list(result.scalars().unique().all())
    return rows, calculate_pagination(page, limit, total)
