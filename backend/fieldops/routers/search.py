"""全域搜尋：公司 / 案場 / 工單 / 設備序號 / 員工，各類型各取 limit 筆"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fieldops import crud
from fieldops.auth import Actor, get_current_actor, require_min_level
from fieldops.database import get_db
from fieldops.errors import ValidationError
from fieldops.pagination import parse_pagination_params
from fieldops.responses import success

router = APIRouter(prefix="/api-search", tags=["search"])


def parse_types(types: Optional[str]) -> list:
    if not types:
        return list(crud.SEARCH_TYPES)
    requested = [t.strip() for t in types.split(",") if t.strip()]
    invalid = [t for t in requested if t not in crud.SEARCH_TYPES]
    if invalid:
        raise ValidationError(f"ประเภทไม่ถูกต้อง: {', '.join(invalid)}")
    return requested or list(crud.SEARCH_TYPES)


@router.get("")
@router.get("/global-search")
async def global_search(
    q: Optional[str] = Query(None),
    types: Optional[str] = Query(None, description="逗號分隔：company,site,ticket,merchandise,employee"),
    limit: Optional[str] = Query(None, description="每類型筆數，預設 5，最多 10"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 0)
    if not q or len(q.strip()) < 2:
        raise ValidationError("ต้องระบุคำค้นหาอย่างน้อย 2 ตัวอักษร")
    type_list = parse_types(types)
    _, limit_num = parse_pagination_params(None, limit, default_limit=5)
    limit_num = min(limit_num, 10)
    return success(await crud.global_search(db, q.strip(), type_list, limit_num))
