"""參考資料（唯讀）：工作類型、工單狀態、府、派工來源、假別"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fieldops import crud, schemas
from fieldops.auth import Actor, get_current_actor, require_min_level
from fieldops.database import get_db
from fieldops.responses import success

router = APIRouter(prefix="/api-reference-data", tags=["reference-data"])


def _code_names(rows) -> list:
    return [schemas.CodeNameRead.model_validate(r).model_dump() for r in rows]


def _provinces(rows) -> list:
    return [schemas.ProvinceRead.model_validate(r).model_dump() for r in rows]


@router.get("/work-types")
async def work_types(actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    return success(_code_names(await crud.list_work_types(db)))


@router.get("/statuses")
async def ticket_statuses(actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    return success(_code_names(await crud.list_ticket_statuses(db)))


@router.get("/provinces")
async def provinces(actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    return success(_provinces(await crud.list_provinces(db)))


@router.get("/work-givers")
async def work_givers(actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    return success(_code_names(await crud.list_work_givers(db)))


@router.get("/leave-types")
async def leave_types(actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    return success(_code_names(await crud.list_leave_types(db)))


@router.get("/constants")
async def constants(actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    """前端初始化用，一次取回所有參考資料"""
    require_min_level(actor, 0)
    return success({
        "work_types": _code_names(await crud.list_work_types(db)),
        "statuses": _code_names(await crud.list_ticket_statuses(db)),
        "provinces": _provinces(await crud.list_provinces(db)),
        "work_givers": _code_names(await crud.list_work_givers(db)),
        "leave_types": _code_names(await crud.list_leave_types(db)),
    })
