"""請假 API：申請 level 0；修改 / 核准 / 駁回 level 1；撤銷限申請人本人或 level 2；刪除 level 2"""
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fieldops import crud, schemas
from fieldops.auth import Actor, get_current_actor, require_min_level, is_admin
from fieldops.database import get_db
from fieldops.errors import AuthorizationError
from fieldops.pagination import parse_pagination_params
from fieldops.responses import paginated, success
from fieldops.validation import parse_optional_request_body, parse_request_body

router = APIRouter(prefix="/api-leave-requests", tags=["leave-requests"])


def _read(leave) -> dict:
    return schemas.LeaveRequestRead.model_validate(leave).model_dump()


@router.get("")
@router.get("/search")
async def list_leave_requests(
    status: Optional[str] = Query(None, description="pending / approved / rejected / cancelled / all"),
    leave_type_id: Optional[str] = Query(None),
    employee_id: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None, description="請假區間結束日 ≥ 此日"),
    end_date: Optional[date] = Query(None, description="請假區間開始日 ≤ 此日"),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 0)
    page_num, limit_num = parse_pagination_params(page, limit)
    rows, pagination = await crud.list_leave_requests(
        db, page_num, limit_num,
        status=status, leave_type_id=leave_type_id, employee_id=employee_id,
        start_date=start_date, end_date=end_date,
    )
    return paginated([_read(r) for r in rows], pagination)


@router.get("/{leave_id}")
async def get_leave_request(leave_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    return success(_read(await crud.leave_requests.get_by_id(db, leave_id)))


@router.post("")
async def create_leave_request(
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 0)
    leave = await crud.create_leave_request(db, body)
    return success(_read(leave), status_code=201)


@router.post("/{leave_id}/approve")
async def approve_leave_request(leave_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 1)
    return success(_read(await crud.approve_leave_request(db, leave_id, actor.id)))


@router.post("/{leave_id}/reject")
async def reject_leave_request(
    leave_id: str,
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_optional_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 1)
    reason = body.get("reason")
    if reason is not None and not isinstance(reason, str):
        reason = str(reason)
    return success(_read(await crud.reject_leave_request(db, leave_id, actor.id, reason)))


@router.post("/{leave_id}/cancel")
async def cancel_leave_request(leave_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    leave = await crud.leave_requests.get_by_id(db, leave_id)
    if leave.employee_id != actor.id and not is_admin(actor):
        raise AuthorizationError("ไม่มีสิทธิ์ยกเลิกคำขอลานี้")
    return success(_read(await crud.cancel_leave_request(db, leave)))


@router.put("/{leave_id}")
async def update_leave_request(
    leave_id: str,
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 1)
    return success(_read(await crud.leave_requests.update(db, leave_id, body)))


@router.delete("/{leave_id}")
async def delete_leave_request(leave_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 2)
    await crud.leave_requests.delete(db, leave_id)
    return success({"message": "ลบคำขอลาสำเร็จ"})
