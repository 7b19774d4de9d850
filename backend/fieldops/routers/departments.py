"""部門 API：查詢所有人可用；新增 / 修改 / 刪除限超級管理員"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fieldops import crud, schemas
from fieldops.auth import Actor, get_current_actor, require_min_level, require_super_admin
from fieldops.database import get_db
from fieldops.pagination import parse_pagination_params
from fieldops.responses import paginated, success
from fieldops.validation import parse_request_body

router = APIRouter(prefix="/api-departments", tags=["departments"])


def _read(dept) -> dict:
    return schemas.DepartmentRead.model_validate(dept).model_dump()


@router.get("")
@router.get("/search")
async def search_departments(
    q: Optional[str] = Query(None, description="搜尋代碼 / 泰文名 / 英文名（部分符合）"),
    is_active: Optional[bool] = Query(None),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 0)
    page_num, limit_num = parse_pagination_params(page, limit)
    rows, pagination = await crud.search_departments(db, q, is_active, page_num, limit_num)
    return paginated([_read(d) for d in rows], pagination)


@router.get("/department-summary")
async def department_summary(actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    return success(await crud.department_summary(db))


@router.get("/{department_id}")
async def get_department(department_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    return success(_read(await crud.departments.get_by_id(db, department_id)))


@router.post("")
async def create_department(
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_super_admin(actor)
    dept = await crud.create_department(db, body)
    return success(_read(dept), status_code=201)


@router.put("/{department_id}")
async def update_department(
    department_id: str,
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_super_admin(actor)
    return success(_read(await crud.departments.update(db, department_id, body)))


@router.delete("/{department_id}")
async def delete_department(department_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_super_admin(actor)
    await crud.departments.delete(db, department_id)
    return success({"message": "ลบแผนกสำเร็จ"})
