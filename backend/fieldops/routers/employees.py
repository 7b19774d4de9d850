"""員工 API；body 可用 role（職務代碼）代替 role_id。
修改：level 2 以上，或本人只改 name / nickname / email / profile_image_url。"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fieldops import crud, schemas
from fieldops.auth import Actor, get_current_actor, require_min_level
from fieldops.database import get_db
from fieldops.pagination import parse_pagination_params
from fieldops.responses import paginated, success
from fieldops.validation import parse_request_body, sanitize, validate_uuid

router = APIRouter(prefix="/api-employees", tags=["employees"])


def _read(emp) -> dict:
    return schemas.EmployeeRead.model_validate(emp).model_dump()


@router.get("")
async def list_employees(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    role: Optional[str] = Query(None, description="職務代碼"),
    department_id: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    q: Optional[str] = Query(None, description="搜尋姓名 / 編號 / 暱稱 / email"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 0)
    page_num, limit_num = parse_pagination_params(page, limit)
    rows, pagination = await crud.list_employees(
        db, page_num, limit_num, role=role, department_id=department_id, is_active=is_active, q=q
    )
    return paginated([_read(e) for e in rows], pagination)


@router.get("/employee-summary")
async def employee_summary(actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    return success(await crud.employee_summary(db))


@router.get("/code/{code}")
async def get_employee_by_code(code: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    return success(_read(await crud.get_employee_by_code(db, code)))


@router.get("/{employee_id}")
async def get_employee(employee_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    return success(_read(await crud.employees.get_by_id(db, employee_id)))


@router.post("")
async def create_employee(
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 2)
    emp = await crud.create_employee(db, body)
    return success(_read(emp), status_code=201)


@router.put("/{employee_id}")
async def update_employee(
    employee_id: str,
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    employee_id = validate_uuid(employee_id)
    writable = set(sanitize(body, crud.employees.allow_list + ("role",)))
    is_self_edit = employee_id == actor.id and writable <= schemas.EMPLOYEE_SELF_EDITABLE
    if not is_self_edit:
        require_min_level(actor, 2)
    return success(_read(await crud.update_employee(db, employee_id, body)))


@router.delete("/{employee_id}")
async def delete_employee(employee_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 2)
    await crud.employees.delete(db, employee_id)
    return success({"message": "ลบพนักงานสำเร็จ"})
