"""案場 API：查詢 level 0；新增 / 修改 / find-or-create level 1；刪除 level 2"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fieldops import crud, schemas
from fieldops.auth import Actor, get_current_actor, require_min_level
from fieldops.database import get_db
from fieldops.pagination import parse_pagination_params
from fieldops.responses import paginated, success
from fieldops.validation import parse_request_body, validate_required

router = APIRouter(prefix="/api-sites", tags=["sites"])


def _read(site) -> dict:
    return schemas.SiteRead.model_validate(site).model_dump()


@router.get("")
async def list_sites(
    company_id: Optional[str] = Query(None),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 0)
    page_num, limit_num = parse_pagination_params(page, limit)
    rows, pagination = await crud.list_sites(db, company_id, page_num, limit_num)
    return paginated([_read(s) for s in rows], pagination)


@router.get("/search")
async def search_sites(
    q: Optional[str] = Query(None, description="搜尋名稱 / 地址"),
    company_id: Optional[str] = Query(None),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 0)
    page_num, limit_num = parse_pagination_params(page, limit)
    items, pagination = await crud.search_sites(db, q, company_id, page_num, limit_num)
    return paginated(items, pagination)


@router.get("/recent")
async def recent_sites(
    q: Optional[str] = Query(None),
    company_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """輸入提示用，最多 5 筆"""
    require_min_level(actor, 0)
    return success(await crud.recent_sites(db, q, company_id))


@router.get("/{site_id}")
async def get_site(site_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    detail = await crud.get_site_detail(db, site_id)
    data = _read(detail["site"])
    data["tickets"] = [schemas.TicketBrief.model_validate(t).model_dump() for t in detail["tickets"]]
    data["merchandise"] = [schemas.MerchandiseBrief.model_validate(m).model_dump() for m in detail["merchandise"]]
    return success(data)


@router.post("/find-or-create")
async def find_or_create_site(
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 1)
    site, created = await crud.find_or_create_site(db, body)
    return success({**_read(site), "created": created}, status_code=201 if created else 200)


@router.post("")
async def create_site(
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 1)
    validate_required(body.get("name"), "name")
    site = await crud.sites.create(db, body)
    return success(_read(site), status_code=201)


@router.put("/{site_id}")
async def update_site(
    site_id: str,
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 1)
    return success(_read(await crud.sites.update(db, site_id, body)))


@router.delete("/{site_id}")
async def delete_site(site_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 2)
    await crud.sites.delete(db, site_id)
    return success({"message": "ลบสถานที่สำเร็จ"})
