"""投票 API：建立 level 1；投票 level 0（每人每題一票）；修改 / 刪除 level 2"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fieldops import crud, schemas
from fieldops.auth import Actor, get_current_actor, require_min_level
from fieldops.database import get_db
from fieldops.pagination import parse_pagination_params
from fieldops.responses import paginated, success
from fieldops.validation import parse_request_body

router = APIRouter(prefix="/api-polls", tags=["polls"])


def _read(poll) -> dict:
    return schemas.PollRead.model_validate(poll).model_dump()


@router.get("")
async def list_polls(
    filter: Optional[str] = Query(None, description="all / active / expired"),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 0)
    page_num, limit_num = parse_pagination_params(page, limit)
    rows, pagination = await crud.list_polls(db, filter, page_num, limit_num)
    return paginated([_read(p) for p in rows], pagination)


@router.get("/{poll_id}")
async def get_poll(poll_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 0)
    detail = await crud.get_poll_detail(db, poll_id, actor.id)
    data = schemas.PollDetail(
        **_read(detail["poll"]),
        total_votes=detail["total_votes"],
        option_counts=detail["option_counts"],
        my_vote=detail["my_vote"],
    )
    return success(data.model_dump())


@router.post("")
async def create_poll(
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 1)
    poll = await crud.create_poll(db, body, actor.id)
    return success(_read(poll), status_code=201)


@router.post("/{poll_id}/vote")
async def vote_poll(
    poll_id: str,
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 0)
    vote = await crud.vote_poll(db, poll_id, actor.id, body.get("option_index"))
    return success(
        {"id": vote.id, "poll_id": vote.poll_id, "employee_id": vote.employee_id, "option_index": vote.option_index},
        status_code=201,
    )


@router.put("/{poll_id}")
async def update_poll(
    poll_id: str,
    actor: Actor = Depends(get_current_actor),
    body: dict = Depends(parse_request_body),
    db: AsyncSession = Depends(get_db),
):
    require_min_level(actor, 2)
    return success(_read(await crud.polls.update(db, poll_id, body)))


@router.delete("/{poll_id}")
async def delete_poll(poll_id: str, actor: Actor = Depends(get_current_actor), db: AsyncSession = Depends(get_db)):
    require_min_level(actor, 2)
    await crud.polls.delete(db, poll_id)
    return success({"message": "ลบโพลสำเร็จ"})
