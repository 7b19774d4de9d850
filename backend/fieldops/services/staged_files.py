"""LINE 暫存檔查詢與狀態轉換（pending → linked → approved / rejected；逾期 pending → expired）"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fieldops.config import settings
from fieldops.models import StagedFile, Ticket

logger = logging.getLogger(__name__)

LINKED_STATUSES = ("linked", "approved", "rejected")
APPROVER_WINDOW_DAYS = 7


def is_selected(staged: StagedFile) -> bool:
    return bool((staged.file_metadata or {}).get("selected"))


async def create_staged_file(db: AsyncSession, **fields) -> StagedFile:
    fields.setdefault("expires_at", datetime.utcnow() + timedelta(days=settings.staged_file_ttl_days))
    staged = StagedFile(**fields)
    db.add(staged)
    await db.flush()
    return staged


async def get_staged_file(db: AsyncSession, file_id: str) -> Optional[StagedFile]:
    result = await db.execute(
        select(StagedFile)
        .options(selectinload(StagedFile.ticket), selectinload(StagedFile.employee))
        .where(StagedFile.id == file_id)
    )
    return result.scalar_one_or_none()


async def pending_files(db: AsyncSession, employee_id: str) -> List[StagedFile]:
    """新到舊"""
    result = await db.execute(
        select(StagedFile)
        .where(StagedFile.employee_id == employee_id, StagedFile.status == "pending")
        .order_by(StagedFile.created_at.desc(), StagedFile.id)
    )
    return list(result.scalars().all())


async def count_pending(db: AsyncSession, employee_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(StagedFile)
        .where(StagedFile.employee_id == employee_id, StagedFile.status == "pending")
    )
    return result.scalar() or 0


async def has_recent_pending(db: AsyncSession, employee_id: str, since: datetime) -> bool:
    """連續上傳判斷：since 之後是否已有 pending 檔"""
    result = await db.execute(
        select(StagedFile.id)
        .where(
            StagedFile.employee_id == employee_id,
            StagedFile.status == "pending",
            StagedFile.created_at > since,
        )
        .limit(1)
    )
    return result.first() is not None


async def find_ticket_by_code(db: AsyncSession, ticket_code: str) -> Optional[Ticket]:
    result = await db.execute(select(Ticket).where(Ticket.ticket_code == ticket_code))
    return result.scalar_one_or_none()


async def link_files(db: AsyncSession, files: Iterable[StagedFile], ticket_id: str) -> int:
    count = 0
    for staged in files:
        staged.ticket_id = ticket_id
        staged.status = "linked"
        staged.file_metadata = {}
        count += 1
    await db.flush()
    return count


async def set_selected(db: AsyncSession, files: Iterable[StagedFile], selected: bool) -> None:
    for staged in files:
        staged.file_metadata = {**(staged.file_metadata or {}), "selected": selected}
    await db.flush()


async def employee_linked_files(db: AsyncSession, employee_id: str) -> List[StagedFile]:
    result = await db.execute(
        select(StagedFile)
        .options(selectinload(StagedFile.ticket))
        .where(StagedFile.employee_id == employee_id, StagedFile.status.in_(LINKED_STATUSES))
        .order_by(StagedFile.created_at.desc(), StagedFile.id)
    )
    return list(result.scalars().all())


async def approver_files(db: AsyncSession, now: Optional[datetime] = None) -> List[StagedFile]:
    """最近 7 天內等待核准（linked）的檔案"""
    since = (now or datetime.utcnow()) - timedelta(days=APPROVER_WINDOW_DAYS)
    result = await db.execute(
        select(StagedFile)
        .options(selectinload(StagedFile.ticket), selectinload(StagedFile.employee))
        .where(StagedFile.status == "linked", StagedFile.created_at >= since)
        .order_by(StagedFile.created_at.desc(), StagedFile.id)
    )
    return list(result.scalars().all())


async def ticket_files(db: AsyncSession, ticket_id: str, employee_id: str) -> List[StagedFile]:
    result = await db.execute(
        select(StagedFile)
        .options(selectinload(StagedFile.ticket))
        .where(StagedFile.ticket_id == ticket_id, StagedFile.employee_id == employee_id)
        .order_by(StagedFile.created_at.desc(), StagedFile.id)
    )
    return list(result.scalars().all())


async def count_ticket_files(db: AsyncSession, ticket_id: str, employee_id: str,
                             status: Optional[str] = None) -> int:
    stmt = (
        select(func.count()).select_from(StagedFile)
        .where(StagedFile.ticket_id == ticket_id, StagedFile.employee_id == employee_id)
    )
    if status:
        stmt = stmt.where(StagedFile.status == status)
    result = await db.execute(stmt)
    return result.scalar() or 0


def status_counts(files: Iterable[StagedFile]) -> Dict[str, int]:
    counts = {status: 0 for status in LINKED_STATUSES}
    for staged in files:
        if staged.status in counts:
            counts[staged.status] += 1
    return counts


async def decide_file(db: AsyncSession, staged: StagedFile, approve: bool, approver_id: str,
                      reason: str = "ปฏิเสธโดยผู้อนุมัติ") -> StagedFile:
    staged.status = "approved" if approve else "rejected"
    staged.approved_by = approver_id
    staged.approved_at = datetime.utcnow()
    if not approve:
        staged.rejection_reason = reason
    await db.flush()
    return staged


async def expire_pending_files(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """pending 且 expires_at 已過的暫存檔標記為 expired，回傳筆數"""
    now = now or datetime.utcnow()
    result = await db.execute(
        update(StagedFile)
        .where(StagedFile.status == "pending", StagedFile.expires_at.is_not(None), StagedFile.expires_at < now)
        .values(status="expired", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
