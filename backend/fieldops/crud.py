"""CRUD 操作 - 共用 ResourceCRUD 範本 + 各資源專屬查詢（部門摘要、案場 find-or-create、請假審核、投票…）
寫入路徑：sanitize(allow-list) → schema 轉型 → flush；資料庫錯誤一律經 translate_db_error 轉成領域錯誤。"""
import logging
from datetime import date, datetime
from typing import Optional, List, Dict, Any, Sequence, Tuple, Type

from pydantic import BaseModel
from sqlalchemy import select, func, or_, and_
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fieldops.errors import NotFoundError, ValidationError, translate_db_error, is_unique_violation
from fieldops.models import (
    Department, Role, Employee, Company, Site, Merchandise, Ticket, LeaveRequest, Poll, PollVote,
    WorkType, TicketStatus, Province, WorkGiver, LeaveType,
)
from fieldops.pagination import paginate
from fieldops.schemas import (
    DepartmentWrite, SiteWrite, EmployeeWrite, LeaveRequestWrite, PollWrite,
)
from fieldops.validation import allow_list_of, coerce, sanitize, validate_required, validate_uuid

logger = logging.getLogger(__name__)


async def flush(db: AsyncSession, on_delete: bool = False) -> None:
    try:
        await db.flush()
    except DBAPIError as e:
        raise translate_db_error(e, on_delete=on_delete) from e


def _like(q: str) -> str:
    return f"%{q.strip()}%"


class ResourceCRUD:
    """單一資源的 get / list / create / update / delete。
    allow-list 取自 write_schema 欄位；load_options 為回應需要的關聯（async 下不可 lazy load）。"""

    def __init__(
        self,
        model: Type,
        write_schema: Type[BaseModel],
        not_found_message: str = "ไม่พบข้อมูล",
        load_options: Sequence = (),
    ):
        self.model = model
        self.write_schema = write_schema
        self.not_found_message = not_found_message
        self.load_options = tuple(load_options)

    @property
    def allow_list(self) -> tuple:
        return allow_list_of(self.write_schema)

    def prepare(self, data: Optional[dict]) -> dict:
        return coerce(self.write_schema, sanitize(data, self.allow_list))

    async def get(self, db: AsyncSession, record_id: str) -> Optional[Any]:
        stmt = (
            select(self.model)
            .where(self.model.id == record_id)
            .options(*self.load_options)
            .execution_options(populate_existing=True)
        )
        return (await db.execute(stmt)).scalar_one_or_none()

    async def get_by_id(self, db: AsyncSession, record_id: str) -> Any:
        record_id = validate_uuid(record_id)
        obj = await self.get(db, record_id)
        if obj is None:
            raise NotFoundError(self.not_found_message)
        return obj

    async def list_page(self, db: AsyncSession, page: int, limit: int, *order_by, filters: Sequence = ()) -> Tuple[list, dict]:
        stmt = select(self.model)
        if filters:
            stmt = stmt.where(*filters)
        return await paginate(db, stmt, page, limit, *order_by, options=self.load_options)

    async def create(self, db: AsyncSession, data: Optional[dict], **server_fields) -> Any:
        values = self.prepare(data)
        values.update(server_fields)
        obj = self.model(**values)
        db.add(obj)
        await flush(db)
        return await self.get(db, obj.id)

    async def update(self, db: AsyncSession, record_id: str, data: Optional[dict]) -> Any:
        """allow-list 過濾後為空 → 不寫入，直接回傳目前資料"""
        obj = await self.get_by_id(db, record_id)
        values = self.prepare(data)
        if not values:
            return obj
        return await self.apply(db, obj, values)

    async def apply(self, db: AsyncSession, obj: Any, values: Dict[str, Any]) -> Any:
        for key, value in values.items():
            setattr(obj, key, value)
        await flush(db)
        return await self.get(db, obj.id)

    async def delete(self, db: AsyncSession, record_id: str) -> None:
        obj = await self.get_by_id(db, record_id)
        await db.delete(obj)
        await flush(db, on_delete=True)


departments = ResourceCRUD(Department, DepartmentWrite, "ไม่พบแผนก")
sites = ResourceCRUD(Site, SiteWrite, "ไม่พบสถานที่", load_options=(selectinload(Site.company),))
employees = ResourceCRUD(Employee, EmployeeWrite, "ไม่พบข้อมูลพนักงาน", load_options=(selectinload(Employee.role),))
leave_requests = ResourceCRUD(
    LeaveRequest,
    LeaveRequestWrite,
    "ไม่พบคำขอลา",
    load_options=(
        selectinload(LeaveRequest.employee),
        selectinload(LeaveRequest.leave_type),
        selectinload(LeaveRequest.approved_by_employee),
    ),
)
polls = ResourceCRUD(Poll, PollWrite, "ไม่พบโพล", load_options=(selectinload(Poll.creator),))


# ---------- 部門 ----------
async def search_departments(
    db: AsyncSession, q: Optional[str], is_active: Optional[bool], page: int, limit: int
) -> Tuple[List[Department], dict]:
    filters = []
    if q and q.strip():
        kw = _like(q)
        filters.append(or_(Department.code.ilike(kw), Department.name_th.ilike(kw), Department.name_en.ilike(kw)))
    if is_active is not None:
        filters.append(Department.is_active.is_(is_active))
    return await departments.list_page(db, page, limit, Department.code, Department.id, filters=filters)


async def create_department(db: AsyncSession, body: Optional[dict]) -> Department:
    values = departments.prepare(body)
    validate_required(values.get("code"), "code")
    validate_required(values.get("name_th"), "name_th")
    return await departments.create(db, values)


async def department_summary(db: AsyncSession) -> List[dict]:
    """各部門的職務數與員工數（active / inactive）。員工歸屬部門 = 其職務所屬部門。
    停用部門只有在仍被職務參照時才列出。"""
    dept_rows = (await db.execute(select(Department).order_by(Department.name_th))).scalars().all()
    role_rows = (await db.execute(select(Role).where(Role.department_id.is_not(None)))).scalars().all()
    emp_rows = (
        await db.execute(select(Employee.role_id, Employee.is_active).where(Employee.role_id.is_not(None)))
    ).all()

    role_department = {r.id: r.department_id for r in role_rows}
    groups: Dict[str, dict] = {}
    for d in dept_rows:
        groups[d.id] = {
            "department_id": d.id,
            "department_code": d.code,
            "department_name_th": d.name_th,
            "department_name_en": d.name_en,
            "is_active": d.is_active,
            "total_roles": 0,
            "active_roles": 0,
            "inactive_roles": 0,
            "total_employees": 0,
            "active_employees": 0,
            "inactive_employees": 0,
        }

    referenced = set()
    for r in role_rows:
        g = groups.get(r.department_id)
        if g is None:
            continue
        referenced.add(r.department_id)
        g["total_roles"] += 1
        g["active_roles" if r.is_active else "inactive_roles"] += 1

    for role_id, emp_active in emp_rows:
        g = groups.get(role_department.get(role_id))
        if g is None:
            continue
        g["total_employees"] += 1
        g["active_employees" if emp_active else "inactive_employees"] += 1

    result = [g for dept_id, g in groups.items() if g["is_active"] or dept_id in referenced]
    result.sort(key=lambda g: g["department_name_th"] or "")
    return result


# ---------- 案場 ----------
def _site_filters(q: Optional[str], company_id: Optional[str]) -> list:
    filters = []
    if company_id:
        filters.append(Site.company_id == validate_uuid(company_id, "company_id"))
    if q and q.strip():
        # 地址常以逗號分隔，搜尋時視為空白
        kw = _like(q.replace(",", " "))
        filters.append(or_(Site.name.ilike(kw), Site.address_detail.ilike(kw)))
    return filters


def site_search_item(site: Site) -> dict:
    return {
        "id": site.id,
        "name": site.name,
        "description": site.address_detail,
        "company_id": site.company_id,
        "is_main_branch": site.is_main_branch,
        "company_name": site.company.name_th if site.company else None,
    }


async def list_sites(db: AsyncSession, company_id: Optional[str], page: int, limit: int) -> Tuple[List[Site], dict]:
    return await sites.list_page(db, page, limit, Site.name, Site.id, filters=_site_filters(None, company_id))


async def search_sites(
    db: AsyncSession, q: Optional[str], company_id: Optional[str], page: int, limit: int
) -> Tuple[List[dict], dict]:
    rows, pagination = await sites.list_page(db, page, limit, Site.name, Site.id, filters=_site_filters(q, company_id))
    return [site_search_item(s) for s in rows], pagination


async def recent_sites(db: AsyncSession, q: Optional[str], company_id: Optional[str], limit: int = 5) -> List[dict]:
    stmt = select(Site).options(selectinload(Site.company))
    filters = _site_filters(q, company_id)
    if filters:
        stmt = stmt.where(*filters)
    stmt = stmt.order_by(Site.updated_at.desc(), Site.name).limit(limit)
    rows = (await db.execute(stmt)).scalars().all()
    return [site_search_item(s) for s in rows]


async def get_site_detail(db: AsyncSession, site_id: str) -> dict:
    site = await sites.get_by_id(db, site_id)
    tickets = (
        await db.execute(
            select(Ticket).where(Ticket.site_id == site.id).order_by(Ticket.created_at.desc()).limit(20)
        )
    ).scalars().all()
    merchandise = (
        await db.execute(select(Merchandise).where(Merchandise.site_id == site.id).order_by(Merchandise.serial_no))
    ).scalars().all()
    return {"site": site, "tickets": list(tickets), "merchandise": list(merchandise)}


async def _find_site(db: AsyncSession, values: dict) -> Optional[Site]:
    stmt = select(Site).where(Site.name == values["name"])
    if values.get("company_id"):
        stmt = stmt.where(Site.company_id == values["company_id"])
    if values.get("subdistrict_code") is not None:
        stmt = stmt.where(Site.subdistrict_code == values["subdistrict_code"])
    stmt = stmt.options(selectinload(Site.company)).order_by(Site.created_at).limit(1)
    return (await db.execute(stmt)).scalar_one_or_none()


async def find_or_create_site(db: AsyncSession, data: Optional[dict]) -> Tuple[Site, bool]:
    """依 (name, company_id?, subdistrict_code?) 找案場，找不到就建立。
    insert 在 savepoint 內執行；撞到 uq_sites_natural_key 表示同時有人建立，改回傳既有資料。"""
    values = sites.prepare(data)
    validate_required(values.get("name"), "name")
    if values.get("company_id"):
        values["company_id"] = validate_uuid(values["company_id"], "company_id")
    existing = await _find_site(db, values)
    if existing is not None:
        return existing, False
    try:
        async with db.begin_nested():
            site = Site(**values)
            db.add(site)
    except IntegrityError as e:
        if not is_unique_violation(e):
            raise translate_db_error(e) from e
        logger.info("find_or_create_site 併發建立，改用既有資料：%s", values["name"])
        existing = await _find_site(db, values)
        if existing is None:
            raise translate_db_error(e) from e
        return existing, False
    return await sites.get(db, site.id), True


# ---------- 員工 ----------
async def resolve_role_code(db: AsyncSession, body: dict) -> dict:
    """body 內的 role（職務代碼）轉成 role_id"""
    if not body or "role" not in body:
        return body
    body = dict(body)
    code = body.pop("role")
    if code in (None, ""):
        body["role_id"] = None
        return body
    role_id = await db.scalar(select(Role.id).where(Role.code == str(code)))
    if role_id is None:
        raise ValidationError("ไม่พบบทบาทที่ระบุ")
    body["role_id"] = role_id
    return body


async def list_employees(
    db: AsyncSession,
    page: int,
    limit: int,
    role: Optional[str] = None,
    department_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    q: Optional[str] = None,
) -> Tuple[List[Employee], dict]:
    filters = []
    if role:
        filters.append(Employee.role_id.in_(select(Role.id).where(Role.code == role)))
    if department_id:
        department_id = validate_uuid(department_id, "department_id")
        filters.append(Employee.role_id.in_(select(Role.id).where(Role.department_id == department_id)))
    if is_active is not None:
        filters.append(Employee.is_active.is_(is_active))
    if q and q.strip():
        kw = _like(q)
        filters.append(or_(
            Employee.name.ilike(kw), Employee.code.ilike(kw), Employee.nickname.ilike(kw), Employee.email.ilike(kw),
        ))
    return await employees.list_page(db, page, limit, Employee.name, Employee.id, filters=filters)


async def employee_summary(db: AsyncSession) -> List[dict]:
    stmt = (
        select(Employee)
        .where(Employee.is_active.is_(True))
        .options(selectinload(Employee.role))
        .order_by(Employee.name)
    )
    rows = (await db.execute(stmt)).scalars().all()
    return [
        {
            "id": e.id,
            "name": e.name,
            "email": e.email,
            "role_name": e.role.name_th if e.role else None,
            "is_link_auth": e.auth_user_id is not None,
            "profile_image_url": e.profile_image_url,
        }
        for e in rows
    ]


async def get_employee_by_code(db: AsyncSession, code: str) -> Employee:
    stmt = (
        select(Employee)
        .where(Employee.code == code, Employee.is_active.is_(True))
        .options(selectinload(Employee.role))
    )
    emp = (await db.execute(stmt)).scalar_one_or_none()
    if emp is None:
        raise NotFoundError("ไม่พบข้อมูลพนักงาน")
    return emp


async def create_employee(db: AsyncSession, body: Optional[dict]) -> Employee:
    body = await resolve_role_code(db, body or {})
    validate_required(body.get("name"), "name")
    return await employees.create(db, body)


async def update_employee(db: AsyncSession, employee_id: str, body: Optional[dict]) -> Employee:
    body = await resolve_role_code(db, body or {})
    return await employees.update(db, employee_id, body)


# ---------- 請假 ----------
async def list_leave_requests(
    db: AsyncSession,
    page: int,
    limit: int,
    status: Optional[str] = None,
    leave_type_id: Optional[str] = None,
    employee_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Tuple[List[LeaveRequest], dict]:
    """status='all' 不篩；start_date/end_date 以區間重疊判斷"""
    filters = []
    if status and status != "all":
        filters.append(LeaveRequest.status == status)
    if leave_type_id:
        filters.append(LeaveRequest.leave_type_id == validate_uuid(leave_type_id, "leave_type_id"))
    if employee_id:
        filters.append(LeaveRequest.employee_id == validate_uuid(employee_id, "employee_id"))
    if start_date:
        filters.append(LeaveRequest.end_date >= start_date)
    if end_date:
        filters.append(LeaveRequest.start_date <= end_date)
    return await leave_requests.list_page(
        db, page, limit, LeaveRequest.created_at.desc(), LeaveRequest.id, filters=filters
    )


async def create_leave_request(db: AsyncSession, body: Optional[dict]) -> LeaveRequest:
    values = leave_requests.prepare(body)
    for field in ("employee_id", "leave_type_id", "start_date", "end_date"):
        validate_required(values.get(field), field)
    values["employee_id"] = validate_uuid(values["employee_id"], "employee_id")
    values["leave_type_id"] = validate_uuid(values["leave_type_id"], "leave_type_id")
    if values["end_date"] < values["start_date"]:
        raise ValidationError("end_date ต้องไม่น้อยกว่า start_date")
    if not values.get("status"):
        values["status"] = "pending"
    obj = LeaveRequest(**values)
    db.add(obj)
    await flush(db)
    return await leave_requests.get(db, obj.id)


async def _decide_leave_request(db: AsyncSession, leave_id: str, values: dict, allowed_from: Sequence[str]) -> LeaveRequest:
    obj = await leave_requests.get_by_id(db, leave_id)
    if obj.status not in allowed_from:
        raise ValidationError("คำขอลานี้ได้รับการดำเนินการแล้ว")
    return await leave_requests.apply(db, obj, values)


async def approve_leave_request(db: AsyncSession, leave_id: str, approver_id: str) -> LeaveRequest:
    return await _decide_leave_request(
        db, leave_id,
        {"status": "approved", "approved_by": approver_id, "approved_at": datetime.utcnow()},
        ("pending",),
    )


async def reject_leave_request(db: AsyncSession, leave_id: str, approver_id: str, reason: Optional[str]) -> LeaveRequest:
    return await _decide_leave_request(
        db, leave_id,
        {
            "status": "rejected",
            "approved_by": approver_id,
            "approved_at": datetime.utcnow(),
            "reject_reason": reason,
        },
        ("pending",),
    )


async def cancel_leave_request(db: AsyncSession, leave: LeaveRequest) -> LeaveRequest:
    if leave.status not in ("pending", "approved"):
        raise ValidationError("คำขอลานี้ได้รับการดำเนินการแล้ว")
    return await leave_requests.apply(db, leave, {"status": "cancelled"})


# ---------- 投票 ----------
def _poll_filter(filter_name: Optional[str], now: datetime) -> list:
    if filter_name == "active":
        return [or_(Poll.expires_at.is_(None), Poll.expires_at > now)]
    if filter_name == "expired":
        return [and_(Poll.expires_at.is_not(None), Poll.expires_at <= now)]
    if filter_name in (None, "", "all"):
        return []
    raise ValidationError("filter ไม่ถูกต้อง")


async def list_polls(db: AsyncSession, filter_name: Optional[str], page: int, limit: int) -> Tuple[List[Poll], dict]:
    return await polls.list_page(
        db, page, limit, Poll.created_at.desc(), Poll.id, filters=_poll_filter(filter_name, datetime.utcnow())
    )


async def get_poll_detail(db: AsyncSession, poll_id: str, actor_id: Optional[str] = None) -> dict:
    poll = await polls.get_by_id(db, poll_id)
    counts = dict(
        (await db.execute(
            select(PollVote.option_index, func.count())
            .where(PollVote.poll_id == poll.id)
            .group_by(PollVote.option_index)
        )).all()
    )
    my_vote = None
    if actor_id:
        my_vote = await db.scalar(
            select(PollVote.option_index).where(PollVote.poll_id == poll.id, PollVote.employee_id == actor_id)
        )
    option_counts = [
        {"index": i, "text": text, "votes": counts.get(i, 0)} for i, text in enumerate(poll.options or [])
    ]
    return {
        "poll": poll,
        "total_votes": sum(counts.values()),
        "option_counts": option_counts,
        "my_vote": my_vote,
    }


async def create_poll(db: AsyncSession, body: Optional[dict], creator_id: str) -> Poll:
    values = polls.prepare(body)
    validate_required(values.get("question"), "question")
    if not values.get("options"):
        raise ValidationError("options จำเป็นต้องระบุ")
    return await polls.create(db, values, created_by=creator_id)


async def vote_poll(db: AsyncSession, poll_id: str, employee_id: str, option_index: Any) -> PollVote:
    poll = await polls.get_by_id(db, poll_id)
    if poll.expires_at is not None and poll.expires_at <= datetime.utcnow():
        raise ValidationError("โพลนี้หมดเวลาแล้ว")
    if isinstance(option_index, bool) or not isinstance(option_index, int):
        raise ValidationError("option_index ไม่ถูกต้อง")
    if option_index < 0 or option_index >= len(poll.options or []):
        raise ValidationError("option_index ไม่ถูกต้อง")
    vote = PollVote(poll_id=poll.id, employee_id=employee_id, option_index=option_index)
    db.add(vote)
    try:
        await db.flush()
    except DBAPIError as e:
        if is_unique_violation(e):
            raise ValidationError("คุณได้โหวตโพลนี้แล้ว") from e
        raise translate_db_error(e) from e
    return vote


# ---------- 參考資料 ----------
async def list_work_types(db: AsyncSession) -> List[WorkType]:
    return list((await db.execute(select(WorkType).order_by(WorkType.name))).scalars().all())


async def list_ticket_statuses(db: AsyncSession) -> List[TicketStatus]:
    return list((await db.execute(select(TicketStatus).order_by(TicketStatus.name))).scalars().all())


async def list_provinces(db: AsyncSession) -> List[Province]:
    return list((await db.execute(select(Province).order_by(Province.name))).scalars().all())


async def list_work_givers(db: AsyncSession) -> List[WorkGiver]:
    return list((await db.execute(select(WorkGiver).order_by(WorkGiver.name))).scalars().all())


async def list_leave_types(db: AsyncSession) -> List[LeaveType]:
    stmt = select(LeaveType).where(LeaveType.is_active.is_(True)).order_by(LeaveType.name)
    return list((await db.execute(stmt)).scalars().all())


# ---------- 全域搜尋 ----------
SEARCH_TYPES = ("company", "site", "ticket", "merchandise", "employee")


def _result(id_: str, type_: str, title: str, subtitle: Optional[str] = None,
            description: Optional[str] = None, metadata: Optional[dict] = None) -> dict:
    return {
        "id": id_,
        "type": type_,
        "title": title,
        "subtitle": subtitle,
        "description": description,
        "metadata": metadata or {},
    }


async def _search_companies(db: AsyncSession, kw: str, limit: int) -> List[dict]:
    stmt = (
        select(Company)
        .where(or_(Company.name_th.ilike(kw), Company.name_en.ilike(kw), Company.tax_id.ilike(kw)))
        .order_by(Company.name_th)
        .limit(limit)
    )
    return [
        _result(c.id, "company", c.name_th, c.name_en, c.tax_id, {"tax_id": c.tax_id})
        for c in (await db.execute(stmt)).scalars().all()
    ]


async def _search_sites(db: AsyncSession, kw: str, limit: int) -> List[dict]:
    stmt = (
        select(Site)
        .where(or_(Site.name.ilike(kw), Site.address_detail.ilike(kw)))
        .options(selectinload(Site.company))
        .order_by(Site.name)
        .limit(limit)
    )
    return [
        _result(
            s.id, "site", s.name,
            s.company.name_th if s.company else None,
            s.address_detail,
            {"company_id": s.company_id},
        )
        for s in (await db.execute(stmt)).scalars().all()
    ]


async def _search_tickets(db: AsyncSession, kw: str, limit: int) -> List[dict]:
    stmt = (
        select(Ticket)
        .where(or_(Ticket.ticket_code.ilike(kw), Ticket.details.ilike(kw)))
        .options(selectinload(Ticket.site), selectinload(Ticket.status))
        .order_by(Ticket.created_at.desc())
        .limit(limit)
    )
    return [
        _result(
            t.id, "ticket", t.ticket_code,
            t.site.name if t.site else None,
            t.details,
            {
                "status": t.status.name if t.status else None,
                "appointment_date": t.appointment_date.isoformat() if t.appointment_date else None,
            },
        )
        for t in (await db.execute(stmt)).scalars().all()
    ]


async def _search_merchandise(db: AsyncSession, kw: str, limit: int) -> List[dict]:
    stmt = (
        select(Merchandise)
        .where(Merchandise.serial_no.ilike(kw))
        .options(selectinload(Merchandise.model), selectinload(Merchandise.site))
        .order_by(Merchandise.serial_no)
        .limit(limit)
    )
    return [
        _result(
            m.id, "merchandise", m.serial_no,
            m.model.model if m.model else None,
            m.site.name if m.site else None,
            {"site_id": m.site_id, "model_id": m.model_id},
        )
        for m in (await db.execute(stmt)).scalars().all()
    ]


async def _search_employees(db: AsyncSession, kw: str, limit: int) -> List[dict]:
    stmt = (
        select(Employee)
        .where(
            Employee.is_active.is_(True),
            or_(Employee.name.ilike(kw), Employee.code.ilike(kw), Employee.nickname.ilike(kw), Employee.email.ilike(kw)),
        )
        .options(selectinload(Employee.role))
        .order_by(Employee.name)
        .limit(limit)
    )
    return [
        _result(
            e.id, "employee", e.name,
            e.role.name_th if e.role else None,
            e.email,
            {"code": e.code, "nickname": e.nickname},
        )
        for e in (await db.execute(stmt)).scalars().all()
    ]


_SEARCHERS = {
    "company": ("companys", _search_companies),
    "site": ("sites", _search_sites),
    "ticket": ("tickets", _search_tickets),
    "merchandise": ("merchandise", _search_merchandise),
    "employee": ("employees", _search_employees),
}


async def global_search(db: AsyncSession, q: str, types: Sequence[str], limit: int) -> dict:
    """各類型各自查詢；單一類型失敗只回空陣列，不影響其他類型"""
    kw = _like(q)
    results: Dict[str, List[dict]] = {key: [] for key, _ in _SEARCHERS.values()}
    for type_ in types:
        key, searcher = _SEARCHERS[type_]
        try:
            # savepoint 讓單一類型的 SQL 錯誤不會讓整個交易失效
            async with db.begin_nested():
                results[key] = await searcher(db, kw, limit)
        except DBAPIError:
            logger.exception("全域搜尋失敗：type=%s", type_)
            results[key] = []
    counts = {key: len(items) for key, items in results.items()}
    return {
        "query": q,
        "total": sum(counts.values()),
        "results": results,
        "counts": counts,
    }
