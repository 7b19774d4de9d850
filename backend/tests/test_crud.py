"""
CRUD P0 測試。
覆蓋：共用範本 create/get/update/delete、allow-list、部門摘要、案場 find-or-create、請假審核、投票、全域搜尋。
"""
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fieldops import crud
from fieldops.database import Base
from fieldops.errors import NotFoundError, ReferenceInUseError, ValidationError
from fieldops.models import Company, Department, Employee, LeaveType, Role, Site, Ticket


@pytest.fixture
async def async_session():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


async def _department_with_role(db, code="technical", level=1, is_active=True):
    dept = Department(code=code, name_th=f"แผนก {code}", is_active=is_active)
    db.add(dept)
    await db.flush()
    role = Role(code=f"{code}-role", name_th="ตำแหน่ง", level=level, department_id=dept.id)
    db.add(role)
    await db.flush()
    return dept, role


# ---------- 共用範本 ----------
@pytest.mark.asyncio
async def test_department_create_get_update(async_session):
    """建立後可讀回；未列於 allow-list 的欄位被忽略"""
    async with async_session() as db:
        dept = await crud.create_department(db, {"code": "hr", "name_th": "บุคคล", "id": "forced-id"})
        await db.commit()
        assert dept.id != "forced-id"

        fetched = await crud.departments.get_by_id(db, dept.id)
        assert fetched.code == "hr"
        assert fetched.is_active is True

        updated = await crud.departments.update(db, dept.id, {"name_en": "HR", "created_at": "2000-01-01"})
        await db.commit()
        assert updated.name_en == "HR"
        assert updated.created_at.year != 2000


@pytest.mark.asyncio
async def test_update_with_no_allowed_fields_is_noop(async_session):
    """過濾後沒有可寫欄位 → 不寫入，updated_at 不變"""
    async with async_session() as db:
        dept = await crud.create_department(db, {"code": "ops", "name_th": "ปฏิบัติการ"})
        await db.commit()
        before = dept.updated_at

        result = await crud.departments.update(db, dept.id, {"unknown": 1, "id": "x"})
        await db.commit()
        assert result.id == dept.id
        assert result.updated_at == before


@pytest.mark.asyncio
async def test_create_department_requires_fields(async_session):
    async with async_session() as db:
        with pytest.raises(ValidationError) as exc:
            await crud.create_department(db, {"code": "x"})
        assert "name_th" in exc.value.message


@pytest.mark.asyncio
async def test_duplicate_department_code(async_session):
    async with async_session() as db:
        await crud.create_department(db, {"code": "dup", "name_th": "ซ้ำ"})
        with pytest.raises(ValidationError) as exc:
            await crud.create_department(db, {"code": "dup", "name_th": "ซ้ำ 2"})
        assert exc.value.message == "ข้อมูลซ้ำ"


@pytest.mark.asyncio
async def test_get_by_id_invalid_and_missing(async_session):
    async with async_session() as db:
        with pytest.raises(ValidationError):
            await crud.departments.get_by_id(db, "123")
        with pytest.raises(NotFoundError) as exc:
            await crud.departments.get_by_id(db, "00000000-0000-0000-0000-000000000000")
        assert exc.value.message == "ไม่พบแผนก"


@pytest.mark.asyncio
async def test_delete_referenced_department_conflict(async_session):
    """仍被職務參照的部門不可刪除 → 409"""
    async with async_session() as db:
        dept, _ = await _department_with_role(db)
        await db.commit()
        with pytest.raises(ReferenceInUseError) as exc:
            await crud.departments.delete(db, dept.id)
        assert exc.value.status_code == 409
        await db.rollback()

        lonely = await crud.create_department(db, {"code": "empty", "name_th": "ว่าง"})
        await crud.departments.delete(db, lonely.id)
        await db.commit()
        assert await crud.departments.get(db, lonely.id) is None


@pytest.mark.asyncio
async def test_write_with_unknown_reference_is_bad_request(async_session):
    """新增/修改指向不存在的上層資料 → 400，不是「無法刪除」"""
    missing = str(uuid.uuid4())
    async with async_session() as db:
        with pytest.raises(ValidationError) as exc:
            await crud.sites.create(db, {"name": "สาขาใหม่", "company_id": missing})
        assert exc.value.status_code == 400
        assert exc.value.message == "ข้อมูลอ้างอิงไม่ถูกต้อง"
        await db.rollback()

        emp = Employee(name="สมศรี")
        db.add(emp)
        await db.commit()
        with pytest.raises(ValidationError) as exc:
            await crud.employees.update(db, emp.id, {"role_id": missing})
        assert exc.value.message == "ข้อมูลอ้างอิงไม่ถูกต้อง"


@pytest.mark.asyncio
async def test_search_departments(async_session):
    async with async_session() as db:
        await crud.create_department(db, {"code": "technical", "name_th": "ช่าง", "name_en": "Technical"})
        await crud.create_department(db, {"code": "sales", "name_th": "ขาย", "is_active": False})
        await db.commit()

        rows, info = await crud.search_departments(db, "tech", None, 1, 50)
        assert [d.code for d in rows] == ["technical"]
        assert info["total"] == 1

        rows, _ = await crud.search_departments(db, None, False, 1, 50)
        assert [d.code for d in rows] == ["sales"]


# ---------- 部門摘要 ----------
@pytest.mark.asyncio
async def test_department_summary_counts(async_session):
    """員工依職務歸屬部門；停用且未被參照的部門不列出"""
    async with async_session() as db:
        tech, tech_role = await _department_with_role(db, "technical")
        inactive_role = Role(code="old", name_th="เก่า", department_id=tech.id, is_active=False)
        db.add(inactive_role)
        old_dept, _ = await _department_with_role(db, "legacy", is_active=False)
        db.add(Department(code="closed", name_th="ปิด", is_active=False))
        await db.flush()
        db.add_all([
            Employee(name="ก", role_id=tech_role.id),
            Employee(name="ข", role_id=tech_role.id, is_active=False),
            Employee(name="ค", role_id=inactive_role.id),
            Employee(name="ไม่มีตำแหน่ง"),
        ])
        await db.commit()

        summary = {row["department_code"]: row for row in await crud.department_summary(db)}
        assert set(summary) == {"technical", "legacy"}
        tech_row = summary["technical"]
        assert tech_row["total_roles"] == 2
        assert tech_row["active_roles"] == 1
        assert tech_row["inactive_roles"] == 1
        assert tech_row["total_employees"] == 3
        assert tech_row["active_employees"] == 2
        assert tech_row["inactive_employees"] == 1
        assert summary["legacy"]["total_employees"] == 0


# ---------- 案場 ----------
@pytest.mark.asyncio
async def test_find_or_create_site_is_idempotent(async_session):
    async with async_session() as db:
        company = Company(name_th="บริษัท ทดสอบ")
        db.add(company)
        await db.commit()

        body = {"name": " สาขาสีลม ", "company_id": company.id, "subdistrict_code": 100101}
        site, created = await crud.find_or_create_site(db, body)
        await db.commit()
        assert created is True
        assert site.name == "สาขาสีลม"
        assert site.company.name_th == "บริษัท ทดสอบ"

        again, created_again = await crud.find_or_create_site(db, body)
        assert created_again is False
        assert again.id == site.id
        count = await db.scalar(select(func.count()).select_from(Site))
        assert count == 1


@pytest.mark.asyncio
async def test_find_or_create_site_requires_name(async_session):
    async with async_session() as db:
        with pytest.raises(ValidationError):
            await crud.find_or_create_site(db, {"company_id": None})


@pytest.mark.asyncio
async def test_site_search_treats_commas_as_spaces(async_session):
    async with async_session() as db:
        db.add(Site(name="คลังสินค้า", address_detail="99 ถนนพระราม 4 คลองเตย"))
        db.add(Site(name="อื่น", address_detail="เชียงใหม่"))
        await db.commit()
        items, info = await crud.search_sites(db, "พระราม 4,", None, 1, 10)
        assert [i["name"] for i in items] == ["คลังสินค้า"]
        assert items[0]["description"] == "99 ถนนพระราม 4 คลองเตย"
        assert info["total"] == 1


# ---------- 員工 ----------
@pytest.mark.asyncio
async def test_create_employee_resolves_role_code(async_session):
    async with async_session() as db:
        _, role = await _department_with_role(db)
        emp = await crud.create_employee(db, {"name": "สมหญิง", "role": role.code, "auth_user_id": "hack"})
        await db.commit()
        assert emp.role_id == role.id
        assert emp.auth_user_id is None

        with pytest.raises(ValidationError):
            await crud.create_employee(db, {"name": "x", "role": "no-such-role"})


# ---------- 請假 ----------
async def _leave_fixture(db):
    emp = Employee(name="ผู้ขอลา")
    approver = Employee(name="หัวหน้า")
    leave_type = LeaveType(code="sick", name="ลาป่วย")
    db.add_all([emp, approver, leave_type])
    await db.flush()
    leave = await crud.create_leave_request(db, {
        "employee_id": emp.id,
        "leave_type_id": leave_type.id,
        "start_date": "2025-03-03",
        "end_date": "2025-03-04",
        "reason": "ไม่สบาย",
    })
    return leave, approver


@pytest.mark.asyncio
async def test_leave_request_defaults_to_pending(async_session):
    async with async_session() as db:
        leave, _ = await _leave_fixture(db)
        assert leave.status == "pending"
        assert leave.start_date == date(2025, 3, 3)
        assert leave.leave_type.code == "sick"


@pytest.mark.asyncio
async def test_leave_request_rejects_inverted_range(async_session):
    async with async_session() as db:
        leave, _ = await _leave_fixture(db)
        with pytest.raises(ValidationError):
            await crud.create_leave_request(db, {
                "employee_id": leave.employee_id,
                "leave_type_id": leave.leave_type_id,
                "start_date": "2025-03-05",
                "end_date": "2025-03-01",
            })


@pytest.mark.asyncio
async def test_leave_approve_only_from_pending(async_session):
    async with async_session() as db:
        leave, approver = await _leave_fixture(db)
        approved = await crud.approve_leave_request(db, leave.id, approver.id)
        assert approved.status == "approved"
        assert approved.approved_by == approver.id
        assert approved.approved_at is not None

        with pytest.raises(ValidationError):
            await crud.reject_leave_request(db, leave.id, approver.id, "ไม่อนุมัติ")

        cancelled = await crud.cancel_leave_request(db, approved)
        assert cancelled.status == "cancelled"
        with pytest.raises(ValidationError):
            await crud.cancel_leave_request(db, cancelled)


@pytest.mark.asyncio
async def test_leave_list_overlap_filter(async_session):
    async with async_session() as db:
        await _leave_fixture(db)
        await db.commit()
        rows, _ = await crud.list_leave_requests(db, 1, 50, start_date=date(2025, 3, 4), end_date=date(2025, 3, 10))
        assert len(rows) == 1
        rows, _ = await crud.list_leave_requests(db, 1, 50, start_date=date(2025, 3, 5))
        assert rows == []
        rows, _ = await crud.list_leave_requests(db, 1, 50, status="all")
        assert len(rows) == 1


# ---------- 投票 ----------
@pytest.mark.asyncio
async def test_poll_vote_once_per_employee(async_session):
    async with async_session() as db:
        creator = Employee(name="ผู้สร้าง")
        voter = Employee(name="ผู้โหวต")
        db.add_all([creator, voter])
        await db.flush()
        poll = await crud.create_poll(db, {"question": "กินอะไรดี", "options": ["ข้าว", "ก๋วยเตี๋ยว"]}, creator.id)
        await db.commit()

        await crud.vote_poll(db, poll.id, voter.id, 1)
        await db.commit()
        detail = await crud.get_poll_detail(db, poll.id, voter.id)
        assert detail["total_votes"] == 1
        assert detail["my_vote"] == 1
        assert [o["votes"] for o in detail["option_counts"]] == [0, 1]

        with pytest.raises(ValidationError):
            await crud.vote_poll(db, poll.id, voter.id, 5)
        with pytest.raises(ValidationError) as exc:
            await crud.vote_poll(db, poll.id, voter.id, 0)
        assert exc.value.message == "คุณได้โหวตโพลนี้แล้ว"


@pytest.mark.asyncio
async def test_poll_filters_and_expired_vote(async_session):
    async with async_session() as db:
        voter = Employee(name="ผู้โหวต")
        db.add(voter)
        await db.flush()
        expired = await crud.create_poll(db, {
            "question": "หมดเวลา", "options": ["a", "b"],
            "expires_at": (datetime.utcnow() - timedelta(days=1)).isoformat(),
        }, voter.id)
        await crud.create_poll(db, {"question": "เปิดอยู่", "options": ["a", "b"]}, voter.id)
        await db.commit()

        active, _ = await crud.list_polls(db, "active", 1, 50)
        assert [p.question for p in active] == ["เปิดอยู่"]
        old, _ = await crud.list_polls(db, "expired", 1, 50)
        assert [p.question for p in old] == ["หมดเวลา"]
        with pytest.raises(ValidationError):
            await crud.list_polls(db, "weird", 1, 50)
        with pytest.raises(ValidationError):
            await crud.vote_poll(db, expired.id, voter.id, 0)


@pytest.mark.asyncio
async def test_poll_expiry_with_utc_offset(async_session):
    """+07:00 的截止時間先換算成 UTC 再存，過期判斷才正確"""
    bangkok = timezone(timedelta(hours=7))
    an_hour_ago = datetime.now(timezone.utc) - timedelta(hours=1)
    async with async_session() as db:
        voter = Employee(name="ผู้โหวต")
        db.add(voter)
        await db.flush()
        poll = await crud.create_poll(db, {
            "question": "ปิดไปแล้ว", "options": ["a", "b"],
            "expires_at": an_hour_ago.astimezone(bangkok).isoformat(),
        }, voter.id)
        await db.commit()

        assert poll.expires_at.tzinfo is None
        assert poll.expires_at == an_hour_ago.replace(tzinfo=None)
        old, _ = await crud.list_polls(db, "expired", 1, 50)
        assert [p.question for p in old] == ["ปิดไปแล้ว"]
        with pytest.raises(ValidationError):
            await crud.vote_poll(db, poll.id, voter.id, 0)


# ---------- 全域搜尋 ----------
@pytest.mark.asyncio
async def test_global_search_groups_by_type(async_session):
    async with async_session() as db:
        company = Company(name_th="สยามเทค")
        db.add(company)
        await db.flush()
        site = Site(name="สยามพารากอน", company_id=company.id)
        db.add(site)
        await db.flush()
        db.add(Ticket(ticket_code="PDE-100", details="ซ่อมแอร์สยาม", site_id=site.id))
        await db.commit()

        result = await crud.global_search(db, "สยาม", ["company", "site", "ticket"], 5)
        assert result["counts"]["companys"] == 1
        assert result["counts"]["sites"] == 1
        assert result["counts"]["tickets"] == 1
        assert result["counts"]["employees"] == 0
        assert result["total"] == 3
        assert result["results"]["sites"][0]["subtitle"] == "สยามเทค"
