"""
LINE webhook 事件分派測試（假 LINE client + 暫存目錄，DB 為 in-memory SQLite）。
覆蓋：上傳 → 打工單號連結、勾選連結、送件中工單自動連結、連續上傳靜默、未連結帳號、
重送事件略過、單一事件失敗不影響其他事件、核准 / 駁回、今日工單、follow。
"""
import json
from datetime import date, time

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fieldops.config import settings
from fieldops.database import Base
from fieldops.models import (
    Company, Department, Employee, EmployeeLineAccount, Role, Site, StagedFile, Ticket,
    TicketConfirmedTechnician, WorkType,
)
from fieldops.services.line_api import LineApiError
from fieldops.services.line_dispatcher import FOLLOW_FALLBACK, VIDEO_NOT_SUPPORTED, LineWebhookDispatcher
from fieldops.services.storage import LocalObjectStorage

TODAY = date(2025, 1, 15)


class FakeLineClient:
    def __init__(self, content=b"jpeg-bytes", content_type="image/jpeg", profile=None, fail_tokens=()):
        self.content = content
        self.content_type = content_type
        self.profile = profile
        self.fail_tokens = set(fail_tokens)
        self.replies = {}
        self.loading = []

    async def reply(self, reply_token, messages):
        if reply_token in self.fail_tokens:
            raise LineApiError("reply", 400, "Invalid reply token")
        self.replies[reply_token] = messages

    async def get_profile(self, user_id):
        if self.profile is None:
            raise LineApiError("get profile", 404)
        return self.profile

    async def get_message_content(self, message_id):
        if self.content is None:
            raise LineApiError("get content", 404)
        return self.content, self.content_type

    async def show_loading(self, chat_id, loading_seconds=5):
        self.loading.append(chat_id)


def _event(user_id, token, **fields):
    return {
        "webhookEventId": f"evt-{token}",
        "replyToken": token,
        "source": {"type": "user", "userId": user_id},
        "deliveryContext": {"isRedelivery": False},
        **fields,
    }


def image(user_id, token, message_id="m1"):
    return _event(user_id, token, type="message", message={"type": "image", "id": message_id})


def text(user_id, token, value):
    return _event(user_id, token, type="message", message={"type": "text", "id": f"t-{token}", "text": value})


def postback(user_id, token, **data):
    return _event(user_id, token, type="postback", postback={"data": json.dumps(data)})


@pytest.fixture
async def env(tmp_path):
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as db:
        technical = Department(code="technical", name_th="ฝ่ายเทคนิค")
        management = Department(code="management", name_th="ฝ่ายบริหาร")
        db.add_all([technical, management])
        await db.flush()
        tech_role = Role(code="technician", name_th="ช่าง", level=0, department_id=technical.id)
        pm_role = Role(code="pm", name_th="PM", level=1, department_id=management.id)
        db.add_all([tech_role, pm_role])
        await db.flush()
        tech = Employee(name="สมชาย", role_id=tech_role.id)
        boss = Employee(name="หัวหน้า", role_id=pm_role.id)
        db.add_all([tech, boss])
        await db.flush()
        db.add_all([
            EmployeeLineAccount(employee_id=tech.id, line_user_id="U-tech"),
            EmployeeLineAccount(employee_id=boss.id, line_user_id="U-boss"),
        ])
        company = Company(name_th="บริษัท สยาม")
        work_type = WorkType(code="pm", name="บำรุงรักษา")
        db.add_all([company, work_type])
        await db.flush()
        site = Site(name="สาขาสีลม", company_id=company.id)
        db.add(site)
        await db.flush()
        ticket = Ticket(
            ticket_code="PDE-904", site_id=site.id, work_type_id=work_type.id, details="ล้างแอร์",
            appointment_date=TODAY, appointment_time_start=time(9, 0), appointment_time_end=time(12, 0),
        )
        db.add(ticket)
        await db.flush()
        db.add(TicketConfirmedTechnician(ticket_id=ticket.id, employee_id=tech.id, date=TODAY))
        await db.commit()
        ids = {"tech": tech.id, "boss": boss.id, "ticket": ticket.id}

    line = FakeLineClient(profile={"displayName": "Somchai LINE", "pictureUrl": "https://img.test/p.jpg"})
    storage = LocalObjectStorage(root=tmp_path, bucket="staging-files", public_base_url="http://files.test")
    dispatcher = LineWebhookDispatcher(async_session, line, storage, today=lambda: TODAY)
    yield dispatcher, line, async_session, ids, tmp_path
    await engine.dispose()


async def _files(async_session, employee_id):
    async with async_session() as db:
        result = await db.execute(
            select(StagedFile).where(StagedFile.employee_id == employee_id).order_by(StagedFile.created_at)
        )
        return list(result.scalars().all())


async def _account(async_session, line_user_id):
    async with async_session() as db:
        result = await db.execute(select(EmployeeLineAccount).where(EmployeeLineAccount.line_user_id == line_user_id))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_upload_then_link_by_ticket_code(env):
    """兩張圖先暫存，再打工單號一次連結；第二張在靜默時間內不回覆"""
    dispatcher, line, async_session, ids, tmp_path = env
    await dispatcher.process_events([image("U-tech", "rt1", "m1")])
    await dispatcher.process_events([image("U-tech", "rt2", "m2")])

    first = line.replies["rt1"]
    assert first[0]["altText"] == "อัพโหลดสำเร็จ"
    assert "quickReply" in first[1]
    assert "rt2" not in line.replies

    files = await _files(async_session, ids["tech"])
    assert [f.status for f in files] == ["pending", "pending"]
    assert files[0].file_url.startswith("http://files.test/storage/staging-files/U-tech/image_")
    assert files[0].file_name.endswith(".jpg")
    assert files[0].expires_at is not None
    assert list((tmp_path / "staging-files" / "U-tech").iterdir())

    await dispatcher.process_events([text("U-tech", "rt3", "904")])
    assert line.replies["rt3"][0]["altText"] == "เชื่อมต่อสำเร็จ"
    files = await _files(async_session, ids["tech"])
    assert {f.status for f in files} == {"linked"}
    assert {f.ticket_id for f in files} == {ids["ticket"]}
    assert all(f.file_metadata == {} for f in files)


@pytest.mark.asyncio
async def test_link_with_unknown_ticket_or_no_files(env):
    dispatcher, line, async_session, ids, _ = env
    await dispatcher.process_events([text("U-tech", "rt1", "PDE-1")])
    assert "ไม่พบไฟล์ที่รอเชื่อมต่อ" in line.replies["rt1"][0]["text"]

    await dispatcher.process_events([image("U-tech", "rt2")])
    await dispatcher.process_events([text("U-tech", "rt3", "PDE-1")])
    assert line.replies["rt3"][0]["altText"] == "ไม่พบตั๋วงาน"
    files = await _files(async_session, ids["tech"])
    assert files[0].status == "pending"


@pytest.mark.asyncio
async def test_only_selected_files_are_linked(env, monkeypatch):
    monkeypatch.setattr(settings, "upload_debounce_seconds", 0)
    dispatcher, line, async_session, ids, _ = env
    await dispatcher.process_events([image("U-tech", "rt1", "m1")])
    await dispatcher.process_events([image("U-tech", "rt2", "m2")])
    assert "rt2" in line.replies

    await dispatcher.process_events([postback("U-tech", "rt3", action="select_all")])
    assert line.replies["rt3"][0]["altText"] == "เลือกทั้งหมด"
    first, second = await _files(async_session, ids["tech"])
    assert first.file_metadata["selected"] is True and second.file_metadata["selected"] is True

    await dispatcher.process_events([postback("U-tech", "rt4", action="toggle_select", fileId=first.id)])
    await dispatcher.process_events([text("U-tech", "rt5", "PDE-904")])
    first, second = await _files(async_session, ids["tech"])
    assert first.status == "pending"
    assert second.status == "linked"


@pytest.mark.asyncio
async def test_active_ticket_auto_link_and_done(env):
    """送件中工單：上傳直接連結，打「เสร็จ」後清除"""
    dispatcher, line, async_session, ids, _ = env
    await dispatcher.process_events([postback("U-tech", "rt1", action="submit_work", ticketId=ids["ticket"])])
    assert "PDE-904" in line.replies["rt1"][0]["text"]
    assert (await _account(async_session, "U-tech")).active_ticket_id == ids["ticket"]

    await dispatcher.process_events([image("U-tech", "rt2")])
    assert "PDE-904" in line.replies["rt2"][1]["text"]
    files = await _files(async_session, ids["tech"])
    assert files[0].status == "linked"
    assert files[0].ticket_id == ids["ticket"]

    await dispatcher.process_events([text("U-tech", "rt3", "เสร็จ")])
    assert "ส่งไปแล้ว 1 ไฟล์" in line.replies["rt3"][0]["text"]
    assert (await _account(async_session, "U-tech")).active_ticket_id is None

    await dispatcher.process_events([text("U-tech", "rt4", "done")])
    assert line.replies["rt4"][0]["text"] == "ไม่มีงานที่กำลังส่งอยู่"


@pytest.mark.asyncio
async def test_unlinked_account_and_video(env):
    dispatcher, line, _, _, _ = env
    await dispatcher.process_events([text("U-stranger", "rt1", "เมนู")])
    assert line.replies["rt1"][0]["altText"] == "ไม่พบบัญชี"

    await dispatcher.process_events([postback("U-stranger", "rt2", action="select_all")])
    assert line.replies["rt2"][0]["altText"] == "ไม่พบบัญชี"

    await dispatcher.process_events([
        _event("U-stranger", "rt3", type="message", message={"type": "video", "id": "v1"}),
    ])
    assert line.replies["rt3"][0]["text"] == VIDEO_NOT_SUPPORTED


@pytest.mark.asyncio
async def test_redelivery_skipped_and_failures_isolated(env):
    dispatcher, line, _, _, _ = env
    line.fail_tokens.add("boom")
    redelivered = text("U-tech", "rt-re", "เมนู")
    redelivered["deliveryContext"] = {"isRedelivery": True}

    await dispatcher.process_events([
        redelivered,
        text("U-tech", "boom", "เมนู"),
        text("U-tech", "ok", "menu"),
    ])
    assert "rt-re" not in line.replies
    assert "boom" not in line.replies
    assert line.replies["ok"][0]["altText"] == "เมนูคำสั่ง"


@pytest.mark.asyncio
async def test_malformed_event_does_not_stop_batch(env):
    """批次中格式錯誤的事件略過，後面的事件照常處理"""
    dispatcher, line, _, _, _ = env
    broken_context = text("U-tech", "rt-broken", "เมนู")
    broken_context["deliveryContext"] = "oops"

    await dispatcher.process_events([
        "junk",
        None,
        broken_context,
        text("U-tech", "after", "menu"),
    ])
    assert "rt-broken" not in line.replies
    assert line.replies["after"][0]["altText"] == "เมนูคำสั่ง"


@pytest.mark.asyncio
async def test_upload_failure_replies_error(env):
    dispatcher, line, async_session, ids, _ = env
    line.content = None
    await dispatcher.process_events([image("U-tech", "rt1")])
    assert line.replies["rt1"][0]["altText"] == "เกิดข้อผิดพลาด"
    assert await _files(async_session, ids["tech"]) == []


@pytest.mark.asyncio
async def test_delete_all_removes_rows_and_objects(env, monkeypatch):
    monkeypatch.setattr(settings, "upload_debounce_seconds", 0)
    dispatcher, line, async_session, ids, tmp_path = env
    line.content_type = "application/pdf"
    await dispatcher.process_events([
        _event("U-tech", "rt1", type="message", message={"type": "file", "id": "f1", "fileName": "../report.pdf"}),
    ])
    files = await _files(async_session, ids["tech"])
    assert files[0].file_name == "report.pdf"

    await dispatcher.process_events([text("U-tech", "rt2", "ลบทั้งหมด")])
    assert line.replies["rt2"][0]["altText"] == "ลบสำเร็จ"
    assert await _files(async_session, ids["tech"]) == []
    assert list((tmp_path / "staging-files" / "U-tech").iterdir()) == []


@pytest.mark.asyncio
async def test_approver_decides_linked_file(env):
    dispatcher, line, async_session, ids, _ = env
    await dispatcher.process_events([image("U-tech", "rt1")])
    await dispatcher.process_events([text("U-tech", "rt2", "904")])
    (staged,) = await _files(async_session, ids["tech"])

    # 技師（level 0）不可核准，也不可看待核准清單
    await dispatcher.process_events([postback("U-tech", "rt3", action="approve_file", fileId=staged.id)])
    assert line.replies["rt3"][0]["altText"] == "ไม่มีสิทธิ์"
    await dispatcher.process_events([text("U-tech", "rt4", "สถานะ")])
    assert line.replies["rt4"][0]["altText"] == "ไม่มีสิทธิ์"

    await dispatcher.process_events([text("U-boss", "rt5", "status")])
    assert line.replies["rt5"][0]["altText"] == "รออนุมัติ"

    await dispatcher.process_events([postback("U-boss", "rt6", action="reject_file", fileId=staged.id)])
    assert line.replies["rt6"][0]["altText"] == "❌ ปฏิเสธสำเร็จ"
    (staged,) = await _files(async_session, ids["tech"])
    assert staged.status == "rejected"
    assert staged.approved_by == ids["boss"]
    assert staged.rejection_reason == "ปฏิเสธโดยผู้อนุมัติ"

    await dispatcher.process_events([postback("U-boss", "rt7", action="approve_file", fileId=staged.id)])
    assert line.replies["rt7"][0]["altText"] == "ไม่สามารถอนุมัติได้"

    # 已駁回的檔案不可撤回
    await dispatcher.process_events([postback("U-tech", "rt8", action="unlink_file", fileId=staged.id)])
    assert line.replies["rt8"][0]["altText"] == "ไม่สามารถยกเลิกได้"


@pytest.mark.asyncio
async def test_unlink_returns_file_to_pending(env):
    dispatcher, line, async_session, ids, _ = env
    await dispatcher.process_events([image("U-tech", "rt1")])
    await dispatcher.process_events([text("U-tech", "rt2", "PDE-904")])
    (staged,) = await _files(async_session, ids["tech"])

    await dispatcher.process_events([postback("U-boss", "rt3", action="unlink_file", fileId=staged.id)])
    assert line.replies["rt3"][0]["altText"] == "ไม่มีสิทธิ์"

    await dispatcher.process_events([postback("U-tech", "rt4", action="unlink_file", fileId=staged.id)])
    assert line.replies["rt4"][0]["altText"] == "ยกเลิกการส่งสำเร็จ"
    (staged,) = await _files(async_session, ids["tech"])
    assert staged.status == "pending"
    assert staged.ticket_id is None


@pytest.mark.asyncio
async def test_today_and_my_tickets(env):
    dispatcher, line, _, _, _ = env
    await dispatcher.process_events([text("U-boss", "rt1", "วันนี้")])
    reply = line.replies["rt1"][0]
    assert reply["altText"] == "ตั๋ววันนี้"
    assert "PDE-904" in json.dumps(reply["contents"], ensure_ascii=False)
    assert "บริษัท สยาม (สาขาสีลม)" in json.dumps(reply["contents"], ensure_ascii=False)
    assert line.loading == ["U-boss"]

    # 技師打「วันนี้」只看自己的工單
    await dispatcher.process_events([text("U-tech", "rt2", "today")])
    reply = line.replies["rt2"][0]
    assert reply["altText"] == "งานของฉัน"
    contents = json.dumps(reply["contents"], ensure_ascii=False)
    assert "09:00-12:00" in contents
    assert "submit_work" in contents


@pytest.mark.asyncio
async def test_today_without_tickets(env):
    dispatcher, line, _, _, _ = env
    dispatcher.today = lambda: date(2025, 1, 16)
    await dispatcher.process_events([text("U-boss", "rt1", "วันนี้")])
    assert line.replies["rt1"][0]["text"].endswith("(ไม่มีงานคะ)")


@pytest.mark.asyncio
async def test_follow_updates_profile(env):
    dispatcher, line, async_session, _, _ = env
    await dispatcher.process_events([_event("U-tech", "rt1", type="follow")])
    assert line.replies["rt1"][0]["text"].startswith("ยินดีต้อนรับกลับ สมชาย!")
    account = await _account(async_session, "U-tech")
    assert account.display_name == "Somchai LINE"
    assert account.profile_picture_url == "https://img.test/p.jpg"

    await dispatcher.process_events([_event("U-new", "rt2", type="follow")])
    assert line.replies["rt2"][0]["altText"] == "ยินดีต้อนรับ"

    line.profile = None
    await dispatcher.process_events([_event("U-tech", "rt3", type="follow")])
    assert line.replies["rt3"][0]["text"] == FOLLOW_FALLBACK


@pytest.mark.asyncio
async def test_unfollow_and_malformed_postback(env):
    dispatcher, line, _, _, _ = env
    await dispatcher.process_events([_event("U-tech", "rt1", type="unfollow")])
    assert "rt1" not in line.replies

    await dispatcher.process_events([
        _event("U-tech", "rt2", type="postback", postback={"data": "action=legacy"}),
    ])
    assert line.replies["rt2"][0]["altText"] == "เกิดข้อผิดพลาด"
