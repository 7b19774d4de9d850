"""LINE webhook 事件分派：訊息（圖片 / 檔案 / 影片 / 文字指令）、postback、follow / unfollow。

每個事件使用獨立的 DB session，處理完 commit 後才回覆；單一事件失敗只記 log，不影響同批其他事件。
使用者狀態（待連結檔案、active ticket）都存在資料庫，dispatcher 本身不保留狀態。
"""
import json
import logging
import math
import re
import time
from datetime import date, datetime, timedelta
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from fieldops.config import settings
from fieldops.models import (
    Employee, EmployeeLineAccount, Role, Site, Ticket, TicketConfirmedTechnician,
)
from fieldops.services import line_messages as msg
from fieldops.services import staged_files
from fieldops.services.line_api import LineApiClient, LineApiError
from fieldops.services.storage import LocalObjectStorage

logger = logging.getLogger(__name__)

TECHNICIAN_DEPARTMENT = "technical"
BANGKOK = ZoneInfo("Asia/Bangkok")

TICKET_CODE_RE = re.compile(r"^PDE-\d+$")
TICKET_NUMBER_RE = re.compile(r"^\d{1,6}$")

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}

# date.weekday()：星期一為 0
THAI_DAYS = ["จันทร์", "อังคาร", "พุธ", "พฤหัสบดี", "ศุกร์", "เสาร์", "อาทิตย์"]
THAI_MONTHS = [
    "มกราคม", "กุมภาพันธ์", "มีนาคม", "เมษายน", "พฤษภาคม", "มิถุนายน",
    "กรกฎาคม", "สิงหาคม", "กันยายน", "ตุลาคม", "พฤศจิกายน", "ธันวาคม",
]

COMMANDS = {
    "เมนู": "menu", "menu": "menu", "help": "menu", "?": "menu",
    "รายการ": "list", "list": "list",
    "ลบทั้งหมด": "delete_all", "delete all": "delete_all",
    "เลือกทั้งหมด": "select_all", "select all": "select_all",
    "ยกเลิกเลือก": "clear_selection", "clear": "clear_selection",
    "รออนุมัติ": "status", "สถานะ": "status", "status": "status",
    "เชื่อมตั๋ว": "link", "link": "link",
    "เสร็จ": "done", "done": "done",
    "วันนี้": "today", "today": "today",
    "งานของฉัน": "my", "งานฉัน": "my", "my": "my", "mytasks": "my",
}

UNLINKED_MESSAGE = "บัญชี LINE ของคุณยังไม่ได้เชื่อมต่อกับระบบ กรุณาติดต่อผู้ดูแลระบบ"
VIDEO_NOT_SUPPORTED = "ขออภัย ระบบยังไม่รองรับการอัพโหลดวิดีโอ กรุณาส่งเป็นรูปภาพหรือไฟล์แทน"
FOLLOW_FALLBACK = "ยินดีต้อนรับ! 👋\n\nกรุณาติดต่อผู้ดูแลระบบเพื่อเชื่อมต่อบัญชี"


class LineActor(BaseModel):
    """LINE 帳號對應的員工"""
    line_user_id: str
    line_account_id: str
    employee_id: str
    employee_name: str
    display_name: Optional[str] = None
    department_code: Optional[str] = None
    permission_level: int = 0
    active_ticket_id: Optional[str] = None

    @property
    def is_technician(self) -> bool:
        return self.department_code == TECHNICIAN_DEPARTMENT

    @property
    def is_approver(self) -> bool:
        return self.permission_level >= 1


def extension_for_mime(mime_type: Optional[str]) -> str:
    base = (mime_type or "").split(";", 1)[0].strip().lower()
    return MIME_EXTENSIONS.get(base, ".bin")


def parse_ticket_code(raw: str) -> Optional[str]:
    """PDE-904 / pde-904 / 904 → PDE-904；其他回傳 None"""
    value = raw.strip().upper()
    if TICKET_CODE_RE.match(value):
        return value
    if TICKET_NUMBER_RE.match(value):
        return f"PDE-{value}"
    return None


def format_thai_date(d: date) -> str:
    return f"วัน {THAI_DAYS[d.weekday()]} ที่ {d.day} {THAI_MONTHS[d.month - 1]} {d.year + 543}"


def bangkok_today() -> date:
    return datetime.now(BANGKOK).date()


def site_display_name(site: Optional[Site]) -> str:
    """公司 (案場)；缺一則只顯示有的那個"""
    site_name = site.name if site is not None else ""
    company_name = site.company.name_th if site is not None and site.company is not None else ""
    if company_name and site_name:
        return f"{company_name} ({site_name})"
    return company_name or site_name


def _time_range(ticket: Ticket) -> str:
    if ticket.appointment_time_start is None:
        return ""
    start = ticket.appointment_time_start.strftime("%H:%M")
    if ticket.appointment_time_end is None:
        return start
    return f"{start}-{ticket.appointment_time_end.strftime('%H:%M')}"


def _error(title: str, message: str, alt_text: Optional[str] = None) -> List[Dict[str, Any]]:
    return [msg.flex(alt_text or title, msg.error_bubble(title, message))]


def _unlinked() -> List[Dict[str, Any]]:
    return _error("ไม่พบบัญชี", UNLINKED_MESSAGE)


def _page_bounds(total: int, page: int) -> Optional[tuple]:
    """回傳 (start, end, total_pages)；頁碼超出範圍回傳 None"""
    total_pages = max(1, math.ceil(total / msg.FILES_PER_PAGE))
    if page < 1 or page > total_pages:
        return None
    start = (page - 1) * msg.FILES_PER_PAGE
    return start, start + msg.FILES_PER_PAGE, total_pages


async def get_line_actor(db: AsyncSession, line_user_id: str) -> Optional[LineActor]:
    result = await db.execute(
        select(EmployeeLineAccount)
        .options(
            selectinload(EmployeeLineAccount.employee)
            .selectinload(Employee.role)
            .selectinload(Role.department)
        )
        .where(EmployeeLineAccount.line_user_id == line_user_id)
    )
    account = result.scalar_one_or_none()
    if account is None or account.employee is None:
        return None
    employee = account.employee
    role = employee.role
    department = role.department if role is not None else None
    return LineActor(
        line_user_id=line_user_id,
        line_account_id=account.id,
        employee_id=employee.id,
        employee_name=employee.name,
        display_name=account.display_name,
        department_code=department.code if department is not None else None,
        permission_level=(role.level or 0) if role is not None else 0,
        active_ticket_id=account.active_ticket_id,
    )


class LineWebhookDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        line_client: LineApiClient,
        storage: LocalObjectStorage,
        today: Callable[[], date] = bangkok_today,
    ):
        self.session_factory = session_factory
        self.line = line_client
        self.storage = storage
        self.today = today

    async def process_events(self, events: List[Dict[str, Any]]) -> None:
        for event in events:
            if not isinstance(event, dict):
                logger.warning("Skipping malformed LINE event: %r", event)
                continue
            try:
                if (event.get("deliveryContext") or {}).get("isRedelivery"):
                    logger.info("Skipping redelivered event: %s", event.get("webhookEventId"))
                    continue
                await self.process_event(event)
            except Exception:
                logger.exception(
                    "LINE event failed: type=%s id=%s", event.get("type"), event.get("webhookEventId")
                )

    async def process_event(self, event: Dict[str, Any]) -> None:
        handlers = {
            "message": self.handle_message,
            "postback": self.handle_postback,
            "follow": self.handle_follow,
            "unfollow": self.handle_unfollow,
        }
        handler = handlers.get(event.get("type"))
        if handler is None:
            logger.info("Unhandled LINE event type: %s", event.get("type"))
            return
        user_id = (event.get("source") or {}).get("userId")
        if not user_id:
            logger.warning("LINE event without userId: %s", event.get("webhookEventId"))
            return

        async with self.session_factory() as db:
            try:
                messages = await handler(db, user_id, event)
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        if messages and event.get("replyToken"):
            await self.line.reply(event["replyToken"], messages)

    # ---------- message ----------
    async def handle_message(self, db: AsyncSession, user_id: str, event: Dict[str, Any]):
        message = event.get("message") or {}
        message_type = message.get("type")
        if message_type == "video":
            return [msg.text(VIDEO_NOT_SUPPORTED)]
        if message_type not in ("image", "file", "text"):
            logger.info("Unhandled LINE message type: %s", message_type)
            return None

        actor = await get_line_actor(db, user_id)
        if actor is None:
            return _unlinked()
        if message_type == "text":
            return await self.handle_text(db, actor, message.get("text") or "")
        return await self.handle_upload(db, actor, message)

    async def handle_upload(self, db: AsyncSession, actor: LineActor, message: Dict[str, Any]):
        now = datetime.utcnow()
        debounced = await staged_files.has_recent_pending(
            db, actor.employee_id, now - timedelta(seconds=settings.upload_debounce_seconds)
        )
        try:
            content, content_type = await self.line.get_message_content(message["id"])
            millis = int(time.time() * 1000)
            if message["type"] == "image":
                file_name = f"image_{millis}{extension_for_mime(content_type)}"
                path = f"{actor.line_user_id}/{file_name}"
            else:
                file_name = PurePosixPath(message.get("fileName") or f"file_{millis}").name
                path = f"{actor.line_user_id}/{millis}_{file_name}"
            file_url = self.storage.upload(path, content)

            active_ticket = None
            if actor.is_technician and actor.active_ticket_id:
                active_ticket = await db.get(Ticket, actor.active_ticket_id)
            staged = await staged_files.create_staged_file(
                db,
                employee_id=actor.employee_id,
                file_url=file_url,
                file_name=file_name,
                file_size=len(content),
                mime_type=content_type,
                ticket_id=active_ticket.id if active_ticket is not None else None,
                status="linked" if active_ticket is not None else "pending",
                source="line",
                file_metadata={"line_message_id": message["id"]},
            )
        except (LineApiError, httpx.HTTPError, OSError, ValueError, DBAPIError):
            logger.exception("LINE upload failed for employee %s", actor.employee_id)
            await db.rollback()
            return _error("เกิดข้อผิดพลาด", "ไม่สามารถอัพโหลดไฟล์ได้ กรุณาลองใหม่อีกครั้ง")

        if debounced:
            return None
        upload = msg.flex("อัพโหลดสำเร็จ", msg.upload_bubble(file_name, file_url, content_type))
        if active_ticket is not None:
            return [upload, msg.text(
                f"✅ ส่งไฟล์ไปยัง {active_ticket.ticket_code} แล้ว\n\nส่งรูปเพิ่มได้เลย หรือพิมพ์ \"เสร็จ\" เมื่อส่งครบ"
            )]
        pending_count = await staged_files.count_pending(db, actor.employee_id)
        return [upload, msg.text_with_quick_reply(
            "กรุณาส่งไฟล์ทั้งหมดก่อน แล้วพิมพ์รหัสตั๋ว เช่น PDE-904",
            msg.quick_reply_items(pending_count, staged.id),
        )]

    async def handle_text(self, db: AsyncSession, actor: LineActor, raw: str):
        raw = raw.strip()
        ticket_code = parse_ticket_code(raw)
        if ticket_code:
            return await self.link_pending_files(db, actor, ticket_code)

        command = COMMANDS.get(raw.lower())
        if command is not None:
            return await getattr(self, f"command_{command}")(db, actor)

        pending = await staged_files.pending_files(db, actor.employee_id)
        if pending:
            return [msg.text_with_quick_reply(
                f"คุณมี {len(pending)} ไฟล์รอเชื่อมต่อ\n\nกรุณาพิมพ์รหัสตั๋ว เช่น PDE-904",
                msg.quick_reply_items(len(pending), pending[0].id),
            )]
        return [msg.text("กรุณาส่งรูปภาพหรือไฟล์ที่ต้องการแนบกับตั๋วงาน")]

    async def link_pending_files(self, db: AsyncSession, actor: LineActor, ticket_code: str):
        """有勾選只連結勾選的檔案，否則連結全部待連結檔案；不改變 active ticket"""
        pending = await staged_files.pending_files(db, actor.employee_id)
        if not pending:
            return [msg.text("ไม่พบไฟล์ที่รอเชื่อมต่อ\n\nกรุณาส่งรูปภาพหรือไฟล์ก่อน แล้วค่อยพิมพ์รหัสตั๋ว")]
        ticket = await staged_files.find_ticket_by_code(db, ticket_code)
        if ticket is None:
            return _error("ไม่พบตั๋วงาน", f"ไม่พบตั๋วรหัส {ticket_code}\n\nกรุณาตรวจสอบรหัสตั๋วและลองใหม่")

        targets = [f for f in pending if staged_files.is_selected(f)] or pending
        count = await staged_files.link_files(db, targets, ticket.id)
        if count == 1:
            bubble = msg.linked_success_bubble(ticket.ticket_code, targets[0].file_name)
        else:
            bubble = msg.bulk_linked_success_bubble(ticket.ticket_code, count)
        return [msg.flex("เชื่อมต่อสำเร็จ", bubble)]

    # ---------- 文字指令 ----------
    async def command_menu(self, db: AsyncSession, actor: LineActor):
        return [msg.flex("เมนูคำสั่ง", msg.menu_bubble(actor.is_technician))]

    async def command_list(self, db: AsyncSession, actor: LineActor, page: int = 1):
        files = await staged_files.pending_files(db, actor.employee_id)
        if not files:
            return [msg.flex("ไม่มีไฟล์", msg.no_files_bubble())]
        bounds = _page_bounds(len(files), page)
        if bounds is None:
            return [msg.text("หน้าไม่ถูกต้อง")]
        start, end, total_pages = bounds
        total = len(files)
        selected = sum(1 for f in files if staged_files.is_selected(f))
        carousel = msg.file_carousel(files[start:end], total, selected, page, total_pages)
        if selected:
            status_text = f"เลือก {selected}/{total} ไฟล์\n\nพิมพ์รหัสตั๋วเพื่อเชื่อมต่อไฟล์ที่เลือก"
        else:
            status_text = f"มี {total} ไฟล์รอดำเนินการ\n\nพิมพ์รหัสตั๋วเพื่อเชื่อมต่อทุกไฟล์"
        return [msg.flex("รายการไฟล์", carousel), msg.text(status_text)]

    async def command_delete_all(self, db: AsyncSession, actor: LineActor):
        files = await staged_files.pending_files(db, actor.employee_id)
        if not files:
            return [msg.flex("ไม่มีไฟล์", msg.no_files_bubble())]
        self.storage.remove_urls([f.file_url for f in files])
        for staged in files:
            await db.delete(staged)
        await db.flush()
        return [msg.flex("ลบสำเร็จ", msg.bulk_delete_success_bubble(len(files)))]

    async def command_select_all(self, db: AsyncSession, actor: LineActor):
        files = await staged_files.pending_files(db, actor.employee_id)
        if not files:
            return [msg.flex("ไม่มีไฟล์", msg.no_files_bubble())]
        await staged_files.set_selected(db, files, True)
        return [msg.flex("เลือกทั้งหมด", msg.selection_updated_bubble(len(files), len(files)))]

    async def command_clear_selection(self, db: AsyncSession, actor: LineActor):
        files = await staged_files.pending_files(db, actor.employee_id)
        if not files:
            return [msg.flex("ไม่มีไฟล์", msg.no_files_bubble())]
        await staged_files.set_selected(db, files, False)
        return [msg.flex("ยกเลิกเลือก", msg.selection_updated_bubble(0, len(files)))]

    async def command_status(self, db: AsyncSession, actor: LineActor, page: int = 1):
        """核准者（level ≥ 1）看所有人最近 7 天待核准的檔案"""
        if not actor.is_approver:
            return _error("ไม่มีสิทธิ์เข้าถึง", "คำสั่งนี้สำหรับผู้อนุมัติเท่านั้น", alt_text="ไม่มีสิทธิ์")
        files = await staged_files.approver_files(db)
        if not files:
            return [msg.flex("ไม่มีไฟล์", msg.success_bubble("ไม่มีไฟล์รออนุมัติ", "ไม่มีไฟล์ที่รอการอนุมัติในขณะนี้"))]
        bounds = _page_bounds(len(files), page)
        if bounds is None:
            return [msg.text("หน้าไม่ถูกต้อง")]
        start, end, total_pages = bounds
        return [
            msg.flex("รออนุมัติ", msg.approver_files_carousel(files[start:end], page, total_pages)),
            msg.text(f"มี {len(files)} ไฟล์รออนุมัติ (7 วันล่าสุด)"),
        ]

    async def command_link(self, db: AsyncSession, actor: LineActor):
        files = await staged_files.pending_files(db, actor.employee_id)
        if not files:
            return [
                msg.flex("ไม่มีไฟล์", msg.no_files_bubble()),
                msg.text("ไม่มีไฟล์รอดำเนินการ\n\nกรุณาส่งรูปหรือไฟล์ก่อน แล้วค่อยพิมพ์รหัสตั๋ว"),
            ]
        selected = sum(1 for f in files if staged_files.is_selected(f))
        if selected:
            prompt = (f"คุณมี {len(files)} ไฟล์รอดำเนินการ (เลือกไว้ {selected} ไฟล์)\n\n"
                      "📝 พิมพ์รหัสตั๋วเพื่อเชื่อมต่อไฟล์ที่เลือก\nตัวอย่าง: PDE-904 หรือ 904")
        else:
            prompt = (f"คุณมี {len(files)} ไฟล์รอดำเนินการ\n\n"
                      "📝 พิมพ์รหัสตั๋วเพื่อเชื่อมต่อทุกไฟล์\nตัวอย่าง: PDE-904 หรือ 904")
        return [msg.text_with_quick_reply(prompt, msg.quick_reply_items(len(files), files[0].id))]

    async def command_done(self, db: AsyncSession, actor: LineActor):
        if not actor.active_ticket_id:
            return [msg.text("ไม่มีงานที่กำลังส่งอยู่")]
        ticket = await db.get(Ticket, actor.active_ticket_id)
        count = await staged_files.count_ticket_files(db, actor.active_ticket_id, actor.employee_id, status="linked")
        account = await db.get(EmployeeLineAccount, actor.line_account_id)
        account.active_ticket_id = None
        await db.flush()
        ticket_code = ticket.ticket_code if ticket is not None else "-"
        return [msg.text(
            f"✅ ส่งงาน {ticket_code} เสร็จสิ้น\n\nส่งไปแล้ว {count} ไฟล์ รอการอนุมัติ\n\nพิมพ์ \"งานของฉัน\" เพื่อดูงานอื่น"
        )]

    async def command_today(self, db: AsyncSession, actor: LineActor):
        """技師只看自己的工單；其他人看今天全部已確認技師的工單，依技師組合分組"""
        if actor.is_technician:
            return await self.command_my(db, actor)
        await self.line.show_loading(actor.line_user_id)
        today = self.today()
        date_text = format_thai_date(today)
        result = await db.execute(
            select(Ticket)
            .options(
                selectinload(Ticket.site).selectinload(Site.company),
                selectinload(Ticket.confirmed_technicians).selectinload(TicketConfirmedTechnician.employee),
            )
            .where(Ticket.appointment_date == today)
            .order_by(Ticket.appointment_time_start, Ticket.ticket_code)
        )
        tickets = list(result.scalars().all())
        if not tickets:
            return [msg.text(f"{date_text} (ไม่มีงานคะ)")]
        confirmed = [t for t in tickets if t.confirmed_technicians]
        if not confirmed:
            return [msg.text(f"{date_text} (ยังไม่มีการยืนยันช่างคะ)")]

        groups: Dict[tuple, Dict[str, Any]] = {}
        for ticket in confirmed:
            key = tuple(sorted({c.employee_id for c in ticket.confirmed_technicians}))
            group = groups.setdefault(key, {
                "technician_display": " + ".join(
                    c.employee.name for c in ticket.confirmed_technicians if c.employee is not None
                ),
                "tickets": [],
            })
            group["tickets"].append({
                "ticket_code": ticket.ticket_code,
                "display_name": site_display_name(ticket.site),
            })
        teams = [{"team_number": i, **group} for i, group in enumerate(groups.values(), 1)]
        return [msg.flex("ตั๋ววันนี้", msg.team_tickets_bubble(teams, date_text, len(confirmed)))]

    async def command_my(self, db: AsyncSession, actor: LineActor):
        await self.line.show_loading(actor.line_user_id)
        today = self.today()
        date_text = format_thai_date(today)
        result = await db.execute(
            select(Ticket)
            .join(TicketConfirmedTechnician, TicketConfirmedTechnician.ticket_id == Ticket.id)
            .options(selectinload(Ticket.site), selectinload(Ticket.work_type))
            .where(TicketConfirmedTechnician.employee_id == actor.employee_id, TicketConfirmedTechnician.date == today)
            .order_by(Ticket.appointment_time_start, Ticket.ticket_code)
        )
        tickets = list(result.scalars().unique().all())
        if not tickets:
            return [msg.text(f"📅 {date_text}\n\nไม่มีงานที่ได้รับมอบหมายวันนี้")]

        items = []
        for ticket in tickets:
            submitted = 0
            if actor.is_technician:
                submitted = await staged_files.count_ticket_files(db, ticket.id, actor.employee_id)
            items.append({
                "ticket_id": ticket.id,
                "ticket_code": ticket.ticket_code,
                "site_name": ticket.site.name if ticket.site is not None else "-",
                "work_type": ticket.work_type.name if ticket.work_type is not None else "-",
                "details": ticket.details or "",
                "appointment_time": _time_range(ticket),
                "submitted_count": submitted,
            })
        bubble = msg.my_tickets_bubble(
            items, date_text, actor.display_name or actor.employee_name, show_submit_button=actor.is_technician
        )
        return [msg.flex("งานของฉัน", bubble)]

    # ---------- postback ----------
    async def handle_postback(self, db: AsyncSession, user_id: str, event: Dict[str, Any]):
        raw = (event.get("postback") or {}).get("data") or ""
        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        if not isinstance(data, dict) or not data.get("action"):
            logger.warning("Malformed postback data: %r", raw)
            return _error("เกิดข้อผิดพลาด", "ไม่สามารถดำเนินการได้ กรุณาลองใหม่อีกครั้ง")

        actor = await get_line_actor(db, user_id)
        if actor is None:
            return _unlinked()

        action = data["action"]
        handler = getattr(self, f"postback_{action}", None)
        if handler is None:
            logger.info("Unknown postback action: %s", action)
            return None
        return await handler(db, actor, data)

    @staticmethod
    def _page(data: Dict[str, Any]) -> Optional[int]:
        try:
            return int(data.get("page", 1))
        except (TypeError, ValueError):
            return None

    async def postback_select_ticket(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        file_id, ticket_id = data.get("fileId"), data.get("ticketId")
        if not file_id or not ticket_id:
            return _error("ข้อมูลไม่ครบ", "ไม่พบข้อมูลไฟล์หรือตั๋วงาน กรุณาลองใหม่อีกครั้ง")
        staged = await staged_files.get_staged_file(db, file_id)
        if staged is None:
            return _error("ไม่พบไฟล์", "ไฟล์นี้อาจถูกลบไปแล้ว กรุณาอัพโหลดใหม่")
        if staged.status != "pending":
            return _error("ไฟล์ถูกใช้แล้ว", "ไฟล์นี้ถูกเชื่อมต่อกับตั๋วอื่นไปแล้ว กรุณาอัพโหลดไฟล์ใหม่")
        ticket = await db.get(Ticket, ticket_id)
        if ticket is None:
            return _error("ไม่พบตั๋วงาน", "ตั๋วงานนี้อาจถูกลบไปแล้ว")
        await staged_files.link_files(db, [staged], ticket.id)
        return [msg.flex("เชื่อมต่อสำเร็จ", msg.linked_success_bubble(ticket.ticket_code, staged.file_name))]

    async def postback_cancel(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        file_id = data.get("fileId")
        if file_id:
            staged = await staged_files.get_staged_file(db, file_id)
            if staged is not None and staged.status == "pending" and staged.employee_id == actor.employee_id:
                self.storage.remove_urls([staged.file_url])
                await db.delete(staged)
                await db.flush()
        return [msg.text("ยกเลิกเรียบร้อยแล้ว")]

    async def postback_view_files(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        page = self._page(data)
        if page is None:
            return [msg.text("หน้าไม่ถูกต้อง")]
        return await self.command_list(db, actor, page)

    postback_view_files_page = postback_view_files

    async def _own_file(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any], forbidden_message: str):
        """回傳 (staged, None) 或 (None, 錯誤回覆)"""
        file_id = data.get("fileId")
        staged = await staged_files.get_staged_file(db, file_id) if file_id else None
        if staged is None:
            return None, _error("ไม่พบไฟล์", "ไฟล์นี้อาจถูกลบไปแล้ว")
        if staged.employee_id != actor.employee_id:
            return None, _error("ไม่มีสิทธิ์", forbidden_message)
        return staged, None

    async def postback_toggle_select(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        staged, error = await self._own_file(db, actor, data, "คุณไม่มีสิทธิ์เข้าถึงไฟล์นี้")
        if error:
            return error
        if staged.status != "pending":
            return _error("ไฟล์ถูกใช้แล้ว", "ไฟล์นี้ถูกเชื่อมต่อกับตั๋วแล้ว")
        await staged_files.set_selected(db, [staged], not staged_files.is_selected(staged))
        files = await staged_files.pending_files(db, actor.employee_id)
        selected = sum(1 for f in files if staged_files.is_selected(f))
        return [msg.flex("อัพเดตการเลือก", msg.selection_updated_bubble(selected, len(files)))]

    async def postback_delete_file(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        staged, error = await self._own_file(db, actor, data, "คุณไม่มีสิทธิ์ลบไฟล์นี้")
        if error:
            return error
        if staged.status != "pending":
            return _error("ไม่สามารถลบได้", "ไฟล์นี้ถูกเชื่อมต่อกับตั๋วแล้ว ไม่สามารถลบได้")
        file_name = staged.file_name
        self.storage.remove_urls([staged.file_url])
        await db.delete(staged)
        await db.flush()
        return [msg.flex("ลบไฟล์สำเร็จ", msg.delete_success_bubble(file_name))]

    async def postback_select_all(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        return await self.command_select_all(db, actor)

    async def postback_clear_selection(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        return await self.command_clear_selection(db, actor)

    async def postback_delete_all(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        return await self.command_delete_all(db, actor)

    async def postback_view_linked_files(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        page = self._page(data)
        if page is None:
            return [msg.text("หน้าไม่ถูกต้อง")]
        files = await staged_files.employee_linked_files(db, actor.employee_id)
        if not files:
            return [msg.flex("ไม่มีไฟล์", msg.no_linked_files_bubble())]
        bounds = _page_bounds(len(files), page)
        if bounds is None:
            return [msg.text("หน้าไม่ถูกต้อง")]
        start, end, total_pages = bounds
        counts = staged_files.status_counts(files)
        status_text = (
            f"📊 สถานะไฟล์ทั้งหมด {len(files)} ไฟล์\n"
            f"⏳ รออนุมัติ: {counts['linked']}\n"
            f"✅ อนุมัติแล้ว: {counts['approved']}\n"
            f"❌ ถูกปฏิเสธ: {counts['rejected']}"
        )
        carousel = msg.linked_files_carousel(files[start:end], counts, page, total_pages)
        return [msg.flex("สถานะไฟล์", carousel), msg.text(status_text)]

    postback_view_linked_files_page = postback_view_linked_files

    async def postback_unlink_file(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        staged, error = await self._own_file(db, actor, data, "คุณไม่มีสิทธิ์ยกเลิกไฟล์นี้")
        if error:
            return error
        if staged.status != "linked":
            reasons = {
                "approved": "ไฟล์นี้ได้รับการอนุมัติแล้ว ไม่สามารถยกเลิกได้",
                "rejected": "ไฟล์นี้ถูกปฏิเสธแล้ว ไม่สามารถยกเลิกได้",
            }
            return _error("ไม่สามารถยกเลิกได้", reasons.get(staged.status, "ไฟล์นี้ไม่ได้อยู่ในสถานะรออนุมัติ"))
        staged.status = "pending"
        staged.ticket_id = None
        staged.file_metadata = {}
        await db.flush()
        return [msg.flex("ยกเลิกการส่งสำเร็จ", msg.success_bubble(
            "ยกเลิกการส่งสำเร็จ", f"{staged.file_name}\nกลับไปอยู่ในรายการรอดำเนินการแล้ว"
        ))]

    async def postback_submit_work(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        """設定 active ticket，之後上傳的檔案直接連結到此工單"""
        ticket_id = data.get("ticketId")
        if not ticket_id:
            return _error("ข้อมูลไม่ครบ", "ไม่พบข้อมูลตั๋วงาน")
        ticket = await db.get(Ticket, ticket_id)
        if ticket is None:
            return _error("ไม่พบตั๋วงาน", "ตั๋วงานนี้อาจถูกลบไปแล้ว")
        account = await db.get(EmployeeLineAccount, actor.line_account_id)
        account.active_ticket_id = ticket.id
        await db.flush()
        existing = await staged_files.count_ticket_files(db, ticket.id, actor.employee_id)
        existing_text = f"\n(มี {existing} ไฟล์ที่ส่งไปแล้ว)" if existing > 0 else ""
        return [msg.text(
            f"📤 ส่งงาน {ticket.ticket_code}{existing_text}\n\n"
            "ส่งรูปมาได้เลย รูปจะถูกเชื่อมกับตั๋วนี้โดยอัตโนมัติ\n\nพิมพ์ \"เสร็จ\" เมื่อส่งครบ"
        )]

    async def postback_view_ticket_files(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        ticket_id = data.get("ticketId")
        if not ticket_id:
            return _error("ข้อมูลไม่ครบ", "ไม่พบข้อมูลตั๋วงาน")
        ticket_code = data.get("ticketCode") or "-"
        files = await staged_files.ticket_files(db, ticket_id, actor.employee_id)
        if not files:
            return [msg.text(f"ไม่พบไฟล์ที่ส่งไปยัง {ticket_code}")]
        counts = staged_files.status_counts(files)
        lines = [
            f"📋 {ticket_code} - {len(files)} ไฟล์",
            f"⏳ รออนุมัติ: {counts['linked']}" if counts["linked"] else "",
            f"✅ อนุมัติ: {counts['approved']}" if counts["approved"] else "",
            f"❌ ปฏิเสธ: {counts['rejected']}" if counts["rejected"] else "",
        ]
        return [
            msg.flex(f"ไฟล์ {ticket_code}", msg.ticket_files_carousel(files)),
            msg.text("\n".join(line for line in lines if line)),
        ]

    async def _decide(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any], approve: bool):
        verb = "อนุมัติ" if approve else "ปฏิเสธ"
        if not actor.is_approver:
            return _error("ไม่มีสิทธิ์", f"คุณไม่มีสิทธิ์{verb}ไฟล์")
        file_id = data.get("fileId")
        staged = await staged_files.get_staged_file(db, file_id) if file_id else None
        if staged is None:
            return _error("ไม่พบไฟล์", "ไฟล์นี้อาจถูกลบไปแล้ว")
        if staged.status != "linked":
            reasons = {"approved": "ไฟล์นี้ได้รับการอนุมัติแล้ว", "rejected": "ไฟล์นี้ถูกปฏิเสธแล้ว"}
            return _error(f"ไม่สามารถ{verb}ได้", reasons.get(staged.status, "ไฟล์นี้ไม่ได้อยู่ในสถานะรออนุมัติ"))
        await staged_files.decide_file(db, staged, approve, actor.employee_id)
        title = "✅ อนุมัติสำเร็จ" if approve else "❌ ปฏิเสธสำเร็จ"
        ticket_code = staged.ticket.ticket_code if staged.ticket is not None else "-"
        employee_name = staged.employee.name if staged.employee is not None else "-"
        return [msg.flex(title, msg.success_bubble(
            title, f"ไฟล์: {staged.file_name}\nตั๋ว: {ticket_code}\nผู้ส่ง: {employee_name}"
        ))]

    async def postback_approve_file(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        return await self._decide(db, actor, data, approve=True)

    async def postback_reject_file(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        return await self._decide(db, actor, data, approve=False)

    async def postback_approver_files_page(self, db: AsyncSession, actor: LineActor, data: Dict[str, Any]):
        page = self._page(data)
        if page is None:
            return [msg.text("หน้าไม่ถูกต้อง")]
        return await self.command_status(db, actor, page)

    # ---------- follow / unfollow ----------
    async def handle_follow(self, db: AsyncSession, user_id: str, event: Dict[str, Any]):
        """已連結的帳號更新顯示名稱與頭像；未連結只記 log 等管理員手動連結"""
        try:
            profile = await self.line.get_profile(user_id)
            result = await db.execute(
                select(EmployeeLineAccount)
                .options(selectinload(EmployeeLineAccount.employee))
                .where(EmployeeLineAccount.line_user_id == user_id)
            )
            account = result.scalar_one_or_none()
            if account is None:
                logger.info("New LINE user not linked: %s (%s)", user_id, profile.get("displayName"))
                return [msg.flex("ยินดีต้อนรับ", msg.welcome_bubble())]
            account.display_name = profile.get("displayName")
            account.profile_picture_url = profile.get("pictureUrl")
            await db.flush()
        except (LineApiError, httpx.HTTPError, DBAPIError):
            logger.exception("LINE follow handling failed for %s", user_id)
            await db.rollback()
            return [msg.text(FOLLOW_FALLBACK)]
        name = account.employee.name if account.employee is not None else profile.get("displayName")
        return [msg.text(f"ยินดีต้อนรับกลับ {name}! 👋\n\nคุณสามารถส่งรูปภาพหรือไฟล์เพื่อแนบกับตั๋วงานได้เลย")]

    async def handle_unfollow(self, db: AsyncSession, user_id: str, event: Dict[str, Any]):
        # 保留對應關係，重新加好友時仍可辨識
        logger.info("LINE user unfollowed: %s", user_id)
        return None
