"""LINE 訊息組裝：text / flex / quick reply，以及聊天機器人使用的各種 Flex bubble 與 carousel。
只產生 dict，不做任何 I/O。"""
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

FILES_PER_PAGE = 10

LINKED_STATUS = {
    "linked": ("รออนุมัติ", "⏳", "#2196F3"),
    "approved": ("อนุมัติแล้ว", "✅", "#4CAF50"),
    "rejected": ("ปฏิเสธ", "❌", "#F44336"),
}


# ---------- 基本訊息 ----------
def postback_data(action: str, **fields) -> str:
    """postback data 為 JSON 字串，None 欄位不送"""
    payload = {"action": action}
    payload.update({k: v for k, v in fields.items() if v is not None})
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def text(message: str) -> Dict[str, Any]:
    return {"type": "text", "text": message}


def flex(alt_text: str, contents: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "flex", "altText": alt_text, "contents": contents}


def text_with_quick_reply(message: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": "text", "text": message, "quickReply": {"items": items}}


def quick_reply_items(pending_count: int, latest_file_id: Optional[str] = None) -> List[Dict[str, Any]]:
    items = [
        {"type": "action", "action": {
            "type": "message", "label": "💬 พิมพ์รหัสตั๋ว", "text": "พิมพ์รหัสตั๋ว เช่น PDE-904",
        }},
        {"type": "action", "action": {
            "type": "postback", "label": f"📋 ดูรายการ ({pending_count})",
            "data": postback_data("view_files"), "displayText": "รายการไฟล์",
        }},
    ]
    if latest_file_id:
        items.append({"type": "action", "action": {
            "type": "postback", "label": "🗑️ ลบไฟล์ล่าสุด",
            "data": postback_data("delete_file", fileId=latest_file_id), "displayText": "ลบไฟล์ล่าสุด",
        }})
    return items


# ---------- Flex 元件 ----------
def _text(value: str, **kw) -> Dict[str, Any]:
    comp = {"type": "text", "text": value if value else "-", "wrap": True}
    comp.update(kw)
    return comp


def _box(layout: str, contents: List[Dict[str, Any]], **kw) -> Dict[str, Any]:
    comp = {"type": "box", "layout": layout, "contents": contents}
    comp.update(kw)
    return comp


def _button(label: str, data: str, style: str = "primary", color: Optional[str] = None,
            display_text: Optional[str] = None) -> Dict[str, Any]:
    action = {"type": "postback", "label": label, "data": data}
    if display_text:
        action["displayText"] = display_text
    comp = {"type": "button", "style": style, "height": "sm", "action": action}
    if color:
        comp["color"] = color
    return comp


def _bubble(body: Dict[str, Any], header: Optional[Dict[str, Any]] = None, footer: Optional[Dict[str, Any]] = None,
            header_color: Optional[str] = None, body_color: Optional[str] = None, size: str = "mega") -> Dict[str, Any]:
    bubble: Dict[str, Any] = {"type": "bubble", "size": size, "body": body}
    styles = {}
    if header is not None:
        bubble["header"] = header
        if header_color:
            styles["header"] = {"backgroundColor": header_color}
    if body_color:
        styles["body"] = {"backgroundColor": body_color}
    if footer is not None:
        bubble["footer"] = footer
    if styles:
        bubble["styles"] = styles
    return bubble


def _header(title: str, subtitle: Optional[str] = None) -> Dict[str, Any]:
    contents = [_text(title, weight="bold", size="lg", color="#FFFFFF")]
    if subtitle:
        contents.append(_text(subtitle, size="xs", color="#FFFFFF", margin="sm"))
    return _box("vertical", contents)


def _notice(title: str, message: str, icon: str, icon_color: str, title_color: str, message_color: str,
            body_color: str) -> Dict[str, Any]:
    body = _box("vertical", [
        _box("horizontal", [
            _text(icon, size="lg", color=icon_color, flex=0, weight="bold"),
            _text(title, weight="bold", size="md", color=title_color, margin="md"),
        ]),
        _text(message, size="sm", color=message_color, margin="md"),
    ], paddingAll="16px")
    return _bubble(body, body_color=body_color, size="kilo")


def format_file_size(size: Optional[int]) -> str:
    if not size:
        return "-"
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def format_relative_time(value: Optional[datetime], now: Optional[datetime] = None) -> str:
    if value is None:
        return "-"
    now = now or datetime.utcnow()
    minutes = int((now - value).total_seconds() // 60)
    if minutes < 1:
        return "เมื่อสักครู่"
    if minutes < 60:
        return f"{minutes} นาทีที่แล้ว"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} ชั่วโมงที่แล้ว"
    return f"{hours // 24} วันที่แล้ว"


def _is_image(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith("image/")


# ---------- 通知類 bubble ----------
def error_bubble(title: str, message: str) -> Dict[str, Any]:
    return _notice(title, message, "✕", "#E53935", "#C62828", "#5D4037", "#FFF5F5")


def success_bubble(title: str, message: str) -> Dict[str, Any]:
    return _notice(title, message, "✓", "#43A047", "#2E7D32", "#33691E", "#F1F8E9")


def upload_bubble(file_name: str, file_url: Optional[str] = None, mime_type: Optional[str] = None) -> Dict[str, Any]:
    body_contents = []
    if file_url and _is_image(mime_type):
        body_contents.append({"type": "image", "url": file_url, "size": "full", "aspectMode": "cover"})
    body_contents.append(_text(file_name, size="sm", color="#333333", margin="md"))
    return _bubble(
        _box("vertical", body_contents),
        header=_header("อัพโหลดสำเร็จ", "ไฟล์พร้อมเชื่อมต่อกับตั๋วงาน"),
        header_color="#27AE60",
    )


def linked_success_bubble(ticket_code: str, file_name: str) -> Dict[str, Any]:
    return _bubble(
        _box("vertical", [
            _text("ตั๋วงาน", size="xs", color="#888888"),
            _text(ticket_code, weight="bold", size="xl", color="#2E86AB"),
            _text(file_name, size="sm", color="#666666", margin="md"),
        ]),
        header=_header("เชื่อมต่อสำเร็จ", "ไฟล์ถูกเชื่อมต่อกับตั๋วแล้ว"),
        header_color="#2E86AB",
    )


def bulk_linked_success_bubble(ticket_code: str, file_count: int) -> Dict[str, Any]:
    return _bubble(
        _box("vertical", [
            _text("ตั๋วงาน", size="xs", color="#888888"),
            _text(ticket_code, weight="bold", size="xl", color="#2E86AB"),
            _text("รอผู้อนุมัติตรวจสอบ", size="sm", color="#666666", margin="md"),
        ]),
        header=_header("เชื่อมต่อสำเร็จ", f"{file_count} ไฟล์ถูกเชื่อมต่อกับตั๋วแล้ว"),
        header_color="#2E86AB",
    )


def no_files_bubble() -> Dict[str, Any]:
    return _bubble(_box("vertical", [
        _text("📂", size="3xl", align="center"),
        _text("ไม่มีไฟล์รอดำเนินการ", weight="bold", color="#666666", align="center", margin="md"),
        _text("ส่งรูปภาพหรือไฟล์เพื่อเริ่มต้น", size="sm", color="#888888", align="center", margin="sm"),
    ]), body_color="#F5F5F5", size="kilo")


def delete_success_bubble(file_name: str) -> Dict[str, Any]:
    return _bubble(_box("vertical", [
        _text("🗑️ ลบไฟล์สำเร็จ", weight="bold", color="#666666"),
        _text(file_name, size="sm", color="#888888", margin="sm"),
    ]), size="kilo")


def bulk_delete_success_bubble(count: int) -> Dict[str, Any]:
    return _bubble(_box("vertical", [
        _text("🗑️ ลบไฟล์สำเร็จ", weight="bold", color="#666666"),
        _text(f"ลบ {count} ไฟล์เรียบร้อยแล้ว", size="sm", color="#888888", margin="sm"),
    ]), size="kilo")


def selection_updated_bubble(selected_count: int, total_count: int) -> Dict[str, Any]:
    return _bubble(_box("vertical", [
        _text("☑ อัพเดตการเลือก", weight="bold", color="#1DB446"),
        _text(f"เลือก {selected_count}/{total_count} ไฟล์", size="sm", color="#666666", margin="sm"),
        _text("พิมพ์รหัสตั๋วเพื่อเชื่อมต่อไฟล์ที่เลือก", size="xs", color="#888888", margin="sm"),
    ]), size="kilo")


def welcome_bubble() -> Dict[str, Any]:
    return _bubble(_box("vertical", [
        _text("วิธีใช้งาน:", weight="bold", size="sm"),
        _text("1. ส่งรูปภาพหรือไฟล์ที่ต้องการแนบ", size="sm", margin="sm"),
        _text("2. เลือกตั๋วงานที่ต้องการแนบไฟล์", size="sm", margin="sm"),
        _text("3. รอผู้อนุมัติตรวจสอบและอนุมัติ", size="sm", margin="sm"),
        _text("⚠️ หากยังไม่ได้เชื่อมต่อบัญชี กรุณาติดต่อผู้ดูแลระบบ", size="xs", color="#E65100", margin="lg"),
    ]), header=_header("👋 ยินดีต้อนรับ", "ระบบส่งไฟล์งาน PDE Service"), header_color="#06C755")


def no_linked_files_bubble() -> Dict[str, Any]:
    return _bubble(_box("vertical", [
        _text("📭", size="3xl", align="center"),
        _text("ยังไม่มีไฟล์ที่ส่งไป", weight="bold", color="#666666", align="center", margin="md"),
        _text("ส่งรูปภาพแล้วพิมพ์รหัสตั๋วเพื่อเชื่อมต่อ", size="sm", color="#888888", align="center", margin="sm"),
    ]), body_color="#F5F5F5", size="kilo")


# ---------- 選單 ----------
_TECHNICIAN_COMMANDS = [
    ("👷", "วันนี้", "ดูงานที่ได้รับมอบหมาย"),
    ("📤", "ส่งงาน", "กดปุ่มในรายการตั๋ว"),
    ("✅", "เสร็จ", "เสร็จสิ้นการส่งงาน"),
    ("⏳", "สถานะ", "ดูไฟล์ที่ส่งไปแล้ว"),
]
_GENERAL_COMMANDS = [
    ("📅", "วันนี้", "ดูตั๋ววันนี้ทั้งหมด"),
    ("📋", "รายการ", "ดูไฟล์รอส่ง"),
    ("⏳", "สถานะ", "ดูไฟล์ที่ส่งไปแล้ว"),
    ("🔗", "เชื่อมตั๋ว", "เชื่อมไฟล์กับตั๋ว"),
    ("🗑️", "ลบทั้งหมด", "ลบไฟล์รอส่งทั้งหมด"),
    ("🎫", "PDE-XXX", "พิมพ์รหัสตั๋วเพื่อส่งไฟล์"),
]
_TECHNICIAN_STEPS = ['1. พิมพ์ "วันนี้" ดูงาน', '2. กด "ส่งงาน" ที่ตั๋ว', "3. ส่งรูป (อัตโนมัติ)", '4. พิมพ์ "เสร็จ"']
_GENERAL_STEPS = ["1. ส่งรูปมาก่อน", "2. พิมพ์รหัสตั๋ว เช่น PDE-904", "3. รอการอนุมัติ"]


def menu_bubble(is_technician: bool) -> Dict[str, Any]:
    commands = _TECHNICIAN_COMMANDS if is_technician else _GENERAL_COMMANDS
    steps = _TECHNICIAN_STEPS if is_technician else _GENERAL_STEPS
    rows = [
        _box("horizontal", [
            _text(icon, size="sm", flex=0),
            _text(command, size="sm", weight="bold", flex=3, margin="sm"),
            _text(description, size="xs", color="#888888", flex=5),
        ], margin="sm")
        for icon, command, description in commands
    ]
    body = _box("vertical", [
        _text("📝 ขั้นตอนการใช้งาน", weight="bold", size="sm"),
        *[_text(step, size="xs", color="#555555", margin="xs") for step in steps],
        {"type": "separator", "margin": "lg"},
        _text("⌨️ คำสั่งที่ใช้ได้", weight="bold", size="sm", margin="lg"),
        *rows,
    ])
    return _bubble(
        body,
        header=_header("📋 เมนูคำสั่ง", "ช่างเทคนิค" if is_technician else "พนักงานทั่วไป"),
        header_color="#43A047" if is_technician else "#5C6BC0",
    )


# ---------- carousel ----------
def _nav_bubble(action: str, page: int, total_pages: int) -> Optional[Dict[str, Any]]:
    """上一頁 / 下一頁；只有一頁時不產生"""
    if total_pages <= 1:
        return None
    buttons = []
    if page > 1:
        buttons.append(_button("◀ ก่อนหน้า", postback_data(action, page=page - 1), style="secondary"))
    if page < total_pages:
        buttons.append(_button("ถัดไป ▶", postback_data(action, page=page + 1), style="secondary"))
    return _bubble(
        _box("vertical", [_text(f"หน้า {page}/{total_pages}", align="center", color="#666666"), *buttons], spacing="sm"),
        size="micro",
    )


def _carousel(bubbles: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": "carousel", "contents": [b for b in bubbles if b is not None]}


def file_bubble(file, file_url: Optional[str] = None) -> Dict[str, Any]:
    """待連結檔案；file 需有 id / file_name / file_size / mime_type / created_at / file_metadata"""
    selected = bool((file.file_metadata or {}).get("selected"))
    body_contents = []
    if _is_image(file.mime_type):
        body_contents.append({"type": "image", "url": file_url or file.file_url, "size": "full", "aspectMode": "cover"})
    body_contents += [
        _text(file.file_name, size="sm", weight="bold", margin="md"),
        _text(f"{format_file_size(file.file_size)} · {format_relative_time(file.created_at)}",
              size="xs", color="#888888", margin="sm"),
    ]
    if selected:
        body_contents.append(_text("☑ เลือกแล้ว", size="xs", color="#1DB446", margin="sm"))
    footer = _box("horizontal", [
        _button("✕ ยกเลิก" if selected else "✓ เลือก", postback_data("toggle_select", fileId=file.id),
                style="secondary" if selected else "primary", color=None if selected else "#1DB446"),
        _button("🗑️ ลบ", postback_data("delete_file", fileId=file.id), style="secondary"),
    ], spacing="sm")
    return _bubble(_box("vertical", body_contents), footer=footer, size="kilo")


def file_carousel(files: list, total_count: int, selected_count: int, page: int = 1, total_pages: int = 1) -> Dict[str, Any]:
    """第一張為摘要（全選 / 取消全選 / 全部刪除），其後每檔一張，最後為分頁"""
    all_selected = total_count > 0 and selected_count == total_count
    summary = _bubble(
        _box("vertical", [
            _text(f"เลือกแล้ว {selected_count}/{total_count} ไฟล์", size="sm", color="#333333"),
            _text("พิมพ์รหัสตั๋วเพื่อเชื่อมต่อ", size="xs", color="#888888", margin="sm"),
        ]),
        header=_header("📋 ไฟล์รอดำเนินการ", f"ทั้งหมด {total_count} ไฟล์"),
        header_color="#5C6BC0",
        footer=_box("vertical", [
            _button("✕ ยกเลิกทั้งหมด" if all_selected else "✓ เลือกทั้งหมด",
                    postback_data("clear_selection" if all_selected else "select_all"), style="secondary"),
            _button("🗑️ ลบทั้งหมด", postback_data("delete_all"), style="secondary", color="#E53935"),
        ], spacing="sm"),
        size="kilo",
    )
    return _carousel([summary] + [file_bubble(f) for f in files] + [_nav_bubble("view_files_page", page, total_pages)])


def linked_file_bubble(file) -> Dict[str, Any]:
    label, icon, color = LINKED_STATUS.get(file.status, (file.status, "", "#888888"))
    ticket_code = file.ticket.ticket_code if file.ticket is not None else "-"
    contents = [
        _text(file.file_name, size="sm", weight="bold"),
        _text(f"ตั๋ว: {ticket_code}", size="xs", color="#555555", margin="sm"),
        _text(f"{icon} {label}", size="xs", color=color, weight="bold", margin="sm"),
    ]
    if file.status == "rejected" and file.rejection_reason:
        contents.append(_text(f"เหตุผล: {file.rejection_reason}", size="xs", color="#F44336", margin="sm"))
    footer = None
    if file.status == "linked":
        footer = _box("vertical", [
            _button("↩️ ยกเลิกส่ง", postback_data("unlink_file", fileId=file.id), style="secondary"),
        ])
    return _bubble(_box("vertical", contents), footer=footer, size="kilo")


def linked_files_carousel(files: list, counts: Dict[str, int], page: int = 1, total_pages: int = 1) -> Dict[str, Any]:
    total = sum(counts.values())
    summary = _bubble(
        _box("vertical", [
            _text(f"⏳ รออนุมัติ: {counts.get('linked', 0)}", size="sm"),
            _text(f"✅ อนุมัติแล้ว: {counts.get('approved', 0)}", size="sm", margin="sm"),
            _text(f"❌ ถูกปฏิเสธ: {counts.get('rejected', 0)}", size="sm", margin="sm"),
        ]),
        header=_header("📊 สถานะไฟล์", f"ทั้งหมด {total} ไฟล์"),
        header_color="#5C6BC0",
        size="kilo",
    )
    return _carousel([summary] + [linked_file_bubble(f) for f in files]
                     + [_nav_bubble("view_linked_files_page", page, total_pages)])


def approver_file_bubble(file) -> Dict[str, Any]:
    ticket_code = file.ticket.ticket_code if file.ticket is not None else "-"
    employee_name = file.employee.name if file.employee is not None else "-"
    contents = []
    if _is_image(file.mime_type):
        contents.append({"type": "image", "url": file.file_url, "size": "full", "aspectMode": "cover"})
    contents += [
        _text(file.file_name, size="sm", weight="bold", margin="md"),
        _text(f"ตั๋ว: {ticket_code}", size="xs", color="#555555", margin="sm"),
        _text(f"ผู้ส่ง: {employee_name}", size="xs", color="#555555", margin="sm"),
        _text(format_relative_time(file.created_at), size="xs", color="#888888", margin="sm"),
    ]
    footer = _box("horizontal", [
        _button("✅ อนุมัติ", postback_data("approve_file", fileId=file.id), color="#4CAF50"),
        _button("❌ ปฏิเสธ", postback_data("reject_file", fileId=file.id), color="#F44336"),
    ], spacing="sm")
    return _bubble(_box("vertical", contents), footer=footer, size="kilo")


def approver_files_carousel(files: list, page: int = 1, total_pages: int = 1) -> Dict[str, Any]:
    return _carousel([approver_file_bubble(f) for f in files] + [_nav_bubble("approver_files_page", page, total_pages)])


def ticket_files_carousel(files: list) -> Dict[str, Any]:
    """單一工單已送出的檔案，最多 10 張"""
    return _carousel([linked_file_bubble(f) for f in files[:FILES_PER_PAGE]])


# ---------- 工單 ----------
def team_tickets_bubble(teams: List[Dict[str, Any]], date_text: str, total_tickets: int) -> Dict[str, Any]:
    """teams: [{"team_number", "technician_display", "tickets": [{"ticket_code", "display_name"}]}]"""
    contents: List[Dict[str, Any]] = []
    for team in teams:
        if contents:
            contents.append({"type": "separator", "margin": "md"})
        contents.append(_box("horizontal", [
            _text(str(team["team_number"]), size="xs", color="#FFFFFF", weight="bold", flex=0,
                  align="center"),
            _text(team["technician_display"], size="sm", weight="bold", margin="sm"),
        ], margin="md", backgroundColor="#E8EAF6", paddingAll="4px"))
        for ticket in team["tickets"]:
            contents.append(_box("horizontal", [
                _text(ticket["ticket_code"], size="xs", color="#5C6BC0", weight="bold", flex=2),
                _text(ticket["display_name"], size="xs", color="#666666", flex=5),
            ], margin="sm"))
    if not contents:
        contents.append(_text("ไม่มีตั๋วสำหรับวันนี้", size="sm", color="#888888"))
    return _bubble(
        _box("vertical", contents),
        header=_header(f"📅 ตั๋ววันนี้ ({total_tickets})", date_text),
        header_color="#5C6BC0",
    )


def my_tickets_bubble(tickets: List[Dict[str, Any]], date_text: str, employee_name: str,
                      show_submit_button: bool = False) -> Dict[str, Any]:
    """tickets: [{"ticket_id", "ticket_code", "site_name", "work_type", "details", "appointment_time", "submitted_count"}]"""
    contents: List[Dict[str, Any]] = []
    for ticket in tickets:
        if contents:
            contents.append({"type": "separator", "margin": "lg"})
        card = [
            _text(ticket["ticket_code"], weight="bold", color="#5C6BC0"),
            _text(ticket["site_name"], size="sm", margin="sm"),
            _text(f"{ticket['work_type']} · {ticket['appointment_time']}", size="xs", color="#888888", margin="sm"),
        ]
        if ticket.get("details"):
            card.append(_text(ticket["details"], size="xs", color="#555555", margin="sm", maxLines=3))
        if show_submit_button:
            buttons = []
            if ticket["submitted_count"] > 0:
                buttons.append(_button(
                    f"📋 ดู ({ticket['submitted_count']})",
                    postback_data("view_ticket_files", ticketId=ticket["ticket_id"], ticketCode=ticket["ticket_code"]),
                    style="secondary",
                ))
            buttons.append(_button(
                "📤 ส่งเพิ่ม" if ticket["submitted_count"] > 0 else "📤 ส่งงาน",
                postback_data("submit_work", ticketId=ticket["ticket_id"], ticketCode=ticket["ticket_code"]),
                color="#43A047",
            ))
            card.append(_box("horizontal", buttons, spacing="sm", margin="md"))
        contents.append(_box("vertical", card, margin="lg"))
    if not contents:
        contents.append(_text("ไม่มีงานที่ได้รับมอบหมายวันนี้", size="sm", color="#888888"))
    return _bubble(
        _box("vertical", contents),
        header=_header(f"👷 งานของ {employee_name} ({len(tickets)})", date_text),
        header_color="#43A047",
    )
