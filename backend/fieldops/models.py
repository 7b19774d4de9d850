"""資料庫模型 - 現場服務管理（部門 / 職務 / 員工 / 案場 / 工單 / 請假 / 投票 / LINE 暫存檔）。
主鍵一律為 UUID 字串（36 碼），由應用端產生。"""
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional, List
from sqlalchemy import (
    String, Date, Time, Text, Numeric, ForeignKey, DateTime, Boolean, Integer, UniqueConstraint, JSON,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from fieldops.database import Base

STAGED_FILE_STATUSES = ("pending", "linked", "approved", "rejected", "expired")
LEAVE_STATUSES = ("pending", "approved", "rejected", "cancelled")


def new_uuid() -> str:
    return str(uuid.uuid4())


# ---------- 組織 ----------
class Department(Base):
    """部門"""
    __tablename__ = "departments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True, comment="部門代碼，例：technical")
    name_th: Mapped[str] = mapped_column(String(200), comment="泰文名稱")
    name_en: Mapped[Optional[str]] = mapped_column(String(200), comment="英文名稱")
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    head_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL", use_alter=True), comment="部門主管 employee_id"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    roles: Mapped[List["Role"]] = relationship("Role", back_populates="department", passive_deletes=True)


class Role(Base):
    """職務；level 為權限等級（0 技師 L1、1 派工/PM/業務/技師、2 管理員、3 超級管理員）"""
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    name_th: Mapped[str] = mapped_column(String(200))
    name_en: Mapped[Optional[str]] = mapped_column(String(200))
    level: Mapped[Optional[int]] = mapped_column(Integer, default=0, comment="權限等級，未設視為 0")
    department_id: Mapped[Optional[str]] = mapped_column(ForeignKey("departments.id"), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    department: Mapped[Optional["Department"]] = relationship("Department", back_populates="roles")
    employees: Mapped[List["Employee"]] = relationship("Employee", back_populates="role", passive_deletes=True)


class Employee(Base):
    """員工；auth_user_id 對應 Bearer token 的 sub"""
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    code: Mapped[Optional[str]] = mapped_column(String(50), unique=True, index=True, comment="員工編號")
    name: Mapped[str] = mapped_column(String(200))
    nickname: Mapped[Optional[str]] = mapped_column(String(100))
    email: Mapped[Optional[str]] = mapped_column(String(200))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    role_id: Mapped[Optional[str]] = mapped_column(ForeignKey("roles.id"), index=True)
    auth_user_id: Mapped[Optional[str]] = mapped_column(String(36), unique=True, index=True, comment="登入帳號 id（JWT sub）")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    profile_image_url: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    role: Mapped[Optional["Role"]] = relationship("Role", back_populates="employees")


# ---------- 客戶 / 案場 / 設備 ----------
class Company(Base):
    """客戶公司"""
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    tax_id: Mapped[Optional[str]] = mapped_column(String(20), unique=True, index=True, comment="統一編號")
    name_th: Mapped[str] = mapped_column(String(300))
    name_en: Mapped[Optional[str]] = mapped_column(String(300))
    address_detail: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Site(Base):
    """案場；(name, company_id, subdistrict_code) 唯一，供 find-or-create 原子化"""
    __tablename__ = "sites"
    __table_args__ = (UniqueConstraint("name", "company_id", "subdistrict_code", name="uq_sites_natural_key"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(300), index=True)
    subdistrict_code: Mapped[Optional[int]] = mapped_column(Integer)
    district_code: Mapped[Optional[int]] = mapped_column(Integer)
    province_code: Mapped[Optional[int]] = mapped_column(Integer)
    postal_code: Mapped[Optional[int]] = mapped_column(Integer)
    address_detail: Mapped[Optional[str]] = mapped_column(Text)
    map_url: Mapped[Optional[str]] = mapped_column(String(1000))
    company_id: Mapped[Optional[str]] = mapped_column(ForeignKey("companies.id"), index=True)
    contact_ids: Mapped[Optional[list]] = mapped_column(JSON, comment="聯絡人 id 陣列")
    is_main_branch: Mapped[bool] = mapped_column(Boolean, default=False)
    safety_standard: Mapped[Optional[list]] = mapped_column(JSON, comment="安全規範清單")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    company: Mapped[Optional["Company"]] = relationship("Company")


class ProductModel(Base):
    """設備型號"""
    __tablename__ = "product_models"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    model: Mapped[str] = mapped_column(String(200))
    name: Mapped[Optional[str]] = mapped_column(String(300))


class Merchandise(Base):
    """案場設備（序號）"""
    __tablename__ = "merchandise"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    serial_no: Mapped[str] = mapped_column(String(200), index=True)
    model_id: Mapped[Optional[str]] = mapped_column(ForeignKey("product_models.id"))
    site_id: Mapped[Optional[str]] = mapped_column(ForeignKey("sites.id"), index=True)

    model: Mapped[Optional["ProductModel"]] = relationship("ProductModel")
    site: Mapped[Optional["Site"]] = relationship("Site")


# ---------- 參考資料 ----------
class WorkType(Base):
    __tablename__ = "work_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    code: Mapped[str] = mapped_column(String(50), unique=True)
    name: Mapped[str] = mapped_column(String(200))


class TicketStatus(Base):
    __tablename__ = "ticket_statuses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    code: Mapped[str] = mapped_column(String(50), unique=True)
    name: Mapped[str] = mapped_column(String(200))


class Province(Base):
    __tablename__ = "provinces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    code: Mapped[int] = mapped_column(Integer, unique=True)
    name: Mapped[str] = mapped_column(String(200), comment="泰文名稱")
    name_en: Mapped[Optional[str]] = mapped_column(String(200))


class WorkGiver(Base):
    """派工來源"""
    __tablename__ = "work_givers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    code: Mapped[str] = mapped_column(String(50), unique=True)
    name: Mapped[str] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class LeaveType(Base):
    __tablename__ = "leave_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    code: Mapped[str] = mapped_column(String(50), unique=True)
    name: Mapped[str] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


# ---------- 工單 ----------
class Ticket(Base):
    """工單；ticket_code 例：PDE-904"""
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    ticket_code: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    details: Mapped[Optional[str]] = mapped_column(Text)
    site_id: Mapped[Optional[str]] = mapped_column(ForeignKey("sites.id"), index=True)
    work_type_id: Mapped[Optional[str]] = mapped_column(ForeignKey("work_types.id"))
    status_id: Mapped[Optional[str]] = mapped_column(ForeignKey("ticket_statuses.id"))
    appointment_date: Mapped[Optional[date]] = mapped_column(Date, index=True, comment="預約日期")
    appointment_time_start: Mapped[Optional[time]] = mapped_column(Time)
    appointment_time_end: Mapped[Optional[time]] = mapped_column(Time)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    site: Mapped[Optional["Site"]] = relationship("Site")
    work_type: Mapped[Optional["WorkType"]] = relationship("WorkType")
    status: Mapped[Optional["TicketStatus"]] = relationship("TicketStatus")
    confirmed_technicians: Mapped[List["TicketConfirmedTechnician"]] = relationship(
        "TicketConfirmedTechnician", back_populates="ticket", cascade="all, delete-orphan", passive_deletes=True
    )


class TicketConfirmedTechnician(Base):
    """工單當日確認出勤技師"""
    __tablename__ = "ticket_confirmed_technicians"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    ticket_id: Mapped[str] = mapped_column(ForeignKey("tickets.id", ondelete="CASCADE"), index=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id"), index=True)
    date: Mapped[date] = mapped_column(Date, index=True)

    ticket: Mapped["Ticket"] = relationship("Ticket", back_populates="confirmed_technicians")
    employee: Mapped["Employee"] = relationship("Employee")


# ---------- 請假 ----------
class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id"), index=True)
    leave_type_id: Mapped[str] = mapped_column(ForeignKey("leave_types.id"), index=True)
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    total_days: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 1))
    half_day_type: Mapped[Optional[str]] = mapped_column(String(20), comment="morning / afternoon；全天為空")
    reason: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="pending", comment="pending/approved/rejected/cancelled")
    approved_by: Mapped[Optional[str]] = mapped_column(ForeignKey("employees.id"))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    reject_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    employee: Mapped["Employee"] = relationship("Employee", foreign_keys=[employee_id])
    leave_type: Mapped["LeaveType"] = relationship("LeaveType")
    approved_by_employee: Mapped[Optional["Employee"]] = relationship("Employee", foreign_keys=[approved_by])


# ---------- 投票 ----------
class Poll(Base):
    __tablename__ = "polls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    question: Mapped[str] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    options: Mapped[list] = mapped_column(JSON, default=list, comment="選項文字陣列")
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[Optional[str]] = mapped_column(ForeignKey("employees.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    creator: Mapped[Optional["Employee"]] = relationship("Employee")
    votes: Mapped[List["PollVote"]] = relationship(
        "PollVote", back_populates="poll", cascade="all, delete-orphan", passive_deletes=True
    )


class PollVote(Base):
    """每人每題一票"""
    __tablename__ = "poll_votes"
    __table_args__ = (UniqueConstraint("poll_id", "employee_id", name="uq_poll_votes_poll_employee"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    poll_id: Mapped[str] = mapped_column(ForeignKey("polls.id", ondelete="CASCADE"), index=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id"), index=True)
    option_index: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    poll: Mapped["Poll"] = relationship("Poll", back_populates="votes")


# ---------- LINE ----------
class EmployeeLineAccount(Base):
    """員工 ↔ LINE 帳號對應；active_ticket_id 為「送件中」工單（技師 sticky context）"""
    __tablename__ = "employee_line_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), index=True)
    line_user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(200))
    profile_picture_url: Mapped[Optional[str]] = mapped_column(String(1000))
    active_ticket_id: Mapped[Optional[str]] = mapped_column(ForeignKey("tickets.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    employee: Mapped["Employee"] = relationship("Employee")


class StagedFile(Base):
    """LINE 上傳暫存檔：pending → linked → approved / rejected；逾期 pending → expired"""
    __tablename__ = "staged_files"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), index=True)
    file_url: Mapped[str] = mapped_column(String(1000))
    file_name: Mapped[str] = mapped_column(String(500))
    file_size: Mapped[Optional[int]] = mapped_column(Integer, comment="bytes")
    mime_type: Mapped[Optional[str]] = mapped_column(String(200))
    ticket_id: Mapped[Optional[str]] = mapped_column(ForeignKey("tickets.id", ondelete="SET NULL"), index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    approved_by: Mapped[Optional[str]] = mapped_column(ForeignKey("employees.id"))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)
    source: Mapped[str] = mapped_column(String(20), default="line")
    # metadata 為 DeclarativeBase 保留字，屬性名改為 file_metadata
    file_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    employee: Mapped["Employee"] = relationship("Employee", foreign_keys=[employee_id])
    ticket: Mapped[Optional["Ticket"]] = relationship("Ticket")
