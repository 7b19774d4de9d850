"""API 請求/回應結構 - Pydantic
*Write：寫入 allow-list（欄位即允許寫入的欄位）與型別轉換；欄位一律選填，必填由 crud 檢查
*Read：回應輸出，from_attributes 直接讀 ORM 物件"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, List, Any
from pydantic import BaseModel, ConfigDict, field_validator

from fieldops.models import LEAVE_STATUSES
from fieldops.validation import EMAIL_RE


# ---------- 部門 ----------
class DepartmentWrite(BaseModel):
    code: Optional[str] = None
    name_th: Optional[str] = None
    name_en: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    head_id: Optional[str] = None


class DepartmentRead(BaseModel):
    id: str
    code: str
    name_th: str
    name_en: Optional[str] = None
    description: Optional[str] = None
    is_active: bool
    head_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# ---------- 公司 / 案場 ----------
class CompanyBrief(BaseModel):
    id: str
    tax_id: Optional[str] = None
    name_th: str
    name_en: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class SiteWrite(BaseModel):
    name: Optional[str] = None
    subdistrict_code: Optional[int] = None
    district_code: Optional[int] = None
    province_code: Optional[int] = None
    postal_code: Optional[int] = None
    address_detail: Optional[str] = None
    map_url: Optional[str] = None
    company_id: Optional[str] = None
    contact_ids: Optional[List[str]] = None
    is_main_branch: Optional[bool] = None
    safety_standard: Optional[List[Any]] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if isinstance(v, str) else v


class SiteRead(BaseModel):
    id: str
    name: str
    subdistrict_code: Optional[int] = None
    district_code: Optional[int] = None
    province_code: Optional[int] = None
    postal_code: Optional[int] = None
    address_detail: Optional[str] = None
    map_url: Optional[str] = None
    company_id: Optional[str] = None
    contact_ids: Optional[List[str]] = None
    is_main_branch: bool = False
    safety_standard: Optional[List[Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    company: Optional[CompanyBrief] = None
    model_config = ConfigDict(from_attributes=True)


class TicketBrief(BaseModel):
    id: str
    ticket_code: str
    details: Optional[str] = None
    appointment_date: Optional[date] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class MerchandiseBrief(BaseModel):
    id: str
    serial_no: str
    model_id: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


# ---------- 員工 ----------
class RoleBrief(BaseModel):
    id: str
    code: str
    name_th: str
    level: Optional[int] = 0
    department_id: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class EmployeeWrite(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    nickname: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role_id: Optional[str] = None
    is_active: Optional[bool] = None
    profile_image_url: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return v
        v = v.strip()
        if not EMAIL_RE.match(v):
            raise ValueError("อีเมลไม่ถูกต้อง")
        return v


# 本人可自行修改的欄位（不需 admin）
EMPLOYEE_SELF_EDITABLE = frozenset({"name", "nickname", "email", "profile_image_url"})


class EmployeeBrief(BaseModel):
    id: str
    code: Optional[str] = None
    name: str
    nickname: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class EmployeeRead(BaseModel):
    id: str
    code: Optional[str] = None
    name: str
    nickname: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role_id: Optional[str] = None
    auth_user_id: Optional[str] = None
    is_active: bool
    profile_image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    role: Optional[RoleBrief] = None
    model_config = ConfigDict(from_attributes=True)


# ---------- 請假 ----------
class LeaveTypeBrief(BaseModel):
    id: str
    code: str
    name: str
    model_config = ConfigDict(from_attributes=True)


class LeaveRequestWrite(BaseModel):
    employee_id: Optional[str] = None
    leave_type_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_days: Optional[Decimal] = None
    half_day_type: Optional[str] = None
    reason: Optional[str] = None
    status: Optional[str] = None

    @field_validator("half_day_type")
    @classmethod
    def normalize_half_day(cls, v: Optional[str]) -> Optional[str]:
        """full 或空字串視為全天（不存）"""
        if v is None or v in ("", "full"):
            return None
        if v not in ("morning", "afternoon"):
            raise ValueError("half_day_type 僅可為 morning / afternoon")
        return v

    @field_validator("status")
    @classmethod
    def check_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in LEAVE_STATUSES:
            raise ValueError("status 不正確")
        return v


class LeaveRequestRead(BaseModel):
    id: str
    employee_id: str
    leave_type_id: str
    start_date: date
    end_date: date
    total_days: Optional[Decimal] = None
    half_day_type: Optional[str] = None
    reason: Optional[str] = None
    status: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    reject_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    employee: Optional[EmployeeBrief] = None
    leave_type: Optional[LeaveTypeBrief] = None
    approved_by_employee: Optional[EmployeeBrief] = None
    model_config = ConfigDict(from_attributes=True)


# ---------- 投票 ----------
class PollWrite(BaseModel):
    question: Optional[str] = None
    description: Optional[str] = None
    options: Optional[List[str]] = None
    expires_at: Optional[datetime] = None
    is_anonymous: Optional[bool] = None

    @field_validator("options")
    @classmethod
    def check_options(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        cleaned = [o.strip() for o in v if o and o.strip()]
        if len(cleaned) < 2:
            raise ValueError("至少需要兩個選項")
        return cleaned

    @field_validator("expires_at")
    @classmethod
    def to_naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """欄位為 naive UTC；帶時區的輸入先換算成 UTC"""
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class PollRead(BaseModel):
    id: str
    question: str
    description: Optional[str] = None
    options: List[str] = []
    expires_at: Optional[datetime] = None
    is_anonymous: bool = False
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    creator: Optional[EmployeeBrief] = None
    model_config = ConfigDict(from_attributes=True)


class PollOptionCount(BaseModel):
    index: int
    text: str
    votes: int


class PollDetail(PollRead):
    total_votes: int = 0
    option_counts: List[PollOptionCount] = []
    my_vote: Optional[int] = None


# ---------- 參考資料 ----------
class CodeNameRead(BaseModel):
    id: str
    code: str
    name: str
    model_config = ConfigDict(from_attributes=True)


class ProvinceRead(BaseModel):
    id: str
    code: int
    name: str
    name_en: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)
