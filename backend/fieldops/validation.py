"""輸入驗證：allow-list 過濾、UUID / 必填 / email / 數值範圍、JSON body 解析"""
import json
import re
from typing import Any, Iterable, Optional, Type, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError as PydanticValidationError

from fieldops.errors import ValidationError

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# 原型污染用鍵名，任何層級一律丟棄
FORBIDDEN_KEYS = frozenset({"__proto__", "constructor", "prototype"})

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def allow_list_of(schema: Type[BaseModel]) -> tuple:
    """寫入 allow-list 直接取自 pydantic schema 欄位，與可寫欄位不會脫鉤"""
    return tuple(schema.model_fields)


def sanitize(data: Optional[dict], allow_list: Iterable[str]) -> dict:
    """只保留 allow_list 內且輸入中確實存在的鍵；其他鍵靜默丟棄"""
    if not data:
        return {}
    allowed = set(allow_list)
    return {key: value for key, value in data.items() if key in allowed}


def coerce(schema: Type[SchemaT], data: dict) -> dict:
    """以 schema 轉型（日期、數字…），只回傳有提供的欄位"""
    try:
        model = schema.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or "data"
        raise ValidationError(f"{field} ไม่ถูกต้อง")
    return model.model_dump(exclude_unset=True)


def validate_uuid(value: Any, field: str = "id") -> str:
    if not isinstance(value, str) or not UUID_RE.match(value):
        raise ValidationError(f"{field} ไม่ถูกต้อง")
    return value.lower()


def is_valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_RE.match(value))


def validate_required(value: Any, field: str) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} จำเป็นต้องระบุ")
    return value


def validate_email(value: str) -> str:
    if not isinstance(value, str) or not EMAIL_RE.match(value.strip()):
        raise ValidationError("อีเมลไม่ถูกต้อง")
    return value.strip()


def validate_number_range(value: Any, field: str, min_value: Optional[float] = None, max_value: Optional[float] = None) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} ต้องเป็นตัวเลข")
    if min_value is not None and number < min_value:
        raise ValidationError(f"{field} ต้องมีค่าอย่างน้อย {min_value}")
    if max_value is not None and number > max_value:
        raise ValidationError(f"{field} ต้องมีค่าไม่เกิน {max_value}")
    return number


def validate_string_length(value: str, field: str, min_length: int = 0, max_length: Optional[int] = None) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} ต้องเป็นข้อความ")
    if len(value) < min_length:
        raise ValidationError(f"{field} ต้องมีอย่างน้อย {min_length} ตัวอักษร")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field} ต้องมีไม่เกิน {max_length} ตัวอักษร")
    return value


def strip_forbidden_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: strip_forbidden_keys(v) for k, v in value.items() if k not in FORBIDDEN_KEYS}
    if isinstance(value, list):
        return [strip_forbidden_keys(v) for v in value]
    return value


def parse_json_object(raw: bytes) -> dict:
    try:
        body = json.loads(raw or b"null")
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("ข้อมูลที่ส่งมาไม่ถูกต้อง")
    if not isinstance(body, dict):
        raise ValidationError("ข้อมูลที่ส่งมาไม่ถูกต้อง")
    return strip_forbidden_keys(body)


async def parse_request_body(request: Request) -> dict:
    """FastAPI dependency：讀取 JSON 物件 body"""
    return parse_json_object(await request.body())


async def parse_optional_request_body(request: Request) -> dict:
    """body 可省略的端點（例：駁回理由）；空 body 視為 {}"""
    raw = await request.body()
    if not raw.strip():
        return {}
    return parse_json_object(raw)
