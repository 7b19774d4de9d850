"""錯誤分類與資料庫錯誤轉譯。
所有 API 錯誤最終序列化為 {"error": message, "code": code}，由 main.py 的 exception handler 處理。"""
import logging
from typing import Optional

from sqlalchemy.exc import DBAPIError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
NOT_NULL_VIOLATION = "23502"


class APIError(Exception):
    status_code = 500
    code: Optional[str] = None
    default_message = "เกิดข้อผิดพลาดที่ไม่ทราบสาเหตุ"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None, code: Optional[str] = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        super().__init__(self.message)


class AuthenticationError(APIError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "ไม่ได้รับอนุญาต"


class AuthorizationError(APIError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "ไม่มีสิทธิ์เข้าถึง"


class NotFoundError(APIError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "ไม่พบข้อมูล"


class ValidationError(APIError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message, status_code, code)


class DatabaseError(APIError):
    status_code = 500
    code = "DATABASE_ERROR"
    default_message = "เกิดข้อผิดพลาดในการเข้าถึงข้อมูล"


class ReferenceInUseError(DatabaseError):
    """刪除時仍被其他資料參照（外鍵）"""
    status_code = 409
    code = "FOREIGN_KEY_VIOLATION"
    default_message = "มีข้อมูลอ้างอิงที่ใช้งานอยู่ ไม่สามารถลบได้"


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    """asyncpg 提供 sqlstate、psycopg 提供 pgcode；SQLite 沒有，回傳 None 改比對訊息"""
    orig = getattr(exc, "orig", None)
    for attr in ("sqlstate", "pgcode"):
        value = getattr(orig, attr, None)
        if value:
            return str(value)
    # asyncpg 經 SQLAlchemy adapter 包裝時，原始例外在 __cause__
    cause = getattr(orig, "__cause__", None)
    value = getattr(cause, "sqlstate", None)
    return str(value) if value else None


def _classify(exc: DBAPIError) -> Optional[str]:
    state = _sqlstate(exc)
    if state in (UNIQUE_VIOLATION, FOREIGN_KEY_VIOLATION, NOT_NULL_VIOLATION):
        return state
    text = str(getattr(exc, "orig", None) or exc).lower()
    if "duplicate key" in text or "unique constraint failed" in text:
        return UNIQUE_VIOLATION
    if "violates foreign key" in text or "foreign key constraint failed" in text:
        return FOREIGN_KEY_VIOLATION
    if "violates not-null" in text or "not null constraint failed" in text:
        return NOT_NULL_VIOLATION
    return None


def translate_db_error(exc: DBAPIError, on_delete: bool = False) -> APIError:
    """DBAPIError → 領域錯誤；僅此一處判斷 SQLSTATE / 錯誤字串。
    外鍵錯誤：刪除時為仍被參照（409），新增/修改時為參照不存在（400）"""
    logger.warning("資料庫錯誤：%s", getattr(exc, "orig", None) or exc)
    kind = _classify(exc)
    if kind == UNIQUE_VIOLATION:
        return ValidationError("ข้อมูลซ้ำ")
    if kind == FOREIGN_KEY_VIOLATION:
        if on_delete:
            return ReferenceInUseError()
        return ValidationError("ข้อมูลอ้างอิงไม่ถูกต้อง")
    if kind == NOT_NULL_VIOLATION:
        return ValidationError("กรุณากรอกข้อมูลที่จำเป็นให้ครบ")
    return DatabaseError()


def is_unique_violation(exc: DBAPIError) -> bool:
    return _classify(exc) == UNIQUE_VIOLATION
