"""
輸入驗證與錯誤轉譯單元測試（不需 DB）。
"""
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from fieldops.errors import (
    DatabaseError, ReferenceInUseError, ValidationError, is_unique_violation, translate_db_error,
)
from fieldops.schemas import DepartmentWrite, SiteWrite
from fieldops.validation import (
    allow_list_of, coerce, parse_json_object, sanitize, validate_email, validate_number_range,
    validate_required, validate_uuid,
)


def test_sanitize_keeps_only_allowed_keys():
    """allow-list 以外的鍵（含 id、時間戳）靜默丟棄"""
    data = {"code": "tech", "name_th": "ช่าง", "id": "x", "created_at": "2025-01-01", "__proto__": {}}
    assert sanitize(data, allow_list_of(DepartmentWrite)) == {"code": "tech", "name_th": "ช่าง"}


def test_sanitize_is_idempotent():
    allow = ("code", "name_th")
    once = sanitize({"code": "X", "hacker_field": 1, "name_th": "ก"}, allow)
    assert once == {"code": "X", "name_th": "ก"}
    assert sanitize(once, allow) == once


def test_sanitize_empty_input():
    assert sanitize(None, ("code",)) == {}
    assert sanitize({}, ("code",)) == {}


def test_sanitize_keeps_explicit_null():
    """有提供的 null 保留（代表清空欄位），未提供的鍵不出現"""
    assert sanitize({"name_en": None}, allow_list_of(DepartmentWrite)) == {"name_en": None}


def test_coerce_converts_types_and_reports_field():
    assert coerce(SiteWrite, {"name": "  สาขา 1 ", "postal_code": "10110"}) == {
        "name": "สาขา 1",
        "postal_code": 10110,
    }
    with pytest.raises(ValidationError) as exc:
        coerce(SiteWrite, {"postal_code": "ไม่ใช่ตัวเลข"})
    assert "postal_code" in exc.value.message


def test_validate_uuid():
    value = "3F2504E0-4F89-11D3-9A0C-0305E82C3301"
    assert validate_uuid(value) == value.lower()
    with pytest.raises(ValidationError) as exc:
        validate_uuid("not-a-uuid", "department_id")
    assert exc.value.message == "department_id ไม่ถูกต้อง"
    with pytest.raises(ValidationError):
        validate_uuid(None)


@pytest.mark.parametrize("value", [
    "123e4567e89b12d3a456426614174000",
    "123e4567-e89b-12d3-a456-42661417400",
    "123e4567-e89b-12d3-a456-42661417400g",
    "{123e4567-e89b-12d3-a456-426614174000}",
])
def test_validate_uuid_rejects_other_shapes(value):
    assert validate_uuid("123e4567-e89b-12d3-a456-426614174000")
    with pytest.raises(ValidationError):
        validate_uuid(value)


def test_validate_required_and_email():
    with pytest.raises(ValidationError):
        validate_required("   ", "name")
    assert validate_required(0, "count") == 0
    assert validate_email(" a@b.co ") == "a@b.co"
    with pytest.raises(ValidationError):
        validate_email("a@b")


def test_validate_number_range():
    assert validate_number_range("2.5", "total_days", 0.5, 30) == 2.5
    with pytest.raises(ValidationError):
        validate_number_range("x", "total_days")
    with pytest.raises(ValidationError):
        validate_number_range(31, "total_days", max_value=30)


def test_parse_json_object_strips_forbidden_keys():
    body = parse_json_object(b'{"name": "a", "__proto__": {"x": 1}, "nested": {"constructor": 1, "ok": 2}}')
    assert body == {"name": "a", "nested": {"ok": 2}}


def test_parse_json_object_rejects_non_object():
    for raw in (b"[1, 2]", b"not json", b""):
        with pytest.raises(ValidationError):
            parse_json_object(raw)


# 錯誤轉譯：SQLite 沒有 SQLSTATE，以訊息判斷
def _integrity(message: str) -> IntegrityError:
    return IntegrityError("INSERT ...", {}, Exception(message))


def test_translate_unique_violation():
    err = translate_db_error(_integrity("UNIQUE constraint failed: departments.code"))
    assert isinstance(err, ValidationError)
    assert err.status_code == 400
    assert err.message == "ข้อมูลซ้ำ"
    assert is_unique_violation(_integrity("duplicate key value violates unique constraint"))


def test_translate_foreign_key_violation():
    """刪除時仍被參照 → 409；新增/修改參照不存在 → 400"""
    err = translate_db_error(_integrity("FOREIGN KEY constraint failed"), on_delete=True)
    assert isinstance(err, ReferenceInUseError)
    assert err.status_code == 409
    assert err.code == "FOREIGN_KEY_VIOLATION"

    err = translate_db_error(_integrity("FOREIGN KEY constraint failed"))
    assert type(err) is ValidationError
    assert err.status_code == 400
    assert err.message == "ข้อมูลอ้างอิงไม่ถูกต้อง"


def test_translate_sqlstate_preferred():
    """有 sqlstate（asyncpg）時以代碼判斷"""
    orig = Exception("whatever")
    orig.sqlstate = "23503"
    err = translate_db_error(IntegrityError("DELETE ...", {}, orig), on_delete=True)
    assert isinstance(err, ReferenceInUseError)


def test_translate_unknown_database_error():
    err = translate_db_error(OperationalError("SELECT 1", {}, Exception("database is locked")))
    assert type(err) is DatabaseError
    assert err.status_code == 500
