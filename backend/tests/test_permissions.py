"""
權限等級與 token 驗證單元測試。
"""
from datetime import datetime, timedelta

import pytest
from jose import jwt
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fieldops.auth import (
    Actor, RoleData, can_approve, decode_token, is_admin, is_super_admin, load_actor,
    require_level_greater_than_zero, require_min_level, require_super_admin,
)
from fieldops.config import settings
from fieldops.database import Base
from fieldops.errors import AuthenticationError, AuthorizationError
from fieldops.models import Department, Employee, Role


def _actor(level):
    role = None if level is None else RoleData(id="r", code="c", name_th="บทบาท", level=level)
    return Actor(id="e", name="ทดสอบ", role_data=role)


def test_level_defaults_to_zero():
    """沒有職務或 level 為 NULL 視為 0"""
    assert _actor(None).level == 0
    actor = Actor(id="e", name="ทดสอบ", role_data=RoleData(id="r", code="c", name_th="x", level=None))
    assert actor.level == 0


def test_require_min_level():
    require_min_level(_actor(1), 1)
    require_min_level(_actor(2), 0)
    with pytest.raises(AuthorizationError) as exc:
        require_min_level(_actor(0), 1)
    assert exc.value.status_code == 403


def test_gate_is_monotonic():
    """level 1：門檻 0、1 通過；門檻 2 以上皆失敗，訊息帶門檻值"""
    actor = _actor(1)
    for n in (0, 1):
        require_min_level(actor, n)
    for n in (2, 3):
        with pytest.raises(AuthorizationError) as exc:
            require_min_level(actor, n)
        assert str(n) in exc.value.message


def test_super_admin_is_level_three():
    require_super_admin(_actor(3))
    with pytest.raises(AuthorizationError):
        require_super_admin(_actor(2))
    assert is_super_admin(_actor(3))
    assert not is_super_admin(_actor(2))


def test_level_helpers():
    assert is_admin(_actor(2)) and not is_admin(_actor(1))
    assert can_approve(_actor(1)) and not can_approve(_actor(0))
    require_level_greater_than_zero(_actor(1))
    with pytest.raises(AuthorizationError):
        require_level_greater_than_zero(_actor(0))


def test_decode_token():
    token = jwt.encode({"sub": "auth-1"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    assert decode_token(token) == "auth-1"


def test_decode_token_rejects_bad_tokens():
    """簽章錯誤、過期、缺 sub 一律 401"""
    wrong_key = jwt.encode({"sub": "auth-1"}, "other-secret", algorithm="HS256")
    expired = jwt.encode(
        {"sub": "auth-1", "exp": datetime.utcnow() - timedelta(minutes=1)},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    no_sub = jwt.encode({"name": "x"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    for token in (wrong_key, expired, no_sub, "garbage"):
        with pytest.raises(AuthenticationError):
            decode_token(token)


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


@pytest.mark.asyncio
async def test_load_actor_with_role_and_department(async_session):
    async with async_session() as db:
        dept = Department(code="technical", name_th="ฝ่ายเทคนิค")
        db.add(dept)
        await db.flush()
        role = Role(code="technician", name_th="ช่าง", level=1, department_id=dept.id)
        db.add(role)
        await db.flush()
        db.add(Employee(name="สมชาย", role_id=role.id, auth_user_id="auth-1"))
        db.add(Employee(name="ลาออก", auth_user_id="auth-2", is_active=False))
        await db.commit()

        actor = await load_actor(db, "auth-1")
        assert actor.name == "สมชาย"
        assert actor.level == 1
        assert actor.department_code == "technical"

        # 停用的員工與不存在的帳號都不可登入
        for auth_user_id in ("auth-2", "missing"):
            with pytest.raises(AuthenticationError):
                await load_actor(db, auth_user_id)
