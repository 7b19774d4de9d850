"""
分頁單元測試。
覆蓋：page/limit 解析與夾值、非整數輸入、分頁資訊計算、count + 視窗查詢。
"""
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fieldops.database import Base
from fieldops.errors import ValidationError
from fieldops.models import Department
from fieldops.pagination import calculate_pagination, paginate, parse_pagination_params


def test_parse_pagination_defaults():
    """未提供 → page 1、limit 50"""
    assert parse_pagination_params() == (1, 50)
    assert parse_pagination_params("", "") == (1, 50)


def test_parse_pagination_clamps():
    """page < 1 改為 1；limit 夾在 [1, 100]"""
    assert parse_pagination_params("0", "0") == (1, 1)
    assert parse_pagination_params("-3", "500") == (1, 100)
    assert parse_pagination_params(" 2 ", "20") == (2, 20)


def test_parse_pagination_rejects_non_integer():
    """非整數字串直接拒絕，不默默改回預設值"""
    with pytest.raises(ValidationError):
        parse_pagination_params("abc", None)
    with pytest.raises(ValidationError):
        parse_pagination_params(None, "1.5")


def test_calculate_pagination():
    info = calculate_pagination(2, 10, 25)
    assert info == {
        "page": 2,
        "limit": 10,
        "total": 25,
        "totalPages": 3,
        "hasNext": True,
        "hasPrevious": True,
    }


def test_calculate_pagination_empty():
    """沒有資料：totalPages 0、上下頁皆無"""
    info = calculate_pagination(1, 50, 0)
    assert info["totalPages"] == 0
    assert info["hasNext"] is False
    assert info["hasPrevious"] is False


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
async def test_paginate_window_and_total(async_session):
    """總數依條件計算，資料只取該頁範圍，依排序欄位穩定"""
    async with async_session() as db:
        for i in range(7):
            db.add(Department(code=f"d{i:02d}", name_th=f"แผนก {i}"))
        await db.commit()

        rows, info = await paginate(db, select(Department), 2, 3, Department.code)
        assert [d.code for d in rows] == ["d03", "d04", "d05"]
        assert info["total"] == 7
        assert info["totalPages"] == 3
        assert info["hasNext"] is True

        rows, info = await paginate(db, select(Department), 3, 3, Department.code)
        assert [d.code for d in rows] == ["d06"]
        assert info["hasNext"] is False


@pytest.mark.asyncio
async def test_paginate_page_beyond_total(async_session):
    """超出總頁數回傳空陣列，分頁資訊照常"""
    async with async_session() as db:
        db.add(Department(code="only", name_th="เดียว"))
        await db.commit()
        rows, info = await paginate(db, select(Department), 5, 10, Department.code)
        assert rows == []
        assert info["total"] == 1
        assert info["hasPrevious"] is True


@pytest.mark.asyncio
async def test_paginate_requires_order_by(async_session):
    async with async_session() as db:
        with pytest.raises(ValueError):
            await paginate(db, select(Department), 1, 10)
