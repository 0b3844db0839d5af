import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront.models import Base
from storefront.schemas.discount import CartLine, CheckoutContext, DiscountInstrument, DiscountType

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)

@pytest.fixture
def now():
    return NOW

@pytest.fixture
def make_instrument():
    """Factory for valid instruments with overridable fields."""
    def _make(**overrides):
        fields = {
            "id": "COUPON-1",
            "discount_type": DiscountType.PERCENTAGE,
            "value": Decimal("10"),
            "valid_from": NOW - timedelta(days=1),
            "valid_until": NOW + timedelta(days=1),
        }
        fields.update(overrides)
        return DiscountInstrument(**fields)
    return _make

@pytest.fixture
def make_context():
    """Factory for checkout contexts at NOW."""
    def _make(subtotal="1000", lines=(), **overrides):
        fields = {
            "subtotal": Decimal(str(subtotal)),
            "cart_lines": tuple(CartLine(**line) for line in lines),
            "user_id": "user-1",
            "user_segment": "regular",
            "now": NOW,
        }
        fields.update(overrides)
        return CheckoutContext(**fields)
    return _make

@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite DB shared across sessions."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session

@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Sessions on separate connections to one SQLite file"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()

@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP client against the app with the test database and a fixed clock."""
    from storefront.main import app
    from storefront.core.database import get_db
    from storefront.api.v1.discounts.router import get_clock

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: NOW

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
