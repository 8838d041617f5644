# tests/conftest.py
from __future__ import annotations

import os
from decimal import Decimal
from typing import AsyncGenerator, Optional

# ============================================================
# ★★ 关键：在 import orderflow 之前固定测试环境 ★★
#   get_settings() 有 lru_cache，之后再改环境变量无效
# ============================================================
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["PLATFORM_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["ENABLE_WORKERS"] = "0"
os.environ["COURIER_BOOKING_MODE"] = "live"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from orderflow.db.base import Base, init_models  # noqa: E402
from orderflow.db.session import make_engine, make_sessionmaker  # noqa: E402
from orderflow.models import Courier, Order  # noqa: E402


# =========================================
# 每用例独立的 sqlite 文件库（NullPool，避免跨 loop）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    init_models()
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path}/orderflow-test.db", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_sessionmaker(async_engine)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


# =========================================
# 最小种子数据
# =========================================
@pytest.fixture
def make_order(session: AsyncSession):
    """async 工厂：await make_order("SHOP-1001", tracking_id="TRK12345", ...)"""

    async def _make(
        order_number: str = "SHOP-1001",
        *,
        status: str = "pending",
        tracking_id: Optional[str] = None,
        courier: Optional[str] = None,
        external_order_id: Optional[str] = None,
        external_order_number: Optional[str] = None,
        customer_name: str = "Ayesha Khan",
        total_amount: Decimal = Decimal("2500.00"),
        tags: Optional[list] = None,
    ) -> Order:
        order = Order(
            order_number=order_number,
            status=status,
            tracking_id=tracking_id,
            courier=courier,
            external_order_id=external_order_id,
            external_order_number=external_order_number,
            customer_name=customer_name,
            total_amount=total_amount,
            tags=list(tags or []),
        )
        session.add(order)
        await session.commit()
        return order

    return _make


@pytest.fixture
def make_courier(session: AsyncSession):
    async def _make(
        code: str = "postex",
        *,
        name: Optional[str] = None,
        api_key: Optional[str] = "courier-key",
        pickup_address_code: Optional[str] = "PK-001",
        booking_endpoint: Optional[str] = None,
        label_endpoint: Optional[str] = None,
        auth_type: Optional[str] = None,
        auth_config: Optional[dict] = None,
    ) -> Courier:
        courier = Courier(
            code=code,
            name=name or code.title(),
            api_key=api_key,
            pickup_address_code=pickup_address_code,
            booking_endpoint=booking_endpoint,
            label_endpoint=label_endpoint,
            auth_type=auth_type,
            auth_config=auth_config,
            is_active=True,
        )
        session.add(courier)
        await session.commit()
        return courier

    return _make


@pytest.fixture
def booking_request_payload() -> dict:
    return {
        "pickup_address": {"name": "Warehouse", "phone": "0420000000", "address": "Plot 7, Industrial Area", "city": "Lahore"},
        "delivery_address": {"name": "Ayesha Khan", "phone": "03001234567", "address": "House 12, Street 4", "city": "Karachi"},
        "weight": "0.5",
        "pieces": 1,
        "cod_amount": "2500",
        "items": [{"name": "Cotton Kurta", "quantity": 1}],
    }
