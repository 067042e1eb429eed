"""
Pytest configuration and fixtures for Card Shop tests.

Every test gets a fresh in-memory SQLite database. Postgres row locks
(FOR UPDATE) are no-ops on SQLite; these tests cover the ledger arithmetic
and transaction boundaries, not lock contention.
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

import pytest
import pytest_asyncio

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["STOCK_CLEANUP_ENABLED"] = "false"
os.environ["CRON_SECRET"] = ""
os.environ["ADMIN_API_KEY"] = ""
os.environ["RESEND_API_KEY"] = ""

from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cardshop.core.database import Base
from cardshop.models import Product, StockReservation, User
from cardshop.schemas.checkout import CartItem, CreateOrderRequest, ShippingAddress
from cardshop.services.email_provider import SendResult
from cardshop.services.order_workflow import CheckoutService


@dataclass
class FakeMailer:
    """Records invoices instead of calling Resend."""
    sent: List = field(default_factory=list)
    fail: bool = False
    raise_error: bool = False

    async def send_invoice_email(self, data):
        if self.raise_error:
            raise RuntimeError("mail provider down")
        self.sent.append(data)
        if self.fail:
            return SendResult(success=False, error="HTTP 500")
        return SendResult(success=True, message_id="msg_test")


@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def service(mailer) -> CheckoutService:
    return CheckoutService(mailer=mailer, ttl_minutes=30)


@pytest_asyncio.fixture
async def buyer(db) -> User:
    user = User(email="buyer@example.com", name="Taro Yamada")
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def make_product(db):
    """Factory: await make_product(stock=5, price=3000)."""
    counter = {"n": 0}

    async def _make(stock: int = 5, price: int = 3000, track_stock: bool = True, name: str = None) -> Product:
        counter["n"] += 1
        n = counter["n"]
        product = Product(
            sku=f"CARD-{n:04d}",
            name=name or f"Test Card {n}",
            price=Decimal(price),
            stock=stock,
            track_stock=track_stock,
        )
        db.add(product)
        await db.commit()
        return product

    return _make


def shipping_address(**overrides) -> ShippingAddress:
    data = {
        "first_name": "Taro",
        "last_name": "Yamada",
        "street1": "1-2-3 Shibuya",
        "city": "Tokyo",
        "state": "Tokyo",
        "postal_code": "150-0002",
        "country": "jp",
        "phone": "090-0000-0000",
    }
    data.update(overrides)
    return ShippingAddress(**data)


def order_request(lines, email: str = "buyer@example.com", save_address: bool = False) -> CreateOrderRequest:
    """lines: list of (product, quantity) or (product_id, quantity)."""
    items = []
    for product, quantity in lines:
        product_id = product.id if isinstance(product, Product) else product
        name = product.name if isinstance(product, Product) else ""
        items.append(CartItem(product_id=product_id, quantity=quantity, name=name))
    return CreateOrderRequest(
        items=items,
        email=email,
        shipping_address=shipping_address(),
        save_address=save_address,
    )


async def stock_of(db: AsyncSession, product_id: int) -> int:
    """Read stock straight from the table, bypassing the identity map."""
    result = await db.execute(select(Product.stock).where(Product.id == product_id))
    return result.scalar_one()


async def reservations_for(db: AsyncSession, order_number: str) -> List[StockReservation]:
    result = await db.execute(
        select(StockReservation)
        .where(StockReservation.order_number == order_number)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


@pytest_asyncio.fixture
async def client(test_session_factory, service):
    """FastAPI test client with DB and checkout service overridden."""
    from cardshop.api.deps import get_checkout_service
    from cardshop.core.database import get_db
    from cardshop.main import app

    async def override_get_db():
        async with test_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_checkout_service] = lambda: service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
