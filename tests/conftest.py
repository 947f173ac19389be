"""
Pytest configuration and fixtures.

Settings are read once per process, so the environment is populated
before anything from ``producers_avenue`` is imported.
"""
import os

os.environ["STRIPE_SECRET_KEY"] = "sk_test_fake_key_for_testing"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_fake_secret"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["AUTH_JWT_SECRET"] = "test-jwt-secret-with-at-least-32-bytes!!"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["PAYPAL_WEBHOOK_ID"] = "WH-TEST-123"
os.environ["APP_ENV"] = "test"
os.environ["APP_URL"] = "http://app.test"

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Any, AsyncGenerator, Callable, Dict, List  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from producers_avenue.api.dependencies import (  # noqa: E402
    get_paypal_client,
    get_redis,
    get_stripe_client,
)
from producers_avenue.api.main import app  # noqa: E402
from producers_avenue.core.orders import order_service  # noqa: E402
from producers_avenue.database.connection import enable_sqlite_savepoints, get_db  # noqa: E402
from producers_avenue.database.models import Base  # noqa: E402
from producers_avenue.integrations.paypal_client import PayPalClient  # noqa: E402
from producers_avenue.integrations.stripe_client import StripeClient  # noqa: E402

BUYER_ID = "buyer-0001"
SELLER_ID = "seller-0001"
OTHER_USER_ID = "stranger-0001"
ADMIN_HEADERS = {"X-API-Key": "test-admin-key"}


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests of a single component")
    config.addinivalue_line("markers", "integration: tests that go through the HTTP API")


def make_token(user_id: str, email: str | None = None, **claims: Any) -> str:
    """Sign an access token the API accepts."""
    payload: Dict[str, Any] = {
        "sub": user_id,
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    if email:
        payload["email"] = email
    payload.update(claims)
    return jwt.encode(payload, os.environ["AUTH_JWT_SECRET"], algorithm="HS256")


def auth(user_id: str, email: str | None = None) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id, email)}"}


def cart_line(
    item_id: str = "beat-001",
    price: str = "100.00",
    seller_id: str = SELLER_ID,
    type: str = "product",
) -> Dict[str, Any]:
    return {"id": item_id, "type": type, "price": price, "seller_id": seller_id}


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[Any, Any]:
    """In-memory SQLite database shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: Any) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """A session for tests that call services directly (not through HTTP)."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> Callable:
    """Insert rows in their own committed session."""

    async def _seed(*rows: Any) -> List[Any]:
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()
        return list(rows)

    return _seed


@pytest.fixture
def checkout(session_factory: async_sessionmaker[AsyncSession]) -> Callable:
    """Run a completed checkout and commit it."""

    async def _checkout(
        items: List[Dict[str, Any]],
        buyer_id: str = BUYER_ID,
        payment_method: str = "stripe",
        payment_reference: str | None = "pi_test_123",
        capture_id: str | None = None,
    ) -> Any:
        async with session_factory() as session:
            result = await order_service.create_orders_from_checkout(
                session,
                buyer_id=buyer_id,
                items=items,
                payment_method=payment_method,
                payment_reference=payment_reference,
                capture_id=capture_id,
            )
            await session.commit()
        return result

    return _checkout


@pytest.fixture
def redis_mock() -> AsyncMock:
    """Redis stand-in for webhook deduplication; nothing processed yet."""
    client = AsyncMock()
    client.exists.return_value = 0
    client.setex.return_value = True
    return client


@pytest.fixture
def stripe_mock() -> AsyncMock:
    return AsyncMock(spec=StripeClient)


@pytest.fixture
def paypal_mock() -> AsyncMock:
    return AsyncMock(spec=PayPalClient)


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    redis_mock: AsyncMock,
    stripe_mock: AsyncMock,
    paypal_mock: AsyncMock,
) -> AsyncGenerator[AsyncClient, Any]:
    """HTTP client against the app with the database and providers swapped out."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, Any]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis_mock
    app.dependency_overrides[get_stripe_client] = lambda: stripe_mock
    app.dependency_overrides[get_paypal_client] = lambda: paypal_mock

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
