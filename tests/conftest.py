import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.db.base import Base
from services.store_service import models as _store_models  # noqa: F401
from tests.factories import BUYER_ID, SELLER_ID, auth_headers_for, make_user
from tests.stubs import StubPaymentGateway

settings = get_settings()

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """
    Fresh schema per test. Store operations commit their own transactions, so
    tests cannot be isolated by rolling back an outer transaction.
    """
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared in-memory database for every session in the test
        engine = create_async_engine(
            TEST_DATABASE_URL,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, future=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


@pytest.fixture
def seller_user() -> AuthUser:
    return make_user(SELLER_ID, roles=["seller"])


@pytest.fixture
def buyer_user() -> AuthUser:
    return make_user(BUYER_ID)


@pytest.fixture
def admin_user() -> AuthUser:
    return make_user("admin-1", roles=["admin"])


@pytest.fixture
def seller_headers() -> dict:
    return auth_headers_for(SELLER_ID, roles=["seller"])


@pytest.fixture
def buyer_headers() -> dict:
    return auth_headers_for(BUYER_ID)


@pytest.fixture
def admin_headers() -> dict:
    return auth_headers_for("service", role="service_role")


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def payment_gateway() -> StubPaymentGateway:
    return StubPaymentGateway()


@pytest_asyncio.fixture
async def store_client(session_factory, payment_gateway) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient bound to the store app, with a per-request session on the test
    database and the stub payment gateway.
    """
    from libs.db.session import get_async_db
    from services.store_service.app.main import app
    from services.store_service.services.payments import get_payment_gateway

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_test_db
    app.dependency_overrides[get_payment_gateway] = lambda: payment_gateway

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
