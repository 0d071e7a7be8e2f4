"""
Pytest configuration and fixtures.
"""

import sys
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

# Add package to path
sys.path.append(os.getcwd())

from pitrace.clock import ManualClock
from pitrace.config import Settings
from pitrace.database import build_engine, build_session_maker, init_db
from pitrace.models.product import Product
from pitrace.schemas.payment import Owner
from pitrace.services.catalog_service import CatalogService
from pitrace.services.payment_service import PaymentService
from pitrace.services.payment_store import PaymentStore


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        jwt_secret="test-secret",
        rate_limit_backend="memory",
        webhook_secret="",
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """
    File-backed SQLite per test.

    In-memory SQLite shares a single connection, which hides the
    interleavings the concurrency tests are after.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return build_session_maker(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for a test."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(session_maker, clock) -> PaymentStore:
    return PaymentStore(session_maker, clock=clock)


@pytest.fixture
def payment_service(store, session_maker, clock, test_settings) -> PaymentService:
    return PaymentService(
        store,
        catalog=CatalogService(session_maker),
        clock=clock,
        settings=test_settings,
    )


@pytest.fixture
def owner() -> Owner:
    return Owner(uid="pi_user_1", display_name="alice", wallet_address="GALICEWALLET")


@pytest.fixture
def other_owner() -> Owner:
    return Owner(uid="pi_user_2", display_name="bob")


@pytest_asyncio.fixture
async def product(session_maker, clock) -> Product:
    """A tracked product to pay for."""
    async with session_maker() as session:
        item = Product(
            id="PROD_COFFEE_01",
            name="Arabica beans, lot 7",
            hash="0x9f2c4a",
            owner_uid="pi_user_2",
            created_at=clock.now(),
        )
        session.add(item)
        await session.commit()
        return item
