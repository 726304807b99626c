"""
Pytest Configuration and Centralized Fixtures.

Provides reusable mocks and fixtures for testing:
- Database sessions (AsyncMock and real in-memory SQLite)
- Catalog items and payment requests in various states
- Reconciler policy and chain payment events
- API test client with database overrides
"""

import os
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set required environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT_RECEIVER_CONTRACT", "0x5FbDB2315678afecb367f032d93F642f64180aa3")
os.environ.setdefault("STABLECOINS", "0x6B175474E89094C44Da98b954EedeAC495271d0F")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")

from app.db.models import Base, CatalogItem
from app.db.repository import PaymentRequestStore
from app.models.domain import ChainPaymentEvent, PaymentRequestData
from app.services.pricing import FixedRateSource, ReconcilerConfig

RECEIVER_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
STABLECOIN = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
UNLISTED_TOKEN = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
PAYER = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
TX_HASH = "0x" + "ab" * 32
OTHER_TX_HASH = "0x" + "cd" * 32

# ============================================================================
# Database Session Fixtures
# ============================================================================


@pytest.fixture
def db_session() -> AsyncMock:
    """Create a mock database session with sensible defaults."""
    session = AsyncMock(spec=AsyncSession)

    # Basic operations
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.get = AsyncMock(return_value=None)

    # Default execute returns empty result
    mock_result = MagicMock()
    mock_result.scalar_one_or_none = MagicMock(return_value=None)
    mock_result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=[])))
    mock_result.rowcount = 0
    session.execute = AsyncMock(return_value=mock_result)

    return session


@pytest.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Real in-memory SQLite engine with the full schema."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the in-memory engine."""
    return async_sessionmaker(sqlite_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def seeded_catalog(session_factory: async_sessionmaker[AsyncSession]) -> list[str]:
    """Insert the starter books and return their keys."""
    books = [
        CatalogItem(
            catalog_key="979-8749522310",
            title="Alice in Wonderland",
            retail_price_cents=597,
            content="Alice was beginning to get very tired.",
        ),
        CatalogItem(
            catalog_key="978-0345806789",
            title="The Shining",
            retail_price_cents=999,
            content="Jack Torrance thought.",
        ),
        CatalogItem(
            catalog_key="978-0060850524",
            title="Brave New World",
            retail_price_cents=1034,
            content=None,
        ),
    ]
    async with session_factory() as session:
        session.add_all(books)
        await session.commit()
    return [book.catalog_key for book in books]


# ============================================================================
# Domain Model Fixtures
# ============================================================================


def create_payment_data(
    payment_request_id: int = 42,
    catalog_key: str = "978-0345806789",
    payer_address: str = PAYER,
    price_cents: int = 999,
    fulfilled_hash: str | None = None,
    paid_cents: int | None = None,
) -> PaymentRequestData:
    """Factory function to create PaymentRequestData snapshots."""
    now = datetime.now(UTC)
    return PaymentRequestData(
        id=payment_request_id,
        catalog_key=catalog_key,
        payer_address=payer_address,
        price_cents=price_cents,
        fulfilled_hash=fulfilled_hash,
        paid_cents=paid_cents,
        created_at=now,
        fulfilled_at=now if fulfilled_hash is not None else None,
    )


@pytest.fixture
def unfulfilled_payment() -> PaymentRequestData:
    """Open payment request for The Shining at 999 cents."""
    return create_payment_data()


@pytest.fixture
def fulfilled_payment() -> PaymentRequestData:
    """Payment request already settled by TX_HASH."""
    return create_payment_data(fulfilled_hash=TX_HASH, paid_cents=999)


def create_event(
    amount: int,
    token: str = NATIVE_TOKEN,
    payment_reference: bytes | int | str = 42,
    transaction_hash: str = TX_HASH,
    block_number: int = 100,
    log_index: int = 0,
) -> ChainPaymentEvent:
    """Factory function to create ChainPaymentEvent objects."""
    return ChainPaymentEvent(
        block_number=block_number,
        transaction_hash=transaction_hash,
        payer_address=PAYER,
        amount=amount,
        token=token,
        payment_reference=payment_reference,
        log_index=log_index,
    )


@pytest.fixture
def event_factory() -> Callable[..., ChainPaymentEvent]:
    """Expose create_event to tests."""
    return create_event


# ============================================================================
# Reconciler Fixtures
# ============================================================================


@pytest.fixture
def reconciler_config() -> ReconcilerConfig:
    """Native at $2,200 per unit plus one allowlisted stablecoin."""
    return ReconcilerConfig(
        accepted_tokens=frozenset({STABLECOIN}),
        rate_source=FixedRateSource(Decimal(220000)),
        native_token=NATIVE_TOKEN,
    )


@pytest.fixture
def payment_store() -> AsyncMock:
    """PaymentRequestStore mock with no requests and a winning conditional write."""
    store = AsyncMock(spec=PaymentRequestStore)
    store.find_by_id = AsyncMock(return_value=None)
    store.try_mark_fulfilled = AsyncMock(return_value=True)
    return store


# ============================================================================
# API Test Client Fixtures
# ============================================================================


@pytest.fixture
def app() -> FastAPI:
    """Get FastAPI application instance."""
    from app.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app: FastAPI, db_session: AsyncMock) -> TestClient:
    """Test client whose database dependencies yield the mock session."""
    from app.db.session import get_read_db, get_write_db

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_write_db] = override_get_db
    app.dependency_overrides[get_read_db] = override_get_db

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()
