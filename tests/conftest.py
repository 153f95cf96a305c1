"""
Pytest configuration and fixtures.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
import pytest_asyncio
import stripe
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from factories import WEBHOOK_SECRET
from redetour.db import get_db
from redetour.models import Base
from redetour.services.commission import CommissionCalculator
from redetour.services.gateway import StripeGateway, get_gateway
from redetour.services.ledger import LedgerWriter
from redetour.services.rates import RateTable


# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeStripeGateway(StripeGateway):
    """
    Real signature verification, canned API responses.

    Subscriptions and invoices are served through the SDK retrieve calls
    (patched in the gateway fixture), so they come back as StripeObjects.
    """

    def __init__(self):
        super().__init__(api_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET)
        self.subscriptions = {}
        self.invoices = {}
        self.created_sessions = []

    async def create_checkout_session(self, idempotency_key=None, **params):
        self.created_sessions.append({"idempotency_key": idempotency_key, **params})
        number = len(self.created_sessions)
        return {
            "id": f"cs_test_{number}",
            "url": f"https://checkout.stripe.com/c/pay/cs_test_{number}",
            "mode": params.get("mode"),
        }


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest.fixture
def rates():
    return RateTable()


@pytest.fixture
def calculator(rates):
    return CommissionCalculator(rates)


@pytest.fixture
def ledger(db_session, calculator):
    return LedgerWriter(db_session, calculator)


@pytest.fixture
def gateway(monkeypatch):
    """Fake gateway; the stripe SDK retrieve calls read its canned objects."""
    fake = FakeStripeGateway()

    def serve(resource, objects):
        def retrieve(object_id, api_key=None, stripe_version=None):
            return resource.construct_from(objects[object_id], api_key)
        return staticmethod(retrieve)

    monkeypatch.setattr(stripe.Subscription, "retrieve", serve(stripe.Subscription, fake.subscriptions))
    monkeypatch.setattr(stripe.Invoice, "retrieve", serve(stripe.Invoice, fake.invoices))
    return fake


@pytest_asyncio.fixture
async def client(db_engine, gateway):
    """HTTP client against the app, bound to the test database and fake gateway."""
    from redetour.main import app

    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async def override_get_db():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
