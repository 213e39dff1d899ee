"""
Test configuration and fixtures for Pantry CRM
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["NATS_ENABLED"] = "false"

import pytest
import httpx
from types import SimpleNamespace
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pipeline.app.main import app
from pipeline.app.core.database import Base, build_engine, get_db
from pipeline.app.models import Organization, Principal, Product, Opportunity
from pipeline.app.services.opportunity_service import OpportunityService
from console.app.services.opportunities_api import OpportunitiesApiClient
from console.app.stores.opportunity_store import OpportunityStore

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_BASE_URL = "http://pipeline.test"


@pytest.fixture
async def test_engine():
    """One in-memory database per test, shared by every session."""
    engine = build_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(test_db: AsyncSession):
    """Organization, three principals and one product."""
    organization = Organization(name="Test Corp", type="Restaurant")
    test_db.add(organization)
    await test_db.flush()

    principals = [
        Principal(name=name, organization_id=organization.id)
        for name in ("Jane Doe", "John Roe", "Ana Ruiz")
    ]
    product = Product(name="Smoked Brisket", category="Protein")
    test_db.add_all(principals + [product])
    await test_db.commit()

    return SimpleNamespace(organization=organization, principals=principals, product=product)


@pytest.fixture
def make_opportunity(test_db: AsyncSession, seed):
    """Insert an opportunity row directly."""
    async def _make(name: str, **overrides) -> Opportunity:
        values = {
            "name": name,
            "organization_id": seed.organization.id,
            "principal_id": seed.principals[0].id,
            "stage": "new_lead",
            "probability_percent": 10,
        }
        values.update(overrides)
        opportunity = Opportunity(**values)
        test_db.add(opportunity)
        await test_db.commit()
        return opportunity

    return _make


@pytest.fixture
def service(test_db: AsyncSession) -> OpportunityService:
    return OpportunityService(test_db)


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client bound to the app with database override."""
    async def get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = get_test_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=TEST_BASE_URL) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def api(client: httpx.AsyncClient) -> OpportunitiesApiClient:
    return OpportunitiesApiClient(base_url=TEST_BASE_URL, client=client)


@pytest.fixture
def store(api: OpportunitiesApiClient) -> OpportunityStore:
    return OpportunityStore(api)


@pytest.fixture
def batch_payload(seed):
    """Batch request body for the first two principals."""
    return {
        "organization_id": str(seed.organization.id),
        "principal_ids": [str(seed.principals[0].id), str(seed.principals[1].id)],
        "context": "NEW_BUSINESS",
        "stage": "new_lead",
        "deal_owner": "Sarah Johnson",
        "auto_generate_name": True,
        "reference_date": "2025-01-15"
    }
