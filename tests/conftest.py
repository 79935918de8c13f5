"""
Pytest configuration and fixtures
"""

import asyncio
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from core.database import build_session_factory
from core.exceptions import AuthenticationError
from models.base import Base, SyncType
from schemas.normalized import PetPolicyCreate
from sync.notifications import ProgressNotifier
from sync.progress_store import SyncProgressStore
from sync.providers.base import ContentProvider, FetchChunkResult
from sync.signature import PET_POLICY_SIGNATURE


class FakePolicyProvider(ContentProvider):
    """
    In-memory provider with pet-policy-shaped content.

    Items are dicts with an "id" and optional "pets"/"policy_url"; ids in
    fail_ids raise a plain error, ids in fatal_ids an AuthenticationError.
    """

    sync_type = SyncType.PET_POLICIES
    content_signature = PET_POLICY_SIGNATURE
    cooldown_seconds = 0

    def __init__(self, session_factory=None, options=None, count=25, items=None,
                 fail_ids=(), fatal_ids=(), total_known=True, fetch_delay=0, count_delay=0):
        super().__init__(session_factory, options)
        self.items = items if items is not None else [{"id": f"item-{i:03d}"} for i in range(count)]
        self.fail_ids = set(fail_ids)
        self.fatal_ids = set(fatal_ids)
        self.total_known = total_known
        self.fetch_delay = fetch_delay
        self.count_delay = count_delay
        self.stored = {}
        self.upserts = []
        self.fetch_offsets = []
        self.cleared = 0
        self.closed = False

    async def count_total(self):
        if self.count_delay:
            await asyncio.sleep(self.count_delay)
        return len(self.items) if self.total_known else None

    async def fetch_candidates(self, offset, batch_size, resume_token=None):
        self.fetch_offsets.append(offset)
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        return FetchChunkResult(items=self.items[offset:offset + batch_size])

    def item_id(self, raw):
        return raw["id"]

    async def fetch_proposed_content(self, raw):
        if raw["id"] in self.fatal_ids:
            raise AuthenticationError("API key rejected", context={"provider": "fake"})
        if raw["id"] in self.fail_ids:
            raise ValueError(f"upstream returned garbage for {raw['id']}")
        return PetPolicyCreate(
            airline_id=raw["id"],
            pet_types_allowed=raw.get("pets", ["dogs", "cats"]),
            policy_url=raw.get("policy_url", "https://example.com/pets")
        )

    async def upsert(self, proposed):
        self.stored[proposed.airline_id] = proposed
        self.upserts.append(proposed.airline_id)

    async def get_existing(self, item_id):
        return self.stored.get(item_id)

    async def clear(self):
        removed = len(self.stored)
        self.stored.clear()
        self.cleared += 1
        return removed

    async def close(self):
        self.closed = True


async def no_sleep(_seconds):
    return None


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """SQLite test database in a temporary file"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sync_test.db'}",
        echo=False,
        poolclass=NullPool,  # Disable connection pooling for tests
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest_asyncio.fixture(scope="function")
async def fk_engine(tmp_path):
    """SQLite test database that enforces foreign keys like PostgreSQL"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sync_fk_test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def enable_foreign_keys(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def fk_session_factory(fk_engine):
    return build_session_factory(fk_engine)


@pytest_asyncio.fixture(scope="function")
async def unmigrated_session_factory(tmp_path):
    """Sessions on a database without any tables; every query fails"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'unmigrated.db'}",
        echo=False,
        poolclass=NullPool,
    )
    yield build_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def notifier():
    return ProgressNotifier()


@pytest.fixture
def store(session_factory, notifier):
    return SyncProgressStore(session_factory, notifier)


@pytest.fixture
def fake_provider():
    return FakePolicyProvider()


@pytest.fixture
def fake_provider_cls():
    return FakePolicyProvider


@pytest.fixture
def instant_sleep():
    return no_sleep


@pytest.fixture
def mock_cirium_airlines():
    """Cirium active airlines payload"""
    return {
        "airlines": [
            {"fs": "AA", "iata": "AA", "icao": "AAL", "name": "American Airlines", "active": True},
            {"fs": "BA", "iata": "BA", "icao": "BAW", "name": "British Airways", "active": True},
            {"fs": "LH", "iata": "LH", "icao": "DLH", "name": "Lufthansa", "active": True},
            {"fs": "ZZ*", "icao": "ZZZ", "name": "No IATA Cargo", "active": True},
        ]
    }


@pytest.fixture
def mock_cirium_airports():
    """Cirium active airports payload"""
    return {
        "airports": [
            {"iata": "JFK", "name": "John F. Kennedy International Airport", "city": "New York",
             "countryName": "United States", "latitude": 40.642335, "longitude": -73.78817,
             "timeZoneRegionName": "America/New_York"},
            {"iata": "LHR", "name": "London Heathrow Airport", "city": "London",
             "countryName": "United Kingdom", "latitude": 51.469603, "longitude": -0.453566,
             "timeZoneRegionName": "Europe/London"},
            {"iata": "NRT", "name": "Narita International Airport", "city": "Tokyo",
             "countryName": "Japan", "latitude": 35.764722, "longitude": 140.386389,
             "timeZoneRegionName": "Asia/Tokyo"},
        ]
    }


@pytest.fixture
def mock_pet_policy_response():
    """Model answer for a pet policy, wrapped in a markdown fence"""
    return """```json
{
  "airline_info": {
    "official_website": "https://www.aa.com",
    "pet_policy_url": "https://www.aa.com/i18n/travel-info/special-assistance/pets.jsp"
  },
  "pet_policy": {
    "pet_types_allowed": ["cats and dogs in cabin"],
    "size_restrictions": {"max_weight_cabin": "20 lbs", "max_weight_cargo": null, "carrier_dimensions_cabin": "18 x 11 x 7 in"},
    "carrier_requirements_cabin": "Soft-sided carrier that fits under the seat",
    "carrier_requirements_cargo": null,
    "documentation_needed": ["Health certificate", "Rabies vaccination record"],
    "fees": {"in_cabin": "$150", "cargo": null},
    "temperature_restrictions": null,
    "breed_restrictions": ["Pug", "Bulldog"],
  }
}
```"""
