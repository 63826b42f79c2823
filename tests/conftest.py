import os

# Must be set before app modules read settings.
os.environ.setdefault("TELEMETRY_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("INTERNAL_ADMIN_KEY", "test-internal")
os.environ.setdefault("API_KEY_PEPPER", "test-pepper")

from datetime import date  # noqa: E402

import pytest  # noqa: E402
import httpx  # noqa: E402

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

# Import Base + all models so metadata is complete
from app.models.base import Base  # noqa: E402
from app.models.api_key import ApiKey  # noqa: E402,F401
from app.models.delivery import Delivery  # noqa: E402,F401
from app.models.audit_log import AuditLog  # noqa: E402,F401

from app.main import app  # noqa: E402
from app.core.db import get_db  # noqa: E402
from app.api.v1.endpoints.deliveries import get_delivery_service, get_generation_engine  # noqa: E402
from app.services.deliveries import DeliveryService  # noqa: E402
from app.services.delivery_store import SqlDeliveryStore  # noqa: E402
from app.services.generation import GenerationEngine  # noqa: E402

from tests.fixtures_seed import seed_courier_key, seed_manager_key, seed_non_numeric_key  # noqa: E402,F401

# Fixed "today" so the scheduling policy does not drift with the calendar.
TODAY = date(2030, 6, 3)


def _today() -> date:
    return TODAY


def _test_db_url() -> str:
    return os.getenv("DATABASE_URL_TEST", "sqlite+aiosqlite:///:memory:")


@pytest.fixture
async def async_engine():
    url = _test_db_url()
    kwargs = {}
    if url.startswith("sqlite"):
        # one shared in-memory database for every connection of the test
        kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    engine = create_async_engine(url, **kwargs)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(async_engine):
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as session:
        yield session


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def store(db_session: AsyncSession) -> SqlDeliveryStore:
    return SqlDeliveryStore(db_session)


@pytest.fixture
def service(store: SqlDeliveryStore) -> DeliveryService:
    return DeliveryService(store, today=_today)


@pytest.fixture
def engine(store: SqlDeliveryStore) -> GenerationEngine:
    return GenerationEngine(store, today=_today)


@pytest.fixture
async def client(db_session: AsyncSession):
    """
    HTTP client that uses the test DB session and the fixed clock via dependency overrides.
    """
    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_delivery_service] = lambda: DeliveryService(SqlDeliveryStore(db_session), today=_today)
    app.dependency_overrides[get_generation_engine] = lambda: GenerationEngine(SqlDeliveryStore(db_session), today=_today)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
