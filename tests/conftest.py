from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.config.settings import AuthMode, Settings, get_settings
from api.infra.database import Base, get_session, get_session_factory
from api.main import create_app
from api.v1.analysis.basic_rules import BasicRulesAnalysisService
from api.v1.analysis.fetcher import HttpContentFetcher
from api.v1.core.security import TenantContext

# Import models to ensure they're registered
from api.v1.infra.jobs import models as job_models  # noqa: F401
from api.v1.infra.jobs import registry_init  # noqa: F401
from api.v1.infra.jobs.pipeline import Collaborators, PipelineExecutor
from api.v1.infra.jobs.service import JobQueue
from api.v1.infra.jobs.store import SqlJobStore
from api.v1.infra.jobs.worker import JobWorker
from api.v1.tenants import models as tenant_models  # noqa: F401
from api.v1.tenants.repository import SqlTenantRecordStore

EXAMPLE_HTML = """
<html>
  <head>
    <title>Example Bakery | Fresh bread daily</title>
    <meta name="description" content="Example Bakery bakes fresh sourdough bread, pastries and cakes for the neighborhood.">
    <meta property="og:site_name" content="Example Bakery">
  </head>
  <body>
    <nav><a href="/menu">Menu</a></nav>
    <h1>Fresh bread, baked every morning</h1>
    <p>Our bakery serves sourdough bread, croissants, pastries and custom cakes.
       Order bread online for pickup or visit the store for fresh pastries.</p>
    <p>Catering for offices and events. Gluten-free bread available on request.</p>
    <a href="https://example.com/order">Order bread</a>
    <a href="/about">About the bakery</a>
    <script>var tracking = true;</script>
  </body>
</html>
"""


def as_utc(value: datetime) -> datetime:
    """SQLite returns naive datetimes; treat them as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def example_site_handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "example.com":
        return httpx.Response(
            200, text=EXAMPLE_HTML, headers={"content-type": "text/html; charset=utf-8"}
        )
    return httpx.Response(404, text="not found")


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a per-test SQLite database."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        environment="development",
        auth_mode=AuthMode.HEADERS,
        job_backoff_base_ms=0,
        job_poll_interval_ms=10,
        job_stage_timeout_s=5.0,
        image_base_url="https://images.test/audiences",
    )


@pytest.fixture
async def test_engine(test_settings: Settings):
    """Create a test database engine with all tables."""
    engine = create_async_engine(test_settings.database_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def job_store(session_factory) -> SqlJobStore:
    return SqlJobStore(session_factory)


@pytest.fixture
def queue(job_store, test_settings) -> JobQueue:
    return JobQueue(job_store, test_settings)


@pytest.fixture
def record_store(session_factory) -> SqlTenantRecordStore:
    return SqlTenantRecordStore(session_factory)


@pytest.fixture
def fetcher(test_settings) -> HttpContentFetcher:
    return HttpContentFetcher(
        test_settings, transport=httpx.MockTransport(example_site_handler)
    )


@pytest.fixture
def collaborators(fetcher, test_settings, record_store) -> Collaborators:
    return Collaborators(
        fetcher=fetcher,
        analysis=BasicRulesAnalysisService(test_settings),
        records=record_store,
    )


@pytest.fixture
def executor(collaborators, test_settings) -> PipelineExecutor:
    return PipelineExecutor(collaborators, test_settings)


@pytest.fixture
def worker(test_settings, queue, executor) -> JobWorker:
    return JobWorker(test_settings, queue, executor)


@pytest.fixture
def session_tenant() -> TenantContext:
    return TenantContext(session_id="s1")


@pytest.fixture
def user_tenant() -> TenantContext:
    return TenantContext(user_id="u1")


@pytest.fixture
def app(test_settings, session_factory):
    """Create a test FastAPI application with the test database."""
    app = create_app()

    async def get_test_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_session] = get_test_session

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def user_headers():
    return {"X-User-ID": "u1"}


@pytest.fixture
def session_headers():
    return {"X-Session-ID": "s1"}
