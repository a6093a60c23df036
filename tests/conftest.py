"""Pytest configuration and fixtures for Fortunia tests.

Test isolation strategy:
- Every test gets a fresh in-memory SQLite database (StaticPool, so the
  threadpool workers used by request handlers share one connection)
- Storage, entitlements and the model are in-process doubles
- Auth uses MockJwtVerifier with a locally generated RSA keypair
- Time is pinned through FakeClock
"""

import os

# Settings are read at import time by fortunia.celery; pin them before any import.
os.environ["FORTUNIA_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SUPABASE_JWKS_URL"] = "http://localhost:54321/auth/v1/.well-known/jwks.json"
os.environ["SUPABASE_ISSUER"] = "test-issuer"
os.environ["SUPABASE_AUDIENCES"] = "test-audience"
os.environ.pop("FORTUNIA_INTERNAL_SECRET", None)
os.environ.pop("REDIS_URL", None)

from collections.abc import Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fortunia.app import create_app
from fortunia.config import Settings, clear_settings_cache
from fortunia.container import Services, build_services
from fortunia.db.models import Base
from fortunia.db.session import create_session_factory
from fortunia.services.entitlements import InMemoryEntitlementStore
from fortunia.services.llm import InferenceClient
from fortunia.storage.client import FakeStorageClient
from tests.helpers import TAROT_TEXT, make_settings
from tests.support.fakes import FakeClock, ScriptedAdapter, no_sleep
from tests.support.mock_verifier import MockJwtVerifier


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None, None, None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database with the full schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def storage() -> FakeStorageClient:
    return FakeStorageClient()


@pytest.fixture
def test_verifier() -> MockJwtVerifier:
    """Provide a test token verifier."""
    return MockJwtVerifier()


@pytest.fixture
def entitlements(clock: FakeClock) -> InMemoryEntitlementStore:
    return InMemoryEntitlementStore(default_limit=3, clock=clock)


@pytest.fixture
def adapter() -> ScriptedAdapter:
    """Model double; tests replace its script as needed."""
    return ScriptedAdapter(TAROT_TEXT)


@pytest.fixture
def inference(adapter: ScriptedAdapter) -> InferenceClient:
    return InferenceClient(
        adapter,
        api_key="test-gemini-key",
        model_name="gemini-test",
        max_attempts=3,
        attempt_timeout_s=5.0,
        sleep=no_sleep,
    )


@pytest.fixture
def httpx_client() -> httpx.AsyncClient:
    """Create an httpx AsyncClient for testing (mock with respx)."""
    return httpx.AsyncClient()


@pytest.fixture
def services(
    settings: Settings,
    httpx_client: httpx.AsyncClient,
    test_verifier: MockJwtVerifier,
    session_factory: sessionmaker[Session],
    storage: FakeStorageClient,
    entitlements: InMemoryEntitlementStore,
    inference: InferenceClient,
    clock: FakeClock,
) -> Services:
    """Production wiring with in-process collaborators."""
    return build_services(
        settings,
        http_client=httpx_client,
        token_verifier=test_verifier,
        session_factory=session_factory,
        storage=storage,
        entitlements=entitlements,
        inference=inference,
        clock=clock,
    )


@pytest.fixture
def client(services: Services) -> Generator[TestClient, None, None]:
    """FastAPI test client over the in-process service container."""
    app = create_app(services=services, log_requests=False)
    with TestClient(app) as client:
        yield client
