"""Shared test fixtures for backend tests."""

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ADMIN_KEY", "test-admin-key")
os.environ.setdefault("SERVER_HMAC_SECRET", "test-hmac-secret")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import worksy.models  # noqa: F401
from worksy.database import Base
from worksy.main import app
from worksy.api.deps import (
    get_clock,
    get_completion_client,
    get_db,
    get_fingerprint_engine,
    get_index_storage,
    get_policy_gate,
)
from worksy.models import Assignment
from worksy.services.chat_service import ChatService
from worksy.services.completion import CompletionResult
from worksy.services.errors import UpstreamError
from worksy.services.fingerprint import FingerprintEngine
from worksy.services.index_builder import IndexBuilder
from worksy.services.policy import PolicyGate
from worksy.services.rate_limiter import SlidingWindowRateLimiter
from worksy.services.session_service import SessionService

HMAC_SECRET = "test-hmac-secret"
ADMIN_KEY = "test-admin-key"


# ── Fakes ────────────────────────────────────────────────────────────────────

class FakeClock:
    """Controllable wall clock (datetime) and monotonic clock (float seconds)."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return self.now.timestamp()

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeCompletion:
    def __init__(self, text: str = "Let's start by outlining your argument."):
        self.text = text
        self.calls: list[dict] = []
        self.fail = False

    async def complete(self, *, model, system_prompt, message, max_tokens):
        self.calls.append(
            {"model": model, "system_prompt": system_prompt, "message": message, "max_tokens": max_tokens}
        )
        if self.fail:
            raise UpstreamError()
        return CompletionResult(text=self.text, model=model, prompt_tokens=12, completion_tokens=30)


class FakeStorage:
    def __init__(self):
        self.objects: dict[str, bytes] = {}

    def upload(self, key: str, data: bytes, content_type: str = "application/json") -> str:
        self.objects[key] = data
        return key

    def signed_url(self, key: str, expires: int | None = None) -> str:
        return f"https://storage.test/ai-index/{key}?signature=abc"


# ── Database ─────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy own BEGIN so SAVEPOINT (audit writes) behaves on sqlite
    @event.listens_for(test_engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    TestSession = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with TestSession() as session:
        yield session


# ── Services ─────────────────────────────────────────────────────────────────

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def fingerprint_engine() -> FingerprintEngine:
    return FingerprintEngine(HMAC_SECRET)


@pytest.fixture
def gate(clock) -> PolicyGate:
    return PolicyGate(SlidingWindowRateLimiter(clock=clock.monotonic))


@pytest.fixture
def session_service(db_session, clock) -> SessionService:
    return SessionService(db_session, clock)


@pytest.fixture
def chat_service(db_session, gate, completion, clock) -> ChatService:
    return ChatService(db_session, gate, completion, clock)


@pytest.fixture
def index_builder(db_session, fingerprint_engine, storage, clock) -> IndexBuilder:
    return IndexBuilder(db_session, fingerprint_engine, storage, clock)


@pytest.fixture
def make_assignment(db_session, clock):
    async def _make(**overrides) -> Assignment:
        fields = {
            "module_code": "BIO1001",
            "title": "Demo Coursework",
            "mode": "amber",
            "prompt_cap": 100,
            "output_token_cap": 500,
            "input_token_cap": 1000,
            "rate_limit_n": 100,
            "rate_limit_window_s": 10,
            "due_at": clock.now + timedelta(days=30),
            "model": "qwen3:8b",
        }
        fields.update(overrides)
        assignment = Assignment(**fields)
        db_session.add(assignment)
        await db_session.flush()
        return assignment
    return _make


# ── HTTP clients ─────────────────────────────────────────────────────────────

def _override_db(session: AsyncSession):
    """Create a dependency override for get_db."""
    async def _get_db():
        yield session
    return _get_db


@pytest_asyncio.fixture
async def client(db_session, gate, completion, storage, fingerprint_engine, clock) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the student surface, wired to the test collaborators."""
    app.dependency_overrides[get_db] = _override_db(db_session)
    app.dependency_overrides[get_policy_gate] = lambda: gate
    app.dependency_overrides[get_completion_client] = lambda: completion
    app.dependency_overrides[get_index_storage] = lambda: storage
    app.dependency_overrides[get_fingerprint_engine] = lambda: fingerprint_engine
    app.dependency_overrides[get_clock] = lambda: clock
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin_client(client) -> AsyncGenerator[AsyncClient, None]:
    """Same app, authenticated with the admin key header."""
    client.headers["X-Admin-Key"] = ADMIN_KEY
    yield client
