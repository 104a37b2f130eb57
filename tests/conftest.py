"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, SQLite in memory)
- HTTP client against the FastAPI app
- A scripted language-model provider
- Test data factories
"""
# settings are read at import time, so the environment goes first
import os
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-twilio-token")
os.environ.setdefault("TWILIO_VALIDATE_SIGNATURE", "false")
os.environ.setdefault("FLOOD_BACKEND", "memory")

import pytest
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from steambot.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from steambot.core.exceptions import ModelProviderError
from steambot.db.database import Base, get_db
from steambot.db.models.conversation import Channel, Conversation
from steambot.db.models.knowledge_entry import KnowledgeCategory, KnowledgeEntry
from steambot.domain.services.flood_monitor import FloodMonitor, set_flood_monitor
from steambot.domain.services.model_client import Completion, ModelInvoker, ModelProvider
from steambot.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    import steambot.db.models  # noqa: F401

    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Fresh circuit breakers and flood window for every test"""
    CircuitBreaker.reset_all()
    set_flood_monitor(FloodMonitor())
    yield
    CircuitBreaker.reset_all()
    set_flood_monitor(None)


# ============================================================================
# Language model
# ============================================================================

class ScriptedProvider(ModelProvider):
    """
    Provider returning queued replies in order.

    A queued exception is raised instead of returned. Once the queue is
    empty the default reply is used.
    """

    def __init__(self, *replies, default: str = "Happy to help! What would you like to know?"):
        self.replies = list(replies)
        self.default = default
        self.calls: list[dict] = []

    async def complete(self, system_prompt: str, messages: list[dict]) -> Completion:
        self.calls.append({"system_prompt": system_prompt, "messages": messages})
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return Completion(text=reply, input_tokens=120, output_tokens=40)


def make_invoker(provider: ModelProvider, retry_delays=(1, 2, 4)) -> ModelInvoker:
    """Invoker with its own breaker and a no-op sleep"""
    return ModelInvoker(
        provider,
        retry_delays=retry_delays,
        timeout_seconds=5,
        circuit_breaker=CircuitBreaker("model-test", CircuitBreakerConfig(failure_threshold=5)),
        sleep=AsyncMock(),
    )


@pytest.fixture
def scripted_provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def provider_factory():
    return ScriptedProvider


@pytest.fixture
def model_invoker(scripted_provider: ScriptedProvider) -> ModelInvoker:
    return make_invoker(scripted_provider)


@pytest.fixture
def patched_model(model_invoker: ModelInvoker):
    """Route the HTTP app's chat pipeline to the scripted provider"""
    with patch(
        "steambot.domain.services.chat_service.get_model_invoker",
        return_value=model_invoker,
    ):
        yield model_invoker.provider


@pytest.fixture
def invoker_factory():
    """make_invoker for tests that need their own provider or delay schedule"""
    return make_invoker


@pytest.fixture
def rate_limited_error():
    def _make() -> ModelProviderError:
        return ModelProviderError(ModelProviderError.RATE_LIMITED, "rate limited", status_code=429)
    return _make


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def knowledge_factory(db_session: AsyncSession):
    """Factory for creating knowledge base entries"""
    async def _create_entry(
        title: str = "Robotics Club",
        content: str = "Weekly LEGO robotics sessions for ages 7-10.",
        category: KnowledgeCategory = KnowledgeCategory.PROGRAMS,
        is_active: bool = True,
    ) -> KnowledgeEntry:
        entry = KnowledgeEntry(
            category=category,
            title=title,
            content=content,
            is_active=is_active,
        )
        db_session.add(entry)
        await db_session.commit()
        await db_session.refresh(entry)
        return entry

    return _create_entry


@pytest.fixture
def conversation_factory(db_session: AsyncSession):
    """Factory for creating conversations"""
    async def _create_conversation(
        session_id: str = "web_test-session",
        channel: Channel = Channel.WEB,
        **fields,
    ) -> Conversation:
        conversation = Conversation(session_id=session_id, channel=channel, **fields)
        db_session.add(conversation)
        await db_session.commit()
        await db_session.refresh(conversation)
        return conversation

    return _create_conversation
