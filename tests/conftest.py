"""
Shared fixtures: an in-memory SQLite database behind the same session
interface the Postgres connection exposes, plus in-process fakes for Redis and
the completion engine.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import pytest
import pytest_asyncio
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.chat.repository.chat_repository import ChatRepository
from app.chat.repository.message_repository import MessageRepository
from app.memory.repository.memory_repository import MemoryRepository
from app.llm.entity.events import StreamEvent
from app.llm.service.provider.base_provider import ICompletionEngine
from pkg.db_util.sql_alchemy.declarative_base import Base

# Register every table on Base.metadata
from app.chat.repository.sql_schema import conversation as _conversation  # noqa: F401
from app.memory.repository.sql_schema import memory as _memory  # noqa: F401


@pytest_asyncio.fixture
async def get_session():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    sessionmaker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def _get_session():
        session = sessionmaker()
        try:
            yield session
            if session.in_transaction():
                await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    yield _get_session
    await engine.dispose()


@pytest.fixture
def message_repo(get_session) -> MessageRepository:
    return MessageRepository(get_session)


@pytest.fixture
def chat_repo(get_session) -> ChatRepository:
    return ChatRepository(get_session)


@pytest.fixture
def memory_repo(get_session) -> MemoryRepository:
    return MemoryRepository(get_session)


class FakeRedisClient:
    """Dict-backed stand-in for ``pkg.redis.client.RedisClient``."""

    def __init__(self):
        self.store: Dict[str, Any] = {}
        self.expiries: Dict[str, Any] = {}
        self.fail_reads = False

    async def async_get_value(self, key: str, default: Any = None) -> Any:
        if self.fail_reads:
            raise RedisError("connection refused")
        return self.store.get(key, default)

    async def async_set_value(self, key: str, value: Any, expiry=None) -> bool:
        self.store[key] = str(value)
        self.expiries[key] = expiry
        return True


@pytest.fixture
def fake_redis() -> FakeRedisClient:
    return FakeRedisClient()


class ScriptedEngine(ICompletionEngine):
    """Replays a fixed list of events, optionally raising after them."""

    def __init__(self, events: Optional[List[StreamEvent]] = None, error: Optional[Exception] = None,
                 models=("gpt-4o-mini",)):
        self.events = list(events or [])
        self.error = error
        self.models = set(models)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def has_model(self, model: str) -> bool:
        return model in self.models

    async def stream(self, model, messages, system_prompt, tool_context, enable_search=False) -> AsyncIterator[StreamEvent]:
        self.calls.append({
            "model": model,
            "messages": messages,
            "system_prompt": system_prompt,
            "tool_context": tool_context,
            "enable_search": enable_search,
        })
        try:
            for event in self.events:
                yield event
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


@pytest.fixture
def scripted_engine():
    return ScriptedEngine
