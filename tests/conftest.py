import asyncio
import sqlite3

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from db_query.config import PoolConfig
from db_query.database import (
    ConnectionPoolCache,
    InMemorySchemaStore,
    QueryExecutor,
    SchemaIntrospector,
)
from db_query.llm import LLMClient, LLMResponse
from db_query.service import QueryService, StaticConnectionRegistry
from db_query.sql import SQLGenerator


USERS_DDL = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT DEFAULT 'n/a'
);
CREATE TABLE orders (
    order_id INTEGER,
    user_id INTEGER,
    total NUMERIC,
    PRIMARY KEY (order_id, user_id)
);
CREATE VIEW user_names AS SELECT name FROM users;
INSERT INTO users (id, name) VALUES (1, 'alice'), (2, 'bob'), (3, 'carol');
"""


class CountingEngineFactory:
    """Wraps create_async_engine and counts how many engines were built."""

    def __init__(self):
        self.calls = 0

    def __call__(self, url, **kwargs):
        self.calls += 1
        return create_async_engine(url, **kwargs)


class FakeLLMClient(LLMClient):
    """Returns a canned reply and records the messages it was sent."""

    def __init__(self, content: str = "", delay: float = 0.0, error: Exception = None):
        self.content = content
        self.delay = delay
        self.error = error
        self.calls = []

    async def chat(self, messages):
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return LLMResponse(content=self.content, total_tokens=42)


class RecordingExecutor(QueryExecutor):
    """QueryExecutor that remembers every statement it ran."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.statements = []

    async def execute(self, engine, sql):
        self.statements.append(sql)
        return await super().execute(engine, sql)


def _create_sqlite(path, script: str = "") -> str:
    conn = sqlite3.connect(path)
    if script:
        conn.executescript(script)
    conn.commit()
    conn.close()
    return f"sqlite:///{path}"


@pytest.fixture
def users_db_path(tmp_path):
    path = tmp_path / "users.db"
    _create_sqlite(path, USERS_DDL)
    return path


@pytest.fixture
def users_db(users_db_path) -> str:
    return f"sqlite:///{users_db_path}"


@pytest.fixture
def empty_db(tmp_path) -> str:
    return _create_sqlite(tmp_path / "empty.db")


@pytest.fixture
def pool_config():
    return PoolConfig(pool_size=2, max_overflow=2, pool_timeout=5, connect_timeout=2)


@pytest.fixture
def engine_factory():
    return CountingEngineFactory()


@pytest_asyncio.fixture
async def pool_cache(pool_config, engine_factory):
    cache = ConnectionPoolCache(pool_config, engine_factory=engine_factory)
    yield cache
    await cache.close_all()


@pytest_asyncio.fixture
async def users_engine(pool_cache, users_db):
    return await pool_cache.acquire("main", users_db)


@pytest.fixture
def llm_factory():
    return FakeLLMClient


@pytest.fixture
def fake_llm():
    return FakeLLMClient(content="SELECT * FROM users")


@pytest.fixture
def executor():
    return RecordingExecutor(execution_timeout=5, connect_timeout=2)


@pytest.fixture
def registry(users_db):
    return StaticConnectionRegistry({"main": users_db, "chat-db": users_db})


@pytest.fixture
def service(registry, pool_cache, executor, fake_llm):
    return QueryService(
        registry=registry,
        pool_cache=pool_cache,
        executor=executor,
        introspector=SchemaIntrospector(InMemorySchemaStore()),
        generator=SQLGenerator(fake_llm, dialect="sqlite", timeout=2),
    )
