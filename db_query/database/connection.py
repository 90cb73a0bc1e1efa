"""
Database Connection Module - Per-Connection Pool Cache.

This module provides:
- Connection handles for registered databases (URL always masked in output)
- Async SQLAlchemy engines with bounded connection pools, one per name
- Lazy, race-free engine creation and explicit eviction
- Connection health checking on creation
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..config import PoolConfig
from ..errors import DatabaseConnectionError
from .locks import NamedLocks

logger = logging.getLogger(__name__)

# Plain scheme -> async SQLAlchemy driver
ASYNC_DRIVERS = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "mariadb": "mysql+aiomysql",
    "sqlite": "sqlite+aiosqlite",
}

_URL_PATTERN = re.compile(r"^(postgres|postgresql|mysql|mariadb|sqlite)(\+\w+)?://", re.IGNORECASE)
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,100}$")
_PASSWORD_PATTERN = re.compile(r"(://[^:/@]*:)([^@]*)(@)")
_QUERY_PASSWORD_PATTERN = re.compile(r"([?&]password=)[^&]*", re.IGNORECASE)


def _quote_userinfo(url: str) -> str:
    """Percent-encode '@' inside the credentials so the last '@' ends them."""
    scheme, sep, rest = url.partition("://")
    location, qmark, query = rest.partition("?")
    userinfo, at, hostpath = location.rpartition("@")
    if not sep or not at or "@" not in userinfo:
        return url
    return f"{scheme}://{userinfo.replace('@', '%40')}@{hostpath}{qmark}{query}"


def mask_url(url: str) -> str:
    """Replace the password of a connection URL, and any password= query key, with ***."""
    try:
        masked = make_url(_quote_userinfo(url)).render_as_string(hide_password=True)
    except (ArgumentError, ValueError):
        masked = _PASSWORD_PATTERN.sub(r"\1***\3", url)
    return _QUERY_PASSWORD_PATTERN.sub(r"\1***", masked)


def validate_database_url(url: str) -> bool:
    """Check that a URL names a supported database scheme."""
    return bool(url) and bool(_URL_PATTERN.match(url))


def validate_database_name(name: str) -> bool:
    """Names are 1-100 characters of letters, digits, dash and underscore."""
    return bool(name) and bool(_NAME_PATTERN.match(name))


def to_async_url(url: str) -> str:
    """
    Rewrite a plain connection URL to use an async driver.

    URLs that already name a driver (e.g. postgresql+asyncpg://) are kept.
    """
    scheme, sep, rest = url.partition("://")
    if not sep or "+" in scheme:
        return url
    driver = ASYNC_DRIVERS.get(scheme.lower())
    if driver is None:
        return url
    return f"{driver}://{rest}"


def get_backend_name(url: str) -> str:
    """SQLAlchemy backend name ('postgresql', 'mysql', 'sqlite') of a URL."""
    try:
        return make_url(to_async_url(url)).get_backend_name()
    except ArgumentError:
        return url.partition("://")[0].split("+")[0].lower()


@dataclass(frozen=True)
class ConnectionHandle:
    """A registered external database: a unique name and its connection URL."""
    name: str
    url: str = field(repr=False)

    @property
    def masked_url(self) -> str:
        return mask_url(self.url)

    @property
    def backend(self) -> str:
        return get_backend_name(self.url)

    def __repr__(self) -> str:
        return f"ConnectionHandle(name={self.name!r}, url={self.masked_url!r})"


@dataclass
class _PoolEntry:
    url: str
    engine: AsyncEngine


class ConnectionPoolCache:
    """
    Manages one async engine (and so one connection pool) per connection name.

    Lookups are lock-free. Creation takes a per-name lock and re-checks the
    cache, so concurrent first access for one name builds exactly one engine
    while different names never wait on each other.
    """

    def __init__(
        self,
        pool_config: Optional[PoolConfig] = None,
        engine_factory: Callable[..., AsyncEngine] = create_async_engine,
    ):
        """
        Initialize the pool cache.

        Args:
            pool_config: Pool sizing and timeouts. Uses environment defaults if not provided.
            engine_factory: Callable building an AsyncEngine from a URL and options.
        """
        self.config = pool_config or PoolConfig()
        self._engine_factory = engine_factory
        self._entries: Dict[str, _PoolEntry] = {}
        self._locks = NamedLocks()

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, name: str) -> Optional[AsyncEngine]:
        """Return the cached engine for a name without creating one."""
        entry = self._entries.get(name)
        return entry.engine if entry else None

    async def acquire(self, name: str, url: str) -> AsyncEngine:
        """
        Get or create the engine for a connection name.

        Raises:
            DatabaseConnectionError: the database could not be reached in time.
        """
        entry = self._entries.get(name)
        if entry is not None and entry.url == url:
            return entry.engine

        async with self._locks.hold(name):
            entry = self._entries.get(name)
            if entry is not None:
                if entry.url == url:
                    return entry.engine
                logger.info(f"Connection URL for '{name}' changed, replacing its pool")
                await self._dispose(name, self._entries.pop(name))

            engine = await self._create_engine(name, url)
            self._entries[name] = _PoolEntry(url=url, engine=engine)
            return engine

    async def evict(self, name: str) -> bool:
        """
        Remove and dispose the engine for a name.

        Waits for an in-flight acquire of the same name, so an engine being
        built when eviction starts is disposed rather than left cached.

        Returns:
            bool: True if an engine was cached for the name
        """
        async with self._locks.hold(name):
            entry = self._entries.pop(name, None)
            if entry is None:
                return False
            await self._dispose(name, entry)
            return True

    async def close_all(self):
        """Dispose every cached engine, including ones still being created."""
        for name in set(self._entries) | self._locks.names():
            await self.evict(name)

    def _engine_options(self, backend: str) -> dict:
        """
        Build create_async_engine options for each database type.
        """
        cfg = self.config

        if backend == "sqlite":
            # SQLite has no network connect; aiosqlite 'timeout' is the busy timeout
            return {
                "pool_pre_ping": cfg.pool_pre_ping,
                "connect_args": {"timeout": cfg.connect_timeout},
            }

        options = {
            "pool_size": cfg.pool_size,
            "max_overflow": cfg.max_overflow,
            "pool_timeout": cfg.pool_timeout,
            "pool_recycle": cfg.pool_recycle,
            "pool_pre_ping": cfg.pool_pre_ping,
        }
        if backend == "postgresql":
            options["connect_args"] = {"timeout": cfg.connect_timeout}
        elif backend == "mysql":
            options["connect_args"] = {"connect_timeout": int(cfg.connect_timeout)}
        return options

    async def _create_engine(self, name: str, url: str) -> AsyncEngine:
        masked = mask_url(url)
        backend = get_backend_name(url)

        try:
            engine = self._engine_factory(
                to_async_url(url), echo=False, **self._engine_options(backend)
            )
        except (ArgumentError, ImportError, SQLAlchemyError) as e:
            logger.error(f"Could not create engine for '{name}' ({masked}): {e}")
            raise DatabaseConnectionError(
                f"Invalid connection settings for '{name}' ({masked}): {e}"
            ) from e

        try:
            await asyncio.wait_for(self._health_check(engine), timeout=self.config.connect_timeout)
        except asyncio.TimeoutError as e:
            await engine.dispose()
            logger.error(f"Connection to '{name}' ({masked}) timed out")
            raise DatabaseConnectionError(
                f"Connection to '{name}' ({masked}) timed out after {self.config.connect_timeout}s"
            ) from e
        except (SQLAlchemyError, OSError) as e:
            await engine.dispose()
            logger.error(f"Database connection failed for '{name}' ({masked}): {e}")
            raise DatabaseConnectionError(
                f"Connection to '{name}' ({masked}) failed: {e}"
            ) from e

        logger.info(
            f"Created connection pool for '{name}' ({masked}), "
            f"max {self.config.max_connections} connections"
        )
        return engine

    @staticmethod
    async def _health_check(engine: AsyncEngine):
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    @staticmethod
    async def _dispose(name: str, entry: _PoolEntry):
        await entry.engine.dispose()
        logger.info(f"Closed connection pool for '{name}' ({mask_url(entry.url)})")
