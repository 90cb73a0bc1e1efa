"""
Query Service - Main orchestrator for the query engine.

Combines all components:
- Connection lookup and pooling
- SQL validation & execution
- Schema introspection & caching
- Natural-language SQL generation
"""

import logging
from typing import Dict, List, Optional

from .config import AppConfig
from .database import (
    ConnectionHandle,
    ConnectionPoolCache,
    QueryExecutor,
    ResultSet,
    SchemaIntrospector,
    SchemaSnapshot,
    SQLiteSchemaStore,
    validate_database_name,
    validate_database_url,
)
from .errors import GenerationError, NotFoundError, QueryEngineError
from .llm import LLMClient, create_llm_client
from .sql import SQLGenerator, SQLValidator, get_sqlglot_dialect
from .sql.validator import DEFAULT_LIMIT

logger = logging.getLogger(__name__)


class StaticConnectionRegistry:
    """
    In-memory name -> URL registry.

    Stands in for the persistent registry owned by the surrounding
    application; the service only ever calls get().
    """

    def __init__(self, connections: Optional[Dict[str, str]] = None):
        self._connections: Dict[str, ConnectionHandle] = {}
        for name, url in (connections or {}).items():
            self.register(name, url)

    def register(self, name: str, url: str) -> ConnectionHandle:
        if not validate_database_name(name):
            raise ValueError(f"Invalid database name: {name!r}")
        if not validate_database_url(url):
            raise ValueError("Invalid database URL format")
        handle = ConnectionHandle(name=name, url=url)
        self._connections[name] = handle
        return handle

    def unregister(self, name: str) -> bool:
        return self._connections.pop(name, None) is not None

    def get(self, name: str) -> Optional[ConnectionHandle]:
        return self._connections.get(name)

    def list(self) -> List[ConnectionHandle]:
        return sorted(self._connections.values(), key=lambda h: h.name)


class QueryService:
    """Runs SQL and natural-language queries against registered connections."""

    def __init__(
        self,
        registry,
        pool_cache: ConnectionPoolCache,
        executor: QueryExecutor,
        introspector: SchemaIntrospector,
        generator: Optional[SQLGenerator] = None,
        default_limit: int = DEFAULT_LIMIT,
        fallback_dialect: str = "postgres"
    ):
        self.registry = registry
        self.pool_cache = pool_cache
        self.executor = executor
        self.introspector = introspector
        self.generator = generator
        self.default_limit = default_limit
        self.fallback_dialect = fallback_dialect
        self._validators: Dict[str, SQLValidator] = {}

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        registry,
        llm_client: Optional[LLMClient] = None
    ) -> "QueryService":
        """Wire every component from application configuration."""
        if llm_client is None and config.llm.is_configured():
            llm_client = create_llm_client(
                config.llm.provider.value,
                api_key=config.llm.api_key,
                model=config.llm.model_name,
                temperature=config.llm.temperature,
                max_tokens=config.llm.max_tokens,
                base_url=config.llm.api_url,
                timeout=config.llm.timeout
            )

        generator = SQLGenerator(
            llm_client=llm_client,
            dialect=config.query.fallback_dialect,
            timeout=config.llm.timeout,
            max_context_chars=config.schema.max_context_chars
        )

        return cls(
            registry=registry,
            pool_cache=ConnectionPoolCache(config.pool),
            executor=QueryExecutor(
                execution_timeout=config.query.execution_timeout,
                connect_timeout=config.pool.connect_timeout
            ),
            introspector=SchemaIntrospector(SQLiteSchemaStore(config.schema.cache_path)),
            generator=generator,
            default_limit=config.query.default_limit,
            fallback_dialect=config.query.fallback_dialect
        )

    def _resolve(self, name: str) -> ConnectionHandle:
        handle = self.registry.get(name)
        if handle is None:
            raise NotFoundError(f"Database '{name}' not found")
        return handle

    def _dialect_for(self, handle: ConnectionHandle) -> str:
        backend = handle.backend
        return get_sqlglot_dialect(backend) if backend else self.fallback_dialect

    def validator_for(self, handle: ConnectionHandle) -> SQLValidator:
        """Validator in the SQL dialect of the connection."""
        dialect = self._dialect_for(handle)
        validator = self._validators.get(dialect)
        if validator is None:
            validator = SQLValidator(dialect=dialect, default_limit=self.default_limit)
            self._validators[dialect] = validator
        return validator

    async def execute_sql(self, name: str, sql: str) -> ResultSet:
        """
        Validate and run user SQL against a registered connection.

        Raises:
            NotFoundError, SQLSyntaxError, NotReadOnlyError,
            DatabaseConnectionError, ExecutionTimeoutError, ExecutionError
        """
        handle = self._resolve(name)
        statement = self.validator_for(handle).validate(sql).unwrap()

        engine = await self.pool_cache.acquire(handle.name, handle.url)
        result = await self.executor.execute(engine, statement)
        logger.info(f"Query on '{name}' returned {result.row_count} rows in {result.execution_time_ms}ms")
        return result

    async def execute_natural_language(self, name: str, prompt: str) -> ResultSet:
        """
        Generate SQL from a prompt, then validate and run it.

        Errors raised after generation carry the generated SQL in
        details["sql"].
        """
        handle = self._resolve(name)
        if self.generator is None:
            raise GenerationError("Natural-language queries are not configured")

        engine = await self.pool_cache.acquire(handle.name, handle.url)
        schema = await self.introspector.fetch(handle.name, engine)
        dialect = self._dialect_for(handle)
        sql = await self.generator.generate(prompt, schema, dialect)

        try:
            statement = self.validator_for(handle).validate(sql).unwrap()
            return await self.executor.execute(engine, statement)
        except QueryEngineError as e:
            e.with_details(sql=sql)
            raise

    async def get_schema(self, name: str, refresh: bool = False) -> SchemaSnapshot:
        """Cached schema for a connection; refresh=True re-reads the catalog."""
        handle = self._resolve(name)
        engine = await self.pool_cache.acquire(handle.name, handle.url)
        return await self.introspector.fetch(handle.name, engine, force_refresh=refresh)

    async def forget_connection(self, name: str):
        """
        Release everything held for a connection.

        Call when its registration is deleted or its URL changes.
        """
        await self.pool_cache.evict(name)
        await self.introspector.invalidate(name)
        logger.info(f"Released resources for '{name}'")

    async def close(self):
        """Dispose all pools and close the schema store."""
        await self.pool_cache.close_all()
        await self.introspector.store.close()
