"""
Configuration module for the query engine.

This module handles all configuration including:
- Connection pool sizing and timeouts
- Query bounding and execution timeout
- LLM provider settings (OpenAI / Groq)
- Schema cache location and context size
- Logging
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

# Load .env file BEFORE any os.getenv calls
from dotenv import load_dotenv
load_dotenv()


class LLMProvider(Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    GROQ = "groq"


def _expand_home(path: str) -> str:
    return str(Path(path).expanduser())


@dataclass
class PoolConfig:
    """
    Connection pool settings, applied to every per-connection engine.

    max connections per pool = pool_size + max_overflow.
    """
    pool_size: int = field(default_factory=lambda: int(os.getenv("DB_POOL_SIZE", "5")))
    max_overflow: int = field(default_factory=lambda: int(os.getenv("DB_MAX_OVERFLOW", "5")))
    # Seconds to wait for a free connection from the pool
    pool_timeout: float = field(default_factory=lambda: float(os.getenv("DB_POOL_TIMEOUT", "30")))
    # Seconds before a pooled connection is recycled
    pool_recycle: int = field(default_factory=lambda: int(os.getenv("DB_POOL_RECYCLE", "1800")))
    pool_pre_ping: bool = True
    connect_timeout: float = field(default_factory=lambda: float(os.getenv("DB_CONNECT_TIMEOUT", "10")))

    @property
    def max_connections(self) -> int:
        return self.pool_size + self.max_overflow


@dataclass
class QueryConfig:
    """Settings for SQL validation and execution."""

    # LIMIT appended to SELECTs that have none
    default_limit: int = field(default_factory=lambda: int(os.getenv("QUERY_DEFAULT_LIMIT", "1000")))

    # Seconds a single statement may run
    execution_timeout: float = field(default_factory=lambda: float(os.getenv("QUERY_TIMEOUT", "30")))

    # Dialect used when it cannot be derived from a connection URL
    fallback_dialect: str = field(default_factory=lambda: os.getenv("SQL_DIALECT", "postgres"))


@dataclass
class LLMConfig:
    """LLM configuration for natural-language SQL generation."""
    provider: LLMProvider = field(
        default_factory=lambda: LLMProvider(os.getenv("LLM_PROVIDER", "openai").lower())
    )
    # Falls back to OPENAI_API_KEY or GROQ_API_KEY, matching the provider
    api_key: str = field(default_factory=lambda: os.getenv("LLM_API_KEY", ""))
    model: str = field(default_factory=lambda: os.getenv("LLM_MODEL", ""))

    # Optional OpenAI-compatible base URL
    api_url: Optional[str] = field(default_factory=lambda: os.getenv("LLM_API_URL") or None)

    timeout: float = field(default_factory=lambda: float(os.getenv("LLM_TIMEOUT", "60")))

    # Generation parameters
    temperature: float = 0.1  # Low temperature for more deterministic outputs
    max_tokens: int = 1024

    def __post_init__(self):
        if not self.api_key:
            env_var = "GROQ_API_KEY" if self.provider == LLMProvider.GROQ else "OPENAI_API_KEY"
            self.api_key = os.getenv(env_var, "")

    @property
    def model_name(self) -> str:
        if self.model:
            return self.model
        if self.provider == LLMProvider.GROQ:
            return "llama-3.3-70b-versatile"
        return "gpt-4o-mini"

    def is_configured(self) -> bool:
        """Check if LLM is properly configured."""
        return bool(self.api_key)


@dataclass
class SchemaConfig:
    """Schema cache settings."""

    # SQLite file holding cached schema snapshots
    cache_path: str = field(
        default_factory=lambda: _expand_home(
            os.getenv("SCHEMA_CACHE_PATH", "~/.db_query/db_query.db")
        )
    )

    # Upper bound on the schema description sent to the LLM
    max_context_chars: int = field(
        default_factory=lambda: int(os.getenv("SCHEMA_CONTEXT_MAX_CHARS", "8000"))
    )


@dataclass
class LoggingConfig:
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())


class AppConfig:
    """
    Main application configuration aggregator.

    Combines all configuration sections and provides
    validation methods.
    """

    def __init__(self):
        self.pool = PoolConfig()
        self.query = QueryConfig()
        self.llm = LLMConfig()
        self.schema = SchemaConfig()
        self.logging = LoggingConfig()

    def validate(self) -> tuple[bool, List[str]]:
        """
        Validate all configuration settings.

        Returns:
            tuple: (is_valid, list of error messages)
        """
        errors = []

        if self.pool.pool_size < 1:
            errors.append("DB_POOL_SIZE must be at least 1.")
        if self.pool.max_overflow < 0:
            errors.append("DB_MAX_OVERFLOW cannot be negative.")
        if self.pool.connect_timeout <= 0:
            errors.append("DB_CONNECT_TIMEOUT must be positive.")

        if self.query.default_limit < 1:
            errors.append("QUERY_DEFAULT_LIMIT must be at least 1.")
        if self.query.execution_timeout <= 0:
            errors.append("QUERY_TIMEOUT must be positive.")

        if not self.llm.is_configured():
            errors.append(
                f"LLM configuration incomplete for provider: {self.llm.provider.value}. "
                "Natural-language queries will be unavailable until LLM_API_KEY is set."
            )

        return len(errors) == 0, errors

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()


def configure_logging(level: str = "INFO"):
    """Set up root logging in the format used across the package."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
