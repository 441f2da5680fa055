"""
Configuration Management for the Communications-Tracking Data Layer

Type-safe, immutable configuration dataclasses.

Design Principles:
------------------
1. **Immutability**: All configs are frozen to prevent runtime mutation
2. **Validation**: Pre-conditions checked at construction time
3. **Defaults**: Sensible defaults for development; explicit for production
4. **Environment**: Loaded from environment variables via from_env()
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from commtrack.core import constants as C
from commtrack.core.errors import ConfigurationError
from commtrack.core.types import Err, Ok, Result


def _env_bool(raw: str, default: bool) -> bool:
    val = raw.strip().lower()
    if val in ("true", "1", "yes"):
        return True
    if val in ("false", "0", "no"):
        return False
    return default


# =============================================================================
# MONGODB CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class MongoConfig:
    """
    MongoDB connection configuration.

    Attributes:
        uri: Connection string (mongodb:// or mongodb+srv://).
        database: Database holding both collections.
        bucket_collection: Day-bucket collection name.
        schedule_collection: Flat schedule collection name.
        max_pool_size: Connection pool size. Must be > 0.
        connect_timeout_ms: TCP connection timeout in milliseconds.
        server_selection_timeout_ms: How long to wait for a usable server.
        operation_timeout_ms: Server-side maxTimeMS applied to reads and
            aggregations. 0 disables it.
        app_name: Reported to the server for log attribution.

    Example:
        >>> config = MongoConfig.from_env()
        >>> config = MongoConfig(uri="mongodb://db.internal:27017")
    """
    uri: str = "mongodb://localhost:27017"
    database: str = C.DEFAULT_DATABASE
    bucket_collection: str = C.BUCKET_COLLECTION
    schedule_collection: str = C.SCHEDULE_COLLECTION
    max_pool_size: int = C.MONGO_POOL_MAX
    connect_timeout_ms: int = C.MONGO_CONNECT_TIMEOUT_MS
    server_selection_timeout_ms: int = C.MONGO_SERVER_SELECTION_TIMEOUT_MS
    operation_timeout_ms: int = C.MONGO_OPERATION_TIMEOUT_MS
    app_name: str = "commtrack"

    def __post_init__(self) -> None:
        """
        Validate configuration invariants.

        Raises:
            ValueError: If any invariant is violated.
        """
        if not self.uri.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError(f"uri must start with mongodb:// or mongodb+srv://, got {self.uri!r}")
        if not self.database:
            raise ValueError("database must be non-empty")
        if self.bucket_collection == self.schedule_collection:
            raise ValueError("bucket and schedule collections must differ")
        if self.max_pool_size <= 0:
            raise ValueError(f"max_pool_size must be > 0, got {self.max_pool_size}")
        if self.connect_timeout_ms <= 0:
            raise ValueError(f"connect_timeout_ms must be > 0, got {self.connect_timeout_ms}")
        if self.server_selection_timeout_ms <= 0:
            raise ValueError(
                f"server_selection_timeout_ms must be > 0, got {self.server_selection_timeout_ms}"
            )
        if self.operation_timeout_ms < 0:
            raise ValueError(f"operation_timeout_ms must be >= 0, got {self.operation_timeout_ms}")

    @classmethod
    def from_env(cls, prefix: str = "MONGO") -> "MongoConfig":
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_URI: Connection string (default: mongodb://localhost:27017)
        - {prefix}_DB_NAME: Database name; falls back to DB_NAME
        - {prefix}_BUCKET_COLLECTION / {prefix}_SCHEDULE_COLLECTION
        - {prefix}_MAX_POOL_SIZE
        - {prefix}_CONNECT_TIMEOUT_MS / {prefix}_SERVER_SELECTION_TIMEOUT_MS
        - {prefix}_OPERATION_TIMEOUT_MS
        - {prefix}_APP_NAME

        Raises:
            ValueError: On unparsable integers or invalid values.
        """
        def _get(key: str, default: str = "") -> str:
            return os.environ.get(f"{prefix}_{key}", default)

        def _get_int(key: str, default: int) -> int:
            val = _get(key)
            return int(val) if val else default

        return cls(
            uri=_get("URI", "mongodb://localhost:27017"),
            database=_get("DB_NAME") or os.environ.get("DB_NAME", C.DEFAULT_DATABASE),
            bucket_collection=_get("BUCKET_COLLECTION", C.BUCKET_COLLECTION),
            schedule_collection=_get("SCHEDULE_COLLECTION", C.SCHEDULE_COLLECTION),
            max_pool_size=_get_int("MAX_POOL_SIZE", C.MONGO_POOL_MAX),
            connect_timeout_ms=_get_int("CONNECT_TIMEOUT_MS", C.MONGO_CONNECT_TIMEOUT_MS),
            server_selection_timeout_ms=_get_int(
                "SERVER_SELECTION_TIMEOUT_MS", C.MONGO_SERVER_SELECTION_TIMEOUT_MS
            ),
            operation_timeout_ms=_get_int("OPERATION_TIMEOUT_MS", C.MONGO_OPERATION_TIMEOUT_MS),
            app_name=_get("APP_NAME", "commtrack"),
        )

    def get_client_kwargs(self) -> Dict[str, Any]:
        """
        Generate kwargs for pymongo's AsyncMongoClient.

        tz_aware is always on: every datetime leaving the store is UTC-aware.
        """
        return {
            "host": self.uri,
            "maxPoolSize": self.max_pool_size,
            "connectTimeoutMS": self.connect_timeout_ms,
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
            "appname": self.app_name,
            "tz_aware": True,
        }

    @property
    def redacted_uri(self) -> str:
        """URI with credentials stripped, safe for logs."""
        scheme, sep, rest = self.uri.partition("://")
        if "@" in rest:
            rest = rest.split("@", 1)[1]
        return f"{scheme}{sep}{rest}"


# =============================================================================
# STORE BEHAVIOUR
# =============================================================================
@dataclass(frozen=True, slots=True)
class StoreConfig:
    """Behavioural knobs shared by all backends."""

    retention_days: int = C.RETENTION_DAYS
    default_page_size: int = C.DEFAULT_PAGE_SIZE
    max_page_size: int = C.MAX_PAGE_SIZE
    eligible_limit: int = C.ELIGIBLE_RECORDS_LIMIT
    # Run explain("executionStats") before hot queries and warn on COLLSCAN
    explain_queries: bool = False

    def __post_init__(self) -> None:
        if self.retention_days <= 0:
            raise ValueError(f"retention_days must be > 0, got {self.retention_days}")
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError(
                f"default_page_size must be in [1, {self.max_page_size}], "
                f"got {self.default_page_size}"
            )
        if self.eligible_limit <= 0:
            raise ValueError(f"eligible_limit must be > 0, got {self.eligible_limit}")


@dataclass(frozen=True, slots=True)
class ObservabilityConfig:
    """Logging configuration."""

    log_level: str = "INFO"
    log_json: bool = True


# =============================================================================
# ROOT CONFIGURATION
# =============================================================================
@dataclass(frozen=True)
class CommsConfig:
    """Root configuration for the data layer."""

    mongo: Optional[MongoConfig] = None  # None selects in-memory backends
    store: StoreConfig = field(default_factory=StoreConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def for_development(cls) -> CommsConfig:
        """In-memory backends, human-readable logs."""
        return cls(observability=ObservabilityConfig(log_level="DEBUG", log_json=False))

    @classmethod
    def from_env(cls) -> Result[CommsConfig, ConfigurationError]:
        """
        Load configuration from environment variables.

        MongoDB is selected when MONGO_URI is set. Store knobs use the
        COMMTRACK_ prefix, e.g. COMMTRACK_RETENTION_DAYS.
        """
        try:
            mongo = MongoConfig.from_env() if os.getenv("MONGO_URI") else None

            store = StoreConfig(
                retention_days=int(os.getenv("COMMTRACK_RETENTION_DAYS", str(C.RETENTION_DAYS))),
                default_page_size=int(
                    os.getenv("COMMTRACK_DEFAULT_PAGE_SIZE", str(C.DEFAULT_PAGE_SIZE))
                ),
                max_page_size=int(os.getenv("COMMTRACK_MAX_PAGE_SIZE", str(C.MAX_PAGE_SIZE))),
                eligible_limit=int(
                    os.getenv("COMMTRACK_ELIGIBLE_LIMIT", str(C.ELIGIBLE_RECORDS_LIMIT))
                ),
                explain_queries=_env_bool(os.getenv("COMMTRACK_EXPLAIN_QUERIES", ""), False),
            )

            observability = ObservabilityConfig(
                log_level=os.getenv("COMMTRACK_LOG_LEVEL", "INFO").upper(),
                log_json=_env_bool(os.getenv("COMMTRACK_LOG_JSON", ""), True),
            )

            return Ok(cls(mongo=mongo, store=store, observability=observability))
        except (ValueError, TypeError) as e:
            return Err(ConfigurationError.invalid(str(e)))

    def validate(self) -> Result[None, ConfigurationError]:
        """Validate cross-field invariants."""
        if self.observability.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return Err(ConfigurationError.invalid(
                f"unknown log level {self.observability.log_level!r}"
            ))
        return Ok(None)
