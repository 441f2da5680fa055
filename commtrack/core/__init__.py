"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the data layer:
- Result/Either monads for zero-exception control flow
- UTC day/hour bucketing helpers
- Error hierarchy separating validation, storage and query failures
- Configuration management with validation
"""

from commtrack.core.types import (
    Result,
    Ok,
    Err,
    ensure_utc,
    to_millis,
    utc_day,
    utc_hour,
    hour_window,
    utc_now,
)
from commtrack.core.errors import (
    ErrorCode,
    CommsError,
    ValidationError,
    StorageError,
    QueryError,
    ConfigurationError,
)
from commtrack.core.config import (
    CommsConfig,
    MongoConfig,
    StoreConfig,
    ObservabilityConfig,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "ensure_utc",
    "to_millis",
    "utc_day",
    "utc_hour",
    "hour_window",
    "utc_now",
    "ErrorCode",
    "CommsError",
    "ValidationError",
    "StorageError",
    "QueryError",
    "ConfigurationError",
    "CommsConfig",
    "MongoConfig",
    "StoreConfig",
    "ObservabilityConfig",
]
