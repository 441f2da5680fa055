"""
Core Type Definitions for the Communications-Tracking Data Layer

Implements Result/Either monads for zero-exception control flow and the
time-bucketing primitives every store agrees on.

Design Principles:
- Never use null for absence (use Optional or Result)
- All timestamps are timezone-aware UTC
- Timestamps carry millisecond precision, matching BSON dates, so that a
  value read back from the store compares equal to the value written

Complexity: O(1) for all type operations
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    TypeVar,
    Union,
)

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for successful store results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries a structured error (see commtrack.core.errors) so callers can
    tell validation, storage and query failures apart.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            The wrapped error if it is an exception, RuntimeError otherwise.
        """
        if isinstance(self.error, BaseException):
            raise self.error
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        """No-op on error variant - propagates error unchanged."""
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIME BUCKETING
# =============================================================================
ONE_HOUR = timedelta(hours=1)
ONE_DAY = timedelta(days=1)


def ensure_utc(value: datetime) -> datetime:
    """
    Coerce a datetime to UTC.

    Naive datetimes are interpreted as UTC (the driver returns naive UTC
    values unless tz_aware is enabled).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_millis(value: datetime) -> datetime:
    """Truncate to millisecond precision (BSON date resolution)."""
    value = ensure_utc(value)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utc_day(value: datetime | date) -> datetime:
    """
    Truncate to UTC midnight.

    This is the bucket key: every bucket's `day` is produced here.
    """
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    value = ensure_utc(value)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def utc_hour(value: datetime) -> datetime:
    """Truncate to the start of the UTC hour."""
    value = ensure_utc(value)
    return value.replace(minute=0, second=0, microsecond=0)


def hour_window(day: datetime | date, hour: int) -> tuple[datetime, datetime]:
    """
    Half-open one-hour window [start, end) inside a UTC day.

    Raises:
        ValueError: If hour is not an int in 0..23.
    """
    if isinstance(hour, bool) or not isinstance(hour, int) or not 0 <= hour <= 23:
        raise ValueError(f"hour must be an integer in [0, 23], got {hour!r}")
    start = utc_day(day) + timedelta(hours=hour)
    return start, start + ONE_HOUR


def utc_now() -> datetime:
    """Current time, UTC, millisecond precision."""
    return to_millis(datetime.now(timezone.utc))
