"""
Communication Records: Day Buckets, Events and Flat Schedule Records

Two document kinds, each a statically-typed record validated at the store
boundary:

- DayBucket: one document per (user_id, UTC day) holding an embedded,
  ordered array of CommEvent. The bucket is the unit of atomic update.
- ScheduleRecord: one flat document per (user_id, tracking_id, template_id)
  whose composite key doubles as the document _id, so uniqueness of the
  triple needs no secondary unique index.

Document Layout (day bucket):
    {
        "user_id": 1042,
        "user_type": "premium",
        "day": ISODate("2024-05-01T00:00:00Z"),
        "event_count": 2,
        "expire_at": ISODate("2024-05-08T00:00:00Z"),
        "events": [
            {"dispatch_time": ISODate(...), "template_id": "template_003",
             "tracking_id": "track_007", "content_score": 0.82, "status": "sent"},
            ...
        ]
    }
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from commtrack.core import constants as C
from commtrack.core.errors import ValidationError
from commtrack.core.types import to_millis, utc_day, utc_hour, utc_now


# =============================================================================
# ENUMERATIONS
# =============================================================================
class UserType(Enum):
    """Subscription tier; fixed when a user's first bucket is created."""
    PREMIUM = "premium"
    STANDARD = "standard"
    TRIAL = "trial"


class EventStatus(Enum):
    """Delivery state of a single communication."""
    SENT = "sent"
    OPENED = "opened"
    CLICKED = "clicked"
    FAILED = "failed"
    REPLACED = "replaced"


# =============================================================================
# FIELD VALIDATION
# =============================================================================
def require_user_id(value: Any, field_name: str = "user_id") -> int:
    """
    Check a user id is a non-negative integer.

    bool is rejected even though it subclasses int.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError.invalid_field(field_name, value, "must be an integer")
    if value < 0:
        raise ValidationError.invalid_field(field_name, value, "must be non-negative")
    return value


def require_identifier(value: Any, field_name: str) -> str:
    """Check a template/tracking id is a non-empty string."""
    if not isinstance(value, str):
        raise ValidationError.invalid_field(field_name, value, "must be a string")
    if not value.strip():
        raise ValidationError.missing_field(field_name)
    return value


def require_datetime(value: Any, field_name: str) -> datetime:
    """Accept a datetime or an ISO-8601 string; return UTC, millisecond precision."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError.invalid_field(field_name, value, str(e)) from e
    if not isinstance(value, datetime):
        raise ValidationError.invalid_field(field_name, value, "must be a datetime")
    return to_millis(value)


def require_day(value: Any, field_name: str = "day") -> datetime:
    """Accept a date, datetime or ISO-8601 string; return UTC midnight."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return utc_day(value)
    if isinstance(value, str) and len(value.strip()) == 10:
        try:
            return utc_day(date.fromisoformat(value.strip()))
        except ValueError as e:
            raise ValidationError.invalid_field(field_name, value, str(e)) from e
    return utc_day(require_datetime(value, field_name))


def require_score(value: Any, field_name: str, unit_interval: bool = True) -> float:
    """Check a finite float, optionally constrained to [0, 1]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError.invalid_field(field_name, value, "must be a number")
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise ValidationError.invalid_field(field_name, value, "must be finite")
    if unit_interval and not 0.0 <= value <= 1.0:
        raise ValidationError.invalid_field(field_name, value, "must be in [0, 1]")
    return value


def _parse_enum(enum_cls: type[Enum], value: Any, field_name: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError.invalid_field(
            field_name, value, f"must be one of: {allowed}"
        ) from e


def parse_status(value: Any) -> EventStatus:
    return _parse_enum(EventStatus, value, "status")


def parse_user_type(value: Any) -> UserType:
    return _parse_enum(UserType, value, "user_type")


# =============================================================================
# COMMUNICATION EVENT
# =============================================================================
@dataclass(frozen=True, slots=True)
class CommEvent:
    """
    Single communication dispatched to a user.

    (dispatch_time, template_id, tracking_id) identifies an event within a
    user's buckets for status updates.
    """
    dispatch_time: datetime
    template_id: str
    tracking_id: str
    content_score: float
    status: EventStatus = EventStatus.SENT

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "dispatch_time", require_datetime(self.dispatch_time, "dispatch_time")
        )
        require_identifier(self.template_id, "template_id")
        require_identifier(self.tracking_id, "tracking_id")
        object.__setattr__(
            self, "content_score", require_score(self.content_score, "content_score")
        )
        object.__setattr__(self, "status", parse_status(self.status))

    def matches(
        self,
        dispatch_time: datetime,
        template_id: str,
        tracking_id: str,
    ) -> bool:
        """Full-tuple match used by status updates."""
        return (
            self.dispatch_time == to_millis(dispatch_time)
            and self.template_id == template_id
            and self.tracking_id == tracking_id
        )

    def with_status(self, status: EventStatus) -> CommEvent:
        return dataclasses.replace(self, status=status)

    def to_document(self) -> dict[str, Any]:
        return {
            "dispatch_time": self.dispatch_time,
            "template_id": self.template_id,
            "tracking_id": self.tracking_id,
            "content_score": self.content_score,
            "status": self.status.value,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> CommEvent:
        """
        Build from a stored document or a request payload.

        Raises:
            ValidationError: On missing or malformed fields.
        """
        if not isinstance(doc, Mapping):
            raise ValidationError.malformed_document("event", "not a mapping")
        for key in ("dispatch_time", "template_id", "tracking_id"):
            if key not in doc:
                raise ValidationError.missing_field(key)
        return cls(
            dispatch_time=doc["dispatch_time"],
            template_id=doc["template_id"],
            tracking_id=doc["tracking_id"],
            content_score=doc.get("content_score", 0.0),
            status=doc.get("status", EventStatus.SENT.value),
        )


def events_from_documents(docs: Iterable[Mapping[str, Any]]) -> list[CommEvent]:
    return [CommEvent.from_document(doc) for doc in docs]


def require_events(events: Any, allow_empty: bool = False) -> list[CommEvent]:
    """
    Check an event batch.

    Raises:
        ValidationError: If events is not a sequence of CommEvent, or is
            empty when allow_empty is False.
    """
    if isinstance(events, (str, bytes, Mapping)) or not isinstance(events, Iterable):
        raise ValidationError.invalid_field("events", events, "must be a list of events")
    events = list(events)
    if not events and not allow_empty:
        raise ValidationError.missing_field("events")
    for event in events:
        if not isinstance(event, CommEvent):
            raise ValidationError.invalid_field("events", event, "must contain CommEvent items")
    return events


# =============================================================================
# DAY BUCKET
# =============================================================================
@dataclass
class DayBucket:
    """
    All of one user's communications for one UTC day.

    Invariants:
        - day is UTC midnight
        - event_count == len(events)
        - expire_at == day + retention window
        - never stored with an empty events array
    """
    user_id: int
    day: datetime
    user_type: Optional[UserType]
    expire_at: datetime
    events: list[CommEvent] = field(default_factory=list)
    event_count: int = 0

    @classmethod
    def create(
        cls,
        user_id: int,
        user_type: Optional[UserType],
        day: datetime,
        events: Iterable[CommEvent],
        retention_days: int = C.RETENTION_DAYS,
    ) -> DayBucket:
        day = utc_day(day)
        events = list(events)
        return cls(
            user_id=require_user_id(user_id),
            day=day,
            user_type=user_type,
            expire_at=expiry_for(day, retention_days),
            events=events,
            event_count=len(events),
        )

    @property
    def key(self) -> tuple[int, datetime]:
        return (self.user_id, self.day)

    def to_document(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_type": self.user_type.value if self.user_type else None,
            "day": self.day,
            "event_count": self.event_count,
            "expire_at": self.expire_at,
            "events": [e.to_document() for e in self.events],
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> DayBucket:
        """
        Validate and convert a stored bucket.

        Raises:
            ValidationError: If the document shape is wrong.
        """
        try:
            user_type = doc.get("user_type")
            return cls(
                user_id=require_user_id(doc["user_id"]),
                day=utc_day(require_datetime(doc["day"], "day")),
                user_type=parse_user_type(user_type) if user_type is not None else None,
                expire_at=require_datetime(doc["expire_at"], "expire_at"),
                events=events_from_documents(doc.get("events", [])),
                event_count=int(doc.get("event_count", 0)),
            )
        except KeyError as e:
            raise ValidationError.malformed_document("bucket", f"missing {e}", cause=e) from e


def expiry_for(day: datetime, retention_days: int = C.RETENTION_DAYS) -> datetime:
    """TTL timestamp for a bucket."""
    return utc_day(day) + timedelta(days=retention_days)


# =============================================================================
# FLAT SCHEDULE RECORD
# =============================================================================
def make_record_id(user_id: int, tracking_id: str, template_id: str) -> str:
    """
    Composite primary key for a schedule record.

    Example:
        >>> make_record_id(42, "track_001", "template_003")
        '42:track_001:template_003'
    """
    return C.RECORD_KEY_SEPARATOR.join(
        (str(require_user_id(user_id)), tracking_id, template_id)
    )


@dataclass
class ScheduleRecord:
    """
    One scheduled send of one template of one campaign to one user.

    final_score ranks a user's schedule; relevance_score is an independent
    dimension kept for downstream consumers and never used for ordering.
    """
    user_id: int
    tracking_id: str
    template_id: str
    planned_date_hour: datetime
    final_score: float
    relevance_score: float
    dispatch_time: tuple[datetime, ...]
    content_end_time: datetime
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    sent_at: int = 0

    def __post_init__(self) -> None:
        require_user_id(self.user_id)
        require_identifier(self.tracking_id, "tracking_id")
        require_identifier(self.template_id, "template_id")
        self.planned_date_hour = utc_hour(
            require_datetime(self.planned_date_hour, "planned_date_hour")
        )
        self.final_score = require_score(self.final_score, "final_score", unit_interval=False)
        self.relevance_score = require_score(
            self.relevance_score, "relevance_score", unit_interval=False
        )
        attempts = tuple(require_datetime(t, "dispatch_time") for t in self.dispatch_time)
        if len(attempts) != C.DISPATCH_ATTEMPTS:
            raise ValidationError.invalid_field(
                "dispatch_time", attempts,
                f"must hold exactly {C.DISPATCH_ATTEMPTS} attempts",
            )
        if list(attempts) != sorted(attempts):
            raise ValidationError.invalid_field("dispatch_time", attempts, "must be ascending")
        self.dispatch_time = attempts
        self.content_end_time = require_datetime(self.content_end_time, "content_end_time")
        self.created_at = require_datetime(self.created_at, "created_at")
        self.updated_at = require_datetime(self.updated_at, "updated_at")
        if self.sent_at not in (0, 1):
            raise ValidationError.invalid_field("sent_at", self.sent_at, "must be 0 or 1")

    @property
    def record_id(self) -> str:
        return make_record_id(self.user_id, self.tracking_id, self.template_id)

    def to_document(self) -> dict[str, Any]:
        return {
            "_id": self.record_id,
            "user_id": self.user_id,
            "tracking_id": self.tracking_id,
            "template_id": self.template_id,
            "planned_date_hour": self.planned_date_hour,
            "final_score": self.final_score,
            "relevance_score": self.relevance_score,
            "dispatch_time": list(self.dispatch_time),
            "content_end_time": self.content_end_time,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "sent_at": self.sent_at,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> ScheduleRecord:
        try:
            return cls(
                user_id=doc["user_id"],
                tracking_id=doc["tracking_id"],
                template_id=doc["template_id"],
                planned_date_hour=doc["planned_date_hour"],
                final_score=doc["final_score"],
                relevance_score=doc["relevance_score"],
                dispatch_time=tuple(doc["dispatch_time"]),
                content_end_time=doc["content_end_time"],
                created_at=doc["created_at"],
                updated_at=doc["updated_at"],
                sent_at=doc.get("sent_at", 0),
            )
        except KeyError as e:
            raise ValidationError.malformed_document("schedule", f"missing {e}", cause=e) from e
