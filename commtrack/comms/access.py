"""
Query Access Layer: Validated Entry Points over the Stores

The only surface callers use. Each operation:
1. Parses loosely-typed request values (ints or digit strings, ISO dates,
   event dicts, status names)
2. Rejects malformed input with ValidationError/QueryError before any
   store access
3. Delegates to the store and returns its Result unchanged

Data flows one way: caller -> CommsAccessLayer -> store -> Result.

Usage:
    stores = create_stores()
    access = CommsAccessLayer.from_stores(stores)

    await access.append_events("42", "premium", "2024-05-01", [
        {"dispatch_time": "2024-05-01T08:00:00Z", "template_id": "template_001",
         "tracking_id": "track_001", "content_score": 0.8},
    ])
    page = (await access.campaign_distinct_users(
        "2024-05-01", 8, "template_001", "track_001",
    )).unwrap()
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from commtrack.comms.models import (
    CommEvent,
    ScheduleRecord,
    parse_status,
    parse_user_type,
    require_datetime,
    require_day,
    require_identifier,
)
from commtrack.comms.pagination import (
    CampaignPage,
    SegmentPage,
    is_digits,
    parse_cursor,
    validate_page_size,
)
from commtrack.core.config import StoreConfig
from commtrack.core.errors import CommsError, QueryError, ValidationError
from commtrack.core.types import Err, Result
from commtrack.observability import StructuredLogger
from commtrack.storage.protocols import (
    AppendAck,
    BucketStoreProtocol,
    CampaignScannerProtocol,
    OperationMetadata,
    ReplaceAck,
    ScheduleStoreProtocol,
)

logger = StructuredLogger("commtrack.comms.access")


# =============================================================================
# INPUT PARSING
# =============================================================================
def parse_user_id(value: Any, field_name: str = "user_id") -> int:
    """
    Accept an int or a string of digits.

    Raises:
        ValidationError: On anything else, or a negative id.
    """
    if value is None or value == "":
        raise ValidationError.missing_field(field_name)
    if isinstance(value, bool):
        raise ValidationError.invalid_field(field_name, value, "must be an integer")
    if isinstance(value, str):
        text = value.strip()
        if not is_digits(text):
            raise ValidationError.invalid_field(field_name, value, "must be an integer")
        return int(text)
    if not isinstance(value, int):
        raise ValidationError.invalid_field(field_name, value, "must be an integer")
    if value < 0:
        raise ValidationError.invalid_field(field_name, value, "must be non-negative")
    return value


def parse_hour(value: Any) -> int:
    """Hour of day, 0..23, as int or digit string."""
    if isinstance(value, str) and is_digits(value.strip()):
        value = int(value.strip())
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 23:
        raise ValidationError.invalid_field("hour", value, "must be an integer in [0, 23]")
    return value


def parse_events(raw: Any) -> list[CommEvent]:
    """Event batch from CommEvent instances or mappings."""
    if raw is None:
        raise ValidationError.missing_field("events")
    if isinstance(raw, (str, bytes, Mapping)) or not isinstance(raw, Iterable):
        raise ValidationError.invalid_field("events", raw, "must be a list of events")
    events = []
    for item in raw:
        if isinstance(item, CommEvent):
            events.append(item)
        else:
            events.append(CommEvent.from_document(item))
    return events


def parse_required(value: Any, field_name: str) -> str:
    if value is None:
        raise ValidationError.missing_field(field_name)
    return require_identifier(value, field_name)


# =============================================================================
# ACCESS LAYER
# =============================================================================
class CommsAccessLayer:
    """
    Validating facade over the bucket, campaign and schedule stores.

    Every method returns Result[T, CommsError]; nothing raises for bad
    input.
    """

    __slots__ = ("_buckets", "_campaigns", "_schedules", "_config")

    def __init__(
        self,
        buckets: BucketStoreProtocol,
        campaigns: CampaignScannerProtocol,
        schedules: ScheduleStoreProtocol,
        config: Optional[StoreConfig] = None,
    ) -> None:
        self._buckets = buckets
        self._campaigns = campaigns
        self._schedules = schedules
        self._config = config or StoreConfig()

    @classmethod
    def from_stores(cls, stores: Any, config: Optional[StoreConfig] = None) -> CommsAccessLayer:
        """Build from a commtrack.storage.Stores bundle."""
        return cls(stores.buckets, stores.campaigns, stores.schedules, config)

    def _page_size(self, value: Any) -> Result[int, QueryError]:
        if value is None or value == "":
            return validate_page_size(self._config.default_page_size, self._config.max_page_size)
        if isinstance(value, str) and is_digits(value.strip()):
            value = int(value.strip())
        return validate_page_size(value, self._config.max_page_size)

    @staticmethod
    def _rejected(operation: str, error: CommsError) -> Err[CommsError]:
        logger.info("Request rejected", operation=operation, error_code=error.code.name)
        return Err(error.with_context(operation=operation))

    # -------------------------------------------------------------------------
    # DAY BUCKETS
    # -------------------------------------------------------------------------

    async def get_day(self, user_id: Any, day: Any) -> Result[list[CommEvent], CommsError]:
        """All events for a user on one UTC day; [] if none."""
        try:
            uid = parse_user_id(user_id)
            parsed_day = require_day(day)
        except ValidationError as e:
            return self._rejected("get_day", e)
        with StructuredLogger.context(operation="get_day", user_id=uid):
            return await self._buckets.get_day(uid, parsed_day)

    async def append_events(
        self,
        user_id: Any,
        user_type: Any,
        day: Any,
        events: Any,
    ) -> Result[AppendAck, CommsError]:
        """
        Append a non-empty event batch to the user's day bucket.

        Not idempotent; do not retry blindly after an ambiguous failure.
        """
        try:
            uid = parse_user_id(user_id)
            if user_type is None:
                raise ValidationError.missing_field("user_type")
            parsed_type = parse_user_type(user_type)
            parsed_day = require_day(day)
            parsed = parse_events(events)
            if not parsed:
                raise ValidationError.missing_field("events")
        except ValidationError as e:
            return self._rejected("append_events", e)
        with StructuredLogger.context(operation="append_events", user_id=uid):
            return await self._buckets.append_events(uid, parsed_type, parsed_day, parsed)

    async def update_event_status(
        self,
        user_id: Any,
        dispatch_time: Any,
        template_id: Any,
        tracking_id: Any,
        new_status: Any,
    ) -> Result[bool, CommsError]:
        """
        Set one event's status. Ok(False) means no event matched.

        Idempotent: repeating the call leaves the same state.
        """
        try:
            uid = parse_user_id(user_id)
            if dispatch_time is None:
                raise ValidationError.missing_field("dispatch_time")
            when = require_datetime(dispatch_time, "dispatch_time")
            tpl = parse_required(template_id, "template_id")
            trk = parse_required(tracking_id, "tracking_id")
            if new_status is None:
                raise ValidationError.missing_field("status")
            status = parse_status(new_status)
        except ValidationError as e:
            return self._rejected("update_event_status", e)
        with StructuredLogger.context(operation="update_event_status", user_id=uid):
            result = await self._buckets.update_event_status(uid, when, tpl, trk, status)
            if result.is_ok() and not result.unwrap():
                logger.info("No matching event", template_id=tpl, tracking_id=trk)
            return result

    async def replace_day(
        self,
        user_id: Any,
        day: Any,
        events: Any,
        user_type: Any = None,
    ) -> Result[ReplaceAck, CommsError]:
        """
        Overwrite a day's events. An empty list deletes the bucket.

        Destructive and last-write-wins.
        """
        try:
            uid = parse_user_id(user_id)
            parsed_day = require_day(day)
            parsed = parse_events(events)
            parsed_type = parse_user_type(user_type) if user_type is not None else None
        except ValidationError as e:
            return self._rejected("replace_day", e)
        with StructuredLogger.context(operation="replace_day", user_id=uid):
            return await self._buckets.replace_day(uid, parsed_day, parsed, parsed_type)

    async def list_template_ids(self) -> Result[list[str], CommsError]:
        return await self._buckets.list_template_ids()

    async def list_tracking_ids(self) -> Result[list[str], CommsError]:
        return await self._buckets.list_tracking_ids()

    # -------------------------------------------------------------------------
    # CAMPAIGN SCAN
    # -------------------------------------------------------------------------

    async def campaign_distinct_users(
        self,
        day: Any,
        hour: Any,
        template_id: Any,
        tracking_id: Any,
        last_user_id: Any = None,
        page_size: Any = None,
    ) -> Result[CampaignPage, CommsError]:
        """
        One page of distinct users with a matching event in the hour window.

        Pass the previous page's next_cursor as last_user_id to continue.
        """
        size = self._page_size(page_size)
        if size.is_err():
            return self._rejected("campaign_distinct_users", size.error)
        cursor = parse_cursor(last_user_id)
        if cursor.is_err():
            return self._rejected("campaign_distinct_users", cursor.error)
        try:
            parsed_day = require_day(day)
            parsed_hour = parse_hour(hour)
            tpl = parse_required(template_id, "template_id")
            trk = parse_required(tracking_id, "tracking_id")
        except ValidationError as e:
            return self._rejected("campaign_distinct_users", e)
        with StructuredLogger.context(operation="campaign_distinct_users"):
            return await self._campaigns.distinct_users(
                parsed_day, parsed_hour, tpl, trk,
                last_user_id=cursor.unwrap(),
                page_size=size.unwrap(),
            )

    # -------------------------------------------------------------------------
    # FLAT SCHEDULE
    # -------------------------------------------------------------------------

    async def create_schedule_record(
        self,
        record: ScheduleRecord,
    ) -> Result[OperationMetadata, CommsError]:
        return await self._schedules.create_record(record)

    async def get_eligible_records(
        self,
        user_id: Any,
        limit: Any = None,
    ) -> Result[list[ScheduleRecord], CommsError]:
        """Up to `limit` (default 100) records for a user, no ordering guarantee."""
        try:
            uid = parse_user_id(user_id)
            cap = self._config.eligible_limit if limit is None else parse_user_id(limit, "limit")
            if cap == 0:
                raise ValidationError.invalid_field("limit", limit, "must be positive")
        except ValidationError as e:
            return self._rejected("get_eligible_records", e)
        with StructuredLogger.context(operation="get_eligible_records", user_id=uid):
            return await self._schedules.get_eligible_records(uid, cap)

    async def get_schedule_segment(
        self,
        tracking_id: Any,
        template_id: Any,
        planned_date_hour: Any,
        cursor_user_id: Any = None,
        page_size: Any = None,
    ) -> Result[SegmentPage, CommsError]:
        """One page of a (tracking, template, hour) segment in ascending user_id."""
        size = self._page_size(page_size)
        if size.is_err():
            return self._rejected("get_schedule_segment", size.error)
        cursor = parse_cursor(cursor_user_id)
        if cursor.is_err():
            return self._rejected("get_schedule_segment", cursor.error)
        try:
            trk = parse_required(tracking_id, "tracking_id")
            tpl = parse_required(template_id, "template_id")
            if planned_date_hour is None:
                raise ValidationError.missing_field("planned_date_hour")
            hour = require_datetime(planned_date_hour, "planned_date_hour")
        except ValidationError as e:
            return self._rejected("get_schedule_segment", e)
        with StructuredLogger.context(operation="get_schedule_segment"):
            return await self._schedules.get_schedule_segment(
                trk, tpl, hour,
                cursor_user_id=cursor.unwrap(),
                page_size=size.unwrap(),
            )

    async def get_user_schedule(
        self,
        user_id: Any,
        start: Any,
        end: Any,
    ) -> Result[list[ScheduleRecord], CommsError]:
        """Records with planned_date_hour in [start, end], best final_score first."""
        try:
            uid = parse_user_id(user_id)
            if start is None:
                raise ValidationError.missing_field("start")
            if end is None:
                raise ValidationError.missing_field("end")
            lo = require_datetime(start, "start")
            hi = require_datetime(end, "end")
        except ValidationError as e:
            return self._rejected("get_user_schedule", e)
        with StructuredLogger.context(operation="get_user_schedule", user_id=uid):
            return await self._schedules.get_user_schedule(uid, lo, hi)

    async def mark_sent(
        self,
        user_id: Any,
        tracking_id: Any,
        template_id: Any,
        when: Optional[datetime] = None,
    ) -> Result[bool, CommsError]:
        try:
            uid = parse_user_id(user_id)
            trk = parse_required(tracking_id, "tracking_id")
            tpl = parse_required(template_id, "template_id")
        except ValidationError as e:
            return self._rejected("mark_sent", e)
        return await self._schedules.mark_sent(uid, trk, tpl, when)
