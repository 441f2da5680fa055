"""
In-Memory Store Backends: Development and Testing Implementations

Provides in-memory implementations of the store protocols with the same
observable semantics as the MongoDB backends:
- InMemoryBucketStore: day buckets keyed by (user_id, day)
- InMemoryCampaignScanner: distinct-user scan over an InMemoryBucketStore
- InMemoryScheduleStore: flat schedule records keyed by composite id

Design Principles:
    - Full protocol compliance for seamless production swap
    - Each store serializes mutations with an asyncio.Lock, standing in for
      MongoDB's single-document atomicity
    - Validation happens before the lock is taken; invalid input never
      touches stored state

Performance Characteristics:
    - get_day / append / replace: O(1) bucket lookup + O(events)
    - update_event_status: O(buckets for user * events per bucket)
    - distinct_users: O(users with a bucket for the day)
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from commtrack.comms.models import (
    CommEvent,
    DayBucket,
    EventStatus,
    ScheduleRecord,
    UserType,
    make_record_id,
    parse_status,
    parse_user_type,
    require_datetime,
    require_day,
    require_events,
    require_identifier,
    require_user_id,
)
from commtrack.comms.pagination import (
    CampaignPage,
    SegmentPage,
    campaign_page,
    parse_cursor,
    segment_page,
    validate_page_size,
)
from commtrack.core import constants as C
from commtrack.core.config import StoreConfig
from commtrack.core.errors import CommsError, StorageError, ValidationError
from commtrack.core.types import Err, Ok, Result, hour_window, to_millis, utc_hour, utc_now
from commtrack.observability import OperationStats, StructuredLogger
from commtrack.storage.protocols import (
    AppendAck,
    OperationMetadata,
    OperationType,
    ReplaceAck,
)

logger = StructuredLogger("commtrack.storage.memory")


# =============================================================================
# BUCKET STORE
# =============================================================================
class InMemoryBucketStore:
    """
    In-memory day-bucket store.

    Buckets are held per user, then per day, mirroring the (user_id, day)
    unique index.

    Example:
        store = InMemoryBucketStore()
        await store.append_events(42, UserType.PREMIUM, day, [event])
        result = await store.get_day(42, day)
    """

    __slots__ = ("_buckets", "_lock", "_config", "_stats")

    def __init__(self, config: Optional[StoreConfig] = None) -> None:
        self._buckets: Dict[int, Dict[datetime, DayBucket]] = {}
        self._lock = asyncio.Lock()
        self._config = config or StoreConfig()
        self._stats = OperationStats()

    @property
    def stats(self) -> OperationStats:
        return self._stats

    @property
    def config(self) -> StoreConfig:
        return self._config

    async def get_day(
        self,
        user_id: int,
        day: datetime,
    ) -> Result[List[CommEvent], CommsError]:
        try:
            user_id = require_user_id(user_id)
            day = require_day(day)
        except ValidationError as e:
            return Err(e)

        with self._stats.timed("get_day"):
            async with self._lock:
                bucket = self._buckets.get(user_id, {}).get(day)
                return Ok(list(bucket.events) if bucket else [])

    async def append_events(
        self,
        user_id: int,
        user_type: UserType,
        day: datetime,
        events: Sequence[CommEvent],
    ) -> Result[AppendAck, CommsError]:
        try:
            user_id = require_user_id(user_id)
            user_type = parse_user_type(user_type)
            day = require_day(day)
            events = require_events(events)
        except ValidationError as e:
            return Err(e)

        start_ns = time.perf_counter_ns()
        with self._stats.timed("append_events"):
            async with self._lock:
                days = self._buckets.setdefault(user_id, {})
                bucket = days.get(day)
                created = bucket is None
                if created:
                    days[day] = DayBucket.create(
                        user_id, user_type, day, events, self._config.retention_days
                    )
                else:
                    bucket.events.extend(events)
                    bucket.event_count += len(events)

        logger.debug(
            "Events appended",
            user_id=user_id,
            day=day.date().isoformat(),
            count=len(events),
            created_bucket=created,
        )
        return Ok(AppendAck(
            appended=len(events),
            created_bucket=created,
            metadata=OperationMetadata(
                operation=OperationType.APPEND,
                latency_ns=time.perf_counter_ns() - start_ns,
                matched=0 if created else 1,
                modified=0 if created else 1,
                upserted=created,
            ),
        ))

    async def update_event_status(
        self,
        user_id: int,
        dispatch_time: datetime,
        template_id: str,
        tracking_id: str,
        new_status: EventStatus,
    ) -> Result[bool, CommsError]:
        try:
            user_id = require_user_id(user_id)
            dispatch_time = require_datetime(dispatch_time, "dispatch_time")
            require_identifier(template_id, "template_id")
            require_identifier(tracking_id, "tracking_id")
            new_status = parse_status(new_status)
        except ValidationError as e:
            return Err(e)

        with self._stats.timed("update_event_status"):
            async with self._lock:
                days = self._buckets.get(user_id, {})
                # One bucket only, earliest day first; Mongo update_one takes
                # whichever bucket the event_lookup index yields first
                for day in sorted(days):
                    bucket = days[day]
                    hits = [
                        i for i, e in enumerate(bucket.events)
                        if e.matches(dispatch_time, template_id, tracking_id)
                    ]
                    if not hits:
                        continue
                    for i in hits:
                        bucket.events[i] = bucket.events[i].with_status(new_status)
                    logger.debug(
                        "Event status updated",
                        user_id=user_id,
                        status=new_status.value,
                        elements=len(hits),
                    )
                    return Ok(True)
        return Ok(False)

    async def replace_day(
        self,
        user_id: int,
        day: datetime,
        events: Sequence[CommEvent],
        user_type: Optional[UserType] = None,
    ) -> Result[ReplaceAck, CommsError]:
        try:
            user_id = require_user_id(user_id)
            day = require_day(day)
            events = require_events(events, allow_empty=True)
            if user_type is not None:
                user_type = parse_user_type(user_type)
        except ValidationError as e:
            return Err(e)

        start_ns = time.perf_counter_ns()
        with self._stats.timed("replace_day"):
            async with self._lock:
                days = self._buckets.setdefault(user_id, {})
                existing = days.get(day)
                if not events:
                    if existing is not None:
                        del days[day]
                    if not days:
                        del self._buckets[user_id]
                    deleted, created = existing is not None, False
                elif existing is None:
                    days[day] = DayBucket.create(
                        user_id, user_type, day, events, self._config.retention_days
                    )
                    deleted, created = False, True
                else:
                    existing.events = list(events)
                    existing.event_count = len(events)
                    deleted, created = False, False

        logger.debug(
            "Day replaced",
            user_id=user_id,
            day=day.date().isoformat(),
            count=len(events),
            deleted=deleted,
        )
        return Ok(ReplaceAck(
            event_count=len(events),
            created_bucket=created,
            deleted=deleted,
            metadata=OperationMetadata(
                operation=OperationType.DELETE if not events else OperationType.REPLACE,
                latency_ns=time.perf_counter_ns() - start_ns,
                matched=0 if existing is None else 1,
                modified=0 if existing is None else 1,
                upserted=created,
            ),
        ))

    async def list_template_ids(self) -> Result[List[str], CommsError]:
        async with self._lock:
            return Ok(sorted({e.template_id for e in self._iter_events()}))

    async def list_tracking_ids(self) -> Result[List[str], CommsError]:
        async with self._lock:
            return Ok(sorted({e.tracking_id for e in self._iter_events()}))

    async def get_bucket(self, user_id: int, day: datetime) -> Optional[DayBucket]:
        """Copy of the raw bucket, or None. Test and demo helper."""
        async with self._lock:
            bucket = self._buckets.get(user_id, {}).get(require_day(day))
            if bucket is None:
                return None
            return dataclasses.replace(bucket, events=list(bucket.events))

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """
        Drop buckets past expire_at, as the TTL monitor does.

        Returns:
            Number of buckets removed.
        """
        now = to_millis(now) if now else utc_now()
        removed = 0
        async with self._lock:
            for user_id in list(self._buckets):
                days = self._buckets[user_id]
                for day in [d for d, b in days.items() if b.expire_at <= now]:
                    del days[day]
                    removed += 1
                if not days:
                    del self._buckets[user_id]
        return removed

    async def _matching_users(
        self,
        day: datetime,
        start: datetime,
        end: datetime,
        template_id: str,
        tracking_id: str,
        after: Optional[int],
        limit: int,
    ) -> List[int]:
        """Ascending user ids with a matching event in the window, after the cursor."""
        async with self._lock:
            users = sorted(
                user_id
                for user_id, days in self._buckets.items()
                if (after is None or user_id > after)
                and day in days
                and any(
                    start <= e.dispatch_time < end
                    and e.template_id == template_id
                    and e.tracking_id == tracking_id
                    for e in days[day].events
                )
            )
        return users[:limit]

    def _iter_events(self) -> Iterable[CommEvent]:
        for days in self._buckets.values():
            for bucket in days.values():
                yield from bucket.events


# =============================================================================
# CAMPAIGN SCANNER
# =============================================================================
class InMemoryCampaignScanner:
    """Distinct-user campaign scan over an InMemoryBucketStore."""

    __slots__ = ("_store", "_stats")

    def __init__(self, store: InMemoryBucketStore) -> None:
        self._store = store
        self._stats = OperationStats()

    @property
    def stats(self) -> OperationStats:
        return self._stats

    async def distinct_users(
        self,
        day: datetime,
        hour: int,
        template_id: str,
        tracking_id: str,
        last_user_id: Optional[int] = None,
        page_size: int = C.DEFAULT_PAGE_SIZE,
    ) -> Result[CampaignPage, CommsError]:
        size = validate_page_size(page_size, self._store.config.max_page_size)
        if size.is_err():
            return size
        cursor = parse_cursor(last_user_id)
        if cursor.is_err():
            return cursor
        try:
            day = require_day(day)
            start, end = hour_window(day, hour)
            require_identifier(template_id, "template_id")
            require_identifier(tracking_id, "tracking_id")
        except (TypeError, ValueError) as e:
            return Err(ValidationError.invalid_field("hour", hour, str(e)))
        except ValidationError as e:
            return Err(e)

        with self._stats.timed("distinct_users"):
            users = await self._store._matching_users(
                day, start, end, template_id, tracking_id,
                cursor.unwrap(), size.unwrap() + 1,
            )
        return Ok(campaign_page(users, size.unwrap()))


# =============================================================================
# SCHEDULE STORE
# =============================================================================
class InMemoryScheduleStore:
    """
    In-memory flat schedule store keyed by record_id.

    Returned records are copies; mutating them never changes stored state.
    """

    __slots__ = ("_records", "_lock", "_config", "_stats")

    def __init__(self, config: Optional[StoreConfig] = None) -> None:
        self._records: Dict[str, ScheduleRecord] = {}
        self._lock = asyncio.Lock()
        self._config = config or StoreConfig()
        self._stats = OperationStats()

    @property
    def stats(self) -> OperationStats:
        return self._stats

    async def create_record(
        self,
        record: ScheduleRecord,
    ) -> Result[OperationMetadata, CommsError]:
        if not isinstance(record, ScheduleRecord):
            return Err(ValidationError.invalid_field("record", record, "must be a ScheduleRecord"))

        start_ns = time.perf_counter_ns()
        with self._stats.timed("create_record"):
            async with self._lock:
                if record.record_id in self._records:
                    return Err(StorageError.duplicate_key(
                        C.SCHEDULE_COLLECTION, record.record_id
                    ))
                self._records[record.record_id] = dataclasses.replace(record)

        return Ok(OperationMetadata(
            operation=OperationType.INSERT,
            latency_ns=time.perf_counter_ns() - start_ns,
            upserted=True,
        ))

    async def get_eligible_records(
        self,
        user_id: int,
        limit: int = C.ELIGIBLE_RECORDS_LIMIT,
    ) -> Result[List[ScheduleRecord], CommsError]:
        try:
            user_id = require_user_id(user_id)
        except ValidationError as e:
            return Err(e)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            return Err(ValidationError.invalid_field("limit", limit, "must be a positive integer"))

        with self._stats.timed("get_eligible_records"):
            async with self._lock:
                rows = [
                    dataclasses.replace(r)
                    for r in self._records.values()
                    if r.user_id == user_id
                ]
        return Ok(rows[:limit])

    async def get_schedule_segment(
        self,
        tracking_id: str,
        template_id: str,
        planned_date_hour: datetime,
        cursor_user_id: Optional[int] = None,
        page_size: int = C.DEFAULT_PAGE_SIZE,
    ) -> Result[SegmentPage, CommsError]:
        size = validate_page_size(page_size, self._config.max_page_size)
        if size.is_err():
            return size
        cursor = parse_cursor(cursor_user_id)
        if cursor.is_err():
            return cursor
        try:
            require_identifier(tracking_id, "tracking_id")
            require_identifier(template_id, "template_id")
            hour = utc_hour(require_datetime(planned_date_hour, "planned_date_hour"))
        except ValidationError as e:
            return Err(e)

        after = cursor.unwrap()
        with self._stats.timed("get_schedule_segment"):
            async with self._lock:
                user_ids = sorted(
                    r.user_id
                    for r in self._records.values()
                    if r.tracking_id == tracking_id
                    and r.template_id == template_id
                    and r.planned_date_hour == hour
                    and (after is None or r.user_id > after)
                )
        return Ok(segment_page(user_ids[:size.unwrap() + 1], size.unwrap()))

    async def get_user_schedule(
        self,
        user_id: int,
        start: datetime,
        end: datetime,
    ) -> Result[List[ScheduleRecord], CommsError]:
        try:
            user_id = require_user_id(user_id)
            start = require_datetime(start, "start")
            end = require_datetime(end, "end")
        except ValidationError as e:
            return Err(e)
        if end < start:
            return Err(ValidationError.invalid_field("end", end, "must not precede start"))

        with self._stats.timed("get_user_schedule"):
            async with self._lock:
                rows = [
                    dataclasses.replace(r)
                    for r in self._records.values()
                    if r.user_id == user_id and start <= r.planned_date_hour <= end
                ]
        rows.sort(key=lambda r: (-r.final_score, r.planned_date_hour))
        return Ok(rows)

    async def mark_sent(
        self,
        user_id: int,
        tracking_id: str,
        template_id: str,
        when: Optional[datetime] = None,
    ) -> Result[bool, CommsError]:
        try:
            record_id = make_record_id(
                user_id,
                require_identifier(tracking_id, "tracking_id"),
                require_identifier(template_id, "template_id"),
            )
            when = require_datetime(when, "when") if when is not None else utc_now()
        except ValidationError as e:
            return Err(e)

        with self._stats.timed("mark_sent"):
            async with self._lock:
                record = self._records.get(record_id)
                if record is None:
                    return Ok(False)
                record.sent_at = 1
                record.updated_at = when
        logger.debug("Schedule record marked sent", record_id=record_id)
        return Ok(True)
