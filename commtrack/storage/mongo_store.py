"""
MongoDB Stores
==============

Production implementations of the store protocols on pymongo's asyncio
API (AsyncMongoClient, pymongo >= 4.13).

Design Principles:
------------------
1. **Single-Document Atomicity**: every mutation is one update_one /
   delete_one / insert_one; no multi-document transactions
2. **Server-Side Filtering**: arrayFilters rewrite matching elements in
   place, so a status update never reads the bucket first
3. **Keyset Pagination**: `user_id > cursor` plus limit + 1, served by the
   index, never skip()
4. **Result Monad**: driver exceptions are mapped to StorageError with the
   original exception kept as `cause`; nothing is retried here

Algorithmic Complexity:
-----------------------
| Operation            | Index            | Work                         |
|----------------------|------------------|------------------------------|
| get_day              | user_day         | 1 document                   |
| append_events        | user_day         | 1 document upsert            |
| update_event_status  | event_lookup     | 1 document, k array elements |
| replace_day          | user_day         | 1 document upsert            |
| distinct_users       | campaign_window  | O(page_size) index keys      |
| get_schedule_segment | schedule_segment | O(page_size) index keys      |
| get_user_schedule    | user_schedule_esr| O(records in range)          |
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    OperationFailure,
    PyMongoError,
    WriteError,
)

from commtrack.comms import queries as Q
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
from commtrack.core.types import Err, Ok, Result, hour_window, to_millis, utc_now
from commtrack.observability import OperationStats, StructuredLogger
from commtrack.storage.connection import MongoConnection
from commtrack.storage.plan import QueryPlan
from commtrack.storage.protocols import (
    AppendAck,
    OperationMetadata,
    OperationType,
    ReplaceAck,
)

logger = StructuredLogger("commtrack.storage.mongo")


def map_driver_error(
    operation: str,
    error: PyMongoError,
    collection: str = "",
    target: str = "",
    timeout_ms: int = 0,
) -> StorageError:
    """
    Translate a pymongo exception into a StorageError.

    Order matters: DuplicateKeyError is a WriteError is an OperationFailure,
    and NetworkTimeout is a ConnectionFailure.
    """
    if isinstance(error, DuplicateKeyError):
        key = (error.details or {}).get("keyValue")
        return StorageError.duplicate_key(collection or operation, key, cause=error)
    if isinstance(error, (ExecutionTimeout, NetworkTimeout)):
        return StorageError.timeout(operation, timeout_ms, cause=error)
    if isinstance(error, ConnectionFailure):
        return StorageError.connection_failed(target or operation, cause=error)
    if isinstance(error, WriteError):
        return StorageError.write_failed(operation, str(error), cause=error)
    if isinstance(error, OperationFailure):
        return StorageError.operation_failed(operation, error)
    return StorageError.operation_failed(operation, error)


# =============================================================================
# SHARED PLUMBING
# =============================================================================
class _MongoStoreBase:
    """Collection lookup, error mapping and optional plan inspection."""

    __slots__ = ("_connection", "_config", "_collection_name", "_stats")

    def __init__(
        self,
        connection: MongoConnection,
        collection_name: str,
        config: Optional[StoreConfig] = None,
    ) -> None:
        self._connection = connection
        self._collection_name = collection_name
        self._config = config or StoreConfig()
        self._stats = OperationStats()

    @property
    def stats(self) -> OperationStats:
        return self._stats

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def _max_time_ms(self) -> Optional[int]:
        return self._connection.config.operation_timeout_ms or None

    def _collection(self, operation: str) -> Result[Any, StorageError]:
        if not self._connection.is_connected:
            return Err(StorageError.not_connected(operation))
        return self._connection.collection(self._collection_name)

    def _fail(self, operation: str, error: PyMongoError) -> Err[StorageError]:
        mapped = map_driver_error(
            operation,
            error,
            collection=self._collection_name,
            target=self._connection.config.redacted_uri,
            timeout_ms=self._connection.config.operation_timeout_ms,
        )
        logger.error(
            "Store operation failed",
            operation=operation,
            collection=self._collection_name,
            error_code=mapped.code.name,
            error=str(error),
        )
        return Err(mapped)

    def _report_plan(self, operation: str, explain: Dict[str, Any]) -> QueryPlan:
        plan = QueryPlan.from_explain(explain)
        if plan.is_collection_scan:
            self._stats.collection_scans += 1
            logger.warning("Collection scan on hot path", operation=operation, **plan.to_log_fields())
        else:
            logger.debug("Query plan", operation=operation, **plan.to_log_fields())
        return plan

    async def _explain_find(self, collection: Any, operation: str, spec: Q.FindSpec) -> None:
        if not self._config.explain_queries:
            return
        try:
            cursor = collection.find(
                spec.filter, spec.projection, sort=spec.sort or None, limit=spec.limit
            )
            self._report_plan(operation, await cursor.explain())
        except PyMongoError as e:
            logger.warning("Explain failed", operation=operation, error=str(e))

    async def _explain_aggregate(
        self,
        collection: Any,
        operation: str,
        pipeline: List[Dict[str, Any]],
    ) -> None:
        if not self._config.explain_queries:
            return
        try:
            explain = await collection.database.command({
                "explain": {"aggregate": collection.name, "pipeline": pipeline, "cursor": {}},
                "verbosity": "executionStats",
            })
            self._report_plan(operation, explain)
        except PyMongoError as e:
            logger.warning("Explain failed", operation=operation, error=str(e))

    async def _find(self, collection: Any, operation: str, spec: Q.FindSpec) -> List[Dict[str, Any]]:
        await self._explain_find(collection, operation, spec)
        cursor = collection.find(
            spec.filter,
            spec.projection,
            sort=spec.sort or None,
            limit=spec.limit,
            max_time_ms=self._max_time_ms,
        )
        return await cursor.to_list(None)


# =============================================================================
# BUCKET STORE
# =============================================================================
class MongoBucketStore(_MongoStoreBase):
    """
    Day-bucket store on MongoDB.

    Example:
        >>> async with MongoConnection(MongoConfig.from_env()) as conn:
        ...     store = MongoBucketStore(conn)
        ...     await store.append_events(42, UserType.PREMIUM, day, events)
    """

    __slots__ = ()

    def __init__(
        self,
        connection: MongoConnection,
        config: Optional[StoreConfig] = None,
    ) -> None:
        super().__init__(connection, connection.config.bucket_collection, config)

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
        coll = self._collection("get_day")
        if coll.is_err():
            return coll

        try:
            with self._stats.timed("get_day"):
                await self._explain_find(
                    coll.unwrap(), "get_day", Q.FindSpec(filter=Q.bucket_key(user_id, day))
                )
                doc = await coll.unwrap().find_one(
                    Q.bucket_key(user_id, day), max_time_ms=self._max_time_ms
                )
        except PyMongoError as e:
            return self._fail("get_day", e)

        if doc is None:
            return Ok([])
        try:
            return Ok(DayBucket.from_document(doc).events)
        except ValidationError as e:
            logger.error("Malformed bucket document", user_id=user_id, error=e.message)
            return Err(e)

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
        coll = self._collection("append_events")
        if coll.is_err():
            return coll

        spec = Q.append_events_update(
            user_id, user_type, day, events, self._config.retention_days
        )
        start_ns = time.perf_counter_ns()
        try:
            with self._stats.timed("append_events"):
                res = await coll.unwrap().update_one(spec.filter, spec.update, upsert=True)
        except PyMongoError as e:
            return self._fail("append_events", e)

        created = res.upserted_id is not None
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
                matched=res.matched_count,
                modified=res.modified_count,
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
        coll = self._collection("update_event_status")
        if coll.is_err():
            return coll

        spec = Q.status_update(user_id, dispatch_time, template_id, tracking_id, new_status)
        try:
            with self._stats.timed("update_event_status"):
                res = await coll.unwrap().update_one(
                    spec.filter, spec.update, array_filters=spec.array_filters
                )
        except PyMongoError as e:
            return self._fail("update_event_status", e)

        logger.debug(
            "Event status update",
            user_id=user_id,
            status=new_status.value,
            matched=res.matched_count,
            modified=res.modified_count,
        )
        return Ok(res.matched_count > 0)

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
        coll = self._collection("replace_day")
        if coll.is_err():
            return coll

        start_ns = time.perf_counter_ns()
        try:
            with self._stats.timed("replace_day"):
                if not events:
                    res = await coll.unwrap().delete_one(Q.bucket_key(user_id, day))
                    metadata = OperationMetadata(
                        operation=OperationType.DELETE,
                        latency_ns=time.perf_counter_ns() - start_ns,
                        matched=res.deleted_count,
                        modified=res.deleted_count,
                    )
                    ack = ReplaceAck(0, False, res.deleted_count > 0, metadata)
                else:
                    spec = Q.replace_day_update(
                        user_id, day, events, self._config.retention_days, user_type
                    )
                    res = await coll.unwrap().update_one(spec.filter, spec.update, upsert=True)
                    created = res.upserted_id is not None
                    metadata = OperationMetadata(
                        operation=OperationType.REPLACE,
                        latency_ns=time.perf_counter_ns() - start_ns,
                        matched=res.matched_count,
                        modified=res.modified_count,
                        upserted=created,
                    )
                    ack = ReplaceAck(len(events), created, False, metadata)
        except PyMongoError as e:
            return self._fail("replace_day", e)

        logger.debug(
            "Day replaced",
            user_id=user_id,
            day=day.date().isoformat(),
            count=ack.event_count,
            deleted=ack.deleted,
        )
        return Ok(ack)

    async def list_template_ids(self) -> Result[List[str], CommsError]:
        return await self._distinct("events.template_id", "list_template_ids")

    async def list_tracking_ids(self) -> Result[List[str], CommsError]:
        return await self._distinct("events.tracking_id", "list_tracking_ids")

    async def _distinct(self, key: str, operation: str) -> Result[List[str], CommsError]:
        coll = self._collection(operation)
        if coll.is_err():
            return coll
        try:
            with self._stats.timed(operation):
                kwargs = {"maxTimeMS": self._max_time_ms} if self._max_time_ms else {}
                values = await coll.unwrap().distinct(key, **kwargs)
        except PyMongoError as e:
            return self._fail(operation, e)
        return Ok(sorted(v for v in values if isinstance(v, str)))


# =============================================================================
# CAMPAIGN SCANNER
# =============================================================================
class MongoCampaignScanner(_MongoStoreBase):
    """Distinct-user campaign scan via an aggregation over the bucket collection."""

    __slots__ = ()

    def __init__(
        self,
        connection: MongoConnection,
        config: Optional[StoreConfig] = None,
    ) -> None:
        super().__init__(connection, connection.config.bucket_collection, config)

    async def distinct_users(
        self,
        day: datetime,
        hour: int,
        template_id: str,
        tracking_id: str,
        last_user_id: Optional[int] = None,
        page_size: int = C.DEFAULT_PAGE_SIZE,
    ) -> Result[CampaignPage, CommsError]:
        size = validate_page_size(page_size, self._config.max_page_size)
        if size.is_err():
            return size
        cursor = parse_cursor(last_user_id)
        if cursor.is_err():
            return cursor
        try:
            day = require_day(day)
            hour_window(day, hour)
            require_identifier(template_id, "template_id")
            require_identifier(tracking_id, "tracking_id")
        except (TypeError, ValueError) as e:
            return Err(ValidationError.invalid_field("hour", hour, str(e)))
        except ValidationError as e:
            return Err(e)
        coll = self._collection("distinct_users")
        if coll.is_err():
            return coll

        pipeline = Q.campaign_pipeline(
            day, hour, template_id, tracking_id, size.unwrap(), cursor.unwrap()
        )
        try:
            with self._stats.timed("distinct_users"):
                await self._explain_aggregate(coll.unwrap(), "distinct_users", pipeline)
                kwargs = {"maxTimeMS": self._max_time_ms} if self._max_time_ms else {}
                result = await coll.unwrap().aggregate(pipeline, **kwargs)
                rows = await result.to_list(None)
        except PyMongoError as e:
            return self._fail("distinct_users", e)

        return Ok(campaign_page([row["_id"] for row in rows], size.unwrap()))


# =============================================================================
# SCHEDULE STORE
# =============================================================================
class MongoScheduleStore(_MongoStoreBase):
    """Flat schedule records; the composite key is the document _id."""

    __slots__ = ()

    def __init__(
        self,
        connection: MongoConnection,
        config: Optional[StoreConfig] = None,
    ) -> None:
        super().__init__(connection, connection.config.schedule_collection, config)

    async def create_record(
        self,
        record: ScheduleRecord,
    ) -> Result[OperationMetadata, CommsError]:
        if not isinstance(record, ScheduleRecord):
            return Err(ValidationError.invalid_field("record", record, "must be a ScheduleRecord"))
        coll = self._collection("create_record")
        if coll.is_err():
            return coll

        start_ns = time.perf_counter_ns()
        try:
            with self._stats.timed("create_record"):
                await coll.unwrap().insert_one(record.to_document())
        except DuplicateKeyError as e:
            return Err(StorageError.duplicate_key(self._collection_name, record.record_id, cause=e))
        except PyMongoError as e:
            return self._fail("create_record", e)

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
        return await self._find_records(
            "get_eligible_records", Q.eligible_records_find(user_id, limit)
        )

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
            planned = require_datetime(planned_date_hour, "planned_date_hour")
        except ValidationError as e:
            return Err(e)

        coll = self._collection("get_schedule_segment")
        if coll.is_err():
            return coll

        spec = Q.schedule_segment_find(
            tracking_id, template_id, planned, size.unwrap(), cursor.unwrap()
        )
        try:
            with self._stats.timed("get_schedule_segment"):
                docs = await self._find(coll.unwrap(), "get_schedule_segment", spec)
        except PyMongoError as e:
            return self._fail("get_schedule_segment", e)
        return Ok(segment_page([d["user_id"] for d in docs], size.unwrap()))

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
        return await self._find_records(
            "get_user_schedule", Q.user_schedule_find(user_id, start, end)
        )

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
        coll = self._collection("mark_sent")
        if coll.is_err():
            return coll

        spec = Q.mark_sent_update(record_id, to_millis(when))
        try:
            with self._stats.timed("mark_sent"):
                res = await coll.unwrap().update_one(spec.filter, spec.update)
        except PyMongoError as e:
            return self._fail("mark_sent", e)
        return Ok(res.matched_count > 0)

    async def _find_records(
        self,
        operation: str,
        spec: Q.FindSpec,
    ) -> Result[List[ScheduleRecord], CommsError]:
        coll = self._collection(operation)
        if coll.is_err():
            return coll
        try:
            with self._stats.timed(operation):
                docs = await self._find(coll.unwrap(), operation, spec)
        except PyMongoError as e:
            return self._fail(operation, e)
        try:
            return Ok([ScheduleRecord.from_document(d) for d in docs])
        except ValidationError as e:
            logger.error("Malformed schedule document", operation=operation, error=e.message)
            return Err(e)
