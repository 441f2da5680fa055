"""
Store Protocol Definitions: Backend-Neutral Contracts

Structural subtyping protocols (PEP 544) implemented by both the in-memory
and MongoDB backends:
- BucketStoreProtocol: per-user day buckets with embedded event arrays
- CampaignScannerProtocol: distinct users matching a campaign hour window
- ScheduleStoreProtocol: flat per-schedule-record documents

Design Principles:
    - Zero-exception control flow via Result[T, CommsError]
    - Async-first; every method is a coroutine
    - Not-found is a value (empty list / False), never an error

Complexity Analysis:
    - Bucket reads and writes: single document, O(events in bucket)
    - Campaign scan: O(page_size) index entries per page
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol, Sequence, runtime_checkable

from commtrack.comms.models import CommEvent, EventStatus, ScheduleRecord, UserType
from commtrack.comms.pagination import CampaignPage, SegmentPage
from commtrack.core import constants as C
from commtrack.core.errors import CommsError
from commtrack.core.types import Result


# =============================================================================
# OPERATION TYPE
# =============================================================================
class OperationType(Enum):
    """Store operation types for logging and metrics."""
    READ = "read"
    APPEND = "append"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    INSERT = "insert"
    SCAN = "scan"


# =============================================================================
# OPERATION RESULT METADATA
# =============================================================================
@dataclass(frozen=True, slots=True)
class OperationMetadata:
    """
    Metadata returned with write acknowledgements.

    Counts mirror the driver's UpdateResult fields.
    """
    operation: OperationType
    latency_ns: int
    matched: int = 0
    modified: int = 0
    upserted: bool = False

    @property
    def latency_ms(self) -> float:
        return self.latency_ns / 1_000_000


@dataclass(frozen=True, slots=True)
class AppendAck:
    """Acknowledgement of an append."""
    appended: int
    created_bucket: bool
    metadata: OperationMetadata


@dataclass(frozen=True, slots=True)
class ReplaceAck:
    """Acknowledgement of a replace. deleted is set for replace-to-empty."""
    event_count: int
    created_bucket: bool
    deleted: bool
    metadata: OperationMetadata


# =============================================================================
# BUCKET STORE
# =============================================================================
@runtime_checkable
class BucketStoreProtocol(Protocol):
    """
    Day-bucket store.

    Example:
        store = InMemoryBucketStore()
        await store.append_events(42, UserType.PREMIUM, day, [event])
        events = (await store.get_day(42, day)).unwrap()
    """

    @abstractmethod
    async def get_day(
        self,
        user_id: int,
        day: datetime,
    ) -> Result[list[CommEvent], CommsError]:
        """
        Events for one user and UTC day, in stored order.

        Returns:
            Ok([]) when no bucket exists.
        """
        ...

    @abstractmethod
    async def append_events(
        self,
        user_id: int,
        user_type: UserType,
        day: datetime,
        events: Sequence[CommEvent],
    ) -> Result[AppendAck, CommsError]:
        """
        Append events, creating the bucket on first write.

        Not idempotent: retrying after an ambiguous failure may append twice.
        """
        ...

    @abstractmethod
    async def update_event_status(
        self,
        user_id: int,
        dispatch_time: datetime,
        template_id: str,
        tracking_id: str,
        new_status: EventStatus,
    ) -> Result[bool, CommsError]:
        """
        Set the status of the event matching the full tuple.

        Returns:
            Ok(True) if a bucket matched, Ok(False) otherwise.
        """
        ...

    @abstractmethod
    async def replace_day(
        self,
        user_id: int,
        day: datetime,
        events: Sequence[CommEvent],
        user_type: Optional[UserType] = None,
    ) -> Result[ReplaceAck, CommsError]:
        """Overwrite the bucket's events; empty events deletes the bucket."""
        ...

    @abstractmethod
    async def list_template_ids(self) -> Result[list[str], CommsError]:
        """Sorted distinct template ids across all buckets."""
        ...

    @abstractmethod
    async def list_tracking_ids(self) -> Result[list[str], CommsError]:
        """Sorted distinct tracking ids across all buckets."""
        ...


# =============================================================================
# CAMPAIGN SCANNER
# =============================================================================
@runtime_checkable
class CampaignScannerProtocol(Protocol):
    """Distinct-user scan over day buckets."""

    @abstractmethod
    async def distinct_users(
        self,
        day: datetime,
        hour: int,
        template_id: str,
        tracking_id: str,
        last_user_id: Optional[int] = None,
        page_size: int = C.DEFAULT_PAGE_SIZE,
    ) -> Result[CampaignPage, CommsError]:
        """
        One page of users with an event for (template_id, tracking_id)
        dispatched in [hour, hour + 1h) of day, ascending by user_id.
        """
        ...


# =============================================================================
# SCHEDULE STORE
# =============================================================================
@runtime_checkable
class ScheduleStoreProtocol(Protocol):
    """Flat schedule records keyed by (user_id, tracking_id, template_id)."""

    @abstractmethod
    async def create_record(
        self,
        record: ScheduleRecord,
    ) -> Result[OperationMetadata, CommsError]:
        """Insert; a duplicate composite key is a StorageError."""
        ...

    @abstractmethod
    async def get_eligible_records(
        self,
        user_id: int,
        limit: int = C.ELIGIBLE_RECORDS_LIMIT,
    ) -> Result[list[ScheduleRecord], CommsError]:
        ...

    @abstractmethod
    async def get_schedule_segment(
        self,
        tracking_id: str,
        template_id: str,
        planned_date_hour: datetime,
        cursor_user_id: Optional[int] = None,
        page_size: int = C.DEFAULT_PAGE_SIZE,
    ) -> Result[SegmentPage, CommsError]:
        ...

    @abstractmethod
    async def get_user_schedule(
        self,
        user_id: int,
        start: datetime,
        end: datetime,
    ) -> Result[list[ScheduleRecord], CommsError]:
        """Records with planned_date_hour in [start, end], final_score descending."""
        ...

    @abstractmethod
    async def mark_sent(
        self,
        user_id: int,
        tracking_id: str,
        template_id: str,
        when: Optional[datetime] = None,
    ) -> Result[bool, CommsError]:
        ...