"""
Storage Module: Bucket, Campaign and Schedule Stores
=====================================================

Provides:
- Protocol definitions for pluggable backends
- In-memory implementations for development/testing
- MongoDB backends (pymongo asyncio API)
- Index schema and query-plan inspection
- Factory functions for backend selection

Design Principles:
-----------------
1. **Backend Agnostic**: Same interface for in-memory and MongoDB
2. **Factory Pattern**: Runtime backend selection via configuration
3. **Lazy Loading**: pymongo is imported only when a connection is given
4. **Result Monad**: No exceptions for control flow

Example:
    >>> # Development (in-memory)
    >>> stores = create_stores()

    >>> # Production
    >>> connection = MongoConnection(MongoConfig.from_env())
    >>> await connection.connect()
    >>> stores = create_stores(connection)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from commtrack.core.config import StoreConfig
from commtrack.storage.protocols import (
    OperationType,
    OperationMetadata,
    AppendAck,
    ReplaceAck,
    BucketStoreProtocol,
    CampaignScannerProtocol,
    ScheduleStoreProtocol,
)
from commtrack.storage.backends import (
    InMemoryBucketStore,
    InMemoryCampaignScanner,
    InMemoryScheduleStore,
)
from commtrack.storage.connection import MongoConnection
from commtrack.storage.plan import QueryPlan
from commtrack.storage.schema import (
    IndexSpec,
    BUCKET_INDEXES,
    SCHEDULE_INDEXES,
    ensure_indexes,
    find_supporting_index,
)

if TYPE_CHECKING:
    from commtrack.storage.mongo_store import (
        MongoBucketStore,
        MongoCampaignScanner,
        MongoScheduleStore,
    )


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================
def create_bucket_store(
    connection: Optional[MongoConnection] = None,
    config: Optional[StoreConfig] = None,
) -> Any:
    """
    Create a day-bucket store.

    Returns:
        InMemoryBucketStore: If connection is None (development).
        MongoBucketStore: If a connection is provided.
    """
    if connection is not None:
        from commtrack.storage.mongo_store import MongoBucketStore
        return MongoBucketStore(connection, config)
    return InMemoryBucketStore(config)


def create_campaign_scanner(
    bucket_store: Any,
    connection: Optional[MongoConnection] = None,
    config: Optional[StoreConfig] = None,
) -> Any:
    """
    Create a campaign scanner.

    The in-memory scanner reads the given InMemoryBucketStore; the MongoDB
    scanner reads the bucket collection directly.
    """
    if connection is not None:
        from commtrack.storage.mongo_store import MongoCampaignScanner
        return MongoCampaignScanner(connection, config)
    if not isinstance(bucket_store, InMemoryBucketStore):
        raise TypeError("in-memory campaign scanner requires an InMemoryBucketStore")
    return InMemoryCampaignScanner(bucket_store)


def create_schedule_store(
    connection: Optional[MongoConnection] = None,
    config: Optional[StoreConfig] = None,
) -> Any:
    """
    Create a flat schedule store.

    Returns:
        InMemoryScheduleStore: If connection is None (development).
        MongoScheduleStore: If a connection is provided.
    """
    if connection is not None:
        from commtrack.storage.mongo_store import MongoScheduleStore
        return MongoScheduleStore(connection, config)
    return InMemoryScheduleStore(config)


@dataclass(frozen=True, slots=True)
class Stores:
    """The three stores sharing one backend."""
    buckets: Any
    campaigns: Any
    schedules: Any


def create_stores(
    connection: Optional[MongoConnection] = None,
    config: Optional[StoreConfig] = None,
) -> Stores:
    """Create all three stores on the same backend."""
    buckets = create_bucket_store(connection, config)
    return Stores(
        buckets=buckets,
        campaigns=create_campaign_scanner(buckets, connection, config),
        schedules=create_schedule_store(connection, config),
    )


__all__ = [
    # Protocols
    "OperationType",
    "OperationMetadata",
    "AppendAck",
    "ReplaceAck",
    "BucketStoreProtocol",
    "CampaignScannerProtocol",
    "ScheduleStoreProtocol",
    # In-memory backends
    "InMemoryBucketStore",
    "InMemoryCampaignScanner",
    "InMemoryScheduleStore",
    # MongoDB
    "MongoConnection",
    "QueryPlan",
    "IndexSpec",
    "BUCKET_INDEXES",
    "SCHEDULE_INDEXES",
    "ensure_indexes",
    "find_supporting_index",
    # Factories
    "Stores",
    "create_bucket_store",
    "create_campaign_scanner",
    "create_schedule_store",
    "create_stores",
]
