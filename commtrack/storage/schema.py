"""
Index Schema: Declarative Index Sets for Both Collections

Every query shape issued by the stores has a supporting index here, laid
out Equality-Sort-Range (ESR): equality keys first, then sort keys in
order, then range keys. IndexSpec.supports() checks that rule so tests can
assert coverage without a running server.

Bucket collection:
    user_day         (user_id, day)                        unique
    campaign_window  (day, events.template_id, events.tracking_id,
                      events.dispatch_time, user_id)        multikey
    event_lookup     (user_id, events.dispatch_time,
                      events.template_id, events.tracking_id)
    template_id      (events.template_id)                  multikey
    tracking_id      (events.tracking_id)                  multikey
    expire_at        (expire_at)                           TTL 0s

Schedule collection:
    user              (user_id)
    schedule_segment  (tracking_id, template_id, planned_date_hour, user_id)
    user_schedule_esr (user_id, final_score desc, planned_date_hour)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence

from commtrack.core.errors import StorageError
from commtrack.core.types import Err, Ok, Result
from commtrack.observability import StructuredLogger

if TYPE_CHECKING:
    from commtrack.storage.connection import MongoConnection

logger = StructuredLogger("commtrack.storage.schema")

ASCENDING = 1
DESCENDING = -1


@dataclass(frozen=True, slots=True)
class IndexSpec:
    """
    One index definition.

    Attributes:
        name: Index name on the server.
        keys: Ordered (field, direction) pairs.
        unique: Enforce uniqueness of the key tuple.
        expire_after_seconds: TTL; the server deletes documents once the
            indexed date is this many seconds in the past.
    """
    name: str
    keys: tuple[tuple[str, int], ...]
    unique: bool = False
    expire_after_seconds: Optional[int] = None

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(f for f, _ in self.keys)

    def supports(
        self,
        equality: Iterable[str] = (),
        sort: Sequence[tuple[str, int]] = (),
        range_fields: Iterable[str] = (),
    ) -> bool:
        """
        ESR prefix check.

        The leading keys must be exactly the equality fields (any order),
        followed by the sort keys in order (all directions matching, or all
        reversed), with every range field among the remaining keys. A range
        on a sort field is satisfied by the sort key itself.
        """
        equality = set(equality)
        fields = self.fields
        n_eq = len(equality)
        if set(fields[:n_eq]) != equality or len(fields) < n_eq:
            return False

        sort = list(sort)
        sort_keys = self.keys[n_eq:n_eq + len(sort)]
        if len(sort_keys) != len(sort):
            return False
        if [f for f, _ in sort_keys] != [f for f, _ in sort]:
            return False
        same = all(d == sd for (_, d), (_, sd) in zip(sort_keys, sort))
        reversed_ = all(d == -sd for (_, d), (_, sd) in zip(sort_keys, sort))
        if sort and not (same or reversed_):
            return False

        sorted_fields = {f for f, _ in sort}
        remaining = set(fields[n_eq + len(sort):])
        return all(r in remaining or r in sorted_fields for r in range_fields)

    def create_kwargs(self) -> dict[str, Any]:
        """kwargs for Collection.create_index."""
        kwargs: dict[str, Any] = {"name": self.name}
        if self.unique:
            kwargs["unique"] = True
        if self.expire_after_seconds is not None:
            kwargs["expireAfterSeconds"] = self.expire_after_seconds
        return kwargs


# =============================================================================
# INDEX SETS
# =============================================================================
BUCKET_INDEXES: tuple[IndexSpec, ...] = (
    IndexSpec("user_day", (("user_id", ASCENDING), ("day", ASCENDING)), unique=True),
    IndexSpec(
        "campaign_window",
        (
            ("day", ASCENDING),
            ("events.template_id", ASCENDING),
            ("events.tracking_id", ASCENDING),
            ("events.dispatch_time", ASCENDING),
            ("user_id", ASCENDING),
        ),
    ),
    IndexSpec(
        "event_lookup",
        (
            ("user_id", ASCENDING),
            ("events.dispatch_time", ASCENDING),
            ("events.template_id", ASCENDING),
            ("events.tracking_id", ASCENDING),
        ),
    ),
    IndexSpec("template_id", (("events.template_id", ASCENDING),)),
    IndexSpec("tracking_id", (("events.tracking_id", ASCENDING),)),
    IndexSpec("expire_at", (("expire_at", ASCENDING),), expire_after_seconds=0),
)

SCHEDULE_INDEXES: tuple[IndexSpec, ...] = (
    IndexSpec("user", (("user_id", ASCENDING),)),
    IndexSpec(
        "schedule_segment",
        (
            ("tracking_id", ASCENDING),
            ("template_id", ASCENDING),
            ("planned_date_hour", ASCENDING),
            ("user_id", ASCENDING),
        ),
    ),
    IndexSpec(
        "user_schedule_esr",
        (
            ("user_id", ASCENDING),
            ("final_score", DESCENDING),
            ("planned_date_hour", ASCENDING),
        ),
    ),
)


def find_supporting_index(
    indexes: Iterable[IndexSpec],
    equality: Iterable[str] = (),
    sort: Sequence[tuple[str, int]] = (),
    range_fields: Iterable[str] = (),
) -> Optional[IndexSpec]:
    """First index able to serve the query shape, or None."""
    equality = tuple(equality)
    range_fields = tuple(range_fields)
    for spec in indexes:
        if spec.supports(equality, sort, range_fields):
            return spec
    return None


async def ensure_indexes(connection: MongoConnection) -> Result[list[str], StorageError]:
    """
    Create both index sets.

    Idempotent: create_index on an existing identical index is a no-op.

    Returns:
        Ok(names) of every index ensured.
    """
    db_result = connection.database()
    if db_result.is_err():
        return db_result

    from pymongo.errors import PyMongoError

    db = db_result.unwrap()
    config = connection.config
    created: list[str] = []
    try:
        for collection_name, specs in (
            (config.bucket_collection, BUCKET_INDEXES),
            (config.schedule_collection, SCHEDULE_INDEXES),
        ):
            collection = db[collection_name]
            for spec in specs:
                name = await collection.create_index(list(spec.keys), **spec.create_kwargs())
                created.append(name)
                logger.info("Index ensured", collection=collection_name, index=name)
    except PyMongoError as e:
        logger.error("Index creation failed", error=str(e))
        return Err(StorageError.operation_failed("ensure_indexes", e))
    return Ok(created)
