"""
Query Builders: MongoDB Filter, Update and Pipeline Documents

Pure functions producing the exact documents sent to the driver. Keeping
them free of I/O lets the document shapes be asserted directly in tests
and shared by the index schema (every shape here has a supporting index in
commtrack.storage.schema).

Query Shapes:
    | Operation              | Equality                         | Sort          | Range             |
    |------------------------|----------------------------------|---------------|-------------------|
    | get_day                | user_id, day                     |               |                   |
    | update_event_status    | user_id, events.{time,tpl,trk}   |               |                   |
    | distinct_users         | day, events.template_id/trk_id   | user_id       | dispatch_time     |
    | get_eligible_records   | user_id                          |               |                   |
    | get_schedule_segment   | tracking, template, date_hour    | user_id       | user_id (cursor)  |
    | get_user_schedule      | user_id                          | final_score ↓ | planned_date_hour |
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence

from commtrack.comms.models import CommEvent, EventStatus, UserType, expiry_for
from commtrack.core.types import hour_window, to_millis, utc_day, utc_hour, utc_now


# Positional identifier used in arrayFilters
ELEM = "elem"


@dataclass(frozen=True, slots=True)
class FindSpec:
    """A find() call: filter, projection, sort and limit, in driver terms."""
    filter: dict[str, Any]
    sort: list[tuple[str, int]] = field(default_factory=list)
    limit: int = 0
    projection: Optional[dict[str, int]] = None


@dataclass(frozen=True, slots=True)
class UpdateSpec:
    """An update_one() call."""
    filter: dict[str, Any]
    update: dict[str, Any]
    upsert: bool = False
    array_filters: Optional[list[dict[str, Any]]] = None


# =============================================================================
# DAY BUCKETS
# =============================================================================
def bucket_key(user_id: int, day: datetime) -> dict[str, Any]:
    """Filter selecting the single bucket for (user_id, day)."""
    return {"user_id": user_id, "day": utc_day(day)}


def append_events_update(
    user_id: int,
    user_type: UserType,
    day: datetime,
    events: Sequence[CommEvent],
    retention_days: int,
) -> UpdateSpec:
    """
    Upsert appending events to a day bucket.

    $inc keeps event_count equal to the array length in the same atomic
    document write; user_type and expire_at are only set on insert.
    """
    return UpdateSpec(
        filter=bucket_key(user_id, day),
        update={
            "$push": {"events": {"$each": [e.to_document() for e in events]}},
            "$inc": {"event_count": len(events)},
            "$setOnInsert": {
                "user_type": user_type.value,
                "expire_at": expiry_for(day, retention_days),
            },
        },
        upsert=True,
    )


def event_match(
    dispatch_time: datetime,
    template_id: str,
    tracking_id: str,
) -> dict[str, Any]:
    """Element predicate on the full (dispatch_time, template_id, tracking_id) tuple."""
    return {
        "dispatch_time": to_millis(dispatch_time),
        "template_id": template_id,
        "tracking_id": tracking_id,
    }


def status_update(
    user_id: int,
    dispatch_time: datetime,
    template_id: str,
    tracking_id: str,
    new_status: EventStatus,
) -> UpdateSpec:
    """
    In-place status update of matching array elements.

    $elemMatch in the filter requires one element to match the whole tuple;
    the arrayFilters clause re-applies the same tuple so only those
    elements are rewritten.
    """
    match = event_match(dispatch_time, template_id, tracking_id)
    return UpdateSpec(
        filter={"user_id": user_id, "events": {"$elemMatch": match}},
        update={"$set": {f"events.$[{ELEM}].status": new_status.value}},
        array_filters=[{f"{ELEM}.{k}": v for k, v in match.items()}],
    )


def replace_day_update(
    user_id: int,
    day: datetime,
    events: Sequence[CommEvent],
    retention_days: int,
    user_type: Optional[UserType] = None,
) -> UpdateSpec:
    """
    Destructive overwrite of a bucket's event array.

    A bucket created by this upsert gets expire_at and, when supplied,
    user_type; an existing bucket keeps both.
    """
    on_insert: dict[str, Any] = {"expire_at": expiry_for(day, retention_days)}
    if user_type is not None:
        on_insert["user_type"] = user_type.value
    return UpdateSpec(
        filter=bucket_key(user_id, day),
        update={
            "$set": {
                "events": [e.to_document() for e in events],
                "event_count": len(events),
            },
            "$setOnInsert": on_insert,
        },
        upsert=True,
    )


# =============================================================================
# CAMPAIGN SCAN
# =============================================================================
def campaign_match(
    day: datetime,
    hour: int,
    template_id: str,
    tracking_id: str,
    last_user_id: Optional[int] = None,
) -> dict[str, Any]:
    """
    $match stage for the campaign scan.

    The cursor predicate sits in the first stage, before $group, so the
    index bounds user_id rather than filtering grouped output.
    """
    start, end = hour_window(day, hour)
    match: dict[str, Any] = {
        "day": utc_day(day),
        "events": {
            "$elemMatch": {
                "dispatch_time": {"$gte": start, "$lt": end},
                "template_id": template_id,
                "tracking_id": tracking_id,
            }
        },
    }
    if last_user_id is not None:
        match["user_id"] = {"$gt": last_user_id}
    return match


def campaign_pipeline(
    day: datetime,
    hour: int,
    template_id: str,
    tracking_id: str,
    page_size: int,
    last_user_id: Optional[int] = None,
) -> list[dict[str, Any]]:
    """Aggregation returning up to page_size + 1 distinct user ids, ascending."""
    return [
        {"$match": campaign_match(day, hour, template_id, tracking_id, last_user_id)},
        {"$group": {"_id": "$user_id"}},
        {"$sort": {"_id": 1}},
        {"$limit": page_size + 1},
    ]


# =============================================================================
# FLAT SCHEDULE
# =============================================================================
def eligible_records_find(user_id: int, limit: int) -> FindSpec:
    return FindSpec(filter={"user_id": user_id}, limit=limit)


def schedule_segment_find(
    tracking_id: str,
    template_id: str,
    planned_date_hour: datetime,
    page_size: int,
    cursor_user_id: Optional[int] = None,
) -> FindSpec:
    """
    One page of a campaign segment.

    Initial and continuation pages share the same sort so that both walk
    the segment index in the same order. Only user_id is projected, so the
    segment index covers the query.
    """
    query: dict[str, Any] = {
        "tracking_id": tracking_id,
        "template_id": template_id,
        "planned_date_hour": utc_hour(planned_date_hour),
    }
    if cursor_user_id is not None:
        query["user_id"] = {"$gt": cursor_user_id}
    return FindSpec(
        filter=query,
        sort=[("user_id", 1)],
        limit=page_size + 1,
        projection={"user_id": 1, "_id": 0},
    )


def user_schedule_find(user_id: int, start: datetime, end: datetime) -> FindSpec:
    """Inclusive [start, end] range on planned_date_hour, best score first."""
    return FindSpec(
        filter={
            "user_id": user_id,
            "planned_date_hour": {"$gte": to_millis(start), "$lte": to_millis(end)},
        },
        sort=[("final_score", -1), ("planned_date_hour", 1)],
    )


def mark_sent_update(
    record_id: str,
    when: Optional[datetime] = None,
) -> UpdateSpec:
    return UpdateSpec(
        filter={"_id": record_id},
        update={"$set": {"sent_at": 1, "updated_at": to_millis(when) if when else utc_now()}},
    )
