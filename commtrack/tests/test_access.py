"""
Access Layer Test Suite: Request Parsing and Delegation

Tests:
- Loose request values (digit strings, ISO dates, event dicts)
- Malformed input rejected before any store is touched
- Default and bounded page sizes
- End-to-end flow over the in-memory stores

Run: python -m pytest commtrack/tests/test_access.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from commtrack.comms.access import CommsAccessLayer, parse_events, parse_hour, parse_user_id
from commtrack.comms.models import CommEvent, EventStatus, ScheduleRecord
from commtrack.core.config import StoreConfig
from commtrack.core.errors import ErrorCode, QueryError, ValidationError
from commtrack.core.types import Ok
from commtrack.storage import create_stores

DAY = datetime(2024, 5, 1, tzinfo=timezone.utc)

EVENT_PAYLOAD = {
    "dispatch_time": "2024-05-01T08:00:00Z",
    "template_id": "template_001",
    "tracking_id": "track_001",
    "content_score": 0.8,
}


class SpyStore:
    """Records every store call; any method returns Ok(None)."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str):
        async def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return Ok(None)
        return method


def spied(config: StoreConfig | None = None) -> tuple[CommsAccessLayer, SpyStore]:
    spy = SpyStore()
    return CommsAccessLayer(spy, spy, spy, config), spy


def run(coro):
    return asyncio.run(coro)


# =============================================================================
# PARSERS
# =============================================================================
class TestParsers:

    def test_user_id_from_digit_string(self):
        assert parse_user_id("42") == 42
        assert parse_user_id(" 7 ") == 7
        assert parse_user_id(0) == 0

    @pytest.mark.parametrize("value", ["abc", "-1", -1, 4.5, True, "", None, "\u00b2", "\u00b9\u00b2"])
    def test_user_id_rejects(self, value):
        with pytest.raises(ValidationError):
            parse_user_id(value)

    def test_hour_from_string(self):
        assert parse_hour("8") == 8
        assert parse_hour(23) == 23

    @pytest.mark.parametrize("value", [24, -1, "24", "eight", True, None, 7.5, "\u00b2"])
    def test_hour_rejects(self, value):
        with pytest.raises(ValidationError):
            parse_hour(value)

    def test_events_from_dicts_and_instances(self):
        instance = CommEvent(DAY + timedelta(hours=9), "template_002", "track_001", 0.1)
        events = parse_events([EVENT_PAYLOAD, instance])
        assert events[0].dispatch_time == DAY + timedelta(hours=8)
        assert events[0].status is EventStatus.SENT
        assert events[1] is instance

    @pytest.mark.parametrize("raw", ["events", {"template_id": "t"}, 5, None])
    def test_events_rejects_non_lists(self, raw):
        with pytest.raises(ValidationError):
            parse_events(raw)


# =============================================================================
# VALIDATION BEFORE STORE ACCESS
# =============================================================================
class TestRejectsBeforeStore:

    @pytest.mark.parametrize("call", [
        lambda a: a.get_day("abc", "2024-05-01"),
        lambda a: a.get_day("\u00b9\u00b2", "2024-05-01"),
        lambda a: a.get_day(42, "not-a-date"),
        lambda a: a.append_events(42, "premium", "2024-05-01", []),
        lambda a: a.append_events(42, None, "2024-05-01", [EVENT_PAYLOAD]),
        lambda a: a.append_events(42, "vip", "2024-05-01", [EVENT_PAYLOAD]),
        lambda a: a.append_events(42, "premium", "2024-05-01", [{"template_id": "t"}]),
        lambda a: a.update_event_status(42, None, "t", "k", "opened"),
        lambda a: a.update_event_status(42, DAY, "t", "k", "bounced"),
        lambda a: a.update_event_status(42, DAY, "", "k", "opened"),
        lambda a: a.replace_day(42, "2024-05-01", "events"),
        lambda a: a.campaign_distinct_users("2024-05-01", 24, "t", "k"),
        lambda a: a.campaign_distinct_users("2024-05-01", "\u00b2", "t", "k"),
        lambda a: a.campaign_distinct_users("2024-05-01", 7.5, "t", "k"),
        lambda a: a.get_eligible_records(42, limit="\u00b2"),
        lambda a: a.campaign_distinct_users("2024-05-01", 8, None, "k"),
        lambda a: a.get_eligible_records(42, limit=0),
        lambda a: a.get_schedule_segment("k", "t", None),
        lambda a: a.get_user_schedule(42, DAY, None),
        lambda a: a.mark_sent(42, "k", None),
    ])
    def test_validation_error_and_no_store_call(self, call):
        async def scenario():
            access, spy = spied()
            return await call(access), spy

        result, spy = run(scenario())
        assert isinstance(result.error, ValidationError)
        assert spy.calls == []

    @pytest.mark.parametrize("call", [
        lambda a: a.campaign_distinct_users("2024-05-01", 8, "t", "k", page_size=0),
        lambda a: a.campaign_distinct_users("2024-05-01", 8, "t", "k", last_user_id="abc"),
        lambda a: a.campaign_distinct_users("2024-05-01", 8, "t", "k", last_user_id="--5"),
        lambda a: a.campaign_distinct_users("2024-05-01", 8, "t", "k", last_user_id="\u00b2"),
        lambda a: a.campaign_distinct_users("2024-05-01", 8, "t", "k", page_size="\u00b9\u00b2"),
        lambda a: a.get_schedule_segment("k", "t", DAY, cursor_user_id="-"),
        lambda a: a.get_schedule_segment("k", "t", DAY, page_size=5000),
        lambda a: a.get_schedule_segment("k", "t", DAY, cursor_user_id=-3),
    ])
    def test_query_error_and_no_store_call(self, call):
        async def scenario():
            access, spy = spied()
            return await call(access), spy

        result, spy = run(scenario())
        assert isinstance(result.error, QueryError)
        assert spy.calls == []


# =============================================================================
# DELEGATION
# =============================================================================
class TestDelegation:

    def test_page_size_defaults_from_config(self):
        async def scenario():
            access, spy = spied(StoreConfig(default_page_size=25))
            await access.campaign_distinct_users("2024-05-01", "8", "t", "k")
            await access.get_schedule_segment("k", "t", DAY, page_size="10", cursor_user_id="99")
            return spy.calls

        (scan, scan_args, scan_kwargs), (segment, _, segment_kwargs) = run(scenario())
        assert scan == "distinct_users"
        assert scan_args == (DAY, 8, "t", "k")
        assert scan_kwargs == {"last_user_id": None, "page_size": 25}
        assert segment == "get_schedule_segment"
        assert segment_kwargs == {"cursor_user_id": 99, "page_size": 10}

    def test_eligible_limit_defaults_from_config(self):
        async def scenario():
            access, spy = spied(StoreConfig(eligible_limit=30))
            await access.get_eligible_records("42")
            await access.get_eligible_records(42, limit="5")
            return spy.calls

        first, second = run(scenario())
        assert first[1] == (42, 30)
        assert second[1] == (42, 5)

    def test_strings_normalized_before_delegation(self):
        async def scenario():
            access, spy = spied()
            await access.update_event_status(
                "42", "2024-05-01T08:00:00Z", "template_001", "track_001", "opened"
            )
            return spy.calls[0]

        name, args, _ = run(scenario())
        assert name == "update_event_status"
        assert args == (42, DAY + timedelta(hours=8), "template_001", "track_001", EventStatus.OPENED)


# =============================================================================
# END TO END
# =============================================================================
class TestEndToEnd:

    def test_bucket_flow(self):
        async def scenario():
            access = CommsAccessLayer.from_stores(create_stores())
            appended = await access.append_events("42", "premium", "2024-05-01", [EVENT_PAYLOAD])
            updated = await access.update_event_status(
                42, "2024-05-01T08:00:00Z", "template_001", "track_001", "clicked",
            )
            missing = await access.update_event_status(
                42, "2024-05-01T09:00:00Z", "template_001", "track_001", "clicked",
            )
            page = await access.campaign_distinct_users("2024-05-01", 8, "template_001", "track_001")
            events = await access.get_day(42, "2024-05-01")
            return appended, updated, missing, page, events

        appended, updated, missing, page, events = run(scenario())
        assert appended.unwrap().created_bucket is True
        assert updated == Ok(True)
        assert missing == Ok(False)
        assert page.unwrap().users == [42]
        assert events.unwrap()[0].status is EventStatus.CLICKED

    def test_schedule_flow(self):
        planned = DAY + timedelta(hours=8)
        rec = ScheduleRecord(
            user_id=42,
            tracking_id="track_001",
            template_id="template_001",
            planned_date_hour=planned,
            final_score=0.9,
            relevance_score=0.2,
            dispatch_time=(planned, planned + timedelta(minutes=10), planned + timedelta(minutes=20)),
            content_end_time=planned + timedelta(days=1),
        )

        async def scenario():
            access = CommsAccessLayer.from_stores(create_stores())
            await access.create_schedule_record(rec)
            duplicate = await access.create_schedule_record(rec)
            schedule = await access.get_user_schedule(
                "42", "2024-05-01T06:00:00Z", "2024-05-01T14:00:00Z",
            )
            sent = await access.mark_sent("42", "track_001", "template_001")
            return duplicate, schedule, sent

        duplicate, schedule, sent = run(scenario())
        assert duplicate.error.code is ErrorCode.STORAGE_DUPLICATE_KEY
        assert [r.record_id for r in schedule.unwrap()] == [rec.record_id]
        assert sent == Ok(True)
