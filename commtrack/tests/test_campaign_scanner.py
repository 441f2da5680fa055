"""
Campaign Scanner Test Suite: Distinct Users with Keyset Pagination

Tests:
- Hour window boundaries (start inclusive, end exclusive)
- Template and tracking id matched on the same event
- Pagination completeness and no duplication across page sizes
- Stability when users are inserted behind the cursor or the cursor user is deleted
- Paging argument validation

Run: python -m pytest commtrack/tests/test_campaign_scanner.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from commtrack.comms.models import CommEvent, UserType
from commtrack.core.errors import ErrorCode, QueryError, ValidationError
from commtrack.storage import (
    CampaignScannerProtocol,
    InMemoryBucketStore,
    InMemoryCampaignScanner,
)

DAY = datetime(2024, 5, 1, tzinfo=timezone.utc)
TEMPLATE = "template_001"
TRACKING = "track_001"


def event(hour: int, minute: int = 0, template: str = TEMPLATE, tracking: str = TRACKING) -> CommEvent:
    return CommEvent(DAY + timedelta(hours=hour, minutes=minute), template, tracking, 0.5)


def run(coro):
    return asyncio.run(coro)


async def seeded(user_ids, hour: int = 8) -> tuple[InMemoryBucketStore, InMemoryCampaignScanner]:
    store = InMemoryBucketStore()
    for uid in user_ids:
        await store.append_events(uid, UserType.PREMIUM, DAY, [event(hour, uid % 60)])
    return store, InMemoryCampaignScanner(store)


async def collect_all(scanner, page_size: int) -> tuple[list[int], int]:
    users: list[int] = []
    cursor = None
    pages = 0
    while True:
        page = (await scanner.distinct_users(
            DAY, 8, TEMPLATE, TRACKING, last_user_id=cursor, page_size=page_size,
        )).unwrap()
        pages += 1
        users.extend(page.users)
        if not page.has_more:
            return users, pages
        cursor = page.next_cursor


def test_scanner_satisfies_protocol():
    assert isinstance(InMemoryCampaignScanner(InMemoryBucketStore()), CampaignScannerProtocol)


# =============================================================================
# MATCHING
# =============================================================================
class TestWindowMatching:

    def test_window_is_half_open(self):
        async def scenario():
            store = InMemoryBucketStore()
            await store.append_events(1, UserType.PREMIUM, DAY, [event(8, 0)])
            await store.append_events(2, UserType.PREMIUM, DAY, [event(8, 59)])
            await store.append_events(3, UserType.PREMIUM, DAY, [event(9, 0)])
            await store.append_events(4, UserType.PREMIUM, DAY, [event(7, 59)])
            return await InMemoryCampaignScanner(store).distinct_users(DAY, 8, TEMPLATE, TRACKING)

        assert run(scenario()).unwrap().users == [1, 2]

    def test_template_and_tracking_must_match_same_event(self):
        async def scenario():
            store = InMemoryBucketStore()
            # right template on one event, right tracking on another
            await store.append_events(1, UserType.PREMIUM, DAY, [
                event(8, 5, tracking="track_002"),
                event(8, 10, template="template_002"),
            ])
            await store.append_events(2, UserType.PREMIUM, DAY, [event(8, 15)])
            return await InMemoryCampaignScanner(store).distinct_users(DAY, 8, TEMPLATE, TRACKING)

        assert run(scenario()).unwrap().users == [2]

    def test_user_counted_once(self):
        async def scenario():
            store = InMemoryBucketStore()
            await store.append_events(1, UserType.PREMIUM, DAY, [event(8, 1), event(8, 2), event(8, 3)])
            return await InMemoryCampaignScanner(store).distinct_users(DAY, 8, TEMPLATE, TRACKING)

        assert run(scenario()).unwrap().users == [1]

    def test_other_days_ignored(self):
        async def scenario():
            store = InMemoryBucketStore()
            tomorrow = DAY + timedelta(days=1)
            await store.append_events(1, UserType.PREMIUM, tomorrow, [
                CommEvent(tomorrow + timedelta(hours=8), TEMPLATE, TRACKING, 0.5),
            ])
            return await InMemoryCampaignScanner(store).distinct_users(DAY, 8, TEMPLATE, TRACKING)

        page = run(scenario()).unwrap()
        assert page.users == []
        assert page.next_cursor is None
        assert page.has_more is False


# =============================================================================
# PAGINATION
# =============================================================================
class TestPagination:

    @pytest.mark.parametrize("page_size", [1, 2, 3, 7, 25, 100])
    def test_pages_cover_every_user_exactly_once(self, page_size):
        user_ids = [1000 + 7 * i for i in range(25)]

        async def scenario():
            _, scanner = await seeded(reversed(user_ids))
            return await collect_all(scanner, page_size)

        users, pages = run(scenario())
        assert users == sorted(user_ids)
        assert pages == max(1, -(-len(user_ids) // page_size))

    def test_page_metadata(self):
        async def scenario():
            _, scanner = await seeded([10, 20, 30])
            return await scanner.distinct_users(DAY, 8, TEMPLATE, TRACKING, page_size=2)

        page = run(scenario()).unwrap()
        assert page.users == [10, 20]
        assert page.has_more is True
        assert page.next_cursor == 20
        assert page.total_count == -1
        assert page.total_pages == -1

    def test_last_page_has_cursor_but_no_more(self):
        async def scenario():
            _, scanner = await seeded([10, 20, 30])
            return await scanner.distinct_users(DAY, 8, TEMPLATE, TRACKING, last_user_id=20, page_size=2)

        page = run(scenario()).unwrap()
        assert page.users == [30]
        assert page.has_more is False
        assert page.next_cursor == 30

    def test_insert_behind_cursor_not_seen(self):
        async def scenario():
            store, scanner = await seeded([10, 20, 30, 40])
            first = (await scanner.distinct_users(
                DAY, 8, TEMPLATE, TRACKING, page_size=2,
            )).unwrap()
            await store.append_events(15, UserType.TRIAL, DAY, [event(8, 30)])
            await store.append_events(35, UserType.TRIAL, DAY, [event(8, 30)])
            second = (await scanner.distinct_users(
                DAY, 8, TEMPLATE, TRACKING, last_user_id=first.next_cursor, page_size=10,
            )).unwrap()
            return first, second

        first, second = run(scenario())
        assert first.users == [10, 20]
        assert second.users == [30, 35, 40]
        assert 15 not in second.users

    def test_cursor_user_deleted_between_pages(self):
        async def scenario():
            store, scanner = await seeded([10, 20, 30, 40])
            first = (await scanner.distinct_users(
                DAY, 8, TEMPLATE, TRACKING, page_size=2,
            )).unwrap()
            await store.replace_day(first.next_cursor, DAY, [])
            second = (await scanner.distinct_users(
                DAY, 8, TEMPLATE, TRACKING, last_user_id=first.next_cursor, page_size=2,
            )).unwrap()
            return first, second

        first, second = run(scenario())
        assert first.next_cursor == 20
        assert second.users == [30, 40]
        assert second.has_more is False


# =============================================================================
# ARGUMENT VALIDATION
# =============================================================================
class TestArguments:

    @pytest.mark.parametrize("page_size", [0, -5, 1001, "ten", None])
    def test_invalid_page_size(self, page_size):
        async def scenario():
            _, scanner = await seeded([1])
            return await scanner.distinct_users(DAY, 8, TEMPLATE, TRACKING, page_size=page_size)

        result = run(scenario())
        assert isinstance(result.error, QueryError)
        assert result.error.code is ErrorCode.QUERY_INVALID_PAGE_SIZE

    @pytest.mark.parametrize("cursor", ["abc", "--5", "-", "\u00b2", "\u00b9\u00b2", -3, 2.5])
    def test_malformed_cursor(self, cursor):
        async def scenario():
            _, scanner = await seeded([1])
            return await scanner.distinct_users(DAY, 8, TEMPLATE, TRACKING, last_user_id=cursor)

        result = run(scenario())
        assert result.error.code is ErrorCode.QUERY_MALFORMED_CURSOR

    @pytest.mark.parametrize("hour", [-1, 24, "8", 7.5, True, None])
    def test_invalid_hour(self, hour):
        async def scenario():
            _, scanner = await seeded([1])
            return await scanner.distinct_users(DAY, hour, TEMPLATE, TRACKING)

        assert isinstance(run(scenario()).error, ValidationError)

    def test_cursor_string_is_parsed(self):
        async def scenario():
            _, scanner = await seeded([10, 20, 30])
            return await scanner.distinct_users(DAY, 8, TEMPLATE, TRACKING, last_user_id=" 10 ")

        assert run(scenario()).unwrap().users == [20, 30]
