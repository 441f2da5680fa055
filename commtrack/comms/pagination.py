"""
Keyset Pagination: Stateless Cursor Pages over Ascending User IDs

Pages are produced by the "limit + 1" technique: the store fetches one row
more than requested, and the presence of that row is the has_more signal.
The cursor is the last user_id returned; the next page is `user_id > cursor`.

Design:
    Keyset pagination over a unique ascending key:
    - No server-side cursor state (any replica can serve the next page)
    - O(page_size) seek per page instead of O(offset) skip
    - Rows inserted below the cursor after a page is served are never seen
      by later pages; rows above it appear in their ordered position

Totals are never computed. total_count and total_pages carry the
UNKNOWN_TOTAL sentinel (-1).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, TypeVar

from commtrack.core import constants as C
from commtrack.core.errors import QueryError
from commtrack.core.types import Err, Ok, Result

T = TypeVar("T")


# =============================================================================
# PAGE TYPES
# =============================================================================
@dataclass(slots=True)
class CampaignPage:
    """One page of distinct user ids matching a campaign window."""
    users: list[int] = field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[int] = None
    total_count: int = C.UNKNOWN_TOTAL
    total_pages: int = C.UNKNOWN_TOTAL

    @property
    def count(self) -> int:
        return len(self.users)

    def to_dict(self) -> dict[str, Any]:
        return {
            "users": list(self.users),
            "has_more": self.has_more,
            "next_cursor": self.next_cursor,
            "total_count": self.total_count,
            "total_pages": self.total_pages,
        }


@dataclass(slots=True)
class SegmentPage:
    """One page of user ids scheduled for a (tracking, template, hour) send."""
    user_ids: list[int] = field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[int] = None

    @property
    def count(self) -> int:
        return len(self.user_ids)

    @property
    def is_empty(self) -> bool:
        return not self.user_ids


# =============================================================================
# HELPERS
# =============================================================================
def split_page(rows: Sequence[T], page_size: int) -> tuple[list[T], bool]:
    """
    Trim a limit+1 fetch to page_size rows.

    Returns:
        (page_rows, has_more)
    """
    if len(rows) > page_size:
        return list(rows[:page_size]), True
    return list(rows), False


def campaign_page(user_ids: Sequence[int], page_size: int) -> CampaignPage:
    """
    Build a CampaignPage from an ascending limit+1 user id fetch.

    next_cursor is the last returned id, or None on an empty page.
    """
    users, has_more = split_page(user_ids, page_size)
    return CampaignPage(
        users=users,
        has_more=has_more,
        next_cursor=users[-1] if users else None,
    )


def segment_page(user_ids: Sequence[int], page_size: int) -> SegmentPage:
    """
    Build a SegmentPage from an ascending limit+1 user id fetch.

    next_cursor is None once the segment is exhausted, so a caller loops
    `while page.next_cursor is not None`.
    """
    users, has_more = split_page(user_ids, page_size)
    return SegmentPage(
        user_ids=users,
        has_more=has_more,
        next_cursor=users[-1] if has_more and users else None,
    )


def validate_page_size(
    page_size: Any,
    max_page_size: int = C.MAX_PAGE_SIZE,
) -> Result[int, QueryError]:
    """Accept an int in [1, max_page_size]."""
    if isinstance(page_size, bool) or not isinstance(page_size, int):
        return Err(QueryError.invalid_page_size(page_size, max_page_size))
    if not 1 <= page_size <= max_page_size:
        return Err(QueryError.invalid_page_size(page_size, max_page_size))
    return Ok(page_size)


def is_digits(text: str) -> bool:
    """True for a non-empty run of ASCII 0-9."""
    return text.isascii() and text.isdigit()


def parse_cursor(cursor: Any) -> Result[Optional[int], QueryError]:
    """
    Parse an optional user id cursor.

    None and "" mean "first page". Strings of digits are accepted for
    callers passing query-string values.
    """
    if cursor is None or cursor == "":
        return Ok(None)
    if isinstance(cursor, bool):
        return Err(QueryError.malformed_cursor(cursor, "must be an integer user id"))
    if isinstance(cursor, str):
        text = cursor.strip()
        if not is_digits(text[1:] if text.startswith("-") else text):
            return Err(QueryError.malformed_cursor(cursor, "must be an integer user id"))
        cursor = int(text)
    if not isinstance(cursor, int):
        return Err(QueryError.malformed_cursor(cursor, "must be an integer user id"))
    if cursor < 0:
        return Err(QueryError.malformed_cursor(cursor, "must be non-negative"))
    return Ok(cursor)
