"""
Comms module: communication records, query builders and pagination.

The access layer lives in commtrack.comms.access; it depends on the
storage protocols and is imported from there (or from the commtrack
package root).
"""

from commtrack.comms.models import (
    UserType,
    EventStatus,
    CommEvent,
    DayBucket,
    ScheduleRecord,
    make_record_id,
)
from commtrack.comms.pagination import (
    CampaignPage,
    SegmentPage,
    validate_page_size,
    parse_cursor,
)

__all__ = [
    "UserType",
    "EventStatus",
    "CommEvent",
    "DayBucket",
    "ScheduleRecord",
    "make_record_id",
    "CampaignPage",
    "SegmentPage",
    "validate_page_size",
    "parse_cursor",
]
