"""
Communications-Tracking Data Layer

Records per-user message/campaign events in MongoDB and answers the
queries a campaign scheduler needs:
- Day buckets: one document per user per UTC day with an embedded event
  array, appended to and updated in place with array filters
- Campaign scan: distinct users who received a (template, tracking) pair
  in a one-hour window, with keyset pagination
- Flat schedule: one document per (user, tracking, template) with
  composite-key uniqueness and ESR-indexed range queries

Load profile:
- 50M users, 5 communications per user per day
- 7-day retention enforced by a TTL index
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from commtrack.core.types import Result, Ok, Err
from commtrack.core.errors import (
    CommsError,
    ValidationError,
    StorageError,
    QueryError,
    ConfigurationError,
)
from commtrack.core.config import CommsConfig, MongoConfig, StoreConfig

from commtrack.comms.models import (
    UserType,
    EventStatus,
    CommEvent,
    DayBucket,
    ScheduleRecord,
)
from commtrack.comms.pagination import CampaignPage, SegmentPage

from commtrack.storage import (
    MongoConnection,
    Stores,
    create_stores,
    ensure_indexes,
)
from commtrack.comms.access import CommsAccessLayer

__all__ = [
    "__version__",
    # Core
    "Result",
    "Ok",
    "Err",
    "CommsError",
    "ValidationError",
    "StorageError",
    "QueryError",
    "ConfigurationError",
    "CommsConfig",
    "MongoConfig",
    "StoreConfig",
    # Records
    "UserType",
    "EventStatus",
    "CommEvent",
    "DayBucket",
    "ScheduleRecord",
    "CampaignPage",
    "SegmentPage",
    # Storage
    "MongoConnection",
    "Stores",
    "create_stores",
    "ensure_indexes",
    "CommsAccessLayer",
]
