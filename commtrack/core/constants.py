"""
System-Wide Constants for the Communications-Tracking Data Layer

All magic numbers and configuration defaults centralized here.

Load profile the defaults are sized for:
- 50M users
- 5 communications per user per day
- one bucket document per user per day
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND_MS: Final[int] = 1000

# =============================================================================
# COLLECTIONS
# =============================================================================
BUCKET_COLLECTION: Final[str] = "communications"
SCHEDULE_COLLECTION: Final[str] = "user_comms"
DEFAULT_DATABASE: Final[str] = "commtrack"

# =============================================================================
# RETENTION
# =============================================================================
# Buckets expire a week after their day; the TTL index sweeps them.
RETENTION_DAYS: Final[int] = 7

# =============================================================================
# PAGINATION
# =============================================================================
DEFAULT_PAGE_SIZE: Final[int] = 50
MAX_PAGE_SIZE: Final[int] = 1000

# Cap on records returned per user regardless of campaign enrollment
ELIGIBLE_RECORDS_LIMIT: Final[int] = 100

# Sentinel reported for totals that are deliberately never computed
UNKNOWN_TOTAL: Final[int] = -1

# =============================================================================
# SCHEDULE RECORDS
# =============================================================================
# Attempts per schedule record (fixed-size dispatch_time sequence)
DISPATCH_ATTEMPTS: Final[int] = 3
RECORD_KEY_SEPARATOR: Final[str] = ":"

# =============================================================================
# DRIVER DEFAULTS
# =============================================================================
MONGO_POOL_MAX: Final[int] = 100
MONGO_CONNECT_TIMEOUT_MS: Final[int] = 2 * SECOND_MS
MONGO_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 5 * SECOND_MS
MONGO_OPERATION_TIMEOUT_MS: Final[int] = 10 * SECOND_MS
