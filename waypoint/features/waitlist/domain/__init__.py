"""
Domain subpackage for the waitlist feature.
"""

from .models import (
    STATUS_TIMESTAMP_COLUMNS,
    WAITLIST_LIFECYCLE,
    BulkInviteResult,
    InviteOutcome,
    NewWaitlistEntry,
    WaitlistEntry,
    WaitlistStats,
    WaitlistStatus,
    normalize_email,
)

__all__ = [
    "STATUS_TIMESTAMP_COLUMNS",
    "WAITLIST_LIFECYCLE",
    "BulkInviteResult",
    "InviteOutcome",
    "NewWaitlistEntry",
    "WaitlistEntry",
    "WaitlistStats",
    "WaitlistStatus",
    "normalize_email",
]
