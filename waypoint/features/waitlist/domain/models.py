"""
Domain models for the waitlist (admission queue) feature.

These dataclasses carry no I/O so repositories, services, and API layers
can share them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from waypoint.domain.lifecycle import StatusMachine


class WaitlistStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    INVITED = "invited"
    JOINED = "joined"


WAITLIST_LIFECYCLE: StatusMachine[WaitlistStatus] = StatusMachine(
    "waitlist",
    {
        WaitlistStatus.PENDING: {WaitlistStatus.APPROVED},
        WaitlistStatus.APPROVED: {WaitlistStatus.INVITED},
        WaitlistStatus.INVITED: {WaitlistStatus.JOINED},
        WaitlistStatus.JOINED: set(),
    },
)

# Column stamped when an entry enters each status
STATUS_TIMESTAMP_COLUMNS = {
    WaitlistStatus.APPROVED: "approved_at",
    WaitlistStatus.INVITED: "invited_at",
    WaitlistStatus.JOINED: "joined_at",
}


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass(slots=True)
class WaitlistEntry:
    """Represents a waitlist_entries row."""

    id: str
    email: str
    position: int
    status: WaitlistStatus
    created_at: datetime
    name: str | None = None
    interests: list[str] = field(default_factory=list)
    referral_source: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    approved_at: datetime | None = None
    invited_at: datetime | None = None
    joined_at: datetime | None = None


@dataclass(slots=True)
class NewWaitlistEntry:
    """Signup payload after normalization, before a position is assigned."""

    email: str
    name: str | None = None
    interests: list[str] = field(default_factory=list)
    referral_source: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class InviteOutcome:
    entry_id: str
    email: str | None
    success: bool
    error: str | None = None


@dataclass(slots=True)
class BulkInviteResult:
    """Per-entry results of a bulk invite; never a single pass/fail."""

    requested: int
    outcomes: list[InviteOutcome] = field(default_factory=list)

    @property
    def invited(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def failed_ids(self) -> list[str]:
        return [o.entry_id for o in self.outcomes if not o.success]


@dataclass(slots=True)
class WaitlistStats:
    total: int = 0
    pending: int = 0
    approved: int = 0
    invited: int = 0
    joined: int = 0
