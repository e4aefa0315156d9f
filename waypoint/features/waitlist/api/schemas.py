"""
Request/response models for the waitlist endpoints.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from waypoint.features.waitlist.domain import (
    BulkInviteResult,
    WaitlistEntry,
    WaitlistStats,
    WaitlistStatus,
)


class WaitlistSignupRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    name: str | None = Field(None, max_length=200)
    interests: list[str] = Field(default_factory=list, max_length=20)
    referral_source: str | None = Field(None, max_length=100)
    metadata: dict[str, Any] = Field(default_factory=dict)


class WaitlistSignupResponse(BaseModel):
    success: bool = True
    id: str
    position: int
    message: str


class WaitlistStatusResponse(BaseModel):
    status: WaitlistStatus
    position: int
    created_at: datetime


class WaitlistEntryResponse(BaseModel):
    id: str
    email: str
    name: str | None
    position: int
    status: WaitlistStatus
    interests: list[str]
    referral_source: str | None
    metadata: dict[str, Any]
    created_at: datetime
    approved_at: datetime | None
    invited_at: datetime | None
    joined_at: datetime | None

    @classmethod
    def from_domain(cls, entry: WaitlistEntry) -> "WaitlistEntryResponse":
        return cls(
            id=entry.id,
            email=entry.email,
            name=entry.name,
            position=entry.position,
            status=entry.status,
            interests=entry.interests,
            referral_source=entry.referral_source,
            metadata=entry.metadata,
            created_at=entry.created_at,
            approved_at=entry.approved_at,
            invited_at=entry.invited_at,
            joined_at=entry.joined_at,
        )


class WaitlistListResponse(BaseModel):
    entries: list[WaitlistEntryResponse]
    count: int


class WaitlistStatsResponse(BaseModel):
    total: int
    pending: int
    approved: int
    invited: int
    joined: int

    @classmethod
    def from_domain(cls, stats: WaitlistStats) -> "WaitlistStatsResponse":
        return cls(
            total=stats.total,
            pending=stats.pending,
            approved=stats.approved,
            invited=stats.invited,
            joined=stats.joined,
        )


class BulkInviteRequest(BaseModel):
    count: int = Field(..., ge=1, le=500)


class BulkInviteResponse(BaseModel):
    requested: int
    invited: int
    failed: int
    failed_ids: list[str]
    errors: dict[str, str]

    @classmethod
    def from_domain(cls, result: BulkInviteResult) -> "BulkInviteResponse":
        return cls(
            requested=result.requested,
            invited=result.invited,
            failed=result.failed,
            failed_ids=result.failed_ids,
            errors={o.entry_id: o.error or "" for o in result.outcomes if not o.success},
        )


class MarkJoinedResponse(BaseModel):
    joined: bool
    status: WaitlistStatus | None = None
