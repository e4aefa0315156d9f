"""
Waitlist routes.

Public:
    POST /waitlist                        - join (rate limited per IP)
    GET  /waitlist/status?email=          - position and status
    POST /waitlist/joined                 - signed-in user completes the invite

Admin:
    GET  /admin/waitlist                  - list by position
    GET  /admin/waitlist/stats
    POST /admin/waitlist/{entry_id}/approve
    POST /admin/waitlist/{entry_id}/invite
    POST /admin/waitlist/bulk-invite
    GET  /admin/waitlist/export           - CSV

Domain errors propagate to the EngineError handler registered in main.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, Response

from waypoint.auth.verify import admin_dependency, auth_dependency
from waypoint.domain.errors import ValidationFailed
from waypoint.features.waitlist.api.schemas import (
    BulkInviteRequest,
    BulkInviteResponse,
    MarkJoinedResponse,
    WaitlistEntryResponse,
    WaitlistListResponse,
    WaitlistSignupRequest,
    WaitlistSignupResponse,
    WaitlistStatsResponse,
    WaitlistStatusResponse,
)
from waypoint.features.waitlist.domain import WaitlistStatus
from waypoint.features.waitlist.services import admission_queue as queue_module
from waypoint.infrastructure.observability.logging import bind_request_context, get_logger
from waypoint.middleware.rate_limit_dependencies import rate_limit_waitlist_signup
from waypoint.utils.audit_helpers import audit_admin_action

router = APIRouter(tags=["waitlist"])
logger = get_logger(__name__)


def _queue():
    return queue_module.admission_queue


@router.post("/waitlist", response_model=WaitlistSignupResponse, status_code=201)
async def join_waitlist(
    body: WaitlistSignupRequest,
    _rate: None = Depends(rate_limit_waitlist_signup),
):
    entry = await _queue().signup(
        body.email,
        name=body.name,
        metadata=body.metadata,
        interests=body.interests,
        referral_source=body.referral_source,
    )
    return WaitlistSignupResponse(
        id=entry.id,
        position=entry.position,
        message=f"You're #{entry.position} on the waitlist.",
    )


@router.get("/waitlist/status", response_model=WaitlistStatusResponse)
async def waitlist_status(email: str = Query(..., min_length=3)):
    entry = await _queue().get_status(email)
    return WaitlistStatusResponse(
        status=entry.status, position=entry.position, created_at=entry.created_at
    )


@router.post("/waitlist/joined", response_model=MarkJoinedResponse)
async def mark_joined(claims: dict = Depends(auth_dependency)):
    """Called after sign-in; the email comes from the verified token."""
    email = claims.get("email")
    if not email:
        raise ValidationFailed("Token has no email claim")

    entry = await _queue().mark_joined(email)
    if entry is None:
        return MarkJoinedResponse(joined=False)
    return MarkJoinedResponse(joined=True, status=entry.status)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/admin/waitlist", response_model=WaitlistListResponse)
async def list_waitlist(
    status: WaitlistStatus | None = None,
    limit: int | None = Query(None, ge=1, le=1000),
    claims: dict = Depends(admin_dependency),
):
    entries = await _queue().list_entries(status, limit=limit)
    return WaitlistListResponse(
        entries=[WaitlistEntryResponse.from_domain(e) for e in entries],
        count=len(entries),
    )


@router.get("/admin/waitlist/stats", response_model=WaitlistStatsResponse)
async def waitlist_stats(claims: dict = Depends(admin_dependency)):
    return WaitlistStatsResponse.from_domain(await _queue().stats())


@router.get("/admin/waitlist/export")
async def export_waitlist(request: Request, claims: dict = Depends(admin_dependency)):
    content = await _queue().export_csv()
    await audit_admin_action(
        request, claims["sub"], "waitlist_exported", resource_type="waitlist_entry"
    )

    filename = f"waitlist-{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/admin/waitlist/bulk-invite", response_model=BulkInviteResponse)
async def bulk_invite(
    body: BulkInviteRequest,
    request: Request,
    claims: dict = Depends(admin_dependency),
):
    bind_request_context(admin_id=claims["sub"])
    result = await _queue().bulk_invite(body.count)

    await audit_admin_action(
        request,
        claims["sub"],
        "waitlist_bulk_invited",
        resource_type="waitlist_entry",
        resource_count=result.invited,
        metadata={"requested": body.count, "failed_ids": result.failed_ids},
    )
    return BulkInviteResponse.from_domain(result)


@router.post("/admin/waitlist/{entry_id}/approve", response_model=WaitlistEntryResponse)
async def approve_entry(entry_id: str, request: Request, claims: dict = Depends(admin_dependency)):
    bind_request_context(admin_id=claims["sub"])
    entry = await _queue().approve(entry_id)
    await audit_admin_action(
        request, claims["sub"], "waitlist_entry_approved", "waitlist_entry", resource_id=entry_id
    )
    return WaitlistEntryResponse.from_domain(entry)


@router.post("/admin/waitlist/{entry_id}/invite", response_model=WaitlistEntryResponse)
async def invite_entry(entry_id: str, request: Request, claims: dict = Depends(admin_dependency)):
    bind_request_context(admin_id=claims["sub"])
    entry = await _queue().invite(entry_id)
    await audit_admin_action(
        request, claims["sub"], "waitlist_entry_invited", "waitlist_entry", resource_id=entry_id
    )
    return WaitlistEntryResponse.from_domain(entry)
