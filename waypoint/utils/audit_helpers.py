"""
Audit Helper Utilities - One-line audit logging for admin endpoints.

Usage:
    from waypoint.utils.audit_helpers import audit_admin_action

    await audit_admin_action(
        request=request,
        admin_id=claims["sub"],
        action="waitlist_entry_invited",
        resource_type="waitlist_entry",
        resource_id=entry_id,
    )
"""

from typing import Any

from fastapi import Request

from waypoint.infrastructure.audit.audit_logger import audit_logger


async def audit_admin_action(
    request: Request,
    admin_id: str,
    action: str,
    resource_type: str,
    resource_id: str | None = None,
    resource_count: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """
    Record an administrator action with the request context
    (IP, user-agent, request ID) set by RequestContextMiddleware.
    """
    return await audit_logger.log(
        actor_id=admin_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        resource_count=resource_count,
        ip_address=getattr(request.state, "ip_address", None),
        user_agent=getattr(request.state, "user_agent", None),
        request_id=getattr(request.state, "request_id", None),
        metadata=metadata,
    )
