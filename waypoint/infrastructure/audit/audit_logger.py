"""
AuditLogger - append-only record of administrator actions.

Waitlist and seller-application decisions are never deleted; this module
keeps who did what, to which entity, and from where.

Usage:
    from waypoint.infrastructure.audit import audit_logger

    await audit_logger.log(
        actor_id="admin-1",
        action="waitlist_entry_approved",
        resource_type="waitlist_entry",
        resource_id=entry_id,
        ip_address="192.168.1.1",
        request_id="req-abc123",
    )

Design Principles:
- Write to both database (immutable) and structured logs (searchable)
- Never fail the request if audit logging fails
"""

from typing import Any

from psycopg.types.json import Jsonb

from waypoint.db.pool import db_pool
from waypoint.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AuditLogger:
    """
    Centralized audit logging service.

    Logs to:
    1. Database (audit_logs table) - Immutable, queryable
    2. Structured logs (stdout) - Real-time monitoring
    """

    @staticmethod
    async def log(
        actor_id: str | None,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        resource_count: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        request_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Log an audit event to database and structured logs.

        Returns:
            True if logged successfully, False if failed (never raises)
        """
        logger.info(
            "Audit event",
            audit_action=action,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            resource_count=resource_count,
            ip_address=ip_address,
            request_id=request_id,
        )

        try:
            async with db_pool.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO audit_logs (
                        actor_id, action, resource_type, resource_id,
                        resource_count, ip_address, user_agent,
                        request_id, metadata
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        actor_id,
                        action,
                        resource_type,
                        resource_id,
                        resource_count,
                        ip_address,
                        user_agent,
                        request_id,
                        Jsonb(metadata) if metadata is not None else None,
                    ),
                )
            return True

        except Exception as e:
            # Never fail the request; keep enough context to recreate the row
            logger.error(
                "CRITICAL: Failed to write audit log to database",
                error=str(e),
                error_type=type(e).__name__,
                fallback_data={
                    "actor_id": actor_id,
                    "action": action,
                    "resource_type": resource_type,
                    "resource_id": resource_id,
                    "resource_count": resource_count,
                    "request_id": request_id,
                    "metadata": metadata,
                },
            )
            return False


audit_logger = AuditLogger()
