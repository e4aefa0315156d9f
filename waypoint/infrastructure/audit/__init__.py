"""
Audit logging infrastructure for administrator actions.
"""

from waypoint.infrastructure.audit.audit_logger import AuditLogger, audit_logger

__all__ = ["AuditLogger", "audit_logger"]
