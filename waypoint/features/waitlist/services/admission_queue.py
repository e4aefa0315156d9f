"""
Admission queue: the waitlist lifecycle controller.

Entries move pending -> approved -> invited -> joined. Positions come from
the sequencer at signup and are the only ordering guarantee: bulk
operations always serve the lowest positions first. Notifications go out
after the transition is stored and never affect its outcome.
"""

import csv
import io
import re
from collections.abc import Awaitable
from datetime import datetime
from typing import Any, TypeVar

from waypoint.db.helpers import DatabaseError
from waypoint.domain.errors import (
    EngineError,
    EntryNotFound,
    InvalidTransition,
    StoreUnavailable,
    ValidationFailed,
)
from waypoint.features.waitlist.domain import (
    WAITLIST_LIFECYCLE,
    BulkInviteResult,
    InviteOutcome,
    NewWaitlistEntry,
    WaitlistEntry,
    WaitlistStats,
    WaitlistStatus,
    normalize_email,
)
from waypoint.features.waitlist.repository.waitlist_repository import waitlist_repository
from waypoint.infrastructure.observability.logging import get_logger
from waypoint.services.notification_service import (
    Notification,
    NotificationKind,
    notification_dispatcher,
)

logger = get_logger(__name__)

T = TypeVar("T")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_BULK_INVITE = 500

EXPORT_HEADERS = [
    "Position",
    "Email",
    "Name",
    "Status",
    "Referral Source",
    "Created At",
    "Approved At",
    "Invited At",
    "Joined At",
    "UTM Source",
    "UTM Medium",
    "UTM Campaign",
]


def _format_ts(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else ""


class AdmissionQueue:
    def __init__(self, repository=waitlist_repository, notifier=notification_dispatcher):
        self.repository = repository
        self.notifier = notifier

    async def _store(self, operation: str, call: Awaitable[T]) -> T:
        """Await a repository call, mapping storage and pool failures to StoreUnavailable."""
        try:
            return await call
        except (DatabaseError, RuntimeError) as e:
            # RuntimeError: pool not initialized or already closed
            logger.error("Waitlist storage failure", operation=operation, error=str(e))
            raise StoreUnavailable(operation=operation) from e

    async def signup(
        self,
        email: str,
        *,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
        interests: list[str] | None = None,
        referral_source: str | None = None,
    ) -> WaitlistEntry:
        """
        Add an email to the waitlist at the next position.

        Raises:
            ValidationFailed: malformed email
            DuplicateEntry: email (case-insensitive) already present
        """
        normalized = normalize_email(email)
        if not EMAIL_PATTERN.match(normalized):
            raise ValidationFailed("Invalid email format")

        new_entry = NewWaitlistEntry(
            email=normalized,
            name=(name or "").strip() or None,
            interests=list(interests or []),
            referral_source=referral_source,
            metadata=dict(metadata or {}),
        )
        entry = await self._store("signup", self.repository.create_entry(new_entry))

        logger.info("Waitlist signup", entry_id=entry.id, position=entry.position)
        self.notifier.send(
            Notification(
                NotificationKind.WAITLIST_SIGNUP,
                context={"email": entry.email, "name": entry.name, "position": entry.position},
            )
        )
        return entry

    async def _transition(
        self, entry_id: str, target: WaitlistStatus, *, idempotent: bool = False
    ) -> WaitlistEntry:
        updated = await self._store(target.value, self.repository.transition(entry_id, target))
        if updated:
            logger.info("Waitlist entry transitioned", entry_id=entry_id, status=target.value)
            return updated

        current = await self._store("get_by_id", self.repository.get_by_id(entry_id))
        if current is None:
            raise EntryNotFound(entry_id=entry_id)
        if idempotent and current.status is target:
            logger.info("Waitlist transition already applied", entry_id=entry_id, status=target.value)
            return current

        WAITLIST_LIFECYCLE.ensure(current.status, target)
        # Status allowed the move but the conditional update missed: a concurrent change won
        raise InvalidTransition(current.status.value, target.value, entry_id=entry_id)

    async def approve(self, entry_id: str) -> WaitlistEntry:
        """pending -> approved. Re-approving returns the entry without re-stamping."""
        return await self._transition(entry_id, WaitlistStatus.APPROVED, idempotent=True)

    async def invite(self, entry_id: str) -> WaitlistEntry:
        """approved -> invited, then send the invitation email."""
        entry = await self._transition(entry_id, WaitlistStatus.INVITED)
        self.notifier.send(
            Notification(
                NotificationKind.WAITLIST_INVITATION,
                recipient=entry.email,
                context={"name": entry.name},
            )
        )
        return entry

    async def bulk_invite(self, count: int) -> BulkInviteResult:
        """
        Invite up to ``count`` approved entries, lowest position first.

        Each entry is invited independently; a failure is recorded in the
        result and the batch continues.
        """
        if count < 1 or count > MAX_BULK_INVITE:
            raise ValidationFailed(f"count must be between 1 and {MAX_BULK_INVITE}")

        candidates = await self._store(
            "bulk_invite", self.repository.list_entries(WaitlistStatus.APPROVED, limit=count)
        )
        result = BulkInviteResult(requested=count)

        for candidate in candidates:
            try:
                await self.invite(candidate.id)
                result.outcomes.append(InviteOutcome(candidate.id, candidate.email, True))
            except EngineError as e:
                logger.warning("Bulk invite entry failed", entry_id=candidate.id, error=e.reason)
                result.outcomes.append(
                    InviteOutcome(candidate.id, candidate.email, False, error=e.reason)
                )

        logger.info(
            "Bulk invite completed",
            requested=count,
            candidates=len(candidates),
            invited=result.invited,
            failed=result.failed,
        )
        return result

    async def mark_joined(self, email: str) -> WaitlistEntry | None:
        """
        invited -> joined on first successful sign-in.

        Any other status (or an unknown email) is a silent no-op since
        sign-in can race with admin status changes.
        """
        normalized = normalize_email(email)
        entry = await self._store(
            "mark_joined",
            self.repository.transition_by_email(normalized, WaitlistStatus.JOINED),
        )
        if entry is None:
            logger.debug("mark_joined ignored", email=normalized)
            return None

        logger.info("Waitlist entry joined", entry_id=entry.id)
        return entry

    async def get_status(self, email: str) -> WaitlistEntry:
        entry = await self._store(
            "get_by_email", self.repository.get_by_email(normalize_email(email))
        )
        if entry is None:
            raise EntryNotFound()
        return entry

    async def list_entries(
        self, status: WaitlistStatus | None = None, limit: int | None = None
    ) -> list[WaitlistEntry]:
        return await self._store("list_entries", self.repository.list_entries(status, limit=limit))

    async def stats(self) -> WaitlistStats:
        return await self._store("stats", self.repository.count_by_status())

    async def export_csv(self) -> str:
        """All entries in position order as CSV."""
        entries = await self.list_entries()

        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(EXPORT_HEADERS)
        for entry in entries:
            writer.writerow(
                [
                    entry.position,
                    entry.email,
                    entry.name or "",
                    entry.status.value,
                    entry.referral_source or "",
                    _format_ts(entry.created_at),
                    _format_ts(entry.approved_at),
                    _format_ts(entry.invited_at),
                    _format_ts(entry.joined_at),
                    entry.metadata.get("utm_source", ""),
                    entry.metadata.get("utm_medium", ""),
                    entry.metadata.get("utm_campaign", ""),
                ]
            )
        return buffer.getvalue()


admission_queue = AdmissionQueue()
