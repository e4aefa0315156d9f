"""
Notification dispatch for waitlist and marketplace events.

Callers send only after the state transition has committed. send() schedules
delivery off the request path; dispatch() never raises, it logs failures and
returns False.

Channels:
    - email: Resend HTTP API
    - slack: incoming webhook (operator-facing events)
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from waypoint.config import settings
from waypoint.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RESEND_EMAILS_URL = "https://api.resend.com/emails"
MAX_SEND_ATTEMPTS = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class NotificationKind(str, Enum):
    WAITLIST_SIGNUP = "waitlist_signup"
    WAITLIST_INVITATION = "waitlist_invitation"
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"
    APPLICATION_NEEDS_INFO = "application_needs_info"


SLACK_KINDS = {NotificationKind.WAITLIST_SIGNUP, NotificationKind.APPLICATION_SUBMITTED}


@dataclass(slots=True)
class Notification:
    kind: NotificationKind
    recipient: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


class NotificationError(Exception):
    """Raised by a channel when delivery fails; caught inside dispatch()."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _greeting(context: dict[str, Any]) -> str:
    name = context.get("name")
    return f"Hi {name}," if name else "Hi there,"


def render_email(notification: Notification) -> tuple[str, str]:
    """Subject and plain-text body for an email notification."""
    ctx = notification.context
    business = ctx.get("business_name", "your business")

    if notification.kind is NotificationKind.WAITLIST_INVITATION:
        return (
            "You're invited to Waypoint",
            f"{_greeting(ctx)}\n\nYour spot on the waitlist has come up. "
            f"Sign in at {settings.APP_BASE_URL} with this email to get started.",
        )
    if notification.kind is NotificationKind.APPLICATION_APPROVED:
        return (
            f"{business} is approved to sell on Waypoint",
            f"{_greeting(ctx)}\n\nYour seller application was approved. "
            f"Your public page is {settings.APP_BASE_URL}/marketplace/experts/{ctx.get('slug', '')}. "
            "Finish payout setup from your dashboard to start selling.",
        )
    if notification.kind is NotificationKind.APPLICATION_REJECTED:
        return (
            f"Update on your seller application for {business}",
            f"{_greeting(ctx)}\n\nWe're unable to approve your application at this time.\n\n"
            f"Reason: {ctx.get('reason', '')}",
        )
    if notification.kind is NotificationKind.APPLICATION_NEEDS_INFO:
        return (
            f"More information needed for {business}",
            f"{_greeting(ctx)}\n\nWe need a bit more information before we can decide:\n\n"
            f"{ctx.get('info_needed', '')}",
        )
    raise NotificationError(f"No email template for {notification.kind.value}")


def render_slack(notification: Notification) -> str:
    ctx = notification.context
    if notification.kind is NotificationKind.WAITLIST_SIGNUP:
        return f"New waitlist signup: {ctx.get('email')} (position #{ctx.get('position')})"
    if notification.kind is NotificationKind.APPLICATION_SUBMITTED:
        return f"New seller application: {ctx.get('business_name')} <{ctx.get('email')}>"
    raise NotificationError(f"No Slack template for {notification.kind.value}")


class NotificationDispatcher:
    """Fire-and-forget delivery of notifications over email and Slack."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS
        self._pending: set[asyncio.Task] = set()

    def send(self, notification: Notification) -> None:
        """Schedule dispatch() in the background and return immediately."""
        task = asyncio.create_task(self.dispatch(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait for scheduled deliveries; used on shutdown."""
        if not self._pending:
            return
        _, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
        if not_done:
            logger.warning("Notifications abandoned at shutdown", count=len(not_done))
            for task in not_done:
                task.cancel()

    async def dispatch(self, notification: Notification) -> bool:
        """
        Deliver a notification.

        Returns:
            True if delivered (or logged when disabled), False on failure.
            Never raises.
        """
        log = logger.bind(kind=notification.kind.value, recipient=notification.recipient)

        if not settings.NOTIFICATIONS_ENABLED:
            log.info("Notification skipped (disabled)", context=notification.context)
            return True

        try:
            if notification.kind in SLACK_KINDS:
                await self._with_retry(self._send_slack, render_slack(notification))
            else:
                if not notification.recipient:
                    raise NotificationError("Email notification has no recipient")
                subject, body = render_email(notification)
                await self._with_retry(self._send_email, notification.recipient, subject, body)

            log.info("Notification sent")
            return True

        except Exception as e:
            log.error("Notification failed", error=str(e), error_type=type(e).__name__)
            return False

    async def _with_retry(self, send, *args) -> None:
        for attempt in range(1, MAX_SEND_ATTEMPTS + 1):
            try:
                await send(*args)
                return
            except (httpx.TransportError, NotificationError) as e:
                retryable = isinstance(e, httpx.TransportError) or (
                    e.status_code in RETRY_STATUS_CODES
                )
                if not retryable or attempt == MAX_SEND_ATTEMPTS:
                    raise
                await asyncio.sleep(0.5 * attempt)

    async def _send_email(self, to: str, subject: str, body: str) -> None:
        if not settings.RESEND_API_KEY:
            raise NotificationError("RESEND_API_KEY is not configured")

        payload = {"from": settings.EMAIL_FROM, "to": [to], "subject": subject, "text": body}
        if settings.EMAIL_REPLY_TO:
            payload["reply_to"] = settings.EMAIL_REPLY_TO

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                RESEND_EMAILS_URL,
                json=payload,
                headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
            )
        if response.status_code >= 400:
            raise NotificationError(
                f"Email provider returned {response.status_code}", response.status_code
            )

    async def _send_slack(self, text: str) -> None:
        if not settings.SLACK_WEBHOOK_URL:
            raise NotificationError("SLACK_WEBHOOK_URL is not configured")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(settings.SLACK_WEBHOOK_URL, json={"text": text})
        if response.status_code >= 400:
            raise NotificationError(
                f"Slack webhook returned {response.status_code}", response.status_code
            )


notification_dispatcher = NotificationDispatcher()
