"""
Stripe Connect client for seller payouts and buyer payment authorizations.

Implements:
- PaymentIntents created on the seller's connected account with the
  platform fee as application_fee_amount (direct charges)
- Express account creation and onboarding links
- Retry with exponential backoff for transient and rate-limit errors only
- Webhook signature verification

The Stripe SDK is synchronous; every call runs in a worker thread.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import stripe
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from waypoint.config import settings
from waypoint.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ProcessorErrorType(Enum):
    """Classification of processor errors for retry logic."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RATE_LIMIT = "rate_limit"


class PaymentProcessorError(Exception):
    def __init__(
        self,
        message: str,
        error_type: ProcessorErrorType,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error

    @property
    def retryable(self) -> bool:
        return self.error_type is not ProcessorErrorType.PERMANENT


class WebhookVerificationError(Exception):
    """Webhook payload or signature could not be verified."""


@dataclass(slots=True)
class Authorization:
    """The parts of a PaymentIntent the engine relies on."""

    id: str
    client_secret: str | None
    amount: int
    currency: str
    status: str
    account_id: str
    metadata: dict[str, str] = field(default_factory=dict)


def classify_error(error: stripe.StripeError) -> ProcessorErrorType:
    if isinstance(error, stripe.RateLimitError):
        return ProcessorErrorType.RATE_LIMIT
    if isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
        return ProcessorErrorType.TRANSIENT
    if isinstance(
        error,
        (
            stripe.CardError,
            stripe.InvalidRequestError,
            stripe.AuthenticationError,
            stripe.PermissionError,
            stripe.IdempotencyError,
        ),
    ):
        return ProcessorErrorType.PERMANENT
    # Unknown errors are treated as transient
    return ProcessorErrorType.TRANSIENT


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, PaymentProcessorError) and error.retryable


_retry_policy = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)


def _to_authorization(intent: Any, account_id: str) -> Authorization:
    return Authorization(
        id=intent["id"],
        client_secret=intent.get("client_secret"),
        amount=int(intent["amount"]),
        currency=intent.get("currency") or settings.MARKETPLACE_DEFAULT_CURRENCY,
        status=intent.get("status") or "",
        account_id=account_id,
        metadata=dict(intent.get("metadata") or {}),
    )


class PaymentProcessor:
    def __init__(self, api_key: str | None = None, api_version: str | None = None):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.api_version = api_version or settings.STRIPE_API_VERSION

    def _options(self, **extra) -> dict[str, Any]:
        options: dict[str, Any] = {"api_key": self.api_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        options.update({k: v for k, v in extra.items() if v is not None})
        return options

    async def _call(self, operation: str, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as e:
            error_type = classify_error(e)
            logger.error(
                "Stripe API error",
                operation=operation,
                error_type=error_type.value,
                error_code=getattr(e, "code", None),
                error=str(e),
            )
            raise PaymentProcessorError(str(e), error_type, original_error=e) from e

    # ------------------------------------------------------------------
    # Payment authorizations
    # ------------------------------------------------------------------

    @_retry_policy
    async def create_authorization(
        self,
        *,
        amount: int,
        currency: str,
        application_fee: int,
        connected_account_id: str,
        idempotency_key: str,
        metadata: dict[str, str],
    ) -> Authorization:
        intent = await self._call(
            "create_authorization",
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency.lower(),
            application_fee_amount=application_fee,
            automatic_payment_methods={"enabled": True},
            metadata=metadata,
            **self._options(stripe_account=connected_account_id, idempotency_key=idempotency_key),
        )
        logger.info(
            "Payment authorization created",
            authorization_id=intent["id"],
            connected_account_id=connected_account_id,
            amount=amount,
        )
        return _to_authorization(intent, connected_account_id)

    @_retry_policy
    async def retrieve_authorization(
        self, authorization_id: str, connected_account_id: str
    ) -> Authorization:
        intent = await self._call(
            "retrieve_authorization",
            stripe.PaymentIntent.retrieve,
            authorization_id,
            **self._options(stripe_account=connected_account_id),
        )
        return _to_authorization(intent, connected_account_id)

    async def update_metadata(
        self, authorization_id: str, connected_account_id: str, metadata: dict[str, str]
    ) -> None:
        await self._call(
            "update_metadata",
            stripe.PaymentIntent.modify,
            authorization_id,
            metadata=metadata,
            **self._options(stripe_account=connected_account_id),
        )

    # ------------------------------------------------------------------
    # Connected accounts
    # ------------------------------------------------------------------

    @_retry_policy
    async def create_connected_account(
        self, email: str, seller_id: str, idempotency_key: str | None = None
    ) -> str:
        account = await self._call(
            "create_connected_account",
            stripe.Account.create,
            type="express",
            email=email,
            capabilities={
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            metadata={"seller_id": seller_id},
            **self._options(idempotency_key=idempotency_key),
        )
        logger.info("Connected account created", account_id=account["id"], seller_id=seller_id)
        return account["id"]

    @_retry_policy
    async def create_onboarding_link(self, account_id: str) -> str:
        refresh_url, return_url = settings.seller_onboarding_urls()
        link = await self._call(
            "create_onboarding_link",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
            **self._options(),
        )
        return link["url"]

    @_retry_policy
    async def is_account_onboarded(self, account_id: str) -> bool:
        account = await self._call(
            "retrieve_account", stripe.Account.retrieve, account_id, **self._options()
        )
        return bool(account.get("charges_enabled")) and bool(account.get("payouts_enabled"))

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def construct_webhook_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if not settings.STRIPE_WEBHOOK_SECRET:
            raise WebhookVerificationError("Webhook secret not configured")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(
                payload, signature, settings.STRIPE_WEBHOOK_SECRET
            )
        except ValueError as e:
            raise WebhookVerificationError("Invalid payload") from e
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError("Invalid signature") from e
        return event.to_dict() if hasattr(event, "to_dict") else dict(event)


payment_processor = PaymentProcessor()
