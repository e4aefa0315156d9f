import hashlib
import hmac
import json
import time

import pytest
import stripe

from waypoint.integrations import stripe_client
from waypoint.integrations.stripe_client import (
    PaymentProcessor,
    PaymentProcessorError,
    ProcessorErrorType,
    WebhookVerificationError,
    classify_error,
)

WEBHOOK_SECRET = "whsec_test"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.mark.parametrize(
    "error,expected",
    [
        (stripe.RateLimitError("slow down"), ProcessorErrorType.RATE_LIMIT),
        (stripe.APIConnectionError("connection reset"), ProcessorErrorType.TRANSIENT),
        (stripe.APIError("internal"), ProcessorErrorType.TRANSIENT),
        (stripe.CardError("declined", None, "card_declined"), ProcessorErrorType.PERMANENT),
        (stripe.InvalidRequestError("bad param", "amount"), ProcessorErrorType.PERMANENT),
        (stripe.AuthenticationError("bad key"), ProcessorErrorType.PERMANENT),
    ],
)
def test_classify_error(error, expected):
    assert classify_error(error) is expected


def test_only_permanent_errors_are_not_retryable():
    assert PaymentProcessorError("x", ProcessorErrorType.TRANSIENT).retryable
    assert PaymentProcessorError("x", ProcessorErrorType.RATE_LIMIT).retryable
    assert not PaymentProcessorError("x", ProcessorErrorType.PERMANENT).retryable


@pytest.mark.asyncio
async def test_create_authorization_uses_connected_account_and_fee(monkeypatch):
    calls = []

    def _create(**kwargs):
        calls.append(kwargs)
        return {
            "id": "pi_1",
            "client_secret": "pi_1_secret",
            "amount": kwargs["amount"],
            "currency": kwargs["currency"],
            "status": "requires_payment_method",
            "metadata": kwargs["metadata"],
        }

    monkeypatch.setattr(stripe.PaymentIntent, "create", _create)

    authorization = await PaymentProcessor(api_key="sk_test").create_authorization(
        amount=10000,
        currency="USD",
        application_fee=1500,
        connected_account_id="acct_123",
        idempotency_key="checkout-tx-1",
        metadata={"transaction_id": "tx-1"},
    )

    assert authorization.id == "pi_1"
    assert authorization.account_id == "acct_123"
    assert authorization.metadata == {"transaction_id": "tx-1"}
    call = calls[0]
    assert call["application_fee_amount"] == 1500
    assert call["currency"] == "usd"
    assert call["stripe_account"] == "acct_123"
    assert call["idempotency_key"] == "checkout-tx-1"
    assert call["api_key"] == "sk_test"


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried(monkeypatch):
    calls = []

    def _create(**kwargs):
        calls.append(kwargs)
        raise stripe.InvalidRequestError("No such destination", "stripe_account")

    monkeypatch.setattr(stripe.PaymentIntent, "create", _create)

    with pytest.raises(PaymentProcessorError) as exc_info:
        await PaymentProcessor(api_key="sk_test").create_authorization(
            amount=100,
            currency="usd",
            application_fee=15,
            connected_account_id="acct_x",
            idempotency_key="k",
            metadata={},
        )

    assert exc_info.value.error_type is ProcessorErrorType.PERMANENT
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transient_error_is_retried(monkeypatch):
    calls = []

    def _retrieve(authorization_id, **kwargs):
        calls.append(authorization_id)
        if len(calls) == 1:
            raise stripe.APIConnectionError("connection reset")
        return {"id": authorization_id, "amount": 500, "currency": "usd", "status": "succeeded"}

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", _retrieve)

    authorization = await PaymentProcessor(api_key="sk_test").retrieve_authorization(
        "pi_9", "acct_1"
    )

    assert authorization.status == "succeeded"
    assert len(calls) == 2


def test_webhook_with_valid_signature_is_parsed(monkeypatch):
    monkeypatch.setattr(stripe_client.settings, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    payload = json.dumps(
        {
            "id": "evt_1",
            "object": "event",
            "type": "payment_intent.succeeded",
            "account": "acct_123",
            "data": {"object": {"id": "pi_1", "object": "payment_intent"}},
        }
    ).encode()

    event = PaymentProcessor().construct_webhook_event(payload, _sign(payload))

    assert event["type"] == "payment_intent.succeeded"
    assert event["account"] == "acct_123"
    assert event["data"]["object"]["id"] == "pi_1"


def test_webhook_with_bad_signature_is_rejected(monkeypatch):
    monkeypatch.setattr(stripe_client.settings, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    payload = b'{"id": "evt_1", "object": "event"}'

    with pytest.raises(WebhookVerificationError):
        PaymentProcessor().construct_webhook_event(payload, _sign(payload, "whsec_other"))


def test_webhook_without_configured_secret_is_rejected(monkeypatch):
    monkeypatch.setattr(stripe_client.settings, "STRIPE_WEBHOOK_SECRET", None)

    with pytest.raises(WebhookVerificationError):
        PaymentProcessor().construct_webhook_event(b"{}", "t=1,v1=abc")
