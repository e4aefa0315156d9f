"""
Domain error hierarchy shared by the waitlist and marketplace features.

Services raise these; routers translate them into HTTP responses using
``http_status`` and ``reason``. ``reason`` is safe to show to the caller.
"""


class EngineError(Exception):
    """Base class for every expected failure of the admission/transaction engine."""

    code = "engine_error"
    http_status = 500
    default_reason = "Request could not be completed"

    def __init__(self, reason: str | None = None, **context):
        self.reason = reason or self.default_reason
        self.context = context
        super().__init__(self.reason)


# Validation: rejected before any mutation


class ValidationFailed(EngineError):
    code = "validation_failed"
    http_status = 400
    default_reason = "Invalid request"


class AmountMismatch(ValidationFailed):
    code = "amount_mismatch"
    default_reason = "Amount does not match the product price"


# Preconditions: rejected with no side effects


class DuplicateEntry(EngineError):
    code = "duplicate_entry"
    http_status = 400
    default_reason = "This email is already on the waitlist"


class InvalidTransition(EngineError):
    code = "invalid_transition"
    http_status = 400
    default_reason = "Invalid status transition"

    def __init__(self, current: str, target: str, reason: str | None = None, **context):
        self.current = current
        self.target = target
        super().__init__(
            reason or f"Cannot move from '{current}' to '{target}'",
            current=current,
            target=target,
            **context,
        )


class TerminalState(InvalidTransition):
    code = "terminal_state"
    http_status = 409

    def __init__(self, current: str, target: str, **context):
        super().__init__(
            current,
            target,
            reason=f"Already {current}; no further decisions are accepted",
            **context,
        )


class SellerNotPayable(EngineError):
    code = "seller_not_payable"
    http_status = 400
    default_reason = "Seller is not set up to receive payments"


# Unknown entities


class NotFound(EngineError):
    code = "not_found"
    http_status = 404
    default_reason = "Not found"


class EntryNotFound(NotFound):
    code = "entry_not_found"
    default_reason = "Waitlist entry not found"


class ApplicationNotFound(NotFound):
    code = "application_not_found"
    default_reason = "Application not found"


class SellerNotFound(NotFound):
    code = "seller_not_found"
    default_reason = "Seller profile not found"


class ProductUnavailable(NotFound):
    code = "product_unavailable"
    default_reason = "Product not found or not available"


# Collaborator failures on the primary write path


class StoreUnavailable(EngineError):
    code = "store_unavailable"
    http_status = 500
    default_reason = "Storage is temporarily unavailable"


class PaymentAuthorizationFailed(EngineError):
    code = "payment_authorization_failed"
    http_status = 500
    default_reason = "Payment could not be processed"


class PayoutOnboardingFailed(EngineError):
    code = "payout_onboarding_failed"
    http_status = 502
    default_reason = "Payout setup is temporarily unavailable"
