"""
Domain models for the seller marketplace.

Amounts are integers in minor currency units (cents).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from waypoint.domain.lifecycle import StatusMachine


class ApplicationStatus(str, Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    ADDITIONAL_INFO_REQUIRED = "additional_info_required"


class ReviewAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    NEEDS_INFO = "needs_info"


REVIEW_ACTION_TARGETS = {
    ReviewAction.APPROVE: ApplicationStatus.APPROVED,
    ReviewAction.REJECT: ApplicationStatus.REJECTED,
    ReviewAction.NEEDS_INFO: ApplicationStatus.ADDITIONAL_INFO_REQUIRED,
}

_DECISIONS = {
    ApplicationStatus.APPROVED,
    ApplicationStatus.REJECTED,
    ApplicationStatus.ADDITIONAL_INFO_REQUIRED,
}

APPLICATION_LIFECYCLE: StatusMachine[ApplicationStatus] = StatusMachine(
    "seller_application",
    {
        ApplicationStatus.SUBMITTED: _DECISIONS,
        # needs_info is re-entrant; the applicant may also resubmit
        ApplicationStatus.ADDITIONAL_INFO_REQUIRED: _DECISIONS | {ApplicationStatus.SUBMITTED},
        ApplicationStatus.APPROVED: set(),
        ApplicationStatus.REJECTED: set(),
    },
    terminal={ApplicationStatus.APPROVED, ApplicationStatus.REJECTED},
)


class SellerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ProductStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TRANSACTION_LIFECYCLE: StatusMachine[TransactionStatus] = StatusMachine(
    "transaction",
    {
        TransactionStatus.PENDING: {TransactionStatus.SUCCEEDED, TransactionStatus.FAILED},
        TransactionStatus.SUCCEEDED: set(),
        TransactionStatus.FAILED: set(),
    },
    terminal={TransactionStatus.SUCCEEDED, TransactionStatus.FAILED},
)


@dataclass(slots=True)
class SellerApplication:
    id: str
    applicant_user_id: str
    email: str
    business_name: str
    status: ApplicationStatus
    created_at: datetime
    specializations: list[str] = field(default_factory=list)
    experience: str | None = None
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    review_notes: str | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class SellerProfile:
    """Public seller record; its id is the applicant's user id."""

    id: str
    slug: str
    business_name: str
    contact_email: str
    status: SellerStatus
    specializations: list[str] = field(default_factory=list)
    payout_account_id: str = ""
    pending_payout_account_id: str | None = None
    payout_schedule: str = "monthly"
    created_at: datetime | None = None

    @property
    def is_payable(self) -> bool:
        return self.status is SellerStatus.ACTIVE and bool(self.payout_account_id)


@dataclass(slots=True)
class Product:
    id: str
    seller_id: str
    title: str
    price: int
    status: ProductStatus
    currency: str = "usd"
    type: str = "trip_template"


@dataclass(slots=True)
class FeeSplit:
    amount: int
    platform_fee: int
    seller_earnings: int


@dataclass(slots=True)
class Transaction:
    id: str
    external_authorization_id: str
    buyer_id: str
    seller_id: str
    product_id: str
    amount: int
    platform_fee: int
    seller_earnings: int
    status: TransactionStatus = TransactionStatus.PENDING
    currency: str = "usd"
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class CheckoutIntent:
    """What the buyer's client needs to confirm payment."""

    client_secret: str
    authorization_id: str
    transaction_id: str
    payout_account_id: str
    amount: int
    platform_fee: int
    seller_earnings: int
    currency: str
    ledger_recorded: bool


@dataclass(slots=True)
class PayoutOnboardingLink:
    account_id: str
    url: str


@dataclass(slots=True)
class ReconcileReport:
    processed: int = 0
    repaired: int = 0
    already_present: int = 0
    requeued: int = 0
    dead_lettered: int = 0
