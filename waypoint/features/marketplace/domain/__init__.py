"""
Domain subpackage for the marketplace feature.
"""

from .fees import compute_fee_split
from .models import (
    APPLICATION_LIFECYCLE,
    REVIEW_ACTION_TARGETS,
    TRANSACTION_LIFECYCLE,
    ApplicationStatus,
    CheckoutIntent,
    FeeSplit,
    PayoutOnboardingLink,
    Product,
    ProductStatus,
    ReconcileReport,
    ReviewAction,
    SellerApplication,
    SellerProfile,
    SellerStatus,
    Transaction,
    TransactionStatus,
)
from .slugs import generate_slug, generate_unique_slug

__all__ = [
    "APPLICATION_LIFECYCLE",
    "REVIEW_ACTION_TARGETS",
    "TRANSACTION_LIFECYCLE",
    "ApplicationStatus",
    "CheckoutIntent",
    "FeeSplit",
    "PayoutOnboardingLink",
    "Product",
    "ProductStatus",
    "ReconcileReport",
    "ReviewAction",
    "SellerApplication",
    "SellerProfile",
    "SellerStatus",
    "Transaction",
    "TransactionStatus",
    "compute_fee_split",
    "generate_slug",
    "generate_unique_slug",
]
