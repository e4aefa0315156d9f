"""
Platform fee computation.

Fees are computed on integer minor units with Decimal and rounded half up,
so 999 cents at 15% is a 150 cent fee (149.85 -> 150).
"""

from decimal import ROUND_HALF_UP, Decimal

from waypoint.domain.errors import ValidationFailed
from waypoint.features.marketplace.domain.models import FeeSplit


def compute_fee_split(amount: int, fee_rate: Decimal, minimum_fee: int = 0) -> FeeSplit:
    if amount <= 0:
        raise ValidationFailed("Amount must be positive")
    if not Decimal(0) <= fee_rate <= Decimal(1):
        raise ValidationFailed("Fee rate must be between 0 and 1")

    fee = int((Decimal(amount) * fee_rate).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    fee = min(max(fee, minimum_fee), amount)

    return FeeSplit(amount=amount, platform_fee=fee, seller_earnings=amount - fee)
