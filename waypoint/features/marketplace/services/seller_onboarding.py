"""
Seller payout onboarding via Stripe Connect Express accounts.

An approved seller gets one connected account, kept as pending until
Stripe reports charges and payouts enabled. Only then is it copied into
payout_account_id and the seller becomes payable.
"""

from waypoint.db.helpers import DatabaseError
from waypoint.domain.errors import PayoutOnboardingFailed, SellerNotFound, StoreUnavailable
from waypoint.features.marketplace.domain import PayoutOnboardingLink, SellerProfile, SellerStatus
from waypoint.features.marketplace.repository.marketplace_repository import (
    marketplace_repository,
)
from waypoint.infrastructure.observability.logging import get_logger
from waypoint.integrations.stripe_client import PaymentProcessorError, payment_processor

logger = get_logger(__name__)


class SellerOnboarding:
    def __init__(self, repository=marketplace_repository, processor=payment_processor):
        self.repository = repository
        self.processor = processor

    async def _active_profile(self, user_id: str) -> SellerProfile:
        try:
            profile = await self.repository.get_profile(user_id)
        except DatabaseError as e:
            raise StoreUnavailable(operation="get_profile") from e
        if profile is None or profile.status is not SellerStatus.ACTIVE:
            raise SellerNotFound(seller_id=user_id)
        return profile

    async def start_payout_onboarding(self, user_id: str, email: str | None = None) -> PayoutOnboardingLink:
        profile = await self._active_profile(user_id)
        account_id = profile.payout_account_id or profile.pending_payout_account_id

        try:
            if not account_id:
                created = await self.processor.create_connected_account(
                    email or profile.contact_email,
                    seller_id=profile.id,
                    idempotency_key=f"connect-account-{profile.id}",
                )
                try:
                    stored = await self.repository.set_pending_payout_account(profile.id, created)
                except DatabaseError as e:
                    raise StoreUnavailable(operation="set_pending_payout_account") from e
                account_id = stored.pending_payout_account_id if stored else created

            url = await self.processor.create_onboarding_link(account_id)
        except PaymentProcessorError as e:
            logger.error("Payout onboarding failed", seller_id=profile.id, error=str(e))
            raise PayoutOnboardingFailed(seller_id=profile.id) from e

        logger.info("Payout onboarding link issued", seller_id=profile.id, account_id=account_id)
        return PayoutOnboardingLink(account_id=account_id, url=url)

    async def complete_payout_onboarding(self, user_id: str) -> SellerProfile:
        """Promote the pending account once the processor has enabled it."""
        profile = await self._active_profile(user_id)
        if profile.payout_account_id or not profile.pending_payout_account_id:
            return profile

        account_id = profile.pending_payout_account_id
        try:
            onboarded = await self.processor.is_account_onboarded(account_id)
        except PaymentProcessorError as e:
            raise PayoutOnboardingFailed(seller_id=profile.id) from e

        if not onboarded:
            logger.info("Payout account not yet enabled", seller_id=profile.id, account_id=account_id)
            return profile

        try:
            updated = await self.repository.activate_payout_account(profile.id, account_id)
        except DatabaseError as e:
            raise StoreUnavailable(operation="activate_payout_account") from e
        logger.info("Seller payout account activated", seller_id=profile.id, account_id=account_id)
        return updated or profile


seller_onboarding = SellerOnboarding()
