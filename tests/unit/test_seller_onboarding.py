import pytest

from waypoint.domain.errors import PayoutOnboardingFailed, SellerNotFound
from waypoint.features.marketplace.domain import SellerStatus
from waypoint.features.marketplace.services.seller_onboarding import SellerOnboarding
from waypoint.integrations.stripe_client import PaymentProcessorError, ProcessorErrorType


@pytest.fixture
def onboarding(marketplace_repo, payment_processor):
    return SellerOnboarding(repository=marketplace_repo, processor=payment_processor)


@pytest.mark.asyncio
async def test_start_creates_account_once(onboarding, marketplace_repo):
    marketplace_repo.add_seller("seller-1", payout_account_id="")

    first = await onboarding.start_payout_onboarding("seller-1")
    second = await onboarding.start_payout_onboarding("seller-1")

    assert first.account_id == second.account_id == "acct_seller-1"
    assert first.url.endswith("/acct_seller-1")
    profile = marketplace_repo.profiles["seller-1"]
    assert profile.pending_payout_account_id == "acct_seller-1"
    assert profile.payout_account_id == ""
    assert not profile.is_payable


@pytest.mark.asyncio
async def test_complete_waits_until_account_enabled(onboarding, marketplace_repo, payment_processor):
    marketplace_repo.add_seller("seller-1", payout_account_id="")
    await onboarding.start_payout_onboarding("seller-1")

    still_pending = await onboarding.complete_payout_onboarding("seller-1")
    assert still_pending.payout_account_id == ""

    payment_processor.accounts["acct_seller-1"] = True
    activated = await onboarding.complete_payout_onboarding("seller-1")

    assert activated.payout_account_id == "acct_seller-1"
    assert activated.pending_payout_account_id is None
    assert activated.is_payable


@pytest.mark.asyncio
async def test_inactive_or_unknown_seller_cannot_onboard(onboarding, marketplace_repo):
    marketplace_repo.add_seller("seller-1", status=SellerStatus.INACTIVE)

    with pytest.raises(SellerNotFound):
        await onboarding.start_payout_onboarding("seller-1")
    with pytest.raises(SellerNotFound):
        await onboarding.start_payout_onboarding("nobody")


@pytest.mark.asyncio
async def test_processor_failure_maps_to_onboarding_failed(
    onboarding, marketplace_repo, payment_processor, monkeypatch
):
    marketplace_repo.add_seller("seller-1", payout_account_id="")

    async def _fail(*args, **kwargs):
        raise PaymentProcessorError("stripe down", ProcessorErrorType.TRANSIENT)

    monkeypatch.setattr(payment_processor, "create_connected_account", _fail)

    with pytest.raises(PayoutOnboardingFailed):
        await onboarding.start_payout_onboarding("seller-1")
    assert marketplace_repo.profiles["seller-1"].pending_payout_account_id is None
