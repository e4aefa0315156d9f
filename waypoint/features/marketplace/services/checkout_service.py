"""
Checkout orchestration.

Validation happens before any processor call. Once the processor has
authorized a payment the checkout succeeds: the ledger write is
best effort and is repaired asynchronously if it fails.
"""

import asyncio
from collections.abc import Awaitable
from decimal import Decimal
from typing import TypeVar
from uuid import uuid4

from waypoint.config import settings
from waypoint.db.helpers import DatabaseError
from waypoint.domain.errors import (
    AmountMismatch,
    PaymentAuthorizationFailed,
    ProductUnavailable,
    SellerNotPayable,
    StoreUnavailable,
)
from waypoint.features.marketplace.domain import (
    CheckoutIntent,
    ProductStatus,
    Transaction,
    TransactionStatus,
    compute_fee_split,
)
from waypoint.features.marketplace.repository.marketplace_repository import (
    marketplace_repository,
)
from waypoint.features.marketplace.services.ledger_reconciler import ledger_reconciler
from waypoint.infrastructure.observability.logging import get_logger
from waypoint.integrations.stripe_client import (
    Authorization,
    PaymentProcessorError,
    payment_processor,
)

logger = get_logger(__name__)

T = TypeVar("T")


class CheckoutOrchestrator:
    def __init__(
        self,
        repository=marketplace_repository,
        processor=payment_processor,
        reconciler=ledger_reconciler,
        fee_rate: Decimal | None = None,
        minimum_fee: int | None = None,
    ):
        self.repository = repository
        self.processor = processor
        self.reconciler = reconciler
        self.fee_rate = fee_rate if fee_rate is not None else settings.MARKETPLACE_PLATFORM_FEE_RATE
        self.minimum_fee = (
            minimum_fee if minimum_fee is not None else settings.MARKETPLACE_MINIMUM_PLATFORM_FEE
        )

    async def _store(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except (DatabaseError, RuntimeError) as e:
            # RuntimeError: pool not initialized or already closed
            logger.error("Checkout storage failure", operation=operation, error=str(e))
            raise StoreUnavailable(operation=operation) from e

    async def create_checkout_intent(
        self, buyer_id: str, product_id: str, client_amount: int | None = None
    ) -> CheckoutIntent:
        """
        Authorize a purchase of ``product_id`` and record the pending Transaction.

        Raises:
            ProductUnavailable: product missing or not active
            AmountMismatch: client_amount differs from the stored price
            SellerNotPayable: seller missing, inactive, or without payout account
            PaymentAuthorizationFailed: the processor declined or errored
        """
        log = logger.bind(buyer_id=buyer_id, product_id=product_id)

        product = await self._store("get_product", self.repository.get_product(product_id))
        if product is None or product.status is not ProductStatus.ACTIVE:
            raise ProductUnavailable(product_id=product_id)

        if client_amount is not None and client_amount != product.price:
            log.warning("Checkout amount mismatch", client_amount=client_amount, price=product.price)
            raise AmountMismatch(product_id=product_id)

        seller = await self._store("get_profile", self.repository.get_profile(product.seller_id))
        if seller is None or not seller.is_payable:
            raise SellerNotPayable(seller_id=product.seller_id)

        split = compute_fee_split(product.price, self.fee_rate, self.minimum_fee)
        currency = product.currency or settings.MARKETPLACE_DEFAULT_CURRENCY
        transaction_id = str(uuid4())

        try:
            authorization = await self.processor.create_authorization(
                amount=split.amount,
                currency=currency,
                application_fee=split.platform_fee,
                connected_account_id=seller.payout_account_id,
                idempotency_key=f"checkout-{transaction_id}",
                metadata={
                    "transaction_id": transaction_id,
                    "buyer_id": buyer_id,
                    "seller_id": seller.id,
                    "product_id": product.id,
                    "product_title": product.title,
                    "platform_fee": str(split.platform_fee),
                    "seller_earnings": str(split.seller_earnings),
                },
            )
        except PaymentProcessorError as e:
            log.error("Payment authorization failed", error=str(e), error_type=e.error_type.value)
            raise PaymentAuthorizationFailed(product_id=product_id) from e

        transaction = Transaction(
            id=transaction_id,
            external_authorization_id=authorization.id,
            buyer_id=buyer_id,
            seller_id=seller.id,
            product_id=product.id,
            amount=split.amount,
            platform_fee=split.platform_fee,
            seller_earnings=split.seller_earnings,
            currency=currency,
            status=TransactionStatus.PENDING,
        )

        # Runs to completion even if the request is cancelled
        recorded = await asyncio.shield(
            self.reconciler.record(transaction, seller.payout_account_id)
        )
        if recorded:
            await self._mark_recorded(authorization)

        log.info(
            "Checkout intent created",
            authorization_id=authorization.id,
            transaction_id=transaction_id,
            amount=split.amount,
            platform_fee=split.platform_fee,
            ledger_recorded=recorded,
        )
        return CheckoutIntent(
            client_secret=authorization.client_secret or "",
            authorization_id=authorization.id,
            transaction_id=transaction_id,
            payout_account_id=seller.payout_account_id,
            amount=split.amount,
            platform_fee=split.platform_fee,
            seller_earnings=split.seller_earnings,
            currency=currency,
            ledger_recorded=recorded,
        )

    async def _mark_recorded(self, authorization: Authorization) -> None:
        try:
            await self.processor.update_metadata(
                authorization.id, authorization.account_id, {"ledger_status": "recorded"}
            )
        except Exception as e:
            logger.warning(
                "Could not mark authorization as recorded",
                authorization_id=authorization.id,
                error=str(e),
            )


checkout_orchestrator = CheckoutOrchestrator()
