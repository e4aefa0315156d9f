"""
Ledger reconciler: keeps the transactions table consistent with the
payment processor.

An authorization that exists at the processor must end up with exactly
one local Transaction. The checkout path records it immediately; when
that write fails the authorization id is queued in Redis and repaired
later from the processor's own copy (amount and metadata), which carries
the pre-assigned local transaction id.

Queue items: {"external_authorization_id", "payout_account_id", "attempts"}
"""

import asyncio
from uuid import UUID

from waypoint.config import settings
from waypoint.db.helpers import DatabaseError
from waypoint.features.marketplace.domain import (
    ReconcileReport,
    Transaction,
    TransactionStatus,
)
from waypoint.features.marketplace.repository.ledger_repository import ledger_repository
from waypoint.infrastructure.observability.logging import get_logger
from waypoint.integrations.stripe_client import (
    Authorization,
    PaymentProcessorError,
    payment_processor,
)
from waypoint.services.redis_client import fast_redis

logger = get_logger(__name__)

RECONCILE_QUEUE = "ledger:reconcile"
DEAD_LETTER_QUEUE = "ledger:reconcile:dead"


class LedgerRepairError(ValueError):
    """The processor's authorization lacks what is needed to rebuild the row."""


def transaction_from_authorization(authorization: Authorization) -> Transaction:
    """Rebuild the local Transaction from the metadata written at checkout."""
    meta = authorization.metadata
    required = ("transaction_id", "buyer_id", "seller_id", "product_id", "platform_fee")
    missing = [key for key in required if not meta.get(key)]
    if missing:
        raise LedgerRepairError(f"Authorization metadata missing {', '.join(missing)}")

    try:
        platform_fee = int(meta["platform_fee"])
        transaction_id = str(UUID(meta["transaction_id"]))
    except ValueError as e:
        raise LedgerRepairError(f"Authorization metadata is malformed: {e}") from e

    seller_earnings = authorization.amount - platform_fee
    if platform_fee < 0 or seller_earnings < 0:
        raise LedgerRepairError("Authorization fee exceeds its amount")

    return Transaction(
        id=transaction_id,
        external_authorization_id=authorization.id,
        buyer_id=meta["buyer_id"],
        seller_id=meta["seller_id"],
        product_id=meta["product_id"],
        amount=authorization.amount,
        platform_fee=platform_fee,
        seller_earnings=seller_earnings,
        currency=authorization.currency,
        status=TransactionStatus.PENDING,
    )


class LedgerReconciler:
    def __init__(
        self,
        repository=ledger_repository,
        processor=payment_processor,
        queue=fast_redis,
        write_attempts: int | None = None,
        max_attempts: int | None = None,
        retry_delay: float = 0.1,
    ):
        self.repository = repository
        self.processor = processor
        self.queue = queue
        self.write_attempts = write_attempts or settings.LEDGER_WRITE_ATTEMPTS
        self.max_attempts = max_attempts or settings.LEDGER_RECONCILE_MAX_ATTEMPTS
        self.retry_delay = retry_delay

    async def record(self, transaction: Transaction, payout_account_id: str) -> bool:
        """
        Write a pending Transaction, queueing it for repair on failure.

        Returns True when the row is stored. Never raises.
        """
        log = logger.bind(
            transaction_id=transaction.id,
            external_authorization_id=transaction.external_authorization_id,
        )
        for attempt in range(1, self.write_attempts + 1):
            try:
                _, created = await self.repository.insert(transaction)
                log.info("Ledger transaction recorded", created=created, attempt=attempt)
                return True
            except Exception as e:
                log.warning(
                    "Ledger write failed",
                    attempt=attempt,
                    max_attempts=self.write_attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                if attempt < self.write_attempts:
                    await asyncio.sleep(self.retry_delay * (2 ** (attempt - 1)))

        await self._enqueue(
            RECONCILE_QUEUE,
            {
                "external_authorization_id": transaction.external_authorization_id,
                "payout_account_id": payout_account_id,
                "attempts": 0,
            },
        )
        return False

    async def _enqueue(self, key: str, item: dict) -> bool:
        try:
            await self.queue.push_json(key, item)
            logger.warning(
                "Ledger repair queued",
                queue=key,
                external_authorization_id=item["external_authorization_id"],
                attempts=item["attempts"],
            )
            return True
        except Exception as e:
            # Last resort: the authorization id must survive somewhere an operator can find it
            logger.error(
                "CRITICAL: Ledger repair could not be queued",
                queue=key,
                item=item,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def reconcile_authorization(
        self, external_id: str, payout_account_id: str
    ) -> tuple[Transaction, bool]:
        """
        Ensure a local row exists for the authorization.

        Returns (transaction, repaired) where repaired is True when this
        call created the row.
        """
        existing = await self.repository.get_by_external_id(external_id)
        if existing:
            return existing, False

        authorization = await self.processor.retrieve_authorization(external_id, payout_account_id)
        stored, created = await self.repository.insert(transaction_from_authorization(authorization))
        if created:
            logger.info(
                "Ledger transaction repaired",
                external_authorization_id=external_id,
                transaction_id=stored.id,
            )
        return stored, created

    async def reconcile_pending(self, batch_size: int | None = None) -> ReconcileReport:
        """Drain up to ``batch_size`` queued repairs."""
        batch_size = batch_size or settings.LEDGER_RECONCILE_BATCH_SIZE
        report = ReconcileReport()

        for _ in range(batch_size):
            item = await self.queue.pop_json(RECONCILE_QUEUE)
            if item is None:
                break
            report.processed += 1

            external_id = item.get("external_authorization_id")
            try:
                _, repaired = await self.reconcile_authorization(
                    external_id, item.get("payout_account_id")
                )
            except (DatabaseError, PaymentProcessorError, LedgerRepairError) as e:
                permanent = isinstance(e, LedgerRepairError) or (
                    isinstance(e, PaymentProcessorError) and not e.retryable
                )
                await self._retry_later(item, e, permanent, report)
                continue
            except Exception as e:
                # Popped items must go back before the error propagates
                await self._retry_later(item, e, False, report)
                raise

            if repaired:
                report.repaired += 1
            else:
                report.already_present += 1

        if report.processed:
            logger.info(
                "Ledger reconciliation batch complete",
                processed=report.processed,
                repaired=report.repaired,
                already_present=report.already_present,
                requeued=report.requeued,
                dead_lettered=report.dead_lettered,
            )
        return report

    async def _retry_later(
        self, item: dict, error: Exception, permanent: bool, report: ReconcileReport
    ) -> None:
        attempts = int(item.get("attempts", 0)) + 1
        logger.warning(
            "Ledger repair attempt failed",
            external_authorization_id=item.get("external_authorization_id"),
            attempts=attempts,
            error=str(error),
            error_type=type(error).__name__,
        )
        retry_item = {**item, "attempts": attempts}
        if permanent or attempts >= self.max_attempts:
            await self._enqueue(DEAD_LETTER_QUEUE, retry_item)
            report.dead_lettered += 1
        else:
            await self._enqueue(RECONCILE_QUEUE, retry_item)
            report.requeued += 1

    async def apply_processor_status(
        self, external_id: str, payout_account_id: str, status: TransactionStatus
    ) -> Transaction:
        """
        Settle a transaction from a processor event (pending -> succeeded|failed).

        A missing row is repaired first. Redelivered events are no-ops.
        """
        updated = await self.repository.update_status(external_id, status)
        if updated:
            logger.info("Transaction settled", external_authorization_id=external_id, status=status.value)
            return updated

        current, repaired = await self.reconcile_authorization(external_id, payout_account_id)
        if current.status is TransactionStatus.PENDING:
            updated = await self.repository.update_status(external_id, status)
            if updated:
                logger.info(
                    "Transaction settled",
                    external_authorization_id=external_id,
                    status=status.value,
                    repaired=repaired,
                )
                return updated
            current = await self.repository.get_by_external_id(external_id) or current

        if current.status is not status:
            logger.warning(
                "Ignoring processor status for settled transaction",
                external_authorization_id=external_id,
                current=current.status.value,
                incoming=status.value,
            )
        return current


ledger_reconciler = LedgerReconciler()
