"""
Ledger storage: one transactions row per processor authorization.

The unique external_authorization_id makes every insert idempotent, so
checkout and the reconciler may both try to write the same row.
"""

from uuid import UUID

from waypoint.db.helpers import fetch_one, with_db_retry
from waypoint.features.marketplace.domain import (
    TRANSACTION_LIFECYCLE,
    Transaction,
    TransactionStatus,
)
from waypoint.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class LedgerRepository:
    COLUMNS = """
        id, external_authorization_id, buyer_id, seller_id, product_id, amount,
        platform_fee, seller_earnings, currency, status, created_at, updated_at
    """

    @staticmethod
    def _row_to_transaction(row: dict | None) -> Transaction | None:
        if not row:
            return None
        return Transaction(
            id=str(row["id"]),
            external_authorization_id=row["external_authorization_id"],
            buyer_id=row["buyer_id"],
            seller_id=row["seller_id"],
            product_id=row["product_id"],
            amount=int(row["amount"]),
            platform_fee=int(row["platform_fee"]),
            seller_earnings=int(row["seller_earnings"]),
            currency=row.get("currency") or "usd",
            status=TransactionStatus(row["status"]),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    async def insert(self, transaction: Transaction) -> tuple[Transaction, bool]:
        """
        Insert unless a row for the same authorization exists.

        Returns (stored row, created).
        """
        query = f"""
            INSERT INTO transactions (
                id, external_authorization_id, buyer_id, seller_id, product_id,
                amount, platform_fee, seller_earnings, currency, status
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (external_authorization_id) DO NOTHING
            RETURNING {self.COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                UUID(transaction.id),
                transaction.external_authorization_id,
                transaction.buyer_id,
                transaction.seller_id,
                transaction.product_id,
                transaction.amount,
                transaction.platform_fee,
                transaction.seller_earnings,
                transaction.currency,
                transaction.status.value,
            ),
        )
        if row:
            return self._row_to_transaction(row), True

        existing = await self.get_by_external_id(transaction.external_authorization_id)
        return existing, False

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def get_by_external_id(self, external_id: str) -> Transaction | None:
        query = f"SELECT {self.COLUMNS} FROM transactions WHERE external_authorization_id = %s"
        return self._row_to_transaction(await fetch_one(query, (external_id,)))

    async def update_status(
        self, external_id: str, target: TransactionStatus
    ) -> Transaction | None:
        """Compare-and-set; None when the row is missing or already settled."""
        sources = [s.value for s in TRANSACTION_LIFECYCLE.sources_for(target)]
        query = f"""
            UPDATE transactions
            SET status = %s, updated_at = NOW()
            WHERE external_authorization_id = %s AND status = ANY(%s)
            RETURNING {self.COLUMNS}
        """
        row = await fetch_one(query, (target.value, external_id, sources))
        return self._row_to_transaction(row)


ledger_repository = LedgerRepository()
