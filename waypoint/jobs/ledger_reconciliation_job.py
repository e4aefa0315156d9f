"""
Ledger reconciliation job.

Drains the ledger:reconcile queue on an interval, creating any
Transaction rows the checkout path failed to write.
"""

import asyncio
from datetime import datetime, timezone

from waypoint.config import settings
from waypoint.db.pool import db_pool
from waypoint.features.marketplace.domain import ReconcileReport
from waypoint.features.marketplace.services import ledger_reconciler as reconciler_module
from waypoint.infrastructure.observability.logging import get_logger
from waypoint.services.redis_client import fast_redis

logger = get_logger(__name__)


class LedgerReconciliationMetrics:
    """Running totals across job runs."""

    def __init__(self):
        self.runs = 0
        self.processed = 0
        self.repaired = 0
        self.already_present = 0
        self.requeued = 0
        self.dead_lettered = 0
        self.run_failures = 0
        self.last_run_at: datetime | None = None
        self.last_error: str | None = None

    def record(self, report: ReconcileReport) -> None:
        self.runs += 1
        self.processed += report.processed
        self.repaired += report.repaired
        self.already_present += report.already_present
        self.requeued += report.requeued
        self.dead_lettered += report.dead_lettered
        self.last_run_at = datetime.now(timezone.utc)

    def record_failure(self, error: Exception) -> None:
        self.runs += 1
        self.run_failures += 1
        self.last_error = f"{type(error).__name__}: {error}"
        self.last_run_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "job_run": "ledger_reconciliation",
            "runs": self.runs,
            "processed": self.processed,
            "repaired": self.repaired,
            "already_present": self.already_present,
            "requeued": self.requeued,
            "dead_lettered": self.dead_lettered,
            "run_failures": self.run_failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }


class LedgerReconciliationJob:
    def __init__(self, reconciler=None, batch_size: int | None = None):
        self._reconciler = reconciler
        self.batch_size = batch_size or settings.LEDGER_RECONCILE_BATCH_SIZE
        self.is_running = False
        self.metrics = LedgerReconciliationMetrics()

    @property
    def reconciler(self):
        return self._reconciler or reconciler_module.ledger_reconciler

    async def run_once(self) -> dict:
        """Drain batches until the queue is empty or a batch makes no progress."""
        if self.is_running:
            logger.warning("Ledger reconciliation already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        total = ReconcileReport()
        try:
            while True:
                report = await self.reconciler.reconcile_pending(self.batch_size)
                for name in ("processed", "repaired", "already_present", "requeued", "dead_lettered"):
                    setattr(total, name, getattr(total, name) + getattr(report, name))

                # A partial batch means the queue is drained; requeued items wait for the next run
                if report.processed < self.batch_size or report.requeued == report.processed:
                    break

            self.metrics.record(total)
            return {
                "skipped": False,
                "processed": total.processed,
                "repaired": total.repaired,
                "already_present": total.already_present,
                "requeued": total.requeued,
                "dead_lettered": total.dead_lettered,
            }
        except Exception as e:
            self.metrics.record_failure(e)
            raise
        finally:
            self.is_running = False

    def get_job_status(self) -> dict:
        return {"is_running": self.is_running, **self.metrics.to_dict()}


ledger_reconciliation_job = LedgerReconciliationJob()


async def start_ledger_reconciliation_scheduler(max_runs: int | None = None) -> None:
    """
    Run the reconciliation job forever (or ``max_runs`` times).

    Owns the database pool and Redis client for the worker process.
    """
    interval = settings.LEDGER_RECONCILE_INTERVAL_SECONDS
    logger.info("Starting ledger reconciliation scheduler", interval_seconds=interval)

    await db_pool.initialize()
    await fast_redis.initialize()

    runs = 0
    try:
        while max_runs is None or runs < max_runs:
            runs += 1
            try:
                result = await ledger_reconciliation_job.run_once()
                if not result.get("skipped") and result.get("processed"):
                    logger.info("Ledger reconciliation cycle completed", **result)
            except Exception as e:
                logger.error(
                    "Error in ledger reconciliation scheduler",
                    error=str(e),
                    error_type=type(e).__name__,
                )

            if max_runs is None or runs < max_runs:
                await asyncio.sleep(interval)
    finally:
        await fast_redis.close()
        await db_pool.close()
        logger.info("Ledger reconciliation scheduler stopped", runs=runs)
