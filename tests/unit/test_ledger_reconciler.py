import pytest

from waypoint.features.marketplace.domain import TransactionStatus
from waypoint.features.marketplace.services.ledger_reconciler import (
    DEAD_LETTER_QUEUE,
    RECONCILE_QUEUE,
    LedgerReconciler,
    LedgerRepairError,
    transaction_from_authorization,
)
from waypoint.integrations.stripe_client import (
    Authorization,
    PaymentProcessorError,
    ProcessorErrorType,
)

TX_ID = "3f2c1b9e-8a44-4c6e-9d1f-0b7a5e2c4d61"

METADATA = {
    "transaction_id": TX_ID,
    "buyer_id": "buyer-1",
    "seller_id": "seller-1",
    "product_id": "prod-1",
    "platform_fee": "1500",
}


def _authorization(auth_id="pi_1", metadata=None, amount=10000):
    return Authorization(
        id=auth_id,
        client_secret=f"{auth_id}_secret",
        amount=amount,
        currency="usd",
        status="requires_payment_method",
        account_id="acct_123",
        metadata=dict(METADATA if metadata is None else metadata),
    )


@pytest.fixture
def reconciler(ledger_repo, payment_processor, fake_redis):
    return LedgerReconciler(
        repository=ledger_repo,
        processor=payment_processor,
        queue=fake_redis,
        write_attempts=2,
        max_attempts=3,
        retry_delay=0,
    )


def _queue_repair(fake_redis, auth_id="pi_1", attempts=0):
    fake_redis.lists.setdefault(RECONCILE_QUEUE, []).append(
        {"external_authorization_id": auth_id, "payout_account_id": "acct_123", "attempts": attempts}
    )


def test_transaction_rebuilt_from_metadata():
    transaction = transaction_from_authorization(_authorization())

    assert transaction.id == TX_ID
    assert transaction.external_authorization_id == "pi_1"
    assert (transaction.platform_fee, transaction.seller_earnings) == (1500, 8500)
    assert transaction.status is TransactionStatus.PENDING


def test_missing_metadata_cannot_be_repaired():
    with pytest.raises(LedgerRepairError):
        transaction_from_authorization(_authorization(metadata={"buyer_id": "b"}))


def test_fee_larger_than_amount_cannot_be_repaired():
    with pytest.raises(LedgerRepairError):
        transaction_from_authorization(_authorization(amount=100))


@pytest.mark.asyncio
async def test_record_never_raises_and_queues_when_redis_also_down(
    reconciler, ledger_repo, fake_redis
):
    ledger_repo.fail_inserts = 5
    fake_redis.fail_push = True
    transaction = transaction_from_authorization(_authorization())

    assert await reconciler.record(transaction, "acct_123") is False
    assert ledger_repo.insert_calls == 2


@pytest.mark.asyncio
async def test_reconcile_pending_repairs_missing_row(reconciler, payment_processor, ledger_repo, fake_redis):
    payment_processor.authorizations["pi_1"] = _authorization()
    _queue_repair(fake_redis)

    report = await reconciler.reconcile_pending()

    assert (report.processed, report.repaired) == (1, 1)
    assert ledger_repo.rows["pi_1"].id == TX_ID
    assert fake_redis.lists[RECONCILE_QUEUE] == []


@pytest.mark.asyncio
async def test_reconcile_is_idempotent_for_existing_rows(reconciler, payment_processor, ledger_repo, fake_redis):
    payment_processor.authorizations["pi_1"] = _authorization()
    _queue_repair(fake_redis)
    _queue_repair(fake_redis)

    report = await reconciler.reconcile_pending()

    assert (report.repaired, report.already_present) == (1, 1)
    assert len(ledger_repo.rows) == 1


@pytest.mark.asyncio
async def test_transient_failure_is_requeued_with_attempt_count(
    reconciler, payment_processor, fake_redis
):
    payment_processor.fail_retrieve = PaymentProcessorError("timeout", ProcessorErrorType.TRANSIENT)
    _queue_repair(fake_redis)

    report = await reconciler.reconcile_pending(batch_size=1)

    assert report.requeued == 1
    assert fake_redis.lists[RECONCILE_QUEUE][0]["attempts"] == 1


@pytest.mark.asyncio
async def test_exhausted_attempts_go_to_dead_letter(reconciler, ledger_repo, fake_redis, payment_processor):
    payment_processor.authorizations["pi_1"] = _authorization()
    ledger_repo.fail_reads = True
    _queue_repair(fake_redis, attempts=2)

    report = await reconciler.reconcile_pending()

    assert report.dead_lettered == 1
    assert fake_redis.lists[DEAD_LETTER_QUEUE][0]["attempts"] == 3
    assert fake_redis.lists[RECONCILE_QUEUE] == []


@pytest.mark.asyncio
async def test_permanent_failure_is_dead_lettered_immediately(reconciler, fake_redis):
    _queue_repair(fake_redis, auth_id="pi_unknown")

    report = await reconciler.reconcile_pending()

    assert report.dead_lettered == 1
    assert fake_redis.lists[DEAD_LETTER_QUEUE][0]["external_authorization_id"] == "pi_unknown"


@pytest.mark.asyncio
async def test_apply_status_settles_pending_transaction(reconciler, ledger_repo):
    await ledger_repo.insert(transaction_from_authorization(_authorization()))

    settled = await reconciler.apply_processor_status("pi_1", "acct_123", TransactionStatus.SUCCEEDED)

    assert settled.status is TransactionStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_apply_status_repairs_missing_row_first(reconciler, payment_processor, ledger_repo):
    payment_processor.authorizations["pi_1"] = _authorization()

    settled = await reconciler.apply_processor_status("pi_1", "acct_123", TransactionStatus.FAILED)

    assert settled.status is TransactionStatus.FAILED
    assert ledger_repo.rows["pi_1"].status is TransactionStatus.FAILED


@pytest.mark.asyncio
async def test_apply_status_ignores_conflicting_redelivery(reconciler, ledger_repo):
    await ledger_repo.insert(transaction_from_authorization(_authorization()))
    await reconciler.apply_processor_status("pi_1", "acct_123", TransactionStatus.SUCCEEDED)

    again = await reconciler.apply_processor_status("pi_1", "acct_123", TransactionStatus.FAILED)

    assert again.status is TransactionStatus.SUCCEEDED


def test_malformed_fee_cannot_be_repaired():
    with pytest.raises(LedgerRepairError):
        transaction_from_authorization(_authorization(metadata={**METADATA, "platform_fee": "15.0"}))


@pytest.mark.asyncio
async def test_malformed_metadata_is_dead_lettered(reconciler, payment_processor, fake_redis):
    payment_processor.authorizations["pi_1"] = _authorization(
        metadata={**METADATA, "transaction_id": "not-a-uuid"}
    )
    _queue_repair(fake_redis)

    report = await reconciler.reconcile_pending()

    assert report.dead_lettered == 1
    assert fake_redis.lists[DEAD_LETTER_QUEUE][0]["external_authorization_id"] == "pi_1"


@pytest.mark.asyncio
async def test_unexpected_error_requeues_item_before_raising(reconciler, ledger_repo, fake_redis):
    async def _pool_closed(external_id):
        raise RuntimeError("Database pool is closed")

    ledger_repo.get_by_external_id = _pool_closed
    _queue_repair(fake_redis)

    with pytest.raises(RuntimeError):
        await reconciler.reconcile_pending()

    assert fake_redis.lists[RECONCILE_QUEUE][0]["attempts"] == 1
