import asyncio
import dataclasses
import uuid
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from waypoint.auth.verify import admin_dependency, auth_dependency
from waypoint.db.helpers import DatabaseError
from waypoint.domain.errors import ApplicationNotFound, DuplicateEntry, ValidationFailed
from waypoint.features.marketplace.domain import (
    APPLICATION_LIFECYCLE,
    TRANSACTION_LIFECYCLE,
    ApplicationStatus,
    Product,
    ProductStatus,
    SellerApplication,
    SellerProfile,
    SellerStatus,
    generate_unique_slug,
)
from waypoint.features.waitlist.domain import (
    STATUS_TIMESTAMP_COLUMNS,
    WAITLIST_LIFECYCLE,
    WaitlistEntry,
    WaitlistStats,
    WaitlistStatus,
)
from waypoint.integrations.stripe_client import (
    Authorization,
    PaymentProcessorError,
    ProcessorErrorType,
    WebhookVerificationError,
)


def _now():
    return datetime.now(timezone.utc)


USER_CLAIMS = {"sub": "user-123", "email": "user@example.com"}
ADMIN_CLAIMS = {"sub": "admin-1", "email": "admin@example.com", "admin": True}


@pytest.fixture
def auth_override():
    def _override():
        return dict(USER_CLAIMS)

    return _override


@pytest.fixture
def admin_override():
    def _override():
        return dict(ADMIN_CLAIMS)

    return _override


class FakeRedis:
    """Key/value and list operations used by the app, kept in memory."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.lists: dict[str, list[dict]] = {}
        self.fail_push = False
        self.client = None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None

    async def ping(self) -> bool:
        return True

    async def push_json(self, key: str, payload: dict) -> int:
        if self.fail_push:
            raise ConnectionError("redis down")
        self.lists.setdefault(key, []).append(dict(payload))
        return len(self.lists[key])

    async def pop_json(self, key: str) -> dict | None:
        items = self.lists.get(key) or []
        return items.pop(0) if items else None

    async def list_length(self, key: str) -> int:
        return len(self.lists.get(key) or [])


@pytest.fixture
def fake_redis():
    return FakeRedis()


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, notification) -> None:
        self.sent.append(notification)

    def kinds(self):
        return [n.kind for n in self.sent]


@pytest.fixture
def notifier():
    return RecordingNotifier()


class FakeWaitlistRepository:
    """In-memory waitlist store with the same compare-and-set semantics."""

    def __init__(self):
        self.entries: dict[str, WaitlistEntry] = {}
        self.counter = 0
        self.lock = asyncio.Lock()
        self.fail = False

    def _check(self):
        if self.fail:
            raise DatabaseError("database unavailable", operation="fake", recoverable=True)

    async def create_entry(self, new_entry):
        self._check()
        async with self.lock:
            if any(e.email == new_entry.email for e in self.entries.values()):
                raise DuplicateEntry(email=new_entry.email)
            await asyncio.sleep(0)
            self.counter += 1
            entry = WaitlistEntry(
                id=str(uuid.uuid4()),
                email=new_entry.email,
                name=new_entry.name,
                position=self.counter,
                status=WaitlistStatus.PENDING,
                interests=list(new_entry.interests),
                referral_source=new_entry.referral_source,
                metadata=dict(new_entry.metadata),
                created_at=_now(),
            )
            self.entries[entry.id] = entry
            return dataclasses.replace(entry)

    async def get_by_id(self, entry_id):
        self._check()
        entry = self.entries.get(entry_id)
        return dataclasses.replace(entry) if entry else None

    async def get_by_email(self, email):
        self._check()
        for entry in self.entries.values():
            if entry.email == email:
                return dataclasses.replace(entry)
        return None

    async def _update(self, entry, target):
        async with self.lock:
            if entry is None or entry.status not in WAITLIST_LIFECYCLE.sources_for(target):
                return None
            entry.status = target
            setattr(entry, STATUS_TIMESTAMP_COLUMNS[target], _now())
            return dataclasses.replace(entry)

    async def transition(self, entry_id, target):
        self._check()
        return await self._update(self.entries.get(entry_id), target)

    async def transition_by_email(self, email, target):
        self._check()
        entry = next((e for e in self.entries.values() if e.email == email), None)
        return await self._update(entry, target)

    async def list_entries(self, status=None, limit=None):
        self._check()
        entries = sorted(self.entries.values(), key=lambda e: e.position)
        if status is not None:
            entries = [e for e in entries if e.status is status]
        if limit is not None:
            entries = entries[:limit]
        return [dataclasses.replace(e) for e in entries]

    async def count_by_status(self):
        self._check()
        stats = WaitlistStats()
        for entry in self.entries.values():
            setattr(stats, entry.status.value, getattr(stats, entry.status.value) + 1)
            stats.total += 1
        return stats


@pytest.fixture
def waitlist_repo():
    return FakeWaitlistRepository()


class FakeMarketplaceRepository:
    def __init__(self):
        self.applications: dict[str, SellerApplication] = {}
        self.profiles: dict[str, SellerProfile] = {}
        self.products: dict[str, Product] = {}
        self.lock = asyncio.Lock()
        self.fail = False

    def _check(self):
        if self.fail:
            raise DatabaseError("database unavailable", operation="fake", recoverable=True)

    # helpers for tests
    def add_seller(self, seller_id="seller-1", payout_account_id="acct_123", **kwargs):
        profile = SellerProfile(
            id=seller_id,
            slug=kwargs.pop("slug", seller_id),
            business_name=kwargs.pop("business_name", "Alpine Adventures"),
            contact_email=kwargs.pop("contact_email", f"{seller_id}@example.com"),
            status=kwargs.pop("status", SellerStatus.ACTIVE),
            payout_account_id=payout_account_id,
            **kwargs,
        )
        self.profiles[seller_id] = profile
        return profile

    def add_product(self, product_id="prod-1", seller_id="seller-1", price=10000, **kwargs):
        product = Product(
            id=product_id,
            seller_id=seller_id,
            title=kwargs.pop("title", "Patagonia Trek"),
            price=price,
            status=kwargs.pop("status", ProductStatus.ACTIVE),
            **kwargs,
        )
        self.products[product_id] = product
        return product

    async def create_application(
        self, applicant_user_id, email, business_name, specializations, experience=None
    ):
        self._check()
        async with self.lock:
            open_statuses = {ApplicationStatus.SUBMITTED, ApplicationStatus.ADDITIONAL_INFO_REQUIRED}
            if any(
                a.applicant_user_id == applicant_user_id and a.status in open_statuses
                for a in self.applications.values()
            ):
                raise ValidationFailed("You already have an application under review")
            application = SellerApplication(
                id=str(uuid.uuid4()),
                applicant_user_id=applicant_user_id,
                email=email,
                business_name=business_name,
                specializations=list(specializations),
                experience=experience,
                status=ApplicationStatus.SUBMITTED,
                created_at=_now(),
            )
            self.applications[application.id] = application
            return dataclasses.replace(application)

    async def get_application(self, application_id):
        self._check()
        application = self.applications.get(application_id)
        return dataclasses.replace(application) if application else None

    async def list_applications(self, status=None):
        self._check()
        applications = sorted(self.applications.values(), key=lambda a: a.created_at, reverse=True)
        return [dataclasses.replace(a) for a in applications if status is None or a.status is status]

    async def record_decision(self, application_id, target, reviewer_id, notes):
        self._check()
        async with self.lock:
            application = self.applications.get(application_id)
            if application is None or application.status not in APPLICATION_LIFECYCLE.sources_for(
                target
            ):
                return None
            application.status = target
            application.reviewed_at = _now()
            application.reviewed_by = reviewer_id
            application.review_notes = notes
            return dataclasses.replace(application)

    async def resubmit_application(self, application_id, applicant_user_id, experience):
        self._check()
        async with self.lock:
            application = self.applications.get(application_id)
            if (
                application is None
                or application.applicant_user_id != applicant_user_id
                or application.status is not ApplicationStatus.ADDITIONAL_INFO_REQUIRED
            ):
                return None
            application.status = ApplicationStatus.SUBMITTED
            if experience:
                application.experience = experience
            return dataclasses.replace(application)

    async def approve_application(self, application_id, reviewer_id):
        self._check()
        async with self.lock:
            application = self.applications.get(application_id)
            if application is None:
                raise ApplicationNotFound(application_id=application_id)
            APPLICATION_LIFECYCLE.ensure(application.status, ApplicationStatus.APPROVED)

            existing = self.profiles.get(application.applicant_user_id)
            if existing:
                existing.status = SellerStatus.ACTIVE
                profile = existing
            else:
                slug = generate_unique_slug(
                    application.business_name, (p.slug for p in self.profiles.values())
                )
                profile = SellerProfile(
                    id=application.applicant_user_id,
                    slug=slug,
                    business_name=application.business_name,
                    specializations=list(application.specializations),
                    contact_email=application.email,
                    status=SellerStatus.ACTIVE,
                    created_at=_now(),
                )
                self.profiles[profile.id] = profile

            application.status = ApplicationStatus.APPROVED
            application.reviewed_at = _now()
            application.reviewed_by = reviewer_id
            return dataclasses.replace(application), dataclasses.replace(profile)

    async def get_profile(self, seller_id):
        self._check()
        profile = self.profiles.get(seller_id)
        return dataclasses.replace(profile) if profile else None

    async def set_pending_payout_account(self, seller_id, account_id):
        self._check()
        profile = self.profiles.get(seller_id)
        if profile is None:
            return None
        if not profile.pending_payout_account_id:
            profile.pending_payout_account_id = account_id
        return dataclasses.replace(profile)

    async def activate_payout_account(self, seller_id, account_id):
        self._check()
        profile = self.profiles.get(seller_id)
        if profile is None:
            return None
        profile.payout_account_id = account_id
        profile.pending_payout_account_id = None
        return dataclasses.replace(profile)

    async def get_product(self, product_id):
        self._check()
        product = self.products.get(product_id)
        return dataclasses.replace(product) if product else None


@pytest.fixture
def marketplace_repo():
    return FakeMarketplaceRepository()


class FakeLedgerRepository:
    def __init__(self):
        self.rows: dict[str, object] = {}
        self.fail_inserts = 0
        self.fail_reads = False
        self.insert_calls = 0

    async def insert(self, transaction):
        self.insert_calls += 1
        if self.fail_inserts:
            self.fail_inserts -= 1
            raise DatabaseError("insert failed", operation="insert", recoverable=True)
        existing = self.rows.get(transaction.external_authorization_id)
        if existing:
            return dataclasses.replace(existing), False
        self.rows[transaction.external_authorization_id] = dataclasses.replace(transaction)
        return dataclasses.replace(transaction), True

    async def get_by_external_id(self, external_id):
        if self.fail_reads:
            raise DatabaseError("read failed", operation="get", recoverable=True)
        row = self.rows.get(external_id)
        return dataclasses.replace(row) if row else None

    async def update_status(self, external_id, target):
        row = self.rows.get(external_id)
        if row is None or row.status not in TRANSACTION_LIFECYCLE.sources_for(target):
            return None
        row.status = target
        return dataclasses.replace(row)


@pytest.fixture
def ledger_repo():
    return FakeLedgerRepository()


class FakePaymentProcessor:
    def __init__(self):
        self.authorizations: dict[str, Authorization] = {}
        self.created = []
        self.metadata_updates = []
        self.accounts: dict[str, bool] = {}
        self.fail_create: PaymentProcessorError | None = None
        self.fail_metadata = False
        self.fail_retrieve: PaymentProcessorError | None = None
        self.webhook_event: dict | None = None

    async def create_authorization(
        self, *, amount, currency, application_fee, connected_account_id, idempotency_key, metadata
    ):
        if self.fail_create:
            raise self.fail_create
        authorization = Authorization(
            id=f"pi_{len(self.authorizations) + 1}",
            client_secret=f"pi_{len(self.authorizations) + 1}_secret",
            amount=amount,
            currency=currency,
            status="requires_payment_method",
            account_id=connected_account_id,
            metadata=dict(metadata),
        )
        self.authorizations[authorization.id] = authorization
        self.created.append(
            {
                "amount": amount,
                "application_fee": application_fee,
                "connected_account_id": connected_account_id,
                "idempotency_key": idempotency_key,
                "metadata": dict(metadata),
            }
        )
        return authorization

    async def retrieve_authorization(self, authorization_id, connected_account_id):
        if self.fail_retrieve:
            raise self.fail_retrieve
        if authorization_id not in self.authorizations:
            raise PaymentProcessorError("No such payment_intent", ProcessorErrorType.PERMANENT)
        return self.authorizations[authorization_id]

    async def update_metadata(self, authorization_id, connected_account_id, metadata):
        if self.fail_metadata:
            raise PaymentProcessorError("timeout", ProcessorErrorType.TRANSIENT)
        self.metadata_updates.append((authorization_id, dict(metadata)))

    async def create_connected_account(self, email, seller_id, idempotency_key=None):
        account_id = f"acct_{seller_id}"
        self.accounts.setdefault(account_id, False)
        return account_id

    async def create_onboarding_link(self, account_id):
        return f"https://connect.stripe.test/setup/{account_id}"

    async def is_account_onboarded(self, account_id):
        return self.accounts.get(account_id, False)

    def construct_webhook_event(self, payload, signature):
        if signature != "valid":
            raise WebhookVerificationError("Invalid signature")
        return self.webhook_event


@pytest.fixture
def payment_processor():
    return FakePaymentProcessor()


@pytest.fixture
def app_client(
    monkeypatch,
    auth_override,
    admin_override,
    waitlist_repo,
    marketplace_repo,
    ledger_repo,
    payment_processor,
    fake_redis,
    notifier,
):
    """TestClient wired to in-memory collaborators, authenticated as a regular user."""
    from waypoint.features.marketplace.services import application_reviewer as reviewer_module
    from waypoint.features.marketplace.services import checkout_service as checkout_module
    from waypoint.features.marketplace.services import ledger_reconciler as reconciler_module
    from waypoint.features.marketplace.services import seller_onboarding as onboarding_module
    from waypoint.features.waitlist.services import admission_queue as queue_module
    from waypoint.infrastructure.audit.audit_logger import audit_logger
    from waypoint.integrations import stripe_client
    from waypoint.main import app

    reconciler = reconciler_module.LedgerReconciler(
        repository=ledger_repo, processor=payment_processor, queue=fake_redis, retry_delay=0
    )
    monkeypatch.setattr(
        queue_module,
        "admission_queue",
        queue_module.AdmissionQueue(repository=waitlist_repo, notifier=notifier),
    )
    monkeypatch.setattr(
        reviewer_module,
        "application_reviewer",
        reviewer_module.ApplicationReviewer(repository=marketplace_repo, notifier=notifier),
    )
    monkeypatch.setattr(
        onboarding_module,
        "seller_onboarding",
        onboarding_module.SellerOnboarding(repository=marketplace_repo, processor=payment_processor),
    )
    monkeypatch.setattr(reconciler_module, "ledger_reconciler", reconciler)
    monkeypatch.setattr(
        checkout_module,
        "checkout_orchestrator",
        checkout_module.CheckoutOrchestrator(
            repository=marketplace_repo, processor=payment_processor, reconciler=reconciler
        ),
    )
    monkeypatch.setattr(stripe_client, "payment_processor", payment_processor)

    audit_events = []

    async def _record_audit(**kwargs):
        audit_events.append(kwargs)
        return True

    monkeypatch.setattr(audit_logger, "log", _record_audit)

    app.dependency_overrides[auth_dependency] = auth_override
    app.dependency_overrides[admin_dependency] = admin_override
    client = TestClient(app)
    client.audit_events = audit_events
    yield client
    app.dependency_overrides.clear()
