"""
Persistence for seller applications, seller profiles and products.

Review decisions are compare-and-set updates on the application status.
Approval is the one multi-row write: the profile insert and the status
change commit together, with the application row locked for the duration.
"""

from uuid import UUID

import psycopg

from waypoint.db.helpers import (
    IntegrityConflict,
    fetch_all,
    fetch_one,
    translate_error,
    with_db_retry,
)
from waypoint.db.pool import db_pool
from waypoint.domain.errors import ApplicationNotFound, ValidationFailed
from waypoint.features.marketplace.domain import (
    APPLICATION_LIFECYCLE,
    ApplicationStatus,
    Product,
    ProductStatus,
    SellerApplication,
    SellerProfile,
    SellerStatus,
    generate_unique_slug,
)
from waypoint.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

OPEN_APPLICATION_INDEX = "seller_applications_open_applicant_idx"
SLUG_UNIQUE_CONSTRAINT = "seller_profiles_slug_key"
MAX_SLUG_ATTEMPTS = 5


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


class MarketplaceRepository:
    APPLICATION_COLUMNS = """
        id, applicant_user_id, email, business_name, specializations, experience,
        status, reviewed_at, reviewed_by, review_notes, created_at, updated_at
    """

    PROFILE_COLUMNS = """
        id, slug, business_name, specializations, contact_email, payout_account_id,
        pending_payout_account_id, payout_schedule, status, created_at
    """

    PRODUCT_COLUMNS = "id, seller_id, title, type, price, currency, status"

    @staticmethod
    def _row_to_application(row: dict | None) -> SellerApplication | None:
        if not row:
            return None
        return SellerApplication(
            id=str(row["id"]),
            applicant_user_id=row["applicant_user_id"],
            email=row["email"],
            business_name=row["business_name"],
            specializations=list(row.get("specializations") or []),
            experience=row.get("experience"),
            status=ApplicationStatus(row["status"]),
            reviewed_at=row.get("reviewed_at"),
            reviewed_by=row.get("reviewed_by"),
            review_notes=row.get("review_notes"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
        )

    @staticmethod
    def _row_to_profile(row: dict | None) -> SellerProfile | None:
        if not row:
            return None
        return SellerProfile(
            id=row["id"],
            slug=row["slug"],
            business_name=row["business_name"],
            specializations=list(row.get("specializations") or []),
            contact_email=row["contact_email"],
            payout_account_id=row.get("payout_account_id") or "",
            pending_payout_account_id=row.get("pending_payout_account_id"),
            payout_schedule=row.get("payout_schedule") or "monthly",
            status=SellerStatus(row["status"]),
            created_at=row.get("created_at"),
        )

    @staticmethod
    def _row_to_product(row: dict | None) -> Product | None:
        if not row:
            return None
        return Product(
            id=row["id"],
            seller_id=row["seller_id"],
            title=row["title"],
            type=row.get("type") or "trip_template",
            price=int(row["price"]),
            currency=row.get("currency") or "usd",
            status=ProductStatus(row["status"]),
        )

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    async def create_application(
        self,
        applicant_user_id: str,
        email: str,
        business_name: str,
        specializations: list[str],
        experience: str | None = None,
    ) -> SellerApplication:
        query = f"""
            INSERT INTO seller_applications (
                applicant_user_id, email, business_name, specializations, experience, status
            )
            VALUES (%s, %s, %s, %s, %s, 'submitted')
            RETURNING {self.APPLICATION_COLUMNS}
        """
        try:
            row = await fetch_one(
                query, (applicant_user_id, email, business_name, specializations, experience)
            )
        except IntegrityConflict as e:
            if e.constraint == OPEN_APPLICATION_INDEX:
                raise ValidationFailed("You already have an application under review") from e
            raise
        return self._row_to_application(row)

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def get_application(self, application_id: str) -> SellerApplication | None:
        uuid_value = _as_uuid(application_id)
        if uuid_value is None:
            return None
        query = f"SELECT {self.APPLICATION_COLUMNS} FROM seller_applications WHERE id = %s"
        return self._row_to_application(await fetch_one(query, (uuid_value,)))

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def list_applications(
        self, status: ApplicationStatus | None = None
    ) -> list[SellerApplication]:
        if status is None:
            query = f"SELECT {self.APPLICATION_COLUMNS} FROM seller_applications ORDER BY created_at DESC"
            rows = await fetch_all(query)
        else:
            query = f"""
                SELECT {self.APPLICATION_COLUMNS} FROM seller_applications
                WHERE status = %s ORDER BY created_at DESC
            """
            rows = await fetch_all(query, (status.value,))
        return [self._row_to_application(row) for row in rows]

    async def record_decision(
        self,
        application_id: str,
        target: ApplicationStatus,
        reviewer_id: str,
        notes: str | None,
    ) -> SellerApplication | None:
        """
        Conditional status change for reject / needs_info.

        Returns None when the application is missing or its current status
        does not allow ``target``.
        """
        uuid_value = _as_uuid(application_id)
        if uuid_value is None:
            return None

        sources = [s.value for s in APPLICATION_LIFECYCLE.sources_for(target)]
        query = f"""
            UPDATE seller_applications
            SET status = %s,
                reviewed_at = NOW(),
                reviewed_by = %s,
                review_notes = %s,
                updated_at = NOW()
            WHERE id = %s AND status = ANY(%s)
            RETURNING {self.APPLICATION_COLUMNS}
        """
        row = await fetch_one(query, (target.value, reviewer_id, notes, uuid_value, sources))
        return self._row_to_application(row)

    async def resubmit_application(
        self, application_id: str, applicant_user_id: str, experience: str | None
    ) -> SellerApplication | None:
        uuid_value = _as_uuid(application_id)
        if uuid_value is None:
            return None

        query = f"""
            UPDATE seller_applications
            SET status = 'submitted',
                experience = COALESCE(%s, experience),
                updated_at = NOW()
            WHERE id = %s
              AND applicant_user_id = %s
              AND status = 'additional_info_required'
            RETURNING {self.APPLICATION_COLUMNS}
        """
        row = await fetch_one(query, (experience, uuid_value, applicant_user_id))
        return self._row_to_application(row)

    async def approve_application(
        self, application_id: str, reviewer_id: str
    ) -> tuple[SellerApplication, SellerProfile]:
        """
        Create the seller profile and mark the application approved, atomically.

        A concurrent approval elsewhere can claim the chosen slug between
        our read and our insert; the unique constraint rejects it and the
        whole transaction is retried with a fresh slug.

        Raises:
            ApplicationNotFound: unknown id
            TerminalState / InvalidTransition: status does not allow approval
        """
        for attempt in range(1, MAX_SLUG_ATTEMPTS):
            try:
                return await self._approve_once(application_id, reviewer_id)
            except IntegrityConflict as e:
                if e.constraint != SLUG_UNIQUE_CONSTRAINT:
                    raise
                logger.warning(
                    "Slug collision during approval, retrying",
                    application_id=application_id,
                    attempt=attempt,
                )
        return await self._approve_once(application_id, reviewer_id)

    async def _approve_once(
        self, application_id: str, reviewer_id: str
    ) -> tuple[SellerApplication, SellerProfile]:
        uuid_value = _as_uuid(application_id)
        if uuid_value is None:
            raise ApplicationNotFound(application_id=application_id)

        try:
            async with db_pool.transaction() as conn:
                row = await fetch_one(
                    f"SELECT {self.APPLICATION_COLUMNS} FROM seller_applications WHERE id = %s FOR UPDATE",
                    (uuid_value,),
                    connection=conn,
                )
                application = self._row_to_application(row)
                if application is None:
                    raise ApplicationNotFound(application_id=application_id)
                APPLICATION_LIFECYCLE.ensure(application.status, ApplicationStatus.APPROVED)

                slugs = await fetch_all("SELECT slug FROM seller_profiles", connection=conn)
                slug = generate_unique_slug(application.business_name, (r["slug"] for r in slugs))

                # A profile left inactive by an earlier approval is reactivated, keeping its slug
                profile_row = await fetch_one(
                    f"""
                    INSERT INTO seller_profiles (
                        id, slug, business_name, specializations, contact_email,
                        payout_account_id, status
                    )
                    VALUES (%s, %s, %s, %s, %s, '', 'active')
                    ON CONFLICT (id) DO UPDATE SET
                        status = 'active',
                        business_name = EXCLUDED.business_name,
                        specializations = EXCLUDED.specializations,
                        contact_email = EXCLUDED.contact_email,
                        updated_at = NOW()
                    RETURNING {self.PROFILE_COLUMNS}
                    """,
                    (
                        application.applicant_user_id,
                        slug,
                        application.business_name,
                        application.specializations,
                        application.email,
                    ),
                    connection=conn,
                )

                app_row = await fetch_one(
                    f"""
                    UPDATE seller_applications
                    SET status = 'approved',
                        reviewed_at = NOW(),
                        reviewed_by = %s,
                        updated_at = NOW()
                    WHERE id = %s
                    RETURNING {self.APPLICATION_COLUMNS}
                    """,
                    (reviewer_id, uuid_value),
                    connection=conn,
                )
        except psycopg.Error as e:
            raise translate_error(e, "approve_application") from e

        return self._row_to_application(app_row), self._row_to_profile(profile_row)

    # ------------------------------------------------------------------
    # Seller profiles
    # ------------------------------------------------------------------

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def get_profile(self, seller_id: str) -> SellerProfile | None:
        query = f"SELECT {self.PROFILE_COLUMNS} FROM seller_profiles WHERE id = %s"
        return self._row_to_profile(await fetch_one(query, (seller_id,)))

    async def set_pending_payout_account(self, seller_id: str, account_id: str) -> SellerProfile | None:
        """Store a newly created processor account unless one is already pending."""
        query = f"""
            UPDATE seller_profiles
            SET pending_payout_account_id = COALESCE(pending_payout_account_id, %s),
                updated_at = NOW()
            WHERE id = %s
            RETURNING {self.PROFILE_COLUMNS}
        """
        return self._row_to_profile(await fetch_one(query, (account_id, seller_id)))

    async def activate_payout_account(self, seller_id: str, account_id: str) -> SellerProfile | None:
        query = f"""
            UPDATE seller_profiles
            SET payout_account_id = %s,
                pending_payout_account_id = NULL,
                updated_at = NOW()
            WHERE id = %s
            RETURNING {self.PROFILE_COLUMNS}
        """
        return self._row_to_profile(await fetch_one(query, (account_id, seller_id)))

    # ------------------------------------------------------------------
    # Products (read-only here)
    # ------------------------------------------------------------------

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def get_product(self, product_id: str) -> Product | None:
        query = f"SELECT {self.PRODUCT_COLUMNS} FROM products WHERE id = %s"
        return self._row_to_product(await fetch_one(query, (product_id,)))


marketplace_repository = MarketplaceRepository()
