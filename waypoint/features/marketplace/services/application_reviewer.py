"""
Seller application review.

Administrators approve, reject or ask for more information. Approval
creates the public SellerProfile in the same transaction as the status
change. Decisions on approved or rejected applications are refused.
"""

from collections.abc import Awaitable
from typing import TypeVar

from waypoint.db.helpers import DatabaseError
from waypoint.domain.errors import (
    ApplicationNotFound,
    InvalidTransition,
    StoreUnavailable,
    ValidationFailed,
)
from waypoint.features.marketplace.domain import (
    APPLICATION_LIFECYCLE,
    REVIEW_ACTION_TARGETS,
    ApplicationStatus,
    ReviewAction,
    SellerApplication,
)
from waypoint.features.marketplace.repository.marketplace_repository import (
    marketplace_repository,
)
from waypoint.infrastructure.observability.logging import get_logger
from waypoint.services.notification_service import (
    Notification,
    NotificationKind,
    notification_dispatcher,
)

logger = get_logger(__name__)

T = TypeVar("T")

MAX_SPECIALIZATIONS = 10


def _clean(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


class ApplicationReviewer:
    def __init__(self, repository=marketplace_repository, notifier=notification_dispatcher):
        self.repository = repository
        self.notifier = notifier

    async def _store(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except (DatabaseError, RuntimeError) as e:
            # RuntimeError: pool not initialized or already closed
            logger.error("Marketplace storage failure", operation=operation, error=str(e))
            raise StoreUnavailable(operation=operation) from e

    async def submit(
        self,
        applicant_user_id: str,
        email: str,
        business_name: str,
        specializations: list[str] | None = None,
        experience: str | None = None,
    ) -> SellerApplication:
        business_name = _clean(business_name)
        email = _clean(email)
        if not business_name:
            raise ValidationFailed("Business name is required")
        if not email:
            raise ValidationFailed("Contact email is required")

        specializations = [s.strip() for s in specializations or [] if s and s.strip()]
        if len(specializations) > MAX_SPECIALIZATIONS:
            raise ValidationFailed(f"At most {MAX_SPECIALIZATIONS} specializations")

        application = await self._store(
            "submit",
            self.repository.create_application(
                applicant_user_id, email.lower(), business_name, specializations, _clean(experience)
            ),
        )
        logger.info(
            "Seller application submitted",
            application_id=application.id,
            applicant_user_id=applicant_user_id,
        )
        self.notifier.send(
            Notification(
                NotificationKind.APPLICATION_SUBMITTED,
                context={"business_name": business_name, "email": application.email},
            )
        )
        return application

    async def resubmit(
        self, application_id: str, applicant_user_id: str, experience: str | None = None
    ) -> SellerApplication:
        """additional_info_required -> submitted, for the owning applicant only."""
        updated = await self._store(
            "resubmit",
            self.repository.resubmit_application(
                application_id, applicant_user_id, _clean(experience)
            ),
        )
        if updated:
            logger.info("Seller application resubmitted", application_id=application_id)
            return updated

        current = await self._store("get_application", self.repository.get_application(application_id))
        if current is None or current.applicant_user_id != applicant_user_id:
            raise ApplicationNotFound(application_id=application_id)
        APPLICATION_LIFECYCLE.ensure(current.status, ApplicationStatus.SUBMITTED)
        raise InvalidTransition(current.status.value, ApplicationStatus.SUBMITTED.value)

    async def list_applications(
        self, status: ApplicationStatus | None = None
    ) -> list[SellerApplication]:
        return await self._store("list_applications", self.repository.list_applications(status))

    async def decide(
        self,
        application_id: str,
        action: ReviewAction,
        reviewer_id: str,
        reason: str | None = None,
        info_needed: str | None = None,
    ) -> SellerApplication:
        """
        Apply a review decision.

        Raises:
            ValidationFailed: reject without a reason, needs_info without details
            ApplicationNotFound: unknown id
            TerminalState: the application is already approved or rejected
        """
        action = ReviewAction(action)
        reason = _clean(reason)
        info_needed = _clean(info_needed)

        if action is ReviewAction.APPROVE:
            return await self._approve(application_id, reviewer_id)

        if action is ReviewAction.REJECT:
            if not reason:
                raise ValidationFailed("A reason is required to reject an application")
            notes = reason
        else:
            notes = info_needed or reason
            if not notes:
                raise ValidationFailed("Describe the information needed from the applicant")

        target = REVIEW_ACTION_TARGETS[action]
        application = await self._store(
            action.value,
            self.repository.record_decision(application_id, target, reviewer_id, notes),
        )
        if application is None:
            await self._raise_for_missed_update(application_id, target)

        logger.info(
            "Seller application decided",
            application_id=application_id,
            action=action.value,
            reviewer_id=reviewer_id,
        )

        if action is ReviewAction.REJECT:
            kind, context = NotificationKind.APPLICATION_REJECTED, {"reason": notes}
        else:
            kind, context = NotificationKind.APPLICATION_NEEDS_INFO, {"info_needed": notes}
        self.notifier.send(
            Notification(
                kind,
                recipient=application.email,
                context={"business_name": application.business_name, **context},
            )
        )
        return application

    async def _approve(self, application_id: str, reviewer_id: str) -> SellerApplication:
        application, profile = await self._store(
            "approve", self.repository.approve_application(application_id, reviewer_id)
        )
        logger.info(
            "Seller application approved",
            application_id=application_id,
            seller_id=profile.id,
            slug=profile.slug,
            reviewer_id=reviewer_id,
        )
        self.notifier.send(
            Notification(
                NotificationKind.APPLICATION_APPROVED,
                recipient=application.email,
                context={"business_name": application.business_name, "slug": profile.slug},
            )
        )
        return application

    async def _raise_for_missed_update(
        self, application_id: str, target: ApplicationStatus
    ) -> None:
        current = await self._store("get_application", self.repository.get_application(application_id))
        if current is None:
            raise ApplicationNotFound(application_id=application_id)
        APPLICATION_LIFECYCLE.ensure(current.status, target)
        # Allowed by status but the conditional update missed: a concurrent decision won
        raise InvalidTransition(current.status.value, target.value, application_id=application_id)


application_reviewer = ApplicationReviewer()
