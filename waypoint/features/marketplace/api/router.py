"""
Marketplace routes.

Sellers:
    POST /marketplace/applications
    POST /marketplace/applications/{application_id}/resubmit
    POST /marketplace/seller/onboard
    POST /marketplace/seller/onboard/complete

Buyers:
    POST /checkout/intent

Admin:
    GET  /admin/applications
    POST /admin/applications/{application_id}/decide

Processor:
    POST /webhooks/stripe
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from waypoint.auth.verify import admin_dependency, auth_dependency
from waypoint.db.helpers import DatabaseError
from waypoint.domain.errors import ValidationFailed
from waypoint.features.marketplace.api.schemas import (
    ApplicationListResponse,
    ApplicationResponse,
    ApplicationResubmitRequest,
    ApplicationSubmitRequest,
    CheckoutIntentRequest,
    CheckoutIntentResponse,
    PayoutOnboardingResponse,
    ReviewDecisionRequest,
    SellerPayoutStatusResponse,
)
from waypoint.features.marketplace.domain import ApplicationStatus, TransactionStatus
from waypoint.features.marketplace.services import (
    application_reviewer as reviewer_module,
)
from waypoint.features.marketplace.services import checkout_service as checkout_module
from waypoint.features.marketplace.services import ledger_reconciler as reconciler_module
from waypoint.features.marketplace.services import seller_onboarding as onboarding_module
from waypoint.infrastructure.observability.logging import bind_request_context, get_logger
from waypoint.integrations import stripe_client
from waypoint.integrations.stripe_client import PaymentProcessorError, WebhookVerificationError
from waypoint.utils.audit_helpers import audit_admin_action

router = APIRouter(tags=["marketplace"])
logger = get_logger(__name__)

SETTLEMENT_EVENTS = {
    "payment_intent.succeeded": TransactionStatus.SUCCEEDED,
    "payment_intent.payment_failed": TransactionStatus.FAILED,
}


# ---------------------------------------------------------------------------
# Seller applications
# ---------------------------------------------------------------------------


@router.post(
    "/marketplace/applications", response_model=ApplicationResponse, status_code=201
)
async def submit_application(
    body: ApplicationSubmitRequest, claims: dict = Depends(auth_dependency)
):
    email = body.email or claims.get("email")
    if not email:
        raise ValidationFailed("Contact email is required")

    application = await reviewer_module.application_reviewer.submit(
        claims["sub"],
        email,
        body.business_name,
        specializations=body.specializations,
        experience=body.experience,
    )
    return ApplicationResponse.from_domain(application)


@router.post(
    "/marketplace/applications/{application_id}/resubmit", response_model=ApplicationResponse
)
async def resubmit_application(
    application_id: str,
    body: ApplicationResubmitRequest,
    claims: dict = Depends(auth_dependency),
):
    application = await reviewer_module.application_reviewer.resubmit(
        application_id, claims["sub"], experience=body.experience
    )
    return ApplicationResponse.from_domain(application)


@router.get("/admin/applications", response_model=ApplicationListResponse)
async def list_applications(
    status: ApplicationStatus | None = None, claims: dict = Depends(admin_dependency)
):
    applications = await reviewer_module.application_reviewer.list_applications(status)
    return ApplicationListResponse(
        applications=[ApplicationResponse.from_domain(a) for a in applications],
        count=len(applications),
    )


@router.post(
    "/admin/applications/{application_id}/decide", response_model=ApplicationResponse
)
async def decide_application(
    application_id: str,
    body: ReviewDecisionRequest,
    request: Request,
    claims: dict = Depends(admin_dependency),
):
    reviewer_id = claims["sub"]
    bind_request_context(admin_id=reviewer_id)

    application = await reviewer_module.application_reviewer.decide(
        application_id,
        body.action,
        reviewer_id,
        reason=body.reason,
        info_needed=body.info_needed,
    )
    await audit_admin_action(
        request,
        reviewer_id,
        f"seller_application_{body.action.value}",
        "seller_application",
        resource_id=application_id,
        metadata={"reason": body.reason, "info_needed": body.info_needed},
    )
    return ApplicationResponse.from_domain(application)


# ---------------------------------------------------------------------------
# Seller payout onboarding
# ---------------------------------------------------------------------------


@router.post("/marketplace/seller/onboard", response_model=PayoutOnboardingResponse)
async def start_payout_onboarding(claims: dict = Depends(auth_dependency)):
    link = await onboarding_module.seller_onboarding.start_payout_onboarding(
        claims["sub"], claims.get("email")
    )
    return PayoutOnboardingResponse(account_id=link.account_id, url=link.url)


@router.post("/marketplace/seller/onboard/complete", response_model=SellerPayoutStatusResponse)
async def complete_payout_onboarding(claims: dict = Depends(auth_dependency)):
    profile = await onboarding_module.seller_onboarding.complete_payout_onboarding(claims["sub"])
    return SellerPayoutStatusResponse.from_domain(profile)


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


@router.post("/checkout/intent", response_model=CheckoutIntentResponse)
async def create_checkout_intent(
    body: CheckoutIntentRequest, claims: dict = Depends(auth_dependency)
):
    bind_request_context(buyer_id=claims["sub"])
    intent = await checkout_module.checkout_orchestrator.create_checkout_intent(
        claims["sub"], body.product_id, client_amount=body.amount
    )
    return CheckoutIntentResponse.from_domain(intent)


# ---------------------------------------------------------------------------
# Processor webhook
# ---------------------------------------------------------------------------


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request):
    """
    Settle transactions from PaymentIntent events.

    Returns 500 on transient failures so the processor redelivers.
    """
    payload = await request.body()
    try:
        event = stripe_client.payment_processor.construct_webhook_event(
            payload, request.headers.get("stripe-signature")
        )
    except WebhookVerificationError as e:
        logger.warning("Stripe webhook rejected", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    event_type = event.get("type")
    target = SETTLEMENT_EVENTS.get(event_type)
    if target is None:
        logger.debug("Stripe webhook ignored", event_type=event_type)
        return {"received": True}

    intent = (event.get("data") or {}).get("object") or {}
    external_id = intent.get("id")
    account_id = event.get("account")
    if not external_id or not account_id:
        logger.warning("Stripe webhook missing identifiers", event_id=event.get("id"))
        return {"received": True}

    try:
        transaction = await reconciler_module.ledger_reconciler.apply_processor_status(
            external_id, account_id, target
        )
    except (DatabaseError, PaymentProcessorError) as e:
        logger.error(
            "Stripe webhook processing failed",
            event_id=event.get("id"),
            external_authorization_id=external_id,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook processing failed"
        ) from e
    except reconciler_module.LedgerRepairError as e:
        # Authorization was not created by checkout
        logger.error(
            "Stripe webhook for unrepairable authorization",
            external_authorization_id=external_id,
            error=str(e),
        )
        return {"received": True}

    logger.info(
        "Stripe webhook applied",
        event_type=event_type,
        transaction_id=transaction.id,
        status=transaction.status.value,
    )
    return {"received": True}
