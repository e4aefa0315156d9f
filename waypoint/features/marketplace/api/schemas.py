"""
Request/response models for the marketplace endpoints.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from waypoint.features.marketplace.domain import (
    ApplicationStatus,
    CheckoutIntent,
    ReviewAction,
    SellerApplication,
    SellerProfile,
)


class ApplicationSubmitRequest(BaseModel):
    business_name: str = Field(..., min_length=1, max_length=200)
    email: str | None = Field(None, max_length=320)
    specializations: list[str] = Field(default_factory=list)
    experience: str | None = Field(None, max_length=5000)


class ApplicationResubmitRequest(BaseModel):
    experience: str | None = Field(None, max_length=5000)


class ReviewDecisionRequest(BaseModel):
    action: ReviewAction
    reason: str | None = Field(None, max_length=2000)
    info_needed: str | None = Field(None, max_length=2000)


class ApplicationResponse(BaseModel):
    id: str
    applicant_user_id: str
    email: str
    business_name: str
    specializations: list[str]
    experience: str | None
    status: ApplicationStatus
    reviewed_at: datetime | None
    reviewed_by: str | None
    review_notes: str | None
    created_at: datetime

    @classmethod
    def from_domain(cls, application: SellerApplication) -> "ApplicationResponse":
        return cls(
            id=application.id,
            applicant_user_id=application.applicant_user_id,
            email=application.email,
            business_name=application.business_name,
            specializations=application.specializations,
            experience=application.experience,
            status=application.status,
            reviewed_at=application.reviewed_at,
            reviewed_by=application.reviewed_by,
            review_notes=application.review_notes,
            created_at=application.created_at,
        )


class ApplicationListResponse(BaseModel):
    applications: list[ApplicationResponse]
    count: int


class PayoutOnboardingResponse(BaseModel):
    account_id: str
    url: str


class SellerPayoutStatusResponse(BaseModel):
    seller_id: str
    slug: str
    payable: bool
    payout_account_id: str | None

    @classmethod
    def from_domain(cls, profile: SellerProfile) -> "SellerPayoutStatusResponse":
        return cls(
            seller_id=profile.id,
            slug=profile.slug,
            payable=profile.is_payable,
            payout_account_id=profile.payout_account_id or None,
        )


class CheckoutIntentRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    amount: int | None = Field(None, gt=0, description="Client-side price in minor units")


class CheckoutIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    transaction_id: str
    stripe_account_id: str
    amount: int
    platform_fee: int
    seller_earnings: int
    currency: str

    @classmethod
    def from_domain(cls, intent: CheckoutIntent) -> "CheckoutIntentResponse":
        return cls(
            client_secret=intent.client_secret,
            payment_intent_id=intent.authorization_id,
            transaction_id=intent.transaction_id,
            stripe_account_id=intent.payout_account_id,
            amount=intent.amount,
            platform_fee=intent.platform_fee,
            seller_earnings=intent.seller_earnings,
            currency=intent.currency,
        )
