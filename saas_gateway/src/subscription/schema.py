from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

# Stripe statuses that count as a paid-up subscription
ACTIVE_STATUSES = ("active", "trialing")


class PlanFlow(str, Enum):
    CHECKOUT = "checkout"
    UPGRADE = "upgrade"


class StripeMeta(BaseModel):
    """Denormalized copy of the user's Stripe subscription, embedded as users.stripe_meta"""
    subscription_id: str
    customer_id: Optional[str] = None
    price_id: Optional[str] = None
    plan_name: Optional[str] = None
    status: Optional[str] = None
    amount: float = 0
    currency: Optional[str] = None
    interval: str = "month"
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    created_at: datetime
    updated_at: datetime
    cancelled_at: Optional[datetime] = None


class CreatePaymentIntentRequest(BaseModel):
    price_id: Optional[str] = Field(None, alias="priceId")
    plan_name: Optional[str] = Field(None, alias="planName")

    class Config:
        populate_by_name = True


class CreateSubscriptionRequest(BaseModel):
    price_id: Optional[str] = Field(None, alias="priceId")
    payment_method_id: Optional[str] = Field(None, alias="paymentMethodId")
    plan_name: Optional[str] = Field(None, alias="planName")

    class Config:
        populate_by_name = True


class SelectPlanRequest(BaseModel):
    price_id: str = Field(..., alias="priceId")
    plan_name: Optional[str] = Field(None, alias="planName")

    class Config:
        populate_by_name = True


class UpgradeRequest(BaseModel):
    plan: Optional[str] = None
    annual: bool = False
    reference_id: str = Field("default", alias="referenceId")
    subscription_id: Optional[str] = Field(None, alias="subscriptionId")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    seats: int = Field(1, ge=1)
    success_url: Optional[str] = Field(None, alias="successUrl")
    cancel_url: Optional[str] = Field(None, alias="cancelUrl")
    disable_redirect: bool = Field(True, alias="disableRedirect")

    class Config:
        populate_by_name = True


class CancelSubscriptionRequest(BaseModel):
    subscription_id: str = Field(..., alias="subscriptionId")
    cancel_at_period_end: bool = Field(True, alias="cancelAtPeriodEnd")

    class Config:
        populate_by_name = True


class ReactivateSubscriptionRequest(BaseModel):
    subscription_id: str = Field(..., alias="subscriptionId")

    class Config:
        populate_by_name = True


class UpdateSubscriptionRequest(BaseModel):
    subscription_id: str = Field(..., alias="subscriptionId")
    seats: int = Field(..., ge=1)

    class Config:
        populate_by_name = True
