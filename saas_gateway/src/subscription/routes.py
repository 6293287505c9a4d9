import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from stripe import StripeError

from ...middlewares.jwt_auth import get_current_user, require_csrf
from ..auth.schema import JWTClaims
from ..stripe.utils import http_error_from_stripe
from .controller import SubscriptionController
from .schema import (
    CancelSubscriptionRequest,
    CreatePaymentIntentRequest,
    CreateSubscriptionRequest,
    ReactivateSubscriptionRequest,
    SelectPlanRequest,
    UpdateSubscriptionRequest,
    UpgradeRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscription", tags=["Subscription"], dependencies=[Depends(require_csrf)])


def get_subscription_controller() -> SubscriptionController:
    return SubscriptionController()


@router.get("/plans")
async def get_plans(
    current_user: JWTClaims = Depends(get_current_user),
    controller: SubscriptionController = Depends(get_subscription_controller),
):
    """Active plans with their prices, cheapest first"""
    try:
        return {"success": True, "data": controller.list_plans()}
    except StripeError as e:
        logger.error("Error fetching plans: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to fetch plans")


@router.get("/status")
async def get_status(
    current_user: JWTClaims = Depends(get_current_user),
    controller: SubscriptionController = Depends(get_subscription_controller),
):
    return {"success": True, "subscription": controller.get_subscription_status(current_user.user_id)}


@router.post("/create-payment-intent")
async def create_payment_intent(
    body: CreatePaymentIntentRequest,
    current_user: JWTClaims = Depends(get_current_user),
    controller: SubscriptionController = Depends(get_subscription_controller),
):
    """Hosted Checkout session for a new subscription"""
    try:
        user = controller.get_user(current_user.user_id)
        return controller.create_checkout_session(user, body.price_id, body.plan_name)
    except StripeError as e:
        logger.error("Error creating checkout session: %s", e)
        raise http_error_from_stripe(e)


@router.post("/create-subscription")
async def create_subscription(
    body: CreateSubscriptionRequest,
    current_user: JWTClaims = Depends(get_current_user),
    controller: SubscriptionController = Depends(get_subscription_controller),
):
    """Subscribe with a payment method collected on our own page; returns the client secret to confirm"""
    try:
        user = controller.get_user(current_user.user_id)
        return controller.create_subscription(user, body.price_id, body.payment_method_id, body.plan_name)
    except StripeError as e:
        logger.error("Error creating subscription: %s", e)
        raise http_error_from_stripe(e)


@router.post("/select-plan")
async def select_plan(
    body: SelectPlanRequest,
    current_user: JWTClaims = Depends(get_current_user),
    controller: SubscriptionController = Depends(get_subscription_controller),
):
    """Tell the client whether this plan goes through checkout or an in-place upgrade"""
    return controller.decide_plan_flow(current_user.user_id, body.price_id, body.plan_name)


@router.post("/upgrade")
async def upgrade_subscription(
    body: UpgradeRequest,
    current_user: JWTClaims = Depends(get_current_user),
    controller: SubscriptionController = Depends(get_subscription_controller),
):
    try:
        user = controller.get_user(current_user.user_id)
        return {"success": True, "data": controller.upgrade(user, body)}
    except StripeError as e:
        logger.error("Error upgrading subscription: %s", e)
        raise http_error_from_stripe(e)


@router.get("/list")
async def list_subscriptions(
    active: bool = Query(False),
    current_user: JWTClaims = Depends(get_current_user),
    controller: SubscriptionController = Depends(get_subscription_controller),
):
    try:
        user = controller.get_user(current_user.user_id)
        return {"success": True, "data": controller.list_subscriptions(user, active_only=active)}
    except StripeError as e:
        logger.error("Error listing subscriptions: %s", e)
        raise http_error_from_stripe(e)


@router.post("/cancel")
async def cancel_subscription(
    body: CancelSubscriptionRequest,
    current_user: JWTClaims = Depends(get_current_user),
    controller: SubscriptionController = Depends(get_subscription_controller),
):
    try:
        user = controller.get_user(current_user.user_id)
        return {"success": True, "data": controller.cancel(user, body.subscription_id, body.cancel_at_period_end)}
    except StripeError as e:
        logger.error("Error cancelling subscription %s: %s", body.subscription_id, e)
        raise http_error_from_stripe(e)


@router.post("/reactivate")
async def reactivate_subscription(
    body: ReactivateSubscriptionRequest,
    current_user: JWTClaims = Depends(get_current_user),
    controller: SubscriptionController = Depends(get_subscription_controller),
):
    """Undo a scheduled cancellation"""
    try:
        user = controller.get_user(current_user.user_id)
        return {"success": True, "data": controller.reactivate(user, body.subscription_id)}
    except StripeError as e:
        logger.error("Error reactivating subscription %s: %s", body.subscription_id, e)
        raise http_error_from_stripe(e)


@router.post("/update")
async def update_subscription(
    body: UpdateSubscriptionRequest,
    current_user: JWTClaims = Depends(get_current_user),
    controller: SubscriptionController = Depends(get_subscription_controller),
):
    try:
        user = controller.get_user(current_user.user_id)
        return {"success": True, "data": controller.update_seats(user, body.subscription_id, body.seats)}
    except StripeError as e:
        logger.error("Error updating subscription %s: %s", body.subscription_id, e)
        raise http_error_from_stripe(e)
