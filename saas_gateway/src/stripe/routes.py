import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from stripe import StripeError

from ...middlewares.jwt_auth import get_current_user, require_csrf
from ..auth.schema import JWTClaims
from ..subscription.controller import SubscriptionController
from ..subscription.routes import get_subscription_controller
from .audit import log
from .config import get_settings
from .services import webhooks as dispatcher
from .utils import as_dict, http_error_from_stripe
from .webhooks.base import verify_stripe_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Stripe"])
webhook_router = APIRouter(prefix="/api/webhooks", tags=["Stripe Webhooks"])


@router.post("/create-portal-session", dependencies=[Depends(require_csrf)])
async def create_portal_session(
    current_user: JWTClaims = Depends(get_current_user),
    controller: SubscriptionController = Depends(get_subscription_controller),
):
    """Return a Stripe Customer-Portal session URL so the user can manage billing."""
    try:
        user = controller.get_user(current_user.user_id)
        # Lazily create a Customer if we don't have one yet
        customer_id = controller.get_or_create_customer(user)
        session = as_dict(controller.stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=f"{controller.app_url}{get_settings().PORTAL_RETURN_PATH}",
        ))
    except StripeError as e:
        logger.error("Error creating portal session: %s", e)
        raise http_error_from_stripe(e)
    return {"url": session.get("url")}


@webhook_router.post("/stripe", include_in_schema=False)
async def stripe_webhook(request: Request):
    """Verify and apply a Stripe event. Handler failures return 500 so Stripe redelivers."""
    event = await verify_stripe_signature(request)
    try:
        await dispatcher.dispatch(event)
    except Exception as e:
        logger.exception("❌ Stripe webhook %s (%s) failed", event.get("type"), event.get("id"))
        log("webhook_process", {"type": event.get("type"), "event_id": event.get("id")}, "error", str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook handler failed")
    return {"received": True}
