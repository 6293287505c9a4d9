import logging
from datetime import datetime
from typing import Any, Dict, Optional

from stripe import StripeError

from ....database.db import get_database
from ....utils.helperFunctions import from_unix
from ..audit import log
from ..client import get_stripe
from ..utils import as_dict, build_stripe_meta, first_item, invoice_subscription_id, price_fields, subscription_period

logger = logging.getLogger(__name__)

# Stripe client (tests may monkeypatch this module attribute)
stripe = get_stripe()


def _db():
    return get_database()


def _find_user(subscription_id: Optional[str] = None, customer_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    users = _db().users
    user = None
    if subscription_id:
        user = users.find_one({"stripe_meta.subscription_id": subscription_id}, {"_id": 0})
    if not user and customer_id:
        user = users.find_one({"stripe_customer_id": customer_id}, {"_id": 0})
    return user


def _tracks_subscription(user: Optional[Dict[str, Any]], subscription_id: Optional[str]) -> bool:
    """True when the invoice belongs to the subscription stored on the user"""
    meta = (user or {}).get("stripe_meta") or {}
    return bool(subscription_id) and meta.get("subscription_id") == subscription_id


def _plan_name_for_price(price: Dict[str, Any], subscription: Dict[str, Any]) -> Optional[str]:
    """Product name of the new price; subscription metadata may still name the previous plan"""
    product = price.get("product")
    if isinstance(product, dict) and product.get("name"):
        return product["name"]
    if isinstance(product, str):
        try:
            name = as_dict(stripe.Product.retrieve(product)).get("name")
        except StripeError as e:
            logger.warning("Could not load product %s for plan name: %s", product, e)
            name = None
        if name:
            return name
    return (
        price.get("nickname")
        or (price.get("metadata") or {}).get("plan")
        or (subscription.get("metadata") or {}).get("planName")
        or None
    )


async def handle_checkout_completed(event: Dict[str, Any]):
    """Hosted checkout finished: store the full stripe_meta on the buyer."""
    session = event["data"]["object"]
    metadata = session.get("metadata") or {}
    user_id = metadata.get("userId")
    subscription_id = session.get("subscription")
    customer_id = session.get("customer")

    if not (subscription_id and user_id):
        logger.info("Checkout session %s has no subscription or userId; ignoring", session.get("id"))
        return

    subscription = as_dict(stripe.Subscription.retrieve(subscription_id))
    price = first_item(subscription).get("price") or {}
    stripe_meta = build_stripe_meta(
        subscription=subscription,
        price=price,
        plan_name=metadata.get("planName"),
        customer_id=customer_id,
    )
    update = {"stripe_meta": stripe_meta, "updated_at": datetime.utcnow()}
    if stripe_meta.get("customer_id"):
        update["stripe_customer_id"] = stripe_meta["customer_id"]

    result = _db().users.update_one({"id": user_id}, {"$set": update})
    if result.matched_count == 0:
        logger.warning("Checkout completed for unknown user %s", user_id)
    log("checkout_completed", {
        "user_id": user_id,
        "subscription_id": subscription_id,
        "customer_id": customer_id,
        "price_id": stripe_meta.get("price_id"),
        "event_id": event.get("id"),
    }, "ok" if result.matched_count else "skipped")


async def handle_subscription_updated(event: Dict[str, Any]):
    subscription = event["data"]["object"]
    user = _find_user(subscription_id=subscription.get("id"))
    if not user:
        logger.info("No user for subscription %s; update ignored", subscription.get("id"))
        return

    now = datetime.utcnow()
    start, end = subscription_period(subscription)
    update = {
        "stripe_meta.status": subscription.get("status"),
        "stripe_meta.current_period_start": from_unix(start),
        "stripe_meta.current_period_end": from_unix(end),
        "stripe_meta.cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        "stripe_meta.updated_at": now,
    }

    # Plan change made in the portal or by an upgrade elsewhere
    price = first_item(subscription).get("price") or {}
    current_price = (user.get("stripe_meta") or {}).get("price_id")
    if price.get("id") and price.get("id") != current_price:
        for key, value in price_fields(price).items():
            update[f"stripe_meta.{key}"] = value
        plan_name = _plan_name_for_price(price, subscription)
        if plan_name:
            update["stripe_meta.plan_name"] = plan_name

    _db().users.update_one({"id": user["id"]}, {"$set": update})
    log("subscription_updated", {
        "user_id": user["id"],
        "subscription_id": subscription.get("id"),
        "status": subscription.get("status"),
        "event_id": event.get("id"),
    }, "ok")


async def handle_subscription_deleted(event: Dict[str, Any]):
    subscription = event["data"]["object"]
    user = _find_user(subscription_id=subscription.get("id"))
    if not user:
        logger.info("No user for subscription %s; deletion ignored", subscription.get("id"))
        return

    now = datetime.utcnow()
    _db().users.update_one(
        {"id": user["id"]},
        {"$set": {
            "stripe_meta.status": "cancelled",
            "stripe_meta.cancelled_at": now,
            "stripe_meta.updated_at": now,
        }},
    )
    log("subscription_deleted", {
        "user_id": user["id"],
        "subscription_id": subscription.get("id"),
        "event_id": event.get("id"),
    }, "ok")


async def handle_invoice_payment_succeeded(event: Dict[str, Any]):
    """Record the payment and mark the subscription active."""
    invoice = event["data"]["object"]
    subscription_id = invoice_subscription_id(invoice)
    customer_id = invoice.get("customer")
    user = _find_user(subscription_id=subscription_id, customer_id=customer_id)
    now = datetime.utcnow()

    amount_paid = invoice.get("amount_paid") or 0
    paid_at = from_unix((invoice.get("status_transitions") or {}).get("paid_at")) or now
    _db().payments.update_one(
        {"stripe_invoice_id": invoice.get("id")},
        {
            "$set": {
                "stripe_invoice_id": invoice.get("id"),
                "stripe_subscription_id": subscription_id,
                "stripe_customer_id": customer_id,
                "user_id": user["id"] if user else None,
                "amount": amount_paid / 100,
                "currency": invoice.get("currency"),
                "status": "paid",
                "billing_reason": invoice.get("billing_reason"),
                "hosted_invoice_url": invoice.get("hosted_invoice_url"),
                "paid_at": paid_at,
                "updated_at": now,
            },
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
    )

    # Only an invoice of the tracked subscription changes its status
    if _tracks_subscription(user, subscription_id):
        _db().users.update_one(
            {"id": user["id"]},
            {"$set": {"stripe_meta.status": "active", "stripe_meta.updated_at": now}},
        )
    log("invoice_payment_succeeded", {
        "user_id": user["id"] if user else None,
        "invoice_id": invoice.get("id"),
        "subscription_id": subscription_id,
        "event_id": event.get("id"),
    }, "ok")


async def handle_invoice_payment_failed(event: Dict[str, Any]):
    invoice = event["data"]["object"]
    subscription_id = invoice_subscription_id(invoice)
    user = _find_user(subscription_id=subscription_id, customer_id=invoice.get("customer"))
    if _tracks_subscription(user, subscription_id):
        _db().users.update_one(
            {"id": user["id"]},
            {"$set": {"stripe_meta.status": "past_due", "stripe_meta.updated_at": datetime.utcnow()}},
        )
    log("invoice_payment_failed", {
        "user_id": user["id"] if user else None,
        "invoice_id": invoice.get("id"),
        "subscription_id": subscription_id,
        "attempt_count": invoice.get("attempt_count"),
        "event_id": event.get("id"),
    }, "ok" if user else "skipped")


# Dispatch map must be defined after handler functions
dispatch_map = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
}


async def dispatch(event: Dict[str, Any]) -> bool:
    """Apply an event once. Returns False when the delivery was a replay."""
    event_id = event.get("id")
    event_type = event.get("type")
    logger.info("📨 Stripe webhook %s (%s)", event_type, event_id)

    ledger = _db()["stripe_events_processed"]
    now = datetime.utcnow()
    res = ledger.update_one(
        {"event_id": event_id},
        {"$setOnInsert": {"event_id": event_id, "type": event_type, "created_at": now}},
        upsert=True,
    )
    if getattr(res, "upserted_id", None) is None:
        ledger.update_one({"event_id": event_id}, {"$inc": {"replay_count": 1}, "$set": {"last_seen_at": now}})
        log("webhook_idempotent_skip", {"event_id": event_id, "type": event_type}, "ok")
        return False

    handler = dispatch_map.get(event_type)
    if not handler:
        logger.info("Unhandled Stripe event type %s", event_type)
        return True

    try:
        await handler(event)
    except Exception as e:
        # Forget the delivery so Stripe's retry gets processed
        ledger.delete_one({"event_id": event_id})
        log("webhook_handler", {"event_id": event_id, "type": event_type}, "error", str(e))
        raise
    return True
