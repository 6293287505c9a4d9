from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException, status
from stripe import CardError, InvalidRequestError, StripeError

from ...utils.helperFunctions import from_unix
from ..subscription.schema import StripeMeta
from .config import get_settings

# API versions from this date on moved the invoice client secret to
# ``confirmation_secret`` and the billing period onto subscription items
BASIL_API_VERSION = "2025-03-31"


def as_dict(obj: Any) -> Dict[str, Any]:
    """Plain dict view of a StripeObject (webhook payloads are already dicts)"""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict_recursive"):
        return obj
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def is_basil(api_version: Optional[str] = None) -> bool:
    version = api_version or get_settings().STRIPE_API_VERSION
    return version[:10] >= BASIL_API_VERSION


def latest_invoice_expand() -> str:
    return "latest_invoice.confirmation_secret" if is_basil() else "latest_invoice.payment_intent"


def first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_period(subscription: Dict[str, Any]) -> Tuple[Optional[int], Optional[int]]:
    """Current period bounds as unix timestamps; newer API versions keep them on the item"""
    item = first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return start, end


def client_secret_from(subscription: Dict[str, Any]) -> Optional[str]:
    """Client secret of the first invoice, for confirming the payment on the frontend"""
    invoice = subscription.get("latest_invoice")
    if not isinstance(invoice, dict):
        return None
    confirmation = invoice.get("confirmation_secret") or {}
    if confirmation.get("client_secret"):
        return confirmation["client_secret"]
    payment_intent = invoice.get("payment_intent")
    if isinstance(payment_intent, dict):
        return payment_intent.get("client_secret")
    return None


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription = invoice.get("subscription")
    if subscription:
        return subscription if isinstance(subscription, str) else subscription.get("id")
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    subscription = details.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription


def price_fields(price: Dict[str, Any]) -> Dict[str, Any]:
    """The stripe_meta fields derived from a price"""
    unit_amount = price.get("unit_amount")
    recurring = price.get("recurring") or {}
    return {
        "price_id": price.get("id"),
        "amount": unit_amount / 100 if unit_amount else 0,
        "currency": price.get("currency"),
        "interval": recurring.get("interval") or "month",
    }


def build_stripe_meta(
    *,
    subscription: Dict[str, Any],
    price: Dict[str, Any],
    plan_name: Optional[str],
    customer_id: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Full stripe_meta snapshot of a subscription"""
    now = now or datetime.utcnow()
    start, end = subscription_period(subscription)
    customer = customer_id or subscription.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")
    meta = StripeMeta(
        subscription_id=subscription["id"],
        customer_id=customer,
        plan_name=plan_name or (subscription.get("metadata") or {}).get("planName") or None,
        status=subscription.get("status"),
        current_period_start=from_unix(start),
        current_period_end=from_unix(end),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        created_at=now,
        updated_at=now,
        **price_fields(price),
    )
    return meta.model_dump()


def http_error_from_stripe(e: StripeError) -> HTTPException:
    """Map an SDK error to a response: bad input is the client's fault, anything else is ours"""
    message = getattr(e, "user_message", None) or str(e)
    code = status.HTTP_400_BAD_REQUEST if isinstance(e, (InvalidRequestError, CardError)) else status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=message)
