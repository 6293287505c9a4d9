# saas_gateway/src/subscription/controller.py
import logging
from datetime import datetime
from time import time
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException, status
from pymongo.errors import PyMongoError
from stripe import InvalidRequestError

from ...config import get_settings as get_app_settings
from ...database.db import get_database
from ...utils.helperFunctions import days_until, from_unix
from ..stripe.audit import log
from ..stripe.client import get_stripe
from ..stripe.config import get_settings as get_stripe_settings
from ..stripe.utils import (
    as_dict,
    build_stripe_meta,
    client_secret_from,
    first_item,
    latest_invoice_expand,
    subscription_period,
)
from .schema import ACTIVE_STATUSES, PlanFlow, UpgradeRequest

logger = logging.getLogger(__name__)

# -----------------------------
# Plans catalog TTL cache
# -----------------------------
_PLANS_CACHE: Dict[str, Any] = {"value": None, "ts": 0.0}


def clear_plans_cache() -> None:
    _PLANS_CACHE["value"] = None
    _PLANS_CACHE["ts"] = 0.0


def _lowest_amount(product: Dict[str, Any]) -> Tuple[int, int]:
    prices = product.get("prices") or []
    if not prices:
        return (1, 0)
    return (0, min(price.get("unit_amount") or 0 for price in prices))


def _string_metadata(metadata: Dict[str, Any]) -> Dict[str, str]:
    # Stripe metadata values are strings
    return {str(k): "" if v is None else str(v) for k, v in metadata.items()}


class SubscriptionController:
    """Subscription read model over users.stripe_meta plus the Stripe-side actions"""

    def __init__(self, db=None, stripe_client=None):
        self.db = db if db is not None else get_database()
        self.stripe = stripe_client or get_stripe()
        self.app_settings = get_app_settings()
        self.stripe_settings = get_stripe_settings()

    @property
    def app_url(self) -> str:
        return self.app_settings.APP_URL.rstrip("/")

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> Dict[str, Any]:
        user = self.db.users.find_one({"id": user_id}, {"_id": 0})
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user

    def get_user_subscription(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            user = self.db.users.find_one({"id": user_id}, {"_id": 0, "stripe_meta": 1})
        except PyMongoError as e:
            logger.error("Error reading subscription for %s: %s", user_id, e)
            return None
        return (user or {}).get("stripe_meta") or None

    def has_active_subscription(self, user_id: str) -> bool:
        meta = self.get_user_subscription(user_id)
        return bool(meta) and meta.get("status") in ACTIVE_STATUSES

    def is_subscribed_to_plan(self, user_id: str, plan_name: str) -> bool:
        meta = self.get_user_subscription(user_id)
        if not meta or meta.get("status") not in ACTIVE_STATUSES:
            return False
        return meta.get("plan_name") == plan_name

    def get_subscription_status(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        meta = self.get_user_subscription(user_id)
        if not meta:
            return {"isActive": False, "planName": None, "status": None, "daysRemaining": None}

        return {
            "isActive": meta.get("status") in ACTIVE_STATUSES,
            "planName": meta.get("plan_name"),
            "status": meta.get("status"),
            "daysRemaining": days_until(meta.get("current_period_end"), now),
            "amount": meta.get("amount"),
            "interval": meta.get("interval"),
            "willCancelAtPeriodEnd": bool(meta.get("cancel_at_period_end")),
        }

    def decide_plan_flow(self, user_id: str, price_id: str, plan_name: Optional[str] = None) -> Dict[str, Any]:
        """Upgrade in place when a paid-up subscription exists, otherwise go through checkout"""
        meta = self.get_user_subscription(user_id)
        if meta and meta.get("status") in ACTIVE_STATUSES:
            return {
                "flow": PlanFlow.UPGRADE.value,
                "subscriptionId": meta.get("subscription_id"),
                "currentPlan": meta.get("plan_name"),
                "priceId": price_id,
                "planName": plan_name,
            }
        return {"flow": PlanFlow.CHECKOUT.value, "priceId": price_id, "planName": plan_name}

    # ------------------------------------------------------------------
    # Plans catalog
    # ------------------------------------------------------------------

    def list_plans(self) -> List[Dict[str, Any]]:
        """Active products with their active prices, cheapest first"""
        now = time()
        if _PLANS_CACHE["value"] is not None and now - _PLANS_CACHE["ts"] < self.stripe_settings.PLANS_CACHE_TTL_SECONDS:
            return _PLANS_CACHE["value"]

        products = as_dict(self.stripe.Product.list(active=True, limit=100)).get("data") or []
        prices = as_dict(self.stripe.Price.list(active=True, limit=100)).get("data") or []

        by_product: Dict[str, List[Dict[str, Any]]] = {}
        for price in prices:
            product_id = price.get("product")
            if isinstance(product_id, dict):
                product_id = product_id.get("id")
            by_product.setdefault(product_id, []).append(price)

        plans = []
        for product in products:
            if (product.get("metadata") or {}).get("showInPlans") == "false":
                continue
            plans.append({**product, "prices": by_product.get(product["id"], [])})
        plans.sort(key=_lowest_amount)

        _PLANS_CACHE["value"] = plans
        _PLANS_CACHE["ts"] = now
        return plans

    def resolve_plan_price(self, plan: str, annual: bool = False) -> Tuple[Dict[str, Any], str]:
        """Find the recurring price for a plan by product name or price metadata ``plan``"""
        wanted = plan.strip().lower()
        interval = "year" if annual else "month"
        for product in self.list_plans():
            product_name = product.get("name") or ""
            for price in product.get("prices") or []:
                price_plan = (price.get("metadata") or {}).get("plan") or ""
                if wanted not in (product_name.lower(), price_plan.lower()):
                    continue
                if (price.get("recurring") or {}).get("interval") == interval:
                    return price, product_name or price_plan
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Plan not found")

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def get_or_create_customer(self, user: Dict[str, Any], payment_method_id: Optional[str] = None) -> str:
        """Stored customer id, else the first Stripe customer with the user's e-mail, else a new one"""
        customer_id = user.get("stripe_customer_id") or (user.get("stripe_meta") or {}).get("customer_id")
        if customer_id:
            return customer_id

        existing = as_dict(self.stripe.Customer.list(email=user["email"], limit=1)).get("data") or []
        if existing:
            customer_id = existing[0]["id"]
        else:
            params: Dict[str, Any] = {
                "email": user["email"],
                "metadata": {"userId": user["id"]},
            }
            if user.get("name"):
                params["name"] = user["name"]
            if payment_method_id:
                params["payment_method"] = payment_method_id
                params["invoice_settings"] = {"default_payment_method": payment_method_id}
            customer_id = as_dict(self.stripe.Customer.create(**params))["id"]
            logger.info("👤 Created Stripe customer %s for %s", customer_id, user["id"])

        self.db.users.update_one(
            {"id": user["id"]},
            {"$set": {"stripe_customer_id": customer_id, "updated_at": datetime.utcnow()}},
        )
        user["stripe_customer_id"] = customer_id
        return customer_id

    # ------------------------------------------------------------------
    # Checkout / direct subscription
    # ------------------------------------------------------------------

    def create_checkout_session(self, user: Dict[str, Any], price_id: Optional[str],
                                plan_name: Optional[str] = None) -> Dict[str, Any]:
        if not price_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Price ID is required")

        customer_id = self.get_or_create_customer(user)
        session = as_dict(self.stripe.checkout.Session.create(
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{self.app_url}{self.stripe_settings.CHECKOUT_SUCCESS_PATH}",
            cancel_url=f"{self.app_url}{self.stripe_settings.CHECKOUT_CANCEL_PATH}",
            metadata={"userId": user["id"], "userEmail": user["email"], "planName": plan_name or ""},
            subscription_data={"metadata": {"userId": user["id"], "planName": plan_name or ""}},
        ))
        log("checkout_session_create", {
            "user_id": user["id"],
            "customer_id": customer_id,
            "price_id": price_id,
            "session_id": session.get("id"),
        })
        return {"sessionId": session.get("id"), "url": session.get("url")}

    def create_subscription(self, user: Dict[str, Any], price_id: Optional[str], payment_method_id: Optional[str],
                            plan_name: Optional[str] = None) -> Dict[str, Any]:
        """Subscribe with a card collected on our own page (Payment Element)"""
        if not price_id or not payment_method_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Price ID and Payment Method ID are required",
            )

        customer_id = self.get_or_create_customer(user, payment_method_id)
        self.stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)
        self.stripe.Customer.modify(customer_id, invoice_settings={"default_payment_method": payment_method_id})

        subscription = as_dict(self.stripe.Subscription.create(
            customer=customer_id,
            items=[{"price": price_id}],
            payment_settings={
                "payment_method_types": ["card"],
                "save_default_payment_method": "on_subscription",
            },
            expand=[latest_invoice_expand()],
            metadata={"userId": user["id"], "planName": plan_name or ""},
        ))
        price = as_dict(self.stripe.Price.retrieve(price_id))

        # The checkout webhook writes the same snapshot; writing it here makes it visible immediately
        stripe_meta = build_stripe_meta(
            subscription=subscription,
            price=price,
            plan_name=plan_name,
            customer_id=customer_id,
        )
        self.db.users.update_one(
            {"id": user["id"]},
            {"$set": {"stripe_meta": stripe_meta, "updated_at": datetime.utcnow()}},
        )
        log("subscription_create", {
            "user_id": user["id"],
            "customer_id": customer_id,
            "price_id": price_id,
            "subscription_id": subscription.get("id"),
        })
        return {
            "subscriptionId": subscription.get("id"),
            "clientSecret": client_secret_from(subscription),
            "status": subscription.get("status"),
        }

    # ------------------------------------------------------------------
    # Upgrade
    # ------------------------------------------------------------------

    def _current_subscription(self, user: Dict[str, Any], subscription_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """The user's paid-up Stripe subscription, if any"""
        if subscription_id:
            subscription = self.get_owned_subscription(user, subscription_id)
        else:
            meta = user.get("stripe_meta") or {}
            if meta.get("status") not in ACTIVE_STATUSES or not meta.get("subscription_id"):
                return None
            try:
                subscription = as_dict(self.stripe.Subscription.retrieve(meta["subscription_id"]))
            except InvalidRequestError:
                logger.warning("Stored subscription %s no longer exists in Stripe", meta["subscription_id"])
                return None
        if subscription.get("status") not in ACTIVE_STATUSES:
            return None
        return subscription

    def upgrade(self, user: Dict[str, Any], body: UpgradeRequest) -> Dict[str, Any]:
        if not body.plan:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Plan is required")
        if not body.success_url or not body.cancel_url:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Success URL and Cancel URL are required",
            )

        price, plan_name = self.resolve_plan_price(body.plan, body.annual)
        metadata = _string_metadata({
            **body.metadata,
            "userId": user["id"],
            "planName": plan_name,
            "referenceId": body.reference_id,
        })

        current = self._current_subscription(user, body.subscription_id)
        if current:
            item = first_item(current)
            current_price = (item.get("price") or {}).get("id")
            if current_price == price["id"] and (item.get("quantity") or 1) == body.seats:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Already subscribed to this plan")

            updated = as_dict(self.stripe.Subscription.modify(
                current["id"],
                items=[{"id": item.get("id"), "price": price["id"], "quantity": body.seats}],
                proration_behavior="create_prorations",
                metadata={**(current.get("metadata") or {}), **metadata},
            ))
            stripe_meta = build_stripe_meta(
                subscription=updated,
                price=price,
                plan_name=plan_name,
                customer_id=user.get("stripe_customer_id"),
            )
            previous = user.get("stripe_meta") or {}
            if previous.get("subscription_id") == updated.get("id") and previous.get("created_at"):
                stripe_meta["created_at"] = previous["created_at"]
            self.db.users.update_one(
                {"id": user["id"]},
                {"$set": {"stripe_meta": stripe_meta, "updated_at": datetime.utcnow()}},
            )
            log("subscription_upgrade", {
                "user_id": user["id"],
                "subscription_id": updated.get("id"),
                "from_price_id": current_price,
                "to_price_id": price["id"],
                "seats": body.seats,
            })
            return {"url": None, "redirect": False, "subscriptionId": updated.get("id")}

        customer_id = self.get_or_create_customer(user)
        session = as_dict(self.stripe.checkout.Session.create(
            customer=customer_id,
            mode="subscription",
            line_items=[{"price": price["id"], "quantity": body.seats}],
            success_url=body.success_url,
            cancel_url=body.cancel_url,
            metadata={**metadata, "userEmail": user["email"]},
            subscription_data={"metadata": metadata},
        ))
        log("checkout_session_create", {
            "user_id": user["id"],
            "customer_id": customer_id,
            "price_id": price["id"],
            "session_id": session.get("id"),
        })
        return {"url": session.get("url"), "redirect": not body.disable_redirect, "sessionId": session.get("id")}

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def get_owned_subscription(self, user: Dict[str, Any], subscription_id: str) -> Dict[str, Any]:
        """Retrieve a subscription and check it belongs to the user (403 otherwise)"""
        try:
            subscription = as_dict(self.stripe.Subscription.retrieve(subscription_id))
        except InvalidRequestError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")

        if (subscription.get("metadata") or {}).get("userId") == user["id"]:
            return subscription

        customer = subscription.get("customer")
        if isinstance(customer, dict):
            customer = customer.get("id")
        owned_customers = {user.get("stripe_customer_id"), (user.get("stripe_meta") or {}).get("customer_id")}
        if customer and customer in owned_customers:
            return subscription

        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    @staticmethod
    def summarize(subscription: Dict[str, Any]) -> Dict[str, Any]:
        item = first_item(subscription)
        price = item.get("price") or {}
        start, end = subscription_period(subscription)
        metadata = subscription.get("metadata") or {}
        return {
            "id": subscription.get("id"),
            "status": subscription.get("status"),
            "plan": metadata.get("planName") or price.get("nickname"),
            "priceId": price.get("id"),
            "currentPeriodStart": from_unix(start),
            "currentPeriodEnd": from_unix(end),
            "cancelAtPeriodEnd": bool(subscription.get("cancel_at_period_end")),
            "seats": item.get("quantity") or 1,
            "metadata": metadata,
        }

    def list_subscriptions(self, user: Dict[str, Any], active_only: bool = False) -> List[Dict[str, Any]]:
        customer_id = user.get("stripe_customer_id") or (user.get("stripe_meta") or {}).get("customer_id")
        if not customer_id:
            return []
        subscriptions = as_dict(self.stripe.Subscription.list(customer=customer_id, status="all", limit=100)).get("data") or []
        if active_only:
            subscriptions = [s for s in subscriptions if s.get("status") in ACTIVE_STATUSES]
        return [self.summarize(s) for s in subscriptions]

    def _sync_meta(self, user: Dict[str, Any], subscription: Dict[str, Any], extra: Optional[Dict[str, Any]] = None) -> None:
        """Mirror a management action into stripe_meta when it concerns the stored subscription"""
        meta = user.get("stripe_meta") or {}
        if meta.get("subscription_id") != subscription.get("id"):
            return
        start, end = subscription_period(subscription)
        update = {
            "stripe_meta.status": subscription.get("status"),
            "stripe_meta.cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
            "stripe_meta.current_period_start": from_unix(start),
            "stripe_meta.current_period_end": from_unix(end),
            "stripe_meta.updated_at": datetime.utcnow(),
        }
        update.update(extra or {})
        self.db.users.update_one({"id": user["id"]}, {"$set": update})

    def cancel(self, user: Dict[str, Any], subscription_id: str, at_period_end: bool = True) -> Dict[str, Any]:
        subscription = self.get_owned_subscription(user, subscription_id)

        if at_period_end:
            if subscription.get("cancel_at_period_end"):
                # Already scheduled
                return self.summarize(subscription)
            result = as_dict(self.stripe.Subscription.modify(subscription_id, cancel_at_period_end=True))
            self._sync_meta(user, result)
        else:
            if subscription.get("status") == "canceled":
                return self.summarize(subscription)
            result = as_dict(self.stripe.Subscription.cancel(subscription_id))
            now = datetime.utcnow()
            self._sync_meta(user, result, {"stripe_meta.status": "cancelled", "stripe_meta.cancelled_at": now})

        log("subscription_cancel", {
            "user_id": user["id"],
            "subscription_id": subscription_id,
            "at_period_end": at_period_end,
        })
        return self.summarize(result)

    def reactivate(self, user: Dict[str, Any], subscription_id: str) -> Dict[str, Any]:
        subscription = self.get_owned_subscription(user, subscription_id)
        if subscription.get("status") == "canceled":
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Subscription is already cancelled")
        if not subscription.get("cancel_at_period_end"):
            return self.summarize(subscription)

        result = as_dict(self.stripe.Subscription.modify(subscription_id, cancel_at_period_end=False))
        self._sync_meta(user, result)
        log("subscription_reactivate", {"user_id": user["id"], "subscription_id": subscription_id})
        return self.summarize(result)

    def update_seats(self, user: Dict[str, Any], subscription_id: str, seats: int) -> Dict[str, Any]:
        subscription = self.get_owned_subscription(user, subscription_id)
        item = first_item(subscription)
        if not item:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Subscription has no items")

        result = as_dict(self.stripe.Subscription.modify(
            subscription_id,
            items=[{"id": item.get("id"), "quantity": seats}],
            proration_behavior="create_prorations",
        ))
        self._sync_meta(user, result)
        log("subscription_update_seats", {"user_id": user["id"], "subscription_id": subscription_id, "seats": seats})
        return self.summarize(result)
