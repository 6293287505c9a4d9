from datetime import datetime, timedelta

import pytest
from pymongo.errors import AutoReconnect

from ..controller import SubscriptionController
from .fake_stripe import FakeStripe

NOW = datetime(2025, 6, 1, 12, 0)


@pytest.fixture
def controller(fake_db):
    return SubscriptionController(db=fake_db, stripe_client=FakeStripe())


def _user(fake_db, status=None, **meta):
    doc = {"id": "user_1", "email": "ada@example.com"}
    if status:
        doc["stripe_meta"] = {
            "subscription_id": "sub_1",
            "plan_name": "Pro",
            "status": status,
            "amount": 19.0,
            "interval": "month",
            "current_period_end": NOW + timedelta(days=12, hours=3),
            **meta,
        }
    fake_db.users.insert_one(doc)


def test_no_subscription(controller, fake_db):
    _user(fake_db)
    assert controller.get_user_subscription("user_1") is None
    assert controller.has_active_subscription("user_1") is False
    assert controller.get_subscription_status("user_1", now=NOW) == {
        "isActive": False, "planName": None, "status": None, "daysRemaining": None,
    }


@pytest.mark.parametrize("status, active", [("active", True), ("trialing", True), ("past_due", False), ("cancelled", False)])
def test_active_statuses(controller, fake_db, status, active):
    _user(fake_db, status)
    assert controller.has_active_subscription("user_1") is active
    assert controller.is_subscribed_to_plan("user_1", "Pro") is active
    assert controller.is_subscribed_to_plan("user_1", "Enterprise") is False


def test_status_summary(controller, fake_db):
    _user(fake_db, "trialing", cancel_at_period_end=True)
    assert controller.get_subscription_status("user_1", now=NOW) == {
        "isActive": True,
        "planName": "Pro",
        "status": "trialing",
        "daysRemaining": 13,
        "amount": 19.0,
        "interval": "month",
        "willCancelAtPeriodEnd": True,
    }


def test_days_remaining_never_negative(controller, fake_db):
    _user(fake_db, "active", current_period_end=NOW - timedelta(days=3))
    assert controller.get_subscription_status("user_1", now=NOW)["daysRemaining"] == 0


@pytest.mark.parametrize("status, flow", [("active", "upgrade"), ("trialing", "upgrade"), ("past_due", "checkout"), (None, "checkout")])
def test_plan_flow_follows_subscription_status(controller, fake_db, status, flow):
    _user(fake_db, status)
    assert controller.decide_plan_flow("user_1", "price_x")["flow"] == flow


def test_read_errors_are_treated_as_no_subscription(controller, fake_db, monkeypatch):
    def broken(*args, **kwargs):
        raise AutoReconnect("connection reset")

    monkeypatch.setattr(fake_db.users, "find_one", broken)
    assert controller.get_user_subscription("user_1") is None


def test_plan_resolution_is_case_insensitive(controller):
    price, name = controller.resolve_plan_price("PRO", annual=True)
    assert price["id"] == "price_pro_year"
    assert name == "Pro"
