#!/usr/bin/env python
"""
Create the Stripe products and prices shown on the plans page.

Run once per Stripe account (test and live):

    python -m saas_gateway.scripts.setup_stripe_products

The plans endpoint lists every active product, so nothing else needs
configuring afterwards. Products get ``showInPlans`` metadata; set it to
"false" in the dashboard to hide one.
"""

import argparse
import sys
from typing import Any, Dict, List, Optional

from stripe import StripeError

from ..src.stripe.client import get_stripe
from ..src.stripe.utils import as_dict

PLANS: List[Dict[str, Any]] = [
    {
        "name": "Basic",
        "description": "Perfect for getting started",
        "metadata": {"showInPlans": "true", "maxProjects": "5", "maxStorage": "10", "freeTrial": "false"},
        "unit_amount": 0,
        "interval": None,
    },
    {
        "name": "Pro",
        "description": "Best for growing businesses",
        "metadata": {"showInPlans": "true", "maxProjects": "20", "maxStorage": "50", "freeTrial": "true"},
        "unit_amount": 1900,
        "interval": "month",
    },
    {
        "name": "Enterprise",
        "description": "For large organizations",
        "metadata": {"showInPlans": "true", "maxProjects": "100", "maxStorage": "500", "freeTrial": "false"},
        "unit_amount": 4900,
        "interval": "month",
    },
]


def create_plan(stripe_client, plan: Dict[str, Any], currency: str = "usd") -> Dict[str, str]:
    """Create one product and its price; returns their ids"""
    product = as_dict(stripe_client.Product.create(
        name=plan["name"],
        description=plan["description"],
        metadata=plan["metadata"],
    ))
    price_params: Dict[str, Any] = {
        "product": product["id"],
        "unit_amount": plan["unit_amount"],
        "currency": currency,
        "metadata": {"plan": plan["name"].lower()},
    }
    if plan["interval"]:
        price_params["recurring"] = {"interval": plan["interval"]}
    price = as_dict(stripe_client.Price.create(**price_params))
    return {"name": plan["name"], "product_id": product["id"], "price_id": price["id"]}


def setup_products(stripe_client=None, currency: str = "usd") -> List[Dict[str, str]]:
    stripe_client = stripe_client or get_stripe()
    created = []
    for plan in PLANS:
        result = create_plan(stripe_client, plan, currency)
        print(f"✅ {result['name']} plan created: {result['product_id']} {result['price_id']}")
        created.append(result)
    return created


def main(argv: Optional[List[str]] = None, stripe_client=None) -> int:
    parser = argparse.ArgumentParser(description="Create the Basic, Pro and Enterprise Stripe products")
    parser.add_argument("--currency", default="usd", help="ISO currency for the prices (default: usd)")
    args = parser.parse_args(argv)

    print("🔍 Setting up Stripe products...")
    try:
        created = setup_products(stripe_client, args.currency)
    except StripeError as e:
        print(f"❌ Error setting up products: {e}", file=sys.stderr)
        return 1

    print("\n🎉 All products created successfully!")
    print("\n📋 Summary:")
    for result in created:
        print(f"{result['name']} Plan: {result['product_id']} - Price: {result['price_id']}")
    print("\n🔧 Next steps:")
    print("1. Open /plans in the app to check the catalog")
    print("2. Point a Stripe webhook at /api/webhooks/stripe")
    return 0


if __name__ == "__main__":
    sys.exit(main())
