import logging
from functools import lru_cache

import stripe

from .config import get_settings

logger = logging.getLogger(__name__)


def key_mode(secret_key: str) -> str:
    """'live' for sk_live_/rk_live_ keys, 'test' otherwise"""
    return "live" if "_live_" in secret_key else "test"


@lru_cache()
def get_stripe():  # pragma: no cover
    """The stripe module, configured once per process from StripeSettings."""
    settings = get_settings()
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = settings.STRIPE_API_VERSION
    stripe.max_network_retries = 2
    stripe.enable_telemetry = False
    stripe.set_app_info("saas-gateway", version="1.0.0")
    logger.info("💳 Stripe client ready (%s mode, API %s)", key_mode(settings.STRIPE_SECRET_KEY), settings.STRIPE_API_VERSION)
    return stripe
