from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class StripeSettings(BaseSettings):
    """
    Stripe configuration for the gateway.

    Price IDs are never configured here: the plans catalog is read live from
    the Stripe account (products + prices), so creating or archiving a plan
    in the dashboard is enough.
    """

    STRIPE_SECRET_KEY: str
    STRIPE_PUBLISHABLE_KEY: str
    STRIPE_WEBHOOK_SECRET: str
    STRIPE_API_VERSION: str = "2025-08-27.basil"

    # /api/subscription/plans is cached in-process for this long
    PLANS_CACHE_TTL_SECONDS: int = 300

    # Appended to APP_URL
    CHECKOUT_SUCCESS_PATH: str = "/?success=true&session_id={CHECKOUT_SESSION_ID}"
    CHECKOUT_CANCEL_PATH: str = "/plans?canceled=true"
    PORTAL_RETURN_PATH: str = "/dashboard"

    # Allow unknown env vars so StripeSettings does not crash when
    # the global .env contains unrelated configuration keys.
    model_config = SettingsConfigDict(extra="allow", env_file=".env")


@lru_cache()
def get_settings() -> StripeSettings:  # pragma: no cover
    return StripeSettings()
