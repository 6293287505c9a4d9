# saas_gateway/router_config.py
"""
Router configuration for the SaaS gateway
Centralized router management separated from main.py
"""


def setup_routers(app):
    """Configure all application routers"""

    # Import all routers
    from .src.auth.routes import router as auth_router
    from .src.auth.otp_routes import router as otp_router
    from .src.auth.two_factor_routes import router as two_factor_router
    from .src.auth.social_routes import router as social_router
    from .src.subscription.routes import router as subscription_router
    from .src.stripe.routes import router as stripe_router
    from .src.stripe.routes import webhook_router as stripe_webhook_router
    from .src.email.routes import router as email_router
    from .src.userProfile.routes import router as userprofile_router

    # Core authentication and user management
    app.include_router(auth_router)
    app.include_router(otp_router)
    app.include_router(two_factor_router)
    app.include_router(social_router)

    # User profile
    app.include_router(userprofile_router)

    # Billing and payments
    app.include_router(subscription_router)
    app.include_router(stripe_router)
    # Stripe webhooks (public, signature-checked)
    app.include_router(stripe_webhook_router)

    # Transactional e-mail
    app.include_router(email_router)

    return app
