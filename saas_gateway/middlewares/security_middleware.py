from functools import lru_cache

from starlette.middleware.base import BaseHTTPMiddleware

from ..config import get_settings

STRIPE_JS = "https://js.stripe.com"


@lru_cache()
def content_security_policy(app_url: str) -> str:
    """CSP for API responses; Stripe.js frames and the frontend origin are the only outside sources"""
    directives = {
        "default-src": "'self'",
        "script-src": f"'self' {STRIPE_JS}",
        "style-src": "'self' 'unsafe-inline'",
        "img-src": "'self' data: https:",
        "connect-src": f"'self' {app_url} https://api.stripe.com",
        "frame-src": f"{STRIPE_JS} https://hooks.stripe.com",
        "frame-ancestors": "'none'",
        "form-action": f"'self' {app_url} https://checkout.stripe.com",
        "base-uri": "'self'",
    }
    return "; ".join(f"{name} {value}" for name, value in directives.items())


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        # CORS preflights are answered untouched
        if request.method == "OPTIONS":
            return await call_next(request)

        response = await call_next(request)
        settings = get_settings()

        response.headers["Content-Security-Policy"] = content_security_policy(settings.APP_URL)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=(), payment=(self)"
        if settings.ENVIRONMENT == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response
