from .jwt_auth import JWTAuthController, get_current_user, require_csrf
from .jwt_auth_middleware import JWTAuthMiddleware
from .security_middleware import SecurityHeadersMiddleware

__all__ = [
    "JWTAuthController",
    "JWTAuthMiddleware",
    "SecurityHeadersMiddleware",
    "get_current_user",
    "require_csrf",
]
