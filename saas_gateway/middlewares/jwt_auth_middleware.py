import logging

from fastapi import HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .jwt_auth import JWTAuthController

logger = logging.getLogger(__name__)


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """Middleware for JWT authentication with httpOnly cookies"""

    def __init__(self, app):
        super().__init__(app)
        self.jwt_auth = JWTAuthController()

        # Routes that don't require authentication (use prefix matching)
        self.public_routes = {
            "/",
            "/health",
            "/docs",
            "/redoc",
            "/openapi.json",
            "/uploads",
            # Auth endpoints guard themselves; sign-in/up and OTP flows are anonymous
            "/api/auth",
            # Stripe authenticates webhooks with the signature header
            "/api/webhooks/stripe",
        }
        self.state_changing_methods = {"POST", "PUT", "DELETE", "PATCH"}

    def _is_public(self, path: str) -> bool:
        if path == "/":
            return True
        return any(route != "/" and (path == route or path.startswith(route + "/")) for route in self.public_routes)

    def _csrf_failure(self, request: Request):
        if request.method not in self.state_changing_methods:
            return None
        csrf_token = request.headers.get("X-CSRF-Token")
        if not csrf_token:
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": "CSRF token required"}
            )
        try:
            self.jwt_auth.verify_csrf_token(request, csrf_token)
        except HTTPException as e:
            return JSONResponse(status_code=e.status_code, content={"detail": e.detail})
        return None

    async def _silent_refresh(self, request: Request, call_next, refresh_token: str):
        """Issue a fresh access token from the session cookie and run the request with it"""
        session = self.jwt_auth.verify_session_token(refresh_token)
        user = self.jwt_auth.db.users.find_one({"id": session["user_id"]}, {"_id": 0, "email": 1, "is_active": 1})
        if not user or not user.get("is_active", True):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is deactivated")

        new_access_token = self.jwt_auth.create_access_token(session["user_id"], session["id"], user.get("email"))
        request.state.user = self.jwt_auth.verify_access_token(new_access_token)

        csrf_failure = self._csrf_failure(request)
        if csrf_failure is not None:
            return csrf_failure

        response = await call_next(request)
        self.jwt_auth.set_auth_cookies(
            response,
            new_access_token,
            refresh_token,
            csrf_token=request.cookies.get(self.jwt_auth.csrf_cookie_name),
        )
        return response

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        if self._is_public(path):
            return await call_next(request)

        access_token = request.cookies.get(self.jwt_auth.access_token_cookie)
        refresh_token = request.cookies.get(self.jwt_auth.refresh_token_cookie)

        if not access_token:
            # Bearer tokens are verified by the route dependency
            if request.headers.get("Authorization"):
                return await call_next(request)

            if refresh_token:
                try:
                    return await self._silent_refresh(request, call_next, refresh_token)
                except HTTPException as refresh_error:
                    logger.debug("Silent refresh failed: %s", refresh_error.detail)

            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Authentication required"}
            )

        try:
            user = self.jwt_auth.verify_access_token(access_token)
        except HTTPException as e:
            if e.status_code == status.HTTP_401_UNAUTHORIZED and refresh_token:
                try:
                    return await self._silent_refresh(request, call_next, refresh_token)
                except HTTPException as refresh_error:
                    logger.debug("Silent refresh failed: %s", refresh_error.detail)
            return JSONResponse(status_code=e.status_code, content={"detail": e.detail})

        csrf_failure = self._csrf_failure(request)
        if csrf_failure is not None:
            return csrf_failure

        request.state.user = user
        return await call_next(request)
