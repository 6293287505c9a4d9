import logging
import os
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import HTTPException, Request, Response, status
from jose import JWTError, jwt

from ..config import get_settings
from ..database.db import get_database
from ..src.auth.schema import JWTClaims
from ..utils.helperFunctions import generate_unique_id

logger = logging.getLogger(__name__)


class JWTAuthController:
    """JWT access tokens, database-backed sessions and the cookies that carry them"""

    # Class-level singleton variables
    _instance = None
    _private_key = None
    _public_key = None
    _token_blocklist_global = set()
    _two_factor_failures_global = {}

    def __new__(cls, *args, **kwargs):
        # Ensure only one instance exists (process-wide singleton)
        if cls._instance is None:
            cls._instance = super(JWTAuthController, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        # Prevent re-initialisation on subsequent instantiations
        if getattr(self, "_initialised", False):
            return

        self.settings = get_settings()

        self.algorithm = self.settings.JWT_ALGORITHM
        self.access_token_expire_minutes = self.settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
        self.session_expire_days = self.settings.SESSION_EXPIRE_DAYS
        self.session_update_age = timedelta(hours=self.settings.SESSION_UPDATE_AGE_HOURS)
        self.pending_two_factor_minutes = self.settings.TWO_FACTOR_PENDING_MINUTES
        self.two_factor_max_attempts = self.settings.TWO_FACTOR_MAX_ATTEMPTS

        # Cookie settings from config
        self.secure_cookie = self.settings.COOKIE_SECURE
        self.cookie_domain = self.settings.COOKIE_DOMAIN
        self.cookie_samesite = self.settings.COOKIE_SAMESITE

        # Cookie names from config
        self.access_token_cookie = self.settings.JWT_ACCESS_TOKEN_COOKIE_NAME
        self.refresh_token_cookie = self.settings.JWT_REFRESH_TOKEN_COOKIE_NAME
        self.csrf_cookie_name = self.settings.JWT_CSRF_COOKIE_NAME
        self.two_factor_cookie = self.settings.TWO_FACTOR_COOKIE_NAME

        # Token blocklist (shared across instances)
        self._token_blocklist = JWTAuthController._token_blocklist_global
        # Failed code attempts per pending two-factor jti
        self._two_factor_failures = JWTAuthController._two_factor_failures_global

        self._load_or_generate_keys()

        self._initialised = True

    @property
    def db(self):
        return get_database()

    def _load_or_generate_keys(self):
        """Load RSA keys from the configured paths or generate new ones"""
        private_key_path = self.settings.JWT_PRIVATE_KEY_PATH
        public_key_path = self.settings.JWT_PUBLIC_KEY_PATH

        # Re-use already loaded keys if they exist
        if JWTAuthController._private_key and JWTAuthController._public_key:
            self.private_key = JWTAuthController._private_key
            self.public_key = JWTAuthController._public_key
            return

        if private_key_path and os.path.exists(private_key_path) and \
           public_key_path and os.path.exists(public_key_path):
            with open(private_key_path, "rb") as f:
                self.private_key = serialization.load_pem_private_key(
                    f.read(),
                    password=None,
                    backend=default_backend()
                )

            with open(public_key_path, "rb") as f:
                self.public_key = serialization.load_pem_public_key(
                    f.read(),
                    backend=default_backend()
                )
        else:
            logger.info("🔑 Generating RSA key pair for JWT signing")
            self.private_key = rsa.generate_private_key(
                public_exponent=65537,
                key_size=2048,
                backend=default_backend()
            )
            self.public_key = self.private_key.public_key()

            # Save keys if paths are provided
            if private_key_path and public_key_path:
                private_pem = self.private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.PKCS8,
                    encryption_algorithm=serialization.NoEncryption()
                )
                public_pem = self.public_key.public_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PublicFormat.SubjectPublicKeyInfo
                )

                os.makedirs(os.path.dirname(private_key_path) or ".", exist_ok=True)
                os.makedirs(os.path.dirname(public_key_path) or ".", exist_ok=True)

                with open(private_key_path, "wb") as f:
                    f.write(private_pem)
                with open(public_key_path, "wb") as f:
                    f.write(public_pem)

        # Cache keys at class level for future instances
        JWTAuthController._private_key = self.private_key
        JWTAuthController._public_key = self.public_key

    def _private_pem(self) -> str:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        ).decode("utf-8")

    def _public_pem(self) -> str:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode("utf-8")

    def _decode(self, token: str, verify_exp: bool = True) -> Dict[str, Any]:
        return jwt.decode(
            token,
            self._public_pem(),
            algorithms=[self.algorithm],
            options={"verify_exp": verify_exp},
        )

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def create_access_token(self, user_id: str, session_id: str, email: Optional[str] = None) -> str:
        """Create a JWT access token with minimal payload"""
        now = datetime.utcnow()
        claims = {
            "sub": user_id,
            "sid": session_id,
            "typ": "access",
            "jti": str(uuid.uuid4()),
            "exp": now + timedelta(minutes=self.access_token_expire_minutes),
            "iat": now,
        }
        if email:
            claims["email"] = email

        return jwt.encode(claims, self._private_pem(), algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> JWTClaims:
        """Verify JWT access token and check if it's not in blocklist"""
        if self._is_token_revoked(token):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has been revoked"
            )
        try:
            payload = self._decode(token)
        except JWTError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid token: {str(e)}"
            )

        if payload.get("typ") != "access" or not payload.get("sid"):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token type"
            )

        session = self.get_session_by_id(payload["sid"])
        if not session or (session.get("expires_at") and session["expires_at"] < datetime.utcnow()):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Session has been revoked"
            )

        return JWTClaims(
            user_id=payload["sub"],
            session_id=payload["sid"],
            email=payload.get("email", ""),
            exp=payload["exp"],
            iat=payload["iat"],
            jti=payload["jti"],
        )

    def _is_token_revoked(self, token: str) -> bool:
        """Check if a token is in the blocklist"""
        try:
            payload = self._decode(token, verify_exp=False)
        except JWTError:
            return True
        jti = payload.get("jti")
        if not jti:
            return True
        return jti in self._token_blocklist

    # ------------------------------------------------------------------
    # Sessions (refresh tokens stored in Mongo)
    # ------------------------------------------------------------------

    def create_session(self, user_id: str, ip_address: Optional[str] = None,
                       user_agent: Optional[str] = None) -> Dict[str, Any]:
        """Create a session record; its token is the refresh token"""
        now = datetime.utcnow()
        session = {
            "id": generate_unique_id("session"),
            "token": secrets.token_urlsafe(32),
            "user_id": user_id,
            "expires_at": now + timedelta(days=self.session_expire_days),
            "is_active": True,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "created_at": now,
            "updated_at": now,
        }
        self.db.sessions.insert_one(dict(session))
        return session

    def verify_session_token(self, token: str) -> Dict[str, Any]:
        """Verify a session token, extending its lifetime once it is older than the update age"""
        session = self.db.sessions.find_one({"token": token, "is_active": True})
        if not session:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid refresh token"
            )

        now = datetime.utcnow()
        expires_at = session.get("expires_at")
        if expires_at and expires_at < now:
            self.db.sessions.update_one({"token": token}, {"$set": {"is_active": False}})
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Refresh token expired"
            )

        updated_at = session.get("updated_at") or session.get("created_at") or now
        if now - updated_at >= self.session_update_age:
            new_expiry = now + timedelta(days=self.session_expire_days)
            self.db.sessions.update_one(
                {"token": token},
                {"$set": {"expires_at": new_expiry, "updated_at": now}},
            )
            session["expires_at"] = new_expiry
            session["updated_at"] = now

        return session

    def get_session_by_id(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.db.sessions.find_one({"id": session_id, "is_active": True}, {"_id": 0, "token": 0})

    def revoke_token(self, token: str, token_type: str = "access") -> None:
        """Block an access token or deactivate a session token"""
        if token_type == "access":
            try:
                payload = self._decode(token, verify_exp=False)
            except JWTError:
                logger.debug("Ignoring revoke for malformed access token")
                return
            jti = payload.get("jti")
            if jti:
                self._token_blocklist.add(jti)
        elif token_type == "refresh":
            self.db.sessions.update_one(
                {"token": token},
                {"$set": {"is_active": False, "updated_at": datetime.utcnow()}}
            )

    def revoke_user_sessions(self, user_id: str, except_session_id: Optional[str] = None) -> int:
        """Deactivate every session of a user, optionally keeping one"""
        query: Dict[str, Any] = {"user_id": user_id, "is_active": True}
        if except_session_id:
            query["id"] = {"$ne": except_session_id}
        result = self.db.sessions.update_many(
            query, {"$set": {"is_active": False, "updated_at": datetime.utcnow()}}
        )
        return getattr(result, "modified_count", 0)

    # ------------------------------------------------------------------
    # Pending two-factor sign-in
    # ------------------------------------------------------------------

    def create_two_factor_token(self, user_id: str) -> str:
        now = datetime.utcnow()
        claims = {
            "sub": user_id,
            "typ": "two_factor",
            "jti": str(uuid.uuid4()),
            "exp": now + timedelta(minutes=self.pending_two_factor_minutes),
            "iat": now,
        }
        return jwt.encode(claims, self._private_pem(), algorithm=self.algorithm)

    def verify_two_factor_token(self, token: str) -> str:
        """Return the user id of a pending two-factor sign-in"""
        try:
            payload = self._decode(token)
        except JWTError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Two-factor session expired"
            )
        if payload.get("typ") != "two_factor" or payload.get("jti") in self._token_blocklist:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Two-factor session expired"
            )
        return payload["sub"]

    def _two_factor_jti(self, token: str) -> Optional[str]:
        try:
            return self._decode(token, verify_exp=False).get("jti")
        except JWTError:
            return None

    def consume_two_factor_token(self, token: str) -> None:
        """A pending sign-in completes once; its token is blocked afterwards"""
        jti = self._two_factor_jti(token)
        if jti:
            self._token_blocklist.add(jti)
            self._two_factor_failures.pop(jti, None)

    def record_two_factor_failure(self, token: str) -> int:
        """Count a wrong code against a pending sign-in and return the attempts left"""
        jti = self._two_factor_jti(token)
        if not jti:
            return 0
        failures = self._two_factor_failures.get(jti, 0) + 1
        self._two_factor_failures[jti] = failures
        remaining = max(self.two_factor_max_attempts - failures, 0)
        if remaining == 0:
            self._token_blocklist.add(jti)
            self._two_factor_failures.pop(jti, None)
            logger.warning("🚫 Pending two-factor sign-in locked after %s failed attempts", failures)
        return remaining

    def set_two_factor_cookie(self, response: Response, token: str) -> None:
        response.set_cookie(
            key=self.two_factor_cookie,
            value=token,
            httponly=True,
            secure=self.secure_cookie,
            samesite=self.cookie_samesite,
            domain=self.cookie_domain,
            max_age=self.pending_two_factor_minutes * 60,
            path="/"
        )

    def clear_two_factor_cookie(self, response: Response) -> None:
        response.delete_cookie(
            key=self.two_factor_cookie,
            path="/",
            domain=self.cookie_domain,
            secure=self.secure_cookie,
            httponly=True
        )

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    def set_auth_cookies(self, response: Response, access_token: str, refresh_token: str,
                         csrf_token: Optional[str] = None, persistent: bool = True) -> str:
        """Set secure httpOnly cookies for authentication and the CSRF cookie.

        Non-persistent sessions use browser-session cookies for the session and CSRF tokens.
        """
        csrf_token = csrf_token or secrets.token_urlsafe(32)
        session_max_age = self.session_expire_days * 24 * 60 * 60 if persistent else None

        # Access token cookie - short lived, httpOnly
        response.set_cookie(
            key=self.access_token_cookie,
            value=access_token,
            httponly=True,
            secure=self.secure_cookie,
            samesite=self.cookie_samesite,
            domain=self.cookie_domain,
            max_age=self.access_token_expire_minutes * 60,
            path="/"
        )

        # Session cookie - long lived, httpOnly
        response.set_cookie(
            key=self.refresh_token_cookie,
            value=refresh_token,
            httponly=True,
            secure=self.secure_cookie,
            samesite=self.cookie_samesite,
            domain=self.cookie_domain,
            max_age=session_max_age,
            path="/"
        )

        # CSRF token cookie - accessible to JavaScript, lives as long as the session
        response.set_cookie(
            key=self.csrf_cookie_name,
            value=csrf_token,
            httponly=False,
            secure=self.secure_cookie,
            samesite=self.cookie_samesite,
            domain=self.cookie_domain,
            max_age=session_max_age,
            path="/"
        )

        return csrf_token

    def clear_auth_cookies(self, response: Response):
        """Clear all authentication cookies"""
        for key, httponly in (
            (self.access_token_cookie, True),
            (self.refresh_token_cookie, True),
            (self.csrf_cookie_name, False),
        ):
            response.delete_cookie(
                key=key,
                path="/",
                domain=self.cookie_domain,
                secure=self.secure_cookie,
                httponly=httponly
            )

    def issue_session(self, response: Response, user: Dict[str, Any], request: Optional[Request] = None,
                      persistent: bool = True) -> Dict[str, Any]:
        """Create a session for *user* and attach all auth cookies to *response*"""
        ip_address = request.client.host if request is not None and request.client else None
        user_agent = request.headers.get("user-agent") if request is not None else None
        session = self.create_session(user["id"], ip_address, user_agent)
        access_token = self.create_access_token(user["id"], session["id"], user.get("email"))
        csrf_token = self.set_auth_cookies(response, access_token, session["token"], persistent=persistent)
        return {"session": session, "access_token": access_token, "csrf_token": csrf_token}

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    def get_current_user(self, request: Request) -> JWTClaims:
        """Get current user from request state, access token cookie or bearer header"""
        user = getattr(request.state, "user", None)
        if isinstance(user, JWTClaims):
            return user

        access_token = request.cookies.get(self.access_token_cookie)

        # If not in cookie, check Authorization header
        if not access_token:
            auth_header = request.headers.get("Authorization", "")
            if auth_header.startswith("Bearer "):
                access_token = auth_header[len("Bearer "):]

        if not access_token:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required"
            )

        return self.verify_access_token(access_token)

    def get_optional_user(self, request: Request) -> Optional[JWTClaims]:
        try:
            return self.get_current_user(request)
        except HTTPException:
            return None

    def verify_csrf_token(self, request: Request, csrf_token: Optional[str]) -> bool:
        """Verify CSRF token matches the one in cookie"""
        cookie_csrf = request.cookies.get(self.csrf_cookie_name)

        if not csrf_token or not cookie_csrf or not secrets.compare_digest(csrf_token, cookie_csrf):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="CSRF token validation failed"
            )

        return True



def get_current_user(request: Request) -> JWTClaims:
    """FastAPI dependency: the authenticated caller or 401"""
    return JWTAuthController().get_current_user(request)


def require_csrf(request: Request) -> None:
    """FastAPI dependency: cookie-authenticated state changes must echo the CSRF cookie"""
    if request.method not in ("POST", "PUT", "DELETE", "PATCH"):
        return
    jwt_auth = JWTAuthController()
    if request.cookies.get(jwt_auth.access_token_cookie) or request.cookies.get(jwt_auth.refresh_token_cookie):
        jwt_auth.verify_csrf_token(request, request.headers.get("X-CSRF-Token"))
