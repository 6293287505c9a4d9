import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from ...config import get_settings
from ...middlewares.jwt_auth import JWTAuthController
from . import social
from .controller import AuthController
from .routes import get_auth_controller
from .schema import SocialSignInRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Social Login"])

jwt_auth = JWTAuthController()


def _safe_callback(url: Optional[str]) -> str:
    """Only redirect back into the frontend app"""
    app_url = get_settings().APP_URL.rstrip("/")
    if not url:
        return app_url
    if url.startswith("/") and not url.startswith("//"):
        return f"{app_url}{url}"
    if url == app_url or url.startswith(app_url + "/"):
        return url
    return app_url


@router.post("/sign-in/social")
async def sign_in_social(body: SocialSignInRequest, auth: AuthController = Depends(get_auth_controller)):
    """Start an OAuth flow; the client follows the returned URL"""
    provider = social.resolve_provider(body.provider)
    state = secrets.token_urlsafe(24)
    auth.db.oauth_states.insert_one({
        "state": state,
        "provider": provider.value,
        "callback_url": _safe_callback(body.callback_url),
        "expires_at": datetime.utcnow() + timedelta(minutes=get_settings().OAUTH_STATE_TTL_MINUTES),
    })
    return {"url": social.build_authorization_url(provider, state), "redirect": True}


@router.get("/callback/{provider}")
async def social_callback(
    provider: str,
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    auth: AuthController = Depends(get_auth_controller),
):
    """OAuth redirect target: exchange the code, upsert the user, set cookies and bounce to the app"""
    if error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Provider error: {error}")

    resolved = social.resolve_provider(provider)
    if not code or not state:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing code or state")

    record = auth.db.oauth_states.find_one({"state": state, "provider": resolved.value})
    if record:
        auth.db.oauth_states.delete_one({"state": state})
    if not record or record["expires_at"] < datetime.utcnow():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired state")

    profile = await social.exchange_code(resolved, code)
    user = auth.upsert_social_user(
        provider=profile.provider,
        account_id=profile.account_id,
        email=profile.email,
        name=profile.name,
        image=profile.image,
        email_verified=profile.email_verified,
    )

    response = RedirectResponse(url=record.get("callback_url") or get_settings().APP_URL, status_code=status.HTTP_302_FOUND)
    jwt_auth.issue_session(response, user, request)
    logger.info("✅ %s sign-in for %s", resolved.value, user["id"])
    return response
