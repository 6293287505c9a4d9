"""OAuth2 authorization-code clients for the supported social providers.

Google identities are verified from the returned ID token with google-auth;
GitHub identities come from the REST API (primary verified e-mail).
"""
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import HTTPException, status
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token

from ...config import get_settings
from .schema import SocialProvider

logger = logging.getLogger(__name__)

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_BASE = "https://api.github.com"


@dataclass
class SocialProfile:
    provider: str
    account_id: str
    email: str
    name: Optional[str] = None
    image: Optional[str] = None
    email_verified: bool = False


def _credentials(provider: SocialProvider):
    settings = get_settings()
    if provider == SocialProvider.GOOGLE:
        return settings.GOOGLE_CLIENT_ID, settings.GOOGLE_CLIENT_SECRET
    return settings.GITHUB_CLIENT_ID, settings.GITHUB_CLIENT_SECRET


def resolve_provider(name: str) -> SocialProvider:
    """Map a provider name to a configured provider or raise 400"""
    try:
        provider = SocialProvider(name.lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported provider: {name}")
    client_id, client_secret = _credentials(provider)
    if not client_id or not client_secret:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Provider not configured: {provider.value}")
    return provider


def redirect_uri(provider: SocialProvider) -> str:
    return f"{get_settings().API_BASE_URL.rstrip('/')}/api/auth/callback/{provider.value}"


def build_authorization_url(provider: SocialProvider, state: str) -> str:
    client_id, _ = _credentials(provider)
    if provider == SocialProvider.GOOGLE:
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri(provider),
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "access_type": "offline",
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"

    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri(provider),
        "scope": "read:user user:email",
        "state": state,
    }
    return f"{GITHUB_AUTHORIZE_URL}?{urlencode(params)}"


async def _exchange_google(code: str, client: httpx.AsyncClient) -> SocialProfile:
    client_id, client_secret = _credentials(SocialProvider.GOOGLE)
    resp = await client.post(GOOGLE_TOKEN_URL, data={
        "code": code,
        "client_id": client_id,
        "client_secret": client_secret,
        "redirect_uri": redirect_uri(SocialProvider.GOOGLE),
        "grant_type": "authorization_code",
    })
    if resp.status_code != 200:
        logger.error("Google token exchange failed: HTTP %s %s", resp.status_code, resp.text[:200])
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Google authentication failed")

    raw_id_token = resp.json().get("id_token")
    if not raw_id_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Google authentication failed")

    try:
        payload = google_id_token.verify_oauth2_token(
            raw_id_token,
            google_requests.Request(),
            client_id,
            clock_skew_in_seconds=300,
        )
    except ValueError as e:
        logger.error(f"Google token verification failed: {str(e)}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Google token. Please sign in again.")

    if payload.get("iss") not in {"accounts.google.com", "https://accounts.google.com"}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token issuer")
    if not payload.get("email"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Google token missing e-mail")

    return SocialProfile(
        provider=SocialProvider.GOOGLE.value,
        account_id=payload["sub"],
        email=payload["email"],
        name=payload.get("name"),
        image=payload.get("picture"),
        email_verified=bool(payload.get("email_verified")),
    )


async def _exchange_github(code: str, client: httpx.AsyncClient) -> SocialProfile:
    client_id, client_secret = _credentials(SocialProvider.GITHUB)
    resp = await client.post(
        GITHUB_TOKEN_URL,
        data={
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri(SocialProvider.GITHUB),
        },
        headers={"Accept": "application/json"},
    )
    access_token = resp.json().get("access_token") if resp.status_code == 200 else None
    if not access_token:
        logger.error("GitHub token exchange failed: HTTP %s %s", resp.status_code, resp.text[:200])
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="GitHub authentication failed")

    headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/vnd.github+json"}
    user_resp = await client.get(f"{GITHUB_API_BASE}/user", headers=headers)
    emails_resp = await client.get(f"{GITHUB_API_BASE}/user/emails", headers=headers)
    if user_resp.status_code != 200:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="GitHub authentication failed")

    profile = user_resp.json()
    emails = emails_resp.json() if emails_resp.status_code == 200 else []
    primary = next((e for e in emails if e.get("primary") and e.get("verified")), None)
    if not primary:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="GitHub account has no verified e-mail")

    return SocialProfile(
        provider=SocialProvider.GITHUB.value,
        account_id=str(profile["id"]),
        email=primary["email"],
        name=profile.get("name") or profile.get("login"),
        image=profile.get("avatar_url"),
        email_verified=True,
    )


async def exchange_code(provider: SocialProvider, code: str) -> SocialProfile:
    """Trade an authorization code for the caller's verified profile"""
    async with httpx.AsyncClient(timeout=20.0) as client:
        if provider == SocialProvider.GOOGLE:
            return await _exchange_google(code, client)
        return await _exchange_github(code, client)
