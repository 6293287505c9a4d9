from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from .. import social
from ..social_routes import _safe_callback


@pytest.fixture
def github_profile(monkeypatch):
    async def fake_exchange(provider, code):
        assert code == "code_123"
        return social.SocialProfile(
            provider="github",
            account_id="4242",
            email="Grace@Example.com",
            name="Grace",
            image="https://avatars.example.com/grace.png",
            email_verified=True,
        )

    monkeypatch.setattr(social, "exchange_code", fake_exchange)


def _start(client, callback_url="/dashboard"):
    resp = client.post("/api/auth/sign-in/social", json={"provider": "github", "callbackURL": callback_url})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["redirect"] is True
    return parse_qs(urlparse(body["url"]).query)["state"][0]


def test_sign_in_social_returns_provider_url(client, fake_db):
    resp = client.post("/api/auth/sign-in/social", json={"provider": "github"})
    url = urlparse(resp.json()["url"])
    assert url.netloc == "github.com"
    query = parse_qs(url.query)
    assert query["client_id"] == ["gh_client"]
    assert query["redirect_uri"] == ["http://localhost:8000/api/auth/callback/github"]
    assert fake_db.oauth_states.count_documents({"state": query["state"][0]}) == 1


def test_unknown_or_unconfigured_provider(client):
    assert client.post("/api/auth/sign-in/social", json={"provider": "myspace"}).status_code == 400
    resp = client.post("/api/auth/sign-in/social", json={"provider": "google"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Provider not configured: google"


def test_callback_creates_user_and_redirects(client, fake_db, github_profile):
    state = _start(client)
    resp = client.get(f"/api/auth/callback/github?code=code_123&state={state}", follow_redirects=False)

    assert resp.status_code == 302
    assert resp.headers["location"] == "http://localhost:3000/dashboard"
    assert client.cookies.get("access_token")

    user = fake_db.users.find_one({"email": "grace@example.com"})
    assert user["email_verified"] is True
    assert user["password_hash"] == ""
    assert fake_db.accounts.find_one({"provider_id": "github", "account_id": "4242"})["user_id"] == user["id"]
    # state is single use
    assert fake_db.oauth_states.count_documents({}) == 0


def test_callback_links_existing_password_account(client, register, fake_db, github_profile):
    existing = register(email="grace@example.com", name="Grace")["user"]
    client.cookies.clear()

    state = _start(client)
    client.get(f"/api/auth/callback/github?code=code_123&state={state}", follow_redirects=False)

    assert fake_db.users.count_documents({}) == 1
    assert fake_db.accounts.find_one({"account_id": "4242"})["user_id"] == existing["id"]


def test_callback_refuses_unverified_email_for_existing_account(client, register, fake_db, monkeypatch):
    victim = register(email="victim@example.com", name="Victim")["user"]
    client.cookies.clear()

    async def unverified_exchange(provider, code):
        return social.SocialProfile(
            provider="github", account_id="6666", email="victim@example.com", name="Mallory", email_verified=False,
        )

    monkeypatch.setattr(social, "exchange_code", unverified_exchange)
    state = _start(client)
    resp = client.get(f"/api/auth/callback/github?code=code_123&state={state}", follow_redirects=False)

    assert resp.status_code == 401
    assert client.cookies.get("access_token") is None
    assert fake_db.accounts.count_documents({"user_id": victim["id"]}) == 0
    # only the session from sign-up
    assert fake_db.sessions.count_documents({"user_id": victim["id"]}) == 1


@pytest.mark.asyncio
async def test_github_exchange_requires_a_verified_primary_email():
    def handler(request):
        if request.url.path == "/login/oauth/access_token":
            return httpx.Response(200, json={"access_token": "gho_1"})
        if request.url.path == "/user":
            return httpx.Response(200, json={"id": 7, "login": "mallory", "email": "victim@example.com"})
        return httpx.Response(200, json=[{"email": "victim@example.com", "primary": True, "verified": False}])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(social.HTTPException) as excinfo:
            await social._exchange_github("code_123", http)
    assert excinfo.value.status_code == 400


def test_callback_rejects_unknown_state(client, github_profile):
    resp = client.get("/api/auth/callback/github?code=code_123&state=forged", follow_redirects=False)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid or expired state"


def test_callback_rejects_expired_state(client, fake_db, github_profile):
    state = _start(client)
    fake_db.oauth_states.update_one({"state": state}, {"$set": {"expires_at": datetime.utcnow() - timedelta(seconds=1)}})
    resp = client.get(f"/api/auth/callback/github?code=code_123&state={state}", follow_redirects=False)
    assert resp.status_code == 400


def test_callback_reports_provider_error(client):
    resp = client.get("/api/auth/callback/github?error=access_denied", follow_redirects=False)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Provider error: access_denied"


@pytest.mark.parametrize(
    "url, expected",
    [
        (None, "http://localhost:3000"),
        ("/plans", "http://localhost:3000/plans"),
        ("//evil.example.com", "http://localhost:3000"),
        ("https://evil.example.com/x", "http://localhost:3000"),
        ("http://localhost:3000/settings", "http://localhost:3000/settings"),
    ],
)
def test_safe_callback_only_allows_app_urls(url, expected):
    assert _safe_callback(url) == expected
