from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from ..jwt_auth import JWTAuthController


@pytest.fixture
def jwt_auth():
    return JWTAuthController()


def test_access_token_round_trip(jwt_auth):
    session = jwt_auth.create_session("user_1")
    token = jwt_auth.create_access_token("user_1", session["id"], "ada@example.com")
    claims = jwt_auth.verify_access_token(token)
    assert claims.user_id == "user_1"
    assert claims.session_id == session["id"]
    assert claims.email == "ada@example.com"


def test_revoked_access_token_is_rejected(jwt_auth):
    token = jwt_auth.create_access_token("user_1", "session_1")
    jwt_auth.revoke_token(token, "access")
    with pytest.raises(HTTPException) as exc:
        jwt_auth.verify_access_token(token)
    assert exc.value.status_code == 401
    assert exc.value.detail == "Token has been revoked"


def test_access_token_dies_with_its_session(jwt_auth):
    session = jwt_auth.create_session("user_1")
    token = jwt_auth.create_access_token("user_1", session["id"])
    jwt_auth.revoke_user_sessions("user_1")
    with pytest.raises(HTTPException) as exc:
        jwt_auth.verify_access_token(token)
    assert exc.value.status_code == 401
    assert exc.value.detail == "Session has been revoked"

    with pytest.raises(HTTPException):
        jwt_auth.verify_access_token(jwt_auth.create_access_token("user_1", "session_missing"))


def test_two_factor_token_is_not_an_access_token(jwt_auth):
    token = jwt_auth.create_two_factor_token("user_1")
    assert jwt_auth.verify_two_factor_token(token) == "user_1"
    with pytest.raises(HTTPException):
        jwt_auth.verify_access_token(token)


def test_session_rolls_forward_after_update_age(jwt_auth, fake_db):
    session = jwt_auth.create_session("user_1")
    stale = datetime.utcnow() - timedelta(days=2)
    fake_db.sessions.update_one(
        {"token": session["token"]}, {"$set": {"updated_at": stale, "expires_at": stale + timedelta(days=7)}}
    )

    refreshed = jwt_auth.verify_session_token(session["token"])
    assert refreshed["expires_at"] > datetime.utcnow() + timedelta(days=6)
    assert fake_db.sessions.find_one({"token": session["token"]})["updated_at"] > stale


def test_fresh_session_is_not_extended(jwt_auth, fake_db):
    session = jwt_auth.create_session("user_1")
    original_expiry = fake_db.sessions.find_one({"token": session["token"]})["expires_at"]
    jwt_auth.verify_session_token(session["token"])
    assert fake_db.sessions.find_one({"token": session["token"]})["expires_at"] == original_expiry


def test_expired_session_is_deactivated(jwt_auth, fake_db):
    session = jwt_auth.create_session("user_1")
    fake_db.sessions.update_one(
        {"token": session["token"]}, {"$set": {"expires_at": datetime.utcnow() - timedelta(seconds=1)}}
    )
    with pytest.raises(HTTPException) as exc:
        jwt_auth.verify_session_token(session["token"])
    assert exc.value.detail == "Refresh token expired"
    assert fake_db.sessions.find_one({"token": session["token"]})["is_active"] is False


def test_revoke_user_sessions_keeps_current(jwt_auth, fake_db):
    keep = jwt_auth.create_session("user_1")
    jwt_auth.create_session("user_1")
    jwt_auth.create_session("user_2")

    assert jwt_auth.revoke_user_sessions("user_1", except_session_id=keep["id"]) == 1
    assert fake_db.sessions.count_documents({"user_id": "user_1", "is_active": True}) == 1
    assert fake_db.sessions.count_documents({"user_id": "user_2", "is_active": True}) == 1


# Middleware, exercised through a protected route


def test_protected_route_requires_authentication(client, email_outbox):
    resp = client.get("/api/send-email")
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Authentication required"}


def test_protected_route_accepts_session_cookie(signed_in, email_outbox):
    resp = signed_in.client.get("/api/send-email")
    assert resp.status_code == 200


def test_state_changing_request_needs_csrf_header(signed_in, email_outbox):
    payload = {"type": "custom", "to": "bob@example.com", "data": {"subject": "Hi", "html": "<p>Hi</p>"}}
    resp = signed_in.client.post("/api/send-email", json=payload)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "CSRF token required"

    resp = signed_in.client.post("/api/send-email", json=payload, headers={"X-CSRF-Token": "forged"})
    assert resp.status_code == 403

    resp = signed_in.client.post("/api/send-email", json=payload, headers=signed_in.headers)
    assert resp.status_code == 200


def test_missing_access_token_is_refreshed_silently(signed_in, email_outbox):
    client = signed_in.client
    client.cookies.delete("access_token")

    resp = client.get("/api/send-email")
    assert resp.status_code == 200
    assert "access_token=" in resp.headers.get("set-cookie", "")


def test_revoked_session_cannot_refresh(signed_in, fake_db, email_outbox):
    client = signed_in.client
    client.cookies.delete("access_token")
    fake_db.sessions.update_many({}, {"$set": {"is_active": False}})

    resp = client.get("/api/send-email")
    assert resp.status_code == 401


def test_bearer_token_is_accepted(client, register, email_outbox):
    register()
    token = client.cookies.get("access_token")
    client.cookies.clear()

    resp = client.get("/api/send-email", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200


def test_security_headers_are_set(client):
    resp = client.get("/health")
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert "https://js.stripe.com" in resp.headers["Content-Security-Policy"]
    assert "Strict-Transport-Security" not in resp.headers
