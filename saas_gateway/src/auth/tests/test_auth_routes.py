import pytest


def _sign_up(client, email="ada@example.com", password="Passw0rd!", name="Ada"):
    return client.post("/api/auth/sign-up/email", json={"email": email, "password": password, "name": name})


def test_sign_up_sets_cookies_and_returns_public_user(client, fake_db):
    resp = _sign_up(client, email="Ada@Example.com")
    assert resp.status_code == 200, resp.text
    body = resp.json()

    assert body["user"]["email"] == "ada@example.com"
    assert body["user"]["emailVerified"] is False
    assert "password_hash" not in body["user"]
    assert body["csrf_token"] == client.cookies.get("csrf_token")
    assert client.cookies.get("access_token")
    assert client.cookies.get("refresh_token")

    stored = fake_db.users.find_one({"email": "ada@example.com"})
    assert stored["password_hash"] != "Passw0rd!"
    assert fake_db.sessions.count_documents({"user_id": stored["id"], "is_active": True}) == 1


def test_sign_up_rejects_duplicate_email(client):
    assert _sign_up(client).status_code == 200
    resp = _sign_up(client)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "User with this email already exists"


@pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "NoDigits!!", "NoSpecial123"])
def test_sign_up_rejects_weak_passwords(client, password):
    assert _sign_up(client, password=password).status_code == 422


def test_sign_in_with_wrong_password_is_unauthorized(client, register):
    register()
    client.cookies.clear()
    resp = client.post("/api/auth/sign-in/email", json={"email": "ada@example.com", "password": "Wrong0ne!"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid email or password"


def test_sign_in_returns_session(client, register):
    register()
    client.cookies.clear()
    resp = client.post("/api/auth/sign-in/email", json={"email": "ada@example.com", "password": "Passw0rd!"})
    assert resp.status_code == 200
    assert resp.json()["user"]["email"] == "ada@example.com"

    session = client.get("/api/auth/get-session").json()
    assert session["user"]["email"] == "ada@example.com"
    assert session["session"]["userId"] == session["user"]["id"]


def test_sign_in_with_two_factor_only_sets_pending_cookie(client, register, fake_db):
    register()
    fake_db.users.update_one({"email": "ada@example.com"}, {"$set": {"two_factor_enabled": True}})
    client.cookies.clear()

    resp = client.post("/api/auth/sign-in/email", json={"email": "ada@example.com", "password": "Passw0rd!"})
    assert resp.status_code == 200
    assert resp.json() == {"twoFactorRedirect": True}
    assert client.cookies.get("two_factor_pending")
    assert client.cookies.get("access_token") is None


def test_get_session_is_null_when_anonymous(client):
    resp = client.get("/api/auth/get-session")
    assert resp.status_code == 200
    assert resp.json() is None


def test_sign_out_requires_csrf_and_revokes_session(signed_in, fake_db):
    client = signed_in.client
    assert client.post("/api/auth/sign-out").status_code == 403

    resp = client.post("/api/auth/sign-out", headers=signed_in.headers)
    assert resp.status_code == 200
    assert fake_db.sessions.count_documents({"is_active": True}) == 0
    assert client.get("/api/auth/get-session").json() is None


def test_update_user_changes_name(signed_in):
    resp = signed_in.client.post("/api/auth/update-user", json={"name": "Ada Lovelace"}, headers=signed_in.headers)
    assert resp.status_code == 200
    assert resp.json()["user"]["name"] == "Ada Lovelace"


def test_change_password_checks_current_password(signed_in):
    resp = signed_in.client.post(
        "/api/auth/change-password",
        json={"currentPassword": "Nope1234!", "newPassword": "N3wPassword!"},
        headers=signed_in.headers,
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Current password is incorrect"


def test_change_password_can_revoke_other_sessions(signed_in, fake_db):
    client = signed_in.client
    # a second device
    other = fake_db.sessions.find_one({"user_id": signed_in.user["id"]})
    other.pop("_id")
    fake_db.sessions.insert_one({**other, "id": "session_other", "token": "tok_other"})

    resp = client.post(
        "/api/auth/change-password",
        json={"currentPassword": "Passw0rd!", "newPassword": "N3wPassword!", "revokeOtherSessions": True},
        headers=signed_in.headers,
    )
    assert resp.status_code == 200
    assert fake_db.sessions.find_one({"id": "session_other"})["is_active"] is False
    assert fake_db.sessions.find_one({"id": other["id"]})["is_active"] is True

    client.cookies.clear()
    resp = client.post("/api/auth/sign-in/email", json={"email": "ada@example.com", "password": "N3wPassword!"})
    assert resp.status_code == 200


def test_refresh_issues_new_access_token(signed_in):
    client = signed_in.client
    old_token = client.cookies.get("access_token")
    client.cookies.delete("access_token")

    resp = client.post("/api/auth/refresh")
    assert resp.status_code == 200
    assert resp.json()["csrf_token"] == signed_in.headers["X-CSRF-Token"]
    assert client.cookies.get("access_token") not in (None, old_token)


def test_refresh_without_session_cookie(client):
    resp = client.post("/api/auth/refresh")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Refresh token missing"
