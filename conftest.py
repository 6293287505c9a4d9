import copy
import itertools
import os
import types

import pytest

# Ensure minimal env for the settings classes before any module under test is imported
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_PUBLISHABLE_KEY", "pk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("EMAIL_PROVIDER", "none")
os.environ.setdefault("APP_URL", "http://localhost:3000")
os.environ.setdefault("GITHUB_CLIENT_ID", "gh_client")
os.environ.setdefault("GITHUB_CLIENT_SECRET", "gh_secret")


_MISSING = object()
_ids = itertools.count(1)


def _get_path(doc, path):
    current = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set_path(doc, path, value):
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def _unset_path(doc, path):
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(parts[-1], None)


def _matches(doc, query):
    for key, cond in (query or {}).items():
        value = _get_path(doc, key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            for op, arg in cond.items():
                if op == "$ne":
                    if value is not _MISSING and value == arg:
                        return False
                elif op == "$exists":
                    if (value is not _MISSING) != bool(arg):
                        return False
                elif op == "$in":
                    if value is _MISSING or value not in arg:
                        return False
                elif value is _MISSING:
                    return False
                elif op == "$gte" and not value >= arg:
                    return False
                elif op == "$gt" and not value > arg:
                    return False
                elif op == "$lte" and not value <= arg:
                    return False
                elif op == "$lt" and not value < arg:
                    return False
        elif value is _MISSING:
            if cond is not None:
                return False
        elif value != cond:
            return False
    return True


def _project(doc, projection):
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    include = [k for k, v in projection.items() if v and k != "_id"]
    if include:
        projected = {}
        for key in include:
            value = _get_path(doc, key)
            if value is not _MISSING:
                _set_path(projected, key, value)
        if projection.get("_id", 1) and "_id" in doc:
            projected["_id"] = doc["_id"]
        return projected
    for key, value in projection.items():
        if not value:
            _unset_path(doc, key)
    return doc


def _apply_update(doc, update, inserting=False):
    for key, value in (update.get("$set") or {}).items():
        _set_path(doc, key, copy.deepcopy(value))
    for key in (update.get("$unset") or {}):
        _unset_path(doc, key)
    for key, value in (update.get("$inc") or {}).items():
        current = _get_path(doc, key)
        _set_path(doc, key, (0 if current is _MISSING else current) + value)
    if inserting:
        for key, value in (update.get("$setOnInsert") or {}).items():
            _set_path(doc, key, copy.deepcopy(value))


class FakeCollection:
    """Just enough of a pymongo Collection for the gateway's queries"""

    def __init__(self, name):
        self.name = name
        self.docs = []
        self.indexes = {}

    def create_index(self, keys, **kwargs):
        name = keys if isinstance(keys, str) else "_".join(k for k, _ in keys)
        self.indexes[f"{name}_1"] = kwargs
        return f"{name}_1"

    def index_information(self):
        return dict(self.indexes)

    def insert_one(self, doc):
        doc.setdefault("_id", next(_ids))
        self.docs.append(copy.deepcopy(doc))
        return types.SimpleNamespace(inserted_id=doc["_id"])

    def find_one(self, query=None, projection=None):
        for doc in self.docs:
            if _matches(doc, query):
                return _project(doc, projection)
        return None

    def find(self, query=None, projection=None):
        return [_project(doc, projection) for doc in self.docs if _matches(doc, query)]

    def count_documents(self, query):
        return sum(1 for doc in self.docs if _matches(doc, query))

    def _upsert(self, query, update):
        doc = {k: copy.deepcopy(v) for k, v in query.items() if not isinstance(v, dict)}
        doc["_id"] = next(_ids)
        _apply_update(doc, update, inserting=True)
        self.docs.append(doc)
        return types.SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc["_id"])

    def update_one(self, query, update, upsert=False):
        for doc in self.docs:
            if _matches(doc, query):
                _apply_update(doc, update)
                return types.SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            return self._upsert(query, update)
        return types.SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    def update_many(self, query, update, upsert=False):
        matched = [doc for doc in self.docs if _matches(doc, query)]
        for doc in matched:
            _apply_update(doc, update)
        if not matched and upsert:
            return self._upsert(query, update)
        return types.SimpleNamespace(matched_count=len(matched), modified_count=len(matched), upserted_id=None)

    def delete_one(self, query):
        for i, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[i]
                return types.SimpleNamespace(deleted_count=1)
        return types.SimpleNamespace(deleted_count=0)

    def delete_many(self, query):
        before = len(self.docs)
        self.docs = [doc for doc in self.docs if not _matches(doc, query)]
        return types.SimpleNamespace(deleted_count=before - len(self.docs))


class FakeDB:
    def __init__(self):
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def command(self, name):
        return {"ok": 1.0}


class RecordingEmailProvider:
    """Captures outgoing mail instead of sending it"""

    name = "recording"

    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send_email(self, *, to, subject, html, text=None, from_email=None, from_name=None):
        from saas_gateway.services.email import SendResult

        if self.fail_with:
            return SendResult(ok=False, provider=self.name, error=self.fail_with)
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return SendResult(ok=True, provider=self.name, message_id=f"msg_{len(self.sent)}")

    def verify_connection(self):
        from saas_gateway.services.email import SendResult

        if self.fail_with:
            return SendResult(ok=False, provider=self.name, error=self.fail_with)
        return SendResult(ok=True, provider=self.name)


@pytest.fixture(autouse=True)
def fake_db(monkeypatch):
    """Every test gets an empty in-memory database"""
    from saas_gateway.database.db import DatabaseConnection
    from saas_gateway.middlewares.jwt_auth import JWTAuthController
    from saas_gateway.src.subscription.controller import clear_plans_cache

    db = FakeDB()
    monkeypatch.setattr(DatabaseConnection, "_db", db)
    JWTAuthController._token_blocklist_global.clear()
    JWTAuthController._two_factor_failures_global.clear()
    clear_plans_cache()
    yield db


@pytest.fixture
def email_outbox(monkeypatch):
    from saas_gateway.services.email import factory

    provider = RecordingEmailProvider()
    monkeypatch.setattr(factory, "_provider_singleton", provider)
    return provider


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from saas_gateway.main import app

    return TestClient(app)


def sign_up(client, email="ada@example.com", password="Passw0rd!", name="Ada"):
    """Register through the API; the client keeps the auth cookies"""
    resp = client.post("/api/auth/sign-up/email", json={"email": email, "password": password, "name": name})
    assert resp.status_code == 200, resp.text
    return resp.json()


def csrf_headers(client):
    return {"X-CSRF-Token": client.cookies.get("csrf_token")}


@pytest.fixture
def register(client):
    """Sign up through the API; the client keeps the new user's cookies"""
    return lambda **kwargs: sign_up(client, **kwargs)


@pytest.fixture
def signed_in(client):
    """A TestClient holding the session cookies of a fresh user"""
    data = sign_up(client)
    return types.SimpleNamespace(client=client, user=data["user"], headers=csrf_headers(client))
