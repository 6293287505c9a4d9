import pytest
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from ..database import db


class FlakyClient:
    instances = []

    def __init__(self, uri, **options):
        self.uri = uri
        self.options = options
        self.closed = False
        self.admin = self
        FlakyClient.instances.append(self)

    def command(self, name):
        outcome = FlakyClient.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return {"ok": 1}

    def close(self):
        self.closed = True


@pytest.fixture
def flaky_client(monkeypatch):
    FlakyClient.instances = []
    monkeypatch.setattr(db, "MongoClient", FlakyClient)
    monkeypatch.setattr(db.time, "sleep", lambda seconds: None)
    return FlakyClient


def test_connect_retries_until_ping_succeeds(flaky_client):
    flaky_client.outcomes = [ServerSelectionTimeoutError("no primary"), ServerSelectionTimeoutError("no primary"), True]

    client = db.connect_with_retry("mongodb://example", attempts=3)

    assert client is flaky_client.instances[-1]
    assert client.options["appName"] == "saas-gateway"
    assert [c.closed for c in flaky_client.instances] == [True, True, False]


def test_connect_gives_up_after_attempts(flaky_client):
    flaky_client.outcomes = [ServerSelectionTimeoutError("down")] * 2

    with pytest.raises(ConnectionError, match="Unable to connect"):
        db.connect_with_retry("mongodb://example", attempts=2)


def test_connect_does_not_retry_auth_failures(flaky_client):
    flaky_client.outcomes = [OperationFailure("bad auth"), True]

    with pytest.raises(ConnectionError, match="authentication"):
        db.connect_with_retry("mongodb://example", attempts=3)
    assert len(flaky_client.instances) == 1
