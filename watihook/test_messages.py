"""
Tests for the GET /api/messages/{counterparty_id} endpoint.

Tests cover:
- Round trip from webhook event to message view
- Ascending order and limit handling
- Identical results on the fallback query path
- Missing identifier (400), store failures and unexpected errors (500)
"""

import json

import pytest
from fastapi.testclient import TestClient

from watihook.errors import StoreUnavailableError
from watihook.main import app
from watihook.storage import Base, engine, drop_indexes
from watihook.store import MessageStore


COUNTERPARTY = "27000000001"


def create_message(client, message_id: str, timestamp: str, text: str = None, wa_id: str = COUNTERPARTY):
    """Helper to create a message via webhook."""
    event = {"eventType": "message", "id": message_id, "waId": wa_id, "timestamp": timestamp}
    if text is not None:
        event["text"] = text

    response = client.post(
        "/webhook",
        content=json.dumps(event),
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def seeded_client(client):
    """Client with messages for two counterparties, posted out of order."""
    messages = [
        ("m3", "1700000300", "third"),
        ("m1", "1700000100", "first"),
        ("m5", "1700000500", "fifth"),
        ("m2", "1700000200", "second"),
        ("m4", "1700000400", None),
    ]
    for msg in messages:
        create_message(client, *msg)
    create_message(client, "x1", "1700000150", "elsewhere", wa_id="27000000002")
    return client


class TestMessagesRoundTrip:

    def test_message_view_fields(self, client):
        create_message(client, "m1", "1700000000", "hi")

        response = client.get(f"/api/messages/{COUNTERPARTY}")

        assert response.status_code == 200
        assert response.json() == [{
            "id": "m1",
            "text": "hi",
            "direction": "incoming",
            "status": "received",
            "timestamp": 1700000000000,
            "formattedDate": "2023-11-14T22:13:20.000Z",
            "counterpartyId": COUNTERPARTY,
        }]

    def test_out_of_range_timestamp_stays_readable(self, client):
        create_message(client, "m1", "99999999999999999", "far future")

        response = client.get(f"/api/messages/{COUNTERPARTY}")

        assert response.status_code == 200
        assert response.json()[0]["timestamp"] <= 253402300799999

    def test_status_update_visible(self, client):
        create_message(client, "m1", "1700000000", "hi")
        client.post(
            "/webhook",
            content=json.dumps({"eventType": "sentMessageREAD_v2", "id": "m1", "timestamp": "1700000600"}),
            headers={"Content-Type": "application/json"},
        )

        response = client.get(f"/api/messages/{COUNTERPARTY}")
        assert response.json()[0]["status"] == "read"


class TestMessagesOrdering:

    def test_ascending_by_timestamp(self, seeded_client):
        response = seeded_client.get(f"/api/messages/{COUNTERPARTY}")

        assert response.status_code == 200
        assert [m["id"] for m in response.json()] == ["m1", "m2", "m3", "m4", "m5"]

    def test_limit_keeps_latest(self, seeded_client):
        response = seeded_client.get(f"/api/messages/{COUNTERPARTY}?limit=2")
        assert [m["id"] for m in response.json()] == ["m4", "m5"]

    def test_limit_with_asc_keeps_earliest(self, seeded_client):
        response = seeded_client.get(f"/api/messages/{COUNTERPARTY}?limit=2&order=asc")
        assert [m["id"] for m in response.json()] == ["m1", "m2"]

    def test_unknown_counterparty_empty(self, seeded_client):
        response = seeded_client.get("/api/messages/27999999999")
        assert response.status_code == 200
        assert response.json() == []

    def test_invalid_limit(self, seeded_client):
        response = seeded_client.get(f"/api/messages/{COUNTERPARTY}?limit=0")
        assert response.status_code == 422


class TestMessagesFallback:

    @pytest.mark.parametrize("query", ["", "?limit=2", "?limit=3&order=asc"])
    def test_fallback_matches_primary(self, seeded_client, query):
        primary = seeded_client.get(f"/api/messages/{COUNTERPARTY}{query}").json()

        drop_indexes()
        fallback = seeded_client.get(f"/api/messages/{COUNTERPARTY}{query}")

        assert fallback.status_code == 200
        assert fallback.json() == primary

    def test_readiness_reports_index(self, seeded_client):
        assert seeded_client.get("/health/ready").json()["index_ready"] is True
        drop_indexes()
        response = seeded_client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["index_ready"] is False


class TestMessagesErrors:

    def test_missing_counterparty(self, client):
        response = client.get("/api/messages")
        assert response.status_code == 400
        assert response.json() == {"error": "counterpartyId is required"}

    def test_blank_counterparty(self, client):
        response = client.get("/api/messages/%20")
        assert response.status_code == 400

    def test_store_failure(self, client, monkeypatch):
        def broken(self, counterparty_id, order="desc", limit=50):
            raise StoreUnavailableError(f"Failed to fetch messages for {counterparty_id}")

        monkeypatch.setattr(MessageStore, "query_by_counterparty", broken)
        response = client.get(f"/api/messages/{COUNTERPARTY}")

        assert response.status_code == 500
        assert response.json() == {"error": f"Failed to fetch messages for {COUNTERPARTY}"}

    def test_unexpected_error_returns_500(self, monkeypatch):
        def broken(self, counterparty_id, order="desc", limit=50):
            raise RuntimeError("boom")

        monkeypatch.setattr(MessageStore, "query_by_counterparty", broken)
        with TestClient(app, raise_server_exceptions=False) as test_client:
            response = test_client.get(f"/api/messages/{COUNTERPARTY}")
        Base.metadata.drop_all(bind=engine)

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
