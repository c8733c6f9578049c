"""
Tests for the webhook ingestion pipeline.

Tests cover:
- Outcome and ledger annotation per event kind
- Degraded media outcome when the attachment write fails
- Store failures and expired deadlines leaving the ledger entry unprocessed
- Non-string text fields treated as malformed
"""

import pytest

from watihook.errors import CollaboratorTimeoutError, StoreUnavailableError
from watihook.events import EventKind
from watihook.ledger import WebhookLedger
from watihook.pipeline import Deadline, WebhookPipeline, ingest_event
from watihook.storage import SessionLocal
from watihook.store import AttachmentStore, MessageStore


@pytest.fixture
def pipeline(db):
    return WebhookPipeline(WebhookLedger(db), MessageStore(db), AttachmentStore(db))


INCOMING = {"eventType": "message", "id": "m1", "waId": "27000000001", "text": "hi", "timestamp": "1700000000"}


def test_incoming_message(pipeline):
    ledger_id, outcome = pipeline.handle(INCOMING)

    assert outcome.kind is EventKind.INCOMING_MESSAGE
    assert outcome.status == "message_processed"
    entry = pipeline.ledger.get(ledger_id)
    assert entry.processed is True
    assert entry.processing_result == {
        "status": "message_processed",
        "kind": "IncomingMessage",
        "eventType": "message",
        "messageId": "m1",
    }


def test_delivered_updates_existing(pipeline):
    pipeline.handle(INCOMING)
    _, outcome = pipeline.handle({"eventType": "sentMessageDELIVERED_v2", "id": "m1", "timestamp": "1700000500"})

    assert outcome.status == "delivery_status_updated"
    message = pipeline.messages.get("m1")
    assert message.status == "delivered"
    assert message.delivered_at == 1700000500000
    assert message.text == "hi"
    assert message.raw_event == INCOMING


def test_read_for_unknown_message_is_anomaly(pipeline):
    ledger_id, outcome = pipeline.handle({"eventType": "sentMessageREAD", "id": "ghost", "timestamp": "1700000600"})

    assert outcome.status == "update_target_missing"
    assert outcome.message_id == "ghost"
    assert pipeline.messages.get("ghost") is None
    result = pipeline.ledger.get(ledger_id).processing_result
    assert result["status"] == "update_target_missing"
    assert "ghost" in result["detail"]


def test_malformed_event(pipeline):
    ledger_id, outcome = pipeline.handle({"eventType": "message", "text": "no id"})
    assert outcome.status == "malformed_event"
    assert pipeline.ledger.get(ledger_id).processed is True


@pytest.mark.parametrize("field, value", [("text", {"body": "hi"}), ("waId", 27000000001), ("text", 42)])
def test_non_string_field_is_malformed(pipeline, field, value):
    ledger_id, outcome = pipeline.handle({**INCOMING, field: value})

    assert outcome.status == "malformed_event"
    assert pipeline.messages.get("m1") is None
    entry = pipeline.ledger.get(ledger_id)
    assert entry.processed is True
    assert entry.processing_result["detail"] == f"message event has non-string {field}"


def test_non_object_event(pipeline):
    ledger_id, outcome = pipeline.handle([1, 2, 3])
    assert outcome.status == "malformed_event"
    assert pipeline.ledger.get(ledger_id).processed is True


def test_unhandled_event(pipeline):
    ledger_id, outcome = pipeline.handle({"eventType": "newContactMessageReceived"})
    assert outcome.kind is EventKind.UNHANDLED
    assert pipeline.ledger.get(ledger_id).processing_result["status"] == "unhandled"


def test_media_creates_attachment(pipeline):
    event = {"eventType": "message", "id": "m2", "type": "image", "data": "https://host/file?fileName=cat.jpg"}
    _, outcome = pipeline.handle(event)

    assert outcome.status == "media_processed"
    assert pipeline.messages.get("m2").media_info["attachmentId"] == "cat.jpg"
    assert pipeline.attachments.get("m2").attachment_id == "cat.jpg"


def test_media_attachment_failure_is_degraded(pipeline, monkeypatch):
    def broken(fields):
        raise StoreUnavailableError("attachments down")

    monkeypatch.setattr(pipeline.attachments, "upsert", broken)
    event = {"eventType": "message", "id": "m2", "type": "image", "data": "https://host/file?fileName=cat.jpg"}
    ledger_id, outcome = pipeline.handle(event)

    assert outcome.status == "media_insert_failed"
    assert pipeline.messages.get("m2") is not None
    assert pipeline.ledger.get(ledger_id).processing_result["status"] == "media_insert_failed"


def test_store_failure_leaves_entry_unprocessed(pipeline, monkeypatch):
    def broken(message_id, fields):
        raise StoreUnavailableError("messages down")

    monkeypatch.setattr(pipeline.messages, "upsert", broken)
    with pytest.raises(StoreUnavailableError):
        pipeline.handle(INCOMING)

    pending = pipeline.ledger.unprocessed()
    assert len(pending) == 1
    assert pending[0].raw_event == INCOMING


def test_expired_deadline_skips_processing(pipeline):
    deadline = Deadline()
    deadline.expire()

    with pytest.raises(CollaboratorTimeoutError):
        pipeline.handle(INCOMING, deadline)

    assert pipeline.messages.get("m1") is None
    assert len(pipeline.ledger.unprocessed()) == 1


def test_deadline_expiring_mid_processing_skips_annotation(pipeline, monkeypatch):
    deadline = Deadline()
    original = pipeline.messages.upsert

    def upsert_then_expire(message_id, fields):
        record = original(message_id, fields)
        deadline.expire()
        return record

    monkeypatch.setattr(pipeline.messages, "upsert", upsert_then_expire)
    with pytest.raises(CollaboratorTimeoutError, match="ledger annotation"):
        pipeline.handle(INCOMING, deadline)

    pending = pipeline.ledger.unprocessed()
    assert len(pending) == 1
    assert pending[0].processing_result is None


def test_ingest_event_uses_its_own_session(db):
    ledger_id, outcome = ingest_event(INCOMING, Deadline(), SessionLocal)

    assert outcome.status == "message_processed"
    assert WebhookLedger(db).get(ledger_id).processed is True
