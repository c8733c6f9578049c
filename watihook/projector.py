"""
Projection of classified events onto message records.

Each event kind has one projector function registered in PROJECTORS. A
projector returns a Projection describing how the store should apply it:
create-or-replace a whole message, or update status fields on an existing
one. Field fallbacks are written as ordered rule lists so each tier can be
tested on its own.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional
from urllib.parse import parse_qs, unquote, urlparse

from watihook.errors import MalformedEventError
from watihook.events import EventKind
from watihook.timestamps import normalize

logger = logging.getLogger(__name__)


class RecordOperation(str, Enum):
    CREATE_OR_REPLACE = "create_or_replace"
    UPDATE_EXISTING = "update_existing"
    NONE = "none"


@dataclass
class Projection:
    operation: RecordOperation
    result_status: str
    message_id: Optional[str] = None
    fields: dict[str, Any] = field(default_factory=dict)
    attachment: Optional[dict[str, Any]] = None


Event = Mapping[str, Any]
Rule = Callable[[Event], Any]


def first_of(event: Event, rules: Iterable[Rule], default: Any = None) -> Any:
    """Return the first non-empty value produced by the ordered rules."""
    for rule in rules:
        value = rule(event)
        if value not in (None, ""):
            return value
    return default


def require_id(event: Event) -> str:
    message_id = event.get("id")
    if not isinstance(message_id, str) or not message_id.strip():
        raise MalformedEventError(
            f"{event.get('eventType')} event has no message id",
            detail={"missing": "id"},
        )
    return message_id


def optional_str(event: Event, name: str) -> Optional[str]:
    """A text field that may be absent. Any other non-string value is malformed."""
    value = event.get(name)
    if value is not None and not isinstance(value, str):
        raise MalformedEventError(
            f"{event.get('eventType')} event has non-string {name}",
            detail={"field": name, "type": type(value).__name__},
        )
    return value


def outgoing_status(event: Event) -> str:
    status = event.get("statusString")
    if isinstance(status, str) and status:
        return status.lower()
    return "sent"


# =============================================================================
# Media field rules
# =============================================================================

def _media_block(event: Event) -> Mapping[str, Any]:
    block = event.get(str(event.get("type", "")).lower())
    return block if isinstance(block, Mapping) else {}


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


SOURCE_URL_RULES: list[Rule] = [
    lambda e: _text(e.get("data")),
    lambda e: _text(_media_block(e).get("url")),
    lambda e: _text(_media_block(e).get("link")),
]

CAPTION_RULES: list[Rule] = [
    lambda e: _text(_media_block(e).get("caption")),
    lambda e: _text(e.get("text")),
]


def filename_from_query(url: str) -> Optional[str]:
    params = parse_qs(urlparse(url).query)
    for key in ("fileName", "filename"):
        values = params.get(key)
        if values and values[0]:
            return values[0]
    return None


def filename_from_path(url: str) -> Optional[str]:
    segment = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
    return unquote(segment) or None


def resolve_attachment_id(source_url: Optional[str], message_id: str, media_type: str) -> str:
    """Query-string filename, then last path segment, then a generated placeholder."""
    if source_url:
        for rule in (filename_from_query, filename_from_path):
            attachment_id = rule(source_url)
            if attachment_id:
                return attachment_id
    return f"{message_id}_{media_type}"


# =============================================================================
# Projectors
# =============================================================================

def project_incoming_message(event: Event) -> Projection:
    message_id = require_id(event)
    return Projection(
        operation=RecordOperation.CREATE_OR_REPLACE,
        result_status="message_processed",
        message_id=message_id,
        fields={
            "id": message_id,
            "counterparty_id": optional_str(event, "waId"),
            "text": optional_str(event, "text"),
            "kind": "incoming",
            "status": "received",
            "direction": "incoming",
            "timestamp": normalize(event.get("timestamp")),
            "raw_event": dict(event),
        },
    )


def project_incoming_media(event: Event) -> Projection:
    message_id = require_id(event)
    media_type = str(event.get("type")).lower()
    source_url = first_of(event, SOURCE_URL_RULES)
    caption = first_of(event, CAPTION_RULES, default="")
    attachment_id = resolve_attachment_id(source_url, message_id, media_type)
    timestamp = normalize(event.get("timestamp"))

    media_info = {
        "caption": caption,
        "attachmentId": attachment_id,
        "mimeKind": media_type,
        "sourceUrl": source_url,
    }
    return Projection(
        operation=RecordOperation.CREATE_OR_REPLACE,
        result_status="media_processed",
        message_id=message_id,
        fields={
            "id": message_id,
            "counterparty_id": optional_str(event, "waId"),
            "text": optional_str(event, "text"),
            "kind": "media",
            "media_info": media_info,
            "status": "received",
            "direction": "incoming",
            "timestamp": timestamp,
            "raw_event": dict(event),
        },
        attachment={
            "message_id": message_id,
            "attachment_id": attachment_id,
            "caption": caption,
            "source_url": source_url,
            "mime_kind": media_type,
            "timestamp": timestamp,
        },
    )


def project_template_sent(event: Event) -> Projection:
    message_id = require_id(event)
    return Projection(
        operation=RecordOperation.CREATE_OR_REPLACE,
        result_status="template_processed",
        message_id=message_id,
        fields={
            "id": message_id,
            "counterparty_id": optional_str(event, "waId"),
            "text": optional_str(event, "text"),
            "kind": "template",
            "template_name": optional_str(event, "templateName"),
            "status": outgoing_status(event),
            "direction": "outgoing",
            "timestamp": normalize(event.get("created"), field="created"),
            "raw_event": dict(event),
        },
    )


def project_session_sent(event: Event) -> Projection:
    message_id = require_id(event)
    return Projection(
        operation=RecordOperation.CREATE_OR_REPLACE,
        result_status="session_message_processed",
        message_id=message_id,
        fields={
            "id": message_id,
            "counterparty_id": optional_str(event, "waId"),
            "text": optional_str(event, "text"),
            "kind": "session",
            "status": outgoing_status(event),
            "direction": "outgoing",
            "timestamp": normalize(event.get("timestamp")),
            "raw_event": dict(event),
        },
    )


def project_delivered(event: Event) -> Projection:
    message_id = require_id(event)
    return Projection(
        operation=RecordOperation.UPDATE_EXISTING,
        result_status="delivery_status_updated",
        message_id=message_id,
        fields={
            "status": "delivered",
            "delivered_at": normalize(event.get("timestamp")),
            "raw_delivery_event": dict(event),
        },
    )


def project_read(event: Event) -> Projection:
    message_id = require_id(event)
    return Projection(
        operation=RecordOperation.UPDATE_EXISTING,
        result_status="read_status_updated",
        message_id=message_id,
        fields={
            "status": "read",
            "read_at": normalize(event.get("timestamp")),
            "raw_read_event": dict(event),
        },
    )


def project_unhandled(event: Event) -> Projection:
    logger.info("Unhandled event type", extra={"event_type": event.get("eventType")})
    return Projection(operation=RecordOperation.NONE, result_status="unhandled")


PROJECTORS: dict[EventKind, Callable[[Event], Projection]] = {
    EventKind.INCOMING_MESSAGE: project_incoming_message,
    EventKind.INCOMING_MEDIA: project_incoming_media,
    EventKind.TEMPLATE_SENT: project_template_sent,
    EventKind.SESSION_SENT: project_session_sent,
    EventKind.DELIVERED: project_delivered,
    EventKind.READ: project_read,
    EventKind.UNHANDLED: project_unhandled,
}


def project(kind: EventKind, event: Event) -> Projection:
    """Build the record projection for an event. Raises MalformedEventError."""
    return PROJECTORS[kind](event)
