"""
Classification of raw WATI webhook events into canonical event kinds.
"""

import re
from enum import Enum
from typing import Any, Mapping


class EventKind(str, Enum):
    INCOMING_MESSAGE = "IncomingMessage"
    INCOMING_MEDIA = "IncomingMedia"
    TEMPLATE_SENT = "TemplateSent"
    SESSION_SENT = "SessionSent"
    DELIVERED = "Delivered"
    READ = "Read"
    UNHANDLED = "Unhandled"


# Declared eventType -> kind. Version suffixes (e.g. "_v2") are stripped
# before lookup, so this table holds unsuffixed names only. "message" is
# refined further by the content type.
EVENT_TYPE_KINDS: dict[str, EventKind] = {
    "message": EventKind.INCOMING_MESSAGE,
    "templateMessageSent": EventKind.TEMPLATE_SENT,
    "sessionMessageSent": EventKind.SESSION_SENT,
    "sentMessageDELIVERED": EventKind.DELIVERED,
    "sentMessageREAD": EventKind.READ,
}

MEDIA_CONTENT_TYPES = frozenset({"image", "audio", "video", "voice", "document", "sticker"})

_VERSION_SUFFIX_RE = re.compile(r"_v\d+$")


def base_event_type(event_type: str) -> str:
    """Strip a provider API version suffix: 'sentMessageREAD_v2' -> 'sentMessageREAD'."""
    return _VERSION_SUFFIX_RE.sub("", event_type)


def is_media_type(content_type: Any) -> bool:
    return isinstance(content_type, str) and content_type.lower() in MEDIA_CONTENT_TYPES


def classify(event: Mapping[str, Any]) -> EventKind:
    """
    Map a raw event to its EventKind.

    Unknown or missing event types classify as UNHANDLED; that is a valid
    outcome, not an error.
    """
    event_type = event.get("eventType")
    if not isinstance(event_type, str):
        return EventKind.UNHANDLED

    kind = EVENT_TYPE_KINDS.get(base_event_type(event_type), EventKind.UNHANDLED)
    if kind is EventKind.INCOMING_MESSAGE and is_media_type(event.get("type")):
        return EventKind.INCOMING_MEDIA
    return kind
