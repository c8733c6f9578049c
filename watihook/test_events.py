"""
Tests for event classification.
"""

import pytest

from watihook.events import EventKind, base_event_type, classify


class TestAliases:
    """Version-suffixed event types classify like their unsuffixed form."""

    @pytest.mark.parametrize("event_type, kind", [
        ("templateMessageSent", EventKind.TEMPLATE_SENT),
        ("sessionMessageSent", EventKind.SESSION_SENT),
        ("sentMessageDELIVERED", EventKind.DELIVERED),
        ("sentMessageREAD", EventKind.READ),
    ])
    def test_suffixed_and_plain_match(self, event_type, kind):
        assert classify({"eventType": event_type}) is kind
        assert classify({"eventType": f"{event_type}_v2"}) is kind

    def test_base_event_type(self):
        assert base_event_type("sentMessageREAD_v2") == "sentMessageREAD"
        assert base_event_type("message") == "message"


class TestMessageSubtypes:
    """The generic message type is refined by content type."""

    def test_text_message(self):
        assert classify({"eventType": "message", "type": "text"}) is EventKind.INCOMING_MESSAGE

    def test_missing_content_type(self):
        assert classify({"eventType": "message"}) is EventKind.INCOMING_MESSAGE

    @pytest.mark.parametrize("content_type", ["image", "audio", "video", "voice", "document", "sticker"])
    def test_media_types(self, content_type):
        assert classify({"eventType": "message", "type": content_type}) is EventKind.INCOMING_MEDIA

    def test_media_type_case_insensitive(self):
        assert classify({"eventType": "message", "type": "IMAGE"}) is EventKind.INCOMING_MEDIA

    def test_location_is_not_media(self):
        assert classify({"eventType": "message", "type": "location"}) is EventKind.INCOMING_MESSAGE

    def test_content_type_ignored_for_other_events(self):
        assert classify({"eventType": "sessionMessageSent", "type": "image"}) is EventKind.SESSION_SENT


class TestUnhandled:

    @pytest.mark.parametrize("event", [
        {},
        {"eventType": None},
        {"eventType": 42},
        {"eventType": "newContactMessageReceived"},
        {"eventType": "sentMessageDELIVERED_v2x"},
        {"eventType": "sentmessagedelivered"},
    ])
    def test_unknown_types(self, event):
        assert classify(event) is EventKind.UNHANDLED
