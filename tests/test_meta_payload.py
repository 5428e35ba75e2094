"""Tests for webhook verification and payload normalization."""

from datetime import datetime, timezone

import pytest

from sitelog.meta import parse_messages, parse_timestamp, verify_subscription
from sitelog.models import (
    AudioMessage,
    DocumentMessage,
    ImageMessage,
    OtherMessage,
    TextMessage,
    VideoMessage,
)


def delivery(*messages, extra_changes=None):
    changes = [{"value": {"messaging_product": "whatsapp", "messages": list(messages)}, "field": "messages"}]
    if extra_changes:
        changes.extend(extra_changes)
    return {"object": "whatsapp_business_account", "entry": [{"id": "WABA", "changes": changes}]}


class TestVerifySubscription:
    def test_valid_handshake_returns_challenge(self):
        assert verify_subscription("subscribe", "secret", "12345", "secret") == "12345"

    def test_wrong_token(self):
        assert verify_subscription("subscribe", "nope", "12345", "secret") is None

    def test_wrong_mode(self):
        assert verify_subscription("unsubscribe", "secret", "12345", "secret") is None

    def test_unset_secret_never_verifies(self):
        assert verify_subscription("subscribe", "", "12345", "") is None

    def test_missing_token(self):
        assert verify_subscription("subscribe", None, "12345", "secret") is None


class TestParseTimestamp:
    def test_seconds_string(self):
        assert parse_timestamp("1704067200") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_milliseconds(self):
        assert parse_timestamp(1704067200000) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "abc", True, {"x": 1}])
    def test_garbage(self, value):
        assert parse_timestamp(value) is None


def test_text_message():
    [msg] = parse_messages(
        delivery({"from": "4917012345", "id": "wamid.1", "timestamp": "1704067200", "type": "text", "text": {"body": "#260016 Lieferung da"}})
    )
    assert isinstance(msg, TextMessage)
    assert msg.message_id == "wamid.1"
    assert msg.sender_id == "4917012345"
    assert msg.code_text == "#260016 Lieferung da"
    assert msg.from_caption is False
    assert msg.media_id is None


def test_image_with_caption():
    [msg] = parse_messages(
        delivery(
            {
                "from": "4917012345",
                "id": "wamid.2",
                "timestamp": "1704067200",
                "type": "image",
                "image": {"id": "MEDIA9", "mime_type": "image/jpeg", "caption": "Keller #260016"},
            }
        )
    )
    assert isinstance(msg, ImageMessage)
    assert msg.media_id == "MEDIA9"
    assert msg.mime_type == "image/jpeg"
    assert msg.code_text == "Keller #260016"
    assert msg.from_caption is True
    assert msg.message_type == "image"


def test_media_variants():
    msgs = parse_messages(
        delivery(
            {"from": "1", "id": "a", "type": "audio", "audio": {"id": "AUD", "mime_type": "audio/ogg; codecs=opus"}},
            {"from": "1", "id": "v", "type": "video", "video": {"id": "VID", "caption": "#123456"}},
            {"from": "1", "id": "d", "type": "document", "document": {"id": "DOC", "filename": "plan.pdf", "mime_type": "application/pdf"}},
            {"from": "1", "id": "l", "type": "location", "location": {"latitude": 1, "longitude": 2}},
        )
    )
    assert [type(m) for m in msgs] == [AudioMessage, VideoMessage, DocumentMessage, OtherMessage]
    assert msgs[0].code_text is None
    assert msgs[1].code_text == "#123456"
    assert msgs[2].filename == "plan.pdf"
    assert msgs[3].raw_type == "location"
    assert msgs[3].message_type == "other"


def test_order_is_kept_across_entries_and_changes():
    payload = delivery(
        {"from": "1", "id": "first", "type": "text", "text": {"body": "a"}},
        {"from": "1", "id": "second", "type": "text", "text": {"body": "b"}},
        extra_changes=[{"value": {"messages": [{"from": "2", "id": "third", "type": "text", "text": {"body": "c"}}]}}],
    )
    assert [m.message_id for m in parse_messages(payload)] == ["first", "second", "third"]


def test_message_without_id_is_kept():
    [msg] = parse_messages(delivery({"from": "1", "type": "text", "text": {"body": "x"}}))
    assert msg.message_id is None


def test_message_without_sender_is_skipped():
    assert parse_messages(delivery({"id": "x", "type": "text", "text": {"body": "x"}})) == []


def test_status_callbacks_yield_nothing():
    payload = {"entry": [{"changes": [{"value": {"statuses": [{"id": "wamid.1", "status": "read"}]}}]}]}
    assert parse_messages(payload) == []


@pytest.mark.parametrize(
    "payload",
    [None, [], "text", {"entry": "x"}, {"entry": [None, {"changes": "x"}, {"changes": [None, {"value": []}]}]}],
)
def test_malformed_payloads_degrade(payload):
    assert parse_messages(payload) == []


def test_text_without_body_degrades_to_empty():
    [msg] = parse_messages(delivery({"from": "1", "id": "x", "type": "text", "text": "oops"}))
    assert msg.body == ""
