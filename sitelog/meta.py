"""
WhatsApp Cloud API webhook helpers: subscription verification and conversion of
the nested ``entry[].changes[].value.messages[]`` payload into typed messages.

Nothing in here raises on malformed input; broken parts of a delivery are
skipped and logged so the rest of it can still be processed.
"""

import hmac
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from .logs import json_log
from .models import (
    AudioMessage,
    DocumentMessage,
    ImageMessage,
    InboundMessage,
    OtherMessage,
    TextMessage,
    VideoMessage,
)

_MEDIA_TYPES = {
    "image": ImageMessage,
    "video": VideoMessage,
    "audio": AudioMessage,
    "voice": AudioMessage,
    "document": DocumentMessage,
}


def verify_subscription(mode: Optional[str], token: Optional[str], challenge: Optional[str], expected: str) -> Optional[str]:
    """
    Return the challenge to echo when the subscription handshake is valid,
    otherwise None. An unset secret never verifies.
    """
    if mode != "subscribe" or not expected or token is None:
        return None
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        return None
    return challenge if challenge is not None else ""


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Provider timestamps are epoch seconds as numeric strings. Values that look
    like milliseconds are scaled down.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        sec = float(value)
    except (TypeError, ValueError):
        return None
    if sec > 1e12:
        sec = sec / 1000.0
    try:
        return datetime.fromtimestamp(sec, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _iter_raw_messages(payload: Any) -> Iterator[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return
    entries = payload.get("entry")
    if not isinstance(entries, list):
        return
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("changes"), list):
            continue
        for change in entry["changes"]:
            if not isinstance(change, dict):
                continue
            value = change.get("value")
            if not isinstance(value, dict) or not isinstance(value.get("messages"), list):
                continue
            for message in value["messages"]:
                if isinstance(message, dict):
                    yield message


def _str_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def to_message(raw: Dict[str, Any]) -> Optional[InboundMessage]:
    sender = _str_or_none(raw.get("from"))
    if not sender:
        json_log("webhook_message_skipped", reason="missing_sender", message_id=raw.get("id"))
        return None

    message_id = _str_or_none(raw.get("id"))
    timestamp = parse_timestamp(raw.get("timestamp"))
    msg_type = _str_or_none(raw.get("type")) or "unknown"

    if msg_type == "text":
        text_obj = raw.get("text")
        body = text_obj.get("body") if isinstance(text_obj, dict) else None
        return TextMessage(
            message_id=message_id,
            sender_id=sender,
            timestamp=timestamp,
            body=body if isinstance(body, str) else "",
        )

    cls = _MEDIA_TYPES.get(msg_type)
    if cls is not None:
        media_obj = raw.get(msg_type)
        if not isinstance(media_obj, dict):
            media_obj = {}
        kwargs: Dict[str, Any] = dict(
            message_id=message_id,
            sender_id=sender,
            timestamp=timestamp,
            media=_str_or_none(media_obj.get("id")) or "",
            media_mime=_str_or_none(media_obj.get("mime_type")),
            caption=_str_or_none(media_obj.get("caption")),
        )
        if cls is DocumentMessage:
            kwargs["filename"] = _str_or_none(media_obj.get("filename"))
        return cls(**kwargs)

    return OtherMessage(message_id=message_id, sender_id=sender, timestamp=timestamp, raw_type=msg_type)


def parse_messages(payload: Any) -> List[InboundMessage]:
    """
    Flatten a webhook body into messages, keeping the order the provider sent.
    Status callbacks (``value.statuses``) carry no messages and yield nothing.
    """
    messages: List[InboundMessage] = []
    for raw in _iter_raw_messages(payload):
        msg = to_message(raw)
        if msg is not None:
            messages.append(msg)
    return messages
