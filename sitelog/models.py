from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional

UNKNOWN_SITE = "unknown"


@dataclass(frozen=True)
class InboundMessage:
    """
    One message from a WhatsApp webhook delivery, already normalized.
    Subclasses carry the type-specific payload.
    """

    message_type: ClassVar[str] = "other"

    message_id: Optional[str]
    sender_id: str
    timestamp: Optional[datetime]

    @property
    def code_text(self) -> Optional[str]:
        return None

    @property
    def from_caption(self) -> bool:
        return False

    @property
    def media_id(self) -> Optional[str]:
        return None

    @property
    def mime_type(self) -> Optional[str]:
        return None

    @property
    def text(self) -> Optional[str]:
        return self.code_text


@dataclass(frozen=True)
class TextMessage(InboundMessage):
    message_type: ClassVar[str] = "text"

    body: str = ""

    @property
    def code_text(self) -> Optional[str]:
        return self.body


@dataclass(frozen=True)
class MediaMessage(InboundMessage):
    media: str = ""
    media_mime: Optional[str] = None
    caption: Optional[str] = None

    @property
    def code_text(self) -> Optional[str]:
        return self.caption

    @property
    def from_caption(self) -> bool:
        return True

    @property
    def media_id(self) -> Optional[str]:
        return self.media or None

    @property
    def mime_type(self) -> Optional[str]:
        return self.media_mime


@dataclass(frozen=True)
class ImageMessage(MediaMessage):
    message_type: ClassVar[str] = "image"


@dataclass(frozen=True)
class VideoMessage(MediaMessage):
    message_type: ClassVar[str] = "video"


@dataclass(frozen=True)
class AudioMessage(MediaMessage):
    message_type: ClassVar[str] = "audio"

    # voice notes have no caption
    @property
    def code_text(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class DocumentMessage(MediaMessage):
    message_type: ClassVar[str] = "document"

    filename: Optional[str] = None


@dataclass(frozen=True)
class OtherMessage(InboundMessage):
    raw_type: str = "unknown"


@dataclass
class SenderState:
    last_code: Optional[str] = None
    last_code_set_at: Optional[datetime] = None
    last_prompt_at: Optional[datetime] = None

    def set_code(self, code: str, now: datetime) -> None:
        if not code:
            raise ValueError("site code must not be empty")
        self.last_code = code
        self.last_code_set_at = now

    def clear_code(self) -> None:
        self.last_code = None
        self.last_code_set_at = None


@dataclass
class StoreSnapshot:
    senders: Dict[str, SenderState] = field(default_factory=dict)
    seen: Dict[str, datetime] = field(default_factory=dict)


@dataclass(frozen=True)
class AttributionResult:
    site_code: Optional[str]
    should_prompt: bool = False
    duplicate: bool = False
    explicit_code: Optional[str] = None


@dataclass(frozen=True)
class MediaFile:
    path: str
    mime_type: str


@dataclass(frozen=True)
class ProcessedMessageRecord:
    received_at: datetime
    provider_timestamp: Optional[datetime]
    sender_id: str
    message_id: Optional[str]
    message_type: str
    site_code: str
    text: Optional[str] = None
    media: Optional[MediaFile] = None
    error: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "received_at": self.received_at.isoformat(),
            "provider_timestamp": self.provider_timestamp.isoformat() if self.provider_timestamp else None,
            "sender_id": self.sender_id,
            "message_id": self.message_id,
            "message_type": self.message_type,
            "site_code": self.site_code,
        }
        if self.text is not None:
            data["text"] = self.text
        if self.media is not None:
            data["media"] = {"path": self.media.path, "mime_type": self.media.mime_type}
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "ProcessedMessageRecord":
        media = d.get("media")
        provider_ts = d.get("provider_timestamp")
        return cls(
            received_at=datetime.fromisoformat(d["received_at"]),
            provider_timestamp=datetime.fromisoformat(provider_ts) if provider_ts else None,
            sender_id=str(d["sender_id"]),
            message_id=d.get("message_id"),
            message_type=str(d.get("message_type") or "other"),
            site_code=str(d["site_code"]),
            text=d.get("text"),
            media=MediaFile(path=media["path"], mime_type=media.get("mime_type") or "") if isinstance(media, dict) else None,
            error=d.get("error"),
        )

    @property
    def occurred_at(self) -> datetime:
        return self.provider_timestamp or self.received_at
