from datetime import datetime, timezone
from typing import Any, List, Optional

from .attribution import AttributionEngine
from .config import DEFAULT_PROMPT_TEXT
from .graph_api import GraphAPIClient, GraphAPIError, MediaFetchError
from .journal import Journal
from .logs import json_log
from .meta import parse_messages
from .models import InboundMessage, MediaFile, ProcessedMessageRecord


class MessageProcessor:
    """
    Runs every message of a webhook delivery through
    resolve -> persist state -> fetch media -> append journal -> maybe prompt,
    one message at a time in the order the provider sent them.
    """

    def __init__(
        self,
        engine: AttributionEngine,
        journal: Journal,
        graph: GraphAPIClient,
        prompt_text: str = DEFAULT_PROMPT_TEXT,
    ):
        self.engine = engine
        self.journal = journal
        self.graph = graph
        self.prompt_text = prompt_text

    async def handle_delivery(self, payload: Any) -> List[ProcessedMessageRecord]:
        messages = parse_messages(payload)
        written: List[ProcessedMessageRecord] = []
        for msg in messages:
            try:
                record = await self.handle_message(msg)
            except Exception as e:
                # keep going with the rest of the delivery
                json_log("message_failed", message_id=msg.message_id, sender=msg.sender_id, error=str(e))
                continue
            if record is not None:
                written.append(record)
        return written

    async def handle_message(self, msg: InboundMessage, now: Optional[datetime] = None) -> Optional[ProcessedMessageRecord]:
        now = now or datetime.now(timezone.utc)
        result = self.engine.resolve(msg, now=now)
        if result.duplicate:
            json_log("duplicate_message_skipped", message_id=msg.message_id, sender=msg.sender_id)
            return None

        try:
            self.engine.flush(now)
        except Exception:
            # nothing was written yet; a redelivery must be processed again
            self.engine.forget(msg.message_id)
            raise

        site = result.site_code
        occurred_at = msg.timestamp or now
        media: Optional[MediaFile] = None
        error: Optional[str] = None

        if msg.media_id:
            try:
                data, mime_type = await self.graph.fetch_media(msg.media_id)
                name = self.journal.save_media(site, occurred_at, msg.media_id, data, mime_type)
                media = MediaFile(path=name, mime_type=mime_type)
            except (MediaFetchError, OSError) as e:
                error = f"media download failed: {e}"
                json_log("media_download_error", message_id=msg.message_id, media_id=msg.media_id, site=site, error=str(e))

        record = ProcessedMessageRecord(
            received_at=now,
            provider_timestamp=msg.timestamp,
            sender_id=msg.sender_id,
            message_id=msg.message_id,
            message_type=msg.message_type,
            site_code=site,
            text=msg.text,
            media=media,
            error=error,
        )
        try:
            path = self.journal.append(record)
        except Exception:
            self.engine.forget(msg.message_id)
            raise
        json_log(
            "message_logged",
            message_id=msg.message_id,
            sender=msg.sender_id,
            type=msg.message_type,
            site=site,
            explicit_code=result.explicit_code,
            journal=str(path),
        )

        if result.should_prompt:
            await self.send_prompt(msg.sender_id)
        return record

    async def send_prompt(self, sender_id: str) -> bool:
        try:
            await self.graph.send_text(sender_id, self.prompt_text)
        except GraphAPIError as e:
            json_log("prompt_send_failed", sender=sender_id, error=str(e))
            return False
        json_log("prompt_sent", sender=sender_id)
        return True
