"""Shared pytest fixtures for the site journal tests."""
import io
from datetime import datetime, timezone
from typing import List, Tuple

import pytest
from PIL import Image

from sitelog.attribution import AttributionEngine, AttributionPolicy
from sitelog.config import Settings
from sitelog.graph_api import GraphAPIError, MediaFetchError
from sitelog.journal import Journal
from sitelog.pipeline import MessageProcessor
from sitelog.state import InMemorySenderStore

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def jpeg_bytes(size=(64, 48), color=(200, 120, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=color).save(buf, "JPEG")
    return buf.getvalue()


class FakeGraph:
    """Stands in for GraphAPIClient; records prompts, serves media from a dict."""

    def __init__(self, media=None, fail_send: bool = False):
        self.media = media if media is not None else {}
        self.fail_send = fail_send
        self.sent: List[Tuple[str, str]] = []
        self.fetched: List[str] = []

    async def fetch_media(self, media_id: str):
        self.fetched.append(media_id)
        if media_id not in self.media:
            raise MediaFetchError(f"media {media_id}: HTTP 404")
        return self.media[media_id]

    async def send_text(self, to: str, body: str):
        if self.fail_send:
            raise GraphAPIError("send_text: HTTP 500")
        self.sent.append((to, body))
        return {"messages": [{"id": "wamid.out"}]}


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path / "sites",
        state_file=tmp_path / "state" / "sender_state.json",
        verify_token="verify-me",
        access_token="token",
        phone_number_id="1234",
        admin_token="admin",
        report_tz="Europe/Berlin",
        report_schedule=False,
    )


@pytest.fixture
def store() -> InMemorySenderStore:
    return InMemorySenderStore()


@pytest.fixture
def engine(store) -> AttributionEngine:
    return AttributionEngine(store, AttributionPolicy())


@pytest.fixture
def journal(settings) -> Journal:
    j = Journal(base=settings.data_dir, tz=settings.report_tz)
    j.ensure_layout()
    return j


@pytest.fixture
def graph() -> FakeGraph:
    return FakeGraph(media={"media-1": (jpeg_bytes(), "image/jpeg")})


@pytest.fixture
def processor(engine, journal, graph) -> MessageProcessor:
    return MessageProcessor(engine, journal, graph, prompt_text="Bitte Code senden")
