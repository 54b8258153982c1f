"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any guestgallery import so
that the module-level settings, engine and app pick them up.
"""

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone

_TEST_ROOT = tempfile.mkdtemp(prefix="guestgallery-tests-")

os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_ROOT}/test.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("WHATSAPP_VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("WHATSAPP_TOKEN", "test-access-token")
os.environ.setdefault("MEDIA_ROOT", f"{_TEST_ROOT}/media")
os.environ.setdefault("STORAGE_BACKEND", "filesystem")

import httpx  # noqa: E402
import pytest  # noqa: E402

# Clear settings cache before any app imports to ensure test env vars are used
from guestgallery.config import get_settings  # noqa: E402
get_settings.cache_clear()

from guestgallery import models  # noqa: E402,F401
from guestgallery import repository  # noqa: E402
from guestgallery.ingestion import IngestionEngine  # noqa: E402
from guestgallery.media_client import MediaClient  # noqa: E402
from guestgallery.notifier import Notifier  # noqa: E402
from guestgallery.objectstore import FileSystemObjectStore  # noqa: E402
from guestgallery.storage import Base, SessionLocal, engine as db_engine  # noqa: E402

GRAPH_BASE = "https://graph.test/v21.0"
CDN_HOST = "lookaside.test"
PHONE_NUMBER_ID = "PNID-1"
SENDER = "38599111222"

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Fake Graph API
# =============================================================================

@dataclass
class SentReply:
    phone_number_id: str
    to: str
    body: str


class FakeGraph:
    """
    Stands in for graph.facebook.com behind an httpx.MockTransport.

    - GET /<media_id> returns a lookaside URL for registered media
    - GET https://lookaside.test/<media_id> returns the bytes
    - POST /<phone_number_id>/messages records the reply
    """

    def __init__(self) -> None:
        self.media: dict[str, tuple[bytes, str]] = {}
        self.sent: list[SentReply] = []
        self.metadata_calls: list[httpx.Request] = []
        self.reply_status = 200

    def add_media(self, media_id: str, content: bytes, mime_type: str = "image/jpeg") -> None:
        self.media[media_id] = (content, mime_type)

    def replies_to(self, sender: str) -> list[str]:
        return [reply.body for reply in self.sent if reply.to == sender]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if request.method == "POST" and path.endswith("/messages"):
            body = json.loads(request.content)
            self.sent.append(SentReply(path.split("/")[-2], body["to"], body["text"]["body"]))
            return httpx.Response(self.reply_status, json={"messages": [{"id": "wamid.test"}]})

        media_id = path.rsplit("/", 1)[-1]
        if request.url.host == CDN_HOST:
            if media_id not in self.media:
                return httpx.Response(404)
            return httpx.Response(200, content=self.media[media_id][0])

        self.metadata_calls.append(request)
        if media_id not in self.media:
            return httpx.Response(404, json={"error": {"message": "Unsupported get request"}})
        return httpx.Response(
            200,
            json={
                "url": f"https://{CDN_HOST}/v/{media_id}",
                "mime_type": self.media[media_id][1],
                "id": media_id,
            },
        )


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# =============================================================================
# Payload builders
# =============================================================================

def text_message(body: str, sender: str = SENDER) -> dict:
    return {"from": sender, "id": "wamid.t", "timestamp": "1780000000", "type": "text", "text": {"body": body}}


def image_message(media_id: str, mime_type: str = "image/jpeg", caption: str = None, sender: str = SENDER) -> dict:
    image = {"id": media_id, "mime_type": mime_type}
    if caption is not None:
        image["caption"] = caption
    return {"from": sender, "id": f"wamid.{media_id}", "timestamp": "1780000000", "type": "image", "image": image}


def video_message(media_id: str, mime_type: str = "video/mp4", sender: str = SENDER) -> dict:
    return {
        "from": sender,
        "id": f"wamid.{media_id}",
        "timestamp": "1780000000",
        "type": "video",
        "video": {"id": media_id, "mime_type": mime_type},
    }


def document_message(media_id: str, mime_type: str, filename: str = "file", sender: str = SENDER) -> dict:
    return {
        "from": sender,
        "id": f"wamid.{media_id}",
        "timestamp": "1780000000",
        "type": "document",
        "document": {"id": media_id, "mime_type": mime_type, "filename": filename},
    }


def delivery(*messages: dict, phone_number_id: str = PHONE_NUMBER_ID) -> dict:
    value = {"messaging_product": "whatsapp", "messages": list(messages)}
    if phone_number_id is not None:
        value["metadata"] = {"display_phone_number": "15550001111", "phone_number_id": phone_number_id}
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA", "changes": [{"field": "messages", "value": value}]}],
    }


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def db():
    """Fresh tables for each test."""
    Base.metadata.create_all(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=db_engine)


@pytest.fixture
def make_album(db):
    def _make(code="K3H9WT", event_slug="wedding-ana-ivan", album_slug="ceremony", **kwargs):
        return repository.create_album(db, code, event_slug, album_slug, **kwargs)
    return _make


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def object_store(tmp_path):
    return FileSystemObjectStore(str(tmp_path / "objects"))


@pytest.fixture
def ingestion_engine(db, graph, clock, object_store):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(graph.handler))
    return IngestionEngine(
        session_factory=SessionLocal,
        media_client=MediaClient(http_client, GRAPH_BASE, "test-access-token"),
        object_store=object_store,
        notifier=Notifier(http_client, GRAPH_BASE, "test-access-token"),
        clock=clock,
    )


@pytest.fixture
def client(ingestion_engine):
    """TestClient wired to the fake Graph API and a tmp object store."""
    from fastapi.testclient import TestClient

    from guestgallery.main import app, get_ingestion_engine, get_media_store

    app.dependency_overrides[get_ingestion_engine] = lambda: ingestion_engine
    app.dependency_overrides[get_media_store] = lambda: ingestion_engine.object_store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
