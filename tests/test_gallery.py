"""
Tests for GET /gallery, health probes and /metrics.
"""

from datetime import datetime, timedelta, timezone

from guestgallery import repository
from guestgallery.objectstore import ObjectStoreError

BASE_TIME = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def add_media(db, n: int, album, content_hash: str, mime: str = "image/jpeg"):
    """Insert a media row whose created_at is n minutes after BASE_TIME."""
    record, _ = repository.create_media(
        db,
        storage_key=f"event/{album.event_slug}/{album.album_slug}/{content_hash}.jpg",
        uploader_msisdn="38599111222",
        mime=mime,
        size=10,
        content_hash=content_hash,
        event_slug=album.event_slug,
        album_slug=album.album_slug,
    )
    record.created_at = BASE_TIME + timedelta(minutes=n)
    db.commit()
    return record


class TestGallery:
    """Test the gallery listing."""

    def test_lists_album_newest_first(self, client, db, make_album):
        album = make_album()
        other = make_album(code="OTHER1", album_slug="party")
        first = add_media(db, 1, album, "a" * 64)
        second = add_media(db, 2, album, "b" * 64)
        add_media(db, 3, other, "c" * 64)

        response = client.get("/gallery", params={"code": "k3h9wt"})

        assert response.status_code == 200
        items = response.json()["items"]
        assert [item["id"] for item in items] == [second.id, first.id]
        assert items[0]["url"] == f"/media/{second.storage_key}"
        assert items[0]["mime"] == "image/jpeg"

    def test_all_albums_without_code(self, client, db, make_album):
        album = make_album()
        other = make_album(code="OTHER1", album_slug="party")
        add_media(db, 1, album, "a" * 64)
        add_media(db, 2, other, "b" * 64)

        response = client.get("/gallery")

        assert response.status_code == 200
        assert len(response.json()["items"]) == 2

    def test_unknown_code(self, client, db, make_album):
        add_media(db, 1, make_album(), "a" * 64)

        response = client.get("/gallery", params={"code": "NOPE99"})

        assert response.status_code == 200
        assert response.json() == {"items": []}

    def test_empty(self, client, db):
        assert client.get("/gallery").json() == {"items": []}

    def test_unsignable_items_are_skipped(self, client, db, make_album, ingestion_engine, monkeypatch):
        album = make_album()
        good = add_media(db, 1, album, "a" * 64)
        bad_key = add_media(db, 2, album, "b" * 64).storage_key
        store = ingestion_engine.object_store
        original = store.url_for

        def flaky_url_for(key):
            if key == bad_key:
                raise ObjectStoreError("cannot sign")
            return original(key)

        monkeypatch.setattr(store, "url_for", flaky_url_for)

        items = client.get("/gallery").json()["items"]

        assert [item["id"] for item in items] == [good.id]


class TestHealth:
    """Test health probes."""

    def test_live(self, client):
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready_without_token(self, client, monkeypatch):
        from guestgallery.config import settings

        monkeypatch.setattr(settings, "WHATSAPP_TOKEN", "")
        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestMetrics:
    """Test the Prometheus endpoint."""

    def test_exposes_counters(self, client):
        client.post("/whatsapp/webhook", content="not json", headers={"Content-Type": "application/json"})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "http_requests_total" in response.text
        assert 'webhook_requests_total{result="ignored"}' in response.text
