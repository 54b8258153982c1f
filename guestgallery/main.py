import hmac
import json
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from pathlib import Path
from typing import Annotated

import httpx
from fastapi import FastAPI, Response, Request, Depends, Header, HTTPException, status, Query
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from guestgallery import repository
from guestgallery.config import settings
from guestgallery.ingestion import IngestionEngine
from guestgallery.logging_utils import setup_logging, RequestLoggingMiddleware, attach_delivery_log
from guestgallery.media_client import MediaClient
from guestgallery.metrics import record_webhook_outcome, get_metrics, get_metrics_content_type
from guestgallery.notifier import Notifier
from guestgallery.objectstore import ObjectStore, ObjectStoreError, get_object_store
from guestgallery.storage import SessionLocal, init_db, check_db_health, get_db
from guestgallery.utils import verify_hub_signature
from guestgallery.schemas import (
    ErrorResponse,
    GalleryItem,
    GalleryResponse,
    HealthResponse,
    WebhookAck,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

GALLERY_LIMIT = 100


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, media directory and the shared HTTP client
    - Shutdown: close the HTTP client
    """
    init_db()
    if settings.STORAGE_BACKEND.lower() == "filesystem":
        Path(settings.MEDIA_ROOT).mkdir(parents=True, exist_ok=True)
    app.state.http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    try:
        yield
    finally:
        await app.state.http_client.aclose()


app = FastAPI(
    title="Guest Gallery",
    description="Collects guest photos and videos for event albums over WhatsApp",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

if settings.STORAGE_BACKEND.lower() == "filesystem":
    app.mount("/media", StaticFiles(directory=settings.MEDIA_ROOT, check_dir=False), name="media")


# =============================================================================
# Dependencies
# =============================================================================

@lru_cache()
def get_media_store() -> ObjectStore:
    return get_object_store()


def get_ingestion_engine(request: Request) -> IngestionEngine:
    http_client = request.app.state.http_client
    return IngestionEngine(
        session_factory=SessionLocal,
        media_client=MediaClient(http_client, settings.GRAPH_API_BASE, settings.WHATSAPP_TOKEN),
        object_store=get_media_store(),
        notifier=Notifier(http_client, settings.GRAPH_API_BASE, settings.WHATSAPP_TOKEN),
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. WhatsApp verify token and access token are set
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.WHATSAPP_VERIFY_TOKEN or not settings.WHATSAPP_TOKEN:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="WhatsApp tokens not configured"
        )

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# WhatsApp Webhook Routes
# =============================================================================

@app.get("/whatsapp/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    hub_mode: Annotated[str | None, Query(alias="hub.mode")] = None,
    hub_verify_token: Annotated[str | None, Query(alias="hub.verify_token")] = None,
    hub_challenge: Annotated[str | None, Query(alias="hub.challenge")] = None,
) -> PlainTextResponse:
    """
    Subscription handshake: echo hub.challenge iff mode is "subscribe"
    and the verify token matches WHATSAPP_VERIFY_TOKEN.
    """
    token_ok = hub_verify_token is not None and hmac.compare_digest(
        hub_verify_token.encode("utf-8"), settings.WHATSAPP_VERIFY_TOKEN.encode("utf-8")
    )
    if hub_mode == "subscribe" and token_ok:
        logger.info("Webhook subscription verified")
        return PlainTextResponse(hub_challenge or "", status_code=status.HTTP_200_OK)

    logger.warning(f"Webhook verification rejected: mode={hub_mode}")
    return PlainTextResponse("Forbidden", status_code=status.HTTP_403_FORBIDDEN)


@app.post(
    "/whatsapp/webhook",
    response_model=WebhookAck,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
    }
)
async def receive_webhook(
    request: Request,
    x_hub_signature_256: Annotated[str | None, Header(alias="X-Hub-Signature-256")] = None,
    engine: IngestionEngine = Depends(get_ingestion_engine),
) -> WebhookAck:
    """
    Ingest a WhatsApp Cloud API delivery.

    - Verifies X-Hub-Signature-256 when WHATSAPP_APP_SECRET is set
    - Processes every message concurrently; each sender gets one reply
    - Always answers {"ok": true}: outcomes go to senders, not to Meta
    """
    raw_body = await request.body()
    logger.debug(f"Request body size: {len(raw_body)} bytes")

    if settings.WHATSAPP_APP_SECRET and not verify_hub_signature(
        raw_body, x_hub_signature_256, settings.WHATSAPP_APP_SECRET
    ):
        logger.error("Invalid hub signature")
        record_webhook_outcome("invalid_signature")
        attach_delivery_log(request=request, result="invalid_signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid signature"
        )

    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        logger.warning(f"Ignoring webhook with invalid JSON: {e}")
        record_webhook_outcome("ignored")
        attach_delivery_log(request=request, result="ignored")
        return WebhookAck()

    summary = await engine.handle_delivery(payload)

    result = "accepted" if summary.processed else "ignored"
    logger.info(f"Webhook processed: {summary.processed} messages, result: {result}")
    record_webhook_outcome(result)
    attach_delivery_log(
        request=request,
        channel_ids=summary.channel_ids,
        messages=summary.processed,
        result=result,
    )

    return WebhookAck()


# =============================================================================
# Gallery Route
# =============================================================================

@app.get("/gallery", response_model=GalleryResponse)
def get_gallery(
    code: Annotated[str | None, Query(description="Album code; omit to list all albums")] = None,
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_media_store),
) -> GalleryResponse:
    """
    List the newest media, optionally for a single album.

    An unknown code yields an empty list. Items whose URL cannot be
    produced are left out.
    """
    event_slug = album_slug = None
    if code:
        album = repository.get_album_by_code(db, code)
        if album is None:
            return GalleryResponse(items=[])
        event_slug, album_slug = album.event_slug, album.album_slug

    rows = repository.list_media(db, event_slug=event_slug, album_slug=album_slug, limit=GALLERY_LIMIT)

    items = []
    for row in rows:
        try:
            url = store.url_for(row.storage_key)
        except ObjectStoreError as e:
            logger.warning(f"Skipping gallery item {row.id}: {e}")
            continue
        items.append(GalleryItem(id=row.id, url=url, created_at=row.created_at, mime=row.mime))

    logger.info(f"GET /gallery: code={code}, returned {len(items)} items")
    return GalleryResponse(items=items)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
