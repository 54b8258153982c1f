"""
WhatsApp webhook ingestion.

Every message in a delivery runs through its own pipeline concurrently:

- text: the ALBUM <code> command binds the sender to an album
- image / video: resolve album, check window, download, hash, dedup,
  store blob, insert row
- anything else: instructional reply

Each pipeline ends in exactly one Outcome and exactly one reply. Failures are
caught inside the pipeline that raised them; siblings keep going.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from starlette.concurrency import run_in_threadpool

from guestgallery import repository
from guestgallery.commands import parse_album_command
from guestgallery.inbound import parse_webhook
from guestgallery.media_client import MediaClient, MediaFetchError
from guestgallery.metrics import record_message_outcome
from guestgallery.models import Album
from guestgallery.notifier import Notifier
from guestgallery.objectstore import ObjectStore, ObjectStoreError
from guestgallery.policy import AlbumState, check_album
from guestgallery.schemas import ChannelBatch, InboundMessage, MediaMessage, TextMessage
from guestgallery.utils import build_storage_key, format_window_time, sha256_hex

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    BOUND = "bound"
    INSTRUCTIONS = "instructions"
    UNKNOWN_CODE = "unknown_code"
    INACTIVE = "inactive"
    NOT_YET_OPEN = "not_yet_open"
    CLOSED = "closed"
    BIND_FAILED = "bind_failed"
    UNBOUND = "unbound"
    UPLOADED = "uploaded"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    UNSUPPORTED = "unsupported"


# =============================================================================
# Replies
# =============================================================================

REPLY_INSTRUCTIONS = (
    'Send "ALBUM <code>" to choose an album (e.g., ALBUM K3H9WT). '
    "Then send photos here. 📸"
)
REPLY_UNKNOWN_CODE = "Unknown album code. Please check and try again."
REPLY_BIND_FAILED = "Error setting album. Please try again."
REPLY_PICK_ALBUM = 'Please choose an album first: send "ALBUM <code>" (see QR code).'
REPLY_DUPLICATE = "Looks like a duplicate. Skipped. 😉"
REPLY_FAILED = "Upload failed. Please try again."
REPLY_UNSUPPORTED = (
    "Only photos and videos can be added to this gallery. 📸\n"
    'Tip: send "ALBUM <code>" first to choose an album.'
)
REPLY_UPLOADED = {
    "image": "Photo uploaded ✔️ Thanks!",
    "video": "Video uploaded ✔️ Thanks!",
}

STATE_REPLIES = {
    AlbumState.INACTIVE: "This album has been deactivated and no longer accepts uploads.",
    AlbumState.NOT_YET_OPEN: "This album is not open for uploads yet. ⏱️",
    AlbumState.CLOSED: "This album is closed for uploads. ⏱️",
}

STATE_OUTCOMES = {
    AlbumState.INACTIVE: Outcome.INACTIVE,
    AlbumState.NOT_YET_OPEN: Outcome.NOT_YET_OPEN,
    AlbumState.CLOSED: Outcome.CLOSED,
}


def bound_reply(album: Album) -> str:
    return (
        "Album set ✅\n"
        f"Event: {album.album_slug}\n"
        f"Window: {format_window_time(album.start_at)} → {format_window_time(album.end_at)}\n"
        "Now send your photos here."
    )


Result = Tuple[Outcome, str]


@dataclass(frozen=True)
class DeliverySummary:
    channel_ids: list[str]
    processed: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionEngine:
    """
    Runs webhook deliveries through the binding and upload pipelines.

    Database work and object-store calls are blocking; they run in the
    threadpool, each database step in its own session.
    """

    def __init__(
        self,
        session_factory: Callable,
        media_client: MediaClient,
        object_store: ObjectStore,
        notifier: Notifier,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.session_factory = session_factory
        self.media_client = media_client
        self.object_store = object_store
        self.notifier = notifier
        self.clock = clock or _utcnow

    # -------------------------------------------------------------------------
    # Batch driver
    # -------------------------------------------------------------------------

    async def handle_delivery(self, payload: Any) -> DeliverySummary:
        """
        Process every message in a parsed webhook body.
        """
        batches = parse_webhook(payload)
        processed = await self.process_batches(batches)
        return DeliverySummary(
            channel_ids=[batch.phone_number_id for batch in batches],
            processed=processed,
        )

    async def process_batches(self, batches: list[ChannelBatch]) -> int:
        """
        Run all messages of all batches concurrently.

        Waits for all pipelines, replies included, before returning.
        """
        jobs = [
            self.process(batch.phone_number_id, message)
            for batch in batches
            for message in batch.messages
        ]
        if not jobs:
            return 0

        results = await asyncio.gather(*jobs, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Message pipeline raised past its boundary", exc_info=result)
        return len(jobs)

    async def process(self, phone_number_id: str, message: InboundMessage) -> Outcome:
        """
        Run one message to completion and send its single reply.
        """
        try:
            if isinstance(message, TextMessage):
                outcome, reply = await self.handle_text(message)
            elif isinstance(message, MediaMessage):
                outcome, reply = await self.handle_media(message)
            else:
                outcome, reply = Outcome.UNSUPPORTED, REPLY_UNSUPPORTED
        except Exception:
            logger.exception(
                "Message processing failed",
                extra={"sender": message.sender, "kind": message.kind, "phone_number_id": phone_number_id},
            )
            outcome, reply = Outcome.FAILED, REPLY_FAILED

        logger.info(
            f"Message processed: {outcome.value}",
            extra={"sender": message.sender, "kind": message.kind, "outcome": outcome.value},
        )
        record_message_outcome(message.kind, outcome.value)
        await self.notifier.send(phone_number_id, message.sender, reply)
        return outcome

    # -------------------------------------------------------------------------
    # Text commands
    # -------------------------------------------------------------------------

    async def handle_text(self, message: TextMessage) -> Result:
        code = parse_album_command(message.body)
        if code is None:
            return Outcome.INSTRUCTIONS, REPLY_INSTRUCTIONS

        try:
            album = await self._db(repository.get_album_by_code, code)
            if album is None:
                return Outcome.UNKNOWN_CODE, REPLY_UNKNOWN_CODE

            state = check_album(self.clock(), album)
            if state is not AlbumState.OPEN:
                return STATE_OUTCOMES[state], STATE_REPLIES[state]

            await self._db(repository.upsert_binding, message.sender, album.id)
        except Exception:
            logger.exception("Album bind failed", extra={"sender": message.sender, "code": code})
            return Outcome.BIND_FAILED, REPLY_BIND_FAILED

        return Outcome.BOUND, bound_reply(album)

    # -------------------------------------------------------------------------
    # Media uploads
    # -------------------------------------------------------------------------

    async def resolve_album(self, message: MediaMessage) -> Optional[Album]:
        """
        The sender's bound album, or else the album named in the caption.

        A caption code that resolves to an open album also becomes the
        sender's binding.
        """
        album = await self._db(repository.get_bound_album, message.sender)
        if album is not None:
            return album

        code = parse_album_command(message.caption)
        if code is None:
            return None

        album = await self._db(repository.get_album_by_code, code)
        if album is not None and check_album(self.clock(), album) is AlbumState.OPEN:
            await self._db(repository.upsert_binding, message.sender, album.id)
            logger.info(f"Sender bound from caption: {code}", extra={"sender": message.sender})
        return album

    async def handle_media(self, message: MediaMessage) -> Result:
        album = await self.resolve_album(message)
        if album is None:
            return Outcome.UNBOUND, REPLY_PICK_ALBUM

        # Live album state; the window may have closed since binding
        state = check_album(self.clock(), album)
        if state is not AlbumState.OPEN:
            return STATE_OUTCOMES[state], STATE_REPLIES[state]

        try:
            return await self.ingest(message, album)
        except MediaFetchError as e:
            logger.warning(
                f"Media fetch failed: {e}",
                extra={"sender": message.sender, "media_id": message.media_id},
            )
            return Outcome.FAILED, REPLY_FAILED
        except Exception:
            logger.exception(
                "Upload failed",
                extra={"sender": message.sender, "media_id": message.media_id, "album_code": album.code},
            )
            return Outcome.FAILED, REPLY_FAILED

    async def ingest(self, message: MediaMessage, album: Album) -> Result:
        content = await self.media_client.fetch(message.media_id)
        content_hash = sha256_hex(content)

        # Global across albums
        if await self._db(repository.find_media_by_hash, content_hash) is not None:
            logger.info(f"Duplicate content skipped: {content_hash}", extra={"sender": message.sender})
            return Outcome.DUPLICATE, REPLY_DUPLICATE

        mime = message.mime_type
        key = build_storage_key(album.event_slug, album.album_slug, mime)
        await run_in_threadpool(self.object_store.put, key, content, mime)

        try:
            record, is_duplicate = await self._db(
                repository.create_media,
                storage_key=key,
                uploader_msisdn=message.sender,
                mime=mime,
                size=len(content),
                content_hash=content_hash,
                event_slug=album.event_slug,
                album_slug=album.album_slug,
            )
        except Exception:
            await self._discard(key)
            raise

        if is_duplicate:
            # A concurrent upload of the same bytes committed first
            await self._discard(key)
            return Outcome.DUPLICATE, REPLY_DUPLICATE

        logger.info(
            f"Media stored: {key}",
            extra={
                "sender": message.sender,
                "media_record_id": record.id,
                "bytes": len(content),
                "original_filename": message.filename,
            },
        )
        return Outcome.UPLOADED, REPLY_UPLOADED[message.kind]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _in_session(self, fn: Callable, *args, **kwargs):
        with self.session_factory() as db:
            return fn(db, *args, **kwargs)

    async def _db(self, fn: Callable, *args, **kwargs):
        return await run_in_threadpool(self._in_session, fn, *args, **kwargs)

    async def _discard(self, key: str) -> None:
        try:
            await run_in_threadpool(self.object_store.delete, key)
        except ObjectStoreError as e:
            logger.error(f"Could not remove orphaned object {key}: {e}")
