"""
Repository functions over the albums, msisdn_bindings and media tables.

Every function takes an open Session as its first argument. Callers that run
on the event loop wrap these in a threadpool (see ingestion.py).
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from guestgallery.models import Album, Binding, MediaRecord

logger = logging.getLogger(__name__)


# =============================================================================
# Album Directory
# =============================================================================

def normalize_code(code: str) -> str:
    """Album codes are compared case-insensitively; canonical form is upper case."""
    return code.strip().upper()


def get_album_by_code(db: Session, code: str) -> Optional[Album]:
    """
    Look up an album by its short code.

    Returns:
        Album if found, None otherwise
    """
    canonical = normalize_code(code)
    logger.debug(f"Looking up album by code: {canonical}")
    return db.query(Album).filter(Album.code == canonical).first()


def create_album(
    db: Session,
    code: str,
    event_slug: str,
    album_slug: str,
    start_at: Optional[datetime] = None,
    end_at: Optional[datetime] = None,
    is_active: bool = True,
) -> Album:
    """
    Create an album. Raises ValueError if the code is already taken.
    """
    canonical = normalize_code(code)
    if get_album_by_code(db, canonical) is not None:
        raise ValueError(f"album code already in use: {canonical}")

    album = Album(
        code=canonical,
        event_slug=event_slug,
        album_slug=album_slug,
        start_at=start_at,
        end_at=end_at,
        is_active=is_active,
    )
    db.add(album)
    db.commit()
    db.refresh(album)
    logger.info(f"Album created: code={canonical}, event={event_slug}, album={album_slug}")
    return album


# =============================================================================
# Binding Store
# =============================================================================

def upsert_binding(db: Session, msisdn: str, album_id: str) -> None:
    """
    Point a sender at an album, replacing any previous binding.
    """
    db.merge(Binding(msisdn=msisdn, album_id=album_id, bound_at=datetime.now(timezone.utc)))
    db.commit()
    logger.info(f"Binding stored: msisdn={msisdn}, album_id={album_id}")


def get_bound_album(db: Session, msisdn: str) -> Optional[Album]:
    """
    Resolve the sender's current album, read live from the albums table.

    Returns:
        Album if the sender is bound, None otherwise
    """
    return (
        db.query(Album)
        .join(Binding, Binding.album_id == Album.id)
        .filter(Binding.msisdn == msisdn)
        .first()
    )


# =============================================================================
# Media Record Store / Content Index
# =============================================================================

def find_media_by_hash(db: Session, content_hash: str) -> Optional[MediaRecord]:
    """
    Look up any media row with this content hash, in any album.
    """
    return db.query(MediaRecord).filter(MediaRecord.content_hash == content_hash).first()


def create_media(
    db: Session,
    storage_key: str,
    uploader_msisdn: str,
    mime: str,
    size: int,
    content_hash: str,
    event_slug: str,
    album_slug: str,
) -> Tuple[Optional[MediaRecord], bool]:
    """
    Insert a media row.

    Returns:
        Tuple of (record, is_duplicate)
        - (record, False): row created
        - (None, True): another row already holds this content hash

    Any other database error propagates.
    """
    record = MediaRecord(
        storage_key=storage_key,
        uploader_msisdn=uploader_msisdn,
        mime=mime,
        bytes=size,
        content_hash=content_hash,
        event_slug=event_slug,
        album_slug=album_slug,
        created_at=datetime.now(timezone.utc),
    )
    try:
        db.add(record)
        db.commit()
    except IntegrityError:
        db.rollback()
        if find_media_by_hash(db, content_hash) is not None:
            logger.info(f"Duplicate content hash on insert: {content_hash}")
            return (None, True)
        raise

    db.refresh(record)
    logger.info(f"Media created: id={record.id}, key={storage_key}, bytes={size}")
    return (record, False)


def list_media(
    db: Session,
    event_slug: Optional[str] = None,
    album_slug: Optional[str] = None,
    limit: int = 100,
) -> list:
    """
    Newest media first, optionally restricted to one album's namespace pair.
    """
    query = db.query(MediaRecord)
    if event_slug is not None and album_slug is not None:
        query = query.filter(
            MediaRecord.event_slug == event_slug,
            MediaRecord.album_slug == album_slug,
        )
    return query.order_by(MediaRecord.created_at.desc()).limit(limit).all()
