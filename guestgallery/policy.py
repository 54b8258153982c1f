"""
Upload window and activation rules for albums.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class AlbumState(str, Enum):
    OPEN = "open"
    INACTIVE = "inactive"
    NOT_YET_OPEN = "not_yet_open"
    CLOSED = "closed"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; they were written as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def check_album(now: datetime, album) -> AlbumState:
    """
    Classify an album at instant `now`.

    Deactivation wins over the window. Window bounds are inclusive and
    either bound may be missing.
    """
    if not album.is_active:
        return AlbumState.INACTIVE

    now = as_utc(now)
    start_at = as_utc(album.start_at)
    end_at = as_utc(album.end_at)

    if start_at is not None and now < start_at:
        return AlbumState.NOT_YET_OPEN
    if end_at is not None and now > end_at:
        return AlbumState.CLOSED
    return AlbumState.OPEN


def is_open(now: datetime, album) -> bool:
    return check_album(now, album) is AlbumState.OPEN
