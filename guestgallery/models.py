"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from guestgallery.storage import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Album(Base):
    """
    An event album guests upload into.

    Table: albums
    The short code is stored upper case and is unique.
    (event_slug, album_slug) scopes storage keys and media rows.
    """
    __tablename__ = "albums"

    id = Column(String, primary_key=True, default=_new_id)
    code = Column(String, nullable=False, unique=True, index=True)
    event_slug = Column(String, nullable=False)
    album_slug = Column(String, nullable=False)
    start_at = Column(DateTime(timezone=True), nullable=True)
    end_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Binding(Base):
    """
    The album a sender is currently pointed at.

    Table: msisdn_bindings
    Primary Key: msisdn (one binding per sender, overwritten on rebind)
    """
    __tablename__ = "msisdn_bindings"

    msisdn = Column(String, primary_key=True)
    album_id = Column(String, ForeignKey("albums.id", ondelete="CASCADE"), nullable=False)
    bound_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class MediaRecord(Base):
    """
    One ingested photo or video.

    Table: media
    content_hash is unique across all albums.
    """
    __tablename__ = "media"

    id = Column(String, primary_key=True, default=_new_id)
    storage_key = Column(String, nullable=False, unique=True)
    uploader_msisdn = Column(String, nullable=False, index=True)
    mime = Column(String, nullable=False)
    bytes = Column(Integer, nullable=False)
    content_hash = Column(String(64), nullable=False, unique=True, index=True)
    event_slug = Column(String, nullable=False, index=True)
    album_slug = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
