"""
Utility functions for the guest gallery service.
"""

import hmac
import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from guestgallery.policy import as_utc

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/heic": "heic",
    "image/heif": "heif",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/3gpp": "3gp",
    "video/webm": "webm",
}


def verify_hub_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify Meta's X-Hub-Signature-256 header.

    Args:
        body: Raw request body bytes
        signature: Header value, "sha256=<hex>"
        secret: WHATSAPP_APP_SECRET

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        logger.info("Hub signature missing or malformed")
        return False

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()

    # Header values are latin-1 decoded and may hold non-ASCII characters
    is_valid = hmac.compare_digest(
        expected_signature.encode("ascii"),
        signature[len(SIGNATURE_PREFIX):].encode("utf-8"),
    )
    logger.info(f"Hub signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def extension_for_mime(mime_type: Optional[str]) -> str:
    """
    File extension for a MIME type: known mapping, then the subtype, then "bin".
    """
    if not mime_type:
        return "bin"
    essence = mime_type.split(";", 1)[0].strip().lower()
    if essence in EXTENSIONS:
        return EXTENSIONS[essence]
    _, _, subtype = essence.partition("/")
    subtype = subtype.split("+", 1)[0]
    if subtype and subtype.replace("-", "").replace(".", "").isalnum():
        return subtype
    return "bin"


def build_storage_key(event_slug: str, album_slug: str, mime_type: Optional[str]) -> str:
    """event/<event_slug>/<album_slug>/<random id>.<ext>"""
    return f"event/{event_slug}/{album_slug}/{uuid.uuid4()}.{extension_for_mime(mime_type)}"


def format_window_time(value: Optional[datetime]) -> str:
    if value is None:
        return "N/A"
    return as_utc(value).astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
