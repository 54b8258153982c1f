"""
Parsing of WhatsApp Cloud API webhook deliveries.

The raw JSON is walked field by field and turned into ChannelBatch objects
holding typed inbound messages. Anything that does not have the expected
shape is dropped here, so the pipeline only ever sees complete values.
"""

import logging
from typing import Any, Optional

from guestgallery.schemas import (
    ChannelBatch,
    InboundMessage,
    MediaMessage,
    TextMessage,
    UnsupportedMessage,
)

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("image", "video", "document")

# WhatsApp omits mime_type on some clients
DEFAULT_MIME = {
    "image": "image/jpeg",
    "video": "video/mp4",
}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def parse_webhook(payload: Any) -> list[ChannelBatch]:
    """
    Extract one batch per change value that names a phone_number_id.

    Values without a channel id are skipped; there is nobody to reply as.
    """
    if not isinstance(payload, dict):
        return []

    batches = []
    for entry in _as_list(payload.get("entry")):
        if not isinstance(entry, dict):
            continue
        for change in _as_list(entry.get("changes")):
            value = change.get("value") if isinstance(change, dict) else None
            if not isinstance(value, dict):
                continue

            metadata = value.get("metadata")
            phone_number_id = metadata.get("phone_number_id") if isinstance(metadata, dict) else None
            if not phone_number_id:
                logger.info("Webhook value without phone_number_id ignored")
                continue
            phone_number_id = str(phone_number_id)
            if not phone_number_id.isprintable():
                logger.warning("Webhook value with malformed phone_number_id ignored")
                continue

            messages = []
            for raw in _as_list(value.get("messages")):
                message = parse_message(raw)
                if message is not None:
                    messages.append(message)

            batches.append(ChannelBatch(phone_number_id=phone_number_id, messages=messages))

    return batches


def parse_message(raw: Any) -> Optional[InboundMessage]:
    """
    Convert one raw message object. Returns None when there is no sender.
    """
    if not isinstance(raw, dict):
        return None
    sender = _as_str(raw.get("from"))
    if not sender:
        return None

    message_type = _as_str(raw.get("type")) or "unknown"

    if message_type == "text":
        text = raw.get("text")
        body = _as_str(text.get("body")) if isinstance(text, dict) else None
        return TextMessage(sender=sender, body=body or "")

    if message_type in MEDIA_TYPES:
        media = _parse_media(sender, message_type, raw.get(message_type))
        if media is not None:
            return media

    return UnsupportedMessage(sender=sender, message_type=message_type)


def classify_media(message_type: str, mime_type: str) -> Optional[str]:
    """
    Map a WhatsApp type plus MIME onto "image" / "video".

    Documents are generic attachments: they count as media only when their
    declared MIME type is image/* or video/*.
    """
    if message_type == "document":
        if mime_type.startswith("image/"):
            return "image"
        if mime_type.startswith("video/"):
            return "video"
        return None
    if message_type in DEFAULT_MIME:
        return message_type
    return None


def _parse_media(sender: str, message_type: str, payload: Any) -> Optional[MediaMessage]:
    if not isinstance(payload, dict):
        return None

    media_id = _as_str(payload.get("id"))
    if not media_id:
        return None

    mime_type = (_as_str(payload.get("mime_type")) or "").strip().lower()
    kind = classify_media(message_type, mime_type)
    if kind is None:
        return None

    return MediaMessage(
        kind=kind,
        sender=sender,
        media_id=media_id,
        mime_type=mime_type or DEFAULT_MIME[kind],
        caption=_as_str(payload.get("caption")),
        filename=_as_str(payload.get("filename")),
    )
