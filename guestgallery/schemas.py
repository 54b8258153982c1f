"""
Pydantic schemas for inbound messages and API responses.

This module contains:
- The inbound message variants produced by inbound.parse_webhook
- Response models for the HTTP API
"""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Inbound Message Variants
# =============================================================================

class TextMessage(BaseModel):
    """A plain text message; may carry an ALBUM command."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    sender: str = Field(..., description="Sender phone number (WhatsApp 'from')")
    body: str = Field("", description="Message text, untrimmed")


class MediaMessage(BaseModel):
    """
    An image or video attachment.

    Documents carrying image/* or video/* are converted to this type with
    the matching kind before they reach the pipeline.
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["image", "video"]
    sender: str
    media_id: str = Field(..., min_length=1, description="Opaque Graph API media id")
    mime_type: str
    caption: Optional[str] = None
    filename: Optional[str] = None


class UnsupportedMessage(BaseModel):
    """Anything else: audio, stickers, locations, non-media documents..."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["unsupported"] = "unsupported"
    sender: str
    message_type: str = Field(..., description="Raw WhatsApp message type")


InboundMessage = Union[TextMessage, MediaMessage, UnsupportedMessage]


class ChannelBatch(BaseModel):
    """Messages delivered to one business phone number."""
    phone_number_id: str
    messages: list[InboundMessage] = Field(default_factory=list)


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookAck(BaseModel):
    """Response body for every accepted webhook delivery."""
    ok: bool = True


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class GalleryItem(BaseModel):
    """A single media entry in the gallery listing."""
    id: str
    url: str = Field(..., description="Fetchable URL for the stored object")
    created_at: datetime
    mime: Optional[str] = None


class GalleryResponse(BaseModel):
    """Response model for GET /gallery; newest items first."""
    items: list[GalleryItem] = Field(default_factory=list)
