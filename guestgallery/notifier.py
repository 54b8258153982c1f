"""
WhatsApp reply sender.

Replies are best effort: a failed send is logged and dropped. By the time
most replies go out the upload is already committed.
"""

import logging

import httpx

from guestgallery.metrics import record_reply

logger = logging.getLogger(__name__)


class Notifier:
    """Sends plain text replies through the Cloud API messages endpoint."""

    def __init__(self, http_client: httpx.AsyncClient, graph_base: str, access_token: str) -> None:
        self.http_client = http_client
        self.graph_base = graph_base.rstrip("/")
        self.access_token = access_token

    async def send(self, phone_number_id: str, to: str, text: str) -> bool:
        """
        Send `text` to `to` from the business number `phone_number_id`.

        Returns:
            True if the API accepted the message, False otherwise. Never raises.
        """
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": text},
        }
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

        try:
            response = await self.http_client.post(
                f"{self.graph_base}/{phone_number_id}/messages",
                json=payload,
                headers=headers,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(
                f"Reply send failed: {e}",
                extra={"to": to, "phone_number_id": phone_number_id},
            )
            record_reply("failed")
            return False

        if not response.is_success:
            logger.error(
                f"WhatsApp API error: {response.status_code} - {response.text}",
                extra={"to": to, "phone_number_id": phone_number_id, "status_code": response.status_code},
            )
            record_reply("failed")
            return False

        logger.debug(f"Reply sent to {to}")
        record_reply("sent")
        return True
