"""
Meta Cloud API WhatsApp Provider

Production provider for WhatsApp Business Cloud API.
Implements the Graph API v18.0+ for sending messages, resolving media
and parsing webhook changes.
"""

import logging
from typing import Any

import httpx

from whatsapp_flows.providers.base import (
    MEDIA_MESSAGE_TYPES,
    DeliveryStatus,
    InboundMessage,
    MessageType,
    ParsedChange,
    ProviderError,
    ProviderResponse,
    TemplateStatusUpdate,
    WhatsAppProvider,
    parse_unix_timestamp,
)
from whatsapp_flows.providers.meta_cloud.webhook import validate_signature

logger = logging.getLogger(__name__)

# Meta Graph API configuration
GRAPH_API_VERSION = "v18.0"
GRAPH_API_BASE_URL = f"https://graph.facebook.com/{GRAPH_API_VERSION}"

TEMPLATE_STATUS_FIELD = "message_template_status_update"


class MetaCloudWhatsAppProvider(WhatsAppProvider):
    """
    Meta Cloud API provider for WhatsApp Business.

    Uses the Graph API to send messages and handle webhooks.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        base_url: str = GRAPH_API_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _make_request(
        self,
        method: str,
        url: str,
        access_token: str,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated API request."""
        client = await self._get_client()

        headers = {"Authorization": f"Bearer {access_token}"}

        try:
            if method.upper() == "GET":
                response = await client.get(url, headers=headers)
            else:
                response = await client.post(url, headers=headers, json=json_data)
        except httpx.RequestError as e:
            logger.error(f"HTTP request failed: {e}")
            raise ProviderError(
                message=f"HTTP request failed: {e}",
                code="HTTP_ERROR",
                retryable=True,
            ) from e

        try:
            response_data = response.json()
        except ValueError:
            response_data = {}

        if response.status_code >= 400:
            error = response_data.get("error", {}) if isinstance(response_data, dict) else {}
            raise ProviderError(
                message=error.get("message", f"HTTP {response.status_code}"),
                code=str(error.get("code", response.status_code)),
                details=error,
                retryable=response.status_code >= 500,
            )

        return response_data

    async def send_text(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        text: str,
        reply_to: str | None = None,
        preview_url: bool = False,
    ) -> ProviderResponse:
        """Send a text message via Graph API."""
        url = f"{self.base_url}/{phone_number_id}/messages"

        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {
                "preview_url": preview_url,
                "body": text,
            },
        }

        if reply_to:
            payload["context"] = {"message_id": reply_to}

        try:
            response = await self._make_request("POST", url, access_token, payload)
            message_id = (response.get("messages") or [{}])[0].get("id")

            logger.info(
                "Sent text message via Meta API",
                extra={"to": to, "message_id": message_id},
            )

            return ProviderResponse(
                success=True,
                message_id=message_id,
                raw_response=response,
            )

        except ProviderError as e:
            logger.error(f"Failed to send text message: {e}")
            return ProviderResponse(
                success=False,
                error_code=e.code,
                error_message=str(e),
                raw_response=e.details,
            )

    async def get_media_url(
        self,
        media_id: str,
        access_token: str,
    ) -> str | None:
        """Get the download URL for a media file."""
        url = f"{self.base_url}/{media_id}"

        try:
            response = await self._make_request("GET", url, access_token)
            return response.get("url")
        except ProviderError as e:
            logger.warning(f"Failed to get media URL: {e}")
            return None

    def validate_webhook_signature(
        self,
        payload: bytes,
        signature: str,
        app_secret: str,
    ) -> bool:
        """
        Validate webhook signature using HMAC-SHA256.

        The signature header format: sha256=<signature>
        """
        is_valid = validate_signature(payload, signature, app_secret)

        if not is_valid:
            logger.warning("Webhook signature validation failed")

        return is_valid

    def parse_change(
        self,
        entry_id: str,
        value: dict[str, Any],
    ) -> ParsedChange:
        """
        Parse one change value from a Meta webhook.

        Change value format:
        {
            "messaging_product": "whatsapp",
            "metadata": {
                "display_phone_number": "...",
                "phone_number_id": "..."
            },
            "contacts": [...],
            "messages": [...],
            "statuses": [...],
            "message_template_status_update": {...}
        }

        Template lifecycle changes may also arrive with the update fields
        directly on the value (`event`, `message_template_name`, ...).
        """
        metadata = value.get("metadata") or {}
        phone_number_id = metadata.get("phone_number_id")
        parsed = ParsedChange(
            entry_id=entry_id,
            phone_number_id=str(phone_number_id) if phone_number_id else None,
        )

        contacts = value.get("contacts") or []

        for msg_data in value.get("messages") or []:
            msg = self._parse_message(entry_id, metadata, contacts, msg_data)
            if msg:
                parsed.messages.append(msg)

        for status_data in value.get("statuses") or []:
            status = self._parse_status(status_data)
            if status:
                parsed.statuses.append(status)

        template_data = value.get(TEMPLATE_STATUS_FIELD)
        if template_data is None and "event" in value and "message_template_name" in value:
            template_data = value
        if template_data:
            update = self._parse_template_update(template_data)
            if update:
                parsed.template_updates.append(update)

        return parsed

    def _parse_message(
        self,
        waba_id: str,
        metadata: dict[str, Any],
        contacts: list[dict[str, Any]],
        msg_data: dict[str, Any],
    ) -> InboundMessage | None:
        """Parse a single message from webhook."""
        try:
            msg_type_str = msg_data.get("type", "unknown")
            msg_type = self._map_message_type(msg_type_str)

            contact_name = self._contact_name(contacts, msg_data.get("from"))

            msg = InboundMessage(
                message_id=msg_data.get("id", ""),
                from_phone=msg_data.get("from", ""),
                phone_number_id=metadata.get("phone_number_id", ""),
                waba_id=waba_id,
                message_type=msg_type,
                timestamp=parse_unix_timestamp(msg_data.get("timestamp")),
                contact_name=contact_name,
                context_message_id=(msg_data.get("context") or {}).get("id"),
                raw_payload=msg_data,
            )

            if msg_type == MessageType.TEXT:
                msg.text = (msg_data.get("text") or {}).get("body")

            elif msg_type in MEDIA_MESSAGE_TYPES:
                media_data = msg_data.get(msg_type_str) or {}
                msg.media_id = media_data.get("id")
                msg.media_mime_type = media_data.get("mime_type")
                msg.caption = media_data.get("caption")
                msg.media_filename = media_data.get("filename")

            elif msg_type == MessageType.INTERACTIVE:
                interactive = msg_data.get("interactive") or {}
                reply = interactive.get(interactive.get("type", "")) or {}
                msg.button_payload = reply.get("id")
                msg.button_text = reply.get("title")

            elif msg_type == MessageType.BUTTON:
                button = msg_data.get("button") or {}
                msg.button_payload = button.get("payload")
                msg.button_text = button.get("text")

            elif msg_type == MessageType.LOCATION:
                location = msg_data.get("location") or {}
                msg.location_latitude = location.get("latitude")
                msg.location_longitude = location.get("longitude")
                msg.location_name = location.get("name")
                msg.location_address = location.get("address")

            elif msg_type == MessageType.REACTION:
                reaction = msg_data.get("reaction") or {}
                msg.reaction_emoji = reaction.get("emoji")
                msg.reaction_message_id = reaction.get("message_id")

            return msg

        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Failed to parse message: {e}", exc_info=True)
            return None

    def _parse_status(self, status_data: dict[str, Any]) -> DeliveryStatus | None:
        """Parse a single status update from webhook."""
        try:
            error_code = None
            error_message = None
            errors = status_data.get("errors") or []
            if errors:
                error = errors[0]
                error_code = str(error.get("code", ""))
                error_message = error.get("message") or error.get("title")

            return DeliveryStatus(
                message_id=status_data.get("id", ""),
                recipient_phone=status_data.get("recipient_id", ""),
                status=status_data.get("status", ""),
                timestamp=parse_unix_timestamp(status_data.get("timestamp")),
                error_code=error_code,
                error_message=error_message,
                conversation_id=(status_data.get("conversation") or {}).get("id"),
                raw_payload=status_data,
            )

        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Failed to parse status: {e}", exc_info=True)
            return None

    def _parse_template_update(
        self, data: dict[str, Any]
    ) -> TemplateStatusUpdate | None:
        """Parse a message template lifecycle notification."""
        name = data.get("message_template_name")
        event = data.get("event")
        if not name or not event:
            logger.warning("Template status update without name or event", extra={"data": data})
            return None

        template_id = data.get("message_template_id")
        return TemplateStatusUpdate(
            template_name=name,
            language=data.get("message_template_language", ""),
            event=str(event).upper(),
            template_id=str(template_id) if template_id is not None else None,
            reason=data.get("reason"),
            raw_payload=data,
        )

    @staticmethod
    def _contact_name(contacts: list[dict[str, Any]], wa_id: str | None) -> str | None:
        """Pick the sender's profile name, matching on wa_id when present."""
        for contact in contacts:
            if wa_id and contact.get("wa_id") not in (None, wa_id):
                continue
            name = (contact.get("profile") or {}).get("name")
            if name:
                return name
        return None

    def _map_message_type(self, type_str: str) -> MessageType:
        """Map Meta message type string to MessageType enum."""
        try:
            return MessageType(type_str)
        except ValueError:
            return MessageType.UNKNOWN
