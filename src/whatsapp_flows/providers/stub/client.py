"""
Stub WhatsApp Provider

Development provider that logs all operations without making real API calls.
Useful for local development and testing.
"""

import asyncio
import logging
from typing import Any
from uuid import uuid4

from whatsapp_flows.providers.base import (
    ParsedChange,
    ProviderResponse,
    WhatsAppProvider,
    utcnow,
)
from whatsapp_flows.providers.meta_cloud.client import MetaCloudWhatsAppProvider
from whatsapp_flows.providers.meta_cloud.webhook import validate_signature

logger = logging.getLogger(__name__)


class StubWhatsAppProvider(WhatsAppProvider):
    """
    Stub provider for development and testing.

    - Logs and records all outbound messages
    - Accepts any webhook signature (unless verify_signatures is set)
    - Generates fake message IDs and media URLs
    - Can be configured to fail sends or delay media lookups
    """

    def __init__(
        self,
        fail_sends: bool = False,
        media_delay: float = 0.0,
        verify_signatures: bool = False,
    ):
        self.fail_sends = fail_sends
        self.media_delay = media_delay
        self.verify_signatures = verify_signatures
        self.sent_messages: list[dict[str, Any]] = []
        self.media_requests: list[str] = []
        # Payloads use the Meta wire format, so parsing is shared with production
        self._parser = MetaCloudWhatsAppProvider()

    async def send_text(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        text: str,
        reply_to: str | None = None,
        preview_url: bool = False,
    ) -> ProviderResponse:
        """Log and return success for text message."""
        message_id = f"stub_msg_{uuid4().hex[:16]}"

        message_data = {
            "type": "text",
            "phone_number_id": phone_number_id,
            "to": to,
            "text": text,
            "reply_to": reply_to,
            "message_id": message_id,
            "timestamp": utcnow().isoformat(),
        }

        logger.info(
            "[STUB] Sending text message",
            extra={
                "to": to,
                "text": text[:100] + "..." if len(text) > 100 else text,
                "message_id": message_id,
            },
        )

        if self.fail_sends:
            return ProviderResponse(
                success=False,
                error_code="STUB_SIMULATED_FAILURE",
                error_message="Simulated failure for testing",
            )

        self.sent_messages.append(message_data)

        return ProviderResponse(
            success=True,
            message_id=message_id,
            raw_response={"stub": True, "message_id": message_id},
        )

    async def get_media_url(
        self,
        media_id: str,
        access_token: str,
    ) -> str | None:
        """Return a fake URL for media, optionally after a delay."""
        logger.debug(f"[STUB] Getting media URL for: {media_id}")
        self.media_requests.append(media_id)
        if self.media_delay:
            await asyncio.sleep(self.media_delay)
        return f"https://stub.whatsapp.local/media/{media_id}"

    def validate_webhook_signature(
        self,
        payload: bytes,
        signature: str,
        app_secret: str,
    ) -> bool:
        """Accept signatures in stub mode unless verification is enabled."""
        if self.verify_signatures:
            return validate_signature(payload, signature, app_secret)
        logger.debug("[STUB] Accepting webhook signature (stub mode)")
        return True

    def parse_change(
        self,
        entry_id: str,
        value: dict[str, Any],
    ) -> ParsedChange:
        """Parse a change using the production Meta parser."""
        return self._parser.parse_change(entry_id, value)

    def get_sent_messages(self) -> list[dict[str, Any]]:
        """Get all sent messages (for testing)."""
        return self.sent_messages.copy()

    def clear_sent_messages(self) -> None:
        """Clear sent messages history (for testing)."""
        self.sent_messages.clear()
