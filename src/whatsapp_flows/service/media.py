"""
Media Resolver

Fetches a temporary download URL for an attachment, bounded by a
timeout. A slow provider lookup is abandoned and the message is stored
without a URL.
"""

import asyncio
import logging
from uuid import UUID

from whatsapp_flows.providers.base import ProviderError, WhatsAppProvider

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TIMEOUT_SECONDS = 20.0


class MediaResolver:
    """Resolves media ids to URLs within a fixed time budget."""

    def __init__(
        self,
        provider: WhatsAppProvider,
        timeout: float = DEFAULT_MEDIA_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.timeout = timeout

    async def resolve(
        self,
        media_id: str,
        access_token: str | None,
        tenant_id: UUID | None = None,
    ) -> str | None:
        """
        Get the media URL, or None if the lookup fails or times out.

        Args:
            media_id: Attachment reference from the inbound message
            access_token: Tenant's Graph API token
            tenant_id: For logging

        Returns:
            Download URL, None when unavailable
        """
        try:
            return await asyncio.wait_for(
                self.provider.get_media_url(media_id, access_token or ""),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Media URL lookup timed out after {self.timeout}s",
                extra={"media_id": media_id, "tenant_id": str(tenant_id)},
            )
        except ProviderError as e:
            logger.warning(
                f"Media URL lookup failed: {e}",
                extra={"media_id": media_id, "tenant_id": str(tenant_id), "error_code": e.code},
            )
        return None
