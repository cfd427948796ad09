"""
Tests for bounded media URL resolution.
"""

import asyncio

from whatsapp_flows.providers.base import ProviderError
from whatsapp_flows.providers.stub import StubWhatsAppProvider
from whatsapp_flows.service.media import MediaResolver


class FailingProvider(StubWhatsAppProvider):
    async def get_media_url(self, media_id, access_token):
        raise ProviderError("media gone", code="404")


class TestMediaResolver:
    """Tests for MediaResolver."""

    def test_resolves_url(self):
        resolver = MediaResolver(StubWhatsAppProvider())

        assert asyncio.run(resolver.resolve("MEDIA_1", "token")) == "https://stub.whatsapp.local/media/MEDIA_1"

    def test_timeout_returns_none(self):
        """Test a lookup slower than the budget is abandoned."""
        resolver = MediaResolver(StubWhatsAppProvider(media_delay=1.0), timeout=0.01)

        assert asyncio.run(resolver.resolve("MEDIA_1", "token")) is None

    def test_provider_error_returns_none(self):
        resolver = MediaResolver(FailingProvider())

        assert asyncio.run(resolver.resolve("MEDIA_1", None)) is None
