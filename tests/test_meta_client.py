"""
Tests for the Meta Cloud API client (HTTP mocked with httpx.MockTransport).
"""

import asyncio
import json

import httpx

from whatsapp_flows.providers import build_provider
from whatsapp_flows.providers.meta_cloud import MetaCloudWhatsAppProvider
from whatsapp_flows.providers.stub import StubWhatsAppProvider


def _provider(handler):
    return MetaCloudWhatsAppProvider(
        base_url="https://graph.test/v18.0",
        transport=httpx.MockTransport(handler),
    )


class TestSendText:
    """Tests for outbound text messages."""

    def test_send_text_success(self):
        """Test a successful send returns the provider message id."""
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"messages": [{"id": "wamid.OUT1"}]})

        provider = _provider(handler)

        response = asyncio.run(provider.send_text("PHONE_123", "token", "5511888888888", "Olá!"))

        assert response.success is True
        assert response.message_id == "wamid.OUT1"
        assert captured["url"] == "https://graph.test/v18.0/PHONE_123/messages"
        assert captured["auth"] == "Bearer token"
        assert captured["body"]["to"] == "5511888888888"
        assert captured["body"]["text"]["body"] == "Olá!"
        assert "context" not in captured["body"]

    def test_send_text_with_reply_context(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"messages": [{"id": "wamid.OUT2"}]})

        provider = _provider(handler)

        asyncio.run(provider.send_text("PHONE_123", "token", "5511888888888", "ok", reply_to="wamid.IN"))

        assert captured["body"]["context"] == {"message_id": "wamid.IN"}

    def test_send_text_api_error(self):
        """Test an API error is reported as a failed response, not raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={"error": {"message": "Invalid parameter", "code": 100}},
            )

        provider = _provider(handler)

        response = asyncio.run(provider.send_text("PHONE_123", "token", "5511888888888", "x"))

        assert response.success is False
        assert response.error_code == "100"
        assert "Invalid parameter" in response.error_message

    def test_send_text_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = _provider(handler)

        response = asyncio.run(provider.send_text("PHONE_123", "token", "5511888888888", "x"))

        assert response.success is False
        assert response.error_code == "HTTP_ERROR"


class TestMediaUrl:
    """Tests for media URL lookups."""

    def test_get_media_url(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v18.0/MEDIA_1"
            return httpx.Response(200, json={"url": "https://cdn.test/media/1"})

        provider = _provider(handler)

        assert asyncio.run(provider.get_media_url("MEDIA_1", "token")) == "https://cdn.test/media/1"

    def test_get_media_url_failure_returns_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="upstream error")

        provider = _provider(handler)

        assert asyncio.run(provider.get_media_url("MEDIA_1", "token")) is None


class TestBuildProvider:
    """Tests for provider selection."""

    def test_build_stub(self):
        assert isinstance(build_provider("stub"), StubWhatsAppProvider)

    def test_build_meta(self):
        provider = build_provider("meta", timeout=5.0)

        assert isinstance(provider, MetaCloudWhatsAppProvider)
        assert provider.timeout == 5.0

    def test_unknown_provider(self):
        import pytest

        with pytest.raises(ValueError):
            build_provider("evolution")
