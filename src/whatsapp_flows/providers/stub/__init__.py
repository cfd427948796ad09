"""Stub WhatsApp provider for development."""

from whatsapp_flows.providers.stub.client import StubWhatsAppProvider

__all__ = ["StubWhatsAppProvider"]
