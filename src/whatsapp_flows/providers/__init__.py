"""
WhatsApp Providers

Provider implementations for different WhatsApp APIs.
Supports Meta Cloud API (production) and Stub (development).
"""

from whatsapp_flows.providers.base import (
    DeliveryStatus,
    InboundMessage,
    MessageType,
    ParsedChange,
    ProviderError,
    ProviderResponse,
    TemplateStatusUpdate,
    WhatsAppProvider,
)


def build_provider(name: str, timeout: float = 30.0) -> WhatsAppProvider:
    """
    Create the provider selected by the WHATSAPP_PROVIDER setting.

    Args:
        name: "meta" or "stub"
        timeout: Graph API timeout in seconds (meta only)
    """
    if name == "stub":
        from whatsapp_flows.providers.stub import StubWhatsAppProvider

        return StubWhatsAppProvider()
    if name == "meta":
        from whatsapp_flows.providers.meta_cloud import MetaCloudWhatsAppProvider

        return MetaCloudWhatsAppProvider(timeout=timeout)
    raise ValueError(f"Unknown WhatsApp provider: {name}")


__all__ = [
    "DeliveryStatus",
    "InboundMessage",
    "MessageType",
    "ParsedChange",
    "ProviderError",
    "ProviderResponse",
    "TemplateStatusUpdate",
    "WhatsAppProvider",
    "build_provider",
]
