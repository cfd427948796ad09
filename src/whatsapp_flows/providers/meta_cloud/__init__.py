"""Meta Cloud API WhatsApp provider."""

from whatsapp_flows.providers.meta_cloud.client import MetaCloudWhatsAppProvider
from whatsapp_flows.providers.meta_cloud.webhook import (
    compute_signature,
    extract_phone_number_id,
    extract_waba_id,
    validate_signature,
)

__all__ = [
    "MetaCloudWhatsAppProvider",
    "compute_signature",
    "extract_phone_number_id",
    "extract_waba_id",
    "validate_signature",
]
