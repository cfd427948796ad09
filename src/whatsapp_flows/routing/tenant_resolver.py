"""
Tenant Resolver

Resolves the tenant for incoming WhatsApp webhooks using the
phone_number_id mapping (with WABA id and path tenant id fallbacks),
and builds the per-request TenantContext with decrypted secrets.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from whatsapp_flows.persistence.models import WhatsAppTenantBinding
from whatsapp_flows.persistence.repo import WhatsAppRepository, as_uuid

logger = logging.getLogger(__name__)


@dataclass
class TenantContext:
    """
    Tenant-scoped context for one webhook request.

    Built once per request and passed explicitly to every component.
    """

    tenant_id: UUID
    binding: WhatsAppTenantBinding
    phone_number_id: str
    access_token: str | None
    app_secret: str | None
    verify_token: str | None = None


def encrypt_secret(value: str, encryption_key: str | None) -> str:
    """Encrypt a tenant secret for storage (stored as-is without a key)."""
    if not encryption_key:
        return value
    return Fernet(encryption_key.encode()).encrypt(value.encode()).decode()


def decrypt_secret(value: str | None, encryption_key: str | None) -> str | None:
    """
    Decrypt a stored tenant secret.

    Args:
        value: Stored (possibly encrypted) value
        encryption_key: Fernet key for decryption (if encrypted)

    Returns:
        Decrypted value, None if not available or not decryptable
    """
    if not value:
        return None

    # If not actually encrypted (e.g., development), return as-is
    if not encryption_key:
        return value

    try:
        f = Fernet(encryption_key.encode())
        return f.decrypt(value.encode()).decode()
    except (InvalidToken, ValueError) as e:
        logger.error(f"Failed to decrypt tenant secret: {e!r}")
        return None


class TenantResolver:
    """
    Resolves tenant from WhatsApp webhook data.

    "Not found" (no binding, or integration not connected) is returned as
    None and logged at warning level. Storage errors propagate.
    """

    def __init__(self, db: Session, encryption_key: str | None = None):
        self.db = db
        self.repo = WhatsAppRepository(db)
        self.encryption_key = encryption_key

    def resolve_from_phone_number_id(self, phone_number_id: str) -> TenantContext | None:
        """
        Resolve tenant from WhatsApp phone number ID (message/status events).

        Args:
            phone_number_id: WhatsApp Business phone number ID from webhook metadata

        Returns:
            TenantContext if found and connected, None otherwise
        """
        binding = self.repo.get_binding_by_phone_number_id(phone_number_id)
        return self._to_context(binding, "phone_number_id", phone_number_id)

    def resolve_from_waba_id(self, waba_id: str) -> TenantContext | None:
        """
        Resolve tenant from WhatsApp Business Account ID (template events).

        Args:
            waba_id: Entry id of the webhook

        Returns:
            TenantContext if found and connected, None otherwise
        """
        binding = self.repo.get_binding_by_waba_id(waba_id)
        return self._to_context(binding, "waba_id", waba_id)

    def resolve_from_tenant_id(self, tenant_id: UUID | str) -> TenantContext | None:
        """
        Resolve tenant from the tenant id carried in the webhook URL path.

        Args:
            tenant_id: Tenant UUID (string form accepted)

        Returns:
            TenantContext if found and connected, None otherwise
        """
        tenant_uuid = as_uuid(tenant_id)
        if tenant_uuid is None:
            logger.warning(f"Malformed tenant id in webhook path: {tenant_id}")
            return None
        binding = self.repo.get_binding_for_tenant(tenant_uuid)
        return self._to_context(binding, "tenant_id", str(tenant_uuid))

    def resolve(
        self,
        phone_number_id: str | None = None,
        waba_id: str | None = None,
        tenant_id: UUID | str | None = None,
    ) -> TenantContext | None:
        """
        Resolve using the most specific identifier available.

        Order: phone_number_id, then WABA id, then path tenant id.
        """
        if phone_number_id:
            return self.resolve_from_phone_number_id(phone_number_id)
        if waba_id:
            context = self.resolve_from_waba_id(waba_id)
            if context:
                return context
        if tenant_id:
            return self.resolve_from_tenant_id(tenant_id)
        logger.warning("Could not resolve tenant: no identifier in webhook")
        return None

    def _to_context(
        self,
        binding: WhatsAppTenantBinding | None,
        key: str,
        value: str,
    ) -> TenantContext | None:
        if binding is None:
            logger.warning(
                f"No tenant binding found for {key}: {value}",
                extra={key: value},
            )
            return None

        if not binding.is_connected:
            logger.warning(
                f"WhatsApp integration not connected for {key}: {value}",
                extra={key: value, "tenant_id": str(binding.tenant_id), "status": binding.status},
            )
            return None

        logger.debug(
            f"Resolved tenant from {key}",
            extra={key: value, "tenant_id": str(binding.tenant_id)},
        )

        app_secret = decrypt_secret(binding.app_secret_encrypted, self.encryption_key)
        config = binding.config or {}
        return TenantContext(
            tenant_id=binding.tenant_id,
            binding=binding,
            phone_number_id=binding.phone_number_id,
            access_token=decrypt_secret(binding.access_token_encrypted, self.encryption_key),
            app_secret=app_secret,
            verify_token=config.get("verify_token") or app_secret,
        )
