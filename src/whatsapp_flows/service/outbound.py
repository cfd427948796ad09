"""
Outbound Sender

Sends flow-generated messages through the provider and records them as
outbound messages on the conversation.
"""

import logging

from sqlalchemy.orm import Session

from whatsapp_flows.persistence.models import (
    Contact,
    Conversation,
    Message,
    MessageDirection,
    MessageStatus,
)
from whatsapp_flows.persistence.repo import WhatsAppRepository
from whatsapp_flows.providers.base import WhatsAppProvider
from whatsapp_flows.routing.tenant_resolver import TenantContext

logger = logging.getLogger(__name__)


class OutboundSender:
    """Tenant-bound sender used by the flow engine."""

    def __init__(self, db: Session, provider: WhatsAppProvider, tenant: TenantContext):
        self.db = db
        self.repo = WhatsAppRepository(db)
        self.provider = provider
        self.tenant = tenant

    async def send_text(self, conversation: Conversation, contact: Contact, text: str) -> Message:
        """
        Send a text message and persist it.

        A failed send is recorded with status failed; it is not raised.
        """
        response = await self.provider.send_text(
            phone_number_id=self.tenant.phone_number_id,
            access_token=self.tenant.access_token or "",
            to=contact.phone,
            text=text,
        )

        if response.success:
            status = MessageStatus.SENT
        else:
            status = MessageStatus.FAILED
            logger.error(
                f"Failed to send flow message: {response.error_message}",
                extra={
                    "tenant_id": str(self.tenant.tenant_id),
                    "conversation_id": str(conversation.id),
                    "error_code": response.error_code,
                },
            )

        message = self.repo.create_message(
            tenant_id=self.tenant.tenant_id,
            conversation_id=conversation.id,
            direction=MessageDirection.OUTBOUND,
            message_type="text",
            content={"type": "text", "text": text},
            provider_message_id=response.message_id,
            status=status,
            error_code=response.error_code,
            error_message=response.error_message,
        )
        self.repo.update_conversation_last_message(conversation, text, MessageDirection.OUTBOUND)
        return message
