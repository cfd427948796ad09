"""
Inbound Message Handler

Processes incoming WhatsApp events for a resolved tenant.

Message path:
1. Skips provider message ids already stored (redeliveries)
2. Resolves the media URL (bounded wait)
3. Finds or creates the contact and open conversation
4. Persists the message and conversation summary
5. Runs one flow step and writes back the flow cursor

Status path:
1. Locates the message by provider id
2. Applies the status without ever downgrading it
"""

import logging
from typing import Any

from sqlalchemy.orm import Session

from whatsapp_flows.flows.engine import DEFAULT_MAX_CHAIN_DEPTH, FlowContext, FlowEngine
from whatsapp_flows.persistence.models import MessageDirection, MessageStatus
from whatsapp_flows.persistence.repo import WhatsAppRepository
from whatsapp_flows.providers.base import DeliveryStatus, InboundMessage, WhatsAppProvider
from whatsapp_flows.routing.conversation import ContactConversationResolver
from whatsapp_flows.routing.locks import ConversationLocker
from whatsapp_flows.routing.tenant_resolver import TenantContext
from whatsapp_flows.service.content import build_content, summarize
from whatsapp_flows.service.media import MediaResolver
from whatsapp_flows.service.outbound import OutboundSender

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "sent": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "read": MessageStatus.READ,
    "failed": MessageStatus.FAILED,
}

# Delivery progress; a status only moves forward (failed always applies)
STATUS_RANK = {
    MessageStatus.RECEIVED.value: 0,
    MessageStatus.PENDING.value: 0,
    MessageStatus.SENT.value: 1,
    MessageStatus.DELIVERED.value: 2,
    MessageStatus.READ.value: 3,
    MessageStatus.FAILED.value: 4,
}


class InboundHandler:
    """
    Handles incoming WhatsApp messages and delivery statuses.

    Responsibilities:
    - Persist messages and conversation summaries
    - Maintain contacts and conversation threads
    - Drive flow automation
    - Reconcile delivery statuses
    """

    def __init__(
        self,
        db: Session,
        provider: WhatsAppProvider,
        media_resolver: MediaResolver | None = None,
        locker: ConversationLocker | None = None,
        max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH,
    ):
        self.db = db
        self.provider = provider
        self.repo = WhatsAppRepository(db)
        self.resolver = ContactConversationResolver(db)
        self.media_resolver = media_resolver or MediaResolver(provider)
        self.locker = locker
        self.max_chain_depth = max_chain_depth

    async def handle_message(
        self,
        tenant: TenantContext,
        message: InboundMessage,
    ) -> dict[str, Any]:
        """
        Process a single inbound message.

        Args:
            tenant: Resolved tenant context
            message: Parsed inbound message

        Returns:
            Processing result dict
        """
        if self._already_processed(message):
            return self._skipped(message)

        if message.has_media and not message.media_url:
            message.media_url = await self.media_resolver.resolve(
                message.media_id,
                tenant.access_token,
                tenant_id=tenant.tenant_id,
            )

        if self.locker is None:
            return await self._process_message(tenant, message)

        async with self.locker.hold(tenant.tenant_id, message.from_phone):
            return await self._process_message(tenant, message)

    async def _process_message(
        self,
        tenant: TenantContext,
        message: InboundMessage,
    ) -> dict[str, Any]:
        # Checked again under the lock: a concurrent redelivery may have won
        if self._already_processed(message):
            return self._skipped(message)

        thread = self.resolver.resolve(
            tenant_id=tenant.tenant_id,
            phone=message.from_phone,
            profile_name=message.contact_name,
        )
        contact, conversation = thread.contact, thread.conversation

        self.repo.create_message(
            tenant_id=tenant.tenant_id,
            conversation_id=conversation.id,
            direction=MessageDirection.INBOUND,
            message_type=message.message_type.value,
            content=build_content(message),
            provider_message_id=message.message_id or None,
            status=MessageStatus.RECEIVED,
            timestamp=message.timestamp,
        )
        self.repo.update_conversation_last_message(
            conversation,
            summarize(message),
            MessageDirection.INBOUND,
            message.timestamp,
        )

        engine = FlowEngine(
            self.db,
            OutboundSender(self.db, self.provider, tenant),
            max_chain_depth=self.max_chain_depth,
        )
        step = await engine.run(
            FlowContext(
                tenant_id=tenant.tenant_id,
                contact=contact,
                conversation=conversation,
                text=message.text if message.is_text else None,
            )
        )
        self.repo.set_flow_cursor(conversation, step.flow_id, step.step_id)

        self.db.commit()

        logger.info(
            "Processed inbound message",
            extra={
                "tenant_id": str(tenant.tenant_id),
                "message_id": message.message_id,
                "type": message.message_type.value,
                "conversation_id": str(conversation.id),
                "flow_triggered": step.triggered,
            },
        )

        return {
            "status": "processed",
            "message_id": message.message_id,
            "contact_id": str(contact.id),
            "conversation_id": str(conversation.id),
            "is_new_conversation": thread.conversation_created,
            "flow_triggered": step.triggered,
            "active_flow_id": str(step.flow_id) if step.is_active else None,
            "current_step_id": step.step_id if step.is_active else None,
            "flow_error": step.error,
        }

    def handle_delivery_status(self, status: DeliveryStatus) -> dict[str, Any]:
        """
        Handle a delivery status update.

        The message is looked up by provider id across all tenants. An
        unknown id is routine (e.g. messages sent outside this system)
        and is dropped.

        Args:
            status: Delivery status from provider

        Returns:
            Processing result
        """
        message = self.repo.get_message_by_provider_id(status.message_id)
        if not message:
            logger.info(
                f"No message found for provider ID: {status.message_id}",
                extra={"provider_message_id": status.message_id, "status": status.status},
            )
            return {"status": "skipped", "reason": "message_not_found"}

        new_status = STATUS_MAP.get(status.status)
        if new_status is None:
            logger.warning(f"Ignoring unknown delivery status: {status.status}")
            return {"status": "skipped", "reason": "unknown_status"}

        current_rank = STATUS_RANK.get(message.status, 0)
        if new_status != MessageStatus.FAILED and STATUS_RANK[new_status.value] <= current_rank:
            logger.debug(
                f"Ignoring stale status {new_status.value} (current: {message.status})",
                extra={"provider_message_id": status.message_id},
            )
            return {"status": "skipped", "reason": "stale_status", "current_status": message.status}

        self.repo.update_message_status(
            message,
            new_status,
            timestamp=status.timestamp,
            error_code=status.error_code,
            error_message=status.error_message,
        )

        self.db.commit()

        if new_status == MessageStatus.FAILED:
            logger.warning(
                f"Message delivery failed: {status.error_message}",
                extra={
                    "provider_message_id": status.message_id,
                    "error_code": status.error_code,
                },
            )

        return {
            "status": "updated",
            "message_id": str(message.id),
            "new_status": new_status.value,
        }

    def _already_processed(self, message: InboundMessage) -> bool:
        return bool(message.message_id) and self.repo.is_message_processed(message.message_id)

    def _skipped(self, message: InboundMessage) -> dict[str, Any]:
        logger.debug(f"Message {message.message_id} already processed, skipping")
        return {
            "status": "skipped",
            "reason": "already_processed",
            "message_id": message.message_id,
        }
