"""
WhatsApp Flows Repository

Repository pattern for engine database operations.
Provides the queries and mutations used by the webhook pipeline.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from whatsapp_flows.persistence.models import (
    UNKNOWN_CONTACT_NAME,
    BindingStatus,
    CannedResponse,
    Contact,
    Conversation,
    ConversationStatus,
    Flow,
    FlowStatus,
    Message,
    MessageDirection,
    MessageStatus,
    MessageTemplate,
    TemplateStatus,
    WhatsAppTenantBinding,
)

OPEN_CONVERSATION_STATUSES = (ConversationStatus.OPEN.value, ConversationStatus.PENDING.value)


def as_uuid(value: UUID | str | None) -> UUID | None:
    """Coerce a UUID-ish value, returning None when it is not a valid UUID."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class WhatsAppRepository:
    """Repository for engine database operations."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Tenant Bindings
    # =========================================================================

    def get_binding_by_phone_number_id(self, phone_number_id: str) -> WhatsAppTenantBinding | None:
        """Get tenant binding by WhatsApp phone number ID."""
        return (
            self.db.query(WhatsAppTenantBinding)
            .filter(WhatsAppTenantBinding.phone_number_id == phone_number_id)
            .first()
        )

    def get_binding_by_waba_id(self, waba_id: str) -> WhatsAppTenantBinding | None:
        """Get tenant binding by WhatsApp Business Account ID."""
        return (
            self.db.query(WhatsAppTenantBinding)
            .filter(WhatsAppTenantBinding.waba_id == waba_id)
            .order_by(WhatsAppTenantBinding.created_at, WhatsAppTenantBinding.id)
            .first()
        )

    def get_binding_for_tenant(self, tenant_id: UUID) -> WhatsAppTenantBinding | None:
        """Get a tenant's binding, preferring a connected one."""
        bindings = (
            self.db.query(WhatsAppTenantBinding)
            .filter(WhatsAppTenantBinding.tenant_id == tenant_id)
            .order_by(WhatsAppTenantBinding.created_at, WhatsAppTenantBinding.id)
            .all()
        )
        for binding in bindings:
            if binding.status == BindingStatus.CONNECTED.value:
                return binding
        return bindings[0] if bindings else None

    def create_binding(
        self,
        tenant_id: UUID,
        phone_number_id: str,
        display_number: str,
        waba_id: str | None = None,
        access_token_encrypted: str | None = None,
        app_secret_encrypted: str | None = None,
        webhook_url: str | None = None,
        status: BindingStatus = BindingStatus.CONNECTED,
        config: dict[str, Any] | None = None,
    ) -> WhatsAppTenantBinding:
        """Create a new tenant binding."""
        binding = WhatsAppTenantBinding(
            tenant_id=tenant_id,
            phone_number_id=phone_number_id,
            waba_id=waba_id,
            display_number=display_number,
            access_token_encrypted=access_token_encrypted,
            app_secret_encrypted=app_secret_encrypted,
            webhook_url=webhook_url,
            status=status.value,
            config=config or {},
        )
        self.db.add(binding)
        return binding

    # =========================================================================
    # Contacts
    # =========================================================================

    def get_contact_by_phone(self, tenant_id: UUID, phone: str) -> Contact | None:
        """Get contact by exact phone number within a tenant."""
        return (
            self.db.query(Contact)
            .filter(Contact.tenant_id == tenant_id, Contact.phone == phone)
            .first()
        )

    def get_contact(self, contact_id: UUID) -> Contact | None:
        return self.db.get(Contact, contact_id)

    def create_contact(
        self,
        tenant_id: UUID,
        phone: str,
        name: str | None = None,
    ) -> Contact:
        """Create a new contact (lead)."""
        contact = Contact(
            tenant_id=tenant_id,
            phone=phone,
            name=name or UNKNOWN_CONTACT_NAME,
            contact_type="lead",
            tags=[],
            flow_data={},
        )
        self.db.add(contact)
        self.db.flush()
        return contact

    def set_contact_flow_variable(self, contact: Contact, name: str, value: Any) -> None:
        """Store a flow variable (reassigned so the JSON change is tracked)."""
        contact.flow_data = {**(contact.flow_data or {}), name: value}

    def add_contact_tag(self, contact: Contact, tag: str) -> bool:
        """Add a tag to a contact. Returns False if it was already present."""
        tags = list(contact.tags or [])
        if tag in tags:
            return False
        contact.tags = tags + [tag]
        return True

    def remove_contact_tag(self, contact: Contact, tag: str) -> bool:
        """Remove a tag from a contact. Returns False if it was absent."""
        tags = list(contact.tags or [])
        if tag not in tags:
            return False
        contact.tags = [t for t in tags if t != tag]
        return True

    # =========================================================================
    # Conversations
    # =========================================================================

    def get_open_conversations(self, tenant_id: UUID, contact_id: UUID) -> list[Conversation]:
        """Get the contact's conversations with status open or pending."""
        return (
            self.db.query(Conversation)
            .filter(
                Conversation.tenant_id == tenant_id,
                Conversation.contact_id == contact_id,
                Conversation.status.in_(OPEN_CONVERSATION_STATUSES),
            )
            .order_by(Conversation.created_at, Conversation.id)
            .all()
        )

    def get_conversation_by_id(self, conversation_id: UUID) -> Conversation | None:
        """Get conversation by ID."""
        return self.db.get(Conversation, conversation_id)

    def create_conversation(self, tenant_id: UUID, contact_id: UUID) -> Conversation:
        """Create a new open conversation."""
        conversation = Conversation(
            tenant_id=tenant_id,
            contact_id=contact_id,
            status=ConversationStatus.OPEN.value,
            unread_count=0,
        )
        self.db.add(conversation)
        self.db.flush()
        return conversation

    def update_conversation_last_message(
        self,
        conversation: Conversation,
        summary: str,
        direction: MessageDirection,
        timestamp: datetime | None = None,
    ) -> None:
        """Update conversation summary fields after a message."""
        conversation.last_message = summary
        conversation.last_message_at = timestamp or datetime.now(timezone.utc)
        if direction == MessageDirection.INBOUND:
            conversation.unread_count = (conversation.unread_count or 0) + 1

    def set_flow_cursor(
        self,
        conversation: Conversation,
        flow_id: UUID | None,
        step_id: str | None,
    ) -> None:
        """Write the flow cursor; a missing flow or step clears both."""
        if flow_id is None or step_id is None:
            conversation.active_flow_id = None
            conversation.current_step_id = None
        else:
            conversation.active_flow_id = flow_id
            conversation.current_step_id = step_id

    def list_conversations(
        self,
        tenant_id: UUID,
        status: ConversationStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Conversation]:
        """List conversations for a tenant."""
        query = self.db.query(Conversation).filter(Conversation.tenant_id == tenant_id)

        if status:
            query = query.filter(Conversation.status == status.value)

        return (
            query.order_by(Conversation.last_message_at.desc(), Conversation.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    # =========================================================================
    # Messages
    # =========================================================================

    def get_message_by_provider_id(self, provider_message_id: str) -> Message | None:
        """Get message by provider message ID across all tenants."""
        return (
            self.db.query(Message)
            .filter(Message.provider_message_id == provider_message_id)
            .first()
        )

    def is_message_processed(self, provider_message_id: str) -> bool:
        """Check if a message has already been stored (idempotency)."""
        stmt = (
            select(Message.id)
            .where(Message.provider_message_id == provider_message_id)
            .limit(1)
        )
        return self.db.execute(stmt).first() is not None

    def create_message(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        direction: MessageDirection,
        message_type: str,
        content: dict[str, Any] | None = None,
        provider_message_id: str | None = None,
        status: MessageStatus = MessageStatus.PENDING,
        timestamp: datetime | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> Message:
        """Create a new message record."""
        message = Message(
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            direction=direction.value,
            message_type=message_type,
            content=content or {},
            provider_message_id=provider_message_id,
            status=status.value,
            timestamp=timestamp or datetime.now(timezone.utc),
            error_code=error_code,
            error_message=error_message,
        )
        self.db.add(message)
        return message

    def update_message_status(
        self,
        message: Message,
        status: MessageStatus,
        timestamp: datetime | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Update message status."""
        message.status = status.value
        message.status_updated_at = timestamp or datetime.now(timezone.utc)
        if error_code:
            message.error_code = error_code
        if error_message:
            message.error_message = error_message

    def get_conversation_messages(
        self,
        conversation_id: UUID,
        limit: int = 50,
    ) -> list[Message]:
        """Get a conversation's messages, oldest first."""
        return (
            self.db.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.timestamp, Message.created_at)
            .limit(limit)
            .all()
        )

    # =========================================================================
    # Flows and canned responses
    # =========================================================================

    def list_published_flows(self, tenant_id: UUID) -> list[Flow]:
        """Published flows in trigger enumeration order (creation, then id)."""
        return (
            self.db.query(Flow)
            .filter(Flow.tenant_id == tenant_id, Flow.status == FlowStatus.PUBLISHED.value)
            .order_by(Flow.created_at, Flow.id)
            .all()
        )

    def get_flow(self, tenant_id: UUID, flow_id: UUID) -> Flow | None:
        """Get a tenant's flow by ID."""
        return (
            self.db.query(Flow)
            .filter(Flow.tenant_id == tenant_id, Flow.id == flow_id)
            .first()
        )

    def create_flow(
        self,
        tenant_id: UUID,
        name: str,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, Any]],
        status: FlowStatus = FlowStatus.PUBLISHED,
        created_at: datetime | None = None,
    ) -> Flow:
        """Create a flow (used by tooling and tests; authoring lives elsewhere)."""
        flow = Flow(
            tenant_id=tenant_id,
            name=name,
            status=status.value,
            nodes=nodes,
            edges=edges,
        )
        if created_at is not None:
            flow.created_at = created_at
        self.db.add(flow)
        self.db.flush()
        return flow

    def get_canned_response(self, tenant_id: UUID, response_id: UUID | str) -> CannedResponse | None:
        """Get a tenant's canned response by ID."""
        response_uuid = as_uuid(response_id)
        if response_uuid is None:
            return None
        return (
            self.db.query(CannedResponse)
            .filter(CannedResponse.tenant_id == tenant_id, CannedResponse.id == response_uuid)
            .first()
        )

    def create_canned_response(self, tenant_id: UUID, name: str, text: str) -> CannedResponse:
        response = CannedResponse(tenant_id=tenant_id, name=name, text=text)
        self.db.add(response)
        self.db.flush()
        return response

    # =========================================================================
    # Message templates
    # =========================================================================

    def get_template(self, tenant_id: UUID, name: str, language: str) -> MessageTemplate | None:
        """Get a template by its natural key (tenant + name + language)."""
        return (
            self.db.query(MessageTemplate)
            .filter(
                MessageTemplate.tenant_id == tenant_id,
                MessageTemplate.name == name,
                MessageTemplate.language == language,
            )
            .first()
        )

    def create_template(
        self,
        tenant_id: UUID,
        name: str,
        language: str,
        status: TemplateStatus = TemplateStatus.PENDING,
        category: str | None = None,
        provider_template_id: str | None = None,
    ) -> MessageTemplate:
        """Create a local template record."""
        template = MessageTemplate(
            tenant_id=tenant_id,
            name=name,
            language=language,
            status=status.value,
            category=category,
            provider_template_id=provider_template_id,
        )
        self.db.add(template)
        return template
