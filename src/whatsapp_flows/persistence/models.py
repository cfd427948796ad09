"""
WhatsApp Flows Database Models

Tables owned by the webhook ingestion and flow automation engine.

Tables:
- whatsapp_tenant_bindings: Maps tenants to WhatsApp Business accounts
- contacts: Remote parties (phone numbers) per tenant, with tags and flow variables
- conversations: Message threads per contact, carrying the flow cursor
- messages: All inbound/outbound messages, keyed by provider message ID
- flows: Tenant-authored automation graphs
- canned_responses: Stored replies sent by flow message nodes
- message_templates: Local mirror of provider template lifecycle state
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

WhatsAppBase = declarative_base()

# JSONB on PostgreSQL, generic JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

UNKNOWN_CONTACT_NAME = "Unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BindingStatus(str, Enum):
    """Status of a tenant's WhatsApp integration."""

    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class ConversationStatus(str, Enum):
    """Status of a conversation thread."""

    OPEN = "open"
    PENDING = "pending"
    CLOSED = "closed"


class MessageDirection(str, Enum):
    """Direction of a WhatsApp message."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageStatus(str, Enum):
    """Status of a WhatsApp message."""

    RECEIVED = "received"
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class FlowStatus(str, Enum):
    """Publication status of a flow."""

    DRAFT = "draft"
    PUBLISHED = "published"


class TemplateStatus(str, Enum):
    """Provider lifecycle state of a message template."""

    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"
    DISABLED = "disabled"


class WhatsAppModelMixin:
    """Common fields for all engine models."""

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class WhatsAppTenantBinding(WhatsAppBase, WhatsAppModelMixin):
    """
    Maps a tenant to a WhatsApp Business phone number.

    The phone_number_id is used to route incoming webhooks. Bindings are
    created by onboarding and are read-only to the engine.
    """

    __tablename__ = "whatsapp_tenant_bindings"

    phone_number_id = Column(String(100), nullable=False)  # From Meta API
    waba_id = Column(String(100), nullable=True)  # WhatsApp Business Account ID
    display_number = Column(String(20), nullable=False)  # Human-readable number
    status = Column(String(20), nullable=False, default=BindingStatus.CONNECTED.value)
    webhook_url = Column(String(255), nullable=True)
    access_token_encrypted = Column(Text, nullable=True)  # Fernet token (or plain in dev)
    app_secret_encrypted = Column(Text, nullable=True)  # Signs webhook payloads
    config = Column(JSONType, nullable=False, default=dict)  # e.g. verify_token

    __table_args__ = (
        UniqueConstraint("phone_number_id", name="uq_whatsapp_bindings_phone_number_id"),
        Index("idx_whatsapp_bindings_tenant_status", "tenant_id", "status"),
        Index("idx_whatsapp_bindings_waba", "waba_id"),
    )

    @property
    def is_connected(self) -> bool:
        return self.status == BindingStatus.CONNECTED.value


class Contact(WhatsAppBase, WhatsAppModelMixin):
    """
    A remote party identified by phone number within a tenant.

    flow_data holds flow-local variables written by captureData nodes.
    """

    __tablename__ = "contacts"

    phone = Column(String(20), nullable=False)
    name = Column(String(255), nullable=False, default=UNKNOWN_CONTACT_NAME)
    contact_type = Column(String(20), nullable=False, default="lead")
    tags = Column(JSONType, nullable=False, default=list)
    flow_data = Column(JSONType, nullable=False, default=dict)
    crm_stage = Column(String(50), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "phone", name="uq_contacts_tenant_phone"),
    )

    @property
    def has_placeholder_name(self) -> bool:
        return not self.name or self.name == UNKNOWN_CONTACT_NAME


class Conversation(WhatsAppBase, WhatsAppModelMixin):
    """
    A message thread with a contact.

    (active_flow_id, current_step_id) is the flow cursor; current_step_id
    is only meaningful while active_flow_id is set. `version` guards
    concurrent writers (optimistic concurrency).
    """

    __tablename__ = "conversations"

    contact_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ConversationStatus.OPEN.value)
    last_message = Column(Text, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    unread_count = Column(Integer, nullable=False, default=0)
    active_flow_id = Column(Uuid(as_uuid=True), nullable=True)
    current_step_id = Column(String(100), nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_conversations_tenant_contact_status", "tenant_id", "contact_id", "status"),
        Index("idx_conversations_tenant_last_message", "tenant_id", "last_message_at"),
    )

    @property
    def has_active_flow(self) -> bool:
        return self.active_flow_id is not None and self.current_step_id is not None


class Message(WhatsAppBase, WhatsAppModelMixin):
    """
    Stores all WhatsApp messages (inbound and outbound).

    Provider message IDs are used for idempotency and status lookups.
    """

    __tablename__ = "messages"

    conversation_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    provider_message_id = Column(String(128), nullable=True)
    direction = Column(String(10), nullable=False)
    message_type = Column(String(20), nullable=False, default="text")
    content = Column(JSONType, nullable=False, default=dict)  # Type-tagged payload
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    status = Column(String(20), nullable=False, default=MessageStatus.PENDING.value)
    status_updated_at = Column(DateTime(timezone=True), nullable=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("provider_message_id", name="uq_messages_provider_id"),
        Index("idx_messages_tenant_conversation", "tenant_id", "conversation_id"),
    )


class Flow(WhatsAppBase, WhatsAppModelMixin):
    """
    A tenant-authored automation graph (nodes + edges as JSON documents).

    Authored and published outside the engine; read-only here.
    """

    __tablename__ = "flows"

    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=FlowStatus.DRAFT.value)
    nodes = Column(JSONType, nullable=False, default=list)
    edges = Column(JSONType, nullable=False, default=list)

    __table_args__ = (
        Index("idx_flows_tenant_status", "tenant_id", "status"),
    )


class CannedResponse(WhatsAppBase, WhatsAppModelMixin):
    """A stored reply referenced by flow message nodes."""

    __tablename__ = "canned_responses"

    name = Column(String(255), nullable=False)
    text = Column(Text, nullable=False)


class MessageTemplate(WhatsAppBase, WhatsAppModelMixin):
    """
    Local record of a provider message template.

    Keyed by tenant + name + language; status follows provider lifecycle events.
    """

    __tablename__ = "message_templates"

    name = Column(String(255), nullable=False)
    language = Column(String(20), nullable=False)
    category = Column(String(50), nullable=True)
    provider_template_id = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default=TemplateStatus.PENDING.value)
    status_reason = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", "language", name="uq_message_templates_tenant_name_lang"),
    )
