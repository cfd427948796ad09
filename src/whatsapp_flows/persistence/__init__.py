"""
WhatsApp Flows Persistence

SQLAlchemy models and repository for engine tables.
"""

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
    WhatsAppBase,
    WhatsAppTenantBinding,
)
from whatsapp_flows.persistence.repo import WhatsAppRepository

__all__ = [
    "UNKNOWN_CONTACT_NAME",
    "BindingStatus",
    "CannedResponse",
    "Contact",
    "Conversation",
    "ConversationStatus",
    "Flow",
    "FlowStatus",
    "Message",
    "MessageDirection",
    "MessageStatus",
    "MessageTemplate",
    "TemplateStatus",
    "WhatsAppBase",
    "WhatsAppTenantBinding",
    "WhatsAppRepository",
]
