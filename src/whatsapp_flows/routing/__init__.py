"""
WhatsApp Routing

Tenant resolution, contact/conversation resolution and per-conversation locking.
"""

from whatsapp_flows.routing.conversation import ContactConversationResolver, ResolvedThread
from whatsapp_flows.routing.locks import ConversationLocker
from whatsapp_flows.routing.tenant_resolver import TenantContext, TenantResolver

__all__ = [
    "ContactConversationResolver",
    "ConversationLocker",
    "ResolvedThread",
    "TenantContext",
    "TenantResolver",
]
