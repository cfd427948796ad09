"""
FastAPI dependencies

Composition root for the webhook service. Tests override these through
`app.dependency_overrides`.
"""

import functools

from whatsapp_flows.core.db import get_db
from whatsapp_flows.core.redis import get_redis_client
from whatsapp_flows.core.settings import get_settings
from whatsapp_flows.providers import WhatsAppProvider, build_provider
from whatsapp_flows.routing.locks import ConversationLocker

__all__ = ["get_db", "get_locker", "get_provider", "get_settings"]


@functools.lru_cache()
def get_provider() -> WhatsAppProvider:
    """Get the provider selected by WHATSAPP_PROVIDER (cached)."""
    settings = get_settings()
    return build_provider(settings.WHATSAPP_PROVIDER, timeout=settings.GRAPH_API_TIMEOUT_SECONDS)


@functools.lru_cache()
def get_locker() -> ConversationLocker | None:
    """Get the conversation locker, or None when REDIS_URL is not set."""
    redis_client = get_redis_client()
    if redis_client is None:
        return None
    settings = get_settings()
    return ConversationLocker(
        redis_client,
        timeout=settings.CONVERSATION_LOCK_TIMEOUT_SECONDS,
        blocking_timeout=settings.CONVERSATION_LOCK_WAIT_SECONDS,
    )
