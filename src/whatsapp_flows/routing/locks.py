"""
Per-conversation locking

Serialises the inbound message path per (tenant, contact phone) so two
messages from the same contact cannot interleave their read-modify-write
of the conversation's flow cursor.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

import redis.asyncio as aioredis
from redis.exceptions import LockError, RedisError

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "whatsapp_flows:conversation_lock"


class ConversationLocker:
    """
    Redis-backed keyed mutex for conversation updates.

    Locks auto-expire after `timeout` seconds so a crashed worker cannot
    wedge a conversation. If the lock cannot be acquired within
    `blocking_timeout`, the caller proceeds unguarded rather than losing
    the inbound message.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        timeout: float = 30.0,
        blocking_timeout: float = 10.0,
    ):
        self.redis = redis_client
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    @staticmethod
    def lock_key(tenant_id: UUID, phone: str) -> str:
        return f"{LOCK_KEY_PREFIX}:{tenant_id}:{phone}"

    @asynccontextmanager
    async def hold(self, tenant_id: UUID, phone: str) -> AsyncIterator[bool]:
        """
        Hold the conversation lock for the duration of the block.

        Yields:
            True if the lock was acquired, False if processing is unguarded
        """
        key = self.lock_key(tenant_id, phone)
        lock = self.redis.lock(
            key,
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )

        try:
            acquired = bool(await lock.acquire())
        except (LockError, RedisError) as e:
            logger.warning(
                f"Conversation lock unavailable: {e}",
                extra={"tenant_id": str(tenant_id), "lock_key": key},
            )
            acquired = False
        else:
            if not acquired:
                logger.warning(
                    "Timed out waiting for conversation lock; processing unguarded",
                    extra={"tenant_id": str(tenant_id), "lock_key": key},
                )

        try:
            yield acquired
        finally:
            if acquired:
                try:
                    await lock.release()
                except (LockError, RedisError) as e:
                    # Expired before release; another worker may now hold it
                    logger.warning(
                        f"Failed to release conversation lock: {e}",
                        extra={"tenant_id": str(tenant_id), "lock_key": key},
                    )
