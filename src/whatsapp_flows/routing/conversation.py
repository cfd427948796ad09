"""
Contact / Conversation Resolution

Find-or-create for the remote party (contact) and for the open
conversation thread belonging to that contact within a tenant.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from whatsapp_flows.persistence.models import Contact, Conversation
from whatsapp_flows.persistence.repo import WhatsAppRepository

logger = logging.getLogger(__name__)


@dataclass
class ResolvedThread:
    """Contact and conversation for one inbound message."""

    contact: Contact
    conversation: Conversation
    contact_created: bool = False
    conversation_created: bool = False


class ContactConversationResolver:
    """
    Resolves contacts and conversations for inbound messages.

    - Contacts are matched by exact phone number within the tenant
    - A contact created without a profile name gets the "Unknown" name,
      which is backfilled once a real name arrives
    - The first open or pending conversation is reused, otherwise a new
      one is opened
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = WhatsAppRepository(db)

    def find_or_create_contact(
        self,
        tenant_id: UUID,
        phone: str,
        profile_name: str | None = None,
    ) -> tuple[Contact, bool]:
        """
        Get existing contact or create a new one.

        Returns:
            Tuple of (contact, created) where created is True if new.
        """
        contact = self.repo.get_contact_by_phone(tenant_id, phone)

        if contact is None:
            contact = self.repo.create_contact(tenant_id, phone, name=profile_name)
            logger.info(
                "Created contact",
                extra={"tenant_id": str(tenant_id), "contact_id": str(contact.id)},
            )
            return contact, True

        if profile_name and contact.has_placeholder_name:
            contact.name = profile_name
            logger.debug(
                "Backfilled contact name",
                extra={"tenant_id": str(tenant_id), "contact_id": str(contact.id)},
            )

        return contact, False

    def find_or_create_conversation(
        self,
        tenant_id: UUID,
        contact: Contact,
    ) -> tuple[Conversation, bool]:
        """
        Get the contact's open conversation or create a new one.

        Returns:
            Tuple of (conversation, created) where created is True if new.
        """
        open_conversations = self.repo.get_open_conversations(tenant_id, contact.id)
        if open_conversations:
            return open_conversations[0], False

        conversation = self.repo.create_conversation(tenant_id, contact.id)
        logger.info(
            "Opened conversation",
            extra={
                "tenant_id": str(tenant_id),
                "contact_id": str(contact.id),
                "conversation_id": str(conversation.id),
            },
        )
        return conversation, True

    def resolve(
        self,
        tenant_id: UUID,
        phone: str,
        profile_name: str | None = None,
    ) -> ResolvedThread:
        """Find or create both the contact and its open conversation."""
        contact, contact_created = self.find_or_create_contact(tenant_id, phone, profile_name)
        conversation, conversation_created = self.find_or_create_conversation(tenant_id, contact)
        return ResolvedThread(
            contact=contact,
            conversation=conversation,
            contact_created=contact_created,
            conversation_created=conversation_created,
        )
