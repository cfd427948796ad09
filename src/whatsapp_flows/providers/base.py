"""
WhatsApp Provider Base

Abstract interface for WhatsApp API providers.
Implementations: Meta Cloud API, Stub (for development).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ProviderError(Exception):
    """Error from WhatsApp provider."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.retryable = retryable


class MessageType(str, Enum):
    """Types of WhatsApp messages."""

    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACTS = "contacts"
    INTERACTIVE = "interactive"
    BUTTON = "button"
    REACTION = "reaction"
    UNKNOWN = "unknown"


MEDIA_MESSAGE_TYPES = frozenset({
    MessageType.IMAGE,
    MessageType.VIDEO,
    MessageType.AUDIO,
    MessageType.DOCUMENT,
    MessageType.STICKER,
})


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def parse_unix_timestamp(value: str | int | None) -> datetime:
    """Parse a provider epoch-seconds timestamp into an aware UTC datetime."""
    if not value:
        return utcnow()
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


@dataclass
class InboundMessage:
    """
    Parsed inbound message from webhook.

    Provider-agnostic representation of an incoming WhatsApp message.
    """

    message_id: str
    from_phone: str
    phone_number_id: str
    waba_id: str
    message_type: MessageType
    timestamp: datetime
    text: str | None = None
    caption: str | None = None
    media_id: str | None = None
    media_mime_type: str | None = None
    media_filename: str | None = None
    media_url: str | None = None
    context_message_id: str | None = None  # Replied-to message
    contact_name: str | None = None  # Sender's WhatsApp profile name
    button_payload: str | None = None  # For button/interactive responses
    button_text: str | None = None
    location_latitude: float | None = None
    location_longitude: float | None = None
    location_name: str | None = None
    location_address: str | None = None
    reaction_emoji: str | None = None
    reaction_message_id: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_text(self) -> bool:
        return self.message_type == MessageType.TEXT and self.text is not None

    @property
    def has_media(self) -> bool:
        return self.message_type in MEDIA_MESSAGE_TYPES and bool(self.media_id)


@dataclass
class DeliveryStatus:
    """
    Parsed delivery status update from webhook.
    """

    message_id: str
    recipient_phone: str
    status: str  # sent, delivered, read, failed
    timestamp: datetime
    error_code: str | None = None
    error_message: str | None = None
    conversation_id: str | None = None  # Provider's conversation ID
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class TemplateStatusUpdate:
    """
    Parsed message template lifecycle notification.
    """

    template_name: str
    language: str
    event: str  # APPROVED, REJECTED, PENDING, DISABLED
    template_id: str | None = None
    reason: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class ParsedChange:
    """All events carried by one webhook change entry."""

    entry_id: str
    phone_number_id: str | None = None
    messages: list[InboundMessage] = field(default_factory=list)
    statuses: list[DeliveryStatus] = field(default_factory=list)
    template_updates: list[TemplateStatusUpdate] = field(default_factory=list)


@dataclass
class ProviderResponse:
    """
    Response from provider after sending a message.
    """

    success: bool
    message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


class WhatsAppProvider(ABC):
    """
    Abstract interface for WhatsApp API providers.

    Implementations must handle:
    - Sending text messages
    - Resolving media download URLs
    - Webhook signature validation
    - Webhook payload parsing
    """

    @abstractmethod
    async def send_text(
        self,
        phone_number_id: str,
        access_token: str,
        to: str,
        text: str,
        reply_to: str | None = None,
        preview_url: bool = False,
    ) -> ProviderResponse:
        """
        Send a text message.

        Args:
            phone_number_id: Business phone number ID
            access_token: Access token for this number
            to: Recipient phone number (E.164 format)
            text: Message text
            reply_to: Message ID to reply to (optional)
            preview_url: Whether to show URL previews

        Returns:
            ProviderResponse with message ID if successful
        """
        ...

    @abstractmethod
    async def get_media_url(
        self,
        media_id: str,
        access_token: str,
    ) -> str | None:
        """
        Get the download URL for a media file.

        Args:
            media_id: Media ID from the message
            access_token: Access token

        Returns:
            Download URL or None if failed
        """
        ...

    @abstractmethod
    def validate_webhook_signature(
        self,
        payload: bytes,
        signature: str,
        app_secret: str,
    ) -> bool:
        """
        Validate webhook signature.

        Args:
            payload: Raw request body
            signature: X-Hub-Signature-256 header value
            app_secret: Tenant's app secret

        Returns:
            True if signature is valid
        """
        ...

    @abstractmethod
    def parse_change(
        self,
        entry_id: str,
        value: dict[str, Any],
    ) -> ParsedChange:
        """
        Parse the `value` object of a single webhook change.

        Args:
            entry_id: Id of the enclosing entry (WhatsApp Business Account ID)
            value: The change's value object

        Returns:
            ParsedChange with messages, statuses and template updates
        """
        ...

    def parse_webhook(
        self,
        payload: dict[str, Any],
    ) -> tuple[list[InboundMessage], list[DeliveryStatus]]:
        """
        Parse a whole webhook payload into messages and status updates.

        Args:
            payload: Parsed JSON webhook payload

        Returns:
            Tuple of (list of inbound messages, list of delivery statuses)
        """
        messages: list[InboundMessage] = []
        statuses: list[DeliveryStatus] = []

        for entry in payload.get("entry", []):
            for change in entry.get("changes", []):
                parsed = self.parse_change(entry.get("id", ""), change.get("value", {}))
                messages.extend(parsed.messages)
                statuses.extend(parsed.statuses)

        return messages, statuses

    def verify_webhook_challenge(
        self,
        mode: str,
        token: str,
        challenge: str,
        verify_token: str,
    ) -> str | None:
        """
        Handle webhook verification challenge.

        Args:
            mode: hub.mode query parameter
            token: hub.verify_token query parameter
            challenge: hub.challenge query parameter
            verify_token: The tenant's configured verify token

        Returns:
            challenge string if valid, None otherwise
        """
        if mode == "subscribe" and verify_token and token == verify_token:
            return challenge
        return None
