"""
Message content payloads and last-message summaries.
"""

from typing import Any

from whatsapp_flows.providers.base import MEDIA_MESSAGE_TYPES, InboundMessage, MessageType

MEDIA_PLACEHOLDER = "[Media message]"

_MEDIA_PLACEHOLDERS = {
    MessageType.IMAGE: "[Image]",
    MessageType.VIDEO: "[Video]",
    MessageType.AUDIO: "[Audio]",
    MessageType.DOCUMENT: "[Document]",
    MessageType.STICKER: "[Sticker]",
}


def build_content(message: InboundMessage) -> dict[str, Any]:
    """Build the type-tagged content payload stored with a message."""
    msg_type = message.message_type
    content: dict[str, Any] = {"type": msg_type.value}

    if msg_type == MessageType.TEXT:
        content["text"] = message.text or ""

    elif msg_type in MEDIA_MESSAGE_TYPES:
        content["mediaId"] = message.media_id
        content["mimeType"] = message.media_mime_type
        if message.media_url:
            content["mediaUrl"] = message.media_url
        if message.caption:
            content["caption"] = message.caption
        if message.media_filename:
            content["filename"] = message.media_filename

    elif msg_type == MessageType.LOCATION:
        content["latitude"] = message.location_latitude
        content["longitude"] = message.location_longitude
        if message.location_name:
            content["name"] = message.location_name
        if message.location_address:
            content["address"] = message.location_address

    elif msg_type in (MessageType.INTERACTIVE, MessageType.BUTTON):
        content["replyId"] = message.button_payload
        content["replyTitle"] = message.button_text

    elif msg_type == MessageType.REACTION:
        content["emoji"] = message.reaction_emoji
        content["messageId"] = message.reaction_message_id

    elif msg_type == MessageType.CONTACTS:
        content["contacts"] = message.raw_payload.get("contacts", [])

    if message.context_message_id:
        content["contextMessageId"] = message.context_message_id

    return content


def summarize(message: InboundMessage) -> str:
    """Human-readable last-message summary for the conversation list."""
    msg_type = message.message_type

    if msg_type == MessageType.TEXT:
        return message.text or ""

    if msg_type in (MessageType.IMAGE, MessageType.VIDEO):
        return message.caption or _MEDIA_PLACEHOLDERS[msg_type]

    if msg_type == MessageType.DOCUMENT:
        return message.caption or message.media_filename or _MEDIA_PLACEHOLDERS[msg_type]

    if msg_type in (MessageType.AUDIO, MessageType.STICKER):
        return _MEDIA_PLACEHOLDERS[msg_type]

    if msg_type == MessageType.LOCATION:
        return message.location_name or "[Location]"

    if msg_type in (MessageType.INTERACTIVE, MessageType.BUTTON):
        return message.button_text or MEDIA_PLACEHOLDER

    if msg_type == MessageType.REACTION:
        return message.reaction_emoji or MEDIA_PLACEHOLDER

    if msg_type == MessageType.CONTACTS:
        return "[Contact]"

    return MEDIA_PLACEHOLDER
