"""
Meta Webhook Utilities

Helper functions for processing Meta Cloud API webhooks.
"""

import hashlib
import hmac
import logging
from typing import Any

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(payload: bytes, app_secret: str) -> str:
    """Compute the X-Hub-Signature-256 header value for a payload."""
    digest = hmac.new(
        app_secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def validate_signature(
    payload: bytes,
    signature_header: str | None,
    app_secret: str | None,
) -> bool:
    """
    Validate Meta webhook signature.

    Args:
        payload: Raw request body bytes
        signature_header: X-Hub-Signature-256 header value
        app_secret: Facebook App Secret

    Returns:
        True if signature is valid
    """
    if not signature_header:
        logger.warning("Missing signature header")
        return False

    if not signature_header.startswith(SIGNATURE_PREFIX):
        logger.warning("Invalid signature format")
        return False

    if not app_secret:
        logger.warning("No app secret configured for signature validation")
        return False

    expected = signature_header[len(SIGNATURE_PREFIX):]

    computed = hmac.new(
        app_secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(computed, expected)


def extract_phone_number_id(payload: dict[str, Any]) -> str | None:
    """
    Extract phone_number_id from webhook payload.

    This is used for tenant resolution before full parsing.
    """
    for entry in _iter_entries(payload):
        for change in _iter_changes(entry):
            value = change.get("value")
            metadata = value.get("metadata") if isinstance(value, dict) else None
            if not isinstance(metadata, dict):
                continue
            phone_number_id = metadata.get("phone_number_id")
            if phone_number_id:
                return str(phone_number_id)
    return None


def extract_waba_id(payload: dict[str, Any]) -> str | None:
    """
    Extract the WhatsApp Business Account ID (entry id) from webhook payload.

    Template status webhooks carry no metadata, so the entry id is the
    only account identifier they have.
    """
    for entry in _iter_entries(payload):
        if entry.get("id"):
            return str(entry["id"])
    return None


def has_entry_list(payload: Any) -> bool:
    """Check that a decoded body has the `entry` list every webhook carries."""
    return isinstance(payload, dict) and isinstance(payload.get("entry"), list)


def _iter_entries(payload: dict[str, Any]) -> list[dict[str, Any]]:
    entries = payload.get("entry") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        return []
    return [entry for entry in entries if isinstance(entry, dict)]


def _iter_changes(entry: dict[str, Any]) -> list[dict[str, Any]]:
    changes = entry.get("changes")
    if not isinstance(changes, list):
        return []
    return [change for change in changes if isinstance(change, dict)]
