"""HTTP surface of the webhook service."""
