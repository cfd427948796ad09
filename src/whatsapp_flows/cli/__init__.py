"""WhatsApp Flows CLI."""
