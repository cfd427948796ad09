"""
WhatsApp Flows

Multi-tenant WhatsApp webhook ingestion and conversational flow automation.
"""

__version__ = "1.0.0"
