"""
WhatsApp Service Layer

Event routing, inbound message/status handling, media resolution,
outbound sending and template status synchronisation.
"""

from whatsapp_flows.service.inbound_handler import InboundHandler
from whatsapp_flows.service.media import MediaResolver
from whatsapp_flows.service.outbound import OutboundSender
from whatsapp_flows.service.router import EventRouter, RoutingReport
from whatsapp_flows.service.template_sync import TemplateStatusSynchronizer

__all__ = [
    "EventRouter",
    "InboundHandler",
    "MediaResolver",
    "OutboundSender",
    "RoutingReport",
    "TemplateStatusSynchronizer",
]
