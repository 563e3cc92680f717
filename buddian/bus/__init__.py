"""Message bus module for decoupled channel-assistant communication."""

from buddian.bus.events import InboundMessage, OutboundMessage
from buddian.bus.queue import MessageBus

__all__ = ["MessageBus", "InboundMessage", "OutboundMessage"]
