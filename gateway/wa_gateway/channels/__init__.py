"""Channel clients package."""

from .base import ChannelClient, EventHandler
from .whatsapp import WhatsAppBridgeClient

__all__ = [
    "ChannelClient",
    "EventHandler",
    "WhatsAppBridgeClient",
]
