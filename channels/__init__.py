"""Channel adapters for all supported delivery channels."""
from channels.base import (
    ChannelAdapter,
    ChannelRegistry,
    ChannelError,
    PermanentDeliveryError,
    UnsupportedChannelError,
    ChannelMetrics,
)
from channels.email_adapter import EmailAdapter
from channels.sms_adapter import SMSAdapter
from channels.push_adapter import PushAdapter

__all__ = [
    "ChannelAdapter", "ChannelRegistry", "ChannelError",
    "PermanentDeliveryError", "UnsupportedChannelError", "ChannelMetrics",
    "EmailAdapter", "SMSAdapter", "PushAdapter",
]
