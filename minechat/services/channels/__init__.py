"""Channel adapters for messaging providers."""

from minechat.services.channels.base import ChannelAdapter
from minechat.services.channels.messenger import (
    MessengerAdapter,
    get_messenger_adapter,
    raise_for_graph_error,
    reset_messenger_adapter,
)

__all__ = [
    "ChannelAdapter",
    "MessengerAdapter",
    "get_messenger_adapter",
    "raise_for_graph_error",
    "reset_messenger_adapter",
]
