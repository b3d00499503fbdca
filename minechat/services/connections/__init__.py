"""Channel connection lifecycle."""

from minechat.services.connections.manager import (
    ChannelConnectionManager,
    get_connection_manager,
    reset_connection_manager,
)

__all__ = ["ChannelConnectionManager", "get_connection_manager", "reset_connection_manager"]
