"""Conversation service - the inbox read model."""

from minechat.services.conversation.read_model import (
    ConversationReadModel,
    get_read_model,
    reset_read_model,
)

__all__ = ["ConversationReadModel", "get_read_model", "reset_read_model"]
