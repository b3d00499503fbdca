"""Conversation models for the inbox read model."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from minechat.core.timeutils import utcnow
from minechat.models.channel import ChannelType


class ConversationMode(str, Enum):
    """Who answers the customer."""

    AI = "ai"  # Assistant replies automatically
    HUMAN = "human"  # Tenant replies from the inbox


class ConversationKey(BaseModel):
    """Natural key of a conversation: one per (tenant, provider, customer)."""

    tenant_id: str
    customer_external_id: str
    provider: ChannelType = ChannelType.MESSENGER

    # Only used when the conversation is created
    customer_name: str | None = None
    customer_picture_url: str | None = None

    @property
    def document_id(self) -> str:
        """Deterministic conversation id derived from the natural key."""
        return f"{self.tenant_id}:{self.provider.value}:{self.customer_external_id}"


class Conversation(BaseModel):
    """Thread of messages with one external customer on one channel."""

    id: str = Field(..., description="Unique conversation identifier")
    tenant_id: str = Field(..., description="Tenant this conversation belongs to")
    provider: ChannelType = ChannelType.MESSENGER
    customer_external_id: str = Field(..., description="Provider-scoped customer id (PSID)")
    customer_name: str | None = None
    customer_picture_url: str | None = None

    mode: ConversationMode = ConversationMode.AI
    archived: bool = False

    # Inbox projection
    unread_count: int = 0
    last_message_at: datetime | None = None
    last_message_preview: str | None = None
    message_count: int = 0

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_key(cls, key: ConversationKey) -> "Conversation":
        return cls(
            id=key.document_id,
            tenant_id=key.tenant_id,
            provider=key.provider,
            customer_external_id=key.customer_external_id,
            customer_name=key.customer_name,
            customer_picture_url=key.customer_picture_url,
        )
