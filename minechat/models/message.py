"""Message models for the inbox and the provider boundary."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from minechat.core.timeutils import utcnow


class MessageDirection(str, Enum):
    """Who authored the message."""

    CUSTOMER_INBOUND = "customer_inbound"
    AI_OUTBOUND = "ai_outbound"
    HUMAN_OUTBOUND = "human_outbound"

    @property
    def is_outbound(self) -> bool:
        return self is not MessageDirection.CUSTOMER_INBOUND


class DeliveryStatus(str, Enum):
    """Delivery state of a message."""

    RECEIVED = "received"  # Inbound, stored
    SENT = "sent"  # Outbound, accepted by the provider
    FAILED = "failed"  # Outbound, undeliverable
    PARTIAL = "partial"  # Outbound, some parts delivered before a failure


class AttachmentType(str, Enum):
    """Attachment kinds understood by the provider."""

    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    FILE = "file"


class Attachment(BaseModel):
    """Reference to media attached to a message."""

    type: AttachmentType = AttachmentType.IMAGE
    url: str


class Message(BaseModel):
    """A message in a conversation. Immutable once persisted."""

    id: str = Field(..., description="Unique message identifier")
    conversation_id: str = Field(..., description="Parent conversation ID")
    tenant_id: str = Field(..., description="Tenant ID")

    direction: MessageDirection
    content: str = ""
    attachments: list[Attachment] = Field(default_factory=list)

    # Provider-assigned id (mid); used for dedup of inbound messages
    external_id: str | None = None

    delivery_status: DeliveryStatus = DeliveryStatus.RECEIVED
    failure_reason: str | None = None

    # Human outbound attribution
    sender_name: str | None = None

    created_at: datetime = Field(default_factory=utcnow)

    def to_llm_message(self) -> dict[str, str] | None:
        """Convert to LLM message format for context."""
        if self.direction == MessageDirection.CUSTOMER_INBOUND:
            return {"role": "user", "content": self.content}
        if self.direction == MessageDirection.AI_OUTBOUND:
            return {"role": "assistant", "content": self.content}
        return None

    def preview(self, length: int = 80) -> str:
        text = self.content or (f"[{self.attachments[0].type.value}]" if self.attachments else "")
        return text if len(text) <= length else text[: length - 3] + "..."


class InboundEvent(BaseModel):
    """A verified, normalized customer message from the provider."""

    page_id: str
    sender_id: str
    external_id: str
    content: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    timestamp: datetime | None = None

    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def dedup_key(self) -> str:
        return f"messenger:{self.page_id}:{self.external_id}"


class OutgoingMessage(BaseModel):
    """Message to be sent to a customer."""

    recipient_id: str
    content: str = ""
    attachments: list[Attachment] = Field(default_factory=list)

    # Parts already delivered by an earlier attempt; text counts as part 0
    start_part: int = 0

    @property
    def part_count(self) -> int:
        return (1 if self.content else 0) + len(self.attachments)


class SendResult(BaseModel):
    """Provider acknowledgement for an outbound message."""

    recipient_id: str
    message_ids: list[str] = Field(default_factory=list)
