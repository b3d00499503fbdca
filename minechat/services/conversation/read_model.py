"""Conversation read model - the inbox served to polling clients."""

from collections.abc import Awaitable, Callable
from uuid import uuid4

import structlog

from minechat.core.exceptions import (
    ChannelNotConnected,
    ConversationNotFound,
    ProviderError,
    TokenInvalid,
)
from minechat.models import (
    Attachment,
    Conversation,
    ConversationKey,
    ConversationMode,
    DeliveryStatus,
    Message,
    MessageDirection,
    SendResult,
)
from minechat.storage.base import StorageBackend

logger = structlog.get_logger()

RECONNECT_REQUIRED = "reconnect_required"

Sender = Callable[..., Awaitable[SendResult]]


def failure_reason_for(error: Exception) -> str:
    """Inline failure text stored on an undeliverable outbound message."""
    if isinstance(error, (ChannelNotConnected, TokenInvalid)):
        return RECONNECT_REQUIRED
    if isinstance(error, ProviderError):
        return error.message
    return str(error) or error.__class__.__name__


class ConversationReadModel:
    """Materialized view of conversations, messages and unread counters.

    Every read goes straight to storage; there is no cache between a write
    and the next poll.
    """

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    # ==================== Writes ====================

    async def upsert_inbound(self, key: ConversationKey, message: Message) -> Conversation:
        """Append a customer message, creating the conversation if needed.

        Args:
            key: Natural key of the conversation
            message: Customer-inbound message

        Returns:
            The conversation after unread += 1
        """
        if message.direction != MessageDirection.CUSTOMER_INBOUND:
            raise ValueError("upsert_inbound only accepts customer messages")

        conversation = await self.storage.apply_inbound(key, message)

        logger.info(
            "Inbound message recorded",
            conversation_id=conversation.id,
            tenant_id=key.tenant_id,
            unread_count=conversation.unread_count,
        )
        return conversation

    async def record_outbound(self, conversation_id: str, message: Message) -> Message:
        """Append an ai- or human-outbound message. Unread is untouched."""
        if not message.direction.is_outbound:
            raise ValueError("record_outbound only accepts outbound messages")

        try:
            saved = await self.storage.append_outbound(conversation_id, message)
        except KeyError as e:
            raise ConversationNotFound(conversation_id) from e

        logger.info(
            "Outbound message recorded",
            conversation_id=conversation_id,
            direction=message.direction.value,
            delivery_status=message.delivery_status.value,
        )
        return saved

    async def mark_read(self, tenant_id: str, conversation_id: str) -> Conversation:
        """Reset one conversation's unread count."""
        conversation = await self.get_conversation(tenant_id, conversation_id)
        await self.storage.reset_unread(tenant_id, [conversation.id])
        conversation.unread_count = 0
        return conversation

    async def mark_all_read(self, tenant_id: str) -> int:
        """Reset every unread count of the tenant. Returns conversations changed."""
        changed = await self.storage.reset_unread(tenant_id)
        logger.info("Marked all conversations read", tenant_id=tenant_id, changed=changed)
        return changed

    async def set_mode(self, tenant_id: str, conversation_id: str, mode: ConversationMode) -> Conversation:
        await self.get_conversation(tenant_id, conversation_id)
        updated = await self.storage.update_conversation(conversation_id, {"mode": mode})
        if updated is None:
            raise ConversationNotFound(conversation_id)
        logger.info("Conversation mode changed", conversation_id=conversation_id, mode=mode.value)
        return updated

    async def archive(self, tenant_id: str, conversation_id: str, archived: bool = True) -> Conversation:
        """Archive (or restore) a conversation. Conversations are never deleted."""
        await self.get_conversation(tenant_id, conversation_id)
        updated = await self.storage.update_conversation(conversation_id, {"archived": archived})
        if updated is None:
            raise ConversationNotFound(conversation_id)
        return updated

    async def send_human_message(
        self,
        tenant_id: str,
        conversation_id: str,
        content: str,
        sender: Sender,
        sender_name: str | None = None,
        attachments: list[Attachment] | None = None,
    ) -> Message:
        """Reply to the customer from the inbox.

        ``sender`` is the connection manager's ``send``; a failed dispatch is
        recorded inline on the message instead of raising.
        """
        conversation = await self.get_conversation(tenant_id, conversation_id)
        message = Message(
            id=str(uuid4()),
            conversation_id=conversation.id,
            tenant_id=tenant_id,
            direction=MessageDirection.HUMAN_OUTBOUND,
            content=content,
            attachments=attachments or [],
            sender_name=sender_name,
        )

        try:
            result = await sender(tenant_id, conversation.customer_external_id, content, message.attachments)
        except (ProviderError, ChannelNotConnected) as e:
            logger.warning("Human reply not delivered", conversation_id=conversation_id, error=e.code)
            message.delivery_status = DeliveryStatus.FAILED
            message.failure_reason = failure_reason_for(e)
            delivered = e.details.get("message_ids") if isinstance(e, ProviderError) else None
            if delivered:
                message.delivery_status = DeliveryStatus.PARTIAL
                message.external_id = delivered[0]
        else:
            message.delivery_status = DeliveryStatus.SENT
            if result.message_ids:
                message.external_id = result.message_ids[0]

        return await self.record_outbound(conversation.id, message)

    # ==================== Reads ====================

    async def get_conversation(self, tenant_id: str, conversation_id: str) -> Conversation:
        """Get a tenant's conversation; other tenants' ids look like missing ones."""
        conversation = await self.storage.get_conversation(conversation_id)
        if conversation is None or conversation.tenant_id != tenant_id:
            raise ConversationNotFound(conversation_id)
        return conversation

    async def list_conversations(
        self,
        tenant_id: str,
        include_archived: bool = False,
        limit: int = 100,
    ) -> list[Conversation]:
        return await self.storage.list_conversations(tenant_id, include_archived=include_archived, limit=limit)

    async def get_messages(
        self,
        tenant_id: str,
        conversation_id: str,
        limit: int = 50,
        before_id: str | None = None,
    ) -> list[Message]:
        await self.get_conversation(tenant_id, conversation_id)
        return await self.storage.get_messages(conversation_id, limit=limit, before_id=before_id)

    async def unread_total(self, tenant_id: str) -> int:
        """Notification badge: sum of unread counts across all the tenant's conversations."""
        return await self.storage.unread_total(tenant_id)


# Factory function for creating the read model with storage
_read_model_instance: ConversationReadModel | None = None


def get_read_model(storage: StorageBackend | None = None) -> ConversationReadModel:
    """Get or create the conversation read model.

    Args:
        storage: Storage backend (required on first call)

    Returns:
        ConversationReadModel instance
    """
    global _read_model_instance

    if _read_model_instance is None:
        if storage is None:
            raise ValueError("Storage backend required for first initialization")
        _read_model_instance = ConversationReadModel(storage=storage)

    return _read_model_instance


def reset_read_model() -> None:
    """Reset the read model singleton (for testing)."""
    global _read_model_instance
    _read_model_instance = None
