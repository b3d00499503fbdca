"""Inbox endpoints: conversation list, unread badge, history and replies."""

from typing import Any

import structlog
from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from minechat.api.dependencies import ConnectionsDep, ConversationsDep, IdentityDep
from minechat.models import Attachment, Conversation, ConversationMode, Message

logger = structlog.get_logger()

router = APIRouter(prefix="/conversations", tags=["Conversations"])


# ==================== Pydantic Schemas ====================


class ReplyCreate(BaseModel):
    """Schema for a human reply from the inbox."""

    content: str
    attachments: list[Attachment] = []


class ModeUpdate(BaseModel):
    """Schema for switching between AI and human handling."""

    mode: ConversationMode


class ArchiveUpdate(BaseModel):
    archived: bool = True


# ==================== Read Endpoints ====================


@router.get("", response_model=list[Conversation])
async def list_conversations(
    identity: IdentityDep,
    conversations: ConversationsDep,
    include_archived: bool = False,
    limit: int = Query(default=100, ge=1, le=500),
) -> list[Conversation]:
    """Conversations ordered by most recent activity (polled by the inbox)."""
    return await conversations.list_conversations(
        identity.tenant_id,
        include_archived=include_archived,
        limit=limit,
    )


@router.get("/unread-count")
async def unread_count(identity: IdentityDep, conversations: ConversationsDep) -> dict[str, int]:
    """Notification badge."""
    return {"unread_count": await conversations.unread_total(identity.tenant_id)}


@router.post("/read-all")
async def mark_all_read(identity: IdentityDep, conversations: ConversationsDep) -> dict[str, Any]:
    """Mark every conversation read."""
    updated = await conversations.mark_all_read(identity.tenant_id)
    return {"updated": updated, "unread_count": 0}


@router.get("/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation_id: str,
    identity: IdentityDep,
    conversations: ConversationsDep,
) -> Conversation:
    return await conversations.get_conversation(identity.tenant_id, conversation_id)


@router.get("/{conversation_id}/messages", response_model=list[Message])
async def get_messages(
    conversation_id: str,
    identity: IdentityDep,
    conversations: ConversationsDep,
    limit: int = Query(default=50, ge=1, le=200),
    before_id: str | None = None,
) -> list[Message]:
    """Message history, oldest first."""
    return await conversations.get_messages(
        identity.tenant_id,
        conversation_id,
        limit=limit,
        before_id=before_id,
    )


# ==================== Write Endpoints ====================


@router.post("/{conversation_id}/read", response_model=Conversation)
async def mark_read(
    conversation_id: str,
    identity: IdentityDep,
    conversations: ConversationsDep,
) -> Conversation:
    """Mark one conversation read."""
    return await conversations.mark_read(identity.tenant_id, conversation_id)


@router.post("/{conversation_id}/messages", response_model=Message, status_code=status.HTTP_201_CREATED)
async def send_reply(
    conversation_id: str,
    data: ReplyCreate,
    identity: IdentityDep,
    conversations: ConversationsDep,
    connections: ConnectionsDep,
) -> Message:
    """Reply to the customer. Delivery failures are reported on the message."""
    message = await conversations.send_human_message(
        identity.tenant_id,
        conversation_id,
        data.content,
        sender=connections.send,
        sender_name=identity.name,
        attachments=data.attachments,
    )

    logger.info(
        "Human reply recorded",
        tenant_id=identity.tenant_id,
        conversation_id=conversation_id,
        delivery_status=message.delivery_status,
    )
    return message


@router.patch("/{conversation_id}/mode", response_model=Conversation)
async def set_mode(
    conversation_id: str,
    data: ModeUpdate,
    identity: IdentityDep,
    conversations: ConversationsDep,
) -> Conversation:
    return await conversations.set_mode(identity.tenant_id, conversation_id, data.mode)


@router.post("/{conversation_id}/archive", response_model=Conversation)
async def archive(
    conversation_id: str,
    identity: IdentityDep,
    conversations: ConversationsDep,
    data: ArchiveUpdate | None = None,
) -> Conversation:
    archived = data.archived if data else True
    return await conversations.archive(identity.tenant_id, conversation_id, archived=archived)
