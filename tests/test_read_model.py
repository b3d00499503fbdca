"""Tests for the conversation read model."""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from minechat.core.exceptions import ChannelNotConnected, ConversationNotFound, RateLimited
from minechat.models import (
    ConversationKey,
    ConversationMode,
    DeliveryStatus,
    Message,
    MessageDirection,
    SendResult,
)


def _key(tenant_id: str, customer_id: str) -> ConversationKey:
    return ConversationKey(tenant_id=tenant_id, customer_external_id=customer_id, customer_name=f"Customer {customer_id}")


def _message(tenant_id: str, key: ConversationKey, text: str, direction=MessageDirection.CUSTOMER_INBOUND) -> Message:
    return Message(
        id=str(uuid4()),
        conversation_id=key.document_id,
        tenant_id=tenant_id,
        direction=direction,
        content=text,
    )


async def _receive(read_model, tenant_id: str, customer_id: str, text: str = "Hi"):
    key = _key(tenant_id, customer_id)
    return await read_model.upsert_inbound(key, _message(tenant_id, key, text))


@pytest.mark.asyncio
async def test_upsert_inbound_creates_then_updates(read_model, demo_tenant):
    first = await _receive(read_model, demo_tenant.id, "cust_42", "First")
    second = await _receive(read_model, demo_tenant.id, "cust_42", "Second")

    assert first.id == second.id
    assert first.unread_count == 1
    assert second.unread_count == 2
    assert second.last_message_at >= first.last_message_at
    assert second.last_message_preview == "Second"
    assert second.customer_name == "Customer cust_42"


@pytest.mark.asyncio
async def test_upsert_inbound_rejects_outbound(read_model, demo_tenant):
    key = _key(demo_tenant.id, "cust_1")
    with pytest.raises(ValueError):
        await read_model.upsert_inbound(key, _message(demo_tenant.id, key, "x", MessageDirection.AI_OUTBOUND))


@pytest.mark.asyncio
async def test_record_outbound_requires_conversation(read_model, demo_tenant):
    key = _key(demo_tenant.id, "cust_1")
    with pytest.raises(ConversationNotFound):
        await read_model.record_outbound(key.document_id, _message(demo_tenant.id, key, "x", MessageDirection.AI_OUTBOUND))


@pytest.mark.asyncio
async def test_unread_total_tracks_inbound_since_read(read_model, demo_tenant):
    a = await _receive(read_model, demo_tenant.id, "cust_a")
    await _receive(read_model, demo_tenant.id, "cust_a")
    await _receive(read_model, demo_tenant.id, "cust_b")
    assert await read_model.unread_total(demo_tenant.id) == 3

    await read_model.mark_read(demo_tenant.id, a.id)
    assert await read_model.unread_total(demo_tenant.id) == 1

    await _receive(read_model, demo_tenant.id, "cust_a")
    assert await read_model.unread_total(demo_tenant.id) == 2


@pytest.mark.asyncio
async def test_mark_all_read(read_model, demo_tenant, storage):
    await _receive(read_model, demo_tenant.id, "cust_a")
    await _receive(read_model, demo_tenant.id, "cust_b")
    other = await _receive(read_model, "other-tenant", "cust_c")

    changed = await read_model.mark_all_read(demo_tenant.id)

    assert changed == 2
    assert await read_model.unread_total(demo_tenant.id) == 0
    # Other tenants are untouched
    assert (await storage.get_conversation(other.id)).unread_count == 1


@pytest.mark.asyncio
async def test_mark_read_other_tenant(read_model, demo_tenant):
    other = await _receive(read_model, "other-tenant", "cust_c")

    with pytest.raises(ConversationNotFound):
        await read_model.mark_read(demo_tenant.id, other.id)


@pytest.mark.asyncio
async def test_list_orders_by_recent_activity(read_model, demo_tenant):
    await _receive(read_model, demo_tenant.id, "cust_old")
    await _receive(read_model, demo_tenant.id, "cust_new")
    await _receive(read_model, demo_tenant.id, "cust_old", "bump")

    conversations = await read_model.list_conversations(demo_tenant.id)

    assert [c.customer_external_id for c in conversations] == ["cust_old", "cust_new"]


@pytest.mark.asyncio
async def test_archive_hides_until_customer_writes_again(read_model, demo_tenant):
    await _receive(read_model, demo_tenant.id, "cust_42")
    conversation = await _receive(read_model, demo_tenant.id, "cust_42")

    archived = await read_model.archive(demo_tenant.id, conversation.id)
    assert archived.archived is True
    assert await read_model.list_conversations(demo_tenant.id) == []
    assert len(await read_model.list_conversations(demo_tenant.id, include_archived=True)) == 1
    # The badge still sums every conversation's unread count
    assert archived.unread_count == 2
    assert await read_model.unread_total(demo_tenant.id) == 2

    await _receive(read_model, demo_tenant.id, "cust_42")
    assert len(await read_model.list_conversations(demo_tenant.id)) == 1
    assert await read_model.unread_total(demo_tenant.id) == 3


@pytest.mark.asyncio
async def test_set_mode(read_model, demo_tenant):
    conversation = await _receive(read_model, demo_tenant.id, "cust_1")

    updated = await read_model.set_mode(demo_tenant.id, conversation.id, ConversationMode.HUMAN)

    assert updated.mode == ConversationMode.HUMAN


@pytest.mark.asyncio
async def test_human_reply_sent(read_model, demo_tenant):
    conversation = await _receive(read_model, demo_tenant.id, "cust_1")
    sender = AsyncMock(return_value=SendResult(recipient_id="cust_1", message_ids=["m_1"]))

    message = await read_model.send_human_message(
        demo_tenant.id, conversation.id, "We open at 9", sender=sender, sender_name="Owner"
    )

    sender.assert_awaited_once_with(demo_tenant.id, "cust_1", "We open at 9", [])
    assert message.direction == MessageDirection.HUMAN_OUTBOUND
    assert message.delivery_status == DeliveryStatus.SENT
    assert message.external_id == "m_1"
    assert message.sender_name == "Owner"

    history = await read_model.get_messages(demo_tenant.id, conversation.id)
    assert history[-1].id == message.id


@pytest.mark.asyncio
async def test_human_reply_failures_are_inline(read_model, demo_tenant):
    conversation = await _receive(read_model, demo_tenant.id, "cust_1")

    not_connected = await read_model.send_human_message(
        demo_tenant.id, conversation.id, "Hello", sender=AsyncMock(side_effect=ChannelNotConnected(demo_tenant.id))
    )
    throttled = await read_model.send_human_message(
        demo_tenant.id, conversation.id, "Hello", sender=AsyncMock(side_effect=RateLimited())
    )

    assert not_connected.delivery_status == DeliveryStatus.FAILED
    assert not_connected.failure_reason == "reconnect_required"
    assert throttled.delivery_status == DeliveryStatus.FAILED
    assert throttled.failure_reason == "Messaging provider rate limit reached"


@pytest.mark.asyncio
async def test_human_reply_with_undelivered_attachment_is_partial(read_model, demo_tenant):
    conversation = await _receive(read_model, demo_tenant.id, "cust_1")
    error = RateLimited(details={"parts_sent": 1, "message_ids": ["m_1"]})

    message = await read_model.send_human_message(
        demo_tenant.id, conversation.id, "Photo below", sender=AsyncMock(side_effect=error)
    )

    assert message.delivery_status == DeliveryStatus.PARTIAL
    assert message.external_id == "m_1"
    assert message.failure_reason == "Messaging provider rate limit reached"


@pytest.mark.asyncio
async def test_get_messages_pagination(read_model, demo_tenant):
    key = _key(demo_tenant.id, "cust_1")
    ids = []
    for i in range(5):
        message = _message(demo_tenant.id, key, f"m{i}")
        await read_model.upsert_inbound(key, message)
        ids.append(message.id)

    latest = await read_model.get_messages(demo_tenant.id, key.document_id, limit=2)
    earlier = await read_model.get_messages(demo_tenant.id, key.document_id, limit=2, before_id=latest[0].id)

    assert [m.content for m in latest] == ["m3", "m4"]
    assert [m.content for m in earlier] == ["m1", "m2"]
