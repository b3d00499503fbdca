"""Tests for the AI response pipeline."""

import asyncio
from uuid import uuid4

import pytest

from conftest import graph_error
from minechat.core.exceptions import LLMError
from minechat.models import (
    AIAssistantProfile,
    ConnectionStatus,
    ConversationKey,
    ConversationMode,
    DeliveryStatus,
    Message,
    MessageDirection,
    Product,
    ResponseLength,
)
from minechat.services.assistant.context import AssistantContextBuilder, parse_faqs
from minechat.services.assistant.fallback import fallback_reply, select_product_images
from minechat.services.llm.provider import LLMResponse


async def _inbound(read_model, tenant_id: str, customer_id: str, text: str) -> Message:
    key = ConversationKey(tenant_id=tenant_id, customer_external_id=customer_id, customer_name="Customer")
    message = Message(
        id=str(uuid4()),
        conversation_id=key.document_id,
        tenant_id=tenant_id,
        direction=MessageDirection.CUSTOMER_INBOUND,
        content=text,
        external_id=f"mid.{uuid4().hex[:8]}",
    )
    await read_model.upsert_inbound(key, message)
    return message


@pytest.mark.asyncio
async def test_reply_is_sent_and_recorded(pipeline, connected_tenant, read_model, graph):
    inbound = await _inbound(read_model, connected_tenant.id, "cust_1", "Do you deliver?")

    outbound = await pipeline.handle(inbound.conversation_id, inbound.id)

    assert outbound.direction == MessageDirection.AI_OUTBOUND
    assert outbound.delivery_status == DeliveryStatus.SENT
    assert outbound.content == "Thanks for reaching out!"
    assert outbound.external_id == "m_out_1"
    assert graph.sent[0]["message"] == {"text": "Thanks for reaching out!"}

    messages = await read_model.get_messages(connected_tenant.id, inbound.conversation_id)
    assert [m.id for m in messages] == [inbound.id, outbound.id]

    # AI replies do not count as unread
    conversation = await read_model.get_conversation(connected_tenant.id, inbound.conversation_id)
    assert conversation.unread_count == 1


@pytest.mark.asyncio
async def test_generation_uses_history_and_response_length(pipeline, connected_tenant, read_model, storage, llm):
    await storage.save_assistant_profile(
        AIAssistantProfile(tenant_id=connected_tenant.id, name="Mia", response_length=ResponseLength.SHORT)
    )
    first = await _inbound(read_model, connected_tenant.id, "cust_1", "Hi")
    await pipeline.handle(first.conversation_id, first.id)
    second = await _inbound(read_model, connected_tenant.id, "cust_1", "What are your hours?")

    await pipeline.handle(second.conversation_id, second.id)

    kwargs = llm.complete.await_args.kwargs
    assert kwargs["max_tokens"] == 100
    assert kwargs["messages"] == [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Thanks for reaching out!"},
        {"role": "user", "content": "What are your hours?"},
    ]
    assert "You are Mia working for Test Company." in kwargs["system_prompt"]


@pytest.mark.asyncio
async def test_history_window_counts_only_customer_and_ai_turns(pipeline, connected_tenant, read_model, llm):
    for i in range(12):
        inbound = await _inbound(read_model, connected_tenant.id, "cust_1", f"Question {i}")
        await read_model.record_outbound(
            inbound.conversation_id,
            Message(
                id=str(uuid4()),
                conversation_id=inbound.conversation_id,
                tenant_id=connected_tenant.id,
                direction=MessageDirection.HUMAN_OUTBOUND,
                content=f"Human answer {i}",
            ),
        )
    last = await _inbound(read_model, connected_tenant.id, "cust_1", "Last question")

    await pipeline.handle(last.conversation_id, last.id)

    messages = llm.complete.await_args.kwargs["messages"]
    assert [m["content"] for m in messages] == [f"Question {i}" for i in range(2, 12)] + ["Last question"]


@pytest.mark.asyncio
async def test_fallback_when_llm_fails(pipeline, connected_tenant, read_model, llm):
    llm.complete.side_effect = LLMError("All models failed")
    inbound = await _inbound(read_model, connected_tenant.id, "cust_1", "hello")

    outbound = await pipeline.handle(inbound.conversation_id, inbound.id)

    assert outbound.delivery_status == DeliveryStatus.SENT
    assert outbound.content == "Hello! I'm AI Assistant for Test Company. How can I help you today?"


@pytest.mark.asyncio
async def test_fallback_when_llm_not_configured(pipeline, connected_tenant, read_model, llm):
    llm.is_configured = False
    inbound = await _inbound(read_model, connected_tenant.id, "cust_1", "how can I contact you?")

    outbound = await pipeline.handle(inbound.conversation_id, inbound.id)

    llm.complete.assert_not_awaited()
    assert "Phone: +1 555 0100" in outbound.content


@pytest.mark.asyncio
async def test_human_mode_skips_reply(pipeline, connected_tenant, read_model, graph, llm):
    inbound = await _inbound(read_model, connected_tenant.id, "cust_1", "Hello")
    await read_model.set_mode(connected_tenant.id, inbound.conversation_id, ConversationMode.HUMAN)

    assert await pipeline.handle(inbound.conversation_id, inbound.id) is None
    llm.complete.assert_not_awaited()
    assert graph.sent == []


@pytest.mark.asyncio
async def test_missing_records_are_ignored(pipeline):
    assert await pipeline.handle("missing-conversation", "missing-message") is None


@pytest.mark.asyncio
async def test_product_images_follow_the_text(pipeline, connected_tenant, read_model, storage, graph):
    await storage.save_product(
        Product(id="p1", tenant_id=connected_tenant.id, name="Mug", price="12", image_urls=["/uploads/mug.jpg"])
    )
    inbound = await _inbound(read_model, connected_tenant.id, "cust_1", "What do you sell?")

    outbound = await pipeline.handle(inbound.conversation_id, inbound.id)

    assert outbound.delivery_status == DeliveryStatus.SENT
    assert len(graph.sent) == 2
    assert "text" in graph.sent[0]["message"]
    attachment = graph.sent[1]["message"]["attachment"]
    assert attachment["type"] == "image"
    assert attachment["payload"]["url"].endswith("/uploads/mug.jpg")
    assert attachment["payload"]["url"].startswith("http")


@pytest.mark.asyncio
async def test_throttled_image_resumes_without_resending_text(pipeline, connected_tenant, read_model, storage, graph):
    await storage.save_product(
        Product(id="p1", tenant_id=connected_tenant.id, name="Mug", price="12", image_urls=["/uploads/mug.jpg"])
    )
    # Text goes through, the image is throttled once
    graph.send_failures.extend([None, graph_error(613)])
    inbound = await _inbound(read_model, connected_tenant.id, "cust_1", "What do you sell?")

    outbound = await pipeline.handle(inbound.conversation_id, inbound.id)

    assert outbound.delivery_status == DeliveryStatus.SENT
    assert outbound.external_id == "m_out_1"
    assert len(graph.sent) == 2
    assert sum(1 for s in graph.sent if "text" in s["message"]) == 1
    assert "attachment" in graph.sent[1]["message"]


@pytest.mark.asyncio
async def test_failed_image_after_text_is_partial(pipeline, connected_tenant, read_model, storage, graph):
    await storage.save_product(
        Product(id="p1", tenant_id=connected_tenant.id, name="Mug", price="12", image_urls=["/uploads/mug.jpg"])
    )
    graph.send_failures.extend([None, graph_error(100, message="Invalid image url")])
    inbound = await _inbound(read_model, connected_tenant.id, "cust_1", "What do you sell?")

    outbound = await pipeline.handle(inbound.conversation_id, inbound.id)

    assert outbound.delivery_status == DeliveryStatus.PARTIAL
    assert outbound.failure_reason == "Invalid image url"
    assert outbound.external_id == "m_out_1"
    assert len(graph.sent) == 1


@pytest.mark.asyncio
async def test_token_invalid_records_failed_reply(pipeline, connected_tenant, read_model, storage, graph):
    """A rejected credential disconnects the channel and fails the reply inline."""
    graph.send_failures.append(graph_error(190, message="Session has expired"))
    inbound = await _inbound(read_model, connected_tenant.id, "cust_1", "Hello?")

    outbound = await pipeline.handle(inbound.conversation_id, inbound.id)

    assert outbound.delivery_status == DeliveryStatus.FAILED
    assert outbound.failure_reason == "reconnect_required"
    connection = await storage.get_connection(connected_tenant.id)
    assert connection.status == ConnectionStatus.DISCONNECTED

    messages = await read_model.get_messages(connected_tenant.id, inbound.conversation_id)
    assert messages[-1].id == outbound.id


@pytest.mark.asyncio
async def test_rate_limited_send_is_retried(pipeline, connected_tenant, read_model, graph):
    graph.send_failures.extend([graph_error(613), graph_error(4)])
    inbound = await _inbound(read_model, connected_tenant.id, "cust_1", "Hello?")

    outbound = await pipeline.handle(inbound.conversation_id, inbound.id)

    assert outbound.delivery_status == DeliveryStatus.SENT
    assert len(graph.sent) == 1


@pytest.mark.asyncio
async def test_rate_limited_send_gives_up(pipeline, connected_tenant, read_model, storage, graph):
    graph.send_failures.extend([graph_error(613)] * 3)
    inbound = await _inbound(read_model, connected_tenant.id, "cust_1", "Hello?")

    outbound = await pipeline.handle(inbound.conversation_id, inbound.id)

    assert outbound.delivery_status == DeliveryStatus.FAILED
    assert outbound.failure_reason == "Messaging provider rate limit reached"
    assert graph.sent == []
    # Throttling leaves the connection alone
    assert (await storage.get_connection(connected_tenant.id)).is_connected


@pytest.mark.asyncio
async def test_disconnected_channel_records_failed_reply(pipeline, demo_tenant, read_model):
    inbound = await _inbound(read_model, demo_tenant.id, "cust_1", "Hello?")

    outbound = await pipeline.handle(inbound.conversation_id, inbound.id)

    assert outbound.delivery_status == DeliveryStatus.FAILED
    assert outbound.failure_reason == "reconnect_required"


@pytest.mark.asyncio
async def test_replies_in_one_conversation_are_serialized(pipeline, connected_tenant, read_model, llm, graph):
    """Reply N+1 is never dispatched before reply N has completed."""
    active = 0
    max_active = 0

    async def slow_complete(messages, **kwargs):
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.01)
        active -= 1
        return LLMResponse(content=f"Re: {messages[-1]['content']}", model="test-model")

    llm.complete.side_effect = slow_complete
    first = await _inbound(read_model, connected_tenant.id, "cust_1", "one")
    second = await _inbound(read_model, connected_tenant.id, "cust_1", "two")

    await asyncio.gather(
        pipeline.handle(first.conversation_id, first.id),
        pipeline.handle(second.conversation_id, second.id),
    )

    assert max_active == 1
    assert [s["message"]["text"] for s in graph.sent] == ["Re: one", "Re: two"]


@pytest.mark.asyncio
async def test_different_conversations_run_concurrently(pipeline, connected_tenant, read_model, llm):
    active = 0
    max_active = 0

    async def slow_complete(messages, **kwargs):
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.01)
        active -= 1
        return LLMResponse(content="ok", model="test-model")

    llm.complete.side_effect = slow_complete
    a = await _inbound(read_model, connected_tenant.id, "cust_a", "one")
    b = await _inbound(read_model, connected_tenant.id, "cust_b", "two")

    await asyncio.gather(pipeline.handle(a.conversation_id, a.id), pipeline.handle(b.conversation_id, b.id))

    assert max_active == 2


@pytest.mark.asyncio
async def test_disconnect_during_generation(pipeline, connections, connected_tenant, read_model, storage, llm):
    """Tearing down the channel mid-generation fails the send cleanly."""
    generating = asyncio.Event()
    release = asyncio.Event()

    async def blocked_complete(messages, **kwargs):
        generating.set()
        await release.wait()
        return LLMResponse(content="late reply", model="test-model")

    llm.complete.side_effect = blocked_complete
    inbound = await _inbound(read_model, connected_tenant.id, "cust_1", "Hello?")

    task = asyncio.create_task(pipeline.handle(inbound.conversation_id, inbound.id))
    await generating.wait()
    await connections.disconnect(connected_tenant.id)
    release.set()
    outbound = await task

    assert outbound.delivery_status == DeliveryStatus.FAILED
    assert outbound.failure_reason == "reconnect_required"
    connection = await storage.get_connection(connected_tenant.id)
    assert connection.status == ConnectionStatus.DISCONNECTED
    assert connection.credential_ref is None


# ==================== Context and fallback ====================


def test_parse_faqs():
    raw = "### Do you ship?\n\nYes, worldwide.\n\n### Returns?\n\nWithin 30 days."
    assert parse_faqs(raw) == [("Do you ship?", "Yes, worldwide."), ("Returns?", "Within 30 days.")]
    assert parse_faqs(None) == []


@pytest.mark.asyncio
async def test_knowledge_base_sections(storage, demo_tenant):
    await storage.save_product(Product(id="p1", tenant_id=demo_tenant.id, name="Mug", price="12"))

    context = await AssistantContextBuilder(storage).build(demo_tenant.id)

    assert "=== BUSINESS INFORMATION ===" in context.knowledge_base
    assert "Company: Test Company" in context.knowledge_base
    assert "=== AI ASSISTANT GUIDELINES ===" in context.knowledge_base
    assert "Name: AI Assistant" in context.knowledge_base
    assert "Price: $12" in context.knowledge_base
    assert context.max_tokens == 250


@pytest.mark.asyncio
async def test_fallback_price_list(storage, demo_tenant):
    await storage.save_product(Product(id="p1", tenant_id=demo_tenant.id, name="Mug", price="12"))
    context = await AssistantContextBuilder(storage).build(demo_tenant.id)

    reply = fallback_reply("How much is it?", context)

    assert reply.startswith("Here's our pricing information:")
    assert "1. Mug" in reply
    assert "Price: $12" in reply


def test_select_product_images_by_name():
    products = [
        Product(id="p1", tenant_id="t", name="Mug", image_urls=["https://cdn.example/mug.jpg"]),
        Product(id="p2", tenant_id="t", name="Plate", image_urls=["https://cdn.example/plate.jpg"]),
    ]

    attachments = select_product_images("Can I see the plate?", products)

    assert [a.url for a in attachments] == ["https://cdn.example/plate.jpg"]
    assert select_product_images("thanks!", products) == []
