"""AI response pipeline - turns an inbound customer message into a dispatched reply."""

from dataclasses import dataclass, field
from uuid import uuid4

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from minechat.core.config import settings
from minechat.core.exceptions import ChannelNotConnected, LLMError, ProviderError, RateLimited
from minechat.core.locks import KeyedLock
from minechat.models import (
    Attachment,
    Conversation,
    ConversationMode,
    DeliveryStatus,
    Message,
    MessageDirection,
)
from minechat.services.assistant.context import AssistantContextBuilder, GenerationContext
from minechat.services.assistant.fallback import fallback_reply, select_product_images
from minechat.services.connections.manager import ChannelConnectionManager, get_connection_manager
from minechat.services.conversation.read_model import (
    ConversationReadModel,
    failure_reason_for,
    get_read_model,
)
from minechat.services.llm.provider import LLMProvider, get_llm_provider
from minechat.storage.base import StorageBackend

logger = structlog.get_logger()


@dataclass
class GeneratedReply:
    """Reply text plus any product images to send after it."""

    content: str
    attachments: list[Attachment] = field(default_factory=list)
    model: str | None = None
    used_fallback: bool = False


class ReplyGenerator:
    """Produces reply text with the LLM, falling back to keyword replies."""

    def __init__(self, llm_provider: LLMProvider | None = None, history_limit: int | None = None) -> None:
        self.llm = llm_provider or get_llm_provider()
        self.history_limit = history_limit or settings.ai_history_messages

    async def generate(
        self,
        context: GenerationContext,
        history: list[Message],
        customer_message: str,
    ) -> GeneratedReply:
        """Generate a reply.

        Args:
            context: Tenant generation context
            history: Earlier messages of the conversation, oldest first
            customer_message: Text of the message being answered

        Returns:
            GeneratedReply with text and product image attachments
        """
        attachments = select_product_images(customer_message, context.products)

        if not self.llm.is_configured:
            logger.info("No LLM configured, using fallback reply", tenant_id=context.tenant_id)
            return GeneratedReply(
                content=fallback_reply(customer_message, context),
                attachments=attachments,
                used_fallback=True,
            )

        messages = [m for m in (msg.to_llm_message() for msg in history) if m]
        messages = messages[-self.history_limit :]
        messages.append({"role": "user", "content": customer_message})

        try:
            response = await self.llm.complete(
                messages=messages,
                system_prompt=context.system_prompt,
                max_tokens=context.max_tokens,
            )
        except LLMError as e:
            logger.warning("LLM unavailable, using fallback reply", tenant_id=context.tenant_id, error=e.message)
            return GeneratedReply(
                content=fallback_reply(customer_message, context),
                attachments=attachments,
                used_fallback=True,
            )

        content = response.content.strip() or fallback_reply(customer_message, context)
        return GeneratedReply(content=content, attachments=attachments, model=response.model)


class AIResponsePipeline:
    """Context -> generation -> dispatch, serialized per conversation.

    The per-conversation lock is held across generation and dispatch, so a
    second inbound message waits until the reply to the first has been sent
    (or recorded as failed).
    """

    def __init__(
        self,
        storage: StorageBackend,
        read_model: ConversationReadModel | None = None,
        connections: ChannelConnectionManager | None = None,
        context_builder: AssistantContextBuilder | None = None,
        generator: ReplyGenerator | None = None,
        max_attempts: int | None = None,
        backoff_min: float | None = None,
        backoff_max: float | None = None,
    ) -> None:
        self.storage = storage
        self.read_model = read_model or get_read_model(storage)
        self.connections = connections or get_connection_manager(storage)
        self.context_builder = context_builder or AssistantContextBuilder(storage)
        self.generator = generator or ReplyGenerator()
        self.max_attempts = max_attempts or settings.dispatch_max_attempts
        self.backoff_min = backoff_min if backoff_min is not None else settings.dispatch_backoff_min
        self.backoff_max = backoff_max if backoff_max is not None else settings.dispatch_backoff_max
        self._conversation_locks = KeyedLock()

    async def handle(self, conversation_id: str, inbound_message_id: str) -> Message | None:
        """Answer one inbound message. Returns the recorded outbound message.

        Returns None when nothing was sent (conversation in human mode or
        records missing).
        """
        async with self._conversation_locks.hold(conversation_id):
            conversation = await self.storage.get_conversation(conversation_id)
            inbound = await self.storage.get_message(inbound_message_id)
            if conversation is None or inbound is None:
                logger.warning(
                    "Pipeline records missing",
                    conversation_id=conversation_id,
                    message_id=inbound_message_id,
                )
                return None

            if conversation.mode == ConversationMode.HUMAN:
                logger.info("Conversation in human mode, skipping AI reply", conversation_id=conversation_id)
                return None

            context = await self.context_builder.build(conversation.tenant_id)
            history = await self._load_history(conversation_id, inbound.id)
            reply = await self.generator.generate(context, history, inbound.content or inbound.preview())

            return await self.dispatch(conversation, reply)

    async def _load_history(self, conversation_id: str, before_id: str) -> list[Message]:
        """Latest customer/AI turns before a message; human replies do not count."""
        limit = self.generator.history_limit
        history: list[Message] = []
        cursor = before_id
        while len(history) < limit:
            page = await self.storage.get_messages(conversation_id, limit=limit, before_id=cursor)
            history = [m for m in page if m.to_llm_message()] + history
            if len(page) < limit:
                break
            cursor = page[0].id
        return history[-limit:]

    async def dispatch(self, conversation: Conversation, reply: GeneratedReply) -> Message:
        """Send the reply and always record it, delivered or not."""
        message = Message(
            id=str(uuid4()),
            conversation_id=conversation.id,
            tenant_id=conversation.tenant_id,
            direction=MessageDirection.AI_OUTBOUND,
            content=reply.content,
            attachments=reply.attachments,
        )

        delivered: list[str] = []
        try:
            await self._send_with_backoff(conversation, reply, delivered)
        except RateLimited as e:
            logger.error(
                "Reply dropped after rate limit retries",
                conversation_id=conversation.id,
                attempts=self.max_attempts,
                parts_sent=len(delivered),
            )
            message.delivery_status = DeliveryStatus.FAILED
            message.failure_reason = e.message
        except (ProviderError, ChannelNotConnected) as e:
            logger.warning("Reply not delivered", conversation_id=conversation.id, error=e.code)
            message.delivery_status = DeliveryStatus.FAILED
            message.failure_reason = failure_reason_for(e)
        else:
            message.delivery_status = DeliveryStatus.SENT

        if delivered:
            message.external_id = delivered[0]
            if message.delivery_status == DeliveryStatus.FAILED:
                message.delivery_status = DeliveryStatus.PARTIAL

        return await self.read_model.record_outbound(conversation.id, message)

    async def _send_with_backoff(
        self,
        conversation: Conversation,
        reply: GeneratedReply,
        delivered: list[str],
    ) -> None:
        """Send with backoff on RateLimited, one part at a time.

        ``delivered`` collects provider ids of the parts that went out; a
        retry resumes at the first undelivered part.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_min, min=self.backoff_min, max=self.backoff_max),
            retry=retry_if_exception_type(RateLimited),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "Retrying rate limited send",
                        conversation_id=conversation.id,
                        attempt=attempt.retry_state.attempt_number,
                        start_part=len(delivered),
                    )
                try:
                    result = await self.connections.send(
                        conversation.tenant_id,
                        conversation.customer_external_id,
                        reply.content,
                        reply.attachments,
                        start_part=len(delivered),
                    )
                except ProviderError as e:
                    delivered.extend(e.details.get("message_ids", []))
                    raise
                delivered.extend(result.message_ids)


# Factory function for creating the pipeline with storage
_pipeline_instance: AIResponsePipeline | None = None


def get_response_pipeline(storage: StorageBackend | None = None) -> AIResponsePipeline:
    """Get or create the AI response pipeline.

    Args:
        storage: Storage backend (required on first call)

    Returns:
        AIResponsePipeline instance
    """
    global _pipeline_instance

    if _pipeline_instance is None:
        if storage is None:
            raise ValueError("Storage backend required for first initialization")
        _pipeline_instance = AIResponsePipeline(storage=storage)

    return _pipeline_instance


def reset_response_pipeline() -> None:
    """Reset the pipeline singleton (for testing)."""
    global _pipeline_instance
    _pipeline_instance = None
