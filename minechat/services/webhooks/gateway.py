"""Webhook ingestion gateway - the sole entry point for provider traffic."""

import hmac
import json
from dataclasses import dataclass, field
from uuid import uuid4

import structlog

from minechat.core.config import settings
from minechat.core.exceptions import (
    DuplicateEvent,
    MalformedPayload,
    WebhookVerificationFailure,
)
from minechat.models import (
    ConversationKey,
    ConversationMode,
    DeliveryStatus,
    InboundEvent,
    Message,
    MessageDirection,
)
from minechat.services.channels.messenger import MessengerAdapter, get_messenger_adapter
from minechat.services.connections.manager import ChannelConnectionManager, get_connection_manager
from minechat.services.conversation.read_model import ConversationReadModel, get_read_model
from minechat.storage.base import StorageBackend

logger = structlog.get_logger()


@dataclass
class VerifiedPayload:
    """Structurally valid, authentic payload with its customer message events."""

    events: list[InboundEvent]


@dataclass
class UnparseablePayload:
    """Payload rejected at the boundary."""

    reason: str


ParsedPayload = VerifiedPayload | UnparseablePayload


@dataclass
class PipelineJob:
    """AI work scheduled after the provider has been acknowledged."""

    conversation_id: str
    message_id: str
    # False when a human handles the conversation
    ai_enabled: bool = True


@dataclass
class IngestResult:
    """Per-delivery ingestion outcome."""

    received: int = 0
    accepted: int = 0
    duplicates: int = 0
    skipped: int = 0
    failed: int = 0
    jobs: list[PipelineJob] = field(default_factory=list)


def default_customer_name(sender_id: str) -> str:
    return f"Messenger User {sender_id[:8]}"


class WebhookGateway:
    """Verifies, parses, deduplicates and records inbound provider events."""

    def __init__(
        self,
        storage: StorageBackend,
        read_model: ConversationReadModel | None = None,
        connections: ChannelConnectionManager | None = None,
        adapter: MessengerAdapter | None = None,
        verify_token: str | None = None,
    ) -> None:
        self.storage = storage
        self.read_model = read_model or get_read_model(storage)
        self.connections = connections or get_connection_manager(storage)
        self.adapter = adapter or get_messenger_adapter()
        self.verify_token = verify_token or settings.messenger_verify_token

    # ==================== Verification ====================

    def verify_subscription(self, mode: str | None, token: str | None, challenge: str | None) -> str:
        """Answer the provider's subscription handshake.

        Returns:
            The challenge, echoed back only on an exact token match

        Raises:
            MalformedPayload: Handshake parameters missing
            WebhookVerificationFailure: Wrong mode or token
        """
        if not mode or not token or challenge is None:
            raise MalformedPayload("missing hub.mode, hub.verify_token or hub.challenge")

        if mode != "subscribe" or not hmac.compare_digest(token.encode(), self.verify_token.encode()):
            logger.warning("Webhook verification rejected", mode=mode)
            raise WebhookVerificationFailure("verify_token_mismatch")

        logger.info("Webhook verified")
        return challenge

    def verify_signature(self, raw_body: bytes, signature: str | None) -> None:
        """Check X-Hub-Signature-256. Mandatory whenever the app secret is set."""
        if not self.adapter.app_secret:
            logger.debug("App secret not configured, skipping signature check")
            return

        if not signature:
            logger.warning("Webhook signature missing")
            raise WebhookVerificationFailure("signature_missing")

        if not self.adapter.validate_webhook(raw_body, signature):
            logger.warning("Webhook signature invalid")
            raise WebhookVerificationFailure("signature_invalid")

    # ==================== Parsing ====================

    def parse(self, raw_body: bytes) -> ParsedPayload:
        """Resolve a raw body into a tagged variant. Never raises."""
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            return UnparseablePayload("body is not JSON")

        if not isinstance(payload, dict):
            return UnparseablePayload("body is not a JSON object")
        if payload.get("object") != "page":
            return UnparseablePayload(f"unsupported object: {payload.get('object')!r}")
        if not isinstance(payload.get("entry"), list):
            return UnparseablePayload("missing entry list")

        return VerifiedPayload(events=self.adapter.parse_webhook(payload))

    # ==================== Ingestion ====================

    async def ingest(self, raw_body: bytes, signature: str | None) -> IngestResult:
        """Verify and record a webhook delivery.

        Each event is handled independently: a failure is logged and counted
        without stopping the rest of the batch.

        Raises:
            WebhookVerificationFailure: Signature check failed; nothing persisted
            MalformedPayload: Payload is not a valid page webhook
        """
        self.verify_signature(raw_body, signature)

        parsed = self.parse(raw_body)
        if isinstance(parsed, UnparseablePayload):
            logger.warning("Malformed webhook payload", reason=parsed.reason)
            raise MalformedPayload(parsed.reason)

        result = IngestResult(received=len(parsed.events))

        for event in parsed.events:
            try:
                job = await self._ingest_event(event)
            except DuplicateEvent:
                logger.info("Duplicate webhook event ignored", dedup_key=event.dedup_key)
                result.duplicates += 1
                continue
            except Exception:
                logger.exception("Failed to ingest webhook event", dedup_key=event.dedup_key)
                result.failed += 1
                continue

            if job is None:
                result.skipped += 1
                continue

            result.accepted += 1
            if job.ai_enabled:
                result.jobs.append(job)

        logger.info(
            "Webhook processed",
            received=result.received,
            accepted=result.accepted,
            duplicates=result.duplicates,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    async def _ingest_event(self, event: InboundEvent) -> PipelineJob | None:
        tenant_id = await self.connections.find_tenant_by_page(event.page_id)
        if tenant_id is None:
            logger.warning("No connected tenant for page", page_id=event.page_id)
            return None

        if not await self.storage.claim_event_key(event.dedup_key, settings.dedup_retention_seconds):
            raise DuplicateEvent(event.dedup_key)

        key = ConversationKey(tenant_id=tenant_id, customer_external_id=event.sender_id)
        existing = await self.storage.get_conversation(key.document_id)
        if existing is None or not existing.customer_name:
            profile = await self.connections.lookup_customer(tenant_id, event.sender_id) or {}
            key.customer_name = profile.get("name") or default_customer_name(event.sender_id)
            key.customer_picture_url = profile.get("picture_url")

        message = Message(
            id=str(uuid4()),
            conversation_id=key.document_id,
            tenant_id=tenant_id,
            direction=MessageDirection.CUSTOMER_INBOUND,
            content=event.content,
            attachments=event.attachments,
            external_id=event.external_id,
            delivery_status=DeliveryStatus.RECEIVED,
        )
        conversation = await self.read_model.upsert_inbound(key, message)

        return PipelineJob(
            conversation_id=conversation.id,
            message_id=message.id,
            ai_enabled=conversation.mode == ConversationMode.AI,
        )


# Factory function for creating the gateway with storage
_gateway_instance: WebhookGateway | None = None


def get_webhook_gateway(storage: StorageBackend | None = None) -> WebhookGateway:
    """Get or create the webhook gateway.

    Args:
        storage: Storage backend (required on first call)

    Returns:
        WebhookGateway instance
    """
    global _gateway_instance

    if _gateway_instance is None:
        if storage is None:
            raise ValueError("Storage backend required for first initialization")
        _gateway_instance = WebhookGateway(storage=storage)

    return _gateway_instance


def reset_webhook_gateway() -> None:
    """Reset the gateway singleton (for testing)."""
    global _gateway_instance
    _gateway_instance = None
