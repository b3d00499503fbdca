"""Webhook ingestion."""

from minechat.services.webhooks.gateway import (
    IngestResult,
    ParsedPayload,
    PipelineJob,
    UnparseablePayload,
    VerifiedPayload,
    WebhookGateway,
    get_webhook_gateway,
    reset_webhook_gateway,
)

__all__ = [
    "IngestResult",
    "ParsedPayload",
    "PipelineJob",
    "UnparseablePayload",
    "VerifiedPayload",
    "WebhookGateway",
    "get_webhook_gateway",
    "reset_webhook_gateway",
]
