"""Webhook endpoints for the Messenger channel."""

from typing import Annotated

import structlog
from fastapi import APIRouter, BackgroundTasks, Header, Query, Request
from fastapi.responses import PlainTextResponse

from minechat.api.dependencies import GatewayDep, PipelineDep
from minechat.services.assistant.pipeline import AIResponsePipeline
from minechat.services.webhooks.gateway import PipelineJob

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


async def run_pipeline_jobs(pipeline: AIResponsePipeline, jobs: list[PipelineJob]) -> None:
    """Answer accepted messages after the provider has been acknowledged."""
    for job in jobs:
        try:
            await pipeline.handle(job.conversation_id, job.message_id)
        except Exception as e:
            logger.error(
                "AI pipeline failed",
                conversation_id=job.conversation_id,
                message_id=job.message_id,
                error=str(e),
                exc_info=True,
            )


@router.get("/messenger", response_class=PlainTextResponse)
async def verify_messenger_webhook(
    gateway: GatewayDep,
    hub_mode: Annotated[str | None, Query(alias="hub.mode")] = None,
    hub_verify_token: Annotated[str | None, Query(alias="hub.verify_token")] = None,
    hub_challenge: Annotated[str | None, Query(alias="hub.challenge")] = None,
) -> str:
    """Subscription handshake. Echoes the challenge on a token match."""
    return gateway.verify_subscription(hub_mode, hub_verify_token, hub_challenge)


@router.post("/messenger", response_class=PlainTextResponse)
async def messenger_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    gateway: GatewayDep,
    pipeline: PipelineDep,
    x_hub_signature_256: Annotated[str | None, Header()] = None,
) -> str:
    """Receive message events.

    Inbound messages are recorded before the acknowledgement; AI replies run
    afterwards so the provider is never kept waiting on generation.
    """
    body = await request.body()
    result = await gateway.ingest(body, x_hub_signature_256)

    if result.jobs:
        background_tasks.add_task(run_pipeline_jobs, pipeline, result.jobs)

    return "EVENT_RECEIVED"
