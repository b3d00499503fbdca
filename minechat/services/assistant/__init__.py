"""AI response pipeline."""

from minechat.services.assistant.context import AssistantContextBuilder, GenerationContext
from minechat.services.assistant.pipeline import (
    AIResponsePipeline,
    GeneratedReply,
    ReplyGenerator,
    get_response_pipeline,
    reset_response_pipeline,
)

__all__ = [
    "AIResponsePipeline",
    "AssistantContextBuilder",
    "GeneratedReply",
    "GenerationContext",
    "ReplyGenerator",
    "get_response_pipeline",
    "reset_response_pipeline",
]
