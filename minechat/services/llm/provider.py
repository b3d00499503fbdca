"""LLM Provider using LiteLLM for multi-provider abstraction."""

import time
from dataclasses import dataclass, field
from typing import Any

import litellm
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from minechat.core.config import settings
from minechat.core.exceptions import LLMError

logger = structlog.get_logger()

# Configure LiteLLM
litellm.set_verbose = settings.app_debug

# Set API keys from settings
if settings.openai_api_key:
    litellm.openai_key = settings.openai_api_key
if settings.anthropic_api_key:
    litellm.anthropic_key = settings.anthropic_api_key
if settings.google_api_key:
    litellm.google_key = settings.google_api_key


@dataclass
class LLMResponse:
    """Response from LLM completion."""

    content: str
    model: str
    tokens_input: int = 0
    tokens_output: int = 0
    finish_reason: str = "stop"
    latency_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


class LLMProvider:
    """LLM provider with a primary model and fallbacks.

    Uses LiteLLM for unified API across OpenAI, Anthropic, Google, and more.
    """

    def __init__(
        self,
        primary_model: str | None = None,
        fallback_models: list[str] | None = None,
        default_temperature: float | None = None,
        default_max_tokens: int = 500,
    ) -> None:
        self.primary_model = primary_model or settings.litellm_primary_model
        self.fallback_models = fallback_models if fallback_models is not None else [settings.litellm_fallback_model]
        self.default_temperature = (
            default_temperature if default_temperature is not None else settings.ai_temperature
        )
        self.default_max_tokens = default_max_tokens

        logger.info(
            "LLM Provider initialized",
            primary=self.primary_model,
            fallbacks=self.fallback_models,
        )

    @property
    def is_configured(self) -> bool:
        """Whether any provider key is available."""
        return bool(settings.openai_api_key or settings.anthropic_api_key or settings.google_api_key)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion, walking the fallback chain on failure.

        Args:
            messages: List of message dicts with 'role' and 'content'
            system_prompt: Optional system prompt to prepend
            temperature: Sampling temperature (0-2)
            max_tokens: Token budget hint for the reply
            **kwargs: Additional parameters passed to LiteLLM

        Returns:
            LLMResponse with generated content and metadata

        Raises:
            LLMError: If every model failed
        """
        full_messages = []
        if system_prompt:
            full_messages.append({"role": "system", "content": system_prompt})
        full_messages.extend(messages)

        models = [self.primary_model] + [m for m in self.fallback_models if m != self.primary_model]
        last_error: Exception | None = None

        for model in models:
            try:
                return await self._complete_once(
                    model=model,
                    messages=full_messages,
                    temperature=temperature if temperature is not None else self.default_temperature,
                    max_tokens=max_tokens or self.default_max_tokens,
                    **kwargs,
                )
            except Exception as e:
                last_error = e
                logger.warning("LLM completion failed, trying fallback", model=model, error=str(e))

        raise LLMError(f"All LLM providers failed: {last_error}", provider=self.primary_model)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _complete_once(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
        **kwargs: Any,
    ) -> LLMResponse:
        start_time = time.perf_counter()

        response = await litellm.acompletion(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )

        latency_ms = (time.perf_counter() - start_time) * 1000

        # Extract usage info
        usage = getattr(response, "usage", None)
        tokens_input = getattr(usage, "prompt_tokens", 0) or 0
        tokens_output = getattr(usage, "completion_tokens", 0) or 0

        content = response.choices[0].message.content or ""
        finish_reason = response.choices[0].finish_reason or "stop"

        logger.info(
            "LLM completion successful",
            model=model,
            tokens_in=tokens_input,
            tokens_out=tokens_output,
            latency_ms=round(latency_ms, 2),
        )

        return LLMResponse(
            content=content,
            model=model,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            finish_reason=finish_reason,
            latency_ms=latency_ms,
            metadata={"raw_response_id": getattr(response, "id", None)},
        )


# Singleton instance
_llm_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """Get or create the LLM provider singleton."""
    global _llm_provider
    if _llm_provider is None:
        _llm_provider = LLMProvider()
    return _llm_provider


def reset_llm_provider() -> None:
    """Reset the LLM provider singleton (for testing)."""
    global _llm_provider
    _llm_provider = None
