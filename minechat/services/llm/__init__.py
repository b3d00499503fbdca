"""LLM service - multi-provider abstraction using LiteLLM."""

from minechat.services.llm.provider import LLMProvider, LLMResponse, get_llm_provider, reset_llm_provider

__all__ = ["LLMProvider", "LLMResponse", "get_llm_provider", "reset_llm_provider"]
