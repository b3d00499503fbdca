"""Tests for the LLM provider fallback chain."""

import pytest

from minechat.core.exceptions import LLMError
from minechat.services.llm.provider import LLMProvider, LLMResponse


@pytest.fixture
def provider():
    return LLMProvider(primary_model="primary", fallback_models=["backup", "primary"], default_temperature=0.2)


@pytest.mark.asyncio
async def test_primary_model_answers(provider, monkeypatch):
    calls = []

    async def fake_complete(model, messages, temperature, max_tokens, **kwargs):
        calls.append({"model": model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        return LLMResponse(content="Hi!", model=model)

    monkeypatch.setattr(provider, "_complete_once", fake_complete)

    response = await provider.complete(
        messages=[{"role": "user", "content": "Hello"}],
        system_prompt="Be nice.",
        max_tokens=100,
    )

    assert response.content == "Hi!"
    assert [c["model"] for c in calls] == ["primary"]
    assert calls[0]["messages"][0] == {"role": "system", "content": "Be nice."}
    assert calls[0]["temperature"] == 0.2
    assert calls[0]["max_tokens"] == 100


@pytest.mark.asyncio
async def test_falls_back_to_next_model(provider, monkeypatch):
    tried = []

    async def fake_complete(model, **kwargs):
        tried.append(model)
        if model == "primary":
            raise RuntimeError("quota exceeded")
        return LLMResponse(content="From backup", model=model)

    monkeypatch.setattr(provider, "_complete_once", fake_complete)

    response = await provider.complete(messages=[{"role": "user", "content": "Hello"}])

    assert response.model == "backup"
    # The primary is not retried a second time from the fallback list
    assert tried == ["primary", "backup"]


@pytest.mark.asyncio
async def test_all_models_failing_raises(provider, monkeypatch):
    async def fake_complete(model, **kwargs):
        raise RuntimeError(f"{model} down")

    monkeypatch.setattr(provider, "_complete_once", fake_complete)

    with pytest.raises(LLMError) as exc_info:
        await provider.complete(messages=[{"role": "user", "content": "Hello"}])

    assert exc_info.value.details == {"provider": "primary"}
    assert "backup down" in exc_info.value.message
