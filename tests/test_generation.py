from __future__ import annotations

import json

import httpx
import pytest

from groundedqa.errors import (
    ConfigurationError,
    LanguageModelError,
    QuotaExceededError,
    RequestTimeoutError,
    classify_provider_error,
    EmbeddingError,
)
from groundedqa.services.generation import GenerationConfig, OpenAICompatibleGenerator, TemplateGenerator
from groundedqa.services.query import PromptBuilder

_ENDPOINT = "http://llm.local/v1/chat/completions"


def _generator(handler, **overrides) -> OpenAICompatibleGenerator:
    config = GenerationConfig(model="test-model", endpoint=_ENDPOINT, **overrides)
    return OpenAICompatibleGenerator(config, http_client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_openai_compatible_sends_instruction_pair_and_clamps_temperature():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"choices": [{"message": {"content": " verbatim reply "}}]})

    reply = _generator(handler, api_key="secret").generate("system text", "user text", 0.8)

    assert reply == " verbatim reply "
    assert seen["messages"] == [
        {"role": "system", "content": "system text"},
        {"role": "user", "content": "user text"},
    ]
    assert seen["temperature"] == 0.3
    assert seen["model"] == "test-model"
    assert seen["auth"] == "Bearer secret"


def test_openai_compatible_maps_rate_limit_to_quota():
    generator = _generator(lambda request: httpx.Response(429, json={"error": "slow down"}))
    with pytest.raises(QuotaExceededError):
        generator.generate("s", "u", 0.1)


def test_openai_compatible_maps_server_error():
    generator = _generator(lambda request: httpx.Response(500))
    with pytest.raises(LanguageModelError):
        generator.generate("s", "u", 0.1)


def test_openai_compatible_rejects_empty_choices():
    generator = _generator(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(LanguageModelError):
        generator.generate("s", "u", 0.1)


def test_openai_compatible_maps_timeouts():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(RequestTimeoutError):
        _generator(handler).generate("s", "u", 0.1)


def test_openai_compatible_requires_endpoint():
    with pytest.raises(ConfigurationError):
        OpenAICompatibleGenerator(GenerationConfig(endpoint=None))


def test_template_generator_answers_from_first_context_passage():
    pair = PromptBuilder().build("Refunds take 30 days.\n\nShipping is free.", "How long do refunds take?")
    answer = TemplateGenerator().generate(pair.system, pair.user, 0.0)
    assert "Refunds take 30 days." in answer
    assert "Shipping" not in answer


def test_template_generator_without_context_falls_back():
    assert TemplateGenerator().generate("system", "no context here", 0.0) == "I don't know"


def test_classify_provider_error():
    assert isinstance(classify_provider_error(RuntimeError("Rate limit reached"), EmbeddingError, "x"), QuotaExceededError)
    assert isinstance(classify_provider_error(TimeoutError(), EmbeddingError, "x"), RequestTimeoutError)
    wrapped = classify_provider_error(RuntimeError("bad input"), EmbeddingError, "Failed to embed")
    assert isinstance(wrapped, EmbeddingError)
    assert wrapped.message == "Failed to embed: bad input"
    original = LanguageModelError("kept")
    assert classify_provider_error(original, EmbeddingError, "x") is original
