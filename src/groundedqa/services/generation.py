"""Language model backends for groundedqa."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from groundedqa.errors import (
    ConfigurationError,
    LanguageModelError,
    QuotaExceededError,
    RequestTimeoutError,
    classify_provider_error,
)
from groundedqa.retrieval.gate import FALLBACK_ANSWER

LOGGER = logging.getLogger(__name__)

MAX_TEMPERATURE = 0.3


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "Qwen/Qwen2.5-1.8B-Instruct"
    max_new_tokens: int = 1024
    temperature: float = 0.3
    endpoint: str | None = None
    api_key: str | None = None
    timeout: float = 30.0
    device: str | None = None


def clamp_temperature(value: float) -> float:
    return min(max(value, 0.0), MAX_TEMPERATURE)


class LanguageModelProvider(Protocol):
    """Protocol describing generation behaviour."""

    def generate(self, system_instruction: str, user_instruction: str, temperature: float) -> str:
        """Return the model's reply to the instruction pair."""


class TemplateGenerator:
    """Simple deterministic generator used for tests and offline environments.

    Echoes the highest ranked context passage, which keeps every answer inside
    the supplied context.
    """

    def generate(self, system_instruction: str, user_instruction: str, temperature: float) -> str:
        context = _context_section(user_instruction)
        if not context:
            return FALLBACK_ANSWER
        first = context.split("\n\n", 1)[0].strip()
        return f"Based on the provided documents: {first}"


def _context_section(user_instruction: str) -> str:
    _, marker, rest = user_instruction.partition("Context:\n")
    if not marker:
        return ""
    context, _, _ = rest.partition("\n\nQuestion:")
    return context.strip()


class OpenAICompatibleGenerator:
    """Calls any chat-completions endpoint that speaks the OpenAI wire format."""

    def __init__(self, config: GenerationConfig, *, http_client: httpx.Client | None = None) -> None:
        if not config.endpoint:
            raise ConfigurationError("An endpoint is required for the openai_compatible generator")
        self._config = config
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self._http = http_client or httpx.Client(timeout=config.timeout)
        self._headers = headers

    def generate(self, system_instruction: str, user_instruction: str, temperature: float) -> str:
        payload = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": user_instruction},
            ],
            "temperature": clamp_temperature(temperature),
            "max_tokens": self._config.max_new_tokens,
        }
        try:
            response = self._http.post(
                self._config.endpoint,
                json=payload,
                headers=self._headers,
                timeout=self._config.timeout,
            )
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError("Language model request timed out") from exc
        except httpx.HTTPError as exc:
            raise LanguageModelError(f"Failed to call language model: {exc}") from exc

        if response.status_code == 429:
            raise QuotaExceededError("Language model quota exceeded")
        if response.status_code >= 400:
            raise LanguageModelError(
                f"Language model request failed: {response.status_code} {response.reason_phrase}"
            )
        return self._content(response)

    @staticmethod
    def _content(response: httpx.Response) -> str:
        try:
            data: Any = response.json()
        except ValueError as exc:
            raise LanguageModelError("Invalid response from language model") from exc
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise LanguageModelError("Invalid response from language model")
        content = (choices[0].get("message") or {}).get("content")
        if not isinstance(content, str):
            raise LanguageModelError("Invalid response from language model")
        return content


class TransformersGenerator:
    """Runs a local Hugging Face causal language model.

    Requires the ``models`` extra. Load failures raise instead of degrading to
    another backend.
    """

    def __init__(self, config: GenerationConfig | None = None) -> None:
        self._config = config or GenerationConfig()
        try:
            from transformers import AutoModelForCausalLM, AutoTokenizer
        except ImportError as exc:
            raise ConfigurationError("The transformers generator needs the 'models' extra installed") from exc

        self._tokenizer = AutoTokenizer.from_pretrained(self._config.model, trust_remote_code=True)
        self._model = AutoModelForCausalLM.from_pretrained(self._config.model, trust_remote_code=True)
        if self._tokenizer.pad_token is None and self._tokenizer.eos_token is not None:
            self._tokenizer.pad_token = self._tokenizer.eos_token
        if getattr(self._model.config, "pad_token_id", None) is None and self._tokenizer.pad_token_id is not None:
            self._model.config.pad_token_id = self._tokenizer.pad_token_id
        if self._config.device:
            self._model.to(self._config.device)
        LOGGER.info("Loaded generation model %s", self._config.model)

    def generate(self, system_instruction: str, user_instruction: str, temperature: float) -> str:
        import torch

        messages = [
            {"role": "system", "content": system_instruction},
            {"role": "user", "content": user_instruction},
        ]
        try:
            if hasattr(self._tokenizer, "apply_chat_template"):
                prompt = self._tokenizer.apply_chat_template(messages, tokenize=False, add_generation_prompt=True)
            else:
                prompt = f"{system_instruction}\n\n{user_instruction}\n"
            tokenized = self._tokenizer(prompt, return_tensors="pt", padding=True)
            input_ids = tokenized.input_ids
            attention_mask = tokenized.attention_mask
            prompt_length = input_ids.shape[1]
            if self._config.device:
                input_ids = input_ids.to(self._config.device)
                attention_mask = attention_mask.to(self._config.device)
            temperature = clamp_temperature(temperature)
            sampling = {"do_sample": True, "temperature": temperature} if temperature > 0 else {"do_sample": False}
            with torch.no_grad():
                output = self._model.generate(
                    input_ids,
                    attention_mask=attention_mask,
                    max_new_tokens=self._config.max_new_tokens,
                    **sampling,
                )
        except Exception as exc:
            raise classify_provider_error(exc, LanguageModelError, "Failed to generate response") from exc
        return self._tokenizer.decode(output[0][prompt_length:], skip_special_tokens=True)
