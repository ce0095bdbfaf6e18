from __future__ import annotations

import pytest
from pydantic import ValidationError as SettingsValidationError

from groundedqa.config import Settings, get_settings


def test_defaults_embedding_model_and_dim():
    settings = get_settings({"environment": "test"})
    assert settings.embedding_model == "BAAI/bge-small-en-v1.5"
    assert settings.embedding_dim == 384
    assert settings.is_test


def test_retrieval_and_resilience_defaults():
    settings = Settings()
    assert settings.relevance_threshold == 0.75
    assert settings.retrieval_top_k == 5
    assert settings.context_token_budget == 3000
    retry = settings.retry_config()
    assert (retry.max_attempts, retry.base_delay, retry.max_delay, retry.backoff_factor) == (3, 1.0, 10.0, 2.0)
    circuit = settings.circuit_config()
    assert (circuit.failure_threshold, circuit.reset_timeout, circuit.monitoring_period) == (5, 60.0, 60.0)


def test_upload_limits_defaults():
    limits = Settings().upload_size_limits
    assert limits == {"pdf": 10 * 1024 * 1024, "docx": 10 * 1024 * 1024, "txt": 5 * 1024 * 1024}


def test_env_prefix_is_applied(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("GROUNDEDQA_RELEVANCE_THRESHOLD", "0.5")
    assert Settings().relevance_threshold == 0.5


def test_invalid_settings_are_rejected():
    with pytest.raises(SettingsValidationError):
        Settings(relevance_threshold=1.5)
    with pytest.raises(SettingsValidationError):
        Settings(chunk_size=100, chunk_overlap=100)
    with pytest.raises(SettingsValidationError):
        Settings(generator_provider="openai_compatible", generator_endpoint=None)
