import pytest
from pydantic import ValidationError

from packages.common.comparison_cache import InMemoryComparisonCache
from packages.common.config import ReconciliationSettings
from packages.domain.bid_comparison.factory import (
    create_comparison_service,
    matching_config_from_settings,
)

ENV_VARS = ["ANTHROPIC_API_KEY", "OPENAI_API_KEY", "DATABASE_URL", "LOG_LEVEL", "SIMILARITY_THRESHOLD",
            "REASONING_CONCURRENCY", "EMBEDDINGS_REQUIRED"]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = ReconciliationSettings(_env_file=None)

    assert settings.embedding_model == "text-embedding-3-small"
    assert settings.embedding_dimension == 1536
    assert settings.embedding_batch_size == 100
    assert settings.similarity_threshold == 0.75
    assert settings.min_match_confidence == 60
    assert settings.max_group_size == 3
    assert settings.provider_degradation_ttl_seconds == 1800


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SIMILARITY_THRESHOLD", "0.8")
    monkeypatch.setenv("REASONING_CONCURRENCY", "5")
    monkeypatch.setenv("EMBEDDINGS_REQUIRED", "true")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = ReconciliationSettings(_env_file=None)
    config = matching_config_from_settings(settings)

    assert settings.log_level == "DEBUG"
    assert config.similarity_threshold == 0.8
    assert config.reasoning_concurrency == 5
    assert config.embeddings_required is True


@pytest.mark.parametrize("name, value", [("LOG_LEVEL", "loud"), ("REASONING_CONCURRENCY", "0")])
def test_invalid_values_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        ReconciliationSettings(_env_file=None)


async def test_factory_without_credentials_uses_in_memory_cache():
    service = await create_comparison_service(ReconciliationSettings(_env_file=None))

    assert isinstance(service.cache, InMemoryComparisonCache)
    assert not service.matcher.fallback.available
    assert service.bid_analyzer.config.max_tokens == 4000


async def test_factory_wires_configured_providers(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    service = await create_comparison_service(ReconciliationSettings(_env_file=None))

    assert [p.name for p in service.matcher.fallback.reasoner.providers] == ["anthropic", "openai"]
    assert service.matcher.embedder.is_configured
