"""
Application configuration using Pydantic Settings
Reads from environment variables and .env file

Only the outer layer (scripts, service factory) reads these settings.
The reconciliation engine receives explicit config objects built from them.
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReconciliationSettings(BaseSettings):
    """Bid reconciliation settings from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Reasoning providers (probed in order: Anthropic → OpenAI)
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_model: str = Field(default="claude-sonnet-4-5", alias="ANTHROPIC_MODEL")
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_reasoning_model: str = Field(default="gpt-4o-mini", alias="OPENAI_REASONING_MODEL")
    provider_degradation_ttl_seconds: int = Field(default=1800, alias="PROVIDER_DEGRADATION_TTL_SECONDS")

    # Embeddings
    embedding_model: str = Field(default="text-embedding-3-small", alias="OPENAI_EMBEDDING_MODEL")
    embedding_dimension: int = Field(default=1536, alias="EMBEDDING_DIMENSION")
    embedding_batch_size: int = Field(default=100, alias="EMBEDDING_BATCH_SIZE")
    embeddings_required: bool = Field(default=False, alias="EMBEDDINGS_REQUIRED")

    # Matching rules
    similarity_threshold: float = Field(default=0.75, alias="SIMILARITY_THRESHOLD")
    exact_match_threshold: float = Field(default=0.9, alias="EXACT_MATCH_THRESHOLD")
    min_match_confidence: int = Field(default=60, alias="MIN_MATCH_CONFIDENCE")
    max_group_size: int = Field(default=3, alias="MAX_GROUP_SIZE")
    discrepancy_threshold_pct: float = Field(default=10.0, alias="DISCREPANCY_THRESHOLD_PCT")

    # Reasoning calls
    reasoning_concurrency: int = Field(default=2, alias="REASONING_CONCURRENCY")
    reasoning_timeout_ms: int = Field(default=60000, alias="REASONING_TIMEOUT_MS")
    match_temperature: float = Field(default=0.2, alias="MATCH_TEMPERATURE")
    match_max_tokens: int = Field(default=1000, alias="MATCH_MAX_TOKENS")
    analysis_temperature: float = Field(default=0.3, alias="ANALYSIS_TEMPERATURE")
    analysis_max_tokens: int = Field(default=4000, alias="ANALYSIS_MAX_TOKENS")

    # Cache store (SQL-backed when set, in-memory otherwise)
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("reasoning_concurrency", "embedding_batch_size", "max_group_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Pool sizes and batch sizes must be at least 1"""
        if v < 1:
            raise ValueError("must be >= 1")
        return v


@lru_cache()
def get_settings() -> ReconciliationSettings:
    """Get cached settings instance"""
    return ReconciliationSettings()
