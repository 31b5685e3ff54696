"""
Wire a ComparisonService from settings

This is the only place that turns ReconciliationSettings (environment) into
concrete providers and engine config. Tests build the service directly with
fakes instead.
"""
from typing import Optional

import structlog

from packages.common.comparison_cache import (
    InMemoryComparisonCache,
    SqlComparisonCache,
)
from packages.common.config import ReconciliationSettings
from packages.common.database import DatabaseSessionManager
from packages.domain.bid_comparison.analyzer import BidAnalysisGenerator
from packages.domain.bid_comparison.comparison_service import ComparisonService
from packages.domain.bid_comparison.embedder import OpenAIEmbedder
from packages.domain.bid_comparison.engine_config import AnalysisConfig, MatchingConfig
from packages.domain.bid_comparison.matcher import LineItemMatcher
from packages.domain.bid_comparison.reasoner import (
    AnthropicReasoner,
    OpenAIReasoner,
    ProviderChainReasoner,
)
from packages.domain.bid_comparison.takeoff import TakeoffAnalysisGenerator

logger = structlog.get_logger()


def matching_config_from_settings(settings: ReconciliationSettings) -> MatchingConfig:
    return MatchingConfig(
        similarity_threshold=settings.similarity_threshold,
        exact_match_threshold=settings.exact_match_threshold,
        min_match_confidence=settings.min_match_confidence,
        max_group_size=settings.max_group_size,
        reasoning_concurrency=settings.reasoning_concurrency,
        timeout_ms=settings.reasoning_timeout_ms,
        temperature=settings.match_temperature,
        max_tokens=settings.match_max_tokens,
        embeddings_required=settings.embeddings_required,
    )


def analysis_config_from_settings(settings: ReconciliationSettings) -> AnalysisConfig:
    return AnalysisConfig(
        temperature=settings.analysis_temperature,
        max_tokens=settings.analysis_max_tokens,
        timeout_ms=settings.reasoning_timeout_ms,
        discrepancy_threshold_pct=settings.discrepancy_threshold_pct,
    )


def build_reasoner(settings: ReconciliationSettings) -> ProviderChainReasoner:
    """Anthropic first, OpenAI second; unconfigured providers are dropped"""
    return ProviderChainReasoner(
        [
            AnthropicReasoner(settings.anthropic_api_key, model=settings.anthropic_model),
            OpenAIReasoner(settings.openai_api_key, model=settings.openai_reasoning_model),
        ],
        degradation_ttl_seconds=settings.provider_degradation_ttl_seconds,
    )


async def create_comparison_service(
    settings: ReconciliationSettings,
    sessions: Optional[DatabaseSessionManager] = None,
) -> ComparisonService:
    """
    Build a fully wired ComparisonService.

    Uses the SQL cache store when DATABASE_URL is set (or a session manager
    is passed in), the in-memory store otherwise.
    """
    embedder = OpenAIEmbedder(
        api_key=settings.openai_api_key,
        model=settings.embedding_model,
        dimension=settings.embedding_dimension,
        batch_size=settings.embedding_batch_size,
    )
    reasoner = build_reasoner(settings)
    if not reasoner.is_configured:
        logger.warning("reasoning_providers_missing",
                       message="No reasoning provider configured, fallback matching and "
                               "narrative analysis will degrade")

    if sessions is None and settings.database_url:
        sessions = DatabaseSessionManager()
        await sessions.init(settings.database_url)

    if sessions is not None:
        cache = SqlComparisonCache(sessions)
    else:
        cache = InMemoryComparisonCache()

    logger.info("comparison_service_created",
                embeddings_configured=embedder.is_configured,
                reasoning_providers=[p.name for p in reasoner.providers],
                cache_store=type(cache).__name__)

    matching_config = matching_config_from_settings(settings)
    analysis_config = analysis_config_from_settings(settings)
    return ComparisonService(
        matcher=LineItemMatcher(embedder, reasoner, matching_config),
        bid_analyzer=BidAnalysisGenerator(reasoner, analysis_config),
        takeoff_analyzer=TakeoffAnalysisGenerator(reasoner, analysis_config),
        cache=cache,
    )
