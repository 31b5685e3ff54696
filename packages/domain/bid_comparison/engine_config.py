"""
Explicit configuration passed into the reconciliation engine

The engine never reads environment state; build these from
ReconciliationSettings (see factory.py) or construct them directly in tests.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class MatchingConfig:
    """Thresholds and limits for prematching and fallback reasoning"""
    similarity_threshold: float = 0.75
    exact_match_threshold: float = 0.9
    min_match_confidence: int = 60
    max_group_size: int = 3
    reasoning_concurrency: int = 2
    timeout_ms: int = 60000
    temperature: float = 0.2
    max_tokens: int = 1000
    embeddings_required: bool = False


@dataclass(frozen=True)
class AnalysisConfig:
    """Options for the comparative analysis call"""
    temperature: float = 0.3
    max_tokens: int = 4000
    timeout_ms: int = 60000
    discrepancy_threshold_pct: float = 10.0
