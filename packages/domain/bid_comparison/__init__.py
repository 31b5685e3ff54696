"""
Bid Comparison Module - line-item reconciliation across bids and takeoffs

Pipeline:
1. Similarity prematch (embeddings, cosine >= 0.75)
2. Fallback reasoning for what embeddings missed (single item, then grouped)
3. Deterministic variance statistics + narrative analysis

Example flow:
- "Install 200 LF of 2x4 framing" ($5.00/LF)
  vs "Framing - 2x4 lumber, 200 linear feet" ($5.50/LF)
  → embeddings: similar match → price variance 10%
- "Electrical rough-in" vs "Wire pulls" + "Box installs"
  → no embedding match → grouped reasoning match (2 items combined)
"""

from packages.domain.bid_comparison.comparison_service import (
    ComparisonOutcome,
    ComparisonService,
)
from packages.domain.bid_comparison.engine_config import (
    AnalysisConfig,
    MatchingConfig,
)
from packages.domain.bid_comparison.errors import (
    ConfigurationError,
    DimensionMismatchError,
    MalformedResponseError,
    ProviderTransientError,
    ReconciliationError,
)
from packages.domain.bid_comparison.matcher import LineItemMatcher
from packages.domain.bid_comparison.schemas import (
    AnalysisResult,
    BidContext,
    LineItem,
    LineItemMatch,
    MatchCandidate,
    MatchingResult,
    MatchType,
    TakeoffAnalysisResult,
    TakeoffItem,
)

__all__ = [
    'AnalysisConfig',
    'AnalysisResult',
    'BidContext',
    'ComparisonOutcome',
    'ComparisonService',
    'ConfigurationError',
    'DimensionMismatchError',
    'LineItem',
    'LineItemMatch',
    'LineItemMatcher',
    'MalformedResponseError',
    'MatchCandidate',
    'MatchingConfig',
    'MatchingResult',
    'MatchType',
    'ProviderTransientError',
    'ReconciliationError',
    'TakeoffAnalysisResult',
    'TakeoffItem',
]
