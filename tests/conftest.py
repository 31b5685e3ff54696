"""
Shared fixtures: deterministic, network-free providers and item factories
"""
import asyncio
import inspect
import json
from collections import deque
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from packages.domain.bid_comparison.engine_config import AnalysisConfig, MatchingConfig
from packages.domain.bid_comparison.reasoner import ReasonerOptions, ReasonerResponse
from packages.domain.bid_comparison.schemas import BidContext, LineItem

DIMENSION = 4


class FakeEmbedder:
    """
    Embedder keyed by description.

    Unknown descriptions embed to the zero vector (similarity 0 with anything).
    """

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, error: Optional[Exception] = None):
        self.vectors = vectors or {}
        self.error = error
        self.calls: List[List[str]] = []

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [list(self.vectors.get(t, [0.0] * DIMENSION)) for t in texts]


class ScriptedReasoner:
    """
    Reasoner that answers from a handler or a queue of canned responses.

    A handler receives (system_prompt, user_prompt) and may return a str, a
    dict (JSON-encoded), an Exception (raised), or an awaitable of those.
    """

    name = "scripted"
    is_configured = True

    def __init__(self, handler: Optional[Callable] = None, responses: Optional[list] = None, delay: float = 0.0):
        self.handler = handler
        self.responses = deque(responses or [])
        self.delay = delay
        self.calls: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def complete(self, system_prompt: str, user_prompt: str, options: ReasonerOptions) -> ReasonerResponse:
        self.calls.append((system_prompt, user_prompt, options))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)

            if self.handler is not None:
                result = self.handler(system_prompt, user_prompt)
            else:
                result = self.responses.popleft()
            if inspect.isawaitable(result):
                result = await result

            if isinstance(result, Exception):
                raise result
            if isinstance(result, (dict, list)):
                result = json.dumps(result)
            return ReasonerResponse(content=result, provider=self.name, model="scripted-1")
        finally:
            self.in_flight -= 1


def verdict(is_match: bool = True, confidence: float = 85, match_type: str = "similar", **extra) -> dict:
    """Match verdict payload as the reasoning service returns it"""
    payload = {
        "isMatch": is_match,
        "confidence": confidence,
        "matchType": match_type,
        "normalizedWorkType": extra.pop("normalized_work_type", "Wood framing"),
        "normalizedMaterials": extra.pop("normalized_materials", ["lumber"]),
        "quantityVariance": 0,
        "priceVariance": 0,
        "notes": extra.pop("notes", "Same scope"),
    }
    if "selected" in extra:
        payload["selectedItemIndices"] = extra.pop("selected")
    payload.update(extra)
    return payload


def make_item(
    item_id: str,
    owner_id: str,
    description: str,
    amount: float = 100.0,
    quantity: Optional[float] = None,
    unit: Optional[str] = None,
    unit_price: Optional[float] = None,
    category: str = "General",
    sequence_number: int = 0,
    notes: Optional[str] = None,
) -> LineItem:
    return LineItem(
        id=item_id,
        owner_id=owner_id,
        sequence_number=sequence_number,
        description=description,
        category=category,
        quantity=quantity,
        unit=unit,
        unit_price=unit_price,
        amount=amount,
        notes=notes,
    )


@pytest.fixture
def matching_config() -> MatchingConfig:
    return MatchingConfig(reasoning_concurrency=2, timeout_ms=1000)


@pytest.fixture
def analysis_config() -> AnalysisConfig:
    return AnalysisConfig(timeout_ms=1000)


@pytest.fixture
def framing_anchor() -> LineItem:
    return make_item("a1", "bid-1", "Install 200 LF of 2x4 framing",
                     amount=1000, quantity=200, unit="LF", unit_price=5.0, category="Framing")


@pytest.fixture
def framing_candidate() -> LineItem:
    return make_item("b1", "B1", "Framing - 2x4 lumber, 200 linear feet",
                     amount=1100, quantity=200, unit="linear feet", unit_price=5.5, category="Framing")


@pytest.fixture
def anchor_bid() -> BidContext:
    return BidContext(id="bid-1", bidder_name="Acme Framing", amount=1000, timeline="3 weeks")


@pytest.fixture
def comparison_bid() -> BidContext:
    return BidContext(id="B1", bidder_name="North Carpentry", amount=1100, timeline="4 weeks")
