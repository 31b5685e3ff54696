import pytest

from conftest import FakeEmbedder, make_item
from packages.domain.bid_comparison.engine_config import MatchingConfig
from packages.domain.bid_comparison.prematcher import SimilarityPrematcher
from packages.domain.bid_comparison.schemas import MatchSource, MatchType


@pytest.fixture
def items():
    anchors = [
        make_item("a1", "bid-1", "Install drywall"),
        make_item("a2", "bid-1", "Paint interior"),
    ]
    comparison = {
        "bid-2": [
            make_item("b1", "bid-2", "Drywall hang and tape"),
            make_item("b2", "bid-2", "Roofing"),
        ],
        "bid-3": [
            make_item("c1", "bid-3", "Gypsum board installation"),
        ],
    }
    return anchors, comparison


async def test_keeps_candidates_above_threshold_and_classifies(items):
    anchors, comparison = items
    embedder = FakeEmbedder({
        "Install drywall": [1.0, 0.0, 0.0, 0.0],
        "Drywall hang and tape": [0.95, 0.312, 0.0, 0.0],    # ~0.95 -> exact
        "Gypsum board installation": [0.8, 0.6, 0.0, 0.0],   # 0.80 -> similar
        "Roofing": [0.0, 0.0, 1.0, 0.0],
        "Paint interior": [0.0, 0.0, 0.0, 1.0],
    })
    prematcher = SimilarityPrematcher(embedder, MatchingConfig())

    result = await prematcher.prematch(anchors, comparison)

    assert set(result) == {"a1"}
    by_item = {c.item.id: c for c in result["a1"]}
    assert set(by_item) == {"b1", "c1"}
    assert by_item["b1"].match_type == MatchType.EXACT
    assert by_item["b1"].owner_id == "bid-2"
    assert by_item["c1"].match_type == MatchType.SIMILAR
    assert by_item["c1"].confidence == 80
    assert all(c.source == MatchSource.EMBEDDING for c in result["a1"])
    assert all(0 <= c.confidence <= 100 for c in result["a1"])


async def test_single_embed_call_for_all_descriptions(items):
    anchors, comparison = items
    embedder = FakeEmbedder()

    await SimilarityPrematcher(embedder, MatchingConfig()).prematch(anchors, comparison)

    assert len(embedder.calls) == 1
    assert len(embedder.calls[0]) == 5


async def test_comparison_item_may_serve_several_anchors():
    anchors = [
        make_item("a1", "bid-1", "Framing labor"),
        make_item("a2", "bid-1", "Framing material"),
    ]
    comparison = {"bid-2": [make_item("b1", "bid-2", "Framing complete")]}
    embedder = FakeEmbedder({
        "Framing labor": [1.0, 0.1, 0.0, 0.0],
        "Framing material": [1.0, -0.1, 0.0, 0.0],
        "Framing complete": [1.0, 0.0, 0.0, 0.0],
    })

    result = await SimilarityPrematcher(embedder, MatchingConfig()).prematch(anchors, comparison)

    assert [c.item.id for c in result["a1"]] == ["b1"]
    assert [c.item.id for c in result["a2"]] == ["b1"]


async def test_zero_vectors_never_match():
    anchors = [make_item("a1", "bid-1", "Unknown scope")]
    comparison = {"bid-2": [make_item("b1", "bid-2", "Also unknown")]}

    result = await SimilarityPrematcher(FakeEmbedder(), MatchingConfig()).prematch(anchors, comparison)

    assert result == {}


async def test_empty_inputs_skip_embedding():
    embedder = FakeEmbedder()

    assert await SimilarityPrematcher(embedder, MatchingConfig()).prematch([], {"bid-2": []}) == {}
    assert embedder.calls == []
