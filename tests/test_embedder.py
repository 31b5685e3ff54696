from types import SimpleNamespace

import pytest

from packages.domain.bid_comparison.embedder import (
    OpenAIEmbedder,
    cosine_similarity,
    similarity_matrix,
)
from packages.domain.bid_comparison.errors import ConfigurationError, DimensionMismatchError


class FakeEmbeddingsAPI:
    def __init__(self, dimension: int, short_at: int = -1):
        self.dimension = dimension
        self.short_at = short_at
        self.batches = []

    async def create(self, model, input, encoding_format):
        self.batches.append(list(input))
        data = []
        for text in input:
            size = self.dimension - 1 if text == f"item-{self.short_at}" else self.dimension
            # Encode the text index in the first component so order can be checked
            first = float(text.split("-")[1])
            data.append(SimpleNamespace(embedding=[first] + [0.0] * (size - 1)))
        return SimpleNamespace(data=data)


def make_embedder(dimension=3, batch_size=100, short_at=-1):
    api = FakeEmbeddingsAPI(dimension, short_at)
    client = SimpleNamespace(embeddings=api)
    return OpenAIEmbedder(model="test-embedding", dimension=dimension, batch_size=batch_size, client=client), api


def test_cosine_similarity_of_vector_with_itself_is_one():
    assert cosine_similarity([0.3, 0.4, 0.5], [0.3, 0.4, 0.5]) == pytest.approx(1.0)


def test_cosine_similarity_of_orthogonal_vectors_is_zero():
    assert cosine_similarity([1.0, 0.0], [0.0, 2.0]) == pytest.approx(0.0)


def test_zero_norm_vector_never_matches():
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0


def test_similarity_matrix_handles_zero_rows():
    sims = similarity_matrix([[1.0, 0.0], [0.0, 0.0]], [[1.0, 0.0], [0.0, 1.0]])
    assert sims.shape == (2, 2)
    assert sims[0, 0] == pytest.approx(1.0)
    assert sims[0, 1] == pytest.approx(0.0)
    assert sims[1, 0] == 0.0


async def test_embed_batches_and_preserves_order():
    embedder, api = make_embedder(batch_size=100)
    texts = [f"item-{i}" for i in range(250)]

    vectors = await embedder.embed(texts)

    assert [len(b) for b in api.batches] == [100, 100, 50]
    assert len(vectors) == 250
    assert [v[0] for v in vectors] == [float(i) for i in range(250)]


async def test_dimension_mismatch_is_fatal():
    embedder, _ = make_embedder(dimension=3, short_at=5)

    with pytest.raises(DimensionMismatchError) as exc_info:
        await embedder.embed([f"item-{i}" for i in range(10)])

    assert exc_info.value.expected == 3
    assert exc_info.value.actual == 2


async def test_unconfigured_embedder_raises_configuration_error():
    embedder = OpenAIEmbedder(api_key=None)

    assert not embedder.is_configured
    with pytest.raises(ConfigurationError):
        await embedder.embed(["anything"])
