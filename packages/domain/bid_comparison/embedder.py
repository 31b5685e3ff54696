"""
Vector Embedder - description embeddings for similarity prematching

Embedding is an optimization, not a correctness requirement: callers treat
ConfigurationError / DimensionMismatchError as "prematching unavailable"
and hand every anchor to the fallback reasoner instead.
"""
from typing import List, Optional, Protocol, Sequence

import numpy as np
import openai
import structlog

from packages.domain.bid_comparison.errors import (
    ConfigurationError,
    DimensionMismatchError,
    ProviderTransientError,
)

logger = structlog.get_logger()


class Embedder(Protocol):
    """
    Protocol for embedding providers.

    Implementations must return one vector per input text, in input order.
    """

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed texts.

        Raises:
            ConfigurationError: Provider not configured
            DimensionMismatchError: Provider returned a vector of the wrong size
            ProviderTransientError: Network, timeout or rate-limit failure
        """
        ...


class OpenAIEmbedder:
    """
    OpenAI embeddings, batched to respect provider input limits.

    Batches run sequentially; a single pipeline issues one embed() call.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        batch_size: int = 100,
        client=None,
    ):
        """
        Initialize embedder.

        Args:
            api_key: OpenAI API key (no env fallback - pass it explicitly)
            model: Embedding model name
            dimension: Expected vector size for the model
            batch_size: Max texts per provider request
            client: Pre-built AsyncOpenAI-compatible client (tests)
        """
        self.model = model
        self.dimension = dimension
        self.batch_size = batch_size

        if client is not None:
            self.client = client
        elif api_key:
            self.client = openai.AsyncOpenAI(api_key=api_key)
        else:
            self.client = None
            logger.warning("openai_embedding_key_missing",
                           message="OPENAI_API_KEY not set, similarity prematching disabled")

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if self.client is None:
            raise ConfigurationError(
                "OpenAI API key not configured. Set OPENAI_API_KEY to enable embeddings."
            )

        embeddings: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start:start + self.batch_size])
            try:
                response = await self.client.embeddings.create(
                    model=self.model,
                    input=batch,
                    encoding_format="float",
                )
            except openai.APIError as e:
                raise ProviderTransientError("openai_embeddings", str(e)) from e

            for entry in response.data:
                vector = entry.embedding or []
                if len(vector) != self.dimension:
                    raise DimensionMismatchError(self.dimension, len(vector))
                embeddings.append(vector)

            logger.debug("embedding_batch_complete",
                         batch_start=start,
                         batch_size=len(batch),
                         model=self.model)

        if len(embeddings) != len(texts):
            raise ProviderTransientError(
                "openai_embeddings",
                f"expected {len(texts)} vectors, got {len(embeddings)}",
            )

        return embeddings


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Dot product over the product of L2 norms.

    Zero-norm or mismatched-length vectors score 0.0 (never a match).
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        return 0.0

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(va, vb) / (norm_a * norm_b))


def similarity_matrix(anchors: Sequence[Sequence[float]], others: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Pairwise cosine similarity, shape (len(anchors), len(others)).

    Rows or columns with zero norm are all 0.0.
    """
    if len(anchors) == 0 or len(others) == 0:
        return np.zeros((len(anchors), len(others)))

    a = np.asarray(anchors, dtype=float)
    b = np.asarray(others, dtype=float)

    norm_a = np.linalg.norm(a, axis=1)
    norm_b = np.linalg.norm(b, axis=1)
    denom = np.outer(norm_a, norm_b)
    dots = a @ b.T

    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, dots / np.where(denom > 0, denom, 1.0), 0.0)
    return sims
