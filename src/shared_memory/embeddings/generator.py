"""
Embedding generation for shared-memory.

EmbeddingGenerator wraps a TextEncoder with the behaviour every caller
relies on: one lazy model load shared by all users, text preprocessing,
sub-batching, unit-length output and a single error type for model
failures.
"""

import asyncio
import logging
import re
from typing import Iterable, List, Optional, Sequence

import numpy as np

from shared_memory import similarity
from shared_memory.embeddings.protocol import TextEncoder
from shared_memory.errors import InvalidInputError, ModelUnavailableError
from shared_memory.similarity import SimilarityCandidate, SimilarityMatch

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10

_WHITESPACE = re.compile(r"\s+")
_UNWANTED_CHARS = re.compile(r"[^\w\s.,!?-]")


def preprocess_text(text: str) -> str:
    """Drop symbols other than basic punctuation, collapse whitespace, trim, lowercase."""
    text = _UNWANTED_CHARS.sub("", text)
    return _WHITESPACE.sub(" ", text).strip().lower()


class EmbeddingGenerator:
    """
    Async embedding generator shared by the memory service and the knowledge base.

    The encoder is loaded on first use in a worker thread. Concurrent callers
    of initialize() wait on the same lock, so exactly one load happens. A
    failed load leaves the generator unready and a later call may retry.

    Example:
        >>> generator = EmbeddingGenerator(SentenceTransformerEncoder())
        >>> await generator.initialize()
        >>> vector = await generator.generate_embedding("Python is a language")
        >>> len(vector)
        384
    """

    def __init__(
        self,
        encoder: Optional[TextEncoder] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        """
        Initialize the generator.

        Args:
            encoder: Model backend. Defaults to SentenceTransformerEncoder with
                all-MiniLM-L6-v2.
            batch_size: Number of texts sent to the encoder per call
        """
        if batch_size <= 0:
            raise InvalidInputError(f"batch_size must be positive, got {batch_size}")

        if encoder is None:
            from shared_memory.embeddings.sentence_transformer import SentenceTransformerEncoder

            encoder = SentenceTransformerEncoder()

        self._encoder = encoder
        self._batch_size = batch_size
        self._ready = False
        self._lock = asyncio.Lock()

    @property
    def dimension(self) -> int:
        return self._encoder.dimension

    @property
    def model_name(self) -> str:
        return self._encoder.model_name

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def is_ready(self) -> bool:
        return self._ready

    async def initialize(self) -> None:
        """
        Load the encoder. Safe to call repeatedly and concurrently.

        Raises:
            ModelUnavailableError: If the model could not be loaded
        """
        if self._ready:
            return

        async with self._lock:
            if self._ready:
                return

            logger.info(f"Initializing embedding model {self.model_name}")
            try:
                await asyncio.to_thread(self._encoder.load)
            except Exception as e:
                logger.error(f"Failed to load embedding model {self.model_name}: {e}")
                raise ModelUnavailableError(
                    f"Embedding model {self.model_name} could not be loaded: {e}"
                ) from e

            self._ready = True
            logger.info(f"Embedding model ready ({self.dimension} dimensions)")

    async def generate_embedding(self, text: str) -> List[float]:
        """
        Embed a single text.

        Returns:
            Unit-length vector of `dimension` floats

        Raises:
            InvalidInputError: If text is empty or whitespace
            ModelUnavailableError: If loading or inference fails
        """
        embeddings = await self.generate_embeddings([text])
        return embeddings[0]

    async def generate_embeddings(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed several texts, preserving order.

        Texts are sent to the encoder in sub-batches of batch_size, awaited
        one after another to bound memory use.

        Raises:
            InvalidInputError: If any text is empty or whitespace
            ModelUnavailableError: If loading or inference fails
        """
        if not texts:
            return []

        prepared = []
        for index, text in enumerate(texts):
            if not isinstance(text, str) or not text.strip():
                raise InvalidInputError(f"Cannot embed empty text (index {index})")
            prepared.append(preprocess_text(text))

        await self.initialize()

        results: List[List[float]] = []
        for start in range(0, len(prepared), self._batch_size):
            batch = prepared[start : start + self._batch_size]
            results.extend(await self._encode_batch(batch))

        logger.debug(f"Generated {len(results)} embeddings")
        return results

    async def _encode_batch(self, batch: List[str]) -> List[List[float]]:
        try:
            raw = await asyncio.to_thread(self._encoder.encode, batch)
            matrix = np.asarray(raw, dtype=np.float64)
        except Exception as e:
            logger.error(f"Embedding inference failed: {e}")
            raise ModelUnavailableError(f"Embedding inference failed: {e}") from e

        if matrix.ndim != 2 or matrix.shape[0] != len(batch):
            raise ModelUnavailableError(
                f"Encoder returned {matrix.shape} for a batch of {len(batch)} texts"
            )
        if matrix.shape[1] != self.dimension:
            raise ModelUnavailableError(
                f"Encoder returned {matrix.shape[1]}-dimensional vectors, "
                f"expected {self.dimension}"
            )

        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        # Zero rows stay zero
        norms[norms == 0] = 1.0
        return (matrix / norms).tolist()

    def calculate_similarity(self, vector_a: Sequence[float], vector_b: Sequence[float]) -> float:
        return similarity.cosine_similarity(vector_a, vector_b)

    def find_similar(
        self,
        query_vector: Sequence[float],
        candidates: Iterable[SimilarityCandidate],
        top_k: int = 5,
        min_similarity: float = 0.1,
    ) -> List[SimilarityMatch]:
        return similarity.find_similar(query_vector, candidates, top_k, min_similarity)
