"""
Text encoder protocol for shared-memory.

An encoder is the raw model behind the EmbeddingGenerator. The generator
owns preprocessing, batching, normalization and error mapping; encoders
only turn already cleaned strings into vectors.
"""

from typing import List, Protocol, Sequence

from typing_extensions import runtime_checkable


@runtime_checkable
class TextEncoder(Protocol):
    """
    Protocol for embedding model backends.

    Implementations must:

    1. Load lazily in load(), never in __init__ (loading may be slow)
    2. Return one vector per input text, in input order
    3. Produce vectors of exactly `dimension` elements
    4. Be deterministic for the same input

    Example:
        >>> encoder = SentenceTransformerEncoder()
        >>> encoder.load()
        >>> vectors = encoder.encode(["hello world"])
        >>> len(vectors[0]) == encoder.dimension
        True
    """

    @property
    def dimension(self) -> int:
        """Number of elements in each vector produced by this encoder."""
        ...

    @property
    def model_name(self) -> str:
        """Identifier of the underlying model (e.g. "sentence-transformers/all-MiniLM-L6-v2")."""
        ...

    def load(self) -> None:
        """
        Load model weights. Called once, from a worker thread.

        Raises:
            Exception: Any failure; the generator maps it to ModelUnavailableError
        """
        ...

    def encode(self, texts: List[str]) -> Sequence[Sequence[float]]:
        """
        Encode a batch of texts. Blocking; called from a worker thread.

        Args:
            texts: Preprocessed, non-empty texts

        Returns:
            One vector per text (lists or numpy arrays)
        """
        ...
