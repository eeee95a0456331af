"""Local sentence-transformers encoder for shared-memory."""

import logging
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_DIMENSION = 384


class SentenceTransformerEncoder:
    """
    Encoder backed by a local sentence-transformers model.

    The default model, all-MiniLM-L6-v2, is small enough for a desktop
    application and produces 384-dimensional vectors. Weights are fetched
    into the HuggingFace cache on first load and used offline afterwards.

    Nothing is imported or loaded until load() is called, so constructing
    the encoder is cheap and works without sentence-transformers installed.

    Example:
        >>> encoder = SentenceTransformerEncoder(device="cpu")
        >>> encoder.load()
        >>> encoder.encode(["python is a programming language"]).shape
        (1, 384)
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        device: Optional[str] = None,
        cache_folder: Optional[str] = None,
        dimension: int = DEFAULT_DIMENSION,
    ):
        """
        Initialize the encoder.

        Args:
            model_name: HuggingFace model identifier
            device: Device for computation ("cuda", "cpu", or None for auto)
            cache_folder: Directory for model cache (None = default ~/.cache)
            dimension: Expected output dimension, checked after loading
        """
        self._model_name = model_name
        self._device = device
        self._cache_folder = cache_folder
        self._dimension = dimension
        self._model = None

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    def load(self) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ImportError(
                "sentence-transformers is required for SentenceTransformerEncoder. "
                "Install with: pip install shared-memory[embeddings]"
            ) from e

        logger.info(f"Loading embedding model: {self._model_name}")
        model = SentenceTransformer(
            self._model_name,
            device=self._device,
            cache_folder=self._cache_folder,
        )

        model_dimension = model.get_sentence_embedding_dimension()
        if model_dimension != self._dimension:
            raise ValueError(
                f"Model {self._model_name} produces {model_dimension}-dimensional vectors, "
                f"expected {self._dimension}"
            )

        self._model = model
        logger.info(f"Model loaded: {self._model_name} ({model_dimension} dimensions)")

    def encode(self, texts: List[str]) -> np.ndarray:
        if self._model is None:
            raise RuntimeError("SentenceTransformerEncoder.load() must be called before encode()")

        # Normalization happens in the generator so every encoder gets the same treatment
        return self._model.encode(
            texts,
            normalize_embeddings=False,
            show_progress_bar=False,
            convert_to_numpy=True,
        )
