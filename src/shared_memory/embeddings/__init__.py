"""
Embedding generation for shared-memory.

The generator is backend-agnostic; any object satisfying TextEncoder can be
plugged in. SentenceTransformerEncoder needs the optional
sentence-transformers dependency, but is only imported when loaded.
"""

from shared_memory.embeddings.generator import EmbeddingGenerator, preprocess_text
from shared_memory.embeddings.protocol import TextEncoder
from shared_memory.embeddings.sentence_transformer import SentenceTransformerEncoder

__all__ = [
    "EmbeddingGenerator",
    "SentenceTransformerEncoder",
    "TextEncoder",
    "preprocess_text",
]
