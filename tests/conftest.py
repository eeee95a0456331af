"""Shared fixtures: a deterministic text encoder and ready-made services."""

import hashlib
import re
from datetime import datetime, timedelta

import numpy as np
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from shared_memory.embeddings import EmbeddingGenerator
from shared_memory.extractors import PatternMemoryExtractor
from shared_memory.memory_service import SharedMemoryService
from shared_memory.models import ExtractionMessage
from shared_memory.storage import InMemoryMemoryStore
from shared_memory.storage.sqlalchemy import SQLAlchemyMemoryStore

_WORD = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset(
    {"a", "an", "the", "is", "are", "was", "of", "and", "or", "to", "in", "for", "on", "it"}
)


class HashingEncoder:
    """
    Bag-of-words encoder: each word is hashed to one of `dimension` buckets.

    Texts sharing words get a positive cosine similarity, texts sharing none
    get (barring bucket collisions) zero.
    """

    def __init__(self, dimension: int = 384, model_name: str = "hashing-test-encoder"):
        self._dimension = dimension
        self._model_name = model_name
        self.load_calls = 0
        self.encode_calls = 0
        self.fail_load = False
        self.fail_encode = False

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    def load(self) -> None:
        self.load_calls += 1
        if self.fail_load:
            raise OSError("model weights not found")

    def encode(self, texts):
        self.encode_calls += 1
        if self.fail_encode:
            raise RuntimeError("inference failed")

        matrix = np.zeros((len(texts), self._dimension), dtype=np.float32)
        for row, text in enumerate(texts):
            for word in _WORD.findall(text.lower()):
                if word in _STOPWORDS:
                    continue
                bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self._dimension
                matrix[row, bucket] += 1.0
        return matrix


def build_messages(*contents, senders=("alice", "bob"), start=None):
    """Build ExtractionMessages one minute apart, alternating senders."""
    start = start or datetime(2024, 5, 1, 12, 0)
    return [
        ExtractionMessage(
            id=f"m{index + 1}",
            content=content,
            sender=senders[index % len(senders)],
            timestamp=start + timedelta(minutes=index),
        )
        for index, content in enumerate(contents)
    ]


@pytest.fixture
def make_messages():
    return build_messages


@pytest.fixture
def encoder():
    return HashingEncoder()


@pytest.fixture
def embeddings(encoder):
    return EmbeddingGenerator(encoder)


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def sqlalchemy_store(sqlite_engine):
    store = SQLAlchemyMemoryStore(sqlite_engine)
    store.create_tables()
    return store


@pytest.fixture
def memory_store():
    return InMemoryMemoryStore()


@pytest.fixture
def memory_service(memory_store, embeddings):
    return SharedMemoryService(memory_store, embeddings, PatternMemoryExtractor())
