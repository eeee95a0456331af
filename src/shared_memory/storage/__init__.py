"""
Storage for conversation memory.

Provides the MemoryStore protocol and its implementations. The SQLAlchemy
store is only exported when SQLAlchemy is importable.
"""

from shared_memory.storage.memory import InMemoryMemoryStore
from shared_memory.storage.protocols import MemoryStore

__all__ = [
    "MemoryStore",
    "InMemoryMemoryStore",
]

try:
    from shared_memory.storage.sqlalchemy import SQLAlchemyMemoryStore  # noqa: F401

    __all__.append("SQLAlchemyMemoryStore")
except ImportError:
    pass
