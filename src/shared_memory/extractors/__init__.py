"""
Memory extraction from conversations.

Provides the extractor protocol and a rule-based implementation driven by
the pattern tables in shared_memory.extractors.patterns.
"""

from shared_memory.extractors.base import MemoryExtractor
from shared_memory.extractors.pattern_extractor import PatternMemoryExtractor

__all__ = [
    "MemoryExtractor",
    "PatternMemoryExtractor",
]
