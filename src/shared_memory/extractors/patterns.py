"""
Pattern tables for rule-based memory extraction.

Fact patterns are matched case-insensitively against single sentences.
Relationship patterns are case-sensitive: the source entity must be a
capitalized token, which keeps ordinary prose ("it is a problem") out.
"""

import re
from dataclasses import dataclass
from typing import FrozenSet, Pattern, Tuple


@dataclass(frozen=True)
class FactPattern:
    name: str
    regex: Pattern
    tags: Tuple[str, ...]
    score: float
    min_length: int = 0


@dataclass(frozen=True)
class RelationshipPattern:
    relationship_type: str
    regex: Pattern
    confidence: float


# Order matters only for tag order on sentences that match several patterns
FACT_PATTERNS: Tuple[FactPattern, ...] = (
    FactPattern(
        name="definition",
        regex=re.compile(r"\b(means|refers to|is defined as|represents)\b", re.IGNORECASE),
        tags=("definition", "explanation"),
        score=0.8,
    ),
    FactPattern(
        name="causal",
        regex=re.compile(r"\b(because|due to|results in|causes|leads to)\b", re.IGNORECASE),
        tags=("causal", "relationship"),
        score=0.75,
    ),
    FactPattern(
        name="statement",
        regex=re.compile(r"\b(is|are|was|were)\b", re.IGNORECASE),
        tags=("statement",),
        score=0.7,
    ),
    FactPattern(
        name="procedural",
        regex=re.compile(r"\b(you can|should|must|need to)\b", re.IGNORECASE),
        tags=("procedural", "instruction"),
        score=0.65,
        min_length=21,
    ),
    FactPattern(
        name="numerical",
        regex=re.compile(r"\d+(?:[.,]\d+)*\s*%?"),
        tags=("numerical", "statistic"),
        score=0.6,
    ),
)

_ENTITY = r"\b([A-Z][\w+#-]*)"

RELATIONSHIP_PATTERNS: Tuple[RelationshipPattern, ...] = (
    RelationshipPattern(
        relationship_type="is_a",
        regex=re.compile(_ENTITY + r"\s+is\s+an?\s+([A-Za-z][\w+#-]*)"),
        confidence=0.8,
    ),
    RelationshipPattern(
        relationship_type="has",
        regex=re.compile(_ENTITY + r"\s+(?:has|have)\s+(?:an?\s+|the\s+)?([A-Za-z][\w+#-]*)"),
        confidence=0.7,
    ),
    RelationshipPattern(
        relationship_type="belongs_to",
        regex=re.compile(_ENTITY + r"\s+belongs\s+to\s+(?:the\s+)?" + _ENTITY),
        confidence=0.75,
    ),
)

# Capitalized words that never name an entity
NON_ENTITIES: FrozenSet[str] = frozenset(
    {
        "A", "An", "The", "This", "That", "These", "Those", "It", "He", "She", "They",
        "We", "I", "You", "There", "Here", "What", "Which", "Who", "Everything",
        "Something", "Nothing", "Everyone", "Someone", "Each", "Every", "Some", "Any",
    }
)

STOP_WORDS: FrozenSet[str] = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
        "by", "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do",
        "does", "did", "will", "would", "could", "should", "may", "might", "can", "this",
        "that", "these", "those", "i", "you", "he", "she", "it", "we", "they", "me", "him",
        "her", "us", "them", "from", "about", "what", "when", "where", "which", "there",
        "their", "then", "than", "just", "also", "very", "into", "your", "our", "its",
    }
)

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")
TOKEN = re.compile(r"\w+")
TOPIC_WORD = re.compile(r"\b[a-z]{3,}\b")
