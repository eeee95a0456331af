"""Search and retention helpers shared by the store implementations."""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from shared_memory.errors import DimensionMismatchError, InvalidInputError
from shared_memory.models import (
    ConversationSummary,
    EntityRelationship,
    MemoryFact,
    SearchTimeRange,
)


def retention_cutoff(retention_days: int, now: Optional[datetime] = None) -> datetime:
    """Items with a governing timestamp at or before the cutoff are expired."""
    if retention_days < 0:
        raise InvalidInputError(f"retention_days must not be negative, got {retention_days}")
    return (now or datetime.now()) - timedelta(days=retention_days)


def check_embedding(embedding: Optional[List[float]], dimension: Optional[int]) -> None:
    """Reject a vector whose length differs from the store's embedding dimension."""
    if embedding is not None and dimension is not None and len(embedding) != dimension:
        raise DimensionMismatchError(
            f"Embedding has {len(embedding)} dimensions, store expects {dimension}"
        )


def text_matches(query: str, fields: Iterable[str]) -> bool:
    """Case-insensitive substring match against any field. An empty query matches."""
    if not query:
        return True
    needle = query.casefold()
    return any(needle in field.casefold() for field in fields)


def within(moment: datetime, time_range: Optional[SearchTimeRange]) -> bool:
    if time_range is None:
        return True
    if time_range.start is not None and moment < time_range.start:
        return False
    if time_range.end is not None and moment > time_range.end:
        return False
    return True


def overlaps(start: datetime, end: datetime, time_range: Optional[SearchTimeRange]) -> bool:
    if time_range is None:
        return True
    if time_range.start is not None and end < time_range.start:
        return False
    if time_range.end is not None and start > time_range.end:
        return False
    return True


def any_tag(tags: List[str], wanted: Optional[List[str]]) -> bool:
    if not wanted:
        return True
    return bool(set(tags) & set(wanted))


def summary_matches(summary: ConversationSummary, query: str) -> bool:
    return text_matches(query, [summary.summary, *summary.key_points])


def sort_facts(facts: List[MemoryFact]) -> List[MemoryFact]:
    return sorted(facts, key=lambda f: (f.relevance_score, f.timestamp), reverse=True)


def sort_summaries(summaries: List[ConversationSummary]) -> List[ConversationSummary]:
    return sorted(summaries, key=lambda s: s.time_range.start, reverse=True)


def sort_relationships(relationships: List[EntityRelationship]) -> List[EntityRelationship]:
    return sorted(relationships, key=lambda r: (r.confidence, r.created_at), reverse=True)
