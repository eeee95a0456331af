"""
In-memory conversation memory storage.

Keeps everything in dictionaries. Suitable for tests and single-process
use; data is lost on restart. For persistence use SQLAlchemyMemoryStore.
"""

import logging
import time
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from shared_memory.errors import NotFoundError
from shared_memory.models import (
    CleanupResult,
    ConversationSummary,
    ConversationSummaryDraft,
    EntityRelationship,
    EntityRelationshipDraft,
    MemoryFact,
    MemoryFactDraft,
    MemoryFactUpdate,
    MemorySearchQuery,
    MemorySearchResult,
    MemoryStats,
)
from shared_memory.storage import filters

logger = logging.getLogger(__name__)

# Fields the store assigns, never taken from the caller
_ASSIGNED = {"id", "embedding"}


class InMemoryMemoryStore:
    """
    In-memory implementation of the MemoryStore protocol.

    Items are stored as (conversation_id, item) pairs keyed by item ID.
    Reads return deep copies so callers cannot mutate stored state.
    """

    def __init__(self, embedding_dimension: Optional[int] = None):
        self.embedding_dimension = embedding_dimension
        # conversation_id -> {"title", "created_at", "updated_at"}
        self._conversations: Dict[str, dict] = {}
        self._facts: Dict[str, Tuple[str, MemoryFact]] = {}
        self._summaries: Dict[str, Tuple[str, ConversationSummary]] = {}
        self._relationships: Dict[str, Tuple[str, EntityRelationship]] = {}

        logger.info("InMemoryMemoryStore initialized")

    # Conversations

    def ensure_conversation(self, conversation_id: str, title: Optional[str] = None) -> None:
        if conversation_id not in self._conversations:
            now = datetime.now()
            self._conversations[conversation_id] = {
                "title": title,
                "created_at": now,
                "updated_at": now,
            }
            logger.debug(f"Registered conversation {conversation_id}")

    def touch_conversation(self, conversation_id: str) -> None:
        self.ensure_conversation(conversation_id)
        self._conversations[conversation_id]["updated_at"] = datetime.now()

    def get_conversation_updated_at(self, conversation_id: str) -> Optional[datetime]:
        conversation = self._conversations.get(conversation_id)
        return conversation["updated_at"] if conversation else None

    def delete_conversation(self, conversation_id: str) -> None:
        if conversation_id not in self._conversations:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        del self._conversations[conversation_id]
        for table in (self._facts, self._summaries, self._relationships):
            for item_id in [i for i, (owner, _) in table.items() if owner == conversation_id]:
                del table[item_id]

        logger.info(f"Deleted conversation {conversation_id}")

    # Writes

    def add_fact(
        self,
        conversation_id: str,
        fact: MemoryFactDraft,
        embedding: Optional[List[float]] = None,
    ) -> str:
        filters.check_embedding(embedding, self.embedding_dimension)
        fact_id = str(uuid.uuid4())
        self.ensure_conversation(conversation_id)
        self._facts[fact_id] = (
            conversation_id,
            MemoryFact(id=fact_id, embedding=embedding, **fact.model_dump(exclude=_ASSIGNED)),
        )
        logger.debug(f"Inserted fact {fact_id}: '{fact.content[:50]}'")
        return fact_id

    def add_summary(
        self,
        conversation_id: str,
        summary: ConversationSummaryDraft,
        embedding: Optional[List[float]] = None,
    ) -> str:
        filters.check_embedding(embedding, self.embedding_dimension)
        summary_id = str(uuid.uuid4())
        self.ensure_conversation(conversation_id)
        self._summaries[summary_id] = (
            conversation_id,
            ConversationSummary(
                id=summary_id, embedding=embedding, **summary.model_dump(exclude=_ASSIGNED)
            ),
        )
        logger.debug(f"Inserted summary {summary_id} ({summary.message_count} messages)")
        return summary_id

    def add_relationship(
        self,
        conversation_id: str,
        relationship: EntityRelationshipDraft,
        embedding: Optional[List[float]] = None,
    ) -> str:
        filters.check_embedding(embedding, self.embedding_dimension)
        relationship_id = str(uuid.uuid4())
        self.ensure_conversation(conversation_id)
        self._relationships[relationship_id] = (
            conversation_id,
            EntityRelationship(
                id=relationship_id,
                embedding=embedding,
                **relationship.model_dump(exclude=_ASSIGNED),
            ),
        )
        logger.debug(f"Inserted relationship {relationship_id}: {relationship.as_text()}")
        return relationship_id

    def update_fact(self, fact_id: str, updates: MemoryFactUpdate) -> None:
        changes = updates.changes()
        if not changes:
            return
        if "embedding" in changes:
            filters.check_embedding(changes["embedding"], self.embedding_dimension)

        if fact_id not in self._facts:
            raise NotFoundError(f"Fact {fact_id} not found")

        owner, fact = self._facts[fact_id]
        # Re-validate so tag dedup and score bounds still apply
        updated = MemoryFact.model_validate({**fact.model_dump(), **changes})
        self._facts[fact_id] = (owner, updated)
        logger.debug(f"Updated fact {fact_id}: {sorted(changes)}")

    def delete_fact(self, fact_id: str) -> None:
        self._delete(self._facts, fact_id, "Fact")

    def delete_summary(self, summary_id: str) -> None:
        self._delete(self._summaries, summary_id, "Summary")

    def delete_relationship(self, relationship_id: str) -> None:
        self._delete(self._relationships, relationship_id, "Relationship")

    def _delete(self, table: dict, item_id: str, kind: str) -> None:
        if item_id not in table:
            raise NotFoundError(f"{kind} {item_id} not found")
        del table[item_id]
        logger.debug(f"Deleted {kind.lower()} {item_id}")

    # Reads

    def _owned(self, table: dict, conversation_id: str) -> list:
        return [
            item.model_copy(deep=True) for owner, item in table.values() if owner == conversation_id
        ]

    def get_fact(self, fact_id: str) -> Optional[MemoryFact]:
        entry = self._facts.get(fact_id)
        return entry[1].model_copy(deep=True) if entry else None

    def get_facts(self, conversation_id: str, limit: Optional[int] = None) -> List[MemoryFact]:
        facts = filters.sort_facts(self._owned(self._facts, conversation_id))
        return facts[:limit] if limit else facts

    def get_summaries(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[ConversationSummary]:
        summaries = filters.sort_summaries(self._owned(self._summaries, conversation_id))
        return summaries[:limit] if limit else summaries

    def get_relationships(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[EntityRelationship]:
        relationships = filters.sort_relationships(
            self._owned(self._relationships, conversation_id)
        )
        return relationships[:limit] if limit else relationships

    def search_memory(self, conversation_id: str, query: MemorySearchQuery) -> MemorySearchResult:
        started = time.perf_counter()
        result = MemorySearchResult()

        if query.includes("facts"):
            result.facts = [
                fact
                for fact in self.get_facts(conversation_id)
                if filters.text_matches(query.query, [fact.content])
                and (
                    query.min_relevance_score is None
                    or fact.relevance_score >= query.min_relevance_score
                )
                and filters.within(fact.timestamp, query.time_range)
                and filters.any_tag(fact.tags, query.tags)
                and (not query.sources or fact.source in query.sources)
            ][: query.limit]

        if query.includes("summaries"):
            result.summaries = [
                summary
                for summary in self.get_summaries(conversation_id)
                if filters.summary_matches(summary, query.query)
                and filters.overlaps(
                    summary.time_range.start, summary.time_range.end, query.time_range
                )
                and (not query.sources or summary.created_by in query.sources)
            ][: query.limit]

        if query.includes("relationships"):
            result.relationships = [
                relationship
                for relationship in self.get_relationships(conversation_id)
                if filters.text_matches(
                    query.query,
                    [
                        relationship.source_entity,
                        relationship.target_entity,
                        relationship.relationship_type,
                    ],
                )
                and filters.within(relationship.created_at, query.time_range)
                and (not query.sources or relationship.created_by in query.sources)
            ][: query.limit]

        result.total_results = len(result.facts) + len(result.summaries) + len(result.relationships)
        result.search_time = (time.perf_counter() - started) * 1000
        return result

    # Maintenance

    def cleanup_old_memory(self, conversation_id: str, retention_days: int) -> CleanupResult:
        cutoff = filters.retention_cutoff(retention_days)

        def expire(table: dict, timestamp_of) -> int:
            expired = [
                item_id
                for item_id, (owner, item) in table.items()
                if owner == conversation_id and timestamp_of(item) <= cutoff
            ]
            for item_id in expired:
                del table[item_id]
            return len(expired)

        result = CleanupResult(
            facts_deleted=expire(self._facts, lambda f: f.timestamp),
            summaries_deleted=expire(self._summaries, lambda s: s.created_at),
            relationships_deleted=expire(self._relationships, lambda r: r.created_at),
        )
        logger.info(
            f"Cleanup for {conversation_id} (retention={retention_days}d): "
            f"{result.facts_deleted} facts, {result.summaries_deleted} summaries, "
            f"{result.relationships_deleted} relationships deleted"
        )
        return result

    def get_memory_stats(self, conversation_id: str) -> MemoryStats:
        facts = [fact for owner, fact in self._facts.values() if owner == conversation_id]
        timestamps = [fact.timestamp for fact in facts]

        return MemoryStats(
            fact_count=len(facts),
            summary_count=len(self._owned(self._summaries, conversation_id)),
            relationship_count=len(self._owned(self._relationships, conversation_id)),
            average_relevance_score=(
                sum(fact.relevance_score for fact in facts) / len(facts) if facts else 0.0
            ),
            oldest_fact=min(timestamps) if timestamps else None,
            newest_fact=max(timestamps) if timestamps else None,
        )
