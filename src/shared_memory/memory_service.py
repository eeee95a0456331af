import logging
import time
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from shared_memory.embeddings import EmbeddingGenerator
from shared_memory.errors import InvalidInputError, ModelUnavailableError
from shared_memory.extractors import MemoryExtractor
from shared_memory.models import (
    CleanupResult,
    ConversationSummary,
    ConversationSummaryDraft,
    EntityRelationship,
    EntityRelationshipDraft,
    ExtractAndStoreResult,
    ExtractionMessage,
    ExtractionType,
    MemoryExtractionRequest,
    MemoryFact,
    MemoryFactDraft,
    MemoryFactUpdate,
    MemorySearchQuery,
    MemorySearchResult,
    MemoryStats,
    MemoryType,
    MemoryUpdateNotification,
    RelevanceUpdateResult,
    RelevantMemory,
    SharedMemoryContext,
)
from shared_memory.notifications import ListenerRegistry
from shared_memory.similarity import SimilarityCandidate, find_similar
from shared_memory.storage import MemoryStore
from shared_memory.tokens import estimate_tokens

logger = logging.getLogger(__name__)

MEMORY_TYPES = ("facts", "summaries", "relationships", "all")

# Exponential moving average weight given to the fresh context similarity
RELEVANCE_BLEND = 0.3
# Facts at least this similar to the current context never lose relevance
CONTEXT_RELEVANT_SIMILARITY = 0.5
RELEVANCE_WRITE_THRESHOLD = 0.01
DEFAULT_RETENTION_DAYS = 30

_ASSIGNED = {"id", "embedding"}


def relationship_text(relationship: EntityRelationshipDraft) -> str:
    return (
        f"{relationship.source_entity} {relationship.relationship_type.replace('_', ' ')} "
        f"{relationship.target_entity}"
    )


def summary_text(summary: ConversationSummaryDraft) -> str:
    return " ".join([summary.summary, *summary.key_points])


class SharedMemoryService:
    """
    Conversation memory shared by every model taking part in a chat.

    Combines a MemoryStore, an EmbeddingGenerator and a MemoryExtractor:
    items are embedded before they are stored, semantic search ranks them
    against a query embedding, and get_relevant_memory packs the best
    matches into a token budget for prompt injection.

    Search and context assembly degrade to empty results when the embedding
    model is unavailable. Storage errors always propagate.
    """

    def __init__(
        self,
        store: MemoryStore,
        embeddings: EmbeddingGenerator,
        extractor: MemoryExtractor,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ):
        if retention_days < 0:
            raise InvalidInputError(f"retention_days must not be negative, got {retention_days}")

        self.store = store
        self.embeddings = embeddings
        self.extractor = extractor
        self.retention_days = retention_days
        self._listeners = ListenerRegistry("memory_updated")

    async def initialize(self) -> None:
        await self.embeddings.initialize()
        logger.info("SharedMemoryService initialized")

    def shutdown(self) -> None:
        self._listeners.clear()
        logger.info("SharedMemoryService shut down")

    # Notifications

    def subscribe(
        self, listener: Callable[[MemoryUpdateNotification], None]
    ) -> Callable[[], None]:
        return self._listeners.subscribe(listener)

    def unsubscribe(self, listener: Callable[[MemoryUpdateNotification], None]) -> bool:
        return self._listeners.unsubscribe(listener)

    def _notify(self, type: str, conversation_id: str, data, source: str) -> None:
        self._listeners.notify(
            MemoryUpdateNotification(
                type=type, conversation_id=conversation_id, data=data, source=source
            )
        )

    # Writes

    async def add_fact(self, conversation_id: str, fact: MemoryFactDraft) -> MemoryFact:
        embedding = await self.embeddings.generate_embedding(fact.content)
        fact_id = self.store.add_fact(conversation_id, fact, embedding)
        self.store.touch_conversation(conversation_id)

        stored = MemoryFact(id=fact_id, embedding=embedding, **fact.model_dump(exclude=_ASSIGNED))
        logger.info(f"Added fact {fact_id} to {conversation_id}: '{fact.content[:50]}'")
        self._notify("fact_added", conversation_id, stored, fact.source)
        return stored

    async def add_summary(
        self, conversation_id: str, summary: ConversationSummaryDraft
    ) -> ConversationSummary:
        embedding = await self.embeddings.generate_embedding(summary_text(summary))
        summary_id = self.store.add_summary(conversation_id, summary, embedding)
        self.store.touch_conversation(conversation_id)

        stored = ConversationSummary(
            id=summary_id, embedding=embedding, **summary.model_dump(exclude=_ASSIGNED)
        )
        logger.info(f"Added summary {summary_id} to {conversation_id}")
        self._notify("summary_created", conversation_id, stored, summary.created_by)
        return stored

    async def add_relationship(
        self, conversation_id: str, relationship: EntityRelationshipDraft
    ) -> EntityRelationship:
        embedding = await self.embeddings.generate_embedding(relationship_text(relationship))
        relationship_id = self.store.add_relationship(conversation_id, relationship, embedding)
        self.store.touch_conversation(conversation_id)

        stored = EntityRelationship(
            id=relationship_id, embedding=embedding, **relationship.model_dump(exclude=_ASSIGNED)
        )
        logger.info(
            f"Added relationship {relationship_id} to {conversation_id}: "
            f"{relationship_text(relationship)}"
        )
        self._notify(
            "relationship_discovered", conversation_id, stored, relationship.created_by
        )
        return stored

    def get_fact(self, fact_id: str) -> Optional[MemoryFact]:
        return self.store.get_fact(fact_id)

    def delete_fact(self, fact_id: str) -> None:
        self.store.delete_fact(fact_id)

    def delete_summary(self, summary_id: str) -> None:
        self.store.delete_summary(summary_id)

    def delete_relationship(self, relationship_id: str) -> None:
        self.store.delete_relationship(relationship_id)

    # Reads

    async def get_shared_memory(self, conversation_id: str) -> SharedMemoryContext:
        # Store reads are short synchronous transactions on the loop thread.
        # They run in sequence: SQLite engines share or pin connections per
        # thread, so worker threads would not see the same database.
        facts = self.store.get_facts(conversation_id)
        summaries = self.store.get_summaries(conversation_id)
        relationships = self.store.get_relationships(conversation_id)
        last_updated = self.store.get_conversation_updated_at(conversation_id)

        return SharedMemoryContext(
            conversation_id=conversation_id,
            facts=facts,
            summaries=summaries,
            relationships=relationships,
            last_updated=last_updated or datetime.now(),
        )

    def search_memory(self, conversation_id: str, query: MemorySearchQuery) -> MemorySearchResult:
        """Text search (case-insensitive substring) with filters, no embeddings involved."""
        return self.store.search_memory(conversation_id, query)

    async def semantic_search(
        self,
        conversation_id: str,
        query: str,
        type: MemoryType = "all",
        limit: int = 10,
        min_similarity: float = 0.3,
    ) -> MemorySearchResult:
        """
        Rank stored items by embedding similarity to the query.

        Args:
            conversation_id: Conversation to search
            query: Free text to embed
            type: Which kinds of item to search
            limit: Maximum results per kind
            min_similarity: Cosine similarity cut-off in [-1, 1]

        Returns:
            Ranked items, most similar first. Empty if the embedding model is
            unavailable.

        Raises:
            InvalidInputError: On a blank query or invalid options
        """
        if not query or not query.strip():
            raise InvalidInputError("Search query must not be empty")
        if type not in MEMORY_TYPES:
            raise InvalidInputError(f"Unknown memory type '{type}'")
        if limit <= 0:
            raise InvalidInputError(f"limit must be positive, got {limit}")
        if not -1.0 <= min_similarity <= 1.0:
            raise InvalidInputError(
                f"min_similarity must be within [-1, 1], got {min_similarity}"
            )

        started = time.perf_counter()
        try:
            query_vector = await self.embeddings.generate_embedding(query)
        except ModelUnavailableError as e:
            logger.warning(f"Semantic search unavailable, returning no results: {e}")
            return MemorySearchResult(search_time=(time.perf_counter() - started) * 1000)

        result = MemorySearchResult()

        def rank(items):
            candidates = [
                SimilarityCandidate(item.id, item.embedding, item)
                for item in items
                if item.embedding is not None
            ]
            matches = find_similar(query_vector, candidates, limit, min_similarity)
            return [match.metadata for match in matches]

        if type in ("facts", "all"):
            result.facts = rank(self.store.get_facts(conversation_id))

        if type in ("summaries", "all"):
            result.summaries = rank(self.store.get_summaries(conversation_id))

        if type in ("relationships", "all"):
            relationships = self.store.get_relationships(conversation_id)
            ranked = rank(relationships)
            # Relationships stored without an embedding can still match by text
            needle = query.strip().casefold()
            text_matches = [
                r
                for r in relationships
                if r.embedding is None and needle in relationship_text(r).casefold()
            ]
            result.relationships = (ranked + text_matches)[:limit]

        result.total_results = len(result.facts) + len(result.summaries) + len(result.relationships)
        result.search_time = (time.perf_counter() - started) * 1000
        logger.debug(
            f"Semantic search '{query[:50]}' in {conversation_id}: "
            f"{result.total_results} results ({result.search_time:.1f}ms)"
        )
        return result

    # Extraction

    async def extract_and_store_memory(
        self,
        conversation_id: str,
        messages: Sequence[ExtractionMessage],
        extraction_type: ExtractionType = "all",
    ) -> ExtractAndStoreResult:
        if not messages:
            return ExtractAndStoreResult()

        started = time.perf_counter()
        extraction = await self.extractor.extract_memory(
            MemoryExtractionRequest(
                conversation_id=conversation_id,
                messages=list(messages),
                extraction_type=extraction_type,
            )
        )

        for fact in extraction.facts:
            await self.add_fact(conversation_id, fact)
        for relationship in extraction.relationships:
            await self.add_relationship(conversation_id, relationship)
        if extraction.summary is not None:
            await self.add_summary(conversation_id, extraction.summary)

        result = ExtractAndStoreResult(
            facts_added=len(extraction.facts),
            relationships_added=len(extraction.relationships),
            summary_added=extraction.summary is not None,
            processing_time=(time.perf_counter() - started) * 1000,
        )
        logger.info(
            f"Stored extraction for {conversation_id}: {result.facts_added} facts, "
            f"{result.relationships_added} relationships, summary={result.summary_added}"
        )
        return result

    # Relevance

    async def update_relevance_scores(
        self, conversation_id: str, current_context: str
    ) -> RelevanceUpdateResult:
        """
        Re-score facts against the current conversation context.

        new = 0.7 * old + 0.3 * max(0, similarity). Facts with similarity of
        at least 0.5 keep max(old, new) so relevant facts never decay.
        Scores are only written when they move by more than 0.01.
        """
        started = time.perf_counter()
        if not current_context or not current_context.strip():
            return RelevanceUpdateResult()

        try:
            context_vector = await self.embeddings.generate_embedding(current_context)
        except ModelUnavailableError as e:
            logger.warning(f"Relevance update skipped, embedding model unavailable: {e}")
            return RelevanceUpdateResult(processing_time=(time.perf_counter() - started) * 1000)

        updated = 0
        for fact in self.store.get_facts(conversation_id):
            if fact.embedding is None:
                continue

            similarity = self.embeddings.calculate_similarity(context_vector, fact.embedding)
            similarity = max(0.0, similarity)
            old = fact.relevance_score
            new = (1 - RELEVANCE_BLEND) * old + RELEVANCE_BLEND * similarity
            if similarity >= CONTEXT_RELEVANT_SIMILARITY:
                new = max(old, new)
            new = min(1.0, max(0.0, new))

            if abs(new - old) > RELEVANCE_WRITE_THRESHOLD:
                self.store.update_fact(fact.id, MemoryFactUpdate(relevance_score=new))
                updated += 1

        result = RelevanceUpdateResult(
            updated_facts=updated, processing_time=(time.perf_counter() - started) * 1000
        )
        logger.info(f"Updated relevance of {updated} facts in {conversation_id}")
        return result

    # Context assembly

    async def get_relevant_memory(
        self, conversation_id: str, query: str, max_tokens: int = 1000
    ) -> RelevantMemory:
        """
        Select memory for a prompt under a token budget.

        Candidates come from semantic search over all kinds (limit 20,
        min similarity 0.2). They are packed greedily in priority order
        facts, relationships, summaries; an item that does not fit in the
        remaining budget is skipped and packing continues with the next.

        Raises:
            InvalidInputError: If max_tokens is negative
        """
        if max_tokens < 0:
            raise InvalidInputError(f"max_tokens must not be negative, got {max_tokens}")
        if not query or not query.strip():
            return RelevantMemory()

        found = await self.semantic_search(
            conversation_id, query, type="all", limit=20, min_similarity=0.2
        )

        remaining = max_tokens

        def pack(items, text_of) -> list:
            nonlocal remaining
            selected = []
            for item in items:
                cost = estimate_tokens(text_of(item))
                if cost <= remaining:
                    selected.append(item)
                    remaining -= cost
            return selected

        relevant = RelevantMemory(
            facts=pack(found.facts, lambda f: f.content),
            relationships=pack(found.relationships, relationship_text),
            summaries=pack(found.summaries, lambda s: s.summary),
        )
        relevant.token_count = max_tokens - remaining
        logger.debug(
            f"Relevant memory for {conversation_id}: {len(relevant.facts)} facts, "
            f"{len(relevant.relationships)} relationships, {len(relevant.summaries)} summaries "
            f"({relevant.token_count}/{max_tokens} tokens)"
        )
        return relevant

    def format_memory_context(self, relevant: RelevantMemory) -> str:
        """Render selected memory as a block for an LLM prompt. Empty string if nothing."""
        sections: List[Tuple[str, List[str]]] = [
            ("Known facts", [fact.content for fact in relevant.facts]),
            ("Relationships", [relationship_text(r) for r in relevant.relationships]),
            ("Conversation summaries", [summary.summary for summary in relevant.summaries]),
        ]

        lines = []
        for title, entries in sections:
            if entries:
                lines.append(f"{title}:")
                lines.extend(f"- {entry}" for entry in entries)
        if not lines:
            return ""

        return "\n".join(["### Context Information ###", *lines])

    # Maintenance

    def cleanup_memory(
        self, conversation_id: str, retention_days: Optional[int] = None
    ) -> CleanupResult:
        """Delete memory older than retention_days (defaults to the service setting)."""
        if retention_days is None:
            retention_days = self.retention_days
        return self.store.cleanup_old_memory(conversation_id, retention_days)

    def get_memory_stats(self, conversation_id: str) -> MemoryStats:
        return self.store.get_memory_stats(conversation_id)
