import asyncio
import logging
import re
import time
from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from pydantic import TypeAdapter

from shared_memory.errors import InvalidInputError, ModelUnavailableError, SharedMemoryError
from shared_memory.knowledge.document_manager import DocumentManager
from shared_memory.knowledge.models import (
    Document,
    KnowledgeBaseStats,
    QueryMetadata,
    QueryResult,
    QuerySource,
    SearchResult,
)
from shared_memory.knowledge.query_cache import QueryCache
from shared_memory.notifications import ListenerRegistry
from shared_memory.tokens import estimate_tokens, truncate_to_chars

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "## Relevant Context from Knowledge Base\n\n"
SECTION_SEPARATOR = "\n\n---\n\n"
# A truncated chunk is only included when at least this many tokens remain
MIN_PARTIAL_TOKENS = 100
KEYWORD_BOOST = 0.1
HISTORY_WINDOW = 5
MAX_HISTORY_TOPICS = 5

EXPORT_FORMATS = ("json", "markdown")

_DOCUMENTS = TypeAdapter(List[Document])


def _normalize_file_type(file_type: str) -> str:
    file_type = file_type.strip().lower()
    return file_type if file_type.startswith(".") else f".{file_type}"


def history_topics(history: Sequence[Dict[str, str]]) -> List[str]:
    """Capitalized words longer than three characters from the recent messages."""
    topics: List[str] = []
    for message in history[-HISTORY_WINDOW:]:
        for word in message.get("content", "").split():
            word = re.sub(r"[^\w]", "", word)
            if len(word) > 3 and word[0].isupper() and word not in topics:
                topics.append(word)
    return topics[:MAX_HISTORY_TOPICS]


class KnowledgeBase:
    """
    Document retrieval for prompt context.

    Wraps a DocumentManager with a query cache, a token-budgeted context
    builder and lifecycle events. Listeners receive (event_name, payload):

        initialization:start | initialization:complete | initialization:error
        document:adding | document:added | document:updating | document:updated
        document:removing | document:removed | document:error
        query:start | query:complete | query:error

    Mutations hold a lock across the change and the cache clear, so a query
    never caches results computed against a document set that has since
    changed.
    """

    def __init__(
        self,
        documents: DocumentManager,
        max_context_tokens: int = 4000,
        min_similarity_score: float = 0.3,
        max_chunks_per_query: int = 10,
        enable_caching: bool = True,
        cache: Optional[QueryCache[QueryResult]] = None,
    ):
        if max_context_tokens <= 0:
            raise InvalidInputError(
                f"max_context_tokens must be positive, got {max_context_tokens}"
            )
        if max_chunks_per_query <= 0:
            raise InvalidInputError(
                f"max_chunks_per_query must be positive, got {max_chunks_per_query}"
            )

        self.documents = documents
        self.max_context_tokens = max_context_tokens
        self.min_similarity_score = min_similarity_score
        self.max_chunks_per_query = max_chunks_per_query
        self.enable_caching = enable_caching
        self.cache: QueryCache[QueryResult] = cache if cache is not None else QueryCache()

        self._lock = asyncio.Lock()
        self._events = ListenerRegistry("knowledge_base")
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def subscribe(self, listener: Callable[[str, dict], None]) -> Callable[[], None]:
        return self._events.subscribe(listener)

    def unsubscribe(self, listener: Callable[[str, dict], None]) -> bool:
        return self._events.unsubscribe(listener)

    def _emit(self, event: str, **payload) -> None:
        self._events.notify(event, payload)

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise SharedMemoryError("KnowledgeBase not initialized. Call initialize() first.")

    async def initialize(self) -> None:
        if self._initialized:
            return

        self._emit("initialization:start")
        try:
            await self.documents.initialize()
        except Exception as e:
            logger.error(f"KnowledgeBase initialization failed: {e}")
            self._emit("initialization:error", error=e)
            raise

        self._initialized = True
        count = len(self.documents.get_documents())
        logger.info(f"KnowledgeBase initialized with {count} documents")
        self._emit("initialization:complete", documents=count)

    # Mutations

    async def add_document(self, path) -> Document:
        self._ensure_initialized()
        self._emit("document:adding", path=str(path))
        try:
            async with self._lock:
                document = await self.documents.add_document(path)
                self.cache.clear()
        except Exception as e:
            self._emit("document:error", path=str(path), error=e)
            raise

        self._emit("document:added", document=document)
        return document

    async def update_document(self, document_id: str, path) -> Document:
        self._ensure_initialized()
        self._emit("document:updating", document_id=document_id, path=str(path))
        try:
            async with self._lock:
                document = await self.documents.update_document(document_id, path)
                self.cache.clear()
        except Exception as e:
            self._emit("document:error", document_id=document_id, error=e)
            raise

        self._emit("document:updated", document_id=document_id, document=document)
        return document

    async def remove_document(self, document_id: str) -> None:
        self._ensure_initialized()
        self._emit("document:removing", document_id=document_id)
        try:
            async with self._lock:
                await self.documents.delete_document(document_id)
                self.cache.clear()
        except Exception as e:
            self._emit("document:error", document_id=document_id, error=e)
            raise

        self._emit("document:removed", document_id=document_id)

    def clear_cache(self) -> None:
        self.cache.clear()

    def purge_expired_cache(self) -> int:
        return self.cache.purge_expired()

    # Queries

    async def query(
        self,
        text: str,
        max_tokens: Optional[int] = None,
        min_score: Optional[float] = None,
        filter_file_types: Optional[Sequence[str]] = None,
        filter_document_ids: Optional[Sequence[str]] = None,
    ) -> QueryResult:
        """
        Build prompt context for a question from the indexed documents.

        Args:
            text: The question
            max_tokens: Context budget (defaults to max_context_tokens)
            min_score: Minimum chunk similarity (defaults to min_similarity_score)
            filter_file_types: Only chunks from these extensions (".md" or "md")
            filter_document_ids: Only chunks from these documents

        Returns:
            QueryResult; metadata.cached is True when served from the cache.
            Empty when the embedding model is unavailable.

        Raises:
            SharedMemoryError: If called before initialize()
            InvalidInputError: On a blank query or a non-positive max_tokens
        """
        self._ensure_initialized()
        if not text or not text.strip():
            raise InvalidInputError("Query must not be empty")
        max_tokens = self.max_context_tokens if max_tokens is None else max_tokens
        if max_tokens <= 0:
            raise InvalidInputError(f"max_tokens must be positive, got {max_tokens}")
        min_score = self.min_similarity_score if min_score is None else min_score

        file_types = (
            tuple(sorted({_normalize_file_type(t) for t in filter_file_types}))
            if filter_file_types is not None
            else None
        )
        document_ids = (
            tuple(sorted(set(filter_document_ids))) if filter_document_ids is not None else None
        )
        key: Hashable = (text, max_tokens, min_score, file_types, document_ids)

        if self.enable_caching:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Query cache hit: '{text[:50]}'")
                return cached.model_copy(
                    update={"metadata": cached.metadata.model_copy(update={"cached": True})}
                )

        started = time.perf_counter()
        generation = self.cache.generation
        self._emit("query:start", query=text)

        try:
            results = await self.documents.search_documents(text, self.max_chunks_per_query)
        except ModelUnavailableError as e:
            logger.warning(f"Knowledge base query degraded to empty result: {e}")
            self._emit("query:error", query=text, error=e)
            return QueryResult(
                metadata=QueryMetadata(processing_time=(time.perf_counter() - started) * 1000)
            )
        except Exception as e:
            self._emit("query:error", query=text, error=e)
            raise

        results = [r for r in results if r.score >= min_score]
        if file_types is not None:
            results = [r for r in results if r.document.type in file_types]
        if document_ids is not None:
            results = [r for r in results if r.document.id in document_ids]

        context, sources, tokens_used = self._build_context(results, max_tokens)
        result = QueryResult(
            context=context,
            sources=sources,
            metadata=QueryMetadata(
                tokens_used=tokens_used,
                processing_time=(time.perf_counter() - started) * 1000,
            ),
        )

        if self.enable_caching:
            self.cache.put(key, result, generation=generation)

        self._emit(
            "query:complete",
            query=text,
            sources=len(sources),
            processing_time=result.metadata.processing_time,
        )
        return result

    async def query_with_context(
        self, query: str, history: Optional[Sequence[Dict[str, str]]] = None
    ) -> QueryResult:
        """Query enriched with topics from recent conversation messages ({"role", "content"})."""
        topics = history_topics(history) if history else []
        if topics:
            query = f"{query} (Context: {', '.join(topics)})"
        return await self.query(query)

    async def hybrid_search(self, query: str, keywords: Sequence[str]) -> QueryResult:
        """
        Semantic search with a +0.1 score boost per keyword found in the chunk.

        Results are not cached.
        """
        self._ensure_initialized()
        started = time.perf_counter()

        try:
            results = await self.documents.search_documents(query, self.max_chunks_per_query * 2)
        except ModelUnavailableError as e:
            logger.warning(f"Hybrid search degraded to empty result: {e}")
            return QueryResult()

        terms = {keyword.lower() for keyword in keywords if keyword.strip()}
        boosted = []
        for result in results:
            content = result.chunk.content.lower()
            boost = KEYWORD_BOOST * sum(1 for term in terms if term in content)
            boosted.append(result.model_copy(update={"score": result.score + boost}))

        boosted.sort(key=lambda r: r.score, reverse=True)
        context, sources, tokens_used = self._build_context(
            boosted[: self.max_chunks_per_query], self.max_context_tokens
        )
        return QueryResult(
            context=context,
            sources=sources,
            metadata=QueryMetadata(
                tokens_used=tokens_used,
                processing_time=(time.perf_counter() - started) * 1000,
            ),
        )

    def _build_context(
        self, results: List[SearchResult], max_tokens: int
    ) -> Tuple[str, List[QuerySource], int]:
        if not results:
            return "", [], 0

        context = CONTEXT_HEADER
        sources: List[QuerySource] = []

        for result in results:
            section = f"### From: {result.document.name}\n{result.chunk.content}"
            remaining = max_tokens - estimate_tokens(context)

            if estimate_tokens(section + SECTION_SEPARATOR) <= remaining:
                context += section + SECTION_SEPARATOR
            elif remaining > MIN_PARTIAL_TOKENS:
                heading = f"### From: {result.document.name}\n"
                budget = remaining * 4 - len(heading)
                context += heading + truncate_to_chars(result.chunk.content, budget)
            else:
                break

            sources.append(
                QuerySource(
                    document_name=result.document.name,
                    document_id=result.document.id,
                    chunk_id=result.chunk.id,
                    score=result.score,
                )
            )
            if not context.endswith(SECTION_SEPARATOR):
                break

        if not sources:
            return "", [], 0

        if context.endswith(SECTION_SEPARATOR):
            context = context[: -len(SECTION_SEPARATOR)]
        context = context.rstrip()
        return context, sources, estimate_tokens(context)

    # Inspection

    def get_documents(self) -> List[Document]:
        self._ensure_initialized()
        return self.documents.get_documents()

    def get_document(self, document_id: str) -> Optional[Document]:
        self._ensure_initialized()
        return self.documents.get_document(document_id)

    def get_stats(self) -> KnowledgeBaseStats:
        self._ensure_initialized()
        documents = self.documents.get_documents()

        total_chunks = 0
        total_tokens = 0
        languages: List[str] = []
        file_types: List[str] = []
        for document in documents:
            total_chunks += len(document.chunks)
            total_tokens += sum(estimate_tokens(chunk.content) for chunk in document.chunks)
            language = document.metadata.language
            if language and language not in languages:
                languages.append(language)
            if document.type not in file_types:
                file_types.append(document.type)

        return KnowledgeBaseStats(
            total_documents=len(documents),
            total_chunks=total_chunks,
            total_tokens=total_tokens,
            avg_chunk_size=round(total_tokens / total_chunks) if total_chunks else 0,
            languages=languages,
            file_types=file_types,
        )

    def export_knowledge(self, format: str = "json") -> str:
        """Serialize every document as JSON (chunk embeddings omitted) or a markdown report."""
        self._ensure_initialized()
        if format not in EXPORT_FORMATS:
            raise InvalidInputError(
                f"Unknown export format '{format}', expected one of {EXPORT_FORMATS}"
            )

        documents = self.documents.get_documents()
        if format == "json":
            return _DOCUMENTS.dump_json(documents, indent=2).decode("utf-8")

        lines = ["# Knowledge Base Export", ""]
        for document in documents:
            metadata = document.metadata
            lines += [
                f"## {document.name}",
                "",
                f"- **ID**: {document.id}",
                f"- **Type**: {document.type}",
                f"- **Size**: {document.size} bytes",
                f"- **Chunks**: {len(document.chunks)}",
                f"- **Keywords**: {', '.join(metadata.keywords) or 'N/A'}",
                f"- **Summary**: {metadata.summary or 'N/A'}",
                "",
                "### Content Chunks",
                "",
            ]
            for index, chunk in enumerate(document.chunks[:3], start=1):
                preview = chunk.content[:200] + ("..." if len(chunk.content) > 200 else "")
                lines += [f"#### Chunk {index}", preview, ""]
            if len(document.chunks) > 3:
                lines += [f"_...and {len(document.chunks) - 3} more chunks_", ""]
        return "\n".join(lines)
