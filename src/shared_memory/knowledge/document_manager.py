"""
Document indexing for the knowledge base.

Documents are read from disk, deduplicated by SHA-256, chunked by
structure, embedded, and persisted through the MemoryStore as facts in a
dedicated conversation. Each chunk fact carries tags describing its
document, so the registry can be rebuilt from the store on startup:

    doc:<document id>   file:<name>     type:<extension>
    hash:<sha256>       size:<bytes>    chunk:<position>
    chars:<start>-<end> lines:<start>-<end>
    section:<heading>   (markdown only)
"""

import asyncio
import hashlib
import logging
import os
import re
import uuid
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from shared_memory.embeddings import EmbeddingGenerator
from shared_memory.errors import InvalidInputError, NotFoundError, StorageError
from shared_memory.knowledge.chunking import DEFAULT_MAX_CHUNK_SIZE, chunk_document
from shared_memory.knowledge.models import (
    ChunkMetadata,
    Document,
    DocumentChunk,
    DocumentMetadata,
    SearchResult,
)
from shared_memory.models import MemoryFact, MemoryFactDraft, MemoryFactUpdate
from shared_memory.similarity import SimilarityCandidate, find_similar
from shared_memory.storage import MemoryStore

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_CONVERSATION = "knowledge-base"
DOCUMENT_SOURCE = "document"
CHUNK_RELEVANCE = 0.8
MAX_FILE_SIZE = 1024 * 1024

SUPPORTED_EXTENSIONS = {
    ".ts", ".tsx", ".js", ".jsx", ".json",
    ".py", ".java", ".cpp", ".c", ".h", ".rs", ".go",
    ".html", ".css", ".scss", ".less",
    ".md", ".markdown", ".txt", ".yml", ".yaml", ".toml",
    ".sh", ".bash", ".zsh", ".fish",
    ".sql", ".graphql", ".proto",
    ".vue", ".svelte", ".astro",
}

LANGUAGE_BY_EXTENSION = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
}

# Checked in order; TypeScript before JavaScript since it is a superset
LANGUAGE_PATTERNS = (
    (
        "typescript",
        re.compile(r"\binterface\s+\w+\s*\{|\benum\s+\w+\s*\{|:\s*(string|number|boolean)\b"),
    ),
    (
        "javascript",
        re.compile(
            r"\b(const|let|var)\s+\w+\s*=|\bconsole\.log\(|\brequire\("
            r"|\bexport\s+(default|const|function)\b"
        ),
    ),
    (
        "python",
        re.compile(
            r"^\s*def\s+\w+\(|^\s*(from\s+[\w.]+\s+)?import\s+\w+|if __name__ ==|\bself\.",
            re.MULTILINE,
        ),
    ),
    (
        "java",
        re.compile(r"\bpublic\s+(static\s+)?(class|void)\b|^package\s+[\w.]+;", re.MULTILINE),
    ),
)

KEYWORD_STOP_WORDS = {
    "the", "and", "for", "that", "this", "with", "from", "have", "will",
    "what", "when", "where", "which", "while", "their", "there", "these",
    "those", "then", "than", "been", "being", "about", "after", "before",
    "between", "through", "during", "under", "over", "into", "onto",
}

_SENTENCE = re.compile(r"[^.!?\n]+(?:[.!?]+|$)", re.MULTILINE)
_WORD = re.compile(r"\W+")
_MARKDOWN_TITLE = re.compile(r"^#\s+(.+?)\s*#*\s*$", re.MULTILINE)


def extract_keywords(text: str, top_k: int = 10) -> List[str]:
    """Most frequent words longer than three characters, stop words removed."""
    words = [w for w in _WORD.split(text.lower()) if len(w) > 3 and w not in KEYWORD_STOP_WORDS]
    return [word for word, _ in Counter(words).most_common(top_k)]


def detect_language(text: str, file_type: str = "") -> str:
    """Programming language of a file, or "english" for prose."""
    if file_type.lower() in LANGUAGE_BY_EXTENSION:
        return LANGUAGE_BY_EXTENSION[file_type.lower()]
    for language, pattern in LANGUAGE_PATTERNS:
        if pattern.search(text):
            return language
    return "english"


def summarize(text: str, max_length: int = 200) -> str:
    """Leading sentences that fit in max_length, or a cut-off prefix."""
    summary = ""
    for sentence in _SENTENCE.findall(text):
        if len(summary) + len(sentence) > max_length:
            break
        summary += sentence

    summary = " ".join(summary.split())
    if summary:
        return summary
    prefix = " ".join(text[:max_length].split())
    return prefix + "..." if len(text) > max_length else prefix


def highlights(content: str, query: str, limit: int = 3) -> List[str]:
    """Sentences of the chunk that mention any query word."""
    words = [w for w in query.lower().split() if len(w) > 2]
    found = []
    for sentence in _SENTENCE.findall(content):
        lowered = sentence.lower()
        if any(word in lowered for word in words):
            found.append(" ".join(sentence.split()))
            if len(found) >= limit:
                break
    return found


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()


def _tag_values(tags: List[str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for tag in tags:
        prefix, separator, value = tag.partition(":")
        if separator and prefix not in values:
            values[prefix] = value
    return values


def _span(value: Optional[str], default: int) -> tuple:
    if not value or "-" not in value:
        return default, default
    start, _, end = value.partition("-")
    return int(start), int(end)


class DocumentManager:
    """
    Owns the document registry and chunk embeddings.

    The registry is an in-process index over chunk facts stored in the
    knowledge-base conversation. The store remains the source of truth;
    initialize() rebuilds the registry from it.
    """

    def __init__(
        self,
        store: MemoryStore,
        embeddings: EmbeddingGenerator,
        conversation_id: str = KNOWLEDGE_BASE_CONVERSATION,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        max_file_size: int = MAX_FILE_SIZE,
    ):
        self.store = store
        self.embeddings = embeddings
        self.conversation_id = conversation_id
        self.max_chunk_size = max_chunk_size
        self.max_file_size = max_file_size
        self._documents: Dict[str, Document] = {}

    async def initialize(self) -> None:
        await self.embeddings.initialize()
        self.store.ensure_conversation(self.conversation_id, title="Knowledge base")
        await self._load_documents()
        logger.info(f"DocumentManager initialized with {len(self._documents)} documents")

    async def _load_documents(self) -> None:
        grouped: Dict[str, List[MemoryFact]] = {}
        for fact in self.store.get_facts(self.conversation_id):
            document_id = _tag_values(fact.tags).get("doc")
            if document_id:
                grouped.setdefault(document_id, []).append(fact)

        documents = {}
        missing_embeddings: List[DocumentChunk] = []
        for document_id, facts in grouped.items():
            first = _tag_values(facts[0].tags)
            chunks = []
            for fact in facts:
                tags = _tag_values(fact.tags)
                start_char, end_char = _span(tags.get("chars"), 0)
                start_line, end_line = _span(tags.get("lines"), 1)
                section = tags.get("section")
                chunk = DocumentChunk(
                    id=fact.id,
                    document_id=document_id,
                    content=fact.content,
                    embedding=fact.embedding,
                    metadata=ChunkMetadata(
                        start_char=start_char,
                        end_char=end_char,
                        start_line=start_line,
                        end_line=end_line,
                        section=section,
                        headings=[section] if section else [],
                    ),
                    position=int(tags.get("chunk", 0)),
                )
                chunks.append(chunk)
                if chunk.embedding is None:
                    missing_embeddings.append(chunk)

            chunks.sort(key=lambda c: c.position)
            path = facts[0].references[0] if facts[0].references else first.get("file", "")
            file_type = first.get("type", "")
            text = "\n\n".join(chunk.content for chunk in chunks)
            created_at = min(fact.timestamp for fact in facts)

            documents[document_id] = Document(
                id=document_id,
                name=first.get("file", os.path.basename(path)),
                path=path,
                type=file_type,
                size=int(first.get("size", 0)),
                hash=first.get("hash", ""),
                chunks=chunks,
                metadata=self._extract_metadata(text, path, file_type),
                created_at=created_at,
                updated_at=created_at,
            )

        if missing_embeddings:
            logger.info(f"Re-embedding {len(missing_embeddings)} chunks without embeddings")
            vectors = await self.embeddings.generate_embeddings(
                [chunk.content for chunk in missing_embeddings]
            )
            for chunk, vector in zip(missing_embeddings, vectors):
                chunk.embedding = vector
                self.store.update_fact(chunk.id, MemoryFactUpdate(embedding=vector))

        self._documents = dict(sorted(documents.items(), key=lambda item: item[1].created_at))

    def _extract_metadata(self, text: str, path: str, file_type: str) -> DocumentMetadata:
        title_match = _MARKDOWN_TITLE.search(text) if file_type in (".md", ".markdown") else None
        stem = os.path.splitext(os.path.basename(path))[0]
        return DocumentMetadata(
            title=title_match.group(1) if title_match else stem,
            word_count=len(text.split()),
            language=detect_language(text, file_type),
            summary=summarize(text),
            keywords=extract_keywords(text),
            file_type=file_type,
        )

    def _chunk_tags(self, document: Document, chunk: DocumentChunk) -> List[str]:
        metadata = chunk.metadata
        tags = [
            f"doc:{document.id}",
            f"file:{document.name}",
            f"type:{document.type}",
            f"hash:{document.hash}",
            f"size:{document.size}",
            f"chunk:{chunk.position}",
            f"chars:{metadata.start_char}-{metadata.end_char}",
            f"lines:{metadata.start_line}-{metadata.end_line}",
        ]
        if metadata.section:
            tags.append(f"section:{metadata.section}")
        return tags

    async def _read(self, path: str) -> Tuple[str, bytes, str]:
        """Validate and read a file. Returns (file_type, data, sha256 hex digest)."""
        file_type = os.path.splitext(path)[1].lower()
        if file_type not in SUPPORTED_EXTENSIONS:
            raise InvalidInputError(f"Unsupported file type '{file_type}': {path}", path=path)

        try:
            data = await asyncio.to_thread(_read_bytes, path)
        except OSError as e:
            raise InvalidInputError(f"Cannot read {path}: {e}", path=path) from e

        if len(data) > self.max_file_size:
            raise InvalidInputError(
                f"File too large: {path} ({len(data)} bytes, limit {self.max_file_size})",
                path=path,
            )
        return file_type, data, hashlib.sha256(data).hexdigest()

    def _find_by_hash(self, digest: str) -> Optional[Document]:
        for existing in self._documents.values():
            if existing.hash == digest:
                return existing
        return None

    async def add_document(self, path) -> Document:
        """
        Index a file. Re-adding content with the same hash returns the existing document.

        Raises:
            InvalidInputError: Unsupported type, unreadable, too large, not UTF-8 or empty
            ModelUnavailableError: If chunks could not be embedded
            StorageError: If chunks could not be persisted
        """
        path = os.fspath(path)
        file_type, data, digest = await self._read(path)

        existing = self._find_by_hash(digest)
        if existing is not None:
            logger.info(f"Document already indexed: {existing.name} ({existing.id})")
            return existing

        return await self._index(path, file_type, data, digest)

    async def _index(self, path: str, file_type: str, data: bytes, digest: str) -> Document:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidInputError(f"File is not valid UTF-8: {path}", path=path) from e

        pieces = chunk_document(text, file_type, self.max_chunk_size)
        if not pieces:
            raise InvalidInputError(f"Document has no content: {path}", path=path)

        vectors = await self.embeddings.generate_embeddings([piece.content for piece in pieces])

        now = datetime.now()
        document = Document(
            id=str(uuid.uuid4()),
            name=os.path.basename(path),
            path=path,
            type=file_type,
            size=len(data),
            hash=digest,
            metadata=self._extract_metadata(text, path, file_type),
            created_at=now,
            updated_at=now,
        )

        try:
            for position, (piece, vector) in enumerate(zip(pieces, vectors)):
                chunk = DocumentChunk(
                    id="",
                    document_id=document.id,
                    content=piece.content,
                    embedding=vector,
                    metadata=piece.metadata,
                    position=position,
                )
                fact = MemoryFactDraft(
                    content=piece.content,
                    source=DOCUMENT_SOURCE,
                    timestamp=now,
                    relevance_score=CHUNK_RELEVANCE,
                    tags=self._chunk_tags(document, chunk),
                    verified=True,
                    references=[path],
                )
                chunk.id = self.store.add_fact(self.conversation_id, fact, vector)
                document.chunks.append(chunk)
            self.store.touch_conversation(self.conversation_id)
        except StorageError as e:
            logger.error(f"Failed to store {path}, removing {len(document.chunks)} stored chunks")
            self._remove_chunks(document)
            raise StorageError(f"Failed to store document {path}: {e}") from e

        self._documents[document.id] = document
        logger.info(f"Indexed {document.name} as {document.id} ({len(document.chunks)} chunks)")
        return document

    def _remove_chunks(self, document: Document) -> None:
        for chunk in document.chunks:
            try:
                self.store.delete_fact(chunk.id)
            except (NotFoundError, StorageError) as e:
                logger.error(f"Could not remove chunk {chunk.id} of {document.id}: {e}")

    async def search_documents(self, query: str, top_k: int = 10) -> List[SearchResult]:
        """
        Rank every chunk of every document against the query.

        Raises:
            InvalidInputError: On a blank query or non-positive top_k
            ModelUnavailableError: If the query could not be embedded
        """
        if not query or not query.strip():
            raise InvalidInputError("Search query must not be empty")

        query_vector = await self.embeddings.generate_embedding(query)
        candidates = [
            SimilarityCandidate(chunk.id, chunk.embedding, (document, chunk))
            for document in self._documents.values()
            for chunk in document.chunks
            if chunk.embedding is not None
        ]
        matches = find_similar(query_vector, candidates, top_k=top_k, min_similarity=-1.0)

        results = []
        for match in matches:
            document, chunk = match.metadata
            results.append(
                SearchResult(
                    chunk=chunk,
                    document=document,
                    score=match.similarity,
                    highlights=highlights(chunk.content, query),
                )
            )
        logger.debug(f"Document search '{query[:50]}': {len(results)} of {len(candidates)} chunks")
        return results

    async def delete_document(self, document_id: str) -> None:
        """
        Remove a document and its chunk facts.

        Raises:
            NotFoundError: If the document is not indexed
        """
        document = self._documents.get(document_id)
        if document is None:
            raise NotFoundError(f"Document not found: {document_id}")

        tag = f"doc:{document_id}"
        for fact in self.store.get_facts(self.conversation_id):
            if tag in fact.tags:
                self.store.delete_fact(fact.id)

        del self._documents[document_id]
        self.store.touch_conversation(self.conversation_id)
        logger.info(f"Removed document {document.name} ({document_id})")

    async def update_document(self, document_id: str, path) -> Document:
        """
        Replace a document with the contents of path.

        The new file is read, chunked, embedded and stored before the old
        document is removed, so a failure leaves the old document in place.
        Unchanged content returns the current document.

        Raises:
            NotFoundError: If the document is not indexed
            InvalidInputError, ModelUnavailableError, StorageError: As add_document
        """
        current = self._documents.get(document_id)
        if current is None:
            raise NotFoundError(f"Document not found: {document_id}")

        path = os.fspath(path)
        file_type, data, digest = await self._read(path)
        if digest == current.hash:
            logger.info(f"Document {current.name} ({document_id}) is unchanged")
            return current

        replacement = self._find_by_hash(digest)
        if replacement is None:
            replacement = await self._index(path, file_type, data, digest)

        await self.delete_document(document_id)
        return replacement

    def get_documents(self) -> List[Document]:
        return list(self._documents.values())

    def get_document(self, document_id: str) -> Optional[Document]:
        return self._documents.get(document_id)
