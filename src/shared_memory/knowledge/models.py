from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ChunkMetadata(BaseModel):
    start_char: int = 0
    end_char: int = 0
    start_line: int = 1
    end_line: int = 1
    section: Optional[str] = None
    headings: List[str] = Field(default_factory=list)


class DocumentChunk(BaseModel):
    id: str
    document_id: str
    content: str
    embedding: Optional[List[float]] = Field(default=None, exclude=True)
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)
    position: int = Field(..., ge=0, description="Index of the chunk within its document")


class DocumentMetadata(BaseModel):
    title: Optional[str] = None
    word_count: int = 0
    language: Optional[str] = None
    summary: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    file_type: str


class Document(BaseModel):
    """An indexed file. Chunks are persisted as memory facts tagged doc:<id>."""

    id: str
    name: str
    path: str
    type: str = Field(..., description="Lower-case file extension including the dot")
    size: int = Field(..., ge=0, description="Size in bytes")
    hash: str = Field(..., description="SHA-256 of the raw file bytes")
    chunks: List[DocumentChunk] = Field(default_factory=list)
    metadata: DocumentMetadata
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class SearchResult(BaseModel):
    chunk: DocumentChunk
    document: Document
    score: float
    highlights: List[str] = Field(default_factory=list)


class QuerySource(BaseModel):
    document_name: str
    document_id: str
    chunk_id: str
    score: float


class QueryMetadata(BaseModel):
    tokens_used: int = 0
    processing_time: float = Field(default=0.0, description="Elapsed time in milliseconds")
    cached: bool = False


class QueryResult(BaseModel):
    context: str = ""
    sources: List[QuerySource] = Field(default_factory=list)
    metadata: QueryMetadata = Field(default_factory=QueryMetadata)


class KnowledgeBaseStats(BaseModel):
    total_documents: int = 0
    total_chunks: int = 0
    total_tokens: int = 0
    avg_chunk_size: int = Field(default=0, description="Average chunk size in tokens")
    languages: List[str] = Field(default_factory=list)
    file_types: List[str] = Field(default_factory=list)
