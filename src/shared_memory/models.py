from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

MemoryType = Literal["facts", "summaries", "relationships", "all"]
ExtractionType = Literal["facts", "relationships", "summary", "all"]
NotificationType = Literal["fact_added", "summary_created", "relationship_discovered"]


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))


def _naive_local(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are compared as naive local time; aware values are converted."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class MemoryFactDraft(BaseModel):
    """A fact that has not been persisted yet (no id, no embedding)."""

    content: str
    source: str = Field(..., description="Participant id or 'user' that contributed the fact")
    timestamp: datetime = Field(default_factory=datetime.now)
    relevance_score: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Current usefulness to the conversation"
    )
    tags: List[str] = Field(default_factory=list)
    verified: bool = Field(
        default=False, description="Corroborated by at least two independent mentions"
    )
    references: List[str] = Field(
        default_factory=list, description="Message ids supporting the fact"
    )

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, tags: List[str]) -> List[str]:
        return _unique(tags)

    @field_validator("timestamp")
    @classmethod
    def _local_timestamp(cls, value: datetime) -> datetime:
        return _naive_local(value)


class MemoryFact(MemoryFactDraft):
    id: str
    embedding: Optional[List[float]] = None


class TimeRange(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _local_bounds(cls, value: datetime) -> datetime:
        return _naive_local(value)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeRange":
        if self.start > self.end:
            raise ValueError("time range start must not be after end")
        return self


class ConversationSummaryDraft(BaseModel):
    time_range: TimeRange
    summary: str
    key_points: List[str] = Field(default_factory=list)
    participants: List[str] = Field(default_factory=list)
    message_count: int = Field(default=0, ge=0)
    created_by: str = "system"
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("participants")
    @classmethod
    def _dedupe_participants(cls, participants: List[str]) -> List[str]:
        return _unique(participants)

    @field_validator("created_at")
    @classmethod
    def _local_created_at(cls, value: datetime) -> datetime:
        return _naive_local(value)


class ConversationSummary(ConversationSummaryDraft):
    id: str
    embedding: Optional[List[float]] = None


class EntityRelationshipDraft(BaseModel):
    source_entity: str
    target_entity: str
    relationship_type: str = Field(
        ..., description="Open enum: is_a, has, belongs_to, part_of, related_to, causal, ..."
    )
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence: List[str] = Field(default_factory=list, description="Supporting message ids")
    created_by: str
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("created_at")
    @classmethod
    def _local_created_at(cls, value: datetime) -> datetime:
        return _naive_local(value)

    def as_text(self) -> str:
        return f"{self.source_entity} {self.relationship_type} {self.target_entity}"


class EntityRelationship(EntityRelationshipDraft):
    id: str
    embedding: Optional[List[float]] = None


class SharedMemoryContext(BaseModel):
    """Read model over everything remembered for one conversation."""

    conversation_id: str
    facts: List[MemoryFact] = Field(default_factory=list)
    summaries: List[ConversationSummary] = Field(default_factory=list)
    relationships: List[EntityRelationship] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=datetime.now)
    version: int = 1


class MemoryFactUpdate(BaseModel):
    """Partial update for a stored fact. Only fields that are set are written."""

    content: Optional[str] = None
    relevance_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    tags: Optional[List[str]] = None
    embedding: Optional[List[float]] = None
    verified: Optional[bool] = None
    references: Optional[List[str]] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class SearchTimeRange(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def _local_bounds(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _naive_local(value)


class MemorySearchQuery(BaseModel):
    query: str = ""
    type: MemoryType = "all"
    limit: Optional[int] = Field(default=None, gt=0)
    min_relevance_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    time_range: Optional[SearchTimeRange] = None
    tags: Optional[List[str]] = None
    sources: Optional[List[str]] = None

    def includes(self, kind: str) -> bool:
        return self.type in (kind, "all")


class MemorySearchResult(BaseModel):
    facts: List[MemoryFact] = Field(default_factory=list)
    summaries: List[ConversationSummary] = Field(default_factory=list)
    relationships: List[EntityRelationship] = Field(default_factory=list)
    total_results: int = 0
    search_time: float = Field(default=0.0, description="Elapsed time in milliseconds")


class MemoryStats(BaseModel):
    fact_count: int = 0
    summary_count: int = 0
    relationship_count: int = 0
    average_relevance_score: float = 0.0
    oldest_fact: Optional[datetime] = None
    newest_fact: Optional[datetime] = None


class CleanupResult(BaseModel):
    facts_deleted: int = 0
    summaries_deleted: int = 0
    relationships_deleted: int = 0


class ExtractionMessage(BaseModel):
    """A chat message as seen by the extractor."""

    id: str
    content: str
    sender: str
    timestamp: datetime = Field(default_factory=datetime.now)

    @field_validator("timestamp")
    @classmethod
    def _local_timestamp(cls, value: datetime) -> datetime:
        return _naive_local(value)


class MemoryExtractionRequest(BaseModel):
    conversation_id: str
    messages: List[ExtractionMessage] = Field(default_factory=list)
    extraction_type: ExtractionType = "all"


class MemoryExtractionResult(BaseModel):
    facts: List[MemoryFactDraft] = Field(default_factory=list)
    relationships: List[EntityRelationshipDraft] = Field(default_factory=list)
    summary: Optional[ConversationSummaryDraft] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    processing_time: float = Field(default=0.0, description="Elapsed time in milliseconds")


class MemoryUpdateNotification(BaseModel):
    type: NotificationType
    conversation_id: str
    data: Union[MemoryFact, ConversationSummary, EntityRelationship]
    timestamp: datetime = Field(default_factory=datetime.now)
    source: str


class ExtractAndStoreResult(BaseModel):
    facts_added: int = 0
    relationships_added: int = 0
    summary_added: bool = False
    processing_time: float = 0.0


class RelevanceUpdateResult(BaseModel):
    updated_facts: int = 0
    processing_time: float = 0.0


class RelevantMemory(BaseModel):
    """Memory selected for prompt injection under a token budget."""

    facts: List[MemoryFact] = Field(default_factory=list)
    relationships: List[EntityRelationship] = Field(default_factory=list)
    summaries: List[ConversationSummary] = Field(default_factory=list)
    token_count: int = 0
