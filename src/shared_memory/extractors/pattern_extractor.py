"""
Rule-based memory extraction.

Turns a batch of chat messages into draft facts, entity relationships and
an optional conversation summary using the regex tables in
shared_memory.extractors.patterns. No model calls are made.
"""

import logging
import time
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple

from shared_memory.extractors.patterns import (
    FACT_PATTERNS,
    NON_ENTITIES,
    RELATIONSHIP_PATTERNS,
    SENTENCE_BOUNDARY,
    STOP_WORDS,
    TOKEN,
    TOPIC_WORD,
)
from shared_memory.models import (
    ConversationSummaryDraft,
    EntityRelationshipDraft,
    ExtractionMessage,
    MemoryExtractionRequest,
    MemoryExtractionResult,
    MemoryFactDraft,
    TimeRange,
)

logger = logging.getLogger(__name__)

SUMMARY_CONFIDENCE = 0.7


def _unique(values) -> List[str]:
    return list(dict.fromkeys(values))


def _tokens(text: str) -> List[str]:
    return TOKEN.findall(text.lower())


class PatternMemoryExtractor:
    """
    Extracts memory from conversations with keyword and regex patterns.

    Stateless between calls and total over its input: messages that are too
    short, empty batches and text without any recognizable pattern all
    produce an empty result rather than an error.

    Example:
        >>> extractor = PatternMemoryExtractor()
        >>> result = await extractor.extract_memory(
        ...     MemoryExtractionRequest(conversation_id="c1", messages=messages)
        ... )
        >>> [r.relationship_type for r in result.relationships]
        ['is_a']
    """

    def __init__(
        self,
        min_message_length: int = 10,
        min_summary_messages: int = 3,
        max_key_points: int = 5,
        duplicate_threshold: float = 0.8,
    ):
        """
        Initialize the extractor.

        Args:
            min_message_length: Messages (and sentences) shorter than this are ignored
            min_summary_messages: Fewest messages for which a summary is produced
            max_key_points: Upper bound on summary key points
            duplicate_threshold: Token Jaccard similarity at which two facts merge
        """
        self.min_message_length = min_message_length
        self.min_summary_messages = min_summary_messages
        self.max_key_points = max_key_points
        self.duplicate_threshold = duplicate_threshold

    async def extract_memory(self, request: MemoryExtractionRequest) -> MemoryExtractionResult:
        qualifying = [
            message
            for message in request.messages
            if len(message.content.strip()) >= self.min_message_length
        ]
        if not qualifying:
            logger.debug(
                f"No extractable messages for {request.conversation_id} "
                f"({len(request.messages)} received)"
            )
            return MemoryExtractionResult()

        started = time.perf_counter()
        wanted = request.extraction_type

        facts = self._extract_facts(qualifying)
        relationships = self._extract_relationships(qualifying)

        summary = None
        if wanted in ("summary", "all") and len(request.messages) >= self.min_summary_messages:
            summary = self._build_summary(request.messages, qualifying, facts, relationships)

        if wanted not in ("facts", "all"):
            facts = []
        if wanted not in ("relationships", "all"):
            relationships = []

        confidence = self._confidence(facts, relationships, summary, len(qualifying))
        elapsed = (time.perf_counter() - started) * 1000

        logger.info(
            f"Extracted {len(facts)} facts, {len(relationships)} relationships, "
            f"summary={'yes' if summary else 'no'} from {len(qualifying)} messages "
            f"in {request.conversation_id} (confidence={confidence:.2f}, {elapsed:.1f}ms)"
        )

        return MemoryExtractionResult(
            facts=facts,
            relationships=relationships,
            summary=summary,
            confidence=confidence,
            processing_time=elapsed,
        )

    # Facts

    def _sentences(self, content: str) -> List[str]:
        return [
            sentence.strip()
            for sentence in SENTENCE_BOUNDARY.split(content.strip())
            if len(sentence.strip()) >= self.min_message_length
        ]

    def _extract_facts(self, messages: Sequence[ExtractionMessage]) -> List[MemoryFactDraft]:
        drafts = []
        for message in messages:
            for sentence in self._sentences(message.content):
                matched = [
                    pattern
                    for pattern in FACT_PATTERNS
                    if len(sentence) >= pattern.min_length and pattern.regex.search(sentence)
                ]
                if not matched:
                    continue

                drafts.append(
                    MemoryFactDraft(
                        content=sentence,
                        source=message.sender,
                        timestamp=message.timestamp,
                        relevance_score=max(pattern.score for pattern in matched),
                        tags=_unique(tag for pattern in matched for tag in pattern.tags),
                        references=[message.id],
                    )
                )

        return self._merge_facts(drafts)

    def _is_duplicate(self, a: List[str], b: List[str]) -> bool:
        if not a or not b:
            return a == b

        set_a, set_b = set(a), set(b)
        if len(set_a & set_b) / len(set_a | set_b) >= self.duplicate_threshold:
            return True

        # "X is Y." and "X is Y for Z." are the same fact with trailing elaboration
        shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
        return len(shorter) >= 3 and longer[: len(shorter)] == shorter

    def _merge_facts(self, drafts: List[MemoryFactDraft]) -> List[MemoryFactDraft]:
        merged: List[MemoryFactDraft] = []
        merged_tokens: List[List[str]] = []

        for draft in drafts:
            tokens = _tokens(draft.content)
            for index, existing in enumerate(merged_tokens):
                if self._is_duplicate(existing, tokens):
                    kept = merged[index]
                    references = _unique(kept.references + draft.references)
                    merged[index] = kept.model_copy(
                        update={
                            "references": references,
                            "tags": _unique(kept.tags + draft.tags),
                            "relevance_score": max(kept.relevance_score, draft.relevance_score),
                            "verified": kept.verified or len(references) >= 2,
                        }
                    )
                    logger.debug(f"Merged duplicate fact into '{kept.content[:50]}'")
                    break
            else:
                merged.append(draft)
                merged_tokens.append(tokens)

        return merged

    # Relationships

    def _extract_relationships(
        self, messages: Sequence[ExtractionMessage]
    ) -> List[EntityRelationshipDraft]:
        found: Dict[Tuple[str, str, str], EntityRelationshipDraft] = {}

        for message in messages:
            for pattern in RELATIONSHIP_PATTERNS:
                for match in pattern.regex.finditer(message.content):
                    source, target = match.group(1), match.group(2)
                    if source in NON_ENTITIES or target.lower() in STOP_WORDS:
                        continue

                    key = (source.lower(), pattern.relationship_type, target.lower())
                    existing = found.get(key)
                    if existing is None:
                        found[key] = EntityRelationshipDraft(
                            source_entity=source,
                            target_entity=target,
                            relationship_type=pattern.relationship_type,
                            confidence=pattern.confidence,
                            evidence=[message.id],
                            created_by=message.sender,
                            created_at=message.timestamp,
                        )
                    else:
                        found[key] = existing.model_copy(
                            update={
                                "evidence": _unique(existing.evidence + [message.id]),
                                "confidence": max(existing.confidence, pattern.confidence),
                            }
                        )

        return list(found.values())

    # Summary

    def _topics(self, messages: Sequence[ExtractionMessage]) -> List[Tuple[str, int]]:
        """Topic words with the number of messages mentioning them, most frequent first."""
        counts: Counter = Counter()
        for message in messages:
            words = {w for w in TOPIC_WORD.findall(message.content.lower()) if w not in STOP_WORDS}
            # Sorted so ties are broken alphabetically, not by set order
            counts.update(sorted(words))
        return counts.most_common()

    def _build_summary(
        self,
        messages: Sequence[ExtractionMessage],
        qualifying: Sequence[ExtractionMessage],
        facts: List[MemoryFactDraft],
        relationships: List[EntityRelationshipDraft],
    ) -> ConversationSummaryDraft:
        timestamps = [message.timestamp for message in messages]
        participants = _unique(message.sender for message in messages)
        topics = self._topics(qualifying)

        key_points: List[str] = []
        for fact in sorted(facts, key=lambda f: f.relevance_score, reverse=True)[:3]:
            key_points.append(fact.content)
        for relationship in sorted(relationships, key=lambda r: r.confidence, reverse=True)[:2]:
            key_points.append(
                f"{relationship.source_entity} {relationship.relationship_type.replace('_', ' ')} "
                f"{relationship.target_entity}"
            )
        for topic, count in topics:
            if len(key_points) >= self.max_key_points:
                break
            plural = "s" if count != 1 else ""
            key_points.append(f"Discussion about {topic} ({count} message{plural})")
        key_points = _unique(key_points)[: self.max_key_points]

        if len(participants) == 1:
            text = f"Messages from {participants[0]} ({len(messages)} messages)"
        else:
            text = f"Conversation between {', '.join(participants)} with {len(messages)} messages"
        topic_names = [topic for topic, _ in topics[:3]]
        if topic_names:
            text += f" covering topics including {', '.join(topic_names)}"
        text += "."

        return ConversationSummaryDraft(
            time_range=TimeRange(start=min(timestamps), end=max(timestamps)),
            summary=text,
            key_points=key_points,
            participants=participants,
            message_count=len(messages),
            created_by="system",
        )

    # Confidence

    def _confidence(
        self,
        facts: List[MemoryFactDraft],
        relationships: List[EntityRelationshipDraft],
        summary: Optional[ConversationSummaryDraft],
        qualifying_count: int,
    ) -> float:
        components = []
        if facts:
            components.append(sum(f.relevance_score for f in facts) / len(facts))
        if relationships:
            components.append(sum(r.confidence for r in relationships) / len(relationships))
        if summary is not None:
            components.append(SUMMARY_CONFIDENCE)

        if not components:
            return 0.0

        items = len(facts) + len(relationships) + (1 if summary is not None else 0)
        yield_factor = 0.5 + 0.5 * min(1.0, items / qualifying_count)
        return min(1.0, sum(components) / len(components) * yield_factor)
