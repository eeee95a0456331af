"""
Contract tests for MemoryStore implementations.

Each test runs against the in-memory store and the SQLAlchemy store on an
in-memory SQLite database.
"""

from datetime import datetime, timedelta

import pytest

from shared_memory.errors import DimensionMismatchError, InvalidInputError, NotFoundError
from shared_memory.models import (
    ConversationSummaryDraft,
    EntityRelationshipDraft,
    MemoryFactDraft,
    MemoryFactUpdate,
    MemorySearchQuery,
    SearchTimeRange,
    TimeRange,
)
from shared_memory.storage import MemoryStore

NOW = datetime(2024, 5, 1, 12, 0)


def fact(content, relevance=0.5, timestamp=NOW, source="alice", tags=None):
    return MemoryFactDraft(
        content=content,
        source=source,
        timestamp=timestamp,
        relevance_score=relevance,
        tags=tags or [],
        references=["m1"],
    )


def summary(text, start, key_points=None, created_at=NOW):
    return ConversationSummaryDraft(
        time_range=TimeRange(start=start, end=start + timedelta(hours=1)),
        summary=text,
        key_points=key_points or [],
        participants=["alice", "bob"],
        message_count=4,
        created_at=created_at,
    )


def relationship(source, target, type="is_a", confidence=0.5, created_at=NOW):
    return EntityRelationshipDraft(
        source_entity=source,
        target_entity=target,
        relationship_type=type,
        confidence=confidence,
        evidence=["m1"],
        created_by="alice",
        created_at=created_at,
    )


def test_store_satisfies_protocol(store):
    assert isinstance(store, MemoryStore)


def test_add_and_get_fact(store):
    """Test that a stored fact round-trips with its embedding."""
    fact_id = store.add_fact("c1", fact("Python is a language", tags=["lang"]), [0.6, 0.8])

    stored = store.get_fact(fact_id)

    assert stored is not None
    assert stored.id == fact_id
    assert stored.content == "Python is a language"
    assert stored.tags == ["lang"]
    assert stored.references == ["m1"]
    assert stored.embedding == pytest.approx([0.6, 0.8])
    assert stored.timestamp == NOW


def test_get_nonexistent_fact(store):
    assert store.get_fact("missing") is None


def test_facts_ordered_by_relevance_then_recency(store):
    store.add_fact("c1", fact("low", relevance=0.2))
    store.add_fact("c1", fact("high older", relevance=0.9, timestamp=NOW - timedelta(hours=1)))
    store.add_fact("c1", fact("high newer", relevance=0.9))

    contents = [f.content for f in store.get_facts("c1")]

    assert contents == ["high newer", "high older", "low"]
    assert [f.content for f in store.get_facts("c1", limit=1)] == ["high newer"]


def test_summaries_ordered_by_start_desc(store):
    store.add_summary("c1", summary("early", NOW - timedelta(days=1)))
    store.add_summary("c1", summary("late", NOW))

    assert [s.summary for s in store.get_summaries("c1")] == ["late", "early"]


def test_relationships_ordered_by_confidence(store):
    store.add_relationship("c1", relationship("Python", "language", confidence=0.6))
    store.add_relationship("c1", relationship("Rust", "language", confidence=0.9))

    assert [r.source_entity for r in store.get_relationships("c1")] == ["Rust", "Python"]


def test_conversations_are_isolated(store):
    store.add_fact("c1", fact("only in c1"))
    store.add_fact("c2", fact("only in c2"))

    assert [f.content for f in store.get_facts("c1")] == ["only in c1"]
    assert [f.content for f in store.get_facts("c2")] == ["only in c2"]
    assert store.get_facts("unknown") == []


def test_update_fact(store):
    fact_id = store.add_fact("c1", fact("mutable fact", relevance=0.3))

    store.update_fact(
        fact_id, MemoryFactUpdate(relevance_score=0.9, verified=True, tags=["a", "a", "b"])
    )

    updated = store.get_fact(fact_id)
    assert updated.relevance_score == pytest.approx(0.9)
    assert updated.verified is True
    assert updated.tags == ["a", "b"]
    assert updated.content == "mutable fact"


def test_empty_update_is_a_no_op(store):
    fact_id = store.add_fact("c1", fact("unchanged", relevance=0.4))

    store.update_fact(fact_id, MemoryFactUpdate())
    # Empty updates are not checked against the store
    store.update_fact("missing", MemoryFactUpdate())

    assert store.get_fact(fact_id).relevance_score == pytest.approx(0.4)


def test_embeddings_must_match_store_dimension(store):
    store.embedding_dimension = 3
    fact_id = store.add_fact("c1", fact("sized"), [0.0, 0.6, 0.8])

    with pytest.raises(DimensionMismatchError):
        store.add_fact("c1", fact("too short"), [0.6, 0.8])
    with pytest.raises(DimensionMismatchError):
        store.add_summary("c1", summary("too long", NOW), [0.1] * 4)
    with pytest.raises(DimensionMismatchError):
        store.add_relationship("c1", relationship("Python", "language"), [1.0])
    with pytest.raises(DimensionMismatchError):
        store.update_fact(fact_id, MemoryFactUpdate(embedding=[1.0]))

    store.update_fact(fact_id, MemoryFactUpdate(embedding=None))
    assert [f.content for f in store.get_facts("c1")] == ["sized"]
    assert store.get_summaries("c1") == []
    assert store.get_relationships("c1") == []


def test_update_missing_fact(store):
    with pytest.raises(NotFoundError):
        store.update_fact("missing", MemoryFactUpdate(relevance_score=0.1))


def test_delete_items(store):
    fact_id = store.add_fact("c1", fact("to delete"))
    summary_id = store.add_summary("c1", summary("to delete", NOW))
    relationship_id = store.add_relationship("c1", relationship("A1", "thing"))

    store.delete_fact(fact_id)
    store.delete_summary(summary_id)
    store.delete_relationship(relationship_id)

    assert store.get_facts("c1") == []
    assert store.get_summaries("c1") == []
    assert store.get_relationships("c1") == []

    with pytest.raises(NotFoundError):
        store.delete_fact(fact_id)


def test_delete_conversation_cascades(store):
    store.add_fact("c1", fact("gone"))
    store.add_summary("c1", summary("gone", NOW))
    store.add_relationship("c1", relationship("Gone", "thing"))
    store.add_fact("c2", fact("kept"))

    store.delete_conversation("c1")

    assert store.get_facts("c1") == []
    assert store.get_summaries("c1") == []
    assert store.get_relationships("c1") == []
    assert store.get_conversation_updated_at("c1") is None
    assert len(store.get_facts("c2")) == 1

    with pytest.raises(NotFoundError):
        store.delete_conversation("c1")


def test_touch_conversation(store):
    assert store.get_conversation_updated_at("c1") is None

    store.ensure_conversation("c1", title="Test chat")
    first = store.get_conversation_updated_at("c1")
    store.touch_conversation("c1")

    assert first is not None
    assert store.get_conversation_updated_at("c1") >= first


def test_search_text_is_case_insensitive(store):
    store.add_fact("c1", fact("Python is a programming language"))
    store.add_fact("c1", fact("Bread needs flour"))
    store.add_summary("c1", summary("Talk about baking", NOW, key_points=["Sourdough PYTHON"]))
    store.add_relationship("c1", relationship("Python", "language"))

    result = store.search_memory("c1", MemorySearchQuery(query="python"))

    assert [f.content for f in result.facts] == ["Python is a programming language"]
    assert [s.summary for s in result.summaries] == ["Talk about baking"]
    assert [r.source_entity for r in result.relationships] == ["Python"]
    assert result.total_results == 3
    assert result.search_time >= 0


def test_search_type_and_limit(store):
    for i in range(5):
        store.add_fact("c1", fact(f"fact {i}", relevance=i / 10))
    store.add_relationship("c1", relationship("Fact", "thing"))

    result = store.search_memory("c1", MemorySearchQuery(query="fact", type="facts", limit=2))

    assert [f.content for f in result.facts] == ["fact 4", "fact 3"]
    assert result.relationships == []
    assert result.summaries == []


def test_search_filters(store):
    store.add_fact("c1", fact("tagged", relevance=0.8, tags=["python"], source="alice"))
    store.add_fact("c1", fact("untagged", relevance=0.8, source="bob"))
    store.add_fact("c1", fact("irrelevant", relevance=0.1, tags=["python"]))
    store.add_fact(
        "c1", fact("old", relevance=0.9, tags=["python"], timestamp=NOW - timedelta(days=10))
    )

    by_tag = store.search_memory(
        "c1", MemorySearchQuery(type="facts", tags=["python"], min_relevance_score=0.5)
    )
    assert [f.content for f in by_tag.facts] == ["old", "tagged"]

    by_source = store.search_memory("c1", MemorySearchQuery(type="facts", sources=["bob"]))
    assert [f.content for f in by_source.facts] == ["untagged"]

    recent = store.search_memory(
        "c1",
        MemorySearchQuery(
            type="facts",
            time_range=SearchTimeRange(start=NOW - timedelta(days=1)),
            min_relevance_score=0.5,
        ),
    )
    assert {f.content for f in recent.facts} == {"tagged", "untagged"}


def test_search_summaries_by_overlap(store):
    store.add_summary("c1", summary("yesterday", NOW - timedelta(days=1)))
    store.add_summary("c1", summary("today", NOW))

    result = store.search_memory(
        "c1",
        MemorySearchQuery(
            type="summaries", time_range=SearchTimeRange(start=NOW + timedelta(minutes=30))
        ),
    )

    assert [s.summary for s in result.summaries] == ["today"]


def test_search_escapes_like_wildcards(store):
    store.add_fact("c1", fact("growth of 100% this year"))
    store.add_fact("c1", fact("growth of 100 units"))

    result = store.search_memory("c1", MemorySearchQuery(query="100%", type="facts"))

    assert [f.content for f in result.facts] == ["growth of 100% this year"]


def test_cleanup_old_memory(store):
    old = datetime(2020, 1, 1)
    store.add_fact("c1", fact("ancient", timestamp=old))
    store.add_fact("c1", fact("fresh", timestamp=datetime.now()))
    store.add_summary("c1", summary("ancient", old, created_at=old))
    store.add_relationship("c1", relationship("Ancient", "thing", created_at=old))
    store.add_fact("c2", fact("ancient elsewhere", timestamp=old))

    result = store.cleanup_old_memory("c1", retention_days=30)

    assert result.facts_deleted == 1
    assert result.summaries_deleted == 1
    assert result.relationships_deleted == 1
    assert [f.content for f in store.get_facts("c1")] == ["fresh"]
    assert len(store.get_facts("c2")) == 1


def test_cleanup_with_zero_retention_deletes_everything(store):
    store.add_fact("c1", fact("just now", timestamp=datetime.now()))
    store.add_fact("c1", fact("a while ago", timestamp=datetime.now() - timedelta(hours=2)))
    store.add_summary("c1", summary("recent", NOW, created_at=datetime.now()))
    store.add_relationship("c1", relationship("Python", "language", created_at=datetime.now()))
    store.add_fact("c2", fact("other conversation", timestamp=datetime.now()))

    result = store.cleanup_old_memory("c1", retention_days=0)

    assert result.facts_deleted == 2
    assert result.summaries_deleted == 1
    assert result.relationships_deleted == 1
    assert store.get_facts("c1") == []
    assert store.get_summaries("c1") == []
    assert store.get_relationships("c1") == []
    assert len(store.get_facts("c2")) == 1


def test_timezone_aware_timestamps_are_stored_as_local_time(store):
    store.add_fact("c1", fact("utc fact", timestamp="2020-01-01T00:00:00Z"))
    store.add_fact("c1", fact("local fact", timestamp=datetime.now()))
    store.add_relationship(
        "c1", relationship("Python", "language", created_at="2020-01-01T00:00:00+00:00")
    )

    facts = store.get_facts("c1")
    assert all(f.timestamp.tzinfo is None for f in facts)

    query = MemorySearchQuery(
        type="facts",
        time_range=SearchTimeRange(start="2019-12-31T00:00:00Z", end="2020-01-02T00:00:00Z"),
    )
    assert [f.content for f in store.search_memory("c1", query).facts] == ["utc fact"]

    result = store.cleanup_old_memory("c1", retention_days=1)

    assert result.facts_deleted == 1
    assert result.relationships_deleted == 1
    assert [f.content for f in store.get_facts("c1")] == ["local fact"]


def test_cleanup_rejects_negative_retention(store):
    with pytest.raises(InvalidInputError):
        store.cleanup_old_memory("c1", retention_days=-1)


def test_memory_stats(store):
    store.add_fact("c1", fact("one", relevance=0.2, timestamp=NOW - timedelta(days=1)))
    store.add_fact("c1", fact("two", relevance=0.6, timestamp=NOW))
    store.add_summary("c1", summary("sum", NOW))
    store.add_relationship("c1", relationship("X1", "thing"))

    stats = store.get_memory_stats("c1")

    assert stats.fact_count == 2
    assert stats.summary_count == 1
    assert stats.relationship_count == 1
    assert stats.average_relevance_score == pytest.approx(0.4)
    assert stats.oldest_fact == NOW - timedelta(days=1)
    assert stats.newest_fact == NOW


def test_memory_stats_empty(store):
    stats = store.get_memory_stats("empty")

    assert stats.fact_count == 0
    assert stats.average_relevance_score == 0.0
    assert stats.oldest_fact is None


def test_reads_are_copies(store):
    fact_id = store.add_fact("c1", fact("immutable", tags=["a"]))

    store.get_fact(fact_id).tags.append("b")

    assert store.get_fact(fact_id).tags == ["a"]
