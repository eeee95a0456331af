"""
Tests for KnowledgeBase: query caching, context packing, events and export.
"""

import json
from unittest.mock import AsyncMock

import pytest

from shared_memory.errors import InvalidInputError, NotFoundError, SharedMemoryError
from shared_memory.knowledge import KnowledgeBase
from shared_memory.knowledge.knowledge_base import CONTEXT_HEADER, history_topics
from shared_memory.tokens import estimate_tokens


@pytest.fixture
def databases(tmp_path):
    """Two short documents about databases, only one mentioning btree indexes."""
    storage = tmp_path / "storage.txt"
    storage.write_text("Databases store records on disk.", encoding="utf-8")
    indexing = tmp_path / "indexing.txt"
    indexing.write_text("Databases index records with btree structures.", encoding="utf-8")
    return storage, indexing


@pytest.mark.asyncio
async def test_operations_require_initialize(knowledge_base, guide):
    with pytest.raises(SharedMemoryError):
        await knowledge_base.query("python")
    with pytest.raises(SharedMemoryError):
        await knowledge_base.add_document(guide)
    with pytest.raises(SharedMemoryError):
        knowledge_base.get_stats()


@pytest.mark.asyncio
async def test_query_builds_context(knowledge_base, guide):
    await knowledge_base.initialize()
    document = await knowledge_base.add_document(guide)

    result = await knowledge_base.query("python installation")

    assert result.context.startswith(CONTEXT_HEADER + "### From: guide.md\n")
    assert "Python installation uses pip install." in result.context
    assert not result.context.endswith("---")
    assert [s.document_id for s in result.sources] == [document.id]
    assert result.sources[0].document_name == "guide.md"
    assert result.metadata.tokens_used == estimate_tokens(result.context)
    assert result.metadata.cached is False


@pytest.mark.asyncio
async def test_query_is_cached_until_documents_change(knowledge_base, guide, databases):
    await knowledge_base.initialize()
    await knowledge_base.add_document(guide)

    first = await knowledge_base.query("python installation")
    second = await knowledge_base.query("python installation")

    assert first.metadata.cached is False
    assert second.metadata.cached is True
    assert second.context == first.context

    await knowledge_base.add_document(databases[0])
    third = await knowledge_base.query("python installation")

    assert third.metadata.cached is False


@pytest.mark.asyncio
async def test_cache_key_includes_options(knowledge_base, guide):
    await knowledge_base.initialize()
    await knowledge_base.add_document(guide)

    await knowledge_base.query("python installation")
    narrowed = await knowledge_base.query("python installation", filter_file_types=["txt"])

    assert narrowed.metadata.cached is False
    assert narrowed.sources == []
    assert narrowed.context == ""


@pytest.mark.asyncio
async def test_caching_disabled(document_manager, guide):
    knowledge_base = KnowledgeBase(document_manager, enable_caching=False)
    await knowledge_base.initialize()
    await knowledge_base.add_document(guide)

    await knowledge_base.query("python installation")
    again = await knowledge_base.query("python installation")

    assert again.metadata.cached is False
    assert len(knowledge_base.cache) == 0


@pytest.mark.asyncio
async def test_query_filters(knowledge_base, guide, databases):
    await knowledge_base.initialize()
    await knowledge_base.add_document(guide)
    storage = await knowledge_base.add_document(databases[0])

    by_type = await knowledge_base.query(
        "databases records", min_score=-1.0, filter_file_types=[".TXT"]
    )
    by_id = await knowledge_base.query(
        "databases records", min_score=-1.0, filter_document_ids=[storage.id]
    )

    assert {s.document_name for s in by_type.sources} == {"storage.txt"}
    assert [s.document_id for s in by_id.sources] == [storage.id]


@pytest.mark.asyncio
async def test_min_score_filters_unrelated_chunks(knowledge_base, guide):
    await knowledge_base.initialize()
    await knowledge_base.add_document(guide)

    result = await knowledge_base.query("python installation")

    # The "Testing" section shares no words with the query
    assert len(result.sources) == 1


@pytest.mark.asyncio
async def test_query_truncates_last_chunk_to_budget(knowledge_base, tmp_path):
    path = tmp_path / "tips.txt"
    path.write_text("Python performance tips. " * 40, encoding="utf-8")
    await knowledge_base.initialize()
    await knowledge_base.add_document(path)

    partial = await knowledge_base.query("python performance", max_tokens=150)
    too_small = await knowledge_base.query("python performance", max_tokens=50)

    assert len(partial.sources) == 1
    assert partial.metadata.tokens_used <= 150
    assert partial.context.startswith(CONTEXT_HEADER)
    assert too_small.sources == []
    assert too_small.context == ""


@pytest.mark.asyncio
async def test_query_invalid_input(knowledge_base):
    await knowledge_base.initialize()

    with pytest.raises(InvalidInputError):
        await knowledge_base.query("  ")
    with pytest.raises(InvalidInputError):
        await knowledge_base.query("python", max_tokens=0)


@pytest.mark.asyncio
async def test_model_failure_degrades_and_is_not_cached(knowledge_base, guide, encoder):
    await knowledge_base.initialize()
    await knowledge_base.add_document(guide)
    encoder.fail_encode = True

    degraded = await knowledge_base.query("python installation")

    assert degraded.context == ""
    assert degraded.sources == []

    encoder.fail_encode = False
    recovered = await knowledge_base.query("python installation")

    assert recovered.metadata.cached is False
    assert len(recovered.sources) == 1


@pytest.mark.asyncio
async def test_hybrid_search_keyword_boost_reorders(knowledge_base, databases):
    """Test that chunks containing the keywords move ahead of closer semantic matches."""
    await knowledge_base.initialize()
    storage = await knowledge_base.add_document(databases[0])
    indexing = await knowledge_base.add_document(databases[1])

    semantic = await knowledge_base.query("databases records", min_score=-1.0)
    hybrid = await knowledge_base.hybrid_search("databases records", ["btree", "index"])

    assert [s.document_id for s in semantic.sources] == [storage.id, indexing.id]
    assert [s.document_id for s in hybrid.sources] == [indexing.id, storage.id]
    assert hybrid.sources[0].score == pytest.approx(semantic.sources[1].score + 0.2)
    assert hybrid.metadata.cached is False


def test_history_topics():
    history = [
        {"role": "user", "content": "Old message about Kubernetes clusters"},
        {"role": "user", "content": "Tell me about Python and Django today"},
        {"role": "assistant", "content": "Sure, Django is built on Python."},
    ]

    assert history_topics(history) == ["Kubernetes", "Tell", "Python", "Django", "Sure"]
    assert history_topics(history[1:2]) == ["Tell", "Python", "Django"]


@pytest.mark.asyncio
async def test_query_with_context(knowledge_base):
    knowledge_base.query = AsyncMock()
    history = [{"role": "user", "content": "Tell me about Python and Django today"}]

    await knowledge_base.query_with_context("installation", history)
    knowledge_base.query.assert_awaited_once_with(
        "installation (Context: Tell, Python, Django)"
    )

    knowledge_base.query.reset_mock()
    await knowledge_base.query_with_context("installation")
    knowledge_base.query.assert_awaited_once_with("installation")


@pytest.mark.asyncio
async def test_duplicate_add_returns_same_document(knowledge_base, guide):
    await knowledge_base.initialize()

    first = await knowledge_base.add_document(guide)
    second = await knowledge_base.add_document(guide)

    assert first.id == second.id
    assert len(knowledge_base.get_documents()) == 1


@pytest.mark.asyncio
async def test_lifecycle_events(knowledge_base, guide):
    events = []
    knowledge_base.subscribe(lambda name, payload: events.append(name))

    await knowledge_base.initialize()
    document = await knowledge_base.add_document(guide)
    await knowledge_base.query("python installation")
    await knowledge_base.update_document(document.id, guide)
    updated = knowledge_base.get_documents()[0]
    await knowledge_base.remove_document(updated.id)

    assert events == [
        "initialization:start",
        "initialization:complete",
        "document:adding",
        "document:added",
        "query:start",
        "query:complete",
        "document:updating",
        "document:updated",
        "document:removing",
        "document:removed",
    ]


@pytest.mark.asyncio
async def test_failed_mutation_emits_error(knowledge_base):
    events = []
    await knowledge_base.initialize()
    knowledge_base.subscribe(lambda name, payload: events.append((name, payload)))

    with pytest.raises(NotFoundError):
        await knowledge_base.remove_document("missing")

    assert [name for name, _ in events] == ["document:removing", "document:error"]
    assert isinstance(events[-1][1]["error"], NotFoundError)


@pytest.mark.asyncio
async def test_failed_update_keeps_document_and_cache(knowledge_base, guide, tmp_path):
    await knowledge_base.initialize()
    document = await knowledge_base.add_document(guide)
    await knowledge_base.query("python installation")

    with pytest.raises(InvalidInputError):
        await knowledge_base.update_document(document.id, tmp_path / "missing.md")

    again = await knowledge_base.query("python installation")
    assert knowledge_base.get_document(document.id) is not None
    assert again.metadata.cached is True
    assert again.sources[0].document_id == document.id


@pytest.mark.asyncio
async def test_remove_document(knowledge_base, guide, memory_store):
    await knowledge_base.initialize()
    document = await knowledge_base.add_document(guide)

    await knowledge_base.remove_document(document.id)

    assert knowledge_base.get_documents() == []
    assert knowledge_base.get_document(document.id) is None
    assert memory_store.get_facts("knowledge-base") == []


@pytest.mark.asyncio
async def test_get_stats(knowledge_base, guide, databases):
    await knowledge_base.initialize()
    await knowledge_base.add_document(guide)
    await knowledge_base.add_document(databases[0])

    stats = knowledge_base.get_stats()

    assert stats.total_documents == 2
    assert stats.total_chunks == 3
    assert stats.file_types == [".md", ".txt"]
    assert stats.languages == ["english"]
    assert stats.total_tokens > 0
    assert stats.avg_chunk_size == round(stats.total_tokens / 3)


@pytest.mark.asyncio
async def test_export_knowledge(knowledge_base, guide):
    await knowledge_base.initialize()
    document = await knowledge_base.add_document(guide)

    exported = json.loads(knowledge_base.export_knowledge("json"))
    markdown = knowledge_base.export_knowledge("markdown")

    assert exported[0]["id"] == document.id
    assert "embedding" not in exported[0]["chunks"][0]
    assert markdown.startswith("# Knowledge Base Export\n\n## guide.md")
    assert f"- **ID**: {document.id}" in markdown
    assert "#### Chunk 2" in markdown

    with pytest.raises(InvalidInputError):
        knowledge_base.export_knowledge("xml")


@pytest.mark.asyncio
async def test_initialize_is_idempotent(knowledge_base, encoder):
    await knowledge_base.initialize()
    await knowledge_base.initialize()

    assert knowledge_base.is_initialized
    assert encoder.load_calls == 1
