import pytest

from shared_memory.knowledge import DocumentManager, KnowledgeBase

GUIDE = """# Python Guide

Python installation uses pip install.

## Testing

Run pytest to execute tests.
"""


@pytest.fixture
def guide(tmp_path):
    path = tmp_path / "guide.md"
    path.write_text(GUIDE, encoding="utf-8")
    return path


@pytest.fixture
def document_manager(memory_store, embeddings):
    return DocumentManager(memory_store, embeddings)


@pytest.fixture
def knowledge_base(document_manager):
    return KnowledgeBase(document_manager)
