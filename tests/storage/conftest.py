import pytest


@pytest.fixture(params=["memory", "sqlalchemy"])
def store(request):
    """Every MemoryStore implementation; storage tests run against each."""
    if request.param == "memory":
        return request.getfixturevalue("memory_store")
    return request.getfixturevalue("sqlalchemy_store")
