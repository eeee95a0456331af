"""
Base protocol for memory extractors.
"""

from typing import Protocol

from typing_extensions import runtime_checkable

from shared_memory.models import MemoryExtractionRequest, MemoryExtractionResult


@runtime_checkable
class MemoryExtractor(Protocol):
    """
    Protocol for memory extractors.

    This is a Protocol (PEP 544), meaning any class that implements
    the extract_memory() method with this signature is compatible - no
    inheritance required.

    Extractors are total over conversational input: they return an empty
    result instead of raising on short, empty or unusual messages.
    """

    async def extract_memory(self, request: MemoryExtractionRequest) -> MemoryExtractionResult:
        """
        Extract draft facts, relationships and a summary from messages.

        Args:
            request: Conversation id, messages and which kinds to extract

        Returns:
            Drafts without ids or embeddings, plus confidence and elapsed ms
        """
        ...
