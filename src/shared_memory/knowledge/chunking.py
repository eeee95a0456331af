"""
Structure-aware document chunking.

Markdown is split at headings (keeping the heading hierarchy), source code
at top-level function and class definitions, and everything else into
paragraph groups of at most max_chunk_size characters. Every chunk records
its character and line span in the original text.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Tuple

from shared_memory.knowledge.models import ChunkMetadata

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNK_SIZE = 1000

MARKDOWN_TYPES = {".md", ".markdown"}
CODE_TYPES = {".ts", ".tsx", ".js", ".jsx", ".py", ".java"}

_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_FENCE = re.compile(r"^\s*(```|~~~)")
_PARAGRAPH = re.compile(r"\S[\s\S]*?(?=\n[ \t]*\n|\Z)")

CODE_STRUCTURE_PATTERNS = (
    re.compile(r"^(export\s+)?(default\s+)?(async\s+)?function\s+\w+"),
    re.compile(r"^(export\s+)?(abstract\s+)?class\s+\w+"),
    re.compile(r"^\s*(public|private|protected|static|async)?\s*\w+\s*\([^)]*\)\s*\{"),
    re.compile(r"^(export\s+)?const\s+\w+\s*=\s*(\([^)]*\)|[^=]+)\s*=>"),
    re.compile(r"^(async\s+)?def\s+\w+"),
)


@dataclass
class TextChunk:
    content: str
    metadata: ChunkMetadata


def _line_at(text: str, index: int) -> int:
    return text.count("\n", 0, index) + 1


def _lines_with_offsets(text: str) -> List[Tuple[int, str]]:
    offsets = []
    position = 0
    for line in text.splitlines(keepends=True):
        offsets.append((position, line))
        position += len(line)
    return offsets


def _make_chunk(text: str, start: int, end: int, **metadata) -> TextChunk:
    raw = text[start:end]
    # Report the span of the stripped content, not surrounding blank lines
    leading = len(raw) - len(raw.lstrip())
    content = raw.strip()
    start += leading
    end = start + len(content)
    return TextChunk(
        content=content,
        metadata=ChunkMetadata(
            start_char=start,
            end_char=end,
            start_line=_line_at(text, start),
            end_line=_line_at(text, max(start, end - 1)),
            **metadata,
        ),
    )


def chunk_markdown(text: str) -> List[TextChunk]:
    """One chunk per section; a section runs from a heading to the next heading."""
    chunks: List[TextChunk] = []
    headings: List[str] = []
    section_start = 0
    in_fence = False

    def flush(end: int) -> None:
        if text[section_start:end].strip():
            chunks.append(
                _make_chunk(
                    text,
                    section_start,
                    end,
                    headings=list(headings),
                    section=headings[-1] if headings else None,
                )
            )

    for offset, line in _lines_with_offsets(text):
        if _FENCE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue

        match = _HEADING.match(line.rstrip("\n"))
        if match is None:
            continue

        flush(offset)
        level = len(match.group(1))
        headings = headings[: level - 1] + [match.group(2)]
        section_start = offset

    flush(len(text))
    return chunks


def chunk_code(text: str) -> List[TextChunk]:
    """
    One chunk per top-level structure.

    A structure starts at a line matching CODE_STRUCTURE_PATTERNS and, for
    brace languages, ends when its braces balance. Lines in between
    structures are attached to the preceding chunk.
    """
    chunks: List[TextChunk] = []
    chunk_start = 0
    depth = 0
    in_structure = False

    for offset, line in _lines_with_offsets(text):
        starts_structure = any(pattern.match(line) for pattern in CODE_STRUCTURE_PATTERNS)

        if starts_structure and not in_structure:
            if text[chunk_start:offset].strip():
                chunks.append(_make_chunk(text, chunk_start, offset))
            chunk_start = offset
            in_structure = True
            depth = line.count("{") - line.count("}")
        elif in_structure:
            depth += line.count("{") - line.count("}")

        if in_structure and depth <= 0:
            in_structure = False
            depth = 0

    if text[chunk_start:].strip():
        chunks.append(_make_chunk(text, chunk_start, len(text)))
    return chunks


def chunk_paragraphs(text: str, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> List[TextChunk]:
    """
    Group consecutive paragraphs into chunks of at most max_chunk_size characters.

    A single paragraph longer than max_chunk_size is cut into fixed windows.
    """
    chunks: List[TextChunk] = []
    group_start = group_end = None

    for match in _PARAGRAPH.finditer(text):
        start, end = match.start(), match.start() + len(match.group().rstrip())

        if group_start is not None and end - group_start > max_chunk_size:
            chunks.append(_make_chunk(text, group_start, group_end))
            group_start = None

        if end - start > max_chunk_size:
            for window_start in range(start, end, max_chunk_size):
                window_end = min(window_start + max_chunk_size, end)
                if text[window_start:window_end].strip():
                    chunks.append(_make_chunk(text, window_start, window_end))
            continue

        if group_start is None:
            group_start = start
        group_end = end

    if group_start is not None:
        chunks.append(_make_chunk(text, group_start, group_end))
    return chunks


def chunk_document(
    text: str, file_type: str, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE
) -> List[TextChunk]:
    """Pick a chunking strategy from the file extension (".md", ".py", ...)."""
    file_type = file_type.lower()
    if file_type in MARKDOWN_TYPES:
        chunks = chunk_markdown(text)
    elif file_type in CODE_TYPES:
        chunks = chunk_code(text)
    else:
        chunks = chunk_paragraphs(text, max_chunk_size)

    logger.debug(f"Chunked {len(text)} chars of {file_type or 'text'} into {len(chunks)} chunks")
    return chunks
