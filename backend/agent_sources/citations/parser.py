"""Parse file-search tool output into typed search results.

The agent runtime hands us content parts whose text looks like::

    File: mars_1c6af286_20250616_105837.pptx
    File_ID: file-abc
    Relevance: 0.87
    Page: 4
    Content: ...

Sections are separated by blank lines or a ``---`` line. When the output
carries an ``INTERNAL_DATA`` block, that block is authoritative and the
user-visible text around it is ignored.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Iterable, Mapping, Sequence

from agent_sources.core.logging import get_logger
from agent_sources.models.entities import SearchResultUnit, StorageType
from agent_sources.utils.ids import file_id_from_name
from agent_sources.utils.text import original_filename

logger = get_logger(__name__)

FILE_MARKER = "File:"
INTERNAL_START = "<!-- INTERNAL_DATA_START -->"
INTERNAL_END = "<!-- INTERNAL_DATA_END -->"
DEFAULT_RELEVANCE = 0.5

INTERNAL_BLOCK_RE = re.compile(
    re.escape(INTERNAL_START) + r"\n(.*?)\n" + re.escape(INTERNAL_END),
    re.DOTALL,
)
SECTION_SPLIT_RE = re.compile(r"\n\s*\n|\n---\n")
FIELD_RE = re.compile(r"^(File|File_ID|Relevance|Page|Storage_Type|S3_Bucket|S3_Key|Content):\s*(.*)$")
LEADING_INT_RE = re.compile(r"^\d+")

ContentPart = Mapping[str, Any]
Predicate = Callable[[ContentPart], bool]
Extractor = Callable[[ContentPart], Any]


def _tool_call(part: ContentPart) -> Mapping[str, Any]:
    call = part.get("tool_call")
    return call if isinstance(call, Mapping) else {}


def _first_present(part: ContentPart, *names: str) -> Any:
    for name in names:
        value = part.get(name)
        if value:
            return value
    return _tool_call(part).get("output")


# Tried in order; the first extractor whose predicate holds and whose text carries
# a file-search marker wins.
EXTRACTION_RULES: Sequence[tuple[Predicate, Extractor]] = (
    (
        lambda part: part.get("type") == "tool_call" and _tool_call(part).get("name") == "file_search",
        lambda part: part.get("tool_result") or _tool_call(part).get("output"),
    ),
    (
        lambda part: part.get("type") in ("tool_result", "tool_call"),
        lambda part: _first_present(part, "tool_result", "content", "text", "result"),
    ),
    (
        lambda part: isinstance(part.get("content"), str),
        lambda part: part.get("content"),
    ),
)


def has_search_marker(text: str) -> bool:
    return FILE_MARKER in text or INTERNAL_START in text


def extract_tool_output(part: ContentPart) -> str | None:
    """Return the file-search text carried by a content part, if any."""
    if not isinstance(part, Mapping):
        return None
    for predicate, extractor in EXTRACTION_RULES:
        if not predicate(part):
            continue
        value = extractor(part)
        if isinstance(value, str) and has_search_marker(value):
            return value
    return None


def parse_tool_output(text: str) -> list[SearchResultUnit]:
    """Parse one tool-output string. Never raises; failures yield no units."""
    try:
        return list(_parse_sections(_authoritative_block(text)))
    except Exception as exc:
        logger.warning("Failed to parse file search output: %s", exc, exc_info=True)
        return []


def parse_content_parts(parts: Iterable[ContentPart]) -> list[SearchResultUnit]:
    """Collect units from every content part that carries file-search output."""
    units: list[SearchResultUnit] = []
    for part in parts:
        try:
            text = extract_tool_output(part)
        except Exception as exc:
            logger.warning("Skipping unreadable content part: %s", exc)
            continue
        if text:
            units.extend(parse_tool_output(text))
    return units


def _authoritative_block(text: str) -> str:
    match = INTERNAL_BLOCK_RE.search(text)
    return match.group(1) if match else text


def _parse_sections(text: str) -> Iterable[SearchResultUnit]:
    for section in SECTION_SPLIT_RE.split(text):
        if not section.strip():
            continue
        unit = _parse_section(section)
        if unit is None:
            logger.debug("Dropped partial search result section")
            continue
        yield unit


def _parse_section(section: str) -> SearchResultUnit | None:
    fields: dict[str, str] = {}
    for line in section.strip().splitlines():
        match = FIELD_RE.match(line.strip())
        if match:
            fields[match.group(1)] = match.group(2).strip()

    raw_name = _present(fields.get("File"))
    file_name = original_filename(raw_name) if raw_name else None
    file_id = _present(fields.get("File_ID"))
    relevance = _parse_relevance(fields.get("Relevance"))
    if not file_name or not (relevance > 0 or file_id):
        return None

    score = relevance or DEFAULT_RELEVANCE
    page = _parse_page(fields.get("Page"))
    return SearchResultUnit(
        file_id=file_id or file_id_from_name(file_name),
        file_name=file_name,
        relevance=score,
        page=page,
        storage_type=StorageType.parse(fields.get("Storage_Type")),
        bucket=_present(fields.get("S3_Bucket")),
        key=_present(fields.get("S3_Key")),
        content=fields.get("Content", ""),
        page_relevance={page: score} if page is not None else {},
    )


def _present(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not value or value.upper() == "N/A":
        return None
    return value


def _parse_relevance(value: str | None) -> float:
    value = _present(value)
    if value is None:
        return 0.0
    try:
        score = float(value)
    except ValueError:
        return 0.0
    if score != score:  # NaN
        return 0.0
    return min(max(score, 0.0), 1.0)


def _parse_page(value: str | None) -> int | None:
    value = _present(value)
    if value is None:
        return None
    match = LEADING_INT_RE.match(value)
    return int(match.group(0)) if match else None


__all__ = [
    "EXTRACTION_RULES",
    "extract_tool_output",
    "has_search_marker",
    "parse_content_parts",
    "parse_tool_output",
]
