"""Citation extraction, selection and recording."""

from .parser import parse_content_parts, parse_tool_output
from .selector import select_diverse, sort_pages_by_relevance
from .recorder import CitationRecorder
from .processing import ResponseProcessor

__all__ = [
    "parse_content_parts",
    "parse_tool_output",
    "select_diverse",
    "sort_pages_by_relevance",
    "CitationRecorder",
    "ResponseProcessor",
]
