from assessment_recorder.parsers.base import (
    DocumentPage,
    DocumentParseError,
    SegmentedDocument,
    UnsupportedFormat,
)
from assessment_recorder.parsers.registry import SegmenterRegistry
from assessment_recorder.parsers.relevance import rank_pages_by_relevance

__all__ = [
    "DocumentPage",
    "DocumentParseError",
    "SegmentedDocument",
    "SegmenterRegistry",
    "UnsupportedFormat",
    "rank_pages_by_relevance",
]
