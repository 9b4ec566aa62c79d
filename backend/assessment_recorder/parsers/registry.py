from __future__ import annotations

from assessment_recorder.parsers.base import DocumentSegmenter, SegmentedDocument, UnsupportedFormat
from assessment_recorder.parsers.docx_parser import DEFAULT_PAGE_CHAR_BUDGET, WordSegmenter
from assessment_recorder.parsers.pdf_parser import PdfSegmenter


def normalize_content_type(content_type: str) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


class SegmenterRegistry:
    def __init__(
        self,
        segmenters: list[DocumentSegmenter] | None = None,
        *,
        word_char_budget: int = DEFAULT_PAGE_CHAR_BUDGET,
    ) -> None:
        self._by_type: dict[str, DocumentSegmenter] = {}
        for segmenter in segmenters or [PdfSegmenter(), WordSegmenter(char_budget=word_char_budget)]:
            self.register(segmenter)

    def register(self, segmenter: DocumentSegmenter) -> None:
        """Register `segmenter` for its content types, replacing any earlier registration."""
        for content_type in segmenter.content_types:
            self._by_type[normalize_content_type(content_type)] = segmenter

    @property
    def supported_types(self) -> frozenset[str]:
        return frozenset(self._by_type)

    def supports(self, content_type: str) -> bool:
        return normalize_content_type(content_type) in self._by_type

    def segment(self, content: bytes, content_type: str) -> SegmentedDocument:
        segmenter = self._by_type.get(normalize_content_type(content_type))
        if segmenter is None:
            raise UnsupportedFormat(f"Unsupported file type: {content_type or 'unknown'}")
        return segmenter.segment(content)
