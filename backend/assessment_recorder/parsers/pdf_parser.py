from __future__ import annotations

import io

from assessment_recorder.parsers.base import (
    PDF_CONTENT_TYPE,
    DocumentParseError,
    SegmentedDocument,
    split_on_blank_runs,
)


class PdfSegmenter:
    """Heuristic PDF segmenter: the full text is split at blank-line runs, not at physical page breaks."""

    segmenter_id = "pdf"
    content_types = frozenset({PDF_CONTENT_TYPE})

    def segment(self, content: bytes) -> SegmentedDocument:
        try:
            from pypdf import PdfReader
        except ImportError as exc:
            raise DocumentParseError("pypdf is not installed") from exc

        try:
            reader = PdfReader(io.BytesIO(content), strict=False)
            page_texts = [(page.extract_text() or "").strip() for page in reader.pages]
            physical_pages = len(reader.pages)
            metadata = reader.metadata
        except Exception as exc:
            raise DocumentParseError(f"pdf parse failed: {exc}") from exc

        full_text = "\n\n".join(page_texts)
        info: dict[str, object] = {}
        if metadata is not None:
            info = {str(key).lstrip("/"): str(value) for key, value in metadata.items()}

        return SegmentedDocument(
            segmenter_id=self.segmenter_id,
            pages=split_on_blank_runs(full_text),
            physical_page_count=physical_pages,
            info=info,
        )
