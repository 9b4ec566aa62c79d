from __future__ import annotations

import io

from assessment_recorder.parsers.base import (
    DOC_CONTENT_TYPE,
    DOCX_CONTENT_TYPE,
    DocumentParseError,
    SegmentedDocument,
    pack_sections,
)

DEFAULT_PAGE_CHAR_BUDGET = 3000
# Compound File Binary header used by legacy .doc files.
OLE_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


class WordSegmenter:
    """Word documents carry no page breaks in their text, so sections are packed into synthetic pages.

    `application/msword` uploads are accepted, but only when they are really OOXML; legacy binary
    .doc files are rejected with a message asking for .docx.
    """

    segmenter_id = "word"
    content_types = frozenset({DOCX_CONTENT_TYPE, DOC_CONTENT_TYPE})

    def __init__(self, *, char_budget: int = DEFAULT_PAGE_CHAR_BUDGET) -> None:
        self._char_budget = char_budget

    def segment(self, content: bytes) -> SegmentedDocument:
        try:
            from docx import Document
        except ImportError as exc:
            raise DocumentParseError("python-docx is not installed") from exc

        if content.startswith(OLE_SIGNATURE):
            raise DocumentParseError("Legacy binary .doc files are not supported; save the document as .docx")

        try:
            document = Document(io.BytesIO(content))
        except Exception as exc:
            raise DocumentParseError(f"word parse failed: {exc}") from exc

        blocks: list[str] = [paragraph.text.strip() for paragraph in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                cell_values = [" ".join(cell.text.split()) for cell in row.cells]
                row_text = " | ".join(value for value in cell_values if value)
                if row_text:
                    blocks.append(row_text)

        full_text = "\n\n".join(block for block in blocks if block)
        return SegmentedDocument(
            segmenter_id=self.segmenter_id,
            pages=pack_sections(full_text, char_budget=self._char_budget),
            physical_page_count=None,
            info={"type": "Word Document", "paragraphs": len(document.paragraphs), "tables": len(document.tables)},
        )
