from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol

PDF_CONTENT_TYPE = "application/pdf"
DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_CONTENT_TYPE = "application/msword"

# Two or more consecutive blank lines (whitespace-only lines count as blank).
_BLANK_RUN_PATTERN = re.compile(r"\n\s*\n\s*\n")
_SECTION_BREAK_PATTERN = re.compile(r"\n{2,}")


class UnsupportedFormat(ValueError):
    """Raised when no segmenter is registered for a MIME type."""


class DocumentParseError(ValueError):
    """Raised when a supported document cannot be read by its extractor."""


@dataclass(frozen=True)
class DocumentPage:
    page_number: int
    text: str


@dataclass(frozen=True)
class SegmentedDocument:
    segmenter_id: str
    pages: list[DocumentPage]
    # Page count reported by the file format itself; None where the format has no such notion.
    physical_page_count: int | None = None
    info: dict[str, object] = field(default_factory=dict)

    @property
    def logical_page_count(self) -> int:
        return len(self.pages)

    @property
    def reported_page_count(self) -> int:
        if self.physical_page_count is not None:
            return self.physical_page_count
        return self.logical_page_count


class DocumentSegmenter(Protocol):
    segmenter_id: str
    content_types: frozenset[str]

    def segment(self, content: bytes) -> SegmentedDocument:
        ...


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def split_on_blank_runs(text: str) -> list[DocumentPage]:
    """Split extracted text into logical pages at runs of two or more blank lines.

    Empty fragments are dropped. When nothing survives, the whole trimmed text becomes page 1,
    so the result is never empty.
    """
    normalized = _normalize_newlines(text)
    fragments = [fragment.strip() for fragment in _BLANK_RUN_PATTERN.split(normalized)]
    pages = [
        DocumentPage(page_number=number, text=fragment)
        for number, fragment in enumerate((fragment for fragment in fragments if fragment), start=1)
    ]
    if not pages:
        return [DocumentPage(page_number=1, text=normalized.strip())]
    return pages


def pack_sections(text: str, *, char_budget: int) -> list[DocumentPage]:
    """Greedily pack blank-line-delimited sections into synthetic pages of roughly `char_budget` characters."""
    normalized = _normalize_newlines(text)
    sections = [section.strip() for section in _SECTION_BREAK_PATTERN.split(normalized)]

    pages: list[DocumentPage] = []
    current = ""
    for section in sections:
        if not section:
            continue
        if current and len(current) + len(section) > char_budget:
            pages.append(DocumentPage(page_number=len(pages) + 1, text=current))
            current = section
        else:
            current = f"{current}\n\n{section}" if current else section

    if current.strip():
        pages.append(DocumentPage(page_number=len(pages) + 1, text=current.strip()))
    if not pages:
        return [DocumentPage(page_number=1, text=normalized.strip())]
    return pages
