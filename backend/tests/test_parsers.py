from __future__ import annotations

from io import BytesIO

import pytest

from assessment_recorder.parsers import (
    DocumentPage,
    DocumentParseError,
    SegmenterRegistry,
    UnsupportedFormat,
    rank_pages_by_relevance,
)
from assessment_recorder.parsers.base import (
    DOC_CONTENT_TYPE,
    DOCX_CONTENT_TYPE,
    PDF_CONTENT_TYPE,
    SegmentedDocument,
    pack_sections,
    split_on_blank_runs,
)


def _build_pdf_bytes(*texts: str) -> bytes:
    from pypdf import PdfWriter
    from pypdf.generic import DecodedStreamObject, DictionaryObject, NameObject

    writer = PdfWriter()
    font = DictionaryObject(
        {
            NameObject("/Type"): NameObject("/Font"),
            NameObject("/Subtype"): NameObject("/Type1"),
            NameObject("/BaseFont"): NameObject("/Helvetica"),
        }
    )
    font_ref = writer._add_object(font)

    for text in texts:
        page = writer.add_blank_page(width=612, height=792)
        resources = DictionaryObject({NameObject("/Font"): DictionaryObject({NameObject("/F1"): font_ref})})
        page[NameObject("/Resources")] = resources

        safe_text = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        content_stream = DecodedStreamObject()
        content_stream.set_data(f"BT /F1 12 Tf 72 720 Td ({safe_text}) Tj ET".encode("utf-8"))
        page[NameObject("/Contents")] = writer._add_object(content_stream)

    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def _build_docx_bytes(paragraphs: list[str], table_rows: list[list[str]] | None = None) -> bytes:
    from docx import Document

    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    if table_rows:
        table = doc.add_table(rows=len(table_rows), cols=len(table_rows[0]))
        for row_index, values in enumerate(table_rows):
            for col_index, value in enumerate(values):
                table.cell(row_index, col_index).text = value
    buffer = BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def test_pdf_segmenter_extracts_text_and_keeps_physical_page_count() -> None:
    content = _build_pdf_bytes("Data retention policy is 30 days.", "Incident response within 24 hours.")

    document = SegmenterRegistry().segment(content, PDF_CONTENT_TYPE)

    assert document.segmenter_id == "pdf"
    assert document.physical_page_count == 2
    assert document.reported_page_count == 2
    assert [page.page_number for page in document.pages] == list(range(1, document.logical_page_count + 1))
    full_text = "\n".join(page.text for page in document.pages)
    assert "Data retention policy" in full_text
    assert "Incident response" in full_text


def test_word_segmenter_packs_sections_under_char_budget() -> None:
    paragraphs = ["a" * 25, "b" * 25, "c" * 25]
    content = _build_docx_bytes(paragraphs, table_rows=[["Control", "Status"], ["MFA", "Enabled"]])

    document = SegmenterRegistry(word_char_budget=60).segment(content, DOCX_CONTENT_TYPE)

    assert document.segmenter_id == "word"
    assert document.physical_page_count is None
    assert document.reported_page_count == document.logical_page_count
    assert document.pages[0].text == f"{'a' * 25}\n\n{'b' * 25}"
    assert document.pages[1].text.startswith("c" * 25)
    assert "Control | Status" in document.pages[-1].text
    assert "MFA | Enabled" in document.pages[-1].text


def test_registry_dispatches_legacy_word_type_and_mime_parameters() -> None:
    registry = SegmenterRegistry()
    assert registry.supports(DOC_CONTENT_TYPE)
    assert registry.supports("application/pdf; charset=binary")
    assert not registry.supports("text/plain")


def test_registry_rejects_unsupported_types() -> None:
    with pytest.raises(UnsupportedFormat):
        SegmenterRegistry().segment(b"hello", "text/plain")


def test_registry_accepts_alternative_segmenters() -> None:
    class PlainTextSegmenter:
        segmenter_id = "plain"
        content_types = frozenset({"text/plain"})

        def segment(self, content: bytes) -> SegmentedDocument:
            return SegmentedDocument(segmenter_id=self.segmenter_id, pages=split_on_blank_runs(content.decode()))

    registry = SegmenterRegistry()
    registry.register(PlainTextSegmenter())

    document = registry.segment(b"one\n\n\ntwo", "text/plain")
    assert [page.text for page in document.pages] == ["one", "two"]


def test_corrupt_pdf_raises_parse_error() -> None:
    with pytest.raises(DocumentParseError):
        SegmenterRegistry().segment(b"%PDF-1.4 not really a pdf", PDF_CONTENT_TYPE)


def test_split_on_blank_runs_keeps_single_blank_lines_together() -> None:
    text = "Section 1\nline\n\nstill section 1\n\n\nSection 2\n  \n \t\nSection 3"

    pages = split_on_blank_runs(text)

    assert pages == [
        DocumentPage(page_number=1, text="Section 1\nline\n\nstill section 1"),
        DocumentPage(page_number=2, text="Section 2"),
        DocumentPage(page_number=3, text="Section 3"),
    ]


def test_whitespace_only_text_yields_exactly_one_page() -> None:
    pages = split_on_blank_runs("  \n\n\n\t \n\n\n ")
    assert pages == [DocumentPage(page_number=1, text="")]

    packed = pack_sections(" \n\n  ", char_budget=100)
    assert packed == [DocumentPage(page_number=1, text="")]


def test_oversized_section_becomes_its_own_page() -> None:
    pages = pack_sections("short\n\n" + "x" * 500 + "\n\nend", char_budget=100)
    assert [page.text for page in pages] == ["short", "x" * 500, "end"]


def test_rank_pages_by_relevance_orders_by_hits_and_drops_misses() -> None:
    pages = [
        DocumentPage(page_number=1, text="Encryption at rest."),
        DocumentPage(page_number=2, text="Nothing relevant here."),
        DocumentPage(page_number=3, text="encryption keys, ENCRYPTION in transit, audit logs"),
        DocumentPage(page_number=4, text="Audit trail retention."),
    ]

    ranked = rank_pages_by_relevance(pages, ["encryption", "Audit"], limit=10)

    assert [page.page_number for page in ranked] == [3, 1, 4]
    assert rank_pages_by_relevance(pages, ["encryption", "audit"], limit=1)[0].page_number == 3
    assert rank_pages_by_relevance(pages, ["missing"]) == []


def test_legacy_binary_doc_is_rejected_with_a_clear_message() -> None:
    content = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 512

    with pytest.raises(DocumentParseError, match=r"save the document as \.docx"):
        SegmenterRegistry().segment(content, DOC_CONTENT_TYPE)


def test_msword_labelled_ooxml_is_segmented() -> None:
    content = _build_docx_bytes(["Vendor risk review is annual."])

    document = SegmenterRegistry().segment(content, DOC_CONTENT_TYPE)

    assert document.pages[0].text == "Vendor risk review is annual."
