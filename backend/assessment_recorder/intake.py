from __future__ import annotations

import logging
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, Field

from assessment_recorder.blob_store import ChunkedBlobStore
from assessment_recorder.parsers import SegmenterRegistry, UnsupportedFormat
from assessment_recorder.parsers.base import DOC_CONTENT_TYPE, DOCX_CONTENT_TYPE, PDF_CONTENT_TYPE
from assessment_recorder.parsers.registry import normalize_content_type

logger = logging.getLogger("recorder.intake")

ACCEPTED_CONTENT_TYPES = frozenset({PDF_CONTENT_TYPE, DOCX_CONTENT_TYPE, DOC_CONTENT_TYPE})


class SizeLimitExceeded(ValueError):
    """Raised when an uploaded document is larger than the configured maximum."""


class PageLimitExceeded(ValueError):
    """Raised when a document reports more pages than the configured maximum."""


class PageText(BaseModel):
    pageNumber: int = Field(..., ge=1)
    text: str


class UploadedFile(BaseModel):
    fileId: str
    filename: str
    size: int
    type: str
    pageCount: int
    pages: list[PageText] = Field(default_factory=list)


class DocumentIntake:
    def __init__(
        self,
        *,
        blob_store: ChunkedBlobStore,
        registry: SegmenterRegistry,
        max_bytes: int,
        max_pages: int,
    ) -> None:
        self._blob_store = blob_store
        self._registry = registry
        self._max_bytes = max_bytes
        self._max_pages = max_pages

    def validate_type_and_size(self, *, content_type: str, size: int) -> str:
        normalized = normalize_content_type(content_type)
        if normalized not in ACCEPTED_CONTENT_TYPES or not self._registry.supports(normalized):
            raise UnsupportedFormat("Only PDF and Word files are allowed")
        if size > self._max_bytes:
            raise SizeLimitExceeded(f"File size exceeds {self._max_bytes // (1024 * 1024)}MB limit")
        return normalized

    def ingest(self, *, filename: str, content_type: str, content: bytes) -> UploadedFile:
        normalized = self.validate_type_and_size(content_type=content_type, size=len(content))
        document = self._registry.segment(content, normalized)
        page_count = document.reported_page_count
        if page_count > self._max_pages:
            raise PageLimitExceeded(f"Document exceeds {self._max_pages} pages limit")

        safe_name = Path(filename or "").name or "upload.bin"
        file_id = str(uuid4())
        self._blob_store.put(file_id, content, filename=safe_name, content_type=normalized, pages=page_count)
        logger.info(
            "document_ingested",
            extra={
                "event": "document_ingested",
                "file_id": file_id,
                "segmenter_id": document.segmenter_id,
                "size_bytes": len(content),
                "physical_page_count": document.physical_page_count,
                "logical_page_count": document.logical_page_count,
            },
        )
        return UploadedFile(
            fileId=file_id,
            filename=safe_name,
            size=len(content),
            type=normalized,
            pageCount=page_count,
            pages=[PageText(pageNumber=page.page_number, text=page.text) for page in document.pages],
        )
