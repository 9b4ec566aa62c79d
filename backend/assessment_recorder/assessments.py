from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError

from assessment_recorder.blob_store import ChunkedBlobStore
from assessment_recorder.criteria import CriteriaCatalog
from assessment_recorder.kv_store import KeyValueBackend, StorageError
from assessment_recorder.orchestrator import EvaluationOrchestrator
from assessment_recorder.parsers import DocumentPage, SegmenterRegistry
from assessment_recorder.prompts import EvaluationTarget, TargetType
from assessment_recorder.scoring import AssessmentItemRating, Metrics, Overall, calculate_metrics

logger = logging.getLogger("recorder.assessments")

ASSESSMENT_NAMESPACE = "assessment"
DEFAULT_ASSESSMENT_TTL_SECONDS = 86400 * 90


class AssessmentNotFound(LookupError):
    """Raised when no stored assessment exists for an identifier."""


class FileInfo(BaseModel):
    fileId: str
    filename: str
    size: int
    pageCount: int
    # Range of run-wide logical page numbers this file contributed to the prompt.
    firstPage: int | None = None
    lastPage: int | None = None


class Assessment(BaseModel):
    id: str
    createdAt: str
    targetType: TargetType
    name: str
    version: str | None = None
    provider: str | None = None
    notes: str | None = None
    criteriaVersion: str
    files: list[FileInfo] = Field(default_factory=list)
    metrics: Metrics
    overall: Overall
    ratings: list[AssessmentItemRating]
    fallbackUsed: bool = False
    fallbackReason: str | None = None


def assessment_key(assessment_id: str) -> str:
    return f"{ASSESSMENT_NAMESPACE}:{assessment_id}"


class AssessmentService:
    """Runs one evaluation request end to end and keeps the resulting records."""

    def __init__(
        self,
        *,
        backend: KeyValueBackend,
        blob_store: ChunkedBlobStore,
        catalog: CriteriaCatalog,
        registry: SegmenterRegistry,
        orchestrator: EvaluationOrchestrator,
        ttl_seconds: int = DEFAULT_ASSESSMENT_TTL_SECONDS,
    ) -> None:
        self._backend = backend
        self._blob_store = blob_store
        self._catalog = catalog
        self._registry = registry
        self._orchestrator = orchestrator
        self._ttl_seconds = ttl_seconds

    def _load_pages(self, file_ids: list[str]) -> tuple[list[DocumentPage], list[FileInfo]]:
        pages: list[DocumentPage] = []
        infos: list[FileInfo] = []
        for file_id in file_ids:
            manifest = self._blob_store.manifest(file_id)
            content = self._blob_store.get(file_id)
            document = self._registry.segment(content, manifest.type)

            # Logical page numbers run contiguously across all files of one evaluation.
            first_page = len(pages) + 1
            for page in document.pages:
                pages.append(DocumentPage(page_number=len(pages) + 1, text=page.text))
            infos.append(
                FileInfo(
                    fileId=file_id,
                    filename=manifest.filename,
                    size=manifest.size,
                    pageCount=manifest.pages,
                    firstPage=first_page if document.pages else None,
                    lastPage=len(pages) if document.pages else None,
                )
            )
        return pages, infos

    def create(
        self,
        target: EvaluationTarget,
        file_ids: list[str],
        *,
        notes: str | None = None,
    ) -> Assessment:
        criteria_set = self._catalog.require_current()
        criteria = criteria_set.items
        pages, infos = self._load_pages(file_ids)

        outcome = self._orchestrator.evaluate(criteria, pages, target)
        ratings = outcome.response.items
        if len(ratings) != len(criteria):
            raise RuntimeError(f"Evaluation returned {len(ratings)} ratings for {len(criteria)} criteria.")

        assessment = Assessment(
            id=str(uuid4()),
            createdAt=datetime.now(timezone.utc).isoformat(),
            targetType=target.targetType,
            name=target.name,
            version=target.version,
            provider=target.provider,
            notes=notes,
            criteriaVersion=criteria_set.version,
            files=infos,
            metrics=calculate_metrics(ratings),
            overall=outcome.response.overall,
            ratings=ratings,
            fallbackUsed=outcome.fallback_used,
            fallbackReason=outcome.fallback_reason,
        )
        self._backend.set(assessment_key(assessment.id), assessment.model_dump_json(), ttl_seconds=self._ttl_seconds)
        logger.info(
            "assessment_created",
            extra={
                "event": "assessment_created",
                "assessment_id": assessment.id,
                "criteria_count": len(criteria),
                "file_count": len(infos),
                "page_count": len(pages),
                "fallback_used": outcome.fallback_used,
                "achieved_rate": assessment.metrics.achievedRate,
            },
        )
        return assessment

    def get(self, assessment_id: str) -> Assessment:
        raw = self._backend.get(assessment_key(assessment_id))
        if raw is None:
            raise AssessmentNotFound("Assessment not found")
        try:
            return Assessment.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StorageError(f"Stored assessment '{assessment_id}' is unreadable: {exc}") from exc

    def delete(self, assessment_id: str) -> None:
        if self._backend.delete(assessment_key(assessment_id)) == 0:
            raise AssessmentNotFound("Assessment not found")
        logger.info("assessment_deleted", extra={"event": "assessment_deleted", "assessment_id": assessment_id})
