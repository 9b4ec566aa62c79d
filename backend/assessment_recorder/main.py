from contextlib import asynccontextmanager
from functools import lru_cache
import logging
import time

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from assessment_recorder.api.contracts import AssessmentCreateRequest
from assessment_recorder.assessments import Assessment, AssessmentNotFound, AssessmentService
from assessment_recorder.blob_store import BlobNotFound, ChunkedBlobStore
from assessment_recorder.config import settings
from assessment_recorder.criteria import (
    CriteriaCatalog,
    CriteriaNotConfigured,
    CsvSchemaInvalid,
    decode_criteria_csv,
    parse_criteria_csv,
)
from assessment_recorder.export import export_filename, render_assessment_csv
from assessment_recorder.intake import DocumentIntake, PageLimitExceeded, SizeLimitExceeded
from assessment_recorder.kv_store import KeyValueBackend, StorageError, build_kv_backend
from assessment_recorder.model_runtime import BedrockEvaluationModel, EvaluationModel
from assessment_recorder.observability import (
    configure_logging,
    normalize_request_id,
    reset_request_id,
    sanitize_for_logging,
    set_request_id,
)
from assessment_recorder.orchestrator import EvaluationOrchestrator
from assessment_recorder.parsers import DocumentParseError, SegmenterRegistry, UnsupportedFormat
from assessment_recorder.prompts import EvaluationTarget
from assessment_recorder.version import APP_VERSION

logger = logging.getLogger("recorder.api")

MAX_CRITERIA_CSV_BYTES = 5 * 1024 * 1024

_ERROR_STATUS: tuple[tuple[type[Exception], int], ...] = (
    (SizeLimitExceeded, 413),
    (UnsupportedFormat, 400),
    (PageLimitExceeded, 400),
    (CsvSchemaInvalid, 400),
    (DocumentParseError, 400),
    (CriteriaNotConfigured, 400),
    (BlobNotFound, 404),
    (AssessmentNotFound, 404),
    (StorageError, 500),
)


@lru_cache(maxsize=1)
def _cached_kv_backend() -> KeyValueBackend:
    return build_kv_backend(settings)


def get_kv_backend() -> KeyValueBackend:
    return _cached_kv_backend()


@lru_cache(maxsize=1)
def _cached_evaluation_model() -> BedrockEvaluationModel:
    return BedrockEvaluationModel(settings=settings)


def get_evaluation_model() -> EvaluationModel:
    return _cached_evaluation_model()


def get_blob_store() -> ChunkedBlobStore:
    return ChunkedBlobStore(
        get_kv_backend(),
        chunk_size=settings.blob_chunk_size_bytes,
        ttl_seconds=settings.blob_ttl_seconds,
    )


def get_segmenter_registry() -> SegmenterRegistry:
    return SegmenterRegistry(word_char_budget=settings.word_page_char_budget)


def get_criteria_catalog() -> CriteriaCatalog:
    return CriteriaCatalog(get_kv_backend())


def get_document_intake() -> DocumentIntake:
    return DocumentIntake(
        blob_store=get_blob_store(),
        registry=get_segmenter_registry(),
        max_bytes=settings.max_document_bytes,
        max_pages=settings.max_document_pages,
    )


def get_assessment_service() -> AssessmentService:
    return AssessmentService(
        backend=get_kv_backend(),
        blob_store=get_blob_store(),
        catalog=get_criteria_catalog(),
        registry=get_segmenter_registry(),
        orchestrator=EvaluationOrchestrator(get_evaluation_model(), language=settings.prompt_language),
        ttl_seconds=settings.assessment_ttl_seconds,
    )


def _status_for(exc: Exception) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level)
    logger.info(
        "application_startup",
        extra={"event": "application_startup", "environment": settings.app_env, "kv_backend": settings.kv_backend},
    )
    yield
    logger.info("application_shutdown", extra={"event": "application_shutdown"})


def create_app() -> FastAPI:
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and any(origin == "*" for origin in cors_origins):
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    app = FastAPI(title=settings.app_name, version=APP_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", settings.request_id_header],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        token = set_request_id(request_id)
        started = time.perf_counter()

        logger.info(
            "request_started",
            extra={
                "event": "request_started",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "query": sanitize_for_logging(dict(request.query_params)),
            },
        )
        try:
            response = await call_next(request)
            response.headers[settings.request_id_header] = request_id
            logger.info(
                "request_completed",
                extra={
                    "event": "request_completed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            return response
        except Exception:
            logger.exception(
                "request_failed",
                extra={
                    "event": "request_failed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            raise
        finally:
            reset_request_id(token)

    async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
        status_code = _status_for(exc)
        log = logger.error if status_code >= 500 else logger.info
        log(
            "request_rejected",
            extra={
                "event": "request_rejected",
                "path": request.url.path,
                "status_code": status_code,
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    for error_type, _ in _ERROR_STATUS:
        app.add_exception_handler(error_type, domain_error_handler)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "environment": settings.app_env}

    @app.get("/ready", response_model=None)
    def ready() -> JSONResponse:
        backend = get_kv_backend()
        try:
            backend.get("criteria:current")
        except StorageError as exc:
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "checks": {"kv_backend": {"ok": False, "error": str(exc)}}},
            )
        return JSONResponse(
            status_code=200,
            content={"status": "ready", "checks": {"kv_backend": {"ok": True, "backend": backend.backend_name}}},
        )

    @app.get("/criteria")
    def get_criteria() -> dict[str, object]:
        current = get_criteria_catalog().current()
        if current is None:
            return {"criteria": [], "meta": None}
        return {
            "criteria": [item.model_dump() for item in current.items],
            "meta": {"version": current.version, "updatedAt": current.updatedAt},
        }

    @app.post("/criteria")
    async def upload_criteria(file: UploadFile = File(...)) -> dict[str, object]:
        content = await file.read(MAX_CRITERIA_CSV_BYTES + 1)
        if len(content) > MAX_CRITERIA_CSV_BYTES:
            raise HTTPException(status_code=413, detail="Criteria CSV is too large.")
        items = parse_criteria_csv(decode_criteria_csv(content))
        current = get_criteria_catalog().replace(items)
        return {
            "success": True,
            "count": len(current.items),
            "criteria": [item.model_dump() for item in current.items],
            "meta": {"version": current.version, "updatedAt": current.updatedAt},
        }

    @app.post("/upload")
    async def upload_document(file: UploadFile = File(...)) -> dict[str, object]:
        intake = get_document_intake()
        content_type = file.content_type or ""
        intake.validate_type_and_size(content_type=content_type, size=file.size or 0)
        content = await file.read(settings.max_document_bytes + 1)
        uploaded = intake.ingest(filename=file.filename or "", content_type=content_type, content=content)
        return {"success": True, **uploaded.model_dump()}

    @app.post("/assessments")
    def create_assessment(payload: AssessmentCreateRequest) -> Assessment:
        target = EvaluationTarget(
            targetType=payload.targetType,
            name=payload.name,
            version=payload.version,
            provider=payload.provider,
        )
        return get_assessment_service().create(
            target,
            [reference.fileId for reference in payload.files],
            notes=payload.notes,
        )

    @app.get("/assessments/{assessment_id}")
    def get_assessment(assessment_id: str) -> Assessment:
        return get_assessment_service().get(assessment_id)

    @app.delete("/assessments/{assessment_id}")
    def delete_assessment(assessment_id: str) -> dict[str, bool]:
        get_assessment_service().delete(assessment_id)
        return {"success": True}

    @app.get("/assessments/{assessment_id}/export.csv", response_class=PlainTextResponse)
    def export_assessment(assessment_id: str) -> PlainTextResponse:
        assessment = get_assessment_service().get(assessment_id)
        return PlainTextResponse(
            content=render_assessment_csv(assessment),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{export_filename(assessment)}"'},
        )

    return app


app = create_app()
