from __future__ import annotations

import csv
import io
import json
import logging
from datetime import datetime, timezone

from pydantic import BaseModel, Field, ValidationError

from assessment_recorder.kv_store import KeyValueBackend, StorageError

logger = logging.getLogger("recorder.criteria")

CURRENT_CRITERIA_KEY = "criteria:current"
REQUIRED_FIELDS = ("itemName", "category", "definition")

# Keys are compared after lower-casing and trimming; English and Japanese sheet conventions.
HEADER_SYNONYMS: dict[str, str] = {
    "itemid": "itemId",
    "item_id": "itemId",
    "item id": "itemId",
    "id": "itemId",
    "項目id": "itemId",
    "itemname": "itemName",
    "item_name": "itemName",
    "item name": "itemName",
    "チェック項目": "itemName",
    "項目名": "itemName",
    "category": "category",
    "カテゴリ": "category",
    "カテゴリー": "category",
    "definition": "definition",
    "description": "definition",
    "詳細基準/望ましい水準": "definition",
    "定義": "definition",
    "referencestandards": "referenceStandards",
    "reference_standards": "referenceStandards",
    "reference standards": "referenceStandards",
    "参考規格・法令": "referenceStandards",
    "evidencesources": "evidenceSources",
    "evidence_sources": "evidenceSources",
    "evidence sources": "evidenceSources",
    "証拠/確認ソース（例）": "evidenceSources",
    "証拠/確認ソース": "evidenceSources",
    "risks": "risks",
    "risk": "risks",
    "未達時の主なリスク": "risks",
}


class CsvSchemaInvalid(ValueError):
    """Raised when a criteria CSV is missing required columns or values."""


class CriteriaNotConfigured(LookupError):
    """Raised when an evaluation is requested before any criteria were uploaded."""


class CriteriaItem(BaseModel):
    itemId: str = Field(..., min_length=1)
    itemName: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    definition: str = Field(..., min_length=1)
    referenceStandards: str | None = None
    evidenceSources: str | None = None
    risks: str | None = None


class CriteriaSet(BaseModel):
    version: str
    updatedAt: str
    items: list[CriteriaItem] = Field(default_factory=list)


def canonical_header(header: str) -> str:
    cleaned = header.replace("\ufeff", "").strip()
    return HEADER_SYNONYMS.get(cleaned.lower(), cleaned)


def decode_criteria_csv(content: bytes) -> str:
    # Japanese spreadsheets are commonly exported as Shift_JIS (cp932).
    for encoding in ("utf-8-sig", "cp932"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise CsvSchemaInvalid("CSV decode failed using utf-8 and cp932")


def parse_criteria_csv(content: str) -> list[CriteriaItem]:
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    if reader.fieldnames is None:
        raise CsvSchemaInvalid("CSV is empty.")

    fieldnames = [canonical_header(name or "") for name in reader.fieldnames]
    missing_columns = [field for field in REQUIRED_FIELDS if field not in fieldnames]
    if missing_columns:
        raise CsvSchemaInvalid(f"Missing required columns: {', '.join(missing_columns)}")
    reader.fieldnames = fieldnames

    items: list[CriteriaItem] = []
    seen_ids: set[str] = set()
    for row_number, raw_row in enumerate(reader, start=1):
        row = {key: (value or "").strip() for key, value in raw_row.items() if isinstance(key, str)}
        if not any(row.values()):
            continue

        if any(not row.get(field) for field in REQUIRED_FIELDS):
            raise CsvSchemaInvalid(
                f"Missing required fields in CSV row {row_number} (itemName, category, definition)"
            )

        item_id = row.get("itemId") or f"item_{len(items) + 1:03d}"
        if item_id in seen_ids:
            raise CsvSchemaInvalid(f"Duplicate itemId '{item_id}' in CSV row {row_number}")
        seen_ids.add(item_id)

        items.append(
            CriteriaItem(
                itemId=item_id,
                itemName=row["itemName"],
                category=row["category"],
                definition=row["definition"],
                referenceStandards=row.get("referenceStandards") or None,
                evidenceSources=row.get("evidenceSources") or None,
                risks=row.get("risks") or None,
            )
        )

    if not items:
        raise CsvSchemaInvalid("CSV contains no criteria rows.")
    return items


class CriteriaCatalog:
    """Holds the process-wide criteria set as a single value so readers never observe a partial update."""

    def __init__(self, backend: KeyValueBackend) -> None:
        self._backend = backend

    def replace(self, items: list[CriteriaItem]) -> CriteriaSet:
        now = datetime.now(timezone.utc).isoformat()
        criteria_set = CriteriaSet(version=now, updatedAt=now, items=items)
        self._backend.set(CURRENT_CRITERIA_KEY, criteria_set.model_dump_json())
        logger.info(
            "criteria_replaced",
            extra={"event": "criteria_replaced", "criteria_version": now, "criteria_count": len(items)},
        )
        return criteria_set

    def current(self) -> CriteriaSet | None:
        raw = self._backend.get(CURRENT_CRITERIA_KEY)
        if raw is None:
            return None
        try:
            return CriteriaSet.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StorageError(f"Stored criteria set is unreadable: {exc}") from exc

    def require_current(self) -> CriteriaSet:
        criteria_set = self.current()
        if criteria_set is None or not criteria_set.items:
            raise CriteriaNotConfigured("No criteria found. Please upload criteria CSV first.")
        return criteria_set
