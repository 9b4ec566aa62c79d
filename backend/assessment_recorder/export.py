from __future__ import annotations

import csv
import io
import re

from assessment_recorder.assessments import Assessment

REPORT_COLUMNS = (
    "assessmentId",
    "createdAt",
    "targetType",
    "name",
    "version",
    "provider",
    "category",
    "itemId",
    "itemName",
    "score",
    "triState",
    "reason",
    "pageRefs",
)


def assessment_rows(assessment: Assessment) -> list[dict[str, str]]:
    rows: list[dict[str, str]] = []
    for rating in assessment.ratings:
        rows.append(
            {
                "assessmentId": assessment.id,
                "createdAt": assessment.createdAt,
                "targetType": assessment.targetType,
                "name": assessment.name,
                "version": assessment.version or "",
                "provider": assessment.provider or "",
                "category": rating.category,
                "itemId": rating.itemId,
                "itemName": rating.itemName,
                "score": "" if rating.score is None else str(rating.score),
                "triState": rating.triState,
                "reason": rating.reason,
                "pageRefs": ";".join(f"p.{ref.page}" for ref in rating.evidence.pages),
            }
        )
    return rows


def render_assessment_csv(assessment: Assessment) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(REPORT_COLUMNS), lineterminator="\n")
    writer.writeheader()
    writer.writerows(assessment_rows(assessment))
    return buffer.getvalue()


def export_filename(assessment: Assessment) -> str:
    safe_name = re.sub(r"[^a-zA-Z0-9]", "_", assessment.name)
    return f"assessment_{assessment.id}_{safe_name}.csv"
