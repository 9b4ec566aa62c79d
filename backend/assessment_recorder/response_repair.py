"""Recovery and validation of the evaluation model's JSON output.

The model is asked for strict JSON but regularly wraps it in markdown, adds prose around it, leaves
trailing commas, or stops mid-object when it hits the output limit. Each recovery stage is a pure
``text -> ParsedOk | ParseFailed`` function; `run_repair_ladder` tries them from the strictest to the
most permissive and stops at the first one that yields a JSON object.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError

from assessment_recorder.observability import preview_text
from assessment_recorder.scoring import EvaluationResponse, TriState

logger = logging.getLogger("recorder.repair")

_FENCED_PATTERN = re.compile(r"```(?:json)?\s*(.*?)\s*(?:```|$)", flags=re.IGNORECASE | re.DOTALL)
_TRAILING_COMMA_PATTERN = re.compile(r",(\s*[}\]])")
_QUOTE_CHARS = "\"'`“”‘’「」『』"

TRI_STATE_SYNONYMS: dict[str, TriState] = {
    "achieved": "achieved",
    "fully achieved": "achieved",
    "met": "achieved",
    "yes": "achieved",
    "pass": "achieved",
    "passed": "achieved",
    "compliant": "achieved",
    "satisfied": "achieved",
    "達成": "achieved",
    "達成済": "achieved",
    "達成済み": "achieved",
    "partial": "partial",
    "partially": "partial",
    "partially achieved": "partial",
    "partially met": "partial",
    "部分": "partial",
    "部分達成": "partial",
    "一部達成": "partial",
    "not-achieved": "not-achieved",
    "not_achieved": "not-achieved",
    "not achieved": "not-achieved",
    "not met": "not-achieved",
    "unmet": "not-achieved",
    "no": "not-achieved",
    "fail": "not-achieved",
    "failed": "not-achieved",
    "non-compliant": "not-achieved",
    "未達成": "not-achieved",
    "未達": "not-achieved",
    "unknown": "unknown",
    "不明": "unknown",
    "不明確": "unknown",
}


class SchemaInvalid(ValueError):
    """Raised when the model output cannot be recovered into a valid evaluation response."""

    def __init__(self, message: str, *, stage: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.stage = stage
        self.errors = errors or []


@dataclass(frozen=True)
class ParsedOk:
    value: dict[str, Any]
    stage: str


@dataclass(frozen=True)
class ParseFailed:
    stage: str
    error: str


ParseResult = ParsedOk | ParseFailed


def _load_object(candidate: str, stage: str) -> ParseResult:
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError as exc:
        return ParseFailed(stage=stage, error=str(exc))
    if not isinstance(value, dict):
        return ParseFailed(stage=stage, error=f"expected a JSON object, got {type(value).__name__}")
    return ParsedOk(value=value, stage=stage)


def parse_direct(text: str) -> ParseResult:
    return _load_object(text.strip(), "direct")


def parse_fenced(text: str) -> ParseResult:
    match = _FENCED_PATTERN.search(text)
    if not match:
        return ParseFailed(stage="fenced", error="no fenced code block")
    return _load_object(match.group(1), "fenced")


def _braced_span(text: str) -> str | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def parse_braced(text: str) -> ParseResult:
    candidate = _braced_span(text)
    if candidate is None:
        return ParseFailed(stage="braced", error="no {...} span")
    return _load_object(candidate, "braced")


def _open_delimiters(text: str) -> tuple[list[str], bool]:
    """Return the closers still owed at the end of `text` (innermost last) and whether a string is open."""
    open_stack: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            open_stack.append("}" if char == "{" else "]")
        elif char in "}]" and open_stack and open_stack[-1] == char:
            open_stack.pop()
    return open_stack, in_string


def repair_json_text(candidate: str) -> str:
    """Best-effort textual repair of truncated or sloppy JSON.

    Removes commas directly before closing delimiters and a dangling trailing comma, closes an
    unterminated string, then appends the closing braces/brackets still open, innermost first.
    """
    repaired = _TRAILING_COMMA_PATTERN.sub(r"\1", candidate.strip())
    open_stack, in_string = _open_delimiters(repaired)

    if in_string:
        repaired += '"'
    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1].rstrip()
    elif repaired.endswith(":"):
        repaired += " null"
    return repaired + "".join(reversed(open_stack))


def parse_repaired(text: str) -> ParseResult:
    candidates: list[str] = []
    fenced = _FENCED_PATTERN.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    start = text.find("{")
    if start != -1:
        candidates.append(text[start:])
        braced = _braced_span(text)
        # A span that is still unbalanced ends inside the object; closing it there would cut off
        # whatever the model wrote after that point.
        if braced is not None and _open_delimiters(braced) == ([], False):
            candidates.append(braced)

    last_error = "no JSON object start found"
    for candidate in candidates:
        result = _load_object(repair_json_text(candidate), "repaired")
        if isinstance(result, ParsedOk):
            return result
        last_error = result.error
    return ParseFailed(stage="repaired", error=last_error)


REPAIR_LADDER: tuple[Callable[[str], ParseResult], ...] = (
    parse_direct,
    parse_fenced,
    parse_braced,
    parse_repaired,
)


def run_repair_ladder(text: str) -> ParseResult:
    failures: list[ParseFailed] = []
    for stage in REPAIR_LADDER:
        result = stage(text)
        if isinstance(result, ParsedOk):
            return result
        failures.append(result)
    return ParseFailed(stage="repaired", error="; ".join(f"{item.stage}: {item.error}" for item in failures))


def normalize_score(value: Any) -> Any:
    """Map the model's "no score" spellings (0, "", "null") to None and integral numbers to int."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str):
        stripped = value.strip().strip(_QUOTE_CHARS).strip()
        if stripped.lower() in {"", "null", "none"}:
            return None
        if stripped.isdigit():
            value = int(stripped)
    if value == 0:
        return None
    return value


def normalize_tri_state(value: Any) -> TriState:
    if not isinstance(value, str):
        return "unknown"
    cleaned = value.strip().strip(_QUOTE_CHARS).strip().lower()
    return TRI_STATE_SYNONYMS.get(cleaned, "unknown")


def normalize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    normalized = copy.deepcopy(payload)
    items = normalized.get("items")
    if not isinstance(items, list):
        return normalized
    for item in items:
        if not isinstance(item, dict):
            continue
        item["score"] = normalize_score(item.get("score"))
        item["triState"] = normalize_tri_state(item.get("triState"))
    return normalized


def parse_and_validate(raw_text: str) -> EvaluationResponse:
    result = run_repair_ladder(raw_text)
    if isinstance(result, ParseFailed):
        logger.warning(
            "model_response_unparseable",
            extra={
                "event": "model_response_unparseable",
                "error": result.error,
                "response_preview": preview_text(raw_text),
            },
        )
        raise SchemaInvalid("Model response was not recoverable as JSON.", stage=result.stage, errors=[result.error])

    payload = result.value
    if "overall" not in payload or "items" not in payload:
        raise SchemaInvalid(
            f"Response missing overall or items fields (keys: {sorted(payload)})",
            stage=result.stage,
        )

    try:
        validated = EvaluationResponse.model_validate(normalize_payload(payload))
    except ValidationError as exc:
        errors = [f"{'.'.join(str(part) for part in issue['loc'])}: {issue['msg']}" for issue in exc.errors()]
        logger.warning(
            "model_response_schema_invalid",
            extra={"event": "model_response_schema_invalid", "stage": result.stage, "errors": errors[:20]},
        )
        raise SchemaInvalid("Model response failed schema validation.", stage=result.stage, errors=errors) from exc

    logger.info(
        "model_response_parsed",
        extra={"event": "model_response_parsed", "stage": result.stage, "item_count": len(validated.items)},
    )
    return validated
