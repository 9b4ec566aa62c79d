from __future__ import annotations

import logging
from dataclasses import dataclass

from assessment_recorder.criteria import CriteriaItem
from assessment_recorder.model_runtime import EvaluationModel, ModelInvocationFailed
from assessment_recorder.parsers import DocumentPage
from assessment_recorder.prompts import EvaluationTarget, build_content, build_instructions
from assessment_recorder.response_repair import SchemaInvalid, parse_and_validate
from assessment_recorder.scoring import EvaluationResponse, build_fallback_response, complete_ratings

logger = logging.getLogger("recorder.orchestrator")


@dataclass(frozen=True)
class EvaluationOutcome:
    """Result of one evaluation run. Always carries a complete response, degraded or not."""

    response: EvaluationResponse
    fallback_reason: str | None = None

    @property
    def fallback_used(self) -> bool:
        return self.fallback_reason is not None


class EvaluationOrchestrator:
    def __init__(self, model: EvaluationModel, *, language: str = "en") -> None:
        self._model = model
        self._language = language

    def evaluate(
        self,
        criteria: list[CriteriaItem],
        pages: list[DocumentPage],
        target: EvaluationTarget,
    ) -> EvaluationOutcome:
        """Rate every criterion against the pages with a single model call.

        Never raises: model failures and unrecoverable output produce the all-unknown fallback.
        Retrying is left to the caller.
        """
        try:
            instructions = build_instructions(self._language)
            content = build_content(criteria, pages, target, self._language)
            raw_text = self._model.invoke(instructions, content)
            validated = parse_and_validate(raw_text)
        except ModelInvocationFailed as exc:
            return self._fallback(criteria, "model_invocation_failed", exc)
        except SchemaInvalid as exc:
            return self._fallback(criteria, f"schema_invalid:{exc.stage}", exc)
        except Exception as exc:
            logger.exception("evaluation_unexpected_error", extra={"event": "evaluation_unexpected_error"})
            return self._fallback(criteria, "unexpected_error", exc)

        ratings = complete_ratings(criteria, validated.items, language=self._language)
        return EvaluationOutcome(response=EvaluationResponse(overall=validated.overall, items=ratings))

    def _fallback(self, criteria: list[CriteriaItem], reason: str, exc: Exception) -> EvaluationOutcome:
        logger.warning(
            "evaluation_fallback_used",
            extra={
                "event": "evaluation_fallback_used",
                "reason": reason,
                "error": str(exc),
                "criteria_count": len(criteria),
            },
        )
        return EvaluationOutcome(
            response=build_fallback_response(criteria, language=self._language),
            fallback_reason=reason,
        )
