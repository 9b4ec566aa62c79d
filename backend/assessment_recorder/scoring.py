from __future__ import annotations

import logging
import math
from typing import Literal

from pydantic import BaseModel, Field

from assessment_recorder.criteria import CriteriaItem

logger = logging.getLogger("recorder.scoring")

TriState = Literal["achieved", "partial", "not-achieved", "unknown"]
Score = Literal[1, 2, 3, 4, 5]

TRI_STATES: tuple[TriState, ...] = ("achieved", "partial", "not-achieved", "unknown")

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "not_stated": "Not stated in the document",
        "fallback_reason": "Could not be evaluated because of an error",
        "fallback_summary": "The evaluation could not be completed because of an error.",
        "fallback_risk": "An error occurred during the evaluation process.",
        "fallback_recommendation": "Run the evaluation again.",
    },
    "ja": {
        "not_stated": "記載なしのため不明",
        "fallback_reason": "エラーのため評価できませんでした",
        "fallback_summary": "エラーのため評価を完了できませんでした",
        "fallback_risk": "評価プロセスでエラーが発生しました",
        "fallback_recommendation": "再評価を実施してください",
    },
}


class PageEvidence(BaseModel):
    page: int = Field(..., ge=1)
    quote: str = ""


class Evidence(BaseModel):
    pages: list[PageEvidence] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class AssessmentItemRating(BaseModel):
    itemId: str = Field(..., min_length=1)
    itemName: str
    category: str
    score: Score | None = None
    triState: TriState = "unknown"
    reason: str
    evidence: Evidence = Field(default_factory=Evidence)


class Overall(BaseModel):
    summary: str
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class EvaluationResponse(BaseModel):
    overall: Overall
    items: list[AssessmentItemRating]


class Metrics(BaseModel):
    achievedRate: float = Field(..., ge=0.0, le=100.0)
    unknownCount: int = Field(..., ge=0)
    scoreAvg: float = Field(..., ge=0.0, le=5.0)


def messages_for(language: str) -> dict[str, str]:
    return MESSAGES.get((language or "").strip().lower(), MESSAGES["en"])


def score_to_tri_state(score: int | None) -> TriState:
    if score is None:
        return "unknown"
    if score >= 4:
        return "achieved"
    if score == 3:
        return "partial"
    return "not-achieved"


def _round1(value: float) -> float:
    # half-up, not round()'s half-to-even
    return math.floor(value * 10 + 0.5) / 10


def calculate_metrics(ratings: list[AssessmentItemRating]) -> Metrics:
    achieved = sum(1 for rating in ratings if rating.triState == "achieved")
    partial = sum(1 for rating in ratings if rating.triState == "partial")
    not_achieved = sum(1 for rating in ratings if rating.triState == "not-achieved")
    unknown = sum(1 for rating in ratings if rating.triState == "unknown")
    scores = [rating.score for rating in ratings if rating.score is not None]

    known = achieved + partial + not_achieved
    achieved_rate = (achieved / known) * 100 if known > 0 else 0.0
    score_avg = sum(scores) / len(scores) if scores else 0.0
    return Metrics(
        achievedRate=_round1(achieved_rate),
        unknownCount=unknown,
        scoreAvg=_round1(score_avg),
    )


def unknown_rating(criterion: CriteriaItem, reason: str) -> AssessmentItemRating:
    return AssessmentItemRating(
        itemId=criterion.itemId,
        itemName=criterion.itemName,
        category=criterion.category,
        score=None,
        triState="unknown",
        reason=reason,
        evidence=Evidence(pages=[], confidence=0.0),
    )


def complete_ratings(
    criteria: list[CriteriaItem],
    items: list[AssessmentItemRating],
    *,
    language: str = "en",
) -> list[AssessmentItemRating]:
    """Return exactly one rating per criterion, in criteria order.

    The tri-state of every returned rating is derived from its score. Criteria the model did not
    rate get an unknown rating; items for ids outside the criteria set and repeated ids are dropped.
    """
    by_id: dict[str, AssessmentItemRating] = {}
    for item in items:
        by_id.setdefault(item.itemId, item)

    criteria_ids = {criterion.itemId for criterion in criteria}
    unexpected = [item_id for item_id in by_id if item_id not in criteria_ids]
    duplicates = len(items) - len(by_id)
    overridden = 0
    synthesized = 0
    not_stated = messages_for(language)["not_stated"]

    ratings: list[AssessmentItemRating] = []
    for criterion in criteria:
        item = by_id.get(criterion.itemId)
        if item is None:
            ratings.append(unknown_rating(criterion, not_stated))
            synthesized += 1
            continue
        derived = score_to_tri_state(item.score)
        if derived != item.triState:
            overridden += 1
        ratings.append(
            item.model_copy(
                update={"itemName": criterion.itemName, "category": criterion.category, "triState": derived}
            )
        )

    if unexpected or duplicates or overridden or synthesized:
        logger.info(
            "ratings_completed",
            extra={
                "event": "ratings_completed",
                "criteria_count": len(criteria),
                "synthesized_count": synthesized,
                "tri_state_overridden_count": overridden,
                "unexpected_item_ids": unexpected,
                "duplicate_item_count": duplicates,
            },
        )
    return ratings


def build_fallback_response(criteria: list[CriteriaItem], *, language: str = "en") -> EvaluationResponse:
    text = messages_for(language)
    return EvaluationResponse(
        overall=Overall(
            summary=text["fallback_summary"],
            strengths=[],
            weaknesses=[],
            risks=[text["fallback_risk"]],
            recommendations=[text["fallback_recommendation"]],
        ),
        items=[unknown_rating(criterion, text["fallback_reason"]) for criterion in criteria],
    )
