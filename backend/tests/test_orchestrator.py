from __future__ import annotations

import json

from assessment_recorder.criteria import CriteriaItem
from assessment_recorder.model_runtime import ModelInvocationFailed
from assessment_recorder.orchestrator import EvaluationOrchestrator
from assessment_recorder.parsers import DocumentPage
from assessment_recorder.prompts import EvaluationTarget

CRITERIA = [
    CriteriaItem(itemId="item_001", itemName="Encryption", category="Security", definition="Data encrypted at rest."),
    CriteriaItem(itemId="item_002", itemName="Logging", category="Operations", definition="Access is logged."),
    CriteriaItem(itemId="item_003", itemName="Retention", category="Privacy", definition="Retention is defined."),
]
PAGES = [
    DocumentPage(page_number=1, text="All customer data is encrypted with AES-256."),
    DocumentPage(page_number=2, text="Records are retained for some period."),
]
TARGET = EvaluationTarget(targetType="SaaS", name="Acme CRM", version="2.1", provider="Acme")

ITEM_ONE = {
    "itemId": "item_001",
    "itemName": "Encryption",
    "category": "Security",
    "score": 5,
    "triState": "achieved",
    "reason": "Encryption is stated.",
    "evidence": {"pages": [{"page": 1, "quote": "encrypted with AES-256"}], "confidence": 0.95},
}
OVERALL = {"summary": "Partially documented.", "strengths": ["Encryption"], "weaknesses": [], "risks": [], "recommendations": []}


class FakeModel:
    def __init__(self, text: str | None = None, error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def invoke(self, instructions: str, content: str) -> str:
        self.calls.append((instructions, content))
        if self.error is not None:
            raise self.error
        return self.text or ""


def test_malformed_item_is_repaired_and_omitted_item_is_synthesized() -> None:
    item_three = {
        "itemId": "item_003",
        "itemName": "Retention",
        "category": "Privacy",
        "score": "3",
        "triState": "Partially met",
        "reason": "Retention period is vague.",
        "evidence": {"pages": [{"page": 2, "quote": "retained for some period"}], "confidence": 0.6},
    }
    raw = "```json\n" + json.dumps({"overall": OVERALL, "items": [ITEM_ONE, item_three]})[:-2]
    model = FakeModel(text=raw)

    outcome = EvaluationOrchestrator(model).evaluate(CRITERIA, PAGES, TARGET)

    assert len(model.calls) == 1
    assert outcome.fallback_used is False
    items = outcome.response.items
    assert [item.itemId for item in items] == ["item_001", "item_002", "item_003"]
    assert (items[0].score, items[0].triState) == (5, "achieved")
    assert (items[1].score, items[1].triState) == (None, "unknown")
    assert items[1].reason == "Not stated in the document"
    assert (items[2].score, items[2].triState) == (3, "partial")
    assert items[2].evidence.pages[0].page == 2


def test_unrecoverable_item_falls_back_for_the_whole_response() -> None:
    item_three = {
        "itemId": "item_003",
        "itemName": "Retention",
        "category": "Privacy",
        "score": 9,
        "triState": "partial",
        "reason": "Out of scale.",
        "evidence": {"pages": [{"page": 2, "quote": "retained"}], "confidence": 0.6},
    }
    model = FakeModel(text=json.dumps({"overall": OVERALL, "items": [ITEM_ONE, item_three]}))

    outcome = EvaluationOrchestrator(model).evaluate(CRITERIA, PAGES, TARGET)

    assert outcome.fallback_used is True
    assert outcome.fallback_reason == "schema_invalid:direct"
    assert [item.itemId for item in outcome.response.items] == ["item_001", "item_002", "item_003"]
    assert all(item.triState == "unknown" for item in outcome.response.items)
    assert outcome.response.overall.summary == "The evaluation could not be completed because of an error."


def test_model_failure_yields_fallback() -> None:
    model = FakeModel(error=ModelInvocationFailed("throttled"))

    outcome = EvaluationOrchestrator(model, language="ja").evaluate(CRITERIA, PAGES, TARGET)

    assert outcome.fallback_reason == "model_invocation_failed"
    assert outcome.response.items[0].reason == "エラーのため評価できませんでした"


def test_unexpected_error_is_absorbed() -> None:
    outcome = EvaluationOrchestrator(FakeModel(error=KeyError("boom"))).evaluate(CRITERIA, PAGES, TARGET)
    assert outcome.fallback_reason == "unexpected_error"
    assert len(outcome.response.items) == 3


def test_prompt_carries_target_criteria_and_tagged_pages() -> None:
    model = FakeModel(text=json.dumps({"overall": OVERALL, "items": [ITEM_ONE]}))

    EvaluationOrchestrator(model).evaluate(CRITERIA, PAGES, TARGET)

    instructions, content = model.calls[0]
    assert "Score scale" in instructions
    assert '"triState": "partial"' in instructions
    assert "- Type: SaaS" in content
    assert "- Provider: Acme" in content
    assert "Criteria (3):" in content
    assert "ID: item_003" in content
    assert "[Page 1]\nAll customer data is encrypted with AES-256." in content
    assert "[Page 2]" in content


def test_japanese_prompt_uses_japanese_labels() -> None:
    model = FakeModel(text=json.dumps({"overall": OVERALL, "items": [ITEM_ONE]}))

    EvaluationOrchestrator(model, language="ja").evaluate(CRITERIA, PAGES, TARGET)

    instructions, content = model.calls[0]
    assert "評価スケール" in instructions
    assert '"triState": "部分"' in instructions
    assert "評価観点 (3):" in content
    assert "[ページ 1]" in content


def test_item_cut_off_mid_evidence_falls_back_instead_of_being_dropped() -> None:
    item_three = {
        "itemId": "item_003",
        "itemName": "Retention",
        "category": "Privacy",
        "score": 2,
        "triState": "not-achieved",
        "reason": "No period stated.",
        "evidence": {"pages": [{"page": 2, "quote": "retained for some period"}], "confidence": 0.5},
    }
    full = json.dumps({"overall": OVERALL, "items": [ITEM_ONE, item_three]})
    cut = full.index('"quote"', full.index("item_003")) + len('"quote"')
    model = FakeModel(text=full[:cut])

    outcome = EvaluationOrchestrator(model).evaluate(CRITERIA, PAGES, TARGET)

    assert outcome.fallback_used is True
    assert outcome.fallback_reason == "schema_invalid:repaired"
    assert [item.reason for item in outcome.response.items] == ["Could not be evaluated because of an error"] * 3


def test_prompt_building_errors_are_absorbed(monkeypatch) -> None:
    def broken_content(*args, **kwargs):
        raise ValueError("bad template")

    monkeypatch.setattr("assessment_recorder.orchestrator.build_content", broken_content)
    model = FakeModel(text=json.dumps({"overall": OVERALL, "items": [ITEM_ONE]}))

    outcome = EvaluationOrchestrator(model).evaluate(CRITERIA, PAGES, TARGET)

    assert outcome.fallback_reason == "unexpected_error"
    assert model.calls == []
    assert len(outcome.response.items) == 3
