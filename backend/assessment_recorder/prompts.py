from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from assessment_recorder.criteria import CriteriaItem
from assessment_recorder.parsers import DocumentPage

TargetType = Literal["LLM", "SaaS"]

_SCHEMA_EXAMPLE = """{
  "overall": {
    "summary": "...",
    "strengths": ["..."],
    "weaknesses": ["..."],
    "risks": ["..."],
    "recommendations": ["..."]
  },
  "items": [
    {
      "itemId": "item_001",
      "itemName": "...",
      "category": "...",
      "score": 3,
      "triState": "%(partial)s",
      "reason": "...",
      "evidence": {
        "pages": [{"page": 1, "quote": "..."}],
        "confidence": 0.8
      }
    }
  ]
}"""

INSTRUCTIONS_EN = """You are a compliance-focused assessor. Follow these rules strictly:

1. Base every rating only on what the document explicitly states.
2. Do not guess and do not use outside knowledge.
3. When the evidence is insufficient, the rating must be unknown.
4. Every rating must cite page numbers and quotes (at most 300 characters each).
5. When no evidence is found, the reason must be "Not stated in the document".

Score scale:
- 5 = fully achieved: the requirement is met completely
- 4 = mostly achieved: at least 80%% of the requirement is met
- 3 = partially achieved: 40-60%% of the requirement is met
- 2 = mostly not achieved: only about 20%% of the requirement is met
- 1 = not achieved: the requirement is essentially not met
- null = unknown: the document does not cover it or gives too little to judge

Tri-state mapping:
- 5, 4 -> achieved
- 3 -> partial
- 2, 1 -> not-achieved
- 0 -> unknown (substitute for null)

Output strictly the following JSON structure and nothing else:
%(schema)s

IMPORTANT:
1. Return no JSON other than this structure.
2. The JSON must be complete and syntactically valid.
3. Do not include comments or explanations.
4. The response must be JSON only.
5. Do not leave trailing commas after the last element of arrays or objects.
6. Return exactly one item per criterion, using the criterion ID as itemId."""

INSTRUCTIONS_JA = """あなたはコンプライアンス重視のアセッサーです。以下のルールに厳格に従って評価してください：

1. 文書に明示的に記載された内容のみに基づいて評価する
2. 推測や外部情報の利用は禁止
3. 根拠が不十分な場合は必ず「不明」とする
4. 各評価にはページ番号と引用（最大300文字）を必ず含める
5. 根拠が見つからない場合、理由は「記載なしのため不明」とする

評価スケール：
- 5 = 完全達成：要件を完全に満たしている
- 4 = ほぼ達成：要件の80%%以上を満たしている
- 3 = 一部達成：要件の40-60%%を満たしている
- 2 = ほぼ未達：要件の20%%程度しか満たしていない
- 1 = 未達成：要件をほとんど満たしていない
- null = 不明：記載がない、または判断材料が不足している

3値マッピング：
- 5,4 → 達成
- 3 → 部分
- 2,1 → 未達成
- 0 → 不明（nullの代替値）

出力形式：次の構造に完全に従った厳密なJSONのみを返すこと：
%(schema)s

重要：
1. この構造以外のJSONを返さないこと
2. JSONは完全かつ構文的に正しいこと
3. コメントや説明を含めないこと
4. レスポンスはJSONのみとすること
5. 配列・オブジェクトの末尾に余計なカンマを入れないこと
6. 評価観点ごとに1項目を返し、itemIdには評価観点のIDを使うこと"""

_LABELS = {
    "en": {
        "target": "Target",
        "type": "Type",
        "name": "Name",
        "version": "Version",
        "provider": "Provider",
        "criteria": "Criteria",
        "id": "ID",
        "item_name": "Name",
        "category": "Category",
        "definition": "Requirement",
        "document": "Document content",
        "page": "Page",
        "closing": "Evaluate each criterion strictly against the content above and return the JSON, including the overall review.",
    },
    "ja": {
        "target": "対象情報",
        "type": "種別",
        "name": "名称",
        "version": "バージョン",
        "provider": "プロバイダー",
        "criteria": "評価観点",
        "id": "ID",
        "item_name": "名称",
        "category": "カテゴリ",
        "definition": "評価要件",
        "document": "文書内容",
        "page": "ページ",
        "closing": "上記の内容に基づいて各観点を厳格に評価し、総評を含めたJSON形式で出力してください。",
    },
}


class EvaluationTarget(BaseModel):
    targetType: TargetType
    name: str = Field(..., min_length=1, max_length=200)
    version: str | None = Field(default=None, max_length=80)
    provider: str | None = Field(default=None, max_length=200)


def _language(language: str) -> str:
    normalized = (language or "").strip().lower()
    return normalized if normalized in _LABELS else "en"


def build_instructions(language: str = "en") -> str:
    if _language(language) == "ja":
        return INSTRUCTIONS_JA % {"schema": _SCHEMA_EXAMPLE % {"partial": "部分"}}
    return INSTRUCTIONS_EN % {"schema": _SCHEMA_EXAMPLE % {"partial": "partial"}}


def render_pages(pages: list[DocumentPage], *, page_label: str = "Page") -> str:
    return "\n\n---\n\n".join(f"[{page_label} {page.page_number}]\n{page.text}" for page in pages)


def build_content(
    criteria: list[CriteriaItem],
    pages: list[DocumentPage],
    target: EvaluationTarget,
    language: str = "en",
) -> str:
    labels = _LABELS[_language(language)]

    target_lines = [f"- {labels['type']}: {target.targetType}", f"- {labels['name']}: {target.name}"]
    if target.version:
        target_lines.append(f"- {labels['version']}: {target.version}")
    if target.provider:
        target_lines.append(f"- {labels['provider']}: {target.provider}")

    criteria_blocks = [
        "\n".join(
            [
                f"{labels['id']}: {item.itemId}",
                f"{labels['item_name']}: {item.itemName}",
                f"{labels['category']}: {item.category}",
                f"{labels['definition']}: {item.definition}",
            ]
        )
        for item in criteria
    ]

    return (
        f"{labels['target']}:\n" + "\n".join(target_lines) + "\n\n"
        f"{labels['criteria']} ({len(criteria)}):\n" + "\n\n".join(criteria_blocks) + "\n\n"
        f"{labels['document']}:\n{render_pages(pages, page_label=labels['page'])}\n\n"
        f"{labels['closing']}"
    )
