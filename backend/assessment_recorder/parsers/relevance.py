from __future__ import annotations

from assessment_recorder.parsers.base import DocumentPage


def rank_pages_by_relevance(
    pages: list[DocumentPage],
    keywords: list[str],
    limit: int = 10,
) -> list[DocumentPage]:
    """Return up to `limit` pages ordered by summed keyword hit counts.

    Matching is case-insensitive substring counting; pages without any hit are left out.
    Ties keep document order.
    """
    lowered_keywords = [keyword.lower() for keyword in keywords if keyword]
    scored: list[tuple[int, DocumentPage]] = []
    for page in pages:
        lowered_text = page.text.lower()
        score = sum(lowered_text.count(keyword) for keyword in lowered_keywords)
        if score > 0:
            scored.append((score, page))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [page for _, page in scored[: max(0, limit)]]
