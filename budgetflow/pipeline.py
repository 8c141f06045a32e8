from __future__ import annotations

import logging
from typing import Iterable, Optional

from .extract import Fallback, extract_budget_response
from .types import BudgetResult
from .validate import validate_graph

logger = logging.getLogger(__name__)


def build_budget_result(raw_text: str, citations: Optional[Iterable[object]] = None) -> BudgetResult:
    """Turn one raw model answer into a validated, unstamped BudgetResult."""
    extracted = extract_budget_response(raw_text, citations)
    if isinstance(extracted, Fallback):
        logger.info("No budget graph recovered (%s); keeping text only", extracted.reason)
        return BudgetResult(graph=extracted.graph, explanation=extracted.explanation, citations=extracted.citations)

    report = validate_graph(extracted.graph)
    if report.dropped:
        logger.info("Validation dropped %d of %d links", len(report.dropped), len(extracted.graph.links))
    return BudgetResult(graph=report.graph, explanation=extracted.explanation, citations=extracted.citations)
