from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional

from .config import FUNDING_PREFIX, OTHER_BUCKET, WARDS
from .types import AggregatedBucket, BudgetResult, ComparisonReport, EntityRollup, FlowGraph

ENDPOINTS = ("source", "target")


def funding_buckets(graph: FlowGraph, endpoint: str = "target") -> List[AggregatedBucket]:
    """Sum funding-source links by the name of the node at `endpoint`."""
    if endpoint not in ENDPOINTS:
        raise ValueError(f"endpoint must be one of {ENDPOINTS}, got {endpoint!r}")
    names = graph.name_map()
    sums: Dict[str, float] = {}
    for link in graph.links:
        if not link.source.startswith(FUNDING_PREFIX):
            continue
        node_id = link.target if endpoint == "target" else link.source
        name = names.get(node_id) or OTHER_BUCKET
        sums[name] = sums.get(name, 0.0) + float(link.value)
    return [AggregatedBucket(name=k, value=v) for k, v in sums.items()]


def rollup_entity(entity: str, result: Optional[BudgetResult], endpoint: str = "target") -> EntityRollup:
    if result is None:
        return EntityRollup(entity=entity)
    buckets = funding_buckets(result.graph, endpoint=endpoint)
    return EntityRollup(entity=entity, total=sum(b.value for b in buckets), buckets=buckets)


def aggregate_budgets(
    entries: Mapping[str, BudgetResult],
    entity_keys: Iterable[str] = WARDS,
    endpoint: str = "target",
) -> ComparisonReport:
    rollups = [rollup_entity(key, entries.get(key), endpoint=endpoint) for key in entity_keys]
    # sort is stable, so equal totals keep ward order
    rollups.sort(key=lambda r: r.total, reverse=True)
    names = sorted({b.name for r in rollups for b in r.buckets})
    return ComparisonReport(rollups=rollups, bucket_names=names)


def total_budget(graph: FlowGraph) -> float:
    if not graph.links:
        return 0.0
    funding = [l for l in graph.links if l.source.startswith(FUNDING_PREFIX)]
    if funding:
        return float(sum(l.value for l in funding))
    # No funding tier: the widest single source stands in for the total.
    outflow: Dict[str, float] = defaultdict(float)
    for link in graph.links:
        outflow[link.source] += float(link.value)
    return max(max(outflow.values()), 0.0)


def format_japanese_currency(k_yen: float) -> str:
    """Render a thousand-yen amount in 億円 / 万円."""
    if k_yen == 0:
        return "0 円"
    if k_yen >= 100000:
        return f"{k_yen / 100000:.2f} 億円"
    man = k_yen / 10
    if float(man).is_integer():
        return f"{int(man):,} 万円"
    return f"{man:,.1f} 万円"
