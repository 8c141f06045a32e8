"""Referential-integrity and cycle filtering for candidate flow graphs.

Links are examined once, in the order they were produced. A link is kept
unless it is a self-loop, points at an unknown node, or would close a cycle
with links already kept. Because acceptance is greedy, reordering the input
can change which link of a cycle survives; callers must not rely on any other
tie-break.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

import networkx as nx

from .config import tier_of
from .types import FlowGraph, FlowLink, FlowNode

logger = logging.getLogger(__name__)


SELF_LOOP = "self_loop"
DANGLING = "dangling"
CYCLE = "cycle"


@dataclass(frozen=True)
class DroppedLink:
    source: str
    target: str
    reason: str


@dataclass
class ValidationReport:
    graph: FlowGraph
    dropped: List[DroppedLink] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.dropped


def _closes_cycle(accepted: nx.DiGraph, source: str, target: str) -> bool:
    if not (accepted.has_node(source) and accepted.has_node(target)):
        return False
    return nx.has_path(accepted, target, source)


def filter_links(nodes: Iterable[FlowNode], links: Iterable[FlowLink]) -> Tuple[List[FlowLink], List[DroppedLink]]:
    known = {n.id for n in nodes}
    accepted = nx.DiGraph()
    kept: List[FlowLink] = []
    dropped: List[DroppedLink] = []

    for link in links:
        s, t = link.source, link.target
        if s == t:
            reason = SELF_LOOP
        elif s not in known or t not in known:
            reason = DANGLING
        elif _closes_cycle(accepted, s, t):
            reason = CYCLE
        else:
            kept.append(link)
            accepted.add_edge(s, t)
            continue
        logger.warning("Dropped %s link: %s -> %s", reason, s, t)
        dropped.append(DroppedLink(source=s, target=t, reason=reason))

    return kept, dropped


def validate_graph(graph: FlowGraph) -> ValidationReport:
    kept, dropped = filter_links(graph.nodes, graph.links)
    out = FlowGraph(nodes=list(graph.nodes), links=kept)
    for src, tgt in tier_violations(out):
        logger.debug("Link runs against tier order: %s -> %s", src, tgt)
    return ValidationReport(graph=out, dropped=dropped)


def is_acyclic(graph: FlowGraph) -> bool:
    g = nx.DiGraph()
    g.add_nodes_from(graph.node_ids())
    g.add_edges_from((l.source, l.target) for l in graph.links)
    return nx.is_directed_acyclic_graph(g)


def tier_violations(graph: FlowGraph) -> List[Tuple[str, str]]:
    # Advisory only: tiers are never enforced, same-tier links are allowed.
    out: List[Tuple[str, str]] = []
    for link in graph.links:
        ts, tt = tier_of(link.source), tier_of(link.target)
        if ts is not None and tt is not None and tt < ts:
            out.append((link.source, link.target))
    return out
