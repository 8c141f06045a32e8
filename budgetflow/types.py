from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Set


@dataclass(frozen=True)
class FlowNode:
    id: str
    name: str

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class FlowLink:
    source: str
    target: str
    value: float

    def to_dict(self) -> Dict[str, object]:
        value = self.value
        if float(value).is_integer():
            value = int(value)
        return {"source": self.source, "target": self.target, "value": value}


@dataclass
class FlowGraph:
    """Nodes and links of one ward's budget flow, values in thousand-yen."""

    nodes: List[FlowNode] = field(default_factory=list)
    links: List[FlowLink] = field(default_factory=list)

    def node_ids(self) -> Set[str]:
        return {n.id for n in self.nodes}

    def name_map(self) -> Dict[str, str]:
        return {n.id: n.name for n in self.nodes}

    def is_empty(self) -> bool:
        return not self.nodes or not self.links

    def copy(self) -> "FlowGraph":
        return FlowGraph(nodes=list(self.nodes), links=list(self.links))

    def to_dict(self) -> Dict[str, object]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "links": [l.to_dict() for l in self.links],
        }


@dataclass(frozen=True)
class Citation:
    title: str
    uri: str

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "uri": self.uri}


@dataclass
class BudgetResult:
    graph: FlowGraph
    explanation: str = ""
    citations: List[Citation] = field(default_factory=list)
    fetched_at: str = ""

    def to_dict(self) -> Dict[str, object]:
        data = self.graph.to_dict()
        data["explanation"] = self.explanation
        data["citations"] = [c.to_dict() for c in self.citations]
        data["fetchedAt"] = self.fetched_at
        return data


@dataclass(frozen=True)
class AggregatedBucket:
    name: str
    value: float


@dataclass
class EntityRollup:
    entity: str
    total: float = 0.0
    buckets: List[AggregatedBucket] = field(default_factory=list)


@dataclass
class ComparisonReport:
    rollups: List[EntityRollup] = field(default_factory=list)
    bucket_names: List[str] = field(default_factory=list)

    def loaded(self) -> List[EntityRollup]:
        return [r for r in self.rollups if r.total > 0]

    def top(self, n: int = 4) -> List[EntityRollup]:
        return self.loaded()[: max(0, int(n))]

    def by_entity(self) -> Dict[str, EntityRollup]:
        return {r.entity: r for r in self.rollups}
