from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from .types import Citation, FlowGraph, FlowLink, FlowNode
from .utils import extract_widest_block, normalize_ws, parse_json_any, to_float

logger = logging.getLogger(__name__)


FENCE_RE = re.compile(r"```[a-zA-Z]*")

DIAGNOSTIC_PREAMBLE = "構造化データを解析できませんでした。元の回答を以下に表示します。"


@dataclass
class Decoded:
    graph: FlowGraph
    explanation: str
    citations: List[Citation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return True


@dataclass
class Fallback:
    """No usable payload; `text` is what the user should still get to read."""

    text: str
    reason: str = "no_json_block"
    citations: List[Citation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return False

    @property
    def graph(self) -> FlowGraph:
        return FlowGraph()

    @property
    def explanation(self) -> str:
        return self.text


ExtractionResult = Union[Decoded, Fallback]


def _node_from_row(row: object) -> Optional[FlowNode]:
    if not isinstance(row, dict):
        return None
    node_id = normalize_ws(str(row.get("id", "") or ""))
    if not node_id:
        return None
    name = normalize_ws(str(row.get("name", "") or "")) or node_id
    return FlowNode(id=node_id, name=name)


def _link_from_row(row: object) -> Optional[FlowLink]:
    if not isinstance(row, dict):
        return None
    source = normalize_ws(str(row.get("source", "") or ""))
    target = normalize_ws(str(row.get("target", "") or ""))
    if not (source and target):
        return None
    value = to_float(row.get("value"))
    if value is None or not math.isfinite(value) or value < 0:
        return None
    return FlowLink(source=source, target=target, value=value)


def graph_from_payload(nodes_raw: object, links_raw: object) -> FlowGraph:
    nodes: List[FlowNode] = []
    seen = set()
    for row in nodes_raw if isinstance(nodes_raw, list) else []:
        node = _node_from_row(row)
        if node is None or node.id in seen:
            continue
        seen.add(node.id)
        nodes.append(node)

    links: List[FlowLink] = []
    for row in links_raw if isinstance(links_raw, list) else []:
        link = _link_from_row(row)
        if link is not None:
            links.append(link)

    return FlowGraph(nodes=nodes, links=links)


def parse_citations(records: Optional[Iterable[object]]) -> List[Citation]:
    out: List[Citation] = []
    seen = set()
    for rec in records or []:
        if isinstance(rec, Citation):
            cit = rec
        elif isinstance(rec, dict):
            web = rec.get("web") if isinstance(rec.get("web"), dict) else rec
            uri = normalize_ws(str(web.get("uri", "") or ""))
            if not uri:
                continue
            title = normalize_ws(str(web.get("title", "") or "")) or uri
            cit = Citation(title=title, uri=uri)
        else:
            continue
        if cit.uri in seen:
            continue
        seen.add(cit.uri)
        out.append(cit)
    return out


def _outside_text(src: str, start: int, end: int) -> str:
    parts = []
    for part in (src[:start], src[end:]):
        part = FENCE_RE.sub("", part).strip()
        if part:
            parts.append(part)
    return "\n\n".join(parts)


def extract_budget_response(text: str, citations: Optional[Iterable[object]] = None) -> ExtractionResult:
    src = str(text or "")
    cits = parse_citations(citations)

    block, start, end = extract_widest_block(src)
    if not block:
        return Fallback(text=src, reason="no_json_block", citations=cits)

    parsed = parse_json_any(block)
    if not isinstance(parsed, dict):
        logger.warning("Could not decode budget payload (%d chars)", len(block))
        return Fallback(
            text=f"{DIAGNOSTIC_PREAMBLE}\n\n{src}",
            reason="decode_error",
            citations=cits,
        )

    graph = graph_from_payload(parsed.get("nodes"), parsed.get("links"))
    explanation = parsed.get("explanation")
    if not isinstance(explanation, str) or not explanation.strip():
        explanation = _outside_text(src, start, end)
    return Decoded(graph=graph, explanation=explanation.strip(), citations=cits)
