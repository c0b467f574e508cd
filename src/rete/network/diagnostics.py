"""
Diagnostics for a Network: a readable dump, a per-node description and
summary statistics over what the memories hold. None of these are a
stable serialization format.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from rete.network.nodes import Node, NodeId, NodeKind

if TYPE_CHECKING:
    from rete.network.engine import Network

INDENT = "  "

_LABELS = {
    NodeKind.ROOT: "Root",
    NodeKind.CONDITION: "Condition",
    NodeKind.FACT_MEMORY: "FactMemory",
    NodeKind.TOKEN_MEMORY: "TokenMemory",
    NodeKind.ADAPTER: "Adapter",
    NodeKind.JOIN: "Join",
    NodeKind.TERMINAL: "Terminal",
}

_MEMORY_KINDS = (NodeKind.FACT_MEMORY, NodeKind.TOKEN_MEMORY, NodeKind.ADAPTER)


def _summary(node: Node) -> str:
    label = f"{_LABELS[node.kind]} #{node.id}"
    if node.kind is NodeKind.CONDITION:
        return f"{label} ({node.test})"
    if node.kind is NodeKind.JOIN:
        tests = "; ".join(str(t) for t in node.tests) or "no tests"
        return f"{label} ({tests}) fact=#{node.fact_memory} token=#{node.token_parent}"
    if node.kind is NodeKind.TERMINAL:
        return f"{label} '{node.name}'"
    if node.kind in _MEMORY_KINDS:
        items = ", ".join(str(item) for item in node.memory.items)
        return f"{label} items=[{items}]"
    return label


def dump(network: "Network", node_id: NodeId) -> str:
    """Render the subtree under ``node_id`` as indented text.

    Nodes with more than one parent (joins) are expanded the first time
    they are reached and referenced afterwards.
    """
    lines: list[str] = []
    seen: set[NodeId] = set()
    stack = [(network.node(node_id).id, 0)]
    while stack:
        current, depth = stack.pop()
        node = network.node(current)
        prefix = INDENT * depth
        if current in seen:
            lines.append(f"{prefix}-> {_LABELS[node.kind]} #{current} (see above)")
            continue
        seen.add(current)
        lines.append(prefix + _summary(node))
        children = getattr(node, "children", [])
        stack.extend((child, depth + 1) for child in reversed(children))
    return "\n".join(lines)


def describe(network: "Network") -> list[dict]:
    """One plain dict per node, in node-id order."""
    result = []
    for node in network.nodes:
        entry = {"id": node.id, "kind": node.kind.value}
        if hasattr(node, "children"):
            entry["children"] = list(node.children)
        if node.kind is NodeKind.CONDITION:
            entry["test"] = str(node.test)
        elif node.kind is NodeKind.JOIN:
            entry["fact_memory"] = node.fact_memory
            entry["token_parent"] = node.token_parent
            entry["tests"] = [str(t) for t in node.tests]
            entry["width"] = node.width
        elif node.kind is NodeKind.TERMINAL:
            entry["name"] = node.name
        if node.kind in _MEMORY_KINDS:
            entry["items"] = [str(item) for item in node.memory.items]
        if node.kind in (NodeKind.TOKEN_MEMORY, NodeKind.ADAPTER):
            entry["width"] = node.width
        result.append(entry)
    return result


@dataclass
class NetworkStats:
    """Size summary of a network's nodes and memories."""
    node_counts: dict = field(default_factory=dict)
    facts_stored: int = 0
    tokens_stored: int = 0
    mean_memory_size: float = 0.0
    max_memory_size: int = 0
    insertions: int = 0

    def to_dict(self) -> dict:
        return {
            "node_counts": dict(self.node_counts),
            "facts_stored": self.facts_stored,
            "tokens_stored": self.tokens_stored,
            "mean_memory_size": self.mean_memory_size,
            "max_memory_size": self.max_memory_size,
            "insertions": self.insertions,
        }


def network_stats(network: "Network") -> NetworkStats:
    counts = Counter(node.kind.value for node in network.nodes)
    memories = [node for node in network.nodes if node.kind in _MEMORY_KINDS]
    sizes = np.array([len(node.memory) for node in memories], dtype=np.int64)

    facts_stored = int(sum(len(n.memory) for n in memories if n.kind is NodeKind.FACT_MEMORY))
    tokens_stored = int(sizes.sum()) - facts_stored if sizes.size else 0

    return NetworkStats(
        node_counts=dict(counts),
        facts_stored=facts_stored,
        tokens_stored=tokens_stored,
        mean_memory_size=float(sizes.mean()) if sizes.size else 0.0,
        max_memory_size=int(sizes.max()) if sizes.size else 0,
        insertions=network.inserted_count,
    )
