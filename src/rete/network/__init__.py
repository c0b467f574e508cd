"""
The Rete network: a condition network of single-field tests ending in
fact memories, and a partial-match network of adapters, joins, token
memories and terminals.
"""

from rete.network.engine import ROOT, Network
from rete.network.diagnostics import NetworkStats, network_stats
from rete.network.nodes import NodeKind

__all__ = [
    "Network",
    "NetworkStats",
    "NodeKind",
    "ROOT",
    "network_stats",
]
