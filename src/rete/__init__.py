"""
Incremental Rete pattern matching.

Facts are (identifier, attribute, value) triples. A hand-wired Network
keeps every partial match cached at each join, so a new fact is joined
only against the partial matches relevant to it.
"""

from rete.errors import ConfigurationError, ReteError
from rete.models import (
    ConditionTest,
    DuplicatePolicy,
    Fact,
    FactField,
    JoinTest,
    Operator,
    Token,
    Variable,
)
from rete.network import ROOT, Network, NetworkStats, NodeKind, network_stats

__all__ = [
    "ConditionTest",
    "ConfigurationError",
    "DuplicatePolicy",
    "Fact",
    "FactField",
    "JoinTest",
    "Network",
    "NetworkStats",
    "NodeKind",
    "Operator",
    "ROOT",
    "ReteError",
    "Token",
    "Variable",
    "network_stats",
]
