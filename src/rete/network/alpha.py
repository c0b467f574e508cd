"""
Condition network activations.

Facts enter at the root, are filtered by single-field condition nodes and
are stored in fact memories, which fan out into the partial-match network.
"""

import logging
from typing import TYPE_CHECKING

from rete.models import Fact
from rete.network.nodes import ConditionNode, FactMemoryNode, RootNode

if TYPE_CHECKING:
    from rete.network.engine import Network

logger = logging.getLogger(__name__)


def activate_root(network: "Network", node: RootNode, fact: Fact) -> None:
    """Forward every fact unconditionally."""
    for child in node.children:
        network.activate_fact(child, fact)


def activate_condition(network: "Network", node: ConditionNode, fact: Fact) -> None:
    """Forward the fact only when the node's test holds."""
    if not node.test.matches(fact):
        return
    for child in node.children:
        network.activate_fact(child, fact)


def activate_fact_memory(network: "Network", node: FactMemoryNode, fact: Fact) -> None:
    """Store the fact, then hand it to every adapter and join watching this memory.

    Children are kept deepest-join-first so a fact that reaches both sides
    of a join through this memory is combined exactly once.
    """
    if not network.remember(node, fact):
        logger.debug(f"Fact memory #{node.id}: ignoring duplicate {fact}")
        return
    logger.debug(f"Fact memory #{node.id}: stored {fact} ({len(node.memory)} facts)")
    for child in node.children:
        network.activate_fact(child, fact)
