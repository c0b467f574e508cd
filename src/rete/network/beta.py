"""
Partial-match network activations.

Adapters and partial-match memories cache tokens, join nodes extend
tokens by one fact when every join test passes, and terminals hand
completed tokens to the caller's action.
"""

import logging
from typing import TYPE_CHECKING

from rete.models import Fact, Token
from rete.network.nodes import AdapterNode, JoinNode, TerminalNode, TokenMemoryNode

if TYPE_CHECKING:
    from rete.network.engine import Network

logger = logging.getLogger(__name__)


def activate_adapter(network: "Network", node: AdapterNode, fact: Fact) -> None:
    """Wrap the fact as a one-fact token, store it and forward it."""
    token = Token.of(fact)
    if not network.remember(node, token):
        logger.debug(f"Adapter #{node.id}: ignoring duplicate {token}")
        return
    for child in node.children:
        network.activate_token(child, token)


def activate_token_memory(network: "Network", node: TokenMemoryNode, token: Token) -> None:
    if not network.remember(node, token):
        logger.debug(f"Token memory #{node.id}: ignoring duplicate {token}")
        return
    logger.debug(f"Token memory #{node.id}: stored {token} ({len(node.memory)} tokens)")
    for child in node.children:
        network.activate_token(child, token)


def join_on_fact(network: "Network", node: JoinNode, fact: Fact) -> None:
    """Fact-side activation: join a new fact against every stored token.

    Iterates over a snapshot so tokens added by nested propagation (for
    example an action that inserts more facts) are not joined twice.
    """
    for token in tuple(network.tokens_in(node.token_parent)):
        if node.passes(fact, token):
            _emit(network, node, token.extend(fact))


def join_on_token(network: "Network", node: JoinNode, token: Token) -> None:
    """Token-side activation: join a new token against every stored fact."""
    for fact in tuple(network.facts_in(node.fact_memory)):
        if node.passes(fact, token):
            _emit(network, node, token.extend(fact))


def _emit(network: "Network", node: JoinNode, token: Token) -> None:
    logger.debug(f"Join #{node.id}: produced {token}")
    for child in node.children:
        network.activate_token(child, token)


def activate_terminal(network: "Network", node: TerminalNode, token: Token) -> None:
    """Run the rule's action. Whatever it raises propagates to ``insert``."""
    logger.info(f"Rule '{node.name}' fired with {token}")
    node.action(node.name, token)
