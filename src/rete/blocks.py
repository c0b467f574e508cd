"""
Blocks-world sample network.

Blocks sit on each other or on the table, stand left of each other and
have a color. The single rule fires for a block on another block that is
left of a red block:

    c1: (<x> on <y>)
    c2: (<y> left_of <z>)
    c3: (<z> color red)
"""

from typing import Callable, Union

from rete.models import ConditionTest, DuplicatePolicy, Fact, JoinTest, Token, Variable
from rete.network import Network

RULE_NAME = "Block on block left to red"

X, Y, Z = Variable("x"), Variable("y"), Variable("z")

# Documentation only; the joins below encode the shared variables
RULE_PATTERN = (
    (X, "on", Y),
    (Y, "left_of", Z),
    (Z, "color", "red"),
)

SAMPLE_FACTS = [
    Fact("b1", "on", "b2"),
    Fact("b1", "on", "b3"),
    Fact("b1", "color", "red"),
    Fact("b2", "on", "table"),
    Fact("b2", "left_of", "b3"),
    Fact("b2", "color", "blue"),
    Fact("b3", "left_of", "b4"),
    Fact("b3", "on", "table"),
    Fact("b3", "color", "red"),
]


def describe_rule() -> str:
    return "\n".join(
        f"c{i}: ({' '.join(str(part) for part in condition)})"
        for i, condition in enumerate(RULE_PATTERN, start=1)
    )


def build_blocks_network(
    action: Callable[[str, Token], None],
    duplicate_policy: Union[DuplicatePolicy, str] = DuplicatePolicy.IDEMPOTENT,
    thread_safe: bool = True,
) -> Network:
    """Wire the sample rule by hand and return the network."""
    network = Network(duplicate_policy=duplicate_policy, thread_safe=thread_safe)

    # c1: facts with the "on" attribute; first condition, so it gets an adapter
    on_memory = network.add_fact_memory(
        network.add_condition(network.root, ConditionTest("attribute", "==", "on"))
    )
    on_tokens = network.add_adapter(on_memory)

    # c2: facts with the "left_of" attribute
    left_of_memory = network.add_fact_memory(
        network.add_condition(network.root, ConditionTest("attribute", "==", "left_of"))
    )

    # c3: attribute and value tests chained before the memory
    color = network.add_condition(network.root, ConditionTest("attribute", "==", "color"))
    red_memory = network.add_fact_memory(
        network.add_condition(color, ConditionTest("value", "==", "red"))
    )

    # c1 ^ c2 on <y>: the left_of fact's identifier is the on fact's value
    on_left_of = network.add_token_memory()
    network.register_join(
        fact_memory=left_of_memory,
        token_parent=on_tokens,
        tests=[JoinTest("identifier", "==", 0, "value")],
        children=[on_left_of],
    )

    # (c1 ^ c2) ^ c3 on <z>
    terminal = network.add_terminal(RULE_NAME, action)
    network.register_join(
        fact_memory=red_memory,
        token_parent=on_left_of,
        tests=[JoinTest("identifier", "==", 1, "value")],
        children=[terminal],
    )
    return network
