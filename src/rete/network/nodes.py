"""
Node variants of the Rete network.

Each node kind is a plain dataclass carrying only the fields it needs.
Nodes never hold references to each other: children and parents are
integer ids into the owning Network's node list.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Optional, Union

from rete.errors import ReteError
from rete.models import ConditionTest, DuplicatePolicy, Fact, JoinTest, Token

NodeId = int
Action = Callable[[str, Token], Any]


class NodeKind(Enum):
    """Tag identifying which variant a node is."""
    ROOT = "root"
    CONDITION = "condition"
    FACT_MEMORY = "fact_memory"
    TOKEN_MEMORY = "token_memory"   # Partial-match memory
    ADAPTER = "adapter"
    JOIN = "join"
    TERMINAL = "terminal"


# Kinds that accept a fact-side activation
FACT_ACTIVATED = frozenset({
    NodeKind.ROOT,
    NodeKind.CONDITION,
    NodeKind.FACT_MEMORY,
    NodeKind.ADAPTER,
    NodeKind.JOIN,
})

# Kinds that accept a token-side activation
TOKEN_ACTIVATED = frozenset({
    NodeKind.TOKEN_MEMORY,
    NodeKind.JOIN,
    NodeKind.TERMINAL,
})

# Which child kinds each parent kind may forward to
ALLOWED_CHILDREN: dict[NodeKind, frozenset] = {
    NodeKind.ROOT: frozenset({NodeKind.CONDITION, NodeKind.FACT_MEMORY}),
    NodeKind.CONDITION: frozenset({NodeKind.CONDITION, NodeKind.FACT_MEMORY}),
    NodeKind.FACT_MEMORY: frozenset({NodeKind.ADAPTER, NodeKind.JOIN}),
    NodeKind.TOKEN_MEMORY: frozenset({NodeKind.JOIN, NodeKind.TERMINAL}),
    NodeKind.ADAPTER: frozenset({NodeKind.JOIN, NodeKind.TERMINAL}),
    NodeKind.JOIN: frozenset({NodeKind.TOKEN_MEMORY, NodeKind.TERMINAL}),
    NodeKind.TERMINAL: frozenset(),
}


@dataclass
class _Memory:
    """Insertion-ordered store shared by the memory-like node kinds."""
    items: list = field(default_factory=list)
    _counts: dict = field(default_factory=dict, repr=False)

    def remember(self, item: Any, policy: DuplicatePolicy) -> bool:
        """Record ``item``. Returns False when it should not be forwarded."""
        if item in self._counts and policy is DuplicatePolicy.IDEMPOTENT:
            return False
        self._counts[item] = self._counts.get(item, 0) + 1
        self.items.append(item)
        return True

    def forget(self, item: Any) -> None:
        """Undo the most recent ``remember`` of ``item``.

        Rollback undoes in reverse order, so ``item`` is always the last entry.
        """
        if not self.items or self.items[-1] != item:
            raise ReteError(f"Cannot forget {item}: it is not the most recent entry")
        self.items.pop()
        remaining = self._counts[item] - 1
        if remaining:
            self._counts[item] = remaining
        else:
            del self._counts[item]

    def __contains__(self, item: Any) -> bool:
        return item in self._counts

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class RootNode:
    id: NodeId
    children: list[NodeId] = field(default_factory=list)
    kind: ClassVar[NodeKind] = NodeKind.ROOT


@dataclass
class ConditionNode:
    id: NodeId
    test: ConditionTest
    children: list[NodeId] = field(default_factory=list)
    kind: ClassVar[NodeKind] = NodeKind.CONDITION


@dataclass
class FactMemoryNode:
    id: NodeId
    children: list[NodeId] = field(default_factory=list)
    memory: _Memory = field(default_factory=_Memory)
    kind: ClassVar[NodeKind] = NodeKind.FACT_MEMORY

    @property
    def facts(self) -> list[Fact]:
        return self.memory.items


@dataclass
class TokenMemoryNode:
    id: NodeId
    children: list[NodeId] = field(default_factory=list)
    memory: _Memory = field(default_factory=_Memory)
    width: Optional[int] = None     # Set when the first join feeds this memory
    kind: ClassVar[NodeKind] = NodeKind.TOKEN_MEMORY

    @property
    def tokens(self) -> list[Token]:
        return self.memory.items


@dataclass
class AdapterNode:
    """Presents a fact memory as a memory of single-fact tokens."""
    id: NodeId
    fact_memory: NodeId
    children: list[NodeId] = field(default_factory=list)
    memory: _Memory = field(default_factory=_Memory)
    width: ClassVar[int] = 1
    kind: ClassVar[NodeKind] = NodeKind.ADAPTER

    @property
    def tokens(self) -> list[Token]:
        return self.memory.items


@dataclass
class JoinNode:
    id: NodeId
    fact_memory: Optional[NodeId]
    token_parent: Optional[NodeId]
    tests: tuple[JoinTest, ...] = ()
    children: list[NodeId] = field(default_factory=list)
    width: Optional[int] = None     # Width of the tokens this join emits
    kind: ClassVar[NodeKind] = NodeKind.JOIN

    def passes(self, fact: Fact, token: Token) -> bool:
        return all(test.evaluate(fact, token) for test in self.tests)


@dataclass
class TerminalNode:
    id: NodeId
    name: str
    action: Action
    kind: ClassVar[NodeKind] = NodeKind.TERMINAL


Node = Union[
    RootNode,
    ConditionNode,
    FactMemoryNode,
    TokenMemoryNode,
    AdapterNode,
    JoinNode,
    TerminalNode,
]
