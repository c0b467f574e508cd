"""
Network - the caller-owned Rete network.

Nodes live in a single growable list and refer to each other by index.
Construction methods validate wiring up front and raise
ConfigurationError rather than admitting a node that can never fire.
Activation dispatches on each node's kind tag.
"""

import contextlib
import logging
import threading
from typing import Callable, Iterable, Optional, Sequence, Union

from rete.errors import ConfigurationError, ReteError
from rete.models import ConditionTest, DuplicatePolicy, Fact, JoinTest, Token
from rete.network import alpha, beta
from rete.network.nodes import (
    ALLOWED_CHILDREN,
    Action,
    AdapterNode,
    ConditionNode,
    FactMemoryNode,
    JoinNode,
    Node,
    NodeId,
    NodeKind,
    RootNode,
    TerminalNode,
    TokenMemoryNode,
)

logger = logging.getLogger(__name__)

ROOT: NodeId = 0

_FACT_HANDLERS: dict[NodeKind, Callable] = {
    NodeKind.ROOT: alpha.activate_root,
    NodeKind.CONDITION: alpha.activate_condition,
    NodeKind.FACT_MEMORY: alpha.activate_fact_memory,
    NodeKind.ADAPTER: beta.activate_adapter,
    NodeKind.JOIN: beta.join_on_fact,
}

_TOKEN_HANDLERS: dict[NodeKind, Callable] = {
    NodeKind.TOKEN_MEMORY: beta.activate_token_memory,
    NodeKind.JOIN: beta.join_on_token,
    NodeKind.TERMINAL: beta.activate_terminal,
}


class Network:
    """A hand-wired Rete network.

    Typical assembly:

        net = Network()
        on = net.add_fact_memory(net.add_condition(net.root, ("attribute", "==", "on")))
        adapter = net.add_adapter(on)
        ...
        net.register_join(fact_memory=..., token_parent=adapter, tests=[...], children=[...])
        net.insert(Fact("b1", "on", "b2"))

    Inserting a fact propagates it depth-first through the whole network,
    including every terminal action it triggers, before ``insert`` returns.

    With ``thread_safe=True`` each ``insert`` holds the network's re-entrant
    lock while actions run. An action may call ``insert`` again on the same
    thread. An action that hands an ``insert`` to another thread and waits
    for it deadlocks; queue the fact and insert it after the outer call
    returns instead.
    """

    def __init__(
        self,
        duplicate_policy: Union[DuplicatePolicy, str] = DuplicatePolicy.IDEMPOTENT,
        thread_safe: bool = True,
    ):
        self.duplicate_policy = DuplicatePolicy.parse(duplicate_policy)
        self.thread_safe = thread_safe
        self._lock = threading.RLock() if thread_safe else contextlib.nullcontext()
        self._nodes: list[Node] = [RootNode(id=ROOT)]
        self._inserted = 0
        self._journals: list[list] = []
        logger.debug(
            f"Network: duplicate_policy={self.duplicate_policy.value}, thread_safe={thread_safe}"
        )

    # ------------------------------------------------------------------ #
    # Node access
    # ------------------------------------------------------------------ #

    @property
    def root(self) -> NodeId:
        return ROOT

    @property
    def nodes(self) -> tuple:
        return tuple(self._nodes)

    @property
    def inserted_count(self) -> int:
        """Number of ``insert`` calls made so far, including ones that raised."""
        return self._inserted

    def node(self, node_id: NodeId) -> Node:
        if isinstance(node_id, bool) or not isinstance(node_id, int) \
                or not 0 <= node_id < len(self._nodes):
            raise ConfigurationError(f"Unknown node id: {node_id!r}")
        return self._nodes[node_id]

    def facts_in(self, node_id: Optional[NodeId]) -> list[Fact]:
        """Facts stored by a fact memory; an absent parent holds nothing."""
        if node_id is None:
            return []
        return self._nodes[node_id].memory.items

    def tokens_in(self, node_id: Optional[NodeId]) -> list[Token]:
        """Tokens stored by a partial-match memory or adapter."""
        if node_id is None:
            return []
        return self._nodes[node_id].memory.items

    def nodes_of_kind(self, kind: NodeKind) -> list[Node]:
        return [n for n in self._nodes if n.kind is kind]

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #

    def add_condition(
        self,
        parent: NodeId,
        test: Union[ConditionTest, tuple, list],
    ) -> NodeId:
        """Add a single-field test below the root or another condition."""
        test = ConditionTest.coerce(test)
        with self._lock:
            self._require_kind(parent, {NodeKind.ROOT, NodeKind.CONDITION}, "condition parent")
            node_id = self._append(lambda i: ConditionNode(id=i, test=test))
            self._link(parent, node_id)
        logger.debug(f"Added condition #{node_id} ({test}) under #{parent}")
        return node_id

    def add_fact_memory(self, parent: NodeId) -> NodeId:
        """Add a fact memory at the end of a condition chain (or under the root)."""
        with self._lock:
            self._require_kind(parent, {NodeKind.ROOT, NodeKind.CONDITION}, "fact memory parent")
            node_id = self._append(lambda i: FactMemoryNode(id=i))
            self._link(parent, node_id)
        logger.debug(f"Added fact memory #{node_id} under #{parent}")
        return node_id

    def add_adapter(self, fact_memory: NodeId) -> NodeId:
        """Expose a fact memory as one-fact tokens for the first join of a rule."""
        with self._lock:
            self._require_kind(fact_memory, {NodeKind.FACT_MEMORY}, "adapter source")
            node_id = self._append(lambda i: AdapterNode(id=i, fact_memory=fact_memory))
            self._link(fact_memory, node_id)
        logger.debug(f"Added adapter #{node_id} over fact memory #{fact_memory}")
        return node_id

    def add_token_memory(self) -> NodeId:
        """Add an unattached partial-match memory; wire it as a join child."""
        with self._lock:
            node_id = self._append(lambda i: TokenMemoryNode(id=i))
        logger.debug(f"Added token memory #{node_id}")
        return node_id

    def add_terminal(self, name: str, action: Action) -> NodeId:
        """Add a terminal that calls ``action(name, token)`` for each complete match."""
        if not callable(action):
            raise ConfigurationError(f"Terminal '{name}' action is not callable: {action!r}")
        with self._lock:
            node_id = self._append(lambda i: TerminalNode(id=i, name=str(name), action=action))
        logger.debug(f"Added terminal #{node_id} '{name}'")
        return node_id

    def register_join(
        self,
        fact_memory: Optional[NodeId] = None,
        token_parent: Optional[NodeId] = None,
        tests: Iterable[Union[JoinTest, tuple, list]] = (),
        children: Sequence[NodeId] = (),
    ) -> NodeId:
        """Create a join and link it under both parents in one step.

        Args:
            fact_memory: Fact memory feeding the fact side, or None.
            token_parent: Partial-match memory or adapter feeding the token
                side, or None.
            tests: Join tests; all must pass for a fact/token pair to combine.
            children: Partial-match memories or terminals receiving the
                extended tokens.

        Returns:
            The new join's node id.

        Raises:
            ConfigurationError: if both parents are missing, a parent or
                child has the wrong kind, or a test refers past the end of
                the tokens the token parent produces.
        """
        tests = tuple(JoinTest.coerce(t) for t in tests)
        children = list(children)

        with self._lock:
            if fact_memory is None and token_parent is None:
                logger.warning("Refusing to register a join with neither parent")
                raise ConfigurationError("A join needs a fact memory, a token parent, or both")
            if fact_memory is not None:
                self._require_kind(fact_memory, {NodeKind.FACT_MEMORY}, "join fact parent")
            if token_parent is not None:
                self._require_kind(
                    token_parent, {NodeKind.TOKEN_MEMORY, NodeKind.ADAPTER}, "join token parent"
                )
            for child in children:
                self._require_kind(child, ALLOWED_CHILDREN[NodeKind.JOIN], "join child")
            if len(set(children)) != len(children):
                raise ConfigurationError(f"Join children contain duplicates: {children}")

            parent_width = self._width_of(token_parent)
            self._check_tests(tests, parent_width)
            width = parent_width + 1 if parent_width is not None else None

            # Validate every width this join would settle before touching the graph
            assignments = self._plan_widths(children, width) if width is not None else []

            node_id = self._append(lambda i: JoinNode(
                id=i,
                fact_memory=fact_memory,
                token_parent=token_parent,
                tests=tests,
                width=width,
            ))
            if fact_memory is not None:
                self._link(fact_memory, node_id)
            if token_parent is not None:
                self._link(token_parent, node_id)
            for child in children:
                self._link(node_id, child)
            self._apply_widths(assignments)

        if fact_memory is None or token_parent is None:
            missing = "fact" if fact_memory is None else "token"
            logger.warning(f"Join #{node_id} has no {missing} parent; that side is always empty")
        logger.debug(
            f"Registered join #{node_id} (fact=#{fact_memory}, token=#{token_parent}, "
            f"tests=[{'; '.join(str(t) for t in tests)}])"
        )
        return node_id

    def add_child(self, parent: NodeId, child: NodeId) -> None:
        """Wire an existing node below another.

        Joins and adapters are wired by ``register_join`` and
        ``add_adapter`` only, so both of their parents are always set.
        """
        with self._lock:
            parent_node = self.node(parent)
            child_node = self.node(child)
            if child_node.kind in (NodeKind.JOIN, NodeKind.ADAPTER, NodeKind.ROOT):
                raise ConfigurationError(
                    f"Cannot attach {child_node.kind.value} #{child} with add_child"
                )
            allowed = ALLOWED_CHILDREN[parent_node.kind]
            if child_node.kind not in allowed:
                raise ConfigurationError(
                    f"{parent_node.kind.value} #{parent} cannot forward to "
                    f"{child_node.kind.value} #{child}"
                )
            assignments = []
            if parent_node.kind is NodeKind.JOIN and parent_node.width is not None:
                assignments = self._plan_widths([child], parent_node.width)
            self._link(parent, child)
            self._apply_widths(assignments)

    # ------------------------------------------------------------------ #
    # Fact insertion
    # ------------------------------------------------------------------ #

    def insert(self, fact: Union[Fact, tuple, list]) -> None:
        """Insert one fact and propagate it through the whole network.

        Exceptions raised by terminal actions are not caught. Before one
        propagates, every memory entry stored during this insert is
        removed again, so retrying the same fact reaches the nodes the
        failed attempt never got to. Actions that already ran are not
        undone and will run again on retry.
        """
        fact = Fact.coerce(fact)
        with self._lock:
            self._inserted += 1
            logger.debug(f"Inserting {fact}")
            journal: list = []
            self._journals.append(journal)
            try:
                self.activate_fact(ROOT, fact)
            except BaseException:
                self._journals.pop()
                self._roll_back(journal)
                logger.debug(f"Insert of {fact} failed; rolled back {len(journal)} memory entries")
                raise
            self._journals.pop()
            if self._journals:
                self._journals[-1].extend(journal)

    def insert_many(self, facts: Iterable[Union[Fact, tuple, list]]) -> None:
        for fact in facts:
            self.insert(fact)

    def remember(self, node: Node, item: Union[Fact, Token]) -> bool:
        """Store ``item`` in a memory-like node under the duplicate policy.

        Returns False when the item is a duplicate that must not be forwarded.
        """
        if not node.memory.remember(item, self.duplicate_policy):
            return False
        if self._journals:
            self._journals[-1].append((node.memory, item))
        return True

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    def activate_fact(self, node_id: NodeId, fact: Fact) -> None:
        node = self._nodes[node_id]
        handler = _FACT_HANDLERS.get(node.kind)
        if handler is None:
            raise ReteError(f"{node.kind.value} #{node_id} does not accept facts")
        handler(self, node, fact)

    def activate_token(self, node_id: NodeId, token: Token) -> None:
        node = self._nodes[node_id]
        handler = _TOKEN_HANDLERS.get(node.kind)
        if handler is None:
            raise ReteError(f"{node.kind.value} #{node_id} does not accept tokens")
        handler(self, node, token)

    # ------------------------------------------------------------------ #
    # Inspection
    # ------------------------------------------------------------------ #

    def dump(self, node_id: NodeId = ROOT) -> str:
        from rete.network.diagnostics import dump
        return dump(self, node_id)

    def describe(self) -> list[dict]:
        from rete.network.diagnostics import describe
        return describe(self)

    def __repr__(self) -> str:
        return (
            f"Network(nodes={len(self._nodes)}, "
            f"duplicate_policy={self.duplicate_policy.value}, inserted={self._inserted})"
        )

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _roll_back(self, journal: list) -> None:
        for memory, item in reversed(journal):
            memory.forget(item)

    def _append(self, factory: Callable[[NodeId], Node]) -> NodeId:
        if self._inserted:
            logger.warning(
                f"Adding a node after {self._inserted} insertions; "
                "it will not see facts inserted earlier"
            )
        node_id = len(self._nodes)
        self._nodes.append(factory(node_id))
        return node_id

    def _require_kind(self, node_id: NodeId, kinds: set, role: str) -> Node:
        node = self.node(node_id)
        if node.kind not in kinds:
            expected = ", ".join(sorted(k.value for k in kinds))
            logger.warning(f"Rejected {node.kind.value} #{node_id} as {role}")
            raise ConfigurationError(
                f"Node #{node_id} is a {node.kind.value}; {role} must be one of: {expected}"
            )
        return node

    def _link(self, parent: NodeId, child: NodeId) -> None:
        parent_node = self._nodes[parent]
        child_kind = self._nodes[child].kind
        if child_kind not in ALLOWED_CHILDREN[parent_node.kind]:
            raise ConfigurationError(
                f"{parent_node.kind.value} #{parent} cannot forward to {child_kind.value} #{child}"
            )
        if child in parent_node.children:
            raise ConfigurationError(f"Node #{child} is already a child of #{parent}")
        parent_node.children.append(child)
        if parent_node.kind is NodeKind.FACT_MEMORY:
            self._order_fact_memory_children(parent)

    def _width_of(self, node_id: Optional[NodeId]) -> Optional[int]:
        if node_id is None:
            return None
        return self._nodes[node_id].width

    @staticmethod
    def _check_tests(tests: tuple, parent_width: Optional[int]) -> None:
        if parent_width is None:
            return
        for test in tests:
            if test.token_index >= parent_width:
                raise ConfigurationError(
                    f"Join test '{test}' refers to token index {test.token_index}, "
                    f"but the token parent produces tokens of length {parent_width}"
                )

    def _plan_widths(self, children: Sequence[NodeId], width: int) -> list[tuple[Node, int]]:
        """Work out the token widths implied downstream of a join.

        Returns (node, width) pairs for nodes whose width is not yet known;
        raises if a known width conflicts or a join test would go out of range.
        """
        plan: list[tuple[Node, int]] = []
        pending = [(child, width) for child in children]
        planned: dict[NodeId, int] = {}
        while pending:
            node_id, w = pending.pop()
            node = self._nodes[node_id]
            if node.kind is NodeKind.TERMINAL:
                continue
            known = planned.get(node_id, node.width)
            if known is not None:
                if known != w:
                    raise ConfigurationError(
                        f"{node.kind.value} #{node_id} would receive tokens of length {w} "
                        f"and {known}"
                    )
                continue
            planned[node_id] = w
            plan.append((node, w))
            if node.kind is NodeKind.TOKEN_MEMORY:
                for join_id in node.children:
                    join = self._nodes[join_id]
                    if join.kind is NodeKind.JOIN:
                        self._check_tests(join.tests, w)
                        pending.append((join_id, w + 1))
            elif node.kind is NodeKind.JOIN:
                pending.extend((child, w) for child in node.children)
        return plan

    def _apply_widths(self, plan: list[tuple[Node, int]]) -> None:
        touched = set()
        for node, width in plan:
            node.width = width
            if node.kind is NodeKind.JOIN and node.fact_memory is not None:
                touched.add(node.fact_memory)
        for memory_id in touched:
            self._order_fact_memory_children(memory_id)

    def _order_fact_memory_children(self, memory_id: NodeId) -> None:
        """Keep a fact memory's children deepest-join-first.

        A fact that reaches a join through its fact side must be joined
        before the same fact can show up in that join's token parent.
        Joins of unknown width come after known ones and adapters go last;
        ties keep wiring order.
        """
        memory = self._nodes[memory_id]

        def depth(child_id: NodeId) -> int:
            child = self._nodes[child_id]
            if child.kind is NodeKind.ADAPTER:
                return 0
            return child.width if child.width is not None else 1

        memory.children.sort(key=depth, reverse=True)
