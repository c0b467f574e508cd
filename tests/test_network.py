"""Tests for rete.network.engine - end-to-end matching behaviour."""

import itertools
import logging
import random
import threading
from collections import Counter

import pytest

from rete.blocks import SAMPLE_FACTS, build_blocks_network
from rete.errors import ConfigurationError
from rete.models import DuplicatePolicy, Fact, JoinTest, Token
from rete.network import Network, NodeKind

B1_ON_B2 = Fact("b1", "on", "b2")
B2_LEFT_OF_B3 = Fact("b2", "left_of", "b3")
B3_RED = Fact("b3", "color", "red")


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, name, token):
        self.calls.append((name, token))

    @property
    def tokens(self):
        return [token for _, token in self.calls]


@pytest.fixture
def recorder():
    return Recorder()


def _expected_blocks_tokens(facts):
    """Brute-force evaluation of (x on y) (y left_of z) (z color red)."""
    facts = list(dict.fromkeys(facts))
    return {
        Token((f1, f2, f3))
        for f1, f2, f3 in itertools.product(facts, repeat=3)
        if f1.attribute == "on"
        and f2.attribute == "left_of"
        and f3.attribute == "color" and f3.value == "red"
        and f2.identifier == f1.value
        and f3.identifier == f2.value
    }


def _chain_network(recorder, length):
    """(a on b) (b on c) ... built from a single fact memory on both join sides."""
    network = Network()
    on = network.add_fact_memory(network.add_condition(network.root, ("attribute", "==", "on")))
    parent = network.add_adapter(on)
    for index in range(length - 1):
        last = index == length - 2
        child = network.add_terminal("chain", recorder) if last else network.add_token_memory()
        network.register_join(
            fact_memory=on,
            token_parent=parent,
            tests=[JoinTest("identifier", "==", index, "value")],
            children=[child],
        )
        parent = child
    return network


class TestReferenceScenario:
    def test_fires_once_in_order(self, recorder):
        network = build_blocks_network(recorder)
        network.insert_many([B1_ON_B2, B2_LEFT_OF_B3, B3_RED])
        assert recorder.tokens == [Token((B1_ON_B2, B2_LEFT_OF_B3, B3_RED))]

    def test_fires_once_in_reverse_order(self, recorder):
        network = build_blocks_network(recorder)
        network.insert_many([B3_RED, B2_LEFT_OF_B3, B1_ON_B2])
        assert recorder.tokens == [Token((B1_ON_B2, B2_LEFT_OF_B3, B3_RED))]

    def test_negative_scenario(self, recorder):
        network = build_blocks_network(recorder)
        network.insert_many([Fact("b2", "on", "table"), Fact("b3", "left_of", "b4")])
        assert recorder.calls == []
        token_memory = network.nodes_of_kind(NodeKind.TOKEN_MEMORY)[0]
        assert token_memory.tokens == []

    def test_sample_facts(self, recorder):
        network = build_blocks_network(recorder)
        network.insert_many(SAMPLE_FACTS)
        assert recorder.tokens == [Token((B1_ON_B2, B2_LEFT_OF_B3, B3_RED))]
        assert recorder.calls[0][0] == "Block on block left to red"

    def test_plain_triples_accepted(self, recorder):
        network = build_blocks_network(recorder)
        network.insert_many([("b1", "on", "b2"), ("b2", "left_of", "b3"), ("b3", "color", "red")])
        assert len(recorder.calls) == 1


class TestOrderIndependence:
    FACTS = [
        B1_ON_B2,
        B2_LEFT_OF_B3,
        B3_RED,
        Fact("b4", "on", "b2"),
        Fact("b1", "on", "b3"),
        Fact("b3", "left_of", "b5"),
    ]

    def test_all_permutations_fire_the_same_tokens(self):
        baseline = None
        for order in itertools.permutations(self.FACTS):
            recorder = Recorder()
            build_blocks_network(recorder).insert_many(order)
            fired = Counter(recorder.tokens)
            if baseline is None:
                baseline = fired
            assert fired == baseline
        assert baseline == Counter({
            Token((B1_ON_B2, B2_LEFT_OF_B3, B3_RED)): 1,
            Token((Fact("b4", "on", "b2"), B2_LEFT_OF_B3, B3_RED)): 1,
        })

    def test_memories_hold_the_same_contents(self):
        first, second = build_blocks_network(Recorder()), build_blocks_network(Recorder())
        first.insert_many(self.FACTS)
        second.insert_many(reversed(self.FACTS))
        for a, b in zip(first.nodes, second.nodes):
            if hasattr(a, "memory"):
                assert Counter(a.memory.items) == Counter(b.memory.items)


class TestConjunctiveCorrectness:
    @pytest.mark.parametrize("seed", range(5))
    def test_matches_brute_force(self, seed):
        rng = random.Random(seed)
        blocks = ["b1", "b2", "b3", "b4", "table"]
        candidates = (
            [Fact(x, "on", y) for x in blocks for y in blocks if x != y]
            + [Fact(x, "left_of", y) for x in blocks for y in blocks if x != y]
            + [Fact(x, "color", c) for x in blocks for c in ("red", "blue")]
        )
        facts = rng.sample(candidates, 20)

        recorder = Recorder()
        build_blocks_network(recorder).insert_many(facts)

        assert Counter(recorder.tokens) == Counter(_expected_blocks_tokens(facts))


class TestSelfJoin:
    def test_same_memory_on_both_sides_fires_once(self, recorder):
        network = _chain_network(recorder, 2)
        network.insert_many([Fact("b1", "on", "b2"), Fact("b2", "on", "table")])
        assert recorder.tokens == [Token((Fact("b1", "on", "b2"), Fact("b2", "on", "table")))]

    def test_fact_joined_with_itself_fires_once(self, recorder):
        network = _chain_network(recorder, 2)
        loop = Fact("b1", "on", "b1")
        network.insert(loop)
        assert recorder.tokens == [Token((loop, loop))]

    def test_three_deep_chain_in_every_order(self):
        facts = [Fact("b1", "on", "b2"), Fact("b2", "on", "b3"), Fact("b3", "on", "b4")]
        for order in itertools.permutations(facts):
            recorder = Recorder()
            _chain_network(recorder, 3).insert_many(order)
            assert recorder.tokens == [Token(tuple(facts))]

    def test_deeper_joins_activate_first(self, recorder):
        network = _chain_network(recorder, 3)
        on = network.nodes_of_kind(NodeKind.FACT_MEMORY)[0]
        kinds = [network.node(child).kind for child in on.children]
        widths = [network.node(child).width for child in on.children]
        assert kinds == [NodeKind.JOIN, NodeKind.JOIN, NodeKind.ADAPTER]
        assert widths == [3, 2, 1]


class TestDuplicateInsertion:
    def test_idempotent_fact_memory_side(self, recorder):
        network = build_blocks_network(recorder)
        network.insert_many(SAMPLE_FACTS)
        network.insert(B3_RED)
        assert len(recorder.calls) == 1
        red_memory = _memory_holding(network, B3_RED)
        assert red_memory.facts.count(B3_RED) == 1

    def test_idempotent_token_memory_side(self, recorder):
        network = build_blocks_network(recorder)
        network.insert_many(SAMPLE_FACTS)
        token_memory = network.nodes_of_kind(NodeKind.TOKEN_MEMORY)[0]
        before = list(token_memory.tokens)
        network.insert(B1_ON_B2)
        assert token_memory.tokens == before
        assert len(recorder.calls) == 1

    def test_cumulative_fact_memory_side(self, recorder):
        network = build_blocks_network(recorder, duplicate_policy=DuplicatePolicy.CUMULATIVE)
        network.insert_many(SAMPLE_FACTS)
        network.insert(B3_RED)
        assert len(recorder.calls) == 2
        assert _memory_holding(network, B3_RED).facts.count(B3_RED) == 2

    def test_cumulative_token_memory_side(self, recorder):
        network = build_blocks_network(recorder, duplicate_policy="cumulative")
        network.insert_many(SAMPLE_FACTS)
        token_memory = network.nodes_of_kind(NodeKind.TOKEN_MEMORY)[0]
        assert len(token_memory.tokens) == 2
        network.insert(B1_ON_B2)
        assert len(token_memory.tokens) == 3
        assert token_memory.tokens.count(Token((B1_ON_B2, B2_LEFT_OF_B3))) == 2
        assert len(recorder.calls) == 2


def _memory_holding(network, fact):
    """The fact memory behind the red-color condition chain."""
    for node in network.nodes_of_kind(NodeKind.FACT_MEMORY):
        if fact in node.facts and all(f.value == "red" for f in node.facts):
            return node
    raise AssertionError(f"No red memory holds {fact}")


class TestNestedInsertion:
    @pytest.mark.parametrize("thread_safe", [True, False])
    def test_action_may_insert_facts(self, thread_safe):
        derived = Recorder()
        holder = {}

        def mark(name, token):
            holder["network"].insert(Fact(token[0].identifier, "marked", True))

        network = build_blocks_network(mark, thread_safe=thread_safe)
        holder["network"] = network
        marked = network.add_adapter(
            network.add_fact_memory(network.add_condition(network.root, ("attribute", "==", "marked")))
        )
        network.add_child(marked, network.add_terminal("marked", derived))

        network.insert_many(SAMPLE_FACTS)

        assert derived.tokens == [Token.of(Fact("b1", "marked", True))]
        assert network.inserted_count == len(SAMPLE_FACTS) + 1

    def test_actions_run_under_the_network_lock(self):
        acquired = []

        def try_lock_elsewhere(name, token):
            thread = threading.Thread(target=lambda: acquired.append(network._lock.acquire(blocking=False)))
            thread.start()
            thread.join()

        network = Network()
        adapter = network.add_adapter(network.add_fact_memory(network.root))
        network.add_child(adapter, network.add_terminal("locked", try_lock_elsewhere))
        network.insert(B1_ON_B2)

        assert acquired == [False]


class FailOnce:
    """Action that raises on its first ``failures`` calls, then records."""

    def __init__(self, failures=1):
        self.failures = failures
        self.calls = []

    def __call__(self, name, token):
        if self.failures:
            self.failures -= 1
            raise RuntimeError(f"{name} failed")
        self.calls.append((name, token))


class TestFailedInsertion:
    def test_retry_reaches_children_skipped_by_failure(self, recorder):
        network = Network()
        memory = network.add_fact_memory(network.root)
        first, second = network.add_adapter(memory), network.add_adapter(memory)
        network.add_child(first, network.add_terminal("first", FailOnce()))
        network.add_child(second, network.add_terminal("second", recorder))

        with pytest.raises(RuntimeError):
            network.insert(B1_ON_B2)
        assert network.facts_in(memory) == []
        assert network.tokens_in(first) == network.tokens_in(second) == []

        network.insert(B1_ON_B2)
        assert recorder.tokens == [Token.of(B1_ON_B2)]
        assert network.facts_in(memory) == [B1_ON_B2]

    def test_failed_insert_leaves_memories_unchanged(self):
        action = FailOnce()
        network = build_blocks_network(action)
        network.insert_many([B1_ON_B2, B2_LEFT_OF_B3])
        before = [list(node.memory.items) for node in network.nodes if hasattr(node, "memory")]

        with pytest.raises(RuntimeError, match="Block on block left to red failed"):
            network.insert(B3_RED)

        after = [list(node.memory.items) for node in network.nodes if hasattr(node, "memory")]
        assert after == before
        network.insert(B3_RED)
        assert [token for _, token in action.calls] == [Token((B1_ON_B2, B2_LEFT_OF_B3, B3_RED))]

    def test_cumulative_rollback_keeps_earlier_copies(self):
        action = FailOnce(failures=0)
        network = Network(duplicate_policy=DuplicatePolicy.CUMULATIVE)
        memory = network.add_fact_memory(network.root)
        network.add_child(network.add_adapter(memory), network.add_terminal("r", action))

        network.insert(B1_ON_B2)
        action.failures = 1
        with pytest.raises(RuntimeError):
            network.insert(B1_ON_B2)
        assert network.facts_in(memory) == [B1_ON_B2]

        network.insert(B1_ON_B2)
        assert network.facts_in(memory) == [B1_ON_B2, B1_ON_B2]
        assert len(action.calls) == 2

    def test_nested_failure_rolls_back_the_outer_insert(self):
        holder = {}

        def derive(name, token):
            holder["network"].insert(Fact(token[0].identifier, "marked", True))

        network = Network()
        holder["network"] = network
        on = network.add_fact_memory(network.add_condition(network.root, ("attribute", "==", "on")))
        network.add_child(network.add_adapter(on), network.add_terminal("derive", derive))
        marked = network.add_fact_memory(network.add_condition(network.root, ("attribute", "==", "marked")))
        network.add_child(network.add_adapter(marked), network.add_terminal("marked", FailOnce()))

        with pytest.raises(RuntimeError):
            network.insert(B1_ON_B2)

        assert network.facts_in(on) == network.facts_in(marked) == []

    def test_caught_nested_failure_keeps_the_outer_insert(self):
        holder = {}
        errors = []

        def derive(name, token):
            try:
                holder["network"].insert(Fact(token[0].identifier, "marked", True))
            except RuntimeError as exc:
                errors.append(str(exc))

        network = Network()
        holder["network"] = network
        on = network.add_fact_memory(network.add_condition(network.root, ("attribute", "==", "on")))
        network.add_child(network.add_adapter(on), network.add_terminal("derive", derive))
        marked = network.add_fact_memory(network.add_condition(network.root, ("attribute", "==", "marked")))
        network.add_child(network.add_adapter(marked), network.add_terminal("marked", FailOnce()))

        network.insert(B1_ON_B2)

        assert errors == ["marked failed"]
        assert network.facts_in(on) == [B1_ON_B2]
        assert network.facts_in(marked) == []


class TestThreadSafety:
    def test_concurrent_inserts_match_sequential(self):
        facts = TestOrderIndependence.FACTS + SAMPLE_FACTS
        sequential = Recorder()
        build_blocks_network(sequential).insert_many(facts)

        concurrent = Recorder()
        network = build_blocks_network(concurrent)
        chunks = [facts[i::4] for i in range(4)]
        threads = [threading.Thread(target=network.insert_many, args=(chunk,)) for chunk in chunks]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert Counter(concurrent.tokens) == Counter(sequential.tokens)


class TestNetworkMisc:
    def test_unknown_node(self):
        with pytest.raises(ConfigurationError):
            Network().node(3)

    def test_bool_is_not_a_node_id(self):
        with pytest.raises(ConfigurationError):
            Network().node(True)

    def test_repr(self):
        network = Network()
        network.insert(("b1", "on", "b2"))
        assert repr(network) == "Network(nodes=1, duplicate_policy=idempotent, inserted=1)"

    def test_late_node_logs_warning(self, caplog):
        network = Network()
        network.insert(("b1", "on", "b2"))
        with caplog.at_level(logging.WARNING, logger="rete.network.engine"):
            network.add_fact_memory(network.root)
        assert "will not see facts inserted earlier" in caplog.text

    def test_refused_join_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="rete.network.engine"):
            with pytest.raises(ConfigurationError):
                Network().register_join()
        assert "neither parent" in caplog.text
