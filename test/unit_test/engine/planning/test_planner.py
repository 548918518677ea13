"""Unit tests for the hyperpath planner."""

import pytest

from capmesh_ai.core.config import PlannerConfig
from capmesh_ai.engine.errors import InvalidInputError
from capmesh_ai.engine.graph import GraphStore
from capmesh_ai.engine.planning import HyperpathPlanner
from capmesh_ai.engine.schemas import EdgeKind, EdgeSource, NodeKind, PlanStatus, StructureEdge

PROVIDES_COST = 1 / 0.7


class TickingClock:
    """Returns 0, 1, 2, ... on successive calls."""

    def __init__(self) -> None:
        self.now = -1.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


def _chain_store(*nodes: str) -> GraphStore:
    store = GraphStore()
    with store.transaction() as tx:
        for n in nodes:
            tx.upsert_node(n, NodeKind.tool)
        for a, b in zip(nodes, nodes[1:]):
            tx.add_edge(a, b, EdgeKind.provides)
    return store


class TestSuggestPath:
    """Test HyperpathPlanner.suggest_path."""

    def test_found_along_chain(self):
        planner = HyperpathPlanner(_chain_store("s", "a", "b", "g"))

        result = planner.suggest_path("g", ["s"])

        assert result.status is PlanStatus.found
        assert [step.node_id for step in result.plan.steps] == ["s", "a", "b", "g"]
        assert result.plan.total_cost == pytest.approx(3 * PROVIDES_COST)
        assert result.graph_version == 1

    def test_cheapest_of_two_routes(self):
        store = _chain_store("s", "a", "g")
        with store.transaction() as tx:
            tx.upsert_node("b", NodeKind.tool)
            tx.add_edge("s", "b", EdgeKind.provides, EdgeSource.template)
            tx.add_edge("b", "g", EdgeKind.provides, EdgeSource.template)
        result = HyperpathPlanner(store).suggest_path("g", ["s"])
        assert [step.node_id for step in result.plan.steps] == ["s", "a", "g"]

    def test_goal_among_starts(self):
        result = HyperpathPlanner(_chain_store("s", "g")).suggest_path("s", ["g", "s"])
        assert result.status is PlanStatus.found
        assert [step.node_id for step in result.plan.steps] == ["s"]
        assert result.plan.total_cost == 0.0

    def test_unreachable_goal(self):
        store = _chain_store("s", "a")
        store.add_node("island", NodeKind.tool)
        result = HyperpathPlanner(store).suggest_path("island", ["s"])
        assert result.status is PlanStatus.not_found
        assert result.plan is None

    def test_unknown_goal_and_starts(self):
        planner = HyperpathPlanner(_chain_store("s", "g"))
        assert planner.suggest_path("nowhere", ["s"]).status is PlanStatus.not_found
        assert planner.suggest_path("g", ["nowhere"]).status is PlanStatus.not_found

    def test_rejects_bad_arguments(self):
        planner = HyperpathPlanner(_chain_store("s", "g"))
        with pytest.raises(InvalidInputError):
            planner.suggest_path("g", [])
        with pytest.raises(InvalidInputError):
            planner.suggest_path("g", ["s"], deadline_seconds=-1)

    def test_sequence_edges_are_not_traversable(self):
        store = GraphStore()
        with store.transaction() as tx:
            tx.upsert_node("s", NodeKind.tool)
            tx.upsert_node("g", NodeKind.tool)
            tx.add_edge("s", "g", EdgeKind.sequence)
        assert HyperpathPlanner(store).suggest_path("g", ["s"]).status is PlanStatus.not_found


class TestDeadline:
    def test_partial_plan_is_a_settled_prefix(self):
        planner = HyperpathPlanner(_chain_store("s", "a", "b", "g"), clock=TickingClock())

        # Two pops fit before the deadline: s, then a.
        result = planner.suggest_path("g", ["s"], deadline_seconds=3)

        assert result.status is PlanStatus.partial
        assert [step.node_id for step in result.plan.steps] == ["s", "a"]
        assert result.plan.total_cost == pytest.approx(PROVIDES_COST)
        assert planner.cached_start_sets() == []

    def test_zero_deadline_returns_empty_partial(self):
        planner = HyperpathPlanner(_chain_store("s", "a", "g"), clock=TickingClock())
        result = planner.suggest_path("g", ["s"], deadline_seconds=0)
        assert result.status is PlanStatus.partial
        assert result.plan is None

    def test_completed_labels_are_cached(self):
        planner = HyperpathPlanner(_chain_store("s", "a", "g"))
        planner.suggest_path("g", ["s"])
        assert planner.cached_start_sets() == [frozenset({"s"})]

    def test_cache_is_bounded(self):
        store = _chain_store("a", "b", "c", "d")
        planner = HyperpathPlanner(store, PlannerConfig(max_cached_states=2))
        for start in ("a", "b", "c"):
            planner.suggest_path("d", [start])
        assert planner.cached_start_sets() == [frozenset({"b"}), frozenset({"c"})]


class TestCapabilities:
    @pytest.fixture
    def store(self):
        store = GraphStore()
        with store.transaction() as tx:
            tx.upsert_node("x", NodeKind.tool)
            tx.upsert_node("y", NodeKind.tool)
            tx.upsert_node(
                "cap",
                NodeKind.capability,
                members=["x", "y"],
                structure=[StructureEdge(source="x", target="y", kind=EdgeKind.provides)],
            )
        return store

    def test_capability_crossed_as_a_unit(self, store):
        result = HyperpathPlanner(store).suggest_path("y", ["x"])
        assert result.status is PlanStatus.found
        assert [(s.node_id, s.via) for s in result.plan.steps] == [("x", None), ("y", "cap")]
        assert result.plan.total_cost == pytest.approx(1.0)

    def test_internal_structure_edges_are_tagged(self, store):
        planner = HyperpathPlanner(store)
        edge = planner.hyperedge("cap:x->y")
        assert edge is not None
        assert edge.via == "cap"
        assert edge.cost == pytest.approx(1 / (0.7 * 0.5))

    def test_any_member_opens_an_unstructured_capability(self):
        store = GraphStore()
        with store.transaction() as tx:
            for n in ("x", "y"):
                tx.upsert_node(n, NodeKind.tool)
            tx.upsert_node("bundle", NodeKind.capability, members=["x", "y"])
        planner = HyperpathPlanner(store)
        assert planner.hyperedge("bundle").tail == frozenset({"x", "y"})
        assert planner.suggest_path("bundle", ["y"]).status is PlanStatus.found

    def test_next_step_lists_one_hop_cheapest_first(self, store):
        candidates = HyperpathPlanner(store).next_step(["x"])
        assert [(c.node_id, c.via) for c in candidates] == [("cap", "cap"), ("y", "cap")]
        assert all(c.source == "x" for c in candidates)


class TestIncrementalUpdates:
    """Cached labels must match a fresh computation after graph edits."""

    @staticmethod
    def _costs(planner: HyperpathPlanner, nodes, start: str):
        out = {}
        for n in nodes:
            result = planner.suggest_path(n, [start], deadline_seconds=60)
            out[n] = result.plan.total_cost if result.status is PlanStatus.found else None
        return out

    def test_edits_follow_the_store(self):
        store = GraphStore()
        nodes = ("s", "a", "b", "c", "g")
        with store.transaction() as tx:
            for n in nodes:
                tx.upsert_node(n, NodeKind.tool)
            tx.add_edge("s", "a", EdgeKind.provides)
            tx.add_edge("a", "g", EdgeKind.provides, EdgeSource.template)
            tx.add_edge("s", "b", EdgeKind.provides, EdgeSource.inferred)
            tx.add_edge("b", "g", EdgeKind.provides, EdgeSource.inferred)
            tx.add_edge("b", "c", EdgeKind.provides)
        planner = HyperpathPlanner(store)
        self._costs(planner, nodes, "s")

        store.add_edge("a", "g", EdgeKind.provides, EdgeSource.observed)  # cheaper
        store.add_edge("s", "b", EdgeKind.provides, EdgeSource.template)  # dearer
        store.remove_edge("s", "a", EdgeKind.provides)
        store.add_edge("c", "g", EdgeKind.provides)

        assert planner.cached_start_sets() == [frozenset({"s"})]
        fresh = HyperpathPlanner(store)
        cached = self._costs(planner, nodes, "s")
        expected = self._costs(fresh, nodes, "s")
        assert cached.keys() == expected.keys()
        for n in nodes:
            assert (cached[n] is None) == (expected[n] is None)
            if expected[n] is not None:
                assert cached[n] == pytest.approx(expected[n])
        assert cached["a"] is None
