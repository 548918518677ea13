"""Unit tests for edge weights and structural algorithms."""

import math

import pytest

from capmesh_ai.engine.graph import GraphStore
from capmesh_ai.engine.graph.algorithms import adamic_adar, causal_path, community_match
from capmesh_ai.engine.graph.weights import EDGE_KIND_WEIGHTS, SOURCE_MODIFIERS, edge_weight, planner_cost, promoted_source
from capmesh_ai.engine.schemas import EdgeKind, EdgeSource, NodeKind


class TestWeights:
    def test_observed_dominates_for_every_kind(self):
        for kind in EDGE_KIND_WEIGHTS:
            observed = edge_weight(kind, EdgeSource.observed)
            assert observed > edge_weight(kind, EdgeSource.inferred) > edge_weight(kind, EdgeSource.template)

    def test_planner_cost_is_reciprocal_weight(self):
        assert planner_cost(EdgeKind.provides, EdgeSource.template) == pytest.approx(1 / (0.7 * 0.5))

    @pytest.mark.parametrize(
        "source,count,expected",
        [
            (EdgeSource.inferred, 2, EdgeSource.inferred),
            (EdgeSource.inferred, 3, EdgeSource.observed),
            (EdgeSource.template, 10, EdgeSource.template),
        ],
    )
    def test_promotion(self, source, count, expected):
        assert promoted_source(source, count) is expected

    def test_modifier_table(self):
        assert SOURCE_MODIFIERS[EdgeSource.observed] == 1.0


class TestCausalPath:
    def test_ignores_non_causal_edges(self):
        store = GraphStore()
        with store.transaction() as tx:
            for n in ("a", "b", "c"):
                tx.upsert_node(n, NodeKind.tool)
            tx.add_edge("a", "b", EdgeKind.sequence)
            tx.add_edge("b", "c", EdgeKind.provides)
        snap = store.snapshot()

        assert causal_path(snap.out_adj, "a", "c") is None
        assert causal_path(snap.out_adj, "b", "c") == ["b", "c"]


class TestAdamicAdar:
    def test_shared_neighbour_weighting(self):
        store = GraphStore()
        with store.transaction() as tx:
            for n in ("a", "b", "hub", "leaf"):
                tx.upsert_node(n, NodeKind.tool)
            tx.add_edge("a", "hub", EdgeKind.sequence)
            tx.add_edge("b", "hub", EdgeKind.sequence)
            tx.add_edge("hub", "leaf", EdgeKind.sequence)
        snap = store.snapshot()

        # hub has degree 3 and is the only shared neighbour.
        assert adamic_adar(snap, "a", "b") == pytest.approx(1 / math.log(3))
        assert adamic_adar(snap, "a", "unknown") == 0.0


class TestCommunityMatch:
    def test_fraction_of_matching_candidates(self):
        communities = {"a": 0, "b": 0, "c": 1}
        assert community_match(communities, ["a", "c"], ["b"]) == pytest.approx(0.5)
        assert community_match(communities, ["a"], []) == 0.0
