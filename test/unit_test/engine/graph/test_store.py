"""Unit tests for the versioned graph store."""

from __future__ import annotations

import pytest

from capmesh_ai.engine.errors import CycleRejectedError, InvalidInputError, NodeNotFoundError
from capmesh_ai.engine.graph import GraphStore, snapshot_from_dict
from capmesh_ai.engine.schemas import Direction, EdgeKind, EdgeSource, NodeKind, StructureEdge


def _chain_store() -> GraphStore:
    store = GraphStore()
    with store.transaction() as tx:
        for n in ("A", "B", "C"):
            tx.upsert_node(n, NodeKind.tool)
        tx.add_edge("A", "B", EdgeKind.provides)
        tx.add_edge("B", "C", EdgeKind.provides)
    return store


class TestNodes:
    def test_add_node_bumps_version(self):
        store = GraphStore()
        assert store.version == 0
        store.add_node("a", "tool")
        assert store.version == 1
        assert "a" in store.snapshot()

    def test_unknown_kind_rejected(self):
        store = GraphStore()
        with pytest.raises(InvalidInputError):
            store.add_node("a", "gadget")
        assert store.version == 0

    def test_tool_cannot_have_members(self):
        store = GraphStore()
        store.add_node("a", "tool")
        with pytest.raises(InvalidInputError):
            store.add_node("t", "tool", members=["a"])

    def test_capability_structure_must_stay_inside_members(self):
        store = GraphStore()
        with store.transaction() as tx:
            tx.upsert_node("a", NodeKind.tool)
            tx.upsert_node("b", NodeKind.tool)
        bad = StructureEdge.model_validate({"from": "a", "to": "zzz", "kind": "provides"})
        with pytest.raises(InvalidInputError):
            store.add_node("cap", "capability", members=["a", "b"], structure=[bad])

    def test_kind_change_rejected(self):
        store = GraphStore()
        store.add_node("a", "tool")
        with pytest.raises(InvalidInputError):
            store.add_node("a", "capability")

    def test_embedding_replacement_publishes_new_snapshot(self):
        store = GraphStore()
        store.add_node("a", "tool", embedding=[1.0, 0.0])
        before = store.snapshot()
        store.update_embedding("a", [0.0, 1.0])
        after = store.snapshot()

        assert before.node("a").embedding.tolist() == [1.0, 0.0]
        assert after.node("a").embedding.tolist() == [0.0, 1.0]
        assert after.vector_index.query(after.node("a").embedding, 1)[0][0] == "a"

    def test_remove_node_drops_edges_and_membership(self):
        store = _chain_store()
        store.add_node("cap", "capability", members=["A", "B"])
        store.remove_node("B")
        snap = store.snapshot()

        assert "B" not in snap
        assert snap.edge_count == 0
        assert snap.node("cap").members == ("A",)
        assert snap.neighbors("A") == ()


class TestEdges:
    def test_edge_weight_and_cost(self):
        store = _chain_store()
        edge = store.snapshot().edge("A", "B", EdgeKind.provides)

        assert edge.weight == pytest.approx(0.7)
        assert edge.cost == pytest.approx(1 / 0.7)

    def test_observed_outweighs_template(self):
        store = GraphStore()
        for n in ("a", "b", "c"):
            store.add_node(n, "tool")
        observed = store.add_edge("a", "b", "provides", EdgeSource.observed)
        template = store.add_edge("a", "c", "provides", EdgeSource.template)

        assert observed.weight > template.weight
        assert observed.cost < template.cost

    def test_unknown_endpoint_raises(self):
        store = GraphStore()
        store.add_node("a", "tool")
        with pytest.raises(NodeNotFoundError):
            store.add_edge("a", "missing", "provides")

    def test_invalid_confidence_rejected(self):
        store = GraphStore()
        store.add_node("a", "tool")
        store.add_node("b", "tool")
        with pytest.raises(InvalidInputError):
            store.add_edge("a", "b", "sequence", confidence=1.5)


class TestAcyclicity:
    def test_cycle_rejected_and_snapshot_unchanged(self):
        store = _chain_store()
        before = store.snapshot()
        fingerprint = before.fingerprint()

        with pytest.raises(CycleRejectedError) as exc:
            store.add_edge("C", "A", EdgeKind.provides)

        assert exc.value.cycle == ["C", "A", "B", "C"]
        assert store.snapshot() is before
        assert store.snapshot().fingerprint() == fingerprint
        assert store.neighbors("A") == ("B",)

    def test_cycle_through_dependency_edges_rejected(self):
        store = GraphStore()
        for n in ("a", "b"):
            store.add_node(n, "tool")
        store.add_edge("a", "b", EdgeKind.dependency)
        with pytest.raises(CycleRejectedError):
            store.add_edge("b", "a", EdgeKind.provides)

    @pytest.mark.parametrize("kind", [EdgeKind.sequence, EdgeKind.contains, EdgeKind.conditional, EdgeKind.alternative])
    def test_non_causal_back_edges_allowed(self, kind):
        store = _chain_store()
        store.add_edge("C", "A", kind)
        assert store.snapshot().edge("C", "A", kind) is not None

    def test_failed_transaction_publishes_nothing(self):
        store = _chain_store()
        version = store.version
        with pytest.raises(CycleRejectedError):
            with store.transaction() as tx:
                tx.upsert_node("D", NodeKind.tool)
                tx.add_edge("C", "D", EdgeKind.provides)
                tx.add_edge("C", "A", EdgeKind.provides)

        assert store.version == version
        assert "D" not in store.snapshot()


class TestObservation:
    def test_inferred_edge_promoted_after_three_observations(self):
        store = GraphStore()
        store.add_node("a", "tool")
        store.add_node("b", "tool")

        tags = []
        for _ in range(3):
            with store.transaction() as tx:
                tags.append(tx.observe_edge("a", "b", EdgeKind.sequence).source_tag)

        assert tags == [EdgeSource.inferred, EdgeSource.inferred, EdgeSource.observed]
        assert store.snapshot().edge("a", "b", EdgeKind.sequence).observations == 3


class TestStructuralQueries:
    def test_neighbors_by_direction(self):
        store = _chain_store()

        assert store.neighbors("B", Direction.outgoing) == ("C",)
        assert store.neighbors("B", "in") == ("A",)
        assert set(store.neighbors("B")) == {"A", "C"}

    def test_neighbors_of_unknown_node(self):
        with pytest.raises(NodeNotFoundError):
            GraphStore().neighbors("nope")

    def test_density(self):
        store = _chain_store()
        assert store.density() == pytest.approx(2 / 6)
        assert GraphStore().density() == 0.0

    def test_density_counts_node_pairs_once(self):
        store = _chain_store()
        store.add_edge("A", "B", EdgeKind.sequence)
        assert store.density() == pytest.approx(2 / 6)

    def test_communities_split_disconnected_tools(self):
        store = GraphStore()
        with store.transaction() as tx:
            for n in ("a1", "a2", "a3", "b1", "b2", "b3"):
                tx.upsert_node(n, NodeKind.tool)
            for s, t in (("a1", "a2"), ("a2", "a3"), ("a1", "a3"), ("b1", "b2"), ("b2", "b3"), ("b1", "b3")):
                tx.add_edge(s, t, EdgeKind.sequence)
            tx.upsert_node("cap", NodeKind.capability, members=["a1", "b1"])

        assert store.community_of("a1") == store.community_of("a3")
        assert store.community_of("b1") == store.community_of("b2")
        assert store.community_of("a1") != store.community_of("b1")
        assert store.community_of("cap") is None

    def test_centrality_branches_on_kind(self):
        store = _chain_store()
        with store.transaction() as tx:
            tx.upsert_node("cap1", NodeKind.capability, members=["A", "B"])
            tx.upsert_node("cap2", NodeKind.capability, members=["B", "C"])

        assert store.centrality("C") == pytest.approx(1.0)
        for n in ("A", "B", "C", "cap1", "cap2"):
            assert 0.0 <= store.centrality(n) <= 1.0
        # Each capability overlaps the other, so hyperdegree contributes fully.
        assert store.centrality("cap1") >= 0.5


class TestSerialisation:
    def test_round_trip_preserves_content(self):
        store = _chain_store()
        store.add_node("cap", "capability", members=["A", "B"])
        snap = store.snapshot()

        restored = snapshot_from_dict(snap.to_dict())

        assert restored.fingerprint() == snap.fingerprint()

    def test_dangling_and_cyclic_edges_skipped(self):
        data = _chain_store().snapshot().to_dict()
        data["edges"].append({"source": "A", "target": "ghost", "kind": "provides"})
        data["edges"].append({"source": "C", "target": "A", "kind": "provides"})

        restored = snapshot_from_dict(data)

        assert restored.edge_count == 2
        assert restored.edge("C", "A", EdgeKind.provides) is None
