"""Unit tests for incremental relaxation and strategy selection."""

import pytest

from capmesh_ai.engine.planning import (
    EdgeCentricRelaxation,
    Hyperedge,
    HyperedgeUpdate,
    LabelState,
    PathCentricRelaxation,
    StrategySelector,
    UpdateKind,
)
from capmesh_ai.engine.planning.hypergraph import build_hypergraph, diff_hyperedges


def _edge(tail, head, cost, edge_id=None):
    tail = frozenset(tail)
    head = frozenset(head)
    return Hyperedge(edge_id or f"{'+'.join(sorted(tail))}->{'+'.join(sorted(head))}", tail, head, cost)


BASE = [
    _edge({"s"}, {"a"}, 1.0),
    _edge({"a"}, {"b"}, 1.0),
    _edge({"b"}, {"g"}, 1.0),
    _edge({"s"}, {"c"}, 2.5),
    _edge({"c"}, {"g"}, 1.0),
    _edge({"a", "c"}, {"d"}, 4.0),
]

EDITS = [
    [HyperedgeUpdate(UpdateKind.increase, _edge({"a"}, {"b"}, 3.0), 1.0)],
    [HyperedgeUpdate(UpdateKind.decrease, _edge({"s"}, {"c"}, 0.5), 2.5)],
    [HyperedgeUpdate(UpdateKind.remove, _edge({"s"}, {"a"}, 1.0), 1.0)],
    [HyperedgeUpdate(UpdateKind.add, _edge({"g"}, {"d"}, 0.1))],
    [HyperedgeUpdate(UpdateKind.decrease, _edge({"a"}, {"b"}, 0.2), 1.0)],
]


def _apply(strategy, state, hypergraph, updates):
    work = hypergraph.copy(version=hypergraph.version + 1)
    for update in updates:
        work.apply(update)
        state.hypergraph = work
        strategy.apply(state, update)
    state.version = work.version
    return work


class TestRelaxationStrategies:
    @pytest.mark.parametrize("strategy", [EdgeCentricRelaxation(), PathCentricRelaxation()], ids=lambda s: s.name)
    @pytest.mark.parametrize("edit", range(len(EDITS)))
    def test_single_edit_matches_full_recompute(self, strategy, edit):
        hg = build_hypergraph(BASE, 1)
        state = LabelState({"s"}, hg)
        state.compute()

        work = _apply(strategy, state, hg, EDITS[edit])

        fresh = LabelState({"s"}, work)
        fresh.compute()
        assert state.dist == pytest.approx(fresh.dist)

    @pytest.mark.parametrize("strategy", [EdgeCentricRelaxation(), PathCentricRelaxation()], ids=lambda s: s.name)
    def test_edit_sequence_matches_full_recompute(self, strategy):
        hg = build_hypergraph(BASE, 1)
        state = LabelState({"s"}, hg)
        state.compute()
        for updates in EDITS:
            hg = _apply(strategy, state, hg, updates)

        fresh = LabelState({"s"}, hg)
        fresh.compute()
        assert state.dist == pytest.approx(fresh.dist)
        # Every tree link must use a live hyperedge.
        assert all(edge_id in hg.edges for _, edge_id in state.pred.values())

    def test_or_tail_reached_from_either_member(self):
        hg = build_hypergraph(BASE, 1)
        state = LabelState({"c"}, hg)
        state.compute()
        assert state.dist["d"] == pytest.approx(4.0)
        assert state.pred["d"] == ("c", "a+c->d")


class TestDiff:
    def test_removals_come_first(self):
        old = {e.id: e for e in BASE}
        new = dict(old)
        del new["s->a"]
        new["s->c"] = _edge({"s"}, {"c"}, 9.0)
        new["x->y"] = _edge({"x"}, {"y"}, 1.0)

        updates = diff_hyperedges(old, new)

        assert updates[0].kind is UpdateKind.remove
        kinds = {u.edge.id: u.kind for u in updates}
        assert kinds == {"s->a": UpdateKind.remove, "s->c": UpdateKind.increase, "x->y": UpdateKind.add}
        increase = next(u for u in updates if u.kind is UpdateKind.increase)
        assert increase.old_cost == 2.5


class TestStrategySelector:
    def test_defaults_to_edge_centric_until_enough_samples(self):
        selector = StrategySelector(window=8)
        for _ in range(3):
            selector.record(True, 0.1)
        assert selector.choose() is selector.edge_centric

    def test_hot_path_edits_switch_to_path_centric(self):
        selector = StrategySelector(window=8)
        for _ in range(4):
            selector.record(True, 0.1)
        assert selector.choose() is selector.path_centric

        for _ in range(8):
            selector.record(False, 0.1)
        assert selector.choose() is selector.edge_centric
        assert selector.hit_rate() == (0.0, pytest.approx(0.1))
