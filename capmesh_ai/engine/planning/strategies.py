"""Incremental relaxation strategies and the policy that picks between them.

Both strategies keep a :class:`LabelState` exact after one hyperedge edit;
they differ in how they find the region to re-price:

* :class:`EdgeCentricRelaxation` keeps no extra bookkeeping and, for an
  increase, finds the affected region by scanning predecessor links. It is
  cheap when edits rarely touch the current shortest-path tree.
* :class:`PathCentricRelaxation` walks the tree's children index to collect
  the affected subtree, and when an on-tree edge gets cheaper it shifts the
  whole subtree by the delta before relaxing outward. It pays off when edits
  concentrate on edges that already carry shortest paths.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Protocol, Set, Tuple

from .hypergraph import HyperedgeUpdate, UpdateKind
from .labels import LabelState

logger = logging.getLogger(__name__)


class RelaxationStrategy(Protocol):
    name: str

    def apply(self, state: LabelState, update: HyperedgeUpdate) -> None: ...


def _relax_edge(state: LabelState, update: HyperedgeUpdate) -> Set[str]:
    """Relax one cheaper or new hyperedge from its reached tail nodes."""
    edge = update.edge
    improved: Set[str] = set()
    for u in edge.tail:
        du = state.dist.get(u)
        if du is None:
            continue
        for v in edge.head:
            if v in state.sources:
                continue
            nd = du + edge.cost
            if nd < state.distance(v):
                state.dist[v] = nd
                state.set_pred(v, (u, edge.id))
                improved.add(v)
    return improved


class EdgeCentricRelaxation:
    name = "edge_centric"

    def apply(self, state: LabelState, update: HyperedgeUpdate) -> None:
        if update.kind in (UpdateKind.add, UpdateKind.decrease):
            state.propagate(_relax_edge(state, update))
            return
        affected = self._affected(state, update.edge.id)
        if affected:
            state.repair(affected)

    @staticmethod
    def _affected(state: LabelState, edge_id: str) -> Set[str]:
        affected = {v for v, (_, via) in state.pred.items() if via == edge_id}
        if not affected:
            return affected
        grew = True
        while grew:
            grew = False
            for v, (u, _) in state.pred.items():
                if u in affected and v not in affected:
                    affected.add(v)
                    grew = True
        return affected


class PathCentricRelaxation:
    name = "path_centric"

    def apply(self, state: LabelState, update: HyperedgeUpdate) -> None:
        edge_id = update.edge.id
        on_tree = [v for v, (_, via) in state.pred.items() if via == edge_id] if state.uses_edge(edge_id) else []
        if update.kind is UpdateKind.decrease and on_tree and update.old_cost is not None:
            delta = update.old_cost - update.edge.cost
            shifted = state.subtree(on_tree)
            for v in shifted:
                state.dist[v] -= delta
            state.propagate(shifted | _relax_edge(state, update))
            return
        if update.kind in (UpdateKind.add, UpdateKind.decrease):
            state.propagate(_relax_edge(state, update))
            return
        if on_tree:
            state.repair(state.subtree(on_tree))


class StrategySelector:
    """Chooses a strategy from recent edit locality.

    Each processed edit records whether it hit an on-tree hyperedge and the
    chance of that happening at random (tree hyperedges / all hyperedges).
    When the observed hit rate beats chance over the trailing window, edits
    are concentrating on hot paths and path-centric relaxation is used.
    """

    def __init__(self, window: int = 32, min_samples: int = 4) -> None:
        self._hits: Deque[Tuple[bool, float]] = deque(maxlen=window)
        self._min_samples = min_samples
        self.edge_centric = EdgeCentricRelaxation()
        self.path_centric = PathCentricRelaxation()

    def record(self, on_path: bool, chance: float) -> None:
        self._hits.append((on_path, chance))

    def hit_rate(self) -> Tuple[float, float]:
        if not self._hits:
            return 0.0, 0.0
        observed = sum(1 for hit, _ in self._hits if hit) / len(self._hits)
        chance = sum(c for _, c in self._hits) / len(self._hits)
        return observed, chance

    def choose(self) -> RelaxationStrategy:
        if len(self._hits) < self._min_samples:
            return self.edge_centric
        observed, chance = self.hit_rate()
        return self.path_centric if observed > chance else self.edge_centric
