"""Incremental hyperpath planner.

The planner follows the graph store: every published snapshot is turned into
a planner hypergraph, diffed against the previous one, and the resulting
hyperedge edits are pushed through each cached label state with the strategy
the :class:`StrategySelector` picks. Only that writer path mutates planner
state, serialised by a lock; queries read the last published hypergraph and
label views without locking.

Queries for a start set with no cached labels run a deadline-bounded
Dijkstra. When it finishes the labels are cached; when the deadline passes
the best partial plan toward the goal is returned instead.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Set

from ...core.config import PlannerConfig
from ..errors import InvalidInputError
from ..graph.model import GraphSnapshot
from ..graph.store import GraphStore
from ..schemas.domain import Plan, PlanResult, PlanStatus, PlanStep
from .hypergraph import (
    Hyperedge,
    HyperedgeUpdate,
    Hypergraph,
    UpdateKind,
    build_hypergraph,
    derive_hyperedges,
    diff_hyperedges,
)
from .labels import DeadlineExceeded, LabelState, LabelView
from .strategies import StrategySelector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NextStepCandidate:
    node_id: str
    via: Optional[str]
    cost: float
    source: str


class HyperpathPlanner:
    def __init__(
        self,
        store: GraphStore,
        config: Optional[PlannerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._config = config or PlannerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._states: "OrderedDict[FrozenSet[str], LabelState]" = OrderedDict()
        self._views: Dict[FrozenSet[str], LabelView] = {}
        self.selector = StrategySelector(window=self._config.strategy_window)
        snapshot = store.snapshot()
        self._hypergraph = build_hypergraph(
            derive_hyperedges(snapshot, self._config.capability_base_cost).values(), snapshot.version
        )
        store.subscribe(self.on_snapshot)

    # ---------------------------------------------------------------- writer
    @property
    def hypergraph(self) -> Hypergraph:
        return self._hypergraph

    def on_snapshot(self, snapshot: GraphSnapshot) -> None:
        """Re-price cached labels for a newly published graph version."""
        with self._lock:
            current = self._hypergraph
            if snapshot.version == current.version:
                return
            updates = diff_hyperedges(current.edges, derive_hyperedges(snapshot, self._config.capability_base_cost))
            work = current.copy(version=snapshot.version)
            for update in updates:
                work.apply(update)
                self._apply_to_states(work, update)
            for key, state in self._states.items():
                state.version = work.version
                self._views[key] = state.view()
            self._hypergraph = work
            if updates:
                logger.debug(
                    f"Planner synced to graph version {snapshot.version}: {len(updates)} hyperedge edits, "
                    f"{len(self._states)} cached start sets"
                )

    def _apply_to_states(self, work: Hypergraph, update: HyperedgeUpdate) -> None:
        total = max(len(work.edges), 1)
        for state in self._states.values():
            state.hypergraph = work
            on_path = update.kind is not UpdateKind.add and state.uses_edge(update.edge.id)
            self.selector.record(on_path, len(state.tree_edges) / total)
            self.selector.choose().apply(state, update)

    def hyperedge(self, edge_id: str) -> Optional[Hyperedge]:
        return self._hypergraph.edges.get(edge_id)

    # --------------------------------------------------------------- readers
    def suggest_path(
        self,
        goal: str,
        start_nodes: Sequence[str],
        deadline_seconds: Optional[float] = None,
    ) -> PlanResult:
        """Lowest-cost hyperpath from any start node to ``goal``.

        Returns ``found`` with the full plan, ``partial`` with the best prefix
        toward the goal when the deadline passes first, or ``not_found``.

        Raises:
            InvalidInputError: If no start node is given or the deadline is negative.
        """
        if not start_nodes:
            raise InvalidInputError("suggest_path needs at least one start node")
        if deadline_seconds is None:
            deadline_seconds = self._config.default_deadline_seconds
        if deadline_seconds < 0:
            raise InvalidInputError(f"deadline must be >= 0, got {deadline_seconds}")
        expires_at = self._clock() + deadline_seconds

        hg = self._hypergraph
        snapshot = self._store.snapshot()
        starts = frozenset(s for s in start_nodes if s in snapshot)
        if goal not in snapshot:
            return PlanResult(status=PlanStatus.not_found, graph_version=hg.version, reason=f"unknown goal '{goal}'")
        if not starts:
            return PlanResult(status=PlanStatus.not_found, graph_version=hg.version, reason="no known start node")
        if goal in starts:
            return self._result(PlanStatus.found, [(goal, None)], 0.0, hg)

        view = self._views.get(starts)
        if view is not None and view.version == hg.version:
            return self._from_view(view, goal, hg)

        hops = hg.reverse_hops(goal)
        if not starts & hops.keys():
            return PlanResult(status=PlanStatus.not_found, graph_version=hg.version, reason="goal unreachable")

        state = LabelState(starts, hg)
        try:
            state.compute(deadline_check=lambda: self._clock() >= expires_at)
        except DeadlineExceeded:
            return self._partial(state, hops, hg)
        view = self._cache(state, hg)
        return self._from_view(view, goal, hg)

    def next_step(self, context_nodes: Sequence[str]) -> List[NextStepCandidate]:
        """Nodes one hyperedge hop from ``context_nodes``, cheapest first."""
        hg = self._hypergraph
        context = set(context_nodes)
        best: Dict[str, NextStepCandidate] = {}
        for u in context_nodes:
            for edge in hg.outgoing(u):
                for v in edge.head:
                    if v in context:
                        continue
                    prior = best.get(v)
                    if prior is None or edge.cost < prior.cost:
                        best[v] = NextStepCandidate(v, edge.via, edge.cost, u)
        return sorted(best.values(), key=lambda c: (c.cost, c.node_id))

    def cached_start_sets(self) -> List[FrozenSet[str]]:
        return list(self._states)

    # --------------------------------------------------------------- helpers
    def _cache(self, state: LabelState, hg: Hypergraph) -> LabelView:
        view = state.view()
        with self._lock:
            # Labels computed on a superseded hypergraph are answered but not kept.
            if self._hypergraph is not hg:
                return view
            self._states[state.sources] = state
            self._states.move_to_end(state.sources)
            self._views[state.sources] = view
            while len(self._states) > self._config.max_cached_states:
                evicted, _ = self._states.popitem(last=False)
                self._views.pop(evicted, None)
        return view

    def _from_view(self, view: LabelView, goal: str, hg: Hypergraph) -> PlanResult:
        if goal not in view.dist:
            return PlanResult(status=PlanStatus.not_found, graph_version=hg.version, reason="goal unreachable")
        return self._result(PlanStatus.found, view.path_to(goal), view.dist[goal], hg)

    def _partial(self, state: LabelState, hops: Dict[str, int], hg: Hypergraph) -> PlanResult:
        settled: Set[str] = set(state.settled)
        toward_goal = [n for n in settled if n in hops]
        if not toward_goal:
            logger.info("Planning deadline passed before any start node was settled")
            return PlanResult(status=PlanStatus.partial, graph_version=hg.version, reason="deadline exceeded")
        best = min(toward_goal, key=lambda n: (hops[n], state.dist[n], n))
        view = LabelView(state.sources, hg.version, state.dist, state.pred)
        logger.info(f"Planning deadline passed; returning partial plan ending at '{best}' ({hops[best]} hops short)")
        return self._result(PlanStatus.partial, view.path_to(best), state.dist[best], hg, reason="deadline exceeded")

    def _result(
        self,
        status: PlanStatus,
        chain,
        cost: float,
        hg: Hypergraph,
        reason: Optional[str] = None,
    ) -> PlanResult:
        steps = [
            PlanStep(node_id=node_id, via=hg.edges[edge_id].via if edge_id in hg.edges else None)
            for node_id, edge_id in chain
        ]
        return PlanResult(
            status=status,
            plan=Plan(steps=steps, total_cost=cost),
            graph_version=hg.version,
            reason=reason,
        )
