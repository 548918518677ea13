"""Single-source shortest-path labels over a hypergraph.

A :class:`LabelState` belongs to one start set. It keeps a distance and a
predecessor ``(node, hyperedge)`` per reached node, the shortest-path tree as
a children index, and how many tree links use each hyperedge.
"""

from __future__ import annotations

import heapq
import math
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from .hypergraph import Hypergraph

INF = math.inf

Pred = Tuple[str, str]


class DeadlineExceeded(Exception):
    """Raised inside a bounded computation when its deadline passes."""


@dataclass(frozen=True)
class LabelView:
    """Immutable copy of a label state published to readers."""

    sources: FrozenSet[str]
    version: int
    dist: Mapping[str, float]
    pred: Mapping[str, Pred]

    def path_to(self, node_id: str) -> List[Tuple[str, Optional[str]]]:
        """``[(node, hyperedge_id)]`` from a source to ``node_id``."""
        chain: List[Tuple[str, Optional[str]]] = []
        current = node_id
        while True:
            link = self.pred.get(current)
            if link is None:
                chain.append((current, None))
                break
            chain.append((current, link[1]))
            current = link[0]
        chain.reverse()
        return chain


class LabelState:
    def __init__(self, sources: Iterable[str], hypergraph: Hypergraph) -> None:
        self.sources: FrozenSet[str] = frozenset(sources)
        self.hypergraph = hypergraph
        self.version = hypergraph.version
        self.dist: Dict[str, float] = {}
        self.pred: Dict[str, Pred] = {}
        self.children: Dict[str, Set[str]] = {}
        self.tree_edges: Counter = Counter()
        self.settled: List[str] = []

    # ------------------------------------------------------------- tree upkeep
    def set_pred(self, node_id: str, link: Optional[Pred]) -> None:
        old = self.pred.pop(node_id, None)
        if old is not None:
            self.tree_edges[old[1]] -= 1
            if self.tree_edges[old[1]] <= 0:
                del self.tree_edges[old[1]]
            kids = self.children.get(old[0])
            if kids is not None:
                kids.discard(node_id)
                if not kids:
                    del self.children[old[0]]
        if link is not None:
            self.pred[node_id] = link
            self.tree_edges[link[1]] += 1
            self.children.setdefault(link[0], set()).add(node_id)

    def distance(self, node_id: str) -> float:
        return self.dist.get(node_id, INF)

    def uses_edge(self, edge_id: str) -> bool:
        return edge_id in self.tree_edges

    # ----------------------------------------------------------- computation
    def compute(self, deadline_check: Optional[Callable[[], bool]] = None, allowed: Optional[Set[str]] = None) -> None:
        """Full Dijkstra from the sources.

        Raises:
            DeadlineExceeded: when ``deadline_check()`` turns true. Labels of
                nodes in ``settled`` are final at that point.
        """
        self.dist.clear()
        self.pred.clear()
        self.children.clear()
        self.tree_edges.clear()
        self.settled = []
        heap: List[Tuple[float, str]] = []
        for s in sorted(self.sources):
            self.dist[s] = 0.0
            heapq.heappush(heap, (0.0, s))
        self._run(heap, deadline_check, allowed, record_settled=True)

    def propagate(self, seeds: Iterable[str]) -> None:
        heap = [(self.dist[n], n) for n in seeds if n in self.dist]
        heapq.heapify(heap)
        self._run(heap, None, None, record_settled=False)

    def _run(
        self,
        heap: List[Tuple[float, str]],
        deadline_check: Optional[Callable[[], bool]],
        allowed: Optional[Set[str]],
        record_settled: bool,
    ) -> None:
        done: Set[str] = set()
        while heap:
            if deadline_check is not None and deadline_check():
                raise DeadlineExceeded()
            d, u = heapq.heappop(heap)
            if u in done or d > self.dist.get(u, INF):
                continue
            done.add(u)
            if record_settled:
                self.settled.append(u)
            for edge in self.hypergraph.outgoing(u):
                nd = d + edge.cost
                for v in edge.head:
                    if allowed is not None and v not in allowed:
                        continue
                    if v in self.sources:
                        continue
                    if nd < self.dist.get(v, INF):
                        self.dist[v] = nd
                        self.set_pred(v, (u, edge.id))
                        heapq.heappush(heap, (nd, v))

    def best_incoming(self, node_id: str, excluded: Set[str]) -> Optional[Tuple[float, Pred]]:
        best: Optional[Tuple[float, Pred]] = None
        for edge in self.hypergraph.incoming(node_id):
            for u in edge.tail:
                if u in excluded or u not in self.dist:
                    continue
                cand = self.dist[u] + edge.cost
                if best is None or cand < best[0]:
                    best = (cand, (u, edge.id))
        return best

    def repair(self, affected: Set[str]) -> None:
        """Re-derive labels of ``affected`` from unaffected neighbours, then propagate."""
        for v in affected:
            self.dist.pop(v, None)
            self.set_pred(v, None)
        seeds: List[str] = []
        for v in affected:
            if v in self.sources:
                self.dist[v] = 0.0
                seeds.append(v)
                continue
            best = self.best_incoming(v, affected)
            if best is not None:
                self.dist[v] = best[0]
                self.set_pred(v, best[1])
                seeds.append(v)
        self.propagate(seeds)

    def subtree(self, roots: Iterable[str]) -> Set[str]:
        out: Set[str] = set()
        stack = list(roots)
        while stack:
            n = stack.pop()
            if n in out:
                continue
            out.add(n)
            stack.extend(self.children.get(n, ()))
        return out

    def view(self) -> LabelView:
        return LabelView(self.sources, self.version, dict(self.dist), dict(self.pred))
