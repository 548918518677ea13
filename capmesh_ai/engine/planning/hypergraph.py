"""Planner-visible hypergraph derived from a graph snapshot.

Only ``provides`` relations become traversable:

* a plain ``provides`` edge ``A -> B`` is a hyperedge ``({A}, {B})``;
* each ``provides`` edge in a capability's static structure is a hyperedge
  tagged with that capability;
* each capability is also traversable as a unit: from its entry members
  (sources of internal ``provides`` edges that nothing inside feeds, or every
  member when it has no internal ``provides``) to the remaining members and
  the capability node itself.

Tail sets have OR semantics: reaching any tail node is enough to cross.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set

from ..graph.model import GraphSnapshot
from ..graph.weights import planner_cost
from ..schemas.domain import EdgeKind, EdgeSource

logger = logging.getLogger(__name__)

MIN_SUCCESS_RATE = 0.05


@dataclass(frozen=True)
class Hyperedge:
    id: str
    tail: FrozenSet[str]
    head: FrozenSet[str]
    cost: float
    via: Optional[str] = None


class UpdateKind(str, Enum):
    add = "add"
    remove = "remove"
    increase = "increase"
    decrease = "decrease"


@dataclass(frozen=True)
class HyperedgeUpdate:
    kind: UpdateKind
    edge: Hyperedge
    old_cost: Optional[float] = None


class Hypergraph:
    """Hyperedges plus tail/head indexes.

    Instances are treated as immutable once handed to readers; the writer
    derives the next one with :meth:`copy` and mutates only the copy.
    """

    def __init__(self, version: int = 0) -> None:
        self.version = version
        self.edges: Dict[str, Hyperedge] = {}
        self.out_index: Dict[str, Set[str]] = {}
        self.in_index: Dict[str, Set[str]] = {}

    def copy(self, version: Optional[int] = None) -> "Hypergraph":
        other = Hypergraph(self.version if version is None else version)
        other.edges = dict(self.edges)
        other.out_index = {k: set(v) for k, v in self.out_index.items()}
        other.in_index = {k: set(v) for k, v in self.in_index.items()}
        return other

    def nodes(self) -> Set[str]:
        return set(self.out_index) | set(self.in_index)

    def put(self, edge: Hyperedge) -> None:
        if edge.id in self.edges:
            self.discard(edge.id)
        self.edges[edge.id] = edge
        for u in edge.tail:
            self.out_index.setdefault(u, set()).add(edge.id)
        for v in edge.head:
            self.in_index.setdefault(v, set()).add(edge.id)

    def discard(self, edge_id: str) -> Optional[Hyperedge]:
        edge = self.edges.pop(edge_id, None)
        if edge is None:
            return None
        for u in edge.tail:
            bucket = self.out_index.get(u)
            if bucket is not None:
                bucket.discard(edge_id)
                if not bucket:
                    del self.out_index[u]
        for v in edge.head:
            bucket = self.in_index.get(v)
            if bucket is not None:
                bucket.discard(edge_id)
                if not bucket:
                    del self.in_index[v]
        return edge

    def apply(self, update: HyperedgeUpdate) -> None:
        if update.kind is UpdateKind.remove:
            self.discard(update.edge.id)
        else:
            self.put(update.edge)

    def outgoing(self, node_id: str) -> List[Hyperedge]:
        return [self.edges[i] for i in self.out_index.get(node_id, ())]

    def incoming(self, node_id: str) -> List[Hyperedge]:
        return [self.edges[i] for i in self.in_index.get(node_id, ())]

    def reverse_hops(self, goal: str) -> Dict[str, int]:
        """Hyperedge hops from every node that can reach ``goal``."""
        hops = {goal: 0}
        frontier = [goal]
        while frontier:
            nxt: List[str] = []
            for v in frontier:
                for edge in self.incoming(v):
                    for u in edge.tail:
                        if u not in hops:
                            hops[u] = hops[v] + 1
                            nxt.append(u)
            frontier = nxt
        return hops


def derive_hyperedges(snapshot: GraphSnapshot, capability_base_cost: float = 1.0) -> Dict[str, Hyperedge]:
    edges: Dict[str, Hyperedge] = {}
    for e in snapshot.edges():
        if e.kind is not EdgeKind.provides:
            continue
        edge_id = f"{e.source}->{e.target}"
        edges[edge_id] = Hyperedge(edge_id, frozenset({e.source}), frozenset({e.target}), e.cost)

    structure_cost = planner_cost(EdgeKind.provides, EdgeSource.template)
    for cap in snapshot.capabilities():
        missing = [m for m in cap.members if m not in snapshot]
        if missing:
            logger.warning(f"Capability '{cap.id}' references missing members {missing}; skipping them")
        members = [m for m in cap.members if m in snapshot]
        internal = [
            s for s in cap.structure if s.kind is EdgeKind.provides and s.source in snapshot and s.target in snapshot
        ]
        for s in internal:
            edge_id = f"{cap.id}:{s.source}->{s.target}"
            edges[edge_id] = Hyperedge(edge_id, frozenset({s.source}), frozenset({s.target}), structure_cost, cap.id)
        if not members:
            continue
        fed = {s.target for s in internal}
        entries = [s.source for s in internal if s.source not in fed]
        tail = frozenset(entries or members)
        head = frozenset(m for m in members if m not in tail) | {cap.id}
        cost = capability_base_cost / max(cap.success_rate, MIN_SUCCESS_RATE)
        edges[cap.id] = Hyperedge(cap.id, tail, head, cost, cap.id)
    return edges


def diff_hyperedges(old: Mapping[str, Hyperedge], new: Mapping[str, Hyperedge]) -> List[HyperedgeUpdate]:
    """Edits turning ``old`` into ``new``; removals first so indexes never double up."""
    removals: List[HyperedgeUpdate] = []
    others: List[HyperedgeUpdate] = []
    for edge_id, edge in old.items():
        replacement = new.get(edge_id)
        if replacement is None or replacement.tail != edge.tail or replacement.head != edge.head:
            removals.append(HyperedgeUpdate(UpdateKind.remove, edge, edge.cost))
    for edge_id, edge in new.items():
        previous = old.get(edge_id)
        if previous is None or previous.tail != edge.tail or previous.head != edge.head:
            others.append(HyperedgeUpdate(UpdateKind.add, edge))
        elif edge.cost > previous.cost:
            others.append(HyperedgeUpdate(UpdateKind.increase, edge, previous.cost))
        elif edge.cost < previous.cost:
            others.append(HyperedgeUpdate(UpdateKind.decrease, edge, previous.cost))
    return removals + others


def build_hypergraph(edges: Iterable[Hyperedge], version: int) -> Hypergraph:
    hg = Hypergraph(version)
    for edge in edges:
        hg.put(edge)
    return hg
