"""Immutable graph values: nodes, edges and published snapshots.

A :class:`GraphSnapshot` is never mutated once published. Writers build the
next snapshot through a transaction and swap the store's reference, so a
reader holding a snapshot sees one consistent version for its whole call.
Derived structure (vector index, communities, centrality) is computed lazily
and cached on the snapshot it belongs to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from functools import cached_property
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import numpy as np

from ..embedding.index import VectorIndex, as_vector
from ..errors import NodeNotFoundError
from ..schemas.domain import Direction, EdgeKind, EdgeSource, NodeKind, StructureEdge
from . import algorithms
from .weights import edge_weight, planner_cost

logger = logging.getLogger(__name__)

EdgeKey = Tuple[str, EdgeKind]


@dataclass(frozen=True, eq=False)
class Node:
    """A tool or capability.

    Capabilities additionally carry their ordered member ids (the hyperedge)
    and a static structure of typed edges among those members.
    """

    id: str
    kind: NodeKind
    embedding: Optional[np.ndarray] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    members: Tuple[str, ...] = ()
    structure: Tuple[StructureEdge, ...] = ()
    usage_count: int = 0
    success_count: int = 0

    @property
    def is_capability(self) -> bool:
        return self.kind is NodeKind.capability

    @property
    def success_rate(self) -> float:
        if self.usage_count == 0:
            return 1.0
        return self.success_count / self.usage_count

    def with_embedding(self, vector) -> "Node":
        return replace(self, embedding=None if vector is None else as_vector(vector))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "embedding": None if self.embedding is None else self.embedding.tolist(),
            "metadata": dict(self.metadata),
            "members": list(self.members),
            "structure": [s.model_dump(by_alias=True, mode="json") for s in self.structure],
            "usage_count": self.usage_count,
            "success_count": self.success_count,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Node":
        embedding = data.get("embedding")
        return cls(
            id=data["id"],
            kind=NodeKind(data["kind"]),
            embedding=None if embedding is None else as_vector(embedding),
            metadata=dict(data.get("metadata") or {}),
            members=tuple(data.get("members") or ()),
            structure=tuple(StructureEdge.model_validate(s) for s in data.get("structure") or ()),
            usage_count=int(data.get("usage_count", 0)),
            success_count=int(data.get("success_count", 0)),
        )


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    kind: EdgeKind
    source_tag: EdgeSource = EdgeSource.observed
    confidence: float = 1.0
    observations: int = 1
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), compare=False)

    @property
    def weight(self) -> float:
        return edge_weight(self.kind, self.source_tag)

    @property
    def cost(self) -> float:
        return planner_cost(self.kind, self.source_tag)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "kind": self.kind.value,
            "source_tag": self.source_tag.value,
            "confidence": self.confidence,
            "observations": self.observations,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Edge":
        updated = data.get("updated_at")
        return cls(
            source=data["source"],
            target=data["target"],
            kind=EdgeKind(data["kind"]),
            source_tag=EdgeSource(data.get("source_tag", EdgeSource.observed.value)),
            confidence=float(data.get("confidence", 1.0)),
            observations=int(data.get("observations", 1)),
            updated_at=datetime.fromisoformat(updated) if updated else datetime.now(timezone.utc),
        )


@dataclass(frozen=True, eq=False)
class GraphSnapshot:
    version: int
    nodes: Mapping[str, Node]
    out_adj: Mapping[str, Mapping[EdgeKey, Edge]]
    in_adj: Mapping[str, Mapping[EdgeKey, Edge]]
    edge_count: int = 0

    @classmethod
    def empty(cls) -> "GraphSnapshot":
        return cls(version=0, nodes={}, out_adj={}, in_adj={}, edge_count=0)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def node(self, node_id: str) -> Node:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(node_id) from None

    def get(self, node_id: str) -> Optional[Node]:
        return self.nodes.get(node_id)

    def edge(self, source: str, target: str, kind: EdgeKind) -> Optional[Edge]:
        return self.out_adj.get(source, {}).get((target, kind))

    def edges(self) -> Iterator[Edge]:
        for bucket in self.out_adj.values():
            yield from bucket.values()

    def out_edges(self, node_id: str) -> List[Edge]:
        return list(self.out_adj.get(node_id, {}).values())

    def in_edges(self, node_id: str) -> List[Edge]:
        return list(self.in_adj.get(node_id, {}).values())

    def capabilities(self) -> List[Node]:
        return [n for n in self.nodes.values() if n.kind is NodeKind.capability]

    def neighbors(self, node_id: str, direction: Direction = Direction.both) -> Tuple[str, ...]:
        """Distinct neighbour ids in edge insertion order."""
        if node_id not in self.nodes:
            raise NodeNotFoundError(node_id)
        seen: Dict[str, None] = {}
        if direction in (Direction.outgoing, Direction.both):
            for target, _kind in self.out_adj.get(node_id, {}):
                seen.setdefault(target, None)
        if direction in (Direction.incoming, Direction.both):
            for source, _kind in self.in_adj.get(node_id, {}):
                seen.setdefault(source, None)
        seen.pop(node_id, None)
        return tuple(seen)

    def degree(self, node_id: str) -> int:
        if node_id not in self.nodes:
            return 0
        return len(self.neighbors(node_id))

    def has_link(self, a: str, b: str) -> bool:
        return any(t == b for t, _ in self.out_adj.get(a, {})) or any(t == a for t, _ in self.out_adj.get(b, {}))

    def density(self) -> float:
        """Directed density ``E / (N (N - 1))`` over distinct node pairs, in ``[0, 1]``."""
        n = len(self.nodes)
        if n < 2:
            return 0.0
        pairs = sum(len({t for t, _ in bucket if t != src}) for src, bucket in self.out_adj.items())
        return min(1.0, pairs / (n * (n - 1)))

    @cached_property
    def vector_index(self) -> VectorIndex:
        ids = [n.id for n in self.nodes.values() if n.embedding is not None]
        return VectorIndex(ids, [self.nodes[i].embedding for i in ids])

    @cached_property
    def communities(self) -> Dict[str, int]:
        return algorithms.tool_communities(self)

    @cached_property
    def pagerank(self) -> Dict[str, float]:
        return algorithms.pagerank(self)

    @cached_property
    def capability_centrality(self) -> Dict[str, float]:
        return algorithms.hypergraph_centrality(self, self.pagerank)

    def community_of(self, node_id: str) -> Optional[int]:
        """Community id of a tool; capabilities and unknown ids have none."""
        return self.communities.get(node_id)

    def centrality(self, node_id: str) -> float:
        """Tools: PageRank normalised by the max. Capabilities: hypergraph centrality."""
        node = self.node(node_id)
        if node.kind is NodeKind.capability:
            return self.capability_centrality.get(node_id, 0.0)
        top = max(self.pagerank.values(), default=0.0)
        return self.pagerank.get(node_id, 0.0) / top if top > 0 else 0.0

    def fingerprint(self) -> Tuple[Any, ...]:
        """Hashable summary of the graph content, excluding derived caches."""
        nodes = tuple(
            sorted(
                (
                    n.id,
                    n.kind.value,
                    None if n.embedding is None else n.embedding.tobytes(),
                    n.members,
                    n.structure,
                    n.usage_count,
                    n.success_count,
                )
                for n in self.nodes.values()
            )
        )
        edges = tuple(sorted((e.source, e.target, e.kind.value, e.source_tag.value, e.observations) for e in self.edges()))
        return (self.version, nodes, edges)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "nodes": [n.to_dict() for n in self.nodes.values()],
            "edges": [e.to_dict() for e in self.edges()],
        }
