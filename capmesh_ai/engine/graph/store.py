"""Versioned copy-on-write graph store.

Readers call :meth:`GraphStore.snapshot` and work against the returned
immutable :class:`GraphSnapshot` without taking any lock. Writers go through
:meth:`GraphStore.transaction`; all changes made inside one transaction are
published together as a single version bump, or not at all if the block
raises.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from ..errors import CycleRejectedError, DataInconsistencyError, InvalidInputError, NodeNotFoundError
from ..schemas.domain import Direction, EdgeKind, EdgeSource, NodeKind, StructureEdge
from .algorithms import causal_path
from .model import Edge, EdgeKey, GraphSnapshot, Node
from .weights import CAUSAL_KINDS, SOURCE_MODIFIERS, promoted_source

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[GraphSnapshot], None]


def _coerce_kind(kind: EdgeKind | str) -> EdgeKind:
    try:
        return EdgeKind(kind)
    except ValueError:
        raise InvalidInputError(f"Unknown edge kind: {kind!r}") from None


def _coerce_source(source: EdgeSource | str) -> EdgeSource:
    try:
        return EdgeSource(source)
    except ValueError:
        raise InvalidInputError(f"Unknown edge source: {source!r}") from None


class GraphTransaction:
    """Mutable working copy of a snapshot.

    Top-level maps are copied up front; per-node adjacency maps are copied
    the first time they are written, so the base snapshot is never touched.
    """

    def __init__(self, base: GraphSnapshot) -> None:
        self._base = base
        self._nodes: Dict[str, Node] = dict(base.nodes)
        self._out: Dict[str, Dict[EdgeKey, Edge]] = dict(base.out_adj)  # type: ignore[arg-type]
        self._in: Dict[str, Dict[EdgeKey, Edge]] = dict(base.in_adj)  # type: ignore[arg-type]
        self._own_out: Set[str] = set()
        self._own_in: Set[str] = set()
        self._edge_count = base.edge_count
        self.changed = False

    # ------------------------------------------------------------------ reads
    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def node(self, node_id: str) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(node_id) from None

    def edge(self, source: str, target: str, kind: EdgeKind) -> Optional[Edge]:
        return self._out.get(source, {}).get((target, kind))

    # ------------------------------------------------------------- internals
    def _out_bucket(self, node_id: str) -> Dict[EdgeKey, Edge]:
        if node_id not in self._own_out:
            self._out[node_id] = dict(self._out.get(node_id, {}))
            self._own_out.add(node_id)
        return self._out[node_id]

    def _in_bucket(self, node_id: str) -> Dict[EdgeKey, Edge]:
        if node_id not in self._own_in:
            self._in[node_id] = dict(self._in.get(node_id, {}))
            self._own_in.add(node_id)
        return self._in[node_id]

    def _put_edge(self, edge: Edge) -> None:
        out = self._out_bucket(edge.source)
        if (edge.target, edge.kind) not in out:
            self._edge_count += 1
        out[(edge.target, edge.kind)] = edge
        self._in_bucket(edge.target)[(edge.source, edge.kind)] = edge
        self.changed = True

    def _drop_edge(self, source: str, target: str, kind: EdgeKind) -> bool:
        if (target, kind) not in self._out.get(source, {}):
            return False
        del self._out_bucket(source)[(target, kind)]
        del self._in_bucket(target)[(source, kind)]
        self._edge_count -= 1
        self.changed = True
        return True

    def _check_acyclic(self, source: str, target: str, kind: EdgeKind) -> None:
        if kind not in CAUSAL_KINDS:
            return
        back = causal_path(self._out, target, source)
        if back is not None:
            raise CycleRejectedError(source, target, kind.value, cycle=[source, *back])

    # ----------------------------------------------------------------- nodes
    def upsert_node(
        self,
        node_id: str,
        kind: NodeKind | str,
        embedding=None,
        metadata: Optional[Mapping[str, Any]] = None,
        members: Optional[Sequence[str]] = None,
        structure: Optional[Sequence[StructureEdge]] = None,
    ) -> Node:
        """Insert a node or update it in place; usage counters are preserved."""
        if not node_id:
            raise InvalidInputError("Node id must be a non-empty string")
        try:
            node_kind = NodeKind(kind)
        except ValueError:
            raise InvalidInputError(f"Unknown node kind: {kind!r}") from None
        if node_kind is NodeKind.tool and (members or structure):
            raise InvalidInputError(f"Tool '{node_id}' cannot own members or a structure")
        member_ids = tuple(dict.fromkeys(members or ()))
        if node_id in member_ids:
            raise InvalidInputError(f"Capability '{node_id}' cannot contain itself")
        for s in structure or ():
            if s.source not in member_ids or s.target not in member_ids:
                raise InvalidInputError(f"Structure edge {s.source}->{s.target} of '{node_id}' leaves its member set")

        current = self._nodes.get(node_id)
        if current is not None and current.kind is not node_kind:
            raise InvalidInputError(f"Node '{node_id}' already exists as a {current.kind.value}")
        base = current or Node(id=node_id, kind=node_kind)
        node = replace(
            base,
            metadata=dict(metadata) if metadata is not None else base.metadata,
            members=member_ids if members is not None else base.members,
            structure=tuple(structure) if structure is not None else base.structure,
        )
        if embedding is not None:
            node = node.with_embedding(embedding)
        self._nodes[node_id] = node
        self.changed = True
        return node

    def update_embedding(self, node_id: str, embedding) -> Node:
        node = self.node(node_id).with_embedding(embedding)
        self._nodes[node_id] = node
        self.changed = True
        return node

    def record_usage(self, node_id: str, success: bool) -> Node:
        node = self.node(node_id)
        node = replace(node, usage_count=node.usage_count + 1, success_count=node.success_count + int(success))
        self._nodes[node_id] = node
        self.changed = True
        return node

    def remove_node(self, node_id: str) -> None:
        self.node(node_id)
        for target, kind in list(self._out.get(node_id, {})):
            self._drop_edge(node_id, target, kind)
        for source, kind in list(self._in.get(node_id, {})):
            self._drop_edge(source, node_id, kind)
        self._out.pop(node_id, None)
        self._in.pop(node_id, None)
        self._own_out.discard(node_id)
        self._own_in.discard(node_id)
        del self._nodes[node_id]
        for other in list(self._nodes.values()):
            if node_id in other.members:
                self._nodes[other.id] = replace(
                    other,
                    members=tuple(m for m in other.members if m != node_id),
                    structure=tuple(s for s in other.structure if node_id not in (s.source, s.target)),
                )
        self.changed = True

    # ----------------------------------------------------------------- edges
    def add_edge(
        self,
        source: str,
        target: str,
        kind: EdgeKind | str,
        source_tag: EdgeSource | str = EdgeSource.observed,
        confidence: Optional[float] = None,
    ) -> Edge:
        """Insert or replace an edge.

        Raises:
            CycleRejectedError: if a causal edge would close a cycle. The
                transaction is left exactly as it was.
        """
        kind = _coerce_kind(kind)
        tag = _coerce_source(source_tag)
        self.node(source)
        self.node(target)
        if confidence is not None and not 0.0 <= confidence <= 1.0:
            raise InvalidInputError(f"Edge confidence must lie in [0, 1], got {confidence}")
        if self.edge(source, target, kind) is None:
            self._check_acyclic(source, target, kind)
        edge = Edge(
            source=source,
            target=target,
            kind=kind,
            source_tag=tag,
            confidence=SOURCE_MODIFIERS[tag] if confidence is None else confidence,
        )
        self._put_edge(edge)
        return edge

    def observe_edge(
        self,
        source: str,
        target: str,
        kind: EdgeKind | str,
        initial: EdgeSource | str = EdgeSource.inferred,
    ) -> Edge:
        """Create an edge tagged ``initial`` or reinforce an existing one.

        Inferred edges are promoted to observed once seen often enough.
        """
        kind = _coerce_kind(kind)
        existing = self.edge(source, target, kind)
        if existing is None:
            return self.add_edge(source, target, kind, initial)
        count = existing.observations + 1
        tag = promoted_source(existing.source_tag, count)
        edge = replace(
            existing,
            observations=count,
            source_tag=tag,
            confidence=max(existing.confidence, SOURCE_MODIFIERS[tag]),
            updated_at=datetime.now(timezone.utc),
        )
        self._put_edge(edge)
        return edge

    def remove_edge(self, source: str, target: str, kind: EdgeKind | str) -> bool:
        return self._drop_edge(source, target, _coerce_kind(kind))

    def build(self, version: int) -> GraphSnapshot:
        return GraphSnapshot(
            version=version,
            nodes=self._nodes,
            out_adj=self._out,
            in_adj=self._in,
            edge_count=self._edge_count,
        )


class GraphStore:
    """Holds the current published snapshot and serialises writers.

    Example:
        >>> store = GraphStore()
        >>> with store.transaction() as tx:
        ...     tx.upsert_node("a", "tool")
        ...     tx.upsert_node("b", "tool")
        ...     tx.add_edge("a", "b", "provides")
        >>> store.version
        1
    """

    def __init__(self, snapshot: Optional[GraphSnapshot] = None) -> None:
        self._snapshot = snapshot or GraphSnapshot.empty()
        self._write_lock = threading.Lock()
        self._listeners: List[SnapshotListener] = []

    @property
    def version(self) -> int:
        return self._snapshot.version

    def snapshot(self) -> GraphSnapshot:
        return self._snapshot

    def subscribe(self, listener: SnapshotListener) -> None:
        """Call ``listener(snapshot)`` after every publish, on the writer's thread."""
        self._listeners.append(listener)

    def _publish(self, snapshot: GraphSnapshot) -> None:
        self._snapshot = snapshot
        logger.debug(f"Published graph version {snapshot.version}: {len(snapshot)} nodes, {snapshot.edge_count} edges")
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"Graph listener failed for version {snapshot.version}")

    @contextmanager
    def transaction(self) -> Iterator[GraphTransaction]:
        with self._write_lock:
            tx = GraphTransaction(self._snapshot)
            yield tx
            if tx.changed:
                self._publish(tx.build(self._snapshot.version + 1))

    def load(self, snapshot: GraphSnapshot) -> None:
        """Replace the whole graph, e.g. with a snapshot restored from storage."""
        with self._write_lock:
            self._publish(snapshot)

    # ------------------------------------------------------------ shortcuts
    def add_node(
        self,
        node_id: str,
        kind: NodeKind | str,
        embedding=None,
        metadata: Optional[Mapping[str, Any]] = None,
        members: Optional[Sequence[str]] = None,
        structure: Optional[Sequence[StructureEdge]] = None,
    ) -> Node:
        with self.transaction() as tx:
            return tx.upsert_node(node_id, kind, embedding, metadata, members, structure)

    def add_edge(
        self,
        source: str,
        target: str,
        kind: EdgeKind | str,
        source_tag: EdgeSource | str = EdgeSource.observed,
        confidence: Optional[float] = None,
    ) -> Edge:
        with self.transaction() as tx:
            return tx.add_edge(source, target, kind, source_tag, confidence)

    def update_embedding(self, node_id: str, embedding) -> Node:
        with self.transaction() as tx:
            return tx.update_embedding(node_id, embedding)

    def remove_edge(self, source: str, target: str, kind: EdgeKind | str) -> bool:
        with self.transaction() as tx:
            return tx.remove_edge(source, target, kind)

    def remove_node(self, node_id: str) -> None:
        with self.transaction() as tx:
            tx.remove_node(node_id)

    def neighbors(self, node_id: str, direction: Direction | str = Direction.both) -> Tuple[str, ...]:
        return self._snapshot.neighbors(node_id, Direction(direction))

    def density(self) -> float:
        return self._snapshot.density()

    def community_of(self, node_id: str) -> Optional[int]:
        return self._snapshot.community_of(node_id)

    def centrality(self, node_id: str) -> float:
        return self._snapshot.centrality(node_id)


def snapshot_from_dict(data: Mapping[str, Any]) -> GraphSnapshot:
    """Rebuild a snapshot from its serialised form.

    Edges that reference a missing node, or that would close a causal cycle,
    are logged and skipped rather than failing the whole load.
    """
    tx = GraphTransaction(GraphSnapshot.empty())
    for raw in data.get("nodes", []):
        node = Node.from_dict(raw)
        tx._nodes[node.id] = node
    for raw in data.get("edges", []):
        edge = Edge.from_dict(raw)
        try:
            if edge.source not in tx or edge.target not in tx:
                raise DataInconsistencyError(f"Edge {edge.source}->{edge.target} references a missing node")
            if tx.edge(edge.source, edge.target, edge.kind) is None:
                tx._check_acyclic(edge.source, edge.target, edge.kind)
        except (DataInconsistencyError, CycleRejectedError) as e:
            logger.warning(f"Skipping stored edge: {e}")
            continue
        tx._put_edge(edge)
    return tx.build(int(data.get("version", 0)))

