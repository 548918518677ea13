from __future__ import annotations

"""Graph synchronisation from the invocation layer.

``GraphSynchronizer`` is the writer that keeps the graph store in step with
the outside world:

- ``sync_catalog``: ingest the current action catalogue (tools and
  capabilities, their member sets and static structures).
- ``observe_execution``: learn edges from an executed trace. Consecutive
  sibling steps yield ``sequence`` edges, parent/child steps yield
  ``contains`` edges, and a step that consumed another step's output yields
  a ``provides`` edge.

Each call is applied as one transaction, so a batch becomes visible as a
single graph version or not at all.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..embedding.provider import EmbeddingProvider, embed_with_timeout
from ..errors import CycleRejectedError, EmbeddingUnavailableError
from ..schemas.domain import ActionDescriptor, EdgeKind, EdgeSource, ExecutionStep, ExecutionTrace, NodeKind
from .model import GraphSnapshot
from .store import GraphStore, GraphTransaction

logger = logging.getLogger(__name__)


class GraphSynchronizer:
    def __init__(
        self,
        store: GraphStore,
        embedder: Optional[EmbeddingProvider] = None,
        embedding_timeout: float = 5.0,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._timeout = embedding_timeout

    async def _embed_hints(self, catalog: Sequence[ActionDescriptor]) -> Dict[str, np.ndarray]:
        if self._embedder is None:
            return {}
        wanted = [a for a in catalog if a.embedding_hint.strip()]

        async def _one(action: ActionDescriptor) -> Tuple[str, Optional[np.ndarray]]:
            try:
                return action.id, await embed_with_timeout(self._embedder, action.embedding_hint, self._timeout)
            except EmbeddingUnavailableError as e:
                logger.warning(f"No embedding for '{action.id}', keeping the previous one: {e}")
                return action.id, None

        pairs = await asyncio.gather(*(_one(a) for a in wanted))
        return {action_id: vector for action_id, vector in pairs if vector is not None}

    async def sync_catalog(self, catalog: Sequence[ActionDescriptor]) -> GraphSnapshot:
        """Upsert every catalogued action and its membership edges in one batch."""
        vectors = await self._embed_hints(catalog)
        tools = [a for a in catalog if a.kind is NodeKind.tool]
        capabilities = [a for a in catalog if a.kind is NodeKind.capability]
        with self._store.transaction() as tx:
            for action in tools:
                tx.upsert_node(action.id, NodeKind.tool, vectors.get(action.id), action.metadata)
            # Capabilities may contain each other, so create them all before wiring members.
            for action in capabilities:
                if action.id not in tx:
                    tx.upsert_node(action.id, NodeKind.capability, metadata=action.metadata)
            for action in capabilities:
                self._upsert_capability(tx, action, vectors.get(action.id))
        snapshot = self._store.snapshot()
        logger.info(
            f"Synchronised catalogue of {len(catalog)} actions "
            f"({len(tools)} tools, {len(capabilities)} capabilities) at graph version {snapshot.version}"
        )
        return snapshot

    @staticmethod
    def _upsert_capability(tx: GraphTransaction, action: ActionDescriptor, vector) -> None:
        members: List[str] = []
        for member_id in action.member_set or []:
            if member_id not in tx:
                logger.warning(f"Capability '{action.id}' lists unknown member '{member_id}'; skipped")
                continue
            members.append(member_id)
        kept = set(members)
        structure = [s for s in action.static_structure if s.source in kept and s.target in kept]
        if len(structure) != len(action.static_structure):
            logger.warning(f"Dropped {len(action.static_structure) - len(structure)} structure edges of '{action.id}'")
        tx.upsert_node(action.id, NodeKind.capability, vector, action.metadata, members, structure)
        for member_id in members:
            if member_id != action.id:
                tx.add_edge(action.id, member_id, EdgeKind.contains, EdgeSource.template)

    def observe_execution(self, trace: ExecutionTrace) -> GraphSnapshot:
        """Reinforce the graph with what an executed trace shows."""
        steps: Dict[str, ExecutionStep] = {}
        for step in trace.steps:
            if step.action_id not in self._store.snapshot():
                logger.warning(f"Trace step '{step.step_id}' references unknown action '{step.action_id}'; skipped")
                continue
            steps[step.step_id] = step

        siblings: Dict[Optional[str], List[ExecutionStep]] = {}
        for step in steps.values():
            siblings.setdefault(step.parent_step_id, []).append(step)

        initial = EdgeSource.inferred if trace.source is EdgeSource.template else trace.source
        observed: List[Tuple[str, str, EdgeKind]] = []
        for group in siblings.values():
            for before, after in zip(group, group[1:]):
                observed.append((before.action_id, after.action_id, EdgeKind.sequence))
        for step in steps.values():
            parent = steps.get(step.parent_step_id) if step.parent_step_id else None
            if parent is not None:
                observed.append((parent.action_id, step.action_id, EdgeKind.contains))
            for producer_id in step.consumes:
                producer = steps.get(producer_id)
                if producer is None:
                    logger.warning(f"Step '{step.step_id}' consumes unknown step '{producer_id}'; skipped")
                    continue
                observed.append((producer.action_id, step.action_id, EdgeKind.provides))

        with self._store.transaction() as tx:
            for source, target, kind in observed:
                if source == target:
                    continue
                try:
                    tx.observe_edge(source, target, kind, initial)
                except CycleRejectedError as e:
                    logger.warning(f"Observed edge not recorded: {e}")
            for step in steps.values():
                tx.record_usage(step.action_id, step.success)
        return self._store.snapshot()
