from __future__ import annotations

"""High-level facade over the capability engine.

``CapabilityEngine`` is what an orchestration layer talks to. It wires the
graph store, hybrid search, hyperpath planner, multi-head scorer, adaptive
thresholds and episodic store together and exposes:

- ``search``: rank nodes for a free-text query.
- ``suggest_path``: plan from satisfied nodes to a goal (node id or text).
- ``next_step``: rank what can follow the current context.
- ``get_threshold`` / ``record_outcome`` / ``report_outcome``: the
  confidence-cutoff feedback loop.
- ``sync_catalog`` / ``observe_execution``: graph synchronisation.

Lifecycle
---------

``start`` restores persisted state and launches the background loops
(episodic flush and pruning, scorer training, periodic saves). ``stop``
cancels them, flushes buffered events and saves a final snapshot.

The facade keeps no policy of its own; each call delegates to the component
that owns the behaviour.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncEngine

from ..core.config import EngineSettings
from ..core.monitoring import log_degraded, trace_span
from .embedding.provider import EmbeddingProvider
from .errors import EmbeddingUnavailableError, InvalidInputError
from .graph.store import GraphStore, snapshot_from_dict
from .graph.sync import GraphSynchronizer
from .learning.episodic import EpisodicStore
from .learning.thresholds import ThresholdManager
from .planning.planner import HyperpathPlanner
from .repos.interfaces import EngineRepos
from .repos.sql import create_all
from .schemas.domain import (
    ActionDescriptor,
    BufferStatus,
    EpisodicEvent,
    EpisodicStats,
    ExecutionTrace,
    Outcome,
    PlanResult,
    PlanStatus,
    RankedCandidate,
    SearchResponse,
    ThresholdMetrics,
)
from .scoring.heads import WORKFLOW_KEY
from .scoring.scorer import MultiHeadScorer
from .scoring.trainer import CONTEXT_KEY, QUERY_KEY, ScorerTrainer, TrainingReport
from .search.hybrid import STRUCTURAL_FALLBACK, HybridSearch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapabilityEngineDeps:
    """Dependency bundle for ``CapabilityEngine``.

    Applications and tests build this through ``factory.build_engine`` or
    inject their own components (e.g. a fake embedder or in-memory repos).
    """

    store: GraphStore
    embedder: EmbeddingProvider
    search: HybridSearch
    planner: HyperpathPlanner
    scorer: MultiHeadScorer
    trainer: ScorerTrainer
    thresholds: ThresholdManager
    episodic: EpisodicStore
    synchronizer: GraphSynchronizer
    repos: EngineRepos
    db_engine: Optional[AsyncEngine] = None


class CapabilityEngine:
    """Capability graph and hyperpath suggestion engine."""

    def __init__(self, *, settings: EngineSettings, deps: CapabilityEngineDeps) -> None:
        self._settings = settings
        self._deps = deps
        self._saved_version: Optional[int] = None
        self._persist_task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def deps(self) -> CapabilityEngineDeps:
        return self._deps

    @property
    def store(self) -> GraphStore:
        return self._deps.store

    # ------------------------------------------------------------------ query
    async def search(
        self,
        query: str,
        top_k: int = 10,
        context_nodes: Sequence[str] = (),
        include_related: bool = False,
    ) -> SearchResponse:
        """Rank graph nodes for ``query``; see :class:`HybridSearch`."""
        return await self._deps.search.search(query, top_k, context_nodes, include_related)

    async def suggest_path(
        self,
        goal: str,
        start_nodes: Sequence[str],
        deadline_seconds: Optional[float] = None,
    ) -> PlanResult:
        """
        Plan from ``start_nodes`` to ``goal``.

        ``goal`` is a node id or, when no node has that id, free text resolved
        to the best search hit.

        Returns:
            A ``PlanResult`` that is ``found``, ``partial`` (deadline passed) or
            ``not_found``. When the goal text could not be embedded the target
            comes from structural ranking only and the result is flagged
            ``degraded``.

        Raises:
            InvalidInputError: For an empty start set or a negative deadline.
        """
        if not start_nodes:
            raise InvalidInputError("suggest_path needs at least one start node")
        snapshot = self._deps.store.snapshot()
        target = goal
        resolved = None
        if goal not in snapshot:
            resolved = await self._deps.search.search(goal, 1, start_nodes, snapshot=snapshot)
            if not resolved.results:
                return PlanResult(
                    status=PlanStatus.not_found,
                    graph_version=snapshot.version,
                    reason=f"no node matches goal '{goal}'",
                    degraded=resolved.degraded,
                    fallback=resolved.fallback,
                )
            target = resolved.results[0].node_id
            logger.debug(f"Resolved goal text '{goal}' to node '{target}' (degraded={resolved.degraded})")
        with trace_span("capmesh.suggest_path", goal=target, starts=len(start_nodes)):
            result = self._deps.planner.suggest_path(target, start_nodes, deadline_seconds)
        if resolved is not None and resolved.degraded:
            logger.warning(f"Goal '{goal}' resolved to '{target}' without embeddings; plan flagged degraded")
            result = result.model_copy(update={"degraded": True, "fallback": resolved.fallback})
        return result

    async def next_step(
        self,
        context_nodes: Sequence[str],
        goal: Optional[str] = None,
        top_k: int = 10,
        context_key: Optional[str] = None,
    ) -> SearchResponse:
        """
        Rank candidates for what to do after ``context_nodes``.

        Candidates are the planner's one-hop successors of the context plus,
        when a ``goal`` is given, its nearest semantic matches. The multi-head
        scorer re-ranks their union. If the goal cannot be embedded the
        ranking continues without the semantic signal and is flagged degraded.
        """
        if top_k <= 0:
            raise InvalidInputError(f"top_k must be positive, got {top_k}")
        snapshot = self._deps.store.snapshot()
        context = [c for c in dict.fromkeys(context_nodes) if c in snapshot]
        candidates: Dict[str, None] = {c.node_id: None for c in self._deps.planner.next_step(context)}

        query_vec = None
        degraded = False
        if goal:
            try:
                query_vec = await self._deps.search.embed_query(goal)
            except EmbeddingUnavailableError as e:
                degraded = True
                logger.warning(f"next_step degraded to structural-only scoring: {e}")
                log_degraded("next_step", STRUCTURAL_FALLBACK, str(e))
            else:
                for node_id, _ in snapshot.vector_index.query(query_vec, top_k * self._settings.search.candidate_multiplier):
                    candidates.setdefault(node_id, None)
        for c in context:
            candidates.pop(c, None)

        scored = self._deps.scorer.score(list(candidates), query_vec, context, context_key, snapshot)
        results: List[RankedCandidate] = []
        for s in scored[:top_k]:
            results.append(
                RankedCandidate(
                    node_id=s.candidate_id,
                    kind=snapshot.node(s.candidate_id).kind,
                    score=s.fused_score,
                    semantic_score=s.per_head.get("semantic", 0.0),
                    structural_score=s.per_head.get("structural", 0.0),
                    per_head=s.per_head,
                )
            )
        return SearchResponse(
            results=results,
            degraded=degraded,
            fallback=STRUCTURAL_FALLBACK if degraded else None,
            graph_version=snapshot.version,
        )

    # -------------------------------------------------------------- outcomes
    def get_threshold(self, context_key: str) -> float:
        return self._deps.thresholds.get_threshold(context_key)

    def record_outcome(
        self,
        context_key: str,
        action_id: str,
        predicted_confidence: float,
        outcome: Union[Outcome, str, bool],
        *,
        query: Optional[str] = None,
        context_nodes: Sequence[str] = (),
        workflow_id: Optional[str] = None,
    ) -> EpisodicEvent:
        """
        Report the outcome of an action the caller took.

        The optional ``query``, ``context_nodes`` and ``workflow_id`` are kept
        with the event and used by scorer training and the temporal head.

        Raises:
            InvalidInputError: For an empty key or a confidence outside ``[0, 1]``.
        """
        if isinstance(outcome, bool):
            outcome = Outcome.success if outcome else Outcome.failure
        aux: Dict[str, Any] = {}
        if query:
            aux[QUERY_KEY] = query
        if context_nodes:
            aux[CONTEXT_KEY] = list(context_nodes)
        if workflow_id:
            aux[WORKFLOW_KEY] = workflow_id
        try:
            event = EpisodicEvent(
                context_id=context_key,
                action_id=action_id,
                predicted_confidence=predicted_confidence,
                actual_outcome=Outcome(outcome),
                aux_payload=aux,
            )
        except (ValidationError, ValueError) as e:
            raise InvalidInputError(f"Invalid outcome report: {e}") from e
        self.report_outcome(event)
        return event

    def report_outcome(self, event: EpisodicEvent) -> None:
        """Sole write path for outcome events: thresholds first, then the episodic buffer."""
        if event.id in self._deps.episodic:
            logger.warning(f"Ignoring re-reported outcome event '{event.id}'")
            return
        if event.action_id not in self._deps.store.snapshot():
            logger.warning(f"Outcome event '{event.id}' references unknown action '{event.action_id}'")
        record = self._deps.thresholds.record_outcome(event.context_id, event.actual_outcome is Outcome.success)
        if record is not None:
            logger.debug(f"Threshold for '{record.context_key}' is now {record.value:.4f}")
        self._deps.episodic.append(event)

    # ---------------------------------------------------------- graph sync
    async def sync_catalog(self, catalog: Sequence[ActionDescriptor]) -> int:
        """Ingest the action catalogue; returns the new graph version."""
        return (await self._deps.synchronizer.sync_catalog(catalog)).version

    def observe_execution(self, trace: ExecutionTrace) -> int:
        """Learn edges from an executed trace; returns the new graph version."""
        return self._deps.synchronizer.observe_execution(trace).version

    # --------------------------------------------------------------- metrics
    def threshold_metrics(self, context_key: Optional[str] = None) -> List[ThresholdMetrics]:
        if context_key is not None:
            return [self._deps.thresholds.metrics(context_key)]
        return self._deps.thresholds.all_metrics()

    def episodic_stats(self) -> EpisodicStats:
        return self._deps.episodic.stats()

    def buffer_status(self) -> BufferStatus:
        return self._deps.episodic.buffer_status()

    async def train_once(self) -> Optional[TrainingReport]:
        return await self._deps.trainer.train_once()

    # ------------------------------------------------------------- lifecycle
    async def restore(self) -> None:
        """Load the latest graph snapshot, thresholds and recent events."""
        repos = self._deps.repos
        if self._deps.db_engine is not None:
            await create_all(self._deps.db_engine)
        latest = await repos.graph.latest()
        if latest is not None:
            version, payload = latest
            if version > self._deps.store.version:
                self._deps.store.load(snapshot_from_dict(payload))
                logger.info(f"Restored graph version {version} ({len(self._deps.store.snapshot())} nodes)")
            self._saved_version = version
        self._deps.thresholds.load(await repos.thresholds.list_all())
        loaded = await self._deps.episodic.load()
        logger.info(f"Restored {loaded} episodic events")

    async def persist(self) -> None:
        """Save the graph if its version moved, and any changed thresholds."""
        repos = self._deps.repos
        snapshot = self._deps.store.snapshot()
        if snapshot.version != self._saved_version and snapshot.version > 0:
            await repos.graph.save(snapshot.version, snapshot.to_dict())
            await repos.graph.prune(self._settings.database.snapshots_kept)
            self._saved_version = snapshot.version
        changed = self._deps.thresholds.drain_dirty()
        for record in changed:
            await repos.thresholds.upsert(record)
        if changed:
            logger.debug(f"Persisted {len(changed)} threshold records")

    async def _persist_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.persist()
            except Exception:
                logger.exception("Periodic engine save failed; retrying next cycle")

    async def start(self) -> None:
        if self._started:
            return
        await self.restore()
        await self._deps.episodic.start()
        self._deps.trainer.start(self._settings.scorer.training_interval_seconds)
        self._persist_task = asyncio.create_task(self._persist_forever(self._settings.database.snapshot_interval_seconds))
        self._started = True
        logger.info(f"Capability engine started at graph version {self._deps.store.version}")

    async def stop(self) -> None:
        if self._persist_task is not None:
            self._persist_task.cancel()
            try:
                await self._persist_task
            except asyncio.CancelledError:
                pass
            self._persist_task = None
        await self._deps.trainer.stop()
        await self._deps.episodic.shutdown()
        await self.persist()
        aclose = getattr(self._deps.embedder, "aclose", None)
        if callable(aclose):
            await aclose()
        if self._deps.db_engine is not None:
            await self._deps.db_engine.dispose()
        self._started = False
        logger.info("Capability engine stopped")
