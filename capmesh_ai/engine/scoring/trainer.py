"""Background training of the multi-head scorer from prioritised replay.

A pass draws ``batches_per_pass`` batches from the episodic store, computes
importance-weighted binary cross-entropy gradients by hand, publishes the
new parameters as a fresh :class:`TrainedState`, and refreshes the sampled
events' priorities from the new prediction errors. The numeric step runs in
a worker thread; queries keep using the previous state until the swap.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ...core.monitoring import log_training_pass, trace_span
from ..embedding.provider import EmbeddingProvider, embed_with_timeout
from ..errors import DataInconsistencyError, EmbeddingUnavailableError
from ..graph.model import GraphSnapshot
from ..learning.episodic import EpisodicStore
from ..schemas.domain import EpisodicEvent
from .heads import projected_similarity
from .scorer import MultiHeadScorer, softmax
from .state import ScorerParams, TrainedState, UntrainedState

logger = logging.getLogger(__name__)

QUERY_KEY = "query"
CONTEXT_KEY = "context_nodes"
EPS = 1e-6


@dataclass(frozen=True)
class TrainingExample:
    event: EpisodicEvent
    weight: float
    label: float
    values: np.ndarray
    gate_x: np.ndarray
    query: Optional[np.ndarray]
    candidate: Optional[np.ndarray]


@dataclass(frozen=True)
class TrainingReport:
    samples: int
    mean_loss: float
    examples_seen: int
    duration_ms: float


class ScorerTrainer:
    def __init__(
        self,
        scorer: MultiHeadScorer,
        episodic: EpisodicStore,
        embedder: Optional[EmbeddingProvider] = None,
        *,
        min_events: int = 20,
        embedding_timeout: float = 5.0,
    ) -> None:
        self._scorer = scorer
        self._episodic = episodic
        self._embedder = embedder
        self._min_events = min_events
        self._timeout = embedding_timeout
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    async def _example(self, snapshot: GraphSnapshot, event: EpisodicEvent, weight: float) -> TrainingExample:
        node = snapshot.get(event.action_id)
        if node is None:
            raise DataInconsistencyError(f"Event '{event.id}' references unknown action '{event.action_id}'")
        query = None
        text = event.aux_payload.get(QUERY_KEY)
        if text and self._embedder is not None:
            query = await embed_with_timeout(self._embedder, str(text), self._timeout)
        context = [str(c) for c in event.aux_payload.get(CONTEXT_KEY, [])]
        temporal = self._scorer.temporal_index(event.context_id)
        hv = self._scorer.head_values(snapshot, node, query, context, temporal, self._scorer.state)
        candidate = node.embedding if query is not None and node.embedding is not None else None
        if candidate is not None and candidate.shape != query.shape:
            candidate = None
        return TrainingExample(
            event=event,
            weight=weight,
            label=event.actual_outcome.value_as_float,
            values=hv.values,
            gate_x=hv.gate_x,
            query=query,
            candidate=candidate,
        )

    async def _examples(self, snapshot: GraphSnapshot, events: Sequence[EpisodicEvent], weights) -> List[TrainingExample]:
        out: List[TrainingExample] = []
        for event, weight in zip(events, weights):
            try:
                out.append(await self._example(snapshot, event, float(weight)))
            except (DataInconsistencyError, EmbeddingUnavailableError) as e:
                logger.warning(f"Skipping training event: {e}")
        return out

    @staticmethod
    def step(
        params: ScorerParams, examples: Sequence[TrainingExample], learning_rate: float
    ) -> Tuple[ScorerParams, float, List[float]]:
        """One gradient step. Returns new params, mean weighted loss and per-example errors."""
        g_w = np.zeros_like(params.gate_w)
        g_b = np.zeros_like(params.gate_b)
        g_q = np.zeros_like(params.w_query)
        g_k = np.zeros_like(params.w_key)
        scale = 1.0 / math.sqrt(params.projection_dim)
        loss = 0.0
        errors: List[float] = []
        for ex in examples:
            gates = softmax(ex.gate_x @ params.gate_w + params.gate_b)
            f = float(np.clip(gates @ ex.values, EPS, 1.0 - EPS))
            y = ex.label
            loss += -ex.weight * (y * math.log(f) + (1.0 - y) * math.log(1.0 - f))
            errors.append(abs(f - y))
            d_f = ex.weight * (f - y) / (f * (1.0 - f))
            d_z = d_f * gates * (ex.values - f)
            g_w += np.outer(ex.gate_x, d_z)
            g_b += d_z

            if ex.query is not None and ex.candidate is not None and ex.query.shape[0] == params.embedding_dim:
                s = projected_similarity(params, ex.query, ex.candidate)
                d_u = ex.weight * (s - y) * scale
                g_q += d_u * np.outer(ex.query, params.w_key.T @ ex.candidate)
                g_k += d_u * np.outer(ex.candidate, params.w_query.T @ ex.query)

        n = len(examples)
        new = ScorerParams.frozen(
            w_query=params.w_query - learning_rate * g_q / n,
            w_key=params.w_key - learning_rate * g_k / n,
            gate_w=params.gate_w - learning_rate * g_w / n,
            gate_b=params.gate_b - learning_rate * g_b / n,
        )
        return new, loss / n, errors

    def _initial_params(self, examples: Sequence[TrainingExample]) -> ScorerParams:
        dims = [ex.query.shape[0] for ex in examples if ex.query is not None and ex.candidate is not None]
        current = self._scorer.state
        if isinstance(current, TrainedState) and (not dims or current.params.embedding_dim == dims[0]):
            return current.params
        cfg = self._scorer.config
        params = ScorerParams.initial(dims[0] if dims else 1, cfg.projection_dim, cfg.seed)
        if isinstance(current, TrainedState):
            logger.warning(
                f"Embedding width changed ({current.params.embedding_dim} -> {params.embedding_dim}); "
                "re-initialising the semantic projection"
            )
            # Keep the learned fusion gates.
            params = ScorerParams.frozen(
                w_query=params.w_query.copy(),
                w_key=params.w_key.copy(),
                gate_w=current.params.gate_w.copy(),
                gate_b=current.params.gate_b.copy(),
            )
        return params

    async def train_once(self) -> Optional[TrainingReport]:
        """Run one training pass; returns None when there is not enough data."""
        async with self._lock:
            if len(self._episodic) < self._min_events:
                logger.debug(f"Skipping training pass: {len(self._episodic)} events < {self._min_events}")
                return None
            started = time.perf_counter()
            cfg = self._scorer.config
            snapshot = self._scorer.store.snapshot()
            losses: List[float] = []
            seen = 0
            params: Optional[ScorerParams] = None
            with trace_span("capmesh.train", batches=cfg.batches_per_pass):
                for _ in range(cfg.batches_per_pass):
                    batch = self._episodic.sample(cfg.batch_size)
                    if batch is None:
                        break
                    examples = await self._examples(snapshot, batch.events, batch.weights)
                    if not examples:
                        continue
                    if params is None:
                        params = self._initial_params(examples)
                    params, loss, errors = await asyncio.to_thread(self.step, params, examples, cfg.learning_rate)
                    self._episodic.update_priorities([ex.event.id for ex in examples], errors)
                    losses.append(loss)
                    seen += len(examples)

            if params is None:
                return None
            state = self._scorer.state
            if isinstance(state, TrainedState):
                new_state = state.advanced(params, seen, cfg.min_examples_for_projection, cfg.min_examples_for_fusion)
            elif isinstance(state, UntrainedState):
                total = state.examples_seen + seen
                new_state = TrainedState(
                    params=params,
                    examples_seen=total,
                    projection_ready=total >= cfg.min_examples_for_projection,
                    fusion_ready=total >= cfg.min_examples_for_fusion,
                )
            else:
                raise TypeError(f"Unknown scorer state: {state!r}")
            self._scorer.publish(new_state)

            duration_ms = (time.perf_counter() - started) * 1000.0
            mean_loss = float(np.mean(losses)) if losses else 0.0
            log_training_pass(seen, mean_loss, duration_ms)
            logger.info(f"Scorer training pass: samples={seen} loss={mean_loss:.4f} total={new_state.examples_seen}")
            return TrainingReport(seen, mean_loss, new_state.examples_seen, duration_ms)

    async def run_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.train_once()
            except Exception:
                logger.exception("Scorer training pass failed; retrying next cycle")

    def start(self, interval_seconds: float) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run_forever(interval_seconds))

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
