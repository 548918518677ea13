"""Multi-head re-ranking.

Each candidate gets a semantic, a structural and a temporal score. A cold
scorer fuses them with a plain average. Once trained, the semantic head
switches to a learned bilinear projection and the heads are fused by
context-dependent softmax gates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from ...core.config import ScorerConfig
from ..graph.model import GraphSnapshot, Node
from ..graph.store import GraphStore
from ..learning.episodic import EpisodicStore
from ..schemas.domain import NodeKind, ScoredCandidate
from .heads import TemporalIndex, semantic_score, structural_score
from .state import HEADS, ScorerState, TrainedState, UntrainedState

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def softmax(z: np.ndarray) -> np.ndarray:
    e = np.exp(z - z.max())
    return e / e.sum()


def gate_features(node: Node, query: Optional[np.ndarray], context_nodes: Sequence[str]) -> np.ndarray:
    return np.array(
        [
            1.0,
            min(len(context_nodes), 10) / 10.0,
            1.0 if node.kind is NodeKind.capability else 0.0,
            1.0 if query is not None else 0.0,
        ]
    )


@dataclass(frozen=True)
class HeadValues:
    node_id: str
    values: np.ndarray
    gate_x: np.ndarray


class MultiHeadScorer:
    def __init__(
        self,
        store: GraphStore,
        episodic: EpisodicStore,
        config: Optional[ScorerConfig] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._episodic = episodic
        self.config = config or ScorerConfig()
        self._clock = clock
        self._state: ScorerState = UntrainedState()

    @property
    def state(self) -> ScorerState:
        return self._state

    @property
    def store(self) -> GraphStore:
        return self._store

    def publish(self, state: ScorerState) -> None:
        """Swap in new weights; in-flight queries keep the previous state."""
        self._state = state

    # ------------------------------------------------------------- features
    def temporal_index(self, context_key: Optional[str]) -> TemporalIndex:
        if self.config.temporal_decay_scope == "context" and context_key:
            events = self._episodic.by_context(context_key)
        else:
            events = self._episodic.events()
        return TemporalIndex(events, self._clock(), self.config.temporal_half_life_seconds)

    def head_values(
        self,
        snapshot: GraphSnapshot,
        node: Node,
        query: Optional[np.ndarray],
        context_nodes: Sequence[str],
        temporal: TemporalIndex,
        state: ScorerState,
    ) -> HeadValues:
        params = state.params if isinstance(state, TrainedState) and state.projection_ready else None
        values = np.array(
            [
                semantic_score(query, node, params),
                structural_score(snapshot, node, context_nodes),
                temporal.score(node.id, context_nodes),
            ]
        )
        return HeadValues(node.id, values, gate_features(node, query, context_nodes))

    @staticmethod
    def fuse(values: np.ndarray, gate_x: np.ndarray, state: ScorerState) -> Tuple[float, np.ndarray]:
        """Fused score and the gate weights used."""
        if isinstance(state, TrainedState) and state.fusion_ready:
            gates = softmax(gate_x @ state.params.gate_w + state.params.gate_b)
        elif isinstance(state, (TrainedState, UntrainedState)):
            gates = np.full(len(HEADS), 1.0 / len(HEADS))
        else:
            raise TypeError(f"Unknown scorer state: {state!r}")
        return float(np.clip(gates @ values, 0.0, 1.0)), gates

    # ---------------------------------------------------------------- query
    def score(
        self,
        candidates: Sequence[str],
        query: Optional[np.ndarray],
        context_nodes: Sequence[str] = (),
        context_key: Optional[str] = None,
        snapshot: Optional[GraphSnapshot] = None,
    ) -> List[ScoredCandidate]:
        """Score and sort ``candidates``, best first. Unknown ids are skipped."""
        snapshot = snapshot or self._store.snapshot()
        state = self._state
        temporal = self.temporal_index(context_key)
        scored: List[ScoredCandidate] = []
        for node_id in dict.fromkeys(candidates):
            node = snapshot.get(node_id)
            if node is None:
                logger.debug(f"Skipping unknown candidate '{node_id}'")
                continue
            hv = self.head_values(snapshot, node, query, context_nodes, temporal, state)
            fused, _ = self.fuse(hv.values, hv.gate_x, state)
            scored.append(
                ScoredCandidate(
                    candidate_id=node_id,
                    fused_score=fused,
                    per_head={name: float(v) for name, v in zip(HEADS, hv.values)},
                )
            )
        scored.sort(key=lambda c: (-c.fused_score, c.candidate_id))
        return scored

