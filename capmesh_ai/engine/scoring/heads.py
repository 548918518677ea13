"""Independent scoring heads.

Every head returns a value in ``[0, 1]`` for one candidate. Tools and
capabilities are scored by different code paths where the signal differs.
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set

import numpy as np

from ..embedding.index import cosine
from ..graph.algorithms import community_match
from ..graph.model import GraphSnapshot, Node
from ..schemas.domain import EpisodicEvent, NodeKind
from .state import ScorerParams

WORKFLOW_KEY = "workflow_id"


def sigmoid(x):
    return 1.0 / (1.0 + np.exp(-x))


def projected_similarity(params: ScorerParams, query: np.ndarray, candidate: np.ndarray) -> float:
    """``sigmoid((Wq^T q) . (Wk^T c) / sqrt(h))``."""
    q = params.w_query.T @ query
    k = params.w_key.T @ candidate
    return float(sigmoid(float(q @ k) / math.sqrt(params.projection_dim)))


def semantic_score(
    query: Optional[np.ndarray], node: Node, params: Optional[ScorerParams] = None
) -> float:
    if query is None or node.embedding is None or node.embedding.shape != query.shape:
        return 0.0
    if params is not None and params.embedding_dim == query.shape[0]:
        return projected_similarity(params, query, node.embedding)
    return max(0.0, cosine(query, node.embedding))


def structural_score(snapshot: GraphSnapshot, node: Node, context_nodes: Sequence[str]) -> float:
    """Centrality blended with community agreement with the context.

    Tools use their own PageRank and community. Capabilities use hypergraph
    centrality and the communities of their members.
    """
    communities = snapshot.communities
    centrality = snapshot.centrality(node.id)
    if node.kind is NodeKind.capability:
        match = community_match(communities, node.members, context_nodes)
    else:
        match = community_match(communities, [node.id], context_nodes)
    return 0.5 * centrality + 0.5 * match


def _decay(age_seconds: float, half_life: float) -> float:
    return 0.5 ** (max(age_seconds, 0.0) / half_life)


class TemporalIndex:
    """Recency and co-occurrence signals mined from a set of events.

    Events are grouped into workflows by ``aux_payload["workflow_id"]``
    (events without one stand alone). A workflow's weight decays with the age
    of its newest event.
    """

    def __init__(self, events: Iterable[EpisodicEvent], now: datetime, half_life_seconds: float) -> None:
        self._last_seen: Dict[str, datetime] = {}
        workflows: Dict[str, List[EpisodicEvent]] = defaultdict(list)
        for e in events:
            prior = self._last_seen.get(e.action_id)
            if prior is None or e.timestamp > prior:
                self._last_seen[e.action_id] = e.timestamp
            workflows[str(e.aux_payload.get(WORKFLOW_KEY, e.id))].append(e)
        self._now = now
        self._half_life = half_life_seconds
        self._workflows: List[tuple] = []
        for group in workflows.values():
            newest = max(e.timestamp for e in group)
            actions: Set[str] = {e.action_id for e in group}
            self._workflows.append((actions, _decay((now - newest).total_seconds(), half_life_seconds)))

    def recency(self, action_id: str) -> float:
        seen = self._last_seen.get(action_id)
        if seen is None:
            return 0.0
        return _decay((self._now - seen).total_seconds(), self._half_life)

    def cooccurrence(self, action_id: str, context_nodes: Sequence[str]) -> float:
        context = set(context_nodes)
        if not context:
            return 0.0
        total = 0.0
        shared = 0.0
        for actions, weight in self._workflows:
            if action_id not in actions:
                continue
            total += weight
            if actions & context:
                shared += weight
        return shared / total if total > 0 else 0.0

    def score(self, action_id: str, context_nodes: Sequence[str]) -> float:
        return 0.5 * self.recency(action_id) + 0.5 * self.cooccurrence(action_id, context_nodes)
