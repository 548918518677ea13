"""Hybrid semantic + structural search.

Semantic candidates come from the snapshot's vector index; structural
relatedness to the caller's context nodes is 1.0 for a direct edge and a
normalised Adamic-Adar score otherwise. The blend weight adapts to graph
density: sparse graphs trust embeddings, dense graphs lean on structure.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ...core.config import SearchConfig
from ...core.monitoring import log_degraded, trace_span
from ..embedding.provider import EmbeddingProvider, embed_with_timeout
from ..errors import EmbeddingUnavailableError, InvalidInputError
from ..graph.algorithms import adamic_adar
from ..graph.model import GraphSnapshot
from ..graph.store import GraphStore
from ..schemas.domain import RankedCandidate, SearchResponse

logger = logging.getLogger(__name__)

STRUCTURAL_FALLBACK = "structural_only"


def blend_alpha(density: float, min_alpha: float = 0.5) -> float:
    """Semantic weight ``max(min_alpha, 1 - 2 * density)``, always in ``[min_alpha, 1]``."""
    density = min(max(density, 0.0), 1.0)
    return max(min_alpha, 1.0 - 2.0 * density)


def structural_relatedness(
    snapshot: GraphSnapshot, candidate: str, context_nodes: Sequence[str], normalizer: float = 2.0
) -> float:
    best = 0.0
    for ctx in context_nodes:
        if ctx == candidate:
            continue
        if snapshot.has_link(ctx, candidate):
            return 1.0
        best = max(best, min(adamic_adar(snapshot, ctx, candidate) / normalizer, 1.0))
    return best


def _strongest(weights: Dict[str, float], limit: int) -> List[str]:
    return [n for n, _ in sorted(weights.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]]


def related_nodes(snapshot: GraphSnapshot, node_id: str, limit: int) -> Tuple[List[str], List[str]]:
    """Strongest in-neighbours (often before) and out-neighbours (often after)."""
    if limit <= 0:
        return [], []
    before: Dict[str, float] = {}
    for e in snapshot.in_edges(node_id):
        before[e.source] = max(before.get(e.source, 0.0), e.weight)
    after: Dict[str, float] = {}
    for e in snapshot.out_edges(node_id):
        after[e.target] = max(after.get(e.target, 0.0), e.weight)
    return _strongest(before, limit), _strongest(after, limit)


def two_hop_neighbourhood(snapshot: GraphSnapshot, context_nodes: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    context = [c for c in context_nodes if c in snapshot]
    for ctx in context:
        for n in snapshot.neighbors(ctx):
            seen.setdefault(n, None)
            for m in snapshot.neighbors(n):
                seen.setdefault(m, None)
    for ctx in context:
        seen.pop(ctx, None)
    return list(seen)


class HybridSearch:
    def __init__(
        self,
        store: GraphStore,
        embedder: EmbeddingProvider,
        config: Optional[SearchConfig] = None,
        embedding_timeout: float = 5.0,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._config = config or SearchConfig()
        self._timeout = embedding_timeout

    async def embed_query(self, text: str) -> np.ndarray:
        return await embed_with_timeout(self._embedder, text, self._timeout)

    async def search(
        self,
        query: str,
        top_k: int,
        context_nodes: Sequence[str] = (),
        include_related: bool = False,
        snapshot: Optional[GraphSnapshot] = None,
    ) -> SearchResponse:
        """Rank nodes for ``query``.

        Never raises for provider trouble: when the embedding call fails or
        times out the response is structural-only and flagged ``degraded``.

        Raises:
            InvalidInputError: If ``top_k`` is not positive.
        """
        if top_k <= 0:
            raise InvalidInputError(f"top_k must be positive, got {top_k}")
        snapshot = snapshot or self._store.snapshot()
        if len(snapshot) == 0:
            return SearchResponse(results=[], graph_version=snapshot.version)
        context = [c for c in dict.fromkeys(context_nodes) if c in snapshot]
        if len(context) != len(set(context_nodes)):
            logger.debug(f"Ignoring unknown context nodes: {sorted(set(context_nodes) - set(context))}")

        with trace_span("capmesh.search", top_k=top_k, graph_version=snapshot.version):
            try:
                query_vec = await self.embed_query(query)
            except EmbeddingUnavailableError as e:
                logger.warning(f"Search degraded to structural-only scoring: {e}")
                log_degraded("search", STRUCTURAL_FALLBACK, str(e))
                results = self.rank(snapshot, None, two_hop_neighbourhood(snapshot, context), context, top_k)
                return SearchResponse(
                    results=self._with_related(snapshot, results) if include_related else results,
                    degraded=True,
                    fallback=STRUCTURAL_FALLBACK,
                    graph_version=snapshot.version,
                )

            pool = snapshot.vector_index.query(query_vec, top_k * self._config.candidate_multiplier)
            semantic = {node_id: max(0.0, sim) for node_id, sim in pool}
            results = self.rank(snapshot, semantic, list(semantic), context, top_k)
        return SearchResponse(
            results=self._with_related(snapshot, results) if include_related else results,
            graph_version=snapshot.version,
        )

    def rank(
        self,
        snapshot: GraphSnapshot,
        semantic: Optional[Dict[str, float]],
        candidates: Sequence[str],
        context_nodes: Sequence[str],
        top_k: int,
    ) -> List[RankedCandidate]:
        """Blend and sort ``candidates``; ``semantic=None`` means structural-only."""
        alpha = blend_alpha(snapshot.density(), self._config.min_alpha) if semantic is not None else 0.0
        scored: List[RankedCandidate] = []
        for node_id in candidates:
            node = snapshot.get(node_id)
            if node is None:
                continue
            sem = semantic.get(node_id, 0.0) if semantic is not None else 0.0
            struct = (
                structural_relatedness(snapshot, node_id, context_nodes, self._config.relatedness_normalizer)
                if context_nodes
                else 0.0
            )
            scored.append(
                RankedCandidate(
                    node_id=node_id,
                    kind=node.kind,
                    score=alpha * sem + (1.0 - alpha) * struct,
                    semantic_score=sem,
                    structural_score=struct,
                )
            )
        scored.sort(key=lambda c: (-c.score, c.node_id))
        return scored[:top_k]

    def _with_related(self, snapshot: GraphSnapshot, results: List[RankedCandidate]) -> List[RankedCandidate]:
        out = []
        for r in results:
            before, after = related_nodes(snapshot, r.node_id, self._config.related_limit)
            out.append(r.model_copy(update={"often_before": before, "often_after": after}))
        return out
