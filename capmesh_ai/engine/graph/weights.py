"""Edge weight tables.

Edge weight is ``kind weight x source modifier``. Observed edges always
outweigh inferred and template edges of the same kind, so real executions
override inferred structure as they accumulate.
"""

from __future__ import annotations

from typing import Dict

from ..schemas.domain import EdgeKind, EdgeSource

EDGE_KIND_WEIGHTS: Dict[EdgeKind, float] = {
    EdgeKind.dependency: 1.0,
    EdgeKind.contains: 0.8,
    EdgeKind.provides: 0.7,
    EdgeKind.alternative: 0.6,
    EdgeKind.sequence: 0.5,
    EdgeKind.conditional: 0.5,
}

SOURCE_MODIFIERS: Dict[EdgeSource, float] = {
    EdgeSource.observed: 1.0,
    EdgeSource.inferred: 0.7,
    EdgeSource.template: 0.5,
}

# Edge kinds that must stay acyclic.
CAUSAL_KINDS = frozenset({EdgeKind.dependency, EdgeKind.provides})

# Observations after which an inferred edge counts as observed.
PROMOTION_THRESHOLD = 3


def edge_weight(kind: EdgeKind, source: EdgeSource) -> float:
    return EDGE_KIND_WEIGHTS[kind] * SOURCE_MODIFIERS[source]


def planner_cost(kind: EdgeKind, source: EdgeSource) -> float:
    """Traversal cost seen by the planner; heavier edges are cheaper to cross."""
    return 1.0 / edge_weight(kind, source)


def promoted_source(source: EdgeSource, observations: int) -> EdgeSource:
    if source is EdgeSource.inferred and observations >= PROMOTION_THRESHOLD:
        return EdgeSource.observed
    return source
