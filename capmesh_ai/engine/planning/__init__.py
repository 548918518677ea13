"""Hyperpath planning over the capability hypergraph."""

from .hypergraph import Hyperedge, HyperedgeUpdate, Hypergraph, UpdateKind, derive_hyperedges, diff_hyperedges
from .labels import LabelState, LabelView
from .planner import HyperpathPlanner, NextStepCandidate
from .strategies import EdgeCentricRelaxation, PathCentricRelaxation, RelaxationStrategy, StrategySelector

__all__ = [
    "EdgeCentricRelaxation",
    "Hyperedge",
    "HyperedgeUpdate",
    "Hypergraph",
    "HyperpathPlanner",
    "LabelState",
    "LabelView",
    "NextStepCandidate",
    "PathCentricRelaxation",
    "RelaxationStrategy",
    "StrategySelector",
    "UpdateKind",
    "derive_hyperedges",
    "diff_hyperedges",
]
