"""Schemas and DTOs for the capability engine."""

from .base import BaseSchema, FrozenSchema
from .domain import (
    ActionDescriptor,
    BufferStatus,
    Direction,
    EdgeKind,
    EdgeSource,
    EpisodicEvent,
    EpisodicStats,
    ExecutionStep,
    ExecutionTrace,
    NodeKind,
    Outcome,
    Plan,
    PlanResult,
    PlanStatus,
    PlanStep,
    RankedCandidate,
    ScoredCandidate,
    SearchResponse,
    StructureEdge,
    ThresholdMetrics,
    ThresholdRecord,
)

__all__ = [
    "BaseSchema",
    "FrozenSchema",
    "ActionDescriptor",
    "BufferStatus",
    "Direction",
    "EdgeKind",
    "EdgeSource",
    "EpisodicEvent",
    "EpisodicStats",
    "ExecutionStep",
    "ExecutionTrace",
    "NodeKind",
    "Outcome",
    "Plan",
    "PlanResult",
    "PlanStatus",
    "PlanStep",
    "RankedCandidate",
    "ScoredCandidate",
    "SearchResponse",
    "StructureEdge",
    "ThresholdMetrics",
    "ThresholdRecord",
]
