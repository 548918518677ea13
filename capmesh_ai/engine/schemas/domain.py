from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import Field, field_validator

from .base import BaseSchema, FrozenSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NodeKind(str, Enum):
    tool = "tool"
    capability = "capability"


class EdgeKind(str, Enum):
    dependency = "dependency"
    contains = "contains"
    provides = "provides"
    alternative = "alternative"
    sequence = "sequence"
    conditional = "conditional"


class EdgeSource(str, Enum):
    observed = "observed"
    inferred = "inferred"
    template = "template"


class Direction(str, Enum):
    outgoing = "out"
    incoming = "in"
    both = "both"


class Outcome(str, Enum):
    success = "success"
    failure = "failure"

    @property
    def value_as_float(self) -> float:
        return 1.0 if self is Outcome.success else 0.0


class PlanStatus(str, Enum):
    found = "found"
    partial = "partial"
    not_found = "not_found"


STRUCTURE_EDGE_KINDS = frozenset({EdgeKind.sequence, EdgeKind.provides, EdgeKind.conditional, EdgeKind.contains})


class StructureEdge(FrozenSchema):
    """Typed edge inside a capability's static structure."""

    source: str = Field(alias="from", min_length=1)
    target: str = Field(alias="to", min_length=1)
    kind: EdgeKind

    @field_validator("kind")
    @classmethod
    def _structure_kind(cls, value: EdgeKind) -> EdgeKind:
        if value not in STRUCTURE_EDGE_KINDS:
            raise ValueError(f"edge kind '{value.value}' is not allowed inside a capability structure")
        return value


class ActionDescriptor(BaseSchema):
    """Catalog entry reported by the invocation layer."""

    id: str = Field(min_length=1)
    kind: NodeKind
    embedding_hint: str = ""
    member_set: Optional[List[str]] = None
    static_structure: List[StructureEdge] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExecutionStep(BaseSchema):
    """One executed action inside an observed trace."""

    step_id: str = Field(min_length=1)
    action_id: str = Field(min_length=1)
    parent_step_id: Optional[str] = None
    consumes: List[str] = Field(default_factory=list, description="Step ids whose output this step used")
    success: bool = True


class ExecutionTrace(BaseSchema):
    steps: List[ExecutionStep]
    source: EdgeSource = EdgeSource.observed


class EpisodicEvent(FrozenSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    context_id: str = Field(min_length=1)
    action_id: str = Field(min_length=1)
    predicted_confidence: float = Field(ge=0.0, le=1.0)
    actual_outcome: Outcome
    timestamp: datetime = Field(default_factory=_utc_now)
    aux_payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def prediction_error(self) -> float:
        return abs(self.predicted_confidence - self.actual_outcome.value_as_float)


class ThresholdRecord(BaseSchema):
    context_key: str
    value: float
    smoothed_success_rate: Optional[float] = None
    sample_count: int = 0
    update_count: int = 0
    in_band_streak: int = 0
    updated_at: datetime = Field(default_factory=_utc_now)


class ThresholdMetrics(FrozenSchema):
    context_key: str
    value: float
    smoothed_success_rate: Optional[float]
    sample_count: int
    pending_outcomes: int
    converged: bool


class RankedCandidate(FrozenSchema):
    node_id: str
    kind: NodeKind
    score: float
    semantic_score: float
    structural_score: float
    per_head: Optional[Dict[str, float]] = None
    often_before: List[str] = Field(default_factory=list)
    often_after: List[str] = Field(default_factory=list)


class SearchResponse(FrozenSchema):
    results: List[RankedCandidate] = Field(default_factory=list)
    degraded: bool = False
    fallback: Optional[str] = None
    graph_version: int = 0


class PlanStep(FrozenSchema):
    node_id: str
    via: Optional[str] = Field(default=None, description="Hyperedge id used to reach this node")


class Plan(FrozenSchema):
    steps: List[PlanStep]
    total_cost: float

    @property
    def node_ids(self) -> List[str]:
        return [s.node_id for s in self.steps]


class PlanResult(FrozenSchema):
    status: PlanStatus
    plan: Optional[Plan] = None
    graph_version: int = 0
    reason: Optional[str] = None
    degraded: bool = Field(default=False, description="Goal text was resolved without the semantic signal")
    fallback: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status is PlanStatus.found


class ScoredCandidate(FrozenSchema):
    candidate_id: str
    fused_score: float = Field(ge=0.0, le=1.0)
    per_head: Dict[str, float]


class EpisodicStats(FrozenSchema):
    total_events: int
    buffered_events: int
    contexts: int
    oldest: Optional[datetime]
    newest: Optional[datetime]
    success_rate: Optional[float]


class BufferStatus(FrozenSchema):
    size: int
    capacity: int
    flush_pending: bool
    last_flush_at: Optional[datetime]
    failed_flushes: int
    dropped_events: int = 0
