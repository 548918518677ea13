"""Capability graph engine: graph store, search, planning, scoring and learning.

Design overview
---------------

Readers never block writers. The graph store publishes immutable snapshots;
search, planning and scoring read whichever snapshot was current when the
call started. Writers (catalogue sync, execution observation, snapshot
restore) publish a new version atomically, and the planner re-prices its
cached labels from the hyperedge diff between versions.

Outcome reports feed two learners: the per-context threshold controller,
updated synchronously in arrival order, and the episodic store, which
buffers events and serves prioritised samples to the background scorer
trainer.

Typical usage
-------------

Build a ``CapabilityEngine`` with ``factory.build_engine``, ``await start()``,
then call its query and outcome methods; ``await stop()`` flushes and saves.
"""

from .errors import (
    CapMeshError,
    CycleRejectedError,
    DataInconsistencyError,
    EmbeddingUnavailableError,
    InvalidInputError,
    NodeNotFoundError,
)
from .factory import build_engine
from .schemas.domain import (
    ActionDescriptor,
    EdgeKind,
    EdgeSource,
    EpisodicEvent,
    ExecutionStep,
    ExecutionTrace,
    NodeKind,
    Outcome,
    PlanResult,
    PlanStatus,
    RankedCandidate,
    SearchResponse,
)
from .service import CapabilityEngine, CapabilityEngineDeps

__all__ = [
    "ActionDescriptor",
    "CapMeshError",
    "CapabilityEngine",
    "CapabilityEngineDeps",
    "CycleRejectedError",
    "DataInconsistencyError",
    "EdgeKind",
    "EdgeSource",
    "EmbeddingUnavailableError",
    "EpisodicEvent",
    "ExecutionStep",
    "ExecutionTrace",
    "InvalidInputError",
    "NodeKind",
    "NodeNotFoundError",
    "Outcome",
    "PlanResult",
    "PlanStatus",
    "RankedCandidate",
    "SearchResponse",
    "build_engine",
]
