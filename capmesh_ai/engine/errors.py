"""Error types for the capability engine.

Only :class:`CycleRejectedError` and :class:`InvalidInputError` are raised to
callers of the query/update API. The others are raised inside the engine and
recovered locally (logged, skipped, or turned into a degraded result).
"""

from __future__ import annotations

from typing import Sequence


class CapMeshError(Exception):
    """Base error for all engine exceptions."""


class CycleRejectedError(CapMeshError):
    """Raised when a causal edge would close a cycle; the graph is left unchanged."""

    def __init__(self, source: str, target: str, kind: str, cycle: Sequence[str] = ()) -> None:
        self.source = source
        self.target = target
        self.kind = kind
        self.cycle = list(cycle)
        path = " -> ".join(self.cycle) if self.cycle else f"{target} -> ... -> {source}"
        super().__init__(f"Edge '{source}' --{kind}--> '{target}' rejected: would close cycle {path}")


class InvalidInputError(CapMeshError, ValueError):
    """Raised for malformed caller input (unknown kinds, bad ranges, empty ids)."""


class NodeNotFoundError(CapMeshError, KeyError):
    """Raised when an operation references a node id the graph does not hold."""

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node not found: '{node_id}'")

    def __str__(self) -> str:
        return str(self.args[0])


class DataInconsistencyError(CapMeshError):
    """Raised when stored data references something that does not exist."""


class EmbeddingUnavailableError(CapMeshError):
    """Raised when the embedding provider fails or times out."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Embedding unavailable: {message}")
