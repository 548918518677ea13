from __future__ import annotations

"""Repository interface contracts.

The engine depends on these Protocols instead of concrete persistence
implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations must not leak SQLAlchemy sessions or transactions.
- The episodic event repository is append-only apart from retention pruning.

The three repositories mirror the engine's persisted state:

- Graph snapshots are versioned; the latest one is reloaded on start.
- Episodic events are indexed by context key and by timestamp.
- Thresholds are keyed by context key.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from ..schemas.domain import EpisodicEvent, ThresholdRecord


class GraphSnapshotRepository(Protocol):
    """Persist and restore serialised graph snapshots."""

    async def save(self, version: int, payload: Dict[str, Any]) -> None:
        """
        Store a snapshot payload under its graph version.

        Args:
            version: The graph version the payload was taken at.
            payload: The output of ``GraphSnapshot.to_dict``.
        """
        ...

    async def latest(self) -> Optional[Tuple[int, Dict[str, Any]]]:
        """
        Return the newest ``(version, payload)`` pair, or None when nothing is stored.
        """
        ...

    async def prune(self, keep: int) -> int:
        """
        Delete all but the ``keep`` newest snapshots.

        Returns:
            Number of deleted snapshots.
        """
        ...


class EpisodicEventRepository(Protocol):
    """Append-only store of outcome events."""

    async def add_many(self, events: Sequence[EpisodicEvent]) -> None:
        """
        Append a batch of events atomically.

        Args:
            events: Events to insert; ids are unique.
        """
        ...

    async def list_recent(self, limit: int) -> List[EpisodicEvent]:
        """
        Return up to ``limit`` newest events, oldest first.
        """
        ...

    async def by_context(self, context_id: str, limit: int = 100) -> List[EpisodicEvent]:
        """
        Return up to ``limit`` newest events for one context key, oldest first.
        """
        ...

    async def prune(self, older_than: datetime, keep: int) -> int:
        """
        Delete events older than ``older_than`` and all but the ``keep`` newest.

        Returns:
            Number of deleted events.
        """
        ...

    async def count(self) -> int:
        """Return the number of stored events."""
        ...


class ThresholdRepository(Protocol):
    """Persist per-context threshold records."""

    async def upsert(self, record: ThresholdRecord) -> None:
        """
        Insert or replace the record for ``record.context_key``.
        """
        ...

    async def get(self, context_key: str) -> Optional[ThresholdRecord]:
        """
        Return the record for a context key, if any.
        """
        ...

    async def list_all(self) -> List[ThresholdRecord]:
        """Return all stored records."""
        ...


@dataclass(frozen=True)
class EngineRepos:
    """The three repositories an engine persists through."""

    graph: GraphSnapshotRepository
    events: EpisodicEventRepository
    thresholds: ThresholdRepository
