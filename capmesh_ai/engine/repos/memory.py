"""In-memory repository implementations.

Used when no database URL is configured, and by unit tests. Behaviour
matches the SQL repositories, including ordering and retention semantics.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..schemas.domain import EpisodicEvent, ThresholdRecord
from .interfaces import EngineRepos


class InMemoryGraphSnapshotRepository:
    def __init__(self) -> None:
        self._snapshots: Dict[int, Dict[str, Any]] = {}

    async def save(self, version: int, payload: Dict[str, Any]) -> None:
        self._snapshots[version] = payload

    async def latest(self) -> Optional[Tuple[int, Dict[str, Any]]]:
        if not self._snapshots:
            return None
        version = max(self._snapshots)
        return version, self._snapshots[version]

    async def prune(self, keep: int) -> int:
        stale = sorted(self._snapshots, reverse=True)[keep:]
        for v in stale:
            del self._snapshots[v]
        return len(stale)


class InMemoryEpisodicEventRepository:
    def __init__(self) -> None:
        self._events: Dict[str, EpisodicEvent] = {}
        self._lock = asyncio.Lock()

    def _ordered(self) -> List[EpisodicEvent]:
        return sorted(self._events.values(), key=lambda e: e.timestamp)

    async def add_many(self, events: Sequence[EpisodicEvent]) -> None:
        async with self._lock:
            duplicate = [e.id for e in events if e.id in self._events]
            if duplicate:
                raise ValueError(f"Duplicate event ids: {duplicate}")
            for e in events:
                self._events[e.id] = e

    async def list_recent(self, limit: int) -> List[EpisodicEvent]:
        return self._ordered()[-limit:] if limit > 0 else []

    async def by_context(self, context_id: str, limit: int = 100) -> List[EpisodicEvent]:
        matching = [e for e in self._ordered() if e.context_id == context_id]
        return matching[-limit:] if limit > 0 else []

    async def prune(self, older_than: datetime, keep: int) -> int:
        async with self._lock:
            ordered = self._ordered()
            survivors = [e for e in ordered if e.timestamp >= older_than]
            survivors = survivors[-keep:] if keep > 0 else []
            removed = len(ordered) - len(survivors)
            self._events = {e.id: e for e in survivors}
            return removed

    async def count(self) -> int:
        return len(self._events)


class InMemoryThresholdRepository:
    def __init__(self) -> None:
        self._records: Dict[str, ThresholdRecord] = {}

    async def upsert(self, record: ThresholdRecord) -> None:
        self._records[record.context_key] = record.model_copy()

    async def get(self, context_key: str) -> Optional[ThresholdRecord]:
        record = self._records.get(context_key)
        return None if record is None else record.model_copy()

    async def list_all(self) -> List[ThresholdRecord]:
        return [self._records[k].model_copy() for k in sorted(self._records)]


def build_memory_repos() -> EngineRepos:
    return EngineRepos(
        graph=InMemoryGraphSnapshotRepository(),
        events=InMemoryEpisodicEventRepository(),
        thresholds=InMemoryThresholdRepository(),
    )
