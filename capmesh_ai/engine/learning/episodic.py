"""Buffered, retention-bounded store of outcome events.

Writes land in an in-process deque and are flushed to the repository in
batches, either when the buffer reaches ``buffer_size`` or on a periodic
timer. Flushed events are mirrored in memory so that context lookups and
prioritised sampling never touch the database on the query path.

Prioritised replay: an event's priority is ``(|predicted - actual| + eps) ** alpha``
and it is drawn with probability proportional to it. Each draw carries an
importance-sampling weight ``(1 / (N * P)) ** beta`` normalised by the batch
maximum, with ``beta`` annealed from ``is_beta_start`` to 1.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from ...core.config import EpisodicConfig
from ..repos.interfaces import EpisodicEventRepository
from ..schemas.domain import BufferStatus, EpisodicEvent, EpisodicStats, Outcome

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PrioritizedBatch:
    events: List[EpisodicEvent]
    weights: np.ndarray
    probabilities: np.ndarray
    beta: float


class EpisodicStore:
    def __init__(
        self,
        repository: EpisodicEventRepository,
        config: Optional[EpisodicConfig] = None,
        *,
        seed: Optional[int] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._repo = repository
        self.config = config or EpisodicConfig()
        self._clock = clock
        self._rng = np.random.default_rng(seed)
        self._buffer: Deque[EpisodicEvent] = deque()
        self._buffered_ids: Set[str] = set()
        self._events: "OrderedDict[str, EpisodicEvent]" = OrderedDict()
        self._priorities: Dict[str, float] = {}
        self._flush_lock = asyncio.Lock()
        self._flush_task: Optional[asyncio.Task] = None
        self._loops: List[asyncio.Task] = []
        self._draws = 0
        self._last_flush_at: Optional[datetime] = None
        self._failed_flushes = 0
        self._dropped_events = 0

    # ----------------------------------------------------------------- write
    def __contains__(self, event_id: object) -> bool:
        return event_id in self._events or event_id in self._buffered_ids

    def append(self, event: EpisodicEvent) -> bool:
        """Buffer an event; never blocks on storage.

        Returns False when an event with the same id is already stored or
        buffered. When the buffer is full the oldest buffered event is dropped.
        """
        if event.id in self:
            logger.warning(f"Ignoring duplicate episodic event '{event.id}'")
            return False
        if len(self._buffer) >= self.config.max_buffered_events:
            dropped = self._buffer.popleft()
            self._buffered_ids.discard(dropped.id)
            self._dropped_events += 1
            logger.warning(f"Episodic buffer full ({self.config.max_buffered_events}); dropped oldest event '{dropped.id}'")
        self._buffer.append(event)
        self._buffered_ids.add(event.id)
        if len(self._buffer) >= self.config.buffer_size:
            self._schedule_flush()
        return True

    def _schedule_flush(self) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the periodic flush or an explicit flush() picks it up.
            return
        self._flush_task = loop.create_task(self.flush())

    async def flush(self) -> int:
        """Write buffered events to the repository.

        A rejected batch is retried one event at a time. Events the repository
        still rejects are logged as inconsistent and dropped; when every event
        fails the storage is treated as unavailable and the whole batch goes
        back to the front of the buffer for the next flush.
        """
        async with self._flush_lock:
            if not self._buffer:
                return 0
            batch: List[EpisodicEvent] = []
            while self._buffer:
                batch.append(self._buffer.popleft())
            try:
                await self._repo.add_many(batch)
                stored = batch
            except Exception:
                stored, rejected = await self._store_one_by_one(batch)
                if not stored:
                    self._requeue(batch)
                    self._failed_flushes += 1
                    logger.exception(f"Episodic flush of {len(batch)} events failed; kept in buffer for retry")
                    return 0
                for event, error in rejected:
                    self._buffered_ids.discard(event.id)
                    self._dropped_events += 1
                    logger.warning(f"Dropping episodic event '{event.id}' rejected by the repository: {error}")
            for event in stored:
                self._buffered_ids.discard(event.id)
                self._mirror(event)
            self._trim_mirror()
            self._last_flush_at = self._clock()
            logger.debug(f"Flushed {len(stored)} episodic events")
            return len(stored)

    async def _store_one_by_one(
        self, batch: Sequence[EpisodicEvent]
    ) -> Tuple[List[EpisodicEvent], List[Tuple[EpisodicEvent, Exception]]]:
        stored: List[EpisodicEvent] = []
        rejected: List[Tuple[EpisodicEvent, Exception]] = []
        for event in batch:
            try:
                await self._repo.add_many([event])
            except Exception as e:
                rejected.append((event, e))
            else:
                stored.append(event)
        return stored, rejected

    def _requeue(self, batch: Sequence[EpisodicEvent]) -> None:
        self._buffer.extendleft(reversed(batch))
        while len(self._buffer) > self.config.max_buffered_events:
            dropped = self._buffer.popleft()
            self._buffered_ids.discard(dropped.id)
            self._dropped_events += 1
            logger.warning(f"Episodic buffer full after failed flush; dropped event '{dropped.id}'")

    def _mirror(self, event: EpisodicEvent) -> None:
        self._events[event.id] = event
        self._priorities[event.id] = self.priority_of(event.prediction_error)

    def _trim_mirror(self) -> None:
        while len(self._events) > self.config.max_events:
            event_id, _ = self._events.popitem(last=False)
            self._priorities.pop(event_id, None)

    def priority_of(self, error: float) -> float:
        return (abs(error) + self.config.priority_epsilon) ** self.config.priority_alpha

    # ------------------------------------------------------------------ read
    def by_context(self, context_id: str, limit: Optional[int] = None) -> List[EpisodicEvent]:
        """Exact-key lookup over stored and still-buffered events, oldest first."""
        matching = [e for e in self._events.values() if e.context_id == context_id]
        matching.extend(e for e in self._buffer if e.context_id == context_id)
        matching.sort(key=lambda e: e.timestamp)
        return matching[-limit:] if limit else matching

    def events(self) -> List[EpisodicEvent]:
        return list(self._events.values())

    def __len__(self) -> int:
        return len(self._events)

    # -------------------------------------------------------------- sampling
    def current_beta(self) -> float:
        cfg = self.config
        progress = min(1.0, self._draws / cfg.is_beta_anneal_steps)
        return cfg.is_beta_start + (1.0 - cfg.is_beta_start) * progress

    def sampling_probabilities(self) -> Dict[str, float]:
        ids = list(self._events)
        if not ids:
            return {}
        p = np.array([self._priorities[i] for i in ids], dtype=np.float64)
        p /= p.sum()
        return dict(zip(ids, p.tolist()))

    def sample(self, batch_size: int) -> Optional[PrioritizedBatch]:
        """Draw ``batch_size`` events with replacement, proportional to priority."""
        ids = list(self._events)
        if not ids or batch_size <= 0:
            return None
        priorities = np.array([self._priorities[i] for i in ids], dtype=np.float64)
        probs = priorities / priorities.sum()
        picks = self._rng.choice(len(ids), size=batch_size, replace=True, p=probs)
        beta = self.current_beta()
        self._draws += batch_size
        chosen = probs[picks]
        weights = (len(ids) * chosen) ** (-beta)
        weights = weights / weights.max()
        return PrioritizedBatch(
            events=[self._events[ids[i]] for i in picks],
            weights=weights,
            probabilities=chosen,
            beta=beta,
        )

    def update_priorities(self, event_ids: Sequence[str], errors: Sequence[float]) -> None:
        """Refresh priorities from new prediction errors (e.g. after training)."""
        for event_id, error in zip(event_ids, errors):
            if event_id in self._priorities:
                self._priorities[event_id] = self.priority_of(error)

    # ------------------------------------------------------------- retention
    async def prune(self) -> int:
        """Drop events beyond the age or count bound, whichever is tighter."""
        cfg = self.config
        cutoff = self._clock() - timedelta(days=cfg.retention_days)
        ordered = sorted(self._events.values(), key=lambda e: e.timestamp)
        survivors = [e for e in ordered if e.timestamp >= cutoff][-cfg.max_events :]
        keep = {e.id for e in survivors}
        for event_id in [i for i in self._events if i not in keep]:
            del self._events[event_id]
            self._priorities.pop(event_id, None)
        removed = await self._repo.prune(cutoff, cfg.max_events)
        if removed:
            logger.info(f"Pruned {removed} episodic events (cutoff={cutoff.isoformat()}, max={cfg.max_events})")
        return removed

    # ------------------------------------------------------------- lifecycle
    async def load(self) -> int:
        """Mirror the newest stored events (up to ``max_events``)."""
        events = await self._repo.list_recent(self.config.max_events)
        for event in events:
            self._mirror(event)
        return len(events)

    async def start(self) -> None:
        if self._loops:
            return
        self._loops = [
            asyncio.create_task(self._every(self.config.flush_interval_seconds, self.flush, "flush")),
            asyncio.create_task(self._every(self.config.prune_interval_seconds, self.prune, "prune")),
        ]

    async def _every(self, interval: float, job: Callable, name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except Exception:
                logger.exception(f"Periodic episodic {name} failed; retrying next cycle")

    async def shutdown(self) -> None:
        """Stop background loops and flush whatever is buffered."""
        for task in self._loops:
            task.cancel()
        for task in self._loops:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loops = []
        if self._flush_task is not None:
            await asyncio.gather(self._flush_task, return_exceptions=True)
        await self.flush()

    # --------------------------------------------------------------- metrics
    def stats(self) -> EpisodicStats:
        events = list(self._events.values())
        timestamps = [e.timestamp for e in events]
        successes = sum(1 for e in events if e.actual_outcome is Outcome.success)
        return EpisodicStats(
            total_events=len(events),
            buffered_events=len(self._buffer),
            contexts=len({e.context_id for e in events}),
            oldest=min(timestamps) if timestamps else None,
            newest=max(timestamps) if timestamps else None,
            success_rate=successes / len(events) if events else None,
        )

    def buffer_status(self) -> BufferStatus:
        return BufferStatus(
            size=len(self._buffer),
            capacity=self.config.buffer_size,
            flush_pending=self._flush_task is not None and not self._flush_task.done(),
            last_flush_at=self._last_flush_at,
            failed_flushes=self._failed_flushes,
            dropped_events=self._dropped_events,
        )
