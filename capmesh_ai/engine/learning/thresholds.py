"""Adaptive confidence thresholds per execution context.

Each context keeps an EMA-smoothed success rate and a threshold value. After
every ``update_batch_size`` outcomes the controller nudges the value: down
when the smoothed rate sits above the target band (the caller is being
over-cautious), up when it sits below (over-eager). The step is proportional
to the distance from the nearest band edge and capped at ``max_step``. While
the rate is on target a value outside the band is moved to the nearest band
edge. The value is always clamped to ``[min_value, max_value]`` and, once it
has entered the target band, it is held inside the band. The hold is released
upwards only after ``hold_release_window`` consecutive updates with the rate
below the band, so a collapsing success rate can still push the value up.

Records are created lazily: the first lookup for a context seeds its value
from the nearest ancestor key (``a|b|c`` -> ``a|b`` -> ``a``) or the default.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from ...core.config import ThresholdConfig
from ..errors import InvalidInputError
from ..schemas.domain import ThresholdMetrics, ThresholdRecord
from .context import fallback_chain

logger = logging.getLogger(__name__)


class ThresholdManager:
    def __init__(self, config: Optional[ThresholdConfig] = None) -> None:
        self.config = config or ThresholdConfig()
        self._records: Dict[str, ThresholdRecord] = {}
        self._pending: Dict[str, List[bool]] = {}
        self._below_band: Dict[str, int] = {}
        self._dirty: Set[str] = set()
        self._lock = threading.Lock()

    # ---------------------------------------------------------------- lookup
    @staticmethod
    def _validate_key(context_key: str) -> None:
        if not context_key or not context_key.strip():
            raise InvalidInputError("context_key must be a non-empty string")

    def _seed_value(self, context_key: str) -> float:
        for key in fallback_chain(context_key)[1:]:
            record = self._records.get(key)
            if record is not None:
                return record.value
        return self.config.default_value

    def _record(self, context_key: str) -> ThresholdRecord:
        record = self._records.get(context_key)
        if record is None:
            record = ThresholdRecord(context_key=context_key, value=self._seed_value(context_key))
            self._records[context_key] = record
            self._dirty.add(context_key)
        return record

    def get_threshold(self, context_key: str) -> float:
        """Current cutoff for ``context_key``, creating its record on first use."""
        self._validate_key(context_key)
        with self._lock:
            return self._record(context_key).value

    def peek(self, context_key: str) -> float:
        """Cutoff for ``context_key`` through the fallback chain, without creating a record."""
        for key in fallback_chain(context_key):
            record = self._records.get(key)
            if record is not None:
                return record.value
        return self.config.default_value

    # --------------------------------------------------------------- updates
    def record_outcome(self, context_key: str, success: bool) -> Optional[ThresholdRecord]:
        """Buffer one outcome; returns the updated record when a batch completes."""
        self._validate_key(context_key)
        with self._lock:
            self._record(context_key)
            pending = self._pending.setdefault(context_key, [])
            pending.append(bool(success))
            if len(pending) < self.config.update_batch_size:
                return None
            batch = list(pending)
            pending.clear()
            return self._update(context_key, batch)

    def observe_batch(self, context_key: str, outcomes: Iterable[bool]) -> ThresholdRecord:
        """Apply one controller update for an explicit batch of outcomes."""
        self._validate_key(context_key)
        batch = [bool(o) for o in outcomes]
        if not batch:
            raise InvalidInputError("observe_batch needs at least one outcome")
        with self._lock:
            self._record(context_key)
            return self._update(context_key, batch)

    def _update(self, context_key: str, batch: List[bool]) -> ThresholdRecord:
        cfg = self.config
        low, high = cfg.target_band
        record = self._records[context_key]

        observed = sum(batch) / len(batch)
        if record.smoothed_success_rate is None:
            smoothed = observed
        else:
            smoothed = cfg.ema_beta * observed + (1.0 - cfg.ema_beta) * record.smoothed_success_rate

        if smoothed > high:
            error = smoothed - high
        elif smoothed < low:
            error = smoothed - low
        else:
            error = 0.0
        below = self._below_band.get(context_key, 0) + 1 if smoothed < low else 0
        self._below_band[context_key] = below

        if error:
            step = min(cfg.max_step, abs(error) * cfg.step_gain)
            value = record.value - step if error > 0 else record.value + step
        elif record.value > high:
            # On target: bring an out-of-band value to the nearest edge.
            value = max(record.value - cfg.max_step, high)
        elif record.value < low:
            value = min(record.value + cfg.max_step, low)
        else:
            value = record.value
        value = min(max(value, cfg.min_value), cfg.max_value)
        if low <= record.value <= high:
            if below < cfg.hold_release_window:
                value = min(max(value, low), high)
            elif value > high:
                logger.info(f"Threshold '{context_key}' released above the band after {below} low-success updates")

        in_band = low <= smoothed <= high
        updated = record.model_copy(
            update={
                "value": value,
                "smoothed_success_rate": smoothed,
                "sample_count": record.sample_count + len(batch),
                "update_count": record.update_count + 1,
                "in_band_streak": record.in_band_streak + 1 if in_band else 0,
                "updated_at": datetime.now(timezone.utc),
            }
        )
        self._records[context_key] = updated
        self._dirty.add(context_key)
        logger.debug(
            f"Threshold '{context_key}': observed={observed:.3f} smoothed={smoothed:.3f} "
            f"value {record.value:.4f} -> {value:.4f}"
        )
        return updated

    # --------------------------------------------------------------- metrics
    def is_converged(self, record: ThresholdRecord) -> bool:
        return record.in_band_streak >= self.config.convergence_window

    def metrics(self, context_key: str) -> ThresholdMetrics:
        self._validate_key(context_key)
        with self._lock:
            record = self._record(context_key)
            pending = len(self._pending.get(context_key, ()))
        return ThresholdMetrics(
            context_key=context_key,
            value=record.value,
            smoothed_success_rate=record.smoothed_success_rate,
            sample_count=record.sample_count,
            pending_outcomes=pending,
            converged=self.is_converged(record),
        )

    def all_metrics(self) -> List[ThresholdMetrics]:
        return [self.metrics(k) for k in sorted(self._records)]

    def records(self) -> List[ThresholdRecord]:
        with self._lock:
            return [self._records[k] for k in sorted(self._records)]

    # ----------------------------------------------------------- persistence
    def load(self, records: Iterable[ThresholdRecord]) -> None:
        cfg = self.config
        with self._lock:
            for record in records:
                value = min(max(record.value, cfg.min_value), cfg.max_value)
                self._records[record.context_key] = record.model_copy(update={"value": value})

    def drain_dirty(self) -> List[ThresholdRecord]:
        """Records changed since the last drain, for persisting."""
        with self._lock:
            changed = [self._records[k] for k in sorted(self._dirty) if k in self._records]
            self._dirty.clear()
        return changed
