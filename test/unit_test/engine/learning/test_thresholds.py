"""Unit tests for adaptive confidence thresholds."""

import random

import pytest

from capmesh_ai.core.config import ThresholdConfig
from capmesh_ai.engine.errors import InvalidInputError
from capmesh_ai.engine.learning import ThresholdManager
from capmesh_ai.engine.schemas import ThresholdRecord


TOLERANCE = 0.02


def _batch(successes: int, size: int = 10):
    return [True] * successes + [False] * (size - successes)


class TestThresholdManager:
    """Test ThresholdManager."""

    def test_new_context_starts_cautious(self):
        manager = ThresholdManager()
        assert manager.get_threshold("workflowType:etl") == pytest.approx(0.92)

    def test_rejects_empty_key(self):
        manager = ThresholdManager()
        with pytest.raises(InvalidInputError):
            manager.get_threshold("  ")
        with pytest.raises(InvalidInputError):
            manager.record_outcome("", True)

    def test_updates_only_on_full_batches(self):
        manager = ThresholdManager()
        for _ in range(9):
            assert manager.record_outcome("ctx", True) is None
        assert manager.metrics("ctx").pending_outcomes == 9

        record = manager.record_outcome("ctx", True)

        assert record is not None
        assert record.sample_count == 10
        assert record.value < 0.92
        assert manager.metrics("ctx").pending_outcomes == 0

    def test_lowers_when_success_above_band(self):
        manager = ThresholdManager()
        values = [manager.observe_batch("ctx", _batch(10)).value for _ in range(12)]
        assert values == sorted(values, reverse=True)
        assert values[-1] == pytest.approx(0.80)

    def test_raises_when_success_below_band(self):
        manager = ThresholdManager(ThresholdConfig(default_value=0.70))
        values = [manager.observe_batch("ctx", _batch(6)).value for _ in range(12)]
        assert values == sorted(values)
        # Held at the top of the band until ten low-success updates in a row.
        assert values[8] == pytest.approx(0.90)
        assert values[-1] == pytest.approx(0.95)

    def test_hold_released_after_sustained_low_success(self):
        manager = ThresholdManager(ThresholdConfig(default_value=0.85, hold_release_window=3))
        values = [manager.observe_batch("ctx", _batch(0)).value for _ in range(3)]
        assert values == pytest.approx([0.90, 0.90, 0.95])

    def test_hold_kept_when_rate_recovers(self):
        manager = ThresholdManager(ThresholdConfig(default_value=0.85, hold_release_window=3, ema_beta=1.0))
        manager.observe_batch("ctx", _batch(0))
        manager.observe_batch("ctx", _batch(0))
        manager.observe_batch("ctx", _batch(10))
        record = manager.observe_batch("ctx", _batch(0))
        assert record.value == pytest.approx(0.90)

    def test_on_target_rate_pulls_value_into_band(self):
        manager = ThresholdManager()
        record = manager.observe_batch("ctx", _batch(17, size=20))
        assert record.value == pytest.approx(0.90)

    def test_step_is_capped(self):
        manager = ThresholdManager()
        record = manager.observe_batch("ctx", _batch(0))
        assert record.value == pytest.approx(0.95)  # 0.92 + 0.05 clamped to max
        record = manager.observe_batch("ctx", _batch(0))
        assert record.value == pytest.approx(0.95)

    def test_lower_clamp(self):
        manager = ThresholdManager(ThresholdConfig(default_value=0.42))
        record = manager.observe_batch("ctx", _batch(10))
        assert record.value == pytest.approx(0.40)

    def test_value_held_in_band_once_reached(self):
        manager = ThresholdManager(ThresholdConfig(default_value=0.85))
        for _ in range(20):
            record = manager.observe_batch("ctx", _batch(10))
            assert 0.80 <= record.value <= 0.90

    def test_smoothing_uses_ema(self):
        manager = ThresholdManager()
        manager.observe_batch("ctx", _batch(10))
        record = manager.observe_batch("ctx", _batch(0))
        assert record.smoothed_success_rate == pytest.approx(0.3 * 0.0 + 0.7 * 1.0)

    def test_empty_batch_rejected(self):
        with pytest.raises(InvalidInputError):
            ThresholdManager().observe_batch("ctx", [])

    def test_convergence_metric(self):
        manager = ThresholdManager(ThresholdConfig(convergence_window=3))
        for _ in range(3):
            manager.observe_batch("ctx", _batch(17, size=20))
        metrics = manager.metrics("ctx")
        assert metrics.converged
        assert metrics.sample_count == 60


class TestFallback:
    def test_finer_context_seeded_from_ancestor(self):
        manager = ThresholdManager()
        coarse = manager.observe_batch("a|b", _batch(10)).value

        assert manager.peek("a|b|c") == pytest.approx(coarse)
        assert manager.get_threshold("a|b|c") == pytest.approx(coarse)

    def test_peek_does_not_create_records(self):
        manager = ThresholdManager()
        assert manager.peek("x|y") == pytest.approx(0.92)
        assert manager.records() == []


class TestPersistence:
    def test_dirty_records_drained_once(self):
        manager = ThresholdManager()
        manager.get_threshold("a")
        manager.observe_batch("b", _batch(10))

        assert [r.context_key for r in manager.drain_dirty()] == ["a", "b"]
        assert manager.drain_dirty() == []

    def test_load_clamps_values(self):
        manager = ThresholdManager()
        manager.load([ThresholdRecord(context_key="a", value=2.0), ThresholdRecord(context_key="b", value=0.85)])
        assert manager.get_threshold("a") == pytest.approx(0.95)
        assert manager.get_threshold("b") == pytest.approx(0.85)
        assert [m.context_key for m in manager.all_metrics()] == ["a", "b"]


class TestOutcomeStreams:
    """Controller behaviour on seeded random outcome streams."""

    @pytest.mark.parametrize("success_rate", [0.95, 0.85])
    def test_converges_into_band_for_stationary_rate(self, success_rate):
        rng = random.Random(7)
        manager = ThresholdManager(ThresholdConfig(update_batch_size=20))
        values = []
        for _ in range(100 * 20):
            record = manager.record_outcome("ctx", rng.random() < success_rate)
            if record is not None:
                values.append(record.value)

        assert len(values) == 100
        entered = next(i for i, v in enumerate(values) if 0.80 <= v <= 0.90)
        assert entered < 50
        assert all(0.80 - TOLERANCE <= v <= 0.90 + TOLERANCE for v in values[entered:])

    @pytest.mark.parametrize("seed", range(10))
    def test_value_stays_within_bounds(self, seed):
        rng = random.Random(seed)
        config = ThresholdConfig(hold_release_window=rng.randint(1, 5))
        manager = ThresholdManager(config)
        for _ in range(200):
            success_rate = rng.random()
            size = rng.randint(1, 30)
            record = manager.observe_batch("ctx", [rng.random() < success_rate for _ in range(size)])
            assert config.min_value <= record.value <= config.max_value
