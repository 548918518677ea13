"""Outcome learning: episodic replay store and adaptive thresholds."""

from .context import fallback_chain, hash_context
from .episodic import EpisodicStore, PrioritizedBatch
from .thresholds import ThresholdManager

__all__ = ["EpisodicStore", "PrioritizedBatch", "ThresholdManager", "fallback_chain", "hash_context"]
