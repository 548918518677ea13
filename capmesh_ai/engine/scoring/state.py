"""Scorer state: untrained vs trained, never nullable weights.

Query code matches on the variant, so a cold scorer can only ever take the
deterministic fallback path.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Union

import numpy as np

HEADS = ("semantic", "structural", "temporal")
GATE_FEATURES = 4


@dataclass(frozen=True)
class ScorerParams:
    """Learned parameters. Arrays are read-only; updates build a new instance."""

    w_query: np.ndarray  # (embedding_dim, projection_dim)
    w_key: np.ndarray  # (embedding_dim, projection_dim)
    gate_w: np.ndarray  # (GATE_FEATURES, len(HEADS))
    gate_b: np.ndarray  # (len(HEADS),)

    @property
    def embedding_dim(self) -> int:
        return self.w_query.shape[0]

    @property
    def projection_dim(self) -> int:
        return self.w_query.shape[1]

    @classmethod
    def initial(cls, embedding_dim: int, projection_dim: int, seed: Optional[int] = None) -> "ScorerParams":
        rng = np.random.default_rng(seed)
        scale = 1.0 / np.sqrt(embedding_dim)
        shared = rng.normal(0.0, scale, size=(embedding_dim, projection_dim))
        # Identical query/key projections start close to a scaled cosine.
        return cls.frozen(
            w_query=shared.copy(),
            w_key=shared.copy(),
            gate_w=np.zeros((GATE_FEATURES, len(HEADS))),
            gate_b=np.zeros(len(HEADS)),
        )

    @classmethod
    def frozen(cls, **arrays: np.ndarray) -> "ScorerParams":
        for a in arrays.values():
            a.setflags(write=False)
        return cls(**arrays)


@dataclass(frozen=True)
class UntrainedState:
    examples_seen: int = 0


@dataclass(frozen=True)
class TrainedState:
    params: ScorerParams
    examples_seen: int
    projection_ready: bool
    fusion_ready: bool
    passes: int = 1

    def advanced(self, params: ScorerParams, examples: int, min_projection: int, min_fusion: int) -> "TrainedState":
        seen = self.examples_seen + examples
        return replace(
            self,
            params=params,
            examples_seen=seen,
            projection_ready=seen >= min_projection,
            fusion_ready=seen >= min_fusion,
            passes=self.passes + 1,
        )


ScorerState = Union[UntrainedState, TrainedState]
