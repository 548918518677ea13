"""Multi-head candidate scoring and its background trainer."""

from .heads import TemporalIndex, projected_similarity, semantic_score, structural_score
from .scorer import MultiHeadScorer
from .state import HEADS, ScorerParams, ScorerState, TrainedState, UntrainedState
from .trainer import ScorerTrainer, TrainingReport

__all__ = [
    "HEADS",
    "MultiHeadScorer",
    "ScorerParams",
    "ScorerState",
    "ScorerTrainer",
    "TemporalIndex",
    "TrainedState",
    "TrainingReport",
    "UntrainedState",
    "projected_similarity",
    "semantic_score",
    "structural_score",
]
