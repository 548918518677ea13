"""Persistence for graph snapshots, episodic events and thresholds."""

from .interfaces import EngineRepos, EpisodicEventRepository, GraphSnapshotRepository, ThresholdRepository
from .memory import (
    InMemoryEpisodicEventRepository,
    InMemoryGraphSnapshotRepository,
    InMemoryThresholdRepository,
    build_memory_repos,
)
from .sql import (
    build_sql_repos,
    create_all,
    create_engine,
    create_sessionmaker,
    normalize_url,
)

__all__ = [
    "EngineRepos",
    "EpisodicEventRepository",
    "GraphSnapshotRepository",
    "InMemoryEpisodicEventRepository",
    "InMemoryGraphSnapshotRepository",
    "InMemoryThresholdRepository",
    "ThresholdRepository",
    "build_memory_repos",
    "build_sql_repos",
    "create_all",
    "create_engine",
    "create_sessionmaker",
    "normalize_url",
]
