from __future__ import annotations

"""Convenience factories for wiring the capability engine.

``build_engine`` turns an ``EngineSettings`` into a ready-to-start
``CapabilityEngine``: SQL repositories when a database URL is configured,
in-memory ones otherwise, and the HTTP embedding provider unless the caller
injects its own.

Advanced deployments and tests can still assemble ``CapabilityEngineDeps``
by hand.
"""

from typing import Optional

from ..core.config import EngineSettings
from ..core.logging_config import setup_logging
from ..core.monitoring import initialize_logfire
from .embedding.cache import CachedEmbeddingProvider
from .embedding.provider import EmbeddingProvider, HttpEmbeddingProvider
from .graph.store import GraphStore
from .graph.sync import GraphSynchronizer
from .learning.episodic import EpisodicStore
from .learning.thresholds import ThresholdManager
from .planning.planner import HyperpathPlanner
from .repos.interfaces import EngineRepos
from .repos.memory import build_memory_repos
from .repos.sql import build_sql_repos, create_engine, create_sessionmaker
from .scoring.scorer import MultiHeadScorer
from .scoring.trainer import ScorerTrainer
from .search.hybrid import HybridSearch
from .service import CapabilityEngine, CapabilityEngineDeps


def build_embedder(settings: EngineSettings) -> EmbeddingProvider:
    """Build the HTTP embedding provider from ``settings.embedding``."""
    cfg = settings.embedding
    return HttpEmbeddingProvider(
        cfg.base_url,
        cfg.model,
        api_key=cfg.api_key,
        dimension=cfg.dimension,
        timeout_seconds=cfg.timeout_seconds,
    )


def build_engine(
    settings: Optional[EngineSettings] = None,
    *,
    embedder: Optional[EmbeddingProvider] = None,
    repos: Optional[EngineRepos] = None,
    configure_logging: bool = False,
) -> CapabilityEngine:
    """Construct a ``CapabilityEngine`` from settings and optional overrides."""
    settings = settings or EngineSettings()
    if configure_logging:
        setup_logging(settings.log_level)
        initialize_logfire()

    db_engine = None
    if repos is None:
        if settings.database.url:
            db_engine = create_engine(settings.database.url, echo=settings.database.echo)
            repos = build_sql_repos(create_sessionmaker(db_engine))
        else:
            repos = build_memory_repos()

    cached = CachedEmbeddingProvider(embedder or build_embedder(settings), settings.embedding.cache_size)
    timeout = settings.embedding.timeout_seconds
    store = GraphStore()
    episodic = EpisodicStore(repos.events, settings.episodic, seed=settings.scorer.seed)
    scorer = MultiHeadScorer(store, episodic, settings.scorer)
    deps = CapabilityEngineDeps(
        store=store,
        embedder=cached,
        search=HybridSearch(store, cached, settings.search, embedding_timeout=timeout),
        planner=HyperpathPlanner(store, settings.planner),
        scorer=scorer,
        trainer=ScorerTrainer(scorer, episodic, cached, embedding_timeout=timeout),
        thresholds=ThresholdManager(settings.threshold),
        episodic=episodic,
        synchronizer=GraphSynchronizer(store, cached, embedding_timeout=timeout),
        repos=repos,
        db_engine=db_engine,
    )
    return CapabilityEngine(settings=settings, deps=deps)
