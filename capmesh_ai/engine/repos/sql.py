from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides SQL persistence for the repository interfaces defined in
``capmesh_ai.engine.repos.interfaces``. Postgres (asyncpg) is the production
target; SQLite (aiosqlite) is used by tests and local development.

Usage
-----

- Create an async engine with ``create_engine``.
- Create tables with ``create_all``.
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits, so every persisted artifact is durable when the method returns.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from ..schemas.domain import EpisodicEvent, Outcome, ThresholdRecord
from .interfaces import EngineRepos, EpisodicEventRepository, GraphSnapshotRepository, ThresholdRepository
from .models import Base, EpisodicEventRow, GraphSnapshotRow, ThresholdRow


def normalize_url(db_url: str) -> str:
    """Rewrite Postgres and SQLite URLs to their async drivers."""
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    return re.sub(r"^sqlite(?:\+[a-z0-9_]+)?://", "sqlite+aiosqlite://", url, count=1)


def create_engine(db_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    In-memory SQLite databases share one connection so that every session
    sees the same tables.
    """
    url = normalize_url(db_url)
    if url.startswith("sqlite"):
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            return create_async_engine(url, echo=echo, poolclass=StaticPool)
        return create_async_engine(url, echo=echo)
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo; stored values are always UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _event_from_row(row: EpisodicEventRow) -> EpisodicEvent:
    return EpisodicEvent(
        id=row.id,
        context_id=row.context_id,
        action_id=row.action_id,
        predicted_confidence=row.predicted_confidence,
        actual_outcome=Outcome(row.actual_outcome),
        timestamp=_as_utc(row.timestamp),
        aux_payload=dict(row.aux_payload or {}),
    )


def _threshold_from_row(row: ThresholdRow) -> ThresholdRecord:
    return ThresholdRecord(
        context_key=row.context_key,
        value=row.value,
        smoothed_success_rate=row.smoothed_success_rate,
        sample_count=row.sample_count,
        update_count=row.update_count,
        in_band_streak=row.in_band_streak,
        updated_at=_as_utc(row.updated_at),
    )


@dataclass(frozen=True)
class SqlGraphSnapshotRepository(GraphSnapshotRepository):
    """SQL implementation of ``GraphSnapshotRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def save(self, version: int, payload: Dict[str, Any]) -> None:
        async with self.session_factory() as s:
            await s.merge(GraphSnapshotRow(version=version, payload=payload, created_at=_utc_now()))
            await s.commit()

    async def latest(self) -> Optional[Tuple[int, Dict[str, Any]]]:
        async with self.session_factory() as s:
            stmt = select(GraphSnapshotRow).order_by(GraphSnapshotRow.version.desc()).limit(1)
            row = (await s.execute(stmt)).scalars().first()
            if row is None:
                return None
            return row.version, dict(row.payload)

    async def prune(self, keep: int) -> int:
        async with self.session_factory() as s:
            stmt = select(GraphSnapshotRow.version).order_by(GraphSnapshotRow.version.desc()).offset(keep)
            stale = list((await s.execute(stmt)).scalars().all())
            if stale:
                await s.execute(delete(GraphSnapshotRow).where(GraphSnapshotRow.version.in_(stale)))
                await s.commit()
            return len(stale)


@dataclass(frozen=True)
class SqlEpisodicEventRepository(EpisodicEventRepository):
    """SQL implementation of ``EpisodicEventRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def add_many(self, events: Sequence[EpisodicEvent]) -> None:
        """
        Insert a batch of events in one transaction.

        Args:
            events: The events to append.
        """
        async with self.session_factory() as s:
            s.add_all(
                [
                    EpisodicEventRow(
                        id=e.id,
                        context_id=e.context_id,
                        action_id=e.action_id,
                        predicted_confidence=e.predicted_confidence,
                        actual_outcome=e.actual_outcome.value,
                        timestamp=e.timestamp,
                        aux_payload=dict(e.aux_payload),
                    )
                    for e in events
                ]
            )
            await s.commit()

    async def list_recent(self, limit: int) -> List[EpisodicEvent]:
        async with self.session_factory() as s:
            stmt = select(EpisodicEventRow).order_by(EpisodicEventRow.timestamp.desc()).limit(limit)
            rows = (await s.execute(stmt)).scalars().all()
            return [_event_from_row(r) for r in reversed(rows)]

    async def by_context(self, context_id: str, limit: int = 100) -> List[EpisodicEvent]:
        async with self.session_factory() as s:
            stmt = (
                select(EpisodicEventRow)
                .where(EpisodicEventRow.context_id == context_id)
                .order_by(EpisodicEventRow.timestamp.desc())
                .limit(limit)
            )
            rows = (await s.execute(stmt)).scalars().all()
            return [_event_from_row(r) for r in reversed(rows)]

    async def prune(self, older_than: datetime, keep: int) -> int:
        """
        Apply both retention bounds.

        Args:
            older_than: Events strictly older than this are deleted.
            keep: At most this many of the newest events survive.

        Returns:
            Number of deleted events.
        """
        async with self.session_factory() as s:
            by_age = await s.execute(delete(EpisodicEventRow).where(EpisodicEventRow.timestamp < older_than))
            stmt = select(EpisodicEventRow.id).order_by(EpisodicEventRow.timestamp.desc()).offset(keep)
            overflow = list((await s.execute(stmt)).scalars().all())
            if overflow:
                await s.execute(delete(EpisodicEventRow).where(EpisodicEventRow.id.in_(overflow)))
            await s.commit()
            return (by_age.rowcount or 0) + len(overflow)

    async def count(self) -> int:
        async with self.session_factory() as s:
            return int((await s.execute(select(func.count()).select_from(EpisodicEventRow))).scalar_one())


@dataclass(frozen=True)
class SqlThresholdRepository(ThresholdRepository):
    """SQL implementation of ``ThresholdRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def upsert(self, record: ThresholdRecord) -> None:
        async with self.session_factory() as s:
            await s.merge(
                ThresholdRow(
                    context_key=record.context_key,
                    value=record.value,
                    smoothed_success_rate=record.smoothed_success_rate,
                    sample_count=record.sample_count,
                    update_count=record.update_count,
                    in_band_streak=record.in_band_streak,
                    updated_at=record.updated_at,
                )
            )
            await s.commit()

    async def get(self, context_key: str) -> Optional[ThresholdRecord]:
        async with self.session_factory() as s:
            row = await s.get(ThresholdRow, context_key)
            return None if row is None else _threshold_from_row(row)

    async def list_all(self) -> List[ThresholdRecord]:
        async with self.session_factory() as s:
            rows = (await s.execute(select(ThresholdRow).order_by(ThresholdRow.context_key))).scalars().all()
            return [_threshold_from_row(r) for r in rows]


def build_sql_repos(session_factory: async_sessionmaker[AsyncSession]) -> EngineRepos:
    """Build all SQL repositories sharing one session factory."""
    return EngineRepos(
        graph=SqlGraphSnapshotRepository(session_factory),
        events=SqlEpisodicEventRepository(session_factory),
        thresholds=SqlThresholdRepository(session_factory),
    )
