from __future__ import annotations

"""SQLAlchemy ORM models for engine persistence.

These ORM models define the SQL schema used by the SQL repository
implementation in ``capmesh_ai.engine.repos.sql``.

- Graph snapshots are stored whole, as JSON, one row per published version.
- Episodic events are append-only and indexed by context key and timestamp.
- Thresholds hold one row per context key.

JSON columns use JSONB on Postgres and plain JSON elsewhere (SQLite in
tests). Table names are prefixed with ``cm_`` to avoid collisions in shared
databases.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class GraphSnapshotRow(Base):
    """Row model for ``cm_graph_snapshots``."""

    __tablename__ = "cm_graph_snapshots"

    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JsonColumn, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class EpisodicEventRow(Base):
    """Row model for ``cm_episodic_events``.

    Immutable once written; removed only by retention pruning.
    """

    __tablename__ = "cm_episodic_events"
    __table_args__ = (Index("ix_cm_episodic_events_context_ts", "context_id", "timestamp"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    context_id: Mapped[str] = mapped_column(String(512))
    action_id: Mapped[str] = mapped_column(String(256))
    predicted_confidence: Mapped[float] = mapped_column(Float)
    actual_outcome: Mapped[str] = mapped_column(String(16))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    aux_payload: Mapped[Dict[str, Any]] = mapped_column(JsonColumn, default=dict)


class ThresholdRow(Base):
    """Row model for ``cm_thresholds``."""

    __tablename__ = "cm_thresholds"

    context_key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[float] = mapped_column(Float)
    smoothed_success_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sample_count: Mapped[int] = mapped_column(Integer, default=0)
    update_count: Mapped[int] = mapped_column(Integer, default=0)
    in_band_streak: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
