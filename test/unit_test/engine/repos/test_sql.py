"""Tests for the SQL repository implementations on in-memory SQLite."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from capmesh_ai.engine.repos import (
    EngineRepos,
    build_sql_repos,
    create_all,
    create_engine,
    create_sessionmaker,
    normalize_url,
)
from capmesh_ai.engine.schemas import EpisodicEvent, Outcome, ThresholdRecord

T0 = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def repos(db_engine) -> EngineRepos:
    return build_sql_repos(create_sessionmaker(db_engine))


def _event(event_id: str, context: str = "ctx", minutes: int = 0) -> EpisodicEvent:
    return EpisodicEvent(
        id=event_id,
        context_id=context,
        action_id="tool",
        predicted_confidence=0.8,
        actual_outcome=Outcome.failure,
        timestamp=T0 + timedelta(minutes=minutes),
        aux_payload={"query": "find", "context_nodes": ["a"]},
    )


@pytest.mark.parametrize(
    "url,expected",
    [
        ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgresql+psycopg2://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("sqlite:///engine.db", "sqlite+aiosqlite:///engine.db"),
        ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
    ],
)
def test_normalize_url(url, expected):
    assert normalize_url(url) == expected


class TestGraphSnapshotRepository:
    """Test suite for SqlGraphSnapshotRepository."""

    @pytest.mark.asyncio
    async def test_latest_and_prune(self, repos: EngineRepos) -> None:
        assert await repos.graph.latest() is None
        for version in (1, 2, 3):
            await repos.graph.save(version, {"version": version, "nodes": [], "edges": []})

        version, payload = await repos.graph.latest()
        assert version == 3
        assert payload["version"] == 3

        assert await repos.graph.prune(keep=1) == 2
        assert (await repos.graph.latest())[0] == 3

    @pytest.mark.asyncio
    async def test_save_same_version_replaces(self, repos: EngineRepos) -> None:
        await repos.graph.save(1, {"nodes": []})
        await repos.graph.save(1, {"nodes": [{"id": "a"}]})
        _, payload = await repos.graph.latest()
        assert payload == {"nodes": [{"id": "a"}]}


class TestEpisodicEventRepository:
    """Test suite for SqlEpisodicEventRepository."""

    @pytest.mark.asyncio
    async def test_add_and_read_back(self, repos: EngineRepos) -> None:
        await repos.events.add_many([_event("e2", minutes=2), _event("e1", minutes=1), _event("x", "other", 3)])

        recent = await repos.events.list_recent(2)
        assert [e.id for e in recent] == ["e2", "x"]
        assert recent[0].timestamp == T0 + timedelta(minutes=2)
        assert recent[0].aux_payload == {"query": "find", "context_nodes": ["a"]}
        assert recent[0].actual_outcome is Outcome.failure

        by_context = await repos.events.by_context("ctx")
        assert [e.id for e in by_context] == ["e1", "e2"]
        assert await repos.events.count() == 3

    @pytest.mark.asyncio
    async def test_prune_applies_age_and_count(self, repos: EngineRepos) -> None:
        await repos.events.add_many([_event(f"e{i}", minutes=i) for i in range(5)])

        removed = await repos.events.prune(older_than=T0 + timedelta(minutes=1), keep=3)

        assert removed == 2
        assert [e.id for e in await repos.events.list_recent(10)] == ["e2", "e3", "e4"]

    @pytest.mark.asyncio
    async def test_prune_by_count(self, repos: EngineRepos) -> None:
        await repos.events.add_many([_event(f"e{i}", minutes=i) for i in range(5)])
        assert await repos.events.prune(older_than=T0 - timedelta(days=1), keep=2) == 3
        assert [e.id for e in await repos.events.list_recent(10)] == ["e3", "e4"]


class TestThresholdRepository:
    """Test suite for SqlThresholdRepository."""

    @pytest.mark.asyncio
    async def test_upsert_get_list(self, repos: EngineRepos) -> None:
        assert await repos.thresholds.get("a") is None
        await repos.thresholds.upsert(ThresholdRecord(context_key="b", value=0.9, updated_at=T0))
        await repos.thresholds.upsert(ThresholdRecord(context_key="a", value=0.8, updated_at=T0))
        await repos.thresholds.upsert(
            ThresholdRecord(context_key="a", value=0.85, smoothed_success_rate=0.91, sample_count=10, updated_at=T0)
        )

        record = await repos.thresholds.get("a")
        assert record.value == pytest.approx(0.85)
        assert record.smoothed_success_rate == pytest.approx(0.91)
        assert record.sample_count == 10
        assert record.updated_at == T0
        assert [r.context_key for r in await repos.thresholds.list_all()] == ["a", "b"]
