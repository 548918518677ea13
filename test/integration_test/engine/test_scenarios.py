"""End-to-end behaviour of the engine through its public surface."""

from collections import Counter
from datetime import datetime, timezone

import pytest

from capmesh_ai.core.config import EngineSettings
from capmesh_ai.engine import (
    CapabilityEngine,
    CycleRejectedError,
    EdgeKind,
    NodeKind,
    Outcome,
    PlanStatus,
    build_engine,
)
from capmesh_ai.engine.learning import EpisodicStore
from capmesh_ai.engine.repos import InMemoryEpisodicEventRepository, build_memory_repos
from capmesh_ai.engine.schemas import EpisodicEvent


@pytest.fixture
def engine(fake_embedder_factory) -> CapabilityEngine:
    return build_engine(EngineSettings(), embedder=fake_embedder_factory(), repos=build_memory_repos())


def _tools(engine: CapabilityEngine, *ids: str) -> None:
    with engine.store.transaction() as tx:
        for node_id in ids:
            tx.upsert_node(node_id, NodeKind.tool)


@pytest.mark.asyncio
async def test_search_on_an_empty_graph_returns_nothing(engine):
    response = await engine.search("anything")
    assert response.results == []


@pytest.mark.asyncio
async def test_goal_without_incoming_provides_is_not_found(engine):
    _tools(engine, "A", "B", "C")
    engine.store.add_edge("A", "B", EdgeKind.provides)

    result = await engine.suggest_path("C", ["A"])

    assert result.status is PlanStatus.not_found


@pytest.mark.asyncio
async def test_chain_is_found_with_summed_cost(engine):
    _tools(engine, "A", "B", "C")
    engine.store.add_edge("A", "B", EdgeKind.provides)
    assert (await engine.suggest_path("C", ["A"])).status is PlanStatus.not_found

    engine.store.add_edge("B", "C", EdgeKind.provides)
    result = await engine.suggest_path("C", ["A"])

    snapshot = engine.store.snapshot()
    expected = snapshot.edge("A", "B", EdgeKind.provides).cost + snapshot.edge("B", "C", EdgeKind.provides).cost
    assert result.status is PlanStatus.found
    assert [s.node_id for s in result.plan.steps] == ["A", "B", "C"]
    assert result.plan.total_cost == pytest.approx(expected)


def test_threshold_moves_down_into_band(engine):
    assert engine.get_threshold("x") == pytest.approx(0.92)

    for i in range(100):
        engine.record_outcome("x", "tool", 0.9, i % 20 != 0)

    value = engine.get_threshold("x")
    assert 0.80 <= value <= 0.90
    assert value < 0.92


def test_cycle_is_rejected_and_graph_unchanged(engine):
    _tools(engine, "A", "B", "C")
    engine.store.add_edge("A", "B", EdgeKind.provides)
    engine.store.add_edge("B", "C", EdgeKind.provides)
    before = engine.store.snapshot()

    with pytest.raises(CycleRejectedError) as exc:
        engine.store.add_edge("C", "A", EdgeKind.provides)

    assert exc.value.cycle == ["C", "A", "B", "C"]
    assert engine.store.snapshot() is before
    assert engine.store.neighbors("A") == ("B",)


@pytest.mark.asyncio
async def test_prioritised_sampling_follows_error_magnitude():
    store = EpisodicStore(InMemoryEpisodicEventRepository(), seed=0)
    now = datetime.now(timezone.utc)
    low = EpisodicEvent(
        context_id="ctx", action_id="t", predicted_confidence=0.9, actual_outcome=Outcome.success, timestamp=now
    )
    high = EpisodicEvent(
        context_id="ctx", action_id="t", predicted_confidence=0.9, actual_outcome=Outcome.failure, timestamp=now
    )
    store.append(low)
    store.append(high)
    await store.flush()

    counts: Counter = Counter()
    for _ in range(100):
        batch = store.sample(100)
        counts.update(e.id for e in batch.events)

    assert sum(counts.values()) == 10_000
    ratio = counts[high.id] / counts[low.id]
    assert 3.2 <= ratio <= 4.3  # 9 ** 0.6 ~= 3.74
