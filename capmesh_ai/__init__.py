"""CapMesh-AI.

This package contains a capability graph and hyperpath suggestion engine: it
learns how tools and capabilities relate from their descriptions and from
observed executions, and answers "what should run next" for an orchestration
layer.

High-level architecture
-----------------------

- ``capmesh_ai.engine.graph``: a versioned copy-on-write graph of tools and
  capabilities (capabilities are hyperedges over their members).
- ``capmesh_ai.engine.search``: hybrid semantic + structural search.
- ``capmesh_ai.engine.planning``: an incremental hyperpath planner.
- ``capmesh_ai.engine.scoring``: a multi-head re-ranker trained in the
  background from prioritised replay.
- ``capmesh_ai.engine.learning``: the episodic outcome store and adaptive
  per-context confidence thresholds.
- ``capmesh_ai.engine.repos``: persistence protocols with SQLAlchemy and
  in-memory implementations.

Typical workflow
----------------

Most integrations should use ``capmesh_ai.engine.service.CapabilityEngine``,
built through ``capmesh_ai.engine.factory.build_engine``:

1. ``sync_catalog`` with the invocation layer's action list.
2. ``search`` / ``suggest_path`` / ``next_step`` to choose actions.
3. ``get_threshold`` to decide whether to act without confirmation.
4. ``record_outcome`` after every action so thresholds and scoring learn.
"""
