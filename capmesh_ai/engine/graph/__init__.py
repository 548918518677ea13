"""Versioned capability graph store."""

from .model import Edge, GraphSnapshot, Node
from .store import GraphStore, GraphTransaction, snapshot_from_dict
from .sync import GraphSynchronizer
from .weights import CAUSAL_KINDS, EDGE_KIND_WEIGHTS, SOURCE_MODIFIERS, edge_weight, planner_cost

__all__ = [
    "CAUSAL_KINDS",
    "EDGE_KIND_WEIGHTS",
    "Edge",
    "GraphSnapshot",
    "GraphStore",
    "GraphSynchronizer",
    "GraphTransaction",
    "Node",
    "SOURCE_MODIFIERS",
    "edge_weight",
    "planner_cost",
    "snapshot_from_dict",
]
