"""Structural algorithms over graph snapshots.

networkx is used for community detection (Louvain over the tool-only
subgraph) and PageRank; the rest walks the snapshot adjacency directly.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Mapping, Optional

import networkx as nx

from ..schemas.domain import NodeKind
from .weights import CAUSAL_KINDS

if TYPE_CHECKING:
    from .model import Edge, EdgeKey, GraphSnapshot

logger = logging.getLogger(__name__)

LOUVAIN_SEED = 7


def causal_path(
    out_adj: Mapping[str, Mapping["EdgeKey", "Edge"]], start: str, goal: str
) -> Optional[List[str]]:
    """Return a path ``start .. goal`` over causal edges, or None."""
    if start == goal:
        return [start]
    parents: Dict[str, str] = {start: start}
    stack = [start]
    while stack:
        current = stack.pop()
        for (target, kind), _edge in out_adj.get(current, {}).items():
            if kind not in CAUSAL_KINDS or target in parents:
                continue
            parents[target] = current
            if target == goal:
                path = [goal]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                return list(reversed(path))
            stack.append(target)
    return None


def adamic_adar(snapshot: "GraphSnapshot", a: str, b: str) -> float:
    """Sum of ``1/log(degree)`` over neighbours shared by ``a`` and ``b``.

    Shared neighbours of degree <= 1 carry no information and are skipped.
    """
    if a not in snapshot or b not in snapshot:
        return 0.0
    shared = set(snapshot.neighbors(a)) & set(snapshot.neighbors(b))
    score = 0.0
    for n in shared:
        degree = snapshot.degree(n)
        if degree > 1:
            score += 1.0 / math.log(degree)
    return score


def to_networkx(snapshot: "GraphSnapshot", node_filter: Optional[Callable[[str], bool]] = None) -> nx.DiGraph:
    keep = node_filter or (lambda _n: True)
    graph = nx.DiGraph()
    for node_id in snapshot.nodes:
        if keep(node_id):
            graph.add_node(node_id)
    for edge in snapshot.edges():
        if keep(edge.source) and keep(edge.target):
            prior = graph.get_edge_data(edge.source, edge.target, default={"weight": 0.0})
            graph.add_edge(edge.source, edge.target, weight=max(prior["weight"], edge.weight))
    return graph


def tool_communities(snapshot: "GraphSnapshot") -> Dict[str, int]:
    """Louvain communities of the undirected tool-only subgraph.

    Community ids are ordered by each community's smallest member id so they
    are stable for a given snapshot.
    """
    graph = to_networkx(snapshot, lambda n: snapshot.nodes[n].kind is NodeKind.tool).to_undirected()
    if graph.number_of_nodes() == 0:
        return {}
    communities = nx.community.louvain_communities(graph, weight="weight", seed=LOUVAIN_SEED)
    ordered = sorted((sorted(c) for c in communities), key=lambda members: members[0])
    return {node_id: index for index, members in enumerate(ordered) for node_id in members}


def pagerank(snapshot: "GraphSnapshot") -> Dict[str, float]:
    graph = to_networkx(snapshot)
    if graph.number_of_nodes() == 0:
        return {}
    try:
        return nx.pagerank(graph, weight="weight")
    except nx.PowerIterationFailedConvergence:
        logger.warning("PageRank did not converge; using uniform centrality")
        uniform = 1.0 / graph.number_of_nodes()
        return {n: uniform for n in graph.nodes}


def hypergraph_centrality(snapshot: "GraphSnapshot", ranks: Mapping[str, float]) -> Dict[str, float]:
    """Centrality of capabilities seen as hyperedges, in ``[0, 1]``.

    Blends normalised hyperdegree (how many other capabilities share a member)
    with the normalised mean PageRank of the members.
    """
    capabilities = [n for n in snapshot.nodes.values() if n.kind is NodeKind.capability]
    if not capabilities:
        return {}
    top_rank = max(ranks.values(), default=0.0) or 1.0
    member_sets = {c.id: set(c.members) for c in capabilities}
    result: Dict[str, float] = {}
    for cap in capabilities:
        members = member_sets[cap.id]
        overlaps = sum(1 for other, m in member_sets.items() if other != cap.id and members & m)
        hyperdegree = overlaps / (len(capabilities) - 1) if len(capabilities) > 1 else 0.0
        member_ranks = [ranks.get(m, 0.0) / top_rank for m in members]
        mean_rank = sum(member_ranks) / len(member_ranks) if member_ranks else 0.0
        result[cap.id] = 0.5 * hyperdegree + 0.5 * mean_rank
    return result


def community_match(communities: Mapping[str, int], candidates: Iterable[str], context: Iterable[str]) -> float:
    """Fraction of ``candidates`` sharing a community with any context node."""
    context_communities = {communities[c] for c in context if c in communities}
    members = [c for c in candidates if c in communities]
    if not members or not context_communities:
        return 0.0
    return sum(1 for m in members if communities[m] in context_communities) / len(members)
