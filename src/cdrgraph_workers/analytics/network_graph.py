"""
Communication network graph utilities

Builds undirected interaction graphs from pre-aggregated edges and nodes:
- Validation of identifiers with collected build warnings
- Deterministic Louvain community detection
- Component, degree and density statistics
- Top-N trimming by weighted degree
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import networkx as nx
import networkx.algorithms.community as nx_comm
import structlog

from ..config import settings

logger = structlog.get_logger(__name__)

ISOLATE = "isolate"
TOP_NODES_PER_COMMUNITY = 10


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else value


@dataclass
class EdgeAggregate:
    """Events between one unordered pair of parties (source < target)"""
    source: Any
    target: Any
    weight: int = 0
    total_duration: float = 0
    event_count: int = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "weight": self.weight,
            "totalDuration": self.total_duration,
            "eventCount": self.event_count,
            "firstSeen": _iso(self.first_seen),
            "lastSeen": _iso(self.last_seen),
        }


@dataclass
class NodeAggregate:
    """Activity of one party across all its events"""
    id: Any
    total_events: int = 0
    total_duration: float = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    degree: int = 0
    weighted_degree: float = 0


@dataclass
class GraphBuildResult:
    graph: nx.Graph
    warnings: List[str] = field(default_factory=list)
    self_loop_count: int = 0


@dataclass
class CommunityResult:
    assignments: Dict[str, str] = field(default_factory=dict)
    communities: List[Dict[str, Any]] = field(default_factory=list)


def _clean_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_graph(edges: Iterable[EdgeAggregate], nodes: Iterable[NodeAggregate]) -> GraphBuildResult:
    """Undirected, non-multi graph; self-loops are counted and never added"""
    graph = nx.Graph()
    warnings: List[str] = []
    self_loops = 0

    for node in nodes:
        node_id = _clean_id(node.id)
        if node_id is None:
            warnings.append("Skipped invalid node: missing or empty id")
            continue
        graph.add_node(
            node_id,
            label=node_id,
            degree=node.degree,
            weighted_degree=node.weighted_degree,
            total_events=node.total_events,
            total_duration=node.total_duration,
            first_seen=node.first_seen,
            last_seen=node.last_seen,
        )

    for edge in edges:
        source, target = _clean_id(edge.source), _clean_id(edge.target)
        if source is None or target is None:
            warnings.append("Skipped edge: missing or empty source or target")
            continue
        if source == target:
            self_loops += 1
            continue
        if not graph.has_node(source) or not graph.has_node(target):
            warnings.append(f"Skipped edge: node missing for edge {source} -> {target}")
            continue

        if graph.has_edge(source, target):
            graph[source][target]["weight"] += edge.weight
            warnings.append(f"Edge {source} -> {target} already exists, merged weights")
            continue

        graph.add_edge(
            source,
            target,
            weight=edge.weight,
            total_duration=edge.total_duration,
            event_count=edge.event_count,
            first_seen=edge.first_seen,
            last_seen=edge.last_seen,
        )

    if warnings:
        logger.warning("Network graph build warnings", count=len(warnings), sample=warnings[:10])
    if self_loops:
        logger.info("Excluded self-calls from graph edges", self_calls=self_loops)

    return GraphBuildResult(graph=graph, warnings=warnings, self_loop_count=self_loops)


def weighted_degree(graph: nx.Graph, node: str) -> float:
    """Stored weighted degree, falling back to the sum of incident weights"""
    stored = graph.nodes[node].get("weighted_degree")
    if stored:
        return stored
    return graph.degree(node, weight="weight")


def _rank_key(graph: nx.Graph, node: str) -> Tuple[float, str]:
    return (-weighted_degree(graph, node), node)


def detect_communities(
    graph: nx.Graph,
    resolution: Optional[float] = None,
    seed: Optional[int] = None,
) -> CommunityResult:
    """Louvain communities labelled c0, c1, ... by size then smallest member"""
    if graph.number_of_nodes() == 0:
        return CommunityResult()

    resolution = resolution if resolution is not None else settings.louvain_resolution
    seed = seed if seed is not None else settings.louvain_seed

    # Insertion order drives Louvain's node visiting order
    ordered = nx.Graph()
    ordered.add_nodes_from(sorted(graph.nodes))
    ordered.add_weighted_edges_from(
        sorted((min(u, v), max(u, v), data.get("weight", 1)) for u, v, data in graph.edges(data=True))
    )

    assignments: Dict[str, str] = {}
    if ordered.number_of_edges() > 0:
        found = nx_comm.louvain_communities(ordered, weight="weight", resolution=resolution, seed=seed)
        connected = [sorted(members) for members in found if any(ordered.degree(n) for n in members)]
        connected.sort(key=lambda members: (-len(members), members[0]))
        for idx, members in enumerate(connected):
            for node in members:
                assignments[node] = f"c{idx}"

    for node in ordered.nodes:
        if ordered.degree(node) == 0:
            assignments[node] = ISOLATE

    members_by_id: Dict[str, List[str]] = {}
    for node in sorted(assignments):
        members_by_id.setdefault(assignments[node], []).append(node)

    intra_weight: Dict[str, float] = {community_id: 0 for community_id in members_by_id}
    for u, v, data in graph.edges(data=True):
        if assignments.get(u) == assignments.get(v):
            intra_weight[assignments[u]] += data.get("weight", 0)

    communities = []
    for community_id, members in members_by_id.items():
        top = sorted(members, key=lambda n: _rank_key(graph, n))[:TOP_NODES_PER_COMMUNITY]
        communities.append({
            "id": community_id,
            "size": len(members),
            "topNodes": [
                {
                    "id": node,
                    "weightedDegree": weighted_degree(graph, node),
                    "degree": graph.degree(node),
                }
                for node in top
            ],
            "totalEdgeWeight": intra_weight[community_id],
        })
    communities.sort(key=lambda c: (-c["size"], c["id"]))

    return CommunityResult(assignments=assignments, communities=communities)


def compute_graph_stats(graph: nx.Graph) -> Dict[str, Any]:
    node_count = graph.number_of_nodes()
    if node_count == 0:
        return {
            "nodeCount": 0,
            "edgeCount": 0,
            "components": 0,
            "isolates": 0,
            "density": 0,
            "maxDegree": 0,
            "avgDegree": 0,
            "maxWeightedDegree": 0,
            "avgWeightedDegree": 0,
        }

    edge_count = graph.number_of_edges()
    components = list(nx.connected_components(graph))
    possible_edges = node_count * (node_count - 1) / 2
    degrees = [graph.degree(node) for node in graph.nodes]
    weighted = [weighted_degree(graph, node) for node in graph.nodes]

    return {
        "nodeCount": node_count,
        "edgeCount": edge_count,
        "components": len(components),
        "isolates": sum(1 for component in components if len(component) == 1),
        "density": round(edge_count / possible_edges, 4) if possible_edges else 0,
        "maxDegree": max(degrees),
        "avgDegree": round(sum(degrees) / node_count, 2),
        "maxWeightedDegree": max(weighted),
        "avgWeightedDegree": round(sum(weighted) / node_count, 2),
    }


def trim_graph(graph: nx.Graph, limit: int) -> nx.Graph:
    """Keep the top-N nodes by weighted degree (ties by id) and edges between them"""
    if graph.number_of_nodes() <= limit:
        return graph
    keep = sorted(graph.nodes, key=lambda n: _rank_key(graph, n))[:limit]
    return graph.subgraph(keep).copy()


def node_to_dict(graph: nx.Graph, node: str, community: str) -> Dict[str, Any]:
    attrs = graph.nodes[node]
    return {
        "id": node,
        "label": attrs.get("label", node),
        "degree": attrs.get("degree", 0),
        "weightedDegree": attrs.get("weighted_degree", 0),
        "totalEvents": attrs.get("total_events", 0),
        "totalDuration": attrs.get("total_duration", 0),
        "community": community,
        "firstSeen": _iso(attrs.get("first_seen")),
        "lastSeen": _iso(attrs.get("last_seen")),
    }


def edge_to_dict(source: str, target: str, attrs: Dict[str, Any]) -> Dict[str, Any]:
    source, target = min(source, target), max(source, target)
    return {
        "id": f"{source}|{target}",
        "source": source,
        "target": target,
        "weight": attrs.get("weight", 0),
        "totalDuration": attrs.get("total_duration", 0),
        "eventCount": attrs.get("event_count", 0),
        "firstSeen": _iso(attrs.get("first_seen")),
        "lastSeen": _iso(attrs.get("last_seen")),
    }
