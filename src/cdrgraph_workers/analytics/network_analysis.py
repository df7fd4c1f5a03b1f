"""
Network analysis over one upload's canonical events

Queries edge/node aggregates from the event store, derives degrees from the
edge list, builds the graph, enforces the node ceiling and requested limits,
then returns nodes, edges, communities and statistics.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import networkx as nx
import pytz
import structlog

from ..config import settings
from ..models.records import EVENT_TYPES
from ..utils.event_store import EventFilter, EventStore
from .network_graph import (
    ISOLATE,
    build_graph,
    compute_graph_stats,
    detect_communities,
    edge_to_dict,
    node_to_dict,
    trim_graph,
)

logger = structlog.get_logger(__name__)

EMPTY_RESULT_MESSAGE = "No records found for the specified filters"


def localize_bound(value: Optional[datetime], reference_timezone: Optional[str] = None) -> Optional[datetime]:
    """Naive bounds are wall-clock time in the reference zone, like naive record times"""
    if value is None or value.tzinfo is not None:
        return value
    return pytz.timezone(reference_timezone or settings.reference_timezone).localize(value)


@dataclass
class NetworkQuery:
    """Network request parameters; upload_id is mandatory"""
    upload_id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    event_type: Optional[str] = None
    min_edge_weight: int = 1
    limit_nodes: Optional[int] = None
    limit_edges: Optional[int] = None

    def __post_init__(self):
        if not self.upload_id:
            raise ValueError("upload_id is required for network analysis")
        if self.event_type in ("", "all"):
            self.event_type = None
        if self.event_type is not None:
            self.event_type = self.event_type.lower()
            if self.event_type not in EVENT_TYPES:
                raise ValueError(
                    "Invalid eventType. Must be one of: all, " + ", ".join(EVENT_TYPES)
                )
        self.min_edge_weight = max(1, int(self.min_edge_weight or 1))
        self.start = localize_bound(self.start)
        self.end = localize_bound(self.end)

    def to_filter(self) -> EventFilter:
        return EventFilter(
            upload_id=self.upload_id,
            start=self.start,
            end=self.end,
            event_type=self.event_type,
            complete_pairs_only=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.start.isoformat() if self.start else None,
            "to": self.end.isoformat() if self.end else None,
            "eventType": self.event_type or "all",
            "minEdgeWeight": self.min_edge_weight,
            "limitNodes": self.limit_nodes,
            "limitEdges": self.limit_edges,
        }


@dataclass
class NetworkAnalysisResult:
    upload_id: str
    filters: Dict[str, Any]
    nodes: List[Dict[str, Any]] = field(default_factory=list)
    edges: List[Dict[str, Any]] = field(default_factory=list)
    communities: List[Dict[str, Any]] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=lambda: compute_graph_stats(nx.Graph()))
    truncated: bool = False
    truncation_reason: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "uploadId": self.upload_id,
            "filters": self.filters,
            "graph": {"nodes": self.nodes, "edges": self.edges},
            "communities": self.communities,
            "stats": self.stats,
            "truncated": self.truncated,
            "truncationReason": self.truncation_reason,
        }
        if self.message:
            result["message"] = self.message
        return result


class NetworkAnalyzer:
    """Builds one graph per request from freshly queried aggregates"""

    def __init__(
        self,
        store: EventStore,
        max_nodes: Optional[int] = None,
        forced_trim_limit: Optional[int] = None,
        resolution: Optional[float] = None,
        seed: Optional[int] = None,
    ):
        self.store = store
        self.max_nodes = max_nodes or settings.max_graph_nodes
        self.forced_trim_limit = forced_trim_limit or settings.forced_trim_limit
        self.resolution = resolution if resolution is not None else settings.louvain_resolution
        self.seed = seed if seed is not None else settings.louvain_seed

    async def analyze(self, query: NetworkQuery) -> NetworkAnalysisResult:
        event_filter = query.to_filter()
        result = NetworkAnalysisResult(upload_id=query.upload_id, filters=query.to_dict())

        record_count = await self.store.count(event_filter)
        if record_count == 0:
            result.message = EMPTY_RESULT_MESSAGE
            return result

        edges = await self.store.aggregate_edges(event_filter, query.min_edge_weight, query.limit_edges)
        nodes = {node.id: node for node in await self.store.aggregate_nodes(event_filter)}

        # Degrees come from the (filtered, limited) edge list
        for edge in edges:
            for endpoint in (edge.source, edge.target):
                if endpoint in nodes:
                    nodes[endpoint].degree += 1
                    nodes[endpoint].weighted_degree += edge.weight

        node_list = list(nodes.values())
        if edges:
            node_list = [node for node in node_list if node.degree > 0]

        build = build_graph(edges, node_list)
        graph = build.graph
        if graph.number_of_nodes() == 0:
            logger.warning(
                "Network graph is empty but records exist",
                upload_id=query.upload_id,
                records=record_count,
                warnings=build.warnings[:10],
            )

        if graph.number_of_nodes() > self.max_nodes:
            trim_limit = query.limit_nodes or self.forced_trim_limit
            graph = trim_graph(graph, trim_limit)
            result.truncated = True
            result.truncation_reason = (
                f"Graph exceeded {self.max_nodes} nodes. "
                f"Trimmed to top {trim_limit} nodes by weighted degree."
            )
        elif query.limit_nodes and graph.number_of_nodes() > query.limit_nodes:
            graph = trim_graph(graph, query.limit_nodes)
            result.truncated = True
            result.truncation_reason = (
                f"Trimmed to top {query.limit_nodes} nodes by weighted degree as requested."
            )

        communities = detect_communities(graph, self.resolution, self.seed)
        stats = compute_graph_stats(graph)
        if build.self_loop_count:
            stats["selfCallsExcluded"] = build.self_loop_count
        if build.warnings:
            stats["buildWarnings"] = build.warnings[:10]

        result.nodes = [
            node_to_dict(graph, node, communities.assignments.get(node, ISOLATE))
            for node in sorted(graph.nodes)
        ]
        result.edges = sorted(
            (edge_to_dict(u, v, data) for u, v, data in graph.edges(data=True)),
            key=lambda e: (-e["weight"], e["source"], e["target"]),
        )
        result.communities = communities.communities
        result.stats = stats

        logger.info(
            "Network analysis completed",
            upload_id=query.upload_id,
            nodes=stats["nodeCount"],
            edges=stats["edgeCount"],
            communities=len(result.communities),
            truncated=result.truncated,
        )
        return result
