"""
Analytics over canonical events

- Cross-record enrichment (contact windows, rolling averages, bursts)
- Network graph construction, trimming and community detection
- Upload reports and analytics readiness

Network analysis against an event store lives in
cdrgraph_workers.analytics.network_analysis.
"""

from .enrichment import Enricher
from .network_graph import build_graph, compute_graph_stats, detect_communities, trim_graph
from .reports import generate_all_reports

__all__ = [
    "Enricher",
    "build_graph",
    "compute_graph_stats",
    "detect_communities",
    "trim_graph",
    "generate_all_reports",
]
