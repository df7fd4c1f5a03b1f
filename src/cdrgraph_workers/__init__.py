"""
CDRGraph Workers - call detail record ingestion and network analytics

This package provides workers for:
- Multi-format CDR parsing (CSV, XLS, XLSX) with header detection
- Normalization into canonical, analytics-ready events
- Data quality validation, deduplication and enrichment
- Communication network graphs with community detection
"""

__version__ = "1.0.0"
__author__ = "CDRGraph Team"

from .pipeline.ingestion_pipeline import IngestionPipeline
from .analytics.network_analysis import NetworkAnalyzer, NetworkQuery
from .parsers.tabular_parser import TabularParser
from .utils.event_store import EventStore, InMemoryEventStore

__all__ = [
    "IngestionPipeline",
    "NetworkAnalyzer",
    "NetworkQuery",
    "TabularParser",
    "EventStore",
    "InMemoryEventStore",
]
