"""
Upload reports for canonical events

Generates in-memory report documents returned with each upload:
- Normalization report (warning histogram, field completeness, confidence tiers)
- Schema mapping report (per-file counts and detected header mappings)
- Data quality report with recommendations
- Analytics readiness verdict (location, graph and temporal coverage)
- Column summary for the persisted schema
"""
import math
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
import structlog

from ..models.records import CANONICAL_FIELDS, CanonicalEvent
from ..validation.data_quality import DataQualityValidator, generate_quality_summary

logger = structlog.get_logger(__name__)

COMPLETENESS_FIELDS = [
    "timestamp_utc", "caller_number", "receiver_number", "direction",
    "event_type", "call_duration_seconds", "latitude", "longitude",
    "cell_id", "imei", "imsi", "service_provider",
]

SUMMARY_COLUMNS = [
    "record_id", "source_file", "event_type", "timestamp_utc", "timestamp_local",
    "date", "hour", "day_of_week", "is_weekend", "is_night",
    "caller_number", "receiver_number", "direction", "call_duration_seconds",
    "contact_pair_key", "cell_id", "latitude", "longitude", "location_source",
    "imei", "imsi", "service_provider", "contact_first_seen", "contact_last_seen",
    "daily_event_count", "rolling_7_day_avg", "rolling_30_day_avg",
    "burst_session_id", "baseline_window_label",
]

READINESS_SAMPLE_SIZE = 1000
TEMPORAL_GAP_DAYS = 2
MIN_GRAPH_NODES = 10
MIN_GRAPH_EDGES = 5
MIN_TIME_SERIES_EVENTS = 100
CENTRALITY_DEGREE = 5


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0


def _non_null_counts(events: Sequence[CanonicalEvent], fields: Sequence[str]) -> Dict[str, int]:
    """Non-null count per attribute, via a DataFrame over the selected fields"""
    frame = pd.DataFrame(
        [{name: getattr(event, name) for name in fields} for event in events],
        columns=list(fields),
    )
    counts = frame.notna().sum()
    return {name: int(counts[name]) for name in fields}


def generate_normalization_report(events: Sequence[CanonicalEvent], upload_id: Optional[str]) -> Dict[str, Any]:
    total = len(events)
    warning_types: Counter = Counter()
    with_warnings = 0
    distribution = {"high": 0, "medium": 0, "low": 0}

    for event in events:
        if event.normalization_warnings:
            with_warnings += 1
            warning_types.update(event.normalization_warnings)

        if event.normalization_confidence is not None:
            distribution[event.normalization_confidence.tier] += 1
            continue
        missing_fields = event.timestamp_utc is None or (
            not event.caller_number and not event.receiver_number
        )
        if not event.normalization_warnings and not missing_fields:
            distribution["high"] += 1
        elif not missing_fields:
            distribution["medium"] += 1
        else:
            distribution["low"] += 1

    counts = _non_null_counts(events, COMPLETENESS_FIELDS)
    completeness = {
        name: {
            "nonNull": counts[name],
            "null": total - counts[name],
            "percentage": _percentage(counts[name], total),
        }
        for name in COMPLETENESS_FIELDS
    }

    return {
        "uploadId": upload_id,
        "generatedAt": _now_iso(),
        "totalRecords": total,
        "normalizationStats": {
            "recordsWithWarnings": with_warnings,
            "recordsWithoutWarnings": total - with_warnings,
            "warningTypes": dict(warning_types),
        },
        "fieldCompleteness": completeness,
        "confidenceDistribution": distribution,
    }


def generate_schema_mapping_report(
    file_summaries: Sequence[Dict[str, Any]],
    header_mappings: Sequence[Dict[str, Dict[str, str]]],
    unmapped_columns: Optional[Sequence[Dict[str, List[str]]]] = None,
) -> Dict[str, Any]:
    """
    Mapping arguments are aligned with file_summaries by position and keyed
    by sheet name, so uploads repeating a file name stay separate
    """
    unmapped_columns = unmapped_columns or []
    schema_mappings = []
    unmapped = []
    for index, summary in enumerate(file_summaries):
        file_name = summary["fileName"]
        sheets = header_mappings[index] if index < len(header_mappings) else {}
        schema_mappings.append({
            "fileIndex": index,
            "fileName": file_name,
            "totalRows": summary["totalRows"],
            "inserted": summary["inserted"],
            "skipped": summary["skipped"],
            "sheets": sheets,
        })
        file_unmapped = unmapped_columns[index] if index < len(unmapped_columns) else {}
        for sheet_name, columns in file_unmapped.items():
            unmapped.extend(
                {"fileIndex": index, "fileName": file_name, "sheetName": sheet_name, "column": column}
                for column in columns
            )

    return {
        "generatedAt": _now_iso(),
        "filesProcessed": len(file_summaries),
        "schemaMappings": schema_mappings,
        "unmappedColumns": unmapped,
    }


def generate_data_quality_report(
    events: Sequence[CanonicalEvent],
    upload_id: Optional[str],
    validator: Optional[DataQualityValidator] = None,
) -> Dict[str, Any]:
    summary = generate_quality_summary(events, validator)
    total = summary["totalRecords"]
    recommendations = []

    if summary["invalidPercentage"] > 5:
        recommendations.append({
            "severity": "high",
            "issue": "High invalid record percentage",
            "recommendation": "Review data source and normalization rules",
        })
    if summary["selfCallCount"] > 0:
        recommendations.append({
            "severity": "medium",
            "issue": "Self-calls detected",
            "recommendation": "Verify if self-calls are expected in this dataset",
        })
    if summary["missingLocationCount"] > total * 0.5:
        recommendations.append({
            "severity": "medium",
            "issue": "More than 50% of records missing location data",
            "recommendation": "Location-based analytics may be limited",
        })
    if summary["confidenceDistribution"]["low"] > total * 0.2:
        recommendations.append({
            "severity": "medium",
            "issue": "More than 20% of records have low confidence",
            "recommendation": "Review normalization rules and data source quality",
        })

    return {
        "uploadId": upload_id,
        "generatedAt": _now_iso(),
        "summary": summary,
        "recommendations": recommendations,
    }


def _location_coverage(events: Sequence[CanonicalEvent]) -> Dict[str, Any]:
    with_coordinates = sum(1 for e in events if e.latitude is not None and e.longitude is not None)
    with_cell = sum(1 for e in events if e.cell_id)
    return {
        "hasLatLng": with_coordinates > 0,
        "hasCellIdOnly": with_cell > 0 and with_coordinates == 0,
        "latLngPercentage": _percentage(with_coordinates, len(events)),
        "cellIdPercentage": _percentage(with_cell, len(events)),
    }


def _graph_readiness(events: Sequence[CanonicalEvent]) -> Dict[str, Any]:
    # Degree here is the number of events a party appears in
    degrees: Counter = Counter()
    pairs = set()
    for event in events:
        for party in (event.caller_number, event.receiver_number):
            if party:
                degrees[party] += 1
        if event.contact_pair_key:
            pairs.add(event.contact_pair_key)

    values = list(degrees.values())
    return {
        "uniqueNodes": len(degrees),
        "uniqueEdges": len(pairs),
        "maxDegree": max(values) if values else 0,
        "avgDegree": round(sum(values) / len(values), 2) if values else 0,
        "isolatedNodes": sum(1 for value in values if value == 1),
    }


def _temporal_coverage(events: Sequence[CanonicalEvent]) -> Optional[Dict[str, Any]]:
    timestamps = sorted(e.timestamp_utc for e in events if e.timestamp_utc is not None)
    if not timestamps:
        return None

    one_day = timedelta(days=1)
    gaps = []
    for previous, current in zip(timestamps, timestamps[1:]):
        diff_days = (current - previous) / one_day
        if diff_days > TEMPORAL_GAP_DAYS:
            gaps.append({
                "from": previous.isoformat(),
                "to": current.isoformat(),
                "days": round(diff_days, 2),
            })

    by_hour = [0] * 24
    for event in events:
        if event.hour is not None:
            by_hour[event.hour] += 1

    return {
        "dateRange": {
            "start": timestamps[0].isoformat(),
            "end": timestamps[-1].isoformat(),
            "days": math.ceil((timestamps[-1] - timestamps[0]) / one_day),
        },
        "gaps": gaps,
        "eventDensityByHour": by_hour,
        "totalEvents": len(events),
    }


def assess_analytics_readiness(
    events: Sequence[CanonicalEvent],
    upload_id: Optional[str],
    sample_size: int = READINESS_SAMPLE_SIZE,
) -> Dict[str, Any]:
    """What analytics the uploaded data can support, judged on a leading sample"""
    verdict = {
        "uploadId": upload_id,
        "generatedAt": _now_iso(),
        "safeToBuild": [],
        "blockedByLimitations": [],
        "dataLimitations": {},
        "recommendations": [],
    }
    sample = list(events[:sample_size])
    if not sample:
        verdict["blockedByLimitations"].append("No records available for analysis")
        return verdict

    location = _location_coverage(sample)
    graph = _graph_readiness(sample)
    temporal = _temporal_coverage(sample)
    verdict["dataLimitations"]["location"] = location
    verdict["dataLimitations"]["communicationGraph"] = graph
    if temporal is not None:
        verdict["dataLimitations"]["temporalCoverage"] = temporal

    safe = verdict["safeToBuild"]
    blocked = verdict["blockedByLimitations"]

    if graph["uniqueNodes"] > MIN_GRAPH_NODES and graph["uniqueEdges"] > MIN_GRAPH_EDGES:
        safe.append("Network Analysis - Sufficient nodes and edges")
    else:
        blocked.append("Network Analysis - Insufficient graph data")

    if location["hasLatLng"] and location["latLngPercentage"] > 50:
        safe.append("Geographic Analysis - GPS coordinates available")
    elif location["hasCellIdOnly"] and location["cellIdPercentage"] > 50:
        safe.append("Geographic Analysis - Cell ID data available (limited precision)")
    else:
        blocked.append("Geographic Analysis - Insufficient location data")

    timestamped = sum(1 for e in sample if e.timestamp_utc is not None)
    if timestamped > MIN_TIME_SERIES_EVENTS:
        safe.append("Temporal Pattern Analysis - Sufficient time series data")
    else:
        blocked.append("Temporal Pattern Analysis - Insufficient time series data")

    if graph["maxDegree"] > CENTRALITY_DEGREE:
        safe.append("Centrality Analysis - High-degree nodes detected")
    if any(e.burst_session_id for e in sample):
        safe.append("Burst Detection - Session grouping available")
    if any(e.baseline_window_label for e in sample):
        safe.append("Anomaly Detection - Baseline vs recent comparison available")

    recommendations = verdict["recommendations"]
    if location["latLngPercentage"] < 50:
        recommendations.append({
            "priority": "medium",
            "issue": "Low GPS coverage",
            "suggestion": "Consider cell tower location mapping for better geographic analysis",
        })
    if temporal is not None and temporal["gaps"]:
        recommendations.append({
            "priority": "low",
            "issue": "Temporal gaps detected",
            "suggestion": "Be aware of data gaps when performing time series analysis",
        })
    if graph["isolatedNodes"] > graph["uniqueNodes"] * 0.5:
        recommendations.append({
            "priority": "low",
            "issue": "Many isolated nodes",
            "suggestion": "Network may be sparse - consider focusing on connected components",
        })

    return verdict


def _data_type(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return "Date"
    if isinstance(value, bool):
        return "Boolean"
    if isinstance(value, (int, float)):
        return "Number"
    if isinstance(value, str):
        return "String"
    return "unknown"


def _source_confidence(percentage: float) -> str:
    if percentage < 50:
        return "low"
    if percentage < 80:
        return "medium"
    return "high"


def generate_column_summary(events: Sequence[CanonicalEvent], upload_id: Optional[str] = None) -> Dict[str, Any]:
    total = len(events)
    if total == 0:
        return {"uploadId": upload_id, "totalRecords": 0, "columns": [], "error": "No records found"}

    counts = _non_null_counts(events, SUMMARY_COLUMNS)
    columns = []
    for name in SUMMARY_COLUMNS:
        sample = next((getattr(e, name) for e in events if getattr(e, name) is not None), None)
        percentage = _percentage(counts[name], total)
        columns.append({
            "column": CANONICAL_FIELDS[name],
            "dataType": _data_type(sample),
            "nullCount": total - counts[name],
            "nonNullCount": counts[name],
            "nullPercentage": round(100 - percentage, 2),
            "sourceConfidence": _source_confidence(percentage),
        })

    return {"uploadId": upload_id, "totalRecords": total, "columns": columns}


def generate_all_reports(
    events: Sequence[CanonicalEvent],
    file_summaries: Sequence[Dict[str, Any]],
    upload_id: Optional[str],
    header_mappings: Sequence[Dict[str, Dict[str, str]]],
    unmapped_columns: Optional[Sequence[Dict[str, List[str]]]] = None,
    validator: Optional[DataQualityValidator] = None,
) -> Dict[str, Any]:
    """Every report for one upload, returned in memory and never written to disk"""
    reports = {
        "normalization": generate_normalization_report(events, upload_id),
        "schemaMapping": generate_schema_mapping_report(file_summaries, header_mappings, unmapped_columns),
        "dataQuality": generate_data_quality_report(events, upload_id, validator),
        "analyticsReadiness": assess_analytics_readiness(events, upload_id),
        "columnSummary": generate_column_summary(events, upload_id),
    }
    logger.info("Generated upload reports", upload_id=upload_id, records=len(events))
    return reports
