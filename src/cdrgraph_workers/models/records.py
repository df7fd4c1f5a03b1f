"""
Record types flowing through the CDR pipeline

- IntermediateRecord: one parsed spreadsheet/CSV row, pre-canonicalization
- CanonicalEvent: the durable, analytics-ready event persisted by the store
- NormalizationConfidence: heuristic trust score attached to each event
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Any


EVENT_TYPES = ("call", "sms", "data", "unknown")
DIRECTIONS = ("outgoing", "incoming", "internal", "unknown")
LOCATION_SOURCES = ("gps", "cell_id", "unknown")


@dataclass(frozen=True)
class SourceRef:
    """Where a record came from"""
    file_name: str
    sheet_name: Optional[str] = None
    row_number: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileName": self.file_name,
            "sheetName": self.sheet_name,
            "rowNumber": self.row_number,
        }


@dataclass
class IntermediateRecord:
    """Represents one normalized source row"""
    start_time: datetime
    source: SourceRef
    event_type: str = "call"
    direction: str = "unknown"
    a_party: Optional[str] = None
    b_party: Optional[str] = None
    end_time: Optional[datetime] = None
    duration_sec: float = 0
    lat: Optional[float] = None
    lng: Optional[float] = None
    cell_id: Optional[str] = None
    lac_id: Optional[str] = None
    site: Optional[str] = None
    site_name: Optional[str] = None
    site_meta: Optional[str] = None
    imei: Optional[str] = None
    imsi: Optional[str] = None
    provider: Optional[str] = None
    is_short_code: bool = False
    normalization_warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class NormalizationConfidence:
    """Confidence score (0-100) with tier and the factors that reduced it"""
    score: int
    tier: str
    factors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "confidence": self.tier,
            "factors": list(self.factors),
        }


# Persisted field names, in schema order
CANONICAL_FIELDS = {
    "record_id": "recordId",
    "upload_id": "uploadId",
    "source_file": "sourceFile",
    "source_sheet": "sourceSheet",
    "source_row": "sourceRow",
    "event_type": "eventType",
    "timestamp_utc": "timestampUtc",
    "timestamp_local": "timestampLocal",
    "end_time_utc": "endTimeUtc",
    "date": "date",
    "hour": "hour",
    "day_of_week": "dayOfWeek",
    "is_weekend": "isWeekend",
    "is_night": "isNight",
    "caller_number": "callerNumber",
    "receiver_number": "receiverNumber",
    "a_party": "aParty",
    "b_party": "bParty",
    "direction": "direction",
    "call_duration_seconds": "callDurationSeconds",
    "contact_pair_key": "contactPairKey",
    "cell_id": "cellId",
    "lac_id": "lacId",
    "latitude": "latitude",
    "longitude": "longitude",
    "site": "site",
    "site_name": "siteName",
    "site_meta": "siteMeta",
    "location_source": "locationSource",
    "imei": "imei",
    "imsi": "imsi",
    "service_provider": "serviceProvider",
    "normalization_warnings": "normalizationWarnings",
    "normalization_confidence": "normalizationConfidence",
    "is_duplicate": "isDuplicate",
    "contact_first_seen": "contactFirstSeen",
    "contact_last_seen": "contactLastSeen",
    "daily_event_count": "dailyEventCount",
    "rolling_7_day_avg": "rolling7DayAvg",
    "rolling_30_day_avg": "rolling30DayAvg",
    "burst_session_id": "burstSessionId",
    "baseline_window_label": "baselineWindowLabel",
    "ingested_at": "ingestedAt",
}


@dataclass
class CanonicalEvent:
    """Canonical, analytics-ready CDR event"""
    record_id: str
    upload_id: Optional[str]
    event_type: str
    timestamp_utc: Optional[datetime]
    timestamp_local: Optional[datetime]
    date: Optional[str]
    hour: Optional[int]
    day_of_week: Optional[int]
    is_weekend: bool
    is_night: bool
    caller_number: Optional[str]
    receiver_number: Optional[str]
    direction: str
    call_duration_seconds: float = 0
    contact_pair_key: Optional[str] = None
    a_party: Optional[str] = None
    b_party: Optional[str] = None
    end_time_utc: Optional[datetime] = None
    source_file: Optional[str] = None
    source_sheet: Optional[str] = None
    source_row: int = 0
    cell_id: Optional[str] = None
    lac_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    site: Optional[str] = None
    site_name: Optional[str] = None
    site_meta: Optional[str] = None
    location_source: str = "unknown"
    imei: Optional[str] = None
    imsi: Optional[str] = None
    service_provider: Optional[str] = None
    normalization_warnings: List[str] = field(default_factory=list)
    normalization_confidence: Optional[NormalizationConfidence] = None
    is_duplicate: bool = False

    # Enrichment
    contact_first_seen: Optional[datetime] = None
    contact_last_seen: Optional[datetime] = None
    daily_event_count: int = 0
    rolling_7_day_avg: float = 0.0
    rolling_30_day_avg: float = 0.0
    burst_session_id: Optional[str] = None
    baseline_window_label: Optional[str] = None

    ingested_at: Optional[datetime] = None

    def with_updates(self, **changes: Any) -> "CanonicalEvent":
        """Return a copy with the given fields replaced"""
        if "normalization_warnings" not in changes:
            changes["normalization_warnings"] = list(self.normalization_warnings)
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted document shape"""
        document = {}
        for attr, name in CANONICAL_FIELDS.items():
            value = getattr(self, attr)
            if attr == "normalization_confidence" and value is not None:
                value = value.to_dict()
            elif attr == "normalization_warnings":
                value = list(value)
            document[name] = value
        return document
