"""
Canonical event normalizer

Converts IntermediateRecords into CanonicalEvents:
- Wall-clock times are read in the reference timezone, explicit offsets are kept
- Temporal facets (date, hour, weekday, weekend, night) come from local time
- Caller/receiver resolution by direction with no speculative flipping
- Symmetric contact pair keys
"""
import hashlib
import math
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

import pytz
import structlog

from ..config import settings
from ..models.records import EVENT_TYPES, CanonicalEvent, IntermediateRecord
from .error_handler import CanonicalizationError

logger = structlog.get_logger(__name__)

UNKNOWN_DIRECTION_WARNING = "Unknown direction; assumed aParty as caller."

NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 6


def contact_pair_key(a: Optional[str], b: Optional[str]) -> Optional[str]:
    """Order-independent 16 hex char key for a pair of parties"""
    if not a or not b:
        return None
    low, high = sorted((a, b))
    return hashlib.sha256(f"{low}|{high}".encode("utf-8")).hexdigest()[:16]


def _is_coordinate(value) -> bool:
    return isinstance(value, (int, float)) and not math.isnan(value)


def location_source(lat: Optional[float], lng: Optional[float], cell_id: Optional[str]) -> str:
    if _is_coordinate(lat) and _is_coordinate(lng):
        return "gps"
    if cell_id:
        return "cell_id"
    return "unknown"


class Canonicalizer:
    """Builds CanonicalEvents in a single reference timezone"""

    def __init__(self, reference_timezone: Optional[str] = None):
        self.reference_timezone = reference_timezone or settings.reference_timezone
        self.tz = pytz.timezone(self.reference_timezone)

    def to_local(self, value: datetime) -> datetime:
        """Naive values are wall clock in the reference zone; aware values are converted"""
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            return self.tz.localize(value)
        return value.astimezone(self.tz)

    @staticmethod
    def resolve_direction(direction: Optional[str], a_party: Optional[str], b_party: Optional[str]) -> str:
        if a_party and b_party and a_party == b_party:
            return "internal"
        if direction in ("outgoing", "incoming", "internal"):
            return direction
        return "unknown"

    @staticmethod
    def resolve_parties(
        a_party: Optional[str], b_party: Optional[str], direction: str
    ) -> Tuple[Optional[str], Optional[str]]:
        """Return (caller, receiver); incoming means the B party initiated"""
        if direction == "incoming":
            return b_party, a_party
        return a_party, b_party

    def canonicalize(self, record: IntermediateRecord, upload_id: Optional[str] = None) -> CanonicalEvent:
        if not isinstance(record.start_time, datetime):
            raise CanonicalizationError("Missing startTime")

        try:
            local = self.to_local(record.start_time)
            end_local = self.to_local(record.end_time) if isinstance(record.end_time, datetime) else None
        except (ValueError, OverflowError, pytz.exceptions.InvalidTimeError) as e:
            raise CanonicalizationError(f"Invalid startTime: {e}") from e

        direction = self.resolve_direction(record.direction, record.a_party, record.b_party)
        caller, receiver = self.resolve_parties(record.a_party, record.b_party, direction)
        day_of_week = (local.weekday() + 1) % 7

        warnings = list(record.normalization_warnings)
        if direction == "unknown" and (record.a_party or record.b_party):
            warnings.append(UNKNOWN_DIRECTION_WARNING)

        event_type = record.event_type if record.event_type in EVENT_TYPES else "unknown"

        return CanonicalEvent(
            record_id=str(uuid.uuid4()),
            upload_id=upload_id,
            event_type=event_type,
            timestamp_utc=local.astimezone(pytz.utc),
            timestamp_local=local,
            date=local.strftime("%Y-%m-%d"),
            hour=local.hour,
            day_of_week=day_of_week,
            is_weekend=day_of_week in (0, 6),
            is_night=local.hour >= NIGHT_START_HOUR or local.hour < NIGHT_END_HOUR,
            caller_number=caller,
            receiver_number=receiver,
            direction=direction,
            call_duration_seconds=record.duration_sec or 0,
            contact_pair_key=contact_pair_key(caller, receiver),
            a_party=record.a_party,
            b_party=record.b_party,
            end_time_utc=end_local.astimezone(pytz.utc) if end_local else None,
            source_file=record.source.file_name,
            source_sheet=record.source.sheet_name,
            source_row=record.source.row_number,
            cell_id=record.cell_id,
            lac_id=record.lac_id,
            latitude=record.lat,
            longitude=record.lng,
            site=record.site,
            site_name=record.site_name,
            site_meta=record.site_meta,
            location_source=location_source(record.lat, record.lng, record.cell_id),
            imei=record.imei,
            imsi=record.imsi,
            service_provider=record.provider,
            normalization_warnings=warnings,
            ingested_at=datetime.now(timezone.utc),
        )
