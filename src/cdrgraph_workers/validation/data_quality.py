"""
Data quality validation for canonical events

Provides:
- Per-event sanity checks split into fatal errors and warnings
- Normalization confidence scoring with recorded factors
- Batch quality summaries for reports
"""
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import structlog

from ..models.records import CanonicalEvent, NormalizationConfidence

logger = structlog.get_logger(__name__)

MIN_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)
PLAUSIBLE_EPOCH = datetime(2015, 1, 1, tzinfo=timezone.utc)
FUTURE_TOLERANCE = timedelta(hours=1)
MAX_DURATION_SECONDS = 86400
MAX_SMS_DURATION_SECONDS = 3600

# Error messages
MISSING_TIMESTAMP = "Missing timestamp"
TIMESTAMP_BEFORE_2000 = "Timestamp before 2000 (invalid epoch)"
NEGATIVE_DURATION = "Negative duration"
MISSING_BOTH_PARTIES = "Missing both caller and receiver"

# Warning messages
FUTURE_TIMESTAMP = "Future timestamp detected"
TIMESTAMP_BEFORE_2015 = "Timestamp before 2015"
DURATION_OVER_24H = "Duration exceeds 24 hours"
SMS_DURATION_OVER_1H = "SMS with duration > 1 hour"
SELF_CALL = "Self-call detected (caller = receiver)"

# Confidence penalties
PENALTY_MISSING_TIMESTAMP = 50
PENALTY_MISSING_PARTIES = 50
PENALTY_MISSING_ONE_PARTY = 10
PENALTY_UNKNOWN_DIRECTION = 15
PENALTY_UNKNOWN_EVENT_TYPE = 10
PENALTY_MISSING_LOCATION = 5
PENALTY_PER_WARNING = 2

HIGH_CONFIDENCE = 80
MEDIUM_CONFIDENCE = 50


@dataclass
class QualityResult:
    """Outcome of validating one event"""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    confidence: Optional[NormalizationConfidence] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "confidence": self.confidence.to_dict() if self.confidence else None,
        }


def has_location(event: CanonicalEvent) -> bool:
    return event.latitude is not None or event.longitude is not None or bool(event.cell_id)


def confidence_tier(score: int) -> str:
    if score >= HIGH_CONFIDENCE:
        return "high"
    if score >= MEDIUM_CONFIDENCE:
        return "medium"
    return "low"


class DataQualityValidator:
    """Validates canonical events and scores normalization confidence"""

    def check_timestamp(self, timestamp: Optional[datetime], now: datetime) -> QualityResult:
        result = QualityResult(is_valid=True)
        if timestamp is None:
            result.is_valid = False
            result.errors.append(MISSING_TIMESTAMP)
            return result

        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        if timestamp > now + FUTURE_TOLERANCE:
            result.warnings.append(FUTURE_TIMESTAMP)
        if timestamp < PLAUSIBLE_EPOCH:
            result.warnings.append(TIMESTAMP_BEFORE_2015)
        if timestamp < MIN_EPOCH:
            result.is_valid = False
            result.errors.append(TIMESTAMP_BEFORE_2000)
        return result

    def check_duration(self, duration: Optional[float], event_type: str) -> QualityResult:
        result = QualityResult(is_valid=True)
        if duration is None:
            return result
        if duration < 0:
            result.is_valid = False
            result.errors.append(NEGATIVE_DURATION)
            return result
        if duration > MAX_DURATION_SECONDS:
            result.warnings.append(DURATION_OVER_24H)
        if event_type == "sms" and duration > MAX_SMS_DURATION_SECONDS:
            result.warnings.append(SMS_DURATION_OVER_1H)
        return result

    def calculate_confidence(self, event: CanonicalEvent, extra_warnings: int = 0) -> NormalizationConfidence:
        """Score 0-100 from fixed penalties; extra_warnings counts warnings not yet on the event"""
        score = 100
        factors = []

        if event.timestamp_utc is None:
            score -= PENALTY_MISSING_TIMESTAMP
            factors.append("missing_timestamp")

        has_caller = bool(event.caller_number)
        has_receiver = bool(event.receiver_number)
        if not has_caller and not has_receiver:
            score -= PENALTY_MISSING_PARTIES
            factors.append("missing_parties")
        elif has_caller != has_receiver:
            score -= PENALTY_MISSING_ONE_PARTY
            factors.append("missing_one_party")

        if not event.direction or event.direction == "unknown":
            score -= PENALTY_UNKNOWN_DIRECTION
            factors.append("unknown_direction")

        if not event.event_type or event.event_type == "unknown":
            score -= PENALTY_UNKNOWN_EVENT_TYPE
            factors.append("unknown_event_type")

        if not has_location(event):
            score -= PENALTY_MISSING_LOCATION
            factors.append("missing_location")

        warning_count = len(event.normalization_warnings) + extra_warnings
        if warning_count:
            score -= warning_count * PENALTY_PER_WARNING
            factors.append(f"warnings:{warning_count}")

        score = max(0, min(100, score))
        return NormalizationConfidence(score=score, tier=confidence_tier(score), factors=factors)

    def validate(self, event: CanonicalEvent, now: Optional[datetime] = None) -> QualityResult:
        """Run every check; confidence accounts for the warnings found here"""
        now = now or datetime.now(timezone.utc)
        result = QualityResult(is_valid=True)

        for check in (
            self.check_timestamp(event.timestamp_utc, now),
            self.check_duration(event.call_duration_seconds, event.event_type),
        ):
            result.errors.extend(check.errors)
            result.warnings.extend(check.warnings)
            result.is_valid = result.is_valid and check.is_valid

        if event.caller_number and event.caller_number == event.receiver_number:
            result.warnings.append(SELF_CALL)

        if not event.caller_number and not event.receiver_number:
            result.is_valid = False
            result.errors.append(MISSING_BOTH_PARTIES)

        result.confidence = self.calculate_confidence(event, extra_warnings=len(result.warnings))
        return result

    def apply(self, event: CanonicalEvent, now: Optional[datetime] = None) -> QualityResult:
        """Validate, then append warnings and set confidence on the event"""
        result = self.validate(event, now)
        event.normalization_warnings.extend(result.warnings)
        event.normalization_confidence = result.confidence
        return result


def generate_quality_summary(
    events: Iterable[CanonicalEvent],
    validator: Optional[DataQualityValidator] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Batch-level quality counts and percentages"""
    validator = validator or DataQualityValidator()
    error_counts: Counter = Counter()
    warning_counts: Counter = Counter()
    distribution = {"high": 0, "medium": 0, "low": 0}
    summary = {
        "totalRecords": 0,
        "validRecords": 0,
        "invalidRecords": 0,
        "selfCallCount": 0,
        "missingLocationCount": 0,
        "futureTimestampCount": 0,
        "invalidDurationCount": 0,
    }

    for event in events:
        result = validator.validate(event, now)
        summary["totalRecords"] += 1
        if result.is_valid:
            summary["validRecords"] += 1
        else:
            summary["invalidRecords"] += 1

        error_counts.update(result.errors)
        warning_counts.update(result.warnings)
        confidence = event.normalization_confidence or result.confidence
        distribution[confidence.tier] += 1

        if SELF_CALL in result.warnings:
            summary["selfCallCount"] += 1
        if not has_location(event):
            summary["missingLocationCount"] += 1
        if FUTURE_TIMESTAMP in result.warnings:
            summary["futureTimestampCount"] += 1
        if NEGATIVE_DURATION in result.errors:
            summary["invalidDurationCount"] += 1

    total = summary["totalRecords"]
    summary["errorCounts"] = dict(error_counts)
    summary["warningCounts"] = dict(warning_counts)
    summary["confidenceDistribution"] = distribution
    summary["validPercentage"] = round(summary["validRecords"] / total * 100, 2) if total else 0
    summary["invalidPercentage"] = round(summary["invalidRecords"] / total * 100, 2) if total else 0
    return summary
