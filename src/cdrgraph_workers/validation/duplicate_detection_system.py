"""
Duplicate Detection System

Deterministic batch deduplication for canonical events:
- Exact candidate groups on (caller, receiver, event type), order sensitive
- Time-sorted scan against a running last-kept reference
- SHA-256 fingerprints for duplicate reporting
- Advisory near-duplicate detection per contact pair
"""
import hashlib
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from ..config import settings
from ..models.records import CanonicalEvent

logger = structlog.get_logger(__name__)


@dataclass
class DuplicateEntry:
    """A record dropped as a duplicate of an earlier kept record"""
    record_id: str
    original_index: int
    duplicate_of: str
    fingerprint: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "original_index": self.original_index,
            "duplicate_of": self.duplicate_of,
            "fingerprint": self.fingerprint,
        }


@dataclass
class DeduplicationResult:
    """Kept records in input order plus the duplicate report"""
    records: List[CanonicalEvent] = field(default_factory=list)
    duplicates: List[DuplicateEntry] = field(default_factory=list)
    # Copies of the excluded events with is_duplicate=True, in input order
    flagged: List[CanonicalEvent] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)


@dataclass
class NearDuplicatePair:
    """Adjacent same-type events of one contact pair within the tolerance"""
    record1_id: str
    record2_id: str
    time_diff_seconds: float
    contact_pair_key: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record1_id": self.record1_id,
            "record2_id": self.record2_id,
            "time_diff_seconds": self.time_diff_seconds,
            "contact_pair_key": self.contact_pair_key,
        }


def _timestamp_seconds(event: CanonicalEvent) -> Optional[float]:
    if event.timestamp_utc is None:
        return None
    try:
        return event.timestamp_utc.timestamp()
    except (AttributeError, OverflowError, ValueError):
        return None


def _duration(event: CanonicalEvent) -> float:
    value = event.call_duration_seconds
    return value if isinstance(value, (int, float)) else 0


def generate_fingerprint(event: CanonicalEvent) -> str:
    """Hash of caller, receiver, 1-second bucket, event type and rounded duration"""
    seconds = _timestamp_seconds(event)
    bucket = str(int(seconds // 1)) if seconds is not None else ''
    key = '|'.join([
        event.caller_number or '',
        event.receiver_number or '',
        bucket,
        event.event_type or '',
        str(round(_duration(event))),
    ])
    return hashlib.sha256(key.encode('utf-8')).hexdigest()


class Deduplicator:
    """Keeps the first occurrence of each event within the tolerances"""

    def __init__(
        self,
        time_tolerance_seconds: Optional[float] = None,
        duration_tolerance_seconds: Optional[float] = None,
    ):
        self.time_tolerance = (
            time_tolerance_seconds if time_tolerance_seconds is not None
            else settings.duplicate_time_tolerance_seconds
        )
        self.duration_tolerance = (
            duration_tolerance_seconds if duration_tolerance_seconds is not None
            else settings.duplicate_duration_tolerance_seconds
        )

    def deduplicate(self, events: Sequence[CanonicalEvent]) -> DeduplicationResult:
        groups: Dict[Tuple[str, str, str], List[int]] = defaultdict(list)
        for index, event in enumerate(events):
            key = (event.caller_number or '', event.receiver_number or '', event.event_type or '')
            groups[key].append(index)

        duplicate_of: Dict[int, DuplicateEntry] = {}
        for indices in groups.values():
            # Unparseable timestamps sort last and are always kept
            ordered = sorted(
                indices,
                key=lambda i: (_timestamp_seconds(events[i]) is None, _timestamp_seconds(events[i]) or 0),
            )

            last_kept: Optional[int] = None
            for index in ordered:
                seconds = _timestamp_seconds(events[index])
                if seconds is None:
                    continue
                if last_kept is None:
                    last_kept = index
                    continue

                time_diff = abs(seconds - _timestamp_seconds(events[last_kept]))
                duration_diff = abs(_duration(events[index]) - _duration(events[last_kept]))
                if time_diff <= self.time_tolerance and duration_diff <= self.duration_tolerance:
                    duplicate_of[index] = DuplicateEntry(
                        record_id=events[index].record_id,
                        original_index=index,
                        duplicate_of=events[last_kept].record_id,
                        fingerprint=generate_fingerprint(events[index]),
                    )
                else:
                    last_kept = index

        result = DeduplicationResult(
            records=[
                event.with_updates(is_duplicate=False)
                for index, event in enumerate(events)
                if index not in duplicate_of
            ],
            duplicates=[duplicate_of[index] for index in sorted(duplicate_of)],
            flagged=[events[index].with_updates(is_duplicate=True) for index in sorted(duplicate_of)],
        )

        logger.info(
            "Deduplication completed",
            input_records=len(events),
            kept=len(result.records),
            duplicates=result.duplicate_count,
        )
        return result


def detect_near_duplicates(
    events: Sequence[CanonicalEvent],
    tolerance_seconds: Optional[float] = None,
) -> List[NearDuplicatePair]:
    """Report adjacent same-type events per contact pair; nothing is removed"""
    if tolerance_seconds is None:
        tolerance_seconds = settings.near_duplicate_tolerance_seconds

    by_pair: Dict[str, List[CanonicalEvent]] = defaultdict(list)
    for event in events:
        if event.contact_pair_key and _timestamp_seconds(event) is not None:
            by_pair[event.contact_pair_key].append(event)

    pairs = []
    for pair_key, pair_events in by_pair.items():
        pair_events.sort(key=_timestamp_seconds)
        for first, second in zip(pair_events, pair_events[1:]):
            diff = abs(_timestamp_seconds(second) - _timestamp_seconds(first))
            if first.event_type == second.event_type and diff <= tolerance_seconds:
                pairs.append(NearDuplicatePair(
                    record1_id=first.record_id,
                    record2_id=second.record_id,
                    time_diff_seconds=diff,
                    contact_pair_key=pair_key,
                ))
    return pairs
