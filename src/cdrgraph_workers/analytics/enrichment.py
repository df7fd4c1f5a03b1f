"""
Cross-record enrichment for canonical events

Each pass is keyed by contact pair:
- Contact first/last seen
- Daily event counts per (pair, local date)
- Trailing 7 and 30 day events-per-day averages
- Burst sessions split on gaps longer than the burst window
- Baseline/recent labelling over the batch time span
"""
from bisect import bisect_left
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from ..config import settings
from ..models.records import CanonicalEvent

logger = structlog.get_logger(__name__)

ROLLING_WINDOWS = (7, 30)


@dataclass
class EnrichmentFields:
    """Per-record enrichment values, merged into the event at the end"""
    contact_first_seen: Optional[datetime] = None
    contact_last_seen: Optional[datetime] = None
    daily_event_count: int = 0
    rolling_7_day_avg: float = 0.0
    rolling_30_day_avg: float = 0.0
    burst_session_id: Optional[str] = None
    baseline_window_label: Optional[str] = None


@dataclass
class PairIndex:
    """Time-sorted record positions per contact pair and daily counts, built once"""
    by_pair: Dict[str, List[int]] = field(default_factory=dict)
    daily_counts: Dict[Tuple[str, str], int] = field(default_factory=dict)

    @classmethod
    def build(cls, events: Sequence[CanonicalEvent]) -> "PairIndex":
        by_pair: Dict[str, List[int]] = defaultdict(list)
        daily_counts: Dict[Tuple[str, str], int] = defaultdict(int)
        for position, event in enumerate(events):
            if not event.contact_pair_key:
                continue
            if event.date:
                daily_counts[(event.contact_pair_key, event.date)] += 1
            if event.timestamp_utc is not None:
                by_pair[event.contact_pair_key].append(position)

        for positions in by_pair.values():
            positions.sort(key=lambda p: events[p].timestamp_utc)
        return cls(by_pair=dict(by_pair), daily_counts=dict(daily_counts))


class Enricher:
    """Runs the enrichment passes and returns new event instances"""

    def __init__(self, burst_window_minutes: Optional[float] = None, baseline_fraction: Optional[float] = None):
        if burst_window_minutes is None:
            burst_window_minutes = settings.burst_window_minutes
        self.burst_window = timedelta(minutes=burst_window_minutes)
        self.baseline_fraction = (
            baseline_fraction if baseline_fraction is not None else settings.baseline_fraction
        )

    def enrich(self, events: Sequence[CanonicalEvent]) -> List[CanonicalEvent]:
        if not events:
            return []

        index = PairIndex.build(events)
        fields = [EnrichmentFields() for _ in events]

        self._contact_timestamps(events, index, fields)
        self._daily_counts(events, index, fields)
        self._rolling_averages(events, index, fields)
        self._burst_sessions(events, index, fields)
        self._baseline_labels(events, fields)

        enriched = [
            event.with_updates(**vars(extra))
            for event, extra in zip(events, fields)
        ]
        logger.info(
            "Enrichment completed",
            records=len(enriched),
            contact_pairs=len(index.by_pair),
        )
        return enriched

    def _contact_timestamps(self, events, index: PairIndex, fields: List[EnrichmentFields]) -> None:
        bounds = {
            pair: (events[positions[0]].timestamp_utc, events[positions[-1]].timestamp_utc)
            for pair, positions in index.by_pair.items()
        }
        for event, extra in zip(events, fields):
            if event.contact_pair_key in bounds:
                extra.contact_first_seen, extra.contact_last_seen = bounds[event.contact_pair_key]

    def _daily_counts(self, events, index: PairIndex, fields: List[EnrichmentFields]) -> None:
        for event, extra in zip(events, fields):
            if event.contact_pair_key and event.date:
                extra.daily_event_count = index.daily_counts.get((event.contact_pair_key, event.date), 0)

    def _rolling_averages(self, events, index: PairIndex, fields: List[EnrichmentFields]) -> None:
        for positions in index.by_pair.values():
            times = [events[p].timestamp_utc for p in positions]
            for rank, position in enumerate(positions):
                averages = []
                for days in ROLLING_WINDOWS:
                    # Earlier-or-equal records only, window inclusive at its start
                    start = bisect_left(times, times[rank] - timedelta(days=days), 0, rank + 1)
                    averages.append(round((rank + 1 - start) / days, 2))
                fields[position].rolling_7_day_avg, fields[position].rolling_30_day_avg = averages

    def _burst_sessions(self, events, index: PairIndex, fields: List[EnrichmentFields]) -> None:
        for pair, positions in index.by_pair.items():
            session = 0
            previous = None
            for position in positions:
                current = events[position].timestamp_utc
                if previous is None or current - previous > self.burst_window:
                    session += 1
                previous = current
                fields[position].burst_session_id = f"burst_{pair}_{session}"

    def _baseline_labels(self, events, fields: List[EnrichmentFields]) -> None:
        times = [event.timestamp_utc for event in events if event.timestamp_utc is not None]
        if not times:
            return

        earliest, latest = min(times), max(times)
        cutoff = earliest + (latest - earliest) * self.baseline_fraction
        for event, extra in zip(events, fields):
            if event.timestamp_utc is None or event.timestamp_utc <= cutoff:
                extra.baseline_window_label = "baseline"
            else:
                extra.baseline_window_label = "recent"
