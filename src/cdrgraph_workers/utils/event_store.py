"""
Canonical event storage interface and in-memory implementation

Defines an EventStore Protocol for persistence and aggregation of canonical
events, plus InMemoryEventStore, which keeps events keyed by recordId and
answers the edge/node aggregations with pandas group-bys.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np
import pandas as pd
import structlog

from ..analytics.network_graph import EdgeAggregate, NodeAggregate
from ..models.records import CanonicalEvent
from ..validation.error_handler import PartialInsertError

logger = structlog.get_logger(__name__)

FRAME_COLUMNS = ["caller", "receiver", "event_type", "timestamp", "duration"]


@dataclass
class EventFilter:
    """Query predicates; every query is scoped to one upload"""
    upload_id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    event_type: Optional[str] = None
    direction: Optional[str] = None
    complete_pairs_only: bool = False

    def matches(self, event: CanonicalEvent) -> bool:
        if event.upload_id != self.upload_id:
            return False
        if self.start is not None and (event.timestamp_utc is None or event.timestamp_utc < self.start):
            return False
        if self.end is not None and (event.timestamp_utc is None or event.timestamp_utc > self.end):
            return False
        if self.event_type and event.event_type != self.event_type:
            return False
        if self.direction and event.direction != self.direction:
            return False
        if self.complete_pairs_only:
            if not event.caller_number or not event.receiver_number:
                return False
            if event.caller_number == event.receiver_number:
                return False
        return True


@dataclass
class InsertResult:
    """Record ids stored and record ids rejected by one insert call"""
    inserted_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_ids)


@runtime_checkable
class EventStore(Protocol):
    """Persistence and aggregation collaborator for canonical events"""

    async def insert_many(self, events: Sequence[CanonicalEvent]) -> InsertResult:
        """Insert events keyed by recordId; raises PartialInsertError when a batch dies part way"""
        ...

    async def count(self, event_filter: EventFilter) -> int:
        ...

    async def find(self, event_filter: EventFilter, limit: Optional[int] = None) -> List[CanonicalEvent]:
        ...

    async def aggregate_edges(
        self,
        event_filter: EventFilter,
        min_edge_weight: int = 1,
        limit_edges: Optional[int] = None,
    ) -> List[EdgeAggregate]:
        ...

    async def aggregate_nodes(self, event_filter: EventFilter) -> List[NodeAggregate]:
        ...


def _number(value: Any) -> float:
    value = float(value)
    return int(value) if value.is_integer() else value


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None or pd.isna(value):
        return None
    return pd.Timestamp(value).to_pydatetime()


class InMemoryEventStore:
    """Dictionary-backed EventStore with optional fault injection"""

    def __init__(self):
        self._events: Dict[str, CanonicalEvent] = {}
        self.rejected_ids: set = set()
        self._insert_calls = 0
        self._failing_calls: Dict[int, int] = {}

    def inject_failure(self, call_index: int, accepted: int = 0) -> None:
        """Make the call_index-th insert_many (0-based) raise after accepting some records"""
        self._failing_calls[call_index] = accepted

    async def insert_many(self, events: Sequence[CanonicalEvent]) -> InsertResult:
        call_index = self._insert_calls
        self._insert_calls += 1
        fail_after = self._failing_calls.get(call_index)

        result = InsertResult()
        for position, event in enumerate(events):
            if fail_after is not None and position >= fail_after:
                logger.error(
                    "Insert batch failed",
                    call_index=call_index,
                    inserted=result.inserted_count,
                    batch_size=len(events),
                )
                raise PartialInsertError("Simulated insert failure", result.inserted_ids)

            if event.record_id in self._events or event.record_id in self.rejected_ids:
                result.failed_ids.append(event.record_id)
                continue
            self._events[event.record_id] = event.with_updates()
            result.inserted_ids.append(event.record_id)

        return result

    def _select(self, event_filter: EventFilter) -> List[CanonicalEvent]:
        return [event for event in self._events.values() if event_filter.matches(event)]

    async def count(self, event_filter: EventFilter) -> int:
        return len(self._select(event_filter))

    async def find(self, event_filter: EventFilter, limit: Optional[int] = None) -> List[CanonicalEvent]:
        events = sorted(
            self._select(event_filter),
            key=lambda e: (e.timestamp_utc is None, e.timestamp_utc or datetime.min, e.record_id),
        )
        if limit is not None:
            events = events[:limit]
        return [event.with_updates() for event in events]

    def _frame(self, event_filter: EventFilter) -> pd.DataFrame:
        rows = [
            {
                "caller": event.caller_number or None,
                "receiver": event.receiver_number or None,
                "event_type": event.event_type,
                "timestamp": event.timestamp_utc,
                "duration": event.call_duration_seconds or 0,
            }
            for event in self._select(event_filter)
        ]
        frame = pd.DataFrame(rows, columns=FRAME_COLUMNS)
        frame["call_duration"] = np.where(frame["event_type"] == "call", frame["duration"], 0)
        return frame

    async def aggregate_edges(
        self,
        event_filter: EventFilter,
        min_edge_weight: int = 1,
        limit_edges: Optional[int] = None,
    ) -> List[EdgeAggregate]:
        frame = self._frame(event_filter)
        frame = frame[
            frame["caller"].notna()
            & frame["receiver"].notna()
            & (frame["caller"] != frame["receiver"])
        ]
        if frame.empty:
            return []

        ordered = frame["caller"] < frame["receiver"]
        frame = frame.assign(
            source=np.where(ordered, frame["caller"], frame["receiver"]),
            target=np.where(ordered, frame["receiver"], frame["caller"]),
        )
        grouped = (
            frame.groupby(["source", "target"])
            .agg(
                weight=("caller", "size"),
                total_duration=("call_duration", "sum"),
                first_seen=("timestamp", "min"),
                last_seen=("timestamp", "max"),
            )
            .reset_index()
        )
        grouped = grouped[grouped["weight"] >= min_edge_weight]
        grouped = grouped.sort_values(["weight", "source", "target"], ascending=[False, True, True])
        if limit_edges:
            grouped = grouped.head(limit_edges)

        return [
            EdgeAggregate(
                source=row.source,
                target=row.target,
                weight=int(row.weight),
                total_duration=_number(row.total_duration),
                event_count=int(row.weight),
                first_seen=_timestamp(row.first_seen),
                last_seen=_timestamp(row.last_seen),
            )
            for row in grouped.itertuples(index=False)
        ]

    async def aggregate_nodes(self, event_filter: EventFilter) -> List[NodeAggregate]:
        frame = self._frame(event_filter)
        if frame.empty:
            return []

        callers = frame[frame["caller"].notna()].rename(columns={"caller": "node"})
        # A self-call counts once for its party
        receivers = frame[
            frame["receiver"].notna() & (frame["receiver"] != frame["caller"])
        ].rename(columns={"receiver": "node"})
        parts = pd.concat(
            [callers[["node", "timestamp", "call_duration"]], receivers[["node", "timestamp", "call_duration"]]],
            ignore_index=True,
        )
        if parts.empty:
            return []

        grouped = (
            parts.groupby("node")
            .agg(
                total_events=("node", "size"),
                total_duration=("call_duration", "sum"),
                first_seen=("timestamp", "min"),
                last_seen=("timestamp", "max"),
            )
            .reset_index()
        )
        return [
            NodeAggregate(
                id=row.node,
                total_events=int(row.total_events),
                total_duration=_number(row.total_duration),
                first_seen=_timestamp(row.first_seen),
                last_seen=_timestamp(row.last_seen),
            )
            for row in grouped.itertuples(index=False)
        ]
