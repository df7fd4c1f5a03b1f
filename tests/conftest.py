"""Shared fixtures: canonical event factory, in-memory store and file builders."""

import csv
import io
import itertools
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest
import pytz
from openpyxl import Workbook

from cdrgraph_workers.models.records import CanonicalEvent
from cdrgraph_workers.utils.event_store import InMemoryEventStore
from cdrgraph_workers.validation.canonical_normalizer import contact_pair_key

KARACHI = pytz.timezone("Asia/Karachi")

CSV_HEADER = ["Date & Time", "A Number", "B Number", "Call Type", "Duration", "Cell ID", "Site"]


def build_event(counter, **overrides: Any) -> CanonicalEvent:
    timestamp = overrides.pop("timestamp_utc", datetime(2024, 3, 25, 9, 30, tzinfo=timezone.utc))
    caller = overrides.pop("caller_number", "923001111111")
    receiver = overrides.pop("receiver_number", "923002222222")

    local = timestamp.astimezone(KARACHI) if timestamp is not None else None
    day_of_week = (local.weekday() + 1) % 7 if local else None
    fields: Dict[str, Any] = {
        "record_id": f"rec-{next(counter)}",
        "upload_id": "upload-1",
        "event_type": "call",
        "timestamp_utc": timestamp,
        "timestamp_local": local,
        "date": local.strftime("%Y-%m-%d") if local else None,
        "hour": local.hour if local else None,
        "day_of_week": day_of_week,
        "is_weekend": day_of_week in (0, 6),
        "is_night": bool(local) and (local.hour >= 22 or local.hour < 6),
        "caller_number": caller,
        "receiver_number": receiver,
        "direction": "outgoing",
        "call_duration_seconds": 60,
        "contact_pair_key": contact_pair_key(caller, receiver),
        "cell_id": "C-101",
        "source_file": "calls.csv",
        "source_row": 2,
    }
    fields.update(overrides)
    return CanonicalEvent(**fields)


@pytest.fixture
def make_event():
    """Factory for CanonicalEvents with derived local-time fields."""
    counter = itertools.count(1)

    def factory(**overrides: Any) -> CanonicalEvent:
        return build_event(counter, **overrides)

    return factory


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


def to_csv_bytes(rows: Sequence[Sequence[Any]], delimiter: str = ",") -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue().encode("utf-8")


def to_xlsx_bytes(sheets: Dict[str, List[List[Any]]]) -> bytes:
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        sheet = workbook.create_sheet(title)
        for row in rows:
            sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def csv_bytes():
    return to_csv_bytes


@pytest.fixture
def xlsx_bytes():
    return to_xlsx_bytes


@pytest.fixture
def sample_csv() -> bytes:
    """Five data rows: two valid, one exact duplicate, two rejected."""
    return to_csv_bytes([
        CSV_HEADER,
        ["25/03/2024 14:30", "923001234567", "923007654321", "Outgoing Call", "00:02:05", "C-101", "Tower A"],
        ["25/03/2024 14:30", "923001234567", "923007654321", "Outgoing Call", "00:02:05", "C-101", "Tower A"],
        ["26/03/2024 09:00", "923007654321", "923001234567", "Incoming SMS", "0", "C-102", "Tower B"],
        ["", "923001234567", "923007654321", "Outgoing Call", "10", "C-101", "Tower A"],
        ["27/03/2024 10:00", "", "", "Outgoing Call", "10", "C-101", "Tower A"],
    ])
