"""Tests for cdrgraph_workers.validation.canonical_normalizer."""

from datetime import datetime, timedelta, timezone

import pytest

from cdrgraph_workers.models.records import IntermediateRecord, SourceRef
from cdrgraph_workers.validation.canonical_normalizer import (
    UNKNOWN_DIRECTION_WARNING,
    Canonicalizer,
    contact_pair_key,
    location_source,
)
from cdrgraph_workers.validation.error_handler import CanonicalizationError

SOURCE = SourceRef(file_name="calls.csv", sheet_name=None, row_number=7)


def record(**overrides) -> IntermediateRecord:
    fields = {
        "start_time": datetime(2024, 3, 25, 14, 30),
        "source": SOURCE,
        "a_party": "923001234567",
        "b_party": "923007654321",
        "direction": "outgoing",
        "duration_sec": 125,
        "cell_id": "C-101",
    }
    fields.update(overrides)
    return IntermediateRecord(**fields)


@pytest.fixture
def canonicalizer() -> Canonicalizer:
    return Canonicalizer("Asia/Karachi")


class TestContactPairKey:

    def test_symmetric(self):
        assert contact_pair_key("923001234567", "923007654321") == contact_pair_key("923007654321", "923001234567")

    def test_format(self):
        key = contact_pair_key("a", "b")
        assert len(key) == 16
        int(key, 16)

    def test_missing_party(self):
        assert contact_pair_key("a", None) is None
        assert contact_pair_key("", "b") is None


class TestTimeResolution:

    def test_naive_time_is_reference_wall_clock(self, canonicalizer):
        event = canonicalizer.canonicalize(record(), "upload-1")
        assert event.timestamp_utc == datetime(2024, 3, 25, 9, 30, tzinfo=timezone.utc)
        assert event.timestamp_local.utcoffset() == timedelta(hours=5)
        assert event.timestamp_local.hour == 14
        assert event.date == "2024-03-25"
        assert event.hour == 14

    def test_utc_and_local_describe_same_instant(self, canonicalizer):
        event = canonicalizer.canonicalize(record(), "upload-1")
        assert event.timestamp_local == event.timestamp_utc

    def test_aware_time_is_converted(self, canonicalizer):
        aware = datetime(2024, 3, 25, 9, 30, tzinfo=timezone.utc)
        event = canonicalizer.canonicalize(record(start_time=aware), "upload-1")
        assert event.timestamp_utc == aware
        assert event.hour == 14

    @pytest.mark.parametrize("start, day_of_week, weekend", [
        (datetime(2024, 3, 24, 12, 0), 0, True),
        (datetime(2024, 3, 25, 12, 0), 1, False),
        (datetime(2024, 3, 29, 12, 0), 5, False),
        (datetime(2024, 3, 30, 12, 0), 6, True),
    ])
    def test_day_of_week_sunday_based(self, canonicalizer, start, day_of_week, weekend):
        event = canonicalizer.canonicalize(record(start_time=start))
        assert event.day_of_week == day_of_week
        assert event.is_weekend is weekend

    @pytest.mark.parametrize("hour, night", [(21, False), (22, True), (3, True), (6, False)])
    def test_night_window(self, canonicalizer, hour, night):
        event = canonicalizer.canonicalize(record(start_time=datetime(2024, 3, 25, hour, 0)))
        assert event.is_night is night

    def test_end_time_converted(self, canonicalizer):
        event = canonicalizer.canonicalize(record(end_time=datetime(2024, 3, 25, 14, 32)))
        assert event.end_time_utc == datetime(2024, 3, 25, 9, 32, tzinfo=timezone.utc)

    def test_missing_start_time(self, canonicalizer):
        with pytest.raises(CanonicalizationError):
            canonicalizer.canonicalize(record(start_time=None))


class TestPartyResolution:

    def test_outgoing_keeps_parties(self, canonicalizer):
        event = canonicalizer.canonicalize(record())
        assert (event.caller_number, event.receiver_number) == ("923001234567", "923007654321")
        assert event.direction == "outgoing"

    def test_incoming_flips_parties(self, canonicalizer):
        event = canonicalizer.canonicalize(record(direction="incoming"))
        assert (event.caller_number, event.receiver_number) == ("923007654321", "923001234567")
        assert (event.a_party, event.b_party) == ("923001234567", "923007654321")

    def test_same_party_is_internal(self, canonicalizer):
        event = canonicalizer.canonicalize(record(b_party="923001234567"))
        assert event.direction == "internal"

    def test_unknown_direction_warns(self, canonicalizer):
        event = canonicalizer.canonicalize(record(direction="unknown"))
        assert event.direction == "unknown"
        assert event.caller_number == "923001234567"
        assert UNKNOWN_DIRECTION_WARNING in event.normalization_warnings

    def test_pair_key_independent_of_direction(self, canonicalizer):
        outgoing = canonicalizer.canonicalize(record())
        incoming = canonicalizer.canonicalize(record(direction="incoming"))
        assert outgoing.contact_pair_key == incoming.contact_pair_key


class TestEventFields:

    def test_source_and_identity(self, canonicalizer):
        event = canonicalizer.canonicalize(record(), "upload-1")
        assert event.upload_id == "upload-1"
        assert event.source_file == "calls.csv"
        assert event.source_row == 7
        assert event.record_id
        assert event.ingested_at is not None

    def test_record_ids_unique(self, canonicalizer):
        first = canonicalizer.canonicalize(record())
        second = canonicalizer.canonicalize(record())
        assert first.record_id != second.record_id

    def test_location_source(self, canonicalizer):
        assert canonicalizer.canonicalize(record(lat=31.5, lng=74.3)).location_source == "gps"
        assert canonicalizer.canonicalize(record()).location_source == "cell_id"
        assert location_source(None, None, None) == "unknown"
        assert location_source(float("nan"), 74.3, None) == "unknown"

    def test_unsupported_event_type(self, canonicalizer):
        assert canonicalizer.canonicalize(record(event_type="fax")).event_type == "unknown"

    def test_to_dict_uses_persisted_names(self, canonicalizer):
        document = canonicalizer.canonicalize(record(), "upload-1").to_dict()
        assert document["uploadId"] == "upload-1"
        assert document["callerNumber"] == "923001234567"
        assert document["callDurationSeconds"] == 125
        assert "contactPairKey" in document
