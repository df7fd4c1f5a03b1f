"""Tests for cdrgraph_workers.validation.data_quality."""

from datetime import datetime, timedelta, timezone

import pytest

from cdrgraph_workers.validation.data_quality import (
    DURATION_OVER_24H,
    FUTURE_TIMESTAMP,
    MISSING_BOTH_PARTIES,
    MISSING_TIMESTAMP,
    NEGATIVE_DURATION,
    SELF_CALL,
    SMS_DURATION_OVER_1H,
    TIMESTAMP_BEFORE_2000,
    TIMESTAMP_BEFORE_2015,
    DataQualityValidator,
    confidence_tier,
    generate_quality_summary,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def validator() -> DataQualityValidator:
    return DataQualityValidator()


class TestValidate:

    def test_clean_event(self, validator, make_event):
        result = validator.validate(make_event(), NOW)
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []
        assert result.confidence.score == 100
        assert result.confidence.tier == "high"

    def test_missing_timestamp(self, validator, make_event):
        result = validator.validate(make_event(timestamp_utc=None), NOW)
        assert not result.is_valid
        assert result.errors == [MISSING_TIMESTAMP]

    def test_ancient_timestamp(self, validator, make_event):
        result = validator.validate(make_event(timestamp_utc=datetime(1999, 1, 1, tzinfo=timezone.utc)), NOW)
        assert not result.is_valid
        assert TIMESTAMP_BEFORE_2000 in result.errors
        assert TIMESTAMP_BEFORE_2015 in result.warnings

    def test_future_timestamp_warns(self, validator, make_event):
        result = validator.validate(make_event(timestamp_utc=NOW + timedelta(hours=2)), NOW)
        assert result.is_valid
        assert result.warnings == [FUTURE_TIMESTAMP]

    def test_small_clock_skew_tolerated(self, validator, make_event):
        result = validator.validate(make_event(timestamp_utc=NOW + timedelta(minutes=30)), NOW)
        assert result.warnings == []

    def test_negative_duration(self, validator, make_event):
        result = validator.validate(make_event(call_duration_seconds=-1), NOW)
        assert not result.is_valid
        assert result.errors == [NEGATIVE_DURATION]

    def test_long_durations_warn(self, validator, make_event):
        assert validator.validate(make_event(call_duration_seconds=90000), NOW).warnings == [DURATION_OVER_24H]
        sms = make_event(event_type="sms", call_duration_seconds=4000)
        assert validator.validate(sms, NOW).warnings == [SMS_DURATION_OVER_1H]

    def test_self_call_warns(self, validator, make_event):
        event = make_event(caller_number="923001111111", receiver_number="923001111111")
        result = validator.validate(event, NOW)
        assert result.is_valid
        assert result.warnings == [SELF_CALL]

    def test_missing_both_parties(self, validator, make_event):
        result = validator.validate(make_event(caller_number=None, receiver_number=None), NOW)
        assert not result.is_valid
        assert MISSING_BOTH_PARTIES in result.errors


class TestConfidence:

    def test_one_missing_party(self, validator, make_event):
        confidence = validator.calculate_confidence(make_event(receiver_number=None))
        assert confidence.score == 90
        assert "missing_one_party" in confidence.factors

    def test_unknown_direction_and_location(self, validator, make_event):
        confidence = validator.calculate_confidence(make_event(direction="unknown", cell_id=None))
        assert confidence.score == 80
        assert confidence.tier == "high"

    def test_warnings_reduce_score(self, validator, make_event):
        event = make_event(normalization_warnings=["missing_site", "bParty_short_code"])
        assert validator.calculate_confidence(event).score == 96
        assert validator.calculate_confidence(event, extra_warnings=1).score == 94

    def test_score_clamped(self, validator, make_event):
        event = make_event(
            timestamp_utc=None, caller_number=None, receiver_number=None,
            direction="unknown", event_type="unknown", cell_id=None,
        )
        confidence = validator.calculate_confidence(event)
        assert confidence.score == 0
        assert confidence.tier == "low"

    @pytest.mark.parametrize("score, tier", [(80, "high"), (79, "medium"), (50, "medium"), (49, "low")])
    def test_tiers(self, score, tier):
        assert confidence_tier(score) == tier

    def test_apply_appends_warnings_and_sets_confidence(self, validator, make_event):
        event = make_event(call_duration_seconds=90000, normalization_warnings=["missing_site"])
        result = validator.apply(event, NOW)
        assert event.normalization_warnings == ["missing_site", DURATION_OVER_24H]
        assert event.normalization_confidence == result.confidence
        assert event.normalization_confidence.score == 96


class TestQualitySummary:

    def test_counts_and_percentages(self, validator, make_event):
        events = [
            make_event(),
            make_event(caller_number="923001111111", receiver_number="923001111111"),
            make_event(call_duration_seconds=-5, cell_id=None),
            make_event(timestamp_utc=NOW + timedelta(days=1)),
        ]
        summary = generate_quality_summary(events, validator, NOW)

        assert summary["totalRecords"] == 4
        assert summary["validRecords"] == 3
        assert summary["invalidRecords"] == 1
        assert summary["selfCallCount"] == 1
        assert summary["missingLocationCount"] == 1
        assert summary["futureTimestampCount"] == 1
        assert summary["invalidDurationCount"] == 1
        assert summary["validPercentage"] == 75.0
        assert summary["invalidPercentage"] == 25.0
        assert summary["errorCounts"] == {NEGATIVE_DURATION: 1}
        assert sum(summary["confidenceDistribution"].values()) == 4

    def test_empty(self, validator):
        summary = generate_quality_summary([], validator, NOW)
        assert summary["totalRecords"] == 0
        assert summary["validPercentage"] == 0
