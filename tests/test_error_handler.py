"""Tests for cdrgraph_workers.validation.error_handler."""

from cdrgraph_workers.validation.error_handler import (
    ErrorCategory,
    ErrorCollector,
    ErrorSeverity,
    IngestionError,
    PartialInsertError,
)


class TestIngestionError:

    def test_default_severity_follows_category(self):
        assert IngestionError(2, "x").severity == ErrorSeverity.LOW
        assert IngestionError(0, "x", category=ErrorCategory.FILE_ERROR).severity == ErrorSeverity.CRITICAL

    def test_sample_shape(self):
        error = IngestionError(4, "Missing or invalid startTime", file_name="calls.xlsx", sheet_name="Calls")
        assert error.to_dict() == {
            "rowNumber": 4,
            "reason": "Missing or invalid startTime",
            "fileName": "calls.xlsx",
            "sheetName": "Calls",
        }
        assert "sheetName" not in IngestionError(4, "x", file_name="calls.csv").to_dict()


class TestErrorCollector:

    def test_samples_capped_counts_complete(self):
        collector = ErrorCollector(max_samples=3)
        collector.extend(IngestionError(row, "bad row") for row in range(5))
        collector.add(IngestionError(0, "rejected", category=ErrorCategory.PERSISTENCE_ERROR))

        assert collector.total == 6
        assert len(collector.samples) == 3
        assert [sample["rowNumber"] for sample in collector.sample_dicts()] == [0, 1, 2]
        assert collector.counts_by_category == {"row_rejected": 5, "persistence_error": 1}


def test_partial_insert_error_carries_ids():
    error = PartialInsertError("store unavailable", inserted_ids=["rec-1"])
    assert error.inserted_ids == ["rec-1"]
    assert "store unavailable" in str(error)
