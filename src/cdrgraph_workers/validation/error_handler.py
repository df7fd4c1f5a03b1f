"""
Error handling for the CDR ingestion pipeline

This module provides:
- Error categorization matching the pipeline's failure taxonomy
- Typed exceptions for file, row, canonicalization and persistence failures
- A bounded error-sample collector for upload responses
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import structlog

logger = structlog.get_logger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories, one per pipeline failure class"""
    FILE_ERROR = "file_error"
    ROW_REJECTED = "row_rejected"
    CANONICALIZATION_ERROR = "canonicalization_error"
    VALIDATION_ERROR = "validation_error"
    PERSISTENCE_ERROR = "persistence_error"


DEFAULT_SEVERITY = {
    ErrorCategory.FILE_ERROR: ErrorSeverity.CRITICAL,
    ErrorCategory.ROW_REJECTED: ErrorSeverity.LOW,
    ErrorCategory.CANONICALIZATION_ERROR: ErrorSeverity.MEDIUM,
    ErrorCategory.VALIDATION_ERROR: ErrorSeverity.LOW,
    ErrorCategory.PERSISTENCE_ERROR: ErrorSeverity.HIGH,
}


class CDRProcessingError(Exception):
    """Base class for pipeline errors"""


class RowRejected(CDRProcessingError):
    """A row lacks the fields required to build a record"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class CanonicalizationError(CDRProcessingError):
    """An intermediate record could not be converted to a canonical event"""


class PartialInsertError(CDRProcessingError):
    """A batch insert failed part way; inserted_ids lists what was stored"""

    def __init__(self, message: str, inserted_ids: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.inserted_ids = list(inserted_ids or [])


@dataclass
class IngestionError:
    """Structured row- or file-level error"""
    row_number: int
    reason: str
    file_name: Optional[str] = None
    sheet_name: Optional[str] = None
    category: ErrorCategory = ErrorCategory.ROW_REJECTED
    severity: Optional[ErrorSeverity] = None

    def __post_init__(self):
        if self.severity is None:
            self.severity = DEFAULT_SEVERITY[self.category]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the response sample shape"""
        sample = {
            "rowNumber": self.row_number,
            "reason": self.reason,
            "fileName": self.file_name,
        }
        if self.sheet_name:
            sample["sheetName"] = self.sheet_name
        return sample


class ErrorCollector:
    """Counts every error, keeps only the first max_samples for reporting"""

    def __init__(self, max_samples: int = 50):
        self.max_samples = max_samples
        self.samples: List[IngestionError] = []
        self.total = 0
        self.counts_by_category: Dict[str, int] = {}

    def add(self, error: IngestionError) -> None:
        self.total += 1
        key = error.category.value
        self.counts_by_category[key] = self.counts_by_category.get(key, 0) + 1
        if len(self.samples) < self.max_samples:
            self.samples.append(error)
        elif self.total == self.max_samples + 1:
            logger.info("Error sample limit reached, counting only", max_samples=self.max_samples)

    def extend(self, errors: Sequence[IngestionError]) -> None:
        for error in errors:
            self.add(error)

    def sample_dicts(self) -> List[Dict[str, Any]]:
        return [error.to_dict() for error in self.samples]
