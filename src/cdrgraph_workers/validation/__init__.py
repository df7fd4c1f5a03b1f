"""
CDR Validation and Normalization

This package provides the record-level stages of ingestion:
- Header mapping and row normalization
- Canonicalization into analytics-ready events
- Data quality validation and confidence scoring
- Duplicate detection
"""

from .field_mapping_system import DEFAULT_HEADER_MAPPINGS, HeaderMappingTable, normalize_headers
from .data_normalization_engine import (
    DateTimeNormalizer,
    DurationNormalizer,
    PhoneNormalizer,
    RowNormalizer,
)
from .canonical_normalizer import Canonicalizer, contact_pair_key
from .data_quality import DataQualityValidator, QualityResult, generate_quality_summary
from .duplicate_detection_system import Deduplicator, detect_near_duplicates, generate_fingerprint
from .error_handler import (
    CanonicalizationError,
    CDRProcessingError,
    ErrorCategory,
    ErrorCollector,
    ErrorSeverity,
    IngestionError,
    PartialInsertError,
    RowRejected,
)

__all__ = [
    "DEFAULT_HEADER_MAPPINGS",
    "HeaderMappingTable",
    "normalize_headers",
    "DateTimeNormalizer",
    "DurationNormalizer",
    "PhoneNormalizer",
    "RowNormalizer",
    "Canonicalizer",
    "contact_pair_key",
    "DataQualityValidator",
    "QualityResult",
    "generate_quality_summary",
    "Deduplicator",
    "detect_near_duplicates",
    "generate_fingerprint",
    "CanonicalizationError",
    "CDRProcessingError",
    "ErrorCategory",
    "ErrorCollector",
    "ErrorSeverity",
    "IngestionError",
    "PartialInsertError",
    "RowRejected",
]
