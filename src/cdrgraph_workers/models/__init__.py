"""Record models for CDRGraph workers"""

from .records import (
    CANONICAL_FIELDS,
    DIRECTIONS,
    EVENT_TYPES,
    LOCATION_SOURCES,
    CanonicalEvent,
    IntermediateRecord,
    NormalizationConfidence,
    SourceRef,
)

__all__ = [
    "CANONICAL_FIELDS",
    "DIRECTIONS",
    "EVENT_TYPES",
    "LOCATION_SOURCES",
    "CanonicalEvent",
    "IntermediateRecord",
    "NormalizationConfidence",
    "SourceRef",
]
