"""
CDR Ingestion Pipeline

Coordinates one upload end to end:
- Parsing and row normalization per file
- Canonicalization and data quality validation per record
- Batch-wide deduplication followed by enrichment
- Chunked persistence that survives partial insert failures
- Per-file summaries, totals, error samples and reports
"""
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from ..analytics.enrichment import Enricher
from ..analytics.reports import generate_all_reports
from ..config import settings
from ..models.records import CanonicalEvent
from ..parsers.tabular_parser import TabularParser
from ..utils.event_store import EventStore
from ..validation.canonical_normalizer import Canonicalizer
from ..validation.data_quality import DataQualityValidator
from ..validation.duplicate_detection_system import (
    Deduplicator,
    DuplicateEntry,
    NearDuplicatePair,
    detect_near_duplicates,
)
from ..validation.error_handler import (
    CanonicalizationError,
    ErrorCategory,
    ErrorCollector,
    IngestionError,
    PartialInsertError,
)

logger = structlog.get_logger(__name__)

UploadFile = Tuple[str, bytes]


@dataclass
class FileProcessingResult:
    """Validated canonical events and row errors for one file"""
    file_name: str
    events: List[CanonicalEvent] = field(default_factory=list)
    errors: List[IngestionError] = field(default_factory=list)
    header_mappings: Dict[str, Dict[str, str]] = field(default_factory=dict)
    unmapped_columns: Dict[str, List[str]] = field(default_factory=dict)
    total_rows: int = 0


@dataclass
class BatchResult:
    """Deduplicated, enriched events of an upload before persistence"""
    upload_id: str
    files: List[FileProcessingResult] = field(default_factory=list)
    events: List[CanonicalEvent] = field(default_factory=list)
    duplicates: List[DuplicateEntry] = field(default_factory=list)
    near_duplicates: List[NearDuplicatePair] = field(default_factory=list)
    # record_id -> index into files, covering duplicates too
    origins: Dict[str, int] = field(default_factory=dict)

    @property
    def errors(self) -> List[IngestionError]:
        return [error for file_result in self.files for error in file_result.errors]


@dataclass
class UploadResult:
    """Outcome of ingest_upload, shaped for the upload response"""
    upload_id: str
    file_summaries: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, int] = field(default_factory=dict)
    error_samples: List[Dict[str, Any]] = field(default_factory=list)
    error_counts: Dict[str, int] = field(default_factory=dict)
    near_duplicates: List[Dict[str, Any]] = field(default_factory=list)
    inserted_ids: List[str] = field(default_factory=list)
    reports: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uploadId": self.upload_id,
            "summary": {
                **self.totals,
                "fileSummaries": self.file_summaries,
                "errorSamples": self.error_samples,
                "errorCounts": self.error_counts,
                "nearDuplicates": self.near_duplicates,
            },
            "reports": {
                "normalization": self.reports.get("normalization"),
                "schemaMapping": self.reports.get("schemaMapping"),
                "dataQuality": self.reports.get("dataQuality"),
            },
            "analyticsReadiness": self.reports.get("analyticsReadiness"),
            "columnSummary": self.reports.get("columnSummary"),
        }


class IngestionPipeline:
    """
    Runs uploads through parse, canonicalize, validate, dedup, enrich and persist

    Collaborators are injected so tests can swap in an in-memory store; each
    run builds fresh record instances and keeps no state between runs.
    """

    def __init__(
        self,
        store: EventStore,
        parser: Optional[TabularParser] = None,
        canonicalizer: Optional[Canonicalizer] = None,
        validator: Optional[DataQualityValidator] = None,
        deduplicator: Optional[Deduplicator] = None,
        enricher: Optional[Enricher] = None,
        chunk_size: Optional[int] = None,
        max_error_samples: Optional[int] = None,
    ):
        self.store = store
        self.parser = parser or TabularParser()
        self.canonicalizer = canonicalizer or Canonicalizer()
        self.validator = validator or DataQualityValidator()
        self.deduplicator = deduplicator or Deduplicator()
        self.enricher = enricher or Enricher()
        self.chunk_size = chunk_size or settings.chunk_size
        self.max_error_samples = max_error_samples or settings.max_error_samples

    def process_file(self, buffer: bytes, file_name: str, upload_id: str) -> FileProcessingResult:
        parsed = self.parser.parse_file(buffer, file_name)
        result = FileProcessingResult(
            file_name=file_name,
            errors=list(parsed.errors),
            header_mappings=parsed.header_mappings,
            unmapped_columns=parsed.unmapped_columns,
            total_rows=parsed.total_rows,
        )

        for record in parsed.results:
            try:
                event = self.canonicalizer.canonicalize(record, upload_id)
            except (CanonicalizationError, ValueError, TypeError) as e:
                result.errors.append(IngestionError(
                    row_number=record.source.row_number,
                    reason=f"Canonical conversion error: {e}",
                    file_name=file_name,
                    sheet_name=record.source.sheet_name,
                    category=ErrorCategory.CANONICALIZATION_ERROR,
                ))
                continue

            quality = self.validator.apply(event)
            if not quality.is_valid:
                result.errors.append(IngestionError(
                    row_number=record.source.row_number,
                    reason="Validation failed: " + ", ".join(quality.errors),
                    file_name=file_name,
                    sheet_name=record.source.sheet_name,
                    category=ErrorCategory.VALIDATION_ERROR,
                ))
                continue

            result.events.append(event)

        logger.info(
            "File processed",
            file_name=file_name,
            upload_id=upload_id,
            events=len(result.events),
            errors=len(result.errors),
            total_rows=result.total_rows,
        )
        return result

    def process_files(self, files: Sequence[UploadFile], upload_id: str) -> BatchResult:
        batch = BatchResult(upload_id=upload_id)
        combined: List[CanonicalEvent] = []

        for index, (file_name, buffer) in enumerate(files):
            file_result = self.process_file(buffer, file_name, upload_id)
            batch.files.append(file_result)
            for event in file_result.events:
                batch.origins[event.record_id] = index
            combined.extend(file_result.events)

        dedup = self.deduplicator.deduplicate(combined)
        batch.duplicates = dedup.duplicates
        batch.events = self.enricher.enrich(dedup.records)
        batch.near_duplicates = detect_near_duplicates(batch.events)

        if batch.near_duplicates:
            logger.info(
                "Near-duplicate events detected",
                upload_id=upload_id,
                pairs=len(batch.near_duplicates),
            )
        return batch

    async def _persist(
        self,
        events: Sequence[CanonicalEvent],
        collector: ErrorCollector,
    ) -> Tuple[List[str], int]:
        """Insert in chunks; returns inserted ids and the count of events not stored"""
        inserted: List[str] = []
        failed = 0

        for start in range(0, len(events), self.chunk_size):
            chunk = events[start:start + self.chunk_size]
            stored: List[str] = []
            reason = None
            try:
                insert = await self.store.insert_many(chunk)
                stored = insert.inserted_ids
                if insert.failed_ids:
                    reason = "Insert rejected by store"
            except PartialInsertError as e:
                stored = e.inserted_ids
                reason = f"Insert failed: {e}"
            except Exception as e:
                logger.error("Chunk insert failed", chunk_start=start, chunk_size=len(chunk), error=str(e))
                reason = f"Insert failed: {e}"

            inserted.extend(stored)
            if reason is None:
                continue

            stored_ids = set(stored)
            for event in chunk:
                if event.record_id in stored_ids:
                    continue
                failed += 1
                collector.add(IngestionError(
                    row_number=event.source_row,
                    reason=reason,
                    file_name=event.source_file,
                    sheet_name=event.source_sheet,
                    category=ErrorCategory.PERSISTENCE_ERROR,
                ))
            logger.warning(
                "Chunk partially persisted",
                chunk_start=start,
                chunk_size=len(chunk),
                inserted=len(stored),
            )

        return inserted, failed

    def _file_summaries(self, batch: BatchResult, inserted_ids: Sequence[str]) -> List[Dict[str, Any]]:
        inserted_by_file = Counter(batch.origins[record_id] for record_id in inserted_ids)
        duplicates_by_file = Counter(batch.origins[entry.record_id] for entry in batch.duplicates)
        warnings_by_file = Counter(
            batch.origins[event.record_id] for event in batch.events if event.normalization_warnings
        )

        summaries = []
        for index, file_result in enumerate(batch.files):
            summaries.append({
                "fileName": file_result.file_name,
                "inserted": inserted_by_file[index],
                "skipped": len(file_result.errors) + duplicates_by_file[index],
                "totalRows": file_result.total_rows,
                "warningsCount": warnings_by_file[index],
                "duplicates": duplicates_by_file[index],
            })
        return summaries

    async def ingest_upload(self, files: Sequence[UploadFile], upload_id: Optional[str] = None) -> UploadResult:
        upload_id = upload_id or str(uuid.uuid4())
        logger.info("Starting upload ingestion", upload_id=upload_id, files=len(files))

        batch = self.process_files(files, upload_id)
        collector = ErrorCollector(self.max_error_samples)
        collector.extend(batch.errors)
        invalid_count = collector.total

        inserted_ids, failed_count = await self._persist(batch.events, collector)

        file_summaries = self._file_summaries(batch, inserted_ids)
        duplicate_count = len(batch.duplicates)
        totals = {
            "totalInserted": len(inserted_ids),
            "totalInvalid": invalid_count,
            "totalDuplicates": duplicate_count,
            "totalSkipped": invalid_count + duplicate_count,
            "totalFailed": failed_count,
            "totalProcessed": len(inserted_ids) + invalid_count + duplicate_count,
            "totalFiles": len(files),
        }

        stored = set(inserted_ids)
        persisted = [event for event in batch.events if event.record_id in stored]
        reports = generate_all_reports(
            persisted,
            file_summaries,
            upload_id,
            [file_result.header_mappings for file_result in batch.files],
            [file_result.unmapped_columns for file_result in batch.files],
            self.validator,
        )

        result = UploadResult(
            upload_id=upload_id,
            file_summaries=file_summaries,
            totals=totals,
            error_samples=collector.sample_dicts(),
            error_counts=dict(collector.counts_by_category),
            near_duplicates=[pair.to_dict() for pair in batch.near_duplicates[:self.max_error_samples]],
            inserted_ids=inserted_ids,
            reports=reports,
        )

        logger.info(
            "Upload ingestion completed",
            upload_id=upload_id,
            **totals,
        )
        return result
