"""
Tabular CDR parser for CSV and spreadsheet uploads

Supports:
- Encoding detection (chardet) and delimiter sniffing for CSV
- Multi-sheet XLS/XLSX via pandas with header row scoring
- Phone column coercion to plain decimal strings before normalization
- Dropping of empty and "Unnamed" columns with stable re-indexing
- Per-row error collection that never aborts the file
"""
import csv
import io
import math
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

import chardet
import numpy as np
import pandas as pd
import structlog

from ..config import settings
from ..models.records import IntermediateRecord, SourceRef
from ..validation.data_normalization_engine import RowNormalizer, is_blank
from ..validation.error_handler import ErrorCategory, IngestionError, RowRejected
from ..validation.field_mapping_system import (
    describe_mapping,
    find_header_row,
    is_phone_header,
    is_unnamed_header,
)

logger = structlog.get_logger(__name__)

CSV_EXTENSIONS = ('csv',)
SPREADSHEET_EXTENSIONS = ('xls', 'xlsx')
CSV_DELIMITERS = ',;|\t'


@dataclass
class ParseResult:
    """Records and row errors produced from one file"""
    results: List[IntermediateRecord] = field(default_factory=list)
    errors: List[IngestionError] = field(default_factory=list)
    header_mappings: Dict[str, Dict[str, str]] = field(default_factory=dict)
    unmapped_columns: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def total_rows(self) -> int:
        return len(self.results) + len(self.errors)


def coerce_phone_cell(value: Any) -> Any:
    """Numeric phone cells become plain digit strings, never scientific notation"""
    if is_blank(value) or isinstance(value, (bool, np.bool_)):
        return value
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, (float, np.floating)):
        number = float(value)
        if not math.isfinite(number):
            return None
        exact = Decimal(repr(number))
        if exact == exact.to_integral_value():
            return str(int(exact))
        return format(exact.normalize(), 'f')
    return str(value)


def file_extension(file_name: str) -> str:
    return os.path.splitext(file_name)[1].lstrip('.').lower()


class TabularParser:
    """Parses CDR exports into IntermediateRecords"""

    def __init__(self, normalizer: Optional[RowNormalizer] = None, header_scan_rows: Optional[int] = None):
        self.normalizer = normalizer or RowNormalizer()
        self.header_scan_rows = header_scan_rows or settings.header_scan_rows

    def parse_file(self, buffer: bytes, file_name: str) -> ParseResult:
        """Dispatch on extension; unsupported types yield one file-level error"""
        ext = file_extension(file_name)
        if ext in CSV_EXTENSIONS:
            return self.parse_csv(buffer, file_name)
        if ext in SPREADSHEET_EXTENSIONS:
            return self.parse_spreadsheet(buffer, file_name)

        logger.warning("Unsupported file type", file_name=file_name, extension=ext)
        return ParseResult(errors=[IngestionError(
            row_number=0,
            reason=f"Unsupported file type: .{ext}",
            file_name=file_name,
            category=ErrorCategory.FILE_ERROR,
        )])

    def parse_csv(self, buffer: bytes, file_name: str) -> ParseResult:
        result = ParseResult()
        try:
            text = self._decode(buffer)
            delimiter = self._sniff_delimiter(text)
            reader = csv.reader(io.StringIO(text, newline=''), delimiter=delimiter)

            rows: List[Tuple[int, List[str]]] = []
            for cells in reader:
                cells = [cell.strip() for cell in cells]
                if not any(cells):
                    continue
                rows.append((reader.line_num, cells))

            if len(rows) < 2:
                result.errors.append(IngestionError(
                    row_number=0,
                    reason="No data rows found",
                    file_name=file_name,
                    category=ErrorCategory.FILE_ERROR,
                ))
                return result

            header_line, header_cells = rows[0]
            self._parse_table(
                result,
                header_cells,
                [(line_num, cells) for line_num, cells in rows[1:]],
                file_name=file_name,
                sheet_name=None,
                header_row_number=header_line,
            )
        except Exception as e:
            logger.error("CSV parsing failed", file_name=file_name, error=str(e))
            result.results.clear()
            result.errors.append(IngestionError(
                row_number=0,
                reason=f"CSV parsing error: {e}",
                file_name=file_name,
                category=ErrorCategory.FILE_ERROR,
            ))
            return result

        logger.info(
            "CSV parsed",
            file_name=file_name,
            delimiter=delimiter,
            records=len(result.results),
            errors=len(result.errors),
        )
        return result

    def parse_spreadsheet(self, buffer: bytes, file_name: str) -> ParseResult:
        result = ParseResult()
        try:
            sheets = pd.read_excel(io.BytesIO(buffer), sheet_name=None, header=None, dtype=object)
        except Exception as e:
            logger.error("Spreadsheet parsing failed", file_name=file_name, error=str(e))
            result.errors.append(IngestionError(
                row_number=0,
                reason=f"Excel parsing error: {e}",
                file_name=file_name,
                category=ErrorCategory.FILE_ERROR,
            ))
            return result

        for sheet_name, frame in sheets.items():
            sheet_name = str(sheet_name)
            raw_rows = [
                [None if is_blank(cell) else cell for cell in row]
                for row in frame.itertuples(index=False, name=None)
            ]
            if not any(cell is not None for row in raw_rows for cell in row):
                result.errors.append(IngestionError(
                    row_number=0,
                    reason=f'Sheet "{sheet_name}" is empty',
                    file_name=file_name,
                    sheet_name=sheet_name,
                    category=ErrorCategory.FILE_ERROR,
                ))
                continue

            header_idx = find_header_row(raw_rows, self.header_scan_rows, self.normalizer.table)
            header_cells = raw_rows[header_idx]

            # Phone columns are fixed before any other processing
            phone_columns = {idx for idx, header in enumerate(header_cells) if is_phone_header(header)}
            data_rows = []
            for offset, row in enumerate(raw_rows[header_idx + 1:], start=header_idx + 2):
                coerced = [
                    coerce_phone_cell(cell) if idx in phone_columns else cell
                    for idx, cell in enumerate(row)
                ]
                data_rows.append((offset, coerced))

            self._parse_table(
                result,
                header_cells,
                data_rows,
                file_name=file_name,
                sheet_name=sheet_name,
                header_row_number=header_idx + 1,
            )

            logger.info(
                "Sheet parsed",
                file_name=file_name,
                sheet_name=sheet_name,
                header_row=header_idx + 1,
                data_rows=len(data_rows),
            )

        return result

    def _parse_table(
        self,
        result: ParseResult,
        header_cells: Sequence[Any],
        data_rows: Sequence[Tuple[int, Sequence[Any]]],
        file_name: str,
        sheet_name: Optional[str],
        header_row_number: int,
    ) -> None:
        """Normalize every data row of one table into result"""
        valid_indices = [idx for idx, header in enumerate(header_cells) if not is_unnamed_header(header)]
        headers = [str(header_cells[idx]).strip() for idx in valid_indices]

        if not headers:
            result.errors.append(IngestionError(
                row_number=header_row_number,
                reason=f'No valid headers found in sheet "{sheet_name or file_name}"',
                file_name=file_name,
                sheet_name=sheet_name,
                category=ErrorCategory.FILE_ERROR,
            ))
            return

        mapping = self.normalizer.map_headers(headers)
        result.header_mappings[sheet_name or file_name] = describe_mapping(headers, mapping)
        mapped = set(mapping.values())
        result.unmapped_columns[sheet_name or file_name] = [
            header for idx, header in enumerate(headers) if idx not in mapped
        ]

        for row_number, raw_row in data_rows:
            if all(is_blank(cell) for cell in raw_row):
                continue

            # Re-index against the retained columns so nothing shifts
            row = [raw_row[idx] if idx < len(raw_row) else None for idx in valid_indices]
            source = SourceRef(file_name=file_name, sheet_name=sheet_name, row_number=row_number)
            try:
                result.results.append(self.normalizer.normalize_row(row, headers, source, mapping))
            except RowRejected as e:
                result.errors.append(IngestionError(
                    row_number=row_number,
                    reason=e.reason,
                    file_name=file_name,
                    sheet_name=sheet_name,
                ))

    def _decode(self, buffer: bytes) -> str:
        detected = chardet.detect(buffer[:50000]) if buffer else {}
        encoding = detected.get('encoding') or 'utf-8'
        if encoding.lower() == 'ascii':
            encoding = 'utf-8'
        try:
            text = buffer.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            text = buffer.decode('utf-8', errors='replace')
        return text.lstrip('\ufeff')

    def _sniff_delimiter(self, text: str) -> str:
        sample = '\n'.join(text.splitlines()[:50])
        try:
            return csv.Sniffer().sniff(sample, delimiters=CSV_DELIMITERS).delimiter
        except csv.Error:
            counts = {candidate: sample.count(candidate) for candidate in CSV_DELIMITERS}
            best = max(counts, key=counts.get)
            return best if counts[best] > 0 else ','
