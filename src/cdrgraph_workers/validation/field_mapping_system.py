"""
Field Mapping System

Maps free-text CDR headers onto canonical field names:
- Immutable synonym tables that can be swapped per carrier or per test
- Exact (case-insensitive) matching before substring matching
- Header row detection by keyword scoring
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class HeaderMappingTable:
    """Synonyms per canonical field plus the keywords that mark a header row"""
    synonyms: Mapping[str, Tuple[str, ...]]
    header_keywords: Tuple[str, ...]

    @classmethod
    def from_dict(
        cls,
        synonyms: Dict[str, Sequence[str]],
        header_keywords: Sequence[str],
    ) -> "HeaderMappingTable":
        frozen = {canonical: tuple(values) for canonical, values in synonyms.items()}
        return cls(
            synonyms=MappingProxyType(frozen),
            header_keywords=tuple(header_keywords),
        )

    @property
    def canonical_fields(self) -> List[str]:
        return list(self.synonyms.keys())


DEFAULT_HEADER_MAPPINGS = HeaderMappingTable.from_dict(
    synonyms={
        'startTime': ['Start Time', 'Date & Time', 'strt_tm', 'StartTime', 'timestamp', 'time',
                      'Start Date', 'Date'],
        'endTime': ['End Time', 'end_tm', 'EndTime', 'End Date'],
        'aParty': ['A Number', 'A-Party', 'msisdn', 'A Party', 'ANumber', 'A-Number', 'Calling Party'],
        'bParty': ['B Number', 'B-Party', 'bnumber', 'B Party', 'BNumber', 'B-Number', 'Called Party'],
        'eventType': ['Type', 'Call Type', 'call_type', 'Event Type', 'Service Type'],
        'direction': ['Direction', 'Call Direction', 'dir', 'Call Dir'],
        'duration': ['Duration', 'Call Duration', 'duration_sec', 'Call Length'],
        'durationMins': ['mins', 'min', 'minutes'],
        'durationSecs': ['secs', 'sec', 'seconds'],
        'cellId': ['Cell ID', 'cell_id', 'CellID', 'Cell', 'Cell Sector'],
        'lacId': ['LAC', 'lac_id', 'lacId', 'Lac ID'],
        'lat': ['Latitude', 'lat'],
        'lng': ['Longitude', 'lng', 'lon', 'Long'],
        'site': ['Site', 'site_address', 'Location', 'siteAddress', 'Cell Site', 'Location Name'],
        'imei': ['IMEI'],
        'imsi': ['IMSI'],
        'provider': ['Service Provider', 'provider', 'Network', 'Carrier'],
    },
    header_keywords=[
        'imei', 'imsi', 'a-party', 'b-party', 'a number', 'b number', 'msisdn',
        'date', 'time', 'duration', 'cell', 'lac', 'latitude', 'longitude',
        'site', 'location', 'provider', 'type', 'direction',
    ],
)

# Header fragments that mark a column as holding phone numbers
PHONE_HEADER_HINTS = ('number', 'party', 'msisdn')

UNNAMED_HEADER_PREFIX = 'unnamed'


def _clean(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip().lower()


def normalize_headers(
    headers: Sequence[Any],
    table: HeaderMappingTable = DEFAULT_HEADER_MAPPINGS,
) -> Dict[str, int]:
    """
    Map canonical field names to column indices

    Exact case-insensitive matches are tried across all headers before any
    substring match. Each canonical field is assigned at most once.
    """
    header_lower = [_clean(h) for h in headers]
    mapping: Dict[str, int] = {}

    for canonical, synonyms in table.synonyms.items():
        synonyms_lower = [s.lower().strip() for s in synonyms]

        # First pass: exact matches
        for idx, header in enumerate(header_lower):
            if header and header in synonyms_lower:
                mapping[canonical] = idx
                break

        if canonical in mapping:
            continue

        # Second pass: substring matches in either direction
        for idx, header in enumerate(header_lower):
            if not header:
                continue
            if any(syn in header or header in syn for syn in synonyms_lower):
                mapping[canonical] = idx
                break

    return mapping


def describe_mapping(headers: Sequence[Any], mapping: Dict[str, int]) -> Dict[str, str]:
    """Canonical field -> source header text, for schema mapping reports"""
    return {canonical: str(headers[idx]) for canonical, idx in mapping.items()}


def score_header_row(row: Sequence[Any], table: HeaderMappingTable = DEFAULT_HEADER_MAPPINGS) -> float:
    """Score a candidate header row by keyword hits and distinct non-empty cells"""
    cells = [_clean(cell) for cell in row]
    score = 0.0
    for keyword in table.header_keywords:
        if any(keyword in cell for cell in cells):
            score += 1

    distinct = {cell for cell in cells if cell}
    score += len(distinct) * 0.1
    return score


def find_header_row(
    rows: Sequence[Sequence[Any]],
    max_scan: int = 30,
    table: HeaderMappingTable = DEFAULT_HEADER_MAPPINGS,
) -> int:
    """Return the index of the best scoring row among the first max_scan rows"""
    best_row = 0
    best_score = 0.0

    for idx, row in enumerate(rows[:max_scan]):
        score = score_header_row(row, table)
        if score > best_score:
            best_score = score
            best_row = idx

    logger.debug("Header row detected", header_row=best_row, score=round(best_score, 2))
    return best_row


def is_phone_header(header: Any) -> bool:
    text = _clean(header)
    return bool(text) and any(hint in text for hint in PHONE_HEADER_HINTS)


def is_unnamed_header(header: Any) -> bool:
    text = _clean(header)
    return not text or text.startswith(UNNAMED_HEADER_PREFIX)


def exact_header_index(headers: Sequence[Any], name: str) -> Optional[int]:
    """Index of the first header equal to name (case-insensitive)"""
    target = name.lower()
    for idx, header in enumerate(headers):
        if _clean(header) == target:
            return idx
    return None
