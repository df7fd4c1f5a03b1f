"""
Data Normalization Engine

This module turns one raw CDR row into an IntermediateRecord:
- Date/time parsing with day-first ambiguity resolution and spreadsheet serials
- Phone number cleanup (scientific notation expansion, Unicode digit folding)
- Duration conversion from numbers, clock strings and split min/sec columns
- Event type and direction inference
- Pipe-delimited site decomposition
"""
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from numbers import Number
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import phonenumbers
import structlog

from ..config import settings
from ..models.records import IntermediateRecord, SourceRef
from .error_handler import RowRejected
from .field_mapping_system import (
    DEFAULT_HEADER_MAPPINGS,
    HeaderMappingTable,
    exact_header_index,
    normalize_headers,
)

logger = structlog.get_logger(__name__)

SPREADSHEET_EPOCH = datetime(1899, 12, 30)

MISSING_START_TIME = "Missing or invalid startTime"
MISSING_PARTIES = "Missing both aParty and bParty"


def is_blank(value: Any) -> bool:
    """True for None, NaN/NaT and whitespace-only strings"""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (Number, np.number)) and not isinstance(value, (bool, np.bool_))


def parse_float(value: Any) -> Optional[float]:
    """Leading-number parse: 12.5 -> 12.5, '31.52abc' -> 31.52, 'x' -> None"""
    if is_blank(value):
        return None
    if _is_number(value):
        number = float(value)
        return None if math.isnan(number) else number
    match = re.match(r'^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)', str(value))
    return float(match.group(1)) if match else None


def clean_text(value: Any) -> Optional[str]:
    """Stringify an identifier cell; integral floats lose their '.0'"""
    if is_blank(value):
        return None
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


def parse_utc_offset(suffix: str) -> timezone:
    """'Z', '+05:00' or '-0330' to a fixed-offset tzinfo"""
    if suffix.upper() == 'Z':
        return timezone.utc
    sign = -1 if suffix[0] == '-' else 1
    digits = suffix[1:].replace(':', '')
    offset = timedelta(hours=int(digits[:2]), minutes=int(digits[2:]))
    return timezone(sign * offset)


class DateTimeNormalizer:
    """Date/time parsing with DD/MM priority and year range validation"""

    SLASH_DATETIME = re.compile(
        r'^(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?(?:\s*(AM|PM))?$',
        re.IGNORECASE,
    )
    SLASH_DATE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
    ISO_DATETIME = re.compile(
        r'^(\d{4})-(\d{1,2})-(\d{1,2})'
        r'(?:[ T](\d{1,2}):(\d{1,2})(?::(\d{1,2})(?:\.\d+)?)?)?'
        r'\s*(Z|[+-]\d{2}:?\d{2})?$',
        re.IGNORECASE,
    )
    ISO_PREFIX = re.compile(r'^\d{4}-')
    NUMERIC = re.compile(r'^\d+(?:\.\d+)?$')
    YEAR_HINT = re.compile(r'\d{4}')

    def __init__(self, min_year: Optional[int] = None, max_year: Optional[int] = None):
        self.min_year = min_year if min_year is not None else settings.min_valid_year
        self.max_year = max_year if max_year is not None else settings.max_valid_year

    def parse_date(self, value: Any) -> Optional[datetime]:
        """Parse a cell into a datetime, or None when unresolvable or out of range"""
        if is_blank(value) or isinstance(value, (bool, np.bool_)):
            return None

        # Step 1: native date objects
        if isinstance(value, np.datetime64):
            value = pd.Timestamp(value)
        if isinstance(value, pd.Timestamp):
            return self._in_range(value.to_pydatetime())
        if isinstance(value, datetime):
            return self._in_range(value)
        if isinstance(value, date):
            return self._in_range(datetime.combine(value, time()))

        # Step 2: spreadsheet serial numbers
        if _is_number(value):
            return self._from_serial(float(value))

        text = str(value).strip()
        if self.NUMERIC.match(text):
            return self._from_serial(float(text))

        # Step 3: explicit string patterns
        for parser in (self._parse_slash, self._parse_iso):
            parsed = parser(text)
            if parsed is not None:
                return parsed

        # Step 4: generic fallback
        return self._parse_fallback(text)

    def _in_range(self, dt: Optional[datetime]) -> Optional[datetime]:
        if dt is None:
            return None
        if self.min_year <= dt.year <= self.max_year:
            return dt
        return None

    def _from_serial(self, serial: float) -> Optional[datetime]:
        if not (1 < serial < 100000):
            return None
        days = math.floor(serial)
        seconds = round((serial - days) * 86400)
        return self._in_range(SPREADSHEET_EPOCH + timedelta(days=days, seconds=seconds))

    def _build(self, year: int, month: int, day: int, hour: int = 0, minute: int = 0,
               second: int = 0, meridiem: Optional[str] = None) -> Optional[datetime]:
        if meridiem:
            is_pm = meridiem.upper() == 'PM'
            if is_pm and hour != 12:
                hour += 12
            elif not is_pm and hour == 12:
                hour = 0
        try:
            return self._in_range(datetime(year, month, day, hour, minute, second))
        except ValueError:
            return None

    def _parse_slash(self, text: str) -> Optional[datetime]:
        match = self.SLASH_DATETIME.match(text)
        if match:
            first, second_part, year, hour, minute = (int(g) for g in match.groups()[:5])
            seconds = int(match.group(6) or 0)
            meridiem = match.group(7)
        else:
            match = self.SLASH_DATE.match(text)
            if not match:
                return None
            first, second_part, year = (int(g) for g in match.groups())
            hour = minute = seconds = 0
            meridiem = None

        # Day-first reading wins whenever it is a valid calendar date
        if first <= 31 and second_part <= 12:
            parsed = self._build(year, second_part, first, hour, minute, seconds, meridiem)
            if parsed is not None:
                return parsed

        # Month-first only when the leading component can be a month
        if first <= 12:
            return self._build(year, first, second_part, hour, minute, seconds, meridiem)
        return None

    def _parse_iso(self, text: str) -> Optional[datetime]:
        match = self.ISO_DATETIME.match(text)
        if not match:
            return None
        year, month, day = (int(g) for g in match.groups()[:3])
        hour, minute, second = (int(g or 0) for g in match.groups()[3:6])
        parsed = self._build(year, month, day, hour, minute, second)
        suffix = match.group(7)
        if parsed is None or suffix is None:
            return parsed
        try:
            return parsed.replace(tzinfo=parse_utc_offset(suffix))
        except ValueError:
            return None

    def _parse_fallback(self, text: str) -> Optional[datetime]:
        if not self.YEAR_HINT.search(text):
            return None
        try:
            # Year-first strings are never read day-first
            dayfirst = not self.ISO_PREFIX.match(text)
            parsed = pd.to_datetime(text, errors='coerce', dayfirst=dayfirst)
        except (ValueError, TypeError, OverflowError):
            return None
        if parsed is None or pd.isna(parsed):
            return None
        return self._in_range(parsed.to_pydatetime())


class PhoneNormalizer:
    """Phone cleanup that never lets scientific notation through"""

    SCIENTIFIC = re.compile(r'^[+-]?\d+(?:\.\d+)?[eE][+-]?\d+$')
    PHONE_LIKE = re.compile(r'^\+?[\d\s\-().]+$')
    SEPARATORS = re.compile(r'[\s-]')

    def normalize(self, value: Any) -> Tuple[Optional[str], bool]:
        """Return (phone, corrected_scientific)"""
        if is_blank(value) or isinstance(value, (bool, np.bool_)):
            return None, False

        corrected = False
        if _is_number(value) and not isinstance(value, Decimal):
            number = float(value)
            if not math.isfinite(number):
                return None, False
            text = self._decimal_text(Decimal(repr(number)))
        elif isinstance(value, Decimal):
            text = self._decimal_text(value)
        else:
            text = str(value).strip()
            if self.SCIENTIFIC.match(text):
                try:
                    text = self._decimal_text(Decimal(text))
                    corrected = True
                except InvalidOperation:
                    pass

        if text.endswith('.0'):
            text = text[:-2]

        if self.PHONE_LIKE.match(text):
            plus = '+' if text.startswith('+') else ''
            text = plus + phonenumbers.normalize_digits_only(text)
        else:
            text = self.SEPARATORS.sub('', text)

        return (text or None), corrected

    @staticmethod
    def _decimal_text(number: Decimal) -> str:
        if number == number.to_integral_value():
            return str(int(number))
        return format(number.normalize(), 'f')


class DurationNormalizer:
    """Call duration in seconds"""

    CLOCK = re.compile(r'^(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?$')

    def parse(self, value: Any) -> float:
        if is_blank(value) or isinstance(value, (bool, np.bool_)):
            return 0
        if isinstance(value, timedelta):
            return max(0, value.total_seconds())
        if isinstance(value, time):
            return value.hour * 3600 + value.minute * 60 + value.second
        if _is_number(value):
            number = float(value)
            if math.isnan(number):
                return 0
            return max(0, int(number) if number.is_integer() else number)

        text = str(value).strip()
        match = self.CLOCK.match(text)
        if match:
            if match.group(3) is not None:
                hours, minutes, seconds = (int(g) for g in match.groups())
            else:
                hours = 0
                minutes, seconds = int(match.group(1)), int(match.group(2))
            return hours * 3600 + minutes * 60 + seconds

        number = parse_float(text)
        if number is None:
            return 0
        return max(0, int(number) if number.is_integer() else number)


INCOMING = re.compile(r'\bincoming\b', re.IGNORECASE)
OUTGOING = re.compile(r'\boutgoing\b', re.IGNORECASE)
BARE_IN = re.compile(r'\bin\b', re.IGNORECASE)
BARE_OUT = re.compile(r'\bout\b', re.IGNORECASE)
IN_LOOKALIKES = ('internet', 'internal', 'input')
OUT_LOOKALIKES = ('without', 'about', 'route')


def parse_event_type(value: Any) -> str:
    if is_blank(value):
        return 'call'
    text = str(value).upper()
    if 'SMS' in text or 'MESSAGE' in text:
        return 'sms'
    return 'call'


def parse_direction(value: Any) -> str:
    """Whole-word direction matching; 'internet' never reads as 'in'"""
    if is_blank(value):
        return 'unknown'
    text = str(value).strip()
    lower = text.lower()

    if INCOMING.search(text):
        return 'incoming'
    if OUTGOING.search(text):
        return 'outgoing'
    if BARE_IN.search(text) and not any(word in lower for word in IN_LOOKALIKES):
        return 'incoming'
    if BARE_OUT.search(text) and not any(word in lower for word in OUT_LOOKALIKES):
        return 'outgoing'
    return 'unknown'


@dataclass
class SiteInfo:
    """Decomposed site cell"""
    site: Optional[str] = None
    site_name: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    site_meta: Optional[str] = None


def parse_site(value: Any) -> SiteInfo:
    """Split 'name|lat|lng|meta...' while keeping the full original string"""
    text = clean_text(value)
    if not text:
        return SiteInfo()
    if '|' not in text:
        return SiteInfo(site=text, site_name=text)

    parts = [part.strip() for part in text.split('|') if part.strip()]
    info = SiteInfo(site=text, site_name=parts[0] if parts else None)
    if len(parts) > 1:
        info.lat = parse_float(parts[1])
    if len(parts) > 2:
        info.lng = parse_float(parts[2])
    if len(parts) > 3:
        info.site_meta = '|'.join(parts[3:])
    return info


class RowNormalizer:
    """Builds IntermediateRecords from header-mapped rows"""

    def __init__(
        self,
        table: HeaderMappingTable = DEFAULT_HEADER_MAPPINGS,
        date_normalizer: Optional[DateTimeNormalizer] = None,
        phone_normalizer: Optional[PhoneNormalizer] = None,
        duration_normalizer: Optional[DurationNormalizer] = None,
        short_code_max_length: Optional[int] = None,
    ):
        self.table = table
        self.dates = date_normalizer or DateTimeNormalizer()
        self.phones = phone_normalizer or PhoneNormalizer()
        self.durations = duration_normalizer or DurationNormalizer()
        self.short_code_max_length = (
            short_code_max_length if short_code_max_length is not None
            else settings.short_code_max_length
        )

    def map_headers(self, headers: Sequence[Any]) -> Dict[str, int]:
        return normalize_headers(headers, self.table)

    def normalize_row(
        self,
        row: Sequence[Any],
        headers: Sequence[Any],
        source: SourceRef,
        mapping: Optional[Dict[str, int]] = None,
    ) -> IntermediateRecord:
        """Normalize one row; raises RowRejected when required fields are missing"""
        if mapping is None:
            mapping = self.map_headers(headers)

        def get(key: str) -> Any:
            idx = mapping.get(key)
            if idx is None or idx >= len(row):
                return None
            return row[idx]

        start_time = self.dates.parse_date(get('startTime'))
        if start_time is None:
            raise RowRejected(MISSING_START_TIME)

        a_party, a_corrected = self.phones.normalize(get('aParty'))
        b_party, b_corrected = self.phones.normalize(get('bParty'))
        if not a_party and not b_party:
            raise RowRejected(MISSING_PARTIES)

        record = IntermediateRecord(
            start_time=start_time,
            source=source,
            a_party=a_party,
            b_party=b_party,
            end_time=self.dates.parse_date(get('endTime')),
        )

        # Explicit direction column wins over the event type column
        direction_value = get('direction')
        type_value = get('eventType')
        if not is_blank(direction_value):
            record.direction = parse_direction(direction_value)
        elif not is_blank(type_value):
            record.direction = parse_direction(type_value)
        record.event_type = parse_event_type(type_value)

        record.duration_sec = self.durations.parse(get('duration'))
        mins_value, secs_value = get('durationMins'), get('durationSecs')
        if record.duration_sec == 0 and not (is_blank(mins_value) and is_blank(secs_value)):
            record.duration_sec = (
                self.durations.parse(mins_value) * 60 + self.durations.parse(secs_value)
            )

        record.imei = clean_text(get('imei'))
        record.imsi = clean_text(get('imsi'))
        record.cell_id = clean_text(get('cellId'))
        record.lac_id = clean_text(get('lacId'))
        record.provider = clean_text(get('provider'))
        record.lat = parse_float(get('lat'))
        record.lng = parse_float(get('lng'))

        self._apply_site(record, row, headers, get('site'))
        record.normalization_warnings = self._warnings(record, a_corrected, b_corrected)
        record.is_short_code = any('short_code' in w for w in record.normalization_warnings)
        return record

    def _apply_site(self, record: IntermediateRecord, row: Sequence[Any],
                    headers: Sequence[Any], mapped_value: Any) -> None:
        site_value = None
        site_idx = exact_header_index(headers, 'site')
        if site_idx is not None and site_idx < len(row) and not is_blank(row[site_idx]):
            site_value = row[site_idx]
        if site_value is None:
            site_value = mapped_value

        info = parse_site(site_value)
        record.site = info.site
        record.site_name = info.site_name
        record.site_meta = info.site_meta
        if record.lat is None and info.lat is not None:
            record.lat = info.lat
        if record.lng is None and info.lng is not None:
            record.lng = info.lng

    def _warnings(self, record: IntermediateRecord, a_corrected: bool, b_corrected: bool) -> List[str]:
        warnings = []
        if record.a_party and len(record.a_party) <= self.short_code_max_length:
            warnings.append('aParty_short_code')
        if record.b_party and len(record.b_party) <= self.short_code_max_length:
            warnings.append('bParty_short_code')
        if a_corrected:
            warnings.append('aParty_scientific_notation_source')
        if b_corrected:
            warnings.append('bParty_scientific_notation_source')
        if not record.site:
            warnings.append('missing_site')
        return warnings
