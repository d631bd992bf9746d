"""Date handling for values stored in spreadsheet cells.

Three shapes arrive from a sheet:

* numbers, when a range is read with ``UNFORMATTED_VALUE`` and the cell holds
  a real date: a serial day count since 1899-12-30 with the time of day in the
  fractional part;
* ISO-8601 strings written by older releases or by other tools;
* ``DD/MM/YYYY HH:mm:ss`` strings, the canonical stored form. They are always
  read day-first, whatever the locale of the spreadsheet.

:func:`classify` tags each input with the shape it was recognised as so the
ambiguity is visible to callers; :func:`parse_sheet_date` returns the ISO text
handed to API consumers and :func:`format_sheet_date` produces the stored text.
"""

from __future__ import annotations

import enum
import math
import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, NamedTuple, Optional, Union
from zoneinfo import ZoneInfo

SERIAL_EPOCH = datetime(1899, 12, 30)
SERIAL_EPSILON_DAYS = 1e-7
SECONDS_PER_DAY = 86_400
STORED_FORMAT = "%d/%m/%Y %H:%M:%S"

_ISO_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_DAY_FIRST_RE = re.compile(
    r"^(?P<day>\d{1,2})[/\-](?P<month>\d{1,2})[/\-](?P<year>\d{4})"
    r"(?:[ T]+(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?)?"
)

DateInput = Union[str, int, float, datetime, date, None]


class DateKind(enum.Enum):
    SERIAL = "serial"
    DAY_FIRST = "day_first"
    ISO = "iso"
    INVALID = "invalid"


class ParsedDate(NamedTuple):
    """Result of :func:`classify`: the recognised shape and the instant."""

    kind: DateKind
    value: Optional[datetime]

    @property
    def ok(self) -> bool:
        return self.kind is not DateKind.INVALID and self.value is not None


_INVALID = ParsedDate(DateKind.INVALID, None)


def get_zone(name: Optional[str] = None) -> tzinfo:
    """Return the tzinfo for ``name``; ``None``/``"UTC"`` map to UTC."""

    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def convert_serial_to_date(serial: float, tz: Optional[tzinfo] = None) -> datetime:
    """Convert a spreadsheet serial number to an aware datetime in ``tz``.

    The epsilon counters float truncation: 0.5 days may be stored as
    0.49999999 and would otherwise floor to 11:59:59.
    """

    zone = tz or timezone.utc
    whole_days = math.floor(serial)
    fraction = serial - whole_days + SERIAL_EPSILON_DAYS
    total_seconds = math.floor(SECONDS_PER_DAY * fraction)
    naive = SERIAL_EPOCH + timedelta(days=whole_days, seconds=total_seconds)
    return naive.replace(tzinfo=zone)


def _parse_iso(text: str, zone: tzinfo) -> Optional[datetime]:
    candidate = text
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed


def _parse_day_first(text: str, zone: tzinfo) -> Optional[datetime]:
    match = _DAY_FIRST_RE.match(text)
    if not match:
        return None
    parts = match.groupdict()
    try:
        return datetime(
            int(parts["year"]),
            int(parts["month"]),
            int(parts["day"]),
            int(parts["hour"] or 0),
            int(parts["minute"] or 0),
            int(parts["second"] or 0),
            tzinfo=zone,
        )
    except ValueError:
        return None


def classify(value: Any, tz: Optional[tzinfo] = None) -> ParsedDate:
    """Recognise ``value`` as a serial, day-first, or ISO date. Never raises."""

    zone = tz or timezone.utc
    if value is None or isinstance(value, bool):
        return _INVALID
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=zone)
        return ParsedDate(DateKind.ISO, aware)
    if isinstance(value, date):
        return ParsedDate(DateKind.ISO, datetime(value.year, value.month, value.day, tzinfo=zone))
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return _INVALID
        try:
            return ParsedDate(DateKind.SERIAL, convert_serial_to_date(value, zone))
        except (OverflowError, ValueError):
            return _INVALID

    text = str(value).strip()
    if text.startswith("'"):
        text = text[1:].strip()
    if not text:
        return _INVALID

    if _DAY_FIRST_RE.match(text):
        parsed = _parse_day_first(text, zone)
        return ParsedDate(DateKind.DAY_FIRST, parsed) if parsed else _INVALID
    if "T" in text or _ISO_PREFIX_RE.match(text):
        parsed = _parse_iso(text, zone)
        return ParsedDate(DateKind.ISO, parsed) if parsed else _INVALID
    return _INVALID


def to_iso(moment: datetime) -> str:
    """Render ``moment`` as UTC ISO-8601 text with millisecond precision."""

    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_date_string(value: Any, tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """Return the aware datetime for ``value`` or ``None`` when unrecognised."""

    parsed = classify(value, tz)
    return parsed.value if parsed.ok else None


def parse_sheet_date(value: Any, tz: Optional[tzinfo] = None) -> Optional[str]:
    """Return the ISO text for a stored date value, or ``None``."""

    moment = parse_date_string(value, tz)
    if moment is None:
        return None
    try:
        return to_iso(moment)
    except (OverflowError, ValueError):
        return None


def ensure_iso_date(value: Any, tz: Optional[tzinfo] = None) -> Optional[str]:
    if value is None or value == "":
        return None
    return parse_sheet_date(value, tz)


def format_sheet_date(value: DateInput, tz: Optional[tzinfo] = None) -> str:
    """Format ``value`` as ``DD/MM/YYYY HH:mm:ss`` in ``tz``.

    Accepts datetimes as well as anything :func:`classify` recognises.
    Returns an empty string when the value is missing or unparseable.
    """

    moment = parse_date_string(value, tz)
    if moment is None:
        return ""
    local = moment.astimezone(tz or timezone.utc)
    return f"{local.day:02d}/{local.month:02d}/{local.year:04d} {local.strftime('%H:%M:%S')}"


def normalize_date(value: str) -> str:
    """Reduce a stored or ISO date string to ``YYYY-MM-DD`` for comparisons."""

    if not value:
        return ""
    text = value.strip()
    if text.startswith("'"):
        text = text[1:]
    head = re.split(r"[ T]", text, maxsplit=1)[0]
    parts = re.split(r"[/\-]", head)
    if len(parts) == 3:
        first, second, third = parts
        if len(first) <= 2 and len(third) == 4:
            return f"{third}-{second.zfill(2)}-{first.zfill(2)}"
        if len(first) == 4:
            return f"{first}-{second.zfill(2)}-{third.zfill(2)}"
    return text


def now(tz: Optional[tzinfo] = None) -> datetime:
    """Current time truncated to seconds, the precision of stored dates."""

    return datetime.now(tz or timezone.utc).replace(microsecond=0)


__all__ = [
    "DateKind",
    "ParsedDate",
    "SERIAL_EPOCH",
    "classify",
    "convert_serial_to_date",
    "ensure_iso_date",
    "format_sheet_date",
    "get_zone",
    "normalize_date",
    "now",
    "parse_date_string",
    "parse_sheet_date",
    "to_iso",
]
