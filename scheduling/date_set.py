"""Expansion and display of occurrence day sets."""
import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Union

from scheduling.exceptions import (
    EmptyDateSetError,
    InvalidDateError,
    InvalidRangeError,
    InvalidTimeError,
    RangeEditError,
    SchedulingError,
)
from scheduling.models import DateSet, OccurrenceKind

logger = logging.getLogger(__name__)

DATE_FORMAT = '%Y-%m-%d'
TIME_FORMAT = '%H:%M:%S'

# Backend value for "no date chosen yet"
NO_DATE_SENTINEL = '0001-01-01'
PLACEHOLDER = 'To be shared'
LIST_SEPARATOR = ', '
RANGE_SEPARATOR = ' – '

DateLike = Union[date, str]


def parse_date(value: DateLike, field: str = 'date') -> date:
    """
    Parse a calendar date.

    Accepts ``date`` objects, ISO ``YYYY-MM-DD`` strings and backend
    date-time strings such as ``2025-08-05T00:00:00`` (time part dropped).

    Args:
        value: Date or string to parse
        field: Form field name reported on failure

    Returns:
        Parsed date

    Raises:
        InvalidDateError: If the value is not a valid calendar date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidDateError(f"Missing or invalid date: {value!r}", field=field)

    text = value.strip()
    if 'T' in text:
        text = text.split('T', 1)[0]
    try:
        return datetime.strptime(text, DATE_FORMAT).date()
    except ValueError:
        raise InvalidDateError(
            f"Invalid date {value!r}, expected YYYY-MM-DD", field=field
        )


def normalize_time(value: str, field: str = 'time') -> str:
    """
    Normalize a time of day to 24-hour HH:MM:SS.

    Args:
        value: Time string such as "09:00", "09:00:00" or "9:00 AM"
        field: Form field name reported on failure

    Returns:
        HH:MM:SS formatted time string

    Raises:
        InvalidTimeError: If the value cannot be parsed
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidTimeError(f"Missing time: {value!r}", field=field)

    time_formats = [
        '%H:%M:%S',      # 24-hour with seconds
        '%H:%M',         # 24-hour format
        '%I:%M %p',      # 12-hour format with AM/PM
        '%I:%M%p',       # 12-hour format without space
        '%I:%M:%S %p',   # 12-hour with seconds and AM/PM
    ]

    text = value.strip()
    for fmt in time_formats:
        try:
            return datetime.strptime(text, fmt).strftime(TIME_FORMAT)
        except ValueError:
            continue

    raise InvalidTimeError(
        f"Invalid time {value!r}, expected HH:MM:SS", field=field
    )


def expand(kind: OccurrenceKind, value, field: str = 'dates') -> DateSet:
    """
    Expand occurrence input into its canonical day list.

    Args:
        kind: Occurrence kind
        value: For SINGLE one date, for MULTIPLE an iterable of dates, for
            RANGE a ``(start, end)`` pair or a ``{'start', 'end'}`` mapping
        field: Form field name reported on failure

    Returns:
        DateSet with sorted, deduplicated days

    Raises:
        EmptyDateSetError: If no day was supplied
        InvalidRangeError: If a range ends before it starts
        InvalidDateError: If a date cannot be parsed
    """
    if kind is OccurrenceKind.SINGLE:
        return DateSet(kind, (_expand_single(value, field),))
    if kind is OccurrenceKind.MULTIPLE:
        return DateSet(kind, tuple(_expand_multiple(value, field)))
    if kind is OccurrenceKind.RANGE:
        start, end = _range_bounds(value, field)
        return DateSet(kind, tuple(expand_range(start, end, field)))
    raise SchedulingError(f"Unsupported occurrence kind: {kind!r}", field='kind')


def expand_range(start: DateLike, end: DateLike, field: str = 'dates') -> List[date]:
    """Every calendar date from start to end inclusive."""
    start = parse_date(start, field)
    end = parse_date(end, field)
    if end < start:
        raise InvalidRangeError(
            f"Range end {end.isoformat()} precedes start {start.isoformat()}",
            field=field
        )

    days = []
    current = start
    while current <= end:
        days.append(current)
        current += timedelta(days=1)
    return days


def _expand_single(value, field: str) -> date:
    if _is_blank(value):
        raise EmptyDateSetError("A single occurrence needs a date", field=field)
    if isinstance(value, (list, tuple, set, frozenset)):
        values = [item for item in value if not _is_blank(item)]
        if not values:
            raise EmptyDateSetError("A single occurrence needs a date", field=field)
        if len(set(parse_date(item, field) for item in values)) > 1:
            raise SchedulingError(
                "A single occurrence takes exactly one date", field=field
            )
        value = values[0]
    return parse_date(value, field)


def _expand_multiple(value, field: str) -> List[date]:
    if isinstance(value, (str, date)):
        value = [value]
    days = sorted({
        parse_date(item, field) for item in (value or []) if not _is_blank(item)
    })
    if not days:
        raise EmptyDateSetError("Choose at least one date", field=field)
    return days


def _range_bounds(value, field: str):
    if isinstance(value, dict):
        start, end = value.get('start'), value.get('end')
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        start, end = value
    elif _is_blank(value) or not value:
        start, end = None, None
    else:
        raise SchedulingError(
            "A range occurrence needs a start and an end date", field=field
        )
    if _is_blank(start) or _is_blank(end):
        raise EmptyDateSetError(
            "A range occurrence needs a start and an end date", field=field
        )
    return start, end


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def collapse(date_set: DateSet) -> str:
    """
    Display form of a DateSet.

    Multiple days are comma-joined, ranges are shown as "start – end" and a
    single day as that date. An empty set yields the placeholder.
    """
    return _label(date_set.kind, list(date_set.days))


def collapse_dates(kind, raw_dates: Optional[Iterable], fallback_date=None) -> str:
    """
    Display form for persisted, possibly malformed, occurrence data.

    Never raises: unparsable entries and the "no date" sentinel are dropped,
    an unknown kind is shown as a single date, and when nothing usable
    remains the fallback date or the placeholder is returned.

    Args:
        kind: OccurrenceKind or backend dateType code
        raw_dates: Persisted date values, may be None
        fallback_date: Legacy event date shown when no rows are available

    Returns:
        Display string
    """
    if not isinstance(kind, OccurrenceKind):
        try:
            kind = OccurrenceKind.from_code(kind)
        except ValueError:
            logger.debug(f"Unknown occurrence kind {kind!r}, showing as single")
            kind = OccurrenceKind.SINGLE

    days = _usable_dates(raw_dates or [])
    if not days:
        days = _usable_dates([fallback_date] if fallback_date else [])
    return _label(kind, days)


def _usable_dates(raw_dates: Iterable) -> List[date]:
    days = set()
    for raw in raw_dates:
        if isinstance(raw, str) and raw.strip().startswith(NO_DATE_SENTINEL):
            continue
        try:
            days.add(parse_date(raw))
        except InvalidDateError:
            logger.debug(f"Skipping unusable persisted date: {raw!r}")
    return sorted(days)


def _label(kind: OccurrenceKind, days: List[date]) -> str:
    if not days:
        return PLACEHOLDER
    if kind is OccurrenceKind.MULTIPLE and len(days) > 1:
        return LIST_SEPARATOR.join(day.isoformat() for day in days)
    if kind is OccurrenceKind.RANGE and len(days) > 1:
        return f"{days[0].isoformat()}{RANGE_SEPARATOR}{days[-1].isoformat()}"
    return days[0].isoformat()


def demote_to_multiple(date_set: DateSet) -> DateSet:
    """Same days, kind MULTIPLE."""
    return DateSet(OccurrenceKind.MULTIPLE, date_set.days)


def remove_day(date_set: DateSet, day: DateLike) -> DateSet:
    """
    Remove one day from an occurrence set.

    Ranges must be demoted to MULTIPLE first, since dropping a day would
    break contiguity.

    Raises:
        RangeEditError: If the set is a RANGE
        EmptyDateSetError: If the removal would leave no days
    """
    day = parse_date(day)
    if date_set.kind is OccurrenceKind.RANGE:
        raise RangeEditError(
            "Days cannot be removed from a date range; "
            "switch the location to multiple dates first",
            field='dates'
        )
    remaining = tuple(d for d in date_set.days if d != day)
    if not remaining:
        raise EmptyDateSetError(
            "An occurrence needs at least one date", field='dates'
        )
    return DateSet(date_set.kind, remaining)
