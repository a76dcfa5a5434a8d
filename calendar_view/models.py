"""Data models for calendar aggregation."""
import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, Tuple


@dataclass(frozen=True)
class CalendarEvent:
    """One occurrence of an event, as supplied by the event domain."""
    event_id: str
    date: date
    title: str


@dataclass(frozen=True)
class DayCell:
    """Aggregated render attributes of one calendar day."""
    date: date
    colors: Tuple[str, ...] = ()
    highlighted: bool = False
    event_ids: Tuple[str, ...] = ()
    titles: Tuple[str, ...] = ()

    def __post_init__(self):
        for name in ('colors', 'event_ids', 'titles'):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    @property
    def key(self) -> str:
        return self.date.isoformat()


@dataclass(frozen=True)
class VisibleRange:
    """Inclusive span of days shown by a calendar view."""
    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(
                f"Visible range end {self.end} precedes start {self.start}"
            )

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    @classmethod
    def for_month(cls, year: int, month: int) -> 'VisibleRange':
        """
        Month grid range padded to whole Sunday-first weeks.

        Args:
            year: Calendar year
            month: Month number (1-12)

        Returns:
            VisibleRange from the Sunday on or before the 1st to the
            Saturday on or after the last day of the month
        """
        first = date(year, month, 1)
        last = date(year, month, calendar.monthrange(year, month)[1])
        start = first - timedelta(days=(first.weekday() + 1) % 7)
        end = last + timedelta(days=(5 - last.weekday()) % 7)
        return cls(start, end)
