"""Per-day aggregation of event occurrences for calendar rendering."""
import dataclasses
import logging
import re
from collections import defaultdict
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from calendar_view.color_assigner import ColorAssigner
from calendar_view.models import CalendarEvent, DayCell, VisibleRange
from scheduling.date_set import NO_DATE_SENTINEL, parse_date
from scheduling.exceptions import InvalidDateError

logger = logging.getLogger(__name__)

# Alpha suffix applied to colors of days that are not selected (50% opacity)
UNSELECTED_ALPHA = '80'
RING_WIDTH = '2px'
HEX_COLOR = re.compile(r'#[0-9a-fA-F]{6}(?![0-9a-fA-F])')

ExclusionPredicate = Callable[[CalendarEvent], bool]


def exclude_titles(titles: Iterable[str]) -> ExclusionPredicate:
    """Predicate matching events by title, case-insensitively."""
    names = {title.strip().lower() for title in titles if title and title.strip()}
    return lambda event: (event.title or '').strip().lower() in names


def exclude_event_ids(event_ids: Iterable) -> ExclusionPredicate:
    """Predicate matching events by id."""
    ids = {str(event_id) for event_id in event_ids}
    return lambda event: str(event.event_id) in ids


def events_from_records(records: Iterable[dict]) -> List[CalendarEvent]:
    """
    Build CalendarEvents from event-domain records.

    Records use the portal's ``eventId``/``date``/``title`` keys. Records
    without a usable date (empty, unparsable or the "no date" sentinel) are
    skipped.

    Args:
        records: Dictionaries with eventId, date and title

    Returns:
        List of CalendarEvent objects in input order
    """
    events = []
    for record in records:
        raw_date = record.get('date')
        if not raw_date or str(raw_date).startswith(NO_DATE_SENTINEL):
            logger.debug(f"Skipping event without a date: {record.get('title')!r}")
            continue
        try:
            day = parse_date(raw_date)
        except InvalidDateError:
            logger.debug(
                f"Skipping event {record.get('title')!r} with invalid date {raw_date!r}"
            )
            continue
        events.append(CalendarEvent(
            event_id=str(record.get('eventId')),
            date=day,
            title=record.get('title') or ''
        ))
    return events


class CalendarAggregator:
    """
    Builds day cells for a visible range from a flat list of occurrences.

    Colors come from the session's ColorAssigner, so an event keeps its
    color across re-renders and across views sharing the assigner.
    """

    def __init__(
        self,
        assigner: ColorAssigner,
        exclude: Optional[ExclusionPredicate] = None
    ):
        """
        Args:
            assigner: Color assigner of the current calendar session
            exclude: Events for which this returns True are left out of day
                cells but still listed by list_events
        """
        self.assigner = assigner
        self.exclude = exclude

    def aggregate(
        self,
        events: List[CalendarEvent],
        visible_range: VisibleRange
    ) -> Dict[str, DayCell]:
        """
        Group occurrences by day and assign colors.

        Within one day events are listed in color assignment order, so a day
        renders identically across re-renders of one session. An event
        occurring twice on the same day counts once.

        Args:
            events: Occurrences across any number of events
            visible_range: Days to build cells for

        Returns:
            Mapping of YYYY-MM-DD to DayCell, one entry per visible day
        """
        buckets: Dict[date, List[CalendarEvent]] = defaultdict(list)
        excluded = 0
        for event in events:
            if event.date not in visible_range:
                continue
            if self._is_excluded(event):
                excluded += 1
                continue
            buckets[event.date].append(event)

        cells = {}
        for day in visible_range.days():
            first_seen: Dict[str, CalendarEvent] = {}
            for event in buckets.get(day, []):
                if event.event_id not in first_seen:
                    first_seen[event.event_id] = event
                    self.assigner.color_for(event.event_id)

            day_events = sorted(
                first_seen.values(),
                key=lambda event: self.assigner.order_of(event.event_id)
            )
            cells[day.isoformat()] = DayCell(
                date=day,
                colors=tuple(self.assigner.color_for(e.event_id) for e in day_events),
                event_ids=tuple(e.event_id for e in day_events),
                titles=tuple(e.title for e in day_events)
            )

        logger.info(
            f"Aggregated {sum(len(b) for b in buckets.values())} occurrences "
            f"into {len(cells)} days ({excluded} excluded)"
        )
        return cells

    def highlight(
        self,
        cells: Dict[str, DayCell],
        focused_dates: Iterable[date]
    ) -> Dict[str, DayCell]:
        """
        Mark the days belonging to a focused event.

        Colors are not recomputed; only the highlighted flag changes.

        Args:
            cells: Result of aggregate
            focused_dates: Every occurrence date of the focused event

        Returns:
            New mapping with highlighted set on matching days
        """
        focused = set(focused_dates)
        return {
            key: dataclasses.replace(cell, highlighted=cell.date in focused)
            for key, cell in cells.items()
        }

    def list_events(
        self,
        events: List[CalendarEvent],
        visible_range: VisibleRange
    ) -> List[Tuple[CalendarEvent, Optional[str]]]:
        """
        Every occurrence in range, excluded ones included, for list views.

        Returns:
            (event, color) pairs sorted by date then title; excluded events
            have no color
        """
        in_range = sorted(
            (event for event in events if event.date in visible_range),
            key=lambda event: (event.date, event.title)
        )
        return [
            (event, None if self._is_excluded(event)
             else self.assigner.color_for(event.event_id))
            for event in in_range
        ]

    def _is_excluded(self, event: CalendarEvent) -> bool:
        return self.exclude is not None and self.exclude(event)


def render_day_style(cell: DayCell, selected: bool = False) -> dict:
    """
    Style attributes for one day cell.

    No colors gives no background, one color a solid fill and several a
    left-to-right gradient in assignment order. Unselected days are drawn
    semi-transparent. Highlighted days get a ring in their first color.

    Args:
        cell: Day cell to render
        selected: Whether the user selected this day

    Returns:
        Dictionary with background, boxShadow and zIndex (None when unset)
    """
    background = None
    if len(cell.colors) == 1:
        background = cell.colors[0]
    elif len(cell.colors) > 1:
        background = f"linear-gradient(90deg, {', '.join(cell.colors)})"

    if background and not selected:
        background = HEX_COLOR.sub(
            lambda match: match.group(0) + UNSELECTED_ALPHA, background
        )

    box_shadow = None
    z_index = None
    if cell.highlighted and cell.colors:
        box_shadow = f"0 0 0 {RING_WIDTH} {cell.colors[0]}"
        z_index = 2

    return {
        'background': background,
        'boxShadow': box_shadow,
        'zIndex': z_index
    }
