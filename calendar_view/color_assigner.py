"""Stable per-event color allocation for one calendar session."""
import logging
from typing import Dict, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_PALETTE = (
    '#6366f1',  # indigo
    '#f59e42',  # orange
    '#22c55e',  # green
    '#ec4899',  # pink
    '#eab308',  # yellow
    '#a21caf',  # purple
    '#ef4444',  # red
    '#14b8a6',  # teal
    '#f97316',  # orange deep
    '#06b6d4',  # cyan
    '#f43f5e',  # rose
    '#84cc16',  # lime
    '#f472b6',  # fuchsia
    '#3b82f6',  # blue
)


class ColorAssigner:
    """
    First-come-first-served palette colors keyed by event id.

    An event keeps its color for the lifetime of the instance. Colors repeat
    only once the palette has been used up. Create one instance per calendar
    session; the mapping is never shared between sessions.
    """

    def __init__(self, palette: Optional[Sequence[str]] = None):
        """
        Args:
            palette: Ordered colors to hand out (default: DEFAULT_PALETTE)

        Raises:
            ValueError: If the palette is empty
        """
        palette = tuple(palette) if palette is not None else DEFAULT_PALETTE
        if not palette:
            raise ValueError("Color palette must not be empty")
        self.palette = palette
        self._assigned: Dict[str, str] = {}
        self._order: Dict[str, int] = {}
        self._next_index = 0

    def color_for(self, event_id) -> str:
        """Color of an event, assigning the next palette color on first use."""
        color = self._assigned.get(event_id)
        if color is None:
            color = self.palette[self._next_index % len(self.palette)]
            self._assigned[event_id] = color
            self._order[event_id] = self._next_index
            self._next_index += 1
            if self._next_index == len(self.palette) + 1:
                logger.debug(
                    f"Palette of {len(self.palette)} colors exhausted, cycling"
                )
        return color

    def order_of(self, event_id) -> int:
        """
        Position of an event in assignment order, assigning it if new.

        Day cells list their events in this order, so a day renders the same
        gradient whatever order its events were supplied in.
        """
        self.color_for(event_id)
        return self._order[event_id]

    def assigned(self) -> Dict[str, str]:
        return dict(self._assigned)

    def __len__(self):
        return len(self._assigned)

    def __contains__(self, event_id):
        return event_id in self._assigned
