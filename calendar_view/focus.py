"""Last-hover-wins tracking of the focused event's occurrence dates."""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, FrozenSet, Iterable, Optional

logger = logging.getLogger(__name__)


class StaleFocusResultDiscarded(Exception):
    """A focus fetch resolved after a newer focus superseded it."""


@dataclass(frozen=True)
class FocusRequest:
    token: int
    event_id: str


class FocusTracker:
    """
    Holds the occurrence dates of the currently focused event.

    Each hover starts a request with a larger token. A fetch result is only
    applied when its token is still the latest one, so the last hover wins
    regardless of the order in which fetches complete.
    """

    def __init__(self):
        self._token = 0
        self._event_id: Optional[str] = None
        self._dates: FrozenSet[date] = frozenset()

    @property
    def event_id(self) -> Optional[str]:
        return self._event_id

    @property
    def dates(self) -> FrozenSet[date]:
        return self._dates

    def begin(self, event_id) -> FocusRequest:
        """Start focusing an event; supersedes any in-flight request."""
        self._token += 1
        return FocusRequest(token=self._token, event_id=event_id)

    def resolve(self, request: FocusRequest, dates: Iterable[date]) -> bool:
        """
        Apply the dates fetched for a request.

        Returns:
            True if applied, False if the request had been superseded
        """
        try:
            self._check_current(request)
        except StaleFocusResultDiscarded:
            logger.debug(
                f"Discarding focus result for event {request.event_id} "
                f"(token {request.token}, latest {self._token})"
            )
            return False

        self._event_id = request.event_id
        self._dates = frozenset(dates)
        return True

    def clear(self) -> None:
        """Drop the focus and supersede any in-flight request."""
        self._token += 1
        self._event_id = None
        self._dates = frozenset()

    def focus(self, event_id, fetch: Callable[[str], Iterable[date]]) -> bool:
        """Begin, fetch and resolve in one call."""
        request = self.begin(event_id)
        return self.resolve(request, fetch(event_id))

    def _check_current(self, request: FocusRequest) -> None:
        if request.token != self._token:
            raise StaleFocusResultDiscarded(
                f"Focus request {request.token} superseded by {self._token}"
            )
