"""Event-location store interface."""
from datetime import date
from typing import List, Optional, Protocol

from scheduling.models import LocationMetadata, PersistedOccurrence


class StoreError(Exception):
    """A store rejected or could not complete an operation."""


class EventLocationStore(Protocol):
    """Persistence of dated occurrence rows per event-location."""

    def list_occurrences(self, event_location_id: str) -> List[PersistedOccurrence]:
        """All occurrence rows of an event-location."""
        ...

    def create_occurrences(
        self,
        event_location_id: str,
        dates: List[date]
    ) -> List[PersistedOccurrence]:
        """Create one row per date and return the new rows."""
        ...

    def delete_occurrence(self, occurrence_id: str) -> bool:
        """Delete one row; True on success."""
        ...

    def update_location_metadata(self, metadata: LocationMetadata) -> None:
        """Write venue, time window and kind of an event-location."""
        ...

    def get_location_metadata(
        self,
        event_location_id: str,
        event_id: Optional[str] = None
    ) -> Optional[LocationMetadata]:
        """Stored venue, time window and kind; None when unknown."""
        ...

    def list_event_dates(self, event_id: str) -> List[date]:
        """All occurrence dates across an event's locations."""
        ...
