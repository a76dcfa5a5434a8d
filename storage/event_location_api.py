"""REST client for the portal's event-location date endpoints."""
import logging
import time
from datetime import date
from typing import Any, List, Optional

import requests

from scheduling.date_set import NO_DATE_SENTINEL, parse_date
from scheduling.exceptions import InvalidDateError
from scheduling.models import LocationMetadata, OccurrenceKind, PersistedOccurrence
from storage.base import StoreError

logger = logging.getLogger(__name__)


class EventLocationApiClient:
    """EventLocationStore backed by the portal backend's HTTP API."""

    LIST_DATES = 'EventLocationDate/GetEventLocationsDateByEventLocId'
    CREATE_DATES = 'EventLocationDate/CreateEventLocationDate'
    DELETE_DATE = 'EventLocationDate/DeleteEventLocationDate'
    UPDATE_LOCATION = 'EventLocation/UpdateEventLocation'
    LOCATIONS_BY_EVENT = 'EventLocation/GetEventLocationsByEventId'

    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(
        self,
        base_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: int = 10
    ):
        """
        Initialize the API client.

        Args:
            base_url: Backend base URL, e.g. https://host/SmileAPI/
            username: Basic auth user name
            password: Basic auth password
            timeout: HTTP request timeout in seconds (default: 10)
        """
        self.base_url = base_url.rstrip('/') + '/'
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})
        if username:
            self.session.auth = (username, password or '')
        logger.info(f"Initialized EventLocationApiClient for {self.base_url}")

    def list_occurrences(self, event_location_id: str) -> List[PersistedOccurrence]:
        """
        Retrieve all occurrence rows of an event-location.

        Args:
            event_location_id: Event-location identifier

        Returns:
            List of PersistedOccurrence objects; malformed rows are skipped
        """
        rows = self._rows(self._get(self.LIST_DATES, {'eventLocId': event_location_id}))
        occurrences = []
        for row in rows:
            occurrence = self._row_to_occurrence(row, event_location_id)
            if occurrence:
                occurrences.append(occurrence)

        logger.info(
            f"Retrieved {len(occurrences)} occurrences for event-location "
            f"{event_location_id}"
        )
        return occurrences

    def create_occurrences(
        self,
        event_location_id: str,
        dates: List[date]
    ) -> List[PersistedOccurrence]:
        """
        Create one row per date in a single request.

        Writes are not retried. When the response does not echo the created
        rows, the event-location is listed again and the rows for the
        requested dates are returned.

        Args:
            event_location_id: Event-location identifier
            dates: Dates to create

        Returns:
            Newly created PersistedOccurrence objects
        """
        if not dates:
            return []

        logger.info(
            f"Creating {len(dates)} occurrences for event-location {event_location_id}"
        )
        response = self._post(self.CREATE_DATES, {
            'eventLocationId': event_location_id,
            'createEventLocationDates': [{'date': day.isoformat()} for day in dates]
        })

        try:
            rows = self._rows(self._json(response))
        except StoreError:
            rows = []

        requested = set(dates)
        created = [
            occurrence for occurrence in (
                self._row_to_occurrence(row, event_location_id) for row in rows
            )
            if occurrence and occurrence.date in requested
        ]
        if not created:
            created = [
                occurrence for occurrence in self.list_occurrences(event_location_id)
                if occurrence.date in requested
            ]

        logger.info(f"Successfully created {len(created)} occurrences")
        return created

    def delete_occurrence(self, occurrence_id: str) -> bool:
        """
        Delete one occurrence row.

        Args:
            occurrence_id: Row identifier

        Returns:
            True if deleted, False if the backend reports it was not
        """
        try:
            response = self._post(self.DELETE_DATE, {'eventLocationDateId': occurrence_id})
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                logger.warning(f"Occurrence {occurrence_id} not found")
                return False
            raise

        if self._json(response) is False:
            logger.warning(f"Backend rejected deletion of occurrence {occurrence_id}")
            return False
        logger.info(f"Deleted occurrence {occurrence_id}")
        return True

    def update_location_metadata(self, metadata: LocationMetadata) -> None:
        """
        Write venue, time window and occurrence kind of an event-location.

        Args:
            metadata: LocationMetadata to write
        """
        payload = {
            'eventLocationId': metadata.event_location_id,
            'venue': metadata.venue,
            'startTime': metadata.start_time,
            'endTime': metadata.end_time,
            'dateType': metadata.kind.code
        }
        if metadata.event_date:
            payload['eventDate'] = metadata.event_date.isoformat()

        self._post(self.UPDATE_LOCATION, payload)
        logger.info(
            f"Updated event-location {metadata.event_location_id} "
            f"(dateType={metadata.kind.code})"
        )

    def list_event_dates(self, event_id: str) -> List[date]:
        """
        All occurrence dates across an event's locations.

        Locations without occurrence rows contribute their legacy single
        event date, when one is set.

        Args:
            event_id: Event identifier

        Returns:
            Sorted list of distinct dates
        """
        locations = self._rows(self._get(self.LOCATIONS_BY_EVENT, {'eventId': event_id}))
        dates = set()
        for location in locations:
            location_id = location.get('eventLocationId')
            if location_id is None:
                continue
            occurrences = self.list_occurrences(location_id)
            if occurrences:
                dates.update(occurrence.date for occurrence in occurrences)
                continue
            legacy = self._legacy_date(location)
            if legacy:
                dates.add(legacy)

        logger.info(f"Event {event_id} occurs on {len(dates)} dates")
        return sorted(dates)

    def get_location_metadata(
        self,
        event_location_id: str,
        event_id: Optional[str] = None
    ) -> Optional[LocationMetadata]:
        """
        Stored venue, time window and kind of an event-location.

        The backend lists locations per event only, so the event id is
        required to find the location.

        Args:
            event_location_id: Event-location identifier
            event_id: Event the location belongs to

        Returns:
            LocationMetadata, or None if the event id is missing or the
            location is not found
        """
        if event_id is None:
            logger.debug(
                f"No event id for event-location {event_location_id}, "
                f"stored metadata unknown"
            )
            return None

        locations = self._rows(self._get(self.LOCATIONS_BY_EVENT, {'eventId': event_id}))
        for location in locations:
            if str(location.get('eventLocationId')) != str(event_location_id):
                continue
            try:
                kind = OccurrenceKind.from_code(location.get('dateType'))
            except ValueError as e:
                logger.warning(f"Event-location {event_location_id}: {e}")
                return None
            return LocationMetadata(
                event_location_id=str(event_location_id),
                venue=location.get('venue') or '',
                start_time=location.get('startTime') or '',
                end_time=location.get('endTime') or '',
                kind=kind,
                event_date=self._legacy_date(location),
                event_id=str(event_id)
            )

        logger.warning(
            f"Event-location {event_location_id} not found for event {event_id}"
        )
        return None

    @staticmethod
    def _legacy_date(location: dict) -> Optional[date]:
        """The single eventDate of a location, ignoring the "no date" sentinel."""
        legacy = location.get('eventDate')
        if not legacy or str(legacy).startswith(NO_DATE_SENTINEL):
            return None
        try:
            return parse_date(legacy)
        except InvalidDateError:
            logger.warning(
                f"Event-location {location.get('eventLocationId')} has invalid "
                f"date {legacy!r}"
            )
            return None

    def _get(self, path: str, params: dict) -> Any:
        """
        GET a JSON resource with retry logic.

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        url = self.base_url + path
        for attempt in range(self.MAX_RETRIES):
            try:
                logger.debug(f"GET {path} (attempt {attempt + 1}/{self.MAX_RETRIES})")
                response = self.session.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                return self._json(response)

            except requests.RequestException as e:
                if attempt < self.MAX_RETRIES - 1:
                    # Calculate exponential backoff delay
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} retry attempts failed. Last error: {e}"
                    )
                    raise

    def _post(self, path: str, payload: dict) -> requests.Response:
        try:
            response = self.session.post(
                self.base_url + path, json=payload, timeout=self.timeout
            )
            response.raise_for_status()
            return response
        except requests.RequestException as e:
            logger.error(f"POST {path} failed: {e}")
            raise

    @staticmethod
    def _json(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _rows(data: Any) -> List[dict]:
        if isinstance(data, dict):
            data = data.get('data', data.get('items'))
        if data is None:
            return []
        if not isinstance(data, list):
            raise StoreError(f"Unexpected response payload: {type(data).__name__}")
        return [row for row in data if isinstance(row, dict)]

    @staticmethod
    def _row_to_occurrence(row: dict, event_location_id: str) -> Optional[PersistedOccurrence]:
        """
        Convert a backend row to a PersistedOccurrence.

        Returns:
            PersistedOccurrence or None if the row is incomplete
        """
        occurrence_id = row.get('eventLocationDateId', row.get('id'))
        raw_date = row.get('date', row.get('eventDate'))
        if occurrence_id is None or not raw_date:
            logger.warning(f"Skipping incomplete occurrence row: {row}")
            return None
        try:
            day = parse_date(raw_date)
        except InvalidDateError as e:
            logger.warning(f"Skipping occurrence row {occurrence_id}: {e}")
            return None
        return PersistedOccurrence(
            occurrence_id=str(occurrence_id),
            event_location_id=str(row.get('eventLocationId', event_location_id)),
            date=day
        )
