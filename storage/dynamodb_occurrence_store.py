"""DynamoDB-backed event-location store."""
import dataclasses
import logging
import uuid
from datetime import date
from typing import List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from scheduling.date_set import parse_date
from scheduling.exceptions import InvalidDateError
from scheduling.models import LocationMetadata, OccurrenceKind, PersistedOccurrence

logger = logging.getLogger(__name__)


class DynamoDBOccurrenceStore:
    """
    EventLocationStore on a single DynamoDB table.

    Items are keyed by ``occurrence_id``. Occurrence items carry
    ``event_location_id`` and ``occurrence_date`` and are listed through the
    ``location-index`` GSI. Location metadata is stored as one item per
    event-location under ``location#<id>``; it has no ``occurrence_date`` and
    so stays out of the index.
    """

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    LOCATION_INDEX = 'location-index'
    LOCATION_PREFIX = 'location#'

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBOccurrenceStore for table: {table_name}")

    def list_occurrences(self, event_location_id: str) -> List[PersistedOccurrence]:
        """
        Retrieve all occurrences of an event-location, ordered by date.

        Args:
            event_location_id: Event-location identifier

        Returns:
            List of PersistedOccurrence objects
        """
        try:
            query = {
                'IndexName': self.LOCATION_INDEX,
                'KeyConditionExpression': Key('event_location_id').eq(str(event_location_id))
            }
            response = self.table.query(**query)
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'], **query
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error querying occurrences of {event_location_id}: {e}")
            raise

        occurrences = []
        for item in items:
            occurrence = self._item_to_occurrence(item)
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
        Write one occurrence item per date in batches of 25.

        A failed batch is logged and skipped; only the occurrences that were
        written are returned.

        Args:
            event_location_id: Event-location identifier
            dates: Dates to create

        Returns:
            Newly created PersistedOccurrence objects
        """
        if not dates:
            return []

        logger.info(
            f"Writing {len(dates)} occurrences for event-location {event_location_id}"
        )
        created = []

        # Process in batches of 25 (DynamoDB limit)
        for i in range(0, len(dates), self.BATCH_SIZE):
            batch = [
                PersistedOccurrence(
                    occurrence_id=uuid.uuid4().hex,
                    event_location_id=str(event_location_id),
                    date=day
                )
                for day in dates[i:i + self.BATCH_SIZE]
            ]

            try:
                with self.table.batch_writer() as writer:
                    for occurrence in batch:
                        writer.put_item(Item=self._occurrence_to_item(occurrence))
                created.extend(batch)

            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                # Continue processing remaining batches
                continue

        logger.info(f"Successfully wrote {len(created)} occurrences")
        return created

    def delete_occurrence(self, occurrence_id: str) -> bool:
        """
        Delete one occurrence item.

        Args:
            occurrence_id: Occurrence identifier

        Returns:
            True if an item was deleted, False if none existed
        """
        try:
            response = self.table.delete_item(
                Key={'occurrence_id': str(occurrence_id)},
                ReturnValues='ALL_OLD'
            )
        except ClientError as e:
            logger.error(f"Error deleting occurrence {occurrence_id}: {e}")
            raise

        if 'Attributes' not in response:
            logger.warning(f"Occurrence {occurrence_id} not found")
            return False
        return True

    def update_location_metadata(self, metadata: LocationMetadata) -> None:
        """
        Store venue, time window and kind of an event-location.

        An event id already stored for the location is kept when the new
        metadata does not carry one.

        Args:
            metadata: LocationMetadata to write
        """
        if metadata.event_id is None:
            existing = self.get_location_metadata(metadata.event_location_id)
            if existing:
                metadata = dataclasses.replace(metadata, event_id=existing.event_id)

        item = {
            'occurrence_id': self.LOCATION_PREFIX + str(metadata.event_location_id),
            'record_type': 'location',
            'location_id': str(metadata.event_location_id),
            'venue': metadata.venue,
            'start_time': metadata.start_time,
            'end_time': metadata.end_time,
            'kind': metadata.kind.code
        }

        # Add optional fields if present
        if metadata.event_date:
            item['event_date'] = metadata.event_date.isoformat()
        if metadata.event_id:
            item['event_id'] = str(metadata.event_id)

        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            logger.error(
                f"Error updating event-location {metadata.event_location_id}: {e}"
            )
            raise
        logger.info(
            f"Updated event-location {metadata.event_location_id} "
            f"(kind={metadata.kind.name})"
        )

    def get_location_metadata(
        self,
        event_location_id: str,
        event_id: Optional[str] = None
    ) -> Optional[LocationMetadata]:
        """
        Read the metadata item of an event-location.

        Args:
            event_location_id: Event-location identifier
            event_id: Unused; items are addressed by location alone

        Returns:
            LocationMetadata or None if the location has none stored
        """
        try:
            response = self.table.get_item(
                Key={'occurrence_id': self.LOCATION_PREFIX + str(event_location_id)}
            )
        except ClientError as e:
            logger.error(f"Error reading event-location {event_location_id}: {e}")
            raise

        item = response.get('Item')
        if not item:
            return None
        try:
            return LocationMetadata(
                event_location_id=item['location_id'],
                venue=item['venue'],
                start_time=item['start_time'],
                end_time=item['end_time'],
                kind=OccurrenceKind.from_code(item['kind']),
                event_date=parse_date(item['event_date']) if item.get('event_date') else None,
                event_id=item.get('event_id')
            )
        except (KeyError, ValueError, InvalidDateError) as e:
            logger.warning(f"Failed to convert item to LocationMetadata: {e}")
            return None

    def list_event_dates(self, event_id: str) -> List[date]:
        """
        All occurrence dates across an event's locations.

        The event's locations are found by scanning metadata items; each
        location's occurrences are then read through the location index, so
        rows created before the location's metadata was written are included.

        Args:
            event_id: Event identifier

        Returns:
            Sorted list of distinct dates
        """
        scan = {
            'FilterExpression': (
                Attr('record_type').eq('location') &
                Attr('event_id').eq(str(event_id))
            )
        }
        try:
            response = self.table.scan(**scan)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'], **scan
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error scanning locations of event {event_id}: {e}")
            raise

        dates = set()
        for item in items:
            location_id = item.get('location_id')
            if location_id:
                dates.update(o.date for o in self.list_occurrences(location_id))

        logger.info(
            f"Event {event_id} occurs on {len(dates)} dates across "
            f"{len(items)} locations"
        )
        return sorted(dates)

    def _item_to_occurrence(self, item: dict) -> Optional[PersistedOccurrence]:
        """
        Convert DynamoDB item to PersistedOccurrence object.

        Returns:
            PersistedOccurrence object or None if conversion fails
        """
        try:
            return PersistedOccurrence(
                occurrence_id=item['occurrence_id'],
                event_location_id=item['event_location_id'],
                date=parse_date(item['occurrence_date'])
            )
        except (KeyError, InvalidDateError) as e:
            logger.warning(f"Failed to convert item to PersistedOccurrence: {e}")
            return None

    def _occurrence_to_item(self, occurrence: PersistedOccurrence) -> dict:
        return {
            'occurrence_id': occurrence.occurrence_id,
            'record_type': 'occurrence',
            'event_location_id': occurrence.event_location_id,
            'occurrence_date': occurrence.date.isoformat()
        }
