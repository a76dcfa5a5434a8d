"""AWS Lambda handler for event-location scheduling and the activity calendar."""
import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from calendar_view.aggregator import (
    CalendarAggregator,
    events_from_records,
    exclude_titles,
    render_day_style,
)
from calendar_view.color_assigner import ColorAssigner
from calendar_view.focus import FocusTracker
from calendar_view.models import VisibleRange
from scheduling.batch_executor import ReconciliationExecutor
from scheduling.date_set import collapse, expand, normalize_time, parse_date
from scheduling.exceptions import (
    KindChangeNotConfirmedError,
    ReconciliationPartialFailureError,
    SchedulingError,
)
from scheduling.models import LocationMetadata, OccurrenceKind, PersistedOccurrence
from scheduling.reconciler import OccurrenceReconciler
from storage.base import EventLocationStore
from storage.dynamodb_occurrence_store import DynamoDBOccurrenceStore
from storage.event_location_api import EventLocationApiClient

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including ``extra`` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith('_'):
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class Config:
    """Runtime configuration read from environment variables."""
    log_level: str = 'INFO'
    store_backend: str = 'api'
    api_base_url: str = ''
    api_username: Optional[str] = None
    api_password: Optional[str] = None
    timeout_seconds: int = 10
    table_name: str = 'event-location-occurrences'
    excluded_titles: List[str] = field(default_factory=list)
    palette: Optional[List[str]] = None


def _split_list(value: Optional[str]) -> List[str]:
    return [item.strip() for item in (value or '').split(',') if item.strip()]


def load_config() -> Config:
    """Read configuration from environment variables."""
    return Config(
        log_level=os.environ.get('LOG_LEVEL', 'INFO'),
        store_backend=os.environ.get('STORE_BACKEND', 'api').lower(),
        api_base_url=os.environ.get('API_BASE_URL', ''),
        api_username=os.environ.get('API_USERNAME'),
        api_password=os.environ.get('API_PASSWORD'),
        timeout_seconds=int(os.environ.get('TIMEOUT_SECONDS', '10')),
        table_name=os.environ.get('TABLE_NAME', 'event-location-occurrences'),
        excluded_titles=_split_list(os.environ.get('CALENDAR_EXCLUDED_TITLES')),
        palette=_split_list(os.environ.get('CALENDAR_PALETTE')) or None
    )


def build_store(config: Config) -> EventLocationStore:
    """
    Instantiate the configured event-location store.

    Raises:
        ValueError: If the backend is unknown or the API URL is missing
    """
    if config.store_backend == 'dynamodb':
        return DynamoDBOccurrenceStore(table_name=config.table_name)
    if config.store_backend == 'api':
        if not config.api_base_url:
            raise ValueError("API_BASE_URL must be set for the api store backend")
        return EventLocationApiClient(
            base_url=config.api_base_url,
            username=config.api_username,
            password=config.api_password,
            timeout=config.timeout_seconds
        )
    raise ValueError(f"Unknown STORE_BACKEND: {config.store_backend}")


def _response(status_code: int, body: Dict[str, Any], start_time: float) -> Dict[str, Any]:
    body['duration_seconds'] = round(time.time() - start_time, 2)
    return {'statusCode': status_code, 'body': json.dumps(body)}


def _parse_payload(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Accept direct invocations and API Gateway proxy events.

    Raises:
        SchedulingError: If the body is not a JSON object
    """
    body = event.get('body') if isinstance(event, dict) else None
    if body is None:
        return event or {}
    if isinstance(body, str):
        if not body.strip():
            return {}
        try:
            body = json.loads(body)
        except json.JSONDecodeError as e:
            raise SchedulingError(f"Request body is not valid JSON: {e}", field='body')
    if not isinstance(body, dict):
        raise SchedulingError("Request body must be a JSON object", field='body')
    return body


def _invalid_input(message: str, error: SchedulingError, start_time: float) -> Dict[str, Any]:
    logging.getLogger(__name__).warning(
        f"{message}: {error.message}",
        extra={'field': error.field, 'error_type': type(error).__name__}
    )
    return _response(400, {
        'message': message,
        'field': error.field,
        'error': error.message,
        'error_type': type(error).__name__
    }, start_time)


def _required(payload: Dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise SchedulingError(f"{key} is required", field=key)
    return value


def _kind(value: Optional[str], key: str) -> OccurrenceKind:
    try:
        return OccurrenceKind.from_code(value)
    except ValueError as e:
        raise SchedulingError(str(e), field=key)


def _occurrence_input(kind: OccurrenceKind, payload: Dict[str, Any]):
    if kind is OccurrenceKind.SINGLE:
        return payload.get('date') or payload.get('dates')
    if kind is OccurrenceKind.MULTIPLE:
        return payload.get('dates')
    return (payload.get('start'), payload.get('end'))


def _previous_kind(
    requested: Optional[OccurrenceKind],
    stored: Optional[LocationMetadata],
    kind: OccurrenceKind,
    persisted: List[PersistedOccurrence]
) -> OccurrenceKind:
    """
    Kind the event-location had before this request.

    An explicit previousKind wins over the stored kind. A location with rows
    but no known kind is rejected, since a kind change could not be detected.
    """
    if requested is not None:
        return requested
    if stored is not None:
        return stored.kind
    if persisted:
        raise SchedulingError(
            "previousKind is required when the stored date type is unknown",
            field='previousKind'
        )
    return kind


def _with_fallback(payload: Dict[str, Any], key: str, stored_value: Optional[str]) -> Any:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        value = stored_value
    return _required({key: value}, key)


def _location_metadata(
    payload: Dict[str, Any],
    event_location_id: str,
    kind: OccurrenceKind,
    kind_changed: bool,
    desired,
    stored: Optional[LocationMetadata] = None
) -> Optional[LocationMetadata]:
    """
    Metadata to write, or None when the request carries none and kind is unchanged.

    Venue and times missing from the request are taken from the stored
    metadata, so a kind change alone still writes the new kind.
    """
    keys = ('venue', 'startTime', 'endTime')
    if not kind_changed and not any(payload.get(key) for key in keys):
        return None

    venue = _with_fallback(payload, 'venue', stored.venue if stored else None)
    start = _with_fallback(payload, 'startTime', stored.start_time if stored else None)
    end = _with_fallback(payload, 'endTime', stored.end_time if stored else None)
    return LocationMetadata(
        event_location_id=event_location_id,
        venue=str(venue).strip(),
        start_time=normalize_time(start, field='startTime'),
        end_time=normalize_time(end, field='endTime'),
        kind=kind,
        event_date=desired.start,
        event_id=payload.get('eventId') or (stored.event_id if stored else None)
    )


def _batch_summary(result) -> Dict[str, Any]:
    return {
        'created': [occurrence.date.isoformat() for occurrence in result.created],
        'deleted': result.deleted,
        'kind_written': result.kind_written,
        'failures': [
            {'operation': f.operation, 'target': f.target, 'error': f.error}
            for f in result.failures
        ]
    }


def handle_reconcile(payload: Dict[str, Any], config: Config, start_time: float) -> Dict[str, Any]:
    """
    Reconcile the stored dates of one event-location with the submitted ones.

    Args:
        payload: Request body (eventLocationId, kind, dates/date/start+end,
            previousKind, confirmKindChange, venue, startTime, endTime, eventId)
        config: Runtime configuration
        start_time: Invocation start timestamp

    Returns:
        Lambda response dict
    """
    logger = logging.getLogger(__name__)
    reconciler = OccurrenceReconciler()

    try:
        event_location_id = str(_required(payload, 'eventLocationId'))
        kind = _kind(payload.get('kind'), 'kind')
        requested_previous = (
            _kind(payload.get('previousKind'), 'previousKind')
            if 'previousKind' in payload else None
        )
        desired = expand(kind, _occurrence_input(kind, payload))
    except SchedulingError as e:
        return _invalid_input('Invalid occurrence input', e, start_time)

    try:
        store = build_store(config)
        persisted = store.list_occurrences(event_location_id)
        stored = store.get_location_metadata(
            event_location_id, event_id=payload.get('eventId')
        )
    except Exception as e:
        logger.error(
            f"Failed to load persisted dates: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {
            'message': 'Failed to load persisted dates',
            'error': str(e),
            'error_type': type(e).__name__
        }, start_time)

    try:
        previous_kind = _previous_kind(requested_previous, stored, kind, persisted)
        metadata = _location_metadata(
            payload, event_location_id, kind, previous_kind is not kind, desired, stored
        )
    except SchedulingError as e:
        return _invalid_input('Invalid occurrence input', e, start_time)

    kind_plan = reconciler.plan_kind_change(previous_kind, kind, persisted)
    try:
        plan = reconciler.commit_kind_change(
            kind_plan, desired, persisted,
            confirmed=bool(payload.get('confirmKindChange'))
        )
    except KindChangeNotConfirmedError as e:
        return _response(409, {
            'message': e.message,
            'field': e.field,
            'dates_to_delete': len(kind_plan.stale_occurrence_ids),
            'requires_confirmation': True
        }, start_time)

    executor = ReconciliationExecutor(store)
    try:
        result = executor.apply(event_location_id, plan, metadata=metadata)
    except ReconciliationPartialFailureError as e:
        logger.error(
            f"Reconciliation partially failed for {event_location_id}",
            extra={'failed_operations': len(e.result.failures)}
        )
        return _response(207, {
            'message': 'Some date changes could not be saved; reload and retry',
            'error': e.message,
            'statistics': _batch_summary(e.result)
        }, start_time)

    logger.info(
        f"Reconciled event-location {event_location_id}",
        extra={
            'events_created': len(result.created),
            'events_deleted': len(result.deleted),
            'kind': kind.name
        }
    )
    return _response(200, {
        'message': 'Dates saved successfully',
        'event_location_id': event_location_id,
        'kind': kind.code,
        'display': collapse(desired),
        'statistics': _batch_summary(result)
    }, start_time)


def handle_calendar(payload: Dict[str, Any], config: Config, start_time: float) -> Dict[str, Any]:
    """
    Build the day cells of one month of the activity calendar.

    Args:
        payload: Request body (year, month, events, focusEventId, selectedDate)
        config: Runtime configuration
        start_time: Invocation start timestamp

    Returns:
        Lambda response dict
    """
    logger = logging.getLogger(__name__)

    try:
        year = int(_required(payload, 'year'))
        month = int(_required(payload, 'month'))
        visible_range = VisibleRange.for_month(year, month)
        selected = (
            parse_date(payload['selectedDate'], field='selectedDate')
            if payload.get('selectedDate') else None
        )
    except (SchedulingError, ValueError, TypeError) as e:
        field_name = getattr(e, 'field', None) or 'month'
        return _response(400, {
            'message': 'Invalid calendar request',
            'field': field_name,
            'error': str(e),
            'error_type': type(e).__name__
        }, start_time)

    exclude = exclude_titles(config.excluded_titles) if config.excluded_titles else None
    aggregator = CalendarAggregator(ColorAssigner(config.palette), exclude=exclude)
    events = events_from_records(payload.get('events') or [])
    cells = aggregator.aggregate(events, visible_range)

    focus_event_id = payload.get('focusEventId')
    if focus_event_id is not None:
        tracker = FocusTracker()
        try:
            tracker.focus(str(focus_event_id), build_store(config).list_event_dates)
            cells = aggregator.highlight(cells, tracker.dates)
        except Exception as e:
            # Calendar still renders without the highlight ring
            logger.error(
                f"Failed to fetch dates of focused event {focus_event_id}: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )

    days = [
        {
            'date': key,
            'colors': cell.colors,
            'highlighted': cell.highlighted,
            'event_ids': cell.event_ids,
            'titles': cell.titles,
            'style': render_day_style(cell, selected=cell.date == selected)
        }
        for key, cell in cells.items()
    ]
    listed = [
        {
            'event_id': event.event_id,
            'date': event.date.isoformat(),
            'title': event.title,
            'color': color
        }
        for event, color in aggregator.list_events(events, visible_range)
    ]

    return _response(200, {
        'message': 'Calendar built successfully',
        'range': {
            'start': visible_range.start.isoformat(),
            'end': visible_range.end.isoformat()
        },
        'days': days,
        'events': listed
    }, start_time)


HANDLERS = {
    'reconcile': handle_reconcile,
    'calendar': handle_calendar,
}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function.

    Args:
        event: Direct invocation payload or API Gateway proxy event with an
            ``action`` of "reconcile" or "calendar"
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    config = load_config()
    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    try:
        try:
            payload = _parse_payload(event)
        except SchedulingError as e:
            return _invalid_input('Invalid request', e, start_time)

        action = payload.get('action')
        logger.info(
            "Lambda execution started",
            extra={'action': action, 'store_backend': config.store_backend}
        )

        handler = HANDLERS.get(action)
        if handler is None:
            return _response(400, {
                'message': f"Unknown action: {action!r}",
                'field': 'action'
            }, start_time)

        return handler(payload, config, start_time)

    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {
            'message': 'Request failed',
            'error': str(e),
            'error_type': type(e).__name__
        }, start_time)
