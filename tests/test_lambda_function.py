"""Integration tests for Lambda handler."""
import json
import logging
import os
from datetime import date
from unittest.mock import Mock, patch

import pytest

from lambda_function import (
    JsonFormatter,
    build_store,
    lambda_handler,
    load_config,
    setup_logging,
)
from scheduling.models import LocationMetadata, OccurrenceKind, PersistedOccurrence
from storage.dynamodb_occurrence_store import DynamoDBOccurrenceStore


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'LOG_LEVEL': 'INFO',
        'STORE_BACKEND': 'api',
        'API_BASE_URL': 'https://api.example.com/SmileAPI',
        'API_USERNAME': 'portal',
        'API_PASSWORD': 'secret',
        'TIMEOUT_SECONDS': '5'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.memory_limit_in_mb = 256
    context.invoked_function_arn = 'arn:aws:lambda:us-east-1:123456789012:function:test-function'
    context.aws_request_id = 'test-request-id'
    return context


def occurrence(occurrence_id, day):
    return PersistedOccurrence(
        occurrence_id=occurrence_id,
        event_location_id='7',
        date=date.fromisoformat(day)
    )


@pytest.fixture
def mock_store():
    """Multiple-days location holding 2025-08-05 and 2025-08-06; creates echo their dates."""
    store = Mock()
    store.list_occurrences.return_value = [
        occurrence('11', '2025-08-05'),
        occurrence('12', '2025-08-06')
    ]
    store.get_location_metadata.return_value = LocationMetadata(
        event_location_id='7',
        venue='Central Park, Mumbai',
        start_time='09:00:00',
        end_time='17:00:00',
        kind=OccurrenceKind.MULTIPLE,
        event_id='3'
    )
    store.create_occurrences.side_effect = lambda location_id, days: [
        PersistedOccurrence(f'new-{day.isoformat()}', location_id, day) for day in days
    ]
    store.delete_occurrence.return_value = True
    return store


def body_of(response):
    return json.loads(response['body'])


class TestReconcileAction:
    """Test cases for the reconcile action."""

    @patch('lambda_function.EventLocationApiClient')
    def test_successful_reconcile(self, mock_client_class, mock_env, mock_context, mock_store):
        mock_client_class.return_value = mock_store

        response = lambda_handler({
            'action': 'reconcile',
            'eventLocationId': 7,
            'kind': 'M',
            'dates': ['2025-08-07', '2025-08-06']
        }, mock_context)

        assert response['statusCode'] == 200
        body = body_of(response)
        assert body['message'] == 'Dates saved successfully'
        assert body['event_location_id'] == '7'
        assert body['kind'] == 'M'
        assert body['display'] == '2025-08-06, 2025-08-07'
        assert body['statistics']['created'] == ['2025-08-07']
        assert body['statistics']['deleted'] == ['11']
        assert body['statistics']['kind_written'] is False
        assert 'duration_seconds' in body

        mock_client_class.assert_called_once_with(
            base_url='https://api.example.com/SmileAPI',
            username='portal',
            password='secret',
            timeout=5
        )
        mock_store.list_occurrences.assert_called_once_with('7')
        mock_store.get_location_metadata.assert_called_once_with('7', event_id=None)
        mock_store.delete_occurrence.assert_called_once_with('11')
        mock_store.create_occurrences.assert_called_once_with('7', [date(2025, 8, 7)])
        mock_store.update_location_metadata.assert_not_called()

    @patch('lambda_function.EventLocationApiClient')
    def test_api_gateway_body(self, mock_client_class, mock_env, mock_context, mock_store):
        mock_client_class.return_value = mock_store
        mock_store.list_occurrences.return_value = []

        response = lambda_handler({'body': json.dumps({
            'action': 'reconcile',
            'eventLocationId': '7',
            'kind': 'R',
            'start': '2025-08-15',
            'end': '2025-08-17',
            'venue': 'Central Park, Mumbai',
            'startTime': '9:00 AM',
            'endTime': '17:00'
        })}, mock_context)

        assert response['statusCode'] == 200
        body = body_of(response)
        assert body['display'] == '2025-08-15 – 2025-08-17'
        assert body['statistics']['kind_written'] is True

        metadata = mock_store.update_location_metadata.call_args.args[0]
        assert metadata.kind is OccurrenceKind.RANGE
        assert metadata.start_time == '09:00:00'
        assert metadata.end_time == '17:00:00'
        assert metadata.event_date == date(2025, 8, 15)

    @patch('lambda_function.EventLocationApiClient')
    def test_invalid_dates(self, mock_client_class, mock_env, mock_context):
        response = lambda_handler({
            'action': 'reconcile',
            'eventLocationId': '7',
            'kind': 'R',
            'start': '2025-08-17',
            'end': '2025-08-15'
        }, mock_context)

        assert response['statusCode'] == 400
        body = body_of(response)
        assert body['message'] == 'Invalid occurrence input'
        assert body['error_type'] == 'InvalidRangeError'
        mock_client_class.assert_not_called()

    def test_missing_event_location(self, mock_env, mock_context):
        response = lambda_handler({
            'action': 'reconcile',
            'kind': 'S',
            'date': '2025-08-15'
        }, mock_context)

        assert response['statusCode'] == 400
        assert body_of(response)['field'] == 'eventLocationId'

    def test_unknown_kind(self, mock_env, mock_context):
        response = lambda_handler({
            'action': 'reconcile',
            'eventLocationId': '7',
            'kind': 'weekly',
            'dates': ['2025-08-15']
        }, mock_context)

        assert response['statusCode'] == 400
        assert body_of(response)['field'] == 'kind'

    @patch('lambda_function.EventLocationApiClient')
    def test_kind_change_requires_confirmation(
        self, mock_client_class, mock_env, mock_context, mock_store
    ):
        mock_client_class.return_value = mock_store
        request = {
            'action': 'reconcile',
            'eventLocationId': '7',
            'previousKind': 'M',
            'kind': 'R',
            'start': '2025-08-15',
            'end': '2025-08-16',
            'venue': 'Central Park, Mumbai',
            'startTime': '09:00',
            'endTime': '17:00'
        }

        response = lambda_handler(request, mock_context)

        assert response['statusCode'] == 409
        body = body_of(response)
        assert body['requires_confirmation'] is True
        assert body['dates_to_delete'] == 2
        mock_store.delete_occurrence.assert_not_called()
        mock_store.update_location_metadata.assert_not_called()

        response = lambda_handler(dict(request, confirmKindChange=True), mock_context)

        assert response['statusCode'] == 200
        body = body_of(response)
        assert sorted(body['statistics']['deleted']) == ['11', '12']
        assert body['statistics']['created'] == ['2025-08-15', '2025-08-16']
        assert body['statistics']['kind_written'] is True
        written = mock_store.update_location_metadata.call_args.args[0]
        assert written.kind is OccurrenceKind.RANGE

    @patch('lambda_function.EventLocationApiClient')
    def test_kind_change_uses_stored_kind(
        self, mock_client_class, mock_env, mock_context, mock_store
    ):
        """Without previousKind the stored kind decides whether the kind changed."""
        mock_client_class.return_value = mock_store
        request = {
            'action': 'reconcile',
            'eventLocationId': '7',
            'eventId': '3',
            'kind': 'R',
            'start': '2025-08-15',
            'end': '2025-08-16'
        }

        response = lambda_handler(request, mock_context)

        assert response['statusCode'] == 409
        assert body_of(response)['dates_to_delete'] == 2
        mock_store.get_location_metadata.assert_called_with('7', event_id='3')
        mock_store.delete_occurrence.assert_not_called()
        mock_store.update_location_metadata.assert_not_called()

        response = lambda_handler(dict(request, confirmKindChange=True), mock_context)

        assert response['statusCode'] == 200
        body = body_of(response)
        assert body['statistics']['kind_written'] is True
        assert sorted(body['statistics']['deleted']) == ['11', '12']
        written = mock_store.update_location_metadata.call_args.args[0]
        assert written.kind is OccurrenceKind.RANGE
        assert written.venue == 'Central Park, Mumbai'
        assert written.start_time == '09:00:00'
        assert written.event_id == '3'

    @patch('lambda_function.EventLocationApiClient')
    def test_unknown_stored_kind_requires_previous_kind(
        self, mock_client_class, mock_env, mock_context, mock_store
    ):
        mock_client_class.return_value = mock_store
        mock_store.get_location_metadata.return_value = None

        response = lambda_handler({
            'action': 'reconcile',
            'eventLocationId': '7',
            'kind': 'R',
            'start': '2025-08-15',
            'end': '2025-08-16'
        }, mock_context)

        assert response['statusCode'] == 400
        assert body_of(response)['field'] == 'previousKind'
        mock_store.delete_occurrence.assert_not_called()
        mock_store.create_occurrences.assert_not_called()

    @patch('lambda_function.EventLocationApiClient')
    def test_kind_change_without_metadata(
        self, mock_client_class, mock_env, mock_context, mock_store
    ):
        mock_client_class.return_value = mock_store
        mock_store.get_location_metadata.return_value = None

        response = lambda_handler({
            'action': 'reconcile',
            'eventLocationId': '7',
            'previousKind': 'M',
            'kind': 'S',
            'date': '2025-08-15',
            'confirmKindChange': True
        }, mock_context)

        assert response['statusCode'] == 400
        assert body_of(response)['field'] == 'venue'

    @patch('lambda_function.EventLocationApiClient')
    def test_partial_failure(self, mock_client_class, mock_env, mock_context, mock_store):
        mock_client_class.return_value = mock_store
        mock_store.delete_occurrence.side_effect = Exception('Network error')

        response = lambda_handler({
            'action': 'reconcile',
            'eventLocationId': '7',
            'kind': 'M',
            'dates': ['2025-08-06', '2025-08-07']
        }, mock_context)

        assert response['statusCode'] == 207
        body = body_of(response)
        assert body['statistics']['created'] == ['2025-08-07']
        assert body['statistics']['failures'] == [
            {'operation': 'delete', 'target': '11', 'error': 'Network error'}
        ]

    @patch('lambda_function.EventLocationApiClient')
    def test_store_unreachable(self, mock_client_class, mock_env, mock_context, mock_store):
        mock_client_class.return_value = mock_store
        mock_store.list_occurrences.side_effect = Exception('Connection refused')

        response = lambda_handler({
            'action': 'reconcile',
            'eventLocationId': '7',
            'kind': 'S',
            'date': '2025-08-15'
        }, mock_context)

        assert response['statusCode'] == 500
        body = body_of(response)
        assert body['message'] == 'Failed to load persisted dates'
        assert 'Connection refused' in body['error']
        mock_store.create_occurrences.assert_not_called()

    @patch('lambda_function.EventLocationApiClient')
    def test_logging_output(
        self, mock_client_class, mock_env, mock_context, mock_store, caplog
    ):
        """Test that logging output is generated correctly."""
        mock_client_class.return_value = mock_store

        with patch('lambda_function.setup_logging'):
            with caplog.at_level(logging.INFO):
                response = lambda_handler({
                    'action': 'reconcile',
                    'eventLocationId': '7',
                    'kind': 'M',
                    'dates': ['2025-08-05', '2025-08-06']
                }, mock_context)

        assert response['statusCode'] == 200
        log_messages = [record.message for record in caplog.records]
        assert any('Lambda execution started' in msg for msg in log_messages)
        assert any('Reconciliation plan: 0 to create, 0 to delete' in msg for msg in log_messages)
        assert any('Reconciled event-location 7' in msg for msg in log_messages)


class TestCalendarAction:
    """Test cases for the calendar action."""

    EVENTS = [
        {'eventId': 1, 'date': '2025-08-12', 'title': 'Tree planting'},
        {'eventId': 2, 'date': '2025-08-12', 'title': 'Beach Cleanup'},
        {'eventId': 3, 'date': '0001-01-01', 'title': 'To be shared'},
    ]

    def test_month_view(self, mock_env, mock_context):
        response = lambda_handler({
            'action': 'calendar',
            'year': 2025,
            'month': 8,
            'events': self.EVENTS,
            'selectedDate': '2025-08-12'
        }, mock_context)

        assert response['statusCode'] == 200
        body = body_of(response)
        assert body['range'] == {'start': '2025-07-27', 'end': '2025-09-06'}
        assert len(body['days']) == 42

        day = next(d for d in body['days'] if d['date'] == '2025-08-12')
        assert day['colors'] == ['#6366f1', '#f59e42']
        assert day['event_ids'] == ['1', '2']
        assert day['style']['background'] == 'linear-gradient(90deg, #6366f1, #f59e42)'
        assert [e['title'] for e in body['events']] == ['Beach Cleanup', 'Tree planting']

    def test_excluded_titles(self, mock_env, mock_context):
        with patch.dict(os.environ, {'CALENDAR_EXCLUDED_TITLES': 'Beach Cleanup'}):
            response = lambda_handler({
                'action': 'calendar',
                'year': 2025,
                'month': 8,
                'events': self.EVENTS
            }, mock_context)

        body = body_of(response)
        day = next(d for d in body['days'] if d['date'] == '2025-08-12')
        assert day['event_ids'] == ['1']
        assert day['style']['background'] == '#6366f180'
        excluded = next(e for e in body['events'] if e['title'] == 'Beach Cleanup')
        assert excluded['color'] is None

    @patch('lambda_function.EventLocationApiClient')
    def test_focus_highlights_event_dates(
        self, mock_client_class, mock_env, mock_context
    ):
        mock_store = Mock()
        mock_store.list_event_dates.return_value = [date(2025, 8, 12), date(2025, 8, 14)]
        mock_client_class.return_value = mock_store

        response = lambda_handler({
            'action': 'calendar',
            'year': 2025,
            'month': 8,
            'events': self.EVENTS,
            'focusEventId': 1
        }, mock_context)

        assert response['statusCode'] == 200
        days = {d['date']: d for d in body_of(response)['days']}
        assert days['2025-08-12']['highlighted'] is True
        assert days['2025-08-12']['style']['boxShadow'] == '0 0 0 2px #6366f1'
        assert days['2025-08-14']['highlighted'] is True
        assert days['2025-08-13']['highlighted'] is False
        mock_store.list_event_dates.assert_called_once_with('1')

    @patch('lambda_function.EventLocationApiClient')
    def test_focus_failure_still_renders(
        self, mock_client_class, mock_env, mock_context
    ):
        mock_store = Mock()
        mock_store.list_event_dates.side_effect = Exception('Network error')
        mock_client_class.return_value = mock_store

        response = lambda_handler({
            'action': 'calendar',
            'year': 2025,
            'month': 8,
            'events': self.EVENTS,
            'focusEventId': 1
        }, mock_context)

        assert response['statusCode'] == 200
        assert not any(d['highlighted'] for d in body_of(response)['days'])

    def test_invalid_month(self, mock_env, mock_context):
        response = lambda_handler({
            'action': 'calendar',
            'year': 2025,
            'month': 13
        }, mock_context)

        assert response['statusCode'] == 400
        assert body_of(response)['message'] == 'Invalid calendar request'


class TestLambdaHandler:
    """Test cases for request dispatch and configuration."""

    def test_unknown_action(self, mock_env, mock_context):
        response = lambda_handler({'action': 'sync'}, mock_context)

        assert response['statusCode'] == 400
        assert body_of(response)['field'] == 'action'

    def test_malformed_body(self, mock_env, mock_context):
        response = lambda_handler({'body': '{not json'}, mock_context)

        assert response['statusCode'] == 400
        body = body_of(response)
        assert body['message'] == 'Invalid request'
        assert body['field'] == 'body'

    def test_body_not_an_object(self, mock_env, mock_context):
        response = lambda_handler({'body': '["reconcile"]'}, mock_context)

        assert response['statusCode'] == 400
        assert body_of(response)['field'] == 'body'

    def test_load_config_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = load_config()

        assert config.store_backend == 'api'
        assert config.timeout_seconds == 10
        assert config.table_name == 'event-location-occurrences'
        assert config.excluded_titles == []
        assert config.palette is None

    def test_load_config_lists(self):
        with patch.dict(os.environ, {
            'CALENDAR_EXCLUDED_TITLES': 'Always On , Blood Donation Drive,',
            'CALENDAR_PALETTE': '#111111,#222222'
        }, clear=True):
            config = load_config()

        assert config.excluded_titles == ['Always On', 'Blood Donation Drive']
        assert config.palette == ['#111111', '#222222']

    def test_build_store_requires_api_url(self):
        with patch.dict(os.environ, {'STORE_BACKEND': 'api'}, clear=True):
            with pytest.raises(ValueError):
                build_store(load_config())

    def test_build_store_unknown_backend(self):
        with patch.dict(os.environ, {'STORE_BACKEND': 'sqlite'}, clear=True):
            with pytest.raises(ValueError):
                build_store(load_config())

    @patch('lambda_function.DynamoDBOccurrenceStore')
    def test_build_store_dynamodb(self, mock_store_class):
        with patch.dict(os.environ, {
            'STORE_BACKEND': 'DynamoDB', 'TABLE_NAME': 'occurrences'
        }, clear=True):
            build_store(load_config())

        mock_store_class.assert_called_once_with(table_name='occurrences')

    def test_dynamodb_store_satisfies_store_interface(self):
        for name in ('list_occurrences', 'create_occurrences', 'delete_occurrence',
                     'update_location_metadata', 'get_location_metadata',
                     'list_event_dates'):
            assert callable(getattr(DynamoDBOccurrenceStore, name))


class TestSetupLogging:
    """Test cases for logging setup."""

    def test_setup_logging_default_level(self):
        """Test logging setup with default INFO level."""
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self):
        """Test logging setup with DEBUG level."""
        setup_logging('DEBUG')
        assert logging.getLogger().level == logging.DEBUG

    def test_json_formatter_includes_extra(self):
        record = logging.LogRecord(
            'lambda_function', logging.INFO, __file__, 1, 'Batch complete', None, None
        )
        record.events_created = 3

        data = json.loads(JsonFormatter().format(record))

        assert data['message'] == 'Batch complete'
        assert data['level'] == 'INFO'
        assert data['events_created'] == 3
