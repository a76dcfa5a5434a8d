"""Applying reconciliation plans against an event-location store."""
import dataclasses
import logging
from typing import Callable, Optional

from scheduling.exceptions import ReconciliationPartialFailureError
from scheduling.models import (
    BatchResult,
    LocationMetadata,
    OperationFailure,
    ReconciliationPlan,
)
from storage.base import EventLocationStore

logger = logging.getLogger(__name__)


class ReconciliationExecutor:
    """
    Best-effort application of a ReconciliationPlan.

    Every store call is attempted independently; a failed call never stops
    its siblings. Nothing is rolled back. After a partial failure callers
    should re-list the persisted rows and diff again rather than retry the
    failed operations.
    """

    def __init__(self, store: EventLocationStore):
        """
        Args:
            store: EventLocationStore implementation
        """
        self.store = store

    def apply(
        self,
        event_location_id: str,
        plan: ReconciliationPlan,
        metadata: Optional[LocationMetadata] = None,
        is_alive: Optional[Callable[[], bool]] = None
    ) -> BatchResult:
        """
        Apply a plan: metadata write, deletes, then one create call.

        Args:
            event_location_id: Event-location the plan belongs to
            plan: Operations computed by OccurrenceReconciler
            metadata: Location metadata to write; required when the plan
                changes the occurrence kind
            is_alive: Checked once the batch completes; when it returns False
                the result is marked discarded and not reported further

        Returns:
            BatchResult with the operations that succeeded

        Raises:
            ValueError: If the plan changes kind but no metadata is given
            ReconciliationPartialFailureError: If any operation failed
        """
        if plan.new_kind is not None and metadata is None:
            raise ValueError("A kind change must be written with location metadata")

        logger.info(
            f"Applying plan for event-location {event_location_id}: "
            f"{len(plan.to_create)} creates, {len(plan.to_delete)} deletes"
        )
        result = BatchResult()

        if metadata is not None:
            self._write_metadata(plan, metadata, result)

        for occurrence_id in plan.to_delete:
            self._delete(occurrence_id, result)

        if plan.to_create:
            self._create(event_location_id, plan, result)

        if is_alive is not None and not is_alive():
            logger.info(
                f"View closed during batch for event-location "
                f"{event_location_id}, discarding result"
            )
            result.discarded = True
            return result

        if result.failures:
            logger.error(
                f"Batch for event-location {event_location_id} partially failed: "
                f"{len(result.failures)} failed, {len(result.created)} created, "
                f"{len(result.deleted)} deleted"
            )
            raise ReconciliationPartialFailureError(
                f"{len(result.failures)} of the scheduled date changes failed",
                result
            )

        logger.info(
            f"Batch complete for event-location {event_location_id}: "
            f"{len(result.created)} created, {len(result.deleted)} deleted"
        )
        return result

    def _write_metadata(
        self,
        plan: ReconciliationPlan,
        metadata: LocationMetadata,
        result: BatchResult
    ) -> None:
        if plan.new_kind is not None:
            metadata = dataclasses.replace(metadata, kind=plan.new_kind)
        try:
            self.store.update_location_metadata(metadata)
            result.kind_written = True
        except Exception as e:
            logger.error(
                f"Failed to update metadata for event-location "
                f"{metadata.event_location_id}: {e}"
            )
            result.failures.append(OperationFailure(
                operation='update_metadata',
                target=str(metadata.event_location_id),
                error=str(e)
            ))

    def _delete(self, occurrence_id: str, result: BatchResult) -> None:
        try:
            deleted = self.store.delete_occurrence(occurrence_id)
        except Exception as e:
            logger.error(f"Failed to delete occurrence {occurrence_id}: {e}")
            result.failures.append(OperationFailure(
                operation='delete', target=str(occurrence_id), error=str(e)
            ))
            return

        if deleted:
            result.deleted.append(occurrence_id)
        else:
            logger.error(f"Store refused to delete occurrence {occurrence_id}")
            result.failures.append(OperationFailure(
                operation='delete',
                target=str(occurrence_id),
                error='delete rejected by store'
            ))

    def _create(
        self,
        event_location_id: str,
        plan: ReconciliationPlan,
        result: BatchResult
    ) -> None:
        try:
            created = self.store.create_occurrences(event_location_id, plan.to_create)
        except Exception as e:
            logger.error(
                f"Failed to create {len(plan.to_create)} occurrences for "
                f"event-location {event_location_id}: {e}"
            )
            result.failures.extend(
                OperationFailure(
                    operation='create', target=day.isoformat(), error=str(e)
                )
                for day in plan.to_create
            )
            return

        result.created.extend(created)
        confirmed = {occurrence.date for occurrence in created}
        missing = [day for day in plan.to_create if day not in confirmed]
        if missing:
            logger.error(
                f"Store did not confirm {len(missing)} of {len(plan.to_create)} "
                f"creates for event-location {event_location_id}"
            )
            result.failures.extend(
                OperationFailure(
                    operation='create',
                    target=day.isoformat(),
                    error='create not confirmed by store'
                )
                for day in missing
            )
