"""Diffing persisted occurrences against a desired day set."""
import logging
from datetime import date
from typing import Dict, List

from scheduling.exceptions import KindChangeNotConfirmedError
from scheduling.models import (
    DateSet,
    KindChangePlan,
    OccurrenceKind,
    PersistedOccurrence,
    ReconciliationPlan,
)

logger = logging.getLogger(__name__)


class OccurrenceReconciler:
    """
    Compute create/delete operations for one event-location.

    The reconciler performs no I/O and keeps no state between calls; it
    does not know an event-location's kind beyond what the caller passes.
    """

    def diff(
        self,
        persisted: List[PersistedOccurrence],
        desired: DateSet
    ) -> ReconciliationPlan:
        """
        Compute the operations that converge persisted rows to desired days.

        Dates present on both sides are left untouched. When the store holds
        several rows for one date the first is kept and the rest deleted.

        Args:
            persisted: Current rows for the event-location
            desired: Desired occurrence days

        Returns:
            ReconciliationPlan with dates to create and occurrence ids to delete
        """
        by_date: Dict[date, str] = {}
        to_delete = []

        for occurrence in persisted:
            if occurrence.date in by_date:
                logger.warning(
                    f"Duplicate occurrence {occurrence.occurrence_id} for "
                    f"{occurrence.date.isoformat()}, scheduling for deletion"
                )
                to_delete.append(occurrence.occurrence_id)
                continue
            by_date[occurrence.date] = occurrence.occurrence_id

        wanted = set(desired.days)
        to_create = [day for day in desired.days if day not in by_date]
        to_delete.extend(
            occurrence_id for day, occurrence_id in by_date.items()
            if day not in wanted
        )

        logger.info(
            f"Reconciliation plan: {len(to_create)} to create, "
            f"{len(to_delete)} to delete, "
            f"{len(wanted) - len(to_create)} unchanged"
        )
        return ReconciliationPlan(to_create=to_create, to_delete=to_delete)

    def plan_kind_change(
        self,
        current_kind: OccurrenceKind,
        new_kind: OccurrenceKind,
        persisted: List[PersistedOccurrence]
    ) -> KindChangePlan:
        """
        First phase of a kind change.

        Args:
            current_kind: Kind stored for the event-location
            new_kind: Kind chosen by the user
            persisted: Current rows for the event-location

        Returns:
            KindChangePlan listing the rows a committed change would drop
        """
        plan = KindChangePlan(
            current_kind=current_kind,
            new_kind=new_kind,
            stale_occurrence_ids=[o.occurrence_id for o in persisted]
        )
        if plan.requires_confirmation:
            logger.info(
                f"Kind change {current_kind.name} -> {new_kind.name} would drop "
                f"{len(plan.stale_occurrence_ids)} persisted days"
            )
        return plan

    def commit_kind_change(
        self,
        plan: KindChangePlan,
        desired: DateSet,
        persisted: List[PersistedOccurrence],
        confirmed: bool = False
    ) -> ReconciliationPlan:
        """
        Second phase of a kind change.

        With a changed kind every previously persisted row is treated as
        stale: all of them are deleted and every desired day is created.
        Without a kind change this is a plain diff.

        Args:
            plan: Result of plan_kind_change
            desired: Desired days expanded with the new kind
            persisted: Current rows for the event-location
            confirmed: Whether the user confirmed dropping persisted days

        Returns:
            ReconciliationPlan carrying the new kind when it changed

        Raises:
            KindChangeNotConfirmedError: If confirmation was required but
                not given
        """
        if not plan.kind_changed:
            return self.diff(persisted, desired)

        if plan.requires_confirmation and not confirmed:
            raise KindChangeNotConfirmedError(
                f"Changing date type will delete all "
                f"{len(plan.stale_occurrence_ids)} current dates for this location",
                field='kind'
            )

        result = self.diff([], desired)
        result.to_delete = [o.occurrence_id for o in persisted]
        result.new_kind = plan.new_kind
        logger.info(
            f"Committed kind change {plan.current_kind.name} -> "
            f"{plan.new_kind.name}: {len(result.to_create)} to create, "
            f"{len(result.to_delete)} to delete"
        )
        return result
