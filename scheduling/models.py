"""Data models for occurrence scheduling."""
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional, Tuple

from scheduling.exceptions import InvalidRangeError, SchedulingError


class OccurrenceKind(Enum):
    """Shape of an event-location's occurrence pattern."""
    SINGLE = 'S'
    MULTIPLE = 'M'
    RANGE = 'R'

    @property
    def code(self) -> str:
        """Backend ``dateType`` code."""
        return self.value

    @classmethod
    def from_code(cls, code: Optional[str]) -> 'OccurrenceKind':
        """
        Resolve a backend ``dateType`` code or a kind name.

        The backend stores Single as either "S" or an empty string.

        Args:
            code: "S", "M", "R", "", None or a member name such as "RANGE"

        Returns:
            Matching OccurrenceKind

        Raises:
            ValueError: If the code is not recognised
        """
        if code is None or not str(code).strip():
            return cls.SINGLE
        code = str(code).strip().upper()
        for kind in cls:
            if code in (kind.value, kind.name):
                return kind
        raise ValueError(f"Unknown occurrence kind: {code!r}")


@dataclass(frozen=True, eq=False)
class DateSet:
    """
    Canonical expanded occurrence days.

    ``days`` is strictly increasing with no duplicates. Two DateSets are equal
    when their days are equal, whatever their kind.
    """
    kind: OccurrenceKind
    days: Tuple[date, ...]

    def __post_init__(self):
        days = tuple(sorted(set(self.days)))
        object.__setattr__(self, 'days', days)

        # An empty set is allowed for every kind; it means "no dates wanted"
        if self.kind is OccurrenceKind.SINGLE and len(days) > 1:
            raise SchedulingError(
                "A single occurrence takes exactly one date", field='dates'
            )
        if self.kind is OccurrenceKind.RANGE and days:
            if (days[-1] - days[0]).days + 1 != len(days):
                raise InvalidRangeError(
                    "A date range cannot have gaps", field='dates'
                )

    def __eq__(self, other):
        if not isinstance(other, DateSet):
            return NotImplemented
        return self.days == other.days

    def __hash__(self):
        return hash(self.days)

    def __len__(self):
        return len(self.days)

    def __iter__(self):
        return iter(self.days)

    def __contains__(self, day):
        return day in self.days

    @property
    def start(self) -> Optional[date]:
        return self.days[0] if self.days else None

    @property
    def end(self) -> Optional[date]:
        return self.days[-1] if self.days else None

    def iso_days(self) -> List[str]:
        return [day.isoformat() for day in self.days]


@dataclass(frozen=True)
class PersistedOccurrence:
    """One dated row owned by the event-location store."""
    occurrence_id: str
    event_location_id: str
    date: date


@dataclass
class LocationMetadata:
    """Venue, time window and occurrence kind of an event-location."""
    event_location_id: str
    venue: str
    start_time: str
    end_time: str
    kind: OccurrenceKind
    event_date: Optional[date] = None
    event_id: Optional[str] = None


@dataclass
class ReconciliationPlan:
    """Store operations that move persisted occurrences to a desired set."""
    to_create: List[date] = field(default_factory=list)
    to_delete: List[str] = field(default_factory=list)
    new_kind: Optional[OccurrenceKind] = None

    @property
    def is_empty(self) -> bool:
        return not self.to_create and not self.to_delete and self.new_kind is None


@dataclass
class KindChangePlan:
    """First phase of a kind change: what would be dropped."""
    current_kind: OccurrenceKind
    new_kind: OccurrenceKind
    stale_occurrence_ids: List[str]

    @property
    def kind_changed(self) -> bool:
        return self.current_kind is not self.new_kind

    @property
    def requires_confirmation(self) -> bool:
        return self.kind_changed and bool(self.stale_occurrence_ids)


@dataclass
class OperationFailure:
    """A single store operation that failed inside a batch."""
    operation: str
    target: str
    error: str


@dataclass
class BatchResult:
    """Outcome of applying a ReconciliationPlan."""
    created: List[PersistedOccurrence] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    kind_written: bool = False
    failures: List[OperationFailure] = field(default_factory=list)
    discarded: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.failures
