"""Transaction milestone tracking."""

import logging
import math
from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Iterable, Sequence, Tuple, Union

from ..exceptions import MilestoneNotFoundError, ValidationError

logger = logging.getLogger(__name__)

DUE_SOON_DAYS = 3


class MilestoneStatus(Enum):
    """Where a milestone stands relative to today."""
    COMPLETED = "completed"
    OVERDUE = "overdue"
    DUE_SOON = "due-soon"
    ON_TRACK = "on-track"


def as_date(value: Union[date, datetime]) -> date:
    """Calendar date of a date or datetime."""
    if isinstance(value, datetime):
        return value.date()
    return value


@dataclass(frozen=True)
class Milestone:
    """A single gating step in a transaction."""

    id: str
    name: str
    description: str
    due_date: date

    completed: bool = False
    completed_date: Optional[datetime] = None

    assigned_to: str = ""  # role or person, e.g. "buyer", "lender", "Jane Agent"

    def __post_init__(self):
        if not self.id:
            raise ValidationError("Milestone id is required", field="id", value=self.id)
        if not self.name or not self.name.strip():
            raise ValidationError("Milestone name is required", field="name", value=self.name)
        if not self.description or not self.description.strip():
            raise ValidationError(
                f"Milestone {self.id} description is required",
                field="description", value=self.description,
            )
        if self.completed and self.completed_date is None:
            raise ValidationError(
                f"Milestone {self.id} is completed but has no completed date",
                field="completed_date",
            )
        if not self.completed and self.completed_date is not None:
            raise ValidationError(
                f"Milestone {self.id} has a completed date but is not completed",
                field="completed_date", value=self.completed_date,
            )

    def status(self, today: Union[date, datetime], due_soon_days: int = DUE_SOON_DAYS) -> MilestoneStatus:
        """Status of this milestone as of `today`."""
        return milestone_status(self, today, due_soon_days)


@dataclass(frozen=True)
class MilestoneProgress:
    """Completion count for a milestone list."""
    completed: int
    total: int
    percent: int


def progress(milestones: Sequence[Milestone]) -> MilestoneProgress:
    """Completed/total counts with a rounded percentage."""
    total = len(milestones)
    completed = len([m for m in milestones if m.completed])
    if total == 0:
        return MilestoneProgress(completed=0, total=0, percent=0)
    percent = math.floor(completed * 100 / total + 0.5)
    return MilestoneProgress(completed=completed, total=total, percent=percent)


def next_pending(milestones: Sequence[Milestone]) -> Optional[Milestone]:
    """First incomplete milestone in stored order."""
    for milestone in milestones:
        if not milestone.completed:
            return milestone
    return None


def milestone_status(
    milestone: Milestone,
    today: Union[date, datetime],
    due_soon_days: int = DUE_SOON_DAYS
) -> MilestoneStatus:
    """Classify a milestone as completed, overdue, due soon or on track."""
    if milestone.completed:
        return MilestoneStatus.COMPLETED

    days_until_due = (milestone.due_date - as_date(today)).days
    if days_until_due < 0:
        return MilestoneStatus.OVERDUE
    if days_until_due <= due_soon_days:
        return MilestoneStatus.DUE_SOON
    return MilestoneStatus.ON_TRACK


def index_of(milestones: Sequence[Milestone], milestone_id: str) -> int:
    """Position of a milestone by id."""
    for index, milestone in enumerate(milestones):
        if milestone.id == milestone_id:
            return index
    raise MilestoneNotFoundError(milestone_id)


def complete(milestones: Sequence[Milestone], milestone_id: str, now: datetime) -> Tuple[Milestone, ...]:
    """Mark a milestone complete.

    Completing an already completed milestone changes nothing, so the
    original completion time is kept. Milestones may be completed in
    any order.

    Raises:
        MilestoneNotFoundError: no milestone has `milestone_id`
    """
    index = index_of(milestones, milestone_id)
    updated = list(milestones)
    milestone = updated[index]

    if milestone.completed:
        logger.debug(f"Milestone {milestone_id} already completed on {milestone.completed_date}")
        return tuple(updated)

    updated[index] = replace(milestone, completed=True, completed_date=now)
    logger.info(f"Completed milestone {milestone_id}: {milestone.name}")
    return tuple(updated)


def reschedule(milestones: Sequence[Milestone], milestone_id: str, new_due_date: date) -> Tuple[Milestone, ...]:
    """Move a milestone's due date."""
    index = index_of(milestones, milestone_id)
    updated = list(milestones)
    updated[index] = replace(updated[index], due_date=as_date(new_due_date))
    return tuple(updated)


def add_milestone(milestones: Sequence[Milestone], milestone: Milestone) -> Tuple[Milestone, ...]:
    """Append a milestone to the end of the execution order."""
    if any(m.id == milestone.id for m in milestones):
        raise ValidationError(
            f"Milestone {milestone.id} already exists",
            field="id", value=milestone.id,
        )
    return tuple(milestones) + (milestone,)


def overdue_milestones(milestones: Sequence[Milestone], today: Union[date, datetime]) -> List[Milestone]:
    """Incomplete milestones whose due date has passed."""
    return [
        m for m in milestones
        if milestone_status(m, today) == MilestoneStatus.OVERDUE
    ]


def upcoming_milestones(
    transactions: Iterable[Any],
    today: Union[date, datetime],
    days: int = 7
) -> List[Dict[str, Any]]:
    """Incomplete milestones due within `days` across active transactions."""
    today = as_date(today)
    upcoming = []

    for txn in transactions:
        if not txn.is_active():
            continue
        for m in txn.milestones:
            if m.completed:
                continue
            days_until = (m.due_date - today).days
            if 0 <= days_until <= days:
                upcoming.append({
                    "transaction_id": txn.id,
                    "transaction_name": txn.name,
                    "milestone_id": m.id,
                    "name": m.name,
                    "due_date": m.due_date,
                    "days_until": days_until,
                    "assigned_to": m.assigned_to,
                })

    return sorted(upcoming, key=lambda x: (x["due_date"], x["transaction_id"]))
