"""Sales stage state machine for transactions."""

import logging
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from ..exceptions import InvalidTransitionError, ValidationError

logger = logging.getLogger(__name__)


class Stage(Enum):
    """Sales stages a transaction moves through."""
    PROSPECTING = "Prospecting"
    QUALIFICATION = "Qualification"
    PROPOSAL = "Proposal"
    NEGOTIATION = "Negotiation"
    CLOSED_WON = "Closed Won"
    CLOSED_LOST = "Closed Lost"

    @classmethod
    def parse(cls, value: Union["Stage", str]) -> "Stage":
        """Resolve a stage from an enum member, display name or value.

        "Closed Won", "closed won", "closed_won" and "CLOSED_WON" all
        resolve to Stage.CLOSED_WON. Raises ValueError for anything else.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("_", " ")
            for stage in cls:
                if stage.value.lower() == key:
                    return stage
        raise ValueError(f"Unknown stage: {value!r}")


# "Advance Stage" walks this list; Closed Lost is only reachable via transition()
FORWARD_STAGES = [
    Stage.PROSPECTING,
    Stage.QUALIFICATION,
    Stage.PROPOSAL,
    Stage.NEGOTIATION,
    Stage.CLOSED_WON,
]

TERMINAL_STAGES = frozenset({Stage.CLOSED_WON, Stage.CLOSED_LOST})

DEFAULT_PROBABILITIES = {
    Stage.PROSPECTING: 10,
    Stage.QUALIFICATION: 25,
    Stage.PROPOSAL: 50,
    Stage.NEGOTIATION: 75,
    Stage.CLOSED_WON: 100,
    Stage.CLOSED_LOST: 0,
}


def is_terminal(stage: Stage) -> bool:
    """Closed stages accept no further transitions."""
    return stage in TERMINAL_STAGES


def is_active(stage: Stage) -> bool:
    """Every non-closed stage counts toward the active pipeline."""
    return stage not in TERMINAL_STAGES


def default_probability(stage: Stage) -> int:
    """Close probability a stage implies when nobody overrides it."""
    return DEFAULT_PROBABILITIES[stage]


def next_forward_stage(stage: Stage) -> Optional[Stage]:
    """Stage immediately after `stage`, or None once the deal is closed."""
    if is_terminal(stage):
        return None
    index = FORWARD_STAGES.index(stage)
    return FORWARD_STAGES[index + 1]


def validate_probability(probability) -> int:
    """Check a close probability is a whole percentage."""
    if isinstance(probability, bool) or not isinstance(probability, int):
        raise ValidationError(
            f"Probability must be an integer, got {probability!r}",
            field="probability", value=probability,
        )
    if not 0 <= probability <= 100:
        raise ValidationError(
            f"Probability must be between 0 and 100, got {probability}",
            field="probability", value=probability,
        )
    return probability


def transition(transaction, target_stage, now: datetime, probability: Optional[int] = None):
    """Move a transaction to another stage.

    Args:
        transaction: Transaction to move
        target_stage: Stage member or stage name
        now: Time of the change, recorded as modified_at
        probability: Explicit close probability; the stage default is used when omitted

    Returns:
        New Transaction in the target stage

    Raises:
        InvalidTransitionError: current stage is closed, or target is not a stage
    """
    current = transaction.stage

    try:
        target = Stage.parse(target_stage)
    except ValueError:
        raise InvalidTransitionError(
            f"Unknown stage: {target_stage!r}",
            current_stage=current, target_stage=target_stage,
        ) from None

    if is_terminal(current):
        raise InvalidTransitionError(
            f"Transaction {transaction.id} is already {current.value}",
            current_stage=current, target_stage=target,
        )

    if probability is None:
        new_probability = default_probability(target)
        overridden = False
    else:
        new_probability = validate_probability(probability)
        overridden = True

    closed_at = now if is_terminal(target) else transaction.closed_at

    logger.info(f"Transaction {transaction.id}: {current.value} -> {target.value}")
    return replace(
        transaction,
        stage=target,
        probability=new_probability,
        probability_overridden=overridden,
        closed_at=closed_at,
        modified_at=now,
    )


def advance(transaction, now: datetime):
    """Move a transaction one step forward through the sales stages."""
    target = next_forward_stage(transaction.stage)
    if target is None:
        raise InvalidTransitionError(
            f"Transaction {transaction.id} is already {transaction.stage.value}",
            current_stage=transaction.stage,
        )
    return transition(transaction, target, now)
