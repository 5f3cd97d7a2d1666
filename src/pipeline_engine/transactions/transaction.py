"""Transaction aggregate: stage, milestones and commission for one deal."""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Iterable, Tuple, Union

from ..exceptions import ValidationError
from . import milestones as milestone_ops
from . import stages
from .commission import Commission, CommissionStatus, commission_status, compute_commission, validate_amount
from .milestones import Milestone, MilestoneProgress, as_date
from .stages import Stage

logger = logging.getLogger(__name__)


class TransactionType(Enum):
    """Kind of deal. Descriptive only; it does not affect stage rules."""
    SALE = "Sale"
    PURCHASE = "Purchase"
    LEASE = "Lease"
    RENTAL = "Rental"

    @classmethod
    def parse(cls, value: Union["TransactionType", str]) -> "TransactionType":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for txn_type in cls:
                if txn_type.value.lower() == key:
                    return txn_type
        raise ValueError(f"Unknown transaction type: {value!r}")


@dataclass(frozen=True)
class Transaction:
    """Immutable snapshot of a real estate deal.

    Every update returns a new Transaction with modified_at moved to the
    time of the change. Derived fields (commission amount, default
    probability) are checked on construction, so a snapshot can never
    carry a stale commission.
    """

    id: str
    name: str
    amount: Decimal
    stage: Stage
    probability: int
    expected_close_date: date
    commission: Commission
    created_at: datetime
    modified_at: datetime

    transaction_type: TransactionType = TransactionType.SALE
    milestones: Tuple[Milestone, ...] = field(default_factory=tuple)

    # Owner is managed outside the engine
    assigned_user_id: str = ""
    assigned_user_name: str = ""

    probability_overridden: bool = False
    closed_at: Optional[datetime] = None

    description: str = ""
    account_id: Optional[str] = None
    contact_id: Optional[str] = None
    property_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.stage, Stage):
            raise ValidationError(
                f"Transaction {self.id} stage must be a Stage, got {self.stage!r}",
                field="stage", value=self.stage,
            )
        if not isinstance(self.transaction_type, TransactionType):
            raise ValidationError(
                f"Transaction {self.id} type must be a TransactionType, got {self.transaction_type!r}",
                field="transaction_type", value=self.transaction_type,
            )

        if not isinstance(self.milestones, tuple):
            object.__setattr__(self, "milestones", tuple(self.milestones))

        ids = [m.id for m in self.milestones]
        if len(ids) != len(set(ids)):
            raise ValidationError(f"Transaction {self.id} has duplicate milestone ids", field="milestones")

        expected = compute_commission(self.amount, self.commission.rate)
        if self.commission.amount != expected:
            raise ValidationError(
                f"Transaction {self.id} commission amount {self.commission.amount} "
                f"does not match {expected}",
                field="commission", value=self.commission.amount,
            )
        if self.commission.paid and self.stage != Stage.CLOSED_WON:
            raise ValidationError(
                f"Transaction {self.id} commission cannot be paid before the deal is Closed Won",
                field="commission", value=self.commission.paid,
            )

        stages.validate_probability(self.probability)
        if not self.probability_overridden and self.probability != stages.default_probability(self.stage):
            raise ValidationError(
                f"Transaction {self.id} probability {self.probability} does not match "
                f"the {self.stage.value} default",
                field="probability", value=self.probability,
            )

    # Queries

    def is_active(self) -> bool:
        return stages.is_active(self.stage)

    def is_closed(self) -> bool:
        return stages.is_terminal(self.stage)

    def is_overdue(self, today: Union[date, datetime]) -> bool:
        """Still open after its expected close date."""
        return self.is_active() and self.expected_close_date < as_date(today)

    def days_until_close(self, today: Union[date, datetime]) -> int:
        """Days to the expected close date; negative once it has passed."""
        return (self.expected_close_date - as_date(today)).days

    def commission_status(self) -> CommissionStatus:
        return commission_status(self)

    def milestone_progress(self) -> MilestoneProgress:
        return milestone_ops.progress(self.milestones)

    def next_milestone(self) -> Optional[Milestone]:
        return milestone_ops.next_pending(self.milestones)

    def get_milestone(self, milestone_id: str) -> Milestone:
        index = milestone_ops.index_of(self.milestones, milestone_id)
        return self.milestones[index]

    # Updates

    def transition(self, target_stage, now: datetime, probability: Optional[int] = None) -> "Transaction":
        """Move to any stage; see stages.transition."""
        return stages.transition(self, target_stage, now, probability=probability)

    def advance(self, now: datetime) -> "Transaction":
        """Move one step forward through the sales stages."""
        return stages.advance(self, now)

    def complete_milestone(self, milestone_id: str, now: datetime) -> "Transaction":
        """Mark a milestone complete. Re-completing returns this snapshot unchanged."""
        updated = milestone_ops.complete(self.milestones, milestone_id, now)
        if updated == self.milestones:
            return self
        return replace(self, milestones=updated, modified_at=now)

    def reschedule_milestone(self, milestone_id: str, new_due_date: date, now: datetime) -> "Transaction":
        updated = milestone_ops.reschedule(self.milestones, milestone_id, new_due_date)
        return replace(self, milestones=updated, modified_at=now)

    def add_milestone(self, milestone: Milestone, now: datetime) -> "Transaction":
        updated = milestone_ops.add_milestone(self.milestones, milestone)
        return replace(self, milestones=updated, modified_at=now)

    def update_amount(self, amount, now: datetime) -> "Transaction":
        """Change the deal price and recompute the commission on it."""
        new_amount = validate_amount(amount)
        commission = Commission.create(new_amount, self.commission.rate, paid=self.commission.paid)
        logger.info(f"Transaction {self.id}: amount {self.amount} -> {new_amount}")
        return replace(self, amount=new_amount, commission=commission, modified_at=now)

    def update_commission_rate(self, rate_percent, now: datetime) -> "Transaction":
        """Change the commission rate and recompute the commission amount."""
        commission = Commission.create(self.amount, rate_percent, paid=self.commission.paid)
        logger.info(f"Transaction {self.id}: commission rate {self.commission.rate} -> {commission.rate}")
        return replace(self, commission=commission, modified_at=now)

    def set_commission_paid(self, paid: bool, now: datetime) -> "Transaction":
        """Mark the commission paid out, or back to unpaid.

        Only earned commission (Closed Won) can be paid.
        """
        if paid and self.stage != Stage.CLOSED_WON:
            raise ValidationError(
                f"Transaction {self.id} is {self.stage.value}; commission is not earned yet",
                field="paid", value=paid,
            )
        if paid == self.commission.paid:
            return self
        logger.info(f"Transaction {self.id}: commission marked {'paid' if paid else 'unpaid'}")
        return replace(self, commission=replace(self.commission, paid=paid), modified_at=now)

    def set_probability(self, probability: int, now: datetime) -> "Transaction":
        """Override the stage's default close probability."""
        value = stages.validate_probability(probability)
        return replace(self, probability=value, probability_overridden=True, modified_at=now)

    def update_expected_close_date(self, expected_close_date: date, now: datetime) -> "Transaction":
        return replace(self, expected_close_date=as_date(expected_close_date), modified_at=now)

    def reassign(self, user_id: str, user_name: str, now: datetime) -> "Transaction":
        return replace(self, assigned_user_id=user_id, assigned_user_name=user_name, modified_at=now)


def create_transaction(
    name: str,
    amount,
    expected_close_date: date,
    now: datetime,
    commission_rate=3,
    stage=Stage.PROSPECTING,
    transaction_type=TransactionType.SALE,
    milestones: Iterable[Milestone] = (),
    probability: Optional[int] = None,
    assigned_user_id: str = "",
    assigned_user_name: str = "",
    transaction_id: Optional[str] = None,
    description: str = "",
    account_id: Optional[str] = None,
    contact_id: Optional[str] = None,
    property_id: Optional[str] = None,
) -> Transaction:
    """Create a new transaction with its commission and probability derived.

    The milestone template is chosen by the caller; nothing is generated here.
    """
    if not name or not name.strip():
        raise ValidationError("Transaction name is required", field="name", value=name)

    try:
        stage = Stage.parse(stage)
    except ValueError as e:
        raise ValidationError(str(e), field="stage", value=stage) from None
    try:
        transaction_type = TransactionType.parse(transaction_type)
    except ValueError as e:
        raise ValidationError(str(e), field="transaction_type", value=transaction_type) from None

    deal_amount = validate_amount(amount)

    if probability is None:
        probability = stages.default_probability(stage)
        overridden = False
    else:
        probability = stages.validate_probability(probability)
        overridden = True

    txn = Transaction(
        id=transaction_id or uuid.uuid4().hex[:12],
        name=name.strip(),
        amount=deal_amount,
        stage=stage,
        probability=probability,
        probability_overridden=overridden,
        expected_close_date=as_date(expected_close_date),
        transaction_type=transaction_type,
        commission=Commission.create(deal_amount, commission_rate),
        milestones=tuple(milestones),
        assigned_user_id=assigned_user_id,
        assigned_user_name=assigned_user_name,
        created_at=now,
        modified_at=now,
        closed_at=now if stages.is_terminal(stage) else None,
        description=description,
        account_id=account_id,
        contact_id=contact_id,
        property_id=property_id,
    )

    logger.info(f"Created transaction {txn.id}: {txn.name} ({txn.stage.value}, {txn.amount})")
    return txn
