"""Pydantic models for raw transaction records from the REST layer."""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any, Union

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..exceptions import ValidationError
from . import stages
from .commission import Commission, validate_amount
from .milestones import Milestone
from .stages import Stage
from .transaction import Transaction, TransactionType

logger = logging.getLogger(__name__)


def _as_utc(value):
    # Naive timestamps are taken to be UTC so durations never mix naive and aware values
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_calendar_date(value):
    # The UI sends due dates as midnight UTC timestamps, e.g. "2024-07-20T00:00:00Z"
    if isinstance(value, str) and "T" in value:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    if isinstance(value, datetime):
        return value.date()
    return value


class MilestoneRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str
    due_date: date = Field(alias="dueDate")
    completed: bool = False
    completed_date: Optional[datetime] = Field(default=None, alias="completedDate")
    assigned_to: str = Field(default="", alias="assignedTo")

    @field_validator("due_date", mode="before")
    @classmethod
    def _due_date(cls, value):
        return _parse_calendar_date(value)

    @field_validator("completed_date")
    @classmethod
    def _completed_date(cls, value):
        return _as_utc(value)


class CommissionRecord(BaseModel):
    rate: Decimal
    # Recomputed from amount and rate; whatever the record says is ignored
    amount: Optional[Decimal] = None
    paid: bool = False


class TransactionRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    amount: Decimal
    stage: str = Field(validation_alias=AliasChoices("stage", "salesStage", "sales_stage"))
    probability: Optional[int] = None
    probability_overridden: Optional[bool] = Field(default=None, alias="probabilityOverridden")
    expected_close_date: date = Field(alias="expectedCloseDate")
    transaction_type: str = Field(default="Sale", alias="transactionType")
    commission: CommissionRecord
    milestones: List[MilestoneRecord] = []
    assigned_user_id: str = Field(default="", alias="assignedUserId")
    assigned_user_name: str = Field(default="", alias="assignedUserName")
    created_at: datetime = Field(alias="createdAt")
    modified_at: datetime = Field(alias="modifiedAt")
    closed_at: Optional[datetime] = Field(default=None, alias="closedAt")
    description: str = ""
    account_id: Optional[str] = Field(default=None, alias="accountId")
    contact_id: Optional[str] = Field(default=None, alias="contactId")
    property_id: Optional[str] = Field(default=None, alias="propertyId")

    @field_validator("expected_close_date", mode="before")
    @classmethod
    def _expected_close_date(cls, value):
        return _parse_calendar_date(value)

    @field_validator("created_at", "modified_at", "closed_at")
    @classmethod
    def _timestamps(cls, value):
        return _as_utc(value)


def _milestone_from_record(record: MilestoneRecord) -> Milestone:
    return Milestone(
        id=record.id,
        name=record.name,
        description=record.description,
        due_date=record.due_date,
        completed=record.completed,
        completed_date=record.completed_date,
        assigned_to=record.assigned_to,
    )


def from_record(data: Union[Dict[str, Any], TransactionRecord]) -> Transaction:
    """Validate a raw record and normalize it into a Transaction.

    Derived fields are always recomputed. A probability that differs from
    the stage default is kept as a user override unless the record says
    otherwise. Closed records without a close time use modified_at.

    Raises:
        ValidationError: the record is malformed or out of range
    """
    if isinstance(data, TransactionRecord):
        record = data
    else:
        try:
            record = TransactionRecord.model_validate(data)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid transaction record: {e}", value=data) from e

    try:
        stage = Stage.parse(record.stage)
    except ValueError as e:
        raise ValidationError(str(e), field="stage", value=record.stage) from None
    try:
        transaction_type = TransactionType.parse(record.transaction_type)
    except ValueError as e:
        raise ValidationError(str(e), field="transaction_type", value=record.transaction_type) from None

    commission = Commission.create(record.amount, record.commission.rate, paid=record.commission.paid)
    if record.commission.amount is not None and record.commission.amount != commission.amount:
        logger.debug(
            f"Transaction {record.id}: stale commission {record.commission.amount} "
            f"replaced with {commission.amount}"
        )

    default = stages.default_probability(stage)
    if record.probability is None:
        probability = default
        overridden = bool(record.probability_overridden)
        if overridden:
            raise ValidationError(
                f"Transaction {record.id} marks probability as overridden but has none",
                field="probability",
            )
    else:
        probability = stages.validate_probability(record.probability)
        if record.probability_overridden is None:
            overridden = probability != default
        else:
            overridden = record.probability_overridden

    closed_at = record.closed_at
    if closed_at is None and stages.is_terminal(stage):
        closed_at = record.modified_at

    return Transaction(
        id=record.id,
        name=record.name,
        amount=validate_amount(record.amount),
        stage=stage,
        probability=probability,
        probability_overridden=overridden,
        expected_close_date=record.expected_close_date,
        transaction_type=transaction_type,
        commission=commission,
        milestones=tuple(_milestone_from_record(m) for m in record.milestones),
        assigned_user_id=record.assigned_user_id,
        assigned_user_name=record.assigned_user_name,
        created_at=record.created_at,
        modified_at=record.modified_at,
        closed_at=closed_at,
        description=record.description,
        account_id=record.account_id,
        contact_id=record.contact_id,
        property_id=record.property_id,
    )


def to_record(txn: Transaction) -> Dict[str, Any]:
    """JSON-ready camelCase record for a Transaction."""
    record = TransactionRecord(
        id=txn.id,
        name=txn.name,
        amount=txn.amount,
        stage=txn.stage.value,
        probability=txn.probability,
        probability_overridden=txn.probability_overridden,
        expected_close_date=txn.expected_close_date,
        transaction_type=txn.transaction_type.value,
        commission=CommissionRecord(
            rate=txn.commission.rate,
            amount=txn.commission.amount,
            paid=txn.commission.paid,
        ),
        milestones=[
            MilestoneRecord(
                id=m.id,
                name=m.name,
                description=m.description,
                due_date=m.due_date,
                completed=m.completed,
                completed_date=m.completed_date,
                assigned_to=m.assigned_to,
            )
            for m in txn.milestones
        ],
        assigned_user_id=txn.assigned_user_id,
        assigned_user_name=txn.assigned_user_name,
        created_at=txn.created_at,
        modified_at=txn.modified_at,
        closed_at=txn.closed_at,
        description=txn.description,
        account_id=txn.account_id,
        contact_id=txn.contact_id,
        property_id=txn.property_id,
    )
    return record.model_dump(mode="json", by_alias=True)
