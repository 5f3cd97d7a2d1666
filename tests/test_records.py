"""Tests for raw record validation and normalization."""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from pipeline_engine.exceptions import ValidationError
from pipeline_engine.transactions import (
    Stage,
    TransactionType,
    create_transaction,
    from_record,
    to_record,
)
from pipeline_engine.transactions.milestones import Milestone


@pytest.fixture
def raw_record():
    """Record shaped the way the REST layer sends it."""
    return {
        "id": "opp1",
        "name": "Downtown Condo Sale",
        "accountId": "acc1",
        "amount": 450000,
        "salesStage": "Proposal",
        "probability": 75,
        "expectedCloseDate": "2024-08-15T00:00:00Z",
        "assignedUserId": "user1",
        "assignedUserName": "Sarah Johnson",
        "transactionType": "Sale",
        "commission": {"rate": 3.0, "amount": 12000},
        "milestones": [
            {
                "id": "milestone1",
                "name": "Contract Signed",
                "description": "Purchase agreement signed by both parties",
                "dueDate": "2024-07-20T00:00:00Z",
                "completed": True,
                "completedDate": "2024-07-19T14:30:00Z",
                "assignedTo": "Sarah Johnson",
            },
            {
                "id": "milestone2",
                "name": "Home Inspection",
                "description": "Professional home inspection",
                "dueDate": "2024-07-28",
                "completed": False,
                "assignedTo": "Inspector",
            },
        ],
        "createdAt": "2024-07-01T10:00:00Z",
        "modifiedAt": "2024-07-19T14:30:00Z",
    }


class TestFromRecord:
    """Tests for from_record."""

    def test_normalizes_record(self, raw_record):
        """Test camelCase fields map onto the aggregate."""
        txn = from_record(raw_record)

        assert txn.id == "opp1"
        assert txn.stage == Stage.PROPOSAL
        assert txn.transaction_type == TransactionType.SALE
        assert txn.amount == Decimal("450000.00")
        assert txn.expected_close_date == date(2024, 8, 15)
        assert txn.assigned_user_name == "Sarah Johnson"
        assert txn.account_id == "acc1"
        assert txn.created_at == datetime(2024, 7, 1, 10, 0, tzinfo=timezone.utc)

    def test_milestones_keep_order(self, raw_record):
        """Test milestones are parsed in stored order."""
        txn = from_record(raw_record)

        assert [m.id for m in txn.milestones] == ["milestone1", "milestone2"]
        assert txn.milestones[0].completed_date == datetime(2024, 7, 19, 14, 30, tzinfo=timezone.utc)
        assert txn.milestones[1].due_date == date(2024, 7, 28)
        assert txn.next_milestone().id == "milestone2"

    def test_stale_commission_recomputed(self, raw_record):
        """Test the record's commission amount is replaced with the derived one."""
        txn = from_record(raw_record)
        assert txn.commission.amount == Decimal("13500.00")

    def test_non_default_probability_kept_as_override(self, raw_record):
        """Test a probability that differs from the stage default is an override."""
        txn = from_record(raw_record)

        assert txn.probability == 75
        assert txn.probability_overridden is True

    def test_missing_probability_uses_stage_default(self, raw_record):
        """Test the stage default fills in a missing probability."""
        del raw_record["probability"]
        txn = from_record(raw_record)

        assert txn.probability == 50
        assert txn.probability_overridden is False

    def test_closed_record_without_close_time(self, raw_record):
        """Test closed records fall back to modifiedAt for the close time."""
        raw_record["salesStage"] = "Closed Won"
        raw_record["probability"] = 100

        txn = from_record(raw_record)

        assert txn.closed_at == txn.modified_at

    def test_naive_timestamps_read_as_utc(self, raw_record):
        """Test timestamps without an offset are taken as UTC."""
        raw_record["createdAt"] = "2024-07-01T10:00:00"
        txn = from_record(raw_record)
        assert txn.created_at.tzinfo == timezone.utc

    @pytest.mark.parametrize("field,value", [
        ("salesStage", "Escrow"),
        ("transactionType", "Barter"),
        ("amount", -10),
        ("probability", 140),
    ])
    def test_invalid_values(self, raw_record, field, value):
        """Test out of range or unknown values are rejected."""
        raw_record[field] = value
        with pytest.raises(ValidationError):
            from_record(raw_record)

    def test_invalid_commission_rate(self, raw_record):
        """Test a rate above 100 is rejected."""
        raw_record["commission"]["rate"] = 250
        with pytest.raises(ValidationError):
            from_record(raw_record)

    def test_paid_commission(self, raw_record):
        """Test the payout flag is read from closed records."""
        raw_record["salesStage"] = "Closed Won"
        raw_record["probability"] = 100
        raw_record["commission"]["paid"] = True

        assert from_record(raw_record).commission.paid is True

    def test_paid_commission_on_open_deal(self, raw_record):
        """Test open deals cannot carry paid commission."""
        raw_record["commission"]["paid"] = True
        with pytest.raises(ValidationError):
            from_record(raw_record)

    def test_missing_required_field(self, raw_record):
        """Test malformed records raise the engine's validation error."""
        del raw_record["expectedCloseDate"]
        with pytest.raises(ValidationError):
            from_record(raw_record)

    def test_empty_milestone_description(self, raw_record):
        """Test milestone descriptions are required in records too."""
        raw_record["milestones"][1]["description"] = ""
        with pytest.raises(ValidationError):
            from_record(raw_record)

    def test_completed_milestone_needs_date(self, raw_record):
        """Test a completed milestone without a completion date is rejected."""
        del raw_record["milestones"][0]["completedDate"]
        with pytest.raises(ValidationError):
            from_record(raw_record)


class TestToRecord:
    """Tests for to_record."""

    def test_camel_case_output(self, raw_record):
        """Test output uses the REST layer's field names."""
        record = to_record(from_record(raw_record))

        assert record["stage"] == "Proposal"
        assert record["expectedCloseDate"] == "2024-08-15"
        assert record["assignedUserId"] == "user1"
        assert Decimal(record["commission"]["amount"]) == Decimal("13500.00")
        assert record["milestones"][1]["dueDate"] == "2024-07-28"
        assert record["probabilityOverridden"] is True
        assert record["commission"]["paid"] is False

    def test_record_reloads_to_same_transaction(self):
        """Test a transaction survives a trip through its record."""
        now = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
        txn = create_transaction(
            name="42 Oak Ave",
            amount="389999.99",
            expected_close_date=date(2026, 12, 1),
            now=now,
            commission_rate="2.75",
            milestones=[Milestone(id="m1", name="Inspection", description="Inspect", due_date=date(2026, 11, 1))],
            transaction_id="t1",
        )
        txn = txn.complete_milestone("m1", now).transition(Stage.NEGOTIATION, now)

        assert from_record(to_record(txn)) == txn
