"""Transaction pipeline: stages, milestones, commission and the aggregate."""

from .stages import Stage, next_forward_stage, is_terminal, is_active, default_probability, transition, advance
from .milestones import Milestone, MilestoneStatus, MilestoneProgress, progress, next_pending, milestone_status, complete
from .commission import Commission, CommissionStatus, compute_commission, commission_status
from .transaction import Transaction, TransactionType, create_transaction
from .records import TransactionRecord, MilestoneRecord, from_record, to_record

__all__ = [
    "Stage",
    "next_forward_stage",
    "is_terminal",
    "is_active",
    "default_probability",
    "transition",
    "advance",
    "Milestone",
    "MilestoneStatus",
    "MilestoneProgress",
    "progress",
    "next_pending",
    "milestone_status",
    "complete",
    "Commission",
    "CommissionStatus",
    "compute_commission",
    "commission_status",
    "Transaction",
    "TransactionType",
    "create_transaction",
    "TransactionRecord",
    "MilestoneRecord",
    "from_record",
    "to_record",
]
