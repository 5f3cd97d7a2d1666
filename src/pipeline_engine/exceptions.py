"""Pipeline engine exceptions."""

from typing import Any, Optional


class PipelineError(Exception):
    """Base exception for the pipeline engine."""

    pass


class ValidationError(PipelineError):
    """Input is malformed or out of range."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class InvalidCommissionInputError(ValidationError):
    """Negative amount or commission rate outside 0-100."""

    pass


class InvalidTransitionError(PipelineError):
    """Stage change out of a closed stage or to an unknown stage."""

    def __init__(self, message: str, current_stage: Any = None, target_stage: Any = None):
        super().__init__(message)
        self.current_stage = current_stage
        self.target_stage = target_stage


class MilestoneNotFoundError(PipelineError):
    """Milestone id is not part of the transaction."""

    def __init__(self, milestone_id: str):
        super().__init__(f"Milestone {milestone_id} not found")
        self.milestone_id = milestone_id


class TransactionNotFoundError(PipelineError):
    """Transaction id is not in the store."""

    def __init__(self, transaction_id: str):
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class ConcurrentModificationError(PipelineError):
    """Write was based on a stale copy of the transaction."""

    def __init__(self, transaction_id: str, expected_modified_at: Any, actual_modified_at: Any):
        super().__init__(
            f"Transaction {transaction_id} was modified at {actual_modified_at}, "
            f"expected {expected_modified_at}"
        )
        self.transaction_id = transaction_id
        self.expected_modified_at = expected_modified_at
        self.actual_modified_at = actual_modified_at
