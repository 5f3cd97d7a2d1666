"""JSON file store for transactions with compare-and-swap writes."""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Callable, Iterable

from ..exceptions import (
    ConcurrentModificationError,
    PipelineError,
    TransactionNotFoundError,
    ValidationError,
)
from ..transactions.records import from_record, to_record
from ..transactions.transaction import Transaction

logger = logging.getLogger(__name__)

# One lock per data file, shared by every store opened on it in this process
_file_locks: Dict[Path, threading.RLock] = {}
_file_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = path.resolve()
    with _file_locks_guard:
        if key not in _file_locks:
            _file_locks[key] = threading.RLock()
        return _file_locks[key]


@dataclass
class BulkResult:
    """Outcome of a bulk update: what changed and what was rejected."""
    updated: List[Transaction] = field(default_factory=list)
    failed: Dict[str, PipelineError] = field(default_factory=dict)


class TransactionStore:
    """Persist transactions and reject writes based on stale copies.

    The data file is the source of truth. Every read and write reloads it,
    so several stores (or several CLI runs) on one file see each other's
    changes. Each write names the modified_at of the copy it was computed
    from; if the file's copy has moved on since, the write is refused with
    ConcurrentModificationError and the caller should reload and retry.
    """

    def __init__(self, data_path: Optional[Path] = None):
        """Initialize transaction store."""
        self.data_path = data_path or Path.home() / ".td-pipeline-engine" / "transactions.json"
        self.transactions: Dict[str, Transaction] = {}
        self._lock = _lock_for(self.data_path)
        self._load_data()

    def _load_data(self):
        """Load transactions from file, replacing the in-memory copy."""
        transactions: Dict[str, Transaction] = {}

        if self.data_path.exists():
            try:
                with open(self.data_path, 'r') as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                logger.error(f"Error loading transactions from {self.data_path}: {e}")
                raise ValidationError(f"Transaction file {self.data_path} is not valid JSON") from e

            for txn_data in data.get("transactions", []):
                txn = from_record(txn_data)
                transactions[txn.id] = txn

        self.transactions = transactions
        logger.debug(f"Loaded {len(self.transactions)} transactions from {self.data_path}")

    def _save_data(self):
        """Save transactions to file via a temp file so a crash never truncates it."""
        self.data_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "transactions": [to_record(t) for t in self.transactions.values()],
            "updated_at": datetime.now().isoformat()
        }

        temp_path = self.data_path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(data, indent=2))
        temp_path.replace(self.data_path)

    def add(self, txn: Transaction) -> Transaction:
        """Store a new transaction."""
        with self._lock:
            self._load_data()
            if txn.id in self.transactions:
                raise ValidationError(f"Transaction {txn.id} already exists", field="id", value=txn.id)
            self.transactions[txn.id] = txn
            self._save_data()

        logger.info(f"Added transaction {txn.id}: {txn.name}")
        return txn

    def get(self, transaction_id: str) -> Transaction:
        with self._lock:
            self._load_data()
            txn = self.transactions.get(transaction_id)
        if txn is None:
            raise TransactionNotFoundError(transaction_id)
        return txn

    def list(self, predicate: Optional[Callable[[Transaction], bool]] = None) -> List[Transaction]:
        """All stored transactions, optionally filtered, oldest first."""
        with self._lock:
            self._load_data()
            transactions = list(self.transactions.values())
        if predicate:
            transactions = [t for t in transactions if predicate(t)]
        return sorted(transactions, key=lambda t: (t.created_at, t.id))

    def remove(self, transaction_id: str):
        with self._lock:
            self._load_data()
            if transaction_id not in self.transactions:
                raise TransactionNotFoundError(transaction_id)
            del self.transactions[transaction_id]
            self._save_data()

        logger.info(f"Removed transaction {transaction_id}")

    def save(self, txn: Transaction, expected_modified_at: datetime) -> Transaction:
        """Replace a stored transaction if nobody else changed it first.

        Only this transaction's record is replaced; everything else is
        written back as it currently stands in the file.

        Raises:
            TransactionNotFoundError: the transaction is not stored
            ConcurrentModificationError: stored modified_at != expected_modified_at
        """
        with self._lock:
            current = self.get(txn.id)
            if current.modified_at != expected_modified_at:
                logger.warning(
                    f"Rejected stale write to transaction {txn.id}: "
                    f"stored {current.modified_at}, expected {expected_modified_at}"
                )
                raise ConcurrentModificationError(txn.id, expected_modified_at, current.modified_at)

            if txn == current:
                return current

            self.transactions[txn.id] = txn
            self._save_data()

        return txn

    def apply(
        self,
        transaction_id: str,
        operation: Callable[[Transaction], Transaction],
        expected_modified_at: Optional[datetime] = None
    ) -> Transaction:
        """Run an update against the stored copy and save the result.

        With `expected_modified_at` the update is refused if the stored copy
        is newer than the one the caller last read. Without it the update
        runs against whatever is stored now.
        """
        with self._lock:
            current = self.get(transaction_id)
            if expected_modified_at is None:
                expected_modified_at = current.modified_at
            elif current.modified_at != expected_modified_at:
                logger.warning(f"Rejected stale update to transaction {transaction_id}")
                raise ConcurrentModificationError(transaction_id, expected_modified_at, current.modified_at)

            updated = operation(current)
            return self.save(updated, expected_modified_at)

    def transition(
        self,
        transaction_id: str,
        stage,
        now: datetime,
        probability: Optional[int] = None,
        expected_modified_at: Optional[datetime] = None
    ) -> Transaction:
        """Move a stored transaction to another stage."""
        return self.apply(
            transaction_id,
            lambda t: t.transition(stage, now, probability=probability),
            expected_modified_at,
        )

    def advance(
        self,
        transaction_id: str,
        now: datetime,
        expected_modified_at: Optional[datetime] = None
    ) -> Transaction:
        """Move a stored transaction one stage forward."""
        return self.apply(transaction_id, lambda t: t.advance(now), expected_modified_at)

    def complete_milestone(
        self,
        transaction_id: str,
        milestone_id: str,
        now: datetime,
        expected_modified_at: Optional[datetime] = None
    ) -> Transaction:
        """Complete a milestone on a stored transaction."""
        return self.apply(
            transaction_id,
            lambda t: t.complete_milestone(milestone_id, now),
            expected_modified_at,
        )

    def update_amount(
        self,
        transaction_id: str,
        amount,
        now: datetime,
        expected_modified_at: Optional[datetime] = None
    ) -> Transaction:
        return self.apply(transaction_id, lambda t: t.update_amount(amount, now), expected_modified_at)

    def update_commission_rate(
        self,
        transaction_id: str,
        rate_percent,
        now: datetime,
        expected_modified_at: Optional[datetime] = None
    ) -> Transaction:
        return self.apply(
            transaction_id,
            lambda t: t.update_commission_rate(rate_percent, now),
            expected_modified_at,
        )

    def set_commission_paid(
        self,
        transaction_id: str,
        paid: bool,
        now: datetime,
        expected_modified_at: Optional[datetime] = None
    ) -> Transaction:
        """Record whether a stored transaction's commission has been paid out."""
        return self.apply(
            transaction_id,
            lambda t: t.set_commission_paid(paid, now),
            expected_modified_at,
        )

    def reassign(
        self,
        transaction_id: str,
        user_id: str,
        user_name: str,
        now: datetime,
        expected_modified_at: Optional[datetime] = None
    ) -> Transaction:
        return self.apply(
            transaction_id,
            lambda t: t.reassign(user_id, user_name, now),
            expected_modified_at,
        )

    def _bulk(self, transaction_ids: Iterable[str], update: Callable[[str], Transaction], action: str) -> BulkResult:
        result = BulkResult()

        for transaction_id in transaction_ids:
            try:
                result.updated.append(update(transaction_id))
            except PipelineError as e:
                result.failed[transaction_id] = e

        logger.info(
            f"Bulk {action}: {len(result.updated)} updated, {len(result.failed)} failed"
        )
        return result

    def bulk_transition(self, transaction_ids: Iterable[str], stage, now: datetime) -> BulkResult:
        """Move several transactions to one stage.

        Each transaction succeeds or fails on its own; failures are
        collected by id rather than aborting the batch.
        """
        return self._bulk(
            transaction_ids,
            lambda transaction_id: self.transition(transaction_id, stage, now),
            "stage update",
        )

    def bulk_reassign(
        self,
        transaction_ids: Iterable[str],
        user_id: str,
        user_name: str,
        now: datetime
    ) -> BulkResult:
        """Assign several transactions to one agent, each on its own."""
        return self._bulk(
            transaction_ids,
            lambda transaction_id: self.reassign(transaction_id, user_id, user_name, now),
            "reassign",
        )
