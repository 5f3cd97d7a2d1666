"""Storage layer for transactions."""

from .store import TransactionStore, BulkResult

__all__ = ["TransactionStore", "BulkResult"]
