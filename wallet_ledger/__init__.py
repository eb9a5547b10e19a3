"""
Wallet Ledger Package.

Token balances, locks and the append-only transaction log.
"""

from database.enums import ReferenceType, TransactionKind

from .types import LedgerReference, LedgerResult, TransactionRecord, WalletInfo
from .ledger import WalletLedger
from .reconciliation import (
    LedgerReconciler,
    MismatchType,
    ReconciliationMismatch,
    ReconciliationResult,
)

__all__ = [
    "ReferenceType",
    "TransactionKind",
    "LedgerReference",
    "LedgerResult",
    "TransactionRecord",
    "WalletInfo",
    "WalletLedger",
    "LedgerReconciler",
    "MismatchType",
    "ReconciliationMismatch",
    "ReconciliationResult",
]
