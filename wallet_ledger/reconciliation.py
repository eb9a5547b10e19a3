"""
Wallet Ledger - Reconciliation.

============================================================
PURPOSE
============================================================
Offline consistency check of the token ledger.

CHECKS:
- Sum of transactions per user equals the wallet balance
- 0 <= locked_tokens <= balance_tokens
- No transactions for a user without a wallet

CRITICAL INVARIANT:
    "The transaction log is authoritative for balances."

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from sqlalchemy.orm import sessionmaker

from core.clock import ClockFactory, ClockProtocol

from .repository import WalletRepository

logger = logging.getLogger(__name__)


# ============================================================
# RECONCILIATION TYPES
# ============================================================

class MismatchType(Enum):
    """Types of ledger mismatches."""

    BALANCE_MISMATCH = "BALANCE_MISMATCH"
    """Sum of transactions differs from balance."""

    LOCKED_NEGATIVE = "LOCKED_NEGATIVE"
    """Locked amount below zero."""

    LOCKED_EXCEEDS_BALANCE = "LOCKED_EXCEEDS_BALANCE"
    """Locked amount above balance."""

    ORPHAN_TRANSACTIONS = "ORPHAN_TRANSACTIONS"
    """Transactions recorded for a user with no wallet."""


@dataclass
class ReconciliationMismatch:
    """A detected mismatch."""

    mismatch_type: MismatchType
    """Type of mismatch."""

    user_id: str
    """Affected wallet owner."""

    expected_value: Optional[int] = None
    """Value implied by the invariant."""

    actual_value: Optional[int] = None
    """Value found in storage."""

    message: str = ""
    """Human-readable message."""


@dataclass
class ReconciliationResult:
    """Result of a reconciliation run."""

    started_at: datetime
    """When reconciliation started."""

    completed_at: Optional[datetime] = None
    """When reconciliation completed."""

    wallets_checked: int = 0
    """Number of wallets checked."""

    mismatches: List[ReconciliationMismatch] = field(default_factory=list)
    """Detected mismatches."""

    @property
    def success(self) -> bool:
        """Whether the ledger is consistent."""
        return len(self.mismatches) == 0


# ============================================================
# RECONCILER
# ============================================================

class LedgerReconciler:
    """Checks every wallet against the transaction log."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or ClockFactory.get_clock()

    def reconcile(self, user_ids: Optional[Iterable[str]] = None) -> ReconciliationResult:
        """
        Run a reconciliation pass.

        Args:
            user_ids: Restrict the check to these users (default all)
        """
        result = ReconciliationResult(started_at=self._clock.now())
        selected = set(user_ids) if user_ids is not None else None

        with self._session_factory() as session:
            repo = WalletRepository(session)
            wallets = repo.list_wallets(selected)
            sums = repo.sum_transactions_by_user()

        result.wallets_checked = len(wallets)
        wallet_ids = set()

        for wallet in wallets:
            wallet_ids.add(wallet.user_id)
            tx_sum = sums.get(wallet.user_id, 0)

            if tx_sum != wallet.balance_tokens:
                result.mismatches.append(ReconciliationMismatch(
                    mismatch_type=MismatchType.BALANCE_MISMATCH,
                    user_id=wallet.user_id,
                    expected_value=tx_sum,
                    actual_value=wallet.balance_tokens,
                    message=f"balance {wallet.balance_tokens} != transaction sum {tx_sum}",
                ))
            if wallet.locked_tokens < 0:
                result.mismatches.append(ReconciliationMismatch(
                    mismatch_type=MismatchType.LOCKED_NEGATIVE,
                    user_id=wallet.user_id,
                    expected_value=0,
                    actual_value=wallet.locked_tokens,
                    message=f"locked {wallet.locked_tokens} < 0",
                ))
            if wallet.locked_tokens > wallet.balance_tokens:
                result.mismatches.append(ReconciliationMismatch(
                    mismatch_type=MismatchType.LOCKED_EXCEEDS_BALANCE,
                    user_id=wallet.user_id,
                    expected_value=wallet.balance_tokens,
                    actual_value=wallet.locked_tokens,
                    message=f"locked {wallet.locked_tokens} > balance {wallet.balance_tokens}",
                ))

        for user_id, tx_sum in sums.items():
            if user_id in wallet_ids or (selected is not None and user_id not in selected):
                continue
            result.mismatches.append(ReconciliationMismatch(
                mismatch_type=MismatchType.ORPHAN_TRANSACTIONS,
                user_id=user_id,
                actual_value=tx_sum,
                message="transactions recorded without a wallet",
            ))

        result.completed_at = self._clock.now()

        if result.success:
            logger.info(f"Ledger reconciliation clean: {result.wallets_checked} wallets checked")
        else:
            for mismatch in result.mismatches:
                logger.critical(f"Ledger mismatch {mismatch.mismatch_type.value} user={mismatch.user_id}: {mismatch.message}")

        return result
