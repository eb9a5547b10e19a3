"""
Wallet Ledger - Token Ledger.

============================================================
PURPOSE
============================================================
The only code that mutates wallet balances.

PRIMITIVES:
- apply_token_transaction: balance += amount
- lock_tokens: reserve available tokens (locked += amount)
- unlock_tokens: release a reservation (locked -= amount)
- unlock_and_deduct_tokens: consume a reservation
  (locked -= amount, balance -= amount)

Every primitive selects the wallet row FOR UPDATE, mutates it,
appends exactly one token transaction and commits, so the sum of
a user's transactions always equals the balance.

COMPOSITION:
Every primitive takes an optional `session`. Without one it runs
in its own transaction and returns a failed LedgerResult on any
error. With one it joins the caller's transaction, commits
nothing, and RAISES domain errors so the caller's whole
transaction rolls back.

============================================================
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import (
    ArenaError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
    to_error_detail,
)
from database.engine import DatabasePersistenceError, transaction_scope
from database.enums import TransactionKind
from database.models import WalletModel

from .repository import WalletRepository
from .types import LedgerReference, LedgerResult, TransactionRecord, WalletInfo

logger = logging.getLogger(__name__)


class WalletLedger:
    """Atomic token balance primitives."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or ClockFactory.get_clock()

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    def get_wallet(self, user_id: str) -> Optional[WalletInfo]:
        with self._session_factory() as session:
            model = WalletRepository(session).get_wallet_model(user_id)
            return WalletRepository.model_to_wallet(model) if model else None

    def get_or_create_wallet(self, user_id: str, session: Optional[Session] = None) -> WalletInfo:
        """
        Return the user's wallet, inserting an empty one if missing.

        A concurrent insert of the same wallet is tolerated: the
        losing insert is rolled back and the winner's row returned.
        """
        if session is not None:
            return WalletRepository.model_to_wallet(self._get_or_create_model(session, user_id))

        try:
            with transaction_scope(self._session_factory) as own_session:
                model = self._get_or_create_model(own_session, user_id)
                return WalletRepository.model_to_wallet(model)
        except DatabasePersistenceError:
            wallet = self.get_wallet(user_id)
            if wallet is None:
                raise
            logger.debug(f"Wallet for {user_id} created concurrently")
            return wallet

    def get_transaction_history(self, user_id: str, limit: int = 50) -> List[TransactionRecord]:
        """Most recent transactions first."""
        with self._session_factory() as session:
            return WalletRepository(session).get_transactions(user_id, limit)

    # --------------------------------------------------------
    # PRIMITIVES
    # --------------------------------------------------------

    def apply_token_transaction(
        self,
        user_id: str,
        kind: TransactionKind,
        amount: int,
        reference: Optional[LedgerReference] = None,
        metadata: Optional[Dict[str, Any]] = None,
        session: Optional[Session] = None,
    ) -> LedgerResult:
        """
        Change the balance by a signed amount.

        Fails with INSUFFICIENT_BALANCE when the balance would go
        negative and BELOW_LOCKED when it would drop under the
        locked amount.
        """
        def apply(s: Session) -> LedgerResult:
            self._check_amount(amount, allow_non_positive=True)
            repo = WalletRepository(s)
            wallet = self._lock_wallet(repo, user_id)
            new_balance = wallet.balance_tokens + amount

            if new_balance < 0:
                raise InsufficientFundsError(
                    f"Insufficient balance for {user_id}",
                    required=-amount,
                    available=wallet.balance_tokens,
                    code="INSUFFICIENT_BALANCE",
                )
            if new_balance < wallet.locked_tokens:
                raise InsufficientFundsError(
                    f"Cannot reduce balance below locked amount for {user_id}",
                    required=-amount,
                    available=wallet.balance_tokens - wallet.locked_tokens,
                    code="BELOW_LOCKED",
                )

            wallet.balance_tokens = new_balance
            return self._record(repo, wallet, kind, amount, reference, metadata)

        return self._run("apply_token_transaction", user_id, session, apply)

    def lock_tokens(
        self,
        user_id: str,
        amount: int,
        kind: TransactionKind = TransactionKind.STAKE_LOCK,
        reference: Optional[LedgerReference] = None,
        metadata: Optional[Dict[str, Any]] = None,
        session: Optional[Session] = None,
    ) -> LedgerResult:
        """Reserve `amount` available tokens. Balance is unchanged."""
        def lock(s: Session) -> LedgerResult:
            self._check_amount(amount)
            repo = WalletRepository(s)
            wallet = self._lock_wallet(repo, user_id)
            available = wallet.balance_tokens - wallet.locked_tokens

            if amount > available:
                raise InsufficientFundsError(
                    f"Insufficient available tokens for {user_id}",
                    required=amount,
                    available=available,
                    code="INSUFFICIENT_AVAILABLE",
                )

            wallet.locked_tokens += amount
            meta = dict(metadata or {}, action="lock", locked_amount=amount)
            return self._record(repo, wallet, kind, 0, reference, meta)

        return self._run("lock_tokens", user_id, session, lock)

    def unlock_tokens(
        self,
        user_id: str,
        amount: int,
        kind: TransactionKind = TransactionKind.STAKE_RELEASE,
        reference: Optional[LedgerReference] = None,
        metadata: Optional[Dict[str, Any]] = None,
        session: Optional[Session] = None,
    ) -> LedgerResult:
        """Release `amount` locked tokens. Balance is unchanged."""
        def unlock(s: Session) -> LedgerResult:
            self._check_amount(amount)
            repo = WalletRepository(s)
            wallet = self._lock_wallet(repo, user_id)
            self._check_locked(wallet, amount)

            wallet.locked_tokens -= amount
            meta = dict(metadata or {}, action="unlock", unlocked_amount=amount)
            return self._record(repo, wallet, kind, 0, reference, meta)

        return self._run("unlock_tokens", user_id, session, unlock)

    def unlock_and_deduct_tokens(
        self,
        user_id: str,
        amount: int,
        kind: TransactionKind = TransactionKind.STAKE_FORFEIT,
        reference: Optional[LedgerReference] = None,
        metadata: Optional[Dict[str, Any]] = None,
        session: Optional[Session] = None,
    ) -> LedgerResult:
        """Consume `amount` locked tokens: released and removed from the balance."""
        def deduct(s: Session) -> LedgerResult:
            self._check_amount(amount)
            repo = WalletRepository(s)
            wallet = self._lock_wallet(repo, user_id)
            self._check_locked(wallet, amount)

            wallet.locked_tokens -= amount
            wallet.balance_tokens -= amount
            meta = dict(metadata or {}, action="unlock_and_deduct")
            return self._record(repo, wallet, kind, -amount, reference, meta)

        return self._run("unlock_and_deduct_tokens", user_id, session, deduct)

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _run(
        self,
        operation: str,
        user_id: str,
        session: Optional[Session],
        fn: Callable[[Session], LedgerResult],
    ) -> LedgerResult:
        if session is not None:
            return fn(session)

        try:
            with transaction_scope(self._session_factory) as own_session:
                return fn(own_session)
        except ArenaError as e:
            logger.warning(f"{operation} rejected for {user_id}: {e.code} {e.message}")
            return LedgerResult.failure(e.to_detail())
        except DatabasePersistenceError as e:
            logger.error(f"{operation} failed for {user_id}: {e}", exc_info=True)
            return LedgerResult.failure(to_error_detail(e))

    def _get_or_create_model(self, session: Session, user_id: str) -> WalletModel:
        repo = WalletRepository(session)
        model = repo.get_wallet_model(user_id, for_update=True)
        if model is None:
            model = repo.create_wallet(user_id, self._clock.now())
            logger.info(f"Created wallet for {user_id}")
        return model

    @staticmethod
    def _lock_wallet(repo: WalletRepository, user_id: str) -> WalletModel:
        wallet = repo.get_wallet_model(user_id, for_update=True)
        if wallet is None:
            raise NotFoundError(f"Wallet not found for {user_id}", code="WALLET_NOT_FOUND", record_id=user_id)
        return wallet

    @staticmethod
    def _check_amount(amount: int, allow_non_positive: bool = False) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError(
                "Token amount must be an integer",
                code="INVALID_AMOUNT",
                field_name="amount",
                value=amount,
            )
        if not allow_non_positive and amount <= 0:
            raise ValidationError(
                "Amount must be positive",
                code="INVALID_AMOUNT",
                field_name="amount",
                value=amount,
            )

    @staticmethod
    def _check_locked(wallet: WalletModel, amount: int) -> None:
        if amount > wallet.locked_tokens:
            raise InsufficientFundsError(
                f"Cannot release more than locked for {wallet.user_id}",
                required=amount,
                available=wallet.locked_tokens,
                code="EXCEEDS_LOCKED",
            )

    def _record(
        self,
        repo: WalletRepository,
        wallet: WalletModel,
        kind: TransactionKind,
        amount: int,
        reference: Optional[LedgerReference],
        metadata: Optional[Dict[str, Any]],
    ) -> LedgerResult:
        now = self._clock.now()
        wallet.updated_at = now
        tx = repo.add_transaction(wallet.user_id, kind, amount, reference, metadata, now)
        logger.info(
            f"Ledger {kind.value} | user={wallet.user_id} amount={amount} "
            f"balance={wallet.balance_tokens} locked={wallet.locked_tokens}"
        )
        return LedgerResult(
            success=True,
            new_balance=wallet.balance_tokens,
            new_locked=wallet.locked_tokens,
            transaction_id=tx.id,
        )
