"""
Wallet Ledger - Repository.

Row access for wallets and token transactions. Runs inside the
caller's session and never commits.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from core.clock import ensure_utc
from database.enums import TransactionKind
from database.models import TokenTransactionModel, WalletModel

from .types import LedgerReference, TransactionRecord, WalletInfo

logger = logging.getLogger(__name__)


class WalletRepository:
    """Repository for wallet rows and the transaction log."""

    def __init__(self, session: Session):
        self._session = session

    # --------------------------------------------------------
    # WALLETS
    # --------------------------------------------------------

    def get_wallet_model(self, user_id: str, for_update: bool = False) -> Optional[WalletModel]:
        """Load a wallet row, optionally locking it for the transaction."""
        stmt = select(WalletModel).where(WalletModel.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def create_wallet(self, user_id: str, now: datetime) -> WalletModel:
        model = WalletModel(
            user_id=user_id,
            balance_tokens=0,
            locked_tokens=0,
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        self._session.flush()
        return model

    def list_wallets(self, user_ids: Optional[Iterable[str]] = None) -> List[WalletModel]:
        stmt = select(WalletModel).order_by(WalletModel.user_id)
        if user_ids is not None:
            stmt = stmt.where(WalletModel.user_id.in_(list(user_ids)))
        return list(self._session.execute(stmt).scalars())

    # --------------------------------------------------------
    # TRANSACTIONS
    # --------------------------------------------------------

    def add_transaction(
        self,
        user_id: str,
        kind: TransactionKind,
        amount_tokens: int,
        reference: Optional[LedgerReference],
        metadata: Optional[Dict[str, Any]],
        now: datetime,
    ) -> TokenTransactionModel:
        model = TokenTransactionModel(
            user_id=user_id,
            kind=kind,
            amount_tokens=amount_tokens,
            reference_type=reference.type.value if reference else None,
            reference_id=reference.id if reference else None,
            meta=dict(metadata or {}),
            created_at=now,
        )
        self._session.add(model)
        self._session.flush()
        return model

    def get_transactions(self, user_id: str, limit: int = 50) -> List[TransactionRecord]:
        """Newest first."""
        stmt = (
            select(TokenTransactionModel)
            .where(TokenTransactionModel.user_id == user_id)
            .order_by(TokenTransactionModel.seq.desc())
            .limit(limit)
        )
        return [self._model_to_transaction(m) for m in self._session.execute(stmt).scalars()]

    def get_transactions_by_reference(self, reference: LedgerReference) -> List[TransactionRecord]:
        stmt = (
            select(TokenTransactionModel)
            .where(
                TokenTransactionModel.reference_type == reference.type.value,
                TokenTransactionModel.reference_id == reference.id,
            )
            .order_by(TokenTransactionModel.seq)
        )
        return [self._model_to_transaction(m) for m in self._session.execute(stmt).scalars()]

    def sum_transactions_by_user(self) -> Dict[str, int]:
        stmt = select(
            TokenTransactionModel.user_id,
            func.coalesce(func.sum(TokenTransactionModel.amount_tokens), 0),
        ).group_by(TokenTransactionModel.user_id)
        return {user_id: int(total) for user_id, total in self._session.execute(stmt)}

    # --------------------------------------------------------
    # CONVERTERS
    # --------------------------------------------------------

    @staticmethod
    def model_to_wallet(model: WalletModel) -> WalletInfo:
        return WalletInfo(
            user_id=model.user_id,
            balance_tokens=model.balance_tokens,
            locked_tokens=model.locked_tokens,
            updated_at=ensure_utc(model.updated_at),
        )

    @staticmethod
    def _model_to_transaction(model: TokenTransactionModel) -> TransactionRecord:
        return TransactionRecord(
            id=model.id,
            user_id=model.user_id,
            kind=model.kind,
            amount_tokens=model.amount_tokens,
            reference_type=model.reference_type,
            reference_id=model.reference_id,
            metadata=dict(model.meta or {}),
            created_at=ensure_utc(model.created_at),
        )
