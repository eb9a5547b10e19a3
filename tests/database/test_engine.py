"""
Database Engine Tests.

============================================================
PURPOSE
============================================================
Transaction boundaries: commit, rollback, error mapping and
joining a caller's session.

============================================================
"""

import pytest
from sqlalchemy import select

from core.exceptions import ValidationError
from database import DatabasePersistenceError, session_scope, transaction_scope
from database.models import WalletModel


def _wallet_ids(session_factory):
    with session_factory() as session:
        return list(session.execute(select(WalletModel.user_id).order_by(WalletModel.user_id)).scalars())


class TestTransactionScope:
    """Tests for transaction_scope."""

    def test_commits(self, session_factory):
        """Test a clean block is committed."""
        with transaction_scope(session_factory) as session:
            session.add(WalletModel(user_id="alice", balance_tokens=10, locked_tokens=0))

        assert _wallet_ids(session_factory) == ["alice"]

    def test_domain_error_rolls_back_unchanged(self, session_factory):
        """Test domain errors propagate as-is after rollback."""
        with pytest.raises(ValidationError):
            with transaction_scope(session_factory) as session:
                session.add(WalletModel(user_id="alice", balance_tokens=10, locked_tokens=0))
                session.flush()
                raise ValidationError("bad input")

        assert _wallet_ids(session_factory) == []

    def test_constraint_violation_is_wrapped(self, session_factory):
        """Test storage errors surface as DatabasePersistenceError."""
        with pytest.raises(DatabasePersistenceError):
            with transaction_scope(session_factory) as session:
                session.add(WalletModel(user_id="alice", balance_tokens=10, locked_tokens=20))

        assert _wallet_ids(session_factory) == []


class TestSessionScope:
    """Tests for session_scope."""

    def test_joins_caller_session(self, session_factory):
        """Test work in a joined session commits with the caller."""
        with pytest.raises(ValidationError):
            with transaction_scope(session_factory) as outer:
                with session_scope(session_factory, outer) as inner:
                    assert inner is outer
                    inner.add(WalletModel(user_id="bob", balance_tokens=0, locked_tokens=0))
                raise ValidationError("abort")

        assert _wallet_ids(session_factory) == []

    def test_opens_own_transaction(self, session_factory):
        """Test a standalone scope commits on exit."""
        with session_scope(session_factory) as session:
            session.add(WalletModel(user_id="carol", balance_tokens=0, locked_tokens=0))

        assert _wallet_ids(session_factory) == ["carol"]
