"""
Competitions - Competition Service.

============================================================
PURPOSE
============================================================
Create competitions, let users join them and rank entries.

JOIN:
The entry fee is debited (competition_entry) and the Entry is
created in ONE transaction. Joining twice returns the existing
entry and charges nothing.

LEADERBOARD:
Every paid entry is marked to market first, then ranked by
return % = (equity - starting) / starting x 100, descending.

============================================================
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from core.clock import ClockFactory, ClockProtocol
from core.config import ExecutionConfig
from core.constants import DEFAULT_ALLOWED_PAIRS, DEFAULT_STARTING_BALANCE_CENTS, is_known_pair
from core.exceptions import ArenaError, NotFoundError, StateConflictError, ValidationError, to_error_detail
from database.engine import DatabasePersistenceError, session_scope, transaction_scope
from database.enums import CompetitionKind, CompetitionStatus, PaymentStatus, ReferenceType, TransactionKind
from database.models import CompetitionModel, EntryModel
from execution_engine import ExecutionService
from wallet_ledger import LedgerReference, WalletLedger

from .repository import CompetitionRepository
from .types import CompetitionRecord, CompetitionResult, EntryRecord, JoinResult, LeaderboardEntry

logger = logging.getLogger(__name__)


_PCT_QUANTUM = Decimal("0.0001")

STATUS_TRANSITIONS = {
    CompetitionStatus.DRAFT: {CompetitionStatus.OPEN, CompetitionStatus.RUNNING, CompetitionStatus.CANCELLED},
    CompetitionStatus.OPEN: {CompetitionStatus.RUNNING, CompetitionStatus.CANCELLED},
    CompetitionStatus.RUNNING: {CompetitionStatus.ENDED, CompetitionStatus.CANCELLED},
    CompetitionStatus.ENDED: set(),
    CompetitionStatus.CANCELLED: set(),
}

_JOINABLE = (CompetitionStatus.OPEN, CompetitionStatus.RUNNING)


class CompetitionService:
    """Competitions, entries and leaderboards."""

    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: WalletLedger,
        execution: ExecutionService,
        config: Optional[ExecutionConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._ledger = ledger
        self._execution = execution
        self._config = config or ExecutionConfig()
        self._clock = clock or ClockFactory.get_clock()

    # --------------------------------------------------------
    # COMPETITIONS
    # --------------------------------------------------------

    def create_competition(
        self,
        title: str,
        entry_fee_tokens: int = 0,
        starting_balance_cents: int = DEFAULT_STARTING_BALANCE_CENTS,
        allowed_pairs: Optional[Iterable[str]] = None,
        spread_markup_pips: Optional[Any] = None,
        max_slippage_pips: Optional[Any] = None,
        max_drawdown_pct: Optional[Any] = None,
        rake_bps: int = 0,
        status: CompetitionStatus = CompetitionStatus.OPEN,
        kind: CompetitionKind = CompetitionKind.PUBLIC,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        session: Optional[Session] = None,
    ) -> CompetitionResult:
        """
        Create a competition in draft, open or running status.

        allowed_pairs None means the default majors, an empty list
        means every known pair.
        """
        def create(s: Session) -> CompetitionResult:
            pairs = list(DEFAULT_ALLOWED_PAIRS if allowed_pairs is None else allowed_pairs)
            self._validate(title, entry_fee_tokens, starting_balance_cents, pairs, rake_bps, status)

            model = CompetitionModel(
                title=title,
                status=status,
                kind=kind,
                entry_fee_tokens=entry_fee_tokens,
                starting_balance_cents=starting_balance_cents,
                allowed_pairs=pairs,
                spread_markup_pips=Decimal(str(
                    self._config.default_spread_markup_pips if spread_markup_pips is None else spread_markup_pips
                )),
                max_slippage_pips=Decimal(str(
                    self._config.default_max_slippage_pips if max_slippage_pips is None else max_slippage_pips
                )),
                max_drawdown_pct=Decimal(str(max_drawdown_pct)) if max_drawdown_pct is not None else None,
                rake_bps=rake_bps,
                start_at=start_at,
                end_at=end_at,
                created_at=self._clock.now(),
                updated_at=self._clock.now(),
            )
            repo = CompetitionRepository(s)
            repo.add(model)
            logger.info(f"Competition created | id={model.id} title={title!r} status={status.value}")
            return CompetitionResult(success=True, competition=repo.model_to_competition(model))

        return self._run("create_competition", title, session, create, CompetitionResult)

    def set_status(
        self,
        competition_id: str,
        status: CompetitionStatus,
        session: Optional[Session] = None,
    ) -> CompetitionResult:
        """Move a competition along draft -> open -> running -> ended (or cancelled)."""
        def update(s: Session) -> CompetitionResult:
            repo = CompetitionRepository(s)
            model = self._require_competition(repo, competition_id, for_update=True)
            if model.status != status:
                if status not in STATUS_TRANSITIONS[model.status]:
                    raise StateConflictError(
                        f"Invalid transition: {model.status.value} -> {status.value}",
                        current_state=model.status.value,
                        code="INVALID_TRANSITION",
                    )
                logger.info(f"Competition {competition_id}: {model.status.value} -> {status.value}")
                model.status = status
                model.updated_at = self._clock.now()
                s.flush()
            return CompetitionResult(success=True, competition=repo.model_to_competition(model))

        return self._run("set_status", competition_id, session, update, CompetitionResult)

    def get_competition(self, competition_id: str) -> Optional[CompetitionRecord]:
        with self._session_factory() as session:
            model = CompetitionRepository(session).get_competition(competition_id)
            return CompetitionRepository.model_to_competition(model) if model else None

    def list_competitions(self) -> List[CompetitionRecord]:
        with self._session_factory() as session:
            repo = CompetitionRepository(session)
            return [repo.model_to_competition(m) for m in repo.list_competitions()]

    # --------------------------------------------------------
    # ENTRIES
    # --------------------------------------------------------

    def join_competition(self, competition_id: str, user_id: str) -> JoinResult:
        """
        Enter a user into an open or running competition.

        Charges entry_fee_tokens from the user's wallet. Idempotent:
        an existing entry is returned with already_joined=True.
        """
        try:
            with transaction_scope(self._session_factory) as s:
                return self._join(s, competition_id, user_id)
        except ArenaError as e:
            logger.warning(f"join_competition rejected | competition={competition_id} user={user_id}: {e.code}")
            return JoinResult(success=False, error=e.to_detail())
        except DatabasePersistenceError as e:
            existing = self.get_entry(competition_id, user_id)
            if existing is not None:
                logger.debug(f"Entry for {user_id} in {competition_id} created concurrently")
                return JoinResult(success=True, entry=existing, already_joined=True)
            logger.error(f"join_competition failed | competition={competition_id} user={user_id}: {e}",
                         exc_info=True)
            return JoinResult(success=False, error=to_error_detail(e))

    def create_entry(
        self,
        session: Session,
        competition_id: str,
        starting_balance_cents: int,
        user_id: str,
        paid_tokens: int = 0,
    ) -> EntryModel:
        """Insert a paid entry with cash = equity = starting balance. Joins the caller's transaction."""
        now = self._clock.now()
        starting = starting_balance_cents
        entry = EntryModel(
            competition_id=competition_id,
            user_id=user_id,
            cash_cents=starting,
            equity_cents=starting,
            max_equity_cents=starting,
            max_drawdown_pct=Decimal("0"),
            dq=False,
            payment_status=PaymentStatus.SUCCEEDED,
            paid_tokens=paid_tokens,
            joined_at=now,
        )
        CompetitionRepository(session).add(entry)
        return entry

    def get_entry(self, competition_id: str, user_id: str) -> Optional[EntryRecord]:
        with self._session_factory() as session:
            model = CompetitionRepository(session).get_entry(competition_id, user_id)
            return CompetitionRepository.model_to_entry(model) if model else None

    def list_entries(self, competition_id: str) -> List[EntryRecord]:
        with self._session_factory() as session:
            repo = CompetitionRepository(session)
            return [repo.model_to_entry(m) for m in repo.list_entries(competition_id)]

    # --------------------------------------------------------
    # LEADERBOARD
    # --------------------------------------------------------

    def get_leaderboard(self, competition_id: str, session: Optional[Session] = None) -> List[LeaderboardEntry]:
        """
        Rank paid entries by return %.

        Ties are broken by equity, then by who joined first.
        Unknown competitions rank nobody.
        """
        with session_scope(self._session_factory, session) as s:
            repo = CompetitionRepository(s)
            competition = repo.get_competition(competition_id)
            if competition is None:
                return []

            starting = competition.starting_balance_cents
            rows = []
            for entry in repo.list_entries(competition_id, paid_only=True):
                snapshot = self._execution.refresh_entry_equity(competition_id, entry.user_id, session=s)
                equity = snapshot.equity_cents if snapshot else entry.equity_cents
                rows.append((entry, equity, self.return_pct(equity, starting)))

        rows.sort(key=lambda r: (-r[2], -r[1], r[0].joined_at))
        return [
            LeaderboardEntry(
                rank=i,
                user_id=entry.user_id,
                equity_cents=equity,
                cash_cents=entry.cash_cents,
                return_pct=pct,
                max_drawdown_pct=entry.max_drawdown_pct,
                dq=entry.dq,
            )
            for i, (entry, equity, pct) in enumerate(rows, start=1)
        ]

    @staticmethod
    def return_pct(equity_cents: int, starting_cents: int) -> Decimal:
        if starting_cents <= 0:
            return Decimal("0")
        return (Decimal(equity_cents - starting_cents) / Decimal(starting_cents) * 100).quantize(_PCT_QUANTUM)

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _join(self, s: Session, competition_id: str, user_id: str) -> JoinResult:
        repo = CompetitionRepository(s)
        competition = self._require_competition(repo, competition_id)
        if competition.status not in _JOINABLE:
            raise StateConflictError(
                "Competition is not accepting entries",
                current_state=competition.status.value,
                code="COMPETITION_NOT_RUNNING",
            )

        existing = repo.get_entry(competition_id, user_id)
        if existing is not None:
            return JoinResult(success=True, entry=repo.model_to_entry(existing), already_joined=True)

        fee = competition.entry_fee_tokens
        if fee > 0:
            self._ledger.apply_token_transaction(
                user_id,
                TransactionKind.COMPETITION_ENTRY,
                -fee,
                reference=LedgerReference(ReferenceType.COMPETITION, competition_id),
                metadata={"title": competition.title},
                session=s,
            )

        entry = self.create_entry(s, competition.id, competition.starting_balance_cents, user_id, paid_tokens=fee)
        logger.info(f"User {user_id} joined competition {competition_id} | fee={fee}")
        return JoinResult(success=True, entry=repo.model_to_entry(entry))

    def _run(self, operation, ref_id, session, fn, result_cls):
        if session is not None:
            return fn(session)
        try:
            with transaction_scope(self._session_factory) as own_session:
                return fn(own_session)
        except ArenaError as e:
            logger.warning(f"{operation} rejected for {ref_id}: {e.code} {e.message}")
            return result_cls(success=False, error=e.to_detail())
        except DatabasePersistenceError as e:
            logger.error(f"{operation} failed for {ref_id}: {e}", exc_info=True)
            return result_cls(success=False, error=to_error_detail(e))

    @staticmethod
    def _require_competition(
        repo: CompetitionRepository,
        competition_id: str,
        for_update: bool = False,
    ) -> CompetitionModel:
        model = repo.get_competition(competition_id, for_update=for_update)
        if model is None:
            raise NotFoundError("Competition not found", code="COMPETITION_NOT_FOUND", record_id=competition_id)
        return model

    @staticmethod
    def _validate(
        title: str,
        entry_fee_tokens: int,
        starting_balance_cents: int,
        pairs: List[str],
        rake_bps: int,
        status: CompetitionStatus,
    ) -> None:
        if not title or not title.strip():
            raise ValidationError("Title is required", field_name="title")
        if isinstance(entry_fee_tokens, bool) or not isinstance(entry_fee_tokens, int) or entry_fee_tokens < 0:
            raise ValidationError("Entry fee must be a non-negative integer", code="INVALID_AMOUNT",
                                  field_name="entry_fee_tokens", value=entry_fee_tokens)
        if starting_balance_cents <= 0:
            raise ValidationError("Starting balance must be positive", field_name="starting_balance_cents",
                                  value=starting_balance_cents)
        if not 0 <= rake_bps <= 10_000:
            raise ValidationError("Rake must be between 0 and 10000 bps", field_name="rake_bps", value=rake_bps)
        for pair in pairs:
            if not is_known_pair(pair):
                raise ValidationError(f"Unknown pair: {pair}", code="INVALID_PAIR", field_name="allowed_pairs",
                                      value=pair)
        if status not in (CompetitionStatus.DRAFT, CompetitionStatus.OPEN, CompetitionStatus.RUNNING):
            raise ValidationError("New competitions start as draft, open or running", field_name="status",
                                  value=status.value)
