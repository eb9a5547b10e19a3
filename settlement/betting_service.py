"""
Settlement - Betting Service.

============================================================
PURPOSE
============================================================
Pari-mutuel "bet behind" markets on peer matches.

MARKET LIFECYCLE:
    create_market_for_match -> OPEN
    place_bet               -> locks the stake (bet_place)
    close_market            -> CLOSED, no more bets
    settle_market           -> SETTLED, stakes forfeited,
                               winners paid, house credited
    void_market             -> VOID, every stake released

IDEMPOTENCY:
Settlement and voiding check the persisted market status under
a row lock before touching any wallet. A second call returns a
success no-op and writes no token transactions.

COMPOSITION:
Lifecycle calls take an optional `session` and then join the
caller's transaction (used by peer challenge settlement), raising
domain errors instead of returning failed results.

============================================================
"""

import logging
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Type, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from core.clock import ClockFactory, ClockProtocol
from core.config import SettlementConfig
from core.exceptions import (
    ArenaError,
    NotFoundError,
    StateConflictError,
    ValidationError,
    to_error_detail,
)
from database.engine import DatabasePersistenceError, transaction_scope
from database.enums import BetMarketStatus, BetStatus, ReferenceType, TransactionKind
from database.models import BetMarketModel, BetModel
from wallet_ledger import LedgerReference, WalletLedger

from .payouts import Stake, compute_payouts
from .repository import SettlementRepository
from .state_machine import TransitionGuard
from .types import BetRecord, BetResult, MarketRecord, MarketResult, Payout, PoolStats, SettlementResult

logger = logging.getLogger(__name__)

R = TypeVar("R")

_ODDS_QUANTUM = Decimal("0.0001")


class BettingService:
    """Bet markets on peer matches."""

    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: WalletLedger,
        config: Optional[SettlementConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._ledger = ledger
        self._config = config or SettlementConfig()
        self._clock = clock or ClockFactory.get_clock()

    @property
    def enabled(self) -> bool:
        return self._config.enable_bet_behind

    # --------------------------------------------------------
    # MARKETS
    # --------------------------------------------------------

    def create_market_for_match(self, match_id: str, session: Optional[Session] = None) -> MarketResult:
        """Open a market for the match, or return the existing one."""
        def create(s: Session) -> MarketResult:
            if not self.enabled:
                raise StateConflictError("Betting is disabled", current_state="disabled", code="BETTING_DISABLED")

            repo = SettlementRepository(s)
            existing = repo.get_market_by_match(match_id)
            if existing is not None:
                logger.debug(f"Market already exists for match {match_id}")
                return MarketResult(success=True, market=repo.model_to_market(existing))

            model = BetMarketModel(
                match_id=match_id,
                status=BetMarketStatus.OPEN,
                rake_bps=self._config.bet_rake_bps,
                min_bet_tokens=self._config.min_bet_tokens,
                max_bet_tokens_per_user=self._config.max_bet_tokens_per_user,
                open_at=self._clock.now(),
            )
            repo.add(model)
            logger.info(f"Created market {model.id} for match {match_id}")
            return MarketResult(success=True, market=repo.model_to_market(model))

        return self._run("create_market_for_match", match_id, session, create, MarketResult)

    def close_market(self, market_id: str, session: Optional[Session] = None) -> MarketResult:
        """Stop accepting bets. Closing a closed market is a no-op."""
        def close(s: Session) -> MarketResult:
            repo = SettlementRepository(s)
            market = self._lock_market(repo, market_id)
            TransitionGuard.require(market.status, BetMarketStatus.CLOSED, market_id)

            if market.status != BetMarketStatus.CLOSED:
                market.status = BetMarketStatus.CLOSED
                market.close_at = self._clock.now()
                s.flush()
                logger.info(f"Market {market_id} closed")
            return MarketResult(success=True, market=repo.model_to_market(market))

        return self._run("close_market", market_id, session, close, MarketResult)

    def settle_market(
        self,
        market_id: str,
        winner_user_id: str,
        session: Optional[Session] = None,
    ) -> SettlementResult:
        """
        Settle a market exactly once.

        Every placed stake is forfeited (bet_settle), each winning
        bet is paid floor(payout_pool x stake / winning_pool)
        (bet_payout), and the house is credited the rake plus every
        rounding remainder (rake_fee). Already SETTLED is a success
        no-op; VOID is a state conflict.
        """
        def settle(s: Session) -> SettlementResult:
            repo = SettlementRepository(s)
            market = self._lock_market(repo, market_id)

            if market.status == BetMarketStatus.SETTLED:
                logger.info(f"Market {market_id} already settled, skipping")
                return SettlementResult(
                    success=True,
                    market_id=market_id,
                    winner_user_id=market.winner_user_id,
                    already_settled=True,
                )
            if market.status == BetMarketStatus.VOID:
                raise StateConflictError(
                    "Market was voided",
                    current_state=market.status.value,
                    code="MARKET_ALREADY_RESOLVED",
                )
            TransitionGuard.require(market.status, BetMarketStatus.SETTLED, market_id)
            self._check_participant(repo, market.match_id, winner_user_id, "winner_user_id")

            bets = repo.list_bets(market_id, BetStatus.PLACED)
            plan = compute_payouts(
                [Stake(b.id, b.bettor_id, b.pick_user_id, b.amount_tokens) for b in bets],
                winner_user_id,
                market.rake_bps,
            )
            reference = LedgerReference(ReferenceType.BET_MARKET, market_id)
            now = self._clock.now()

            payouts: List[Payout] = []
            for bet in bets:
                payout = plan.payouts.get(bet.id, 0)
                self._ledger.unlock_and_deduct_tokens(
                    bet.bettor_id,
                    bet.amount_tokens,
                    kind=TransactionKind.BET_SETTLE,
                    reference=reference,
                    metadata={"bet_id": bet.id},
                    session=s,
                )
                if payout > 0:
                    self._ledger.apply_token_transaction(
                        bet.bettor_id,
                        TransactionKind.BET_PAYOUT,
                        payout,
                        reference=reference,
                        metadata={"bet_id": bet.id, "stake": bet.amount_tokens},
                        session=s,
                    )
                bet.status = BetStatus.SETTLED
                bet.payout_tokens = payout
                bet.settled_at = now
                payouts.append(Payout(bet.id, bet.bettor_id, bet.amount_tokens, payout))

            house_credit = plan.house_credit
            if house_credit > 0:
                self._credit_house(s, house_credit, reference, {
                    "rake": plan.rake_tokens,
                    "remainder": house_credit - plan.rake_tokens,
                })

            market.status = BetMarketStatus.SETTLED
            market.winner_user_id = winner_user_id
            market.settled_at = now
            if market.close_at is None:
                market.close_at = now
            s.flush()

            logger.info(
                f"Market {market_id} settled | winner={winner_user_id} bets={len(bets)} "
                f"pool={plan.total_pool} rake={plan.rake_tokens} house={house_credit}"
            )
            return SettlementResult(
                success=True,
                market_id=market_id,
                winner_user_id=winner_user_id,
                payouts=payouts,
                total_pool=plan.total_pool,
                rake_tokens=plan.rake_tokens,
                house_credit_tokens=house_credit,
            )

        return self._run("settle_market", market_id, session, settle, SettlementResult)

    def void_market(self, market_id: str, session: Optional[Session] = None) -> MarketResult:
        """
        Refund every placed bet and mark the market VOID.

        Already VOID is a success no-op; SETTLED is a state conflict.
        """
        def void(s: Session) -> MarketResult:
            repo = SettlementRepository(s)
            market = self._lock_market(repo, market_id)

            if market.status == BetMarketStatus.VOID:
                return MarketResult(success=True, market=repo.model_to_market(market))
            if market.status == BetMarketStatus.SETTLED:
                raise StateConflictError(
                    "Market already settled",
                    current_state=market.status.value,
                    code="MARKET_ALREADY_RESOLVED",
                )
            TransitionGuard.require(market.status, BetMarketStatus.VOID, market_id)

            reference = LedgerReference(ReferenceType.BET_MARKET, market_id)
            now = self._clock.now()
            bets = repo.list_bets(market_id, BetStatus.PLACED)
            for bet in bets:
                self._ledger.unlock_tokens(
                    bet.bettor_id,
                    bet.amount_tokens,
                    kind=TransactionKind.BET_REFUND,
                    reference=reference,
                    metadata={"bet_id": bet.id},
                    session=s,
                )
                bet.status = BetStatus.REFUNDED
                bet.settled_at = now

            market.status = BetMarketStatus.VOID
            if market.close_at is None:
                market.close_at = now
            s.flush()

            logger.info(f"Market {market_id} voided | refunded_bets={len(bets)}")
            return MarketResult(success=True, market=repo.model_to_market(market), refunded_bets=len(bets))

        return self._run("void_market", market_id, session, void, MarketResult)

    def settle_match_bets(
        self,
        match_id: str,
        winner_user_id: str,
        session: Optional[Session] = None,
    ) -> SettlementResult:
        """Settle the match's market. No market is a success no-op."""
        market_id = self._market_id_for_match(match_id, session)
        if market_id is None:
            return SettlementResult(success=True)
        return self.settle_market(market_id, winner_user_id, session=session)

    def void_match_bets(self, match_id: str, session: Optional[Session] = None) -> MarketResult:
        """Void the match's market. No market is a success no-op."""
        market_id = self._market_id_for_match(match_id, session)
        if market_id is None:
            return MarketResult(success=True)
        return self.void_market(market_id, session=session)

    # --------------------------------------------------------
    # BETS
    # --------------------------------------------------------

    def place_bet(self, market_id: str, bettor_id: str, pick_user_id: str, amount_tokens: int) -> BetResult:
        """
        Stake tokens on one side of an open market.

        The stake is locked in the bettor's wallet (bet_place) in
        the same transaction that records the bet.
        """
        def place(s: Session) -> BetResult:
            if not self.enabled:
                raise StateConflictError("Betting is disabled", current_state="disabled", code="BETTING_DISABLED")
            if isinstance(amount_tokens, bool) or not isinstance(amount_tokens, int) or amount_tokens <= 0:
                raise ValidationError(
                    "Bet amount must be a positive integer",
                    code="INVALID_AMOUNT",
                    field_name="amount_tokens",
                    value=amount_tokens,
                )

            repo = SettlementRepository(s)
            market = self._lock_market(repo, market_id)
            if market.status != BetMarketStatus.OPEN:
                raise StateConflictError(
                    "Market is not open",
                    current_state=market.status.value,
                    code="MARKET_NOT_OPEN",
                )
            if amount_tokens < market.min_bet_tokens:
                raise ValidationError(
                    f"Minimum bet is {market.min_bet_tokens} tokens",
                    code="INVALID_AMOUNT",
                    field_name="amount_tokens",
                    value=amount_tokens,
                    context={"min_bet_tokens": market.min_bet_tokens},
                )

            already = repo.sum_placed_by_bettor(market_id, bettor_id)
            if already + amount_tokens > market.max_bet_tokens_per_user:
                raise ValidationError(
                    f"Maximum total bet is {market.max_bet_tokens_per_user} tokens",
                    code="BET_LIMIT_EXCEEDED",
                    field_name="amount_tokens",
                    value=amount_tokens,
                    context={
                        "max_bet_tokens_per_user": market.max_bet_tokens_per_user,
                        "already_placed": already,
                    },
                )
            self._check_participant(repo, market.match_id, pick_user_id, "pick_user_id")

            self._ledger.lock_tokens(
                bettor_id,
                amount_tokens,
                kind=TransactionKind.BET_PLACE,
                reference=LedgerReference(ReferenceType.BET_MARKET, market_id),
                metadata={"pick_user_id": pick_user_id},
                session=s,
            )
            bet = BetModel(
                market_id=market_id,
                bettor_id=bettor_id,
                pick_user_id=pick_user_id,
                amount_tokens=amount_tokens,
                status=BetStatus.PLACED,
                payout_tokens=0,
                created_at=self._clock.now(),
            )
            repo.add(bet)

            logger.info(
                f"Bet placed | market={market_id} bettor={bettor_id} "
                f"pick={pick_user_id} amount={amount_tokens}"
            )
            return BetResult(success=True, bet=repo.model_to_bet(bet))

        return self._run("place_bet", market_id, None, place, BetResult)

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    def get_market(self, market_id: str) -> Optional[MarketRecord]:
        with self._session_factory() as session:
            model = SettlementRepository(session).get_market(market_id)
            return SettlementRepository.model_to_market(model) if model else None

    def get_market_by_match(self, match_id: str) -> Optional[MarketRecord]:
        with self._session_factory() as session:
            model = SettlementRepository(session).get_market_by_match(match_id)
            return SettlementRepository.model_to_market(model) if model else None

    def get_bets(self, market_id: str) -> List[BetRecord]:
        with self._session_factory() as session:
            return [SettlementRepository.model_to_bet(b) for b in SettlementRepository(session).list_bets(market_id)]

    def get_pool_stats(self, market_id: str) -> Optional[PoolStats]:
        """Pools and decimal odds of the placed bets, None if no such market."""
        with self._session_factory() as session:
            repo = SettlementRepository(session)
            market = repo.get_market(market_id)
            if market is None:
                return None

            pools: Dict[str, int] = {}
            challenge = repo.get_challenge(market.match_id)
            if challenge is not None:
                pools = {challenge.challenger_id: 0, challenge.invitee_id: 0}

            bets = repo.list_bets(market_id, BetStatus.PLACED)
            for bet in bets:
                pools[bet.pick_user_id] = pools.get(bet.pick_user_id, 0) + bet.amount_tokens

        total = sum(pools.values())
        odds = {
            pick: (Decimal(total) / Decimal(pool)).quantize(_ODDS_QUANTUM) if pool > 0 else Decimal("0")
            for pick, pool in pools.items()
        }
        return PoolStats(market_id=market_id, total_pool=total, pools=pools, odds=odds, bet_count=len(bets))

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _run(
        self,
        operation: str,
        ref_id: str,
        session: Optional[Session],
        fn: Callable[[Session], R],
        result_cls: Type[R],
    ) -> R:
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

    def _market_id_for_match(self, match_id: str, session: Optional[Session]) -> Optional[str]:
        if session is not None:
            market = SettlementRepository(session).get_market_by_match(match_id)
            return market.id if market else None
        market = self.get_market_by_match(match_id)
        return market.id if market else None

    @staticmethod
    def _lock_market(repo: SettlementRepository, market_id: str) -> BetMarketModel:
        market = repo.get_market(market_id, for_update=True)
        if market is None:
            raise NotFoundError("Market not found", code="MARKET_NOT_FOUND", record_id=market_id)
        return market

    @staticmethod
    def _check_participant(repo: SettlementRepository, match_id: str, user_id: str, field_name: str) -> None:
        """When the match is a known challenge, user_id must be one of its two traders."""
        challenge = repo.get_challenge(match_id)
        if challenge is None:
            return
        if user_id not in (challenge.challenger_id, challenge.invitee_id):
            raise ValidationError(
                f"{user_id} is not a participant of match {match_id}",
                code="NOT_A_PARTICIPANT",
                field_name=field_name,
                value=user_id,
            )

    def _credit_house(self, s: Session, amount: int, reference: LedgerReference, metadata: Dict) -> None:
        house = self._config.house_user_id
        self._ledger.get_or_create_wallet(house, session=s)
        self._ledger.apply_token_transaction(
            house,
            TransactionKind.RAKE_FEE,
            amount,
            reference=reference,
            metadata=metadata,
            session=s,
        )
