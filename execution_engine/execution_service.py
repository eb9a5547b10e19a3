"""
Execution Engine - Execution Service.

============================================================
PURPOSE
============================================================
Main entry point for paper-trading order execution.

Fills market orders against the injected price feed, nets them
into one position per (competition, user, pair) and books the
realized P&L on the user's competition entry.

============================================================
DESIGN PRINCIPLES
============================================================
- ATOMIC: Position, trade, deals and entry change in ONE
  transaction, or not at all
- SERIALIZED: The entry row is locked FOR UPDATE first, so all
  fills of one (competition, user) run one at a time
- DEFENSIVE: Every input is validated before any side effect
- RESULT VALUES: Public methods never raise domain errors

Order placement is NOT idempotent. Callers that retry must
dedupe with their own idempotency key before calling in.

============================================================
EXECUTION WORKFLOW
============================================================
1. Validate pair and size
2. Check competition (exists, running, pair allowed)
3. Lock the entry (exists, not disqualified)
4. Read the quote and compute the fill price
5. Net the fill against the current position
6. Write position / trade / deal(s)
7. Apply realized P&L to entry cash, equity and high-water mark
8. Return ExecutionResult

============================================================
"""

import logging
import random
import threading
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from core.clock import ClockFactory, ClockProtocol
from core.config import ExecutionConfig
from core.constants import is_known_pair
from core.exceptions import (
    ArenaError,
    NotFoundError,
    StateConflictError,
    UpstreamUnavailableError,
    ValidationError,
    to_error_detail,
)
from database.engine import DatabasePersistenceError, session_scope, transaction_scope
from database.enums import CompetitionStatus, DealKind, Side, TradeStatus
from database.models import DealModel, EntryModel, PositionModel, TradeModel
from market_data.base import PriceFeed

from .netting import NetPosition, NettingOutcome, net_fill
from .pricing import (
    calculate_fill_price,
    calculate_pnl_cents,
    lots_to_units,
    mark_price,
    round_half_up,
    to_decimal,
    units_to_exact_lots,
    units_to_lots,
)
from .repository import ExecutionRepository
from .types import (
    UNSET,
    DealRecord,
    EquitySnapshot,
    ExecutionResult,
    ExecutionResultCode,
    NettingAction,
    PositionRecord,
    SLTPResult,
    TradeRecord,
)

logger = logging.getLogger(__name__)


_PCT_QUANTUM = Decimal("0.0001")


class ExecutionService:
    """
    Paper-trading execution service.

    Thread-safe: every call opens its own session from the injected
    factory, and the statistics counters are guarded by a lock.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        price_feed: PriceFeed,
        config: Optional[ExecutionConfig] = None,
        clock: Optional[ClockProtocol] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize execution service.

        Args:
            session_factory: Session factory for the arena database
            price_feed: Quote source
            config: Fill-price defaults
            clock: Clock for timestamps
            rng: Random source for slippage (seed it in tests)
        """
        self._session_factory = session_factory
        self._price_feed = price_feed
        self._config = config or ExecutionConfig()
        self._clock = clock or ClockFactory.get_clock()
        self._rng = rng or random.Random()

        self._stats = {
            "orders_filled": 0,
            "orders_rejected": 0,
            "orders_failed": 0,
        }
        self._stats_lock = threading.Lock()

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    def execute_market_order(
        self,
        competition_id: str,
        user_id: str,
        pair: str,
        side: Any,
        lots: Any,
        stop_loss_price: Optional[Any] = None,
        take_profit_price: Optional[Any] = None,
        spread_markup_pips: Optional[Any] = None,
        max_slippage_pips: Optional[Any] = None,
    ) -> ExecutionResult:
        """
        Fill a market order immediately at the current quote.

        Args:
            competition_id: Competition to trade in
            user_id: Trader
            pair: Currency pair, e.g. EUR-USD
            side: Side or "buy"/"sell"
            lots: Size in lots (1.0 = 100,000 units)
            stop_loss_price: Attached stop-loss (replaces on increase)
            take_profit_price: Attached take-profit (replaces on increase)
            spread_markup_pips: Overrides the competition markup
            max_slippage_pips: Overrides the competition slippage bound

        Returns:
            ExecutionResult
        """
        def fill(session: Session) -> ExecutionResult:
            return self._execute(
                session,
                competition_id,
                user_id,
                pair,
                side,
                lots,
                stop_loss_price,
                take_profit_price,
                spread_markup_pips,
                max_slippage_pips,
            )

        return self._run_fill("execute_market_order", competition_id, user_id, fill)

    def partial_close_position(
        self,
        competition_id: str,
        user_id: str,
        position_id: str,
        close_lots: Optional[Any] = None,
        close_percentage: Optional[Any] = None,
    ) -> ExecutionResult:
        """
        Close part of a position with an opposite-side market order.

        Exactly one of close_lots / close_percentage is used
        (close_lots wins when both are given). The size is clamped
        to the open quantity, so an oversize request closes fully.

        The position is resolved and filled in one transaction under
        the entry lock. The fill never opens or flips a position.
        """
        def close(session: Session) -> ExecutionResult:
            repo = ExecutionRepository(session)
            repo.get_entry(competition_id, user_id, for_update=True)
            position = repo.get_position_by_id(competition_id, user_id, position_id, for_update=True)
            if position is None:
                raise NotFoundError(
                    "Position not found",
                    code="POSITION_NOT_FOUND",
                    record_id=position_id,
                )
            units = self._resolve_close_units(position.quantity_units, close_lots, close_percentage)
            units = min(units, position.quantity_units)

            return self._execute(
                session,
                competition_id,
                user_id,
                position.pair,
                position.side.opposite,
                units_to_exact_lots(units),
                None,
                None,
                None,
                None,
                reduce_position_id=position_id,
            )

        return self._run_fill("partial_close_position", competition_id, user_id, close)

    def update_position_sltp(
        self,
        competition_id: str,
        user_id: str,
        position_id: str,
        stop_loss_price: Any = UNSET,
        take_profit_price: Any = UNSET,
    ) -> SLTPResult:
        """
        Replace stop-loss / take-profit on an open position.

        UNSET keeps the current value, None clears it. Metadata only:
        no fill, no P&L.
        """
        try:
            with transaction_scope(self._session_factory) as session:
                repo = ExecutionRepository(session)
                position = repo.get_position_by_id(competition_id, user_id, position_id, for_update=True)
                if position is None:
                    raise NotFoundError(
                        "Position not found",
                        code="POSITION_NOT_FOUND",
                        record_id=position_id,
                    )

                if stop_loss_price is not UNSET:
                    position.stop_loss_price = self._optional_price(stop_loss_price, "stop_loss_price")
                if take_profit_price is not UNSET:
                    position.take_profit_price = self._optional_price(take_profit_price, "take_profit_price")
                position.updated_at = self._clock.now()
                session.flush()
                record = repo.model_to_position(position)
        except (ArenaError, DatabasePersistenceError) as e:
            detail = to_error_detail(e)
            logger.warning(f"update_position_sltp rejected | position={position_id}: {detail.code}")
            return SLTPResult(success=False, error=detail)

        logger.info(
            f"SL/TP updated | position={position_id} sl={record.stop_loss_price} "
            f"tp={record.take_profit_price}"
        )
        return SLTPResult(success=True, position=record)

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    def get_deals(self, competition_id: str, user_id: str) -> List[DealRecord]:
        """All deals of a user in a competition, oldest first."""
        with self._session_factory() as session:
            repo = ExecutionRepository(session)
            return [repo.model_to_deal(m) for m in repo.list_deals(competition_id, user_id)]

    def get_trades(self, competition_id: str, user_id: str) -> List[TradeRecord]:
        """All trades of a user in a competition, oldest first."""
        with self._session_factory() as session:
            repo = ExecutionRepository(session)
            return [repo.model_to_trade(m) for m in repo.list_trades(competition_id, user_id)]

    def get_positions(self, competition_id: str, user_id: str) -> List[PositionRecord]:
        """Open positions of a user in a competition."""
        with self._session_factory() as session:
            repo = ExecutionRepository(session)
            return [repo.model_to_position(m) for m in repo.list_positions(competition_id, user_id)]

    def get_statistics(self) -> Dict[str, int]:
        """Get execution statistics."""
        with self._stats_lock:
            return dict(self._stats)

    # --------------------------------------------------------
    # EQUITY
    # --------------------------------------------------------

    def refresh_entry_equity(
        self,
        competition_id: str,
        user_id: str,
        session: Optional[Session] = None,
    ) -> Optional[EquitySnapshot]:
        """
        Mark an entry to market.

        equity = cash + unrealized P&L of open positions (longs at
        the bid, shorts at the ask; pairs without a quote count 0).
        Updates the high-water mark and draw-down, and disqualifies
        the entry when the competition's draw-down limit is exceeded.

        Returns:
            EquitySnapshot, or None when the entry does not exist
        """
        with session_scope(self._session_factory, session) as s:
            repo = ExecutionRepository(s)
            entry = repo.get_entry(competition_id, user_id, for_update=True)
            if entry is None:
                return None

            unrealized = 0
            for position in repo.list_positions(competition_id, user_id):
                quote = self._price_feed.get_quote(position.pair)
                if quote is None:
                    continue
                unrealized += calculate_pnl_cents(
                    position.pair,
                    position.side,
                    position.avg_entry_price,
                    mark_price(position.side, quote.bid, quote.ask),
                    position.quantity_units,
                )

            entry.equity_cents = entry.cash_cents + unrealized
            entry.max_equity_cents = max(entry.max_equity_cents, entry.equity_cents)

            drawdown = Decimal("0")
            if entry.max_equity_cents > 0:
                drawdown = (
                    Decimal(entry.max_equity_cents - entry.equity_cents)
                    / Decimal(entry.max_equity_cents)
                    * 100
                ).quantize(_PCT_QUANTUM)
            entry.max_drawdown_pct = max(Decimal(entry.max_drawdown_pct or 0), drawdown)

            competition = repo.get_competition(competition_id)
            limit = competition.max_drawdown_pct if competition else None
            if limit is not None and not entry.dq and drawdown > Decimal(limit):
                entry.dq = True
                entry.dq_reason = f"max drawdown {drawdown}% exceeded limit {limit}%"
                logger.warning(
                    f"Entry disqualified | competition={competition_id} user={user_id} "
                    f"drawdown={drawdown}% limit={limit}%"
                )

            s.flush()
            return EquitySnapshot(
                competition_id=competition_id,
                user_id=user_id,
                cash_cents=entry.cash_cents,
                unrealized_pnl_cents=unrealized,
                equity_cents=entry.equity_cents,
                max_equity_cents=entry.max_equity_cents,
                drawdown_pct=drawdown,
                max_drawdown_pct=entry.max_drawdown_pct,
                dq=entry.dq,
            )

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _execute(
        self,
        session: Session,
        competition_id: str,
        user_id: str,
        pair: str,
        side: Any,
        lots: Any,
        stop_loss_price: Optional[Any],
        take_profit_price: Optional[Any],
        spread_markup_pips: Optional[Any],
        max_slippage_pips: Optional[Any],
        reduce_position_id: Optional[str] = None,
    ) -> ExecutionResult:
        side = self._parse_side(side)
        if not is_known_pair(pair):
            raise ValidationError(f"Unknown pair: {pair}", code="INVALID_PAIR", field_name="pair", value=pair)

        units = self._parse_units(lots)
        stop_loss = self._optional_price(stop_loss_price, "stop_loss_price")
        take_profit = self._optional_price(take_profit_price, "take_profit_price")

        repo = ExecutionRepository(session)

        competition = repo.get_competition(competition_id)
        if competition is None:
            raise NotFoundError(
                "Competition not found",
                code="COMPETITION_NOT_FOUND",
                record_id=competition_id,
            )
        if competition.status != CompetitionStatus.RUNNING:
            raise StateConflictError(
                "Competition is not running",
                current_state=competition.status.value,
                code="COMPETITION_NOT_RUNNING",
            )
        if competition.allowed_pairs and pair not in competition.allowed_pairs:
            raise ValidationError(
                f"Pair {pair} is not allowed in this competition",
                code="INVALID_PAIR",
                field_name="pair",
                value=pair,
            )

        entry = repo.get_entry(competition_id, user_id, for_update=True)
        if entry is None:
            raise NotFoundError(
                "Entry not found",
                code="ENTRY_NOT_FOUND",
                context={"competition_id": competition_id, "user_id": user_id},
            )
        if entry.dq:
            raise StateConflictError(
                "Entry is disqualified",
                current_state="disqualified",
                code="ENTRY_DISQUALIFIED",
            )

        quote = self._price_feed.get_quote(pair)
        if quote is None:
            raise UpstreamUnavailableError(
                f"No quote available for {pair}",
                code="NO_QUOTE_AVAILABLE",
                context={"pair": pair},
            )

        markup = self._first_set(
            spread_markup_pips,
            competition.spread_markup_pips,
            self._config.default_spread_markup_pips,
        )
        slippage = self._first_set(
            max_slippage_pips,
            competition.max_slippage_pips,
            self._config.default_max_slippage_pips,
        )
        fill_price = calculate_fill_price(pair, side, quote.bid, quote.ask, markup, slippage, self._rng)

        position = repo.get_position(competition_id, user_id, pair)
        if reduce_position_id is not None:
            # reduce-only: the fill must oppose the same position row
            if position is None or position.id != reduce_position_id or position.side == side:
                raise NotFoundError(
                    "Position not found",
                    code="POSITION_NOT_FOUND",
                    record_id=reduce_position_id,
                )
            units = min(units, position.quantity_units)
        current = None
        if position is not None:
            current = NetPosition(position.side, position.quantity_units, position.avg_entry_price)
        outcome = net_fill(pair, current, side, units, fill_price)

        now = self._clock.now()
        deals, position = self._apply_outcome(
            repo, competition_id, user_id, pair, side, fill_price,
            outcome, position, stop_loss, take_profit, now,
        )

        pnl = outcome.realized_pnl_cents
        self._apply_realized_pnl(entry, pnl)
        entry.last_order_at = now
        session.flush()

        return ExecutionResult(
            success=True,
            result_code=ExecutionResultCode.SUCCESS,
            deals=[repo.model_to_deal(d) for d in deals],
            position=repo.model_to_position(position) if position is not None else None,
            realized_pnl_cents=pnl,
            action=outcome.action,
            fill_price=fill_price,
        )

    def _apply_outcome(
        self,
        repo: ExecutionRepository,
        competition_id: str,
        user_id: str,
        pair: str,
        side: Side,
        fill_price: Decimal,
        outcome: NettingOutcome,
        position: Optional[PositionModel],
        stop_loss: Optional[Decimal],
        take_profit: Optional[Decimal],
        now,
    ):
        """Write the netting outcome. Returns (deals, resulting position)."""
        deals: List[DealModel] = []
        action = outcome.action

        def deal(trade: TradeModel, units: int, kind: DealKind, pnl: int) -> None:
            model = DealModel(
                trade_id=trade.id,
                competition_id=competition_id,
                user_id=user_id,
                pair=pair,
                side=side,
                units=units,
                lots=units_to_lots(units),
                price=fill_price,
                kind=kind,
                realized_pnl_cents=pnl,
                created_at=now,
            )
            repo.add(model)
            deals.append(model)

        def open_new(units: int) -> PositionModel:
            trade = TradeModel(
                competition_id=competition_id,
                user_id=user_id,
                pair=pair,
                side_initial=side,
                total_in_units=units,
                total_out_units=0,
                avg_entry_price=fill_price,
                realized_pnl_cents=0,
                status=TradeStatus.OPEN,
                opened_at=now,
            )
            repo.add(trade)
            new_position = PositionModel(
                competition_id=competition_id,
                user_id=user_id,
                pair=pair,
                trade_id=trade.id,
                side=side,
                quantity_units=units,
                avg_entry_price=fill_price,
                stop_loss_price=stop_loss,
                take_profit_price=take_profit,
                realized_pnl_cents=0,
                opened_at=now,
                updated_at=now,
            )
            repo.add(new_position)
            deal(trade, units, DealKind.IN, 0)
            return new_position

        if action is NettingAction.OPEN:
            return deals, open_new(outcome.opened_units)

        trade = repo.get_trade(position.trade_id)
        if trade is None:
            raise NotFoundError(
                "Open position has no trade",
                code="TRADE_NOT_FOUND",
                record_id=position.trade_id,
            )

        if action is NettingAction.INCREASE:
            position.quantity_units = outcome.quantity_units
            position.avg_entry_price = outcome.avg_entry_price
            if stop_loss is not None:
                position.stop_loss_price = stop_loss
            if take_profit is not None:
                position.take_profit_price = take_profit
            position.updated_at = now
            trade.total_in_units += outcome.opened_units
            trade.avg_entry_price = outcome.avg_entry_price
            deal(trade, outcome.opened_units, DealKind.IN, 0)
            return deals, position

        pnl = outcome.realized_pnl_cents
        trade.total_out_units += outcome.closed_units
        trade.realized_pnl_cents += pnl

        if action is NettingAction.REDUCE:
            position.quantity_units = outcome.quantity_units
            position.realized_pnl_cents += pnl
            position.updated_at = now
            deal(trade, outcome.closed_units, DealKind.OUT, pnl)
            return deals, position

        # CLOSE and FLIP both close the current trade in full
        trade.status = TradeStatus.CLOSED
        trade.avg_exit_price = fill_price
        trade.closed_at = now
        deal(trade, outcome.closed_units, DealKind.OUT, pnl)
        repo.delete_position(position)

        if action is NettingAction.CLOSE:
            return deals, None

        return deals, open_new(outcome.opened_units)

    @staticmethod
    def _apply_realized_pnl(entry: EntryModel, pnl: int) -> None:
        entry.cash_cents += pnl
        entry.equity_cents += pnl
        entry.max_equity_cents = max(entry.max_equity_cents, entry.equity_cents)

    @staticmethod
    def _resolve_close_units(
        quantity: int,
        close_lots: Optional[Any],
        close_percentage: Optional[Any],
    ) -> int:
        try:
            if close_lots is not None:
                units = lots_to_units(close_lots)
            elif close_percentage is not None:
                units = round_half_up(Decimal(quantity) * to_decimal(close_percentage) / 100)
            else:
                raise ValidationError(
                    "close_lots or close_percentage is required",
                    code="INVALID_REQUEST",
                )
        except (InvalidOperation, ValueError, TypeError) as e:
            raise ValidationError("Invalid close size", code="INVALID_LOT_SIZE", cause=e)

        if units <= 0:
            raise ValidationError("Close size must be positive", code="INVALID_LOT_SIZE", value=units)
        return units

    @staticmethod
    def _parse_side(side: Any) -> Side:
        try:
            return Side(side.lower() if isinstance(side, str) else side)
        except ValueError:
            raise ValidationError(f"Invalid side: {side}", code="INVALID_REQUEST", field_name="side", value=side)

    @staticmethod
    def _parse_units(lots: Any) -> int:
        try:
            units = lots_to_units(lots)
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError("Invalid lot size", code="INVALID_LOT_SIZE", field_name="lots", value=lots)
        if units <= 0:
            raise ValidationError(
                "Lot size must convert to at least one unit",
                code="INVALID_LOT_SIZE",
                field_name="lots",
                value=lots,
            )
        return units

    @staticmethod
    def _optional_price(value: Optional[Any], field_name: str) -> Optional[Decimal]:
        if value is None:
            return None
        try:
            price = to_decimal(value)
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f"Invalid {field_name}", code="INVALID_REQUEST", field_name=field_name, value=value)
        if not price.is_finite() or price <= 0:
            raise ValidationError(f"Invalid {field_name}", code="INVALID_REQUEST", field_name=field_name, value=value)
        return price

    @staticmethod
    def _first_set(*values: Optional[Any]) -> Any:
        for value in values:
            if value is not None:
                return value
        return None

    def _run_fill(
        self,
        operation: str,
        competition_id: str,
        user_id: str,
        fn: Callable[[Session], ExecutionResult],
    ) -> ExecutionResult:
        """Run one fill in its own transaction and turn errors into results."""
        try:
            with transaction_scope(self._session_factory) as session:
                result = fn(session)
        except (ArenaError, DatabasePersistenceError) as e:
            return self._create_failed_result(operation, competition_id, user_id, e)

        self._count("orders_filled")
        deal = result.deal
        logger.info(
            f"Order filled | competition={competition_id} user={user_id} pair={deal.pair} "
            f"side={deal.side.value} units={sum(d.units for d in result.deals)} "
            f"price={result.fill_price} action={result.action.value} "
            f"pnl_cents={result.realized_pnl_cents}"
        )
        return result

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def _create_failed_result(
        self,
        operation: str,
        competition_id: str,
        user_id: str,
        error: Exception,
    ) -> ExecutionResult:
        detail = to_error_detail(error)
        if isinstance(error, ArenaError):
            self._count("orders_rejected")
            logger.warning(
                f"{operation} rejected | competition={competition_id} user={user_id} "
                f"code={detail.code}: {detail.message}"
            )
        else:
            self._count("orders_failed")
            logger.error(
                f"{operation} failed | competition={competition_id} user={user_id}: {error}",
                exc_info=True,
            )
        return ExecutionResult.failure(detail)
