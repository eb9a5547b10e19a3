#!/usr/bin/env python3
"""
Trading Arena - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Operator CLI for the paper-trading arena core.

- Creates the schema
- Runs the offline ledger reconciliation
- Runs the price feed and prints live quotes
- Grants tokens, prints leaderboards, settles challenges

============================================================
USAGE
============================================================
    python app.py init-db
    python app.py reconcile
    python app.py feed --pairs EUR-USD USD-JPY --seconds 30
    python app.py grant alice 1000
    python app.py leaderboard <competition-id>
    python app.py settle-challenge <challenge-id>

Configuration comes from the environment (and .env), see
core/config.py.

============================================================
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from competitions import CompetitionService
from core.clock import ClockFactory
from core.config import ArenaConfig
from core.logging_config import setup_logging
from database import initialize_database
from database.engine import DatabasePersistenceError
from execution_engine import ExecutionService
from market_data import PriceFeed, create_price_feed
from settlement import BettingService, PvpChallengeService
from wallet_ledger import LedgerReconciler, TransactionKind, WalletLedger


logger = logging.getLogger(__name__)


# ============================================================
# SERVICE WIRING
# ============================================================

@dataclass
class ArenaServices:
    """Every service of the core, wired to one database and feed."""

    session_factory: sessionmaker
    price_feed: PriceFeed
    ledger: WalletLedger
    execution: ExecutionService
    competitions: CompetitionService
    betting: BettingService
    pvp: PvpChallengeService
    reconciler: LedgerReconciler


def wire_services(config: ArenaConfig, session_factory: sessionmaker, price_feed: PriceFeed) -> ArenaServices:
    """
    Wire all services.

    Args:
        config: Arena configuration
        session_factory: Session factory from initialize_database()
        price_feed: Quote source (not started here)
    """
    clock = ClockFactory.get_clock()

    ledger = WalletLedger(session_factory, clock=clock)
    execution = ExecutionService(session_factory, price_feed, config=config.execution, clock=clock)
    competitions = CompetitionService(session_factory, ledger, execution, config=config.execution, clock=clock)
    betting = BettingService(session_factory, ledger, config=config.settlement, clock=clock)
    pvp = PvpChallengeService(
        session_factory,
        ledger,
        competitions,
        execution,
        betting,
        config=config.settlement,
        clock=clock,
    )

    return ArenaServices(
        session_factory=session_factory,
        price_feed=price_feed,
        ledger=ledger,
        execution=execution,
        competitions=competitions,
        betting=betting,
        pvp=pvp,
        reconciler=LedgerReconciler(session_factory, clock=clock),
    )


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="trading-arena",
        description="Paper-trading FX competition core",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default=None,
        help="Logging format (default: LOG_FORMAT or json)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create all tables")

    reconcile = commands.add_parser("reconcile", help="Check every wallet against its transactions")
    reconcile.add_argument("--user", action="append", dest="users", metavar="USER_ID",
                           help="Only check this user (repeatable)")

    feed = commands.add_parser("feed", help="Run the price feed and print quotes")
    feed.add_argument("--pairs", nargs="+", metavar="PAIR", help="Pairs to stream (default: all)")
    feed.add_argument("--seconds", type=float, default=10.0, help="How long to run (default: 10)")

    grant = commands.add_parser("grant", help="Credit tokens to a user (purchase)")
    grant.add_argument("user_id")
    grant.add_argument("amount", type=int)

    leaderboard = commands.add_parser("leaderboard", help="Print a competition leaderboard")
    leaderboard.add_argument("competition_id")

    settle = commands.add_parser("settle-challenge", help="Settle an active peer challenge")
    settle.add_argument("challenge_id")

    return parser


# ============================================================
# COMMANDS
# ============================================================

def cmd_reconcile(services: ArenaServices, user_ids: Optional[List[str]]) -> int:
    result = services.reconciler.reconcile(user_ids)
    print(f"Wallets checked: {result.wallets_checked}")
    for mismatch in result.mismatches:
        print(f"  {mismatch.mismatch_type.value} {mismatch.user_id}: {mismatch.message}")
    print("OK" if result.success else f"{len(result.mismatches)} mismatch(es)")
    return 0 if result.success else 2


async def cmd_feed(services: ArenaServices, seconds: float) -> int:
    feed = services.price_feed
    await feed.start()
    try:
        elapsed = 0.0
        interval = max(feed.refresh_interval_seconds, 0.5)
        while elapsed < seconds:
            await asyncio.sleep(interval)
            elapsed += interval
            for pair in feed.pairs:
                quote = feed.get_quote(pair)
                if quote is not None:
                    print(f"{pair:8} bid={quote.bid} ask={quote.ask} {quote.status.value}")
    finally:
        await feed.stop()
    return 0


def cmd_grant(services: ArenaServices, user_id: str, amount: int) -> int:
    services.ledger.get_or_create_wallet(user_id)
    result = services.ledger.apply_token_transaction(
        user_id,
        TransactionKind.PURCHASE,
        amount,
        metadata={"source": "cli"},
    )
    if not result.success:
        print(f"Error: {result.error.code} {result.error.message}", file=sys.stderr)
        return 1
    print(f"{user_id}: balance={result.new_balance} locked={result.new_locked}")
    return 0


async def cmd_leaderboard(services: ArenaServices, competition_id: str) -> int:
    feed = services.price_feed
    await feed.start()
    try:
        await feed.refresh()
        rows = await asyncio.to_thread(services.competitions.get_leaderboard, competition_id)
    finally:
        await feed.stop()

    if not rows:
        print("No entries")
        return 0
    for row in rows:
        dq = " DQ" if row.dq else ""
        print(f"{row.rank:3}. {row.user_id:20} equity={row.equity_cents / 100:.2f} "
              f"return={row.return_pct}%{dq}")
    return 0


def cmd_settle_challenge(services: ArenaServices, challenge_id: str) -> int:
    result = services.pvp.settle_challenge(challenge_id)
    if not result.success:
        print(f"Error: {result.error.code} {result.error.message}", file=sys.stderr)
        return 1
    print(f"winner={result.winner_id} payout={result.payout_tokens} rake={result.rake_tokens}"
          + (" (already settled)" if result.already_settled else ""))
    return 0


# ============================================================
# MAIN FUNCTION
# ============================================================

async def run_application(args, config: ArenaConfig) -> int:
    """
    Run one CLI command.

    Returns:
        Exit code
    """
    session_factory = initialize_database(config.database)
    price_feed = create_price_feed(config.price_feed, pairs=getattr(args, "pairs", None))
    services = wire_services(config, session_factory, price_feed)

    if args.command == "init-db":
        print("Database initialized")
        return 0
    if args.command == "reconcile":
        return cmd_reconcile(services, args.users)
    if args.command == "feed":
        return await cmd_feed(services, args.seconds)
    if args.command == "grant":
        return cmd_grant(services, args.user_id, args.amount)
    if args.command == "leaderboard":
        return await cmd_leaderboard(services, args.competition_id)
    if args.command == "settle-challenge":
        return cmd_settle_challenge(services, args.challenge_id)
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    config = ArenaConfig.from_env()
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    setup_logging(config.log_level, config.log_format)

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(run_application(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except DatabasePersistenceError as e:
        logger.error(f"Database error: {e}", exc_info=True)
        return 1


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
