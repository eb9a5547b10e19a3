"""
CLI Tests.

============================================================
PURPOSE
============================================================
Tests for argument parsing, service wiring and the operator
commands against an in-memory database.

============================================================
"""

import pytest

from app import (
    ArenaServices,
    cmd_grant,
    cmd_leaderboard,
    cmd_reconcile,
    cmd_settle_challenge,
    create_parser,
    wire_services,
)
from core.config import ArenaConfig
from database import initialize_database
from database.enums import CompetitionStatus


@pytest.fixture
def services(price_feed):
    config = ArenaConfig.for_testing()
    return wire_services(config, initialize_database(config.database), price_feed)


# ============================================================
# PARSER TESTS
# ============================================================

class TestParser:
    """Tests for create_parser."""

    def test_grant(self):
        """Test positional arguments are typed."""
        args = create_parser().parse_args(["grant", "alice", "1000"])

        assert args.command == "grant"
        assert args.user_id == "alice"
        assert args.amount == 1000

    def test_reconcile_users(self):
        """Test --user is repeatable."""
        args = create_parser().parse_args(["reconcile", "--user", "a", "--user", "b"])

        assert args.users == ["a", "b"]

    def test_feed_defaults(self):
        """Test feed defaults."""
        args = create_parser().parse_args(["--log-level", "DEBUG", "feed"])

        assert args.log_level == "DEBUG"
        assert args.pairs is None
        assert args.seconds == 10.0

    def test_command_required(self):
        """Test a subcommand is mandatory."""
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    def test_invalid_log_format(self):
        """Test log format choices."""
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--log-format", "xml", "init-db"])


# ============================================================
# COMMAND TESTS
# ============================================================

class TestCommands:
    """Tests for the command handlers."""

    def test_wiring(self, services):
        """Test every service shares one database."""
        assert isinstance(services, ArenaServices)
        assert services.betting.enabled

    def test_grant(self, services, capsys):
        """Test grant credits a purchase."""
        assert cmd_grant(services, "alice", 250) == 0

        assert "alice: balance=250 locked=0" in capsys.readouterr().out
        assert services.ledger.get_wallet("alice").balance_tokens == 250

    def test_grant_rejected(self, services, capsys):
        """Test a grant that would overdraw exits non-zero."""
        assert cmd_grant(services, "alice", -50) == 1

        assert "INSUFFICIENT_BALANCE" in capsys.readouterr().err

    def test_reconcile_clean(self, services, capsys):
        """Test a consistent ledger reports OK."""
        cmd_grant(services, "alice", 100)
        cmd_grant(services, "bob", 100)

        assert cmd_reconcile(services, None) == 0

        out = capsys.readouterr().out
        assert "Wallets checked: 2" in out
        assert "OK" in out

    def test_settle_unknown_challenge(self, services, capsys):
        """Test settling a missing challenge exits non-zero."""
        assert cmd_settle_challenge(services, "nope") == 1

        assert "CHALLENGE_NOT_FOUND" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_leaderboard(self, services, capsys):
        """Test the leaderboard prints ranked rows."""
        competition = services.competitions.create_competition(
            "CLI Cup", status=CompetitionStatus.RUNNING
        ).competition
        services.competitions.join_competition(competition.id, "alice")

        assert await cmd_leaderboard(services, competition.id) == 0

        out = capsys.readouterr().out
        assert "1. alice" in out
        assert "equity=100000.00" in out
        assert "return=0.0000%" in out

    @pytest.mark.asyncio
    async def test_leaderboard_empty(self, services, capsys):
        """Test an unknown competition prints no rows."""
        assert await cmd_leaderboard(services, "nope") == 0

        assert "No entries" in capsys.readouterr().out
