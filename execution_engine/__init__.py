"""
Execution Engine Package.

============================================================
PURPOSE
============================================================
Fills paper-trading market orders and keeps positions, trades,
deals and competition entries consistent.

CRITICAL PRINCIPLE:
    "One fill, one transaction."
    Position, trade, deals and entry cash change together or
    not at all.

AUTHORITY BOUNDARIES:
    CAN:
        - Fill market orders against the price feed
        - Net fills into positions (open / increase / reduce /
          close / flip)
        - Book realized P&L on the competition entry
        - Mark entries to market and disqualify on draw-down

    MUST NOT:
        - Touch token wallets
        - Change competition status

============================================================
MODULES
============================================================
- types: Records, results and enums
- pricing: Fill price, sizing and P&L math
- netting: Pure position netting
- repository: Database operations
- execution_service: Main execution orchestrator

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    UNSET,
    # Enums
    Side,
    DealKind,
    TradeStatus,
    NettingAction,
    ExecutionResultCode,
    # Dataclasses
    PositionRecord,
    TradeRecord,
    DealRecord,
    ExecutionResult,
    EquitySnapshot,
    SLTPResult,
)

# ============================================================
# PRICING / NETTING
# ============================================================
from .pricing import (
    calculate_fill_price,
    calculate_pnl_cents,
    lots_to_units,
    units_to_lots,
    mark_price,
)
from .netting import NetPosition, NettingOutcome, net_fill

# ============================================================
# CORE COMPONENTS
# ============================================================
from .repository import ExecutionRepository
from .execution_service import ExecutionService


__all__ = [
    "UNSET",
    "Side",
    "DealKind",
    "TradeStatus",
    "NettingAction",
    "ExecutionResultCode",
    "PositionRecord",
    "TradeRecord",
    "DealRecord",
    "ExecutionResult",
    "EquitySnapshot",
    "SLTPResult",
    "calculate_fill_price",
    "calculate_pnl_cents",
    "lots_to_units",
    "units_to_lots",
    "mark_price",
    "NetPosition",
    "NettingOutcome",
    "net_fill",
    "ExecutionRepository",
    "ExecutionService",
]
