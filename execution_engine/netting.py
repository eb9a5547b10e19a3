"""
Execution Engine - Netting.

============================================================
PURPOSE
============================================================
Pure position-netting rules for one fill against the existing
net position in the same pair.

- No position              -> OPEN
- Same side                -> INCREASE (weighted average entry)
- Opposite, smaller        -> REDUCE (P&L on the fill size)
- Opposite, equal          -> CLOSE (P&L on the full position)
- Opposite, larger         -> FLIP (CLOSE, then OPEN the residual
                              on the new side at the fill price)

============================================================
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from database.enums import Side

from .pricing import calculate_pnl_cents, quantize_price
from .types import NettingAction


@dataclass(frozen=True)
class NetPosition:
    """The part of a position netting needs."""

    side: Side
    quantity_units: int
    avg_entry_price: Decimal


@dataclass(frozen=True)
class NettingOutcome:
    """What a fill does to the net position."""

    action: NettingAction
    """Classification of the fill."""

    closed_units: int
    """Units closed against the existing position."""

    opened_units: int
    """Units added on the fill side (OPEN, INCREASE or FLIP residual)."""

    realized_pnl_cents: int
    """P&L realized on closed_units."""

    side: Optional[Side]
    """Resulting side, None when flat."""

    quantity_units: int
    """Resulting size, 0 when flat."""

    avg_entry_price: Optional[Decimal]
    """Resulting average entry, None when flat."""

    @property
    def is_flat(self) -> bool:
        return self.quantity_units == 0


def net_fill(
    pair: str,
    position: Optional[NetPosition],
    side: Side,
    units: int,
    fill_price: Decimal,
) -> NettingOutcome:
    """
    Apply one fill to a net position.

    Args:
        pair: Currency pair (selects the P&L formula)
        position: Current position, or None when flat
        side: Fill side
        units: Fill size (> 0)
        fill_price: Fill price

    Returns:
        NettingOutcome
    """
    if units <= 0:
        raise ValueError("units must be positive")

    if position is None:
        return NettingOutcome(
            action=NettingAction.OPEN,
            closed_units=0,
            opened_units=units,
            realized_pnl_cents=0,
            side=side,
            quantity_units=units,
            avg_entry_price=fill_price,
        )

    qty = position.quantity_units

    if side is position.side:
        new_qty = qty + units
        avg = quantize_price(
            (position.avg_entry_price * qty + fill_price * units) / new_qty
        )
        return NettingOutcome(
            action=NettingAction.INCREASE,
            closed_units=0,
            opened_units=units,
            realized_pnl_cents=0,
            side=side,
            quantity_units=new_qty,
            avg_entry_price=avg,
        )

    closed = min(units, qty)
    pnl = calculate_pnl_cents(pair, position.side, position.avg_entry_price, fill_price, closed)

    if units < qty:
        return NettingOutcome(
            action=NettingAction.REDUCE,
            closed_units=units,
            opened_units=0,
            realized_pnl_cents=pnl,
            side=position.side,
            quantity_units=qty - units,
            avg_entry_price=position.avg_entry_price,
        )

    if units == qty:
        return NettingOutcome(
            action=NettingAction.CLOSE,
            closed_units=qty,
            opened_units=0,
            realized_pnl_cents=pnl,
            side=None,
            quantity_units=0,
            avg_entry_price=None,
        )

    residual = units - qty
    return NettingOutcome(
        action=NettingAction.FLIP,
        closed_units=qty,
        opened_units=residual,
        realized_pnl_cents=pnl,
        side=side,
        quantity_units=residual,
        avg_entry_price=fill_price,
    )
