"""Realized P&L for a resolved binary bet.

A share bought at ``price`` redeems for 1.0 if the backed outcome wins and
for 0.0 otherwise, so:

    won:  pnl = (1 - price) * size
    lost: pnl = -price * size

No rounding happens here; the ledger rounds when persisting.
"""

import math
from typing import Any, Union

from hypobot.core.retry import ValidationError
from hypobot.domain.bet import BetSide, BetStatus, normalize_side


def settle(
    side: Union[BetSide, str],
    entry_price: float,
    size: float,
    resolved_outcome: str,
) -> float:
    """Compute signed P&L for a bet given the market's winning outcome.

    Args:
        side: BUY/SELL or any accepted alias (YES, BUY_NO, ...).
        entry_price: Per-share entry price in (0, 1).
        size: Stake in quote currency, >= 0.
        resolved_outcome: Winning outcome label, compared case-insensitively.

    Returns:
        Profit (positive) or loss (negative) in quote currency.

    Raises:
        ValidationError: On an unknown side, a price outside (0, 1) or a
            negative size.
    """
    normalized = normalize_side(side)
    price = _as_float(entry_price, "entry_price")
    stake = _as_float(size, "size")

    if not 0.0 < price < 1.0:
        raise ValidationError(f"entry_price must be in (0, 1), got {price}")
    if stake < 0.0:
        raise ValidationError(f"size must be >= 0, got {stake}")

    won = normalized.backed_outcome == str(resolved_outcome).strip().upper()
    if won:
        return (1.0 - price) * stake
    return -price * stake


def status_for_pnl(pnl: float) -> BetStatus:
    """Terminal status implied by the sign of a realized pnl."""
    return BetStatus.WON if pnl >= 0 else BetStatus.LOST


def _as_float(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be numeric, got {value!r}") from None
    if not math.isfinite(number):
        raise ValidationError(f"{name} must be finite, got {value!r}")
    return number
