"""Domain models - bets, resolution results and settlement math."""

from hypobot.domain.bet import (
    Bet,
    BetSide,
    BetStatus,
    ResolutionResult,
    normalize_side,
)
from hypobot.domain.settlement import settle, status_for_pnl

__all__ = [
    "Bet",
    "BetSide",
    "BetStatus",
    "ResolutionResult",
    "normalize_side",
    "settle",
    "status_for_pnl",
]
