"""Bet domain model.

A bet is one trade idea recorded by a cycle. It starts ``pending`` and is
moved to ``won`` or ``lost`` exactly once by reconciliation.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from hypobot.core.retry import ValidationError


class BetSide(str, Enum):
    """Normalized direction of a bet on a binary market."""

    BUY = "BUY"    # backs YES
    SELL = "SELL"  # backs NO

    @property
    def backed_outcome(self) -> str:
        return "YES" if self is BetSide.BUY else "NO"


class BetStatus(str, Enum):
    """Lifecycle status of a bet."""

    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    VOID = "void"        # reserved: ambiguous resolution
    EXPIRED = "expired"  # reserved: never resolved

    @property
    def is_settled(self) -> bool:
        """True for statuses that carry a pnl."""
        return self in (BetStatus.WON, BetStatus.LOST)


_SIDE_ALIASES: dict[str, BetSide] = {
    "BUY": BetSide.BUY,
    "YES": BetSide.BUY,
    "BUY_YES": BetSide.BUY,
    "SELL": BetSide.SELL,
    "NO": BetSide.SELL,
    "BUY_NO": BetSide.SELL,
    "SELL_YES": BetSide.SELL,
}


def normalize_side(side: Any) -> BetSide:
    """Map a raw side/action label onto BUY or SELL.

    Raises:
        ValidationError: If the label is not a known alias.
    """
    if isinstance(side, BetSide):
        return side
    key = str(side or "").strip().upper()
    try:
        return _SIDE_ALIASES[key]
    except KeyError:
        raise ValidationError(f"Unknown bet side: {side!r}") from None


def _new_bet_id() -> str:
    return uuid.uuid4().hex


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Bet:
    """A recommended or executed wager."""

    market: str
    side: BetSide
    recommended_price: float
    size: float
    cycle: int = 0
    is_live: bool = False
    condition_id: Optional[str] = None
    market_slug: Optional[str] = None
    token_id: Optional[str] = None
    order_id: Optional[str] = None
    status: BetStatus = BetStatus.PENDING
    resolution: Optional[str] = None
    pnl: Optional[float] = None
    resolved_at: Optional[str] = None
    id: str = field(default_factory=_new_bet_id)
    created_at: str = field(default_factory=_now_iso)

    def __post_init__(self) -> None:
        self.side = normalize_side(self.side)
        self.status = BetStatus(self.status)

    @property
    def partition(self) -> str:
        return "live" if self.is_live else "simulated"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cycle": self.cycle,
            "market": self.market,
            "condition_id": self.condition_id,
            "market_slug": self.market_slug,
            "token_id": self.token_id,
            "order_id": self.order_id,
            "side": self.side.value,
            "recommended_price": self.recommended_price,
            "size": self.size,
            "status": self.status.value,
            "resolution": self.resolution,
            "pnl": self.pnl,
            "is_live": self.is_live,
            "created_at": self.created_at,
            "resolved_at": self.resolved_at,
        }


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of looking a bet's market up. Never persisted."""

    resolved: bool
    outcome: Optional[str] = None
    end_date: Optional[str] = None

    @classmethod
    def unresolved(cls, end_date: Optional[str] = None) -> "ResolutionResult":
        return cls(resolved=False, outcome=None, end_date=end_date)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resolved": self.resolved,
            "outcome": self.outcome,
            "endDate": self.end_date,
        }
