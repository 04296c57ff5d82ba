"""Resolution reconciliation job.

Walks the pending bets oldest first, resolves each against market data,
settles P&L and records it. Bets are processed one at a time; a failure on
one bet is logged and never affects the rest of the batch.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

import structlog

from hypobot.domain.bet import Bet
from hypobot.domain.settlement import settle, status_for_pnl
from hypobot.services.ledger import PNL_DECIMALS, BetLedger
from hypobot.services.resolution import MarketResolver

if TYPE_CHECKING:
    from hypobot.services.metrics import MetricsEmitter

log = structlog.get_logger()

NO_PENDING_MESSAGE = "No pending bets"


@dataclass
class ResolvedBet:
    """One line of the reconciliation summary."""

    id: str
    market: str
    side: str
    price: float
    resolution: str
    pnl: float
    status: str
    is_live: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "market": self.market,
            "side": self.side,
            "price": self.price,
            "resolution": self.resolution,
            "pnl": self.pnl,
            "status": self.status,
        }


@dataclass
class ReconcileSummary:
    """Result of one reconciliation run."""

    checked: int = 0
    results: list[ResolvedBet] = field(default_factory=list)
    errors: int = 0
    message: Optional[str] = None

    @property
    def resolved(self) -> int:
        return len(self.results)

    def realized_pnl(self, is_live: bool) -> float:
        """Sum of newly realized pnl in one partition."""
        return round(
            sum(r.pnl for r in self.results if r.is_live == is_live),
            PNL_DECIMALS,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "checked": self.checked,
            "resolved": self.resolved,
            "results": [r.to_dict() for r in self.results],
            "realized_pnl": {
                "live": self.realized_pnl(True),
                "simulated": self.realized_pnl(False),
            },
        }
        if self.errors:
            data["errors"] = self.errors
        if self.message:
            data["message"] = self.message
        return data


class ReconciliationJob:
    """Settle pending bets whose markets have resolved.

    Safe to run concurrently with itself: the ledger's conditional write
    lets only the first run settle a given bet.
    """

    def __init__(
        self,
        ledger: BetLedger,
        resolver: MarketResolver,
        metrics: Optional["MetricsEmitter"] = None,
    ):
        self._ledger = ledger
        self._resolver = resolver
        self._metrics = metrics
        self._log = log.bind(component="reconciliation")

    async def reconcile(self) -> ReconcileSummary:
        """Run one pass over the pending bets.

        Raises:
            Exception: Only if the pending list itself cannot be read.
        """
        pending = await self._ledger.get_pending_bets()
        summary = ReconcileSummary(checked=len(pending))

        if not pending:
            summary.message = NO_PENDING_MESSAGE
            self._log.info("reconcile_no_pending_bets")
            self._record(summary)
            return summary

        self._log.info("reconcile_started", pending=len(pending))

        for bet in pending:
            try:
                line = await self._reconcile_bet(bet)
            except Exception as e:
                summary.errors += 1
                self._log.error(
                    "bet_reconcile_error",
                    bet_id=bet.id,
                    market=bet.market[:80],
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            if line is not None:
                summary.results.append(line)

        self._log.info(
            "reconcile_completed",
            checked=summary.checked,
            resolved=summary.resolved,
            errors=summary.errors,
            realized_pnl_live=summary.realized_pnl(True),
            realized_pnl_simulated=summary.realized_pnl(False),
        )
        self._record(summary)
        return summary

    async def _reconcile_bet(self, bet: Bet) -> Optional[ResolvedBet]:
        resolution = await self._resolver.resolve(
            condition_id=bet.condition_id,
            market_slug=bet.market_slug,
            question=bet.market,
        )
        if not resolution.resolved or not resolution.outcome:
            return None

        raw_pnl = settle(bet.side, bet.recommended_price, bet.size, resolution.outcome)
        # Status follows the stored, rounded pnl; adding 0.0 turns -0.0 into 0.0
        pnl = round(raw_pnl, PNL_DECIMALS) + 0.0
        status = status_for_pnl(pnl)

        try:
            applied = await self._ledger.resolve_bet(
                bet.id, status, resolution.outcome, pnl
            )
        except Exception as e:
            # Left pending; the next run retries
            self._log.error("bet_update_failed", bet_id=bet.id, error=str(e))
            return None

        if not applied:
            return None

        self._log.info(
            "bet_resolved",
            bet_id=bet.id,
            market=bet.market[:80],
            side=bet.side.value,
            outcome=resolution.outcome,
            status=status.value,
            pnl=pnl,
            is_live=bet.is_live,
        )
        return ResolvedBet(
            id=bet.id,
            market=bet.market,
            side=bet.side.value,
            price=bet.recommended_price,
            resolution=resolution.outcome,
            pnl=pnl,
            status=status.value,
            is_live=bet.is_live,
        )

    def _record(self, summary: ReconcileSummary) -> None:
        if self._metrics is None:
            return
        self._metrics.record_reconcile_run(summary.checked, summary.errors)
        for line in summary.results:
            self._metrics.record_bet_resolved(line.status, line.is_live, line.pnl)
