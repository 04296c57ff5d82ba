"""Trading cycle orchestration.

One cycle:
1. Build a market snapshot (top Gamma markets + Binance 24h ticker)
2. Ask the ideation oracle for trade ideas
3. Record one pending bet per valid idea
4. For live cycles, submit an order per idea that names a CLOB token
5. Reconcile pending bets and fold newly realized P&L into the bankroll
"""

import asyncio
import math
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import TYPE_CHECKING, Any, Optional

import structlog

from hypobot.core.retry import ValidationError
from hypobot.domain.bet import Bet, normalize_side
from hypobot.integrations.ideation import CycleResult, Hypo, IdeationOracle, OracleError
from hypobot.integrations.polymarket.gamma import GammaClient
from hypobot.integrations.polymarket.types import OrderSide
from hypobot.integrations.price_feeds.binance import BinanceClient
from hypobot.services.execution import TradeExecutor
from hypobot.services.ledger import BetLedger
from hypobot.services.reconciliation import ReconcileSummary, ReconciliationJob

if TYPE_CHECKING:
    from hypobot.services.metrics import MetricsEmitter

log = structlog.get_logger()

DEFAULT_MIN_LIQUIDITY = 15000.0
DEFAULT_MAX_MARKETS = 15
SHARE_STEP = Decimal("0.01")


@dataclass
class CycleOutcome:
    """Everything a cycle produced, ready for the HTTP layer."""

    result: CycleResult
    is_live: bool
    bets: list[Bet] = field(default_factory=list)
    trades: list[dict[str, Any]] = field(default_factory=list)
    reconciliation: Optional[ReconcileSummary] = None
    bankroll: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = self.result.to_dict()
        data["bankroll"] = self.bankroll
        data["oracleBankroll"] = self.result.bankroll
        data["isLive"] = self.is_live
        data["betsRecorded"] = len(self.bets)
        data["trades"] = self.trades
        if self.reconciliation is not None:
            data["reconciliation"] = self.reconciliation.to_dict()
        return data


def format_market_line(question: str, raw_prices: str, volume: float, liquidity: float) -> str:
    return (
        f"{question} | price: {raw_prices} | "
        f"vol: ${round(volume)} | liq: ${round(liquidity)}"
    )


def hypo_to_bet(hypo: Hypo, cycle: int, is_live: bool) -> Bet:
    """Convert a trade idea into a pending bet.

    Raises:
        ValidationError: Unknown action, missing/invalid price or size.
    """
    if not hypo.market.strip():
        raise ValidationError("hypo has no market")
    side = normalize_side(hypo.action)
    if hypo.price is None or not 0.0 < hypo.price < 1.0:
        raise ValidationError(f"hypo price must be in (0, 1), got {hypo.price}")
    if not math.isfinite(hypo.size) or hypo.size < 0:
        raise ValidationError(f"hypo size must be a finite number >= 0, got {hypo.size}")
    return Bet(
        market=hypo.market,
        side=side,
        recommended_price=hypo.price,
        size=hypo.size,
        cycle=cycle,
        is_live=is_live,
        condition_id=hypo.condition_id,
        market_slug=hypo.slug,
        token_id=hypo.token_id,
    )


def stake_to_shares(stake: float, price: float) -> float:
    """Shares bought with ``stake`` dollars at ``price``, rounded down to 0.01."""
    shares = Decimal(str(stake)) / Decimal(str(price))
    return float(shares.quantize(SHARE_STEP, rounding=ROUND_DOWN))


class TradingCycle:
    """Run ideation cycles end to end.

    Usage:
        cycle = TradingCycle(gamma, binance, oracle, ledger, reconciliation, executor)
        outcome = await cycle.run(cycle=4, bankroll=101.5, prompt=prompt)
    """

    def __init__(
        self,
        gamma: GammaClient,
        binance: BinanceClient,
        oracle: IdeationOracle,
        ledger: BetLedger,
        reconciliation: ReconciliationJob,
        executor: TradeExecutor,
        metrics: Optional["MetricsEmitter"] = None,
        min_liquidity: float = DEFAULT_MIN_LIQUIDITY,
        max_markets: int = DEFAULT_MAX_MARKETS,
        binance_symbol: str = "BTCUSDT",
        reconcile_after_cycle: bool = True,
    ):
        self._gamma = gamma
        self._binance = binance
        self._oracle = oracle
        self._ledger = ledger
        self._reconciliation = reconciliation
        self._executor = executor
        self._metrics = metrics
        self._min_liquidity = min_liquidity
        self._max_markets = max_markets
        self._binance_symbol = binance_symbol
        self._reconcile_after_cycle = reconcile_after_cycle
        self._log = log.bind(component="trading_cycle")

    # ============ Market Snapshot ============

    async def polymarket_snapshot(self) -> str:
        try:
            markets = await self._gamma.get_top_markets()
        except Exception as e:
            self._log.warning("snapshot_polymarket_failed", error=str(e))
            return "POLYMARKET: fetch error"

        lines = [
            format_market_line(m.question, m.raw_outcome_prices, m.volume, m.liquidity)
            for m in markets
            if m.liquidity > self._min_liquidity
        ][: self._max_markets]
        body = "\n".join(lines) or "No high-liquidity markets found."
        return f"POLYMARKET LIVE:\n{body}"

    async def binance_snapshot(self) -> str:
        try:
            ticker = await self._binance.get_24h_ticker(self._binance_symbol)
        except Exception as e:
            self._log.warning("snapshot_binance_failed", error=str(e))
            return "BINANCE: fetch error"
        return ticker.snapshot_line()

    async def build_snapshot(self) -> str:
        poly, binance = await asyncio.gather(
            self.polymarket_snapshot(),
            self.binance_snapshot(),
        )
        return f"{poly}\n{binance}"

    # ============ Cycle ============

    async def run(
        self,
        cycle: int,
        bankroll: float,
        prompt: str,
        live: bool = False,
    ) -> CycleOutcome:
        """Execute one cycle.

        Raises:
            OracleError: The LLM API failed; nothing is recorded.
        """
        is_live = bool(live) and not self._executor.dry_run
        if live and not is_live:
            self._log.warning("live_cycle_requested_in_dry_run", cycle=cycle)
        snapshot = await self.build_snapshot()

        try:
            result = await self._oracle.generate(cycle, bankroll, prompt, snapshot)
        except OracleError:
            self._record_oracle("error")
            raise
        self._record_oracle("parse_error" if result.parse_error else "ok")

        bets = self._bets_from_result(result, is_live)
        await self._ledger.record_bets(bets)

        outcome = CycleOutcome(result=result, is_live=is_live, bets=bets)

        if is_live:
            outcome.trades = await self._submit_live_orders(bets)

        running_bankroll = result.bankroll
        if self._reconcile_after_cycle:
            summary = await self._reconciliation.reconcile()
            outcome.reconciliation = summary
            running_bankroll = round(
                running_bankroll + summary.realized_pnl(is_live), 6
            )
        outcome.bankroll = running_bankroll

        await self._ledger.record_cycle(
            cycle=result.cycle,
            bankroll=running_bankroll,
            is_live=is_live,
            sharpe=result.sharpe,
            mdd=result.mdd,
            hypo_count=len(result.hypos),
            rules=result.rules,
            log_text=result.log,
        )
        if self._metrics is not None:
            self._metrics.record_cycle(is_live, running_bankroll, len(bets))

        self._log.info(
            "cycle_completed",
            cycle=result.cycle,
            is_live=is_live,
            hypos=len(result.hypos),
            bets=len(bets),
            trades=len(outcome.trades),
            bankroll=running_bankroll,
        )
        return outcome

    def _bets_from_result(self, result: CycleResult, is_live: bool) -> list[Bet]:
        bets: list[Bet] = []
        for hypo in result.hypos:
            try:
                bets.append(hypo_to_bet(hypo, result.cycle, is_live))
            except ValidationError as e:
                self._log.warning(
                    "hypo_skipped",
                    market=hypo.market[:80],
                    action=hypo.action,
                    error=str(e),
                )
        return bets

    async def _submit_live_orders(self, bets: list[Bet]) -> list[dict[str, Any]]:
        trades: list[dict[str, Any]] = []
        for bet in bets:
            if not bet.token_id:
                self._log.warning("live_bet_without_token", bet_id=bet.id, market=bet.market[:80])
                continue

            shares = stake_to_shares(bet.size, bet.recommended_price)
            if shares <= 0:
                continue

            execution = await self._executor.execute(
                token_id=bet.token_id,
                side=OrderSide(bet.side.value),
                price=bet.recommended_price,
                size=shares,
            )
            if execution.order_id:
                await self._ledger.attach_order(bet.id, execution.order_id)
            trades.append({"betId": bet.id, "market": bet.market, **execution.to_dict()})
        return trades

    def _record_oracle(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_oracle_call(outcome)
