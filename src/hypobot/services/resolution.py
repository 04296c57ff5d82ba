"""Market resolution lookup.

Given a bet's market reference, find the market on Gamma and decide
whether it has settled and which outcome won. The lookup is deliberately
conservative: any doubt (no match, fuzzy match, indeterminate prices,
upstream errors) reports the market as unresolved so the bet stays
pending instead of being settled against the wrong market.
"""

import time
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import structlog

from hypobot.domain.bet import ResolutionResult
from hypobot.integrations.polymarket.gamma import GammaClient
from hypobot.integrations.polymarket.types import MarketRecord

if TYPE_CHECKING:
    from hypobot.services.metrics import MetricsEmitter

log = structlog.get_logger()

WINNER_THRESHOLD = 0.95
LOSER_THRESHOLD = 0.05


def extract_outcome(market: MarketRecord) -> Optional[str]:
    """Winning outcome label of a settled market, uppercased.

    The first outcome priced at or above 0.95 wins. Failing that, the first
    outcome priced at or below 0.05 loses and its complement (binary
    markets) wins. Returns None when neither threshold is crossed.
    """
    prices = market.outcome_prices
    outcomes = market.outcomes
    if not prices:
        return None

    winner: Optional[int] = None
    for i, price in enumerate(prices):
        if price >= WINNER_THRESHOLD:
            winner = i
            break

    if winner is None:
        for i, price in enumerate(prices):
            if price <= LOSER_THRESHOLD:
                winner = 1 - i if i in (0, 1) else None
                break

    if winner is None or winner >= len(outcomes):
        return None
    return str(outcomes[winner]).strip().upper()


def resolution_from_market(market: MarketRecord) -> ResolutionResult:
    """Resolution of a single market record."""
    if not market.is_closed:
        return ResolutionResult.unresolved(end_date=market.end_date)

    outcome = extract_outcome(market)
    if outcome is None:
        # Closed but not priced out: do not force a result
        return ResolutionResult.unresolved(end_date=market.end_date)

    return ResolutionResult(resolved=True, outcome=outcome, end_date=market.end_date)


def question_matches(candidate: str, question: str) -> bool:
    """Case-insensitive equality or containment in either direction."""
    a = candidate.strip().lower()
    b = question.strip().lower()
    if not a or not b:
        return False
    return a == b or b in a or a in b


class MarketResolver:
    """Resolve bets to markets via condition id, then slug, then search.

    Usage:
        resolver = MarketResolver(gamma)
        result = await resolver.resolve(condition_id=None, market_slug=None,
                                        question="Will X happen?")
    """

    def __init__(
        self,
        gamma: GammaClient,
        metrics: Optional["MetricsEmitter"] = None,
    ):
        self._gamma = gamma
        self._metrics = metrics
        self._log = log.bind(component="market_resolver")

    async def resolve(
        self,
        condition_id: Optional[str] = None,
        market_slug: Optional[str] = None,
        question: str = "",
    ) -> ResolutionResult:
        """Look up a market and report its resolution.

        Each strategy is tried only if the previous one found no market.
        Errors inside a strategy count as "no market found". Never raises.
        """
        started = time.monotonic()
        market = await self.find_market(condition_id, market_slug, question)
        result = (
            resolution_from_market(market)
            if market is not None
            else ResolutionResult.unresolved()
        )

        if self._metrics is not None:
            self._metrics.record_resolution_lookup(
                found=market is not None,
                resolved=result.resolved,
                duration_seconds=time.monotonic() - started,
            )
        return result

    async def find_market(
        self,
        condition_id: Optional[str],
        market_slug: Optional[str],
        question: str,
    ) -> Optional[MarketRecord]:
        """First market found by the ordered lookup strategies."""
        strategies: list[tuple[str, Optional[str], Callable[[str], Awaitable[Optional[MarketRecord]]]]] = [
            ("condition_id", condition_id, self._gamma.get_market_by_condition_id),
            ("slug", market_slug, self._gamma.get_market_by_slug),
            ("search", question, self._search),
        ]

        for step, key, lookup in strategies:
            if not key or not key.strip():
                continue
            try:
                market = await lookup(key)
            except Exception as e:
                self._log.warning(
                    "resolution_lookup_failed",
                    step=step,
                    key=key[:80],
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            if market is not None:
                self._log.debug("resolution_market_found", step=step, question=market.question[:80])
                return market

        return None

    async def _search(self, question: str) -> Optional[MarketRecord]:
        """Search by question text; only a containment match is accepted."""
        for market in await self._gamma.search_markets(question):
            if question_matches(market.question, question):
                return market
        return None
