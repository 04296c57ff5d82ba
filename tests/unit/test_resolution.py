"""
Unit tests for market resolution lookup.

Tests:
- Outcome extraction thresholds
- Resolution of open / closed / indeterminate markets
- Lookup step order and error fall-through
- Strict question matching for search results
"""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from hypobot.core.retry import NetworkError
from hypobot.integrations.polymarket.gamma import GammaClient
from hypobot.integrations.polymarket.types import MarketRecord
from hypobot.services.metrics import MetricsEmitter
from hypobot.services.resolution import (
    MarketResolver,
    extract_outcome,
    question_matches,
    resolution_from_market,
)


def record(prices, outcomes=("Yes", "No"), closed=True, resolved=False, question="Q"):
    return MarketRecord(
        question=question,
        outcomes=tuple(outcomes),
        outcome_prices=tuple(prices),
        closed=closed,
        resolved=resolved,
    )


class TestExtractOutcome:
    """Tests for extract_outcome()."""

    @pytest.mark.parametrize(
        "prices,expected",
        [
            ([0.97, 0.03], "YES"),
            ([0.03, 0.97], "NO"),
            ([1.0, 0.0], "YES"),
            ([0.95, 0.05], "YES"),
            ([0.02, 0.90], "NO"),   # loser threshold picks the complement
            ([0.90, 0.04], "YES"),
            ([0.5, 0.5], None),
            ([0.94, 0.06], None),
            ([], None),
        ],
    )
    def test_thresholds(self, prices, expected):
        assert extract_outcome(record(prices)) == expected

    def test_outcome_label_uppercased(self):
        market = record([0.01, 0.99], outcomes=("Trump", "Harris"))
        assert extract_outcome(market) == "HARRIS"

    def test_winner_without_label_is_none(self):
        market = record([0.0, 0.0, 1.0], outcomes=("A", "B"))
        assert extract_outcome(market) is None


class TestResolutionFromMarket:
    """Tests for resolution_from_market()."""

    def test_open_market_unresolved(self):
        assert resolution_from_market(record([0.99, 0.01], closed=False)).resolved is False

    def test_resolved_flag_counts_as_closed(self):
        result = resolution_from_market(record([0.99, 0.01], closed=False, resolved=True))
        assert result.resolved is True
        assert result.outcome == "YES"

    def test_closed_indeterminate_stays_unresolved(self):
        """A closed market priced 0.5/0.5 must not be forced to a result."""
        result = resolution_from_market(record([0.5, 0.5]))
        assert result.resolved is False
        assert result.outcome is None


class TestQuestionMatches:
    """Tests for question_matches()."""

    def test_equal_ignoring_case(self):
        assert question_matches("Will X happen?", "will x happen?")

    def test_containment_either_direction(self):
        assert question_matches("Will X happen by June 30?", "Will X happen")
        assert question_matches("X", "Will X happen?")

    def test_unrelated_rejected(self):
        assert not question_matches("Will Y happen?", "Will X happen?")

    def test_empty_never_matches(self):
        assert not question_matches("", "Will X happen?")
        assert not question_matches("Will X happen?", "  ")


class TestMarketResolver:
    """Tests for MarketResolver lookup order and fallbacks."""

    @pytest.fixture
    def gamma(self):
        gamma = MagicMock(spec=GammaClient)
        gamma.get_market_by_condition_id = AsyncMock(return_value=None)
        gamma.get_market_by_slug = AsyncMock(return_value=None)
        gamma.search_markets = AsyncMock(return_value=[])
        return gamma

    @pytest.mark.asyncio
    async def test_condition_id_first(self, gamma):
        gamma.get_market_by_condition_id.return_value = record([0.97, 0.03])
        resolver = MarketResolver(gamma)

        result = await resolver.resolve(condition_id="0xabc", market_slug="slug", question="Q")

        assert result.resolved is True
        assert result.outcome == "YES"
        gamma.get_market_by_slug.assert_not_called()
        gamma.search_markets.assert_not_called()

    @pytest.mark.asyncio
    async def test_found_open_market_stops_lookup(self, gamma):
        """A step that finds any market wins, even if it is not closed."""
        gamma.get_market_by_condition_id.return_value = record([0.6, 0.4], closed=False)
        gamma.search_markets.return_value = [record([0.97, 0.03], question="Q")]
        resolver = MarketResolver(gamma)

        result = await resolver.resolve(condition_id="0xabc", question="Q")

        assert result.resolved is False
        gamma.search_markets.assert_not_called()

    @pytest.mark.asyncio
    async def test_slug_when_condition_misses(self, gamma):
        gamma.get_market_by_slug.return_value = record([0.03, 0.97])
        resolver = MarketResolver(gamma)

        result = await resolver.resolve(condition_id="0xabc", market_slug="will-x", question="Q")

        assert result.outcome == "NO"
        gamma.get_market_by_condition_id.assert_awaited_once_with("0xabc")
        gamma.get_market_by_slug.assert_awaited_once_with("will-x")

    @pytest.mark.asyncio
    async def test_search_only_with_question(self, gamma):
        gamma.search_markets.return_value = [record([0.97, 0.03], question="Will X happen?")]
        resolver = MarketResolver(gamma)

        result = await resolver.resolve(question="Will X happen?")

        assert result.resolved is True
        gamma.get_market_by_condition_id.assert_not_called()
        gamma.get_market_by_slug.assert_not_called()

    @pytest.mark.asyncio
    async def test_search_rejects_first_hit_that_does_not_match(self, gamma):
        """Never fall back to an unrelated first search result."""
        gamma.search_markets.return_value = [
            record([0.97, 0.03], question="Will Y happen?"),
            record([0.97, 0.03], question="Something else entirely"),
        ]
        resolver = MarketResolver(gamma)

        result = await resolver.resolve(question="Will X happen?")

        assert result.resolved is False
        assert result.outcome is None

    @pytest.mark.asyncio
    async def test_search_picks_matching_result(self, gamma):
        gamma.search_markets.return_value = [
            record([0.97, 0.03], question="Will Y happen?"),
            record([0.02, 0.98], question="Will X happen by Friday?"),
        ]
        resolver = MarketResolver(gamma)

        result = await resolver.resolve(question="Will X happen")

        assert result.outcome == "NO"

    @pytest.mark.asyncio
    async def test_step_error_falls_through(self, gamma):
        gamma.get_market_by_condition_id.side_effect = NetworkError("gamma down")
        gamma.get_market_by_slug.return_value = record([0.97, 0.03])
        resolver = MarketResolver(gamma)

        result = await resolver.resolve(condition_id="0xabc", market_slug="s", question="Q")

        assert result.resolved is True

    @pytest.mark.asyncio
    async def test_all_steps_fail_is_unresolved(self, gamma):
        gamma.get_market_by_condition_id.side_effect = NetworkError("down")
        gamma.get_market_by_slug.side_effect = RuntimeError("bad payload")
        gamma.search_markets.side_effect = NetworkError("down")
        resolver = MarketResolver(gamma)

        result = await resolver.resolve(condition_id="0xabc", market_slug="s", question="Q")

        assert result.resolved is False

    @pytest.mark.asyncio
    async def test_blank_keys_skipped(self, gamma):
        resolver = MarketResolver(gamma)

        result = await resolver.resolve(condition_id="  ", market_slug="", question="")

        assert result.resolved is False
        gamma.get_market_by_condition_id.assert_not_called()
        gamma.get_market_by_slug.assert_not_called()
        gamma.search_markets.assert_not_called()

    @pytest.mark.asyncio
    async def test_records_lookup_metric(self, gamma):
        gamma.get_market_by_condition_id.return_value = record([0.97, 0.03])
        metrics = MetricsEmitter()
        resolver = MarketResolver(gamma, metrics=metrics)

        await resolver.resolve(condition_id="0xabc")

        assert metrics.registry.get_sample_value(
            "hypobot_resolution_lookup_seconds_count", {"result": "resolved"}
        ) == 1.0


class TestMarketResolverOverHttp:
    """MarketResolver against a GammaClient on a mock transport."""

    @pytest.mark.asyncio
    async def test_search_request_parameters(self, make_gamma, gamma_market):
        requests: list[httpx.Request] = []
        question = "Will the Fed cut rates at the next meeting? " * 3
        gamma = make_gamma(
            search=[gamma_market(question=question, prices=[1, 0], closed=True)],
            requests=requests,
        )
        await gamma.connect()
        try:
            result = await MarketResolver(gamma).resolve(question=question)
        finally:
            await gamma.close()

        assert result.outcome == "YES"
        params = requests[0].url.params
        assert params["limit"] == "10"
        assert params["query"] == question[:80]

    @pytest.mark.asyncio
    async def test_http_error_is_unresolved(self, make_gamma):
        gamma = make_gamma(fail_with=503)
        await gamma.connect()
        try:
            result = await MarketResolver(gamma).resolve(condition_id="0xabc", question="Q")
        finally:
            await gamma.close()

        assert result.resolved is False
