"""
Unit tests for TradeExecutor.

Tests:
- Request validation
- Live midpoint pricing with fallback to the requested price
- Dry-run short circuit
- Delivery results passed through from the submitter
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from hypobot.core.retry import NetworkError, ValidationError
from hypobot.integrations.polymarket.clob import CLOBClient, round_to_tick
from hypobot.integrations.polymarket.submission import OrderSubmitter
from hypobot.integrations.polymarket.types import (
    OrderRequest,
    OrderSide,
    OrderType,
    PolymarketSettings,
    SubmitResult,
)
from hypobot.services.execution import TradeExecutor, parse_order_side


@pytest.fixture
def clob():
    clob = MagicMock(spec=CLOBClient)
    clob.settings = PolymarketSettings()
    clob.get_midpoint = AsyncMock(return_value=None)
    return clob


@pytest.fixture
def submitter():
    submitter = MagicMock(spec=OrderSubmitter)
    submitter.submit = AsyncMock(
        return_value=SubmitResult(submitted=True, order_id="0xorder", status="matched", transport="direct")
    )
    return submitter


class TestRoundToTick:
    """Tests for round_to_tick()."""

    @pytest.mark.parametrize(
        "price,expected",
        [(0.424, 0.42), (0.425, 0.43), (0.4251, 0.43), (0.5, 0.5), (0.999, 1.0)],
    )
    def test_rounding(self, price, expected):
        assert round_to_tick(price) == expected


class TestValidateRequest:
    """Tests for TradeExecutor.validate_request()."""

    def test_valid(self):
        token, side, price, size = TradeExecutor.validate_request(
            {"tokenId": "111", "side": "buy", "price": "0.42", "size": 10}
        )
        assert token == "111"
        assert side is OrderSide.BUY
        assert price == pytest.approx(0.42)
        assert size == pytest.approx(10.0)

    @pytest.mark.parametrize("missing", ["tokenId", "side", "price", "size"])
    def test_missing_field(self, missing):
        payload = {"tokenId": "111", "side": "BUY", "price": 0.42, "size": 10}
        del payload[missing]
        with pytest.raises(ValidationError, match="Missing required fields"):
            TradeExecutor.validate_request(payload)

    def test_bad_side(self):
        with pytest.raises(ValidationError, match="BUY or SELL"):
            parse_order_side("HOLD")

    def test_non_numeric(self):
        with pytest.raises(ValidationError, match="numeric"):
            TradeExecutor.validate_request({"tokenId": "1", "side": "SELL", "price": "cheap", "size": 1})


class TestTradeExecutor:
    """Tests for TradeExecutor.execute()."""

    @pytest.mark.asyncio
    async def test_midpoint_overrides_requested_price(self, clob, submitter):
        clob.get_midpoint.return_value = 0.5349
        executor = TradeExecutor(clob, submitter, dry_run=False)

        result = await executor.execute("111", OrderSide.BUY, 0.40, 10)

        assert result.final_price == pytest.approx(0.53)
        submitter.submit.assert_awaited_once_with(
            OrderRequest(token_id="111", side=OrderSide.BUY, size=10, price=0.53)
        )

    @pytest.mark.asyncio
    async def test_configured_order_type(self, clob, submitter):
        clob.settings = PolymarketSettings(order_type=OrderType.GTC)
        executor = TradeExecutor(clob, submitter, dry_run=False)

        await executor.execute("111", OrderSide.BUY, 0.40, 10)

        order = submitter.submit.await_args.args[0]
        assert order.order_type is OrderType.GTC

    @pytest.mark.asyncio
    async def test_requested_price_when_midpoint_missing(self, clob, submitter):
        clob.get_midpoint.side_effect = NetworkError("clob down")
        executor = TradeExecutor(clob, submitter, dry_run=False)

        result = await executor.execute("111", OrderSide.SELL, 0.417, 10)

        assert result.final_price == pytest.approx(0.42)

    @pytest.mark.asyncio
    async def test_dry_run_does_not_submit(self, clob, submitter):
        executor = TradeExecutor(clob, submitter, dry_run=True)

        result = await executor.execute("111", OrderSide.BUY, 0.42, 10)

        assert result.success is True
        assert result.submitted is False
        assert result.to_dict()["dryRun"] is True
        assert result.status == "dry_run"
        submitter.submit.assert_not_called()

    @pytest.mark.asyncio
    async def test_submitted_result(self, clob, submitter):
        executor = TradeExecutor(clob, submitter, dry_run=False)

        data = (await executor.execute("111", OrderSide.BUY, 0.42, 10)).to_dict()

        assert data["success"] is True
        assert data["submitted"] is True
        assert data["orderId"] == "0xorder"
        assert data["transport"] == "direct"
        assert "error" not in data

    @pytest.mark.asyncio
    async def test_rejection_reported(self, clob, submitter):
        submitter.submit.return_value = SubmitResult(
            submitted=False, error="not enough balance", transport="direct"
        )
        executor = TradeExecutor(clob, submitter, dry_run=False)

        result = await executor.execute("111", OrderSide.BUY, 0.42, 10)

        assert result.success is False
        assert result.to_dict()["error"] == "not enough balance"
