"""
Unit tests for the Binance REST price feed.
"""
import httpx
import pytest

from hypobot.core.retry import ServiceUnavailableError
from hypobot.integrations.price_feeds.binance import BinanceClient, Ticker24h

TICKER_PAYLOAD = {
    "symbol": "ETHUSDT",
    "lastPrice": "3100.50",
    "volume": "98765.4",
    "highPrice": "3200.00",
    "lowPrice": "3000.00",
    "priceChangePercent": "-2.10",
}


class TestTicker24h:
    """Tests for Ticker24h."""

    @pytest.mark.parametrize(
        "symbol,label",
        [("BTCUSDT", "BTC/USDT"), ("ETHUSDC", "ETH/USDC"), ("SOLBTC", "SOLBTC"), ("USDT", "USDT")],
    )
    def test_pair_label(self, symbol, label):
        assert Ticker24h.from_api({"symbol": symbol}).pair_label == label

    def test_snapshot_line(self):
        line = Ticker24h.from_api(TICKER_PAYLOAD).snapshot_line()
        assert line == (
            "BINANCE ETH/USDT: price=3100.50 vol24h=98765.4 high=3200.00 "
            "low=3000.00 change=-2.10%"
        )


class TestBinanceClient:
    """Tests for BinanceClient over a mock transport."""

    @pytest.mark.asyncio
    async def test_get_24h_ticker(self, no_retry):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=TICKER_PAYLOAD)

        client = BinanceClient(retry_config=no_retry, transport=httpx.MockTransport(handler))
        try:
            ticker = await client.get_24h_ticker("ethusdt")
        finally:
            await client.close()

        assert ticker.last_price == "3100.50"
        assert requests[0].url.path == "/api/v3/ticker/24hr"
        assert requests[0].url.params["symbol"] == "ETHUSDT"

    @pytest.mark.asyncio
    async def test_server_error(self, no_retry):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        client = BinanceClient(retry_config=no_retry, transport=transport)
        try:
            with pytest.raises(ServiceUnavailableError):
                await client.get_24h_ticker()
        finally:
            await client.close()
