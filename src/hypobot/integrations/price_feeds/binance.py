"""Binance REST price feed.

Only the 24h rolling ticker is needed: it is rendered as one line of the
market snapshot handed to the ideation oracle.
"""

from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog

from hypobot.core.retry import RetryConfig, classify_http_error, retry_with_config

log = structlog.get_logger()

BINANCE_REST_URL = "https://api.binance.com"
DEFAULT_SYMBOL = "BTCUSDT"


@dataclass(frozen=True)
class Ticker24h:
    """24h rolling window statistics for a symbol."""

    symbol: str
    last_price: str
    volume: str
    high_price: str
    low_price: str
    price_change_percent: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Ticker24h":
        return cls(
            symbol=str(data.get("symbol", "")),
            last_price=str(data.get("lastPrice", "")),
            volume=str(data.get("volume", "")),
            high_price=str(data.get("highPrice", "")),
            low_price=str(data.get("lowPrice", "")),
            price_change_percent=str(data.get("priceChangePercent", "")),
        )

    @property
    def pair_label(self) -> str:
        """``BTCUSDT`` -> ``BTC/USDT`` for the common quote assets."""
        for quote in ("USDT", "USDC", "BUSD", "USD"):
            if self.symbol.endswith(quote) and len(self.symbol) > len(quote):
                return f"{self.symbol[: -len(quote)]}/{quote}"
        return self.symbol

    def snapshot_line(self) -> str:
        return (
            f"BINANCE {self.pair_label}: price={self.last_price} "
            f"vol24h={self.volume} high={self.high_price} low={self.low_price} "
            f"change={self.price_change_percent}%"
        )


class BinanceClient:
    """Minimal async client for Binance's public REST API."""

    def __init__(
        self,
        base_url: str = BINANCE_REST_URL,
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._log = log.bind(component="binance_client")
        self._fetch_ticker = retry_with_config(
            retry_config or RetryConfig(),
            log_context={"client": "binance"},
        )(self._fetch_ticker_once)

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _fetch_ticker_once(self, symbol: str) -> dict[str, Any]:
        await self.connect()
        try:
            response = await self._client.get(
                "/api/v3/ticker/24hr", params={"symbol": symbol}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise classify_http_error(e, "binance") from e
        return response.json()

    async def get_24h_ticker(self, symbol: str = DEFAULT_SYMBOL) -> Ticker24h:
        data = await self._fetch_ticker(symbol.upper())
        ticker = Ticker24h.from_api(data)
        self._log.debug("ticker_fetched", symbol=ticker.symbol, price=ticker.last_price)
        return ticker
