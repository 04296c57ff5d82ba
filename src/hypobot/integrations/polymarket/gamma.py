"""Polymarket Gamma API client for market lookup and discovery.

The Gamma API serves market metadata and settled prices. It is separate
from the CLOB API which handles order books and execution.
"""

from typing import Any, Optional

import httpx
import structlog

from hypobot.core.retry import (
    HypobotError,
    RetryConfig,
    classify_http_error,
    retry_with_config,
)
from hypobot.integrations.polymarket.types import MarketRecord, PolymarketSettings

log = structlog.get_logger()

SEARCH_LIMIT = 10
SEARCH_QUERY_MAX_CHARS = 80
TOP_MARKETS_LIMIT = 30


class GammaClientError(HypobotError):
    """Error from Gamma API client."""


class GammaClient:
    """Async HTTP client for the Polymarket Gamma API.

    Every request goes through ``_get_json`` which maps httpx failures onto
    the hypobot error hierarchy and retries the transient ones.
    """

    def __init__(
        self,
        settings: PolymarketSettings,
        timeout: Optional[float] = None,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Gamma client.

        Args:
            settings: Polymarket connection settings.
            timeout: HTTP request timeout in seconds.
            retry_config: Backoff for transient failures.
            transport: Custom httpx transport (tests inject a MockTransport).
        """
        self._base_url = settings.gamma_url.rstrip("/")
        self._timeout = timeout if timeout is not None else settings.timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._log = log.bind(component="gamma_client")
        self._get_json = retry_with_config(
            retry_config or RetryConfig(),
            log_context={"client": "gamma"},
        )(self._get_json_once)

    async def connect(self) -> None:
        """Initialize the HTTP client."""
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )
        self._log.info("gamma_client_connected", base_url=self._base_url)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._log.info("gamma_client_closed")

    async def __aenter__(self) -> "GammaClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            raise GammaClientError("Client not connected. Call connect() first.")
        return self._client

    async def _get_json_once(self, path: str, params: dict[str, Any]) -> Any:
        client = self._ensure_connected()
        try:
            response = await client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise classify_http_error(e, "gamma") from e

        try:
            return response.json()
        except ValueError as e:
            raise GammaClientError("gamma: response is not JSON", cause=e) from e

    async def _get_markets(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        data = await self._get_json("/markets", params)
        if not isinstance(data, list):
            raise GammaClientError(
                f"gamma: expected a list of markets, got {type(data).__name__}"
            )
        return [m for m in data if isinstance(m, dict)]

    async def get_market_by_condition_id(self, condition_id: str) -> Optional[MarketRecord]:
        """Look a market up by its condition ID.

        Gamma ignores filters it does not recognise and returns unrelated
        markets, so the answer only counts when its condition ID matches.

        Returns:
            The matching market, or None.
        """
        markets = await self._get_markets({"condition_id": condition_id, "limit": 1})
        if not markets:
            return None
        market = MarketRecord.from_api(markets[0])
        if (market.condition_id or "").lower() != condition_id.lower():
            self._log.warning(
                "gamma_lookup_mismatch",
                condition_id=condition_id,
                returned=market.condition_id,
            )
            return None
        return market

    async def get_market_by_slug(self, slug: str) -> Optional[MarketRecord]:
        """Look a market up by its URL slug; a different slug means no match."""
        markets = await self._get_markets({"slug": slug, "limit": 1})
        if not markets:
            return None
        market = MarketRecord.from_api(markets[0])
        if market.slug != slug:
            self._log.warning("gamma_lookup_mismatch", slug=slug, returned=market.slug)
            return None
        return market

    async def search_markets(
        self,
        query: str,
        limit: int = SEARCH_LIMIT,
    ) -> list[MarketRecord]:
        """Full-text search over market questions.

        The query is truncated to the first 80 characters. Results are
        returned unfiltered; callers decide what counts as a match.
        """
        markets = await self._get_markets(
            {"limit": limit, "query": query[:SEARCH_QUERY_MAX_CHARS]}
        )
        return [MarketRecord.from_api(m) for m in markets]

    async def get_top_markets(self, limit: int = TOP_MARKETS_LIMIT) -> list[MarketRecord]:
        """Active markets ordered by liquidity, highest first."""
        markets = await self._get_markets(
            {
                "active": "true",
                "limit": limit,
                "order": "liquidityNum",
                "ascending": "false",
            }
        )
        return [MarketRecord.from_api(m) for m in markets]
