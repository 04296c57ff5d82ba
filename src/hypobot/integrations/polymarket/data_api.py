"""Polymarket data API client (wallet positions)."""

from typing import Any, Optional

import httpx
import structlog

from hypobot.core.retry import (
    HypobotError,
    RetryConfig,
    classify_http_error,
    retry_with_config,
)
from hypobot.integrations.polymarket.types import PolymarketSettings

log = structlog.get_logger()


class DataApiError(HypobotError):
    """Error from the data API client."""


class DataApiClient:
    """Async client for ``data-api.polymarket.com``."""

    def __init__(
        self,
        settings: PolymarketSettings,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = settings.data_api_url.rstrip("/")
        self._timeout = settings.timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._log = log.bind(component="data_api_client")
        self._get_json = retry_with_config(
            retry_config or RetryConfig(),
            log_context={"client": "data_api"},
        )(self._get_json_once)

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )
        self._log.info("data_api_client_connected", base_url=self._base_url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get_json_once(self, path: str, params: dict[str, Any]) -> Any:
        if self._client is None:
            raise DataApiError("Client not connected. Call connect() first.")
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise classify_http_error(e, "data_api") from e
        return response.json()

    async def get_positions(self, wallet_address: str) -> list[dict[str, Any]]:
        """Open positions held by a wallet (proxy wallet for Polymarket accounts)."""
        data = await self._get_json("/positions", {"user": wallet_address})
        return data if isinstance(data, list) else []

    async def get_positions_value(self, wallet_address: str) -> float:
        """Sum of ``currentValue`` across a wallet's positions."""
        total = 0.0
        for position in await self.get_positions(wallet_address):
            try:
                total += float(position.get("currentValue") or 0)
            except (TypeError, ValueError):
                continue
        return total
