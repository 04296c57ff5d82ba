"""
Shared pytest fixtures for hypobot tests.
"""
import json
from typing import Any, Callable, Optional

import httpx
import pytest
import pytest_asyncio

from hypobot.core.retry import RetryConfig
from hypobot.integrations.polymarket.gamma import GammaClient
from hypobot.integrations.polymarket.types import PolymarketSettings
from hypobot.services.ledger import BetLedger


def make_market(
    question: str = "Will it rain in London tomorrow?",
    prices: Optional[list[Any]] = None,
    outcomes: Optional[list[str]] = None,
    closed: bool = False,
    resolved: bool = False,
    condition_id: str = "0xcond",
    slug: str = "rain-london",
    token_ids: Optional[list[str]] = None,
    liquidity: float = 20000.0,
    volume: float = 150000.0,
    **extra: Any,
) -> dict[str, Any]:
    """A Gamma /markets element, with JSON-encoded list fields like the real API."""
    market = {
        "question": question,
        "conditionId": condition_id,
        "slug": slug,
        "outcomes": json.dumps(outcomes if outcomes is not None else ["Yes", "No"]),
        "outcomePrices": json.dumps(
            [str(p) for p in (prices if prices is not None else [0.5, 0.5])]
        ),
        "clobTokenIds": json.dumps(token_ids if token_ids is not None else ["111", "222"]),
        "active": not closed,
        "closed": closed,
        "resolved": resolved,
        "endDate": "2026-01-01T00:00:00Z",
        "liquidityNum": liquidity,
        "volumeNum": volume,
    }
    market.update(extra)
    return market


def gamma_transport(
    by_condition: Optional[dict[str, list[dict[str, Any]]]] = None,
    by_slug: Optional[dict[str, list[dict[str, Any]]]] = None,
    search: Optional[list[dict[str, Any]]] = None,
    top: Optional[list[dict[str, Any]]] = None,
    fail_with: Optional[int] = None,
    requests: Optional[list[httpx.Request]] = None,
) -> httpx.MockTransport:
    """MockTransport answering Gamma ``/markets`` queries from canned data."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        if fail_with is not None:
            return httpx.Response(fail_with, json={"error": "boom"})

        params = request.url.params
        if "condition_id" in params:
            return httpx.Response(200, json=(by_condition or {}).get(params["condition_id"], []))
        if "slug" in params:
            return httpx.Response(200, json=(by_slug or {}).get(params["slug"], []))
        if "query" in params:
            return httpx.Response(200, json=search or [])
        if params.get("order") == "liquidityNum":
            return httpx.Response(200, json=top or [])
        return httpx.Response(404, json={"error": "unexpected request"})

    return httpx.MockTransport(handler)


@pytest.fixture
def no_retry() -> RetryConfig:
    """Single-attempt retry config so failures surface immediately."""
    return RetryConfig(max_attempts=1, min_wait_seconds=0, max_wait_seconds=0)


@pytest.fixture
def polymarket_settings() -> PolymarketSettings:
    return PolymarketSettings(
        private_key="0x" + "11" * 32,
        proxy_wallet="0xproxywallet",
        api_key="key",
        api_secret="c2VjcmV0",
        api_passphrase="pass",
        relay_url="https://relay.example",
        relay_secret="relay-secret",
        proxy_url="https://proxy.example",
    )


@pytest.fixture
def make_gamma(no_retry) -> Callable[..., GammaClient]:
    """Factory for a GammaClient backed by ``gamma_transport``."""

    def factory(**kwargs: Any) -> GammaClient:
        return GammaClient(
            PolymarketSettings(),
            retry_config=no_retry,
            transport=gamma_transport(**kwargs),
        )

    return factory


@pytest_asyncio.fixture
async def ledger(tmp_path):
    """Connected BetLedger on a temporary database."""
    store = BetLedger(db_path=str(tmp_path / "bets.db"))
    await store.start()
    yield store
    await store.stop()


@pytest.fixture
def gamma_market() -> Callable[..., dict[str, Any]]:
    """Factory for Gamma market payloads (see ``make_market``)."""
    return make_market
