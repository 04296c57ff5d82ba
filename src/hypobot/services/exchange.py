"""Exchange actions behind the ``POST /polymarket`` endpoint.

Each action is a small coroutine taking the request params and returning
a JSON-able result. Unknown actions and missing params raise
``ValidationError``; lookups that find nothing raise
``ResourceNotFoundError``.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

from hypobot.core.retry import ResourceNotFoundError, ValidationError
from hypobot.integrations.polymarket.clob import CLOBClient
from hypobot.integrations.polymarket.data_api import DataApiClient
from hypobot.integrations.polymarket.gamma import GammaClient
from hypobot.services.execution import TradeExecutor

log = structlog.get_logger()

Action = Callable[[dict[str, Any]], Awaitable[Any]]

CREDS_NOTE = (
    "Save these credentials! Set HYPOBOT_POLYMARKET_API_KEY, "
    "HYPOBOT_POLYMARKET_API_SECRET and HYPOBOT_POLYMARKET_API_PASSPHRASE."
)


class ExchangeGateway:
    """Dispatch named exchange actions to the Polymarket clients."""

    def __init__(
        self,
        clob: CLOBClient,
        gamma: GammaClient,
        data_api: DataApiClient,
        executor: TradeExecutor,
    ):
        self._clob = clob
        self._gamma = gamma
        self._data_api = data_api
        self._executor = executor
        self._log = log.bind(component="exchange_gateway")
        self._actions: dict[str, Action] = {
            "get-prices": self.get_prices,
            "get-orderbook": self.get_orderbook,
            "search-markets": self.search_markets,
            "get-market-tokens": self.get_market_tokens,
            "get-positions": self.get_positions,
            "verify-connection": self.verify_connection,
            "get-wallet-balance": self.get_wallet_balance,
            "get-open-orders": self.get_open_orders,
            "get-trades": self.get_trades,
            "place-trade": self.place_trade,
            "derive-api-key": self.derive_api_key,
        }

    @property
    def actions(self) -> list[str]:
        return list(self._actions)

    async def dispatch(self, action: Optional[str], params: dict[str, Any]) -> Any:
        handler = self._actions.get(action or "")
        if handler is None:
            raise ValidationError(f"Unknown action: {action}")
        self._log.debug("exchange_action", action=action)
        return await handler(params)

    # ============ Market Data ============

    async def get_prices(self, params: dict[str, Any]) -> dict[str, Any]:
        token_ids = params.get("tokenIds") or []
        if not isinstance(token_ids, list):
            raise ValidationError("tokenIds must be a list")
        return {"prices": await self._clob.get_midpoints([str(t) for t in token_ids])}

    async def get_orderbook(self, params: dict[str, Any]) -> dict[str, Any]:
        token_id = _require(params, "tokenId")
        return await self._clob.get_order_book(token_id)

    async def search_markets(self, params: dict[str, Any]) -> dict[str, Any]:
        markets = await self._gamma.search_markets(str(params.get("query") or ""))
        return {"markets": [m.to_tokens_dict() for m in markets]}

    async def get_market_tokens(self, params: dict[str, Any]) -> dict[str, Any]:
        condition_id = _require(params, "conditionId")
        market = await self._gamma.get_market_by_condition_id(condition_id)
        if market is None:
            raise ResourceNotFoundError(f"Market not found: {condition_id}")
        return market.to_tokens_dict()

    # ============ Account ============

    def _wallet(self) -> str:
        wallet = self._clob.settings.proxy_wallet or self._clob.signer_address
        if not wallet:
            raise ValidationError("Wallet not configured")
        return wallet

    async def get_positions(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return await self._data_api.get_positions(self._wallet())

    async def get_wallet_balance(self, params: dict[str, Any]) -> dict[str, Any]:
        wallet = self._wallet()
        collateral, positions_value = await asyncio.gather(
            self._clob.get_collateral_balance(),
            self._data_api.get_positions_value(wallet),
        )
        return {
            "walletAddress": wallet,
            "polymarketUsdc": collateral,
            "positionsValue": positions_value,
            "total": round(collateral + positions_value, 6),
        }

    async def verify_connection(self, params: dict[str, Any]) -> dict[str, Any]:
        """Report whether authenticated CLOB calls work.

        A failing check is part of the report, not an error.
        """
        settings = self._clob.settings
        connected = settings.can_sign and settings.has_api_creds
        result: dict[str, Any] = {
            "connected": connected,
            "verified": False,
            "walletAddress": settings.proxy_wallet,
            "eoaAddress": self._clob.signer_address,
            "transports": list(settings.transports),
        }
        if not connected:
            return result

        try:
            result["balance"] = await self.get_wallet_balance(params)
            result["verified"] = True
        except Exception as e:
            self._log.warning("verify_connection_failed", error=str(e))
            result["error"] = str(e)
        return result

    async def get_open_orders(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        self._require_creds()
        return await self._clob.get_open_orders()

    async def get_trades(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        self._require_creds()
        return await self._clob.get_trades()

    async def derive_api_key(self, params: dict[str, Any]) -> dict[str, Any]:
        if not self._clob.settings.can_sign:
            raise ValidationError("Wallet private key not configured")
        creds = await self._clob.derive_api_creds()
        return {
            "eoaAddress": self._clob.signer_address,
            "proxyAddress": self._clob.settings.proxy_wallet,
            "apiKey": creds.api_key,
            "secret": creds.api_secret,
            "passphrase": creds.api_passphrase,
            "note": CREDS_NOTE,
        }

    # ============ Trading ============

    async def place_trade(self, params: dict[str, Any]) -> dict[str, Any]:
        self._require_creds()
        token_id, side, price, size = TradeExecutor.validate_request(params)
        result = await self._executor.execute(token_id, side, price, size)
        return result.to_dict()

    def _require_creds(self) -> None:
        if not self._clob.settings.has_api_creds:
            raise ValidationError("Polymarket API credentials not configured")


def _require(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not value:
        raise ValidationError(f"Missing required field: {key}")
    return str(value)
