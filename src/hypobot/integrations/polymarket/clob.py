"""Polymarket CLOB client.

Wraps the synchronous py-clob-client library with asyncio support by
running every call in a thread pool. Order *signing* happens here; order
*delivery* is left to the submission pipeline so that the signed payload
can travel over whichever network path is reachable.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import structlog
from py_clob_client.client import ClobClient
from py_clob_client.clob_types import (
    ApiCreds,
    AssetType,
    BalanceAllowanceParams,
    OrderArgs,
    RequestArgs,
)
from py_clob_client.constants import POLYGON
from py_clob_client.endpoints import POST_ORDER
from py_clob_client.headers.headers import create_level_2_headers
from py_clob_client.utilities import order_to_json

from hypobot.core.retry import AuthenticationError, HypobotError, ValidationError
from hypobot.integrations.polymarket.types import (
    OrderRequest,
    PolymarketSettings,
    SignedOrder,
    serialize_order_body,
)

log = structlog.get_logger()

PRICE_TICK = Decimal("0.01")
USDC_DECIMALS = Decimal("1e6")


class CLOBClientError(HypobotError):
    """Base error from CLOB API client."""


class OrderSigningError(CLOBClientError):
    """Failed to sign an order."""


def round_to_tick(price: float) -> float:
    """Round a price to the CLOB's 0.01 tick (half up)."""
    return float(Decimal(str(price)).quantize(PRICE_TICK, rounding=ROUND_HALF_UP))


class CLOBClient:
    """Async facade over py-clob-client.

    Public (L0) methods work without credentials. Balance, order and trade
    queries plus order signing need the wallet key and L2 API credentials;
    when only the key is configured the credentials are derived on first use.
    """

    def __init__(
        self,
        settings: PolymarketSettings,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self._settings = settings
        self._executor = executor or ThreadPoolExecutor(max_workers=4)
        self._client: Optional[ClobClient] = None
        self._log = log.bind(component="clob_client")

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def settings(self) -> PolymarketSettings:
        return self._settings

    @property
    def signer_address(self) -> Optional[str]:
        """EOA address of the configured wallet key, if any."""
        if self._client is None:
            return None
        return self._client.get_address()

    async def connect(self) -> None:
        """Create the underlying py-clob-client instance."""
        if self._client is not None:
            return

        settings = self._settings
        creds = (
            ApiCreds(
                api_key=settings.api_key,
                api_secret=settings.api_secret,
                api_passphrase=settings.api_passphrase,
            )
            if settings.has_api_creds
            else None
        )

        def create_client() -> ClobClient:
            if not settings.can_sign:
                return ClobClient(settings.clob_url.rstrip("/"))
            return ClobClient(
                settings.clob_url.rstrip("/"),
                key=settings.private_key,
                chain_id=POLYGON,
                creds=creds,
                signature_type=settings.signature_type,
                funder=settings.proxy_wallet,
            )

        self._client = await self._run_sync(create_client)
        self._log.info(
            "clob_client_connected",
            url=settings.clob_url,
            can_sign=settings.can_sign,
            has_creds=creds is not None,
        )

    async def close(self) -> None:
        self._client = None
        self._executor.shutdown(wait=False)
        self._log.info("clob_client_closed")

    async def __aenter__(self) -> "CLOBClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_connected(self) -> ClobClient:
        if self._client is None:
            raise CLOBClientError("Client not connected. Call connect() first.")
        return self._client

    async def _run_sync(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, lambda: func(*args, **kwargs)
        )

    async def _ensure_l2(self) -> ClobClient:
        """Return a client able to make authenticated calls."""
        client = self._ensure_connected()
        if not self._settings.can_sign:
            raise AuthenticationError("Wallet private key not configured")
        if client.creds is None:
            creds = await self.derive_api_creds()
            client.set_api_creds(creds)
        return client

    # =========================================================================
    # L0 Methods (No Auth)
    # =========================================================================

    async def get_midpoint(self, token_id: str) -> Optional[float]:
        """Midpoint price for a token, or None if the book has no mid."""
        client = self._ensure_connected()
        raw = await self._run_sync(client.get_midpoint, token_id)
        mid = raw.get("mid") if isinstance(raw, dict) else None
        if mid in (None, ""):
            return None
        return float(mid)

    async def get_midpoints(self, token_ids: list[str]) -> dict[str, Optional[float]]:
        """Midpoints for several tokens; a failing token maps to None."""
        prices: dict[str, Optional[float]] = {}
        for token_id in token_ids:
            try:
                prices[token_id] = await self.get_midpoint(token_id)
            except Exception as e:
                self._log.warning("midpoint_failed", token_id=token_id, error=str(e))
                prices[token_id] = None
        return prices

    async def get_order_book(self, token_id: str) -> dict[str, Any]:
        """Order book for a token as plain JSON-able data."""
        client = self._ensure_connected()
        book = await self._run_sync(client.get_order_book, token_id)

        def levels(side: str) -> list[dict[str, str]]:
            raw = book.get(side) if isinstance(book, dict) else getattr(book, side, None)
            result = []
            for level in raw or []:
                if isinstance(level, dict):
                    result.append({"price": str(level.get("price")), "size": str(level.get("size"))})
                else:
                    result.append({"price": str(level.price), "size": str(level.size)})
            return result

        return {
            "token_id": token_id,
            "bids": levels("bids"),
            "asks": levels("asks"),
        }

    # =========================================================================
    # L1/L2 Methods (Authenticated)
    # =========================================================================

    async def derive_api_creds(self) -> ApiCreds:
        """Create or derive the L2 API credentials for the wallet key."""
        client = self._ensure_connected()
        if not self._settings.can_sign:
            raise AuthenticationError("Wallet private key not configured")
        try:
            creds = await self._run_sync(client.create_or_derive_api_creds)
        except Exception as e:
            self._log.error("api_creds_derive_failed", error=str(e))
            raise AuthenticationError("Failed to derive API credentials", cause=e) from e
        if creds is None:
            raise AuthenticationError("Exchange returned no API credentials")
        self._log.info("api_creds_derived", api_key=creds.api_key)
        return creds

    async def get_collateral_balance(self) -> float:
        """USDC collateral held on the exchange, in dollars."""
        client = await self._ensure_l2()
        raw = await self._run_sync(
            client.get_balance_allowance,
            BalanceAllowanceParams(asset_type=AssetType.COLLATERAL),
        )
        balance = Decimal(str(raw.get("balance", 0) or 0)) / USDC_DECIMALS
        return float(balance)

    async def get_open_orders(self) -> list[dict[str, Any]]:
        client = await self._ensure_l2()
        return await self._run_sync(client.get_orders)

    async def get_trades(self) -> list[dict[str, Any]]:
        client = await self._ensure_l2()
        return await self._run_sync(client.get_trades)

    async def sign_order(self, order: OrderRequest) -> SignedOrder:
        """Sign an order and build the authenticated ``POST /order`` request.

        Returns:
            SignedOrder with the JSON body and L2 headers. The body must be
            sent byte-for-byte as ``SignedOrder.to_json()`` because the HMAC
            in the headers covers it.

        Raises:
            ValidationError: Price outside (0, 1) or non-positive size.
            OrderSigningError: py-clob-client failed to build or sign.
        """
        if not 0.0 < order.price < 1.0:
            raise ValidationError(f"price must be in (0, 1), got {order.price}")
        if order.size <= 0:
            raise ValidationError(f"size must be positive, got {order.size}")

        client = await self._ensure_l2()
        order_args = OrderArgs(
            token_id=order.token_id,
            price=round_to_tick(order.price),
            size=float(order.size),
            side=order.side.value,
        )

        try:
            signed = await self._run_sync(client.create_order, order_args)
        except Exception as e:
            self._log.error("order_signing_failed", token_id=order.token_id, error=str(e))
            raise OrderSigningError(f"Failed to sign order: {e}", cause=e) from e

        body = order_to_json(signed, client.creds.api_key, order.order_type.value)
        serialized = serialize_order_body(body)
        headers = create_level_2_headers(
            client.signer,
            client.creds,
            RequestArgs(
                method="POST",
                request_path=POST_ORDER,
                body=body,
                serialized_body=serialized,
            ),
        )

        self._log.info(
            "order_signed",
            token_id=order.token_id,
            side=order.side.value,
            price=order_args.price,
            size=order_args.size,
            body_bytes=len(serialized),
        )
        return SignedOrder(body=body, headers=dict(headers), serialized=serialized)
