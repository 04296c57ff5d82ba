"""Polymarket-specific types and data models.

Upstream JSON is parsed into these dataclasses; missing or malformed
fields fall back to neutral defaults (empty lists, zero volume, ``None``
identifiers) instead of raising.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

DEFAULT_OUTCOMES: tuple[str, ...] = ("Yes", "No")


class OrderSide(str, Enum):
    """Side of an order (buy or sell)."""

    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    """CLOB order types used by this service."""

    GTC = "GTC"  # Good-till-cancelled
    FOK = "FOK"  # Fill-or-kill
    FAK = "FAK"  # Fill-and-kill (partial fills allowed)


@dataclass(frozen=True)
class PolymarketSettings:
    """Connection settings for the Polymarket APIs and delivery paths.

    Attributes:
        private_key: Wallet private key used for order signing.
        proxy_wallet: Optional Polymarket proxy (funder) wallet address.
        signature_type: 0=EOA, 1=Magic/email, 2=browser proxy.
        api_key: CLOB L2 API key.
        api_secret: CLOB L2 API secret.
        api_passphrase: CLOB L2 API passphrase.
        clob_url: CLOB API base URL.
        gamma_url: Gamma market-data API base URL.
        data_api_url: Data API base URL (positions).
        relay_url: Order relay base URL (``POST /order``).
        relay_secret: Shared secret sent as ``x-relay-secret``.
        proxy_url: Submission proxy base URL (``POST /submit-order``).
        http_proxy: Egress proxy URL for direct CLOB submission.
        transports: Ordered delivery paths to try.
        order_type: CLOB order type for submitted orders (FAK, FOK or GTC).
        timeout_seconds: HTTP timeout for all Polymarket calls.
    """

    private_key: str = ""
    proxy_wallet: Optional[str] = None
    signature_type: int = 0

    api_key: str = ""
    api_secret: str = ""
    api_passphrase: str = ""

    clob_url: str = "https://clob.polymarket.com"
    gamma_url: str = "https://gamma-api.polymarket.com"
    data_api_url: str = "https://data-api.polymarket.com"

    relay_url: Optional[str] = None
    relay_secret: Optional[str] = None
    proxy_url: Optional[str] = None
    http_proxy: Optional[str] = None
    transports: tuple[str, ...] = ("direct", "relay", "proxy")
    order_type: OrderType = OrderType.FAK

    timeout_seconds: float = 30.0

    @property
    def has_api_creds(self) -> bool:
        return bool(self.api_key and self.api_secret and self.api_passphrase)

    @property
    def can_sign(self) -> bool:
        return bool(self.private_key)

    @classmethod
    def from_config(cls, config: Any) -> "PolymarketSettings":
        """Build settings from a ConfigManager ``[polymarket]`` section."""

        def optional(key: str) -> Optional[str]:
            value = config.get_str(f"polymarket.{key}")
            return value or None

        return cls(
            private_key=config.get_str("polymarket.private_key"),
            proxy_wallet=optional("proxy_wallet"),
            signature_type=config.get_int("polymarket.signature_type", 0),
            api_key=config.get_str("polymarket.api_key"),
            api_secret=config.get_str("polymarket.api_secret"),
            api_passphrase=config.get_str("polymarket.api_passphrase"),
            clob_url=config.get_str("polymarket.clob_url", cls.clob_url),
            gamma_url=config.get_str("polymarket.gamma_url", cls.gamma_url),
            data_api_url=config.get_str("polymarket.data_api_url", cls.data_api_url),
            relay_url=optional("relay_url"),
            relay_secret=optional("relay_secret"),
            proxy_url=optional("proxy_url"),
            http_proxy=optional("http_proxy"),
            transports=tuple(
                config.get_list("polymarket.transports", list(cls.transports))
            ),
            order_type=OrderType(config.get_str("polymarket.order_type", "FAK").strip().upper()),
            timeout_seconds=config.get_float("polymarket.timeout_seconds", 30.0),
        )


def parse_json_list(value: Any) -> list[Any]:
    """Decode a Gamma JSON-encoded array string.

    Gamma returns ``outcomes``/``outcomePrices``/``clobTokenIds`` as strings
    like ``'["Yes", "No"]'``. Already-decoded lists pass through; anything
    unparseable yields an empty list.
    """
    if isinstance(value, list):
        return value
    if not isinstance(value, str) or not value.strip():
        return []
    try:
        decoded = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return []
    return decoded if isinstance(decoded, list) else []


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class MarketRecord:
    """A market from the Gamma API with neutral defaults."""

    question: str = ""
    condition_id: Optional[str] = None
    slug: Optional[str] = None
    outcomes: tuple[str, ...] = DEFAULT_OUTCOMES
    outcome_prices: tuple[float, ...] = ()
    token_ids: tuple[str, ...] = ()
    active: bool = False
    closed: bool = False
    resolved: bool = False
    end_date: Optional[str] = None
    volume: float = 0.0
    liquidity: float = 0.0
    raw_outcome_prices: str = ""

    @property
    def is_closed(self) -> bool:
        """Closed or resolved flag set by the exchange."""
        return self.closed or self.resolved

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MarketRecord":
        """Parse a Gamma ``/markets`` element."""
        outcomes = tuple(str(o) for o in parse_json_list(data.get("outcomes")))
        prices: list[float] = []
        for raw in parse_json_list(data.get("outcomePrices")):
            try:
                prices.append(float(raw))
            except (TypeError, ValueError):
                # One bad entry makes the whole price vector meaningless
                prices = []
                break

        raw_prices = data.get("outcomePrices")
        return cls(
            question=str(data.get("question") or ""),
            condition_id=data.get("conditionId") or data.get("condition_id") or None,
            slug=data.get("slug") or None,
            outcomes=outcomes or DEFAULT_OUTCOMES,
            outcome_prices=tuple(prices),
            token_ids=tuple(str(t) for t in parse_json_list(data.get("clobTokenIds"))),
            active=bool(data.get("active", False)),
            closed=bool(data.get("closed", False)),
            resolved=bool(data.get("resolved", False)),
            end_date=data.get("endDate") or data.get("end_date_iso") or None,
            volume=_to_float(data.get("volumeNum", data.get("volume"))),
            liquidity=_to_float(data.get("liquidityNum", data.get("liquidity"))),
            raw_outcome_prices=raw_prices if isinstance(raw_prices, str) else json.dumps(raw_prices or []),
        )

    def to_tokens_dict(self) -> dict[str, Any]:
        """Market/token summary used by the ``get-market-tokens`` action."""
        tokens = [
            {
                "outcome": outcome,
                "token_id": self.token_ids[i] if i < len(self.token_ids) else None,
                "price": self.outcome_prices[i] if i < len(self.outcome_prices) else None,
            }
            for i, outcome in enumerate(self.outcomes)
        ]
        return {
            "question": self.question,
            "conditionId": self.condition_id,
            "slug": self.slug,
            "closed": self.closed,
            "tokens": tokens,
        }


@dataclass(frozen=True)
class OrderRequest:
    """An order to place on the CLOB."""

    token_id: str
    side: OrderSide
    size: float
    price: float
    order_type: OrderType = OrderType.FAK


def serialize_order_body(body: Any) -> str:
    """Compact JSON text of an order body, as signed and as sent."""
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class SignedOrder:
    """A signed order body plus the L2 auth headers needed to post it.

    ``serialized`` is the exact text the L2 HMAC covers; the direct path
    sends it unchanged.
    """

    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    serialized: str = ""

    def to_json(self) -> str:
        return self.serialized or serialize_order_body(self.body)


@dataclass
class SubmitResult:
    """Outcome of delivering an order through the submission pipeline."""

    submitted: bool
    order_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    transport: Optional[str] = None
    attempts: list[dict[str, Any]] = field(default_factory=list)
    response: Optional[Any] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "submitted": self.submitted,
            "orderId": self.order_id,
            "status": self.status,
            "error": self.error,
            "transport": self.transport,
            "attempts": self.attempts,
        }
