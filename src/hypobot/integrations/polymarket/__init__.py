# Polymarket Integration Layer
# Gamma market data, CLOB signing/queries, data API and order delivery

from hypobot.integrations.polymarket.types import (
    MarketRecord,
    OrderRequest,
    OrderSide,
    OrderType,
    PolymarketSettings,
    SignedOrder,
    SubmitResult,
    parse_json_list,
)

from hypobot.integrations.polymarket.gamma import GammaClient, GammaClientError

from hypobot.integrations.polymarket.data_api import DataApiClient, DataApiError

from hypobot.integrations.polymarket.clob import (
    CLOBClient,
    CLOBClientError,
    OrderSigningError,
    round_to_tick,
)

from hypobot.integrations.polymarket.submission import (
    DirectClobTransport,
    OrderSubmitter,
    OrderTransport,
    PathUnavailableError,
    ProxyTransport,
    RelayTransport,
    build_transports,
)

__all__ = [
    # Types
    "MarketRecord",
    "OrderRequest",
    "OrderSide",
    "OrderType",
    "PolymarketSettings",
    "SignedOrder",
    "SubmitResult",
    "parse_json_list",
    # Gamma
    "GammaClient",
    "GammaClientError",
    # Data API
    "DataApiClient",
    "DataApiError",
    # CLOB
    "CLOBClient",
    "CLOBClientError",
    "OrderSigningError",
    "round_to_tick",
    # Submission
    "OrderSubmitter",
    "OrderTransport",
    "DirectClobTransport",
    "RelayTransport",
    "ProxyTransport",
    "PathUnavailableError",
    "build_transports",
]
