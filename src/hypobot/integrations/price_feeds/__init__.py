"""Price feeds used to enrich the market snapshot."""

from hypobot.integrations.price_feeds.binance import BinanceClient, Ticker24h

__all__ = ["BinanceClient", "Ticker24h"]
