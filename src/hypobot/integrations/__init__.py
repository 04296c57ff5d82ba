"""External service integrations (Polymarket, Binance, Anthropic)."""
