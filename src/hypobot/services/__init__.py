"""Services - ledger, resolution, reconciliation, cycles, execution and the HTTP API."""

from hypobot.services.ledger import BetLedger, ConnectionPool
from hypobot.services.metrics import MetricsEmitter
from hypobot.services.resolution import MarketResolver, extract_outcome
from hypobot.services.reconciliation import ReconcileSummary, ReconciliationJob, ResolvedBet
from hypobot.services.execution import ExecutionResult, TradeExecutor
from hypobot.services.trading_cycle import CycleOutcome, TradingCycle
from hypobot.services.exchange import ExchangeGateway
from hypobot.services.api import ApiServer

__all__ = [
    "ApiServer",
    "BetLedger",
    "ConnectionPool",
    "CycleOutcome",
    "ExchangeGateway",
    "ExecutionResult",
    "MarketResolver",
    "MetricsEmitter",
    "ReconcileSummary",
    "ReconciliationJob",
    "ResolvedBet",
    "TradeExecutor",
    "TradingCycle",
    "extract_outcome",
]
