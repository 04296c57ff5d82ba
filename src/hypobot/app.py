"""
Hypobot application lifecycle and component wiring.

Builds every client and service from configuration, starts them in
dependency order and stops them in reverse:
1. Ledger (SQLite)
2. HTTP clients (Gamma, data API, CLOB, Binance, LLM)
3. HTTP API server (when serving)
"""
import asyncio
import signal
from pathlib import Path
from typing import Any, Optional

import structlog

from hypobot import __version__
from hypobot.core.config import ConfigManager
from hypobot.core.lifecycle import BaseComponent, HealthCheckable, HealthCheckResult, HealthStatus
from hypobot.core.logging import setup_logging
from hypobot.core.retry import RetryConfig
from hypobot.integrations.ideation import IdeationOracle
from hypobot.integrations.polymarket import (
    CLOBClient,
    DataApiClient,
    GammaClient,
    OrderSubmitter,
    PolymarketSettings,
    build_transports,
)
from hypobot.integrations.price_feeds import BinanceClient
from hypobot.services.api import ApiServer
from hypobot.services.exchange import ExchangeGateway
from hypobot.services.execution import TradeExecutor
from hypobot.services.ledger import BetLedger
from hypobot.services.metrics import MetricsEmitter
from hypobot.services.reconciliation import ReconciliationJob
from hypobot.services.resolution import MarketResolver
from hypobot.services.trading_cycle import TradingCycle


class HypobotApp(BaseComponent):
    """Main hypobot application.

    Usage:
        app = HypobotApp(config)
        await app.run_forever()   # until SIGINT/SIGTERM

    One-shot use (CLI ``reconcile``/``cycle``):
        app = HypobotApp(config, serve_http=False)
        await app.start()
        summary = await app.reconciliation.reconcile()
        await app.stop()
    """

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        dry_run: Optional[bool] = None,
        serve_http: bool = True,
    ) -> None:
        """Initialize the application.

        Args:
            config: Loaded configuration (defaults to config/default.toml if present).
            dry_run: Overrides ``hypobot.dry_run`` when given.
            serve_http: Start the HTTP API server on ``start()``.
        """
        super().__init__(name="HypobotApp")

        if config is None:
            default_path = Path("config/default.toml")
            config = ConfigManager(default_path if default_path.exists() else None)
        self._config = config
        if dry_run is None:
            dry_run = config.get_bool("hypobot.dry_run", True)
        self._dry_run = dry_run
        self._serve_http = serve_http

        setup_logging(
            level=config.get_str("hypobot.log_level", "INFO"),
            json_output=config.get_bool("hypobot.log_json", False),
        )
        self._log = structlog.get_logger("hypobot.app")

        self._metrics = MetricsEmitter()
        retry_config = RetryConfig.from_dict(config.get_section("retry"))
        settings = PolymarketSettings.from_config(config)
        self._settings = settings

        # Storage
        self._ledger = BetLedger(config=config)

        # Clients
        self._gamma = GammaClient(settings, retry_config=retry_config)
        self._data_api = DataApiClient(settings, retry_config=retry_config)
        self._clob = CLOBClient(settings)
        self._binance = BinanceClient(
            base_url=config.get_str("binance.base_url", "https://api.binance.com"),
            retry_config=retry_config,
        )
        self._oracle = IdeationOracle(
            api_key=config.get_str("anthropic.api_key"),
            api_url=config.get_str("anthropic.api_url", "https://api.anthropic.com"),
            model=config.get_str("anthropic.model", "claude-opus-4-20250514"),
            max_tokens=config.get_int("anthropic.max_tokens", 4000),
            timeout=config.get_float("anthropic.timeout_seconds", 120.0),
        )

        # Services
        self._resolver = MarketResolver(self._gamma, metrics=self._metrics)
        self._reconciliation = ReconciliationJob(
            self._ledger, self._resolver, metrics=self._metrics
        )
        self._submitter = OrderSubmitter(
            self._clob, build_transports(settings), metrics=self._metrics
        )
        self._executor = TradeExecutor(self._clob, self._submitter, dry_run=self._dry_run)
        self._trading_cycle = TradingCycle(
            gamma=self._gamma,
            binance=self._binance,
            oracle=self._oracle,
            ledger=self._ledger,
            reconciliation=self._reconciliation,
            executor=self._executor,
            metrics=self._metrics,
            min_liquidity=config.get_float("cycle.min_liquidity", 15000.0),
            max_markets=config.get_int("cycle.max_markets", 15),
            binance_symbol=config.get_str("binance.symbol", "BTCUSDT"),
            reconcile_after_cycle=config.get_bool("cycle.reconcile_after_cycle", True),
        )
        self._exchange = ExchangeGateway(
            self._clob, self._gamma, self._data_api, self._executor
        )
        self._api = ApiServer(
            port=config.get_int("server.port", 8080),
            host=config.get_str("server.host", "0.0.0.0"),
            ledger=self._ledger,
            reconciliation=self._reconciliation,
            trading_cycle=self._trading_cycle,
            executor=self._executor,
            exchange=self._exchange,
            health_provider=self.get_health,
            metrics_provider=self._metrics.get_metrics,
            initial_bankroll=config.get_float("cycle.initial_bankroll", 100.0),
        )

        # Components whose health feeds the app's health
        self._services: dict[str, Any] = {"ledger": self._ledger}
        if serve_http:
            self._services["api"] = self._api

        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> ConfigManager:
        return self._config

    @property
    def metrics(self) -> MetricsEmitter:
        return self._metrics

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    @property
    def ledger(self) -> BetLedger:
        return self._ledger

    @property
    def reconciliation(self) -> ReconciliationJob:
        return self._reconciliation

    @property
    def trading_cycle(self) -> TradingCycle:
        return self._trading_cycle

    async def _do_start(self) -> None:
        self._log.info(
            "starting_hypobot",
            version=__version__,
            dry_run=self._dry_run,
            transports=self._submitter.transport_names,
        )

        await self._ledger.start()
        await self._gamma.connect()
        await self._data_api.connect()
        await self._clob.connect()
        await self._binance.connect()
        await self._oracle.connect()

        if self._serve_http:
            await self._api.start()

        self._log.info("hypobot_started", dry_run=self._dry_run, serve_http=self._serve_http)

    async def _do_stop(self) -> None:
        self._log.info("stopping_hypobot")

        if self._serve_http:
            await self._api.stop()

        await self._submitter.close()
        await self._oracle.close()
        await self._binance.close()
        await self._clob.close()
        await self._data_api.close()
        await self._gamma.close()
        self._metrics.update_uptime(self.uptime_seconds)
        await self._ledger.stop()

        self._log.info("hypobot_stopped")

    async def _do_health_check(self) -> HealthCheckResult:
        issues = []
        components: dict[str, Any] = {}

        for name, service in self._services.items():
            if not isinstance(service, HealthCheckable):
                continue
            try:
                result = await service.health_check()
            except Exception as e:
                self._log.warning("component_health_check_failed", component=name, error=str(e))
                issues.append(f"{name}_health_check_failed")
                continue
            components[name] = result.to_dict()
            if result.status == HealthStatus.UNHEALTHY:
                issues.append(f"{name}_unhealthy")

        if issues:
            return HealthCheckResult.degraded(
                message=f"Issues: {', '.join(issues)}",
                uptime_seconds=self.uptime_seconds,
                components=components,
            )

        return HealthCheckResult.healthy(
            uptime_seconds=self.uptime_seconds,
            dry_run=self._dry_run,
            components=components,
        )

    async def get_health(self) -> dict[str, Any]:
        """Health status as a dict for the ``/health`` endpoint."""
        self._metrics.update_uptime(self.uptime_seconds)
        result = await self.health_check()
        return {
            "status": result.status.value,
            "message": result.message,
            "version": __version__,
            "details": result.details,
            "checked_at": result.checked_at.isoformat(),
        }

    def request_shutdown(self) -> None:
        self._log.info("shutdown_requested")
        self._shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    async def run_forever(self) -> None:
        """Run until SIGINT/SIGTERM, then stop every component."""
        await self.start()
        self._install_signal_handlers()

        try:
            while not self._shutdown_event.is_set():
                self._metrics.update_uptime(self.uptime_seconds)
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=1.0)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._remove_signal_handlers()
            await self.stop()
