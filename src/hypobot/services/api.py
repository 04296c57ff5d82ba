"""
HTTP API for hypobot.

Endpoints:
    POST /check-resolutions   reconcile pending bets
    POST /run-cycle           run one ideation cycle
    POST /execute-trade       price and submit a single order
    POST /polymarket          exchange actions ({"action": ..., ...params})
    GET  /bets                list bets
    GET  /bets/{id}           one bet
    GET  /pnl                 realized P&L per partition
    GET  /health              aggregated health (503 when unhealthy)
    GET  /metrics             Prometheus text

Every response carries open CORS headers and every route answers OPTIONS.
"""

import json
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import structlog
from aiohttp import web

from hypobot import __version__
from hypobot.core.lifecycle import BaseComponent, HealthCheckResult
from hypobot.core.retry import ResourceNotFoundError, ValidationError
from hypobot.domain.bet import BetStatus
from hypobot.services.execution import TradeExecutor

if TYPE_CHECKING:
    from hypobot.services.exchange import ExchangeGateway
    from hypobot.services.ledger import BetLedger
    from hypobot.services.reconciliation import ReconciliationJob
    from hypobot.services.trading_cycle import TradingCycle

log = structlog.get_logger()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}

ENDPOINTS = [
    "/check-resolutions",
    "/run-cycle",
    "/execute-trade",
    "/polymarket",
    "/bets",
    "/bets/{bet_id}",
    "/pnl",
    "/health",
    "/metrics",
]


@web.middleware
async def cors_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    if request.method == "OPTIONS":
        return web.Response(status=200, headers=CORS_HEADERS)
    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers.update(CORS_HEADERS)
        raise
    response.headers.update(CORS_HEADERS)
    return response


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ValidationError as e:
        return web.json_response({"error": e.message}, status=400)
    except ResourceNotFoundError as e:
        return web.json_response({"error": e.message}, status=404)
    except Exception as e:
        log.error(
            "api_handler_error",
            path=request.path,
            error=str(e),
            error_type=type(e).__name__,
        )
        return web.json_response({"error": str(e) or type(e).__name__}, status=500)


async def read_json(request: web.Request) -> dict[str, Any]:
    """Request body as a dict; an empty body is ``{}``."""
    if not request.can_read_body:
        return {}
    text = await request.text()
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON body: {e.msg}") from None
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None or value == "":
        return None
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "live"):
        return True
    if lowered in ("0", "false", "no", "simulated"):
        return False
    raise ValidationError(f"Invalid boolean: {value}")


class ApiServer(BaseComponent):
    """aiohttp server exposing the hypobot operations.

    Usage:
        server = ApiServer(port=8080, ledger=ledger, reconciliation=job, ...)
        await server.start()
        await server.stop()

    Tests use ``build_app()`` with aiohttp's TestClient instead of binding
    a port.
    """

    def __init__(
        self,
        port: int = 8080,
        host: str = "0.0.0.0",
        ledger: Optional["BetLedger"] = None,
        reconciliation: Optional["ReconciliationJob"] = None,
        trading_cycle: Optional["TradingCycle"] = None,
        executor: Optional[TradeExecutor] = None,
        exchange: Optional["ExchangeGateway"] = None,
        health_provider: Optional[Callable[[], Awaitable[dict[str, Any]]]] = None,
        metrics_provider: Optional[Callable[[], str]] = None,
        initial_bankroll: float = 100.0,
    ) -> None:
        super().__init__(name="ApiServer")
        self._port = port
        self._host = host
        self._ledger = ledger
        self._reconciliation = reconciliation
        self._trading_cycle = trading_cycle
        self._executor = executor
        self._exchange = exchange
        self._health_provider = health_provider
        self._metrics_provider = metrics_provider
        self._initial_bankroll = initial_bankroll
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._log = log.bind(component="api_server")

    @property
    def port(self) -> int:
        return self._port

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[cors_middleware, error_middleware])
        app.router.add_get("/", self._handle_root)
        app.router.add_post("/check-resolutions", self._handle_check_resolutions)
        app.router.add_post("/run-cycle", self._handle_run_cycle)
        app.router.add_post("/execute-trade", self._handle_execute_trade)
        app.router.add_post("/polymarket", self._handle_polymarket)
        app.router.add_get("/bets", self._handle_bets)
        app.router.add_get("/bets/{bet_id}", self._handle_bet)
        app.router.add_get("/pnl", self._handle_pnl)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/metrics", self._handle_metrics)
        return app

    async def _do_start(self) -> None:
        self._runner = web.AppRunner(self.build_app(), access_log=None)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()

        self._log.info(
            "api_server_started",
            host=self._host,
            port=self._port,
            endpoints=ENDPOINTS,
        )

    async def _do_stop(self) -> None:
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._runner = None
        self._site = None
        self._log.info("api_server_stopped")

    async def _do_health_check(self) -> HealthCheckResult:
        if self._site is None:
            return HealthCheckResult.unhealthy("Server not running")
        return HealthCheckResult.healthy(
            uptime_seconds=self.uptime_seconds,
            port=self._port,
        )

    def _require(self, service: Any, name: str) -> Any:
        if service is None:
            raise RuntimeError(f"{name} not configured")
        return service

    # ============ Handlers ============

    async def _handle_root(self, request: web.Request) -> web.Response:
        return web.json_response({
            "service": "hypobot",
            "version": __version__,
            "endpoints": ENDPOINTS,
        })

    async def _handle_check_resolutions(self, request: web.Request) -> web.Response:
        job = self._require(self._reconciliation, "Reconciliation")
        summary = await job.reconcile()
        return web.json_response(summary.to_dict())

    async def _handle_run_cycle(self, request: web.Request) -> web.Response:
        cycle_runner = self._require(self._trading_cycle, "Trading cycle")
        body = await read_json(request)

        prompt = body.get("systemPrompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError("Missing required field: systemPrompt")
        try:
            cycle = int(body.get("cycle", 1))
            bankroll = float(body.get("bankroll", self._initial_bankroll))
        except (TypeError, ValueError):
            raise ValidationError("cycle and bankroll must be numeric") from None

        outcome = await cycle_runner.run(
            cycle=cycle,
            bankroll=bankroll,
            prompt=prompt,
            live=bool(body.get("live", False)),
        )
        return web.json_response(outcome.to_dict())

    async def _handle_execute_trade(self, request: web.Request) -> web.Response:
        executor = self._require(self._executor, "Trade executor")
        body = await read_json(request)
        try:
            token_id, side, price, size = TradeExecutor.validate_request(body)
        except ValidationError as e:
            return web.json_response(
                {"success": False, "submitted": False, "error": e.message},
                status=400,
            )

        result = await executor.execute(token_id, side, price, size)
        return web.json_response(result.to_dict(), status=200 if result.success else 400)

    async def _handle_polymarket(self, request: web.Request) -> web.Response:
        exchange = self._require(self._exchange, "Exchange gateway")
        body = await read_json(request)
        action = body.pop("action", None)

        result = await exchange.dispatch(action, body)
        status = 200
        if isinstance(result, dict) and result.get("success") is False:
            status = 400
        return web.json_response(result, status=status)

    async def _handle_bets(self, request: web.Request) -> web.Response:
        ledger = self._require(self._ledger, "Ledger")
        query = request.query

        status = query.get("status") or None
        if status is not None:
            try:
                status = BetStatus(status.lower())
            except ValueError:
                raise ValidationError(f"Invalid status: {status}") from None
        try:
            limit = int(query.get("limit", 100))
        except ValueError:
            raise ValidationError("limit must be an integer") from None

        bets = await ledger.list_bets(
            status=status,
            is_live=parse_bool(query.get("is_live")),
            limit=max(1, min(limit, 1000)),
        )
        return web.json_response({"bets": [b.to_dict() for b in bets]})

    async def _handle_bet(self, request: web.Request) -> web.Response:
        ledger = self._require(self._ledger, "Ledger")
        bet_id = request.match_info["bet_id"]
        bet = await ledger.get_bet(bet_id)
        if bet is None:
            raise ResourceNotFoundError(f"Bet not found: {bet_id}")
        return web.json_response(bet.to_dict())

    async def _handle_pnl(self, request: web.Request) -> web.Response:
        ledger = self._require(self._ledger, "Ledger")
        return web.json_response(await ledger.get_pnl_summary())

    async def _handle_health(self, request: web.Request) -> web.Response:
        try:
            if self._health_provider is None:
                return web.json_response(
                    {"status": "unknown", "error": "No health provider configured"},
                    status=503,
                )
            health_data = await self._health_provider()
            status_code = 503 if health_data.get("status") == "unhealthy" else 200
            return web.json_response(health_data, status=status_code)
        except Exception as e:
            self._log.error("health_check_error", error=str(e))
            return web.json_response(
                {"status": "unhealthy", "error": str(e)},
                status=503,
            )

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        if self._metrics_provider is None:
            return web.Response(
                text="# No metrics provider configured\n",
                content_type="text/plain",
            )
        return web.Response(text=self._metrics_provider(), content_type="text/plain")
