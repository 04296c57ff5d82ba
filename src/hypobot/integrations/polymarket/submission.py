"""Order submission pipeline.

An order is signed once, locally, and then delivered through an ordered
chain of network paths until one of them gets an answer from the
exchange:

- ``direct``: POST the signed body to the CLOB ``/order`` endpoint,
  optionally through an egress proxy (``http_proxy``).
- ``relay``: POST ``{order, headers}`` to a relay's ``/order`` endpoint,
  authenticated with ``x-relay-secret``.
- ``proxy``: POST ``{signedOrder, headers}`` to a proxy's
  ``/submit-order`` endpoint.

A path *fails* (and the next one is tried) on network errors, timeouts,
geoblock/rate-limit statuses (403, 429, 451) and 5xx. Any other HTTP
response is the exchange's verdict and ends the chain.
"""

import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

import httpx
import structlog

from hypobot.core.retry import HypobotError, TransientError
from hypobot.integrations.polymarket.clob import CLOBClient
from hypobot.integrations.polymarket.types import (
    OrderRequest,
    PolymarketSettings,
    SignedOrder,
    SubmitResult,
)

if TYPE_CHECKING:
    from hypobot.services.metrics import MetricsEmitter

log = structlog.get_logger()

PATH_FAILURE_STATUSES = frozenset({403, 429, 451})


class PathUnavailableError(TransientError):
    """A delivery path could not reach the exchange."""


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text[:500]}


def interpret_exchange_response(
    transport_name: str,
    response: httpx.Response,
) -> SubmitResult:
    """Turn an HTTP response into a SubmitResult or a path failure.

    Raises:
        PathUnavailableError: The response says the path, not the order,
            is the problem.
    """
    status = response.status_code
    body = _parse_body(response)

    if status in PATH_FAILURE_STATUSES or status >= 500:
        raise PathUnavailableError(f"{transport_name}: HTTP {status}")

    data = body if isinstance(body, dict) else {}
    # The relay wraps the exchange answer in "result" on some versions
    if isinstance(data.get("result"), dict):
        data = {**data["result"], **{k: v for k, v in data.items() if k != "result"}}

    order_id = data.get("orderID") or data.get("orderId") or data.get("order_id")
    error = data.get("errorMsg") or data.get("error") or data.get("message")

    if response.is_success and (data.get("success") or order_id) and not error:
        return SubmitResult(
            submitted=True,
            order_id=order_id,
            status=data.get("status") or "submitted",
            transport=transport_name,
            response=body,
        )

    if response.is_success and not error:
        # 2xx without a success flag or order id: accepted, id unknown
        return SubmitResult(
            submitted=True,
            status=data.get("status") or "submitted",
            transport=transport_name,
            response=body,
        )

    return SubmitResult(
        submitted=False,
        error=str(error or f"HTTP {status}"),
        status=data.get("status"),
        transport=transport_name,
        response=body,
    )


class OrderTransport(ABC):
    """One network path to the exchange's order endpoint."""

    name: str = "transport"

    def __init__(
        self,
        timeout: float = 30.0,
        proxy: Optional[str] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout
        self._proxy = proxy
        self._http_transport = http_transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                proxy=self._proxy if self._http_transport is None else None,
                transport=self._http_transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def deliver(self, signed: SignedOrder) -> SubmitResult:
        """Send a signed order over this path.

        Raises:
            PathUnavailableError: The path could not reach the exchange.
        """
        try:
            response = await self._post(self._get_client(), signed)
        except httpx.HTTPError as e:
            raise PathUnavailableError(
                f"{self.name}: {e.__class__.__name__}", cause=e
            ) from e
        return interpret_exchange_response(self.name, response)

    @abstractmethod
    async def _post(self, client: httpx.AsyncClient, signed: SignedOrder) -> httpx.Response:
        ...


class DirectClobTransport(OrderTransport):
    """POST straight to the CLOB, optionally via an egress proxy."""

    name = "direct"

    def __init__(self, clob_url: str, **kwargs: Any):
        super().__init__(**kwargs)
        self._url = clob_url.rstrip("/") + "/order"

    async def _post(self, client: httpx.AsyncClient, signed: SignedOrder) -> httpx.Response:
        return await client.post(
            self._url,
            content=signed.to_json(),
            headers={**signed.headers, "Content-Type": "application/json"},
        )


class RelayTransport(OrderTransport):
    """POST to an order relay running outside the blocked region."""

    name = "relay"

    def __init__(self, relay_url: str, secret: Optional[str] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self._url = relay_url.rstrip("/") + "/order"
        self._secret = secret

    async def _post(self, client: httpx.AsyncClient, signed: SignedOrder) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self._secret:
            headers["x-relay-secret"] = self._secret
        return await client.post(
            self._url,
            json={"order": signed.body, "headers": signed.headers},
            headers=headers,
        )


class ProxyTransport(OrderTransport):
    """POST to a submission proxy that forwards to the CLOB."""

    name = "proxy"

    def __init__(self, proxy_url: str, **kwargs: Any):
        super().__init__(**kwargs)
        self._url = proxy_url.rstrip("/") + "/submit-order"

    async def _post(self, client: httpx.AsyncClient, signed: SignedOrder) -> httpx.Response:
        return await client.post(
            self._url,
            json={"signedOrder": signed.body, "headers": signed.headers},
            headers={"Content-Type": "application/json"},
        )


def build_transports(settings: PolymarketSettings) -> list[OrderTransport]:
    """Instantiate the configured delivery paths, in configured order.

    Paths without a URL are skipped.
    """
    transports: list[OrderTransport] = []
    timeout = settings.timeout_seconds
    for name in settings.transports:
        key = str(name).strip().lower()
        if key == "direct":
            transports.append(
                DirectClobTransport(settings.clob_url, timeout=timeout, proxy=settings.http_proxy)
            )
        elif key == "relay" and settings.relay_url:
            transports.append(
                RelayTransport(settings.relay_url, secret=settings.relay_secret, timeout=timeout)
            )
        elif key == "proxy" and settings.proxy_url:
            transports.append(ProxyTransport(settings.proxy_url, timeout=timeout))
        elif key not in ("direct", "relay", "proxy"):
            log.warning("unknown_transport_ignored", transport=name)
    return transports


class OrderSubmitter:
    """Sign an order and deliver it through the first reachable path.

    ``submit`` is the only operation the rest of the service uses; it
    never raises for delivery problems and reports them in SubmitResult.

    Usage:
        submitter = OrderSubmitter(clob, build_transports(settings))
        result = await submitter.submit(OrderRequest(token_id, OrderSide.BUY, 5, 0.42))
    """

    def __init__(
        self,
        clob: CLOBClient,
        transports: list[OrderTransport],
        metrics: Optional["MetricsEmitter"] = None,
    ):
        self._clob = clob
        self._transports = transports
        self._metrics = metrics
        self._log = log.bind(component="order_submitter")

    @property
    def transport_names(self) -> list[str]:
        return [t.name for t in self._transports]

    async def close(self) -> None:
        for transport in self._transports:
            await transport.close()

    async def submit(self, order: OrderRequest) -> SubmitResult:
        """Sign ``order`` and try each transport in turn."""
        try:
            signed = await self._clob.sign_order(order)
        except HypobotError as e:
            self._log.error("order_not_signed", token_id=order.token_id, error=str(e))
            return SubmitResult(submitted=False, error=str(e))
        except Exception as e:
            self._log.error(
                "order_not_signed",
                token_id=order.token_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return SubmitResult(submitted=False, error=f"Order signing failed: {e}")

        return await self.submit_signed(signed)

    async def submit_signed(self, signed: SignedOrder) -> SubmitResult:
        """Deliver an already-signed order through the transport chain."""
        if not self._transports:
            return SubmitResult(submitted=False, error="No order transports configured")

        attempts: list[dict[str, Any]] = []
        for transport in self._transports:
            started = time.monotonic()
            try:
                result = await transport.deliver(signed)
            except PathUnavailableError as e:
                attempts.append({"transport": transport.name, "error": str(e)})
                self._record(transport.name, "unavailable", started)
                self._log.warning(
                    "order_path_unavailable",
                    transport=transport.name,
                    error=str(e),
                )
                continue

            attempts.append(
                {
                    "transport": transport.name,
                    "submitted": result.submitted,
                    "error": result.error,
                }
            )
            result.attempts = attempts
            self._record(
                transport.name,
                "submitted" if result.submitted else "rejected",
                started,
            )
            if result.submitted:
                self._log.info(
                    "order_submitted",
                    transport=transport.name,
                    order_id=result.order_id,
                    status=result.status,
                )
            else:
                self._log.warning(
                    "order_rejected",
                    transport=transport.name,
                    error=result.error,
                )
            return result

        self._log.error("order_all_paths_failed", attempts=attempts)
        return SubmitResult(
            submitted=False,
            error="All order transports failed",
            attempts=attempts,
        )

    def _record(self, transport: str, outcome: str, started: float) -> None:
        if self._metrics is not None:
            self._metrics.record_order_submission(
                transport, outcome, time.monotonic() - started
            )
