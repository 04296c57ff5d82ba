"""Trade execution: price a single order off the live book and submit it."""

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from hypobot.core.retry import ValidationError
from hypobot.integrations.polymarket.clob import CLOBClient, round_to_tick
from hypobot.integrations.polymarket.submission import OrderSubmitter
from hypobot.integrations.polymarket.types import OrderRequest, OrderSide, SubmitResult

log = structlog.get_logger()

REQUIRED_FIELDS = ("tokenId", "side", "price", "size")


@dataclass
class ExecutionResult:
    """Outcome of one execute-trade request."""

    success: bool
    submitted: bool
    final_price: Optional[float] = None
    order_id: Optional[str] = None
    status: Optional[str] = None
    transport: Optional[str] = None
    error: Optional[str] = None
    dry_run: bool = False
    submit: Optional[SubmitResult] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "submitted": self.submitted,
            "orderId": self.order_id,
            "status": self.status,
            "finalPrice": self.final_price,
            "transport": self.transport,
        }
        if self.error:
            data["error"] = self.error
        if self.dry_run:
            data["dryRun"] = True
        if self.submit is not None:
            data["attempts"] = self.submit.attempts
        return data


def parse_order_side(value: Any) -> OrderSide:
    try:
        return OrderSide(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"side must be BUY or SELL, got {value!r}") from None


class TradeExecutor:
    """Execute single orders at the live midpoint.

    The requested price is only a fallback: when the CLOB reports a
    midpoint for the token, that price is used instead. The final price is
    rounded to the 0.01 tick.
    """

    def __init__(
        self,
        clob: CLOBClient,
        submitter: OrderSubmitter,
        dry_run: bool = True,
    ):
        self._clob = clob
        self._submitter = submitter
        self._dry_run = dry_run
        self._log = log.bind(component="trade_executor")

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    @staticmethod
    def validate_request(payload: dict[str, Any]) -> tuple[str, OrderSide, float, float]:
        """Check an execute-trade payload.

        Raises:
            ValidationError: Missing field, bad side or non-numeric numbers.
        """
        if any(not payload.get(key) for key in REQUIRED_FIELDS):
            raise ValidationError(
                "Missing required fields: " + ", ".join(REQUIRED_FIELDS)
            )
        side = parse_order_side(payload["side"])
        try:
            price = float(payload["price"])
            size = float(payload["size"])
        except (TypeError, ValueError):
            raise ValidationError("price and size must be numeric") from None
        return str(payload["tokenId"]), side, price, size

    async def resolve_price(self, token_id: str, requested: float) -> float:
        """Live midpoint if available, else the requested price; tick-rounded."""
        price = requested
        try:
            mid = await self._clob.get_midpoint(token_id)
        except Exception as e:
            self._log.warning("midpoint_unavailable", token_id=token_id[:20], error=str(e))
            mid = None
        if mid:
            self._log.info("live_midpoint", token_id=token_id[:20], mid=mid, requested=requested)
            price = mid
        return round_to_tick(price)

    async def execute(
        self,
        token_id: str,
        side: OrderSide,
        price: float,
        size: float,
    ) -> ExecutionResult:
        final_price = await self.resolve_price(token_id, price)

        self._log.info(
            "executing_trade",
            token_id=token_id[:20],
            side=side.value,
            size=size,
            price=final_price,
            dry_run=self._dry_run,
        )

        if self._dry_run:
            return ExecutionResult(
                success=True,
                submitted=False,
                final_price=final_price,
                status="dry_run",
                dry_run=True,
            )

        result = await self._submitter.submit(
            OrderRequest(
                token_id=token_id,
                side=side,
                size=size,
                price=final_price,
                order_type=self._clob.settings.order_type,
            )
        )
        return ExecutionResult(
            success=result.submitted,
            submitted=result.submitted,
            final_price=final_price,
            order_id=result.order_id,
            status=result.status,
            transport=result.transport,
            error=result.error,
            submit=result,
        )
