"""Ideation oracle adapter.

Sends a market snapshot plus the operator's prompt to the Anthropic
messages API and parses the JSON trade-idea list that comes back. The
model is an opaque collaborator: its reply is validated and defaulted,
never trusted.
"""

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

from hypobot.core.retry import HypobotError, classify_http_error

log = structlog.get_logger()

ANTHROPIC_API_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-opus-4-20250514"
DEFAULT_MAX_TOKENS = 4000

SYSTEM_PROMPT = (
    "You are a quantitative trading simulation engine. You MUST respond with "
    "valid JSON only. No markdown, no explanation, just pure JSON."
)

FALLBACK_RULE = "Parse error - using fallback"
RAW_PREVIEW_CHARS = 200

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class OracleError(HypobotError):
    """The LLM API could not be reached or refused the request."""


def _float_or(value: Any, default: Optional[float]) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    # NaN and Infinity parse as JSON numbers but are never usable
    return number if math.isfinite(number) else default


def _list_or_empty(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


@dataclass
class Hypo:
    """One trade idea proposed by the oracle."""

    market: str
    action: str
    size: float
    pnl: float = 0.0
    price: Optional[float] = None
    edge: Optional[float] = None
    kelly_f: Optional[float] = None
    token_id: Optional[str] = None
    condition_id: Optional[str] = None
    slug: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Hypo":
        return cls(
            market=str(data.get("market") or ""),
            action=str(data.get("action") or data.get("side") or ""),
            size=_float_or(data.get("size"), 0.0) or 0.0,
            pnl=_float_or(data.get("pnl"), 0.0) or 0.0,
            price=_float_or(data.get("price"), None),
            edge=_float_or(data.get("edge"), None),
            kelly_f=_float_or(data.get("kelly_f"), None),
            token_id=data.get("tokenId") or data.get("token_id") or None,
            condition_id=data.get("conditionId") or data.get("condition_id") or None,
            slug=data.get("slug") or data.get("market_slug") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "market": self.market,
            "action": self.action,
            "size": self.size,
            "pnl": self.pnl,
        }
        for key, value in (
            ("price", self.price),
            ("edge", self.edge),
            ("kelly_f", self.kelly_f),
            ("tokenId", self.token_id),
            ("conditionId", self.condition_id),
            ("slug", self.slug),
        ):
            if value is not None:
                data[key] = value
        return data


@dataclass
class CycleResult:
    """Parsed oracle reply for one cycle."""

    cycle: int
    bankroll: float
    sharpe: float = 0.0
    mdd: float = 0.0
    hypos: list[Hypo] = field(default_factory=list)
    rules: list[str] = field(default_factory=list)
    log: str = "Cycle complete"
    parse_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle": self.cycle,
            "bankroll": self.bankroll,
            "sharpe": self.sharpe,
            "mdd": self.mdd,
            "hypos": [h.to_dict() for h in self.hypos],
            "rules": list(self.rules),
            "log": self.log,
        }


def extract_json_text(text: str) -> str:
    """Strip a ```json fence if the model wrapped its answer in one."""
    match = _FENCE_RE.search(text)
    return (match.group(1) if match else text).strip()


def parse_cycle_response(text: str, cycle: int, bankroll: float) -> CycleResult:
    """Parse the oracle's reply, defaulting whatever is missing.

    Falsy fields fall back to the request's cycle and bankroll, zero
    sharpe/mdd, no hypos or rules and a generic log line. Unparseable text
    yields a fallback result that keeps the bankroll unchanged.
    """
    try:
        data = json.loads(extract_json_text(text))
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    except ValueError as e:
        log.warning("oracle_parse_failed", error=str(e), raw=text[:RAW_PREVIEW_CHARS])
        return CycleResult(
            cycle=cycle,
            bankroll=bankroll,
            rules=[FALLBACK_RULE],
            log="Oracle response was not valid JSON. Raw: " + text[:RAW_PREVIEW_CHARS],
            parse_error=True,
        )

    hypos = [
        Hypo.from_dict(h) for h in _list_or_empty(data.get("hypos")) if isinstance(h, dict)
    ]
    return CycleResult(
        cycle=int(_float_or(data.get("cycle"), None) or cycle),
        bankroll=_float_or(data.get("bankroll"), None) or bankroll,
        sharpe=_float_or(data.get("sharpe"), None) or 0.0,
        mdd=_float_or(data.get("mdd"), None) or 0.0,
        hypos=hypos,
        rules=[str(r) for r in _list_or_empty(data.get("rules"))],
        log=str(data.get("log") or "Cycle complete"),
    )


def build_user_message(cycle: int, bankroll: float, snapshot: str, prompt: str) -> str:
    return (
        f"Cycle {cycle}. Bankroll: {bankroll}.\n\n"
        f"LIVE DATA:\n{snapshot}\n\n"
        f"{prompt}"
    )


class IdeationOracle:
    """Client for the Anthropic messages API that produces CycleResults.

    Usage:
        oracle = IdeationOracle(api_key="sk-...")
        result = await oracle.generate(cycle=3, bankroll=104.2,
                                       prompt=system_prompt, snapshot=snapshot)
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = ANTHROPIC_API_URL,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._api_url = api_url.rstrip("/")
        self._model = model
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._log = log.bind(component="ideation_oracle")

    @property
    def model(self) -> str:
        return self._model

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._api_url,
                timeout=self._timeout,
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def complete(self, user_message: str) -> str:
        """Send one user turn and return the concatenated text blocks.

        Raises:
            OracleError: Missing API key, transport failure or non-2xx reply.
        """
        if not self._api_key:
            raise OracleError("ANTHROPIC_API_KEY not configured")
        await self.connect()

        try:
            response = await self._client.post(
                "/v1/messages",
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": ANTHROPIC_VERSION,
                    "content-type": "application/json",
                },
                json={
                    "model": self._model,
                    "max_tokens": self._max_tokens,
                    "system": SYSTEM_PROMPT,
                    "messages": [{"role": "user", "content": user_message}],
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._log.error(
                "oracle_http_error",
                status=e.response.status_code,
                body=e.response.text[:500],
            )
            raise OracleError(
                f"LLM API error: {e.response.status_code}",
                cause=classify_http_error(e, "anthropic"),
            ) from e
        except httpx.HTTPError as e:
            raise OracleError("LLM API unreachable", cause=classify_http_error(e, "anthropic")) from e

        payload = response.json()
        blocks = payload.get("content") or []
        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text"
        )
        self._log.debug(
            "oracle_completed",
            model=self._model,
            chars=len(text),
            stop_reason=payload.get("stop_reason"),
        )
        return text or "{}"

    async def generate(
        self,
        cycle: int,
        bankroll: float,
        prompt: str,
        snapshot: str,
    ) -> CycleResult:
        """Ask the oracle for this cycle's trade ideas."""
        text = await self.complete(build_user_message(cycle, bankroll, snapshot, prompt))
        result = parse_cycle_response(text, cycle, bankroll)
        self._log.info(
            "oracle_cycle_generated",
            cycle=result.cycle,
            hypos=len(result.hypos),
            parse_error=result.parse_error,
        )
        return result
