"""
Prometheus metrics emission for hypobot.

All metrics use the 'hypobot_' prefix and live on a private registry so
tests can create as many emitters as they like.
"""
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from hypobot import __version__


def _partition(is_live: bool) -> str:
    return "live" if is_live else "simulated"


class MetricsEmitter:
    """Prometheus metrics emission (emit only, no reading).

    Usage:
        emitter = MetricsEmitter()
        emitter.record_bet_resolved("won", is_live=False, pnl=35.0)
        text = emitter.get_metrics()
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self._registry = registry or CollectorRegistry()

        self._info = Info(
            "hypobot",
            "hypobot service information",
            registry=self._registry,
        )
        self._info.info({"version": __version__})

        self._uptime = Gauge(
            "hypobot_uptime_seconds",
            "Process uptime in seconds",
            registry=self._registry,
        )

        # Reconciliation
        self._reconcile_runs = Counter(
            "hypobot_reconcile_runs_total",
            "Reconciliation runs",
            registry=self._registry,
        )
        self._bets_checked = Counter(
            "hypobot_bets_checked_total",
            "Pending bets examined by reconciliation",
            registry=self._registry,
        )
        self._reconcile_errors = Counter(
            "hypobot_reconcile_errors_total",
            "Bets that failed during reconciliation",
            registry=self._registry,
        )
        self._bets_resolved = Counter(
            "hypobot_bets_resolved_total",
            "Bets settled by reconciliation",
            ["status", "partition"],
            registry=self._registry,
        )
        self._realized_pnl = Counter(
            "hypobot_realized_pnl_abs_usd_total",
            "Absolute realized P&L settled, by sign",
            ["sign", "partition"],
            registry=self._registry,
        )
        self._resolution_lookup = Histogram(
            "hypobot_resolution_lookup_seconds",
            "Market resolution lookup latency",
            ["result"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self._registry,
        )

        # Cycles and ideation
        self._oracle_calls = Counter(
            "hypobot_oracle_calls_total",
            "Ideation oracle calls",
            ["outcome"],
            registry=self._registry,
        )
        self._bankroll = Gauge(
            "hypobot_bankroll_usd",
            "Bankroll after the latest cycle",
            ["partition"],
            registry=self._registry,
        )
        self._bets_recorded = Counter(
            "hypobot_bets_recorded_total",
            "Bets recorded from trade ideas",
            ["partition"],
            registry=self._registry,
        )

        # Order submission
        self._order_submissions = Counter(
            "hypobot_order_submissions_total",
            "Order delivery attempts",
            ["transport", "outcome"],
            registry=self._registry,
        )
        self._order_latency = Histogram(
            "hypobot_order_delivery_seconds",
            "Order delivery latency per transport",
            ["transport"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def update_uptime(self, seconds: float) -> None:
        self._uptime.set(seconds)

    def record_reconcile_run(self, checked: int, errors: int = 0) -> None:
        self._reconcile_runs.inc()
        self._bets_checked.inc(checked)
        if errors:
            self._reconcile_errors.inc(errors)

    def record_bet_resolved(self, status: str, is_live: bool, pnl: float) -> None:
        partition = _partition(is_live)
        self._bets_resolved.labels(status=status, partition=partition).inc()
        sign = "profit" if pnl >= 0 else "loss"
        self._realized_pnl.labels(sign=sign, partition=partition).inc(abs(pnl))

    def record_resolution_lookup(
        self,
        found: bool,
        resolved: bool,
        duration_seconds: float,
    ) -> None:
        if resolved:
            result = "resolved"
        elif found:
            result = "open"
        else:
            result = "not_found"
        self._resolution_lookup.labels(result=result).observe(duration_seconds)

    def record_oracle_call(self, outcome: str) -> None:
        self._oracle_calls.labels(outcome=outcome).inc()

    def record_cycle(self, is_live: bool, bankroll: float, bets_recorded: int) -> None:
        partition = _partition(is_live)
        self._bankroll.labels(partition=partition).set(bankroll)
        if bets_recorded:
            self._bets_recorded.labels(partition=partition).inc(bets_recorded)

    def record_order_submission(
        self,
        transport: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        self._order_submissions.labels(transport=transport, outcome=outcome).inc()
        self._order_latency.labels(transport=transport).observe(duration_seconds)

    def get_metrics(self) -> str:
        """Prometheus text exposition of all metrics."""
        return generate_latest(self._registry).decode("utf-8")
