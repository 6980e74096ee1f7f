"""Prometheus-backed metrics hooks for the paper trading cycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from prometheus_client import REGISTRY, Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)


@dataclass
class CycleStats:
    profile: str
    status: str             # "completed" / "target_reached"
    signals: int
    actionable: int
    opened: int
    closed: int
    duration_seconds: float


class MetricsRecorder:
    """
    Expose cycle and portfolio stats via Prometheus.

    Singleton pattern to prevent duplicate metric registration errors.
    """
    _instance: Optional['MetricsRecorder'] = None
    _initialized: bool = False

    def __new__(cls, enabled: bool = False, port: int = 9100):
        """Ensure only one MetricsRecorder instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, enabled: bool = False, port: int = 9100) -> None:
        # Skip re-initialization if already initialized
        if self.__class__._initialized:
            return

        self._enabled = bool(enabled)
        self._port = port
        self._started = False
        self.__class__._initialized = True

        self._last_cycle_stats: Optional[CycleStats] = None
        self._last_bankroll: Dict[str, float] = {}

        if not self._enabled:
            self._cycle_summary = None
            self._cycle_counter = None
            self._bankroll_gauge = None
            self._positions_gauge = None
            self._realized_gauge = None
            self._trades_counter = None
            return

        self._cycle_summary = Summary(
            "trader_cycle_duration_seconds",
            "Duration of a full paper trading cycle",
            labelnames=("profile",),
        )
        self._cycle_counter = Counter(
            "trader_cycle_total",
            "Total trading cycles by status",
            labelnames=("profile", "status"),
        )
        self._bankroll_gauge = Gauge(
            "trader_bankroll_usd",
            "Uncommitted paper bankroll",
            labelnames=("profile",),
        )
        self._positions_gauge = Gauge(
            "trader_open_positions",
            "Number of open paper positions",
            labelnames=("profile",),
        )
        self._realized_gauge = Gauge(
            "trader_realized_pnl_usd",
            "Cumulative realized PnL",
            labelnames=("profile",),
        )
        self._trades_counter = Counter(
            "trader_trades_total",
            "Paper trade events (open/close)",
            labelnames=("profile", "event"),
        )

    @classmethod
    def _reset_for_testing(cls) -> None:
        """
        Reset singleton state for testing.
        WARNING: Only call from test fixtures/teardown.
        """
        if cls._instance is not None and cls._instance._enabled:
            for collector in list(REGISTRY._collector_to_names):
                names = REGISTRY._collector_to_names.get(collector, set())
                if any(name.startswith("trader_") for name in names):
                    REGISTRY.unregister(collector)

        cls._instance = None
        cls._initialized = False

    def start(self) -> None:
        if not self._enabled or self._started:
            return
        try:
            start_http_server(self._port)
        except OSError as exc:
            self._enabled = False
            logger.error("Failed to start metrics exporter on port %s: %s", self._port, exc)
            return
        self._started = True
        logger.info("Prometheus metrics exporter listening on 0.0.0.0:%s", self._port)

    def is_enabled(self) -> bool:
        return self._enabled

    def observe_cycle(self, stats: CycleStats) -> None:
        if self._enabled:
            assert self._cycle_summary and self._cycle_counter and self._trades_counter
            self._cycle_summary.labels(profile=stats.profile).observe(stats.duration_seconds)
            self._cycle_counter.labels(profile=stats.profile, status=stats.status).inc()
            if stats.opened:
                self._trades_counter.labels(profile=stats.profile, event="open").inc(stats.opened)
            if stats.closed:
                self._trades_counter.labels(profile=stats.profile, event="close").inc(stats.closed)

        self._last_cycle_stats = stats

    def record_portfolio(self, profile: str, bankroll: float, open_positions: int, realized_pnl: float) -> None:
        """Record the post-cycle portfolio snapshot for a profile"""
        self._last_bankroll[profile] = bankroll
        if self._enabled:
            assert self._bankroll_gauge and self._positions_gauge and self._realized_gauge
            self._bankroll_gauge.labels(profile=profile).set(bankroll)
            self._positions_gauge.labels(profile=profile).set(max(open_positions, 0))
            self._realized_gauge.labels(profile=profile).set(realized_pnl)

    def last_cycle(self) -> Optional[CycleStats]:
        return self._last_cycle_stats

    def bankroll_snapshot(self) -> Dict[str, float]:
        return dict(self._last_bankroll)


__all__ = ["MetricsRecorder", "CycleStats"]
