"""
pulsetrader Runner: Main Loop

Wires config, collectors, stores and the cycle pipeline together.

Flow (per run):
1. Validate app.yaml (+ env overrides)
2. Refuse early if a digest is requested but Telegram is not configured
3. Run the paper trading cycle(s) for one profile
4. Format the digest and deliver it

Paper mode only: no exchange connectivity, no real orders.
"""

import argparse
import logging
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from analytics.digest import format_digest
from analytics.leaderboard import compute_leaderboard
from analytics.report import write_summary_report
from collectors.market_tape import MarketTapeCollector
from collectors.sentiment import SentimentCollector
from core.audit_log import AuditLogger
from core.trading_cycle import (
    EVENT_LOG,
    CycleSettings,
    Observer,
    ProgressEvent,
    RunSummary,
    TradingCyclePipeline,
)
from infra.alerting import TelegramNotifier
from infra.metrics import MetricsRecorder
from infra.state_store import StateStore
from infra.webhook_server import WebhookServer
from strategy.bias_signals import BiasSignalLog
from strategy.registry import StrategyRegistry
from tools.config_validator import AppConfig, load_app_config

logger = logging.getLogger(__name__)

# Demo profiles run by --simulate-3: name -> seed bankroll
SIMULATION_PROFILES: Dict[str, float] = {
    "sim_100": 100.0,
    "sim_1000": 1000.0,
    "sim_10000": 10000.0,
}
SIMULATION_CYCLES = 6
SIMULATION_TARGET = 5.0
SIMULATION_INTERVAL = 10.0


def log_observer(event: ProgressEvent) -> None:
    """Forward progress messages to the log; data events only at debug."""
    if event.type == EVENT_LOG and event.message:
        logger.info(event.message)
    else:
        logger.debug(f"event={event.type}")


def _chain_observers(*observers: Optional[Observer]) -> Observer:
    active = [o for o in observers if o is not None]

    def emit(event: ProgressEvent) -> None:
        for observer in active:
            observer(event)

    return emit


def setup_logging(config: AppConfig) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_path))

    logging.basicConfig(
        level=getattr(logging, config.logging.level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )


class TradingLoop:
    """
    Paper trading runner.

    Responsibilities:
    - Load and validate config
    - Build collectors, stores and the pipeline
    - Run single-profile and multi-profile sessions
    - Deliver digests
    - Serve the webhook/API endpoints (including run triggers)
    """

    def __init__(self,
                 config_dir: str = "config",
                 config: Optional[AppConfig] = None,
                 pipeline: Optional[TradingCyclePipeline] = None,
                 notifier: Optional[TelegramNotifier] = None,
                 configure_logging: bool = True):
        self.config_dir = Path(config_dir)
        self.config = config or load_app_config(config_dir)

        if configure_logging:
            setup_logging(self.config)

        storage_dir = Path(self.config.storage.dir)
        self.state_store = StateStore(storage_dir=str(storage_dir))
        self.audit = AuditLogger(log_dir=str(storage_dir))
        self.strategy_registry = StrategyRegistry(storage_dir / "strategies.yaml")
        self.bias_log = BiasSignalLog(storage_dir / "tradingview-signals.json")

        self.metrics = MetricsRecorder(
            enabled=self.config.monitoring.metrics_enabled,
            port=self.config.monitoring.metrics_port,
        )
        self.notifier = notifier or TelegramNotifier.from_env()

        self.settings = CycleSettings(
            bias_window_minutes=self.config.signals.bias_window_minutes,
            top_n=self.config.signals.top_n,
            calm_volatility=self.config.signals.calm_volatility,
            max_hold_minutes=self.config.exits.max_hold_minutes,
            risk_pct=self.config.risk.risk_pct,
            min_stake=self.config.risk.min_stake,
            max_stake_floor=self.config.risk.max_stake_floor,
            max_stake_pct=self.config.risk.max_stake_pct,
        )

        if pipeline is None:
            tape = MarketTapeCollector()
            sentiment = SentimentCollector()
            pipeline = TradingCyclePipeline(
                tape_source=tape.fetch,
                sentiment_source=sentiment.fetch,
                strategy_registry=self.strategy_registry,
                bias_log=self.bias_log,
                state_store=self.state_store,
                audit=self.audit,
                settings=self.settings,
                metrics=self.metrics,
            )
        self.pipeline = pipeline

        logger.info(f"pulsetrader ready (paper mode, storage={storage_dir})")

    def run_once(self,
                 profile: Optional[str] = None,
                 bankroll: Optional[float] = None,
                 target_profit: Optional[float] = None,
                 max_cycles: Optional[int] = None,
                 interval_seconds: Optional[float] = None,
                 send_digest: Optional[bool] = None,
                 observer: Optional[Observer] = None) -> Dict[str, Any]:
        """
        Run one session for a profile and optionally deliver its digest.

        Unset arguments fall back to the app section of app.yaml.

        Returns:
            {"summary": RunSummary, "digest": str, "delivered": bool}

        Raises:
            ConfigurationError: digest requested without Telegram credentials (before any work)
            DeliveryFailure: digest delivery failed (after state is persisted)
        """
        app = self.config.app
        send_digest = app.send_digest if send_digest is None else send_digest
        if send_digest:
            self.notifier.assert_configured()

        self.metrics.start()
        summary: RunSummary = self.pipeline.run(
            profile=profile or app.profile,
            bankroll=app.bankroll if bankroll is None else bankroll,
            target_profit=app.target_profit if target_profit is None else target_profit,
            max_cycles=app.max_cycles if max_cycles is None else max_cycles,
            interval_seconds=app.interval_seconds if interval_seconds is None else interval_seconds,
            observer=_chain_observers(log_observer, observer),
        )

        digest = format_digest(summary)
        if send_digest:
            self.notifier.send(digest)
        else:
            logger.info("Digest delivery disabled")

        return {"summary": summary, "digest": digest, "delivered": bool(send_digest)}

    def run_profiles(self,
                     profiles: Optional[Dict[str, float]] = None,
                     max_cycles: int = SIMULATION_CYCLES,
                     target_profit: float = SIMULATION_TARGET,
                     interval_seconds: float = SIMULATION_INTERVAL,
                     send_digest: Optional[bool] = None,
                     observer: Optional[Observer] = None) -> List[Dict[str, Any]]:
        """Run several profiles sequentially (default: the three demo bankrolls)."""
        profiles = profiles or SIMULATION_PROFILES
        results = []
        for name, seed in profiles.items():
            logger.info(f"=== Simulation {name} (${seed:g}) ===")
            results.append(self.run_once(
                profile=name,
                bankroll=seed,
                target_profit=target_profit,
                max_cycles=max_cycles,
                interval_seconds=interval_seconds,
                send_digest=send_digest,
                observer=observer,
            ))
        return results

    def run_three_bankroll_simulations(self, send_digest: Optional[bool] = None) -> List[Dict[str, Any]]:
        return self.run_profiles(send_digest=send_digest)

    def demo_run(self, send_digest: Optional[bool] = None) -> Dict[str, Any]:
        """
        Run the three demo profiles, then write the summary report.

        Returns:
            {"runs": [RunSummary], "dashboard": leaderboard dict, "report_path": Path}
        """
        results = self.run_three_bankroll_simulations(send_digest=send_digest)
        runs = [r["summary"] for r in results]
        dashboard = self.leaderboard()
        report_path = write_summary_report(dashboard, runs, self.config.storage.reports_dir)
        return {"runs": runs, "dashboard": dashboard, "report_path": report_path}

    def leaderboard(self, profiles: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        return compute_leaderboard(self.state_store, self.audit, profiles)

    def build_server(self) -> WebhookServer:
        return WebhookServer(
            port=self.config.server.port,
            registry=self.strategy_registry,
            bias_log=self.bias_log,
            leaderboard_provider=partial(compute_leaderboard, self.state_store, self.audit),
            runner=self,
        )

    def serve(self) -> None:
        """Block serving the webhook/API endpoints until interrupted."""
        self.metrics.start()
        self.build_server().serve_forever()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point"""
    parser = argparse.ArgumentParser(description="pulsetrader paper trading engine")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run one session and exit (default)")
    mode.add_argument("--simulate-3", action="store_true", help="Run the sim_100 / sim_1000 / sim_10000 profiles")
    mode.add_argument("--demo-run", action="store_true", help="Run the demo profiles and write the summary report")
    mode.add_argument("--serve", action="store_true", help="Serve the webhook/API endpoints")
    parser.add_argument("--profile", help="Portfolio profile (default: app.profile)")
    parser.add_argument("--bankroll", type=float, help="Seed bankroll for a new profile")
    parser.add_argument("--cycles", type=int, help="Iterations per session")
    parser.add_argument("--target", type=float, help="Session profit target (USD)")
    parser.add_argument("--interval", type=float, help="Seconds between iterations")
    parser.add_argument("--no-digest", action="store_true", help="Skip Telegram digest delivery")
    parser.add_argument("--config-dir", default="config", help="Config directory")

    args = parser.parse_args(argv)

    # Logging configured in __init__
    loop = TradingLoop(config_dir=args.config_dir)
    send_digest = False if args.no_digest else None

    if args.serve:
        loop.serve()
    elif args.simulate_3:
        loop.run_three_bankroll_simulations(send_digest=send_digest)
    elif args.demo_run:
        demo = loop.demo_run(send_digest=send_digest)
        print(f"Summary report: {demo['report_path']}")
    else:
        result = loop.run_once(
            profile=args.profile,
            bankroll=args.bankroll,
            target_profit=args.target,
            max_cycles=args.cycles,
            interval_seconds=args.interval,
            send_digest=send_digest,
        )
        print(result["digest"])


if __name__ == "__main__":
    main()
