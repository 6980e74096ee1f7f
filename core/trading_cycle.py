"""
Trading Cycle Pipeline - Paper Trading Core

Drives N iterations for one profile, stopping early once the session's
realized PnL reaches the target. Each iteration:

1. Fetch tape + sentiment (concurrently)
2. Resolve active strategy, gather recent bias signals
3. Score every asset
4. Apply adaptive thresholds and re-classify
5. Audit the scored batch
6. Close positions (target / timeout)
7. Pick up to N candidates (fallback: strongest momentum)
8. Open positions (no pyramiding)
9. Persist the portfolio
10. Check the session target, pause before the next iteration

Progress is reported as ProgressEvents to an injected observer.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import logging

from core.audit_log import AuditLogger
from core.position_manager import (
    ClosedTrade,
    ExitConfig,
    PortfolioState,
    Position,
    PositionManager,
    RiskConfig,
)
from core.scoring import LONG, SHORT, Signal, classify_action, pick_top_trades, score_asset
from core.snapshots import AssetSnapshot, SentimentSnapshot
from infra.metrics import CycleStats, MetricsRecorder
from infra.state_store import StateStore
from strategy.bias_signals import BiasSignalLog
from strategy.registry import StrategyParams, StrategyRegistry

logger = logging.getLogger(__name__)


EVENT_LOG = "log"
EVENT_TAPE = "tape"
EVENT_SENTIMENT = "sentiment"
EVENT_SIGNALS = "signals"
EVENT_TRADES = "trades"
EVENT_STATE = "state"


@dataclass(frozen=True)
class ProgressEvent:
    """One typed progress update for live display."""
    type: str
    data: Any = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type}
        if self.message is not None:
            payload["message"] = self.message
        if self.data is not None:
            payload["data"] = self.data
        return payload


Observer = Callable[[ProgressEvent], None]


@dataclass(frozen=True)
class CycleSettings:
    """Knobs for the cycle; defaults match config/app.yaml."""
    bias_window_minutes: float = 30.0
    top_n: int = 3
    calm_volatility: float = 0.12
    calm_factor: float = 0.7
    min_calm_threshold: float = 0.04
    max_hold_minutes: float = 5.0
    risk_pct: float = 0.02
    min_stake: float = 20.0
    max_stake_floor: float = 50.0
    max_stake_pct: float = 0.05

    def risk_for(self, seed_bankroll: float) -> RiskConfig:
        return RiskConfig(
            risk_pct=self.risk_pct,
            min_stake=self.min_stake,
            max_stake=max(self.max_stake_floor, seed_bankroll * self.max_stake_pct),
        )


@dataclass(frozen=True)
class AdaptiveThresholds:
    long_threshold: float
    short_threshold: float
    volatility: float
    calm: bool


@dataclass
class CycleSummary:
    """Everything one iteration decided."""
    cycle: int
    profile: str
    strategy: str
    state: Dict[str, Any]
    top_signals: List[Signal]
    all_signals: List[Signal]
    opened: List[Position]
    closed: List[ClosedTrade]
    tape: List[AssetSnapshot]
    sentiment: SentimentSnapshot
    adaptive: AdaptiveThresholds
    generated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycle,
            "profile": self.profile,
            "strategy": self.strategy,
            "state": self.state,
            "top_signals": [s.to_dict() for s in self.top_signals],
            "all_signals": [s.to_dict() for s in self.all_signals],
            "opened": [p.to_dict() for p in self.opened],
            "closed": [c.to_dict() for c in self.closed],
            "tape": [a.to_dict() for a in self.tape],
            "sentiment": self.sentiment.to_dict(),
            "adaptive": asdict(self.adaptive),
            "generated_at": self.generated_at,
        }


@dataclass
class RunSummary:
    """Structured result of a run, handed to the digest formatter."""
    profile: str
    bankroll: float
    target_profit: float
    max_cycles: int
    cycles: List[CycleSummary] = field(default_factory=list)
    session_pnl: float = 0.0
    target_reached: bool = False

    @property
    def last(self) -> Optional[CycleSummary]:
        return self.cycles[-1] if self.cycles else None

    @property
    def strategy_name(self) -> Optional[str]:
        return self.last.strategy if self.last else None

    @property
    def final_bankroll(self) -> Optional[float]:
        return self.last.state["bankroll"] if self.last else None

    def to_dict(self) -> Dict[str, Any]:
        last = self.last.to_dict() if self.last else {}
        return {
            **last,
            "profile": self.profile,
            "max_cycles": self.max_cycles,
            "target_profit": self.target_profit,
            "session_pnl": round(self.session_pnl, 2),
            "target_reached": self.target_reached,
            "cycles_completed": len(self.cycles),
        }


def market_volatility(signals: Sequence[Signal]) -> float:
    """Mean |momentum| across the batch (0 for an empty batch)."""
    if not signals:
        return 0.0
    return sum(abs(s.momentum) for s in signals) / len(signals)


def adaptive_thresholds(
    signals: Sequence[Signal],
    params: StrategyParams,
    settings: CycleSettings = CycleSettings(),
) -> AdaptiveThresholds:
    """Tighten thresholds toward zero when the market is calm."""
    volatility = market_volatility(signals)
    long_t = params.long_threshold
    short_t = params.short_threshold
    calm = volatility < settings.calm_volatility
    if calm:
        long_t = max(settings.min_calm_threshold, long_t * settings.calm_factor)
        short_t = min(-settings.min_calm_threshold, short_t * settings.calm_factor)
    return AdaptiveThresholds(
        long_threshold=long_t,
        short_threshold=short_t,
        volatility=volatility,
        calm=calm,
    )


def reclassify(signals: Sequence[Signal], thresholds: AdaptiveThresholds) -> List[Signal]:
    return [
        s.with_action(classify_action(s.final_score, thresholds.long_threshold, thresholds.short_threshold))
        for s in signals
    ]


def select_candidates(signals: Sequence[Signal], count: int = 3) -> List[Signal]:
    """
    Top actionable signals; when none are actionable, the strongest movers
    with a direction taken from momentum's sign.
    """
    directional = pick_top_trades(signals, count)
    if directional:
        return directional

    movers = sorted(signals, key=lambda s: abs(s.momentum), reverse=True)[:count]
    return [s.with_action(LONG if s.momentum >= 0 else SHORT) for s in movers]


class TradingCyclePipeline:
    """
    Reusable paper trading pipeline.

    Collaborators are injected so the same pipeline runs against live
    collectors, recorded fixtures or test doubles.
    """

    def __init__(self,
                 tape_source: Callable[[], List[AssetSnapshot]],
                 sentiment_source: Callable[[], SentimentSnapshot],
                 strategy_registry: StrategyRegistry,
                 bias_log: BiasSignalLog,
                 state_store: StateStore,
                 audit: AuditLogger,
                 settings: Optional[CycleSettings] = None,
                 metrics: Optional[MetricsRecorder] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize pipeline with core components.

        Args:
            tape_source: Returns the current market tape (best effort)
            sentiment_source: Returns the current sentiment snapshot
            strategy_registry: Strategy config store
            bias_log: Bias signal ring log
            state_store: Per-profile portfolio repository
            audit: Signal/trade audit logger
            settings: Cycle knobs
            metrics: Optional metrics recorder
            sleep: Pause between iterations
        """
        self.tape_source = tape_source
        self.sentiment_source = sentiment_source
        self.strategy_registry = strategy_registry
        self.bias_log = bias_log
        self.state_store = state_store
        self.audit = audit
        self.settings = settings or CycleSettings()
        self.metrics = metrics
        self.sleep = sleep
        self.position_manager = PositionManager(audit=audit)

        logger.info("Initialized TradingCyclePipeline")

    def _fetch(self) -> Tuple[List[AssetSnapshot], SentimentSnapshot]:
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="fetch") as pool:
            tape_future = pool.submit(self.tape_source)
            sentiment_future = pool.submit(self.sentiment_source)
            return tape_future.result(), sentiment_future.result()

    def run(self,
            profile: str = "default",
            bankroll: float = 10000.0,
            target_profit: float = 5.0,
            max_cycles: int = 1,
            interval_seconds: float = 30.0,
            observer: Optional[Observer] = None) -> RunSummary:
        """
        Run up to ``max_cycles`` iterations for ``profile``.

        Args:
            profile: Portfolio profile name
            bankroll: Seed bankroll (used when the profile is new, and for stake caps)
            target_profit: Session realized-PnL target; also the per-position profit target
            max_cycles: Iteration bound
            interval_seconds: Pause between iterations
            observer: Receives ProgressEvents

        Returns:
            RunSummary for the digest formatter
        """
        emit: Observer = observer or (lambda event: None)
        max_cycles = max(1, int(max_cycles))

        state = PortfolioState.from_dict(self.state_store.load(profile, bankroll))
        start_realized = state.realized_pnl
        summary = RunSummary(
            profile=profile,
            bankroll=bankroll,
            target_profit=target_profit,
            max_cycles=max_cycles,
        )

        emit(ProgressEvent(EVENT_LOG, message=f"Starting trading cycle ({profile}, ${bankroll:g})"))

        for cycle in range(1, max_cycles + 1):
            started = time.monotonic()
            cycle_summary = self.run_cycle(state, cycle, max_cycles, profile, bankroll, target_profit, emit)
            summary.cycles.append(cycle_summary)

            summary.session_pnl = state.realized_pnl - start_realized
            reached = summary.session_pnl >= target_profit

            if self.metrics:
                self.metrics.observe_cycle(CycleStats(
                    profile=profile,
                    status="target_reached" if reached else "completed",
                    signals=len(cycle_summary.all_signals),
                    actionable=sum(1 for s in cycle_summary.all_signals if s.actionable),
                    opened=len(cycle_summary.opened),
                    closed=len(cycle_summary.closed),
                    duration_seconds=time.monotonic() - started,
                ))
                self.metrics.record_portfolio(profile, state.bankroll, len(state.open_positions), state.realized_pnl)

            if reached:
                summary.target_reached = True
                emit(ProgressEvent(EVENT_LOG, message=f"Session target reached: +${summary.session_pnl:.2f}"))
                logger.info(f"[{profile}] session target reached: +${summary.session_pnl:.2f} (target +${target_profit})")
                break

            emit(ProgressEvent(EVENT_LOG, message=f"Cycle {cycle} complete. Bankroll: ${state.bankroll:.2f}"))
            if cycle < max_cycles:
                emit(ProgressEvent(EVENT_LOG, message=f"Waiting {interval_seconds:g}s before next cycle..."))
                self.sleep(interval_seconds)

        return summary

    def run_cycle(self,
                  state: PortfolioState,
                  cycle: int,
                  max_cycles: int,
                  profile: str,
                  seed_bankroll: float,
                  target_profit: float,
                  emit: Observer) -> CycleSummary:
        """Execute one iteration against ``state`` (mutated in place)."""
        emit(ProgressEvent(EVENT_LOG, message=f"Cycle {cycle}/{max_cycles}: Fetching market data & sentiment..."))

        # Step 1: Fetch
        tape, sentiment = self._fetch()
        emit(ProgressEvent(EVENT_TAPE, data=[a.to_dict() for a in tape]))
        emit(ProgressEvent(EVENT_LOG, message=f"Market tape: {len(tape)} assets fetched"))
        emit(ProgressEvent(EVENT_SENTIMENT, data=sentiment.to_dict()))
        emit(ProgressEvent(EVENT_LOG, message=f"Sentiment: {sentiment.label} ({sentiment.score})"))

        # Step 2: Strategy + bias
        strategy = self.strategy_registry.active_config()
        bias_signals = self.bias_log.recent(self.settings.bias_window_minutes)

        # Step 3: Score
        emit(ProgressEvent(EVENT_LOG, message="Scoring signals..."))
        signals = [score_asset(asset, sentiment.score, strategy, bias_signals) for asset in tape]

        # Step 4: Adaptive thresholds
        adaptive = adaptive_thresholds(signals, strategy.params, self.settings)
        signals = reclassify(signals, adaptive)
        logger.debug(
            f"Adaptive thresholds: long={adaptive.long_threshold:.3f} short={adaptive.short_threshold:.3f} "
            f"vol={adaptive.volatility:.3f} calm={adaptive.calm}"
        )

        # Step 5: Audit
        self.audit.log_signals(signals)
        actionable = sum(1 for s in signals if s.actionable)
        emit(ProgressEvent(EVENT_SIGNALS, data=[s.to_dict() for s in signals]))
        emit(ProgressEvent(EVENT_LOG, message=f"Signals scored: {actionable} actionable out of {len(signals)}"))

        # Step 6: Closes
        prices_by_label = {asset.label: asset for asset in tape}
        emit(ProgressEvent(EVENT_LOG, message="Checking positions for closes..."))
        closed = self.position_manager.evaluate_closes(
            state,
            prices_by_label,
            ExitConfig(profit_target_usd=target_profit, max_hold_minutes=self.settings.max_hold_minutes),
        )
        if closed:
            detail = ", ".join(f"{c.market_id} {'+' if c.pnl >= 0 else '-'}${abs(c.pnl):.2f}" for c in closed)
            emit(ProgressEvent(EVENT_LOG, message=f"Closed {len(closed)} position(s): {detail}"))

        # Step 7: Candidates
        top_signals = select_candidates(signals, self.settings.top_n)
        picks = ", ".join(f"{s.action} {s.market_id}" for s in top_signals) or "none"
        emit(ProgressEvent(EVENT_LOG, message=f"Top signals: {picks}"))

        # Step 8: Opens
        risk = self.settings.risk_for(seed_bankroll)
        opened: List[Position] = []
        for candidate in top_signals:
            if state.has_open(candidate.market_id, candidate.action):
                logger.debug(f"Skip {candidate.action} {candidate.market_id}: already open")
                continue
            asset = prices_by_label.get(candidate.market_id)
            if asset is None:
                continue
            position = self.position_manager.open_position(state, candidate, asset, risk)
            if position:
                opened.append(position)

        if opened:
            detail = ", ".join(f"{p.side} {p.market_id} ${p.stake:.2f}" for p in opened)
            emit(ProgressEvent(EVENT_LOG, message=f"Opened {len(opened)} position(s): {detail}"))
        emit(ProgressEvent(EVENT_TRADES, data={
            "opened": [p.to_dict() for p in opened],
            "closed": [c.to_dict() for c in closed],
        }))

        # Step 9: Persist
        state.updated_at = datetime.now(timezone.utc).isoformat()
        snapshot = state.to_dict()
        self.state_store.save(snapshot, profile)
        emit(ProgressEvent(EVENT_STATE, data={**snapshot, "profile": profile}))

        logger.info(
            f"[{profile}] cycle {cycle}/{max_cycles}: {len(signals)} signals, {actionable} actionable, "
            f"{len(opened)} opened, {len(closed)} closed, bankroll ${state.bankroll:.2f}"
        )

        return CycleSummary(
            cycle=cycle,
            profile=profile,
            strategy=strategy.name,
            state=snapshot,
            top_signals=top_signals,
            all_signals=signals,
            opened=opened,
            closed=closed,
            tape=list(tape),
            sentiment=sentiment,
            adaptive=adaptive,
        )
