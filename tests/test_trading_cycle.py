"""
Tests for the trading cycle pipeline.

Collectors are replaced with fixed snapshots so every step of an iteration
runs against real stores in a temp directory.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from core.audit_log import AuditLogger
from core.position_manager import PortfolioState, Position
from core.scoring import HOLD, LONG, LOW, SHORT, Signal
from core.snapshots import AssetSnapshot, SentimentSnapshot
from core.trading_cycle import (
    EVENT_LOG,
    EVENT_SENTIMENT,
    EVENT_SIGNALS,
    EVENT_STATE,
    EVENT_TAPE,
    EVENT_TRADES,
    CycleSettings,
    TradingCyclePipeline,
    adaptive_thresholds,
    select_candidates,
)
from infra.metrics import MetricsRecorder
from infra.state_store import StateStore
from strategy.bias_signals import BiasSignalLog
from strategy.registry import StrategyParams, StrategyRegistry

TAPE = [
    AssetSnapshot(label="BTCUSD", kind="crypto", price=50000.0, change_1h=0.02, change_4h=0.01),
    AssetSnapshot(label="ETHUSD", kind="crypto", price=3000.0, change_1h=-0.015, change_4h=-0.03),
    AssetSnapshot(label="EURUSD", kind="forex", price=1.1, change_1h=0.0001, change_4h=0.0),
]


def _signal(market_id, momentum, action=HOLD, score=0.0):
    return Signal(market_id=market_id, title=market_id, action=action, confidence=LOW,
                  final_score=score, components={"momentum": momentum, "sentiment": 0.0, "bias": 0.0})


@pytest.fixture
def pipeline_factory(tmp_path):
    def _build(tape=None, sentiment=None, sleep=None, metrics=None):
        tape = TAPE if tape is None else tape
        return TradingCyclePipeline(
            tape_source=lambda: list(tape),
            sentiment_source=lambda: sentiment or SentimentSnapshot(score=0.0),
            strategy_registry=StrategyRegistry(tmp_path / "strategies.yaml"),
            bias_log=BiasSignalLog(tmp_path / "signals.json"),
            state_store=StateStore(str(tmp_path)),
            audit=AuditLogger(str(tmp_path)),
            metrics=metrics,
            sleep=sleep or Mock(),
        )
    return _build


class TestAdaptiveThresholds:

    def test_calm_market_tightens(self):
        params = StrategyParams(long_threshold=0.2, short_threshold=-0.2)
        result = adaptive_thresholds([_signal("A", 0.05), _signal("B", -0.05)], params)

        assert result.calm is True
        assert result.volatility == pytest.approx(0.05)
        assert result.long_threshold == pytest.approx(0.14)
        assert result.short_threshold == pytest.approx(-0.14)

    def test_calm_threshold_floor(self):
        params = StrategyParams(long_threshold=0.05, short_threshold=-0.05)
        result = adaptive_thresholds([_signal("A", 0.0)], params)
        assert result.long_threshold == pytest.approx(0.04)
        assert result.short_threshold == pytest.approx(-0.04)

    def test_volatile_market_keeps_base(self):
        params = StrategyParams(long_threshold=0.2, short_threshold=-0.2)
        result = adaptive_thresholds([_signal("A", 0.5), _signal("B", -0.3)], params)

        assert result.calm is False
        assert result.long_threshold == 0.2
        assert result.short_threshold == -0.2

    def test_empty_batch_is_calm(self):
        result = adaptive_thresholds([], StrategyParams(), CycleSettings())
        assert result.volatility == 0.0
        assert result.calm is True


class TestSelectCandidates:

    def test_actionable_signals_win(self):
        signals = [_signal("A", 0.9), _signal("B", 0.1, LONG, 0.3), _signal("C", -0.2, SHORT, -0.4)]
        assert [s.market_id for s in select_candidates(signals)] == ["C", "B"]

    def test_all_hold_falls_back_to_momentum(self):
        signals = [
            _signal("A", 0.01),
            _signal("B", -0.06),
            _signal("C", 0.0),
            _signal("D", 0.03),
        ]
        picks = select_candidates(signals, 3)

        assert [s.market_id for s in picks] == ["B", "D", "A"]
        assert [s.action for s in picks] == [SHORT, LONG, LONG]

    def test_zero_momentum_fallback_is_long(self):
        picks = select_candidates([_signal("A", 0.0)])
        assert picks[0].action == LONG

    def test_empty_tape_no_candidates(self):
        assert select_candidates([]) == []


class TestPipelineRun:

    def test_single_cycle_opens_and_persists(self, pipeline_factory, tmp_path):
        pipeline = pipeline_factory()
        summary = pipeline.run(profile="t", bankroll=1000.0, max_cycles=1)

        cycle = summary.last
        assert cycle.strategy == "Momentum + News Sentiment v1"
        assert len(cycle.all_signals) == 3
        opened = {(p.market_id, p.side) for p in cycle.opened}
        assert ("BTCUSD", LONG) in opened
        assert ("ETHUSD", SHORT) in opened

        stored = PortfolioState.from_dict(StateStore(str(tmp_path)).load("t"))
        assert len(stored.open_positions) == len(cycle.opened)
        assert stored.bankroll == pytest.approx(1000.0 - sum(p.stake for p in cycle.opened))

        audit = AuditLogger(str(tmp_path))
        assert len(audit.read_signals()) == 3
        assert {r["event"] for r in audit.read_trades()} == {"OPEN"}

    def test_stake_cap_uses_seed_bankroll(self, pipeline_factory):
        summary = pipeline_factory().run(profile="big", bankroll=100000.0, max_cycles=1)
        stakes = [p.stake for p in summary.last.opened]
        # cap is max(50, 5000); each stake is 2% of the remaining bankroll
        assert stakes == pytest.approx([2000.0, 1960.0])

    def test_small_seed_uses_min_stake(self, pipeline_factory):
        summary = pipeline_factory().run(profile="small", bankroll=100.0, max_cycles=1)
        assert [p.stake for p in summary.last.opened] == [20.0, 20.0]

    def test_no_pyramiding_across_cycles(self, pipeline_factory):
        sleep = Mock()
        pipeline = pipeline_factory(sleep=sleep)
        summary = pipeline.run(profile="p", bankroll=1000.0, max_cycles=2, interval_seconds=7)

        first, second = summary.cycles
        assert first.opened
        assert second.opened == []
        sleep.assert_called_once_with(7)

    def test_events_cover_every_type(self, pipeline_factory):
        events = []
        pipeline_factory().run(profile="e", bankroll=1000.0, observer=events.append)

        types = {e.type for e in events}
        assert types == {EVENT_LOG, EVENT_TAPE, EVENT_SENTIMENT, EVENT_SIGNALS, EVENT_TRADES, EVENT_STATE}
        state_event = [e for e in events if e.type == EVENT_STATE][-1]
        assert state_event.data["profile"] == "e"

    def test_session_target_stops_early(self, pipeline_factory, tmp_path):
        opened = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        store = StateStore(str(tmp_path))
        state = PortfolioState(bankroll=900.0, open_positions=[
            Position(market_id="BTCUSD", title="BTCUSD (crypto)", side=LONG, stake=100.0,
                     units=0.01, entry_price=49000.0, opened_at=opened),
        ])
        store.save(state.to_dict(), "goal")

        sleep = Mock()
        summary = pipeline_factory(sleep=sleep).run(
            profile="goal", bankroll=1000.0, target_profit=5.0, max_cycles=6
        )

        assert summary.target_reached is True
        assert len(summary.cycles) == 1
        assert summary.session_pnl == pytest.approx(10.0)
        assert summary.last.closed[0].reason == "target"
        sleep.assert_not_called()

    def test_calm_tape_still_trades(self, pipeline_factory):
        calm = [
            AssetSnapshot(label="EURUSD", kind="forex", price=1.1, change_1h=0.0002, change_4h=0.0001),
            AssetSnapshot(label="GBPUSD", kind="forex", price=1.3, change_1h=-0.0004, change_4h=0.0),
        ]
        summary = pipeline_factory(tape=calm).run(profile="calm", bankroll=1000.0)

        assert summary.last.adaptive.calm is True
        assert [p.market_id for p in summary.last.opened] == ["GBPUSD", "EURUSD"]
        assert summary.last.opened[0].side == SHORT

    def test_empty_tape_completes(self, pipeline_factory):
        summary = pipeline_factory(tape=[]).run(profile="empty", bankroll=1000.0)
        assert summary.last.all_signals == []
        assert summary.last.opened == []

    def test_metrics_recorded(self, pipeline_factory):
        metrics = MetricsRecorder(enabled=False)
        pipeline_factory(metrics=metrics).run(profile="m", bankroll=1000.0)

        assert metrics.last_cycle().profile == "m"
        assert metrics.last_cycle().signals == 3
        assert "m" in metrics.bankroll_snapshot()

    def test_collector_failure_aborts_run(self, tmp_path):
        def boom():
            raise RuntimeError("tape down")

        pipeline = TradingCyclePipeline(
            tape_source=boom,
            sentiment_source=lambda: SentimentSnapshot(),
            strategy_registry=StrategyRegistry(tmp_path / "strategies.yaml"),
            bias_log=BiasSignalLog(tmp_path / "signals.json"),
            state_store=StateStore(str(tmp_path)),
            audit=AuditLogger(str(tmp_path)),
            sleep=Mock(),
        )
        with pytest.raises(RuntimeError, match="tape down"):
            pipeline.run(profile="x", bankroll=1000.0)
