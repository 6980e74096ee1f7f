"""
Tests for signal scoring.

Covers the momentum blend, sentiment gating by asset kind, bias nudges and
action / confidence classification.
"""

import pytest

from core.scoring import (
    HIGH,
    HOLD,
    LONG,
    LOW,
    MEDIUM,
    SHORT,
    Signal,
    bias_for_asset,
    classify_action,
    confidence_tier,
    momentum_score,
    pick_top_trades,
    score_asset,
)
from core.snapshots import AssetSnapshot
from strategy.bias_signals import BiasSignal
from strategy.registry import DEFAULT_STRATEGY

TS = "2026-01-01T00:00:00+00:00"


def _asset(label="BTCUSD", kind="crypto", price=50000.0, chg1h=0.0, chg4h=0.0):
    return AssetSnapshot(label=label, kind=kind, price=price, change_1h=chg1h, change_4h=chg4h)


def _bias(symbol, side, confidence=1.0):
    return BiasSignal(ts=TS, symbol=symbol, side=side, confidence=confidence)


class TestMomentum:

    def test_btc_reference_case(self):
        """1h +2%, 4h +1% with the default strategy scores a LONG"""
        signal = score_asset(_asset(chg1h=0.02, chg4h=0.01), 0.0, DEFAULT_STRATEGY)

        assert signal.components["momentum"] == pytest.approx(0.767, abs=1e-3)
        assert signal.final_score == pytest.approx(0.575, abs=1e-3)
        assert signal.action == LONG
        # |0.575| sits in the (0.45, 0.75] band
        assert signal.confidence == MEDIUM
        assert signal.title == "BTCUSD (crypto)"

    def test_zero_price_has_no_momentum(self):
        assert momentum_score(_asset(price=0.0, chg1h=0.05, chg4h=0.05)) == 0.0

    def test_momentum_is_clamped(self):
        assert momentum_score(_asset(chg1h=0.5, chg4h=0.5)) == pytest.approx(1.0)
        assert momentum_score(_asset(chg1h=-0.5, chg4h=-0.5)) == pytest.approx(-1.0)

    def test_higher_change_never_lowers_score(self):
        scores = [
            score_asset(_asset(chg1h=c, chg4h=0.0), 0.0, DEFAULT_STRATEGY).final_score
            for c in (-0.02, -0.005, 0.0, 0.003, 0.008, 0.02)
        ]
        assert scores == sorted(scores)


class TestSentiment:

    def test_sentiment_applies_to_crypto(self):
        signal = score_asset(_asset(), 0.8, DEFAULT_STRATEGY)
        assert signal.components["sentiment"] == pytest.approx(0.8)
        assert signal.final_score == pytest.approx(0.2, abs=1e-3)

    def test_sentiment_ignored_for_forex(self):
        signal = score_asset(_asset(label="EURUSD", kind="forex", price=1.1), 0.8, DEFAULT_STRATEGY)
        assert signal.components["sentiment"] == 0.0
        assert signal.final_score == 0.0
        assert signal.action == HOLD


class TestBias:

    def test_matching_long_signal_adds_bias(self):
        bias = bias_for_asset(_asset(), [_bias("BINANCE:BTCUSDT", "BUY", 0.5)])
        assert bias == pytest.approx(0.075)

    def test_short_signal_subtracts(self):
        bias = bias_for_asset(_asset(), [_bias("BTCUSD", "SHORT", 1.0)])
        assert bias == pytest.approx(-0.15)

    def test_bias_is_capped(self):
        signals = [_bias("BTCUSD", "LONG", 1.0) for _ in range(5)]
        assert bias_for_asset(_asset(), signals) == pytest.approx(0.3)

    def test_unrelated_symbol_ignored(self):
        assert bias_for_asset(_asset(), [_bias("ETHUSD", "LONG")]) == 0.0

    def test_unknown_side_ignored(self):
        assert bias_for_asset(_asset(), [_bias("BTCUSD", "FLAT")]) == 0.0

    def test_bias_flips_hold_to_long(self):
        plain = score_asset(_asset(), 0.0, DEFAULT_STRATEGY)
        nudged = score_asset(_asset(), 0.0, DEFAULT_STRATEGY, [_bias("BTC", "LONG", 1.0)])
        assert plain.action == HOLD
        assert nudged.action == LONG
        assert nudged.components["bias"] == pytest.approx(0.15)


class TestClassification:

    @pytest.mark.parametrize("score,expected", [
        (0.5, LONG),
        (0.2, HOLD),
        (-0.2, HOLD),
        (-0.21, SHORT),
    ])
    def test_thresholds_are_strict(self, score, expected):
        assert classify_action(score, 0.2, -0.2) == expected

    @pytest.mark.parametrize("score,expected", [
        (0.9, HIGH),
        (-0.8, HIGH),
        (0.75, MEDIUM),
        (0.5, MEDIUM),
        (0.45, LOW),
        (0.0, LOW),
    ])
    def test_confidence_tiers(self, score, expected):
        assert confidence_tier(score) == expected


def _signal(market_id, action, score):
    return Signal(market_id=market_id, title=market_id, action=action, confidence=LOW, final_score=score)


def test_pick_top_trades_orders_by_magnitude():
    signals = [
        _signal("A", LONG, 0.3),
        _signal("B", HOLD, 0.9),
        _signal("C", SHORT, -0.6),
        _signal("D", LONG, 0.1),
        _signal("E", LONG, 0.5),
    ]
    top = pick_top_trades(signals, 3)
    assert [s.market_id for s in top] == ["C", "E", "A"]


def test_pick_top_trades_all_hold_is_empty():
    assert pick_top_trades([_signal("A", HOLD, 0.1)]) == []
