"""
Signal Scoring

Turns one asset snapshot into a classified trading signal:

    momentum   = 0.65 * clamp(chg1h / 1%) + 0.35 * clamp(chg4h / 3%)
    sentiment  = global sentiment score (crypto only)
    bias       = sum of +/-0.15 * confidence over matching bias signals, clamped to +/-0.3
    final      = momentum_weight * momentum + sentiment_weight * sentiment + bias

Pure functions only; no I/O.
"""

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Iterable, List, Sequence

from core.snapshots import AssetSnapshot
from infra.symbols import side_direction, symbol_matches_label
from strategy.bias_signals import BiasSignal
from strategy.registry import StrategyConfig

LONG = "LONG"
SHORT = "SHORT"
HOLD = "HOLD"

HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"

MOMENTUM_1H_SCALE = 0.01
MOMENTUM_4H_SCALE = 0.03
MOMENTUM_1H_WEIGHT = 0.65
MOMENTUM_4H_WEIGHT = 0.35

BIAS_STEP = 0.15
BIAS_CAP = 0.3


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


@dataclass(frozen=True)
class Signal:
    """Scored asset, logged for audit."""
    market_id: str
    title: str
    action: str
    confidence: str
    final_score: float
    components: Dict[str, float] = field(default_factory=dict)
    price: float = 0.0
    kind: str = ""
    change_1h: float = 0.0
    change_4h: float = 0.0

    @property
    def momentum(self) -> float:
        return self.components.get("momentum", 0.0)

    @property
    def actionable(self) -> bool:
        return self.action != HOLD

    def with_action(self, action: str) -> "Signal":
        return replace(self, action=action)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def momentum_score(asset: AssetSnapshot) -> float:
    """Blend of 1h and 4h change, in [-1, 1]. No price means no momentum."""
    if not asset.price or asset.price <= 0:
        return 0.0
    m1h = clamp((asset.change_1h or 0.0) / MOMENTUM_1H_SCALE, -1.0, 1.0)
    m4h = clamp((asset.change_4h or 0.0) / MOMENTUM_4H_SCALE, -1.0, 1.0)
    return MOMENTUM_1H_WEIGHT * m1h + MOMENTUM_4H_WEIGHT * m4h


def bias_for_asset(asset: AssetSnapshot, bias_signals: Iterable[BiasSignal]) -> float:
    """Net bias nudge from signals whose symbol matches the asset label."""
    bias = 0.0
    for signal in bias_signals:
        if not symbol_matches_label(signal.symbol, asset.label):
            continue
        direction = side_direction(signal.side)
        bias += direction * BIAS_STEP * clamp(signal.confidence, 0.0, 1.0)
    return clamp(bias, -BIAS_CAP, BIAS_CAP)


def classify_action(final_score: float, long_threshold: float, short_threshold: float) -> str:
    if final_score > long_threshold:
        return LONG
    if final_score < short_threshold:
        return SHORT
    return HOLD


def confidence_tier(final_score: float) -> str:
    magnitude = abs(final_score)
    if magnitude > 0.75:
        return HIGH
    if magnitude > 0.45:
        return MEDIUM
    return LOW


def score_asset(
    asset: AssetSnapshot,
    sentiment: float,
    strategy: StrategyConfig,
    bias_signals: Sequence[BiasSignal] = (),
) -> Signal:
    """
    Score one asset with the given strategy.

    Args:
        asset: Tape snapshot for the asset
        sentiment: Global sentiment score in [-1, 1]
        strategy: Active strategy (fully populated params)
        bias_signals: Recent bias signals

    Returns:
        Signal classified against the strategy's own thresholds
    """
    params = strategy.params
    momentum = momentum_score(asset)
    sentiment_adj = float(sentiment or 0.0) if asset.kind == "crypto" else 0.0
    bias = bias_for_asset(asset, bias_signals)

    final_score = (
        params.momentum_weight * momentum
        + params.sentiment_weight * sentiment_adj
        + bias
    )

    return Signal(
        market_id=asset.label,
        title=f"{asset.label} ({asset.kind})",
        action=classify_action(final_score, params.long_threshold, params.short_threshold),
        confidence=confidence_tier(final_score),
        final_score=round(final_score, 3),
        components={
            "momentum": round(momentum, 3),
            "sentiment": round(sentiment_adj, 3),
            "bias": round(bias, 3),
        },
        price=asset.price,
        kind=asset.kind,
        change_1h=asset.change_1h,
        change_4h=asset.change_4h,
    )


def pick_top_trades(signals: Sequence[Signal], count: int = 3) -> List[Signal]:
    """Highest |final_score| actionable signals; ties keep input order."""
    actionable = [s for s in signals if s.actionable]
    return sorted(actionable, key=lambda s: abs(s.final_score), reverse=True)[:count]
