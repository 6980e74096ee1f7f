"""Per-cycle market and sentiment snapshots handed to the core by collectors."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class AssetSnapshot:
    """One asset on the tape."""
    label: str              # unique within a batch, e.g. "BTCUSD"
    kind: str               # "crypto" / "forex"
    price: float
    change_1h: float = 0.0  # fractional
    change_4h: float = 0.0  # fractional
    bars: int = 0
    symbol: str = ""        # upstream ticker, e.g. "BTC-USD"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SentimentSnapshot:
    """Blended sentiment reading for the cycle."""
    score: float = 0.0      # [-1, 1]
    components: Dict[str, float] = field(default_factory=dict)
    sample: List[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        if self.score > 0:
            return "Bullish"
        if self.score < 0:
            return "Bearish"
        return "Neutral"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
