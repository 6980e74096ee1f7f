"""Market and sentiment collectors for pulsetrader"""

from .fanout import FetchOutcome, fan_out, successes  # noqa: F401
from .market_tape import MarketTapeCollector  # noqa: F401
from .sentiment import SentimentCollector  # noqa: F401

__all__ = [
	"FetchOutcome",
	"fan_out",
	"successes",
	"MarketTapeCollector",
	"SentimentCollector",
]
