"""
Market Tape Collector

Fetches 5-minute bars for a small crypto/forex universe from the Yahoo chart
API and reduces each to an AssetSnapshot (last price, 1h and 4h change).
Symbols that fail to fetch are dropped from the batch.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

from collectors.fanout import fan_out, successes
from core.exceptions import TransientFetchFailure
from core.snapshots import AssetSnapshot

logger = logging.getLogger(__name__)

YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
USER_AGENT = "pulsetrader/0.1"

BARS_PER_HOUR = 12      # 5m bars
BARS_PER_4H = 48
MIN_BARS = 4


@dataclass(frozen=True)
class TapeInstrument:
    symbol: str     # upstream ticker
    kind: str       # crypto / forex
    label: str      # tape label


DEFAULT_UNIVERSE: Sequence[TapeInstrument] = (
    TapeInstrument("BTC-USD", "crypto", "BTCUSD"),
    TapeInstrument("ETH-USD", "crypto", "ETHUSD"),
    TapeInstrument("SOL-USD", "crypto", "SOLUSD"),
    TapeInstrument("EURUSD=X", "forex", "EURUSD"),
    TapeInstrument("GBPUSD=X", "forex", "GBPUSD"),
    TapeInstrument("USDJPY=X", "forex", "USDJPY"),
)


def pct_change(last: Optional[float], ref: Optional[float]) -> float:
    if not last or not ref:
        return 0.0
    return (last - ref) / ref


def parse_chart(payload: Dict[str, Any], symbol: str) -> Dict[str, Any]:
    """
    Reduce a Yahoo chart response to price / change_1h / change_4h / bars.

    Raises:
        TransientFetchFailure: empty, malformed or too-short series
    """
    try:
        results = (payload.get("chart") or {}).get("result") or []
        if not results:
            raise TransientFetchFailure(f"Yahoo {symbol}: empty result")

        quotes = ((results[0].get("indicators") or {}).get("quote") or [{}])[0]
        closes = [c for c in (quotes.get("close") or []) if isinstance(c, (int, float))]
    except (AttributeError, TypeError, IndexError, KeyError) as exc:
        raise TransientFetchFailure(f"Yahoo {symbol}: malformed payload", exc) from exc

    if len(closes) < MIN_BARS:
        raise TransientFetchFailure(f"Insufficient bars for {symbol}")

    last = closes[-1]
    one_hour_ago = closes[max(0, len(closes) - BARS_PER_HOUR)]
    four_hours_ago = closes[max(0, len(closes) - BARS_PER_4H)] or closes[0]
    return {
        "price": last,
        "change_1h": pct_change(last, one_hour_ago),
        "change_4h": pct_change(last, four_hours_ago),
        "bars": len(closes),
    }


class MarketTapeCollector:
    """Best-effort tape fetcher; never raises for a single missing symbol."""

    def __init__(
        self,
        universe: Optional[Sequence[TapeInstrument]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self.universe = list(universe or DEFAULT_UNIVERSE)
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch_instrument(self, instrument: TapeInstrument) -> AssetSnapshot:
        url = YAHOO_CHART_URL.format(symbol=quote(instrument.symbol, safe=""))
        try:
            response = self.session.get(
                url,
                params={"range": "1d", "interval": "5m"},
                headers={"user-agent": USER_AGENT},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise TransientFetchFailure(f"Yahoo {instrument.symbol}", exc) from exc

        parsed = parse_chart(payload, instrument.symbol)
        return AssetSnapshot(
            label=instrument.label,
            kind=instrument.kind,
            symbol=instrument.symbol,
            **parsed,
        )

    def fetch(self) -> List[AssetSnapshot]:
        """Snapshots for every instrument that fetched cleanly, in universe order."""
        outcomes = fan_out(self.fetch_instrument, self.universe, key=lambda i: i.symbol)
        tape = successes(outcomes)
        logger.debug(f"Market tape: {len(tape)}/{len(self.universe)} instruments")
        return tape
