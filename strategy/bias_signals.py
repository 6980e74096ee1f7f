"""
Bias Signal Log

Externally submitted directional opinions (TradingView alerts and similar),
kept in a bounded append-only ring log and consumed by the scorer as a
per-asset score nudge.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from infra.state_store import atomic_write_json
from infra.symbols import normalize_side, normalize_symbol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BiasSignal:
    """One normalized bias signal."""
    ts: str
    symbol: str
    side: str
    confidence: float
    source: str = "tradingview"
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def timestamp(self) -> datetime:
        ts = datetime.fromisoformat(self.ts)
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "BiasSignal":
        return cls(
            ts=raw["ts"],
            symbol=normalize_symbol(raw.get("symbol")),
            side=normalize_side(raw.get("side")),
            confidence=float(raw.get("confidence", 0.5)),
            source=raw.get("source", "tradingview"),
            raw=dict(raw.get("raw") or {}),
        )


def _coerce_confidence(value: Any) -> float:
    if value is None:
        return 0.5
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.5
    return max(0.0, min(1.0, confidence))


class BiasSignalLog:
    """
    Bounded ring log of bias signals persisted as one JSON document.

    Appends read the whole document, append, trim to ``capacity`` and write
    the whole document back.
    """

    DEFAULT_CAPACITY = 200

    def __init__(self, path: Optional[Path] = None, capacity: int = DEFAULT_CAPACITY):
        if path is None:
            path = Path(os.getenv("STORAGE_DIR", "data")) / "tradingview-signals.json"
        self.path = Path(path)
        self.capacity = int(capacity)

    def _read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f) or {}
        return list(data.get("signals") or [])

    def push(self, payload: Dict[str, Any], now: Optional[datetime] = None) -> BiasSignal:
        """
        Normalize and append a submitted signal.

        Args:
            payload: Raw submission ({symbol|ticker, side|action, confidence, ...})
            now: Timestamp override (default: current UTC time)

        Returns:
            The normalized BiasSignal
        """
        now = now or datetime.now(timezone.utc)
        signal = BiasSignal(
            ts=now.isoformat(),
            symbol=normalize_symbol(payload.get("symbol") or payload.get("ticker") or ""),
            side=normalize_side(payload.get("side") or payload.get("action") or ""),
            confidence=_coerce_confidence(payload.get("confidence")),
            source="tradingview",
            raw={k: v for k, v in payload.items() if k != "secret"},
        )

        signals = self._read()
        signals.append(signal.to_dict())
        signals = signals[-self.capacity:]
        atomic_write_json(self.path, {"signals": signals}, prefix=".signals_")

        logger.info(f"Bias signal recorded: {signal.side} {signal.symbol} (conf={signal.confidence:.2f})")
        return signal

    def recent(self, max_age_minutes: float = 30, now: Optional[datetime] = None) -> List[BiasSignal]:
        """Signals no older than ``max_age_minutes``."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=max_age_minutes)
        recent = []
        for raw in self._read():
            signal = BiasSignal.from_dict(raw)
            if signal.timestamp >= cutoff:
                recent.append(signal)
        return recent

    def all(self) -> List[BiasSignal]:
        return [BiasSignal.from_dict(raw) for raw in self._read()]
