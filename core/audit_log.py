"""
pulsetrader Core: Audit Logger

Append-only CSV audit trails:
- signals.csv: one row per scored asset per cycle
- trades.csv: one row per position open/close event
"""

import csv
import os
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)


SIGNAL_COLUMNS = [
    "timestamp", "market_id", "title", "action", "score", "confidence",
    "momentum", "sentiment", "bias", "price", "change_1h", "change_4h",
]

TRADE_COLUMNS = [
    "timestamp", "event", "market_id", "title", "side", "stake",
    "entry", "exit", "pnl", "reason",
]


class AuditLogger:
    """
    Structured audit trail logger.

    Each logical event is a single appended row; files are created with a
    header on first use and never rewritten.
    """

    def __init__(self, log_dir: Optional[str] = None):
        """
        Args:
            log_dir: Directory for signals.csv / trades.csv (default: $STORAGE_DIR or data/)
        """
        if log_dir is None:
            log_dir = os.getenv("STORAGE_DIR", "data")
        self.log_dir = Path(log_dir)
        self.signals_file = self.log_dir / "signals.csv"
        self.trades_file = self.log_dir / "trades.csv"

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized AuditLogger at {self.log_dir}")

    @staticmethod
    def _ensure_header(path: Path, columns: List[str]) -> None:
        if not path.exists():
            with open(path, "w", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(columns)

    def _append_rows(self, path: Path, columns: List[str], rows: List[List[Any]]) -> None:
        self._ensure_header(path, columns)
        with open(path, "a", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerows(rows)

    def log_signals(self, signals: Iterable[Any], ts: Optional[datetime] = None) -> int:
        """
        Append one row per signal, all sharing the batch timestamp.

        Returns:
            Number of rows written
        """
        stamp = (ts or datetime.now(timezone.utc)).isoformat()
        rows = [
            [
                stamp, s.market_id, s.title, s.action, s.final_score, s.confidence,
                s.components.get("momentum", 0.0), s.components.get("sentiment", 0.0),
                s.components.get("bias", 0.0), s.price, s.change_1h, s.change_4h,
            ]
            for s in signals
        ]
        if rows:
            self._append_rows(self.signals_file, SIGNAL_COLUMNS, rows)
        logger.debug(f"Audited {len(rows)} signal(s)")
        return len(rows)

    def log_trade(
        self,
        event: str,
        position: Any,
        exit_price: Optional[float] = None,
        pnl: Optional[float] = None,
        reason: str = "",
        ts: Optional[datetime] = None,
    ) -> None:
        """Append one OPEN or CLOSE row."""
        stamp = (ts or datetime.now(timezone.utc)).isoformat()
        row = [
            stamp, event, position.market_id, position.title, position.side,
            position.stake, position.entry_price,
            "" if exit_price is None else exit_price,
            "" if pnl is None else f"{pnl:.2f}",
            reason,
        ]
        self._append_rows(self.trades_file, TRADE_COLUMNS, [row])

    def read_trades(self) -> List[Dict[str, str]]:
        """All trade rows as dicts (oldest first)."""
        return self._read(self.trades_file)

    def read_signals(self) -> List[Dict[str, str]]:
        """All signal rows as dicts (oldest first)."""
        return self._read(self.signals_file)

    @staticmethod
    def _read(path: Path) -> List[Dict[str, str]]:
        if not path.exists():
            return []
        with open(path, "r", newline="", encoding="utf-8") as f:
            return list(csv.DictReader(f))
