"""Symbol and identifier normalization helpers.

Labels on the tape are compact upper-case pairs (``BTCUSD``, ``EURUSD``).
Externally submitted bias signals arrive in whatever shape the sender uses
(``btcusd``, ``BINANCE:BTCUSDT``), so everything that compares symbols goes
through these helpers.
"""

from __future__ import annotations

import re
from typing import Any, Optional, Tuple

DEFAULT_QUOTE = "USD"

# Quote suffixes stripped when matching a bias signal against a tape label.
QUOTE_SUFFIXES: Tuple[str, ...] = (
    "USD",
)

BULLISH_SIDES: Tuple[str, ...] = ("LONG", "BUY")
BEARISH_SIDES: Tuple[str, ...] = ("SHORT", "SELL")

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_symbol(symbol: Optional[Any]) -> str:
    """Return the upper-cased, trimmed symbol or an empty string."""

    if symbol is None:
        return ""
    return str(symbol).strip().upper()


def normalize_side(side: Optional[Any]) -> str:
    """Return the upper-cased, trimmed side or an empty string."""

    if side is None:
        return ""
    return str(side).strip().upper()


def strip_quote_suffix(label: Optional[str]) -> str:
    """Drop a trailing quote currency from a tape label (``BTCUSD`` -> ``BTC``).

    Labels that are nothing but the quote (or carry no known suffix) come back
    unchanged.
    """

    token = normalize_symbol(label)
    for quote in QUOTE_SUFFIXES:
        if token.endswith(quote) and len(token) > len(quote):
            return token[: -len(quote)]
    return token


def symbol_matches_label(symbol: Optional[str], label: Optional[str]) -> bool:
    """Substring match of a bias-signal symbol against a tape label.

    Matches on the full label and on the label with its quote suffix removed,
    so ``BTCUSDT`` and ``BINANCE:BTC`` both hit ``BTCUSD``.
    """

    sym = normalize_symbol(symbol)
    token = normalize_symbol(label)
    if not sym or not token:
        return False
    if token in sym:
        return True
    base = strip_quote_suffix(token)
    return base != token and base in sym


def side_direction(side: Optional[str]) -> int:
    """+1 for bullish sides, -1 for bearish sides, 0 otherwise."""

    normalized = normalize_side(side)
    if any(s in normalized for s in BULLISH_SIDES):
        return 1
    if any(s in normalized for s in BEARISH_SIDES):
        return -1
    return 0


def normalize_strategy_id(raw: Optional[Any]) -> str:
    """Lower-case an id or name and collapse whitespace runs to ``_``."""

    if raw is None:
        return ""
    return _WHITESPACE_RE.sub("_", str(raw).strip()).lower()


__all__ = [
    "DEFAULT_QUOTE",
    "QUOTE_SUFFIXES",
    "BULLISH_SIDES",
    "BEARISH_SIDES",
    "normalize_symbol",
    "normalize_side",
    "strip_quote_suffix",
    "symbol_matches_label",
    "side_direction",
    "normalize_strategy_id",
]
