"""
pulsetrader Analytics: Profile Leaderboard

Aggregates persisted portfolio documents and the trade audit log into a
cross-profile performance view:
- per-profile realized PnL, ROI, win rate, open exposure
- best / worst symbol by realized PnL
- running equity curve over the last 100 closes
"""

from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

from core.audit_log import AuditLogger
from infra.state_store import StateStore

logger = logging.getLogger(__name__)

# Fallback seeds for documents written without seed_bankroll
PROFILE_SEEDS: Dict[str, float] = {
    "sim_100": 100.0,
    "sim_1000": 1000.0,
    "sim_10000": 10000.0,
}
DEFAULT_SEED = 10000.0
EQUITY_CURVE_POINTS = 100


@dataclass
class ProfileStats:
    profile: str
    start: float
    bankroll: float
    realized_pnl: float
    roi_pct: float
    total_trades: int
    win_rate: float
    open_exposure: float
    wins: int
    losses: int


@dataclass
class SymbolStats:
    symbol: str
    pnl: float
    trades: int


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def seed_for(profile: str, state: Mapping[str, Any]) -> float:
    """Persisted seed bankroll, else the demo seed for the profile name, else 10k."""
    seed = _to_float(state.get("seed_bankroll"))
    if seed > 0:
        return seed
    return PROFILE_SEEDS.get(profile, DEFAULT_SEED)


def profile_stats(profile: str, state: Mapping[str, Any], start: Optional[float] = None) -> ProfileStats:
    start = start if start is not None else seed_for(profile, state)
    realized = _to_float(state.get("realized_pnl"))
    total = int(state.get("closed_trades") or 0)
    wins = int(state.get("wins") or 0)
    exposure = sum(_to_float(p.get("stake")) for p in state.get("open_positions") or [])
    return ProfileStats(
        profile=profile,
        start=start,
        bankroll=_to_float(state.get("bankroll", start)),
        realized_pnl=round(realized, 2),
        roi_pct=round(realized / start * 100, 2) if start else 0.0,
        total_trades=total,
        win_rate=round(wins / total * 100, 1) if total else 0.0,
        open_exposure=round(exposure, 2),
        wins=wins,
        losses=int(state.get("losses") or 0),
    )


def symbol_breakdown(trades: Iterable[Mapping[str, str]]) -> List[SymbolStats]:
    """Realized PnL per symbol from CLOSE rows, best first."""
    by_symbol: "OrderedDict[str, SymbolStats]" = OrderedDict()
    for row in trades:
        if row.get("event") != "CLOSE":
            continue
        symbol = row.get("market_id", "")
        stats = by_symbol.setdefault(symbol, SymbolStats(symbol=symbol, pnl=0.0, trades=0))
        stats.pnl += _to_float(row.get("pnl"))
        stats.trades += 1
    return sorted(by_symbol.values(), key=lambda s: s.pnl, reverse=True)


def equity_curve(trades: Iterable[Mapping[str, str]], points: int = EQUITY_CURVE_POINTS) -> List[Dict[str, Any]]:
    closes = [row for row in trades if row.get("event") == "CLOSE"][-points:]
    running = 0.0
    curve = []
    for row in closes:
        running += _to_float(row.get("pnl"))
        curve.append({"ts": row.get("timestamp"), "pnl": round(running, 2)})
    return curve


def compute_leaderboard(
    state_store: StateStore,
    audit: AuditLogger,
    profiles: Optional[Iterable[str]] = None,
) -> Dict[str, Any]:
    """
    Build the leaderboard view.

    Args:
        state_store: Portfolio repository
        audit: Audit logger (for trades.csv)
        profiles: Profiles to include (default: every persisted profile)
    """
    names = list(profiles) if profiles is not None else state_store.list_profiles()
    board = []
    for name in names:
        if not state_store.exists(name):
            continue
        state = state_store.load(name, PROFILE_SEEDS.get(name, DEFAULT_SEED))
        board.append(profile_stats(name, state))
    board.sort(key=lambda s: s.realized_pnl, reverse=True)

    trades = audit.read_trades()
    symbols = symbol_breakdown(trades)

    return {
        "leaderboard": [asdict(s) for s in board],
        "best_symbol": asdict(symbols[0]) if symbols else None,
        "worst_symbol": asdict(symbols[-1]) if symbols else None,
        "closed_trades": sum(s.trades for s in symbols),
        "equity_curve": equity_curve(trades),
    }
