"""
Position Management: Paper Positions and Exit Logic

Per-position state machine:

    OPEN -> {TARGET_HIT, TIMEOUT} -> CLOSED

Positions are created by open_position() and only ever leave the book
through evaluate_closes(); they are never modified in between.
"""
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from core.audit_log import AuditLogger
from core.snapshots import AssetSnapshot
from core.scoring import LONG, Signal

logger = logging.getLogger(__name__)

REASON_TARGET = "target"
REASON_TIMEOUT = "timeout"


@dataclass(frozen=True)
class Position:
    """Open paper position."""
    market_id: str
    title: str
    side: str           # LONG / SHORT
    stake: float        # currency units debited from the bankroll
    units: float
    entry_price: float
    opened_at: str      # ISO-8601 UTC

    @property
    def direction(self) -> int:
        return 1 if self.side == LONG else -1

    def pnl_at(self, price: float) -> float:
        return (price - self.entry_price) * self.units * self.direction

    def age_minutes(self, now: datetime) -> float:
        opened = datetime.fromisoformat(self.opened_at)
        if opened.tzinfo is None:
            opened = opened.replace(tzinfo=timezone.utc)
        return (now - opened).total_seconds() / 60.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Position":
        return cls(
            market_id=raw["market_id"],
            title=raw.get("title", raw["market_id"]),
            side=raw["side"],
            stake=float(raw["stake"]),
            units=float(raw["units"]),
            entry_price=float(raw["entry_price"]),
            opened_at=raw["opened_at"],
        )


@dataclass(frozen=True)
class ClosedTrade:
    """A position that left the book, with its outcome."""
    position: Position
    exit_price: float
    pnl: float
    reason: str         # "target" / "timeout"

    @property
    def market_id(self) -> str:
        return self.position.market_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.position.to_dict(),
            "exit_price": self.exit_price,
            "pnl": self.pnl,
            "reason": self.reason,
        }


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class PortfolioState:
    """Mutable per-profile portfolio, persisted as one document."""
    bankroll: float
    open_positions: List[Position] = field(default_factory=list)
    closed_trades: int = 0
    wins: int = 0
    losses: int = 0
    realized_pnl: float = 0.0
    updated_at: Optional[str] = None
    seed_bankroll: Optional[float] = None     # bankroll the profile was created with

    def has_open(self, market_id: str, side: str) -> bool:
        return any(p.market_id == market_id and p.side == side for p in self.open_positions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bankroll": self.bankroll,
            "open_positions": [p.to_dict() for p in self.open_positions],
            "closed_trades": self.closed_trades,
            "wins": self.wins,
            "losses": self.losses,
            "realized_pnl": self.realized_pnl,
            "updated_at": self.updated_at,
            "seed_bankroll": self.seed_bankroll,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "PortfolioState":
        return cls(
            bankroll=float(raw.get("bankroll", 0.0)),
            open_positions=[Position.from_dict(p) for p in raw.get("open_positions") or []],
            closed_trades=int(raw.get("closed_trades", 0)),
            wins=int(raw.get("wins", 0)),
            losses=int(raw.get("losses", 0)),
            realized_pnl=float(raw.get("realized_pnl", 0.0)),
            updated_at=raw.get("updated_at"),
            seed_bankroll=_optional_float(raw.get("seed_bankroll")),
        )


@dataclass(frozen=True)
class RiskConfig:
    """Stake sizing: clamp(bankroll * risk_pct, min_stake, max_stake)."""
    risk_pct: float = 0.02
    min_stake: float = 20.0
    max_stake: float = 500.0

    def stake_for(self, bankroll: float) -> float:
        return min(self.max_stake, max(self.min_stake, bankroll * self.risk_pct))


@dataclass(frozen=True)
class ExitConfig:
    profit_target_usd: float = 5.0
    max_hold_minutes: float = 5.0


class PositionManager:
    """
    Opens and closes paper positions on a PortfolioState.

    Responsibilities:
    - Size and open positions from signals
    - Close positions on profit target or max hold time
    - Keep bankroll/pnl/win-loss counters consistent with the book
    - Write one audit row per open/close
    """

    def __init__(self, audit: Optional[AuditLogger] = None):
        self.audit = audit

    def open_position(
        self,
        state: PortfolioState,
        signal: Signal,
        asset: AssetSnapshot,
        risk: RiskConfig,
        now: Optional[datetime] = None,
    ) -> Optional[Position]:
        """
        Open a position for ``signal`` at the asset's current price.

        Returns:
            The new Position, or None when the bankroll cannot cover the
            stake or the price is unusable (callers treat None as "skip").
        """
        stake = risk.stake_for(state.bankroll)
        if state.bankroll < stake:
            logger.debug(f"Skip {signal.market_id}: bankroll ${state.bankroll:.2f} < stake ${stake:.2f}")
            return None

        entry_price = asset.price
        if not entry_price or entry_price <= 0:
            logger.debug(f"Skip {signal.market_id}: invalid entry price {entry_price}")
            return None

        now = now or datetime.now(timezone.utc)
        position = Position(
            market_id=signal.market_id,
            title=signal.title,
            side=signal.action,
            stake=stake,
            units=stake / entry_price,
            entry_price=entry_price,
            opened_at=now.isoformat(),
        )

        state.bankroll -= stake
        state.open_positions = state.open_positions + [position]

        if self.audit:
            self.audit.log_trade("OPEN", position, reason="signal", ts=now)

        logger.info(
            f"OPEN {position.side} {position.market_id} stake ${stake:.2f} "
            f"@ {entry_price:.4f} ({position.units:.6f} units)"
        )
        return position

    def evaluate_closes(
        self,
        state: PortfolioState,
        prices_by_label: Mapping[str, AssetSnapshot],
        exits: ExitConfig,
        now: Optional[datetime] = None,
    ) -> List[ClosedTrade]:
        """
        Close every open position that hit the profit target or max hold time.

        Positions without a current price carry over untouched.

        Returns:
            Closed trades, in book order
        """
        now = now or datetime.now(timezone.utc)
        closed: List[ClosedTrade] = []

        for position in list(state.open_positions):
            asset = prices_by_label.get(position.market_id)
            if asset is None:
                continue

            current = asset.price
            pnl = position.pnl_at(current)

            if pnl >= exits.profit_target_usd:
                reason = REASON_TARGET
            elif position.age_minutes(now) >= exits.max_hold_minutes:
                reason = REASON_TIMEOUT
            else:
                continue

            # Off the book in the same step it is paid out
            state.open_positions = [p for p in state.open_positions if p is not position]
            state.bankroll += position.stake + pnl
            state.realized_pnl += pnl
            state.closed_trades += 1
            # breakeven counts as a win
            if pnl >= 0:
                state.wins += 1
            else:
                state.losses += 1

            trade = ClosedTrade(position=position, exit_price=current, pnl=pnl, reason=reason)
            closed.append(trade)

            if self.audit:
                self.audit.log_trade("CLOSE", position, exit_price=current, pnl=pnl, reason=reason, ts=now)

            logger.info(
                f"CLOSE {position.side} {position.market_id} {reason.upper()} - "
                f"PnL: {pnl:+.2f}, Price: {position.entry_price:.4f} -> {current:.4f}"
            )

        return closed
