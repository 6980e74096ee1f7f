"""
pulsetrader Analytics: Run Digest

Plain-text digest of a RunSummary, suitable for a chat message.
"""

from datetime import datetime
from typing import List

from core.trading_cycle import RunSummary


def _fmt_pct(value: float) -> str:
    return f"{value * 100:.2f}%"


def format_digest(summary: RunSummary) -> str:
    """Render the last cycle of a run as a digest."""
    last = summary.last
    if last is None:
        return "PulseTrader Digest (Paper Trading)\nNo cycles completed."

    state = last.state
    lines: List[str] = []
    lines.append("PulseTrader Digest (Paper Trading)")
    lines.append(f"Time: {datetime.fromisoformat(last.generated_at):%Y-%m-%d %H:%M:%S %Z}")
    lines.append(
        f"Bankroll: ${state['bankroll']:.2f} | Open: {len(state['open_positions'])} "
        f"| W/L: {state['wins']}/{state['losses']}"
    )
    lines.append(f"Session: cycle {last.cycle}/{summary.max_cycles}, target +${summary.target_profit:g}")
    lines.append(f"Strategy: {last.strategy}")
    headlines = " | ".join(last.sentiment.sample[:2]) or "n/a"
    lines.append(f"News sentiment: {last.sentiment.score} ({headlines})")
    lines.append("")
    lines.append(f"Top {len(last.top_signals) or 3} trades:")

    if not last.top_signals:
        lines.append("- No high-conviction setup this cycle.")
    for s in last.top_signals:
        lines.append(f"[{s.action}] {s.title}")
        lines.append(
            f"  score {s.final_score} ({s.confidence}) | px {s.price:.4f} "
            f"| 1h {_fmt_pct(s.change_1h)} | 4h {_fmt_pct(s.change_4h)}"
        )
        lines.append(
            f"  components: momentum {s.components.get('momentum', 0)}, "
            f"sentiment {s.components.get('sentiment', 0)}, bias {s.components.get('bias', 0)}"
        )

    if last.opened:
        lines.append("")
        lines.append("Opened:")
        for p in last.opened:
            lines.append(f"- {p.side} {p.title} stake ${p.stake:.2f} @ {p.entry_price:.4f}")

    if last.closed:
        lines.append("")
        lines.append("Closed:")
        for c in last.closed:
            sign = "+" if c.pnl >= 0 else "-"
            lines.append(f"- {c.position.side} {c.position.title} PnL {sign}${abs(c.pnl):.2f} ({c.reason})")

    if summary.target_reached:
        lines.append("")
        lines.append(
            f"Session target reached: +${summary.session_pnl:.2f} (target +${summary.target_profit:g})."
        )

    lines.append("")
    lines.append("Paper mode only. No real orders placed.")
    return "\n".join(lines)
