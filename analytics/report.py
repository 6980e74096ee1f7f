"""
pulsetrader Analytics: Demo Summary Report

Markdown snapshot of the leaderboard plus the last cycle of each simulated
run, written to <reports_dir>/latest-summary.md.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence
import logging

from core.trading_cycle import RunSummary

logger = logging.getLogger(__name__)

REPORT_FILENAME = "latest-summary.md"


def _symbol_line(label: str, stats: Optional[Mapping[str, Any]]) -> str:
    if not stats:
        return f"{label}: n/a"
    return f"{label}: {stats['symbol']} (${stats['pnl']:.2f})"


def format_summary_report(dashboard: Mapping[str, Any],
                          runs: Sequence[RunSummary],
                          generated_at: Optional[datetime] = None) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    lines: List[str] = []
    lines.append("# PulseTrader Demo Summary")
    lines.append(f"Generated: {generated_at.isoformat()}")
    lines.append("")
    lines.append("## Leaderboard")
    for row in dashboard.get("leaderboard") or []:
        lines.append(
            f"- {row['profile']}: realized PnL ${row['realized_pnl']}, ROI {row['roi_pct']}%, "
            f"win rate {row['win_rate']}%, trades {row['total_trades']}"
        )
    lines.append("")
    lines.append(_symbol_line("Best symbol", dashboard.get("best_symbol")))
    lines.append(_symbol_line("Worst symbol", dashboard.get("worst_symbol")))
    lines.append("")
    lines.append("## Simulation snapshots")
    for run in runs:
        last = run.last
        if last is None:
            lines.append(f"- {run.profile}: no cycles completed")
            continue
        state = last.state
        lines.append(
            f"- {run.profile}: cycle {last.cycle}, strategy {last.strategy}, "
            f"bankroll ${float(state.get('bankroll') or 0):.2f}, "
            f"wins {state.get('wins', 0)}, losses {state.get('losses', 0)}"
        )
    lines.append("")
    lines.append("## Notes")
    lines.append("- Paper trading only. No live execution.")
    lines.append("- Live tape, multi-source sentiment and optional TradingView bias.")
    return "\n".join(lines) + "\n"


def write_summary_report(dashboard: Dict[str, Any],
                         runs: Sequence[RunSummary],
                         reports_dir: str = "reports") -> Path:
    """Write the report and return its path (overwrites the previous one)."""
    out_dir = Path(reports_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / REPORT_FILENAME
    path.write_text(format_summary_report(dashboard, runs), encoding="utf-8")
    logger.info(f"Summary report written to {path}")
    return path
