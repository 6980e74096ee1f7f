"""Tests for the demo summary report."""

from datetime import datetime, timezone

from analytics.report import REPORT_FILENAME, format_summary_report, write_summary_report
from core.trading_cycle import RunSummary

GENERATED = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

DASHBOARD = {
    "leaderboard": [
        {"profile": "sim_1000", "realized_pnl": 8.0, "roi_pct": 0.8, "win_rate": 50.0, "total_trades": 2},
    ],
    "best_symbol": {"symbol": "BTCUSD", "pnl": 8.0, "trades": 1},
    "worst_symbol": None,
}


def test_format_report():
    report = format_summary_report(DASHBOARD, [RunSummary("sim_100", 100.0, 5.0, 6)], generated_at=GENERATED)

    assert report.startswith("# PulseTrader Demo Summary\nGenerated: 2026-03-01T12:00:00+00:00")
    assert "- sim_1000: realized PnL $8.0, ROI 0.8%, win rate 50.0%, trades 2" in report
    assert "Best symbol: BTCUSD ($8.00)" in report
    assert "Worst symbol: n/a" in report
    assert "- sim_100: no cycles completed" in report


def test_write_report_overwrites(tmp_path):
    path = write_summary_report(DASHBOARD, [], str(tmp_path / "reports"))
    write_summary_report({"leaderboard": []}, [], str(tmp_path / "reports"))

    assert path == tmp_path / "reports" / REPORT_FILENAME
    assert "sim_1000" not in path.read_text()
