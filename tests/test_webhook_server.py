"""
Tests for the webhook/API server.

Route handlers are exercised directly; one test goes through a live
socket on an ephemeral port.
"""

import json
import urllib.error
import urllib.request
from pathlib import Path
from unittest.mock import Mock

import pytest

from core.trading_cycle import EVENT_LOG, ProgressEvent
from infra.webhook_server import WebhookServer, secret_matches
from strategy.bias_signals import BiasSignalLog
from strategy.registry import StrategyRegistry


@pytest.fixture
def server(tmp_path):
    return WebhookServer(
        port=0,
        registry=StrategyRegistry(tmp_path / "strategies.yaml"),
        bias_log=BiasSignalLog(tmp_path / "signals.json"),
        leaderboard_provider=lambda: {"leaderboard": []},
        webhook_secret="s3cret",
        host="127.0.0.1",
    )


class TestSecret:

    def test_header_secret(self):
        assert secret_matches("abc", {"X-TV-Secret": "abc"}, {})

    def test_body_secret(self):
        assert secret_matches("abc", {}, {"secret": "abc"})

    def test_mismatch(self):
        assert not secret_matches("abc", {"X-TV-Secret": "nope"}, {})
        assert not secret_matches("abc", {}, {})

    def test_no_expected_secret_accepts(self):
        assert secret_matches("", {}, {})

    def test_non_ascii_secret_is_mismatch(self):
        assert not secret_matches("s3cret", {"X-TV-Secret": "caf\u00e9"}, {})
        assert not secret_matches("s3cret", {}, {"secret": "\u2603"})


class TestRoutes:

    def test_health(self, server):
        assert server.handle_get("/health") == (200, {"ok": True})

    def test_list_strategies(self, server):
        status, payload = server.handle_get("/api/strategies")
        assert status == 200
        assert payload["active"] == "default_momo_sentiment_v1"
        assert len(payload["strategies"]) == 1

    def test_add_strategy(self, server):
        status, payload = server.handle_post("/api/strategies", {}, {"name": "Fast Momo"})
        assert status == 200
        assert payload["strategy"]["id"] == "fast_momo"
        assert len(payload["strategies"]) == 2

    def test_add_strategy_bad_params(self, server):
        status, payload = server.handle_post(
            "/api/strategies", {}, {"name": "x", "params": {"long_threshold": "high"}}
        )
        assert status == 400
        assert payload["ok"] is False

    def test_add_strategy_camel_case_params(self, server):
        status, payload = server.handle_post(
            "/api/strategies", {}, {"name": "fast", "params": {"momentumWeight": 0.5, "shortThreshold": -0.1}}
        )
        assert status == 200
        assert payload["strategy"]["params"]["momentum_weight"] == 0.5
        assert payload["strategy"]["params"]["short_threshold"] == -0.1

    def test_add_strategy_unknown_param_is_400(self, server):
        status, payload = server.handle_post(
            "/api/strategies", {}, {"name": "fast", "params": {"momentum": 0.5}}
        )
        assert status == 400
        assert "momentum" in payload["error"]
        assert len(server.handle_get("/api/strategies")[1]["strategies"]) == 1

    def test_set_active_unknown_is_404(self, server):
        status, payload = server.handle_post("/api/strategies/active", {}, {"id": "ghost"})
        assert status == 404
        assert payload == {"ok": False, "error": "Unknown strategy: ghost"}

    def test_set_active(self, server):
        server.handle_post("/api/strategies", {}, {"id": "alt"})
        status, payload = server.handle_post("/api/strategies/active", {}, {"id": "alt"})
        assert status == 200
        assert payload["active"] == "alt"

    def test_webhook_rejects_bad_secret(self, server, tmp_path):
        status, payload = server.handle_post(
            "/api/tradingview/webhook", {}, {"symbol": "BTCUSD", "side": "long", "secret": "wrong"}
        )
        assert status == 401
        assert payload == {"ok": False, "error": "unauthorized"}
        assert BiasSignalLog(tmp_path / "signals.json").all() == []

    def test_webhook_non_ascii_secret_is_401(self, server):
        status, payload = server.handle_post(
            "/api/tradingview/webhook", {"X-TV-Secret": "caf\u00e9"}, {"symbol": "BTCUSD", "side": "long"}
        )
        assert status == 401
        assert payload == {"ok": False, "error": "unauthorized"}

    def test_webhook_records_signal(self, server, tmp_path):
        status, payload = server.handle_post(
            "/api/tradingview/webhook",
            {"X-TV-Secret": "s3cret"},
            {"ticker": "ethusd", "action": "sell", "confidence": 0.8},
        )
        assert status == 200
        assert payload["signal"]["symbol"] == "ETHUSD"
        assert payload["signal"]["side"] == "SELL"
        assert len(BiasSignalLog(tmp_path / "signals.json").all()) == 1

    def test_leaderboard(self, server):
        assert server.handle_get("/api/leaderboard") == (200, {"ok": True, "leaderboard": []})
        assert server.handle_get("/api/dashboard") == (200, {"ok": True, "leaderboard": []})

    def test_unknown_path(self, server):
        assert server.handle_get("/nope")[0] == 404
        assert server.handle_post("/nope", {}, {})[0] == 404


def _summary(profile):
    summary = Mock()
    summary.to_dict.return_value = {"profile": profile, "cycles_completed": 1}
    return summary


@pytest.fixture
def runner():
    runner = Mock()

    def run_once(**kwargs):
        kwargs["observer"](ProgressEvent(EVENT_LOG, message="Starting trading cycle"))
        return {"summary": _summary(kwargs["profile"] or "default"), "digest": "DIGEST", "delivered": False}

    runner.run_once.side_effect = run_once
    runner.run_three_bankroll_simulations.return_value = [
        {"summary": _summary("sim_100")},
        {"summary": _summary("sim_1000")},
    ]
    runner.demo_run.return_value = {
        "runs": [_summary("sim_100")],
        "dashboard": {"leaderboard": []},
        "report_path": Path("reports/latest-summary.md"),
    }
    return runner


@pytest.fixture
def run_server(tmp_path, runner):
    return WebhookServer(
        port=0,
        registry=StrategyRegistry(tmp_path / "strategies.yaml"),
        bias_log=BiasSignalLog(tmp_path / "signals.json"),
        runner=runner,
        webhook_secret="",
    )


class TestRunRoutes:

    def test_run_once(self, run_server, runner):
        status, payload = run_server.handle_post("/api/run-once", {}, {"profile": "web"})

        assert status == 200
        assert payload["summary"] == {"profile": "web", "cycles_completed": 1}
        assert payload["digest"] == "DIGEST"
        assert payload["events"] == [{"type": "log", "message": "Starting trading cycle"}]
        kwargs = runner.run_once.call_args.kwargs
        assert kwargs["max_cycles"] == 1
        assert kwargs["send_digest"] is False

    def test_simulate3(self, run_server, runner):
        status, payload = run_server.handle_post("/api/simulate3", {}, {})

        assert status == 200
        assert [r["profile"] for r in payload["runs"]] == ["sim_100", "sim_1000"]
        runner.run_three_bankroll_simulations.assert_called_once_with(send_digest=False)

    def test_demo_run(self, run_server):
        status, payload = run_server.handle_post("/api/demo-run", {}, {})

        assert status == 200
        assert payload["report_path"] == str(Path("reports/latest-summary.md"))
        assert payload["dashboard"] == {"leaderboard": []}
        assert payload["runs"] == [{"profile": "sim_100", "cycles_completed": 1}]

    def test_run_failure_is_500(self, run_server, runner):
        runner.run_three_bankroll_simulations.side_effect = OSError("disk full")

        status, payload = run_server.handle_post("/api/simulate3", {}, {})

        assert status == 500
        assert payload == {"ok": False, "error": "disk full"}

    def test_routes_absent_without_runner(self, server):
        assert server.handle_post("/api/run-once", {}, {})[0] == 404


def test_live_roundtrip(server):
    server.start()
    try:
        base = f"http://127.0.0.1:{server.port}"
        with urllib.request.urlopen(f"{base}/health", timeout=5) as response:
            assert json.loads(response.read()) == {"ok": True}

        request = urllib.request.Request(
            f"{base}/api/tradingview/webhook",
            data=json.dumps({"symbol": "BTCUSD", "side": "LONG"}).encode("utf-8"),
            headers={"Content-Type": "application/json", "X-TV-Secret": "bad"},
            method="POST",
        )
        with pytest.raises(urllib.error.HTTPError) as exc_info:
            urllib.request.urlopen(request, timeout=5)
        assert exc_info.value.code == 401
    finally:
        server.stop()
