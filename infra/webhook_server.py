"""Lightweight HTTP API: health, strategy store, bias-signal webhook, leaderboard, run triggers."""

from __future__ import annotations

import hmac
import json
import logging
import os
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Optional, Tuple

from core.exceptions import UnknownStrategyError
from strategy.bias_signals import BiasSignalLog
from strategy.registry import StrategyRegistry

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-TV-Secret"
MAX_BODY_BYTES = 64 * 1024
RUN_ROUTES = ("/api/run-once", "/api/simulate3", "/api/demo-run")


def secret_matches(expected: str, headers: Any, body: Dict[str, Any]) -> bool:
    """An empty expected secret disables the check."""
    if not expected:
        return True
    provided = headers.get(SECRET_HEADER) or body.get("secret") or ""
    return hmac.compare_digest(str(provided).encode("utf-8"), expected.encode("utf-8"))


class WebhookServer:
    """JSON API server backed by the strategy registry and bias log."""

    def __init__(self,
                 port: int,
                 registry: StrategyRegistry,
                 bias_log: BiasSignalLog,
                 leaderboard_provider: Optional[Callable[[], Dict[str, Any]]] = None,
                 runner: Optional[Any] = None,
                 webhook_secret: Optional[str] = None,
                 host: str = "0.0.0.0"):
        self._port = int(port)
        self._host = host
        self._registry = registry
        self._bias_log = bias_log
        self._leaderboard_provider = leaderboard_provider
        # TradingLoop-like: run_once, run_three_bankroll_simulations, demo_run
        self._runner = runner
        if webhook_secret is None:
            webhook_secret = os.getenv("TRADINGVIEW_WEBHOOK_SECRET", "")
        self._secret = webhook_secret
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> Optional[int]:
        if self._server is None:
            return None
        return self._server.server_port

    def start(self) -> None:
        if self._thread:
            return

        handler_cls = self._build_handler(self)
        self._server = ThreadingHTTPServer((self._host, self._port), handler_cls)
        self._thread = threading.Thread(target=self._server.serve_forever, name="WebhookServer", daemon=True)
        self._thread.start()
        if not self._secret:
            logger.warning("TRADINGVIEW_WEBHOOK_SECRET not set; webhook accepts unauthenticated posts")
        logger.info("Webhook server listening on %s:%s", self._host, self._server.server_port)

    def serve_forever(self) -> None:
        self.start()
        assert self._thread is not None
        try:
            while self._thread.is_alive():
                self._thread.join(timeout=1.0)
        except KeyboardInterrupt:
            logger.info("Webhook server interrupted")
        finally:
            self.stop()

    def stop(self) -> None:
        if not self._server:
            return
        try:
            self._server.shutdown()
            self._server.server_close()
        except OSError as exc:
            logger.warning("Failed shutting down webhook server: %s", exc)
        if self._thread:
            self._thread.join(timeout=3)
        self._thread = None
        self._server = None

    # Route handlers return (status, payload)

    def handle_get(self, path: str) -> Tuple[int, Dict[str, Any]]:
        if path in ("/", "/health", "/healthz"):
            return 200, {"ok": True}
        if path == "/api/strategies":
            configs, active = self._registry.list()
            return 200, {"ok": True, "active": active, "strategies": [c.to_dict() for c in configs]}
        if path in ("/api/leaderboard", "/api/dashboard"):
            if self._leaderboard_provider is None:
                return 404, {"ok": False, "error": "not found"}
            return 200, {"ok": True, **self._leaderboard_provider()}
        return 404, {"ok": False, "error": "not found"}

    def _run_action(self, path: str, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """Run-trigger routes; digests are never sent from here."""
        events = []
        try:
            if path == "/api/run-once":
                result = self._runner.run_once(
                    profile=body.get("profile") or None,
                    max_cycles=1,
                    send_digest=False,
                    observer=events.append,
                )
                return 200, {
                    "ok": True,
                    "summary": result["summary"].to_dict(),
                    "digest": result["digest"],
                    "events": [event.to_dict() for event in events],
                }
            if path == "/api/simulate3":
                results = self._runner.run_three_bankroll_simulations(send_digest=False)
                return 200, {"ok": True, "runs": [r["summary"].to_dict() for r in results]}

            demo = self._runner.demo_run(send_digest=False)
            return 200, {
                "ok": True,
                "dashboard": demo["dashboard"],
                "report_path": str(demo["report_path"]),
                "runs": [summary.to_dict() for summary in demo["runs"]],
            }
        except Exception as exc:
            logger.exception(f"Run triggered via {path} failed")
            return 500, {"ok": False, "error": str(exc)}

    def handle_post(self, path: str, headers: Any, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        if path in RUN_ROUTES:
            if self._runner is None:
                return 404, {"ok": False, "error": "not found"}
            return self._run_action(path, body)
        if path == "/api/strategies":
            try:
                config = self._registry.add(body)
            except (TypeError, ValueError) as exc:
                return 400, {"ok": False, "error": f"invalid strategy: {exc}"}
            configs, active = self._registry.list()
            return 200, {
                "ok": True,
                "strategy": config.to_dict(),
                "active": active,
                "strategies": [c.to_dict() for c in configs],
            }
        if path == "/api/strategies/active":
            try:
                configs, active = self._registry.set_active(str(body.get("id", "")))
            except UnknownStrategyError as exc:
                return 404, {"ok": False, "error": str(exc)}
            return 200, {"ok": True, "active": active, "strategies": [c.to_dict() for c in configs]}
        if path == "/api/tradingview/webhook":
            if not secret_matches(self._secret, headers, body):
                logger.warning("Rejected webhook post with bad secret")
                return 401, {"ok": False, "error": "unauthorized"}
            signal = self._bias_log.push(body)
            return 200, {"ok": True, "signal": signal.to_dict()}
        return 404, {"ok": False, "error": "not found"}

    @staticmethod
    def _build_handler(server: "WebhookServer"):
        api = server

        class ApiHandler(BaseHTTPRequestHandler):
            def _send(self, status: int, payload: Dict[str, Any]) -> None:
                body = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def _read_json(self) -> Optional[Dict[str, Any]]:
                length = int(self.headers.get("Content-Length") or 0)
                if length > MAX_BODY_BYTES:
                    return None
                raw = self.rfile.read(length) if length else b""
                if not raw.strip():
                    return {}
                try:
                    data = json.loads(raw.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    return None
                return data if isinstance(data, dict) else None

            def do_GET(self):  # type: ignore[override]
                status, payload = api.handle_get(self.path.split("?", 1)[0])
                self._send(status, payload)

            def do_POST(self):  # type: ignore[override]
                body = self._read_json()
                if body is None:
                    self._send(400, {"ok": False, "error": "invalid json"})
                    return
                status, payload = api.handle_post(self.path.split("?", 1)[0], self.headers, body)
                self._send(status, payload)

            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - routed to logging
                logger.debug("%s - %s", self.address_string(), format % args)

        return ApiHandler


__all__ = ["WebhookServer", "secret_matches"]
