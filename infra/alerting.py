"""Digest delivery via the Telegram Bot API."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from core.exceptions import ConfigurationError, DeliveryFailure

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org/bot{token}/sendMessage"
TELEGRAM_MAX_CHARS = 4096


@dataclass
class TelegramConfig:
    bot_token: str
    chat_id: str
    timeout: float = 10.0

    def missing(self) -> List[str]:
        missing = []
        if not self.bot_token:
            missing.append("TELEGRAM_BOT_TOKEN")
        if not self.chat_id:
            missing.append("TELEGRAM_CHAT_ID")
        return missing


class TelegramNotifier:
    """Send run digests to one Telegram chat."""

    def __init__(self, config: TelegramConfig, session: Optional[requests.Session] = None) -> None:
        self._config = config
        self._session = session or requests.Session()

    @classmethod
    def from_env(cls, timeout: float = 10.0) -> "TelegramNotifier":
        config = TelegramConfig(
            bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            chat_id=os.getenv("TELEGRAM_CHAT_ID", ""),
            timeout=timeout,
        )
        return cls(config)

    def is_configured(self) -> bool:
        return not self._config.missing()

    def assert_configured(self) -> None:
        """Raise ConfigurationError when credentials are absent."""
        missing = self._config.missing()
        if missing:
            raise ConfigurationError(f"Missing required env vars: {', '.join(missing)}", missing=missing)

    def send(self, text: str) -> Dict[str, Any]:
        """
        Deliver ``text``.

        Raises:
            DeliveryFailure: on transport errors or a non-OK API response
        """
        self.assert_configured()
        url = TELEGRAM_API.format(token=self._config.bot_token)
        payload = {
            "chat_id": self._config.chat_id,
            "text": text[:TELEGRAM_MAX_CHARS],
            "disable_web_page_preview": True,
        }
        try:
            response = self._session.post(url, json=payload, timeout=self._config.timeout)
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise DeliveryFailure(f"Telegram send failed: {exc}") from exc

        if not response.ok or not data.get("ok"):
            raise DeliveryFailure(f"Telegram send failed: {data}")

        logger.info("Digest delivered to Telegram chat %s", self._config.chat_id)
        return data


__all__ = ["TelegramConfig", "TelegramNotifier"]
