"""
Strategy Registry

Durable registry of named scoring parameter sets, one of which is active.

Architecture:
- Load strategies from <storage>/strategies.yaml
- Seed a default momentum + sentiment strategy on first use
- Upsert strategies by normalized id
- Resolve the active strategy, falling back to the first available one

Every mutation reads the whole document, updates it and writes the whole
document back (temp file + rename). Last writer wins.
"""

import os
import tempfile
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import logging

import yaml

from core.exceptions import UnknownStrategyError
from infra.symbols import normalize_strategy_id

logger = logging.getLogger(__name__)


# Defaults applied to any param missing from an added strategy
DEFAULT_MOMENTUM_WEIGHT = 0.75
DEFAULT_SENTIMENT_WEIGHT = 0.25
DEFAULT_LONG_THRESHOLD = 0.2
DEFAULT_SHORT_THRESHOLD = -0.2

# Accepted param keys -> field name
PARAM_ALIASES = {
    "momentum_weight": "momentum_weight",
    "momentumWeight": "momentum_weight",
    "sentiment_weight": "sentiment_weight",
    "sentimentWeight": "sentiment_weight",
    "long_threshold": "long_threshold",
    "longThreshold": "long_threshold",
    "short_threshold": "short_threshold",
    "shortThreshold": "short_threshold",
}


@dataclass(frozen=True)
class StrategyParams:
    """Fully-populated scoring parameters."""
    momentum_weight: float = DEFAULT_MOMENTUM_WEIGHT
    sentiment_weight: float = DEFAULT_SENTIMENT_WEIGHT
    long_threshold: float = DEFAULT_LONG_THRESHOLD
    short_threshold: float = DEFAULT_SHORT_THRESHOLD

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "StrategyParams":
        """
        Build params from snake_case or camelCase keys.

        Raises:
            ValueError: unknown param key or non-numeric value
        """
        if raw is not None and not isinstance(raw, dict):
            raise ValueError("Strategy params must be a mapping")
        raw = {PARAM_ALIASES.get(key, key): value for key, value in (raw or {}).items()}
        unknown = sorted(set(raw) - set(PARAM_ALIASES.values()))
        if unknown:
            raise ValueError(f"Unknown strategy params: {', '.join(unknown)}")

        def _num(key: str, default: float) -> float:
            value = raw.get(key)
            if value is None:
                return default
            return float(value)

        return cls(
            momentum_weight=_num("momentum_weight", DEFAULT_MOMENTUM_WEIGHT),
            sentiment_weight=_num("sentiment_weight", DEFAULT_SENTIMENT_WEIGHT),
            long_threshold=_num("long_threshold", DEFAULT_LONG_THRESHOLD),
            short_threshold=_num("short_threshold", DEFAULT_SHORT_THRESHOLD),
        )


@dataclass(frozen=True)
class StrategyConfig:
    """A named, persisted scoring configuration."""
    id: str
    name: str
    enabled: bool = True
    params: StrategyParams = field(default_factory=StrategyParams)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "StrategyConfig":
        strategy_id = normalize_strategy_id(raw.get("id") or raw.get("name"))
        return cls(
            id=strategy_id,
            name=str(raw.get("name") or strategy_id),
            enabled=raw.get("enabled") is not False,
            params=StrategyParams.from_dict(raw.get("params")),
        )


DEFAULT_STRATEGY = StrategyConfig(
    id="default_momo_sentiment_v1",
    name="Momentum + News Sentiment v1",
    enabled=True,
    params=StrategyParams(
        momentum_weight=0.75,
        sentiment_weight=0.25,
        long_threshold=0.08,
        short_threshold=-0.08,
    ),
)


class StrategyRegistry:
    """
    File-backed strategy registry.

    Responsibilities:
    1. Seed the default strategy document on first use
    2. Upsert strategies by normalized id
    3. Move the active pointer (only to known ids)
    4. Resolve the active strategy, never returning "no strategy"
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Args:
            config_path: Path to strategies.yaml (defaults to data/strategies.yaml)
        """
        if config_path is None:
            config_path = Path(os.getenv("STORAGE_DIR", "data")) / "strategies.yaml"

        self.config_path = Path(config_path)

    def _read(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            logger.info(f"Strategy config not found at {self.config_path}, seeding default")
            document = {"active": DEFAULT_STRATEGY.id, "strategies": [DEFAULT_STRATEGY.to_dict()]}
            self._write(document)
            return document

        with open(self.config_path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f) or {}

        document.setdefault("active", None)
        document["strategies"] = list(document.get("strategies") or [])
        return document

    def _write(self, document: Dict[str, Any]) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(
            dir=self.config_path.parent,
            prefix=".strategies_",
            suffix=".yaml.tmp",
        )
        with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(document, f, default_flow_style=False, sort_keys=False)
        os.replace(temp_path, self.config_path)

    def list(self) -> Tuple[List[StrategyConfig], Optional[str]]:
        """
        List all strategies.

        Returns:
            (strategies, active_id)
        """
        document = self._read()
        strategies = [StrategyConfig.from_dict(raw) for raw in document["strategies"]]
        return strategies, document.get("active")

    def add(self, payload: Dict[str, Any]) -> StrategyConfig:
        """
        Insert or replace a strategy.

        The id is derived from ``id`` or ``name`` (lower-cased, whitespace to
        underscore); missing params take the module defaults. The active
        pointer is not changed.
        """
        raw_id = payload.get("id") or payload.get("name") or f"strategy_{int(time.time() * 1000)}"
        strategy_id = normalize_strategy_id(raw_id)
        item = StrategyConfig(
            id=strategy_id,
            name=str(payload.get("name") or strategy_id),
            enabled=payload.get("enabled") is not False,
            params=StrategyParams.from_dict(payload.get("params")),
        )

        document = self._read()
        document["strategies"] = [
            raw for raw in document["strategies"]
            if normalize_strategy_id(raw.get("id") or raw.get("name")) != strategy_id
        ]
        document["strategies"].append(item.to_dict())
        self._write(document)

        logger.info(f"Saved strategy '{strategy_id}' ({item.name})")
        return item

    def set_active(self, strategy_id: str) -> Tuple[List[StrategyConfig], str]:
        """
        Point the registry at an existing strategy.

        Raises:
            UnknownStrategyError: if no strategy has this id
        """
        document = self._read()
        known = {
            normalize_strategy_id(raw.get("id") or raw.get("name"))
            for raw in document["strategies"]
        }
        if strategy_id not in known:
            raise UnknownStrategyError(strategy_id)

        document["active"] = strategy_id
        self._write(document)

        logger.info(f"Active strategy set to '{strategy_id}'")
        return [StrategyConfig.from_dict(raw) for raw in document["strategies"]], strategy_id

    def active_config(self) -> StrategyConfig:
        """Resolve the active strategy; a dangling pointer falls back to the first one."""
        strategies, active_id = self.list()
        for strategy in strategies:
            if strategy.id == active_id:
                return strategy

        if strategies:
            logger.warning(
                f"Active strategy '{active_id}' not found, falling back to '{strategies[0].id}'"
            )
            return strategies[0]

        logger.warning("Strategy registry is empty, using built-in default")
        return DEFAULT_STRATEGY

    def __repr__(self) -> str:
        return f"StrategyRegistry({self.config_path})"
