"""
Configuration Validation Module

Validates app.yaml against Pydantic schemas and applies environment
overrides. Ensures the config is correct before any cycle work starts.

Usage:
    from tools.config_validator import validate_all_configs

    errors = validate_all_configs("config")
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        sys.exit(1)
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, ValidationError

from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

APP_CONFIG_FILE = "app.yaml"


# ===== app.yaml Schema =====
class AppSection(BaseModel):
    """Run defaults"""
    profile: str = Field(default="default", min_length=1, description="Portfolio profile name")
    bankroll: float = Field(default=10000.0, gt=0, description="Seed bankroll (USD)")
    target_profit: float = Field(default=5.0, gt=0, description="Session realized-PnL target (USD)")
    max_cycles: int = Field(default=1, ge=1, description="Iterations per run")
    interval_seconds: float = Field(default=30.0, ge=0, description="Pause between iterations")
    send_digest: bool = Field(default=True, description="Deliver a Telegram digest after a run")


class RiskSection(BaseModel):
    """Position sizing"""
    risk_pct: float = Field(default=0.02, gt=0, le=1, description="Stake as a fraction of bankroll")
    min_stake: float = Field(default=20.0, gt=0, description="Minimum stake (USD)")
    max_stake_floor: float = Field(default=50.0, gt=0, description="Lower bound of the stake cap (USD)")
    max_stake_pct: float = Field(default=0.05, gt=0, le=1, description="Stake cap as a fraction of seed bankroll")

    @field_validator('max_stake_floor')
    @classmethod
    def validate_cap_floor(cls, v: float, info) -> float:
        """Stake cap floor must not undercut the minimum stake"""
        min_stake = info.data.get('min_stake')
        if min_stake is not None and v < min_stake:
            raise ValueError(f"max_stake_floor ({v}) must be >= min_stake ({min_stake})")
        return v


class ExitsSection(BaseModel):
    max_hold_minutes: float = Field(default=5.0, gt=0, description="Time stop (minutes)")


class SignalsSection(BaseModel):
    bias_window_minutes: float = Field(default=30.0, gt=0, description="Bias signal recency window")
    top_n: int = Field(default=3, ge=1, description="Candidates per cycle")
    calm_volatility: float = Field(default=0.12, ge=0, description="Mean |momentum| below which thresholds tighten")


class StorageSection(BaseModel):
    dir: str = Field(default="data", min_length=1, description="Directory for state, audit and registry files")
    reports_dir: str = Field(default="reports", min_length=1, description="Directory for demo summary reports")


class LoggingSection(BaseModel):
    level: str = Field(default="INFO", description="Root log level")
    file: Optional[str] = Field(default="logs/pulsetrader.log", description="Log file (null for stream only)")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


class MonitoringSection(BaseModel):
    metrics_enabled: bool = Field(default=False, description="Expose Prometheus metrics")
    metrics_port: int = Field(default=9100, gt=0, lt=65536, description="Prometheus exporter port")


class ServerSection(BaseModel):
    port: int = Field(default=8787, gt=0, lt=65536, description="Webhook/API server port")


class AppConfig(BaseModel):
    """Complete app.yaml schema"""
    app: AppSection = Field(default_factory=AppSection)
    risk: RiskSection = Field(default_factory=RiskSection)
    exits: ExitsSection = Field(default_factory=ExitsSection)
    signals: SignalsSection = Field(default_factory=SignalsSection)
    storage: StorageSection = Field(default_factory=StorageSection)
    logging: LoggingSection = Field(default_factory=LoggingSection)
    monitoring: MonitoringSection = Field(default_factory=MonitoringSection)
    server: ServerSection = Field(default_factory=ServerSection)


# ===== Validation Functions =====
def _format_yaml_error(file_path: Path, error: yaml.YAMLError) -> str:
    """Return enriched message with line/column context for YAML errors."""
    mark = getattr(error, "problem_mark", None)
    if mark is None:
        return f"Malformed YAML in {file_path}: {error}"

    problem = getattr(error, "problem", str(error))
    return f"Malformed YAML in {file_path}: line {mark.line + 1}, column {mark.column + 1}: {problem}"


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML file and return as dict.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is malformed
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r', encoding='utf-8') as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(_format_yaml_error(file_path, e))


def apply_env_overrides(raw: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """PAPER_BANKROLL and UI_PORT override the YAML values."""
    env = os.environ if env is None else env
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in raw.items()}

    bankroll = env.get("PAPER_BANKROLL")
    if bankroll:
        merged["app"] = {**(merged.get("app") or {}), "bankroll": bankroll}
    port = env.get("UI_PORT")
    if port:
        merged["server"] = {**(merged.get("server") or {}), "port": port}
    return merged


def _format_validation_errors(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        field = " -> ".join(str(loc) for loc in item['loc'])
        messages.append(f"{APP_CONFIG_FILE}: {field}: {item['msg']}")
    return messages


def load_app_config(config_dir: str = "config", env: Optional[Dict[str, str]] = None) -> AppConfig:
    """
    Load and validate app.yaml (a missing file means all defaults).

    Raises:
        ConfigurationError: on malformed YAML or schema violations
    """
    path = Path(config_dir) / APP_CONFIG_FILE
    raw: Dict[str, Any] = {}
    if path.exists():
        try:
            raw = load_yaml_file(path)
        except yaml.YAMLError as e:
            raise ConfigurationError(str(e)) from e
    else:
        logger.info(f"{path} not found, using defaults")

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{APP_CONFIG_FILE}: top level must be a mapping")

    try:
        return AppConfig(**apply_env_overrides(raw, env))
    except ValidationError as e:
        errors = _format_validation_errors(e)
        raise ConfigurationError("Invalid configuration:\n  " + "\n  ".join(errors)) from e


def validate_all_configs(config_dir: str = "config") -> List[str]:
    """
    Validate all configuration files.

    Returns:
        List of all error messages (empty if all valid)
    """
    try:
        load_app_config(config_dir)
    except ConfigurationError as e:
        logger.error(f"❌ {e}")
        return str(e).splitlines()

    logger.info("✅ All config files validated successfully")
    return []


if __name__ == "__main__":
    """Run validation from command line"""
    import sys

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    config_dir = sys.argv[1] if len(sys.argv) > 1 else "config"

    errors = validate_all_configs(config_dir)

    if errors:
        print("\n❌ Configuration Validation Failed:\n")
        for error in errors:
            print(f"  • {error}")
        print()
        sys.exit(1)
    else:
        print("\n✅ All configuration files are valid!\n")
        sys.exit(0)
