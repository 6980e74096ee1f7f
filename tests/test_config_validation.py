"""Tests for app.yaml validation and environment overrides."""

from pathlib import Path

import pytest
import yaml

from core.exceptions import ConfigurationError
from tools.config_validator import AppConfig, apply_env_overrides, load_app_config, validate_all_configs

REPO_CONFIG = Path(__file__).resolve().parents[1] / "config"


def _write(tmp_path, data):
    (tmp_path / "app.yaml").write_text(yaml.safe_dump(data))
    return str(tmp_path)


def test_shipped_config_is_valid():
    config = load_app_config(str(REPO_CONFIG), env={})
    assert config.app.bankroll == 10000
    assert config.app.target_profit == 5
    assert config.risk.min_stake == 20
    assert config.exits.max_hold_minutes == 5
    assert config.signals.top_n == 3
    assert config.server.port == 8787
    assert validate_all_configs(str(REPO_CONFIG)) == []


def test_missing_file_uses_defaults(tmp_path):
    config = load_app_config(str(tmp_path), env={})
    assert config == AppConfig()
    assert config.risk.max_stake_floor == 50
    assert config.storage.dir == "data"


def test_partial_sections_merge_with_defaults(tmp_path):
    config = load_app_config(_write(tmp_path, {"app": {"profile": "sim_100", "bankroll": 100}}), env={})
    assert config.app.profile == "sim_100"
    assert config.app.bankroll == 100
    assert config.app.max_cycles == 1


def test_env_overrides(tmp_path):
    config_dir = _write(tmp_path, {"app": {"bankroll": 100}, "server": {"port": 9000}})
    config = load_app_config(config_dir, env={"PAPER_BANKROLL": "2500", "UI_PORT": "8080"})
    assert config.app.bankroll == 2500
    assert config.server.port == 8080


def test_env_overrides_leave_input_untouched():
    raw = {"app": {"bankroll": 1}}
    apply_env_overrides(raw, env={"PAPER_BANKROLL": "5"})
    assert raw == {"app": {"bankroll": 1}}


@pytest.mark.parametrize("data,field", [
    ({"app": {"bankroll": -5}}, "app -> bankroll"),
    ({"risk": {"risk_pct": 2}}, "risk -> risk_pct"),
    ({"risk": {"min_stake": 100, "max_stake_floor": 50}}, "risk -> max_stake_floor"),
    ({"logging": {"level": "chatty"}}, "logging -> level"),
    ({"server": {"port": 70000}}, "server -> port"),
])
def test_invalid_values_raise(tmp_path, data, field):
    with pytest.raises(ConfigurationError, match=field):
        load_app_config(_write(tmp_path, data), env={})


def test_malformed_yaml(tmp_path):
    (tmp_path / "app.yaml").write_text("app: [unclosed\n")
    with pytest.raises(ConfigurationError, match="Malformed YAML"):
        load_app_config(str(tmp_path), env={})
    assert validate_all_configs(str(tmp_path))


def test_top_level_must_be_mapping(tmp_path):
    (tmp_path / "app.yaml").write_text("- a\n- b\n")
    with pytest.raises(ConfigurationError):
        load_app_config(str(tmp_path), env={})
