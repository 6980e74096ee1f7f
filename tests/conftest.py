"""
Pytest configuration and fixtures for pulsetrader tests.

This conftest.py provides shared fixtures and hooks for all tests.
"""
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from infra.metrics import MetricsRecorder  # noqa: E402


@pytest.fixture(autouse=True)
def reset_singletons():
    """
    Reset singleton instances between tests to ensure test isolation.

    This is applied automatically to all tests (autouse=True).
    """
    MetricsRecorder._reset_for_testing()
    yield
    MetricsRecorder._reset_for_testing()


@pytest.fixture
def storage_dir(tmp_path, monkeypatch):
    """Isolated storage directory; STORAGE_DIR points at it for default paths."""
    path = tmp_path / "data"
    path.mkdir()
    monkeypatch.setenv("STORAGE_DIR", str(path))
    return path
