"""Infrastructure modules for pulsetrader"""

from .alerting import TelegramConfig, TelegramNotifier  # noqa: F401
from .metrics import MetricsRecorder, CycleStats  # noqa: F401
from .state_store import StateStore  # noqa: F401

__all__ = [
	"TelegramConfig",
	"TelegramNotifier",
	"MetricsRecorder",
	"CycleStats",
	"StateStore",
]
