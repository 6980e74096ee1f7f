"""
pulsetrader Infrastructure: State Store

Per-profile portfolio documents with atomic whole-document writes.
One JSON file per profile (state.<profile>.json) under the storage dir.
"""

import json
import os
import re
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pathlib import Path
import logging

logger = logging.getLogger(__name__)


DEFAULT_PROFILE = "default"

_PROFILE_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def initial_state(bankroll: float) -> Dict[str, Any]:
    """Fresh portfolio document seeded with ``bankroll``."""
    return {
        "bankroll": float(bankroll),
        "seed_bankroll": float(bankroll),
        "open_positions": [],
        "closed_trades": 0,
        "wins": 0,
        "losses": 0,
        "realized_pnl": 0.0,
        "updated_at": utc_now_iso(),
    }


def atomic_write_json(path: Path, payload: Any, prefix: str = ".state_") -> None:
    """Write JSON to ``path`` via temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=prefix,
        suffix=".json.tmp",
    )
    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


class StateStore:
    """
    Persistent portfolio storage, one JSON document per profile.

    Features:
    - Atomic writes (temp file + rename)
    - Seed document written on first access
    - No caching: every load reads the file
    """

    def __init__(self, storage_dir: Optional[str] = None):
        """
        Args:
            storage_dir: Directory holding state files (default: $STORAGE_DIR or data/)
        """
        if storage_dir is None:
            storage_dir = os.getenv("STORAGE_DIR", "data")
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized StateStore at {self.storage_dir}")

    def state_path(self, profile: str = DEFAULT_PROFILE) -> Path:
        safe = _PROFILE_RE.sub("_", profile or DEFAULT_PROFILE)
        return self.storage_dir / f"state.{safe}.json"

    def exists(self, profile: str = DEFAULT_PROFILE) -> bool:
        return self.state_path(profile).exists()

    def load(self, profile: str = DEFAULT_PROFILE, default_bankroll: float = 10000.0) -> Dict[str, Any]:
        """
        Load a profile's portfolio document, creating it on first access.

        Args:
            profile: Profile name
            default_bankroll: Seed bankroll for a new profile

        Returns:
            Portfolio document (plain dict)
        """
        path = self.state_path(profile)
        if not path.exists():
            state = initial_state(default_bankroll)
            atomic_write_json(path, state)
            logger.info(f"Created profile '{profile}' with bankroll ${default_bankroll:.2f}")
            return state

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Invalid state document for profile '{profile}': {path}")

        state = {**initial_state(default_bankroll), **data}
        logger.debug(f"Loaded state for profile '{profile}'")
        return state

    def save(self, state: Dict[str, Any], profile: str = DEFAULT_PROFILE) -> None:
        """Overwrite a profile's document with ``state``."""
        atomic_write_json(self.state_path(profile), state)
        logger.debug(f"Saved state for profile '{profile}'")

    def list_profiles(self) -> List[str]:
        """Names of all profiles that have a state document."""
        profiles = []
        for path in sorted(self.storage_dir.glob("state.*.json")):
            profiles.append(path.name[len("state."):-len(".json")])
        return profiles

    def reset(self, profile: str = DEFAULT_PROFILE, bankroll: float = 10000.0) -> Dict[str, Any]:
        """Replace a profile's document with a fresh seed."""
        state = initial_state(bankroll)
        self.save(state, profile)
        logger.warning(f"Reset profile '{profile}' to bankroll ${bankroll:.2f}")
        return state
