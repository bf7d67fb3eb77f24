"""Shared procflow configuration utilities.

Centralises reading of ~/.procflow/configuration.json so the engine, the
CLI and embedding services share one implementation.

Example file::

    {
      "engine": {
        "max_steps": 500,
        "cancel_branches_on_rejection": false,
        "strict_approver_resolution": false
      },
      "events": {
        "max_attempts": 5,
        "backoff_base_seconds": 30,
        "backoff_max_seconds": 3600,
        "sweep_batch_size": 100
      },
      "notifications": {"default_channel": "in_app"}
    }
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

PROCFLOW_CONFIG_FILE = Path(
    os.environ.get("PROCFLOW_CONFIG", Path.home() / ".procflow" / "configuration.json")
)


def get_procflow_config() -> dict[str, Any]:
    """Load procflow configuration from ~/.procflow/configuration.json."""
    if not PROCFLOW_CONFIG_FILE.exists():
        return {}
    try:
        with open(PROCFLOW_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


def _section(name: str) -> dict[str, Any]:
    value = get_procflow_config().get(name, {})
    return value if isinstance(value, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_max_steps() -> int:
    """Upper bound on node visits in one synchronous walk."""
    return int(_section("engine").get("max_steps", 500))


def get_cancel_branches_on_rejection() -> bool:
    return bool(_section("engine").get("cancel_branches_on_rejection", False))


def get_strict_approver_resolution() -> bool:
    return bool(_section("engine").get("strict_approver_resolution", False))


def get_event_max_attempts() -> int:
    return int(_section("events").get("max_attempts", 5))


def get_event_backoff_base() -> float:
    return float(_section("events").get("backoff_base_seconds", 30.0))


def get_event_backoff_max() -> float:
    return float(_section("events").get("backoff_max_seconds", 3600.0))


def get_sweep_batch_size() -> int:
    return int(_section("events").get("sweep_batch_size", 100))


def get_default_channel() -> str:
    return str(_section("notifications").get("default_channel", "in_app"))


# ---------------------------------------------------------------------------
# EngineConfig – shared by the engine and the CLI
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine configuration loaded from ~/.procflow/configuration.json."""

    max_steps: int = field(default_factory=get_max_steps)
    # When on, a rejection also cancels the sibling branches of the rejected one
    cancel_branches_on_rejection: bool = field(default_factory=get_cancel_branches_on_rejection)
    strict_approver_resolution: bool = field(default_factory=get_strict_approver_resolution)

    event_max_attempts: int = field(default_factory=get_event_max_attempts)
    event_backoff_base_seconds: float = field(default_factory=get_event_backoff_base)
    event_backoff_max_seconds: float = field(default_factory=get_event_backoff_max)
    sweep_batch_size: int = field(default_factory=get_sweep_batch_size)

    default_channel: str = field(default_factory=get_default_channel)

    def backoff_seconds(self, attempts: int) -> float:
        """Delay before the next retry after ``attempts`` failures (exponential, capped)."""
        if attempts <= 0:
            return 0.0
        delay = self.event_backoff_base_seconds * (2 ** (attempts - 1))
        return min(delay, self.event_backoff_max_seconds)
