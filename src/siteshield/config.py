"""
Configuration and path management for siteshield.
"""

import json
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

# Environment variable to override the list fetch timeout
FETCH_TIMEOUT_ENV = "SITESHIELD_FETCH_TIMEOUT"

# Default settings
DEFAULT_FETCH_TIMEOUT = 60.0
DEFAULT_USER_AGENT = "siteshield/1.0"


@dataclass
class ShieldConfig:
    """Main configuration."""

    # List fetching
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT  # seconds
    user_agent: str = DEFAULT_USER_AGENT

    # Matching
    compile_patterns: bool = False  # Compile every pattern when a list is swapped in

    # Filter lists: [{"id", "name", "url", "enabled", "category"}], None = built-ins
    filter_lists: list[dict[str, Any]] | None = None

    @classmethod
    def load(cls, path: Path | None = None) -> "ShieldConfig":
        """Load configuration from file."""
        if path is None:
            path = get_config_dir() / "config.json"

        if not path.exists():
            config = cls()
        else:
            with open(path) as f:
                data = json.load(f)

            config = cls(
                fetch_timeout=float(data.get("fetch_timeout", DEFAULT_FETCH_TIMEOUT)),
                user_agent=data.get("user_agent", DEFAULT_USER_AGENT),
                compile_patterns=data.get("compile_patterns", False),
                filter_lists=data.get("filter_lists"),
            )

        env_timeout = os.environ.get(FETCH_TIMEOUT_ENV)
        if env_timeout:
            config.fetch_timeout = float(env_timeout)

        return config

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = get_config_dir() / "config.json"

        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "fetch_timeout": self.fetch_timeout,
            "user_agent": self.user_agent,
            "compile_patterns": self.compile_patterns,
            "filter_lists": self.filter_lists,
        }

        with open(path, "w") as f:
            json.dump(data, f, indent=2)


def get_config_dir() -> Path:
    """Get config directory following platform conventions."""
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))

    return base / "siteshield"
