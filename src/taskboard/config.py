"""Backend connection configuration.

Loads from ~/.taskboard/config.yaml with environment variable overrides.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


@dataclass
class StoreConfig:
    """Where the hosted backend lives and who is talking to it."""

    url: str = "http://localhost:54321"
    api_key: str = ""
    access_token: str = ""  # issued by the identity provider, env only (never saved)
    user_id: str = ""
    timeout: float = 30.0  # seconds per request

    CONFIG_FILE: Path = field(
        default_factory=lambda: Path.home() / ".taskboard" / "config.yaml",
        repr=False,
    )

    @classmethod
    def load(cls, config_path: Path | None = None) -> StoreConfig:
        """Load config from file and environment variables.

        Priority (highest wins):
          1. Environment variables (TASKBOARD_URL, TASKBOARD_API_KEY, ...)
          2. Config file (~/.taskboard/config.yaml or custom path)
          3. Defaults
        """
        config = cls()
        file_path = config_path or config.CONFIG_FILE

        if file_path.exists():
            try:
                with open(file_path) as f:
                    data = yaml.safe_load(f) or {}

                config.url = data.get("url", config.url)
                config.api_key = data.get("api_key", config.api_key)
                config.user_id = data.get("user_id", config.user_id)
                config.timeout = float(data.get("timeout", config.timeout))
            except (yaml.YAMLError, OSError, ValueError, AttributeError) as e:
                logger.warning("Ignoring unreadable config file %s: %s", file_path, e)

        config.url = os.environ.get("TASKBOARD_URL", config.url)
        config.api_key = os.environ.get("TASKBOARD_API_KEY", config.api_key)
        config.access_token = os.environ.get("TASKBOARD_ACCESS_TOKEN", config.access_token)
        config.user_id = os.environ.get("TASKBOARD_USER_ID", config.user_id)
        if env_timeout := os.environ.get("TASKBOARD_TIMEOUT"):
            config.timeout = float(env_timeout)

        return config

    def save(self, config_path: Path | None = None) -> None:
        file_path = config_path or self.CONFIG_FILE
        file_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "url": self.url,
            "api_key": self.api_key,
            "user_id": self.user_id,
            "timeout": self.timeout,
        }

        with open(file_path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False)
