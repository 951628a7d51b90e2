"""Configuration management for the CMIS sync client.

Settings come from ``~/.config/cmissync/config.json`` and can be
overridden with environment variables:

- ``CMISSYNC_URL``: browser binding service URL
- ``CMISSYNC_USER``: user name
- ``CMISSYNC_PASSWORD``: password
- ``CMISSYNC_REPOSITORY``: repository id
- ``CMISSYNC_CONFIG_DIR``: alternative configuration directory
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from .exceptions import CmisConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.json"


class Config:
    """Connection settings with environment variable overrides."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_dir: Configuration directory. Defaults to
                        $CMISSYNC_CONFIG_DIR or ~/.config/cmissync
        """
        self._config_dir = config_dir

    @property
    def config_dir(self) -> Path:
        """Directory holding the config file and the sync state."""
        if self._config_dir is not None:
            return self._config_dir
        env_dir = os.environ.get("CMISSYNC_CONFIG_DIR")
        if env_dir:
            return Path(env_dir)
        return Path.home() / ".config" / "cmissync"

    def get_config_path(self) -> Path:
        """Get the path of the configuration file."""
        return self.config_dir / CONFIG_FILE_NAME

    def get_state_dir(self) -> Path:
        """Get the directory for local state cache files."""
        return self.config_dir / "state"

    def _load(self) -> dict[str, Any]:
        config_path = self.get_config_path()
        if not config_path.exists():
            return {}
        try:
            with open(config_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read config file {config_path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed config file {config_path}")
            return {}
        return data

    def _get(self, env_var: str, key: str) -> Optional[str]:
        value = os.environ.get(env_var)
        if value:
            return value
        return self._load().get(key) or None

    @property
    def url(self) -> Optional[str]:
        """Browser binding service URL."""
        return self._get("CMISSYNC_URL", "url")

    @property
    def user(self) -> Optional[str]:
        """User name."""
        return self._get("CMISSYNC_USER", "user")

    @property
    def password(self) -> Optional[str]:
        """Password."""
        return self._get("CMISSYNC_PASSWORD", "password")

    @property
    def repository_id(self) -> Optional[str]:
        """Repository id (None means: first repository of the service)."""
        return self._get("CMISSYNC_REPOSITORY", "repositoryId")

    def is_configured(self) -> bool:
        """Check whether a service URL and a user are known."""
        return bool(self.url and self.user)

    def save_connection(
        self,
        url: str,
        user: str,
        password: str,
        repository_id: Optional[str] = None,
    ) -> None:
        """Persist connection settings to the config file.

        Args:
            url: Browser binding service URL
            user: User name
            password: Password
            repository_id: Repository id

        Raises:
            CmisConfigError: If the file cannot be written
        """
        data = self._load()
        data.update(
            {
                "url": url,
                "user": user,
                "password": password,
                "repositoryId": repository_id or "",
            }
        )
        config_path = self.get_config_path()
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            # Credentials are stored in clear text, keep them private
            config_path.chmod(0o600)
        except OSError as e:
            raise CmisConfigError(f"Cannot write config file {config_path}: {e}") from e
        logger.debug(f"Saved connection settings to {config_path}")


config = Config()
