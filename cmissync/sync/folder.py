"""Sync folder definition: one local root bound to one remote folder."""

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from ..utils import DATABASE_SUFFIX


def normalize_remote_path(remote: str) -> str:
    """Normalize a remote path to a leading slash and no trailing slash.

    Examples:
        >>> normalize_remote_path("Sites/demo/")
        '/Sites/demo'
        >>> normalize_remote_path("/")
        '/'
    """
    parts = [part for part in remote.replace("\\", "/").split("/") if part]
    return "/" + "/".join(parts)


@dataclass
class SyncFolder:
    """A local directory mirrored with a folder of a CMIS repository.

    Examples:
        >>> folder = SyncFolder(
        ...     local=Path("/home/user/CmisSync/demo"),
        ...     remote="/Sites/demo",
        ...     url="https://cmis.example.com/browser",
        ...     user="alice",
        ... )
    """

    local: Path
    """Local root directory"""

    remote: str
    """Remote root folder path (normalized, e.g. "/Sites/demo")"""

    url: str = ""
    """Browser binding service URL"""

    user: str = ""
    password: str = ""

    repository_id: str = ""
    """Repository id (empty: first repository of the service)"""

    alias: Optional[str] = None
    """Optional display name"""

    ignore: list[str] = field(default_factory=list)
    """Extra path substrings excluded from sync"""

    poll_interval: float = 60.0
    """Seconds between two sync cycles in daemon mode"""

    def __post_init__(self) -> None:
        if isinstance(self.local, str):
            self.local = Path(self.local)
        self.local = self.local.expanduser()
        self.remote = normalize_remote_path(self.remote)

    @property
    def name(self) -> str:
        """Display name of the folder."""
        return self.alias or self.local.name

    def database_path(self, state_dir: Path) -> Path:
        """Get the local state cache file for this folder.

        Args:
            state_dir: Directory holding cache files

        Returns:
            Path of the cache file, unique per local/remote/repository combination
        """
        combined = (
            f"{self.local.resolve()}:{self.url}:{self.repository_id}:{self.remote}"
        )
        key = hashlib.sha256(combined.encode()).hexdigest()[:16]
        return state_dir / f"{key}{DATABASE_SUFFIX}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncFolder":
        """Create a SyncFolder from a dictionary with camelCase keys.

        Args:
            data: Dictionary with keys local, remote and optionally url,
                user, password, repositoryId, alias, ignore, pollInterval

        Returns:
            SyncFolder instance
        """
        return cls(
            local=Path(data["local"]),
            remote=data["remote"],
            url=data.get("url", ""),
            user=data.get("user", ""),
            password=data.get("password", ""),
            repository_id=data.get("repositoryId", ""),
            alias=data.get("alias"),
            ignore=list(data.get("ignore", [])),
            poll_interval=float(data.get("pollInterval", 60.0)),
        )

    def to_dict(self) -> dict[str, Union[str, float, list[str], None]]:
        """Convert to a dictionary with camelCase keys (password omitted)."""
        return {
            "local": str(self.local),
            "remote": self.remote,
            "url": self.url,
            "user": self.user,
            "repositoryId": self.repository_id,
            "alias": self.alias,
            "ignore": list(self.ignore),
            "pollInterval": self.poll_interval,
        }
