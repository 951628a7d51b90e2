"""Loading sync folder definitions from JSON files."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from .folder import SyncFolder

logger = logging.getLogger(__name__)


class SyncConfigError(Exception):
    """Raised when a sync folder configuration file is invalid."""


def load_sync_folders_from_json(
    path: Path, defaults: Optional[dict[str, Any]] = None
) -> list[SyncFolder]:
    """Load sync folders from a JSON file.

    The file contains either a list of folder objects or an object with
    a ``folders`` list. Connection keys missing from a folder (url, user,
    password, repositoryId) are taken from ``defaults``.

    Args:
        path: JSON file to read
        defaults: Fallback values for keys missing in a folder entry

    Returns:
        List of SyncFolder objects

    Raises:
        SyncConfigError: If the file cannot be read or has an invalid structure

    Examples:
        >>> folders = load_sync_folders_from_json(Path("folders.json"))
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise SyncConfigError(f"Cannot read sync configuration {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise SyncConfigError(f"Invalid JSON in {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("folders")
    if not isinstance(data, list):
        raise SyncConfigError(f"Expected a list of sync folders in {path}")

    folders: list[SyncFolder] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise SyncConfigError(f"Sync folder #{index} in {path} is not an object")
        if not entry.get("local") or not entry.get("remote"):
            raise SyncConfigError(
                f"Sync folder #{index} in {path} needs 'local' and 'remote'"
            )
        merged = dict(defaults or {})
        merged.update({k: v for k, v in entry.items() if v is not None})
        folders.append(SyncFolder.from_dict(merged))

    logger.debug(f"Loaded {len(folders)} sync folder(s) from {path}")
    return folders
