"""Mapping between the remote namespace and the local directory tree."""

import os
from pathlib import Path, PurePosixPath
from typing import Union

from .folder import normalize_remote_path


class PathMapper:
    """Translates paths between the remote root folder and the local root.

    The two roots are in a fixed prefix correspondence: a remote path
    below the remote root maps to the same relative path below the
    local root.

    Examples:
        >>> mapper = PathMapper(Path("/home/user/demo"), "/Sites/demo")
        >>> mapper.to_local("/Sites/demo/docs/a.txt")
        PosixPath('/home/user/demo/docs/a.txt')
        >>> mapper.is_in_scope("/Sites/demo2/a.txt")
        False
    """

    def __init__(self, local_root: Path, remote_root: str):
        """Initialize path mapper.

        Args:
            local_root: Local root directory
            remote_root: Remote root folder path
        """
        self.local_root = Path(local_root)
        self.remote_root = normalize_remote_path(remote_root)

    def is_in_scope(self, remote_path: str) -> bool:
        """Check whether a remote path lies at or below the remote root."""
        if self.remote_root == "/":
            return remote_path.startswith("/")
        return remote_path == self.remote_root or remote_path.startswith(
            self.remote_root + "/"
        )

    def relative_remote_path(self, remote_path: str) -> str:
        """Path of a remote object relative to the remote root.

        Raises:
            ValueError: If the path is outside the remote root
        """
        if not self.is_in_scope(remote_path):
            raise ValueError(
                f"Remote path outside of {self.remote_root}: {remote_path}"
            )
        return remote_path[len(self.remote_root) :].strip("/")

    def to_local(self, remote_path: str) -> Path:
        """Map a remote path to the corresponding local path.

        Raises:
            ValueError: If the path is outside the remote root
        """
        relative = self.relative_remote_path(remote_path)
        if not relative:
            return self.local_root
        return self.local_root.joinpath(*PurePosixPath(relative).parts)

    def is_local_in_scope(self, local_path: Union[str, Path]) -> bool:
        """Check whether a local path lies at or below the local root."""
        path = Path(local_path)
        return path == self.local_root or self.local_root in path.parents

    def relative_local_path(self, local_path: Union[str, Path]) -> str:
        """Path of a local entry relative to the local root, with slashes.

        Raises:
            ValueError: If the path is outside the local root
        """
        relative = Path(local_path).relative_to(self.local_root)
        return "" if not relative.parts else relative.as_posix()

    def to_remote(self, local_path: Union[str, Path]) -> str:
        """Map a local path below the local root to its remote path.

        Raises:
            ValueError: If the path is outside the local root
        """
        relative = Path(local_path).relative_to(self.local_root)
        if not relative.parts:
            return self.remote_root
        return self.remote_root.rstrip("/") + "/" + relative.as_posix()


def suffix_if_exists(path: Union[str, Path]) -> str:
    """Find an available name (potentially suffixed) for a file.

    - if /dir/file does not exist, return the same path
    - if /dir/file exists, return /dir/file (1)
    - if /dir/file (1) also exists, return /dir/file (2)
    - etc

    Args:
        path: Wanted path

    Returns:
        A path that does not exist yet
    """
    path = str(path)
    if not os.path.exists(path):
        return path
    index = 1
    while True:
        candidate = f"{path} ({index})"
        if not os.path.exists(candidate):
            return candidate
        index += 1
