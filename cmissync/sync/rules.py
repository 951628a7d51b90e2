"""Exclusion rules keeping temporary, lock and metadata files out of sync.

The checks are plain substring and extension comparisons. Excluding too
much is harmless, while letting the engine's own staging or cache files
through would make it sync its own artifacts in a loop.
"""

import logging
import os
from enum import Enum
from pathlib import PurePath
from typing import Iterable, Optional, Union

from ..utils import DATABASE_SUFFIX, STAGING_SUFFIX

logger = logging.getLogger(__name__)


class RulesType(str, Enum):
    """Kind of path being checked."""

    FOLDER = "folder"
    FILE = "file"


# Excluded wherever they appear in a path
EXCLUDED_CONTENTS: tuple[str, ...] = (
    "~",  # gedit and emacs backups
    "Thumbs.db",
    "Desktop.ini",
    "desktop.ini",
    "thumbs.db",  # Windows
    "$~",  # MS Office owner files
)

# Excluded file extensions
EXCLUDED_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".autosave",  # various autosaving apps
        ".~lock",  # LibreOffice
        ".part",
        ".crdownload",  # Firefox and Chromium downloads
        ".un~",
        ".swp",
        ".swo",  # vi(m)
        ".directory",  # KDE
        ".DS_Store",
        ".Icon\r\r",
        "._",
        ".Spotlight-V100",
        ".Trashes",  # Mac OS X
        ".(Autosaved).graffle",  # OmniGraffle
        ".tmp",
        ".TMP",  # MS Office
        ".~ppt",
        ".~PPT",
        ".~pptx",
        ".~PPTX",
        ".~xls",
        ".~XLS",
        ".~xlsx",
        ".~XLSX",
        ".~doc",
        ".~DOC",
        ".~docx",
        ".~DOCX",
        ".cvsignore",
        ".~cvsignore",  # CVS
        STAGING_SUFFIX,  # transfers in progress
        DATABASE_SUFFIX,  # local state cache
    }
)

# Excluded directory names (matched as substrings of folder paths)
EXCLUDED_DIRECTORIES: tuple[str, ...] = (
    "CVS",
    ".svn",
    ".git",
    ".hg",
    ".bzr",
    ".DS_Store",
    ".Icon\r\r",
    "._",
    ".Spotlight-V100",
    ".Trashes",
)


def _is_vim_swap_extension(extension: str) -> bool:
    """Match vim swap files: .swa to .swz."""
    return (
        len(extension) == 4
        and extension.startswith(".sw")
        and "a" <= extension[3] <= "z"
    )


class RuleFilter:
    """Decides whether a local or remote path takes part in sync.

    Examples:
        >>> rules = RuleFilter()
        >>> rules.is_allowed("/sync/report.docx", RulesType.FILE)
        True
        >>> rules.is_allowed("/sync/.report.docx.swp", RulesType.FILE)
        False
    """

    def __init__(self, extra_contents: Optional[Iterable[str]] = None):
        """Initialize rule filter.

        Args:
            extra_contents: Additional substrings that exclude a path
        """
        self.contents = EXCLUDED_CONTENTS + tuple(extra_contents or ())

    def is_allowed(
        self, path: Union[str, PurePath], ruletype: RulesType = RulesType.FILE
    ) -> bool:
        """Check whether a path may be synchronized.

        Args:
            path: File or folder path (local or remote)
            ruletype: Whether the path is a folder or a file

        Returns:
            True if the path is allowed, False if it must be skipped
        """
        path_str = str(path)

        if any(content in path_str for content in self.contents):
            logger.debug(f"Excluded by content rule: {path_str}")
            return False

        if ruletype == RulesType.FOLDER:
            if any(directory in path_str for directory in EXCLUDED_DIRECTORIES):
                logger.debug(f"Excluded by directory rule: {path_str}")
                return False
            return True

        name = os.path.basename(path_str.rstrip("/\\"))
        _, extension = os.path.splitext(name)
        # splitext() leaves dot files like ".DS_Store" without extension
        if not extension and name.startswith("."):
            extension = name
        if extension in EXCLUDED_EXTENSIONS or _is_vim_swap_extension(extension):
            logger.debug(f"Excluded by extension rule: {path_str}")
            return False
        if name.startswith("._") or name.startswith(".~lock"):
            logger.debug(f"Excluded by name rule: {path_str}")
            return False

        return True
