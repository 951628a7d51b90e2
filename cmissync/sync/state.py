"""Local state cache remembering what was last synchronized.

The cache maps local paths to the remote state they were last synced
with (server-side modification date, object id and document metadata)
and keeps the change log token of the repository. It is an SQLite
database stored outside of the synchronized folder; every change is
committed on its own, so a record is durable as soon as the call that
wrote it returns.
"""

import json
import logging
import os
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

from ..utils import format_timestamp, parse_cmis_timestamp

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

CHANGE_LOG_TOKEN_KEY = "ChangeLogToken"

SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    path TEXT PRIMARY KEY,
    server_side_modification_date TEXT,
    object_id TEXT,
    metadata TEXT
);
CREATE TABLE IF NOT EXISTS folders (
    path TEXT PRIMARY KEY,
    server_side_modification_date TEXT,
    object_id TEXT
);
CREATE TABLE IF NOT EXISTS general (
    key TEXT PRIMARY KEY,
    value TEXT
);
CREATE INDEX IF NOT EXISTS files_object_id ON files (object_id);
CREATE INDEX IF NOT EXISTS folders_object_id ON folders (object_id);
"""


@dataclass
class CacheRecord:
    """Last synchronized state of one local file or folder."""

    path: str
    """Local path"""

    server_side_modification_date: Optional[datetime] = None
    """Remote last modification date at the time of the sync"""

    object_id: Optional[str] = None
    """Id of the remote object mirrored at this path"""

    metadata: dict[str, Any] = field(default_factory=dict)
    """Document metadata (id, version, mime type, attribution)"""

    is_folder: bool = False


class SyncDatabase:
    """SQLite-backed local state cache for one sync folder.

    The connection may be used from another thread than the one that
    opened it, but only by one sync cycle at a time.

    Examples:
        >>> database = SyncDatabase(Path("/tmp/demo.cmissync"))
        >>> database.get_change_log_token() is None
        True
    """

    def __init__(self, path: Path):
        """Open the cache, creating it if it does not exist.

        Args:
            path: Cache file location
        """
        self.path = Path(path)
        self._lock = threading.Lock()
        self._connection = self._open()

    @staticmethod
    def _key(path: PathLike) -> str:
        return os.path.normpath(str(path))

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self.path), check_same_thread=False)
        try:
            connection.executescript(SCHEMA)
        except sqlite3.Error:
            connection.close()
            raise
        return connection

    def _open(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            connection = self._connect()
        except sqlite3.DatabaseError as e:
            # An unreadable cache only costs a full copy on the next cycle
            logger.warning(f"Discarding unreadable state cache {self.path}: {e}")
            self.path.unlink()
            connection = self._connect()
        logger.debug(f"Opened state cache {self.path}")
        return connection

    def _execute(self, sql: str, parameters: tuple = ()) -> sqlite3.Cursor:
        """Run one statement in its own transaction."""
        with self._lock, self._connection:
            return self._connection.execute(sql, parameters)

    def _query_one(self, sql: str, parameters: tuple = ()) -> Optional[tuple]:
        with self._lock:
            return self._connection.execute(sql, parameters).fetchone()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._connection.close()

    # =========================
    # Change log token
    # =========================

    def get_change_log_token(self) -> Optional[str]:
        """Get the stored change log token (None if never synced)."""
        row = self._query_one(
            "SELECT value FROM general WHERE key = ?", (CHANGE_LOG_TOKEN_KEY,)
        )
        return row[0] if row else None

    def set_change_log_token(self, token: Optional[str]) -> None:
        """Store the change log token."""
        if token is None:
            self._execute(
                "DELETE FROM general WHERE key = ?", (CHANGE_LOG_TOKEN_KEY,)
            )
            return
        self._execute(
            "INSERT OR REPLACE INTO general (key, value) VALUES (?, ?)",
            (CHANGE_LOG_TOKEN_KEY, token),
        )

    # =========================
    # Folders
    # =========================

    def add_folder(
        self,
        path: PathLike,
        server_side_modification_date: Any,
        object_id: Optional[str] = None,
    ) -> None:
        """Record a synchronized folder.

        Args:
            path: Local folder path
            server_side_modification_date: Remote modification date to remember
            object_id: Id of the remote folder
        """
        self._execute(
            "INSERT OR REPLACE INTO folders "
            "(path, server_side_modification_date, object_id) VALUES (?, ?, ?)",
            (
                self._key(path),
                format_timestamp(parse_cmis_timestamp(server_side_modification_date)),
                object_id,
            ),
        )

    def remove_folder(self, path: PathLike) -> None:
        """Forget a folder and every file and folder below it."""
        key = self._key(path)
        prefix = key.rstrip(os.sep) + os.sep
        with self._lock, self._connection:
            self._connection.execute(
                "DELETE FROM folders WHERE path = ? OR substr(path, 1, ?) = ?",
                (key, len(prefix), prefix),
            )
            self._connection.execute(
                "DELETE FROM files WHERE substr(path, 1, ?) = ?",
                (len(prefix), prefix),
            )

    def get_folder(self, path: PathLike) -> Optional[CacheRecord]:
        """Get the record of a folder, if known."""
        key = self._key(path)
        row = self._query_one(
            "SELECT server_side_modification_date, object_id FROM folders "
            "WHERE path = ?",
            (key,),
        )
        if row is None:
            return None
        return CacheRecord(
            path=key,
            server_side_modification_date=parse_cmis_timestamp(row[0]),
            object_id=row[1],
            is_folder=True,
        )

    def contains_folder(self, path: PathLike) -> bool:
        """Check whether a folder is recorded."""
        return self.get_folder(path) is not None

    # =========================
    # Files
    # =========================

    def add_file(
        self,
        path: PathLike,
        server_side_modification_date: Any,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Record a synchronized file.

        Args:
            path: Local file path
            server_side_modification_date: Remote modification date to remember
            metadata: Document metadata (None keeps no metadata)
        """
        metadata = dict(metadata or {})
        self._execute(
            "INSERT OR REPLACE INTO files "
            "(path, server_side_modification_date, object_id, metadata) "
            "VALUES (?, ?, ?, ?)",
            (
                self._key(path),
                format_timestamp(parse_cmis_timestamp(server_side_modification_date)),
                metadata.get("id"),
                json.dumps(metadata, sort_keys=True),
            ),
        )

    def remove_file(self, path: PathLike) -> None:
        """Forget a file."""
        self._execute("DELETE FROM files WHERE path = ?", (self._key(path),))

    def set_file_server_side_modification_date(
        self, path: PathLike, server_side_modification_date: Any
    ) -> None:
        """Update the remembered remote modification date of a file."""
        key = self._key(path)
        date = format_timestamp(parse_cmis_timestamp(server_side_modification_date))
        with self._lock, self._connection:
            cursor = self._connection.execute(
                "UPDATE files SET server_side_modification_date = ? WHERE path = ?",
                (date, key),
            )
            if cursor.rowcount == 0:
                self._connection.execute(
                    "INSERT INTO files "
                    "(path, server_side_modification_date, metadata) "
                    "VALUES (?, ?, ?)",
                    (key, date, "{}"),
                )

    def get_file(self, path: PathLike) -> Optional[CacheRecord]:
        """Get the record of a file, if known."""
        key = self._key(path)
        row = self._query_one(
            "SELECT server_side_modification_date, object_id, metadata FROM files "
            "WHERE path = ?",
            (key,),
        )
        if row is None:
            return None
        return CacheRecord(
            path=key,
            server_side_modification_date=parse_cmis_timestamp(row[0]),
            object_id=row[1],
            metadata=json.loads(row[2] or "{}"),
        )

    def contains_file(self, path: PathLike) -> bool:
        """Check whether a file is recorded."""
        return self.get_file(path) is not None

    def find_by_object_id(self, object_id: str) -> Optional[CacheRecord]:
        """Find the record of a remote object by its id.

        Folders are looked up first. Returns None if the object was never
        synchronized.
        """
        row = self._query_one(
            "SELECT path FROM folders WHERE object_id = ?", (object_id,)
        )
        if row is not None:
            return self.get_folder(row[0])
        row = self._query_one(
            "SELECT path FROM files WHERE object_id = ?", (object_id,)
        )
        if row is not None:
            return self.get_file(row[0])
        return None

    def clear(self) -> None:
        """Forget everything, including the change log token."""
        with self._lock, self._connection:
            for table in ("files", "folders", "general"):
                self._connection.execute(f"DELETE FROM {table}")
        logger.debug(f"Cleared state cache at {self.path}")
