"""Sync engine binding one local folder to one remote folder."""

import logging
import threading
from pathlib import Path
from typing import Optional

from ..api import CmisClient
from ..config import config
from ..exceptions import (
    CmisAPIError,
    CmisConfigError,
    CmisNotFoundError,
    CmisSyncCancelledError,
)
from ..models import ObjectKind, RemoteFolder
from ..utils import CONNECT_RETRY_INTERVAL
from .activity import ActivityListener, NullActivityListener
from .detector import ChangeDetector
from .downloader import RemoteToLocalReplicator
from .folder import SyncFolder
from .paths import PathMapper
from .rules import RuleFilter
from .session import ClientFactory, SessionManager
from .state import SyncDatabase
from .uploader import LocalToRemoteReplicator

logger = logging.getLogger(__name__)


class SyncEngine:
    """Core sync engine that keeps a local folder mirrored with a remote folder.

    Every collaborator (session, state cache, replicators) belongs to this
    instance, so several engines for different sync folders can live in
    the same process.
    """

    def __init__(
        self,
        folder: SyncFolder,
        database: Optional[SyncDatabase] = None,
        activity_listener: Optional[ActivityListener] = None,
        client_factory: ClientFactory = CmisClient,
        rules: Optional[RuleFilter] = None,
        state_dir: Optional[Path] = None,
        retry_interval: float = CONNECT_RETRY_INTERVAL,
    ):
        """Initialize sync engine.

        Args:
            folder: Sync folder to keep in sync
            database: Local state cache (default: a cache file in the state
                directory, named after the sync folder)
            activity_listener: Notified around each unit of work
            client_factory: Callable building the repository client
            rules: Rule filter (default: built-in rules plus the folder's
                ignore list)
            state_dir: Directory holding the state cache files
            retry_interval: Seconds to wait between connection attempts

        Examples:
            >>> folder = SyncFolder(Path("~/demo"), "/Sites/demo", url=CMIS_URL)
            >>> engine = SyncEngine(folder)
            >>> engine.sync()
            True
        """
        self.folder = folder
        self._owns_database = database is None
        if database is None:
            database = SyncDatabase(
                folder.database_path(state_dir or config.get_state_dir())
            )
        self.database = database
        self.activity_listener = activity_listener or NullActivityListener()
        self.rules = rules or RuleFilter(folder.ignore)
        self.mapper = PathMapper(folder.local, folder.remote)

        # Shared by the poll wait and the connection backoff
        self.stop_event = threading.Event()
        self.session_manager = SessionManager(
            folder,
            client_factory=client_factory,
            retry_interval=retry_interval,
            stop_event=self.stop_event,
        )

        # Advisory only, callers must not run cycles concurrently
        self.syncing = False

        self.downloader: Optional[RemoteToLocalReplicator] = None
        self.uploader: Optional[LocalToRemoteReplicator] = None
        self.detector: Optional[ChangeDetector] = None

    @property
    def session(self) -> Optional[CmisClient]:
        """The repository client, once connected."""
        return self.session_manager.session

    @property
    def change_log_capability(self) -> bool:
        """Whether the repository supports incremental change logs."""
        return self.session_manager.change_log_capability

    def connect(self) -> CmisClient:
        """Connect to the repository and set up the replicators.

        Blocks until the connection succeeds or ``stop()`` is called.

        Returns:
            The connected client

        Raises:
            CmisSyncCancelledError: If stopped while connecting
        """
        session = self.session_manager.connect()
        self.downloader = RemoteToLocalReplicator(
            session,
            self.database,
            self.rules,
            self.activity_listener,
            mapper=self.mapper,
        )
        self.uploader = LocalToRemoteReplicator(
            session,
            self.database,
            self.rules,
            self.activity_listener,
            mapper=self.mapper,
        )
        self.detector = ChangeDetector(
            session,
            self.database,
            self.mapper,
            self.downloader,
            rules=self.rules,
            change_log_capability=self.session_manager.change_log_capability,
        )
        return session

    def _ensure_connected(self) -> CmisClient:
        if self.session is None or self.detector is None:
            return self.connect()
        return self.session

    def get_remote_root(self) -> RemoteFolder:
        """Resolve the configured remote root folder.

        Raises:
            CmisNotFoundError: If the path does not exist or is not a folder
        """
        session = self._ensure_connected()
        remote_root = session.get_object_by_path(self.folder.remote)
        if remote_root.kind != ObjectKind.FOLDER:
            raise CmisNotFoundError(
                f"Remote path is not a folder: {self.folder.remote}"
            )
        return remote_root

    def sync(self) -> bool:
        """Run one sync cycle.

        Returns:
            True if the cycle completed without failed units, False if some
            unit failed or a cycle is already running
        """
        if self.syncing:
            logger.info(f"Sync of {self.folder.local} already in progress, skipping")
            return False

        self.syncing = True
        try:
            self._ensure_connected()
            self.folder.local.mkdir(parents=True, exist_ok=True)
            remote_root = self.get_remote_root()
            logger.info(f"Syncing {self.folder.remote} -> {self.folder.local}")
            if self.detector is None:
                raise CmisAPIError("Not connected")
            success = self.detector.sync(remote_root)
            logger.info(
                f"Sync of {self.folder.local} "
                f"{'finished' if success else 'finished with failures'}"
            )
            return success
        finally:
            self.syncing = False

    def run(self, interval: Optional[float] = None) -> None:
        """Poll the repository until ``stop()`` is called.

        Failed cycles are logged and retried after the next interval.

        Args:
            interval: Seconds between cycles (default: the folder's poll interval)

        Raises:
            CmisConfigError: If the connection settings are incomplete
        """
        interval = self.folder.poll_interval if interval is None else interval
        logger.info(f"Watching {self.folder.local} every {interval:g} seconds")

        while not self.stop_event.is_set():
            try:
                self.sync()
            except CmisSyncCancelledError:
                break
            except CmisConfigError:
                raise
            except CmisAPIError as e:
                logger.error(f"Sync cycle failed: {e}")

            if self.stop_event.wait(interval):
                break

        logger.info(f"Stopped watching {self.folder.local}")

    def stop(self) -> None:
        """Stop the poll loop and interrupt a pending connection attempt."""
        self.stop_event.set()

    def upload_folder(self, local_folder: Path) -> Optional[RemoteFolder]:
        """Upload a local folder tree into the remote root folder.

        Args:
            local_folder: Local folder to upload

        Returns:
            The created remote folder, or None if excluded by the rules
        """
        remote_root = self.get_remote_root()
        if self.uploader is None:
            raise CmisAPIError("Not connected")
        return self.uploader.upload_folder_recursively(remote_root, Path(local_folder))

    def close(self) -> None:
        """Close the repository session."""
        self.session_manager.disconnect()
        self.downloader = None
        self.uploader = None
        self.detector = None

    def __enter__(self) -> "SyncEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
        if self._owns_database:
            self.database.close()
