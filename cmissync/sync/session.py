"""Session lifecycle: connecting to the repository and detecting its capabilities."""

import logging
import threading
from typing import Callable, Optional

from ..api import CmisClient
from ..exceptions import CmisAPIError, CmisConfigError, CmisSyncCancelledError
from ..models import RepositoryInfo
from ..utils import CONNECT_RETRY_INTERVAL
from .folder import SyncFolder

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., CmisClient]


class SessionManager:
    """Establishes and holds the session to the repository of a sync folder."""

    def __init__(
        self,
        folder: SyncFolder,
        client_factory: ClientFactory = CmisClient,
        retry_interval: float = CONNECT_RETRY_INTERVAL,
        stop_event: Optional[threading.Event] = None,
    ):
        """Initialize session manager.

        Args:
            folder: Sync folder holding the connection settings
            client_factory: Callable building a client from url, user,
                password and repository_id keyword arguments
            retry_interval: Seconds to wait between connection attempts
            stop_event: Event interrupting the wait when set
        """
        self.folder = folder
        self.client_factory = client_factory
        self.retry_interval = retry_interval
        self.stop_event = stop_event or threading.Event()
        self.session: Optional[CmisClient] = None
        self.repository_info: Optional[RepositoryInfo] = None
        self.change_log_capability = False

    @property
    def connected(self) -> bool:
        """Whether a session has been established."""
        return self.session is not None

    def _try_connect(self) -> Optional[CmisClient]:
        client = None
        try:
            client = self.client_factory(
                url=self.folder.url,
                user=self.folder.user,
                password=self.folder.password,
                repository_id=self.folder.repository_id or None,
            )
            self.repository_info = client.get_repository_info()
        except CmisConfigError:
            raise
        except CmisAPIError as e:
            logger.info(f"Connection attempt failed: {e}")
            if client is not None:
                client.close()
            return None
        return client

    def connect(self) -> CmisClient:
        """Connect to the repository, retrying until it succeeds.

        There is no maximum number of attempts. The wait between attempts
        is interrupted when the stop event is set.

        Returns:
            The connected client (also kept as ``self.session``)

        Raises:
            CmisSyncCancelledError: If the stop event is set while waiting
            CmisConfigError: If the connection settings are incomplete
        """
        while True:
            if self.stop_event.is_set():
                raise CmisSyncCancelledError("Connection cancelled")

            session = self._try_connect()
            if session is not None and self.repository_info is not None:
                self.session = session
                # Detect whether the repository has the change log capability
                self.change_log_capability = self.repository_info.supports_change_log
                logger.info(
                    f"Connected to repository {self.repository_info.name} "
                    f"({self.repository_info.id}), change log capability: "
                    f"{self.change_log_capability}"
                )
                return session

            logger.info(
                f"Connection failed, waiting for {self.retry_interval:g} seconds: "
                f"{self.folder.local} ({self.folder.url})"
            )
            if self.stop_event.wait(self.retry_interval):
                raise CmisSyncCancelledError("Connection cancelled")

    def disconnect(self) -> None:
        """Close the session."""
        if self.session is not None:
            self.session.close()
            self.session = None
