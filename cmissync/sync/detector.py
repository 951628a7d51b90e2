"""Change detection: full bootstrap copy or incremental change log replay."""

import logging
import posixpath
from pathlib import Path
from typing import Optional

from ..api import CmisClient
from ..exceptions import CmisAPIError
from ..models import (
    ChangeEvent,
    ChangeType,
    ObjectKind,
    RemoteDocument,
    RemoteFolder,
)
from ..utils import MAX_CHANGE_EVENTS
from .downloader import RemoteToLocalReplicator
from .paths import PathMapper
from .rules import RuleFilter, RulesType
from .state import SyncDatabase

logger = logging.getLogger(__name__)


class ChangeDetector:
    """Decides once per cycle between a full copy and a change log replay.

    Without a stored change log token nothing has been synchronized yet
    and the whole remote tree is copied. Otherwise the events since the
    stored token are fetched and applied in server order. The stored
    token only advances after a page of events was applied without a
    failed unit, so an interrupted or failed replay is simply repeated
    by the next cycle.
    """

    def __init__(
        self,
        session: CmisClient,
        database: SyncDatabase,
        mapper: PathMapper,
        downloader: RemoteToLocalReplicator,
        rules: Optional[RuleFilter] = None,
        change_log_capability: bool = True,
        max_items: int = MAX_CHANGE_EVENTS,
    ):
        """Initialize change detector.

        Args:
            session: Connected repository client
            database: Local state cache holding the change log token
            mapper: Mapping between remote and local paths
            downloader: Replicator applying remote changes locally
            rules: Rule filter deciding which paths are synchronized
            change_log_capability: Whether the repository has a usable
                change log (every cycle is a full copy otherwise)
            max_items: Maximum number of change events fetched per cycle
        """
        self.session = session
        self.database = database
        self.mapper = mapper
        self.downloader = downloader
        self.rules = rules or RuleFilter()
        self.change_log_capability = change_log_capability
        self.max_items = max_items

    def sync(self, remote_root: RemoteFolder) -> bool:
        """Run one detection pass over the remote root folder.

        Args:
            remote_root: The configured remote root folder

        Returns:
            True if every unit of work succeeded
        """
        local_root = self.mapper.local_root

        if not self.change_log_capability:
            logger.info("No change log capability, copying the whole remote tree")
            return self.downloader.recursive_folder_copy(remote_root, local_root)

        # Read the server token before copying so that changes made
        # during the copy are replayed by the next cycle
        last_token_on_server = self.session.get_latest_change_log_token()
        last_token_on_client = self.database.get_change_log_token()

        if last_token_on_client is None:
            # No sync has ever happened yet, so just copy everything
            logger.info(f"First sync, copying {remote_root.path} to {local_root}")
            success = self.downloader.recursive_folder_copy(remote_root, local_root)
            if success and last_token_on_server is not None:
                self.database.set_change_log_token(last_token_on_server)
            return success

        if last_token_on_server == last_token_on_client:
            logger.info(
                f"No changes on server, change log token: {last_token_on_server}"
            )
            return True

        changes = self.session.get_content_changes(
            last_token_on_client, include_properties=True, max_items=self.max_items
        )
        logger.info(
            f"Replaying {len(changes.events)} change events since token "
            f"{last_token_on_client}"
        )

        success = True
        for event in changes.events:
            if not self.apply_remote_change(event):
                success = False

        if not success:
            logger.warning(
                f"Some changes could not be applied, keeping change log token "
                f"{last_token_on_client}"
            )
            return False

        if changes.has_more_items and changes.latest_token:
            # Continue after this page next cycle
            new_token = changes.latest_token
        else:
            new_token = last_token_on_server or changes.latest_token

        if new_token is not None:
            logger.info(f"Updating change log token: {new_token}")
            self.database.set_change_log_token(new_token)
        return True

    def apply_remote_change(self, event: ChangeEvent) -> bool:
        """Apply a single change event to the local tree.

        Args:
            event: Change event from the change log

        Returns:
            True if the event was applied or needs no action, False if
            the unit of work failed
        """
        logger.info(f"Change type: {event.change_type.value} id: {event.object_id}")
        try:
            if event.change_type in (ChangeType.CREATED, ChangeType.UPDATED):
                remote_object = self.session.find_object(event.object_id)
                if remote_object is None:
                    # Superseded by a later deletion in the same page
                    logger.info(f"Changed object {event.object_id} no longer exists")
                    return True
                if remote_object.kind == ObjectKind.FOLDER:
                    return self._copy_folder(remote_object)
                return self._download_document(remote_object)

            if event.change_type == ChangeType.DELETED:
                return self._apply_deletion(event)

            # Security changes have no local effect
            return True
        except CmisAPIError as e:
            logger.warning(f"Failed to apply change on {event.object_id}: {e}")
            return False

    def _copy_folder(self, remote_folder: RemoteFolder) -> bool:
        if not remote_folder.path or not self.mapper.is_in_scope(remote_folder.path):
            logger.info(f"Change in unrelated folder: {remote_folder.path}")
            return True
        relative = self.mapper.relative_remote_path(remote_folder.path)
        if not self.rules.is_allowed(relative, RulesType.FOLDER):
            return True

        local_folder = self.mapper.to_local(remote_folder.path)
        try:
            local_folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create local folder {local_folder}: {e}")
            return False
        if local_folder != self.mapper.local_root:
            self.database.add_folder(
                local_folder, remote_folder.last_modification_date, remote_folder.id
            )

        return self.downloader.recursive_folder_copy(remote_folder, local_folder)

    def _download_document(self, remote_document: RemoteDocument) -> bool:
        # Multi-filed documents are mirrored through their path under the root
        remote_path = next(
            (p for p in remote_document.paths if self.mapper.is_in_scope(p)), None
        )
        if remote_path is None:
            logger.info(f"Change in unrelated document: {remote_document.path}")
            return True
        relative = self.mapper.relative_remote_path(remote_path)
        # Folder rules apply to every folder the document lies in
        if not self.rules.is_allowed(posixpath.dirname(relative), RulesType.FOLDER):
            return True
        if not self.rules.is_allowed(relative, RulesType.FILE):
            return True

        local_folder = self.mapper.to_local(remote_path).parent
        return self.downloader.download_file(remote_document, local_folder) is not None

    def _apply_deletion(self, event: ChangeEvent) -> bool:
        kind = event.base_type
        remote_path: Optional[str] = event.properties.get("cmis:path")

        if kind == ObjectKind.FOLDER and remote_path:
            if not self.mapper.is_in_scope(remote_path):
                logger.info(f"Deletion of unrelated folder: {remote_path}")
                return True
            return self._remove_local_folder(self.mapper.to_local(remote_path))

        if kind == ObjectKind.DOCUMENT:
            return self._keep_local_file(event.object_id)

        # Deleted objects usually cannot be looked up any more, so they are
        # resolved through the ids remembered at sync time
        record = self.database.find_by_object_id(event.object_id)
        if record is not None:
            if not record.is_folder:
                return self._keep_local_file(event.object_id)
            return self._remove_local_folder(Path(record.path))

        remote_object = self.session.find_object(event.object_id)
        if remote_object is None:
            logger.info(f"Deleted object {event.object_id} is unknown, skipping")
            return True
        if remote_object.kind == ObjectKind.DOCUMENT:
            return self._keep_local_file(event.object_id)
        if not self.mapper.is_in_scope(remote_object.path):
            logger.info(f"Deletion of unrelated folder: {remote_object.path}")
            return True
        return self._remove_local_folder(self.mapper.to_local(remote_object.path))

    @staticmethod
    def _keep_local_file(object_id: str) -> bool:
        # Local files are not removed for remote document deletions
        logger.info(f"Remote document {object_id} deleted, local file kept")
        return True

    def _remove_local_folder(self, local_folder: Path) -> bool:
        if local_folder == self.mapper.local_root:
            logger.warning(f"Remote root of {local_folder} deleted, local root kept")
            return True
        if not self.mapper.is_local_in_scope(local_folder):
            logger.info(f"Deletion of folder outside of the sync root: {local_folder}")
            return True
        return self.downloader.remove_folder_locally(local_folder)
