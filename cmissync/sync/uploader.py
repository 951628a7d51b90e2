"""Replication from the local directory tree to the repository."""

import logging
from pathlib import Path
from typing import Optional

from ..api import CmisClient
from ..exceptions import CmisConflictError, CmisUploadError
from ..models import (
    ObjectKind,
    RemoteDocument,
    RemoteFolder,
    document_metadata,
    join_remote_path,
)
from ..utils import STAGING_SUFFIX, guess_mime_type
from .activity import ActivityListener, NullActivityListener, activity
from .paths import PathMapper
from .rules import RuleFilter, RulesType
from .state import SyncDatabase

logger = logging.getLogger(__name__)


class LocalToRemoteReplicator:
    """Creates remote folders and documents for local content.

    Uploads are staged under a temporary remote name and renamed once the
    content is complete. The protocol only supports replacing a whole
    content stream, so an interrupted upload is resumed by sending the
    entire file again to the staging document left behind.
    """

    def __init__(
        self,
        session: CmisClient,
        database: SyncDatabase,
        rules: Optional[RuleFilter] = None,
        activity_listener: Optional[ActivityListener] = None,
        mapper: Optional[PathMapper] = None,
    ):
        """Initialize replicator.

        Args:
            session: Connected repository client
            database: Local state cache
            rules: Rule filter deciding which paths are synchronized
            activity_listener: Notified around each unit of work
            mapper: Mapping to the sync roots, rules are then checked on
                paths relative to the local root
        """
        self.session = session
        self.database = database
        self.rules = rules or RuleFilter()
        self.activity_listener = activity_listener or NullActivityListener()
        self.mapper = mapper

    def _rule_path(self, local_path: Path) -> str:
        if self.mapper is not None and self.mapper.is_local_in_scope(local_path):
            return self.mapper.relative_local_path(local_path)
        return str(local_path)

    def _create_or_get_folder(self, parent: RemoteFolder, name: str) -> RemoteFolder:
        try:
            return self.session.create_folder(parent, name)
        except CmisConflictError:
            existing = self.session.find_object_by_path(
                join_remote_path(parent.path, name)
            )
            if existing is None or existing.kind != ObjectKind.FOLDER:
                raise
            logger.debug(f"Reusing existing remote folder {existing.path}")
            return existing

    def upload_folder_recursively(
        self, remote_base_folder: RemoteFolder, local_folder: Path
    ) -> Optional[RemoteFolder]:
        """Upload a local folder and everything below it.

        A remote folder named after ``local_folder`` is created inside
        ``remote_base_folder``, the files directly inside are uploaded and
        every subfolder is handled the same way one level deeper.

        Args:
            remote_base_folder: Remote folder receiving the new folder
            local_folder: Local folder to upload

        Returns:
            The remote folder, or None if the folder is excluded by the rules
        """
        local_folder = Path(local_folder)
        if not self.rules.is_allowed(self._rule_path(local_folder), RulesType.FOLDER):
            return None

        with activity(self.activity_listener):
            folder = self._create_or_get_folder(remote_base_folder, local_folder.name)
            # Create database entry for this folder
            self.database.add_folder(
                local_folder, folder.last_modification_date, folder.id
            )
            logger.info(f"Uploaded folder {local_folder} to {folder.path}")

            entries = sorted(local_folder.iterdir())
            for file_path in (p for p in entries if p.is_file()):
                self.upload_file(file_path, folder)
            for subfolder in (p for p in entries if p.is_dir()):
                self.upload_folder_recursively(folder, subfolder)

        return folder

    def upload_file(
        self, file_path: Path, remote_folder: RemoteFolder
    ) -> Optional[RemoteDocument]:
        """Upload a local file as a new document.

        Args:
            file_path: Local file to upload
            remote_folder: Remote folder receiving the document

        Returns:
            The uploaded document, or None if the file is excluded or
            vanished during the upload

        Raises:
            CmisAPIError: If the upload fails for any reason other than
                the local file disappearing
        """
        file_path = Path(file_path)
        if not self.rules.is_allowed(self._rule_path(file_path), RulesType.FILE):
            return None

        with activity(self.activity_listener):
            file_name = file_path.name
            mime_type = guess_mime_type(file_name)
            staging_name = file_name + STAGING_SUFFIX
            remote_document: Optional[RemoteDocument] = None

            try:
                existing = self.session.find_object_by_path(
                    join_remote_path(remote_folder.path, staging_name)
                )
                if existing is not None:
                    if existing.kind != ObjectKind.DOCUMENT:
                        raise CmisUploadError(
                            f"Staging name {staging_name} is taken by a folder"
                        )
                    logger.info(f"Resuming upload of {file_path}")
                    remote_document = existing
                else:
                    remote_document = self.session.create_document(
                        remote_folder, staging_name, b"", mime_type
                    )

                with open(file_path, "rb") as f:
                    object_id = self.session.set_content_stream(
                        remote_document.id, f, file_name, mime_type
                    )
            except OSError as e:
                # File has been deleted while we were trying to upload it
                logger.info(f"File {file_path} vanished during upload, reverting: {e}")
                if remote_document is not None:
                    self.session.delete_all_versions(remote_document.id)
                return None

            logger.info(f"Upload of file {file_path} finished")
            object_id = self.session.update_properties(
                object_id, {"cmis:name": file_name}
            )
            uploaded = self.session.get_object(object_id)

            # Create database entry for this file
            self.database.add_file(
                file_path, uploaded.last_modification_date, document_metadata(uploaded)
            )
            return uploaded

    def update_file(self, file_path: Path, remote_document: RemoteDocument) -> str:
        """Replace the content of a known document with the local file.

        Every change re-sends the whole file, the protocol has no partial update.

        Args:
            file_path: Local file with the new content
            remote_document: Document to update

        Returns:
            Id of the updated document
        """
        file_path = Path(file_path)
        with activity(self.activity_listener):
            with open(file_path, "rb") as f:
                object_id = self.session.set_content_stream(
                    remote_document.id,
                    f,
                    file_path.name,
                    guess_mime_type(file_path.name),
                )
            updated = self.session.get_object(object_id)
            self.database.set_file_server_side_modification_date(
                file_path, updated.last_modification_date
            )
            logger.info(f"Update finished: {file_path}")
            return object_id

    def update_file_in_folder(
        self, file_path: Path, remote_folder: RemoteFolder
    ) -> Optional[str]:
        """Update the document with the same name as the local file.

        Args:
            file_path: Local file with the new content
            remote_folder: Remote folder expected to hold the document

        Returns:
            Id of the updated document, or None if no such document exists
        """
        file_path = Path(file_path)
        for child in self.session.iter_children(remote_folder):
            if child.kind == ObjectKind.DOCUMENT and child.name == file_path.name:
                return self.update_file(file_path, child)

        # Deleted remotely, picked up as an upload by a later cycle
        logger.info(
            f"{file_path} not found on server, must be uploaded instead of updated"
        )
        return None
