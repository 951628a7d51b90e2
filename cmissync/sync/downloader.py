"""Replication from the repository to the local directory tree."""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional, Union

from ..api import CmisClient
from ..exceptions import CmisAPIError, CmisDownloadError
from ..models import (
    ObjectKind,
    RemoteDocument,
    RemoteFolder,
    document_metadata,
    join_remote_path,
)
from ..utils import DEFAULT_CHUNK_SIZE, STAGING_SUFFIX, format_size
from .activity import ActivityListener, NullActivityListener, activity
from .paths import PathMapper
from .rules import RuleFilter, RulesType
from .state import SyncDatabase

logger = logging.getLogger(__name__)


def staging_path(file_path: Path) -> Path:
    """Path of the in-progress download for a target file."""
    return file_path.with_name(file_path.name + STAGING_SUFFIX)


class RemoteToLocalReplicator:
    """Copies remote folders and documents into the local tree.

    Downloads go to a staging file next to the target and are renamed
    over the target only once complete, so the target path never holds
    partial content. An interrupted download leaves its staging file
    behind and the next attempt resumes from its current length.
    """

    def __init__(
        self,
        session: CmisClient,
        database: SyncDatabase,
        rules: Optional[RuleFilter] = None,
        activity_listener: Optional[ActivityListener] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        mapper: Optional[PathMapper] = None,
    ):
        """Initialize replicator.

        Args:
            session: Connected repository client
            database: Local state cache
            rules: Rule filter deciding which paths are synchronized
            activity_listener: Notified around each unit of work
            chunk_size: Bytes copied per write (default: 8 KiB)
            mapper: Mapping to the sync roots, rules are then checked on
                paths relative to the remote root
        """
        self.session = session
        self.database = database
        self.rules = rules or RuleFilter()
        self.activity_listener = activity_listener or NullActivityListener()
        self.chunk_size = chunk_size
        self.mapper = mapper

    def _rule_path(self, remote_path: str) -> str:
        if self.mapper is not None and self.mapper.is_in_scope(remote_path):
            return self.mapper.relative_remote_path(remote_path)
        return remote_path

    def recursive_folder_copy(
        self, remote_folder: RemoteFolder, local_folder: Path
    ) -> bool:
        """Download all content of a remote folder into a local folder.

        Existing local folders are reused and existing files replaced, so
        running the copy again over an unchanged tree changes nothing.

        Args:
            remote_folder: Folder to copy
            local_folder: Local directory mirroring ``remote_folder``

        Returns:
            True if every child was copied, False if any unit failed
        """
        success = True
        local_folder = Path(local_folder)

        with activity(self.activity_listener):
            try:
                for child in self.session.iter_children(remote_folder):
                    if not self._copy_child(remote_folder, child, local_folder):
                        success = False
            except CmisAPIError as e:
                # Siblings of this folder are still copied by the caller
                logger.warning(f"Cannot list remote folder {remote_folder.path}: {e}")
                success = False

        return success

    def _copy_child(
        self,
        remote_folder: RemoteFolder,
        child: Union[RemoteFolder, RemoteDocument],
        local_folder: Path,
    ) -> bool:
        rule_path = self._rule_path(join_remote_path(remote_folder.path, child.name))

        if child.kind == ObjectKind.FOLDER:
            if not self.rules.is_allowed(rule_path, RulesType.FOLDER):
                return True
            local_subfolder = local_folder / child.name
            try:
                local_subfolder.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"Cannot create local folder {local_subfolder}: {e}")
                return False

            # Folder records carry the parent's modification date
            self.database.add_folder(
                local_subfolder, remote_folder.last_modification_date, child.id
            )
            return self.recursive_folder_copy(child, local_subfolder)

        if not self.rules.is_allowed(rule_path, RulesType.FILE):
            return True
        return self.download_file(child, local_folder) is not None

    def download_file(
        self, remote_document: RemoteDocument, local_folder: Path
    ) -> Optional[Path]:
        """Download a single document, resuming a previous partial download.

        Args:
            remote_document: Document to download
            local_folder: Local directory receiving the file

        Returns:
            Path of the downloaded file, or None if the download failed
        """
        with activity(self.activity_listener):
            file_path = Path(local_folder) / remote_document.file_name
            tmp_path = staging_path(file_path)

            try:
                file_path.parent.mkdir(parents=True, exist_ok=True)
                # Last writer wins: a local file at the target path is replaced
                if file_path.is_file() or file_path.is_symlink():
                    file_path.unlink()
                elif file_path.exists():
                    logger.warning(f"Cannot download over directory {file_path}")
                    return None
                offset = tmp_path.stat().st_size if tmp_path.exists() else 0
            except OSError as e:
                logger.warning(f"Cannot prepare download of {file_path}: {e}")
                return None

            expected_length = remote_document.content_stream_length
            if expected_length is not None and offset > expected_length:
                logger.info(
                    f"Discarding stale partial download {tmp_path} "
                    f"({offset} > {expected_length} bytes)"
                )
                tmp_path.unlink(missing_ok=True)
                offset = 0

            try:
                if expected_length is not None and 0 < expected_length == offset:
                    logger.info(f"Partial download {tmp_path} is already complete")
                else:
                    self._download_to_staging(remote_document, tmp_path, offset)
                os.replace(tmp_path, file_path)
            except (CmisAPIError, OSError) as e:
                logger.warning(
                    f"Download of file {remote_document.file_name} abort: {e}"
                )
                return None

            # Create database entry for this file
            self.database.add_file(
                file_path,
                remote_document.last_modification_date,
                document_metadata(remote_document),
            )
            logger.info(
                f"Downloaded {file_path} "
                f"({format_size(file_path.stat().st_size)})"
            )
            return file_path

    def _download_to_staging(
        self, remote_document: RemoteDocument, tmp_path: Path, offset: int
    ) -> None:
        """Append the remote content from ``offset`` on to the staging file.

        Raises:
            CmisDownloadError: If the server has no content stream or
                resumes at an unexpected position
        """
        content_stream = self.session.get_content_stream(
            remote_document.id, offset, remote_document.content_stream_length
        )
        if content_stream is None:
            raise CmisDownloadError(
                f"Null content stream for {remote_document.file_name}"
            )

        with content_stream:
            mode = "ab"
            if content_stream.offset != offset:
                if content_stream.offset != 0:
                    raise CmisDownloadError(
                        f"Server resumed at byte {content_stream.offset} "
                        f"instead of {offset}"
                    )
                logger.info(f"Server ignored range request, restarting {tmp_path}")
                mode = "wb"

            logger.info(f"Start download of file {tmp_path} with offset {offset}")
            with open(tmp_path, mode) as f:
                for chunk in content_stream.iter_chunks(self.chunk_size):
                    f.write(chunk)
                    f.flush()

    def remove_folder_locally(self, folder_path: Path) -> bool:
        """Remove a remotely deleted folder from disk and from the cache.

        Args:
            folder_path: Local folder to remove

        Returns:
            True if the folder is gone, False if it could not be removed
        """
        logger.info(f"Removing remotely deleted folder: {folder_path}")
        try:
            if Path(folder_path).exists():
                shutil.rmtree(folder_path)
        except OSError as e:
            logger.warning(f"Cannot remove folder {folder_path}: {e}")
            return False

        self.database.remove_folder(folder_path)
        return True
