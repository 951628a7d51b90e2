"""Shared fixtures: an in-memory CMIS repository for engine tests."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Union

import pytest

from cmissync.exceptions import CmisConflictError, CmisNetworkError, CmisNotFoundError
from cmissync.models import (
    ChangeEvent,
    ChangeEvents,
    ChangeType,
    ContentStream,
    ObjectKind,
    RemoteDocument,
    RemoteFolder,
    RepositoryInfo,
    join_remote_path,
)
from cmissync.sync.folder import SyncFolder
from cmissync.sync.state import SyncDatabase


class FakeRepository:
    """In-memory repository offering the client operations the engine uses.

    Every mutation is appended to a change log, the latest change log
    token is the number of the last entry.
    """

    def __init__(self, changes_capability: str = "all"):
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._next_id = 0
        self.objects: dict[str, Union[RemoteFolder, RemoteDocument]] = {}
        self.parents: dict[str, Optional[str]] = {}
        self.contents: dict[str, bytes] = {}
        self.change_log: list[ChangeEvent] = []
        self.changes_capability = changes_capability
        self.closed = False

        # Failure injection
        self.fail_after: dict[str, int] = {}
        self.null_streams: set[str] = set()
        self.ignore_range = False
        self.stream_requests: list[tuple[str, int]] = []
        self.deleted_ids: list[str] = []

        self.root = RemoteFolder(
            id=self._new_id(), name="", path="/", last_modification_date=self._tick()
        )
        self.objects[self.root.id] = self.root
        self.parents[self.root.id] = None

    # ----- helpers for tests -----

    def _new_id(self) -> str:
        self._next_id += 1
        return f"obj-{self._next_id}"

    def _tick(self) -> datetime:
        self._clock += timedelta(minutes=1)
        return self._clock

    def _record(self, change_type: ChangeType, obj) -> None:
        properties = {"cmis:objectId": obj.id, "cmis:baseTypeId": obj.kind.value}
        if obj.kind == ObjectKind.FOLDER:
            properties["cmis:path"] = obj.path
        self.change_log.append(
            ChangeEvent(
                change_type=change_type, object_id=obj.id, properties=properties
            )
        )

    def makedirs(self, path: str) -> RemoteFolder:
        """Get or create the folder at ``path`` and its parents."""
        folder = self.root
        for name in [p for p in path.split("/") if p]:
            child = self._child_named(folder, name)
            folder = child if child is not None else self.create_folder(folder, name)
        return folder

    def add_document(
        self, folder: RemoteFolder, name: str, content: bytes
    ) -> RemoteDocument:
        """Create a document with content."""
        return self.create_document(folder, name, content)

    def update_document(self, document_id: str, content: bytes) -> RemoteDocument:
        """Replace the content of a document."""
        self.set_content_stream(document_id, _BytesReader(content), "")
        return self.objects[document_id]

    def delete(self, object_id: str) -> None:
        """Delete an object and everything below it."""
        obj = self.objects[object_id]
        self._remove(object_id)
        self._record(ChangeType.DELETED, obj)

    def _remove(self, object_id: str) -> None:
        for child_id in [i for i, p in self.parents.items() if p == object_id]:
            self._remove(child_id)
        self.objects.pop(object_id, None)
        self.parents.pop(object_id, None)
        self.contents.pop(object_id, None)

    def _child_named(self, folder: RemoteFolder, name: str):
        for child in self.iter_children(folder):
            if child.name == name:
                return child
        return None

    # ----- CmisClient surface -----

    def get_repository_info(self) -> RepositoryInfo:
        return RepositoryInfo(
            id="fake-repo",
            name="Fake Repository",
            root_folder_url="http://fake/root",
            repository_url="http://fake",
            root_folder_id=self.root.id,
            latest_change_log_token=self.get_latest_change_log_token(),
            changes_capability=self.changes_capability,
        )

    def get_latest_change_log_token(self) -> str:
        return str(len(self.change_log))

    def get_content_changes(
        self,
        change_log_token: Optional[str],
        include_properties: bool = True,
        max_items: int = 1000,
    ) -> ChangeEvents:
        start = int(change_log_token or 0)
        events = self.change_log[start : start + max_items]
        end = start + len(events)
        return ChangeEvents(
            events=list(events),
            has_more_items=end < len(self.change_log),
            latest_token=str(end),
        )

    def get_object(self, object_id: str):
        try:
            return self.objects[object_id]
        except KeyError:
            raise CmisNotFoundError(f"Object not found: {object_id}") from None

    def find_object(self, object_id: str):
        return self.objects.get(object_id)

    def get_object_by_path(self, path: str):
        obj = self.find_object_by_path(path)
        if obj is None:
            raise CmisNotFoundError(f"Path not found: {path}")
        return obj

    def find_object_by_path(self, path: str):
        obj = self.root
        for name in [p for p in path.split("/") if p]:
            if obj.kind != ObjectKind.FOLDER:
                return None
            obj = self._child_named(obj, name)
            if obj is None:
                return None
        return obj

    def iter_children(self, folder: RemoteFolder):
        for object_id, parent_id in list(self.parents.items()):
            if parent_id == folder.id and object_id in self.objects:
                yield self.objects[object_id]

    def create_folder(self, parent: RemoteFolder, name: str) -> RemoteFolder:
        if self._child_named(parent, name) is not None:
            raise CmisConflictError(f"Name already exists: {name}")
        folder = RemoteFolder(
            id=self._new_id(),
            name=name,
            path=join_remote_path(parent.path, name),
            parent_id=parent.id,
            last_modification_date=self._tick(),
        )
        self.objects[folder.id] = folder
        self.parents[folder.id] = parent.id
        self._record(ChangeType.CREATED, folder)
        return folder

    def create_document(
        self, parent: RemoteFolder, name: str, content=b"", mime_type=None
    ) -> RemoteDocument:
        if self._child_named(parent, name) is not None:
            raise CmisConflictError(f"Name already exists: {name}")
        if not isinstance(content, bytes):
            content = content.read()
        now = self._tick()
        document = RemoteDocument(
            id=self._new_id(),
            name=name,
            paths=[join_remote_path(parent.path, name)],
            version_series_id=f"series-{self._next_id}",
            version_label="1.0",
            content_stream_length=len(content),
            content_stream_mime_type=mime_type or "application/octet-stream",
            content_stream_file_name=name,
            last_modification_date=now,
            creation_date=now,
            created_by="alice",
            last_modified_by="alice",
        )
        self.objects[document.id] = document
        self.parents[document.id] = parent.id
        self.contents[document.id] = content
        self._record(ChangeType.CREATED, document)
        return document

    def get_content_stream(
        self, document_id: str, offset: int = 0, length: Optional[int] = None
    ) -> Optional[ContentStream]:
        self.get_object(document_id)
        self.stream_requests.append((document_id, offset))
        if document_id in self.null_streams:
            return None

        content = self.contents[document_id]
        served_offset = 0 if self.ignore_range else offset
        data = content[served_offset:]
        fail_after = self.fail_after.pop(document_id, None)

        def iter_chunks(chunk_size: int):
            limit = len(data) if fail_after is None else min(fail_after, len(data))
            for start in range(0, limit, chunk_size):
                yield data[start : min(start + chunk_size, limit)]
            if fail_after is not None:
                raise CmisNetworkError("Connection reset during download")

        return ContentStream(iter_chunks, offset=served_offset, length=len(data))

    def set_content_stream(self, document_id, stream, file_name, mime_type=None) -> str:
        document = self.get_object(document_id)
        content = stream.read()
        self.contents[document_id] = content
        updated = replace(
            document,
            content_stream_length=len(content),
            last_modification_date=self._tick(),
        )
        self.objects[document_id] = updated
        self._record(ChangeType.UPDATED, updated)
        return document_id

    def update_properties(self, object_id: str, properties: dict) -> str:
        obj = self.get_object(object_id)
        name = properties.get("cmis:name", obj.name)
        parent = self.objects[self.parents[object_id]]
        if obj.kind == ObjectKind.DOCUMENT:
            updated = replace(
                obj,
                name=name,
                content_stream_file_name=name,
                paths=[join_remote_path(parent.path, name)],
                last_modification_date=self._tick(),
            )
        else:
            updated = replace(obj, name=name, path=join_remote_path(parent.path, name))
        self.objects[object_id] = updated
        self._record(ChangeType.UPDATED, updated)
        return object_id

    def delete_all_versions(self, object_id: str) -> None:
        self.deleted_ids.append(object_id)
        self.delete(object_id)

    def close(self) -> None:
        self.closed = True


class _BytesReader:
    def __init__(self, data: bytes):
        self._data = data

    def read(self) -> bytes:
        return self._data


@pytest.fixture
def repo():
    """An in-memory repository with change log support."""
    return FakeRepository()


@pytest.fixture
def database(tmp_path):
    """A state cache stored outside the synchronized folder."""
    return SyncDatabase(tmp_path / "state" / "folder.cmissync")


@pytest.fixture
def local_root(tmp_path):
    """Local root directory of the sync folder."""
    root = tmp_path / "local"
    root.mkdir()
    return root


@pytest.fixture
def sync_folder(local_root):
    """Sync folder binding the local root to /Sites/demo."""
    return SyncFolder(
        local=local_root,
        remote="/Sites/demo",
        url="http://fake/browser",
        user="alice",
        password="secret",
    )


@pytest.fixture
def snapshot():
    """Snapshot a local tree: relative path -> content (None for folders)."""

    def read_tree(root: Path) -> dict[str, Optional[bytes]]:
        tree = {}
        for path in sorted(root.rglob("*")):
            key = path.relative_to(root).as_posix()
            tree[key] = path.read_bytes() if path.is_file() else None
        return tree

    return read_tree


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from the user's configuration and environment."""
    monkeypatch.setenv("CMISSYNC_CONFIG_DIR", str(tmp_path / "config"))
    for var in (
        "CMISSYNC_URL",
        "CMISSYNC_USER",
        "CMISSYNC_PASSWORD",
        "CMISSYNC_REPOSITORY",
    ):
        monkeypatch.delenv(var, raising=False)
