"""Data models for CMIS repository objects and change events."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, ClassVar, Iterator, Optional, Union

from .utils import DEFAULT_CHUNK_SIZE, format_timestamp, parse_cmis_timestamp


class ObjectKind(str, Enum):
    """Base types of repository objects the engine knows about."""

    FOLDER = "cmis:folder"
    DOCUMENT = "cmis:document"


class ChangeType(str, Enum):
    """Kinds of change log entries."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    SECURITY = "security"


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def join_remote_path(folder_path: str, name: str) -> str:
    """Join a remote folder path and a child name with a single slash."""
    return f"{folder_path.rstrip('/')}/{name}"


@dataclass
class RemoteFolder:
    """A folder in the remote repository."""

    kind: ClassVar[ObjectKind] = ObjectKind.FOLDER

    id: str
    """Opaque repository object id"""

    name: str

    path: str
    """Absolute path in the remote namespace (e.g. "/Sites/demo")"""

    parent_id: Optional[str] = None
    last_modification_date: Optional[datetime] = None
    creation_date: Optional[datetime] = None
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None

    @classmethod
    def from_properties(cls, properties: dict[str, Any]) -> "RemoteFolder":
        """Create a RemoteFolder from succinct CMIS properties."""
        return cls(
            id=properties.get("cmis:objectId", ""),
            name=properties.get("cmis:name", ""),
            path=properties.get("cmis:path") or "/",
            parent_id=properties.get("cmis:parentId"),
            last_modification_date=parse_cmis_timestamp(
                properties.get("cmis:lastModificationDate")
            ),
            creation_date=parse_cmis_timestamp(properties.get("cmis:creationDate")),
            created_by=properties.get("cmis:createdBy"),
            last_modified_by=properties.get("cmis:lastModifiedBy"),
        )


@dataclass
class RemoteDocument:
    """A document (file) in the remote repository.

    A document may be filed in several folders; ``paths`` lists every
    location the repository reported for it.
    """

    kind: ClassVar[ObjectKind] = ObjectKind.DOCUMENT

    id: str
    name: str
    paths: list[str] = field(default_factory=list)
    version_series_id: Optional[str] = None
    version_label: Optional[str] = None
    content_stream_length: Optional[int] = None
    content_stream_mime_type: Optional[str] = None
    content_stream_file_name: Optional[str] = None
    last_modification_date: Optional[datetime] = None
    creation_date: Optional[datetime] = None
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
    is_immutable: bool = False
    checkin_comment: Optional[str] = None

    @property
    def file_name(self) -> str:
        """Name of the local file the content is stored in."""
        return self.content_stream_file_name or self.name

    @property
    def path(self) -> Optional[str]:
        """First reported path of the document, if any."""
        return self.paths[0] if self.paths else None

    @classmethod
    def from_properties(
        cls, properties: dict[str, Any], paths: Optional[list[str]] = None
    ) -> "RemoteDocument":
        """Create a RemoteDocument from succinct CMIS properties."""
        return cls(
            id=properties.get("cmis:objectId", ""),
            name=properties.get("cmis:name", ""),
            paths=list(paths or []),
            version_series_id=properties.get("cmis:versionSeriesId"),
            version_label=properties.get("cmis:versionLabel"),
            content_stream_length=_as_int(properties.get("cmis:contentStreamLength")),
            content_stream_mime_type=properties.get("cmis:contentStreamMimeType"),
            content_stream_file_name=properties.get("cmis:contentStreamFileName"),
            last_modification_date=parse_cmis_timestamp(
                properties.get("cmis:lastModificationDate")
            ),
            creation_date=parse_cmis_timestamp(properties.get("cmis:creationDate")),
            created_by=properties.get("cmis:createdBy"),
            last_modified_by=properties.get("cmis:lastModifiedBy"),
            is_immutable=_as_bool(properties.get("cmis:isImmutable", False)),
            checkin_comment=properties.get("cmis:checkinComment"),
        )


RemoteObject = Union[RemoteFolder, RemoteDocument]


def remote_object_from_properties(
    properties: dict[str, Any], paths: Optional[list[str]] = None
) -> RemoteObject:
    """Build the matching remote object variant from succinct properties.

    Args:
        properties: Succinct CMIS properties (``cmis:baseTypeId`` decides the kind)
        paths: Paths of a document (ignored for folders, which carry ``cmis:path``)

    Returns:
        RemoteFolder or RemoteDocument
    """
    if properties.get("cmis:baseTypeId") == ObjectKind.FOLDER.value:
        return RemoteFolder.from_properties(properties)
    return RemoteDocument.from_properties(properties, paths=paths)


def document_metadata(document: RemoteDocument) -> dict[str, Optional[str]]:
    """Metadata of a document as stored in the local state cache."""
    return {
        "id": document.id,
        "version_series_id": document.version_series_id,
        "version_label": document.version_label,
        "creation_date": format_timestamp(document.creation_date),
        "created_by": document.created_by,
        "last_modified_by": document.last_modified_by,
        "checkin_comment": document.checkin_comment,
        "is_immutable": "true" if document.is_immutable else "false",
        "content_stream_mime_type": document.content_stream_mime_type,
    }


@dataclass
class RepositoryInfo:
    """Information advertised by a repository."""

    id: str
    name: str
    root_folder_url: str
    repository_url: str
    root_folder_id: Optional[str] = None
    latest_change_log_token: Optional[str] = None
    changes_capability: str = "none"
    product_name: Optional[str] = None
    product_version: Optional[str] = None

    @property
    def supports_change_log(self) -> bool:
        """Whether incremental sync through the change log is possible."""
        return self.changes_capability in ("objectidsonly", "properties", "all")

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RepositoryInfo":
        """Create RepositoryInfo from a browser binding repository entry."""
        capabilities = data.get("capabilities") or {}
        return cls(
            id=data.get("repositoryId", ""),
            name=data.get("repositoryName", ""),
            root_folder_url=data.get("rootFolderUrl", ""),
            repository_url=data.get("repositoryUrl", ""),
            root_folder_id=data.get("rootFolderId"),
            latest_change_log_token=data.get("latestChangeLogToken"),
            changes_capability=str(
                capabilities.get("capabilityChanges") or "none"
            ).lower(),
            product_name=data.get("productName"),
            product_version=data.get("productVersion"),
        )


@dataclass
class ChangeEvent:
    """One entry of the repository change log."""

    change_type: ChangeType
    object_id: str
    properties: dict[str, Any] = field(default_factory=dict)
    change_time: Optional[datetime] = None

    @property
    def base_type(self) -> Optional[ObjectKind]:
        """Object kind from the property snapshot, if the server sent one."""
        base_type_id = self.properties.get("cmis:baseTypeId")
        try:
            return ObjectKind(base_type_id)
        except ValueError:
            return None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ChangeEvent":
        """Create a ChangeEvent from a browser binding change object."""
        properties = data.get("succinctProperties") or {}
        info = data.get("changeEventInfo") or {}
        return cls(
            change_type=ChangeType(str(info.get("changeType", "updated")).lower()),
            object_id=properties.get("cmis:objectId", ""),
            properties=dict(properties),
            change_time=parse_cmis_timestamp(info.get("changeTime")),
        )


@dataclass
class ChangeEvents:
    """A page of change events in server order."""

    events: list[ChangeEvent] = field(default_factory=list)
    has_more_items: bool = False
    latest_token: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ChangeEvents":
        """Create a ChangeEvents page from a ``contentChanges`` response."""
        return cls(
            events=[
                ChangeEvent.from_api_response(obj) for obj in data.get("objects", [])
            ],
            has_more_items=bool(data.get("hasMoreItems", False)),
            latest_token=data.get("changeLogToken"),
        )


class ContentStream:
    """A (possibly partial) content stream of a document.

    Wraps a chunk iterator and a close callback so that the HTTP
    response behind it is released once the stream is consumed.
    """

    def __init__(
        self,
        iter_chunks: Callable[[int], Iterator[bytes]],
        close: Optional[Callable[[], None]] = None,
        offset: int = 0,
        length: Optional[int] = None,
        mime_type: Optional[str] = None,
        file_name: Optional[str] = None,
    ):
        """Initialize content stream.

        Args:
            iter_chunks: Callable returning an iterator of chunks of the given size
            close: Callable releasing the underlying resource
            offset: Byte offset of the first chunk within the whole content
            length: Number of bytes in this stream, if known
            mime_type: MIME type reported by the server
            file_name: File name reported by the server
        """
        self._iter_chunks = iter_chunks
        self._close = close
        self.offset = offset
        self.length = length
        self.mime_type = mime_type
        self.file_name = file_name
        self.closed = False

    def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        """Iterate over the content in chunks of at most ``chunk_size`` bytes."""
        return self._iter_chunks(chunk_size)

    def close(self) -> None:
        """Release the underlying resource."""
        if not self.closed:
            self.closed = True
            if self._close is not None:
                self._close()

    def __enter__(self) -> "ContentStream":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        offset: int = 0,
        mime_type: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> "ContentStream":
        """Create a content stream over in-memory bytes."""

        def iter_chunks(chunk_size: int) -> Iterator[bytes]:
            for start in range(0, len(data), chunk_size):
                yield data[start : start + chunk_size]

        return cls(
            iter_chunks,
            offset=offset,
            length=len(data),
            mime_type=mime_type,
            file_name=file_name,
        )
