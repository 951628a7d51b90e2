"""CMIS browser binding client.

Talks to a CMIS 1.1 repository through the JSON browser binding.
Only the subset of the protocol needed for folder synchronization is
implemented: repository info, navigation, content streams, object
creation and the change log.
"""

from __future__ import annotations

import random
import time
from typing import Any, BinaryIO, Iterator, Union
from urllib.parse import quote

import httpx

from .config import config
from .exceptions import (
    CmisAPIError,
    CmisAuthenticationError,
    CmisConfigError,
    CmisConflictError,
    CmisInvalidResponseError,
    CmisNetworkError,
    CmisNotFoundError,
    CmisPermissionError,
)
from .models import (
    ChangeEvents,
    ContentStream,
    ObjectKind,
    RemoteDocument,
    RemoteFolder,
    RemoteObject,
    RepositoryInfo,
    join_remote_path,
    remote_object_from_properties,
)
from .utils import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_RETRY_DELAY,
    MAX_CHANGE_EVENTS,
    guess_mime_type,
)


def _properties_form(properties: dict[str, Any]) -> dict[str, str]:
    """Encode properties as browser binding form fields."""
    form: dict[str, str] = {}
    for index, (property_id, value) in enumerate(properties.items()):
        form[f"propertyId[{index}]"] = property_id
        form[f"propertyValue[{index}]"] = str(value)
    return form


class CmisClient:
    """Client for a CMIS repository (browser binding)."""

    def __init__(
        self,
        url: str | None = None,
        user: str | None = None,
        password: str | None = None,
        repository_id: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize CMIS client.

        Args:
            url: Browser binding service URL (uses config if not provided)
            user: User name (uses config if not provided)
            password: Password (uses config if not provided)
            repository_id: Repository id (default: first repository of the service)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 2.0)
            timeout: Request timeout in seconds (default: None, never expire)
            page_size: Number of children requested per page (default: 100)
            transport: Optional httpx transport (used by tests)
        """
        self.url = url or config.url
        self.user = user if user is not None else config.user
        self.password = password if password is not None else config.password
        self.repository_id = repository_id or config.repository_id
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.page_size = page_size
        self.transport = transport

        if not self.url:
            raise CmisConfigError(
                "Service URL not configured. "
                "Please set CMISSYNC_URL environment variable."
            )

        self._client: httpx.Client | None = None
        self._repository: RepositoryInfo | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            auth = (self.user, self.password or "") if self.user else None
            self._client = httpx.Client(
                auth=auth,
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self.transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> CmisClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"CmisClient(url={self.url!r}, user={self.user!r})"

    def _should_retry(
        self, exception: Exception, attempt: int, max_retries: int
    ) -> bool:
        """Determine if a request should be retried.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-based)
            max_retries: Maximum number of retries for this request

        Returns:
            True if the request should be retried, False otherwise
        """
        if attempt >= max_retries:
            return False

        # Retry on network errors (transient failures)
        if isinstance(exception, CmisNetworkError):
            return True

        # Don't retry on client errors (authentication, permission, etc.)
        return False

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    @staticmethod
    def _error_message(response: httpx.Response) -> str | None:
        """Extract the CMIS error message from a response body."""
        try:
            if response.content:
                error_data = response.json()
                if isinstance(error_data, dict):
                    exception = error_data.get("exception")
                    message = error_data.get("message")
                    if exception and message:
                        return f"{exception}: {message}"
                    return message or exception
        except ValueError:
            pass
        return None

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int, max_retries: int
    ) -> tuple[Exception, bool]:
        """Handle HTTP errors and determine if retry should occur.

        Args:
            e: The HTTP error exception
            attempt: Current attempt number
            max_retries: Maximum number of retries for this request

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        status_code = e.response.status_code
        detail = self._error_message(e.response)
        suffix = f": {detail}" if detail else ""

        if status_code == 401:
            raise CmisAuthenticationError(
                "Invalid credentials or unauthorized access"
            ) from e
        elif status_code == 403:
            raise CmisPermissionError(f"Access forbidden{suffix}") from e
        elif status_code == 404:
            raise CmisNotFoundError(f"Object not found{suffix}") from e
        elif status_code == 409:
            raise CmisConflictError(f"Conflict{suffix}") from e

        error = CmisAPIError(f"Request failed with status {status_code}{suffix}")
        # Retry on 5xx server errors
        should_retry = 500 <= status_code < 600 and attempt < max_retries
        return (error, should_retry)

    def _request(
        self,
        method: str,
        url: str,
        max_retries: int | None = None,
        **kwargs: Any,
    ) -> Any:
        """Make a browser binding request with retry logic.

        Args:
            method: HTTP method
            url: Absolute URL (repository or root folder URL)
            max_retries: Override the client's retry count for this request
            **kwargs: Additional arguments passed to httpx

        Returns:
            Response JSON data

        Raises:
            CmisAPIError: If the request fails after all retries
        """
        retries = self.max_retries if max_retries is None else max_retries
        last_exception: Exception | None = None
        client = self._get_client()

        for attempt in range(retries + 1):
            try:
                response = client.request(method, url, **kwargs)
                response.raise_for_status()

                if not response.content:
                    return {}

                content_type = response.headers.get("Content-Type", "")
                if "json" not in content_type:
                    if "text/html" in content_type:
                        raise CmisInvalidResponseError(
                            "Server returned HTML instead of JSON - "
                            "check that the URL points to the browser binding"
                        )
                    raise CmisInvalidResponseError(
                        f"Unexpected response type: {content_type}"
                    )

                try:
                    return response.json()
                except ValueError as e:
                    raise CmisInvalidResponseError(
                        "Invalid JSON response from server"
                    ) from e

            except httpx.HTTPStatusError as e:
                error, should_retry = self._handle_http_error(e, attempt, retries)
                last_exception = error
                if should_retry:
                    time.sleep(self._calculate_retry_delay(attempt))
                    continue
                raise error from e
            except CmisAPIError:
                # Re-raise our own exceptions
                raise
            except httpx.RequestError as e:
                error = CmisNetworkError(f"Network error: {e}")
                last_exception = error
                if self._should_retry(error, attempt, retries):
                    time.sleep(self._calculate_retry_delay(attempt))
                    continue
                raise error from e

        # If we get here, we've exhausted all retries
        if last_exception:
            raise last_exception
        raise CmisAPIError("Request failed after all retry attempts")

    # =========================
    # Repository Operations
    # =========================

    def get_repositories(self) -> list[RepositoryInfo]:
        """Get all repositories advertised by the service.

        Returns:
            List of repository infos
        """
        data = self._request("GET", self.url)
        if not isinstance(data, dict):
            raise CmisInvalidResponseError("Service document is not a JSON object")
        return [
            RepositoryInfo.from_api_response(entry)
            for entry in data.values()
            if isinstance(entry, dict) and "repositoryId" in entry
        ]

    def get_repository_info(self) -> RepositoryInfo:
        """Fetch the info of the configured repository.

        Always asks the server, so the latest change log token is current.

        Returns:
            Repository info

        Raises:
            CmisNotFoundError: If the repository does not exist
        """
        repositories = self.get_repositories()
        if not repositories:
            raise CmisNotFoundError(f"No repository available at {self.url}")

        if self.repository_id:
            for repository in repositories:
                if repository.id == self.repository_id:
                    self._repository = repository
                    return repository
            raise CmisNotFoundError(f"Repository not found: {self.repository_id}")

        self._repository = repositories[0]
        return self._repository

    @property
    def repository(self) -> RepositoryInfo:
        """Repository info, fetched on first use."""
        if self._repository is None:
            return self.get_repository_info()
        return self._repository

    def get_latest_change_log_token(self) -> str | None:
        """Get the latest change log token of the repository."""
        return self.get_repository_info().latest_change_log_token

    def get_content_changes(
        self,
        change_log_token: str | None,
        include_properties: bool = True,
        max_items: int = MAX_CHANGE_EVENTS,
    ) -> ChangeEvents:
        """Get change log entries since a token.

        Args:
            change_log_token: Token to start from (None for the oldest entry)
            include_properties: Whether to include property snapshots
            max_items: Maximum number of events to return (default: 1000)

        Returns:
            ChangeEvents page in server order
        """
        params: dict[str, Any] = {
            "cmisselector": "contentChanges",
            "includeProperties": "true" if include_properties else "false",
            "maxItems": max_items,
            "succinct": "true",
        }
        if change_log_token:
            params["changeLogToken"] = change_log_token

        data = self._request("GET", self.repository.repository_url, params=params)
        return ChangeEvents.from_api_response(data)

    # =========================
    # Navigation Operations
    # =========================

    @staticmethod
    def _properties(data: Any) -> dict[str, Any]:
        """Extract succinct properties from an object response."""
        if isinstance(data, dict):
            properties = data.get("succinctProperties")
            if isinstance(properties, dict):
                return properties
        raise CmisInvalidResponseError("Response carries no object properties")

    def _to_object(self, data: Any, paths: list[str] | None = None) -> RemoteObject:
        """Convert an object response, resolving document paths if needed."""
        properties = self._properties(data)
        if (
            properties.get("cmis:baseTypeId") == ObjectKind.DOCUMENT.value
            and paths is None
        ):
            paths = self._get_document_paths(properties.get("cmis:objectId", ""))
        return remote_object_from_properties(properties, paths=paths)

    def _get_document_paths(self, object_id: str) -> list[str]:
        """Get all paths of a (possibly multi-filed) document."""
        data = self._request(
            "GET",
            self.repository.root_folder_url,
            params={
                "cmisselector": "parents",
                "objectId": object_id,
                "includeRelativePathSegment": "true",
                "succinct": "true",
            },
        )
        paths: list[str] = []
        if not isinstance(data, list):
            return paths
        for parent in data:
            parent_properties = self._properties(parent.get("object"))
            segment = parent.get("relativePathSegment")
            parent_path = parent_properties.get("cmis:path")
            if segment and parent_path:
                paths.append(join_remote_path(parent_path, segment))
        return paths

    def get_object(self, object_id: str) -> RemoteObject:
        """Get an object by id.

        Args:
            object_id: Repository object id

        Returns:
            RemoteFolder or RemoteDocument

        Raises:
            CmisNotFoundError: If the object does not exist
        """
        data = self._request(
            "GET",
            self.repository.root_folder_url,
            params={
                "cmisselector": "object",
                "objectId": object_id,
                "succinct": "true",
            },
        )
        return self._to_object(data)

    def get_object_by_path(self, path: str) -> RemoteObject:
        """Get an object by its path.

        Args:
            path: Absolute remote path (e.g. "/Sites/demo/report.docx")

        Returns:
            RemoteFolder or RemoteDocument

        Raises:
            CmisNotFoundError: If nothing exists at the path
        """
        url = self.repository.root_folder_url.rstrip("/") + quote(path, safe="/")
        data = self._request(
            "GET", url, params={"cmisselector": "object", "succinct": "true"}
        )
        return self._to_object(data, paths=[path])

    def find_object(self, object_id: str) -> RemoteObject | None:
        """Get an object by id, or None if it does not exist."""
        try:
            return self.get_object(object_id)
        except CmisNotFoundError:
            return None

    def find_object_by_path(self, path: str) -> RemoteObject | None:
        """Get an object by path, or None if nothing exists there."""
        try:
            return self.get_object_by_path(path)
        except CmisNotFoundError:
            return None

    def iter_children(self, folder: RemoteFolder) -> Iterator[RemoteObject]:
        """Iterate over the children of a folder, fetching pages lazily.

        Args:
            folder: Parent folder

        Yields:
            RemoteFolder or RemoteDocument for each child
        """
        skip_count = 0
        while True:
            data = self._request(
                "GET",
                self.repository.root_folder_url,
                params={
                    "cmisselector": "children",
                    "objectId": folder.id,
                    "succinct": "true",
                    "skipCount": skip_count,
                    "maxItems": self.page_size,
                },
            )
            objects = data.get("objects", []) if isinstance(data, dict) else []
            for item in objects:
                properties = dict(self._properties(item.get("object", item)))
                child_path = join_remote_path(
                    folder.path, properties.get("cmis:name", "")
                )
                properties.setdefault("cmis:path", child_path)
                yield remote_object_from_properties(properties, paths=[child_path])

            skip_count += len(objects)
            if not objects or not data.get("hasMoreItems", False):
                return

    # =========================
    # Object Creation Operations
    # =========================

    def create_folder(self, parent: RemoteFolder, name: str) -> RemoteFolder:
        """Create a folder.

        Args:
            parent: Parent folder
            name: Name of the new folder

        Returns:
            The created folder
        """
        form = {"cmisaction": "createFolder", "objectId": parent.id, "succinct": "true"}
        form.update(
            _properties_form({"cmis:name": name, "cmis:objectTypeId": "cmis:folder"})
        )
        data = self._request("POST", self.repository.root_folder_url, data=form)
        properties = dict(self._properties(data))
        properties.setdefault("cmis:path", join_remote_path(parent.path, name))
        properties.setdefault("cmis:baseTypeId", ObjectKind.FOLDER.value)
        return RemoteFolder.from_properties(properties)

    def create_document(
        self,
        parent: RemoteFolder,
        name: str,
        content: Union[bytes, BinaryIO] = b"",
        mime_type: str | None = None,
    ) -> RemoteDocument:
        """Create a document.

        Args:
            parent: Parent folder
            name: Name of the new document
            content: Initial content (default: empty)
            mime_type: MIME type of the content (guessed from the name if omitted)

        Returns:
            The created document
        """
        form = {
            "cmisaction": "createDocument",
            "objectId": parent.id,
            "succinct": "true",
        }
        form.update(
            _properties_form({"cmis:name": name, "cmis:objectTypeId": "cmis:document"})
        )
        files = {"content": (name, content, mime_type or guess_mime_type(name))}
        data = self._request(
            "POST",
            self.repository.root_folder_url,
            max_retries=0,
            data=form,
            files=files,
        )
        return RemoteDocument.from_properties(
            self._properties(data), paths=[join_remote_path(parent.path, name)]
        )

    # =========================
    # Content Operations
    # =========================

    def get_content_stream(
        self,
        document_id: str,
        offset: int = 0,
        length: int | None = None,
    ) -> ContentStream | None:
        """Open the content stream of a document.

        The caller must close the returned stream.

        Args:
            document_id: Document id
            offset: First byte to fetch (uses an HTTP Range request when > 0)
            length: Maximum number of bytes to fetch

        Returns:
            ContentStream, or None if the server has no content for the document
        """
        headers: dict[str, str] = {}
        if offset > 0:
            end = "" if length is None else str(offset + length - 1)
            headers["Range"] = f"bytes={offset}-{end}"

        client = self._get_client()
        request = client.build_request(
            "GET",
            self.repository.root_folder_url,
            params={"cmisselector": "content", "objectId": document_id},
            headers=headers,
        )
        try:
            response = client.send(request, stream=True)
        except httpx.RequestError as e:
            raise CmisNetworkError(f"Network error during download: {e}") from e

        if response.status_code == 204:
            response.close()
            return None

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            response.read()
            response.close()
            if response.status_code == 409:
                # constraint: the document has no content stream
                return None
            error, _ = self._handle_http_error(e, self.max_retries, self.max_retries)
            raise error from e

        served_offset = 0
        if response.status_code == 206:
            content_range = response.headers.get("Content-Range", "")
            try:
                served_offset = int(content_range.split()[1].split("-")[0])
            except (IndexError, ValueError):
                served_offset = offset

        content_length = response.headers.get("Content-Length")

        def iter_chunks(chunk_size: int) -> Iterator[bytes]:
            try:
                yield from response.iter_bytes(chunk_size=chunk_size)
            except httpx.RequestError as e:
                raise CmisNetworkError(f"Network error during download: {e}") from e

        return ContentStream(
            iter_chunks,
            close=response.close,
            offset=served_offset,
            length=int(content_length) if content_length else None,
            mime_type=response.headers.get("Content-Type"),
        )

    def set_content_stream(
        self,
        document_id: str,
        stream: BinaryIO,
        file_name: str,
        mime_type: str | None = None,
    ) -> str:
        """Replace the whole content stream of a document.

        The protocol has no partial update, every call sends the full stream.

        Args:
            document_id: Document id
            stream: Open binary stream with the new content
            file_name: File name sent with the content
            mime_type: MIME type (guessed from the file name if omitted)

        Returns:
            Id of the updated object (may differ for versioned documents)
        """
        form = {
            "cmisaction": "setContent",
            "objectId": document_id,
            "overwriteFlag": "true",
            "succinct": "true",
        }
        mime_type = mime_type or guess_mime_type(file_name)
        files = {"content": (file_name, stream, mime_type)}
        data = self._request(
            "POST",
            self.repository.root_folder_url,
            max_retries=0,
            data=form,
            files=files,
        )
        if isinstance(data, dict) and data.get("succinctProperties"):
            return self._properties(data).get("cmis:objectId") or document_id
        return document_id

    def update_properties(self, object_id: str, properties: dict[str, Any]) -> str:
        """Update properties of an object (e.g. rename via cmis:name).

        Args:
            object_id: Object id
            properties: Properties to set

        Returns:
            Id of the updated object
        """
        form = {"cmisaction": "update", "objectId": object_id, "succinct": "true"}
        form.update(_properties_form(properties))
        data = self._request("POST", self.repository.root_folder_url, data=form)
        if isinstance(data, dict) and data.get("succinctProperties"):
            return self._properties(data).get("cmis:objectId") or object_id
        return object_id

    def delete_all_versions(self, object_id: str) -> None:
        """Delete an object including all of its versions.

        Args:
            object_id: Object id
        """
        form = {"cmisaction": "delete", "objectId": object_id, "allVersions": "true"}
        self._request("POST", self.repository.root_folder_url, data=form)
