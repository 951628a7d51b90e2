"""cmissync - two-way synchronization between a local folder and a CMIS repository."""

from .api import CmisClient
from .exceptions import (
    CmisAPIError,
    CmisAuthenticationError,
    CmisConfigError,
    CmisConflictError,
    CmisDownloadError,
    CmisInvalidResponseError,
    CmisNetworkError,
    CmisNotFoundError,
    CmisPermissionError,
    CmisSyncCancelledError,
    CmisUploadError,
)
from .models import RemoteDocument, RemoteFolder, RepositoryInfo

__version__ = "0.1.0"

__all__ = [
    "CmisClient",
    "CmisAPIError",
    "CmisAuthenticationError",
    "CmisConfigError",
    "CmisConflictError",
    "CmisDownloadError",
    "CmisInvalidResponseError",
    "CmisNetworkError",
    "CmisNotFoundError",
    "CmisPermissionError",
    "CmisSyncCancelledError",
    "CmisUploadError",
    "RemoteDocument",
    "RemoteFolder",
    "RepositoryInfo",
]
