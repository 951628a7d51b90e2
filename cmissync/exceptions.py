"""Exception hierarchy for the CMIS sync client."""


class CmisAPIError(Exception):
    """Base exception for all repository and sync errors."""


class CmisConfigError(CmisAPIError):
    """Raised when connection settings are missing or invalid."""


class CmisAuthenticationError(CmisAPIError):
    """Raised when the repository rejects the credentials (HTTP 401)."""


class CmisPermissionError(CmisAPIError):
    """Raised when the user lacks permission for an operation (HTTP 403)."""


class CmisNotFoundError(CmisAPIError):
    """Raised when an object or path does not exist in the repository (HTTP 404)."""


class CmisConflictError(CmisAPIError):
    """Raised on name clashes or constraint violations (HTTP 409)."""


class CmisInvalidResponseError(CmisAPIError):
    """Raised when the server returns a body that is not valid browser binding JSON."""


class CmisNetworkError(CmisAPIError):
    """Raised on transport failures (connection refused, reset, timeouts)."""


class CmisDownloadError(CmisAPIError):
    """Raised when a content stream cannot be transferred to disk."""


class CmisUploadError(CmisAPIError):
    """Raised when a content stream cannot be pushed to the repository."""


class CmisSyncCancelledError(CmisAPIError):
    """Raised when the engine is stopped while waiting to (re)connect."""
