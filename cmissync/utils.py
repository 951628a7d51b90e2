"""Utility functions for the CMIS sync client."""

import mimetypes
from datetime import datetime, timezone
from typing import Optional, Union

# =============================================================================
# Constants for sync operations
# =============================================================================

# Chunk size for copying content streams to disk (8 KiB)
DEFAULT_CHUNK_SIZE: int = 8 * 1024

# Suffix of in-progress downloads and uploads
STAGING_SUFFIX: str = ".sync"

# Suffix of local state cache files
DATABASE_SUFFIX: str = ".cmissync"

# Maximum number of change events fetched per sync cycle
MAX_CHANGE_EVENTS: int = 1000

# Wait between two connection attempts (seconds)
CONNECT_RETRY_INTERVAL: float = 10.0

# Retry configuration for transient request errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 2.0  # seconds

# Page size when listing folder children
DEFAULT_PAGE_SIZE: int = 100


# =============================================================================
# Timestamp parsing utilities
# =============================================================================


def parse_cmis_timestamp(
    value: Union[str, int, float, datetime, None],
) -> Optional[datetime]:
    """Parse a CMIS date-time value.

    The browser binding transfers dates as milliseconds since the epoch,
    other bindings and the local cache use ISO 8601 strings.

    Args:
        value: Epoch milliseconds, ISO string (e.g. "2025-01-15T10:30:00.000Z")
            or an existing datetime

    Returns:
        Timezone-aware datetime in UTC or None if the value cannot be parsed
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)

    try:
        timestamp_str = str(value).strip()
        if timestamp_str.isdigit():
            return datetime.fromtimestamp(int(timestamp_str) / 1000.0, tz=timezone.utc)

        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"

        try:
            dt = datetime.fromisoformat(timestamp_str)
        except ValueError:
            # Some servers send more than six fractional digits
            if "." in timestamp_str:
                head, _, tail = timestamp_str.partition(".")
                offset = ""
                for sign in ("+", "-"):
                    if sign in tail:
                        offset = sign + tail.split(sign, 1)[1]
                        break
                timestamp_str = head + (offset or "+00:00")
            dt = datetime.fromisoformat(timestamp_str)

        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, AttributeError, OverflowError):
        return None


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime for storage in the local cache.

    Args:
        value: Datetime to format (naive values are taken as UTC)

    Returns:
        ISO 8601 string or None
    """
    parsed = parse_cmis_timestamp(value)
    if parsed is None:
        return None
    return parsed.isoformat()


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# MIME type utilities
# =============================================================================


def guess_mime_type(file_name: str) -> str:
    """Guess the MIME type of a file from its name.

    Args:
        file_name: File name or path

    Returns:
        MIME type string (defaults to 'application/octet-stream')
    """
    mime_type, _ = mimetypes.guess_type(file_name)
    return mime_type or "application/octet-stream"
