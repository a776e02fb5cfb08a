"""Error taxonomy shared by the registry client, downloader and mod managers."""

from typing import Optional


class ModSyncError(Exception):
    """Base class for every error raised by the engine"""

    kind = "error"

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class NotFoundError(ModSyncError):
    """Registry answered 404. Never retried."""

    kind = "not_found"


class NetworkError(ModSyncError):
    """Generic network failure (connection refused, 5xx, bad payload)"""

    kind = "network"

    def __init__(
        self,
        message: str,
        *,
        cause: Optional[BaseException] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message, cause=cause)
        self.status_code = status_code


class NetworkTimeoutError(NetworkError):
    """Request exceeded its timeout - network slow or registry unavailable"""

    kind = "network_timeout"


class InvalidInputError(ModSyncError):
    """A required field is missing or malformed"""

    kind = "invalid_input"


class FilesystemError(ModSyncError):
    """I/O failure while moving, copying or writing files"""

    kind = "filesystem"


class MetadataParseError(ModSyncError):
    """Archive manifest could not be read. Callers treat it as "no metadata"."""

    kind = "metadata_parse"
