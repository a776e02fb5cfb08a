"""API Package - Modrinth registry client, data models and errors."""

from .errors import (
    ModSyncError,
    NotFoundError,
    NetworkError,
    NetworkTimeoutError,
    InvalidInputError,
    FilesystemError,
    MetadataParseError
)
from .models import VersionFile, VersionRecord, ProjectInfo
from .registry import RegistryClient

__all__ = [
    "RegistryClient",
    "VersionFile",
    "VersionRecord",
    "ProjectInfo",
    "ModSyncError",
    "NotFoundError",
    "NetworkError",
    "NetworkTimeoutError",
    "InvalidInputError",
    "FilesystemError",
    "MetadataParseError"
]
