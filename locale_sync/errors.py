"""Exception taxonomy for the localization sync service."""
from typing import Optional


class LocaleSyncError(Exception):
    """Base class for every error raised by this package."""


class PlatformError(LocaleSyncError):
    """A call to the translation platform failed or returned an unusable answer."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DownloadError(PlatformError):
    """The translated bundle could not be requested, fetched or extracted."""


class StorageError(LocaleSyncError):
    """An object-storage request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StorageNotFoundError(StorageError):
    """The requested object does not exist in the bucket."""


class StoragePublishError(StorageError):
    """A single staged file could not be uploaded."""

    def __init__(self, key: str, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Failed to publish '{key}': {reason}", status_code)
        self.key = key
        self.reason = reason


class MessageFormatError(LocaleSyncError):
    """A message template could not be compiled or formatted."""
