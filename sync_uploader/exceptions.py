"""
Error types raised by the sync uploader.
"""


class SyncUploaderError(Exception):
    """Base class for all sync uploader errors."""


class ConfigurationError(SyncUploaderError):
    """A required setting is missing or malformed."""


class CrawlSubtreeError(SyncUploaderError):
    """A directory could not be read; its subtree is skipped."""


class DirectoryCreationError(SyncUploaderError):
    """Creating a remote directory failed."""


class UploadError(SyncUploaderError):
    """Transferring a unit's content to the remote store failed."""


class NonFatalWriteRejection(SyncUploaderError):
    """The remote store answered a write without storing the content."""
