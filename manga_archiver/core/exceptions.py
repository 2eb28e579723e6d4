class ArchiverError(Exception):
    """Base exception for all manga-archiver errors."""
    pass


class ConfigError(ArchiverError):
    """Raised when settings.ini is missing required values or is malformed."""
    pass


class NotFoundError(ArchiverError):
    """Base exception for lookups that found nothing."""
    pass


class TitleNotFoundError(NotFoundError):
    pass


class ChapterNotFoundError(NotFoundError):
    pass


class RecordStoreError(ArchiverError):
    """Wraps any failure of the underlying SQLite store."""
    pass


class ArchiveError(ArchiverError):
    """Raised when a chapter archive cannot be written."""
    pass


class ChapterDownloadError(ArchiverError):
    """Raised when no page of a chapter could be downloaded."""

    def __init__(self, message: str, pages_attempted: int = 0):
        super().__init__(message)
        self.pages_attempted = pages_attempted
