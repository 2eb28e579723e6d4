from typing import Optional

from manga_archiver.core.exceptions import ArchiverError


class UnsupportedSourceError(ArchiverError):
    """Custom exception for site types no fetcher is registered for."""
    pass


class FetcherError(ArchiverError):
    """Base exception for fetcher-related errors."""
    pass


class TransportError(FetcherError):
    """The request did not produce a usable response (timeout, DNS, connection reset...)."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class HttpStatusError(TransportError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, url: str):
        super().__init__(f"HTTP {status_code} for {url}", url=url)
        self.status_code = status_code


class ExtractionError(FetcherError):
    """The document was fetched but the expected content could not be found in it."""
    pass
