from .base_fetcher import BaseFetcher
from .token_stream_fetcher import TokenStreamFetcher
from .selector_fetcher import SelectorFetcher
from .fetcher_registry import FetcherRegistry
from .exceptions import UnsupportedSourceError, FetcherError, TransportError, HttpStatusError, ExtractionError

__all__ = [
    "BaseFetcher",
    "TokenStreamFetcher",
    "SelectorFetcher",
    "FetcherRegistry",
    "UnsupportedSourceError",
    "FetcherError",
    "TransportError",
    "HttpStatusError",
    "ExtractionError",
]
