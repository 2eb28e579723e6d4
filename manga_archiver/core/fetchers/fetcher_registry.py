from typing import Dict, Iterable, List

from manga_archiver.utils.logger import get_logger
from .base_fetcher import BaseFetcher
from .exceptions import UnsupportedSourceError
from .selector_fetcher import SelectorFetcher
from .token_stream_fetcher import TokenStreamFetcher

logger = get_logger(__name__)

CATALOG = 'catalog'
SCANNER = 'scanner'
DOWNLOADER = 'downloader'
ALL_CAPABILITIES = (CATALOG, SCANNER, DOWNLOADER)


class FetcherRegistry:
    """
    Maps the type strings used in site config (scanner_type, downloader_type,
    catalog_type) to fetcher instances, one lookup table per capability.

    Built-ins: 'eros' is the token-stream fetcher; 'madara' and its alias
    'thunder' share one selector fetcher instance.
    """

    def __init__(self, http_client, register_builtins: bool = True):
        self.http_client = http_client
        self._fetchers: Dict[str, Dict[str, BaseFetcher]] = {capability: {} for capability in ALL_CAPABILITIES}
        if register_builtins:
            self._register_builtins()

    def _register_builtins(self) -> None:
        token_stream = TokenStreamFetcher(self.http_client)
        selector = SelectorFetcher(self.http_client)
        self.register('eros', token_stream)
        self.register('madara', selector)
        self.register('thunder', selector)

    def register(self, type_id: str, fetcher: BaseFetcher, capabilities: Iterable[str] = ALL_CAPABILITIES) -> None:
        """Registers a fetcher under type_id for the given capabilities (all by default)."""
        for capability in capabilities:
            if capability not in self._fetchers:
                raise ValueError(f"Unknown fetcher capability: {capability}")
            self._fetchers[capability][type_id.lower()] = fetcher
            logger.debug(f"Registered {type(fetcher).__name__} as {capability} for type '{type_id}'")

    def _get(self, capability: str, type_id: str) -> BaseFetcher:
        if not type_id:
            raise UnsupportedSourceError(f"No {capability} type configured")
        fetcher = self._fetchers[capability].get(type_id.lower())
        if fetcher is None:
            raise UnsupportedSourceError(
                f"No {capability} registered for type '{type_id}' "
                f"(available: {', '.join(self.supported_types(capability)) or 'none'})"
            )
        return fetcher

    def get_catalog_fetcher(self, type_id: str) -> BaseFetcher:
        return self._get(CATALOG, type_id)

    def get_scanner(self, type_id: str) -> BaseFetcher:
        return self._get(SCANNER, type_id)

    def get_downloader(self, type_id: str) -> BaseFetcher:
        return self._get(DOWNLOADER, type_id)

    def supported_types(self, capability: str = SCANNER) -> List[str]:
        return sorted(self._fetchers.get(capability, {}))
