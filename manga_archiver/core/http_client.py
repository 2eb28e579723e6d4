import threading
import time
from typing import Dict, Optional, Tuple

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError as RequestsConnectionError

from manga_archiver.utils.logger import get_logger
from .fetchers.exceptions import HttpStatusError, TransportError
from .models import SiteConfig

logger = get_logger(__name__)

DEFAULT_USER_AGENT = 'MangaArchiver/1.0 (Manga Monitoring System)'
DEFAULT_CONNECT_TIMEOUT = 10
DEFAULT_READ_TIMEOUT = 30


class HttpClient:
    """
    Shared HTTP client for every fetcher.

    Wraps a single requests.Session. Each call is a GET with a fixed
    (connect, read) timeout and the site's user agent and extra headers.
    Document fetches for a site are spaced by the site's rate_limit_ms.
    Non-2xx responses raise HttpStatusError, any other request failure
    raises TransportError. There is no retry at this level.
    """

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
    ):
        self.timeout: Tuple[float, float] = (connect_timeout, read_timeout)
        self.session = session or requests.Session()
        self.session.headers['User-Agent'] = user_agent
        self._last_request_at: Dict[str, float] = {}
        self._throttle_lock = threading.Lock()

    def _build_headers(self, site_config: Optional[SiteConfig]) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if site_config is None:
            return headers
        if site_config.user_agent:
            headers['User-Agent'] = site_config.user_agent
        headers.update(site_config.headers or {})
        return headers

    def _throttle(self, site_config: Optional[SiteConfig]) -> None:
        if site_config is None or site_config.rate_limit_ms <= 0:
            return
        delay = site_config.rate_limit_ms / 1000.0
        # Reserve the next slot for this site under the lock; sleep outside it
        # so other sites are not held up.
        with self._throttle_lock:
            now = time.monotonic()
            last = self._last_request_at.get(site_config.key)
            slot = now if last is None else max(now, last + delay)
            self._last_request_at[site_config.key] = slot
        wait = slot - now
        if wait > 0:
            logger.debug(f"Rate limiting '{site_config.key}': sleeping {wait:.2f}s")
            time.sleep(wait)

    def _get(self, url: str, site_config: Optional[SiteConfig], stream: bool = False) -> requests.Response:
        headers = self._build_headers(site_config)
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout, stream=stream)
        except Timeout as e:
            logger.error(f"Timeout while fetching {url}: {e}")
            raise TransportError(f"Timeout while fetching {url}: {e}", url=url) from e
        except RequestsConnectionError as e:
            logger.error(f"Connection error while fetching {url}: {e}")
            raise TransportError(f"Connection error while fetching {url}: {e}", url=url) from e
        except RequestException as e:
            logger.error(f"Request exception occurred while fetching {url}: {e}")
            raise TransportError(f"Request failed for {url}: {e}", url=url) from e

        if not 200 <= response.status_code < 300:
            logger.error(f"HTTP error occurred while fetching {url} - Status code: {response.status_code}")
            response.close()
            raise HttpStatusError(response.status_code, url)
        return response

    def fetch_text(self, url: str, site_config: Optional[SiteConfig] = None) -> str:
        """Fetches a document (site listing, title page, chapter page) as text."""
        self._throttle(site_config)
        logger.info(f"Fetching document: {url}")
        response = self._get(url, site_config)
        return response.text

    def fetch_bytes(self, url: str, site_config: Optional[SiteConfig] = None) -> bytes:
        """Fetches a binary body (page image). Not rate limited."""
        logger.debug(f"Fetching binary: {url}")
        response = self._get(url, site_config)
        try:
            return response.content
        except RequestException as e:
            raise TransportError(f"Failed reading body of {url}: {e}", url=url) from e

    def close(self) -> None:
        self.session.close()
