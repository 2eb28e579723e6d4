import re
from abc import ABC, abstractmethod
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from manga_archiver.core.models import CatalogEntry, Chapter, Page, SiteConfig, Title
from manga_archiver.utils.logger import get_logger
from .extraction import css_select, css_select_one

logger = get_logger(__name__)

CHAPTER_NUMBER_PATTERN = re.compile(r'Chapter\s*([0-9]+(?:\.[0-9]+)?)', re.IGNORECASE)


def parse_chapter_number(text: str, fallback: float) -> float:
    """Number from 'Chapter <n>' in text, or the given positional fallback."""
    match = CHAPTER_NUMBER_PATTERN.search(text or '')
    if match:
        try:
            return float(match.group(1))
        except ValueError:
            pass
    return float(fallback)


def absolutize_url(url: str, base_url: str) -> str:
    """Protocol-relative and root/relative URLs are resolved against the site base."""
    url = url.strip()
    if url.startswith('//'):
        return f"https:{url}"
    if url.startswith(('http://', 'https://')):
        return url
    return urljoin(base_url.rstrip('/') + '/', url)


class BaseFetcher(ABC):
    """
    A site-family adapter. One instance serves every site of its family;
    the per-site details come in through SiteConfig on each call.

    The shared HttpClient is injected and never created here.
    """

    def __init__(self, http_client):
        self.http_client = http_client

    def _fetch_document(self, url: str, site_config: SiteConfig) -> str:
        return self.http_client.fetch_text(url, site_config)

    @abstractmethod
    def list_catalog(self, site_config: SiteConfig) -> List[CatalogEntry]:
        """
        Fetches the site's first listing page and returns recently updated titles.
        Entries without a title or URL are skipped; a missing cover is fine.
        """
        pass

    @abstractmethod
    def discover_chapters(self, site_config: SiteConfig, title: Title) -> List[Chapter]:
        """
        Fetches the title page and returns its chapters in site order,
        with absolute URL, display name and numeric key filled in.
        """
        pass

    @abstractmethod
    def extract_pages(self, site_config: SiteConfig, chapter_url: str, chapter_id: Optional[str] = None) -> List[Page]:
        """
        Fetches the chapter page and returns its pages numbered 1..n.
        Raises ExtractionError rather than returning an empty list.
        """
        pass

    def _parse_chapter_list(
        self,
        document: str,
        site_config: SiteConfig,
        title: Title,
        item_selector: str,
        link_selector: str,
        name_selector: str,
    ) -> List[Chapter]:
        """
        Shared '#chapterlist li' style parsing. Chapters without a URL or a
        display name are skipped; a name without 'Chapter <n>' gets its
        1-based position as number.
        """
        soup = BeautifulSoup(document, 'html.parser')
        chapters = []
        for index, item in enumerate(css_select(soup, item_selector), start=1):
            link = css_select_one(item, link_selector)
            if link is None or not link.get('href'):
                logger.debug(f"Chapter entry #{index} of '{title.name}' has no link. Skipping.")
                continue

            name_tag = css_select_one(link, name_selector) or css_select_one(item, name_selector)
            name = name_tag.get_text(strip=True) if name_tag else link.get_text(" ", strip=True)
            if not name:
                logger.debug(f"Chapter entry #{index} of '{title.name}' has no name. Skipping.")
                continue

            chapters.append(Chapter(
                title_id=title.id,
                title_name=title.name,
                name=name,
                number=parse_chapter_number(name, fallback=index),
                url=absolutize_url(link['href'], site_config.base_url),
            ))
        return chapters

    @staticmethod
    def _unique_entries(entries: List[CatalogEntry]) -> List[CatalogEntry]:
        seen = set()
        unique = []
        for entry in entries:
            if entry.url in seen:
                continue
            seen.add(entry.url)
            unique.append(entry)
        return unique

    @staticmethod
    def _pages_from_urls(urls: List[str], chapter_id: Optional[str]) -> List[Page]:
        return [Page(chapter_id=chapter_id, number=index, image_url=url) for index, url in enumerate(urls, start=1)]
