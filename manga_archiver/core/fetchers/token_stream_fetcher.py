from typing import List, Optional

from bs4 import BeautifulSoup

from manga_archiver.core.models import CatalogEntry, Chapter, Page, SiteConfig, Title
from manga_archiver.utils.logger import get_logger
from .base_fetcher import BaseFetcher, absolutize_url
from .extraction import CommaSplitStrategy, EscapedUrlRegexStrategy, css_select, run_strategies

logger = get_logger(__name__)


class TokenStreamFetcher(BaseFetcher):
    """
    Fetcher for reader-theme sites that embed the page list as a JSON-like
    payload in an inline script (`ts_reader.run({... "images": [...]})`).
    """

    CATALOG_ITEM_SELECTOR = 'div.utao.styletwo'
    CATALOG_LINK_SELECTOR = '.imgu a.series'
    CATALOG_COVER_SELECTOR = '.imgu img'
    CATALOG_TITLE_SELECTOR = 'h4'

    CHAPTER_ITEM_SELECTOR = '#chapterlist li'
    CHAPTER_LINK_SELECTOR = '.eph-num a'
    CHAPTER_NAME_SELECTOR = '.chapternum'

    def __init__(self, http_client):
        super().__init__(http_client)
        self.strategies = [EscapedUrlRegexStrategy(), CommaSplitStrategy()]

    def list_catalog(self, site_config: SiteConfig) -> List[CatalogEntry]:
        document = self._fetch_document(site_config.base_url, site_config)
        soup = BeautifulSoup(document, 'html.parser')

        entries = []
        for item in css_select(soup, site_config.selectors.manga_list or self.CATALOG_ITEM_SELECTOR):
            link = item.select_one(self.CATALOG_LINK_SELECTOR)
            title_tag = item.select_one(self.CATALOG_TITLE_SELECTOR)
            url = link.get('href', '').strip() if link else ''
            title = title_tag.get_text(strip=True) if title_tag else ''
            if not url or not title:
                continue

            cover_tag = item.select_one(self.CATALOG_COVER_SELECTOR)
            cover = cover_tag.get('src', '').strip() if cover_tag else ''
            entries.append(CatalogEntry(
                title=title,
                url=absolutize_url(url, site_config.base_url),
                cover_url=absolutize_url(cover, site_config.base_url) if cover else None,
            ))

        entries = self._unique_entries(entries)
        logger.info(f"Catalog of '{site_config.name}': {len(entries)} entries on first page")
        return entries

    def discover_chapters(self, site_config: SiteConfig, title: Title) -> List[Chapter]:
        document = self._fetch_document(title.url, site_config)
        selectors = site_config.selectors
        chapters = self._parse_chapter_list(
            document,
            site_config,
            title,
            item_selector=selectors.chapter_list or self.CHAPTER_ITEM_SELECTOR,
            link_selector=selectors.chapter_url or self.CHAPTER_LINK_SELECTOR,
            name_selector=selectors.chapter_title or self.CHAPTER_NAME_SELECTOR,
        )
        logger.info(f"Found {len(chapters)} chapters for '{title.name}' on {site_config.name}")
        return chapters

    def extract_pages(self, site_config: SiteConfig, chapter_url: str, chapter_id: Optional[str] = None) -> List[Page]:
        document = self._fetch_document(chapter_url, site_config)
        urls = run_strategies(document, self.strategies, site_config.base_url)
        logger.info(f"Extracted {len(urls)} page URLs from {chapter_url}")
        return self._pages_from_urls(urls, chapter_id)
