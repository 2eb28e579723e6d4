import re
from typing import List, Optional

from bs4 import BeautifulSoup

from manga_archiver.core.models import CatalogEntry, Chapter, Page, SiteConfig, Title
from manga_archiver.utils.logger import get_logger
from .base_fetcher import BaseFetcher, absolutize_url
from .extraction import DEFAULT_IMAGE_SELECTORS, SelectorCascadeStrategy, css_select, run_strategies

logger = get_logger(__name__)

# Used when the listing markup is too broken for the CSS selectors.
CATALOG_BLOCK_PATTERN = re.compile(r'<div class="bsx">([\s\S]*?)</div>\s*</div>')
CATALOG_LINK_PATTERN = re.compile(r'<a href="([^"]+)"[^>]*title="([^"]+)"')
CATALOG_COVER_PATTERN = re.compile(r'<img[^>]+src="([^"]+)"[^>]*>')


class SelectorFetcher(BaseFetcher):
    """
    Fetcher for template-driven (Madara-style) sites where everything is
    reachable through CSS selectors. Site-configured selectors always come
    before the built-in ones.
    """

    CATALOG_LIST_SELECTOR = '.listupd, .list-update, .postbody, body'
    CATALOG_ITEM_SELECTOR = '.bsx, .bs, .utao .bsx'

    CHAPTER_ITEM_SELECTOR = '#chapterlist li'
    CHAPTER_LINK_SELECTOR = 'a'
    CHAPTER_NAME_SELECTOR = '.chapternum'

    def list_catalog(self, site_config: SiteConfig) -> List[CatalogEntry]:
        document = self._fetch_document(site_config.base_url, site_config)
        entries = self._catalog_from_selectors(document, site_config)
        if not entries:
            logger.debug(f"No catalog items via selectors on {site_config.base_url}, falling back to regex")
            entries = self._catalog_from_regex(document, site_config)

        entries = self._unique_entries(entries)
        logger.info(f"Catalog of '{site_config.name}': {len(entries)} entries on first page")
        return entries

    def _catalog_from_selectors(self, document: str, site_config: SiteConfig) -> List[CatalogEntry]:
        soup = BeautifulSoup(document, 'html.parser')
        item_selector = site_config.selectors.manga_list or self.CATALOG_ITEM_SELECTOR
        entries = []
        for container in soup.select(self.CATALOG_LIST_SELECTOR):
            for item in css_select(container, item_selector):
                link = item.select_one('a[title][href]')
                if link is None:
                    continue
                url = link['href'].strip()
                title = link['title'].strip()
                if not url or not title:
                    continue
                img = item.select_one('img[src]')
                cover = img['src'].strip() if img else ''
                entries.append(CatalogEntry(
                    title=title,
                    url=absolutize_url(url, site_config.base_url),
                    cover_url=absolutize_url(cover, site_config.base_url) if cover else None,
                ))
        return entries

    def _catalog_from_regex(self, document: str, site_config: SiteConfig) -> List[CatalogEntry]:
        entries = []
        for block in CATALOG_BLOCK_PATTERN.finditer(document):
            link_match = CATALOG_LINK_PATTERN.search(block.group(1))
            if not link_match or not link_match.group(2).strip():
                continue
            cover_match = CATALOG_COVER_PATTERN.search(block.group(1))
            entries.append(CatalogEntry(
                title=link_match.group(2).strip(),
                url=absolutize_url(link_match.group(1), site_config.base_url),
                cover_url=absolutize_url(cover_match.group(1), site_config.base_url) if cover_match else None,
            ))
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
        selectors = list(DEFAULT_IMAGE_SELECTORS)
        if site_config.selectors.image_url:
            selectors.insert(0, site_config.selectors.image_url)
        urls = run_strategies(document, [SelectorCascadeStrategy(selectors)], site_config.base_url)
        logger.info(f"Extracted {len(urls)} page URLs from {chapter_url}")
        return self._pages_from_urls(urls, chapter_id)
