import unittest
from unittest.mock import MagicMock

from manga_archiver.core.fetchers.base_fetcher import BaseFetcher
from manga_archiver.core.fetchers.exceptions import UnsupportedSourceError
from manga_archiver.core.fetchers.fetcher_registry import CATALOG, DOWNLOADER, SCANNER, FetcherRegistry
from manga_archiver.core.fetchers.selector_fetcher import SelectorFetcher
from manga_archiver.core.fetchers.token_stream_fetcher import TokenStreamFetcher


class _CatalogOnlyFetcher(BaseFetcher):
    def list_catalog(self, site_config):
        return []

    def discover_chapters(self, site_config, title):
        return []

    def extract_pages(self, site_config, chapter_url, chapter_id=None):
        return []


class TestFetcherRegistry(unittest.TestCase):

    def setUp(self):
        self.http_client = MagicMock()
        self.registry = FetcherRegistry(self.http_client)

    def test_builtin_types(self):
        self.assertIsInstance(self.registry.get_scanner('eros'), TokenStreamFetcher)
        self.assertIsInstance(self.registry.get_downloader('eros'), TokenStreamFetcher)
        self.assertIsInstance(self.registry.get_catalog_fetcher('madara'), SelectorFetcher)
        self.assertEqual(self.registry.supported_types(SCANNER), ['eros', 'madara', 'thunder'])

    def test_thunder_is_alias_of_madara(self):
        self.assertIs(self.registry.get_downloader('thunder'), self.registry.get_downloader('madara'))

    def test_fetchers_share_http_client(self):
        self.assertIs(self.registry.get_scanner('eros').http_client, self.http_client)
        self.assertIs(self.registry.get_scanner('madara').http_client, self.http_client)

    def test_lookup_is_case_insensitive(self):
        self.assertIs(self.registry.get_scanner('EROS'), self.registry.get_scanner('eros'))

    def test_unknown_type_raises(self):
        with self.assertRaises(UnsupportedSourceError) as context:
            self.registry.get_scanner('mangadex')
        self.assertIn('mangadex', str(context.exception))
        self.assertIn('eros', str(context.exception))

    def test_empty_type_raises(self):
        with self.assertRaises(UnsupportedSourceError):
            self.registry.get_downloader('')

    def test_register_single_capability(self):
        registry = FetcherRegistry(self.http_client, register_builtins=False)
        custom = _CatalogOnlyFetcher(self.http_client)
        registry.register('Custom', custom, capabilities=[CATALOG])

        self.assertIs(registry.get_catalog_fetcher('custom'), custom)
        with self.assertRaises(UnsupportedSourceError):
            registry.get_scanner('custom')
        self.assertEqual(registry.supported_types(DOWNLOADER), [])

    def test_register_unknown_capability_raises(self):
        with self.assertRaises(ValueError):
            self.registry.register('x', _CatalogOnlyFetcher(self.http_client), capabilities=['uploader'])


if __name__ == '__main__':
    unittest.main()
