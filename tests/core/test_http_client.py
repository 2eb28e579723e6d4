import unittest
from unittest.mock import MagicMock, patch

import requests

from manga_archiver.core.fetchers.exceptions import HttpStatusError, TransportError
from manga_archiver.core.http_client import DEFAULT_USER_AGENT, HttpClient
from manga_archiver.core.models import SiteConfig


def _response(status_code=200, text="", content=b""):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.text = text
    response.content = content
    return response


class TestHttpClient(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.session.headers = {}
        self.client = HttpClient(connect_timeout=5, read_timeout=20, session=self.session)
        self.site = SiteConfig(
            key="eros", name="Eros Moon", base_url="https://eros-moon.xyz",
            scanner_type="eros", downloader_type="eros", rate_limit_ms=0,
            user_agent="Mozilla/5.0 Test", headers={"Referer": "https://eros-moon.xyz/"},
        )

    def test_default_user_agent_on_session(self):
        self.assertEqual(self.session.headers['User-Agent'], DEFAULT_USER_AGENT)

    def test_fetch_text_sends_site_headers_and_timeout(self):
        self.session.get.return_value = _response(text="<html>ok</html>")

        text = self.client.fetch_text("https://eros-moon.xyz/manga/x/", self.site)

        self.assertEqual(text, "<html>ok</html>")
        self.session.get.assert_called_once_with(
            "https://eros-moon.xyz/manga/x/",
            headers={"User-Agent": "Mozilla/5.0 Test", "Referer": "https://eros-moon.xyz/"},
            timeout=(5, 20),
            stream=False,
        )

    def test_fetch_bytes_returns_body(self):
        self.session.get.return_value = _response(content=b"\x89PNG")
        self.assertEqual(self.client.fetch_bytes("https://cdn.example/1.png", self.site), b"\x89PNG")

    def test_non_2xx_raises_http_status_error(self):
        self.session.get.return_value = _response(status_code=404)

        with self.assertRaises(HttpStatusError) as context:
            self.client.fetch_text("https://eros-moon.xyz/missing/", self.site)

        self.assertEqual(context.exception.status_code, 404)
        self.assertEqual(context.exception.url, "https://eros-moon.xyz/missing/")
        self.assertIn("404", str(context.exception))
        self.assertIsInstance(context.exception, TransportError)

    def test_timeout_raises_transport_error(self):
        self.session.get.side_effect = requests.exceptions.Timeout("read timed out")
        with self.assertRaises(TransportError) as context:
            self.client.fetch_bytes("https://cdn.example/1.jpg")
        self.assertNotIsInstance(context.exception, HttpStatusError)

    def test_connection_error_raises_transport_error(self):
        self.session.get.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(TransportError):
            self.client.fetch_text("https://eros-moon.xyz/")

    @patch('manga_archiver.core.http_client.time.sleep')
    @patch('manga_archiver.core.http_client.time.monotonic')
    def test_document_fetches_are_rate_limited_per_site(self, mock_monotonic, mock_sleep):
        self.site.rate_limit_ms = 1500
        self.session.get.return_value = _response(text="ok")
        times = iter([100.0, 100.5])
        mock_monotonic.side_effect = lambda: next(times, 100.5)

        self.client.fetch_text("https://eros-moon.xyz/a/", self.site)
        self.client.fetch_text("https://eros-moon.xyz/b/", self.site)

        mock_sleep.assert_called_once()
        self.assertAlmostEqual(mock_sleep.call_args[0][0], 1.0)

    @patch('manga_archiver.core.http_client.time.monotonic', return_value=200.0)
    def test_rate_limit_sleep_does_not_block_other_sites(self, mock_monotonic):
        self.site.rate_limit_ms = 2000
        other_site = SiteConfig(key="madara", name="Madara", base_url="https://madara.example",
                                scanner_type="madara", downloader_type="madara", rate_limit_ms=2000)
        self.session.get.return_value = _response(text="ok")
        sleeps = []

        def fake_sleep(seconds):
            self.assertFalse(self.client._throttle_lock.locked())
            # A different site fetched while this one waits goes straight through.
            self.client.fetch_text("https://madara.example/", other_site)
            sleeps.append(seconds)

        with patch('manga_archiver.core.http_client.time.sleep', side_effect=fake_sleep):
            self.client.fetch_text("https://eros-moon.xyz/a/", self.site)
            self.client.fetch_text("https://eros-moon.xyz/b/", self.site)

        self.assertEqual(sleeps, [2.0])

    @patch('manga_archiver.core.http_client.time.sleep')
    def test_binary_fetches_are_not_rate_limited(self, mock_sleep):
        self.site.rate_limit_ms = 1500
        self.session.get.return_value = _response(content=b"x")

        self.client.fetch_bytes("https://cdn.example/1.jpg", self.site)
        self.client.fetch_bytes("https://cdn.example/2.jpg", self.site)

        mock_sleep.assert_not_called()


if __name__ == '__main__':
    unittest.main()
