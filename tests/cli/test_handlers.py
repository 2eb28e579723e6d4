import os

import pytest
from unittest import mock

from manga_archiver.cli.handlers import (
    check_handler,
    cleanup_handler,
    download_handler,
    init_handler,
    monitor_handler,
    scan_handler,
    status_handler,
)
from manga_archiver.core.config_manager import ConfigManager
from manga_archiver.core.fetchers.exceptions import ExtractionError, TransportError
from manga_archiver.core.models import (
    CatalogCheckResult,
    Chapter,
    ChapterStatus,
    MonitorSummary,
    ScanRecord,
    ScanResult,
    ScanStatus,
    Title,
)
from manga_archiver.core.storage.record_store import RecordStore

BUILD_ORCHESTRATOR_PATH = "manga_archiver.cli.handlers.AppContext.build_orchestrator"
SLEEP_PATH = "manga_archiver.cli.handlers.time.sleep"

TITLE_URL = "https://eros-moon.xyz/manga/solo-leveling/"


@pytest.fixture
def config_path(isolated_workspace):
    """A default settings.ini (eros site) with one configured title."""
    path = os.path.join(isolated_workspace, "config", "settings.ini")
    ConfigManager(path).add_title_config("Solo Leveling", "eros", TITLE_URL)
    return path


@pytest.fixture
def mock_orchestrator():
    with mock.patch(BUILD_ORCHESTRATOR_PATH) as mock_build:
        yield mock_build.return_value


def _stored_titles(isolated_workspace):
    store = RecordStore(os.path.join(isolated_workspace, "data", "archiver.db"))
    try:
        return store.list_titles()
    finally:
        store.close()


class TestInitAndStatusHandlers:

    def test_init_imports_configured_titles(self, config_path, isolated_workspace, capsys):
        init_handler(config_path=config_path, verbose=False)

        out = capsys.readouterr().out
        assert "Added 'Solo Leveling' (eros)" in out
        assert "1 titles added, 0 skipped" in out
        assert [t.url for t in _stored_titles(isolated_workspace)] == [TITLE_URL]

    def test_init_twice_skips_known_titles(self, config_path, capsys):
        init_handler(config_path=config_path, verbose=False)
        init_handler(config_path=config_path, verbose=False)

        assert "0 titles added, 1 skipped" in capsys.readouterr().out

    def test_status_without_titles(self, config_path, capsys):
        status_handler(config_path=config_path, verbose=False)
        assert "No titles tracked yet" in capsys.readouterr().out

    def test_status_lists_titles(self, config_path, capsys):
        init_handler(config_path=config_path, verbose=False)
        capsys.readouterr()

        status_handler(config_path=config_path, verbose=False)

        out = capsys.readouterr().out
        assert "Monitored titles:" in out
        assert "Solo Leveling" in out
        assert "active" in out


class TestScanHandler:

    def _result(self, title, new_chapters):
        record = ScanRecord(title_id=title.id, site="eros", status=ScanStatus.SUCCESS,
                            chapters_found=5, chapters_new=len(new_chapters))
        return ScanResult(record=record, new_chapters=new_chapters)

    def test_scan_matching_title(self, config_path, isolated_workspace, mock_orchestrator, capsys):
        store = RecordStore(os.path.join(isolated_workspace, "data", "archiver.db"))
        store.init_schema()
        store.create_title(Title(name="Solo Leveling", site="eros", url=TITLE_URL))
        store.close()

        def scan_title(title_id):
            title = Title(id=title_id, name="Solo Leveling", site="eros", url=TITLE_URL)
            new = Chapter(title_id=title_id, title_name=title.name, name="Chapter 5", number=5.0,
                          url="https://eros-moon.xyz/solo-leveling-chapter-5/")
            return self._result(title, [new])
        mock_orchestrator.scan_title.side_effect = scan_title

        scan_handler(config_path=config_path, verbose=False, title_query="solo", new_only=False, download=False)

        out = capsys.readouterr().out
        assert "Solo Leveling: 5 chapters, 1 new" in out
        assert "+ Chapter 5 (5)" in out
        mock_orchestrator.download_pending.assert_not_called()

    def test_scan_unknown_title_exits(self, config_path, mock_orchestrator, capsys):
        with pytest.raises(SystemExit) as excinfo:
            scan_handler(config_path=config_path, verbose=False, title_query="nothing", new_only=False,
                         download=False)
        assert excinfo.value.code == 1
        assert "No tracked title matches 'nothing'" in capsys.readouterr().err

    def test_scan_all_with_download(self, config_path, mock_orchestrator, capsys):
        mock_orchestrator.scan_all.return_value = []
        mock_orchestrator.download_pending.return_value = (3, 1)

        scan_handler(config_path=config_path, verbose=False, title_query=None, new_only=True, download=True)

        assert "Downloaded 3 chapters, 1 failed." in capsys.readouterr().out


class TestDownloadHandler:

    def test_unknown_site_exits(self, config_path, mock_orchestrator, capsys):
        with pytest.raises(SystemExit) as excinfo:
            download_handler(config_path=config_path, verbose=False, site="nope",
                             chapter_url="https://nope.example/x-chapter-1/")
        assert excinfo.value.code == 1
        assert "Site 'nope' not supported" in capsys.readouterr().err
        mock_orchestrator.download_by_url.assert_not_called()

    def test_successful_download(self, config_path, mock_orchestrator, capsys):
        url = "https://eros-moon.xyz/solo-leveling-chapter-1/"
        mock_orchestrator.download_by_url.return_value = Chapter(
            title_id="t", title_name="Eros Moon (manual)", name="Chapter 1", number=1.0, url=url,
            page_count=12, status=ChapterStatus.DOWNLOADED,
        )

        download_handler(config_path=config_path, verbose=False, site="eros", chapter_url=url)

        mock_orchestrator.download_by_url.assert_called_once_with("eros", url)
        assert "Successfully downloaded 12 pages from eros" in capsys.readouterr().out

    def test_failed_download_exits(self, config_path, mock_orchestrator, capsys):
        mock_orchestrator.download_by_url.side_effect = ExtractionError("No page images found after trying: comma-split")

        with pytest.raises(SystemExit) as excinfo:
            download_handler(config_path=config_path, verbose=False, site="eros",
                             chapter_url="https://eros-moon.xyz/x-chapter-1/")

        assert excinfo.value.code == 1
        assert "Failed to download chapter" in capsys.readouterr().err


class TestMonitorHandler:

    def test_single_cycle(self, config_path, mock_orchestrator, capsys):
        mock_orchestrator.run_monitor_cycle.return_value = MonitorSummary(titles_scanned=2, new_chapters_found=3,
                                                                        chapters_downloaded=3)

        monitor_handler(config_path=config_path, verbose=False, loop=False, interval=None)

        out = capsys.readouterr().out
        assert "Titles scanned: 2" in out
        assert "downloaded: 3" in out
        mock_orchestrator.run_monitor_cycle.assert_called_once()

    @mock.patch(SLEEP_PATH, side_effect=KeyboardInterrupt)
    def test_loop_stops_on_keyboard_interrupt(self, mock_sleep, config_path, mock_orchestrator, capsys):
        mock_orchestrator.run_monitor_cycle.return_value = MonitorSummary()

        monitor_handler(config_path=config_path, verbose=False, loop=True, interval=15)

        mock_sleep.assert_called_once_with(15 * 60)
        out = capsys.readouterr().out
        assert "Next cycle in 15 minutes" in out
        assert "Monitoring stopped." in out


class TestCheckHandler:

    def test_check_adds_new_titles_to_config(self, config_path, mock_orchestrator, capsys):
        new_title = Title(name="Nano Machine", site="eros", url="https://eros-moon.xyz/manga/nano-machine/")
        mock_orchestrator.check_catalogs.return_value = [
            CatalogCheckResult(site="eros", entries_found=20, new_titles=[new_title]),
        ]

        check_handler(config_path=config_path, verbose=False, site="all", download=False, add_to_config=True)

        mock_orchestrator.check_catalogs.assert_called_once_with(None)
        out = capsys.readouterr().out
        assert "eros: 20 titles on first page, 1 new" in out
        assert "Added 1 titles to" in out
        urls = [t.url for t in ConfigManager(config_path).get_title_configs()]
        assert "https://eros-moon.xyz/manga/nano-machine/" in urls

    def test_check_with_download(self, config_path, mock_orchestrator, capsys):
        first = Title(name="Nano Machine", site="eros", url="https://eros-moon.xyz/manga/nano-machine/")
        second = Title(name="Broken", site="eros", url="https://eros-moon.xyz/manga/broken/")
        mock_orchestrator.check_catalogs.return_value = [
            CatalogCheckResult(site="eros", entries_found=2, new_titles=[first, second]),
        ]
        mock_orchestrator.download_all_chapters.side_effect = [(4, 0), TransportError("Connection error")]

        check_handler(config_path=config_path, verbose=False, site="eros", download=True, add_to_config=False)

        mock_orchestrator.check_catalogs.assert_called_once_with("eros")
        captured = capsys.readouterr()
        assert "Nano Machine: downloaded 4 chapters, 0 failed" in captured.out
        assert "Broken: scan failed" in captured.err

    def test_check_reports_site_error(self, config_path, mock_orchestrator, capsys):
        mock_orchestrator.check_catalogs.return_value = [CatalogCheckResult(site="eros", error="HTTP 403 for x")]

        check_handler(config_path=config_path, verbose=False, site=None, download=False, add_to_config=False)

        assert "eros: HTTP 403 for x" in capsys.readouterr().err

    def test_check_unknown_site_exits(self, config_path, mock_orchestrator):
        with pytest.raises(SystemExit):
            check_handler(config_path=config_path, verbose=False, site="nope", download=False, add_to_config=False)
        mock_orchestrator.check_catalogs.assert_not_called()


def test_cleanup_handler(config_path, mock_orchestrator, capsys):
    mock_orchestrator.cleanup_downloads.return_value = 2

    cleanup_handler(config_path=config_path, verbose=False, days=7)

    mock_orchestrator.cleanup_downloads.assert_called_once_with(7)
    assert "Removed 2 chapters downloaded more than 7 days ago." in capsys.readouterr().out
