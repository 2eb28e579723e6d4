import datetime
import os
import shutil
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from manga_archiver.utils.filename_sanitizer import chapter_number_from_url, format_chapter_number
from manga_archiver.utils.logger import get_logger
from .builders.archive_builder import ArchiveBuilder
from .config_manager import ScannerSettings, TitleConfig
from .exceptions import (
    ArchiveError,
    ChapterDownloadError,
    ChapterNotFoundError,
    RecordStoreError,
    TitleNotFoundError,
)
from .fetchers.exceptions import FetcherError, UnsupportedSourceError
from .fetchers.fetcher_registry import FetcherRegistry
from .models import (
    PLACEHOLDER_URL_PREFIX,
    CatalogCheckResult,
    Chapter,
    ChapterStatus,
    MonitorSummary,
    Page,
    ScanRecord,
    ScanResult,
    ScanStatus,
    SiteConfig,
    Title,
    TitleStatus,
    utc_now,
)
from .path_manager import PathManager
from .storage.record_store import RecordStore

ProgressCallback = Callable[[Union[str, Dict[str, Any]]], None]
logger = get_logger(__name__)

# Which archive root a download goes to.
SCANS_ROOT = 'scans'
DOWNLOADS_ROOT = 'downloads'


class AcquisitionOrchestrator:
    """
    Runs the discover -> dedup -> download -> archive -> record pipeline
    over every configured site, whatever fetcher family serves it.

    All persistent state lives in the RecordStore; the orchestrator itself
    keeps nothing between calls besides its collaborators.
    """

    def __init__(
        self,
        record_store: RecordStore,
        registry: FetcherRegistry,
        site_configs: Dict[str, SiteConfig],
        http_client,
        scans_path: str,
        downloads_path: str,
        settings: Optional[ScannerSettings] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.record_store = record_store
        self.registry = registry
        self.site_configs = site_configs
        self.http_client = http_client
        self.settings = settings or ScannerSettings()
        self.progress_callback = progress_callback
        self.path_managers = {
            SCANS_ROOT: PathManager(scans_path),
            DOWNLOADS_ROOT: PathManager(downloads_path),
        }
        self.archive_builders = {root: ArchiveBuilder(pm) for root, pm in self.path_managers.items()}

    def _call_progress_callback(self, message: Union[str, Dict[str, Any]]) -> None:
        if self.progress_callback:
            try:
                self.progress_callback(message)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    def _resolve_site(self, site_key: str) -> SiteConfig:
        site_config = self.site_configs.get(site_key)
        if site_config is None:
            raise UnsupportedSourceError(f"Site '{site_key}' is not configured")
        return site_config

    def _get_title(self, title_id: str) -> Title:
        title = self.record_store.get_title_by_id(title_id)
        if title is None:
            raise TitleNotFoundError(f"No title with id {title_id}")
        return title

    # Ingestion

    def import_titles(self, title_configs: List[TitleConfig]) -> Tuple[List[Title], int]:
        """Creates a Title for every configured entry whose URL is not stored yet. Returns (added, skipped)."""
        added = []
        skipped = 0
        for entry in title_configs:
            if self.record_store.get_title_by_url(entry.url) is not None:
                logger.debug(f"Title '{entry.name}' already tracked, skipping.")
                skipped += 1
                continue
            if entry.site not in self.site_configs:
                logger.warning(f"Title '{entry.name}' references unknown site '{entry.site}', skipping.")
                skipped += 1
                continue
            title = Title(
                name=entry.name,
                site=entry.site,
                url=entry.url,
                status=TitleStatus.ACTIVE if entry.active else TitleStatus.PAUSED,
            )
            added.append(self.record_store.create_title(title))
        return added, skipped

    # Discovery

    def scan_title(self, title_id: str) -> ScanResult:
        """
        Discovers the title's chapters and stores the ones not seen before as pending.

        A ScanRecord is written whatever happens: 'success', 'partial' when the
        page listed no chapters at all, 'failed' with the error when the fetcher
        failed. Fetcher errors are re-raised after being recorded.
        """
        title = self._get_title(title_id)
        started = time.monotonic()
        record = ScanRecord(title_id=title.id, site=title.site)

        def finish(status: ScanStatus, error: Optional[str] = None) -> None:
            record.status = status
            record.error_message = error
            record.duration_ms = int((time.monotonic() - started) * 1000)
            self.record_store.append_scan_record(record)

        self._call_progress_callback({"status": "info", "message": f"Scanning '{title.name}'..."})
        try:
            site_config = self._resolve_site(title.site)
            scanner = self.registry.get_scanner(site_config.scanner_type)
            discovered = scanner.discover_chapters(site_config, title)
        except (FetcherError, UnsupportedSourceError) as e:
            logger.error(f"Scan of '{title.name}' failed: {e}")
            finish(ScanStatus.FAILED, str(e))
            raise

        new_chapters: List[Chapter] = []
        try:
            for chapter in discovered:
                stored, created = self.record_store.create_or_get_chapter(chapter)
                if created:
                    logger.info(f"New chapter: {title.name} - {stored.name} ({format_chapter_number(stored.number)})")
                    new_chapters.append(stored)

            title.chapter_count = self.record_store.count_chapters(title.id)
            title.last_updated = utc_now()
            self.record_store.update_title(title)
        except RecordStoreError as e:
            try:
                finish(ScanStatus.FAILED, str(e))
            except RecordStoreError:
                logger.error(f"Could not record failed scan of '{title.name}'", exc_info=True)
            raise

        record.chapters_found = len(discovered)
        record.chapters_new = len(new_chapters)
        finish(ScanStatus.SUCCESS if discovered else ScanStatus.PARTIAL)
        logger.info(
            f"Scanned '{title.name}': {record.chapters_found} found, {record.chapters_new} new "
            f"({record.duration_ms} ms)"
        )
        self._call_progress_callback({
            "status": "info",
            "message": f"'{title.name}': {record.chapters_found} chapters, {record.chapters_new} new",
        })
        return ScanResult(record=record, new_chapters=new_chapters)

    def scan_all(self, query: Optional[str] = None) -> List[ScanResult]:
        """Scans every monitorable active title (optionally filtered by name); one failure never stops the rest."""
        titles = self.record_store.find_titles(query) if query else self.record_store.list_titles()
        results = []
        for title in titles:
            if title.status != TitleStatus.ACTIVE or not title.is_monitorable():
                continue
            try:
                results.append(self.scan_title(title.id))
            except (FetcherError, UnsupportedSourceError) as e:
                self._call_progress_callback({"status": "error", "message": f"'{title.name}': {e}"})
        return results

    # Download and archive

    def _claim(self, chapter: Chapter) -> Chapter:
        chapter.status = ChapterStatus.DOWNLOADING
        chapter.attempts += 1
        chapter.last_attempt_at = utc_now()
        return self.record_store.update_chapter(chapter)

    def _mark_failed(self, chapter: Chapter, error: str) -> Chapter:
        chapter.status = ChapterStatus.FAILED
        chapter.last_error = error
        return self.record_store.update_chapter(chapter)

    def _fetch_page(self, site_config: SiteConfig, page: Page, part_path: str) -> int:
        body = self.http_client.fetch_bytes(page.image_url, site_config)
        with open(part_path, 'wb') as f:
            f.write(body)
        return len(body)

    def _download_pages(self, site_config: SiteConfig, chapter: Chapter, pages: List[Page],
                        path_manager: PathManager) -> List[Page]:
        """
        Fetches page bodies on a bounded thread pool into .part files.
        Failed pages are logged and dropped; the survivors keep their
        original order and are renumbered 1..n as page_NNN.<ext>.
        """
        pages_dir = path_manager.get_pages_dir(chapter.title_name, chapter.number)
        if os.path.isdir(pages_dir):
            shutil.rmtree(pages_dir)
        os.makedirs(pages_dir, exist_ok=True)

        fetched: Dict[int, Tuple[Page, str, int]] = {}
        workers = max(1, self.settings.max_concurrent_downloads)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {}
            for page in pages:
                ext = PathManager.image_extension_from_url(page.image_url)
                part_path = os.path.join(pages_dir, f".page_{page.number:03d}.{ext}{PathManager.PART_SUFFIX}")
                futures[executor.submit(self._fetch_page, site_config, page, part_path)] = (page, part_path)

            for future in as_completed(futures):
                page, part_path = futures[future]
                try:
                    size = future.result()
                except (FetcherError, OSError) as e:
                    logger.warning(f"Failed to download page {page.number} of '{chapter.name}': {e}")
                    if os.path.exists(part_path):
                        os.remove(part_path)
                    continue
                fetched[page.number] = (page, part_path, size)

        downloaded_at = utc_now()
        stored_pages = []
        for new_number, original_number in enumerate(sorted(fetched), start=1):
            page, part_path, size = fetched[original_number]
            final_path = path_manager.get_page_filepath(
                chapter.title_name, chapter.number, new_number,
                ext=PathManager.image_extension_from_url(page.image_url),
            )
            os.replace(part_path, final_path)
            stored_pages.append(Page(
                chapter_id=chapter.id,
                number=new_number,
                image_url=page.image_url,
                local_path=final_path,
                file_size_bytes=size,
                downloaded_at=downloaded_at,
            ))
        return stored_pages

    def download_chapter(self, chapter_id: str, root: str = SCANS_ROOT, force: bool = False) -> Chapter:
        """
        Claims the chapter, extracts and downloads its pages, archives them
        and records the outcome. Returns the updated chapter.

        Raises the fetcher error (chapter marked failed) when extraction fails,
        ChapterDownloadError when no page could be fetched and ArchiveError
        when the archive cannot be written.
        """
        chapter = self.record_store.get_chapter_by_id(chapter_id)
        if chapter is None:
            raise ChapterNotFoundError(f"No chapter with id {chapter_id}")
        if chapter.status in (ChapterStatus.DOWNLOADED, ChapterStatus.DELETED) and not force:
            logger.info(f"Chapter '{chapter.name}' is {chapter.status.value}, skipping.")
            return chapter

        title = self._get_title(chapter.title_id)
        site_config = self._resolve_site(title.site)
        path_manager = self.path_managers[root]

        self._claim(chapter)
        self._call_progress_callback({
            "status": "info",
            "message": f"Downloading {chapter.title_name} - {chapter.name} (attempt {chapter.attempts})",
        })

        try:
            downloader = self.registry.get_downloader(site_config.downloader_type)
            pages = downloader.extract_pages(site_config, chapter.url, chapter.id)
        except (FetcherError, UnsupportedSourceError) as e:
            logger.error(f"Page extraction failed for '{chapter.name}': {e}")
            self._mark_failed(chapter, str(e))
            raise

        try:
            stored_pages = self._download_pages(site_config, chapter, pages, path_manager)
        except OSError as e:
            self._mark_failed(chapter, str(e))
            raise ArchiveError(f"Could not write pages of '{chapter.name}': {e}") from e

        if not stored_pages:
            message = f"All {len(pages)} page downloads failed"
            logger.error(f"{message} for '{chapter.name}'")
            self._mark_failed(chapter, message)
            raise ChapterDownloadError(message, pages_attempted=len(pages))

        if len(stored_pages) < len(pages):
            logger.warning(f"'{chapter.name}': {len(pages) - len(stored_pages)} of {len(pages)} pages dropped")

        self.record_store.replace_pages(chapter.id, stored_pages)
        try:
            archive_path = self.archive_builders[root].create_chapter_archive(chapter.title_name, chapter.number)
        except ArchiveError as e:
            self._mark_failed(chapter, str(e))
            raise

        chapter.status = ChapterStatus.DOWNLOADED
        chapter.page_count = len(stored_pages)
        chapter.file_size_bytes = sum(page.file_size_bytes or 0 for page in stored_pages)
        chapter.downloaded_at = utc_now()
        chapter.last_error = None
        self.record_store.update_chapter(chapter)

        logger.info(f"Downloaded '{chapter.title_name} - {chapter.name}': {chapter.page_count} pages -> {archive_path}")
        self._call_progress_callback({
            "status": "success",
            "message": f"{chapter.title_name} - {chapter.name}: {chapter.page_count} pages",
        })
        return chapter

    def _try_download(self, chapter: Chapter, root: str = SCANS_ROOT) -> bool:
        try:
            self.download_chapter(chapter.id, root=root)
            return True
        except (FetcherError, UnsupportedSourceError, ChapterDownloadError, ArchiveError) as e:
            logger.warning(f"Failed to download {chapter.title_name} - {chapter.name}: {e}")
            self._call_progress_callback({"status": "error", "message": f"{chapter.name}: {e}"})
            return False

    def download_pending(self, title_id: Optional[str] = None) -> Tuple[int, int]:
        """Downloads every pending chapter (of one title or all active titles). Returns (downloaded, failed)."""
        titles = [self._get_title(title_id)] if title_id else self.record_store.list_titles(TitleStatus.ACTIVE)
        downloaded = failed = 0
        for title in titles:
            for chapter in self.record_store.list_chapters_by_title(title.id, ChapterStatus.PENDING):
                if self._try_download(chapter):
                    downloaded += 1
                else:
                    failed += 1
        return downloaded, failed

    # Monitoring

    def retry_due_at(self, chapter: Chapter) -> Optional[datetime.datetime]:
        """When a failed chapter may be retried next, or None once attempts are exhausted."""
        if chapter.attempts >= self.settings.max_download_attempts:
            return None
        if chapter.last_attempt_at is None or chapter.attempts == 0:
            return chapter.created_at
        delay = self.settings.retry_base_delay_seconds * (2 ** (chapter.attempts - 1))
        return chapter.last_attempt_at + datetime.timedelta(seconds=delay)

    def run_monitor_cycle(self, now: Optional[datetime.datetime] = None) -> MonitorSummary:
        """
        One pass over every title: scan, download what is new, then retry
        failed chapters whose backoff has elapsed. Downloads left claimed for
        longer than stale_claim_minutes count as failed attempts. Per-title
        fetcher failures are logged and the cycle moves on.
        """
        summary = MonitorSummary()
        logger.info("Starting monitoring cycle...")

        for title in self.record_store.list_titles():
            if not title.is_monitorable():
                logger.debug(f"Skipping placeholder/invalid title '{title.name}' (URL: {title.url})")
                summary.titles_skipped += 1
                continue
            if title.status != TitleStatus.ACTIVE:
                logger.debug(f"Skipping {title.status.value} title '{title.name}'")
                summary.titles_skipped += 1
                continue

            try:
                result = self.scan_title(title.id)
            except (FetcherError, UnsupportedSourceError) as e:
                logger.warning(f"Skipping '{title.name}' this cycle: {e}")
                summary.titles_scanned += 1
                continue
            summary.titles_scanned += 1
            summary.new_chapters_found += len(result.new_chapters)

            for chapter in result.new_chapters:
                if self._try_download(chapter):
                    summary.chapters_downloaded += 1
                else:
                    summary.failed_downloads += 1

            self._retry_failed(title, summary, now)

        logger.info(
            f"Monitoring cycle complete: {summary.titles_scanned} titles scanned, "
            f"{summary.new_chapters_found} new chapters, {summary.chapters_downloaded} downloaded, "
            f"{summary.failed_downloads} failed, {summary.retries_skipped} retries deferred"
        )
        return summary

    def _release_stale_claims(self, title: Title, now: datetime.datetime) -> None:
        """Chapters stuck in 'downloading' past the claim timeout were interrupted; mark them failed."""
        cutoff = now - datetime.timedelta(minutes=self.settings.stale_claim_minutes)
        for chapter in self.record_store.list_chapters_by_title(title.id, ChapterStatus.DOWNLOADING):
            if chapter.last_attempt_at is not None and chapter.last_attempt_at > cutoff:
                continue
            logger.warning(f"Releasing interrupted download of '{chapter.name}' (attempt {chapter.attempts})")
            self._mark_failed(chapter, "Download interrupted")

    def _retry_failed(self, title: Title, summary: MonitorSummary, now: Optional[datetime.datetime]) -> None:
        now = now or utc_now()
        self._release_stale_claims(title, now)
        for chapter in self.record_store.list_chapters_by_title(title.id, ChapterStatus.FAILED):
            due_at = self.retry_due_at(chapter)
            if due_at is None:
                logger.debug(f"'{chapter.name}' reached {chapter.attempts} attempts, not retrying")
                summary.retries_skipped += 1
                continue
            if now < due_at:
                logger.debug(f"'{chapter.name}' backing off until {due_at.isoformat()}")
                summary.retries_skipped += 1
                continue
            logger.info(f"Retrying failed chapter '{chapter.name}' (attempt {chapter.attempts + 1})")
            if self._try_download(chapter):
                summary.chapters_downloaded += 1
            else:
                summary.failed_downloads += 1

    # Catalog check

    def check_catalogs(self, site_key: Optional[str] = None) -> List[CatalogCheckResult]:
        """Lists the first catalog page of each site and starts tracking titles not seen before."""
        keys = [site_key] if site_key else sorted(self.site_configs)
        results = []
        for key in keys:
            site_config = self._resolve_site(key)
            result = CatalogCheckResult(site=key)
            try:
                catalog_fetcher = self.registry.get_catalog_fetcher(site_config.catalog_type)
                entries = catalog_fetcher.list_catalog(site_config)
            except (FetcherError, UnsupportedSourceError) as e:
                logger.warning(f"Catalog check of '{key}' failed: {e}")
                result.error = str(e)
                results.append(result)
                continue

            result.entries_found = len(entries)
            for entry in entries:
                if self.record_store.get_title_by_url(entry.url) is not None:
                    continue
                title = Title(name=entry.title, site=key, url=entry.url, cover_url=entry.cover_url)
                result.new_titles.append(self.record_store.create_title(title))
            logger.info(f"Catalog '{key}': {result.entries_found} entries, {len(result.new_titles)} new titles")
            results.append(result)
        return results

    def download_all_chapters(self, title_id: str) -> Tuple[int, int]:
        """Scans a title and downloads every chapter it has not downloaded yet."""
        self.scan_title(title_id)
        return self.download_pending(title_id)

    # Manual download

    def _get_placeholder_title(self, site_config: SiteConfig) -> Title:
        url = f"{PLACEHOLDER_URL_PREFIX}{site_config.key}"
        title = self.record_store.get_title_by_url(url)
        if title is None:
            title = self.record_store.create_title(
                Title(name=f"{site_config.name} (manual)", site=site_config.key, url=url)
            )
        return title

    def download_by_url(self, site_key: str, chapter_url: str) -> Chapter:
        """Downloads a single chapter into the downloads tree, outside monitoring."""
        site_config = self._resolve_site(site_key)
        chapter = self.record_store.get_chapter_by_url(chapter_url)
        if chapter is None:
            title = self._get_placeholder_title(site_config)
            number = chapter_number_from_url(chapter_url)
            if number is None:
                number = float(int(self.record_store.max_chapter_number(title.id) or 0) + 1)
            chapter = Chapter(
                title_id=title.id,
                title_name=title.name,
                name=f"Chapter {format_chapter_number(number)}",
                number=number,
                url=chapter_url,
            )
            chapter, created = self.record_store.create_or_get_chapter(chapter)
            if not created and chapter.url != chapter_url:
                # Same number already used by another manual URL.
                number = float(int(self.record_store.max_chapter_number(title.id) or 0) + 1)
                chapter = Chapter(
                    title_id=title.id,
                    title_name=title.name,
                    name=f"Chapter {format_chapter_number(number)}",
                    number=number,
                    url=chapter_url,
                )
                chapter, _ = self.record_store.create_or_get_chapter(chapter)
        return self.download_chapter(chapter.id, root=DOWNLOADS_ROOT, force=True)

    # Cleanup

    def cleanup_downloads(self, days: int, now: Optional[datetime.datetime] = None) -> int:
        """Removes chapters downloaded more than `days` ago from disk and marks them deleted."""
        cutoff = (now or utc_now()) - datetime.timedelta(days=days)
        old_chapters = self.record_store.list_chapters_downloaded_before(cutoff)
        for chapter in old_chapters:
            logger.info(f"Cleaning up chapter: {chapter.title_name} - {chapter.name}")
            for builder in self.archive_builders.values():
                builder.remove_chapter(chapter.title_name, chapter.number)
            self.record_store.mark_chapter_deleted(chapter.id)
        logger.info(f"Cleanup completed. Removed {len(old_chapters)} old chapters")
        return len(old_chapters)
