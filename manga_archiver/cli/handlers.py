import sys
import time
from typing import Any, Dict, List, Optional, Union

import click

from manga_archiver.core.exceptions import ArchiverError, ConfigError, RecordStoreError
from manga_archiver.core.fetchers.exceptions import FetcherError, UnsupportedSourceError
from manga_archiver.core.models import ScanStatus
from manga_archiver.utils.filename_sanitizer import format_chapter_number
from manga_archiver.utils.logger import get_logger
from .contexts import AppContext

logger = get_logger(__name__)

STATUS_COLORS = {
    "info": None,
    "success": "green",
    "warning": "yellow",
    "error": "red",
}


def display_progress(message: Union[str, Dict[str, Any]]) -> None:
    if isinstance(message, dict):
        status = message.get("status", "info")
        msg = message.get("message", "No message content.")
        click.echo(click.style(f"[{status.upper()}] {msg}", fg=STATUS_COLORS.get(status)))
    else:
        click.echo(str(message))


def _fail(message: str) -> None:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


def _open_context(config_path: Optional[str], verbose: bool) -> AppContext:
    try:
        context = AppContext(config_path=config_path, verbose=verbose)
    except (ConfigError, RecordStoreError) as e:
        logger.error(f"Failed to initialize application context: {e}")
        _fail(str(e))
    for msg in context.error_messages:
        click.echo(click.style(msg, fg="yellow"), err=True)
    return context


def init_handler(config_path: Optional[str], verbose: bool):
    """Creates the database schema and starts tracking every title listed in the config."""
    with _open_context(config_path, verbose) as context:
        orchestrator = context.build_orchestrator(display_progress)
        try:
            added, skipped = orchestrator.import_titles(context.config_manager.get_title_configs())
        except RecordStoreError as e:
            _fail(f"Could not import titles: {e}")
        for title in added:
            click.echo(f"Added '{title.name}' ({title.site})")
        click.echo(click.style(
            f"✓ Initialized workspace at {context.workspace_root}: {len(added)} titles added, {skipped} skipped.",
            fg="green",
        ))


def scan_handler(config_path: Optional[str], verbose: bool, title_query: Optional[str], new_only: bool,
                 download: bool):
    with _open_context(config_path, verbose) as context:
        orchestrator = context.build_orchestrator(display_progress if verbose else None)
        store = context.record_store
        try:
            if title_query:
                title = store.get_title_by_id(title_query)
                titles = [title] if title else store.find_titles(title_query)
                if not titles:
                    _fail(f"No tracked title matches '{title_query}'.")
                results = []
                for title in titles:
                    try:
                        results.append(orchestrator.scan_title(title.id))
                    except (FetcherError, UnsupportedSourceError) as e:
                        _fail(f"Scan of '{title.name}' failed: {e}")
            else:
                results = orchestrator.scan_all()
        except RecordStoreError as e:
            _fail(str(e))

        for result in results:
            title = store.get_title_by_id(result.record.title_id)
            if new_only and not result.new_chapters:
                continue
            color = "yellow" if result.record.status == ScanStatus.PARTIAL else None
            click.echo(click.style(
                f"{title.name}: {result.record.chapters_found} chapters, {result.record.chapters_new} new",
                fg=color,
            ))
            for chapter in result.new_chapters:
                click.echo(f"  + {chapter.name} ({format_chapter_number(chapter.number)})")

        if download:
            downloaded, failed = orchestrator.download_pending()
            click.echo(click.style(f"✓ Downloaded {downloaded} chapters, {failed} failed.",
                                   fg="green" if not failed else "yellow"))


def download_handler(config_path: Optional[str], verbose: bool, site: str, chapter_url: str):
    with _open_context(config_path, verbose) as context:
        if site not in context.site_configs:
            _fail(f"Site '{site}' not supported. Configured sites: {', '.join(sorted(context.site_configs)) or 'none'}")
        orchestrator = context.build_orchestrator(display_progress)
        try:
            chapter = orchestrator.download_by_url(site, chapter_url)
        except ArchiverError as e:
            logger.error(f"Manual download of {chapter_url} failed: {e}")
            _fail(f"Failed to download chapter: {e}")
        click.echo(click.style(
            f"✓ Successfully downloaded {chapter.page_count} pages from {site} into {context.config_manager.get_base_path()}",
            fg="green",
        ))


def _print_summary(summary) -> None:
    click.echo(
        f"Titles scanned: {summary.titles_scanned} (skipped {summary.titles_skipped}) | "
        f"new chapters: {summary.new_chapters_found} | downloaded: {summary.chapters_downloaded} | "
        f"failed: {summary.failed_downloads} | retries deferred: {summary.retries_skipped}"
    )


def monitor_handler(config_path: Optional[str], verbose: bool, loop: bool, interval: Optional[int]):
    with _open_context(config_path, verbose) as context:
        orchestrator = context.build_orchestrator(display_progress if verbose else None)
        interval_minutes = interval or context.settings.interval_minutes

        while True:
            try:
                summary = orchestrator.run_monitor_cycle()
                _print_summary(summary)
            except RecordStoreError as e:
                if not loop:
                    _fail(str(e))
                logger.error(f"Monitoring cycle aborted: {e}", exc_info=True)
                click.echo(click.style(f"Monitoring cycle aborted: {e}", fg="red"), err=True)

            if not loop:
                break
            click.echo(f"Next cycle in {interval_minutes} minutes. Press Ctrl+C to stop.")
            try:
                time.sleep(interval_minutes * 60)
            except KeyboardInterrupt:
                click.echo("Monitoring stopped.")
                break


def check_handler(config_path: Optional[str], verbose: bool, site: Optional[str], download: bool,
                  add_to_config: bool):
    with _open_context(config_path, verbose) as context:
        site_key = None if not site or site.lower() == 'all' else site
        if site_key and site_key not in context.site_configs:
            _fail(f"Site '{site_key}' not supported. Configured sites: {', '.join(sorted(context.site_configs)) or 'none'}")

        orchestrator = context.build_orchestrator(display_progress if verbose else None)
        try:
            results = orchestrator.check_catalogs(site_key)
        except RecordStoreError as e:
            _fail(str(e))

        added_to_config = 0
        for result in results:
            if result.error:
                click.echo(click.style(f"{result.site}: {result.error}", fg="yellow"), err=True)
                continue
            click.echo(f"{result.site}: {result.entries_found} titles on first page, {len(result.new_titles)} new")
            for title in result.new_titles:
                click.echo(f"  + {title.name} ({title.url})")
                if add_to_config and context.config_manager.add_title_config(
                        title.name, title.site, title.url, save=False):
                    added_to_config += 1

        if add_to_config and added_to_config:
            context.config_manager.save()
            click.echo(f"Added {added_to_config} titles to {context.config_manager.config_file_path}")

        if download:
            _download_new_titles(orchestrator, [title for result in results for title in result.new_titles])


def _download_new_titles(orchestrator, titles: List) -> None:
    for title in titles:
        try:
            downloaded, failed = orchestrator.download_all_chapters(title.id)
        except (FetcherError, UnsupportedSourceError) as e:
            click.echo(click.style(f"  {title.name}: scan failed: {e}", fg="yellow"), err=True)
            continue
        click.echo(f"  {title.name}: downloaded {downloaded} chapters, {failed} failed")


def status_handler(config_path: Optional[str], verbose: bool):
    with _open_context(config_path, verbose) as context:
        titles = context.record_store.list_titles()
        if not titles:
            click.echo("No titles tracked yet. Run 'init' or 'check' first.")
            return

        click.echo("Monitored titles:")
        click.echo(f"{'Title':<40} {'Chapters':<10} {'Last Update':<12} {'Status':<10}")
        click.echo("-" * 75)
        for title in titles:
            click.echo(
                f"{title.name[:40]:<40} {title.chapter_count:<10} "
                f"{title.last_updated.strftime('%Y-%m-%d'):<12} {title.status.value:<10}"
            )

        stats = context.record_store.stats()
        if stats:
            click.echo("")
            click.echo("Chapters by status: " + ", ".join(f"{status}={count}" for status, count in sorted(stats.items())))


def cleanup_handler(config_path: Optional[str], verbose: bool, days: int):
    with _open_context(config_path, verbose) as context:
        orchestrator = context.build_orchestrator()
        try:
            removed = orchestrator.cleanup_downloads(days)
        except ArchiverError as e:
            _fail(f"Cleanup failed: {e}")
        click.echo(click.style(f"✓ Removed {removed} chapters downloaded more than {days} days ago.", fg="green"))
