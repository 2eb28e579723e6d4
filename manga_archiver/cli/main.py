import click
from typing import Optional

from manga_archiver.cli.handlers import (
    check_handler,
    cleanup_handler,
    download_handler,
    init_handler,
    monitor_handler,
    scan_handler,
    status_handler,
)


@click.group()
@click.option('--config', 'config_path', default=None, type=click.Path(dir_okay=False),
              help='Path to settings.ini. Defaults to <workspace>/config/settings.ini.')
@click.option('--verbose', '-v', is_flag=True, default=False, help='Enable debug logging and progress output.')
@click.pass_context
def archiver(ctx: click.Context, config_path: Optional[str], verbose: bool):
    """Monitors manga sites for new chapters and archives them locally."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['verbose'] = verbose


@archiver.command()
@click.pass_context
def init(ctx: click.Context):
    """Initializes the database and loads titles from the config."""
    init_handler(config_path=ctx.obj['config_path'], verbose=ctx.obj['verbose'])


@archiver.command()
@click.argument('title', required=False, default=None)
@click.option('--new', '-n', 'new_only', is_flag=True, default=False, help='Only report titles with new chapters.')
@click.option('--download', '-d', is_flag=True, default=False, help='Download every pending chapter after scanning.')
@click.pass_context
def scan(ctx: click.Context, title: Optional[str], new_only: bool, download: bool):
    """
    Scans tracked titles for new chapters.

    If TITLE (an id or part of a name) is given, only matching titles are scanned.
    """
    scan_handler(
        config_path=ctx.obj['config_path'],
        verbose=ctx.obj['verbose'],
        title_query=title,
        new_only=new_only,
        download=download,
    )


@archiver.command()
@click.argument('site')
@click.argument('chapter_url')
@click.pass_context
def download(ctx: click.Context, site: str, chapter_url: str):
    """Downloads a single chapter from SITE into the downloads directory."""
    download_handler(config_path=ctx.obj['config_path'], verbose=ctx.obj['verbose'],
                     site=site, chapter_url=chapter_url)


@archiver.command()
@click.option('--loop', is_flag=True, default=False, help='Keep running, one cycle every interval.')
@click.option('--interval', default=None, type=click.IntRange(min=1),
              help='Minutes between cycles with --loop. Defaults to [Scanner] interval_minutes.')
@click.pass_context
def monitor(ctx: click.Context, loop: bool, interval: Optional[int]):
    """Scans every active title, downloads new chapters and retries failed ones."""
    monitor_handler(config_path=ctx.obj['config_path'], verbose=ctx.obj['verbose'], loop=loop, interval=interval)


@archiver.command()
@click.argument('site', required=False, default=None)
@click.option('--download', '-d', is_flag=True, default=False, help='Download all chapters of newly found titles.')
@click.option('--cfg', 'add_to_config', is_flag=True, default=False, help='Add newly found titles to settings.ini.')
@click.pass_context
def check(ctx: click.Context, site: Optional[str], download: bool, add_to_config: bool):
    """
    Checks the first catalog page of SITE (or 'all' sites) and tracks new titles.
    """
    check_handler(
        config_path=ctx.obj['config_path'],
        verbose=ctx.obj['verbose'],
        site=site,
        download=download,
        add_to_config=add_to_config,
    )


@archiver.command()
@click.pass_context
def status(ctx: click.Context):
    """Shows the tracked titles and their chapter counts."""
    status_handler(config_path=ctx.obj['config_path'], verbose=ctx.obj['verbose'])


@archiver.command()
@click.argument('days', required=False, default=30, type=click.IntRange(min=0))
@click.pass_context
def cleanup(ctx: click.Context, days: int):
    """Deletes chapters downloaded more than DAYS (default 30) days ago."""
    cleanup_handler(config_path=ctx.obj['config_path'], verbose=ctx.obj['verbose'], days=days)


if __name__ == '__main__':
    archiver()
