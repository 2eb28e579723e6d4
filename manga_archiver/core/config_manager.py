import configparser
import os
from dataclasses import dataclass
from typing import Dict, List, Optional

from manga_archiver.core.exceptions import ConfigError
from manga_archiver.core.models import SelectorsConfig, SiteConfig
from manga_archiver.utils.filename_sanitizer import generate_slug
from manga_archiver.utils.logger import get_logger

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(os.path.dirname(SCRIPT_DIR))
DEFAULT_WORKSPACE_PATH = os.path.join(PROJECT_ROOT, 'workspace')
WORKSPACE_ENV_VAR = 'MA_WORKSPACE_ROOT'
CONFIG_DIR_NAME = 'config'
CONFIG_FILENAME = 'settings.ini'

SITE_SECTION_PREFIX = 'site:'
TITLE_SECTION_PREFIX = 'title:'
SELECTOR_OPTION_PREFIX = 'selector_'
SELECTOR_FIELDS = ('manga_list', 'chapter_list', 'chapter_title', 'chapter_url',
                   'image_container', 'image_url', 'next_page')

DEFAULT_BROWSER_USER_AGENT = ('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
                              '(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36')

logger = get_logger(__name__)


def resolve_workspace_root() -> str:
    """MA_WORKSPACE_ROOT if set, otherwise <project>/workspace."""
    env_workspace_path = os.getenv(WORKSPACE_ENV_VAR)
    if env_workspace_path:
        return os.path.abspath(env_workspace_path)
    return DEFAULT_WORKSPACE_PATH


def default_config_path() -> str:
    return os.path.join(resolve_workspace_root(), CONFIG_DIR_NAME, CONFIG_FILENAME)


@dataclass
class ScannerSettings:
    interval_minutes: int = 10
    max_concurrent_downloads: int = 4
    max_download_attempts: int = 5
    retry_base_delay_seconds: int = 600
    stale_claim_minutes: int = 60
    connect_timeout: float = 10.0
    read_timeout: float = 30.0


@dataclass
class TitleConfig:
    key: str
    name: str
    site: str
    url: str
    active: bool = True


def build_default_config(workspace_path: str) -> configparser.ConfigParser:
    defaults = ScannerSettings()
    config = configparser.ConfigParser(interpolation=None)
    config['General'] = {'workspace_path': workspace_path}
    config['Database'] = {'path': os.path.join('data', 'archiver.db')}
    config['Storage'] = {'base_path': 'downloads', 'scans_path': 'scans'}
    config['Scanner'] = {
        'interval_minutes': str(defaults.interval_minutes),
        'max_concurrent_downloads': str(defaults.max_concurrent_downloads),
        'max_download_attempts': str(defaults.max_download_attempts),
        'retry_base_delay_seconds': str(defaults.retry_base_delay_seconds),
        'stale_claim_minutes': str(defaults.stale_claim_minutes),
        'connect_timeout': str(defaults.connect_timeout),
        'read_timeout': str(defaults.read_timeout),
    }
    config[f'{SITE_SECTION_PREFIX}eros'] = {
        'name': 'Eros Moon',
        'base_url': 'https://eros-moon.xyz',
        'scanner_type': 'eros',
        'downloader_type': 'eros',
        'catalog_type': 'eros',
        'rate_limit_ms': '1500',
        'user_agent': DEFAULT_BROWSER_USER_AGENT,
        'selector_chapter_list': '#chapterlist li',
        'selector_chapter_title': '.chapternum',
        'selector_chapter_url': '.eph-num a',
    }
    return config


def parse_headers(raw: Optional[str]) -> Dict[str, str]:
    """One 'Name: value' pair per line; blank and malformed lines are ignored."""
    headers: Dict[str, str] = {}
    for line in (raw or '').splitlines():
        if ':' not in line:
            continue
        name, value = line.split(':', 1)
        if name.strip():
            headers[name.strip()] = value.strip()
    return headers


class ConfigManager:
    def __init__(self, config_file_path: Optional[str] = None):
        self.config_file_path = config_file_path or default_config_path()
        self.config = configparser.ConfigParser(interpolation=None)
        self._load_config()

    def _load_config(self):
        """Loads the configuration from the INI file, writing a default one if it is missing."""
        if not os.path.exists(self.config_file_path):
            logger.warning(f"Config file not found at {self.config_file_path}. Creating a default config.")
            self.config = build_default_config(resolve_workspace_root())
            try:
                os.makedirs(os.path.dirname(os.path.abspath(self.config_file_path)), exist_ok=True)
                self.save()
                logger.info(f"Created a default config file at: {self.config_file_path}")
            except OSError as e:
                logger.error(f"Error creating default config file: {e}. Using in-memory defaults.", exc_info=True)
            return

        try:
            self.config.read(self.config_file_path, encoding='utf-8')
        except configparser.Error as e:
            raise ConfigError(f"Could not parse {self.config_file_path}: {e}") from e

        # Fill sections an older or hand-written config may lack; sites and titles are left alone.
        defaults = build_default_config(resolve_workspace_root())
        for section in ('General', 'Database', 'Storage', 'Scanner'):
            if not self.config.has_section(section):
                self.config[section] = dict(defaults[section])
                logger.info(f"Added missing [{section}] section to the config.")

    def save(self) -> None:
        with open(self.config_file_path, 'w', encoding='utf-8') as configfile:
            self.config.write(configfile)

    def get_workspace_path(self) -> str:
        """
        Returns the workspace path.
        Priority:
        1. MA_WORKSPACE_ROOT environment variable.
        2. Path from config file (settings.ini).
        3. Default workspace path.
        """
        env_workspace_path = os.getenv(WORKSPACE_ENV_VAR)
        if env_workspace_path:
            logger.debug(f"Using workspace path from {WORKSPACE_ENV_VAR}: {env_workspace_path}")
            return os.path.abspath(env_workspace_path)

        path_from_config = self.config.get('General', 'workspace_path', fallback=DEFAULT_WORKSPACE_PATH)
        if not os.path.isabs(path_from_config):
            return os.path.abspath(os.path.join(PROJECT_ROOT, path_from_config))
        return os.path.abspath(path_from_config)

    def _workspace_relative(self, path: str) -> str:
        if os.path.isabs(path):
            return path
        return os.path.join(self.get_workspace_path(), path)

    def get_setting(self, section: str, option: str, fallback=None) -> Optional[str]:
        """Gets a specific setting from the configuration."""
        try:
            return self.config.get(section, option, fallback=fallback)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return fallback

    def get_database_path(self) -> str:
        return self._workspace_relative(self.get_setting('Database', 'path', os.path.join('data', 'archiver.db')))

    def get_base_path(self) -> str:
        """Archive root for manual downloads."""
        return self._workspace_relative(self.get_setting('Storage', 'base_path', 'downloads'))

    def get_scans_path(self) -> str:
        """Archive root for monitored downloads."""
        return self._workspace_relative(self.get_setting('Storage', 'scans_path', 'scans'))

    def get_scanner_settings(self) -> ScannerSettings:
        defaults = ScannerSettings()
        section = 'Scanner'
        try:
            return ScannerSettings(
                interval_minutes=self.config.getint(section, 'interval_minutes', fallback=defaults.interval_minutes),
                max_concurrent_downloads=self.config.getint(
                    section, 'max_concurrent_downloads', fallback=defaults.max_concurrent_downloads),
                max_download_attempts=self.config.getint(
                    section, 'max_download_attempts', fallback=defaults.max_download_attempts),
                retry_base_delay_seconds=self.config.getint(
                    section, 'retry_base_delay_seconds', fallback=defaults.retry_base_delay_seconds),
                stale_claim_minutes=self.config.getint(
                    section, 'stale_claim_minutes', fallback=defaults.stale_claim_minutes),
                connect_timeout=self.config.getfloat(section, 'connect_timeout', fallback=defaults.connect_timeout),
                read_timeout=self.config.getfloat(section, 'read_timeout', fallback=defaults.read_timeout),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid value in [Scanner]: {e}") from e

    def _site_from_section(self, section_name: str) -> SiteConfig:
        section = self.config[section_name]
        key = section_name[len(SITE_SECTION_PREFIX):]
        missing = [opt for opt in ('base_url', 'scanner_type', 'downloader_type') if not section.get(opt)]
        if missing:
            raise ConfigError(f"[{section_name}] is missing: {', '.join(missing)}")
        try:
            rate_limit_ms = section.getint('rate_limit_ms', fallback=1000)
        except ValueError as e:
            raise ConfigError(f"Invalid rate_limit_ms in [{section_name}]: {e}") from e

        selectors = SelectorsConfig(**{
            name: section.get(f'{SELECTOR_OPTION_PREFIX}{name}') or None for name in SELECTOR_FIELDS
        })
        return SiteConfig(
            key=key,
            name=section.get('name', key),
            base_url=section['base_url'].rstrip('/'),
            scanner_type=section['scanner_type'],
            downloader_type=section['downloader_type'],
            catalog_type=section.get('catalog_type') or None,
            rate_limit_ms=rate_limit_ms,
            user_agent=section.get('user_agent') or None,
            headers=parse_headers(section.get('headers')),
            selectors=selectors,
        )

    def get_site_configs(self) -> Dict[str, SiteConfig]:
        return {
            section[len(SITE_SECTION_PREFIX):]: self._site_from_section(section)
            for section in self.config.sections()
            if section.startswith(SITE_SECTION_PREFIX)
        }

    def get_site_config(self, key: str) -> Optional[SiteConfig]:
        section = f'{SITE_SECTION_PREFIX}{key}'
        if not self.config.has_section(section):
            return None
        return self._site_from_section(section)

    def get_title_configs(self) -> List[TitleConfig]:
        titles = []
        for section_name in self.config.sections():
            if not section_name.startswith(TITLE_SECTION_PREFIX):
                continue
            section = self.config[section_name]
            if not section.get('url') or not section.get('site'):
                logger.warning(f"Skipping [{section_name}]: 'url' and 'site' are required.")
                continue
            titles.append(TitleConfig(
                key=section_name[len(TITLE_SECTION_PREFIX):],
                name=section.get('name', section_name[len(TITLE_SECTION_PREFIX):]),
                site=section['site'],
                url=section['url'],
                active=section.getboolean('active', fallback=True),
            ))
        return titles

    def add_title_config(self, name: str, site: str, url: str, active: bool = True, save: bool = True) -> bool:
        """Adds a [title:<slug>] section. Returns False when the URL is already configured."""
        if any(title.url == url for title in self.get_title_configs()):
            return False

        base_key = generate_slug(name) or 'title'
        key = base_key
        suffix = 2
        while self.config.has_section(f'{TITLE_SECTION_PREFIX}{key}'):
            key = f'{base_key}-{suffix}'
            suffix += 1

        self.config[f'{TITLE_SECTION_PREFIX}{key}'] = {
            'name': name,
            'site': site,
            'url': url,
            'active': 'true' if active else 'false',
        }
        if save:
            self.save()
        logger.info(f"Added [{TITLE_SECTION_PREFIX}{key}] to {self.config_file_path}")
        return True
