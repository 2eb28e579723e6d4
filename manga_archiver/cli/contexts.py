from typing import Optional

from manga_archiver.core.config_manager import ConfigManager
from manga_archiver.core.fetchers.fetcher_registry import FetcherRegistry
from manga_archiver.core.http_client import HttpClient
from manga_archiver.core.orchestrator import AcquisitionOrchestrator, ProgressCallback
from manga_archiver.core.storage.record_store import RecordStore
from manga_archiver.utils.logger import configure_app_logging, get_logger

logger = get_logger(__name__)


class AppContext:
    """
    Wires config, logging, record store, HTTP client and fetcher registry
    for one CLI invocation. Use as a context manager so the store and the
    HTTP session are closed on exit.
    """

    def __init__(self, config_path: Optional[str] = None, verbose: bool = False):
        self.config_manager = ConfigManager(config_path)
        self.workspace_root: str = self.config_manager.get_workspace_path()
        configure_app_logging(self.workspace_root, verbose)

        self.error_messages: list = []
        self.settings = self.config_manager.get_scanner_settings()
        self.site_configs = self.config_manager.get_site_configs()
        if not self.site_configs:
            self.error_messages.append(
                f"Warning: no [site:<key>] sections in {self.config_manager.config_file_path}."
            )

        self.record_store = RecordStore(self.config_manager.get_database_path())
        self.record_store.init_schema()
        self.http_client = HttpClient(
            connect_timeout=self.settings.connect_timeout,
            read_timeout=self.settings.read_timeout,
        )
        self.registry = FetcherRegistry(self.http_client)
        logger.debug(f"Workspace: {self.workspace_root}, sites: {', '.join(sorted(self.site_configs)) or 'none'}")

    def build_orchestrator(self, progress_callback: Optional[ProgressCallback] = None) -> AcquisitionOrchestrator:
        return AcquisitionOrchestrator(
            record_store=self.record_store,
            registry=self.registry,
            site_configs=self.site_configs,
            http_client=self.http_client,
            scans_path=self.config_manager.get_scans_path(),
            downloads_path=self.config_manager.get_base_path(),
            settings=self.settings,
            progress_callback=progress_callback,
        )

    def close(self) -> None:
        self.http_client.close()
        self.record_store.close()

    def __enter__(self) -> 'AppContext':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
