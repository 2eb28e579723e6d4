import os
import shutil
import tempfile
from unittest.mock import MagicMock

import pytest

from manga_archiver.core.models import SiteConfig
from manga_archiver.core.storage.record_store import RecordStore


@pytest.fixture(autouse=True)
def isolated_workspace(monkeypatch):
    """Isolate the workspace for each test."""
    temp_dir = tempfile.mkdtemp()
    monkeypatch.setenv("MA_WORKSPACE_ROOT", temp_dir)
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def record_store(isolated_workspace):
    store = RecordStore(os.path.join(isolated_workspace, "data", "test.db"))
    store.init_schema()
    yield store
    store.close()


@pytest.fixture
def eros_site():
    return SiteConfig(
        key="eros",
        name="Eros Moon",
        base_url="https://eros-moon.xyz",
        scanner_type="eros",
        downloader_type="eros",
        rate_limit_ms=0,
    )


@pytest.fixture
def madara_site():
    return SiteConfig(
        key="thunder",
        name="Thunder Scans",
        base_url="https://thunder.example",
        scanner_type="thunder",
        downloader_type="madara",
        rate_limit_ms=0,
    )


@pytest.fixture
def mock_http_client():
    """HttpClient double; tests set fetch_text / fetch_bytes behaviour."""
    return MagicMock()
