import datetime
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

# Two chapter numbers closer than this are the same chapter.
CHAPTER_NUMBER_EPSILON = 0.001

PLACEHOLDER_URL_PREFIX = "manual:"


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class TitleStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class ChapterStatus(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    FAILED = "failed"
    DELETED = "deleted"


class ScanStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class Title:
    name: str
    site: str  # key of a [site:<key>] section
    url: str
    id: str = field(default_factory=new_id)
    description: Optional[str] = None
    cover_url: Optional[str] = None
    status: TitleStatus = TitleStatus.ACTIVE
    chapter_count: int = 0
    last_updated: datetime.datetime = field(default_factory=utc_now)
    created_at: datetime.datetime = field(default_factory=utc_now)
    updated_at: datetime.datetime = field(default_factory=utc_now)

    def is_monitorable(self) -> bool:
        """Placeholder titles (manual downloads) and titles without a real URL are never scanned."""
        return bool(self.url) and self.url.startswith(("http://", "https://"))


@dataclass
class Chapter:
    title_id: str
    title_name: str  # denormalized for paths and listings
    name: str
    number: float
    url: str
    id: str = field(default_factory=new_id)
    page_count: int = 0
    file_size_bytes: Optional[int] = None
    status: ChapterStatus = ChapterStatus.PENDING
    downloaded_at: Optional[datetime.datetime] = None
    attempts: int = 0
    last_attempt_at: Optional[datetime.datetime] = None
    last_error: Optional[str] = None
    created_at: datetime.datetime = field(default_factory=utc_now)
    updated_at: datetime.datetime = field(default_factory=utc_now)


@dataclass
class Page:
    chapter_id: Optional[str]
    number: int  # 1-based, dense within a chapter
    image_url: str
    id: str = field(default_factory=new_id)
    local_path: Optional[str] = None
    file_size_bytes: Optional[int] = None
    downloaded_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime = field(default_factory=utc_now)


@dataclass
class ScanRecord:
    title_id: str
    site: str
    id: str = field(default_factory=new_id)
    status: ScanStatus = ScanStatus.SUCCESS
    chapters_found: int = 0
    chapters_new: int = 0
    error_message: Optional[str] = None
    duration_ms: int = 0
    created_at: datetime.datetime = field(default_factory=utc_now)


@dataclass
class CatalogEntry:
    title: str
    url: str
    cover_url: Optional[str] = None


@dataclass
class SelectorsConfig:
    manga_list: Optional[str] = None
    chapter_list: Optional[str] = None
    chapter_title: Optional[str] = None
    chapter_url: Optional[str] = None
    image_container: Optional[str] = None
    image_url: Optional[str] = None
    next_page: Optional[str] = None


@dataclass
class SiteConfig:
    key: str
    name: str
    base_url: str
    scanner_type: str
    downloader_type: str
    catalog_type: Optional[str] = None
    rate_limit_ms: int = 1000
    user_agent: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    selectors: SelectorsConfig = field(default_factory=SelectorsConfig)

    def __post_init__(self):
        if not self.catalog_type:
            self.catalog_type = self.scanner_type


@dataclass
class ScanResult:
    record: ScanRecord
    new_chapters: List[Chapter] = field(default_factory=list)


@dataclass
class MonitorSummary:
    titles_scanned: int = 0
    titles_skipped: int = 0
    new_chapters_found: int = 0
    chapters_downloaded: int = 0
    failed_downloads: int = 0
    retries_skipped: int = 0


@dataclass
class CatalogCheckResult:
    site: str
    entries_found: int = 0
    new_titles: List[Title] = field(default_factory=list)
    error: Optional[str] = None
