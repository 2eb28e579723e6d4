"""SQLite persistence for titles, chapters, pages and scan records."""

import datetime
import os
import sqlite3
import threading
from typing import Any, Dict, List, Optional, Tuple

from manga_archiver.core.exceptions import RecordStoreError
from manga_archiver.core.models import (
    CHAPTER_NUMBER_EPSILON,
    Chapter,
    ChapterStatus,
    Page,
    ScanRecord,
    ScanStatus,
    Title,
    TitleStatus,
    utc_now,
)
from manga_archiver.utils.logger import get_logger

logger = get_logger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS titles (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        site TEXT NOT NULL,
        url TEXT NOT NULL UNIQUE,
        description TEXT,
        cover_url TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        chapter_count INTEGER NOT NULL DEFAULT 0,
        last_updated TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chapters (
        id TEXT PRIMARY KEY,
        title_id TEXT NOT NULL REFERENCES titles(id),
        title_name TEXT NOT NULL,
        name TEXT NOT NULL,
        number REAL NOT NULL,
        url TEXT NOT NULL,
        page_count INTEGER NOT NULL DEFAULT 0,
        file_size_bytes INTEGER,
        status TEXT NOT NULL DEFAULT 'pending',
        downloaded_at TEXT,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_attempt_at TEXT,
        last_error TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(title_id, number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pages (
        id TEXT PRIMARY KEY,
        chapter_id TEXT NOT NULL REFERENCES chapters(id),
        number INTEGER NOT NULL,
        image_url TEXT NOT NULL,
        local_path TEXT,
        file_size_bytes INTEGER,
        downloaded_at TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(chapter_id, number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scan_records (
        id TEXT PRIMARY KEY,
        title_id TEXT NOT NULL,
        site TEXT NOT NULL,
        status TEXT NOT NULL,
        chapters_found INTEGER NOT NULL DEFAULT 0,
        chapters_new INTEGER NOT NULL DEFAULT 0,
        error_message TEXT,
        duration_ms INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_titles_site ON titles (site)",
    "CREATE INDEX IF NOT EXISTS idx_chapters_title_number ON chapters (title_id, number)",
    "CREATE INDEX IF NOT EXISTS idx_chapters_url ON chapters (url)",
    "CREATE INDEX IF NOT EXISTS idx_pages_chapter_id ON pages (chapter_id)",
    "CREATE INDEX IF NOT EXISTS idx_scan_records_title_id ON scan_records (title_id)",
]


def _to_db_time(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_db_time(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def _title_from_row(row: sqlite3.Row) -> Title:
    return Title(
        id=row['id'],
        name=row['name'],
        site=row['site'],
        url=row['url'],
        description=row['description'],
        cover_url=row['cover_url'],
        status=TitleStatus(row['status']),
        chapter_count=row['chapter_count'],
        last_updated=_from_db_time(row['last_updated']),
        created_at=_from_db_time(row['created_at']),
        updated_at=_from_db_time(row['updated_at']),
    )


def _chapter_from_row(row: sqlite3.Row) -> Chapter:
    return Chapter(
        id=row['id'],
        title_id=row['title_id'],
        title_name=row['title_name'],
        name=row['name'],
        number=row['number'],
        url=row['url'],
        page_count=row['page_count'],
        file_size_bytes=row['file_size_bytes'],
        status=ChapterStatus(row['status']),
        downloaded_at=_from_db_time(row['downloaded_at']),
        attempts=row['attempts'],
        last_attempt_at=_from_db_time(row['last_attempt_at']),
        last_error=row['last_error'],
        created_at=_from_db_time(row['created_at']),
        updated_at=_from_db_time(row['updated_at']),
    )


def _page_from_row(row: sqlite3.Row) -> Page:
    return Page(
        id=row['id'],
        chapter_id=row['chapter_id'],
        number=row['number'],
        image_url=row['image_url'],
        local_path=row['local_path'],
        file_size_bytes=row['file_size_bytes'],
        downloaded_at=_from_db_time(row['downloaded_at']),
        created_at=_from_db_time(row['created_at']),
    )


def _scan_record_from_row(row: sqlite3.Row) -> ScanRecord:
    return ScanRecord(
        id=row['id'],
        title_id=row['title_id'],
        site=row['site'],
        status=ScanStatus(row['status']),
        chapters_found=row['chapters_found'],
        chapters_new=row['chapters_new'],
        error_message=row['error_message'],
        duration_ms=row['duration_ms'],
        created_at=_from_db_time(row['created_at']),
    )


class RecordStore:
    """
    Persistent record of titles, chapters, pages and scan records.

    One connection shared by every thread, serialized by a re-entrant lock.
    Every write is one short transaction. Any sqlite3.Error surfaces as
    RecordStoreError.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.RLock()
        try:
            if db_path != ':memory:':
                os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
            self.conn = sqlite3.connect(db_path, check_same_thread=False)
        except (sqlite3.Error, OSError) as e:
            raise RecordStoreError(f"Could not open record store at {db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row

    def _execute(self, sql: str, params: Tuple[Any, ...] = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                with self.conn:
                    return self.conn.execute(sql, params)
            except sqlite3.Error as e:
                logger.error(f"Record store error: {e}", exc_info=True)
                raise RecordStoreError(str(e)) from e

    def _fetchone(self, sql: str, params: Tuple[Any, ...] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: Tuple[Any, ...] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._execute(sql, params).fetchall()

    def init_schema(self) -> None:
        with self._lock:
            try:
                with self.conn:
                    for statement in SCHEMA:
                        self.conn.execute(statement)
            except sqlite3.Error as e:
                raise RecordStoreError(f"Failed to create schema: {e}") from e
        logger.debug(f"Record store schema ready at {self.db_path}")

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # Titles

    def create_title(self, title: Title) -> Title:
        self._execute(
            """
            INSERT INTO titles (id, name, site, url, description, cover_url, status, chapter_count,
                                last_updated, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (title.id, title.name, title.site, title.url, title.description, title.cover_url,
             title.status.value, title.chapter_count, _to_db_time(title.last_updated),
             _to_db_time(title.created_at), _to_db_time(title.updated_at)),
        )
        logger.info(f"Added title '{title.name}' ({title.site})")
        return title

    def get_title_by_id(self, title_id: str) -> Optional[Title]:
        row = self._fetchone("SELECT * FROM titles WHERE id = ?", (title_id,))
        return _title_from_row(row) if row else None

    def get_title_by_url(self, url: str) -> Optional[Title]:
        row = self._fetchone("SELECT * FROM titles WHERE url = ?", (url,))
        return _title_from_row(row) if row else None

    def find_titles(self, query: str) -> List[Title]:
        """Case-insensitive substring match on the title name."""
        rows = self._fetchall(
            "SELECT * FROM titles WHERE LOWER(name) LIKE ? ORDER BY name",
            (f"%{query.lower()}%",),
        )
        return [_title_from_row(row) for row in rows]

    def list_titles(self, status: Optional[TitleStatus] = None) -> List[Title]:
        if status is None:
            rows = self._fetchall("SELECT * FROM titles ORDER BY name")
        else:
            rows = self._fetchall("SELECT * FROM titles WHERE status = ? ORDER BY name", (status.value,))
        return [_title_from_row(row) for row in rows]

    def update_title(self, title: Title) -> Title:
        title.updated_at = utc_now()
        self._execute(
            """
            UPDATE titles SET name = ?, site = ?, url = ?, description = ?, cover_url = ?, status = ?,
                              chapter_count = ?, last_updated = ?, updated_at = ?
            WHERE id = ?
            """,
            (title.name, title.site, title.url, title.description, title.cover_url, title.status.value,
             title.chapter_count, _to_db_time(title.last_updated), _to_db_time(title.updated_at), title.id),
        )
        return title

    # Chapters

    def find_chapter_by_number(self, title_id: str, number: float) -> Optional[Chapter]:
        row = self._fetchone(
            "SELECT * FROM chapters WHERE title_id = ? AND ABS(number - ?) < ? ORDER BY ABS(number - ?) LIMIT 1",
            (title_id, number, CHAPTER_NUMBER_EPSILON, number),
        )
        return _chapter_from_row(row) if row else None

    def create_or_get_chapter(self, chapter: Chapter) -> Tuple[Chapter, bool]:
        """
        Inserts the chapter unless the title already has one whose number is
        within CHAPTER_NUMBER_EPSILON. Returns (stored chapter, created).
        """
        with self._lock:
            existing = self.find_chapter_by_number(chapter.title_id, chapter.number)
            if existing is not None:
                return existing, False
            self._execute(
                """
                INSERT INTO chapters (id, title_id, title_name, name, number, url, page_count, file_size_bytes,
                                      status, downloaded_at, attempts, last_attempt_at, last_error,
                                      created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (chapter.id, chapter.title_id, chapter.title_name, chapter.name, chapter.number, chapter.url,
                 chapter.page_count, chapter.file_size_bytes, chapter.status.value,
                 _to_db_time(chapter.downloaded_at), chapter.attempts, _to_db_time(chapter.last_attempt_at),
                 chapter.last_error, _to_db_time(chapter.created_at), _to_db_time(chapter.updated_at)),
            )
            return chapter, True

    def get_chapter_by_id(self, chapter_id: str) -> Optional[Chapter]:
        row = self._fetchone("SELECT * FROM chapters WHERE id = ?", (chapter_id,))
        return _chapter_from_row(row) if row else None

    def get_chapter_by_url(self, url: str) -> Optional[Chapter]:
        row = self._fetchone("SELECT * FROM chapters WHERE url = ? LIMIT 1", (url,))
        return _chapter_from_row(row) if row else None

    def list_chapters_by_title(self, title_id: str, status: Optional[ChapterStatus] = None) -> List[Chapter]:
        if status is None:
            rows = self._fetchall("SELECT * FROM chapters WHERE title_id = ? ORDER BY number", (title_id,))
        else:
            rows = self._fetchall(
                "SELECT * FROM chapters WHERE title_id = ? AND status = ? ORDER BY number",
                (title_id, status.value),
            )
        return [_chapter_from_row(row) for row in rows]

    def count_chapters(self, title_id: str) -> int:
        row = self._fetchone("SELECT COUNT(*) AS n FROM chapters WHERE title_id = ?", (title_id,))
        return row['n'] if row else 0

    def max_chapter_number(self, title_id: str) -> Optional[float]:
        row = self._fetchone("SELECT MAX(number) AS n FROM chapters WHERE title_id = ?", (title_id,))
        return row['n'] if row else None

    def update_chapter(self, chapter: Chapter) -> Chapter:
        chapter.updated_at = utc_now()
        self._execute(
            """
            UPDATE chapters SET name = ?, url = ?, page_count = ?, file_size_bytes = ?, status = ?,
                                downloaded_at = ?, attempts = ?, last_attempt_at = ?, last_error = ?,
                                updated_at = ?
            WHERE id = ?
            """,
            (chapter.name, chapter.url, chapter.page_count, chapter.file_size_bytes, chapter.status.value,
             _to_db_time(chapter.downloaded_at), chapter.attempts, _to_db_time(chapter.last_attempt_at),
             chapter.last_error, _to_db_time(chapter.updated_at), chapter.id),
        )
        return chapter

    def list_chapters_downloaded_before(self, cutoff: datetime.datetime) -> List[Chapter]:
        rows = self._fetchall(
            "SELECT * FROM chapters WHERE status = ? AND downloaded_at IS NOT NULL AND downloaded_at < ? "
            "ORDER BY downloaded_at",
            (ChapterStatus.DOWNLOADED.value, _to_db_time(cutoff)),
        )
        return [_chapter_from_row(row) for row in rows]

    def mark_chapter_deleted(self, chapter_id: str) -> None:
        self._execute(
            "UPDATE chapters SET status = ?, updated_at = ? WHERE id = ?",
            (ChapterStatus.DELETED.value, _to_db_time(utc_now()), chapter_id),
        )

    # Pages

    def replace_pages(self, chapter_id: str, pages: List[Page]) -> None:
        """Drops any previous page rows of the chapter and inserts these, atomically."""
        with self._lock:
            try:
                with self.conn:
                    self.conn.execute("DELETE FROM pages WHERE chapter_id = ?", (chapter_id,))
                    self.conn.executemany(
                        """
                        INSERT INTO pages (id, chapter_id, number, image_url, local_path, file_size_bytes,
                                           downloaded_at, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        [(page.id, chapter_id, page.number, page.image_url, page.local_path,
                          page.file_size_bytes, _to_db_time(page.downloaded_at), _to_db_time(page.created_at))
                         for page in pages],
                    )
            except sqlite3.Error as e:
                logger.error(f"Failed to store pages for chapter {chapter_id}: {e}", exc_info=True)
                raise RecordStoreError(str(e)) from e

    def list_pages(self, chapter_id: str) -> List[Page]:
        rows = self._fetchall("SELECT * FROM pages WHERE chapter_id = ? ORDER BY number", (chapter_id,))
        return [_page_from_row(row) for row in rows]

    # Scan records

    def append_scan_record(self, record: ScanRecord) -> ScanRecord:
        self._execute(
            """
            INSERT INTO scan_records (id, title_id, site, status, chapters_found, chapters_new, error_message,
                                      duration_ms, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (record.id, record.title_id, record.site, record.status.value, record.chapters_found,
             record.chapters_new, record.error_message, record.duration_ms, _to_db_time(record.created_at)),
        )
        return record

    def list_scan_records(self, title_id: Optional[str] = None, limit: Optional[int] = None) -> List[ScanRecord]:
        sql = "SELECT * FROM scan_records"
        params: Tuple[Any, ...] = ()
        if title_id is not None:
            sql += " WHERE title_id = ?"
            params = (title_id,)
        sql += " ORDER BY created_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params = params + (limit,)
        return [_scan_record_from_row(row) for row in self._fetchall(sql, params)]

    def stats(self) -> Dict[str, int]:
        """Chapter counts per status across all titles."""
        rows = self._fetchall("SELECT status, COUNT(*) AS n FROM chapters GROUP BY status")
        return {row['status']: row['n'] for row in rows}
