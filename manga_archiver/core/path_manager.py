import os
from typing import Optional

from manga_archiver.utils.filename_sanitizer import format_chapter_number, sanitize_filename


class PathManager:
    """
    Builds the on-disk layout of one archive root (the manual `downloads`
    tree or the automated `scans` tree):

        <root>/<sanitized title>/<chapter number>/pages/page_001.jpg
        <root>/<sanitized title>/<chapter number>/Chapter_<chapter number>.zip
    """
    PAGES_DIR_NAME = "pages"
    PAGE_FILENAME_TEMPLATE = "page_{number:03d}.{ext}"
    ARCHIVE_FILENAME_TEMPLATE = "Chapter_{number}.zip"
    PART_SUFFIX = ".part"

    def __init__(self, root: str):
        if not root:
            raise ValueError("root cannot be empty.")
        self._root = root

    @property
    def root(self) -> str:
        return self._root

    def get_title_dir(self, title_name: str) -> str:
        """Returns the directory holding every chapter of a title."""
        if not title_name:
            raise ValueError("title_name cannot be empty.")
        return os.path.join(self._root, sanitize_filename(title_name))

    def get_chapter_dir(self, title_name: str, chapter_number: float) -> str:
        return os.path.join(self.get_title_dir(title_name), format_chapter_number(chapter_number))

    def get_pages_dir(self, title_name: str, chapter_number: float) -> str:
        return os.path.join(self.get_chapter_dir(title_name, chapter_number), self.PAGES_DIR_NAME)

    def get_page_filepath(self, title_name: str, chapter_number: float, page_number: int, ext: str = "jpg") -> str:
        """Returns the final path of one page image; page_number is 1-based."""
        if page_number < 1:
            raise ValueError("page_number must be 1 or greater.")
        filename = self.PAGE_FILENAME_TEMPLATE.format(number=page_number, ext=ext)
        return os.path.join(self.get_pages_dir(title_name, chapter_number), filename)

    def get_archive_filepath(self, title_name: str, chapter_number: float) -> str:
        filename = self.ARCHIVE_FILENAME_TEMPLATE.format(number=format_chapter_number(chapter_number))
        return os.path.join(self.get_chapter_dir(title_name, chapter_number), filename)

    @staticmethod
    def image_extension_from_url(url: str, default: str = "jpg") -> str:
        """'https://x/001.webp?v=2' -> 'webp'."""
        path = url.split('?', 1)[0].split('#', 1)[0]
        ext: Optional[str] = os.path.splitext(path)[1].lstrip('.').lower() or None
        if ext in ('webp', 'jpg', 'jpeg', 'png', 'gif'):
            return ext
        return default
