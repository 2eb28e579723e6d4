import os
import shutil
import zipfile

from manga_archiver.core.exceptions import ArchiveError
from manga_archiver.core.path_manager import PathManager
from manga_archiver.utils.logger import get_logger

logger = get_logger(__name__)


class ArchiveBuilder:
    """Packages a chapter's downloaded pages into a single zip container."""

    def __init__(self, path_manager: PathManager):
        self.path_manager = path_manager

    def create_chapter_archive(self, title_name: str, chapter_number: float) -> str:
        """
        Zips every regular file of the chapter's pages directory, in
        directory-read order, into Chapter_<number>.zip next to it.

        The archive is written under a temporary name and moved into place,
        so an existing archive is only replaced by a complete one.
        Returns the archive path. Raises ArchiveError on any filesystem problem.
        """
        pages_dir = self.path_manager.get_pages_dir(title_name, chapter_number)
        archive_path = self.path_manager.get_archive_filepath(title_name, chapter_number)
        tmp_path = archive_path + PathManager.PART_SUFFIX

        if not os.path.isdir(pages_dir):
            raise ArchiveError(f"Pages directory not found: {pages_dir}")

        try:
            file_count = 0
            with zipfile.ZipFile(tmp_path, 'w', compression=zipfile.ZIP_DEFLATED) as archive:
                with os.scandir(pages_dir) as entries:
                    for entry in entries:
                        if not entry.is_file(follow_symlinks=False):
                            continue
                        archive.write(entry.path, arcname=entry.name)
                        file_count += 1
            os.replace(tmp_path, archive_path)
        except OSError as e:
            logger.error(f"Failed to create archive {archive_path}: {e}", exc_info=True)
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise ArchiveError(f"Failed to create archive {archive_path}: {e}") from e

        logger.info(f"Created archive {archive_path} with {file_count} files")
        return archive_path

    def remove_chapter(self, title_name: str, chapter_number: float) -> bool:
        """Deletes the whole chapter directory (pages and archive). Returns False if it did not exist."""
        chapter_dir = self.path_manager.get_chapter_dir(title_name, chapter_number)
        if not os.path.isdir(chapter_dir):
            return False
        try:
            shutil.rmtree(chapter_dir)
        except OSError as e:
            raise ArchiveError(f"Failed to remove {chapter_dir}: {e}") from e
        logger.info(f"Removed chapter directory {chapter_dir}")
        return True
