import os
import unittest

from manga_archiver.core.path_manager import PathManager


class TestPathManager(unittest.TestCase):

    def setUp(self):
        self.root = os.path.join(os.environ["MA_WORKSPACE_ROOT"], "scans")
        self.pm = PathManager(self.root)

    def test_empty_root_raises(self):
        with self.assertRaises(ValueError):
            PathManager("")

    def test_title_dir_is_sanitized(self):
        self.assertEqual(self.pm.get_title_dir("Re:Zero / Part 2"), os.path.join(self.root, "Re_Zero _ Part 2"))
        with self.assertRaises(ValueError):
            self.pm.get_title_dir("")

    def test_chapter_dirs_keep_fractional_numbers_apart(self):
        self.assertEqual(self.pm.get_chapter_dir("Solo Leveling", 2.0), os.path.join(self.root, "Solo Leveling", "2"))
        self.assertNotEqual(self.pm.get_chapter_dir("Solo Leveling", 2.5), self.pm.get_chapter_dir("Solo Leveling", 2.0))

    def test_page_filepath(self):
        expected = os.path.join(self.root, "Solo Leveling", "12", "pages", "page_007.webp")
        self.assertEqual(self.pm.get_page_filepath("Solo Leveling", 12, 7, "webp"), expected)
        with self.assertRaises(ValueError):
            self.pm.get_page_filepath("Solo Leveling", 12, 0)

    def test_archive_filepath(self):
        self.assertEqual(
            self.pm.get_archive_filepath("Solo Leveling", 2.5),
            os.path.join(self.root, "Solo Leveling", "2.5", "Chapter_2.5.zip"),
        )

    def test_image_extension_from_url(self):
        self.assertEqual(PathManager.image_extension_from_url("https://cdn.example/001.WEBP?v=2"), "webp")
        self.assertEqual(PathManager.image_extension_from_url("https://cdn.example/001.png#frag"), "png")
        self.assertEqual(PathManager.image_extension_from_url("https://cdn.example/image"), "jpg")
        self.assertEqual(PathManager.image_extension_from_url("https://cdn.example/file.php", default="png"), "png")


if __name__ == '__main__':
    unittest.main()
