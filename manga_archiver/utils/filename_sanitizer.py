import re
import unicodedata
from typing import Optional

from slugify import slugify

# Characters that are invalid in path segments on at least one common filesystem.
INVALID_FILENAME_CHARS = '<>:"/\\|?*'

_CHAPTER_NUMBER_IN_URL = re.compile(r'chapter[-_]?(\d+)(?:[-_.](\d+))?', re.IGNORECASE)


def sanitize_filename(name: str) -> str:
    """
    Makes a title usable as a single path segment.

    Invalid characters and control characters become '_', then leading and
    trailing dots and spaces are stripped. Never returns an empty string.
    """
    if not isinstance(name, str):
        raise TypeError("Input must be a string.")

    cleaned = ''.join(
        '_' if (ch in INVALID_FILENAME_CHARS or unicodedata.category(ch) == 'Cc') else ch
        for ch in name
    )
    cleaned = cleaned.strip('. ')
    return cleaned or '_'


def format_chapter_number(number: float) -> str:
    """1.0 -> '1', 2.5 -> '2.5'. Used for directory and archive names."""
    if float(number).is_integer():
        return str(int(number))
    return str(float(number))


def generate_slug(text: str) -> str:
    """Lowercase, hyphen-separated slug used for config section names."""
    if not isinstance(text, str):
        raise TypeError("Input must be a string.")
    return slugify(text)


def chapter_number_from_url(url: str) -> Optional[float]:
    """
    Pulls a chapter number out of a chapter URL slug.
    'https://site/series-chapter-12-5/' -> 12.5, no match -> None.
    """
    matches = list(_CHAPTER_NUMBER_IN_URL.finditer(url or ''))
    if not matches:
        return None
    whole, fraction = matches[-1].group(1), matches[-1].group(2)
    return float(f"{whole}.{fraction}") if fraction else float(whole)
