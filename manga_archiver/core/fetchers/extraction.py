"""
Page-image URL extraction strategies.

A strategy takes the raw chapter document and returns the image URLs it
could find, or an empty list meaning "nothing here, try the next one".
Strategies that detect a structurally broken document raise ExtractionError
instead. `run_strategies` walks an ordered list and raises ExtractionError
when every strategy came back empty, so callers never see an empty success.
"""
import re
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

from manga_archiver.utils.logger import get_logger
from .exceptions import ExtractionError

logger = get_logger(__name__)

IMAGE_EXTENSIONS = ('webp', 'jpg', 'jpeg', 'png')
READER_PAYLOAD_MARKER = 'ts_reader.run('
IMAGES_KEY = '"images"'

# Escaped ("https:\/\/host\/a.jpg") or plain absolute URLs ending in an allowed extension.
ESCAPED_IMAGE_URL_PATTERN = re.compile(
    r'https:\\*/\\*/[^"\s]+?\.(?:' + '|'.join(IMAGE_EXTENSIONS) + r')(?![A-Za-z0-9])',
    re.IGNORECASE,
)

DEFAULT_IMAGE_SELECTORS = [
    '.reading-content img',
    '.entry-content img',
    '.chapter-content img',
    '.wp-manga-chapter-img',
    '.page-break img',
    'img[data-src]',
    "img[src*='wp-content']",
]

EXCLUDED_IMAGE_MARKERS = ('avatar', 'logo', 'icon')


def has_image_extension(url: str) -> bool:
    lowered = url.lower()
    return any(f".{ext}" in lowered for ext in IMAGE_EXTENSIONS)


def isolate_images_array(document: str) -> str:
    """
    Returns the `[...]` text of the "images" array inside the embedded
    reader payload, brackets included.

    Brackets inside quoted strings are ignored. Raises ExtractionError when
    the payload marker, the images key or a balanced array is missing.
    """
    payload_start = document.find(READER_PAYLOAD_MARKER)
    if payload_start == -1:
        raise ExtractionError(f"Reader payload marker '{READER_PAYLOAD_MARKER}' not found in document")

    key_start = document.find(IMAGES_KEY, payload_start)
    if key_start == -1:
        raise ExtractionError("No \"images\" array found in reader payload")

    array_start = document.find('[', key_start + len(IMAGES_KEY))
    if array_start == -1:
        raise ExtractionError("\"images\" key is not followed by an array")

    depth = 0
    in_string = False
    escaped = False
    for index in range(array_start, len(document)):
        char = document[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == '[':
            depth += 1
        elif char == ']':
            depth -= 1
            if depth == 0:
                return document[array_start:index + 1]

    raise ExtractionError("Unbalanced brackets in \"images\" array")


class ExtractionStrategy(ABC):
    name = "strategy"

    @abstractmethod
    def extract(self, document: str, base_url: Optional[str] = None) -> List[str]:
        pass


class EscapedUrlRegexStrategy(ExtractionStrategy):
    """Regex over the isolated images array; backslash escapes are stripped from matches."""
    name = "escaped-url-regex"

    def extract(self, document: str, base_url: Optional[str] = None) -> List[str]:
        images_array = isolate_images_array(document)
        return [match.group(0).replace('\\', '') for match in ESCAPED_IMAGE_URL_PATTERN.finditer(images_array)]


class CommaSplitStrategy(ExtractionStrategy):
    """Token fallback for payloads the regex cannot read: split on commas and clean each token."""
    name = "comma-split"

    def extract(self, document: str, base_url: Optional[str] = None) -> List[str]:
        images_array = isolate_images_array(document)
        urls = []
        for token in images_array.split(','):
            cleaned = token.strip().replace('\\', '').strip('"\'[]{} \t\r\n')
            if cleaned.startswith('https://') and has_image_extension(cleaned):
                urls.append(cleaned)
        return urls


class SelectorCascadeStrategy(ExtractionStrategy):
    """
    Collects <img> URLs from every selector in order (configured ones first),
    preferring data-src over src. The result is filtered, de-duplicated and
    sorted lexicographically.
    """
    name = "selector-cascade"

    def __init__(self, selectors: Optional[Sequence[str]] = None):
        self.selectors = list(selectors) if selectors else list(DEFAULT_IMAGE_SELECTORS)

    @staticmethod
    def _is_page_image(url: str) -> bool:
        lowered = url.lower()
        return (
            lowered.startswith('http')
            and has_image_extension(lowered)
            and not any(marker in lowered for marker in EXCLUDED_IMAGE_MARKERS)
        )

    def extract(self, document: str, base_url: Optional[str] = None) -> List[str]:
        soup = BeautifulSoup(document, 'html.parser')
        found = []
        for selector in self.selectors:
            for img in css_select(soup, selector):
                src = img.get('data-src') or img.get('src')
                if not src:
                    continue
                src = src.strip()
                if self._is_page_image(src):
                    found.append(src)
        return sorted(set(found))


def css_select(node, selector: str) -> list:
    """node.select() with an invalid selector reported as ExtractionError."""
    try:
        return node.select(selector)
    except SelectorSyntaxError as e:
        raise ExtractionError(f"Invalid CSS selector '{selector}': {e}") from e


def css_select_one(node, selector: str):
    try:
        return node.select_one(selector)
    except SelectorSyntaxError as e:
        raise ExtractionError(f"Invalid CSS selector '{selector}': {e}") from e


def run_strategies(document: str, strategies: Iterable[ExtractionStrategy], base_url: Optional[str] = None) -> List[str]:
    """Returns the first non-empty result, raises ExtractionError when all are exhausted."""
    tried = []
    for strategy in strategies:
        urls = strategy.extract(document, base_url)
        tried.append(strategy.name)
        if urls:
            logger.debug(f"Strategy '{strategy.name}' extracted {len(urls)} image URLs")
            return urls
        logger.debug(f"Strategy '{strategy.name}' found no image URLs, trying next")
    raise ExtractionError(f"No page images found after trying: {', '.join(tried)}")
