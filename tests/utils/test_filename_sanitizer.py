import pytest

from manga_archiver.utils.filename_sanitizer import (
    chapter_number_from_url,
    format_chapter_number,
    generate_slug,
    sanitize_filename,
)


def test_sanitize_filename_replaces_invalid_characters():
    result = sanitize_filename("My/Title:2")
    assert "/" not in result
    assert ":" not in result
    assert result == "My_Title_2"


@pytest.mark.parametrize("raw, expected", [
    ('a<b>c"d|e?f*g\\h', "a_b_c_d_e_f_g_h"),
    ("  .Hidden Title.  ", "Hidden Title"),
    ("Tab\tand\nnewline", "Tab_and_newline"),
    ("Del\x7fC1\x85\x9fend", "Del_C1__end"),
    ("Caf\u00e9 \u00bd", "Caf\u00e9 \u00bd"),
    ("Solo Leveling", "Solo Leveling"),
])
def test_sanitize_filename_cases(raw, expected):
    assert sanitize_filename(raw) == expected


def test_sanitize_filename_never_returns_empty():
    assert sanitize_filename(" . . ") == "_"
    assert sanitize_filename("") == "_"


def test_sanitize_filename_rejects_non_string():
    with pytest.raises(TypeError):
        sanitize_filename(None)


def test_format_chapter_number():
    assert format_chapter_number(1.0) == "1"
    assert format_chapter_number(12) == "12"
    assert format_chapter_number(2.5) == "2.5"
    assert format_chapter_number(2.5) != format_chapter_number(2.0)


@pytest.mark.parametrize("url, expected", [
    ("https://eros-moon.xyz/solo-leveling-chapter-12/", 12.0),
    ("https://eros-moon.xyz/solo-leveling-chapter-12-5/", 12.5),
    ("https://site.example/manga/x/chapter_7", 7.0),
    ("https://site.example/manga/x/episode-3", None),
])
def test_chapter_number_from_url(url, expected):
    assert chapter_number_from_url(url) == expected


def test_generate_slug():
    assert generate_slug("The Greatest Estate Developer!") == "the-greatest-estate-developer"
