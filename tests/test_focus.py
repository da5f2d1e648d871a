from __future__ import annotations

import pytest

from focusread.focus import (
    display_font_size,
    display_scale,
    format_eta,
    orp_index,
    progress_label,
    split_focus,
)


@pytest.mark.parametrize(
    ("word", "expected"),
    [
        ("", 0),
        ("a", 0),
        ("at", 1),
        ("hello", 1),
        ("reading", 2),
        ("algorithm", 2),
        ("recognition", 3),
        ("extraordinary", 3),
        ("incomprehensible", 4),
    ],
)
def test_orp_index_follows_length_bands(word: str, expected: int) -> None:
    assert orp_index(word) == expected


def test_orp_index_is_monotonic_and_bounded() -> None:
    previous = 0
    for length in range(0, 40):
        index = orp_index("x" * length)
        assert 0 <= index <= 4
        assert index >= previous
        previous = index


def test_split_focus_cuts_around_the_recognition_point() -> None:
    split = split_focus("reading")
    assert (split.before, split.focal, split.after) == ("re", "a", "ding")
    assert split.orp == 2
    single = split_focus("I")
    assert (single.before, single.focal, single.after) == ("", "I", "")


def test_split_focus_of_empty_word_is_empty() -> None:
    split = split_focus("")
    assert (split.before, split.focal, split.after) == ("", "", "")


def test_display_scale_shrinks_long_words_down_to_half() -> None:
    assert display_scale("seven77") == 1.0
    assert display_scale("eight888") == pytest.approx(0.92)
    assert display_scale("x" * 12) == pytest.approx(0.6)
    assert display_scale("x" * 30) == 0.5


def test_display_font_size_clamps_to_minimum_and_viewport() -> None:
    assert display_font_size("word", 84) == 84
    assert display_font_size("x" * 30, 40) == 24
    assert display_font_size("word", 84, viewport_width=500) == pytest.approx(45)


def test_format_eta_matches_reader_controls() -> None:
    assert format_eta(0, 0, 350) == "0s"
    assert format_eta(10, 10, 350) == "< 1s"
    assert format_eta(100, 50, 300) == "10s"
    assert format_eta(1000, 0, 350) == "2m 51s"


def test_progress_label_is_one_based() -> None:
    assert progress_label(0, 3) == "1 / 3 WORDS"
    assert progress_label(2, 3) == "3 / 3 WORDS"
    assert progress_label(0, 0) == "0 / 0 WORDS"
