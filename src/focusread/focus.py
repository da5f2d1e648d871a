from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "FocusSplit",
    "orp_index",
    "display_scale",
    "split_focus",
    "display_font_size",
    "format_eta",
    "progress_label",
]

# (max word length, ORP index) pairs; longer words anchor at MAX_ORP_INDEX.
_ORP_BANDS: tuple[tuple[int, int], ...] = ((1, 0), (5, 1), (9, 2), (13, 3))
MAX_ORP_INDEX = 4

SCALE_FREE_LENGTH = 7
SCALE_STEP = 0.08
MIN_SCALE = 0.5

MIN_FONT_PX = 24.0
VIEWPORT_FONT_RATIO = 0.09


@dataclass(frozen=True, slots=True)
class FocusSplit:
    """A word cut around its optical recognition point."""

    before: str
    focal: str
    after: str
    orp: int
    scale: float

    def to_payload(self) -> dict[str, object]:
        return {
            "before": self.before,
            "focal": self.focal,
            "after": self.after,
            "orp": self.orp,
            "scale": self.scale,
        }


def orp_index(word: str) -> int:
    length = len(word)
    for max_length, index in _ORP_BANDS:
        if length <= max_length:
            return index
    return MAX_ORP_INDEX


def display_scale(word: str) -> float:
    length = len(word)
    if length <= SCALE_FREE_LENGTH:
        return 1.0
    return max(MIN_SCALE, 1.0 - (length - SCALE_FREE_LENGTH) * SCALE_STEP)


def split_focus(word: str) -> FocusSplit:
    orp = orp_index(word)
    return FocusSplit(
        before=word[:orp],
        focal=word[orp : orp + 1],
        after=word[orp + 1 :],
        orp=orp,
        scale=display_scale(word),
    )


def display_font_size(
    word: str,
    font_size: float,
    *,
    viewport_width: float | None = None,
) -> float:
    """
    Scaled font size for ``word`` clamped the way the reader card renders it.

    The lower bound is a fixed pixel size; the upper bound only applies when
    the viewport width is known.
    """
    size = font_size * display_scale(word)
    if viewport_width is not None and viewport_width > 0:
        size = min(size, viewport_width * VIEWPORT_FONT_RATIO)
    return max(MIN_FONT_PX, size)


def format_eta(total_words: int, current_index: int, wpm: int) -> str:
    if total_words <= 0 or wpm <= 0:
        return "0s"
    remaining = max(0, total_words - current_index)
    total_seconds = remaining * 60 / wpm
    if total_seconds < 1:
        return "< 1s"
    minutes = int(total_seconds // 60)
    seconds = int(total_seconds % 60)
    return f"{minutes}m {seconds}s" if minutes > 0 else f"{seconds}s"


def progress_label(index: int, total: int) -> str:
    if total <= 0:
        return "0 / 0 WORDS"
    return f"{min(index + 1, total)} / {total} WORDS"
