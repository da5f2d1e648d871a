from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from .logging_utils import debug_log
from .tokens import Word

__all__ = [
    "ReaderStatus",
    "SchedulerEvent",
    "PlaybackScheduler",
    "PUNCTUATION_DELAY_FACTOR",
    "word_delay_ms",
]

PUNCTUATION_DELAY_FACTOR = 2.2


class ReaderStatus(str, enum.Enum):
    IDLE = "IDLE"
    PLAYING = "PLAYING"
    PAUSED = "PAUSED"
    FINISHED = "FINISHED"


@dataclass(frozen=True, slots=True)
class SchedulerEvent:
    """
    Emitted after every scheduler state change.

    ``advance`` (timer tick) and ``follow`` (narration progress) only move the
    cursor; ``status`` and ``seek`` come from transitions and user jumps.
    """

    kind: str
    index: int
    status: ReaderStatus


class _TimerHandle(Protocol):
    def cancel(self) -> None: ...


class _Loop(Protocol):
    def call_later(self, delay: float, callback: Callable[..., object], *args: object) -> _TimerHandle: ...


def word_delay_ms(word: Word | None, wpm: int) -> float:
    if wpm <= 0:
        raise ValueError("wpm must be positive")
    delay = 60000 / wpm
    if word is not None and word.is_punctuation:
        delay *= PUNCTUATION_DELAY_FACTOR
    return delay


class PlaybackScheduler:
    """
    Word-by-word advancement driven by a single-shot timer.

    At most one timer is pending at any time. Every public mutation cancels
    the pending timer before it changes state, and only :meth:`play` or a
    timer firing while playing arms a new one. A cancelled timer never
    applies its effect, even if the loop already queued its callback.
    """

    def __init__(
        self,
        wpm: int,
        *,
        loop: _Loop | None = None,
        on_event: Callable[[SchedulerEvent], None] | None = None,
    ) -> None:
        if wpm <= 0:
            raise ValueError("wpm must be positive")
        self._loop = loop
        self._on_event = on_event
        self._words: list[Word] = []
        self._handle: _TimerHandle | None = None
        self._generation = 0
        self.wpm = wpm
        self.index = 0
        self.status = ReaderStatus.IDLE

    # state -----------------------------------------------------------------

    @property
    def words(self) -> list[Word]:
        return self._words

    @property
    def last_index(self) -> int:
        return len(self._words) - 1

    @property
    def has_pending_timer(self) -> bool:
        return self._handle is not None

    def current_word(self) -> Word | None:
        if 0 <= self.index < len(self._words):
            return self._words[self.index]
        return None

    def current_delay_ms(self) -> float:
        return word_delay_ms(self.current_word(), self.wpm)

    # timer -----------------------------------------------------------------

    def _resolve_loop(self) -> _Loop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def cancel_timer(self) -> None:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _arm(self) -> None:
        self.cancel_timer()
        delay_ms = self.current_delay_ms()
        generation = self._generation
        self._handle = self._resolve_loop().call_later(delay_ms / 1000, self._fire, generation)

    def _fire(self, generation: int) -> None:
        if generation != self._generation or self.status is not ReaderStatus.PLAYING:
            return
        self._handle = None
        if self.index < self.last_index:
            self.index += 1
            self._arm()
            self._emit("advance")
        else:
            self.status = ReaderStatus.FINISHED
            debug_log(f"finished at word {self.index}")
            self._emit("status")

    def _emit(self, kind: str) -> None:
        if self._on_event is not None:
            self._on_event(SchedulerEvent(kind=kind, index=self.index, status=self.status))

    # transitions -----------------------------------------------------------

    def load(self, words: Sequence[Word], index: int = 0) -> None:
        self.cancel_timer()
        self._words = list(words)
        if not self._words:
            self.index = 0
            self.status = ReaderStatus.IDLE
        else:
            self.index = max(0, min(index, self.last_index))
            self.status = ReaderStatus.PAUSED
        self._emit("status")

    def replace_words(self, words: Sequence[Word]) -> None:
        """Swap in re-annotated words of the same content without touching the timer."""
        if len(words) != len(self._words):
            self.load(words, self.index)
            return
        self._words = list(words)

    def unload(self) -> None:
        self.load([])

    def play(self) -> bool:
        if not self._words:
            return False
        self.cancel_timer()
        # From FINISHED this replays the last word and finishes again.
        self.status = ReaderStatus.PLAYING
        self._arm()
        debug_log(f"play from word {self.index} at {self.wpm} wpm")
        self._emit("status")
        return True

    def pause(self) -> None:
        self.cancel_timer()
        if self.status is ReaderStatus.PLAYING:
            self.status = ReaderStatus.PAUSED
            self._emit("status")

    def hold(self) -> None:
        """Cancel the timer and settle in PAUSED from either PLAYING or FINISHED."""
        self.cancel_timer()
        if self.status in (ReaderStatus.PLAYING, ReaderStatus.FINISHED):
            self.status = ReaderStatus.PAUSED
            self._emit("status")

    def toggle(self) -> ReaderStatus:
        if self.status is ReaderStatus.PLAYING:
            self.pause()
        else:
            self.play()
        return self.status

    def select(self, index: int) -> bool:
        """Jump to ``index``; keeps playing if playing, leaves FINISHED for PAUSED."""
        if not 0 <= index < len(self._words):
            return False
        self.cancel_timer()
        self.index = index
        if self.status is ReaderStatus.FINISHED:
            self.status = ReaderStatus.PAUSED
        if self.status is ReaderStatus.PLAYING:
            self._arm()
        self._emit("seek")
        return True

    def seek(self, index: int) -> bool:
        """Move the cursor without any status change (used by narration progress)."""
        if not 0 <= index < len(self._words) or self.status is ReaderStatus.PLAYING:
            return False
        self.index = index
        self._emit("follow")
        return True

    def reset(self) -> None:
        self.cancel_timer()
        self.index = 0
        self.status = ReaderStatus.PAUSED if self._words else ReaderStatus.IDLE
        self._emit("status")

    def set_wpm(self, wpm: int) -> None:
        if wpm <= 0:
            raise ValueError("wpm must be positive")
        self.wpm = wpm
        if self.status is ReaderStatus.PLAYING:
            self._arm()
