from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from .errors import NarrationUnavailableError
from .logging_utils import debug_log
from .tokens import Word

__all__ = [
    "SEGMENT_WORD_LIMIT",
    "NEUTRAL_WPM",
    "SpeechCallbacks",
    "SpeechEngine",
    "NarrationSegment",
    "NarrationEvent",
    "NarrationBridge",
    "Pyttsx3SpeechEngine",
    "build_segment",
    "speech_rate",
    "words_completed",
]

SEGMENT_WORD_LIMIT = 50
# Words per minute an engine speaks at rate 1.0.
NEUTRAL_WPM = 175
MIN_RATE = 0.5
MAX_RATE = 3.0


@dataclass(slots=True)
class SpeechCallbacks:
    on_start: Callable[[], None]
    on_word_boundary: Callable[[int], None]
    on_end: Callable[[], None]
    on_error: Callable[[str], None]


class SpeechEngine(Protocol):
    """
    External text-to-speech collaborator.

    ``cancel`` must take effect before any further callback of the cancelled
    utterance is delivered.
    """

    def speak(self, text: str, rate: float, callbacks: SpeechCallbacks) -> None: ...

    def cancel(self) -> None: ...


@dataclass(frozen=True, slots=True)
class NarrationSegment:
    start: int
    text: str
    word_count: int
    rate: float

    def to_payload(self) -> dict[str, object]:
        return {
            "start": self.start,
            "wordCount": self.word_count,
            "rate": self.rate,
        }


@dataclass(frozen=True, slots=True)
class NarrationEvent:
    """``start``, ``progress`` (with ``index``), ``end`` or ``error`` (with ``message``)."""

    kind: str
    index: int | None = None
    message: str | None = None


def speech_rate(wpm: int) -> float:
    return min(MAX_RATE, max(MIN_RATE, wpm / NEUTRAL_WPM))


def build_segment(
    words: Sequence[Word],
    start: int,
    wpm: int,
    limit: int = SEGMENT_WORD_LIMIT,
) -> NarrationSegment:
    chunk = words[start : start + limit]
    return NarrationSegment(
        start=start,
        text=" ".join(word.text for word in chunk),
        word_count=len(chunk),
        rate=speech_rate(wpm),
    )


def words_completed(text: str, offset: int) -> int:
    """Words fully spoken before character ``offset`` of a single-space-joined segment."""
    return len(text[:offset].split(" ")) - 1


class NarrationBridge:
    """
    Couples one speech engine to the shared reading cursor.

    Each submitted segment gets its own token; callbacks carrying a token
    other than the current one are dropped, so a cancelled utterance can
    never move the cursor or flip ``is_narrating`` afterwards.
    """

    def __init__(
        self,
        engine: SpeechEngine | None,
        *,
        on_event: Callable[[NarrationEvent], None] | None = None,
    ) -> None:
        self.engine = engine
        self._on_event = on_event
        self._token = 0
        self._total_words = 0
        self.segment: NarrationSegment | None = None
        self.is_narrating = False

    @property
    def available(self) -> bool:
        return self.engine is not None

    @property
    def active(self) -> bool:
        return self.segment is not None

    def cancel(self) -> bool:
        """Stop any in-flight utterance. Returns whether one was active."""
        was_active = self.segment is not None or self.is_narrating
        self._token += 1
        self.segment = None
        self.is_narrating = False
        if was_active and self.engine is not None:
            self.engine.cancel()
            debug_log("narration cancelled")
        return was_active

    def start(self, words: Sequence[Word], index: int, wpm: int) -> NarrationSegment:
        self.cancel()
        if self.engine is None:
            raise NarrationUnavailableError("No speech engine is configured.")
        if not 0 <= index < len(words):
            raise NarrationUnavailableError("Nothing to narrate at the current position.")
        segment = build_segment(words, index, wpm)
        self.segment = segment
        self._total_words = len(words)
        token = self._token
        callbacks = SpeechCallbacks(
            on_start=lambda: self._handle_start(token),
            on_word_boundary=lambda offset: self._handle_boundary(token, offset),
            on_end=lambda: self._handle_end(token),
            on_error=lambda message: self._handle_error(token, message),
        )
        debug_log(
            f"narrating {segment.word_count} words from {segment.start} at rate {segment.rate:.2f}"
        )
        try:
            self.engine.speak(segment.text, segment.rate, callbacks)
        except NarrationUnavailableError as exc:
            self._handle_error(token, str(exc))
            raise
        except Exception as exc:
            message = f"{exc.__class__.__name__}: {exc}"
            self._handle_error(token, message)
            raise NarrationUnavailableError(message) from exc
        return segment

    def _emit(self, event: NarrationEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)

    def _handle_start(self, token: int) -> None:
        if token != self._token:
            return
        self.is_narrating = True
        self._emit(NarrationEvent("start"))

    def _handle_boundary(self, token: int, offset: object) -> None:
        if token != self._token or self.segment is None:
            return
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            return
        index = self.segment.start + words_completed(self.segment.text, offset)
        if 0 <= index < self._total_words:
            self._emit(NarrationEvent("progress", index=index))

    def _handle_end(self, token: int) -> None:
        if token != self._token:
            return
        self.segment = None
        self.is_narrating = False
        debug_log("narration finished")
        self._emit(NarrationEvent("end"))

    def _handle_error(self, token: int, message: str) -> None:
        if token != self._token:
            return
        self.segment = None
        self.is_narrating = False
        debug_log(f"narration error: {message}")
        self._emit(NarrationEvent("error", message=message))


class _Utterance:
    def __init__(self, text: str, rate: float, callbacks: SpeechCallbacks) -> None:
        self.text = text
        self.rate = rate
        self.callbacks = callbacks
        self.cancelled = False
        self.engine: object | None = None
        self.lock = threading.Lock()


class Pyttsx3SpeechEngine:
    """
    Local text-to-speech through pyttsx3.

    pyttsx3 blocks inside ``runAndWait``, so every utterance runs on a worker
    thread with its own driver instance; callbacks are handed back to the
    event loop that called :meth:`speak` and dropped there once cancelled.
    """

    def __init__(
        self,
        *,
        voice: str | None = None,
        neutral_wpm: int = NEUTRAL_WPM,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        try:
            import pyttsx3  # type: ignore
        except ImportError as exc:
            raise NarrationUnavailableError(
                "Narration requires 'pyttsx3' to be installed."
            ) from exc
        self._pyttsx3 = pyttsx3
        self.voice = voice
        self.neutral_wpm = neutral_wpm
        self._loop = loop
        self._current: _Utterance | None = None
        # pyttsx3 shares one driver per process; only one run loop may be active.
        self._driver_lock = threading.Lock()

    def speak(self, text: str, rate: float, callbacks: SpeechCallbacks) -> None:
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()
        utterance = _Utterance(text, rate, callbacks)
        self._current = utterance
        thread = threading.Thread(
            target=self._run,
            args=(loop, utterance),
            name="focusread-narration",
            daemon=True,
        )
        thread.start()

    def cancel(self) -> None:
        utterance = self._current
        self._current = None
        if utterance is None:
            return
        with utterance.lock:
            utterance.cancelled = True
            engine = utterance.engine
        if engine is not None:
            try:
                engine.stop()  # type: ignore[attr-defined]
            except RuntimeError as exc:  # pragma: no cover - driver specific
                debug_log(f"pyttsx3 stop failed: {exc}")

    def _deliver(self, utterance: _Utterance, callback: Callable[..., None], *args: object) -> None:
        if utterance.cancelled:
            return
        callback(*args)

    def _run(self, loop: asyncio.AbstractEventLoop, utterance: _Utterance) -> None:
        callbacks = utterance.callbacks

        def post(callback: Callable[..., None], *args: object) -> None:
            if utterance.cancelled:
                return
            try:
                loop.call_soon_threadsafe(self._deliver, utterance, callback, *args)
            except RuntimeError:
                # Loop already closed; nobody is listening anymore.
                return

        with self._driver_lock:
            try:
                self._speak_blocking(utterance, post)
            except Exception as exc:
                post(callbacks.on_error, f"{exc.__class__.__name__}: {exc}")

    def _speak_blocking(
        self,
        utterance: _Utterance,
        post: Callable[..., None],
    ) -> None:
        callbacks = utterance.callbacks
        engine = self._pyttsx3.init()
        with utterance.lock:
            if utterance.cancelled:
                return
            utterance.engine = engine
        engine.setProperty("rate", int(round(utterance.rate * self.neutral_wpm)))
        if self.voice:
            engine.setProperty("voice", self.voice)
        tokens = [
            engine.connect("started-utterance", lambda name: post(callbacks.on_start)),
            engine.connect(
                "started-word",
                lambda name, location, length: post(callbacks.on_word_boundary, location),
            ),
            engine.connect(
                "finished-utterance", lambda name, completed: post(callbacks.on_end)
            ),
            engine.connect(
                "error", lambda name, exception: post(callbacks.on_error, f"{exception}")
            ),
        ]
        try:
            engine.say(utterance.text)
            engine.runAndWait()
        finally:
            for token in tokens:
                engine.disconnect(token)
