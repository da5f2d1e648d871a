from __future__ import annotations

from typing import Callable

import pytest

from focusread.library import Entry
from focusread.narration import SpeechCallbacks


class FakeTimer:
    def __init__(self, when: float, delay: float, callback: Callable[..., object], args: tuple) -> None:
        self.when = when
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Manually driven stand-in for ``loop.call_later``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[..., object], *args: object) -> FakeTimer:
        timer = FakeTimer(self.now + delay, delay, callback, args)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if not timer.cancelled and not timer.fired]

    def run_next(self) -> float:
        pending = self.pending()
        assert pending, "no timer armed"
        timer = min(pending, key=lambda item: item.when)
        self.now = timer.when
        timer.fired = True
        timer.callback(*timer.args)
        return timer.delay

    def run_all(self, limit: int = 10_000) -> list[float]:
        delays: list[float] = []
        while self.pending() and len(delays) < limit:
            delays.append(self.run_next())
        return delays


class FakeSpeechEngine:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.spoken: list[tuple[str, float]] = []
        self.callbacks: SpeechCallbacks | None = None
        self.cancels = 0

    def speak(self, text: str, rate: float, callbacks: SpeechCallbacks) -> None:
        if self.fail:
            raise RuntimeError("audio device unavailable")
        self.spoken.append((text, rate))
        self.callbacks = callbacks

    def cancel(self) -> None:
        self.cancels += 1


def make_entry(
    path: str,
    content: str = "alpha beta gamma.",
    *,
    entry_id: str | None = None,
    highlights: set[int] | None = None,
    notes: dict[int, str] | None = None,
    current_index: int = 0,
) -> Entry:
    return Entry(
        id=entry_id or path.replace("/", "-"),
        name=path.rsplit("/", 1)[-1],
        path=path,
        content=content,
        highlights=set(highlights or ()),
        notes=dict(notes or {}),
        current_index=current_index,
    )


@pytest.fixture
def fake_loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def speech_engine() -> FakeSpeechEngine:
    return FakeSpeechEngine()
