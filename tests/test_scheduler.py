from __future__ import annotations

import pytest
from conftest import FakeLoop

from focusread.scheduler import PlaybackScheduler, ReaderStatus, SchedulerEvent, word_delay_ms
from focusread.tokens import tokenize


def _scheduler(text: str, *, wpm: int = 350, index: int = 0):
    loop = FakeLoop()
    events: list[SchedulerEvent] = []
    scheduler = PlaybackScheduler(wpm, loop=loop, on_event=events.append)
    scheduler.load(tokenize(text), index)
    return scheduler, loop, events


def test_word_delay_extends_sentence_endings() -> None:
    plain, stop = tokenize("word end.")
    assert word_delay_ms(plain, 350) == pytest.approx(171.4286, abs=1e-3)
    assert word_delay_ms(stop, 350) == pytest.approx(377.1429, abs=1e-3)
    with pytest.raises(ValueError):
        word_delay_ms(plain, 0)


def test_load_pauses_or_idles() -> None:
    scheduler, loop, _ = _scheduler("one two", index=5)
    assert scheduler.status is ReaderStatus.PAUSED
    assert scheduler.index == 1
    scheduler.load([])
    assert scheduler.status is ReaderStatus.IDLE
    assert scheduler.play() is False
    assert loop.pending() == []


def test_play_to_end_uses_word_delays_and_finishes() -> None:
    scheduler, loop, events = _scheduler("Hello world. Bye")
    assert scheduler.play() is True
    delays = loop.run_all()
    assert delays == pytest.approx([60 / 350, 60 / 350 * 2.2, 60 / 350])
    assert scheduler.status is ReaderStatus.FINISHED
    assert scheduler.index == 2
    assert [event.kind for event in events if event.kind == "advance"] == ["advance", "advance"]
    assert events[-1].status is ReaderStatus.FINISHED
    assert not scheduler.has_pending_timer


def test_at_most_one_timer_is_pending() -> None:
    scheduler, loop, _ = _scheduler("a b c d e")
    scheduler.play()
    scheduler.select(3)
    scheduler.set_wpm(500)
    scheduler.play()
    assert len(loop.pending()) == 1
    loop.run_next()
    assert len(loop.pending()) == 1


def test_pause_then_resume_keeps_schedule() -> None:
    straight, straight_loop, _ = _scheduler("one two. three four")
    straight.play()
    expected = straight_loop.run_all()

    scheduler, loop, _ = _scheduler("one two. three four")
    scheduler.play()
    first = loop.run_next()
    scheduler.pause()
    assert scheduler.status is ReaderStatus.PAUSED
    assert loop.pending() == []
    scheduler.play()
    rest = loop.run_all()
    assert [first, *rest] == pytest.approx(expected)


def test_cancelled_timer_callback_has_no_effect() -> None:
    scheduler, loop, _ = _scheduler("a b c")
    scheduler.play()
    stale = loop.pending()[0]
    scheduler.pause()
    stale.callback(*stale.args)
    assert scheduler.index == 0
    assert scheduler.status is ReaderStatus.PAUSED


def test_select_while_finished_pauses_without_timer() -> None:
    scheduler, loop, events = _scheduler("a b")
    scheduler.play()
    loop.run_all()
    assert scheduler.status is ReaderStatus.FINISHED
    assert scheduler.select(0) is True
    assert scheduler.status is ReaderStatus.PAUSED
    assert loop.pending() == []
    assert events[-1].kind == "seek"


def test_select_while_playing_keeps_playing_from_new_word() -> None:
    scheduler, loop, _ = _scheduler("a b c d")
    scheduler.play()
    scheduler.select(2)
    assert scheduler.status is ReaderStatus.PLAYING
    loop.run_next()
    assert scheduler.index == 3


def test_select_out_of_range_is_ignored() -> None:
    scheduler, _, events = _scheduler("a b")
    count = len(events)
    assert scheduler.select(7) is False
    assert scheduler.select(-1) is False
    assert len(events) == count


def test_play_after_finish_replays_last_word() -> None:
    scheduler, loop, _ = _scheduler("a b.")
    scheduler.play()
    loop.run_all()
    assert scheduler.play() is True
    assert scheduler.index == 1
    assert scheduler.status is ReaderStatus.PLAYING
    assert loop.run_all() == pytest.approx([60 / 350 * 2.2])
    assert scheduler.status is ReaderStatus.FINISHED
    assert scheduler.index == 1


def test_toggle_and_reset() -> None:
    scheduler, loop, _ = _scheduler("a b c", index=2)
    assert scheduler.toggle() is ReaderStatus.PLAYING
    assert scheduler.toggle() is ReaderStatus.PAUSED
    scheduler.play()
    scheduler.reset()
    assert scheduler.index == 0
    assert scheduler.status is ReaderStatus.PAUSED
    assert loop.pending() == []


def test_set_wpm_rearms_with_new_delay() -> None:
    scheduler, loop, _ = _scheduler("a b c")
    scheduler.play()
    scheduler.set_wpm(600)
    assert [timer.delay for timer in loop.pending()] == pytest.approx([0.1])
    scheduler.pause()
    scheduler.set_wpm(300)
    assert loop.pending() == []


def test_hold_settles_finished_reader_in_paused() -> None:
    scheduler, loop, _ = _scheduler("a")
    scheduler.play()
    loop.run_all()
    scheduler.hold()
    assert scheduler.status is ReaderStatus.PAUSED


def test_seek_refused_while_playing() -> None:
    scheduler, _, _ = _scheduler("a b c")
    assert scheduler.seek(2) is True
    assert scheduler.index == 2
    scheduler.play()
    assert scheduler.seek(0) is False


def test_seek_reports_follow_event() -> None:
    scheduler, _, events = _scheduler("a b c")
    scheduler.seek(1)
    assert events[-1].kind == "follow"
    assert events[-1].status is ReaderStatus.PAUSED
