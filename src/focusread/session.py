from __future__ import annotations

from typing import Callable, Iterable

from .errors import NarrationUnavailableError
from .focus import display_font_size, format_eta, progress_label, split_focus
from .library import Entry, FolderState, TreeNode, build_tree, delete_path, entry_words
from .library_io import IngestResult
from .logging_utils import debug_log
from .narration import NarrationBridge, NarrationEvent, NarrationSegment, SpeechEngine
from .scheduler import PlaybackScheduler, ReaderStatus, SchedulerEvent
from .store import LibraryStore, Settings
from .tokens import Word

__all__ = ["ReaderSession"]


class ReaderSession:
    """
    The reading session of the active library entry.

    Timer ticks and speech callbacks arrive as events and are applied here,
    on the same event loop as user actions. Every user action follows the
    same order: cancel the pending timer, cancel in-flight narration, apply
    the change, then re-arm at most one timer.
    """

    def __init__(
        self,
        store: LibraryStore,
        *,
        engine: SpeechEngine | None = None,
        loop=None,
    ) -> None:
        self.store = store
        self.folders = FolderState()
        self.scheduler = PlaybackScheduler(
            store.settings.wpm,
            loop=loop,
            on_event=self._on_scheduler_event,
        )
        self.narration = NarrationBridge(engine, on_event=self._on_narration_event)
        self.last_error: str | None = None
        self._listeners: list[Callable[[ReaderSession], None]] = []
        self._words: list[Word] = []
        self._load_active()

    # listeners ---------------------------------------------------------------

    def add_listener(self, callback: Callable[[ReaderSession], None]) -> None:
        self._listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self)

    # properties --------------------------------------------------------------

    @property
    def status(self) -> ReaderStatus:
        return self.scheduler.status

    @property
    def words(self) -> list[Word]:
        return self._words

    @property
    def current_index(self) -> int:
        return self.scheduler.index

    @property
    def is_narrating(self) -> bool:
        return self.narration.is_narrating

    @property
    def settings(self) -> Settings:
        return self.store.settings

    def active_entry(self) -> Entry | None:
        return self.store.active_entry()

    def tree(self) -> TreeNode:
        return build_tree(self.store.entries)

    # event handling ----------------------------------------------------------

    def _halt(self) -> None:
        self.scheduler.cancel_timer()
        self.narration.cancel()
        self._sync_cursor()

    def _sync_cursor(self, *, save: bool = True) -> None:
        entry = self.store.active_entry()
        if entry is not None and self._words:
            self.store.set_current_index(entry.id, self.scheduler.index, save=save)

    def _on_scheduler_event(self, event: SchedulerEvent) -> None:
        # Ticks only update the entry in memory; the next transition saves it.
        self._sync_cursor(save=event.kind not in ("advance", "follow"))
        self._notify()

    def _on_narration_event(self, event: NarrationEvent) -> None:
        if event.kind == "progress" and event.index is not None:
            self.scheduler.seek(event.index)
            return
        if event.kind == "error":
            self.last_error = event.message
        if event.kind in ("end", "error"):
            self._sync_cursor()
        self._notify()

    def _load_active(self) -> None:
        entry = self.store.active_entry()
        if entry is None:
            self._words = []
            self.scheduler.unload()
            return
        self._words = entry_words(entry)
        self.scheduler.load(self._words, entry.current_index)

    def _refresh_words(self) -> None:
        entry = self.store.active_entry()
        self._words = entry_words(entry) if entry is not None else []
        self.scheduler.replace_words(self._words)

    # entry selection -----------------------------------------------------------

    def select_entry(self, entry_id: str | None) -> Entry | None:
        self._halt()
        entry = self.store.set_active(entry_id)
        self._load_active()
        if entry is not None:
            debug_log(f"active entry {entry.path} ({len(self._words)} words)")
        return entry

    # playback ------------------------------------------------------------------

    def toggle_play(self) -> ReaderStatus:
        self._halt()
        return self.scheduler.toggle()

    def play(self) -> bool:
        self._halt()
        return self.scheduler.play()

    def pause(self) -> None:
        self._halt()
        self.scheduler.pause()

    def reset(self) -> None:
        self._halt()
        self.scheduler.reset()

    def select_word(self, index: int) -> bool:
        self._halt()
        return self.scheduler.select(index)

    def set_wpm(self, wpm: int) -> Settings:
        settings = self.store.set_wpm(wpm)
        self.scheduler.set_wpm(settings.wpm)
        return settings

    def update_settings(self, payload: dict[str, object]) -> Settings:
        settings = self.store.update_settings(payload)
        if settings.wpm != self.scheduler.wpm:
            self.scheduler.set_wpm(settings.wpm)
        return settings

    # narration -----------------------------------------------------------------

    def narrate(self) -> NarrationSegment | None:
        """
        Read aloud from the cursor.

        Returns ``None`` (and records ``last_error``) when narration is
        impossible; the session itself always stays usable.
        """
        self.scheduler.hold()
        self.narration.cancel()
        self.last_error = None
        try:
            return self.narration.start(self._words, self.scheduler.index, self.scheduler.wpm)
        except NarrationUnavailableError as exc:
            self.last_error = str(exc)
            return None

    def stop_narration(self) -> bool:
        stopped = self.narration.cancel()
        self._sync_cursor()
        return stopped

    # annotations ---------------------------------------------------------------

    def toggle_highlight(self, index: int) -> bool | None:
        entry = self.store.active_entry()
        if entry is None:
            return None
        state = self.store.toggle_highlight(entry.id, index)
        if state is not None:
            self._refresh_words()
        return state

    def save_note(self, index: int, text: str) -> bool:
        entry = self.store.active_entry()
        if entry is None:
            return False
        saved = self.store.save_note(entry.id, index, text)
        if saved:
            self._refresh_words()
        return saved

    # library -------------------------------------------------------------------

    def add_entries(self, entries: Iterable[Entry]) -> list[Entry]:
        return self.store.add_entries(entries)

    def ingest(self, result: IngestResult) -> IngestResult:
        self.store.add_entries(result.entries)
        return result

    def delete_path(self, target: str) -> list[Entry]:
        _, doomed = delete_path(self.store.entries, target)
        if any(entry.id == self.store.active_id for entry in doomed):
            self._halt()
        removed = self.store.delete_path(target)
        if self.store.active_id is None:
            self._load_active()
        return removed

    def delete_entry(self, entry_id: str) -> list[Entry]:
        if entry_id == self.store.active_id:
            self._halt()
        removed = self.store.delete_entry(entry_id)
        if self.store.active_id is None:
            self._load_active()
        return removed

    def move_path(self, source: str, dest_folder: str) -> bool:
        moved = self.store.move_path(source, dest_folder)
        if moved and dest_folder:
            self.folders.expand(dest_folder)
        return moved

    def toggle_folder(self, path: str) -> bool:
        return self.folders.toggle(path)

    def replace_library(self, entries: Iterable[Entry]) -> None:
        self._halt()
        self.store.replace_entries(entries)
        self._load_active()

    # snapshots -----------------------------------------------------------------

    def snapshot(self, *, viewport_width: float | None = None) -> dict[str, object]:
        entry = self.store.active_entry()
        settings = self.store.settings
        total = len(self._words)
        index = self.scheduler.index
        word = self.scheduler.current_word()
        word_payload: dict[str, object] | None = None
        if word is not None:
            focus = split_focus(word.text)
            word_payload = {
                **word.to_payload(),
                "focus": focus.to_payload(),
                "fontSize": display_font_size(
                    word.text, settings.font_size, viewport_width=viewport_width
                ),
            }
        segment = self.narration.segment
        return {
            "status": self.scheduler.status.value,
            "activeId": entry.id if entry is not None else None,
            "activePath": entry.path if entry is not None else None,
            "currentIndex": index,
            "totalWords": total,
            "word": word_payload,
            "delayMs": self.scheduler.current_delay_ms() if word is not None else None,
            "progress": progress_label(index, total),
            "eta": format_eta(total, index, settings.wpm),
            "isNarrating": self.narration.is_narrating,
            "narration": segment.to_payload() if segment is not None else None,
            "narrationAvailable": self.narration.available,
            "error": self.last_error,
            "settings": settings.to_payload(),
        }

    def close(self) -> None:
        self._halt()
        self.scheduler.pause()
