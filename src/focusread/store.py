from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Protocol

from .library import (
    Entry,
    delete_entry,
    delete_path,
    move_path,
    normalize_entry,
    save_note,
    toggle_highlight,
    unique_path,
)
from .logging_utils import debug_log

__all__ = [
    "Settings",
    "normalize_settings",
    "PersistencePort",
    "MemoryPort",
    "JsonDirectoryPort",
    "LibraryStore",
    "default_home",
    "LIBRARY_KEY",
    "ACTIVE_KEY",
    "SETTINGS_KEY",
]

LIBRARY_KEY = "library"
ACTIVE_KEY = "active"
SETTINGS_KEY = "settings"

THEMES = ("light", "dark", "sepia")
MIN_WPM = 100
MAX_WPM = 1200
WPM_STEP = 25
DEFAULT_WPM = 350
DEFAULT_FONT_SIZE = 84
MIN_FONT_SIZE = 24
MAX_FONT_SIZE = 200


def default_home() -> Path:
    env_home = os.getenv("FOCUSREAD_HOME")
    if env_home:
        return Path(env_home).expanduser()
    return Path.home() / ".focusread"


@dataclass(frozen=True, slots=True)
class Settings:
    wpm: int = DEFAULT_WPM
    font_size: int = DEFAULT_FONT_SIZE
    show_focus_point: bool = True
    theme: str = "dark"

    def to_payload(self) -> dict[str, object]:
        return {
            "wpm": self.wpm,
            "fontSize": self.font_size,
            "showFocusPoint": self.show_focus_point,
            "theme": self.theme,
        }


def _clamp_int(value: object, low: int, high: int, fallback: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    return int(max(low, min(high, round(value))))


def normalize_settings(raw: object, base: Settings | None = None) -> Settings:
    """
    Merge a stored or submitted settings payload over ``base``.

    Unknown keys are ignored and invalid values keep the base value, so a
    partial payload can be used as an update.
    """
    current = base or Settings()
    if not isinstance(raw, Mapping):
        return current
    wpm = _clamp_int(raw.get("wpm", current.wpm), MIN_WPM, MAX_WPM, current.wpm)
    font_size = _clamp_int(
        raw.get("fontSize", current.font_size), MIN_FONT_SIZE, MAX_FONT_SIZE, current.font_size
    )
    show_focus_point = raw.get("showFocusPoint", current.show_focus_point)
    if not isinstance(show_focus_point, bool):
        show_focus_point = current.show_focus_point
    theme = raw.get("theme", current.theme)
    if theme not in THEMES:
        theme = current.theme
    return Settings(
        wpm=wpm,
        font_size=font_size,
        show_focus_point=show_focus_point,
        theme=theme,
    )


class PersistencePort(Protocol):
    def load(self, key: str) -> object | None: ...

    def save(self, key: str, value: object) -> None: ...


class MemoryPort:
    """In-process key/value blobs, round-tripped through JSON like the disk port."""

    def __init__(self, initial: Mapping[str, object] | None = None) -> None:
        self._blobs: dict[str, str] = {
            key: json.dumps(value, ensure_ascii=False) for key, value in (initial or {}).items()
        }
        self.writes: list[str] = []

    def load(self, key: str) -> object | None:
        blob = self._blobs.get(key)
        if blob is None:
            return None
        return json.loads(blob)

    def save(self, key: str, value: object) -> None:
        self._blobs[key] = json.dumps(value, ensure_ascii=False)
        self.writes.append(key)


class JsonDirectoryPort:
    """One ``<key>.json`` file per key inside a data directory."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def load(self, key: str) -> object | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            debug_log(f"ignoring unreadable {path}: {exc}")
            return None

    def save(self, key: str, value: object) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(
            json.dumps(value, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        tmp_path.replace(path)


class LibraryStore:
    """
    The library collection, active entry and settings behind one persistence port.

    Every mutation goes through this object and is saved immediately. Values
    read from the port are normalized once in :meth:`load`; nothing else
    inspects raw stored data.
    """

    def __init__(
        self,
        port: PersistencePort,
        entries: Iterable[Entry] = (),
        active_id: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.port = port
        self.entries: list[Entry] = list(entries)
        self.settings = settings or Settings()
        self._cursor_dirty = False
        self.active_id = active_id if self.get(active_id) is not None else None

    @classmethod
    def load(cls, port: PersistencePort) -> LibraryStore:
        entries: list[Entry] = []
        raw_library = port.load(LIBRARY_KEY)
        if isinstance(raw_library, list):
            taken_paths: set[str] = set()
            taken_ids: set[str] = set()
            for item in raw_library:
                if not isinstance(item, Mapping):
                    continue
                entry = normalize_entry(item)
                if entry.id in taken_ids:
                    continue
                entry.path = unique_path(taken_paths, entry.path)
                taken_ids.add(entry.id)
                taken_paths.add(entry.path)
                entries.append(entry)
        raw_active = port.load(ACTIVE_KEY)
        active_id = raw_active if isinstance(raw_active, str) else None
        settings = normalize_settings(port.load(SETTINGS_KEY))
        return cls(port, entries, active_id=active_id, settings=settings)

    # persistence ---------------------------------------------------------

    def save_library(self) -> None:
        self._cursor_dirty = False
        self.port.save(LIBRARY_KEY, [entry.to_payload() for entry in self.entries])

    def save_active(self) -> None:
        self.port.save(ACTIVE_KEY, self.active_id)

    def save_settings(self) -> None:
        self.port.save(SETTINGS_KEY, self.settings.to_payload())

    # queries -------------------------------------------------------------

    def get(self, entry_id: str | None) -> Entry | None:
        if not entry_id:
            return None
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def get_by_path(self, path: str) -> Entry | None:
        for entry in self.entries:
            if entry.path == path:
                return entry
        return None

    def active_entry(self) -> Entry | None:
        return self.get(self.active_id)

    # mutations -----------------------------------------------------------

    def add_entries(self, entries: Iterable[Entry]) -> list[Entry]:
        added = list(entries)
        if not added:
            return added
        self.entries.extend(added)
        self.save_library()
        return added

    def replace_entries(self, entries: Iterable[Entry]) -> None:
        self.entries = list(entries)
        self.save_library()
        if self.active_id is not None and self.get(self.active_id) is None:
            self.set_active(None)

    def set_active(self, entry_id: str | None) -> Entry | None:
        entry = self.get(entry_id)
        self.active_id = entry.id if entry is not None else None
        self.save_active()
        return entry

    def set_current_index(self, entry_id: str, index: int, *, save: bool = True) -> bool:
        """
        Move the reading cursor of ``entry_id``.

        With ``save=False`` only the in-memory entry changes; the next saving
        call (or any other library save) writes it out. Returns whether the
        library was written.
        """
        entry = self.get(entry_id)
        if entry is None:
            return False
        if entry.current_index != index:
            entry.current_index = index
            self._cursor_dirty = True
        if not save or not self._cursor_dirty:
            return False
        self.save_library()
        return True

    def toggle_highlight(self, entry_id: str, index: int) -> bool | None:
        entry = self.get(entry_id)
        if entry is None or not 0 <= index < entry.word_count():
            return None
        state = toggle_highlight(entry, index)
        self.save_library()
        return state

    def save_note(self, entry_id: str, index: int, text: str) -> bool:
        entry = self.get(entry_id)
        if entry is None or not 0 <= index < entry.word_count():
            return False
        save_note(entry, index, text)
        self.save_library()
        return True

    def delete_path(self, target: str) -> list[Entry]:
        kept, removed = delete_path(self.entries, target)
        return self._apply_removal(kept, removed)

    def delete_entry(self, entry_id: str) -> list[Entry]:
        kept, removed = delete_entry(self.entries, entry_id)
        return self._apply_removal(kept, removed)

    def _apply_removal(self, kept: list[Entry], removed: list[Entry]) -> list[Entry]:
        if not removed:
            return removed
        self.entries = kept
        self.save_library()
        if any(entry.id == self.active_id for entry in removed):
            self.set_active(None)
        return removed

    def move_path(self, source: str, dest_folder: str) -> bool:
        moved = move_path(self.entries, source, dest_folder)
        if moved is None:
            debug_log(f"ignored move {source!r} -> {dest_folder!r}")
            return False
        self.entries = moved
        self.save_library()
        return True

    def update_settings(self, payload: Mapping[str, object]) -> Settings:
        self.settings = normalize_settings(payload, self.settings)
        self.save_settings()
        return self.settings

    def set_wpm(self, wpm: int) -> Settings:
        return self.update_settings({"wpm": wpm})

