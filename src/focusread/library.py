from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Mapping
from uuid import uuid4

from .tokens import Word, annotate_words, tokenize

__all__ = [
    "Entry",
    "TreeNode",
    "FolderState",
    "generate_entry_id",
    "normalize_entry",
    "entry_words",
    "build_tree",
    "is_folder_path",
    "delete_path",
    "delete_entry",
    "move_path",
    "toggle_highlight",
    "save_note",
    "unique_path",
]

PATH_SEPARATOR = "/"
ROOT_NAME = "Root"
# Child key of a file whose name is also taken by a folder; sorts right after it.
SHADOWED_FILE_SUFFIX = "\0"


def generate_entry_id() -> str:
    return uuid4().hex


@dataclass(slots=True)
class Entry:
    id: str
    name: str
    path: str
    content: str
    highlights: set[int] = field(default_factory=set)
    notes: dict[int, str] = field(default_factory=dict)
    current_index: int = 0

    def word_count(self) -> int:
        return len(tokenize(self.content))

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "content": self.content,
            "highlights": sorted(self.highlights),
            "notes": {str(index): self.notes[index] for index in sorted(self.notes)},
            "currentIndex": self.current_index,
        }

    def summary_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "currentIndex": self.current_index,
            "highlightCount": len(self.highlights),
            "noteCount": len(self.notes),
        }


def _coerce_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def normalize_entry(raw: Mapping[str, object]) -> Entry:
    """
    Build a fully-specified :class:`Entry` from stored or imported JSON.

    Legacy rows may lack ``notes`` (or any other optional field); missing
    values default to empty rather than failing. Notes on words that are not
    highlighted promote the word to highlighted, and the cursor is clamped
    to the tokenized content.
    """
    entry_id = raw.get("id")
    if not isinstance(entry_id, str) or not entry_id.strip():
        entry_id = generate_entry_id()
    content = raw.get("content")
    if not isinstance(content, str):
        content = ""
    name = raw.get("name")
    path = raw.get("path")
    if not isinstance(path, str) or not path.strip(PATH_SEPARATOR):
        path = name if isinstance(name, str) and name else entry_id
    path = PATH_SEPARATOR.join(part for part in path.split(PATH_SEPARATOR) if part)
    if not isinstance(name, str) or not name:
        name = path.rsplit(PATH_SEPARATOR, 1)[-1]

    highlights: set[int] = set()
    raw_highlights = raw.get("highlights")
    if isinstance(raw_highlights, (list, tuple, set)):
        for value in raw_highlights:
            index = _coerce_int(value)
            if index is not None and index >= 0:
                highlights.add(index)

    notes: dict[int, str] = {}
    raw_notes = raw.get("notes")
    if isinstance(raw_notes, Mapping):
        for key, value in raw_notes.items():
            index = _coerce_int(key)
            if index is None or index < 0 or not isinstance(value, str):
                continue
            notes[index] = value
            highlights.add(index)

    word_count = len(tokenize(content))
    current_index = _coerce_int(raw.get("currentIndex"))
    if current_index is None or word_count == 0:
        current_index = 0
    current_index = max(0, min(current_index, max(word_count - 1, 0)))

    return Entry(
        id=entry_id,
        name=name,
        path=path,
        content=content,
        highlights=highlights,
        notes=notes,
        current_index=current_index,
    )


def entry_words(entry: Entry) -> list[Word]:
    return annotate_words(tokenize(entry.content), entry.highlights, entry.notes)


def toggle_highlight(entry: Entry, index: int) -> bool:
    """Flip the highlight on word ``index``. Returns the new highlight state."""
    if index in entry.highlights:
        entry.highlights.discard(index)
        entry.notes.pop(index, None)
        return False
    entry.highlights.add(index)
    return True


def save_note(entry: Entry, index: int, text: str) -> None:
    entry.highlights.add(index)
    cleaned = text.strip()
    if cleaned:
        entry.notes[index] = text
    else:
        entry.notes.pop(index, None)


@dataclass(slots=True)
class TreeNode:
    """
    One node of the library tree.

    Files carry the entry ``id`` and never have children; folders exist only
    because some file path runs through them.
    """

    name: str
    full_path: str
    id: str | None = None
    children: dict[str, TreeNode] = field(default_factory=dict)

    @property
    def is_file(self) -> bool:
        return self.id is not None

    def sorted_children(self) -> list[TreeNode]:
        return [self.children[key] for key in sorted(self.children)]

    def find(self, path: str) -> TreeNode | None:
        if not path:
            return self
        node = self
        for part in path.split(PATH_SEPARATOR):
            child = node.children.get(part)
            if child is None:
                return None
            node = child
        return node

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "name": self.name,
            "fullPath": self.full_path,
            "type": "file" if self.is_file else "folder",
        }
        if self.is_file:
            payload["id"] = self.id
        else:
            payload["children"] = [child.to_payload() for child in self.sorted_children()]
        return payload


def _folder_child(parent: TreeNode, name: str, full_path: str) -> TreeNode:
    existing = parent.children.get(name)
    if existing is not None and not existing.is_file:
        return existing
    folder = TreeNode(name=name, full_path=full_path)
    if existing is not None:
        parent.children[name + SHADOWED_FILE_SUFFIX] = existing
    parent.children[name] = folder
    return folder


def _attach_file(parent: TreeNode, name: str, full_path: str, entry_id: str) -> None:
    node = TreeNode(name=name, full_path=full_path, id=entry_id)
    existing = parent.children.get(name)
    if existing is not None and not existing.is_file:
        parent.children[name + SHADOWED_FILE_SUFFIX] = node
    else:
        parent.children[name] = node


def build_tree(entries: Iterable[Entry]) -> TreeNode:
    """
    Rebuild the folder tree from entry paths.

    An entry whose path is also a folder stays listed as a file right after
    that folder, so it can still be opened.
    """
    root = TreeNode(name=ROOT_NAME, full_path="")
    for entry in sorted(entries, key=lambda item: item.path):
        parts = entry.path.split(PATH_SEPARATOR)
        current = root
        accumulated = ""
        for part in parts[:-1]:
            accumulated = f"{accumulated}{PATH_SEPARATOR}{part}" if accumulated else part
            current = _folder_child(current, part, accumulated)
        _attach_file(current, parts[-1], entry.path, entry.id)
    return root


class FolderState:
    """Expanded folder paths; the root is always open."""

    def __init__(self, expanded: Iterable[str] = ()) -> None:
        self._expanded: set[str] = {""}
        self._expanded.update(expanded)

    def is_open(self, path: str) -> bool:
        return path in self._expanded

    def toggle(self, path: str) -> bool:
        if not path:
            return True
        if path in self._expanded:
            self._expanded.discard(path)
            return False
        self._expanded.add(path)
        return True

    def expand(self, path: str) -> None:
        self._expanded.add(path)

    def expanded(self) -> list[str]:
        return sorted(self._expanded)


def _within(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + PATH_SEPARATOR)


def is_folder_path(entries: Iterable[Entry], path: str) -> bool:
    if not path:
        return True
    prefix = path + PATH_SEPARATOR
    return any(entry.path.startswith(prefix) for entry in entries)


def delete_path(entries: list[Entry], target: str) -> tuple[list[Entry], list[Entry]]:
    """
    Remove ``target`` from the collection.

    A folder path removes every entry beneath it (plus an entry whose path
    equals the folder itself); a file path removes that single entry.
    Returns ``(kept, removed)``.
    """
    if not target:
        return list(entries), []
    if is_folder_path(entries, target):
        kept = [entry for entry in entries if not _within(entry.path, target)]
        removed = [entry for entry in entries if _within(entry.path, target)]
    else:
        kept = [entry for entry in entries if entry.path != target]
        removed = [entry for entry in entries if entry.path == target]
    return kept, removed


def delete_entry(entries: list[Entry], entry_id: str) -> tuple[list[Entry], list[Entry]]:
    kept = [entry for entry in entries if entry.id != entry_id]
    removed = [entry for entry in entries if entry.id == entry_id]
    return kept, removed


def move_path(entries: list[Entry], source: str, dest_folder: str) -> list[Entry] | None:
    """
    Re-parent ``source`` (a file or folder path) under ``dest_folder``.

    Returns the rewritten collection, or ``None`` when the move is rejected:
    same source and destination, a destination inside the source subtree,
    an unknown source, a destination that is a file, or a rename that would
    collide with an entry outside the moved set.
    """
    if not source or source == dest_folder:
        return None
    if _within(dest_folder, source):
        return None
    # An entry at exactly the source path is moved alone, even if the path
    # also prefixes other entries.
    is_file = any(entry.path == source for entry in entries)
    is_folder = not is_file and is_folder_path(entries, source)
    if not is_file and not is_folder:
        return None
    if dest_folder and not is_folder_path(entries, dest_folder):
        if any(entry.path == dest_folder for entry in entries):
            return None

    item_name = source.split(PATH_SEPARATOR)[-1]
    new_base = f"{dest_folder}{PATH_SEPARATOR}{item_name}" if dest_folder else item_name

    moved: list[Entry] = []
    stationary_paths: set[str] = set()
    renamed_paths: set[str] = set()
    for entry in entries:
        if is_folder and _within(entry.path, source):
            new_path = new_base + entry.path[len(source) :]
        elif not is_folder and entry.path == source:
            new_path = new_base
        else:
            stationary_paths.add(entry.path)
            moved.append(entry)
            continue
        renamed_paths.add(new_path)
        moved.append(replace(entry, path=new_path))
    if renamed_paths & stationary_paths:
        return None
    return moved


def unique_path(existing: Iterable[str], path: str) -> str:
    taken = set(existing)
    if path not in taken:
        return path
    folder, _, leaf = path.rpartition(PATH_SEPARATOR)
    stem, dot, suffix = leaf.rpartition(".")
    if not dot or not stem:
        stem, suffix = leaf, ""
    counter = 2
    while True:
        candidate_leaf = f"{stem} ({counter}).{suffix}" if suffix else f"{stem} ({counter})"
        candidate = f"{folder}{PATH_SEPARATOR}{candidate_leaf}" if folder else candidate_leaf
        if candidate not in taken:
            return candidate
        counter += 1
