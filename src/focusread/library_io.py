from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Iterable

from .errors import FileReadError, ImportFormatError
from .library import Entry, generate_entry_id, normalize_entry, unique_path
from .logging_utils import debug_log

__all__ = [
    "ACCEPTED_EXTENSIONS",
    "IngestResult",
    "export_filename",
    "export_library",
    "write_export",
    "parse_library_json",
    "read_library_file",
    "is_accepted_document",
    "decode_document",
    "ingest_texts",
    "ingest_paths",
]

ACCEPTED_EXTENSIONS = (".txt", ".md")
EXPORT_PREFIX = "focusread_backup"
_UTF16_BOMS = (b"\xff\xfe", b"\xfe\xff")


@dataclass(slots=True)
class IngestResult:
    entries: list[Entry] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)

    def to_payload(self) -> dict[str, object]:
        return {
            "added": [entry.summary_payload() for entry in self.entries],
            "skipped": [{"path": path, "reason": reason} for path, reason in self.skipped],
        }


def export_filename(today: date | None = None) -> str:
    stamp = (today or date.today()).isoformat()
    return f"{EXPORT_PREFIX}_{stamp}.json"


def export_library(entries: Iterable[Entry]) -> str:
    payload = [entry.to_payload() for entry in entries]
    return json.dumps(payload, ensure_ascii=False, indent=2)


def write_export(entries: Iterable[Entry], directory: Path, today: date | None = None) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / export_filename(today)
    target.write_text(export_library(entries), encoding="utf-8")
    return target


def parse_library_json(text: str) -> list[Entry]:
    """
    Parse an exported library.

    The whole payload is validated before anything is returned so callers
    can swap the collection in one step or leave it untouched.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ImportFormatError(f"Invalid JSON format: {exc.msg}") from exc
    if not isinstance(data, list):
        raise ImportFormatError("Invalid JSON format: expected a list of entries.")
    entries: list[Entry] = []
    taken_ids: set[str] = set()
    taken_paths: set[str] = set()
    for item in data:
        if not isinstance(item, dict):
            raise ImportFormatError("Invalid JSON format: every entry must be an object.")
        entry = normalize_entry(item)
        if entry.id in taken_ids:
            entry.id = generate_entry_id()
        entry.path = unique_path(taken_paths, entry.path)
        taken_ids.add(entry.id)
        taken_paths.add(entry.path)
        entries.append(entry)
    return entries


def read_library_file(path: Path) -> list[Entry]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ImportFormatError(f"Could not read backup {path}: {exc}") from exc
    return parse_library_json(text)


def is_accepted_document(name: str) -> bool:
    return name.lower().endswith(ACCEPTED_EXTENSIONS)


def decode_document(data: bytes, name: str) -> str:
    encoding = "utf-16" if data.startswith(_UTF16_BOMS) else "utf-8-sig"
    try:
        return data.decode(encoding)
    except UnicodeDecodeError as exc:
        raise FileReadError(f"{name}: not a readable text file") from exc


def _normalize_relative_path(value: str) -> str:
    parts = [part for part in value.replace("\\", "/").split("/") if part and part != "."]
    return "/".join(parts)


def _new_entry(relative_path: str, content: str, taken_paths: set[str]) -> Entry:
    path = unique_path(taken_paths, relative_path)
    taken_paths.add(path)
    return Entry(
        id=generate_entry_id(),
        name=path.rsplit("/", 1)[-1],
        path=path,
        content=content,
    )


def ingest_texts(
    documents: Iterable[tuple[str, str]],
    existing: Iterable[Entry] = (),
) -> IngestResult:
    """Turn ``(relative_path, text)`` pairs into new entries."""
    result = IngestResult()
    taken_paths = {entry.path for entry in existing}
    for raw_path, content in documents:
        relative_path = _normalize_relative_path(raw_path)
        if not relative_path or not is_accepted_document(relative_path):
            continue
        result.entries.append(_new_entry(relative_path, content, taken_paths))
    return result


def _read_document(path: Path) -> str:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise FileReadError(f"{path.name}: {exc.strerror or exc}") from exc
    return decode_document(data, path.name)


def ingest_paths(paths: Iterable[Path], existing: Iterable[Entry] = ()) -> IngestResult:
    """
    Read documents from disk.

    Plain files keep their file name as path; directories contribute every
    accepted file beneath them with a path relative to the directory's
    parent, so the folder itself becomes the top path segment. Files that
    cannot be read are skipped individually.
    """
    result = IngestResult()
    taken_paths = {entry.path for entry in existing}
    for source in paths:
        if source.is_dir():
            candidates = sorted(
                item for item in source.rglob("*") if item.is_file() and is_accepted_document(item.name)
            )
            base = source.parent
        elif is_accepted_document(source.name):
            candidates = [source]
            base = source.parent
        else:
            debug_log(f"ignoring unsupported file {source}")
            continue
        for candidate in candidates:
            relative_path = candidate.relative_to(base).as_posix()
            try:
                content = _read_document(candidate)
            except FileReadError as exc:
                debug_log(f"skipping {relative_path}: {exc}")
                result.skipped.append((relative_path, str(exc)))
                continue
            result.entries.append(_new_entry(relative_path, content, taken_paths))
    return result
