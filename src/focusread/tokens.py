from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping

__all__ = [
    "PAUSE_PUNCTUATION",
    "Word",
    "tokenize",
    "annotate_words",
    "serialize_words",
]

# Words ending in one of these get the longer sentence pause.
PAUSE_PUNCTUATION = (".", "!", "?")

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class Word:
    """
    A single displayable token of an entry's content.

    ``index`` is the position inside the tokenized sequence and is what
    highlights, notes and the reading cursor refer to.
    """

    text: str
    index: int
    is_punctuation: bool
    is_highlighted: bool = False
    note: str | None = None

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "text": self.text,
            "index": self.index,
            "isPunctuation": self.is_punctuation,
            "isHighlighted": self.is_highlighted,
        }
        if self.note is not None:
            payload["note"] = self.note
        return payload


def tokenize(text: str) -> list[Word]:
    cleaned = _WHITESPACE_RE.sub(" ", text or "").strip()
    if not cleaned:
        return []
    return [
        Word(text=token, index=idx, is_punctuation=token.endswith(PAUSE_PUNCTUATION))
        for idx, token in enumerate(cleaned.split(" "))
    ]


def annotate_words(
    words: Iterable[Word],
    highlights: Iterable[int] = (),
    notes: Mapping[int, str] | None = None,
) -> list[Word]:
    highlighted = set(highlights)
    note_map = notes or {}
    annotated: list[Word] = []
    for word in words:
        is_highlighted = word.index in highlighted
        annotated.append(
            Word(
                text=word.text,
                index=word.index,
                is_punctuation=word.is_punctuation,
                is_highlighted=is_highlighted,
                note=note_map.get(word.index) if is_highlighted else None,
            )
        )
    return annotated


def serialize_words(words: Iterable[Word]) -> list[dict[str, object]]:
    return [word.to_payload() for word in words]
