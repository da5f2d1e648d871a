from __future__ import annotations

from focusread.tokens import Word, annotate_words, serialize_words, tokenize


def test_tokenize_collapses_whitespace_and_flags_sentence_ends() -> None:
    words = tokenize("Hello   world.  Bye")
    assert [(word.text, word.index, word.is_punctuation) for word in words] == [
        ("Hello", 0, False),
        ("world.", 1, True),
        ("Bye", 2, False),
    ]


def test_tokenize_handles_newlines_tabs_and_outer_whitespace() -> None:
    words = tokenize("\n\t  Wait!\nReally?\r\n done,  \t")
    assert [word.text for word in words] == ["Wait!", "Really?", "done,"]
    assert [word.is_punctuation for word in words] == [True, True, False]


def test_tokenize_empty_input_yields_no_words() -> None:
    assert tokenize("") == []
    assert tokenize("   \n\t ") == []


def test_only_trailing_punctuation_counts() -> None:
    words = tokenize("e.g. Mr.Smith ?! ...ok")
    assert [word.is_punctuation for word in words] == [True, False, True, False]


def test_annotate_words_attaches_highlights_and_notes() -> None:
    words = annotate_words(tokenize("one two three"), highlights={1, 2}, notes={2: "third"})
    assert [word.is_highlighted for word in words] == [False, True, True]
    assert words[1].note is None
    assert words[2].note == "third"


def test_annotate_words_ignores_notes_without_highlight() -> None:
    words = annotate_words(tokenize("one two"), highlights=set(), notes={0: "stray"})
    assert words[0].note is None


def test_serialize_words_uses_camel_case_keys() -> None:
    payload = serialize_words([Word(text="Hi.", index=0, is_punctuation=True, is_highlighted=True, note="greeting")])
    assert payload == [
        {
            "text": "Hi.",
            "index": 0,
            "isPunctuation": True,
            "isHighlighted": True,
            "note": "greeting",
        }
    ]
