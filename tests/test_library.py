from __future__ import annotations

import copy

from conftest import make_entry

from focusread.library import (
    FolderState,
    build_tree,
    delete_entry,
    delete_path,
    entry_words,
    is_folder_path,
    move_path,
    normalize_entry,
    save_note,
    toggle_highlight,
    unique_path,
)


def _paths(entries) -> list[str]:
    return sorted(entry.path for entry in entries)


def _sample_library():
    return [
        make_entry("Notes"),
        make_entry("Notes/x.txt"),
        make_entry("Notes/y/z.txt"),
        make_entry("Other.txt"),
    ]


def test_build_tree_infers_folders_from_paths() -> None:
    entries = [
        make_entry("b.txt"),
        make_entry("Books/Fiction/story.md"),
        make_entry("Books/intro.txt"),
    ]
    root = build_tree(entries)
    assert root.full_path == ""
    assert [child.name for child in root.sorted_children()] == ["Books", "b.txt"]
    books = root.children["Books"]
    assert not books.is_file
    assert books.full_path == "Books"
    fiction = books.children["Fiction"]
    story = fiction.children["story.md"]
    assert story.is_file
    assert story.id == "Books-Fiction-story.md"
    assert story.full_path == "Books/Fiction/story.md"
    assert story.children == {}


def test_build_tree_is_independent_of_input_order() -> None:
    entries = [make_entry("z/a.txt"), make_entry("a.txt"), make_entry("m/n/o.txt")]
    forward = build_tree(entries).to_payload()
    backward = build_tree(list(reversed(entries))).to_payload()
    assert forward == backward


def test_build_tree_lists_file_next_to_folder_of_same_name() -> None:
    root = build_tree(_sample_library())
    notes = root.children["Notes"]
    assert not notes.is_file
    assert sorted(notes.children) == ["x.txt", "y"]
    listed = [(child.name, child.is_file) for child in root.sorted_children()]
    assert listed == [("Notes", False), ("Notes", True), ("Other.txt", True)]
    shadowed = root.sorted_children()[1]
    assert shadowed.id == "Notes"
    assert shadowed.full_path == "Notes"
    assert root.find("Notes") is notes


def test_build_tree_keeps_nested_file_shadowed_by_folder() -> None:
    entries = [make_entry("A/b.txt/c.txt"), make_entry("A/b.txt")]
    folder = build_tree(entries).children["A"]
    names = [(child.full_path, child.is_file) for child in folder.sorted_children()]
    assert names == [("A/b.txt", False), ("A/b.txt", True)]


def test_tree_find_walks_paths() -> None:
    root = build_tree(_sample_library())
    assert root.find("") is root
    assert root.find("Notes/y/z.txt").is_file
    assert root.find("Notes/missing") is None


def test_tree_payload_lists_children_sorted() -> None:
    payload = build_tree([make_entry("b.txt"), make_entry("a.txt")]).to_payload()
    assert [child["name"] for child in payload["children"]] == ["a.txt", "b.txt"]
    assert payload["children"][0]["type"] == "file"


def test_folder_state_keeps_root_open() -> None:
    state = FolderState()
    assert state.is_open("")
    assert state.toggle("") is True
    assert state.is_open("")
    assert state.toggle("Notes") is True
    assert state.is_open("Notes")
    assert state.toggle("Notes") is False
    assert state.expanded() == [""]


def test_delete_folder_cascades_to_descendants() -> None:
    kept, removed = delete_path(_sample_library(), "Notes")
    assert _paths(kept) == ["Other.txt"]
    assert _paths(removed) == ["Notes", "Notes/x.txt", "Notes/y/z.txt"]


def test_delete_file_removes_single_entry() -> None:
    kept, removed = delete_path(_sample_library(), "Notes/x.txt")
    assert _paths(removed) == ["Notes/x.txt"]
    assert len(kept) == 3


def test_delete_does_not_touch_prefix_siblings() -> None:
    entries = [make_entry("Notes/a.txt"), make_entry("Notes2/b.txt")]
    kept, removed = delete_path(entries, "Notes")
    assert _paths(kept) == ["Notes2/b.txt"]
    assert _paths(removed) == ["Notes/a.txt"]


def test_delete_entry_by_id() -> None:
    kept, removed = delete_entry(_sample_library(), "Other.txt")
    assert _paths(removed) == ["Other.txt"]
    assert len(kept) == 3


def test_move_into_own_subtree_is_rejected() -> None:
    entries = [make_entry("A/x.txt"), make_entry("A/B/y.txt")]
    before = copy.deepcopy(entries)
    assert move_path(entries, "A", "A/B") is None
    assert move_path(entries, "A", "A") is None
    assert entries == before


def test_move_file_into_folder_and_back_to_root() -> None:
    entries = [make_entry("a.txt"), make_entry("Folder/b.txt")]
    moved = move_path(entries, "a.txt", "Folder")
    assert _paths(moved) == ["Folder/a.txt", "Folder/b.txt"]
    assert entries[0].path == "a.txt"
    back = move_path(moved, "Folder/a.txt", "")
    assert _paths(back) == ["Folder/b.txt", "a.txt"]


def test_move_folder_rewrites_prefix_and_keeps_suffix() -> None:
    entries = [
        make_entry("Src/one.txt"),
        make_entry("Src/deep/two.md"),
        make_entry("Dest/keep.txt"),
        make_entry("Srcs/other.txt"),
    ]
    moved = move_path(entries, "Src", "Dest")
    assert _paths(moved) == [
        "Dest/Src/deep/two.md",
        "Dest/Src/one.txt",
        "Dest/keep.txt",
        "Srcs/other.txt",
    ]
    ids = {entry.path: entry.id for entry in moved}
    assert ids["Dest/Src/deep/two.md"] == "Src-deep-two.md"


def test_move_of_exact_file_path_leaves_same_named_folder() -> None:
    entries = [make_entry("Notes"), make_entry("Notes/x.txt"), make_entry("Other.txt")]
    moved = move_path(entries, "Notes", "Dest")
    assert [entry.path for entry in moved] == ["Dest/Notes", "Notes/x.txt", "Other.txt"]


def test_move_rejects_unknown_source_file_destination_and_collisions() -> None:
    entries = [make_entry("a.txt"), make_entry("b.txt"), make_entry("F/a.txt")]
    assert move_path(entries, "missing.txt", "F") is None
    assert move_path(entries, "a.txt", "b.txt") is None
    assert move_path(entries, "a.txt", "F") is None


def test_is_folder_path() -> None:
    entries = _sample_library()
    assert is_folder_path(entries, "")
    assert is_folder_path(entries, "Notes/y")
    assert not is_folder_path(entries, "Other.txt")


def test_normalize_entry_defaults_missing_fields() -> None:
    entry = normalize_entry({"id": "abc", "name": "doc.txt", "path": "doc.txt", "content": "one two"})
    assert entry.highlights == set()
    assert entry.notes == {}
    assert entry.current_index == 0


def test_normalize_entry_coerces_keys_and_clamps_index() -> None:
    entry = normalize_entry(
        {
            "id": "abc",
            "name": "doc.txt",
            "path": "/dir//doc.txt",
            "content": "one two three",
            "highlights": [0, "1", -4, "x"],
            "notes": {"2": "third", "bad": "ignored"},
            "currentIndex": 99,
        }
    )
    assert entry.path == "dir/doc.txt"
    assert entry.highlights == {0, 1, 2}
    assert entry.notes == {2: "third"}
    assert entry.current_index == 2


def test_normalize_entry_generates_missing_identity() -> None:
    entry = normalize_entry({"content": "text"})
    assert entry.id
    assert entry.path == entry.id
    assert entry.name == entry.id


def test_toggle_highlight_off_drops_note() -> None:
    entry = make_entry("doc.txt", "one two three")
    assert toggle_highlight(entry, 1) is True
    save_note(entry, 1, "second")
    assert entry.notes == {1: "second"}
    assert toggle_highlight(entry, 1) is False
    assert entry.notes == {}
    assert set(entry.notes) <= entry.highlights


def test_save_note_highlights_and_blank_note_clears() -> None:
    entry = make_entry("doc.txt", "one two three")
    save_note(entry, 2, "last")
    assert 2 in entry.highlights
    save_note(entry, 2, "   ")
    assert entry.notes == {}
    assert 2 in entry.highlights


def test_entry_words_reflect_annotations() -> None:
    entry = make_entry("doc.txt", "one two.", highlights={1}, notes={1: "end"})
    words = entry_words(entry)
    assert words[1].is_highlighted
    assert words[1].note == "end"
    assert words[1].is_punctuation


def test_unique_path_appends_counter_before_extension() -> None:
    assert unique_path([], "a.txt") == "a.txt"
    assert unique_path(["a.txt"], "a.txt") == "a (2).txt"
    assert unique_path(["a.txt", "a (2).txt"], "a.txt") == "a (3).txt"
    assert unique_path(["dir/README"], "dir/README") == "dir/README (2)"
