from .errors import FileReadError, FocusReadError, ImportFormatError, NarrationUnavailableError
from .focus import FocusSplit, orp_index, split_focus
from .library import Entry, TreeNode, build_tree, delete_path, move_path
from .narration import NarrationBridge, SpeechCallbacks, SpeechEngine
from .scheduler import PlaybackScheduler, ReaderStatus
from .session import ReaderSession
from .store import JsonDirectoryPort, LibraryStore, MemoryPort, Settings
from .tokens import Word, tokenize

__all__ = [
    "Word",
    "tokenize",
    "FocusSplit",
    "orp_index",
    "split_focus",
    "Entry",
    "TreeNode",
    "build_tree",
    "delete_path",
    "move_path",
    "PlaybackScheduler",
    "ReaderStatus",
    "NarrationBridge",
    "SpeechCallbacks",
    "SpeechEngine",
    "ReaderSession",
    "LibraryStore",
    "JsonDirectoryPort",
    "MemoryPort",
    "Settings",
    "FocusReadError",
    "ImportFormatError",
    "FileReadError",
    "NarrationUnavailableError",
]
