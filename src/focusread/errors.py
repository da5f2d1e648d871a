from __future__ import annotations

__all__ = [
    "FocusReadError",
    "ImportFormatError",
    "FileReadError",
    "NarrationUnavailableError",
]


class FocusReadError(RuntimeError):
    """Base class for recoverable focusread failures."""


class ImportFormatError(FocusReadError, ValueError):
    """Raised when an imported library backup is not a JSON array of entries."""


class FileReadError(FocusReadError, OSError):
    """Raised when a single ingested document cannot be read or decoded."""


class NarrationUnavailableError(FocusReadError):
    """Raised when no speech engine is available to narrate the active entry."""
