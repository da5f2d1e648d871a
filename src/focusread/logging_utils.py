from __future__ import annotations

import logging
from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote, urlsplit

from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

__all__ = [
    "set_debug_logging",
    "debug_enabled",
    "debug_log",
    "PollingAccessFilter",
    "Utf8AccessFormatter",
    "build_uvicorn_log_config",
]

_DEBUG_LOG = False

# The reader page polls these while playing or narrating.
POLLING_PATHS = frozenset({"/api/reader"})


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_enabled() -> bool:
    return _DEBUG_LOG


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        print(f"[focusread debug] {message}")


def _access_args(record: logging.LogRecord) -> tuple[Any, ...] | None:
    args = record.args
    if isinstance(args, tuple) and len(args) == 5:
        return args
    return None


class PollingAccessFilter(logging.Filter):
    """Drop successful reader polling requests from the access log unless debugging."""

    def filter(self, record: logging.LogRecord) -> bool:
        if _DEBUG_LOG:
            return True
        args = _access_args(record)
        if args is None:
            return True
        _, method, full_path, _, status_code = args
        if method != "GET" or status_code != 200 or not isinstance(full_path, str):
            return True
        return urlsplit(full_path).path not in POLLING_PATHS


class Utf8AccessFormatter(UvicornAccessFormatter):
    """Access log formatter that prints percent-encoded library paths as UTF-8."""

    def formatMessage(self, record):  # type: ignore[override]
        args = _access_args(record)
        if args is None:
            return super().formatMessage(record)
        client_addr, method, full_path, http_version, status_code = args
        if isinstance(full_path, str):
            full_path = unquote(full_path, encoding="utf-8", errors="replace")
        new_record = copy(record)
        new_record.args = (client_addr, method, full_path, http_version, status_code)
        return super().formatMessage(new_record)


def build_uvicorn_log_config() -> dict[str, Any]:
    """Uvicorn's default logging config with the UTF-8 formatter and polling filter."""
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("access")
    if isinstance(formatter, dict):
        formatter["()"] = "focusread.logging_utils.Utf8AccessFormatter"
    config.setdefault("filters", {})["quiet_polling"] = {
        "()": "focusread.logging_utils.PollingAccessFilter"
    }
    handler = config.get("handlers", {}).get("access")
    if isinstance(handler, dict):
        handler["filters"] = [*handler.get("filters", []), "quiet_polling"]
    return config
