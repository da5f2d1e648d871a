from __future__ import annotations

import logging

import pytest

from focusread import logging_utils
from focusread.logging_utils import (
    PollingAccessFilter,
    Utf8AccessFormatter,
    build_uvicorn_log_config,
    debug_log,
    set_debug_logging,
)


def _access_record(path: str, method: str = "GET", status: int = 200) -> logging.LogRecord:
    return logging.LogRecord(
        name="uvicorn.access",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg='%s - "%s %s HTTP/%s" %d',
        args=("127.0.0.1:5000", method, path, "1.1", status),
        exc_info=None,
    )


@pytest.fixture(autouse=True)
def _reset_debug():
    yield
    set_debug_logging(False)


def test_debug_log_prints_only_when_enabled(capsys) -> None:
    debug_log("hidden")
    set_debug_logging(True)
    debug_log("shown")
    out = capsys.readouterr().out
    assert "hidden" not in out
    assert "[focusread debug] shown" in out


def test_polling_filter_drops_successful_reader_polls() -> None:
    quiet = PollingAccessFilter()
    assert quiet.filter(_access_record("/api/reader?viewport=1200")) is False
    assert quiet.filter(_access_record("/api/reader", status=500)) is True
    assert quiet.filter(_access_record("/api/reader/play", method="POST")) is True
    assert quiet.filter(_access_record("/api/library")) is True
    set_debug_logging(True)
    assert quiet.filter(_access_record("/api/reader")) is True


def test_access_formatter_decodes_utf8_paths() -> None:
    formatter = Utf8AccessFormatter('%(client_addr)s - "%(request_line)s" %(status_code)s', use_colors=False)
    line = formatter.format(_access_record("/api/library/items/%E8%AA%AD%E6%9B%B8.txt", method="DELETE"))
    assert "/api/library/items/読書.txt" in line


def test_log_config_wires_formatter_and_filter() -> None:
    config = build_uvicorn_log_config()
    assert config["formatters"]["access"]["()"] == "focusread.logging_utils.Utf8AccessFormatter"
    assert "quiet_polling" in config["handlers"]["access"]["filters"]
    assert config["filters"]["quiet_polling"]["()"].endswith("PollingAccessFilter")
    assert logging_utils.LOGGING_CONFIG is not config
