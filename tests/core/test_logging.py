from __future__ import annotations

import logging

import pytest

from proctor.core.logging import _ContainerFormatter, setup_logging


def _record(level: int, msg: str, pathname: str = "lifecycle.py", lineno: int = 1):
    return logging.LogRecord(
        name="proctor.services.lifecycle",
        level=level,
        pathname=pathname,
        lineno=lineno,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG

    setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING


def test_setup_logging_defaults_to_info_for_unknown_level() -> None:
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


@pytest.mark.parametrize("name", ["uvicorn", "httpx", "sqlalchemy.engine"])
def test_setup_logging_quiets_third_party_at_debug(name: str) -> None:
    setup_logging("debug")
    assert logging.getLogger(name).level == logging.WARNING


def test_setup_logging_allows_uvicorn_at_error() -> None:
    setup_logging("error")
    assert logging.getLogger("uvicorn").level == logging.ERROR


def test_setup_logging_replaces_handlers() -> None:
    setup_logging("info")
    setup_logging("info")
    assert len(logging.getLogger().handlers) == 1


def test_formatter_excludes_location_for_info() -> None:
    output = _ContainerFormatter().format(_record(logging.INFO, "Attempt started"))
    assert "Attempt started" in output
    assert "[lifecycle.py:" not in output


def test_formatter_includes_location_for_warning() -> None:
    output = _ContainerFormatter().format(
        _record(logging.WARNING, "Rejected submit", lineno=42)
    )
    assert "Rejected submit" in output
    assert "[lifecycle.py:42]" in output


def test_formatter_includes_location_for_error() -> None:
    output = _ContainerFormatter().format(
        _record(logging.ERROR, "broke", pathname="pg_attempt_repo.py", lineno=99)
    )
    assert "[pg_attempt_repo.py:99]" in output


def test_formatter_timestamp_has_milliseconds() -> None:
    record = _record(logging.INFO, "tick")
    record.msecs = 7
    stamp = _ContainerFormatter().formatTime(record, "%Y-%m-%dT%H:%M:%S%z")
    assert ".007" in stamp
