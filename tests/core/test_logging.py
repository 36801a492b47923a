from __future__ import annotations

import json
import logging
import sys

import pytest

from certchain.core.logging import _ContainerFormatter, _JsonFormatter, setup_logging


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG

    setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING


def test_setup_logging_defaults_to_info_for_unknown_level() -> None:
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


def test_setup_logging_quiets_uvicorn_at_debug() -> None:
    setup_logging("debug")
    assert logging.getLogger("uvicorn").level == logging.WARNING


def test_setup_logging_allows_uvicorn_at_error() -> None:
    setup_logging("error")
    assert logging.getLogger("uvicorn").level == logging.ERROR


def test_formatter_excludes_location_for_info() -> None:
    fmt = _ContainerFormatter()
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg="hello",
        args=(),
        exc_info=None,
    )
    output = fmt.format(record)
    assert "hello" in output
    assert "[test.py:" not in output


def test_formatter_includes_location_for_warning() -> None:
    fmt = _ContainerFormatter()
    record = logging.LogRecord(
        name="test",
        level=logging.WARNING,
        pathname="test.py",
        lineno=42,
        msg="bad thing",
        args=(),
        exc_info=None,
    )
    output = fmt.format(record)
    assert "bad thing" in output
    assert "[test.py:42]" in output


def test_formatter_includes_location_for_error() -> None:
    fmt = _ContainerFormatter()
    record = logging.LogRecord(
        name="test",
        level=logging.ERROR,
        pathname="svc.py",
        lineno=99,
        msg="broke",
        args=(),
        exc_info=None,
    )
    output = fmt.format(record)
    assert "[svc.py:99]" in output


def test_setup_logging_quiets_httpx_polling() -> None:
    setup_logging("info")
    assert logging.getLogger("httpx").level == logging.WARNING


# ---- JSON lines ----


def _record(msg: str = "Credential issued", level: int = logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="certchain.services.orchestrator",
        level=level,
        pathname="orchestrator.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


def test_json_formatter_produces_valid_json() -> None:
    parsed = json.loads(_JsonFormatter().format(_record()))
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "certchain.services.orchestrator"
    assert parsed["message"] == "Credential issued"
    assert "timestamp" in parsed


def test_json_formatter_lifts_credential_context() -> None:
    record = _record()
    record.request_id = "abc-123"  # type: ignore[attr-defined]
    record.operation = "issue"  # type: ignore[attr-defined]
    record.credential_id = "CERT-1"  # type: ignore[attr-defined]
    record.subject_id = "S-1"  # type: ignore[attr-defined]
    record.fingerprint = "0xabc"  # type: ignore[attr-defined]

    parsed = json.loads(_JsonFormatter().format(record))

    assert parsed["request_id"] == "abc-123"
    assert parsed["operation"] == "issue"
    assert parsed["credential_id"] == "CERT-1"
    assert parsed["subject_id"] == "S-1"
    assert parsed["fingerprint"] == "0xabc"
    assert "method" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    try:
        raise ValueError("ledger said no")
    except ValueError:
        record = _record("Issue failed", logging.ERROR, sys.exc_info())

    parsed = json.loads(_JsonFormatter().format(record))
    assert "ValueError: ledger said no" in parsed["exception"]


def test_container_formatter_is_not_json() -> None:
    output = _ContainerFormatter().format(_record())
    assert "INFO" in output
    assert "certchain.services.orchestrator" in output
    with pytest.raises(json.JSONDecodeError):
        json.loads(output)
