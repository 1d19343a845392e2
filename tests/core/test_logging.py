from __future__ import annotations

import json
import logging
import sys

import pytest

from registry_api.core.config import SETTINGS
from registry_api.core.logging import (
    _ContainerFormatter,
    _JsonFormatter,
    setup_logging,
)
from registry_api.middleware.request_context import install_log_context


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    install_log_context()


def _record(
    level: int = logging.INFO, msg: str = "hello", **extra
) -> logging.LogRecord:
    record = logging.LogRecord(
        name="registry_api.test",
        level=level,
        pathname="mint_service.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ---- setup ----


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING


def test_setup_logging_defaults_to_info_for_unknown_level() -> None:
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


def test_setup_logging_quiets_chatty_libraries() -> None:
    setup_logging("debug")
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("solana").level == logging.WARNING
    setup_logging("error")
    assert logging.getLogger("uvicorn").level == logging.ERROR


def test_setup_logging_replaces_handlers() -> None:
    setup_logging("info")
    setup_logging("info")
    assert len(logging.getLogger().handlers) == 1


# ---- container formatter ----


def test_container_formatter_info_has_no_location() -> None:
    output = _ContainerFormatter().format(_record(request_id="req-1"))
    assert "hello" in output
    assert "[req-1]" in output
    assert "[mint_service.py:" not in output


def test_container_formatter_warning_has_location() -> None:
    output = _ContainerFormatter().format(_record(logging.WARNING, "bad thing"))
    assert "[mint_service.py:42]" in output
    assert "[-]" in output


# ---- json formatter ----


def test_json_formatter_promotes_context_fields() -> None:
    output = _JsonFormatter().format(
        _record(
            msg="Mint aborted",
            request_id="req-9",
            user_id="-",
            event="mint.failed",
            step="issuance",
            duration_ms=12,
        )
    )
    entry = json.loads(output)
    assert entry["message"] == "Mint aborted"
    assert entry["level"] == "INFO"
    assert entry["request_id"] == "req-9"
    assert entry["event"] == "mint.failed"
    assert entry["step"] == "issuance"
    assert entry["duration_ms"] == 12
    # "-" means "no context" and is dropped.
    assert "user_id" not in entry


def test_json_formatter_drops_unknown_extras() -> None:
    entry = json.loads(_JsonFormatter().format(_record(payer_secret="[1,2,3]")))
    assert "payer_secret" not in entry


def test_json_formatter_includes_exception() -> None:
    record = _record(logging.ERROR, "failed")
    try:
        raise RuntimeError("ledger timeout")
    except RuntimeError:
        record.exc_info = sys.exc_info()
    entry = json.loads(_JsonFormatter().format(record))
    assert "RuntimeError: ledger timeout" in entry["exception"]
