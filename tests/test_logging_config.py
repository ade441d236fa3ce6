"""Tests for logging setup and correlation-bound loggers."""

import logging
from pathlib import Path

import pytest

from ingestor.logging_config import setup_logging, with_correlation


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    http_levels = {name: logging.getLogger(name).level for name in ("httpx", "httpcore")}
    yield root
    for name, http_level in http_levels.items():
        logging.getLogger(name).setLevel(http_level)
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def test_setup_logging_writes_to_file(tmp_path: Path, restore_root_logger) -> None:
    settings = {"logging": {"file": "logs/test.log", "level": "debug"}}
    setup_logging(tmp_path, settings)

    logging.getLogger("ingestor.test").debug("hello %s", "file")
    for h in restore_root_logger.handlers:
        h.flush()

    log_file = tmp_path / "logs" / "test.log"
    assert log_file.exists()
    assert "hello file" in log_file.read_text(encoding="utf-8")
    assert restore_root_logger.level == logging.DEBUG


def test_console_handler_is_optional(tmp_path: Path, restore_root_logger) -> None:
    setup_logging(tmp_path, {"logging": {"file": "a.log", "log_to_console": True}})
    kinds = {type(h) for h in restore_root_logger.handlers}
    assert logging.StreamHandler in kinds
    assert len(restore_root_logger.handlers) == 2


@pytest.mark.parametrize(
    ("level", "http_level"), [("info", logging.WARNING), ("debug", logging.DEBUG)]
)
def test_http_request_logs_only_at_debug(
    tmp_path: Path, restore_root_logger, level: str, http_level: int
) -> None:
    setup_logging(tmp_path, {"logging": {"file": "a.log", "level": level}})
    assert logging.getLogger("httpx").level == http_level
    assert logging.getLogger("httpcore").level == http_level


def test_with_correlation_prefixes_and_tags(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    log = with_correlation(logging.getLogger("ingestor.corr"), "abc-123")
    log.info("stored %d", 3)

    record = caplog.records[-1]
    assert record.getMessage() == "[abc-123] stored 3"
    assert record.correlation_id == "abc-123"


def test_with_correlation_without_id(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    with_correlation(logging.getLogger("ingestor.corr"), None).info("x")
    assert caplog.records[-1].getMessage() == "[-] x"
