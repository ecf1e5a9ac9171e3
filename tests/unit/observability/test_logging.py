"""
contract-forge unit tests for observability logging.

What this test file covers
- JSON line validity and correlation field propagation.
- structlog events routed into the same sinks as stdlib records.
- Queue drain on shutdown and idempotent shutdown.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from contract_forge.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_active_logging_handle,
    get_correlation_context,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"contract_forge.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def _file_config(tmp_path: Path, logger_name: str, *, level: str = "DEBUG") -> LoggingConfig:
    return LoggingConfig(
        run_id="run-logging",
        level=level,
        log_dir=tmp_path,
        log_to_stderr=False,
        logger_name=logger_name,
    )


def test_json_lines_carry_correlation_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(_file_config(tmp_path, logger_name))
    logger = logging.getLogger(logger_name)

    with correlation_scope(package="my-contract", sandbox="forge-abc12345"):
        logger.info("pushing %s", "src", extra={"files": 3})
    logger.info("outside scope")

    shutdown_logging(handle)

    assert handle.log_path is not None
    first, second = _read_json_lines(handle.log_path)
    assert first["run_id"] == "run-logging"
    assert first["package"] == "my-contract"
    assert first["sandbox"] == "forge-abc12345"
    assert first["message"] == "pushing src"
    assert first["fields"] == {"files": 3}
    assert "package" not in second


def test_structlog_events_reach_the_run_sinks(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(_file_config(tmp_path, logger_name))

    structlog.get_logger(logger_name).info(
        "build_state_transition", package="alpha", previous="init", state="built"
    )
    shutdown_logging(handle)

    assert handle.log_path is not None
    (event,) = _read_json_lines(handle.log_path)
    assert event["message"] == "build_state_transition"
    assert event["fields"] == {"package": "alpha", "previous": "init", "state": "built"}


def test_level_filters_records(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(_file_config(tmp_path, logger_name, level="WARNING"))
    logger = logging.getLogger(logger_name)

    logger.info("hidden")
    logger.warning("shown")
    shutdown_logging(handle)

    assert handle.log_path is not None
    assert [line["message"] for line in _read_json_lines(handle.log_path)] == ["shown"]


def test_correlation_scope_nests_and_restores() -> None:
    with correlation_scope(package="outer"):
        with correlation_scope(sandbox="forge-1", package=None):
            assert get_correlation_context() == {"sandbox": "forge-1"}
        assert get_correlation_context() == {"package": "outer"}
    assert get_correlation_context() == {}


def test_shutdown_is_idempotent_and_clears_active_handle(tmp_path: Path) -> None:
    handle = setup_structured_logging(_file_config(tmp_path, _logger_name()))
    assert get_active_logging_handle() is handle

    shutdown_logging(handle)
    shutdown_logging(handle)

    assert handle.is_shutdown
    assert get_active_logging_handle() is None


def test_new_setup_replaces_previous_handle(tmp_path: Path) -> None:
    first = setup_structured_logging(_file_config(tmp_path, _logger_name()))
    second = setup_structured_logging(_file_config(tmp_path, _logger_name()))

    assert first.is_shutdown
    assert get_active_logging_handle() is second


@pytest.mark.parametrize(
    "config",
    [
        LoggingConfig(run_id="  "),
        LoggingConfig(run_id="r", queue_size=0),
        LoggingConfig(run_id="r", level="LOUD"),
    ],
)
def test_invalid_configs_are_rejected(config: LoggingConfig) -> None:
    with pytest.raises(ValueError):
        setup_structured_logging(config)
