"""Executable CLI entrypoint for ``contract_forge``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    BUILD_FAILED = 1
    CONFIG_ERROR = 2
    DAEMON_ERROR = 3
    INTERNAL_ERROR = 4
    INTERRUPTED = 130


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m contract_forge`` and the console script."""

    try:
        from contract_forge.ui.cli import run_cli

        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        # argparse exits with 2 on usage errors and 0 after --help.
        return _as_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = _classify(exc)
        _report(exc, exit_code)
        return int(exit_code)


def console_entrypoint() -> None:
    """Console-script entrypoint."""

    raise SystemExit(cli_entrypoint())


def _as_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int) and raw_code in {code.value for code in ExitCode}:
        return int(raw_code)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _classify(exc: BaseException) -> ExitCode:
    from contract_forge.config.loader import ConfigLoadError
    from contract_forge.config.schema import ConfigValidationError
    from contract_forge.errors import ForgeUsageError, SandboxDaemonError

    usage_errors = (ConfigLoadError, ConfigValidationError, ForgeUsageError)
    for item in _causes(exc):
        if isinstance(item, KeyboardInterrupt):
            return ExitCode.INTERRUPTED
        if isinstance(item, SandboxDaemonError):
            return ExitCode.DAEMON_ERROR
        if isinstance(item, usage_errors):
            return ExitCode.CONFIG_ERROR
        if isinstance(item, (FileNotFoundError, NotADirectoryError, PermissionError, ValueError)):
            return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """Walk ``exc`` and its explicit or implicit causes, stopping on cycles."""

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def _report(exc: BaseException, exit_code: ExitCode) -> None:
    if exit_code is ExitCode.INTERNAL_ERROR:
        traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
    elif exit_code is ExitCode.INTERRUPTED:
        _write_stderr("interrupted")
    else:
        _write_stderr(str(exc).strip() or type(exc).__name__)


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint", "console_entrypoint"]
