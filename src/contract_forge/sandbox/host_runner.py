"""Local subprocess execution of pipeline steps for sandboxless builds."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from contract_forge.constants import DEFAULT_STEP_TIMEOUT_SECONDS
from contract_forge.errors import BuildFailedError, BuildFailedWithLogsError, BuildTimeoutError
from contract_forge.utils.fs import is_within

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from contract_forge.domain.models import PipelineStep

logger = logging.getLogger(__name__)


class HostPolicyError(RuntimeError):
    """Raised when a step's working directory lies outside every allowed root."""


@dataclass(frozen=True, slots=True)
class HostCommandResult:
    """Outcome of one local command; stderr is interleaved into ``output``."""

    argv: tuple[str, ...]
    cwd: Path
    returncode: int | None
    output: str
    timed_out: bool
    elapsed_seconds: float

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.returncode == 0


class HostCommandRunner:
    """Run pipeline steps as host subprocesses confined to a set of directories.

    The toolchain comes from the host, so commands see the caller's environment with
    ``extra_env`` layered on top.
    """

    def __init__(
        self,
        allowed_roots: Iterable[Path | str],
        *,
        default_timeout_seconds: float = DEFAULT_STEP_TIMEOUT_SECONDS,
        extra_env: Mapping[str, str] | None = None,
    ) -> None:
        roots = tuple(Path(root).resolve(strict=True) for root in allowed_roots)
        if not roots:
            raise ValueError("at least one allowed root is required")
        if default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        for root in roots:
            if not root.is_dir():
                raise NotADirectoryError(f"{root!s} is not a directory")

        self._roots = roots
        self._default_timeout = float(default_timeout_seconds)
        self._env = {**os.environ, **(extra_env or {})}
        self._lock = threading.Lock()
        self._live: set[subprocess.Popen[bytes]] = set()

    @property
    def allowed_roots(self) -> tuple[Path, ...]:
        return self._roots

    def execute(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | str,
        timeout_seconds: float | None = None,
    ) -> HostCommandResult:
        command = tuple(str(part) for part in argv)
        if not command:
            raise ValueError("command must not be empty")
        workdir = self._confine(cwd)
        limit = self._default_timeout if timeout_seconds is None else float(timeout_seconds)

        started = time.monotonic()
        process = subprocess.Popen(
            command,
            cwd=workdir,
            env=self._env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        with self._lock:
            self._live.add(process)
        try:
            try:
                raw, _ = process.communicate(timeout=limit)
                timed_out = False
            except subprocess.TimeoutExpired:
                process.kill()
                raw, _ = process.communicate()
                timed_out = True
        finally:
            with self._lock:
                self._live.discard(process)
        return HostCommandResult(
            argv=command,
            cwd=workdir,
            returncode=None if timed_out else process.returncode,
            output=_decode(raw),
            timed_out=timed_out,
            elapsed_seconds=time.monotonic() - started,
        )

    def kill_running(self) -> int:
        """Kill every child process still running; returns how many were signalled."""

        with self._lock:
            live = [process for process in self._live if process.poll() is None]
        for process in live:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
        return len(live)

    async def run(self, step: PipelineStep) -> str:
        """Run ``step`` off the event loop with the same failure contract as the sandbox.

        Returns the step output when ``capture_output`` is set, else ``""``. When the calling
        task is cancelled the child process is killed and reaped before the cancellation
        propagates, so callers may remove its working directory right away.
        """

        logger.debug("host exec %s in %s: %s", step.name, step.workdir, " ".join(step.argv))
        work = asyncio.ensure_future(
            asyncio.to_thread(
                self.execute, step.argv, cwd=step.workdir, timeout_seconds=step.timeout_seconds
            )
        )
        try:
            result = await asyncio.shield(work)
        except asyncio.CancelledError:
            killed = self.kill_running()
            await asyncio.wait({work})
            if not work.cancelled():
                work.exception()
            logger.debug("%s cancelled, killed %d child process(es)", step.name, killed)
            raise
        except (OSError, HostPolicyError) as exc:
            raise BuildFailedError(f"cannot run {step.name}: {exc}") from exc

        if result.timed_out:
            limit = step.timeout_seconds or self._default_timeout
            raise BuildTimeoutError(step.name, limit, log=result.output)
        if not result.succeeded:
            logger.debug(
                "%s exited with status %s after %.2fs",
                step.name,
                result.returncode,
                result.elapsed_seconds,
            )
            raise BuildFailedWithLogsError(
                result.output or f"{step.name} exited with status {result.returncode}"
            )
        return result.output if step.capture_output else ""

    def _confine(self, cwd: Path | str) -> Path:
        path = Path(cwd).resolve(strict=True)
        if not path.is_dir():
            raise NotADirectoryError(f"{path!s} is not a directory")
        if not any(is_within(path, root) for root in self._roots):
            raise HostPolicyError(f"working directory {path!s} is outside the allowed roots")
        return path


def _decode(raw: bytes | str | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


__all__ = [
    "HostCommandResult",
    "HostCommandRunner",
    "HostPolicyError",
]
