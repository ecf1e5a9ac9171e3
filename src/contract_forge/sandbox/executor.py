"""Run pipeline steps inside a sandbox through the Docker exec API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from contract_forge.constants import (
    DEFAULT_EXIT_STATUS_WAIT_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS,
)
from contract_forge.errors import BuildFailedError, BuildFailedWithLogsError, BuildTimeoutError
from contract_forge.sandbox.lifecycle import DAEMON_ERRORS

if TYPE_CHECKING:
    from docker import APIClient

    from contract_forge.domain.models import PipelineStep

logger = logging.getLogger(__name__)


class CommandExecutor:
    """Execute one :class:`PipelineStep` at a time in a named sandbox.

    Output is streamed from the exec session on a worker thread. Steps with a timeout are
    polled through ``exec_inspect`` every ``poll_interval_seconds`` until they stop running
    or the deadline passes, and their output stream must close before the same deadline.
    Steps without one wait for the stream to close, then give the daemon up to
    ``exit_status_wait_seconds`` to report the exit status.
    """

    def __init__(
        self,
        api: APIClient,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        exit_status_wait_seconds: float = DEFAULT_EXIT_STATUS_WAIT_SECONDS,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        self._api = api
        self._poll_interval_seconds = float(poll_interval_seconds)
        self._exit_status_wait_seconds = float(exit_status_wait_seconds)

    async def execute(self, sandbox_name: str, step: PipelineStep) -> str:
        """Run ``step`` and return its output when ``capture_output`` is set, else ``""``.

        Raises :class:`BuildFailedWithLogsError` on a non-zero exit status,
        :class:`BuildTimeoutError` when the step (its output stream included) outlives its
        timeout, and :class:`BuildFailedError` when the daemon cannot run the step at all.
        """

        logger.debug("exec %s in %s: %s", step.name, sandbox_name, " ".join(step.argv))
        try:
            created = await asyncio.to_thread(
                self._api.exec_create,
                sandbox_name,
                list(step.argv),
                stdout=True,
                stderr=True,
                workdir=step.workdir,
            )
            exec_id = str(created["Id"])
            stream = await asyncio.to_thread(
                self._api.exec_start, exec_id, detach=False, stream=True
            )
        except DAEMON_ERRORS as exc:
            raise BuildFailedError(f"cannot start {step.name}: {exc}") from exc

        if not isinstance(stream, Iterator):
            raise BuildFailedError(f"{step.name}: execution not attached")

        loop = asyncio.get_running_loop()
        collector = asyncio.ensure_future(
            asyncio.to_thread(_drain, stream, capture=step.capture_output)
        )
        try:
            if step.timeout_seconds is None:
                output = await collector
                info = await self._poll_until_stopped(
                    exec_id, step, loop.time() + self._exit_status_wait_seconds
                )
            else:
                deadline = loop.time() + step.timeout_seconds
                info = await self._poll_until_stopped(exec_id, step, deadline)
                if info is None:
                    raise BuildTimeoutError(step.name, step.timeout_seconds)
                output = await self._collect_until(collector, step, deadline)
        except BaseException:
            # The reader thread stays blocked until the daemon closes the stream.
            collector.cancel()
            raise

        exit_code = None if info is None else info.get("ExitCode")
        if exit_code is None:
            logger.warning("%s: daemon reported no exit status, assuming success", step.name)
            return output
        if exit_code != 0:
            logger.debug("%s exited with status %s", step.name, exit_code)
            log = output or f"{step.name} exited with status {exit_code}"
            raise BuildFailedWithLogsError(log)
        return output

    async def _poll_until_stopped(
        self, exec_id: str, step: PipelineStep, deadline: float
    ) -> dict[str, Any] | None:
        """Inspect the exec until it stops; ``None`` if it is still running at ``deadline``."""

        loop = asyncio.get_running_loop()
        while True:
            info = await self._inspect(exec_id, step)
            if not info.get("Running"):
                return info
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(self._poll_interval_seconds)

    async def _collect_until(
        self, collector: asyncio.Future[str], step: PipelineStep, deadline: float
    ) -> str:
        assert step.timeout_seconds is not None
        remaining = deadline - asyncio.get_running_loop().time()
        try:
            return await asyncio.wait_for(
                asyncio.shield(collector), timeout=max(remaining, self._poll_interval_seconds)
            )
        except TimeoutError:
            raise BuildTimeoutError(step.name, step.timeout_seconds) from None

    async def _inspect(self, exec_id: str, step: PipelineStep) -> dict[str, Any]:
        try:
            info = await asyncio.to_thread(self._api.exec_inspect, exec_id)
        except DAEMON_ERRORS as exc:
            raise BuildFailedError(f"cannot inspect {step.name}: {exc}") from exc
        return dict(info)


def _drain(stream: Iterator[bytes | str], *, capture: bool) -> str:
    chunks: list[str] = []
    for chunk in stream:
        if not capture:
            continue
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8", errors="replace")
        chunks.append(chunk)
    return "".join(chunks)


__all__ = ["CommandExecutor"]
