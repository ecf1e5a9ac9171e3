"""Unit tests for the sandbox command execution engine."""

from __future__ import annotations

import time
from typing import Any

import pytest

from contract_forge.domain.models import PipelineStep
from contract_forge.errors import (
    BuildFailedError,
    BuildFailedWithLogsError,
    BuildTimeoutError,
    ErrorKind,
)
from contract_forge.sandbox.executor import CommandExecutor
from contract_forge.sandbox.lifecycle import ImageRef, SandboxLifecycle


@pytest.fixture
async def sandbox(fake_docker: Any) -> str:
    await SandboxLifecycle(fake_docker).start("forge-exec", ImageRef("repo", "1"))
    return "forge-exec"


def _step(*argv: str, capture: bool = False, timeout: float | None = None) -> PipelineStep:
    return PipelineStep(
        name=argv[0], workdir="/work", argv=argv, capture_output=capture, timeout_seconds=timeout
    )


async def test_captured_output_is_returned(fake_docker: Any, sandbox: str) -> None:
    fake_docker.on_exec("cargo", output=(b"   Compiling ", b"app\n"))
    executor = CommandExecutor(fake_docker, poll_interval_seconds=0.001)

    log = await executor.execute(sandbox, _step("cargo", "build", capture=True))

    assert log == "   Compiling app\n"
    assert fake_docker.executed == [(sandbox, ("cargo", "build"), "/work")]


async def test_uncaptured_output_is_discarded(fake_docker: Any, sandbox: str) -> None:
    fake_docker.on_exec("chmod", output=(b"noise",))
    executor = CommandExecutor(fake_docker, poll_interval_seconds=0.001)

    assert await executor.execute(sandbox, _step("chmod", "+x", "tool", timeout=1.0)) == ""


async def test_bounded_step_polls_until_stopped(fake_docker: Any, sandbox: str) -> None:
    fake_docker.on_exec("wasm-snip", running_polls=3)
    executor = CommandExecutor(fake_docker, poll_interval_seconds=0.001)

    assert await executor.execute(sandbox, _step("wasm-snip", timeout=1.0)) == ""


async def test_timeout_and_non_zero_exit_are_distinct(fake_docker: Any, sandbox: str) -> None:
    fake_docker.on_exec("slow-opt", hang=True)
    fake_docker.on_exec("bad-opt", exit_code=1, output=(b"invalid wasm",))
    executor = CommandExecutor(fake_docker, poll_interval_seconds=0.001)

    with pytest.raises(BuildTimeoutError) as timed_out:
        await executor.execute(sandbox, _step("slow-opt", timeout=0.05))
    with pytest.raises(BuildFailedWithLogsError) as failed:
        await executor.execute(sandbox, _step("bad-opt", capture=True, timeout=0.05))

    assert timed_out.value.kind is ErrorKind.BUILD_TIMEOUT
    assert timed_out.value.step == "slow-opt"
    assert failed.value.kind is ErrorKind.BUILD_FAILURE_WITH_LOGS
    assert failed.value.log == "invalid wasm"


async def test_bounded_step_times_out_when_stream_stays_open(
    fake_docker: Any, sandbox: str
) -> None:
    fake_docker.on_exec("chmod", block_stream=True)
    executor = CommandExecutor(fake_docker, poll_interval_seconds=0.001)
    started = time.monotonic()

    with pytest.raises(BuildTimeoutError) as excinfo:
        await executor.execute(sandbox, _step("chmod", "+x", "tool", timeout=0.2))

    assert time.monotonic() - started < 2.0
    assert excinfo.value.step == "chmod"
    fake_docker.remove_container(sandbox, force=True)


async def test_build_step_waits_for_lagging_exit_status(fake_docker: Any, sandbox: str) -> None:
    fake_docker.on_exec("cargo", output=(b"Finished\n",), running_polls=2, exit_code=0)
    executor = CommandExecutor(fake_docker, poll_interval_seconds=0.001)

    log = await executor.execute(sandbox, _step("cargo", "build", capture=True))

    assert log == "Finished\n"


async def test_build_step_without_reported_exit_status_is_not_a_failure(
    fake_docker: Any, sandbox: str
) -> None:
    fake_docker.on_exec("cargo", output=(b"Finished\n",), hang=True)
    executor = CommandExecutor(
        fake_docker, poll_interval_seconds=0.001, exit_status_wait_seconds=0.05
    )

    assert await executor.execute(sandbox, _step("cargo", capture=True)) == "Finished\n"


async def test_build_step_lagging_non_zero_exit_is_a_failure(
    fake_docker: Any, sandbox: str
) -> None:
    fake_docker.on_exec("cargo", output=(b"error: aborting\n",), running_polls=2, exit_code=101)
    executor = CommandExecutor(fake_docker, poll_interval_seconds=0.001)

    with pytest.raises(BuildFailedWithLogsError) as excinfo:
        await executor.execute(sandbox, _step("cargo", capture=True))

    assert excinfo.value.log == "error: aborting\n"


async def test_uncaptured_failure_still_names_the_step(fake_docker: Any, sandbox: str) -> None:
    fake_docker.on_exec("mv", exit_code=2)
    executor = CommandExecutor(fake_docker, poll_interval_seconds=0.001)

    with pytest.raises(BuildFailedWithLogsError) as excinfo:
        await executor.execute(sandbox, _step("mv", "a", "b", timeout=1.0))

    assert "mv exited with status 2" in excinfo.value.log


async def test_unknown_sandbox_is_build_failure(fake_docker: Any) -> None:
    executor = CommandExecutor(fake_docker)

    with pytest.raises(BuildFailedError):
        await executor.execute("forge-missing", _step("cargo"))


async def test_detached_start_is_rejected(
    fake_docker: Any, sandbox: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(fake_docker, "exec_start", lambda *_args, **_kwargs: b"")
    executor = CommandExecutor(fake_docker)

    with pytest.raises(BuildFailedError) as excinfo:
        await executor.execute(sandbox, _step("cargo"))

    assert "execution not attached" in excinfo.value.message


def test_poll_interval_must_be_positive(fake_docker: Any) -> None:
    with pytest.raises(ValueError):
        CommandExecutor(fake_docker, poll_interval_seconds=0)
