"""The fixed build sequence, expressed as typed pipeline steps."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from contract_forge.constants import (
    LOCK_FILENAME,
    OPTIMIZED_FILENAME,
    SANDBOX_OUTPUT_DIR,
    SANDBOX_WASM_OPT,
    SIZE_OPTIMIZED_FILENAME,
    STRIPPED_FILENAME,
)
from contract_forge.domain.models import PipelineStep
from contract_forge.errors import BuildFailedWithLogsError, BuildTimeoutError
from contract_forge.sandbox.transport import sandbox_workdir

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from contract_forge.config.schema import ForgeSettings
    from contract_forge.domain.models import Package

logger = logging.getLogger(__name__)

BUILD_STEP = "cargo-build"
SNIP_FLAGS = ("--snip-rust-fmt-code", "--snip-rust-panicking-code")


@dataclass(frozen=True, slots=True)
class Pipeline:
    """Ordered steps for one package plus where the artifact ends up."""

    steps: tuple[PipelineStep, ...]
    output_location: str


def cargo_build_argv(cargo: str, target: str, *, locked: bool) -> tuple[str, ...]:
    argv = (cargo, "build", "--target", target, "--release", "--quiet")
    return (*argv, "--locked") if locked else argv


def lock_requested(package: Package, lock_dependency_versions: bool) -> bool:
    """The lock flag applies only when a lock file exists at the package root."""

    return lock_dependency_versions and (package.source_path / LOCK_FILENAME).is_file()


def sandbox_pipeline(package: Package, settings: ForgeSettings, *, locked: bool) -> Pipeline:
    source_dir = sandbox_workdir(package.source_path)
    release_dir = sandbox_workdir(package.source_path, "target", settings.build_target, "release")
    output_dir = str(SANDBOX_OUTPUT_DIR)
    bound = settings.sandbox.step_timeout_seconds

    steps = [
        PipelineStep(
            name=BUILD_STEP,
            workdir=source_dir,
            argv=cargo_build_argv("cargo", settings.build_target, locked=locked),
            capture_output=True,
        ),
        PipelineStep(
            "chmod-wasm-opt",
            release_dir,
            ("chmod", "+x", SANDBOX_WASM_OPT),
            timeout_seconds=bound,
        ),
        PipelineStep(
            "wasm-opt-size",
            release_dir,
            (SANDBOX_WASM_OPT, "-Oz", package.artifact, "--output", SIZE_OPTIMIZED_FILENAME),
            timeout_seconds=bound,
        ),
        PipelineStep(
            "wasm-snip",
            release_dir,
            ("wasm-snip", SIZE_OPTIMIZED_FILENAME, "--output", STRIPPED_FILENAME, *SNIP_FLAGS),
            timeout_seconds=bound,
        ),
        PipelineStep(
            "wasm-opt-dce",
            release_dir,
            (SANDBOX_WASM_OPT, "--dce", STRIPPED_FILENAME, "--output", OPTIMIZED_FILENAME),
            timeout_seconds=bound,
        ),
        PipelineStep(
            "stage-output", release_dir, ("mkdir", "-p", output_dir), timeout_seconds=bound
        ),
        PipelineStep(
            "move-artifact",
            release_dir,
            ("mv", OPTIMIZED_FILENAME, f"{output_dir}/{package.artifact}"),
            timeout_seconds=bound,
        ),
    ]
    if locked:
        steps.append(
            PipelineStep(
                "copy-lock-file",
                source_dir,
                ("cp", LOCK_FILENAME, f"{output_dir}/{LOCK_FILENAME}"),
                timeout_seconds=bound,
            )
        )
    return Pipeline(steps=tuple(steps), output_location=output_dir)


def host_pipeline(
    package: Package, settings: ForgeSettings, scratch: Path, *, locked: bool
) -> Pipeline:
    """Same sequence run with host tools; intermediates live in ``scratch``."""

    tools = settings.host
    bound = settings.sandbox.step_timeout_seconds
    built = package.source_path / "target" / settings.build_target / "release" / package.artifact
    work = str(scratch)

    steps = (
        PipelineStep(
            name=BUILD_STEP,
            workdir=str(package.source_path),
            argv=cargo_build_argv(tools.cargo, settings.build_target, locked=locked),
            capture_output=True,
        ),
        PipelineStep(
            "wasm-opt-size",
            work,
            (tools.wasm_opt, "-Oz", str(built), "--output", SIZE_OPTIMIZED_FILENAME),
            timeout_seconds=bound,
        ),
        PipelineStep(
            "wasm-snip",
            work,
            (tools.wasm_snip, SIZE_OPTIMIZED_FILENAME, "--output", STRIPPED_FILENAME, *SNIP_FLAGS),
            timeout_seconds=bound,
        ),
        PipelineStep(
            "wasm-opt-dce",
            work,
            (tools.wasm_opt, "--dce", STRIPPED_FILENAME, "--output", OPTIMIZED_FILENAME),
            timeout_seconds=bound,
        ),
    )
    return Pipeline(steps=steps, output_location=str(scratch / OPTIMIZED_FILENAME))


async def run_steps(
    steps: Sequence[PipelineStep], run: Callable[[PipelineStep], Awaitable[str]]
) -> str:
    """Run ``steps`` in order, stopping at the first failure.

    Returns the captured build log. A failing step re-raises with the log collected so far
    prepended to its own output.
    """

    build_log = ""
    for step in steps:
        try:
            output = await run(step)
        except BuildFailedWithLogsError as exc:
            raise BuildFailedWithLogsError(_join_logs(build_log, exc.log)) from exc
        except BuildTimeoutError as exc:
            raise BuildTimeoutError(
                exc.step, exc.timeout_seconds, log=_join_logs(build_log, exc.log)
            ) from exc
        if step.capture_output:
            build_log = _join_logs(build_log, output)
        logger.debug("step %s finished", step.name)
    return build_log


def _join_logs(head: str, tail: str) -> str:
    if head and tail:
        return f"{head.rstrip()}\n{tail}"
    return head or tail


__all__ = [
    "BUILD_STEP",
    "Pipeline",
    "cargo_build_argv",
    "host_pipeline",
    "lock_requested",
    "run_steps",
    "sandbox_pipeline",
]
